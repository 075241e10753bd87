"""
Tests for the swap venues and the chain client.
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from web3.exceptions import TimeExhausted

from anoa.core.config import get_settings
from anoa.core.errors import AppError, ErrorCode
from anoa.core.tokens import LIFI_ROUTER_ADDRESS, NATIVE_TOKEN_ADDRESS, USDC_ADDRESS
from anoa.traders import (
    ChainClient,
    ExecutionFailedError,
    LiFiVenue,
    NadFunLens,
    NadFunVenue,
    Quote,
    QuoteInvalidError,
    RelayVenue,
    VenueName,
    create_venues,
)
from anoa.traders.nadfun import min_amount_out

MEME = "0x1111111111111111111111111111111111111111"
CHOG = "0x350035555E10d9AfAF1566AaebfCeD5BA6C27777"
WEI = 10**18


class TestNadFunLens:
    """Tests for NadFunLens reads."""

    @pytest.mark.asyncio
    async def test_bonding_curve_state(self, mock_chain):
        results = {"getProgress": 12000, "isGraduated": True, "isLocked": 0}
        mock_chain.call_function = AsyncMock(
            side_effect=lambda address, abi, fn_name, *args: results[fn_name]
        )

        state = await NadFunLens(mock_chain, lens_address=MEME).get_bonding_curve_state(CHOG)

        # Progress is clamped to 10000 bps
        assert state == (10000, True, False)

    @pytest.mark.asyncio
    async def test_read_failure_propagates(self, mock_chain):
        mock_chain.call_function = AsyncMock(
            side_effect=AppError(ErrorCode.CHAIN_READ_FAILED, "isLocked failed")
        )
        with pytest.raises(AppError):
            await NadFunLens(mock_chain, lens_address=MEME).get_bonding_curve_state(CHOG)


class TestNadFunVenue:
    """Tests for NadFunVenue quote and execute."""

    @pytest.fixture
    def router(self):
        return get_settings().nadfun_contracts["bonding_curve_router"]

    @pytest.fixture
    def lens(self, router):
        lens = MagicMock()
        lens.get_amount_out = AsyncMock(return_value=(router, 2 * WEI))
        return lens

    @pytest.fixture
    def venue(self, mock_chain, lens):
        return NadFunVenue(mock_chain, lens=lens, deadline_seconds=300)

    def test_min_amount_out(self):
        assert min_amount_out(1000, 150) == 985
        assert min_amount_out(2 * WEI, 100) == 1_980_000_000_000_000_000

    @pytest.mark.asyncio
    async def test_buy_quote(self, venue, lens, router):
        quote = await venue.quote(NATIVE_TOKEN_ADDRESS, MEME, 1.5)

        lens.get_amount_out.assert_awaited_once_with(MEME, 1_500_000_000_000_000_000, True)
        assert quote.is_buy
        assert quote.amount_out == 2.0
        assert quote.router == router
        assert venue.router_kind(router) == "bonding_curve"

    @pytest.mark.asyncio
    async def test_zero_router_is_invalid(self, venue, lens):
        lens.get_amount_out.return_value = (NATIVE_TOKEN_ADDRESS, WEI)
        with pytest.raises(QuoteInvalidError, match="invalid router"):
            await venue.quote(NATIVE_TOKEN_ADDRESS, MEME, 1.0)

    @pytest.mark.asyncio
    async def test_zero_output_is_invalid(self, venue, lens, router):
        lens.get_amount_out.return_value = (router, 0)
        with pytest.raises(QuoteInvalidError, match="0 amountOut"):
            await venue.quote(NATIVE_TOKEN_ADDRESS, MEME, 1.0)

    @pytest.mark.asyncio
    async def test_dust_amount_is_invalid(self, venue, lens):
        with pytest.raises(QuoteInvalidError):
            await venue.quote(NATIVE_TOKEN_ADDRESS, MEME, 1e-20)
        lens.get_amount_out.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_execute_buy(self, venue, mock_chain, router):
        quote = await venue.quote(NATIVE_TOKEN_ADDRESS, MEME, 1.5)

        result = await venue.execute(quote, slippage_bps=100)

        args = mock_chain.encode_call.call_args.args
        assert args[2] == "buy"
        amount_out_min, token, recipient, _deadline = args[3]
        assert amount_out_min == 1_980_000_000_000_000_000
        assert token == MEME
        assert recipient == mock_chain.address
        mock_chain.send_transaction.assert_awaited_once_with(
            to=router, data="0xdeadbeef", value=1_500_000_000_000_000_000
        )
        assert result.tx_hash == "0xtxhash"
        assert result.method == "buy"
        assert result.gas_used == 21000
        assert result.venue == VenueName.NADFUN

    @pytest.mark.asyncio
    async def test_sell_with_permit(self, venue, mock_chain):
        quote = await venue.quote(MEME, NATIVE_TOKEN_ADDRESS, 100.0)

        result = await venue.execute(quote, slippage_bps=100)

        assert result.method == "sellPermit"
        assert mock_chain.encode_call.call_args.args[2] == "sellPermit"
        mock_chain.approve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sell_falls_back_to_approve(self, venue, mock_chain, router):
        """A failed permit falls back to approve + sell in the same attempt."""
        mock_chain.sign_permit.side_effect = AppError(ErrorCode.CHAIN_READ_FAILED, "nonces failed")
        quote = await venue.quote(MEME, NATIVE_TOKEN_ADDRESS, 100.0)

        result = await venue.execute(quote, slippage_bps=100)

        assert result.method == "approve+sell"
        mock_chain.approve.assert_awaited_once_with(MEME, router, 100 * WEI)
        assert mock_chain.encode_call.call_args.args[2] == "sell"

    @pytest.mark.asyncio
    async def test_approve_failure(self, venue, mock_chain):
        mock_chain.sign_permit.side_effect = AppError(ErrorCode.CHAIN_READ_FAILED, "nonces failed")
        mock_chain.approve.side_effect = AppError(ErrorCode.CHAIN_READ_FAILED, "approve reverted")
        quote = await venue.quote(MEME, NATIVE_TOKEN_ADDRESS, 100.0)

        with pytest.raises(ExecutionFailedError, match="Approve failed"):
            await venue.execute(quote, slippage_bps=100)

    @pytest.mark.asyncio
    async def test_revert_propagates(self, venue, mock_chain):
        mock_chain.wait_for_receipt.side_effect = ExecutionFailedError(
            "Transaction reverted", code=ErrorCode.TRANSACTION_REVERTED, tx_hash="0xtxhash"
        )
        quote = await venue.quote(NATIVE_TOKEN_ADDRESS, MEME, 1.0)

        with pytest.raises(ExecutionFailedError) as exc_info:
            await venue.execute(quote, slippage_bps=100)
        assert exc_info.value.code == ErrorCode.TRANSACTION_REVERTED.value


LIFI_QUOTE = {
    "tool": "kuru",
    "transactionRequest": {
        "to": LIFI_ROUTER_ADDRESS,
        "data": "0x12345678abcdef",
        "value": "0x8ac7230489e80000",
        "chainId": 143,
        "gasLimit": "0x30d40",
    },
    "estimate": {
        "toAmount": "9950000",
        "toAmountMin": "9850000",
        "approvalAddress": LIFI_ROUTER_ADDRESS,
    },
}


class TestLiFiVenue:
    """Tests for LiFiVenue."""

    @pytest.fixture
    def venue(self, mock_chain):
        return LiFiVenue(mock_chain)

    def test_supports_known_tokens_only(self, venue):
        assert venue.supports(CHOG)
        assert not venue.supports(MEME)

    @pytest.mark.asyncio
    async def test_quote(self, venue, respx_mock):
        route = respx_mock.get("https://li.quest/v1/quote").mock(
            return_value=httpx.Response(200, json=LIFI_QUOTE)
        )

        quote = await venue.quote(NATIVE_TOKEN_ADDRESS, "USDC", 10.0, slippage_bps=150)

        params = route.calls.last.request.url.params
        assert params["fromAmount"] == str(10 * WEI)
        assert params["toToken"] == USDC_ADDRESS
        assert params["slippage"] == "0.015"
        assert quote.amount_out == 9.95
        assert quote.amount_out_min_wei == 9_850_000
        assert quote.to_decimals == 6

    @pytest.mark.asyncio
    async def test_quote_error_is_invalid(self, venue, respx_mock):
        respx_mock.get("https://li.quest/v1/quote").mock(
            return_value=httpx.Response(400, json={"message": "No available quotes"})
        )
        with pytest.raises(QuoteInvalidError, match="400"):
            await venue.quote(NATIVE_TOKEN_ADDRESS, "USDC", 10.0)

    @pytest.mark.asyncio
    async def test_quote_without_transaction(self, venue, respx_mock):
        respx_mock.get("https://li.quest/v1/quote").mock(
            return_value=httpx.Response(200, json={"estimate": {"toAmount": "1"}})
        )
        with pytest.raises(QuoteInvalidError, match="transaction data"):
            await venue.quote(NATIVE_TOKEN_ADDRESS, "USDC", 10.0)

    @pytest.mark.asyncio
    async def test_execute_native_input(self, venue, mock_chain, respx_mock):
        respx_mock.get("https://li.quest/v1/quote").mock(
            return_value=httpx.Response(200, json=LIFI_QUOTE)
        )
        quote = await venue.quote(NATIVE_TOKEN_ADDRESS, "USDC", 10.0)

        result = await venue.execute(quote, slippage_bps=100)

        mock_chain.get_allowance.assert_not_awaited()
        mock_chain.send_transaction.assert_awaited_once_with(
            to=LIFI_ROUTER_ADDRESS, data="0x12345678abcdef", value=10 * WEI, gas=200000
        )
        assert result.method == "lifi"

    @pytest.mark.asyncio
    async def test_erc20_input_is_approved(self, venue, mock_chain):
        quote = Quote(
            venue=VenueName.LIFI,
            from_token=USDC_ADDRESS,
            to_token=NATIVE_TOKEN_ADDRESS,
            amount_in=5.0,
            amount_in_wei=5_000_000,
            amount_out=1.0,
            amount_out_wei=WEI,
            transactions=[dict(LIFI_QUOTE["transactionRequest"], value="0")],
            approval_address=LIFI_ROUTER_ADDRESS,
        )

        await venue.execute(quote, slippage_bps=100)

        mock_chain.approve.assert_awaited_once_with(USDC_ADDRESS, LIFI_ROUTER_ADDRESS, 5_000_000)

    @pytest.mark.parametrize(
        "override,message",
        [
            ({"chainId": 1}, "Chain ID mismatch"),
            ({"to": MEME}, "Unknown LiFi target"),
            ({"data": "0x12"}, "Invalid transaction data"),
        ],
    )
    def test_validate_transaction(self, venue, override, message):
        tx = dict(LIFI_QUOTE["transactionRequest"], **override)
        with pytest.raises(QuoteInvalidError, match=message):
            venue.validate_transaction(tx)


RELAY_QUOTE = {
    "steps": [
        {
            "id": "approve",
            "kind": "transaction",
            "items": [{"data": {"to": USDC_ADDRESS, "data": "0xapprove", "value": "0", "chainId": 143}}],
        },
        {
            "id": "authorize",
            "kind": "signature",
            "items": [{"data": {"sign": {"message": "hello"}}}],
        },
        {
            "id": "swap",
            "kind": "transaction",
            "items": [
                {"data": {"to": MEME, "data": "0xswap", "value": "0", "chainId": 143, "gas": "90000"}},
                {"data": {"to": MEME}},
            ],
        },
    ],
    "details": {"currencyOut": {"amount": str(3 * WEI)}},
}


class TestRelayVenue:
    """Tests for RelayVenue."""

    @pytest.fixture
    def venue(self, mock_chain):
        return RelayVenue(mock_chain)

    def test_extract_transactions(self):
        """Signature steps and incomplete items are skipped."""
        txs = RelayVenue.extract_transactions(RELAY_QUOTE)
        assert [tx["data"] for tx in txs] == ["0xapprove", "0xswap"]

    @pytest.mark.asyncio
    async def test_quote(self, venue, respx_mock):
        route = respx_mock.post("https://api.relay.link/quote").mock(
            return_value=httpx.Response(200, json=RELAY_QUOTE)
        )

        quote = await venue.quote("USDC", "WMON", 25.0, slippage_bps=100)

        body = route.calls.last.request.read()
        assert b'"amount":"25000000"' in body.replace(b" ", b"")
        assert b'"slippageTolerance":"100"' in body.replace(b" ", b"")
        assert quote.amount_out == 3.0
        assert len(quote.transactions) == 2

    @pytest.mark.asyncio
    async def test_execute_sends_steps_in_order(self, venue, mock_chain, respx_mock):
        respx_mock.post("https://api.relay.link/quote").mock(
            return_value=httpx.Response(200, json=RELAY_QUOTE)
        )
        mock_chain.send_transaction.side_effect = ["0xapprovetx", "0xswaptx"]
        quote = await venue.quote("USDC", "WMON", 25.0)

        result = await venue.execute(quote, slippage_bps=100)

        sent = [c.kwargs["to"] for c in mock_chain.send_transaction.await_args_list]
        assert sent == [USDC_ADDRESS, MEME]
        assert mock_chain.send_transaction.await_args_list[1].kwargs["gas"] == 90000
        assert result.tx_hash == "0xswaptx"
        assert result.gas_used == 42000

    @pytest.mark.asyncio
    async def test_quote_without_transactions(self, venue, respx_mock):
        respx_mock.post("https://api.relay.link/quote").mock(
            return_value=httpx.Response(200, json={"steps": [], "details": {}})
        )
        with pytest.raises(QuoteInvalidError):
            await venue.quote("USDC", "WMON", 25.0)


class TestChainClient:
    """Tests for ChainClient receipts and signing."""

    @pytest.fixture
    def chain(self):
        client = ChainClient("http://localhost:8545", 143, private_key="0x" + "11" * 32)
        client.w3 = MagicMock()
        return client

    @pytest.mark.asyncio
    async def test_reverted_receipt(self, chain):
        chain.w3.eth.wait_for_transaction_receipt = AsyncMock(return_value={"status": 0})
        with pytest.raises(ExecutionFailedError) as exc_info:
            await chain.wait_for_receipt("0xabc")
        assert exc_info.value.code == ErrorCode.TRANSACTION_REVERTED.value
        assert exc_info.value.tx_hash == "0xabc"

    @pytest.mark.asyncio
    async def test_confirmation_timeout(self, chain):
        chain.w3.eth.wait_for_transaction_receipt = AsyncMock(side_effect=TimeExhausted("slow"))
        with pytest.raises(ExecutionFailedError) as exc_info:
            await chain.wait_for_receipt("0xabc", timeout=1)
        assert exc_info.value.code == ErrorCode.CONFIRMATION_TIMEOUT.value

    @pytest.mark.asyncio
    async def test_successful_receipt(self, chain):
        chain.w3.eth.wait_for_transaction_receipt = AsyncMock(
            return_value={"status": 1, "gasUsed": 50000}
        )
        assert (await chain.wait_for_receipt("0xabc"))["gasUsed"] == 50000

    def test_missing_signer(self):
        chain = ChainClient("http://localhost:8545", 143)
        with pytest.raises(AppError) as exc_info:
            _ = chain.address
        assert exc_info.value.code == ErrorCode.SIGNER_NOT_CONFIGURED

    @pytest.mark.asyncio
    async def test_sign_permit(self, chain):
        reads = {"name": "Chog", "nonces": 3}
        chain.call_function = AsyncMock(side_effect=lambda address, abi, fn_name, *args: reads[fn_name])

        v, r, s = await chain.sign_permit(CHOG, MEME, 10 * WEI, 1_900_000_000)

        assert v in (27, 28)
        assert len(r) == 32
        assert len(s) == 32


def test_create_venues(mock_chain):
    venues = create_venues(mock_chain)
    assert set(venues) == {VenueName.NADFUN, VenueName.LIFI, VenueName.RELAY}
    assert isinstance(venues[VenueName.RELAY], RelayVenue)
