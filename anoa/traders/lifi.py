"""
LiFi DEX aggregator venue (same-chain swaps on Monad mainnet).

GET /quote returns a prebuilt transactionRequest. Before sending it the
target is validated: chain id 143, the known LiFi diamond router as ``to``
and non-trivial calldata. ERC-20 inputs are approved to the quote's
approvalAddress when the current allowance is short.
"""

import logging
from typing import Optional

import httpx

from ..core.circuit_breaker import get_venue_circuit_breaker
from ..core.config import get_settings
from ..core.errors import AppError
from ..core.tokens import (
    LIFI_ROUTER_ADDRESS,
    MONAD_MAINNET_CHAIN_ID,
    NATIVE_TOKEN_ADDRESS,
    from_base_units,
    is_known_token,
    resolve_token,
    to_base_units,
)
from .base import (
    BaseVenue,
    ExecutionFailedError,
    Quote,
    QuoteInvalidError,
    SwapResult,
    VenueName,
)
from .chain import ChainClient

logger = logging.getLogger(__name__)

DEFAULT_SLIPPAGE_BPS = 100


def _to_int(value) -> int:
    """Parse LiFi numeric fields (decimal strings or 0x-hex)."""
    if value is None or value == "":
        return 0
    if isinstance(value, int):
        return value
    text = str(value)
    return int(text, 16) if text.lower().startswith("0x") else int(text)


class LiFiVenue(BaseVenue):
    """Swap venue backed by the LiFi quote API"""

    name = VenueName.LIFI
    requote_on_retry = True

    def __init__(
        self,
        chain: ChainClient,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.chain = chain
        self.api_url = settings.lifi_api_url.rstrip("/")
        self.integrator = settings.lifi_integrator
        self.fee = settings.lifi_fee
        self._client = http_client or httpx.AsyncClient(timeout=settings.lifi_timeout)
        self._breaker = get_venue_circuit_breaker(self.name.value)

    def supports(self, token_address: str) -> bool:
        return is_known_token(token_address)

    async def _fetch_quote(self, params: dict) -> dict:
        response = await self._client.get(
            f"{self.api_url}/quote",
            params=params,
            headers={"Accept": "application/json"},
        )
        if response.status_code >= 400:
            raise QuoteInvalidError(
                f"LiFi quote failed ({response.status_code}): {response.text[:200]}",
                {"status": response.status_code},
            )
        return response.json()

    async def quote(
        self,
        from_token: str,
        to_token: str,
        amount: float,
        slippage_bps: Optional[int] = None,
    ) -> Quote:
        source = resolve_token(from_token)
        target = resolve_token(to_token)
        amount_in_wei = to_base_units(amount, source.decimals)
        if amount_in_wei <= 0:
            raise QuoteInvalidError(f"Amount {amount} is too small to trade")

        slippage_bps = slippage_bps or DEFAULT_SLIPPAGE_BPS
        params = {
            "fromChain": MONAD_MAINNET_CHAIN_ID,
            "toChain": MONAD_MAINNET_CHAIN_ID,
            "fromToken": source.address,
            "toToken": target.address,
            "fromAmount": str(amount_in_wei),
            "fromAddress": self.chain.address,
            "toAddress": self.chain.address,
            "slippage": slippage_bps / 10000,
            "integrator": self.integrator,
            "fee": self.fee,
            "order": "RECOMMENDED",
            "allowDestinationCall": "true",
        }

        data = await self._breaker.call(self._fetch_quote, params)

        tx_request = data.get("transactionRequest")
        if not tx_request:
            raise QuoteInvalidError("LiFi quote did not return transaction data")

        estimate = data.get("estimate") or {}
        amount_out_wei = _to_int(estimate.get("toAmount"))
        if amount_out_wei <= 0:
            raise QuoteInvalidError("LiFi quote returned zero output amount")

        logger.info(
            f"[lifi] quote {source.symbol}->{target.symbol} in={amount} "
            f"out={from_base_units(amount_out_wei, target.decimals)} tool={data.get('tool')}"
        )
        return Quote(
            venue=self.name,
            from_token=source.address,
            to_token=target.address,
            amount_in=amount,
            amount_in_wei=amount_in_wei,
            amount_out=from_base_units(amount_out_wei, target.decimals),
            amount_out_wei=amount_out_wei,
            from_decimals=source.decimals,
            to_decimals=target.decimals,
            transactions=[tx_request],
            approval_address=estimate.get("approvalAddress"),
            amount_out_min_wei=_to_int(estimate.get("toAmountMin")),
            slippage_bps=slippage_bps,
            raw=data,
        )

    def validate_transaction(self, tx: dict) -> None:
        """Reject transactions that do not target the LiFi router on Monad."""
        chain_id = tx.get("chainId")
        if chain_id and _to_int(chain_id) != MONAD_MAINNET_CHAIN_ID:
            raise QuoteInvalidError(
                f"Chain ID mismatch: expected {MONAD_MAINNET_CHAIN_ID}, got {chain_id}"
            )
        to = str(tx.get("to") or "")
        if to.lower() != LIFI_ROUTER_ADDRESS.lower():
            raise QuoteInvalidError(
                f"Unknown LiFi target: {to}. Expected router: {LIFI_ROUTER_ADDRESS}"
            )
        data = tx.get("data")
        if not data or len(data) < 10:
            raise QuoteInvalidError("Invalid transaction data from LiFi")

    async def _ensure_allowance(self, quote: Quote) -> None:
        if quote.from_token.lower() == NATIVE_TOKEN_ADDRESS or not quote.approval_address:
            return
        allowance = await self.chain.get_allowance(
            quote.from_token, self.chain.address, quote.approval_address
        )
        if allowance < quote.amount_in_wei:
            logger.info(f"[lifi] approving {quote.amount_in_wei} to {quote.approval_address}")
            await self.chain.approve(quote.from_token, quote.approval_address, quote.amount_in_wei)

    async def execute(self, quote: Quote, slippage_bps: int) -> SwapResult:
        if not quote.transactions:
            raise QuoteInvalidError("LiFi quote has no transaction")
        tx = quote.transactions[0]
        self.validate_transaction(tx)

        try:
            await self._ensure_allowance(quote)
        except AppError as e:
            raise ExecutionFailedError(f"LiFi approval failed: {e.message}") from e

        gas_limit = _to_int(tx.get("gasLimit")) or None
        tx_hash = await self.chain.send_transaction(
            to=tx["to"],
            data=tx["data"],
            value=_to_int(tx.get("value")),
            gas=gas_limit,
        )
        receipt = await self.chain.wait_for_receipt(tx_hash)

        return SwapResult(
            tx_hash=tx_hash,
            venue=self.name,
            amount_in=quote.amount_in,
            amount_out=quote.amount_out,
            gas_used=receipt.get("gasUsed"),
            router=tx["to"],
            method="lifi",
        )

    async def close(self) -> None:
        await self._client.aclose()
