"""
nad.fun venue: bonding-curve and DEX routers behind the Lens contract.

The Lens prices a swap and names the router that will execute it
(BondingCurveRouter before graduation, DexRouter after). Both routers share
the buy / sell / sellPermit parameter structs, so one ABI encodes for both.

Buys send native MON as value. Sells first try a single sellPermit call
with an EIP-2612 signature and fall back to approve + sell within the same
attempt.
"""

import asyncio
import logging
import time
from typing import Optional

from ..core.config import get_settings
from ..core.errors import AppError
from ..core.tokens import NATIVE_TOKEN_ADDRESS, from_base_units, to_base_units
from .base import (
    BaseVenue,
    ExecutionFailedError,
    Quote,
    QuoteInvalidError,
    SwapResult,
    TradeError,
    VenueName,
)
from .chain import ChainClient

logger = logging.getLogger(__name__)

ZERO_ADDRESS = NATIVE_TOKEN_ADDRESS

LENS_ABI = [
    {
        "type": "function",
        "name": "getAmountOut",
        "inputs": [
            {"name": "_token", "type": "address"},
            {"name": "_amountIn", "type": "uint256"},
            {"name": "_isBuy", "type": "bool"},
        ],
        "outputs": [
            {"name": "router", "type": "address"},
            {"name": "amountOut", "type": "uint256"},
        ],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "getProgress",
        "inputs": [{"name": "_token", "type": "address"}],
        "outputs": [{"name": "progress", "type": "uint256"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "isGraduated",
        "inputs": [{"name": "token", "type": "address"}],
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "isLocked",
        "inputs": [{"name": "token", "type": "address"}],
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
    },
]

_BUY_PARAMS = [
    {"name": "amountOutMin", "type": "uint256"},
    {"name": "token", "type": "address"},
    {"name": "to", "type": "address"},
    {"name": "deadline", "type": "uint256"},
]
_SELL_PARAMS = [
    {"name": "amountIn", "type": "uint256"},
    {"name": "amountOutMin", "type": "uint256"},
    {"name": "token", "type": "address"},
    {"name": "to", "type": "address"},
    {"name": "deadline", "type": "uint256"},
]
_SELL_PERMIT_PARAMS = [
    {"name": "amountIn", "type": "uint256"},
    {"name": "amountOutMin", "type": "uint256"},
    {"name": "amountAllowance", "type": "uint256"},
    {"name": "token", "type": "address"},
    {"name": "to", "type": "address"},
    {"name": "deadline", "type": "uint256"},
    {"name": "v", "type": "uint8"},
    {"name": "r", "type": "bytes32"},
    {"name": "s", "type": "bytes32"},
]


def _router_fn(name: str, components: list[dict], payable: bool = False) -> dict:
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": "params", "type": "tuple", "components": components}],
        "outputs": [],
        "stateMutability": "payable" if payable else "nonpayable",
    }


ROUTER_ABI = [
    _router_fn("buy", _BUY_PARAMS, payable=True),
    _router_fn("sell", _SELL_PARAMS),
    _router_fn("sellPermit", _SELL_PERMIT_PARAMS),
]


def min_amount_out(amount_out_wei: int, slippage_bps: int) -> int:
    """amountOut * (10000 - slippage) / 10000, integer floor"""
    return amount_out_wei * (10000 - slippage_bps) // 10000


class NadFunLens:
    """Reads pricing and bonding-curve state from the Lens contract"""

    def __init__(self, chain: ChainClient, lens_address: Optional[str] = None):
        self.chain = chain
        self.lens_address = lens_address or get_settings().nadfun_contracts["lens"]

    async def get_amount_out(self, token: str, amount_in_wei: int, is_buy: bool) -> tuple[str, int]:
        router, amount_out = await self.chain.call_function(
            self.lens_address, LENS_ABI, "getAmountOut",
            self.chain.checksum(token), int(amount_in_wei), is_buy,
        )
        return router, int(amount_out)

    async def get_bonding_curve_state(self, token: str) -> tuple[int, bool, bool]:
        """
        Returns:
            (progress_bps, is_graduated, is_locked)

        Raises:
            AppError(CHAIN_READ_FAILED) if any of the three reads fails
        """
        checksummed = self.chain.checksum(token)
        progress, graduated, locked = await asyncio.gather(
            self.chain.call_function(self.lens_address, LENS_ABI, "getProgress", checksummed),
            self.chain.call_function(self.lens_address, LENS_ABI, "isGraduated", checksummed),
            self.chain.call_function(self.lens_address, LENS_ABI, "isLocked", checksummed),
        )
        return max(0, min(10000, int(progress))), bool(graduated), bool(locked)


class NadFunVenue(BaseVenue):
    """Swap venue for nad.fun tokens (bonding curve or graduated DEX pool)"""

    name = VenueName.NADFUN

    def __init__(
        self,
        chain: ChainClient,
        lens: Optional[NadFunLens] = None,
        deadline_seconds: Optional[int] = None,
    ):
        settings = get_settings()
        self.chain = chain
        self.lens = lens or NadFunLens(chain)
        self.contracts = settings.nadfun_contracts
        self.deadline_seconds = deadline_seconds or settings.tx_deadline_seconds

    def router_kind(self, router: str) -> str:
        if router.lower() == self.contracts["bonding_curve_router"].lower():
            return "bonding_curve"
        if router.lower() == self.contracts["dex_router"].lower():
            return "dex"
        return "unknown"

    async def quote(
        self,
        from_token: str,
        to_token: str,
        amount: float,
        slippage_bps: Optional[int] = None,
    ) -> Quote:
        is_buy = from_token.lower() == NATIVE_TOKEN_ADDRESS
        token = to_token if is_buy else from_token
        amount_in_wei = to_base_units(amount, 18)
        if amount_in_wei <= 0:
            raise QuoteInvalidError(f"Amount {amount} is too small to trade", {"token": token})

        router, amount_out_wei = await self.lens.get_amount_out(token, amount_in_wei, is_buy)

        if not router or router.lower() == ZERO_ADDRESS:
            raise QuoteInvalidError(
                f"Lens returned invalid router for token {token}. Token may not exist on nad.fun.",
                {"token": token},
            )
        if amount_out_wei == 0:
            raise QuoteInvalidError(
                f"Lens returned 0 amountOut for {amount} on token {token}. Liquidity may be depleted.",
                {"token": token, "is_buy": is_buy},
            )

        logger.info(
            f"[nadfun] {'BUY' if is_buy else 'SELL'} quote via {self.router_kind(router)} router: "
            f"{token} in={amount} out={from_base_units(amount_out_wei, 18)}"
        )
        return Quote(
            venue=self.name,
            from_token=from_token,
            to_token=to_token,
            amount_in=amount,
            amount_in_wei=amount_in_wei,
            amount_out=from_base_units(amount_out_wei, 18),
            amount_out_wei=amount_out_wei,
            router=router,
        )

    async def execute(self, quote: Quote, slippage_bps: int) -> SwapResult:
        if not quote.router:
            raise QuoteInvalidError("nad.fun quote has no router")

        router = quote.router
        recipient = self.chain.address
        deadline = int(time.time()) + self.deadline_seconds
        amount_out_min = min_amount_out(quote.amount_out_wei, slippage_bps)

        if quote.is_buy:
            token = self.chain.checksum(quote.to_token)
            data = self.chain.encode_call(
                router, ROUTER_ABI, "buy",
                (amount_out_min, token, recipient, deadline),
            )
            tx_hash = await self.chain.send_transaction(
                to=router, data=data, value=quote.amount_in_wei
            )
            method = "buy"
        else:
            tx_hash, method = await self._sell(quote, router, recipient, amount_out_min, deadline)

        receipt = await self.chain.wait_for_receipt(tx_hash)
        return SwapResult(
            tx_hash=tx_hash,
            venue=self.name,
            amount_in=quote.amount_in,
            amount_out=quote.amount_out,
            gas_used=receipt.get("gasUsed"),
            router=router,
            method=method,
        )

    async def _sell(
        self,
        quote: Quote,
        router: str,
        recipient: str,
        amount_out_min: int,
        deadline: int,
    ) -> tuple[str, str]:
        token = self.chain.checksum(quote.from_token)
        amount_in = quote.amount_in_wei

        try:
            v, r, s = await self.chain.sign_permit(token, router, amount_in, deadline)
            data = self.chain.encode_call(
                router, ROUTER_ABI, "sellPermit",
                (amount_in, amount_out_min, amount_in, token, recipient, deadline, v, r, s),
            )
            tx_hash = await self.chain.send_transaction(to=router, data=data)
            logger.info("[nadfun] sellPermit submitted (1 tx)")
            return tx_hash, "sellPermit"
        except (AppError, TradeError) as permit_err:
            logger.warning(f"[nadfun] sellPermit failed, falling back to approve+sell: {permit_err}")

        try:
            await self.chain.approve(token, router, amount_in)
        except AppError as e:
            raise ExecutionFailedError(f"Approve failed: {e.message}") from e

        data = self.chain.encode_call(
            router, ROUTER_ABI, "sell",
            (amount_in, amount_out_min, token, recipient, deadline),
        )
        tx_hash = await self.chain.send_transaction(to=router, data=data)
        return tx_hash, "approve+sell"
