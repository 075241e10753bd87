"""
Relay solver network venue.

POST /quote returns a list of steps; every transaction item of every step
is sent in order from the agent wallet (an approval step, when present,
comes first) and confirmed before the next one.
"""

import logging
from typing import Optional

import httpx

from ..core.circuit_breaker import get_venue_circuit_breaker
from ..core.config import get_settings
from ..core.tokens import (
    MONAD_MAINNET_CHAIN_ID,
    from_base_units,
    is_known_token,
    resolve_token,
    to_base_units,
)
from .base import BaseVenue, Quote, QuoteInvalidError, SwapResult, VenueName
from .chain import ChainClient

logger = logging.getLogger(__name__)


def _to_int(value) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, int):
        return value
    text = str(value)
    return int(text, 16) if text.lower().startswith("0x") else int(text)


class RelayVenue(BaseVenue):
    """Swap venue backed by the Relay quote API"""

    name = VenueName.RELAY
    requote_on_retry = True

    def __init__(
        self,
        chain: ChainClient,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.chain = chain
        self.api_url = settings.relay_api_url.rstrip("/")
        self.api_key = settings.relay_api_key
        self._client = http_client or httpx.AsyncClient(timeout=settings.relay_timeout)
        self._breaker = get_venue_circuit_breaker(self.name.value)

    def supports(self, token_address: str) -> bool:
        # Relay routes any liquid token; the known list is what we trust
        return is_known_token(token_address)

    async def _fetch_quote(self, body: dict) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        response = await self._client.post(f"{self.api_url}/quote", json=body, headers=headers)
        if response.status_code >= 400:
            raise QuoteInvalidError(
                f"Relay quote failed ({response.status_code}): {response.text[:200]}",
                {"status": response.status_code},
            )
        return response.json()

    @staticmethod
    def extract_transactions(data: dict) -> list[dict]:
        """Flatten transaction items of all steps, in order."""
        transactions = []
        for step in data.get("steps") or []:
            if step.get("kind", "transaction") != "transaction":
                continue
            for item in step.get("items") or []:
                tx = item.get("data")
                if tx and tx.get("to") and tx.get("data"):
                    transactions.append(tx)
        return transactions

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

        body = {
            "user": self.chain.address,
            "originChainId": MONAD_MAINNET_CHAIN_ID,
            "destinationChainId": MONAD_MAINNET_CHAIN_ID,
            "originCurrency": source.address,
            "destinationCurrency": target.address,
            "amount": str(amount_in_wei),
            "tradeType": "EXACT_INPUT",
            "recipient": self.chain.address,
        }
        if slippage_bps:
            body["slippageTolerance"] = str(slippage_bps)

        data = await self._breaker.call(self._fetch_quote, body)

        transactions = self.extract_transactions(data)
        if not transactions:
            raise QuoteInvalidError("Relay quote did not return transaction data")

        currency_out = (data.get("details") or {}).get("currencyOut") or {}
        amount_out_wei = _to_int(currency_out.get("amount"))
        if amount_out_wei <= 0:
            raise QuoteInvalidError("Relay quote returned zero output amount")

        logger.info(
            f"[relay] quote {source.symbol}->{target.symbol} in={amount} "
            f"out={from_base_units(amount_out_wei, target.decimals)} steps={len(transactions)}"
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
            transactions=transactions,
            slippage_bps=slippage_bps,
            raw=data,
        )

    async def execute(self, quote: Quote, slippage_bps: int) -> SwapResult:
        if not quote.transactions:
            raise QuoteInvalidError("Relay quote has no transactions")

        tx_hash = ""
        gas_used = 0
        for tx in quote.transactions:
            chain_id = tx.get("chainId")
            if chain_id and _to_int(chain_id) != MONAD_MAINNET_CHAIN_ID:
                raise QuoteInvalidError(f"Relay step targets chain {chain_id}")
            tx_hash = await self.chain.send_transaction(
                to=tx["to"],
                data=tx["data"],
                value=_to_int(tx.get("value")),
                gas=_to_int(tx.get("gas")) or None,
            )
            receipt = await self.chain.wait_for_receipt(tx_hash)
            gas_used += int(receipt.get("gasUsed") or 0)

        return SwapResult(
            tx_hash=tx_hash,
            venue=self.name,
            amount_in=quote.amount_in,
            amount_out=quote.amount_out,
            gas_used=gas_used or None,
            router=quote.transactions[-1]["to"],
            method="relay",
        )

    async def close(self) -> None:
        await self._client.aclose()
