"""
Chain client: contract reads, transaction signing and submission on Monad.

Wraps an AsyncWeb3 connection and the agent's eth-account signer. The
private key is supplied by configuration and never generated or stored
here. Every network call is bounded by a hard timeout.
"""

import asyncio
import logging
from typing import Any, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import TimeExhausted

from ..core.config import get_settings
from ..core.errors import AppError, ErrorCode
from ..core.tokens import from_base_units
from .base import ExecutionFailedError

logger = logging.getLogger(__name__)

# Gas estimate headroom
GAS_BUFFER = 1.2

ERC20_ABI = [
    {
        "type": "function",
        "name": "name",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "decimals",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "balanceOf",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "nonces",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "allowance",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "approve",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
    },
]

PERMIT_TYPES = {
    "Permit": [
        {"name": "owner", "type": "address"},
        {"name": "spender", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
        {"name": "deadline", "type": "uint256"},
    ]
}


class ChainClient:
    """
    Async access to the Monad RPC for one signer.

    Usage:
        chain = ChainClient.from_settings()
        balance = await chain.get_native_balance(chain.address)
        tx_hash = await chain.send_transaction(to=router, data=calldata, value=wei)
        receipt = await chain.wait_for_receipt(tx_hash)
    """

    def __init__(
        self,
        rpc_url: str,
        chain_id: int,
        private_key: Optional[str] = None,
        read_timeout: float = 8.0,
        confirmation_timeout: float = 60.0,
    ):
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.read_timeout = read_timeout
        self.confirmation_timeout = confirmation_timeout
        self.w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self._account: Optional[LocalAccount] = (
            Account.from_key(private_key) if private_key else None
        )

    @classmethod
    def from_settings(cls) -> "ChainClient":
        settings = get_settings()
        return cls(
            rpc_url=settings.rpc_url,
            chain_id=settings.chain_id,
            private_key=settings.agent_private_key or None,
            read_timeout=settings.rpc_timeout,
            confirmation_timeout=settings.confirmation_timeout,
        )

    @property
    def account(self) -> LocalAccount:
        if self._account is None:
            raise AppError(
                ErrorCode.SIGNER_NOT_CONFIGURED,
                "Agent signer is not configured (AGENT_PRIVATE_KEY)",
            )
        return self._account

    @property
    def address(self) -> str:
        return self.account.address

    @staticmethod
    def checksum(address: str) -> str:
        return AsyncWeb3.to_checksum_address(address)

    # ==================== Reads ====================

    def _contract(self, address: str, abi: list[dict]):
        return self.w3.eth.contract(address=self.checksum(address), abi=abi)

    async def call_function(self, address: str, abi: list[dict], fn_name: str, *args) -> Any:
        """Call a view function with the read timeout."""
        fn = getattr(self._contract(address, abi).functions, fn_name)(*args)
        try:
            return await asyncio.wait_for(fn.call(), timeout=self.read_timeout)
        except asyncio.TimeoutError as e:
            raise AppError(
                ErrorCode.CHAIN_READ_FAILED,
                f"{fn_name} on {address} timed out after {self.read_timeout}s",
            ) from e
        except Exception as e:
            raise AppError(
                ErrorCode.CHAIN_READ_FAILED,
                f"{fn_name} on {address} failed",
                internal_message=str(e),
            ) from e

    def encode_call(self, address: str, abi: list[dict], fn_name: str, *args) -> str:
        """ABI-encode calldata for a contract function."""
        return self._contract(address, abi).encode_abi(fn_name, args=list(args))

    async def get_block_number(self) -> int:
        return await asyncio.wait_for(self.w3.eth.block_number, timeout=self.read_timeout)

    async def get_native_balance(self, address: str) -> float:
        """Native MON balance in human units"""
        wei = await asyncio.wait_for(
            self.w3.eth.get_balance(self.checksum(address)), timeout=self.read_timeout
        )
        return from_base_units(wei, 18)

    async def get_token_balance(self, token: str, owner: str, decimals: int = 18) -> float:
        raw = await self.call_function(token, ERC20_ABI, "balanceOf", self.checksum(owner))
        return from_base_units(raw, decimals)

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        return await self.call_function(
            token, ERC20_ABI, "allowance", self.checksum(owner), self.checksum(spender)
        )

    async def get_event_logs(
        self,
        address: str,
        abi: list[dict],
        event_name: str,
        from_block: int,
        to_block: int,
    ) -> list[Any]:
        """Decoded logs of one contract event over an inclusive block range."""
        event = getattr(self._contract(address, abi).events, event_name)
        return await asyncio.wait_for(
            event().get_logs(from_block=from_block, to_block=to_block),
            timeout=self.read_timeout,
        )

    # ==================== Writes ====================

    async def send_transaction(
        self,
        to: str,
        data: str,
        value: int = 0,
        gas: Optional[int] = None,
    ) -> str:
        """
        Sign and broadcast a transaction from the agent wallet.

        Returns:
            The transaction hash (0x-prefixed hex)

        Raises:
            ExecutionFailedError: building, signing or broadcasting failed
        """
        account = self.account
        try:
            tx: dict[str, Any] = {
                "from": account.address,
                "to": self.checksum(to),
                "data": data,
                "value": int(value),
                "chainId": self.chain_id,
            }
            tx["nonce"] = await self.w3.eth.get_transaction_count(account.address, "pending")
            if gas is None:
                estimated = await self.w3.eth.estimate_gas(tx)
                gas = int(estimated * GAS_BUFFER)
            tx["gas"] = int(gas)
            tx["gasPrice"] = await self.w3.eth.gas_price
            tx.pop("from")

            signed = account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except AppError:
            raise
        except Exception as e:
            raise ExecutionFailedError(
                f"Transaction submission failed: {e}",
                code=ErrorCode.SUBMISSION_FAILED,
                details={"to": to},
            ) from e

        tx_hex = AsyncWeb3.to_hex(tx_hash)
        logger.info(f"Submitted tx {tx_hex} to {to} (value={value})")
        return tx_hex

    async def wait_for_receipt(self, tx_hash: str, timeout: Optional[float] = None) -> dict:
        """
        Wait for a receipt and fail on revert.

        Raises:
            ExecutionFailedError: timeout (CONFIRMATION_TIMEOUT) or
                status 0 ("Transaction reverted")
        """
        timeout = timeout or self.confirmation_timeout
        try:
            receipt = await asyncio.wait_for(
                self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout),
                timeout=timeout + 5,
            )
        except (TimeExhausted, asyncio.TimeoutError) as e:
            raise ExecutionFailedError(
                f"Transaction {tx_hash} not confirmed within {timeout:.0f}s",
                code=ErrorCode.CONFIRMATION_TIMEOUT,
                tx_hash=tx_hash,
            ) from e

        if receipt["status"] == 0:
            raise ExecutionFailedError(
                "Transaction reverted",
                code=ErrorCode.TRANSACTION_REVERTED,
                tx_hash=tx_hash,
            )
        return dict(receipt)

    async def approve(self, token: str, spender: str, amount: int) -> str:
        """Send an ERC-20 approve and wait for its receipt."""
        data = self.encode_call(token, ERC20_ABI, "approve", self.checksum(spender), int(amount))
        tx_hash = await self.send_transaction(to=token, data=data)
        await self.wait_for_receipt(tx_hash)
        logger.info(f"Approved {amount} of {token} for {spender}")
        return tx_hash

    async def sign_permit(
        self,
        token: str,
        spender: str,
        value: int,
        deadline: int,
    ) -> tuple[int, bytes, bytes]:
        """
        Sign an EIP-2612 permit for ``spender`` in the token's domain.

        Returns:
            (v, r, s) ready for a router's *Permit call
        """
        account = self.account
        token_name, nonce = await asyncio.gather(
            self.call_function(token, ERC20_ABI, "name"),
            self.call_function(token, ERC20_ABI, "nonces", account.address),
        )
        domain = {
            "name": token_name,
            "version": "1",
            "chainId": self.chain_id,
            "verifyingContract": self.checksum(token),
        }
        message = {
            "owner": account.address,
            "spender": self.checksum(spender),
            "value": int(value),
            "nonce": int(nonce),
            "deadline": int(deadline),
        }
        signed = account.sign_typed_data(domain, PERMIT_TYPES, message)
        return signed.v, signed.r.to_bytes(32, "big"), signed.s.to_bytes(32, "big")

    async def close(self) -> None:
        await self.w3.provider.disconnect()
