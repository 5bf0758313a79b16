"""Election contract access and ledger error normalization."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import NamedTuple, Protocol, TypeVar

from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from app.config import settings
from app.utils.errors import AppError, LedgerRejectedError, LedgerTimeoutError, NetworkError
from app.utils.ledger_client import ELECTION_ABI, get_relayer_account, get_web3

logger = logging.getLogger(__name__)
T = TypeVar("T")


class TransactionReceipt(NamedTuple):
    """Finalized outcome of a ledger transaction."""

    succeeded: bool
    block_number: int | None = None


class ElectionContract(Protocol):
    """Calls the ballot API needs from one deployed election contract."""

    async def is_voter(self, voter_id: str) -> bool: ...

    async def has_voted(self, voter_id: str) -> bool: ...

    async def vote(self, voter_id: str, candidate_id: str) -> str: ...

    async def wait_for_finality(self, tx_hash: str) -> TransactionReceipt: ...

    async def get_votes(self, candidate_id: str) -> int: ...

    async def get_all_votes(self) -> list[int]: ...

    async def get_contract_balance(self) -> int: ...


class Web3ElectionContract:
    """Election contract reached over JSON-RPC, with votes signed by the relayer."""

    # One relayer account signs every vote, so nonce assignment is serialized.
    _nonce_lock: asyncio.Lock | None = None

    def __init__(self, w3: AsyncWeb3, address: str) -> None:
        self.w3 = w3
        self.address = AsyncWeb3.to_checksum_address(address)
        self.contract = w3.eth.contract(address=self.address, abi=ELECTION_ABI)

    @classmethod
    def _lock(cls) -> asyncio.Lock:
        if cls._nonce_lock is None:
            cls._nonce_lock = asyncio.Lock()
        return cls._nonce_lock

    async def is_voter(self, voter_id: str) -> bool:
        return bool(await self.contract.functions.isVoter(voter_id).call())

    async def has_voted(self, voter_id: str) -> bool:
        return bool(await self.contract.functions.hasVoted(voter_id).call())

    async def vote(self, voter_id: str, candidate_id: str) -> str:
        account = get_relayer_account()
        async with self._lock():
            nonce = await self.w3.eth.get_transaction_count(account.address, "pending")
            tx = await self.contract.functions.vote(voter_id, candidate_id).build_transaction(
                {
                    "from": account.address,
                    "nonce": nonce,
                    "gas": settings.vote_gas_limit,
                }
            )
            signed = account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        return self.w3.to_hex(tx_hash)

    async def wait_for_finality(self, tx_hash: str) -> TransactionReceipt:
        receipt = await self.w3.eth.wait_for_transaction_receipt(
            tx_hash,
            timeout=settings.ledger_finality_timeout_seconds,
            poll_latency=settings.ledger_receipt_poll_seconds,
        )
        return TransactionReceipt(
            succeeded=receipt["status"] == 1,
            block_number=receipt.get("blockNumber"),
        )

    async def get_votes(self, candidate_id: str) -> int:
        return int(await self.contract.functions.getVotes(candidate_id).call())

    async def get_all_votes(self) -> list[int]:
        return [int(count) for count in await self.contract.functions.getAllVotes().call()]

    async def get_contract_balance(self) -> int:
        return int(await self.contract.functions.getContractBalance().call())


def web3_contract_factory(address: str) -> ElectionContract:
    """Build a JSON-RPC backed contract for ``address``."""
    return Web3ElectionContract(get_web3(), address)


class LedgerService:
    """Resolve election contracts and run ledger calls with normalized errors."""

    def __init__(self, contract_factory: Callable[[str], ElectionContract]) -> None:
        self.contract_factory = contract_factory
        self._contracts: dict[str, ElectionContract] = {}

    def contract(self, address: str) -> ElectionContract:
        """Return the contract handle for an election address."""
        handle = self._contracts.get(address)
        if handle is None:
            handle = self.contract_factory(address)
            self._contracts[address] = handle
        return handle

    async def execute(self, operation: str, call: Awaitable[T]) -> T:
        """Await a ledger call and translate transport/contract failures.

        Raises:
            LedgerRejectedError: the contract reverted.
            LedgerTimeoutError: the ledger client gave up waiting.
            NetworkError: any other RPC or transport failure.
        """
        started = time.perf_counter()
        try:
            result = await call
        except AppError:
            raise
        except ContractLogicError as exc:
            message = getattr(exc, "message", None) or str(exc) or "execution reverted"
            raise LedgerRejectedError(f"{operation} reverted: {message}") from exc
        except (TimeExhausted, asyncio.TimeoutError) as exc:
            raise LedgerTimeoutError(f"Timed out waiting for {operation}") from exc
        except (Web3Exception, OSError) as exc:
            raise NetworkError(f"Ledger call {operation} failed: {exc}") from exc
        except Exception as exc:
            logger.exception("Unexpected ledger failure in %s", operation)
            raise NetworkError(f"Ledger call {operation} failed") from exc

        elapsed_ms = (time.perf_counter() - started) * 1000
        threshold_ms = settings.slow_ledger_call_log_threshold_ms
        if threshold_ms > 0 and elapsed_ms >= threshold_ms:
            logger.warning("Slow ledger call %s %.1fms", operation, elapsed_ms)
        return result
