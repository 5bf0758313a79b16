"""Pytest fixtures and in-memory collaborators for backend tests."""

from __future__ import annotations

import asyncio
import os
from datetime import timedelta
from types import SimpleNamespace
from typing import Any

import pytest
from fastapi.testclient import TestClient


def _set_default_env() -> None:
    os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
    os.environ.setdefault("SUPABASE_ANON_KEY", "anon-key")
    os.environ.setdefault("SUPABASE_SERVICE_KEY", "service-key")
    os.environ.setdefault("ENABLE_SCHEDULER", "false")


_set_default_env()

from web3.exceptions import ContractLogicError  # noqa: E402

from app.schemas.election import CandidateRef, ElectionDescriptor  # noqa: E402
from app.schemas.voting import VoterIdentity  # noqa: E402
from app.services.auth_service import AuthService, clear_token_cache  # noqa: E402
from app.services.ballot_service import BallotSubmitter  # noqa: E402
from app.services.common import clear_membership_cache  # noqa: E402
from app.services.election_directory import ElectionDirectory  # noqa: E402
from app.services.eligibility_service import EligibilityChecker  # noqa: E402
from app.services.ledger_service import LedgerService, TransactionReceipt  # noqa: E402
from app.services.tally_service import TallyAggregator  # noqa: E402
from app.services.voting_session import SessionRegistry, VotingSessionController  # noqa: E402
from app.utils.time import now_utc  # noqa: E402

ELECTION_ADDRESS = "0x" + "12" * 20
OTHER_ADDRESS = "0x" + "34" * 20
VOTER_TOKEN = "token-v1"
ADMIN_TOKEN = "token-admin"
OUTSIDER_TOKEN = "token-outsider"


class FakeResponse:
    def __init__(self, data: list[dict[str, Any]]) -> None:
        self.data = data


class FakeQuery:
    """Subset of the PostgREST query builder over in-memory rows."""

    def __init__(
        self,
        store: FakeSupabase,
        table: str,
        action: str = "select",
        payload: dict[str, Any] | None = None,
    ) -> None:
        self.store = store
        self.table = table
        self.action = action
        self.payload = payload or {}
        self.filters: list[Any] = []
        self._order: tuple[str, bool] | None = None
        self._limit: int | None = None

    def select(self, columns: str = "*", **_: Any) -> FakeQuery:
        return self

    def eq(self, key: str, value: Any) -> FakeQuery:
        self.filters.append(lambda row, k=key, v=value: str(row.get(k)) == str(v))
        return self

    def neq(self, key: str, value: Any) -> FakeQuery:
        self.filters.append(lambda row, k=key, v=value: str(row.get(k)) != str(v))
        return self

    def lt(self, key: str, value: Any) -> FakeQuery:
        self.filters.append(
            lambda row, k=key, v=value: row.get(k) is not None and str(row[k]) < str(v)
        )
        return self

    def in_(self, key: str, values: list[Any]) -> FakeQuery:
        wanted = {str(value) for value in values}
        self.filters.append(lambda row, k=key: str(row.get(k)) in wanted)
        return self

    def order(self, key: str, desc: bool = False) -> FakeQuery:
        self._order = (key, desc)
        return self

    def limit(self, count: int) -> FakeQuery:
        self._limit = count
        return self

    def execute(self) -> FakeResponse:
        rows = [
            row
            for row in self.store.tables.setdefault(self.table, [])
            if all(check(row) for check in self.filters)
        ]
        if self.action == "update":
            for row in rows:
                row.update(self.payload)
            return FakeResponse([dict(row) for row in rows])
        if self._order:
            key, desc = self._order
            rows = sorted(rows, key=lambda row: str(row.get(key)), reverse=desc)
        if self._limit:
            rows = rows[: self._limit]
        return FakeResponse([dict(row) for row in rows])


class FakeTable:
    def __init__(self, store: FakeSupabase, name: str) -> None:
        self.store = store
        self.name = name

    def select(self, columns: str = "*", **_: Any) -> FakeQuery:
        return FakeQuery(self.store, self.name)

    def update(self, payload: dict[str, Any]) -> FakeQuery:
        return FakeQuery(self.store, self.name, action="update", payload=payload)


class FakeAuth:
    def __init__(self) -> None:
        self.users: dict[str, Any] = {}

    def get_user(self, token: str) -> Any:
        user = self.users.get(token)
        if user is None:
            raise RuntimeError("invalid JWT")
        return SimpleNamespace(user=user)


class FakeSupabase:
    """In-memory stand-in for the Supabase client."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.auth = FakeAuth()

    def table(self, name: str) -> FakeTable:
        return FakeTable(self, name)


class FakeElectionContract:
    """In-memory election contract with controllable failures."""

    def __init__(self, voters: set[str], candidates: list[str]) -> None:
        self.voters = set(voters)
        self.voted: set[str] = set()
        self.votes = {candidate: 0 for candidate in candidates}
        self.balance = 10**18
        self.vote_calls: list[tuple[str, str]] = []
        self.eligibility_reads = 0
        self.read_error: Exception | None = None
        self.finality_error: Exception | None = None
        self.finality_delay = 0.0
        self.revert_next_vote = False
        self.has_bulk_accessor = True
        self.bulk_read_error: Exception | None = None
        self.read_delays: dict[str, float] = {}
        self._in_flight: dict[str, tuple[str, str]] = {}

    async def is_voter(self, voter_id: str) -> bool:
        self.eligibility_reads += 1
        await asyncio.sleep(0)
        if self.read_error is not None:
            raise self.read_error
        return voter_id in self.voters

    async def has_voted(self, voter_id: str) -> bool:
        await asyncio.sleep(0)
        if self.read_error is not None:
            raise self.read_error
        return voter_id in self.voted

    async def vote(self, voter_id: str, candidate_id: str) -> str:
        self.vote_calls.append((voter_id, candidate_id))
        tx_hash = f"0x{len(self.vote_calls):064x}"
        self._in_flight[tx_hash] = (voter_id, candidate_id)
        return tx_hash

    async def wait_for_finality(self, tx_hash: str) -> TransactionReceipt:
        await asyncio.sleep(self.finality_delay)
        if self.finality_error is not None:
            raise self.finality_error
        voter_id, candidate_id = self._in_flight.pop(tx_hash)
        block = 100 + len(self.vote_calls)
        if self.revert_next_vote or voter_id in self.voted or voter_id not in self.voters:
            self.revert_next_vote = False
            return TransactionReceipt(succeeded=False, block_number=block)
        self.voted.add(voter_id)
        self.votes[candidate_id] = self.votes.get(candidate_id, 0) + 1
        return TransactionReceipt(succeeded=True, block_number=block)

    async def get_votes(self, candidate_id: str) -> int:
        await asyncio.sleep(self.read_delays.get(candidate_id, 0))
        return self.votes.get(candidate_id, 0)

    async def get_all_votes(self) -> list[int]:
        if self.bulk_read_error is not None:
            raise self.bulk_read_error
        if not self.has_bulk_accessor:
            raise ContractLogicError("execution reverted")
        return list(self.votes.values())

    async def get_contract_balance(self) -> int:
        return self.balance


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_caches():
    clear_token_cache()
    clear_membership_cache()
    yield
    clear_token_cache()
    clear_membership_cache()


@pytest.fixture
def window():
    """Voting window that is open right now."""
    now = now_utc()
    return now - timedelta(days=1), now + timedelta(days=1)


@pytest.fixture
def election(window) -> ElectionDescriptor:
    start, end = window
    return ElectionDescriptor(
        id="e1",
        name="Board election",
        community_id="comm-1",
        contract_address=ELECTION_ADDRESS,
        start_time=start,
        end_time=end,
        candidates=(
            CandidateRef(id="c1", display_name="Alice"),
            CandidateRef(id="c2", display_name="Bob"),
        ),
    )


@pytest.fixture
def contract() -> FakeElectionContract:
    return FakeElectionContract(voters={"v1", "v2"}, candidates=["c1", "c2"])


@pytest.fixture
def contracts(contract: FakeElectionContract) -> dict[str, FakeElectionContract]:
    return {
        ELECTION_ADDRESS.lower(): contract,
        OTHER_ADDRESS.lower(): FakeElectionContract(voters={"v1"}, candidates=["c1", "c2"]),
    }


@pytest.fixture
def ledger(contracts: dict[str, FakeElectionContract]) -> LedgerService:
    return LedgerService(lambda address: contracts[address.lower()])


@pytest.fixture
def checker(ledger: LedgerService) -> EligibilityChecker:
    return EligibilityChecker(ledger)


@pytest.fixture
def submitter(ledger: LedgerService) -> BallotSubmitter:
    return BallotSubmitter(ledger)


@pytest.fixture
def aggregator(ledger: LedgerService) -> TallyAggregator:
    return TallyAggregator(ledger)


@pytest.fixture
def supabase(window) -> FakeSupabase:
    """Backend rows for one community with one open and one ended election."""
    start, end = window
    store = FakeSupabase()
    store.auth.users = {
        VOTER_TOKEN: SimpleNamespace(id="user-1", user_metadata={"voter_id": "v1"}),
        ADMIN_TOKEN: SimpleNamespace(id="user-admin", user_metadata={"voter_id": "v-admin"}),
        OUTSIDER_TOKEN: SimpleNamespace(id="user-out", user_metadata={"voter_id": "v9"}),
    }
    store.tables = {
        "communities": [{"id": "comm-1", "key": "board-key", "name": "Board"}],
        "community_members": [
            {"user_id": "user-1", "community_id": "comm-1", "role": "user"},
            {"user_id": "user-admin", "community_id": "comm-1", "role": "admin"},
        ],
        "users": [
            {"id": "user-alice", "username": "c1", "display_name": "Alice"},
            {"id": "user-bob", "username": "c2", "display_name": "Bob"},
        ],
        "elections": [
            {
                "id": "e1",
                "community_id": "comm-1",
                "election_name": "Board election",
                "election_address": ELECTION_ADDRESS,
                "start_date": start.isoformat(),
                "end_date": end.isoformat(),
                "status": "active",
            },
            {
                "id": "e0",
                "community_id": "comm-1",
                "election_name": "Last year",
                "election_address": OTHER_ADDRESS,
                "start_date": (start - timedelta(days=30)).isoformat(),
                "end_date": (start - timedelta(days=20)).isoformat(),
                "status": "active",
            },
        ],
        "election_candidates": [
            {"election_id": "e1", "user_id": "user-alice", "position": 0},
            {"election_id": "e1", "user_id": "user-bob", "position": 1},
            {"election_id": "e0", "user_id": "user-bob", "position": 0},
            {"election_id": "e0", "user_id": "user-alice", "position": 1},
        ],
    }
    return store


@pytest.fixture
def directory(supabase: FakeSupabase) -> ElectionDirectory:
    return ElectionDirectory(supabase, AuthService(supabase))


@pytest.fixture
def identity() -> VoterIdentity:
    return VoterIdentity(voter_id="v1", credential=VOTER_TOKEN)


@pytest.fixture
def controller(
    identity: VoterIdentity,
    directory: ElectionDirectory,
    checker: EligibilityChecker,
    submitter: BallotSubmitter,
) -> VotingSessionController:
    return VotingSessionController("session-1", identity, directory, checker, submitter)


@pytest.fixture
def client(
    supabase: FakeSupabase,
    ledger: LedgerService,
    submitter: BallotSubmitter,
) -> TestClient:
    """Create a FastAPI test client wired to the in-memory collaborators."""
    from app import dependencies
    from app.main import app

    registry = SessionRegistry(ttl_seconds=60, max_entries=10)
    app.dependency_overrides = {
        dependencies.get_auth_service: lambda: AuthService(supabase),
        dependencies.get_db_client: lambda: supabase,
        dependencies.get_ledger_service: lambda: ledger,
        dependencies.get_ballot_submitter: lambda: submitter,
        dependencies.get_session_registry: lambda: registry,
    }
    yield TestClient(app)
    app.dependency_overrides = {}
