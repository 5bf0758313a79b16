"""Voting session state machine tests."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from app.schemas.voting import EligibilityStatus, SessionState, SubmissionStatus, VoterIdentity
from app.services.voting_session import SessionRegistry
from app.utils.errors import ConflictError, ForbiddenError, InvalidInputError, NotFoundError

pytestmark = pytest.mark.anyio


async def test_happy_path_records_one_vote(controller, contract) -> None:
    view = await controller.load("e1")
    assert view.state is SessionState.READY
    assert view.can_confirm
    assert view.eligibility.status is EligibilityStatus.ELIGIBLE

    view = controller.select("c1")
    assert view.state is SessionState.CONFIRMING

    view = await controller.confirm()

    assert view.state is SessionState.SUCCEEDED
    assert view.submission.status is SubmissionStatus.CONFIRMED
    assert contract.votes["c1"] == 1
    assert contract.vote_calls == [("v1", "c1")]


async def test_voter_who_already_voted_can_browse_but_not_vote(controller, contract) -> None:
    contract.voted.add("v1")

    view = await controller.load("e1")

    assert view.state is SessionState.READY
    assert not view.can_confirm
    assert view.eligibility.status is EligibilityStatus.ALREADY_VOTED
    assert [c.id for c in view.election.candidates] == ["c1", "c2"]

    controller.select("c2")
    with pytest.raises(ConflictError) as exc_info:
        await controller.confirm()
    assert exc_info.value.code == "ALREADY_VOTED"
    assert contract.vote_calls == []


async def test_rapid_double_confirm_sends_one_vote(controller, contract) -> None:
    await controller.load("e1")
    controller.select("c1")

    first, second = await asyncio.gather(controller.confirm(), controller.confirm())

    assert contract.vote_calls == [("v1", "c1")]
    assert first.state is SessionState.SUCCEEDED
    assert second.state is SessionState.CONFIRMING
    assert controller.state is SessionState.SUCCEEDED

    again = await controller.confirm()
    assert again.state is SessionState.SUCCEEDED
    assert len(contract.vote_calls) == 1


async def test_confirm_rechecks_eligibility(controller, contract) -> None:
    """A vote cast in another tab after loading blocks this submission."""
    await controller.load("e1")
    controller.select("c1")
    contract.voted.add("v1")

    view = await controller.confirm()

    assert view.state is SessionState.FAILED
    assert view.failure.code == "ALREADY_VOTED"
    assert not view.failure.retryable
    assert contract.vote_calls == []


async def test_reverted_vote_retry_rechecks_before_resubmitting(controller, contract) -> None:
    await controller.load("e1")
    controller.select("c1")
    contract.revert_next_vote = True

    view = await controller.confirm()

    assert view.state is SessionState.FAILED
    assert view.failure.code == "LEDGER_REJECTED"
    assert view.failure.retryable
    assert view.submission.status is SubmissionStatus.FAILED

    reads_before_retry = contract.eligibility_reads
    view = await controller.retry()

    assert contract.eligibility_reads == reads_before_retry + 1
    assert view.state is SessionState.READY
    assert view.selected_candidate_id is None
    assert len(contract.vote_calls) == 1

    controller.select("c2")
    view = await controller.confirm()

    assert view.state is SessionState.SUCCEEDED
    assert contract.vote_calls == [("v1", "c1"), ("v1", "c2")]
    assert contract.votes == {"c1": 0, "c2": 1}


async def test_retry_after_vote_landed_disables_confirm(controller, contract) -> None:
    """If a failed-looking vote actually landed, the retry shows already voted."""
    await controller.load("e1")
    controller.select("c1")
    contract.finality_error = ConnectionError("reset by peer")

    view = await controller.confirm()
    assert view.failure.code == "NETWORK_ERROR"

    contract.voted.add("v1")
    contract.finality_error = None
    view = await controller.retry()

    assert view.state is SessionState.READY
    assert not view.can_confirm
    assert view.eligibility.status is EligibilityStatus.ALREADY_VOTED


async def test_unknown_election_fails_without_retry(controller) -> None:
    view = await controller.load("missing")

    assert view.state is SessionState.FAILED
    assert view.failure.code == "NOT_FOUND"
    assert not view.failure.retryable
    with pytest.raises(ConflictError):
        await controller.retry()


async def test_backend_crash_during_load_is_retryable(controller, supabase, monkeypatch) -> None:
    """A transport error while resolving the election fails the load instead of hanging."""
    table = supabase.table

    def unreachable(name):
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(supabase, "table", unreachable)

    view = await controller.load("e1")

    assert view.state is SessionState.FAILED
    assert view.failure.code == "NETWORK_ERROR"
    assert view.failure.retryable

    monkeypatch.setattr(supabase, "table", table)
    view = await controller.retry()

    assert view.state is SessionState.READY
    assert view.can_confirm


async def test_insufficient_contract_balance_retries_through_eligibility(
    controller, contract
) -> None:
    await controller.load("e1")
    controller.select("c1")
    contract.balance = 0

    view = await controller.confirm()

    assert view.state is SessionState.FAILED
    assert view.failure.code == "INSUFFICIENT_FUNDS"
    assert view.failure.retryable
    assert contract.vote_calls == []

    contract.balance = 10**18
    reads_before_retry = contract.eligibility_reads
    view = await controller.retry()

    assert contract.eligibility_reads == reads_before_retry + 1
    assert view.state is SessionState.READY

    controller.select("c1")
    view = await controller.confirm()

    assert view.state is SessionState.SUCCEEDED
    assert contract.vote_calls == [("v1", "c1")]


async def test_eligibility_error_fails_load(controller, contract) -> None:
    contract.read_error = ConnectionError("connection refused")

    view = await controller.load("e1")

    assert view.state is SessionState.FAILED
    assert view.failure.code == "ELIGIBILITY_ERROR"


async def test_selection_rules(controller) -> None:
    with pytest.raises(ConflictError):
        controller.select("c1")

    await controller.load("e1")
    with pytest.raises(InvalidInputError):
        controller.select("c9")
    with pytest.raises(ConflictError):
        await controller.confirm()

    controller.select("c1")
    view = controller.cancel_selection()
    assert view.state is SessionState.READY
    assert view.selected_candidate_id is None


async def test_detached_session_ignores_outcome(controller, contract) -> None:
    """Leaving the screen mid-submission does not cancel the vote but freezes the session."""
    await controller.load("e1")
    controller.select("c1")
    contract.finality_delay = 0.05

    task = asyncio.create_task(controller.confirm())
    await asyncio.sleep(0.01)
    assert controller.state is SessionState.SUBMITTING
    controller.detach()
    await task

    assert controller.state is SessionState.SUBMITTING
    assert contract.votes["c1"] == 1


async def test_registry_scopes_sessions_to_voter(directory, checker, submitter) -> None:
    registry = SessionRegistry(ttl_seconds=60, max_entries=2)
    identity = VoterIdentity(voter_id="v1", credential="token-v1")

    controller = registry.open(identity, directory, checker, submitter)

    assert registry.get(controller.session_id, "v1") is controller
    with pytest.raises(ForbiddenError):
        registry.get(controller.session_id, "v2")

    registry.close(controller.session_id, "v1")
    assert controller.detached
    with pytest.raises(NotFoundError):
        registry.get(controller.session_id, "v1")


async def test_registry_evicts_oldest_when_full(directory, checker, submitter) -> None:
    registry = SessionRegistry(ttl_seconds=60, max_entries=2)
    identity = VoterIdentity(voter_id="v1", credential="token-v1")

    first = registry.open(identity, directory, checker, submitter)
    registry.open(identity, directory, checker, submitter)
    registry.open(identity, directory, checker, submitter)

    assert len(registry) == 2
    assert first.detached
    with pytest.raises(NotFoundError):
        registry.get(first.session_id, "v1")
