"""Voting session endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool

from app.dependencies import (
    get_ballot_submitter,
    get_election_directory,
    get_eligibility_checker,
    get_session_registry,
    get_voter_identity,
)
from app.schemas.voting import CandidateSelection, SessionCreate, VoterIdentity
from app.services.ballot_service import BallotSubmitter
from app.services.election_directory import ElectionDirectory
from app.services.eligibility_service import EligibilityChecker
from app.services.voting_session import SessionRegistry

router = APIRouter()


@router.post("/sessions")
async def open_session(
    payload: SessionCreate,
    identity: VoterIdentity = Depends(get_voter_identity),
    directory: ElectionDirectory = Depends(get_election_directory),
    checker: EligibilityChecker = Depends(get_eligibility_checker),
    submitter: BallotSubmitter = Depends(get_ballot_submitter),
    registry: SessionRegistry = Depends(get_session_registry),
) -> dict:
    """Open a voting screen for an election and run the first eligibility check."""
    controller = registry.open(identity, directory, checker, submitter)
    session = await controller.load(payload.election_id)
    return {"session": session}


@router.get("/sessions/{session_id}")
async def get_session(
    session_id: str,
    identity: VoterIdentity = Depends(get_voter_identity),
    registry: SessionRegistry = Depends(get_session_registry),
) -> dict:
    """Return the current state of a voting session."""
    controller = registry.get(session_id, identity.voter_id)
    return {"session": controller.snapshot()}


@router.post("/sessions/{session_id}/selection")
async def select_candidate(
    session_id: str,
    payload: CandidateSelection,
    identity: VoterIdentity = Depends(get_voter_identity),
    registry: SessionRegistry = Depends(get_session_registry),
) -> dict:
    """Pick the candidate to confirm."""
    controller = registry.get(session_id, identity.voter_id)
    return {"session": controller.select(payload.candidate_id)}


@router.delete("/sessions/{session_id}/selection")
async def cancel_selection(
    session_id: str,
    identity: VoterIdentity = Depends(get_voter_identity),
    registry: SessionRegistry = Depends(get_session_registry),
) -> dict:
    """Dismiss the confirmation prompt."""
    controller = registry.get(session_id, identity.voter_id)
    return {"session": controller.cancel_selection()}


@router.post("/sessions/{session_id}/confirm")
async def confirm_vote(
    session_id: str,
    identity: VoterIdentity = Depends(get_voter_identity),
    registry: SessionRegistry = Depends(get_session_registry),
) -> dict:
    """Confirm the selected candidate and submit the vote."""
    controller = registry.get(session_id, identity.voter_id)
    return {"session": await controller.confirm()}


@router.post("/sessions/{session_id}/retry")
async def retry_session(
    session_id: str,
    identity: VoterIdentity = Depends(get_voter_identity),
    registry: SessionRegistry = Depends(get_session_registry),
) -> dict:
    """Restart a failed selection with a fresh eligibility check."""
    controller = registry.get(session_id, identity.voter_id)
    return {"session": await controller.retry()}


@router.delete("/sessions/{session_id}")
async def close_session(
    session_id: str,
    identity: VoterIdentity = Depends(get_voter_identity),
    registry: SessionRegistry = Depends(get_session_registry),
) -> dict:
    """Leave the voting screen."""
    registry.close(session_id, identity.voter_id)
    return {"closed": True}


@router.get("/eligibility")
async def check_eligibility(
    election_id: str,
    identity: VoterIdentity = Depends(get_voter_identity),
    directory: ElectionDirectory = Depends(get_election_directory),
    checker: EligibilityChecker = Depends(get_eligibility_checker),
) -> dict:
    """Return the caller's eligibility for one election."""
    election = await run_in_threadpool(
        directory.fetch_election, election_id, identity.credential
    )
    eligibility = await checker.check_eligibility(identity.voter_id, election)
    return {"eligibility": eligibility}
