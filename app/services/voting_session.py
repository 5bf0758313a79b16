"""Voting screen session state machine."""

from __future__ import annotations

import logging
import time
import uuid

from fastapi.concurrency import run_in_threadpool

from app.schemas.election import ElectionDescriptor
from app.schemas.voting import (
    BallotSubmission,
    EligibilityResult,
    SessionFailure,
    SessionState,
    SessionView,
    SubmissionStatus,
    VoterIdentity,
)
from app.services.ballot_service import BallotSubmitter
from app.services.election_directory import ElectionDirectory
from app.services.eligibility_service import EligibilityChecker
from app.utils.errors import (
    AppError,
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

TERMINAL_STATES = frozenset({SessionState.SUCCEEDED, SessionState.FAILED})


def _eligibility_failure(result: EligibilityResult) -> SessionFailure:
    if result.is_error:
        return SessionFailure(code="ELIGIBILITY_ERROR", message=result.reason, retryable=True)
    return SessionFailure(code=result.status.value.upper(), message=result.reason)


class VotingSessionController:
    """Drive one voter through one election selection.

    idle -> loading -> ready -> confirming -> submitting -> succeeded | failed.
    Only the first confirm of a selection reaches the ledger; a retry starts
    the selection over from idle so eligibility is always re-read first.
    """

    def __init__(
        self,
        session_id: str,
        identity: VoterIdentity,
        directory: ElectionDirectory,
        checker: EligibilityChecker,
        submitter: BallotSubmitter,
    ) -> None:
        self.session_id = session_id
        self.identity = identity
        self.directory = directory
        self.checker = checker
        self.submitter = submitter
        self.detached = False
        self.election_id: str | None = None
        self._reset()

    def _reset(self) -> None:
        self.state = SessionState.IDLE
        self.election: ElectionDescriptor | None = None
        self.eligibility: EligibilityResult | None = None
        self.selected_candidate_id: str | None = None
        self.submission: BallotSubmission | None = None
        self.failure: SessionFailure | None = None
        self._submit_claimed = False

    @property
    def can_confirm(self) -> bool:
        """True when the confirm action should be enabled."""
        return (
            self.state in (SessionState.READY, SessionState.CONFIRMING)
            and self.eligibility is not None
            and self.eligibility.is_eligible
        )

    def _fail(self, failure: SessionFailure) -> SessionView:
        self.state = SessionState.FAILED
        self.failure = failure
        logger.info(
            "Voting session %s failed: %s (%s)", self.session_id, failure.code, failure.message
        )
        return self.snapshot()

    def _fail_with(self, exc: AppError) -> SessionView:
        return self._fail(
            SessionFailure(code=exc.code, message=exc.message, retryable=exc.retryable)
        )

    def _ignored(self, what: str) -> SessionView:
        logger.info("Voting session %s detached; ignoring %s", self.session_id, what)
        return self.snapshot()

    def snapshot(self) -> SessionView:
        """Return the current session view."""
        return SessionView(
            session_id=self.session_id,
            state=self.state,
            election_id=self.election_id,
            election=self.election,
            eligibility=self.eligibility,
            can_confirm=self.can_confirm,
            selected_candidate_id=self.selected_candidate_id,
            submission=self.submission,
            failure=self.failure,
        )

    async def load(self, election_id: str) -> SessionView:
        """Resolve the election and run the initial eligibility check."""
        if self.state is not SessionState.IDLE:
            raise ConflictError("This session already has an election", code="INVALID_STATE")

        self.election_id = election_id
        self.state = SessionState.LOADING
        try:
            election = await run_in_threadpool(
                self.directory.fetch_election, election_id, self.identity.credential
            )
        except AppError as exc:
            if self.detached:
                return self._ignored("election lookup failure")
            return self._fail_with(exc)
        except Exception:
            logger.exception("Election lookup crashed in session %s", self.session_id)
            if self.detached:
                return self._ignored("election lookup crash")
            return self._fail(
                SessionFailure(
                    code="NETWORK_ERROR",
                    message="Could not load the election",
                    retryable=True,
                )
            )
        if self.detached:
            return self._ignored("election lookup")
        self.election = election

        eligibility = await self.checker.check_eligibility(self.identity.voter_id, election)
        if self.detached:
            return self._ignored("eligibility result")
        self.eligibility = eligibility
        if eligibility.is_error:
            return self._fail(_eligibility_failure(eligibility))

        # Denied voters still get a ready screen so they can browse the roster.
        self.state = SessionState.READY
        return self.snapshot()

    def select(self, candidate_id: str) -> SessionView:
        """Pick (or change) the candidate awaiting confirmation."""
        if self.state not in (SessionState.READY, SessionState.CONFIRMING) or self._submit_claimed:
            raise ConflictError("A candidate cannot be selected now", code="INVALID_STATE")
        if self.election is None or self.election.candidate(candidate_id) is None:
            raise InvalidInputError("Candidate is not on this election's ballot")

        self.selected_candidate_id = candidate_id
        self.state = SessionState.CONFIRMING
        return self.snapshot()

    def cancel_selection(self) -> SessionView:
        """Close the confirmation prompt without voting."""
        if self.state is not SessionState.CONFIRMING or self._submit_claimed:
            raise ConflictError("There is no selection to cancel", code="INVALID_STATE")
        self.selected_candidate_id = None
        self.state = SessionState.READY
        return self.snapshot()

    def _on_broadcast(self, submission: BallotSubmission) -> None:
        if not self.detached:
            self.submission = submission

    async def confirm(self) -> SessionView:
        """Re-check eligibility and submit the selected vote exactly once.

        Repeated confirms while a submission is claimed or in flight, or after
        the selection has finished, return the current view unchanged.
        """
        if self._submit_claimed or self.state in TERMINAL_STATES:
            return self.snapshot()
        if self.state is not SessionState.CONFIRMING:
            raise ConflictError("Select a candidate before confirming", code="INVALID_STATE")
        if not self.can_confirm:
            failure = _eligibility_failure(self.eligibility)
            raise ConflictError(failure.message, code=failure.code)

        self._submit_claimed = True
        election = self.election
        candidate_id = self.selected_candidate_id
        voter_id = self.identity.voter_id

        recheck = await self.checker.check_eligibility(voter_id, election)
        if self.detached:
            return self._ignored("eligibility re-check")
        self.eligibility = recheck
        if not recheck.is_eligible:
            return self._fail(_eligibility_failure(recheck))

        self.state = SessionState.SUBMITTING
        try:
            submission = await self.submitter.submit(
                voter_id,
                election,
                candidate_id,
                recheck,
                on_broadcast=self._on_broadcast,
            )
        except AppError as exc:
            if self.detached:
                return self._ignored("submission error")
            return self._fail_with(exc)
        except Exception:
            logger.exception("Vote submission crashed in session %s", self.session_id)
            if self.detached:
                return self._ignored("submission crash")
            return self._fail(
                SessionFailure(
                    code="SUBMISSION_FAILED",
                    message="Error submitting vote",
                    retryable=True,
                )
            )

        if self.detached:
            return self._ignored("submission outcome")
        self.submission = submission
        if submission.status is SubmissionStatus.CONFIRMED:
            self.state = SessionState.SUCCEEDED
            return self.snapshot()
        return self._fail(
            SessionFailure(
                code=submission.failure_code or "SUBMISSION_FAILED",
                message=submission.reason or "Error submitting vote",
                retryable=True,
            )
        )

    async def retry(self) -> SessionView:
        """Start the selection over after a retryable failure."""
        if self.state is not SessionState.FAILED or not (self.failure and self.failure.retryable):
            raise ConflictError("This session cannot be retried", code="NOT_RETRYABLE")
        election_id = self.election_id
        self._reset()
        return await self.load(election_id)

    def detach(self) -> None:
        """Stop acting on in-flight results; the ledger transaction is not cancelled."""
        self.detached = True


class SessionRegistry:
    """In-memory voting sessions keyed by session id, bounded and expiring."""

    def __init__(self, ttl_seconds: int, max_entries: int) -> None:
        self.ttl_seconds = max(1, ttl_seconds)
        self.max_entries = max(1, max_entries)
        self._sessions: dict[str, tuple[float, VotingSessionController]] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def _evict(self, session_id: str) -> None:
        entry = self._sessions.pop(session_id, None)
        if entry:
            entry[1].detach()

    def _purge_expired(self) -> None:
        now = time.monotonic()
        expired = [key for key, (expires_at, _) in self._sessions.items() if expires_at <= now]
        for session_id in expired:
            self._evict(session_id)

    def open(
        self,
        identity: VoterIdentity,
        directory: ElectionDirectory,
        checker: EligibilityChecker,
        submitter: BallotSubmitter,
    ) -> VotingSessionController:
        """Create a fresh idle session for ``identity``."""
        self._purge_expired()
        while len(self._sessions) >= self.max_entries:
            self._evict(next(iter(self._sessions)))

        session_id = uuid.uuid4().hex
        controller = VotingSessionController(session_id, identity, directory, checker, submitter)
        self._sessions[session_id] = (time.monotonic() + self.ttl_seconds, controller)
        return controller

    def get(self, session_id: str, voter_id: str) -> VotingSessionController:
        """Return a live session owned by ``voter_id`` and extend its lifetime."""
        entry = self._sessions.get(session_id)
        if entry is None or entry[0] <= time.monotonic():
            self._evict(session_id)
            raise NotFoundError("Voting session")

        controller = entry[1]
        if controller.identity.voter_id != voter_id:
            raise ForbiddenError("This voting session belongs to another voter")
        self._sessions[session_id] = (time.monotonic() + self.ttl_seconds, controller)
        return controller

    def close(self, session_id: str, voter_id: str) -> None:
        """Detach and forget a session when its screen is left."""
        self.get(session_id, voter_id)
        self._evict(session_id)
