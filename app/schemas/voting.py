"""Voter, eligibility, ballot and voting session schemas."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.election import ElectionDescriptor


class VoterIdentity(BaseModel):
    """Ledger voter id plus the bearer credential used for backend calls."""

    model_config = ConfigDict(frozen=True)

    voter_id: str = Field(..., min_length=1)
    credential: str = Field(..., repr=False)


class EligibilityStatus(StrEnum):
    """Outcome of an eligibility check."""

    ELIGIBLE = "eligible"
    NOT_REGISTERED = "not_registered"
    ALREADY_VOTED = "already_voted"
    NOT_OPEN = "not_open"
    ERROR = "error"


ELIGIBILITY_MESSAGES = {
    EligibilityStatus.ELIGIBLE: "You are eligible to vote",
    EligibilityStatus.NOT_REGISTERED: "You are not an eligible voter",
    EligibilityStatus.ALREADY_VOTED: "You have already voted",
    EligibilityStatus.NOT_OPEN: "This election is not open for voting",
}


class EligibilityResult(BaseModel):
    """Eligibility of one voter for one election contract at one moment."""

    model_config = ConfigDict(frozen=True)

    status: EligibilityStatus
    voter_id: str
    contract_address: str
    reason: str

    @classmethod
    def of(
        cls,
        status: EligibilityStatus,
        voter_id: str,
        contract_address: str,
        reason: str | None = None,
    ) -> EligibilityResult:
        """Build a result with the stock message for ``status``."""
        return cls(
            status=status,
            voter_id=voter_id,
            contract_address=contract_address,
            reason=reason or ELIGIBILITY_MESSAGES.get(status, "Eligibility check failed"),
        )

    @property
    def is_eligible(self) -> bool:
        return self.status is EligibilityStatus.ELIGIBLE

    @property
    def is_error(self) -> bool:
        return self.status is EligibilityStatus.ERROR

    def applies_to(self, voter_id: str, contract_address: str) -> bool:
        """Return True when this result was computed for the given pair."""
        return self.voter_id == voter_id and self.contract_address == contract_address


class SubmissionStatus(StrEnum):
    """Lifecycle of a vote transaction."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class BallotSubmission(BaseModel):
    """One vote transaction and its observed outcome."""

    model_config = ConfigDict(frozen=True)

    voter_id: str
    election_contract_address: str
    candidate_id: str
    status: SubmissionStatus = SubmissionStatus.PENDING
    tx_hash: str | None = None
    block_number: int | None = None
    failure_code: str | None = None
    reason: str | None = None


class SessionState(StrEnum):
    """States of a voting screen session."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    CONFIRMING = "confirming"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class SessionFailure(BaseModel):
    """User-facing failure attached to a failed session."""

    code: str
    message: str
    retryable: bool = False


class SessionView(BaseModel):
    """Snapshot of a voting session rendered by the UI."""

    session_id: str
    state: SessionState
    election_id: str | None = None
    election: ElectionDescriptor | None = None
    eligibility: EligibilityResult | None = None
    can_confirm: bool = False
    selected_candidate_id: str | None = None
    submission: BallotSubmission | None = None
    failure: SessionFailure | None = None


class SessionCreate(BaseModel):
    """Request body for opening a voting session."""

    election_id: str = Field(..., min_length=1)


class CandidateSelection(BaseModel):
    """Request body for picking a candidate."""

    candidate_id: str = Field(..., min_length=1)
