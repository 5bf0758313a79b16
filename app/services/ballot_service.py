"""Vote transaction submission."""

from __future__ import annotations

import logging
from collections.abc import Callable

from app.config import settings
from app.schemas.election import ElectionDescriptor
from app.schemas.voting import BallotSubmission, EligibilityResult, SubmissionStatus
from app.services.ledger_service import LedgerService
from app.utils.errors import (
    ConflictError,
    InsufficientFundsError,
    InvalidInputError,
    LedgerError,
    LedgerRejectedError,
)

logger = logging.getLogger(__name__)


class BallotSubmitter:
    """Send exactly one vote transaction per confirmed ballot and await finality.

    A failed submission is never retried here: the vote may have landed even
    when the client saw an error, so retries go through a fresh eligibility
    check in the session controller.
    """

    def __init__(self, ledger: LedgerService) -> None:
        self.ledger = ledger
        self._pending: set[tuple[str, str]] = set()

    def is_pending(self, voter_id: str, contract_address: str) -> bool:
        """Return True while a vote for this pair is in flight."""
        return (voter_id, contract_address) in self._pending

    async def submit(
        self,
        voter_id: str,
        election: ElectionDescriptor,
        candidate_id: str,
        eligibility: EligibilityResult,
        on_broadcast: Callable[[BallotSubmission], None] | None = None,
    ) -> BallotSubmission:
        """Cast ``voter_id``'s vote for ``candidate_id``.

        Ledger-side failures come back as a ``failed`` submission. Broken
        preconditions raise.

        Raises:
            InvalidInputError: the candidate is not on the election's roster.
            ConflictError: eligibility was not confirmed for this pair, or a
                vote for the pair is already in flight.
        """
        address = election.contract_address
        if election.candidate(candidate_id) is None:
            raise InvalidInputError("Candidate is not on this election's ballot")
        if not eligibility.applies_to(voter_id, address) or not eligibility.is_eligible:
            raise ConflictError(
                "Eligibility must be confirmed for this election before voting",
                code="NOT_ELIGIBLE",
            )

        key = (voter_id, address)
        if key in self._pending:
            raise ConflictError(
                "A vote for this election is already being submitted",
                code="SUBMISSION_PENDING",
            )

        self._pending.add(key)
        try:
            return await self._submit(voter_id, election, candidate_id, on_broadcast)
        finally:
            self._pending.discard(key)

    async def _submit(
        self,
        voter_id: str,
        election: ElectionDescriptor,
        candidate_id: str,
        on_broadcast: Callable[[BallotSubmission], None] | None,
    ) -> BallotSubmission:
        submission = BallotSubmission(
            voter_id=voter_id,
            election_contract_address=election.contract_address,
            candidate_id=candidate_id,
        )
        contract = self.ledger.contract(election.contract_address)

        try:
            if settings.verify_contract_balance:
                balance = await self.ledger.execute(
                    "getContractBalance", contract.get_contract_balance()
                )
                if balance < settings.min_contract_balance_wei:
                    raise InsufficientFundsError(balance, settings.min_contract_balance_wei)

            tx_hash = await self.ledger.execute("vote", contract.vote(voter_id, candidate_id))
            submission = submission.model_copy(update={"tx_hash": tx_hash})
            logger.info("Vote broadcast for election %s tx=%s", election.id, tx_hash)
            if on_broadcast is not None:
                on_broadcast(submission)

            receipt = await self.ledger.execute("finality", contract.wait_for_finality(tx_hash))
            if not receipt.succeeded:
                raise LedgerRejectedError("The vote transaction was reverted")
        except LedgerError as exc:
            logger.warning(
                "Vote for election %s failed (%s): %s", election.id, exc.code, exc.message
            )
            return submission.model_copy(
                update={
                    "status": SubmissionStatus.FAILED,
                    "failure_code": exc.code,
                    "reason": exc.message,
                }
            )

        logger.info("Vote confirmed for election %s in block %s", election.id, receipt.block_number)
        return submission.model_copy(
            update={"status": SubmissionStatus.CONFIRMED, "block_number": receipt.block_number}
        )
