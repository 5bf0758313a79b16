"""Voter eligibility checks against the election contract."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from app.schemas.election import ElectionDescriptor
from app.schemas.voting import EligibilityResult, EligibilityStatus
from app.services.ledger_service import LedgerService
from app.utils.errors import AppError

logger = logging.getLogger(__name__)


class EligibilityChecker:
    """Decide whether a voter may cast a ballot in an election right now."""

    def __init__(self, ledger: LedgerService) -> None:
        self.ledger = ledger

    async def check_eligibility(
        self,
        voter_id: str,
        election: ElectionDescriptor,
        now: datetime | None = None,
    ) -> EligibilityResult:
        """Read registration and vote status from the ledger and combine them.

        Not being registered outranks having voted, which outranks the
        election window being closed. Ledger failures are reported as an
        ``error`` result rather than raised.
        """
        address = election.contract_address
        contract = self.ledger.contract(address)
        outcomes = await asyncio.gather(
            self.ledger.execute("isVoter", contract.is_voter(voter_id)),
            self.ledger.execute("hasVoted", contract.has_voted(voter_id)),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, AppError):
                logger.warning(
                    "Eligibility check failed for election %s: %s", election.id, outcome.message
                )
                return EligibilityResult.of(
                    EligibilityStatus.ERROR, voter_id, address, outcome.message
                )
            if isinstance(outcome, BaseException):
                raise outcome

        registered, voted = outcomes
        if not registered:
            status = EligibilityStatus.NOT_REGISTERED
        elif voted:
            status = EligibilityStatus.ALREADY_VOTED
        elif not election.is_open(now):
            status = EligibilityStatus.NOT_OPEN
        else:
            status = EligibilityStatus.ELIGIBLE
        return EligibilityResult.of(status, voter_id, address)
