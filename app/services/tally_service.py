"""Vote tally aggregation from election contracts."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from app.config import settings
from app.schemas.election import ElectionDescriptor
from app.schemas.tally import ElectionTally, TallyRow
from app.services.ledger_service import LedgerService
from app.utils.errors import LedgerError, LedgerRejectedError

logger = logging.getLogger(__name__)

# Percentages are computed in hundredths of a percent.
PERCENT_SCALE = 10_000


def percentages(counts: Sequence[int]) -> list[float]:
    """Return two-decimal percentages for ``counts`` that sum to exactly 100.

    Each share is floored to the hundredth and the leftover hundredths go to
    the largest remainders, earliest position first on ties. All shares are
    zero when there are no votes.
    """
    total = sum(counts)
    if total <= 0:
        return [0.0 for _ in counts]

    floors = [count * PERCENT_SCALE // total for count in counts]
    remainders = [count * PERCENT_SCALE % total for count in counts]
    leftover = PERCENT_SCALE - sum(floors)
    ranked = sorted(range(len(counts)), key=lambda index: (-remainders[index], index))
    for index in ranked[:leftover]:
        floors[index] += 1
    return [hundredths / 100 for hundredths in floors]


class TallyAggregator:
    """Read authoritative vote counts and shape them into tally rows."""

    def __init__(self, ledger: LedgerService) -> None:
        self.ledger = ledger

    async def _candidate_counts(
        self, election: ElectionDescriptor, limiter: asyncio.Semaphore
    ) -> list[int]:
        contract = self.ledger.contract(election.contract_address)

        async def read(candidate_id: str) -> int:
            async with limiter:
                return await self.ledger.execute("getVotes", contract.get_votes(candidate_id))

        counts = await asyncio.gather(*(read(c.id) for c in election.candidates))
        # Sentinel or negative counts never reduce the total.
        return [max(0, int(count)) for count in counts]

    async def _ledger_total(self, election: ElectionDescriptor) -> int | None:
        contract = self.ledger.contract(election.contract_address)
        try:
            all_votes = await self.ledger.execute("getAllVotes", contract.get_all_votes())
        except LedgerRejectedError:
            logger.debug("Election %s has no bulk vote accessor", election.id)
            return None
        except LedgerError as exc:
            logger.warning(
                "Skipping vote total reconciliation for election %s: %s", election.id, exc.message
            )
            return None
        return sum(max(0, int(count)) for count in all_votes)

    async def _tally(
        self, election: ElectionDescriptor, limiter: asyncio.Semaphore
    ) -> ElectionTally:
        counts, ledger_total = await asyncio.gather(
            self._candidate_counts(election, limiter),
            self._ledger_total(election),
        )
        total = sum(counts)
        if ledger_total is not None and ledger_total != total:
            logger.warning(
                "Election %s roster counts %s votes but contract reports %s",
                election.id,
                total,
                ledger_total,
            )

        rows = [
            TallyRow(
                candidate_id=candidate.id,
                display_name=candidate.display_name,
                vote_count=count,
                percentage=share,
            )
            for candidate, count, share in zip(
                election.candidates, counts, percentages(counts), strict=True
            )
        ]
        return ElectionTally(
            election_id=election.id,
            name=election.name,
            contract_address=election.contract_address,
            total_votes=total,
            ledger_total_votes=ledger_total,
            rows=rows,
        )

    async def compute_results(
        self, elections: Sequence[ElectionDescriptor]
    ) -> list[ElectionTally]:
        """Tally every election, preserving input order."""
        limiter = asyncio.Semaphore(max(1, settings.tally_max_concurrency))
        return list(await asyncio.gather(*(self._tally(e, limiter) for e in elections)))

    async def compute_tally(
        self, elections: Sequence[ElectionDescriptor]
    ) -> dict[str, list[TallyRow]]:
        """Return tally rows keyed by election id, in roster order."""
        results = await self.compute_results(elections)
        return {result.election_id: result.rows for result in results}
