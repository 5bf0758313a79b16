"""Tally schemas."""

from pydantic import BaseModel, ConfigDict, Field


class TallyRow(BaseModel):
    """Vote count and share for one candidate."""

    model_config = ConfigDict(frozen=True)

    candidate_id: str
    display_name: str
    vote_count: int
    percentage: float


class ElectionTally(BaseModel):
    """Tally rows for one election plus totals for the results screen."""

    election_id: str
    name: str
    contract_address: str
    total_votes: int = 0
    ledger_total_votes: int | None = None
    rows: list[TallyRow] = Field(default_factory=list)
