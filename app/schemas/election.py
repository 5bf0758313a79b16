"""Election descriptor schemas."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from web3 import Web3

from app.utils.time import in_window, now_utc


class ElectionPhase(StrEnum):
    """Where an election sits relative to its voting window."""

    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    PAST = "past"


class CandidateRef(BaseModel):
    """One entry of an election's candidate roster.

    ``id`` is the key the election contract uses for vote counts.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    display_name: str


class ElectionDescriptor(BaseModel):
    """Immutable election metadata resolved from the backend."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    community_id: str | None = None
    contract_address: str
    start_time: datetime
    end_time: datetime
    candidates: tuple[CandidateRef, ...]

    @field_validator("contract_address")
    @classmethod
    def _checksum_address(cls, value: str) -> str:
        if not Web3.is_address(value):
            raise ValueError("contract address is not a valid ledger address")
        return Web3.to_checksum_address(value)

    @model_validator(mode="after")
    def _check_roster_and_window(self) -> ElectionDescriptor:
        if not self.candidates:
            raise ValueError("election has no candidates")
        ids = [candidate.id for candidate in self.candidates]
        if len(set(ids)) != len(ids):
            raise ValueError("candidate ids must be unique")
        if self.start_time >= self.end_time:
            raise ValueError("election must start before it ends")
        return self

    @property
    def candidate_ids(self) -> list[str]:
        """Candidate ids in roster order."""
        return [candidate.id for candidate in self.candidates]

    def candidate(self, candidate_id: str) -> CandidateRef | None:
        """Return the roster entry for ``candidate_id`` if present."""
        for candidate in self.candidates:
            if candidate.id == candidate_id:
                return candidate
        return None

    def is_open(self, now: datetime | None = None) -> bool:
        """Return True while votes may be cast."""
        return in_window(self.start_time, self.end_time, now)

    def phase(self, now: datetime | None = None) -> ElectionPhase:
        """Classify the election as upcoming, ongoing or past."""
        moment = now or now_utc()
        if moment < self.start_time:
            return ElectionPhase.UPCOMING
        if moment < self.end_time:
            return ElectionPhase.ONGOING
        return ElectionPhase.PAST


class PhasedElections(BaseModel):
    """Community elections grouped by phase for the elections screen."""

    upcoming: list[ElectionDescriptor] = Field(default_factory=list)
    ongoing: list[ElectionDescriptor] = Field(default_factory=list)
    past: list[ElectionDescriptor] = Field(default_factory=list)
