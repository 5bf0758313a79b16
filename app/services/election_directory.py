"""Election lookup, roster resolution and result publication."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from app.schemas.election import CandidateRef, ElectionDescriptor, ElectionPhase, PhasedElections
from app.services.auth_service import AuthService, get_user_id
from app.services.common import SupabaseService
from app.utils.errors import ConflictError, MalformedElectionError
from app.utils.time import now_utc, parse_timestamp
from supabase import Client

logger = logging.getLogger(__name__)


def _validation_reason(exc: ValueError) -> str:
    if isinstance(exc, ValidationError):
        errors = exc.errors()
        message = str(errors[0].get("msg", "invalid election record")) if errors else ""
        return message.removeprefix("Value error, ") or "invalid election record"
    return str(exc) or "invalid election record"


class ElectionDirectory:
    """Resolve election selections to validated descriptors."""

    def __init__(self, client: Client, auth: AuthService) -> None:
        self.db = SupabaseService(client)
        self.auth = auth

    def _candidates(self, election_id: str) -> list[CandidateRef]:
        rows = self.db.select_many(
            "election_candidates",
            filters={"election_id": election_id},
            order_by="position",
        )
        users = self.db.get_users_map(str(row["user_id"]) for row in rows)

        candidates: list[CandidateRef] = []
        for row in rows:
            user = users.get(str(row["user_id"]))
            username = (user or {}).get("username")
            if not username:
                raise MalformedElectionError(f"candidate {row['user_id']} has no username")
            candidates.append(
                CandidateRef(id=username, display_name=user.get("display_name") or username)
            )
        return candidates

    def _to_descriptor(self, row: dict[str, Any]) -> ElectionDescriptor:
        election_id = str(row["id"])
        if not row.get("election_address"):
            raise MalformedElectionError("missing contract address")

        candidates = self._candidates(election_id)
        try:
            return ElectionDescriptor(
                id=election_id,
                name=row.get("election_name") or "",
                community_id=str(row["community_id"]) if row.get("community_id") else None,
                contract_address=row["election_address"],
                start_time=parse_timestamp(row.get("start_date")),
                end_time=parse_timestamp(row.get("end_date")),
                candidates=tuple(candidates),
            )
        except ValueError as exc:
            raise MalformedElectionError(_validation_reason(exc)) from exc

    def fetch_election(self, election_id: str, credential: str) -> ElectionDescriptor:
        """Return the descriptor for one election.

        Raises:
            UnauthorizedError: the credential is invalid or expired.
            NotFoundError: no election has this id.
            ForbiddenError: the caller is not in the election's community.
            MalformedElectionError: the record cannot be voted on.
        """
        user = self.auth.resolve_user(credential)
        row = self.db.select_one("elections", {"id": election_id}, not_found_label="Election")
        if row.get("community_id"):
            self.db.ensure_community_member(get_user_id(user), str(row["community_id"]))
        return self._to_descriptor(row)

    def fetch_community_elections(
        self, community_key: str, credential: str
    ) -> list[ElectionDescriptor]:
        """Return every well-formed election of a community, oldest first."""
        user = self.auth.resolve_user(credential)
        community = self.db.select_one(
            "communities", {"key": community_key}, not_found_label="Community"
        )
        community_id = str(community["id"])
        self.db.ensure_community_member(get_user_id(user), community_id)

        rows = self.db.select_many(
            "elections",
            filters={"community_id": community_id},
            order_by="start_date",
        )
        elections: list[ElectionDescriptor] = []
        for row in rows:
            try:
                elections.append(self._to_descriptor(row))
            except MalformedElectionError as exc:
                logger.warning("Skipping election %s: %s", row.get("id"), exc.message)
        return elections

    @staticmethod
    def split_by_phase(
        elections: list[ElectionDescriptor], now: datetime | None = None
    ) -> PhasedElections:
        """Group elections into upcoming, ongoing and past."""
        moment = now or now_utc()
        phased = PhasedElections()
        buckets = {
            ElectionPhase.UPCOMING: phased.upcoming,
            ElectionPhase.ONGOING: phased.ongoing,
            ElectionPhase.PAST: phased.past,
        }
        for election in elections:
            buckets[election.phase(moment)].append(election)
        return phased

    def publish_results(
        self, election_id: str, credential: str, now: datetime | None = None
    ) -> dict[str, Any]:
        """Mark an ended election's results as published (community admins only)."""
        user = self.auth.resolve_user(credential)
        row = self.db.select_one("elections", {"id": election_id}, not_found_label="Election")
        self.db.ensure_admin(
            get_user_id(user),
            str(row["community_id"]),
            reason="Only community admins can publish results",
        )

        moment = now or now_utc()
        if moment < parse_timestamp(row.get("end_date")):
            raise ConflictError(
                "Results can only be published after the election ends",
                code="ELECTION_NOT_ENDED",
            )

        if row.get("status") == "published":
            return {
                "election_id": election_id,
                "status": "published",
                "published_at": row.get("published_at"),
            }

        published_at = moment.isoformat()
        self.db.update(
            "elections",
            {"id": election_id},
            {"status": "published", "published_at": published_at},
        )
        logger.info("Published results for election %s", election_id)
        return {"election_id": election_id, "status": "published", "published_at": published_at}

    def publish_ended(self, now: datetime | None = None) -> list[str]:
        """Publish every ended, unpublished election and return their ids."""
        moment = now or now_utc()
        rows = self.db.execute(
            self.db.client.table("elections")
            .select("id,status,end_date")
            .neq("status", "published")
            .lt("end_date", moment.isoformat()),
            default=[],
        )
        published: list[str] = []
        for row in rows:
            election_id = str(row["id"])
            self.db.update(
                "elections",
                {"id": election_id},
                {"status": "published", "published_at": moment.isoformat()},
            )
            published.append(election_id)
        return published
