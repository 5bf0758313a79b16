"""FastAPI dependency injection helpers."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, Header

from app.config import settings
from app.schemas.voting import VoterIdentity
from app.services.auth_service import AuthService
from app.services.ballot_service import BallotSubmitter
from app.services.election_directory import ElectionDirectory
from app.services.eligibility_service import EligibilityChecker
from app.services.ledger_service import LedgerService, web3_contract_factory
from app.services.tally_service import TallyAggregator
from app.services.voting_session import SessionRegistry
from app.utils.errors import UnauthorizedError
from app.utils.supabase_client import get_service_client, get_supabase_client
from supabase import Client


def get_credential(authorization: str = Header(None)) -> str:
    """Extract the bearer credential from the Authorization header.

    Raises:
        UnauthorizedError: 401 if the header is missing or malformed.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise UnauthorizedError("Missing authorization header")
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise UnauthorizedError("Missing authorization header")
    return token


def get_auth_service() -> AuthService:
    """Return the credential verifier backed by the anon-key client."""
    return AuthService(get_supabase_client())


def get_voter_identity(
    credential: str = Depends(get_credential),
    auth: AuthService = Depends(get_auth_service),
) -> VoterIdentity:
    """Return the caller's voter id paired with their credential."""
    return auth.voter_identity(credential)


def get_db_client() -> Client:
    """Return the privileged Supabase client used by backend services."""
    return get_service_client()


def get_election_directory(
    client: Client = Depends(get_db_client),
    auth: AuthService = Depends(get_auth_service),
) -> ElectionDirectory:
    """Return the election directory."""
    return ElectionDirectory(client, auth)


@lru_cache(maxsize=1)
def get_ledger_service() -> LedgerService:
    """Return the shared ledger service."""
    return LedgerService(web3_contract_factory)


def get_eligibility_checker(
    ledger: LedgerService = Depends(get_ledger_service),
) -> EligibilityChecker:
    """Return an eligibility checker over the shared ledger."""
    return EligibilityChecker(ledger)


@lru_cache(maxsize=1)
def get_ballot_submitter() -> BallotSubmitter:
    """Return the process-wide submitter that tracks in-flight votes."""
    return BallotSubmitter(get_ledger_service())


def get_tally_aggregator(
    ledger: LedgerService = Depends(get_ledger_service),
) -> TallyAggregator:
    """Return a tally aggregator over the shared ledger."""
    return TallyAggregator(ledger)


@lru_cache(maxsize=1)
def get_session_registry() -> SessionRegistry:
    """Return the process-wide voting session registry."""
    return SessionRegistry(
        ttl_seconds=settings.session_ttl_seconds,
        max_entries=settings.session_max_entries,
    )
