"""Service package exports with lazy loading."""

from __future__ import annotations

from importlib import import_module
from typing import Any

_EXPORTS = {
    "AuthService": "app.services.auth_service",
    "BallotSubmitter": "app.services.ballot_service",
    "ElectionDirectory": "app.services.election_directory",
    "EligibilityChecker": "app.services.eligibility_service",
    "LedgerService": "app.services.ledger_service",
    "SessionRegistry": "app.services.voting_session",
    "SupabaseService": "app.services.common",
    "TallyAggregator": "app.services.tally_service",
    "VotingSessionController": "app.services.voting_session",
}

__all__ = sorted(_EXPORTS.keys())


def __getattr__(name: str) -> Any:
    if name not in _EXPORTS:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module = import_module(_EXPORTS[name])
    return getattr(module, name)
