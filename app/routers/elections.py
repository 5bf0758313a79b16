"""Election directory endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.dependencies import get_credential, get_election_directory
from app.services.election_directory import ElectionDirectory

router = APIRouter()


@router.get("/elections/{election_id}")
def get_election(
    election_id: str,
    credential: str = Depends(get_credential),
    directory: ElectionDirectory = Depends(get_election_directory),
) -> dict:
    """Return one election with its candidate roster."""
    return {"election": directory.fetch_election(election_id, credential)}


@router.get("/communities/{community_key}/elections")
def list_community_elections(
    community_key: str,
    credential: str = Depends(get_credential),
    directory: ElectionDirectory = Depends(get_election_directory),
) -> dict:
    """Return a community's elections grouped into upcoming, ongoing and past."""
    elections = directory.fetch_community_elections(community_key, credential)
    return {"elections": directory.split_by_phase(elections)}


@router.post("/elections/{election_id}/publish-results")
def publish_results(
    election_id: str,
    credential: str = Depends(get_credential),
    directory: ElectionDirectory = Depends(get_election_directory),
) -> dict:
    """Publish an ended election's results."""
    return directory.publish_results(election_id, credential)
