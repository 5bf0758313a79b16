"""Tally result endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool

from app.dependencies import get_credential, get_election_directory, get_tally_aggregator
from app.services.election_directory import ElectionDirectory
from app.services.tally_service import TallyAggregator

router = APIRouter()


@router.get("")
async def community_results(
    community_key: str,
    credential: str = Depends(get_credential),
    directory: ElectionDirectory = Depends(get_election_directory),
    aggregator: TallyAggregator = Depends(get_tally_aggregator),
) -> dict:
    """Return tallies for every election in a community."""
    elections = await run_in_threadpool(
        directory.fetch_community_elections, community_key, credential
    )
    return {"results": await aggregator.compute_results(elections)}


@router.get("/{election_id}")
async def election_results(
    election_id: str,
    credential: str = Depends(get_credential),
    directory: ElectionDirectory = Depends(get_election_directory),
    aggregator: TallyAggregator = Depends(get_tally_aggregator),
) -> dict:
    """Return the tally for one election."""
    election = await run_in_threadpool(directory.fetch_election, election_id, credential)
    results = await aggregator.compute_results([election])
    return {"result": results[0]}
