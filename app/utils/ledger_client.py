"""Ledger RPC client and relayer account singletons."""

from functools import lru_cache

from aiohttp import ClientTimeout
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3

from app.config import settings
from app.utils.errors import LedgerNotConfiguredError

# Subset of the election contract ABI used by the ballot API.
ELECTION_ABI = [
    {
        "name": "isVoter",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "voterId", "type": "string"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "hasVoted",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "voterId", "type": "string"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "vote",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "voterId", "type": "string"},
            {"name": "candidate", "type": "string"},
        ],
        "outputs": [],
    },
    {
        "name": "getVotes",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "candidate", "type": "string"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "getAllVotes",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256[]"}],
    },
    {
        "name": "getContractBalance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]


@lru_cache(maxsize=1)
def get_web3() -> AsyncWeb3:
    """Return the shared async JSON-RPC client for the ledger."""
    timeout_seconds = max(1, settings.ledger_request_timeout_seconds)
    provider = AsyncHTTPProvider(
        settings.ledger_rpc_url,
        request_kwargs={"timeout": ClientTimeout(total=timeout_seconds)},
    )
    return AsyncWeb3(provider)


@lru_cache(maxsize=1)
def get_relayer_account() -> LocalAccount:
    """Return the account that signs and pays for vote transactions.

    Raises:
        LedgerNotConfiguredError: when no relayer key is configured.
    """
    if not settings.relayer_private_key:
        raise LedgerNotConfiguredError()
    return Account.from_key(settings.relayer_private_key)
