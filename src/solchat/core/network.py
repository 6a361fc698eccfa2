"""
Network profile for a chat request.

Everything that depends on the selected cluster (RPC endpoint, explorer links, which tools exist,
what the system prompt says) is derived from the single :class:`NetworkProfile` built here, so the
registry and the prompt can never disagree about what is available.
"""

from dataclasses import dataclass
from typing import Literal

from solchat.config import settings

Network = Literal["devnet", "mainnet"]

EXPLORER_TX_URL = "https://explorer.solana.com/tx/"


@dataclass(frozen=True)
class NetworkProfile:
    """Cluster-dependent settings for one request."""

    name: Network
    rpc_url: str

    @property
    def is_test_network(self) -> bool:
        """Only the test network has a faucet."""
        return self.name == "devnet"

    @property
    def airdrop_enabled(self) -> bool:
        return self.is_test_network

    @property
    def cluster_param(self) -> str:
        return "?cluster=devnet" if self.name == "devnet" else ""

    def explorer_url(self, signature: str) -> str:
        """Explorer link for *signature* on this cluster."""
        return f"{EXPLORER_TX_URL}{signature}{self.cluster_param}"


def normalize_network(value: str | None) -> Network:
    """Map any inbound value onto a supported cluster; unknown values mean devnet."""
    return "mainnet" if (value or "").strip().lower() == "mainnet" else "devnet"


def get_network_profile(network: str | None = None) -> NetworkProfile:
    """Build the profile for *network* (default: ``settings.DEFAULT_NETWORK``)."""
    name = normalize_network(network if network is not None else settings.DEFAULT_NETWORK)
    rpc_url = settings.MAINNET_RPC_URL if name == "mainnet" else settings.DEVNET_RPC_URL
    return NetworkProfile(name=name, rpc_url=rpc_url)
