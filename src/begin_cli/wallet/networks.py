"""Network definitions for supported Cardano networks."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from begin_cli.errors import input_error


class NetworkId(IntEnum):
    """Network tag carried in the address header and wallet files."""

    TESTNET = 0
    MAINNET = 1


@dataclass(frozen=True)
class Network:
    """A Cardano network reachable through Blockfrost."""

    name: str
    network_id: NetworkId
    blockfrost_url: str
    explorer_url: str


NETWORKS: dict[str, Network] = {
    "mainnet": Network(
        name="mainnet",
        network_id=NetworkId.MAINNET,
        blockfrost_url="https://cardano-mainnet.blockfrost.io/api/v0",
        explorer_url="https://cardanoscan.io",
    ),
    "preprod": Network(
        name="preprod",
        network_id=NetworkId.TESTNET,
        blockfrost_url="https://cardano-preprod.blockfrost.io/api/v0",
        explorer_url="https://preprod.cardanoscan.io",
    ),
    "preview": Network(
        name="preview",
        network_id=NetworkId.TESTNET,
        blockfrost_url="https://cardano-preview.blockfrost.io/api/v0",
        explorer_url="https://preview.cardanoscan.io",
    ),
}


def get_network(name: str) -> Network:
    """Get a network by name. Raises an ``INVALID_NETWORK`` input error if unknown."""
    if name not in NETWORKS:
        raise input_error(
            f"Unknown network '{name}'. Available: {list_network_names()}",
            code="INVALID_NETWORK",
        )
    return NETWORKS[name]


def list_network_names() -> list[str]:
    """Return the names of all supported networks."""
    return list(NETWORKS.keys())


def resolve_network_id(network: str | int | Network) -> NetworkId:
    """Map a network name, :class:`Network` or numeric tag to a :class:`NetworkId`.

    ``"testnet"`` is accepted as an alias for any test network.
    """
    if isinstance(network, Network):
        return network.network_id
    if isinstance(network, str):
        if network == "testnet":
            return NetworkId.TESTNET
        return get_network(network).network_id
    try:
        return NetworkId(network)
    except ValueError as exc:
        raise input_error(f"Invalid network id: {network}", code="INVALID_NETWORK") from exc
