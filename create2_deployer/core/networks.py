"""Static registry of networks a deployment can target."""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class Network:
    """A selectable network"""
    chain_id: int
    chain_id_hex: str
    name: str


def to_chain_id_hex(chain_id: int) -> str:
    """Format a chain id the way wallet_switchEthereumChain expects it"""
    return hex(chain_id)


NETWORKS: Tuple[Network, ...] = (
    Network(1, "0x1", "Ethereum Main Network (Mainnet)"),
    Network(3, "0x3", "Ropsten Test Network"),
    Network(4, "0x4", "Rinkeby Test Network"),
    Network(5, "0x5", "Goerli Test Network"),
    Network(42, "0x2a", "Kovan Test Network"),
    Network(17000, "0x4268", "Holesky Test Network"),
    Network(11155111, "0xaa36a7", "Sepolia Test Network"),
)

_BY_CHAIN_ID: Dict[int, Network] = {n.chain_id: n for n in NETWORKS}


def find_network(chain_id: Optional[int]) -> Optional[Network]:
    """Look up a network by numeric chain id, None when unknown"""
    if chain_id is None:
        return None
    return _BY_CHAIN_ID.get(chain_id)


def get_network(chain_id: int) -> Network:
    """Look up a network by numeric chain id

    Raises:
        KeyError: If the chain id is not in the registry
    """
    network = find_network(chain_id)
    if network is None:
        raise KeyError(f"Unknown network: {chain_id}")
    return network
