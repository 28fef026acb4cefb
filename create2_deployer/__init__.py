"""
create2-deployer: deploy compiled contracts at deterministic CREATE2 addresses
through a factory contract.
"""

from .core.artifact import AbiEntry, AbiParameter, CompiledArtifact, parse_artifact
from .core.codec import ConstructorInput, EncodedArgument, encode_argument, encode_arguments
from .core.factory import (
    DEFAULT_FACTORY_ADDRESS,
    DeploymentRecord,
    FactoryDeployer,
    compute_create2_address,
    generate_salt,
    normalize_salt,
)
from .core.networks import NETWORKS, Network, get_network
from .core.payload import build_payload
from .core.session import DeploymentSession, SessionPhase, SessionState, is_ready, transition
from .utils.exceptions import (
    ArtifactParseError,
    Create2DeployerError,
    DeploymentFailed,
    DeploymentInProgressError,
    NetworkSwitchFailed,
    NetworkSwitchRejected,
    UserRejected,
    ValidationError,
)

__version__ = "0.1.0"

__all__ = [
    "AbiEntry",
    "AbiParameter",
    "CompiledArtifact",
    "parse_artifact",
    "ConstructorInput",
    "EncodedArgument",
    "encode_argument",
    "encode_arguments",
    "build_payload",
    "DEFAULT_FACTORY_ADDRESS",
    "DeploymentRecord",
    "FactoryDeployer",
    "compute_create2_address",
    "generate_salt",
    "normalize_salt",
    "NETWORKS",
    "Network",
    "get_network",
    "DeploymentSession",
    "SessionPhase",
    "SessionState",
    "is_ready",
    "transition",
    "Create2DeployerError",
    "ArtifactParseError",
    "ValidationError",
    "UserRejected",
    "DeploymentFailed",
    "DeploymentInProgressError",
    "NetworkSwitchRejected",
    "NetworkSwitchFailed",
]
