"""
Deterministic deployment through a CREATE2 factory

The factory contract exposes two entry points:

    deploy(bytes initCode, bytes32 salt)
    getAddress(bytes initCode, bytes32 salt) view returns (address)

A deployment is a state-changing ``deploy`` transaction followed by a
read-only ``getAddress`` call with the same (payload, salt) pair. Because a
CREATE2 address only depends on the factory address, the salt and the hash
of the init code, the second call returns the address of the contract the
first one created.

Design Notes:
- Calldata is built locally with eth_abi, the provider only relays it
- User rejection (EIP-1193 code 4001) is classified as UserRejected
- Every other failure becomes DeploymentFailed; nothing is retried
"""

import inspect
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from eth_abi import decode, encode
from eth_utils import (
    decode_hex,
    function_signature_to_4byte_selector,
    is_hex,
    keccak,
    remove_0x_prefix,
    to_canonical_address,
    to_checksum_address,
)

from .capabilities import ChainProvider, FileService
from ..utils.common import hex_to_int
from ..utils.config_manager import DEFAULT_FACTORY_ADDRESS
from ..utils.exceptions import (
    DeploymentFailed,
    ErrorCodes,
    UserRejected,
    ValidationError,
    is_user_rejection,
)

LOG = logging.getLogger(__name__)

DEPLOY_SIGNATURE = "deploy(bytes,bytes32)"
GET_ADDRESS_SIGNATURE = "getAddress(bytes,bytes32)"

FACTORY_ABI = [
    {
        "type": "function",
        "name": "deploy",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "initCode", "type": "bytes", "internalType": "bytes"},
            {"name": "salt", "type": "bytes32", "internalType": "bytes32"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "getAddress",
        "stateMutability": "view",
        "inputs": [
            {"name": "initCode", "type": "bytes", "internalType": "bytes"},
            {"name": "salt", "type": "bytes32", "internalType": "bytes32"},
        ],
        "outputs": [{"name": "", "type": "address", "internalType": "address"}],
    },
]

# Progress stages reported to on_progress callbacks
STAGE_DEPLOYING = "deploying"
STAGE_RESOLVING = "resolving"
STAGE_DEPLOYED = "deployed"

ProgressCallback = Callable[[str, str], Union[None, Awaitable[None]]]


@dataclass
class DeploymentRecord:
    """A successful deployment"""
    address: str
    deployed_date: datetime = field(default_factory=datetime.now)
    transaction_hash: Optional[str] = None
    salt: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "deployed_date": self.deployed_date.isoformat(),
            "transaction_hash": self.transaction_hash,
            "salt": self.salt,
        }


def normalize_salt(salt: Union[str, bytes]) -> bytes:
    """
    Convert a salt to the 32-byte value passed to the factory.

    Shorter values are left-padded with zeros.

    Raises:
        ValidationError: If the salt is empty, not hex, or longer than 32 bytes
    """
    if isinstance(salt, (bytes, bytearray)):
        raw = bytes(salt)
    else:
        body = remove_0x_prefix((salt or "").strip())
        if not body or not is_hex(body):
            raise ValidationError(
                f"Salt must be a non-empty hex value, got '{salt}'",
                parameter="salt",
                code=ErrorCodes.VALIDATION_INVALID_SALT
            )
        if len(body) % 2:
            body = "0" + body
        raw = decode_hex(body)

    if len(raw) > 32:
        raise ValidationError(
            f"Salt is {len(raw)} bytes, at most 32 allowed",
            parameter="salt",
            code=ErrorCodes.VALIDATION_INVALID_SALT
        )
    return raw.rjust(32, b"\x00")


def generate_salt(size: int = 7) -> str:
    """Random 0x-prefixed salt of ``size`` bytes"""
    return "0x" + secrets.token_hex(size)


def compute_create2_address(deployer: str, salt: Union[str, bytes], init_code: bytes) -> str:
    """Offline CREATE2 address: keccak256(0xff ++ deployer ++ salt ++ keccak256(init_code))[12:]"""
    digest = keccak(
        b"\xff"
        + to_canonical_address(deployer)
        + normalize_salt(salt)
        + keccak(init_code)
    )
    return to_checksum_address(digest[12:])


def _error_message(error: BaseException) -> str:
    return getattr(error, "message", None) or str(error)


class FactoryDeployer:
    """
    Runs the two-step deploy / getAddress protocol against a factory.

    Progress messages go to the module logger, to the host log service when
    one is given, and to the optional on_progress callback.
    """

    def __init__(
        self,
        provider: ChainProvider,
        factory_address: str = DEFAULT_FACTORY_ADDRESS,
        log_service: Optional[FileService] = None
    ):
        self.provider = provider
        self.factory_address = to_checksum_address(factory_address)
        self.log_service = log_service

    def encode_deploy_call(self, payload: bytes, salt: Union[str, bytes]) -> str:
        selector = function_signature_to_4byte_selector(DEPLOY_SIGNATURE)
        args = encode(["bytes", "bytes32"], [payload, normalize_salt(salt)])
        return "0x" + (selector + args).hex()

    def encode_get_address_call(self, payload: bytes, salt: Union[str, bytes]) -> str:
        selector = function_signature_to_4byte_selector(GET_ADDRESS_SIGNATURE)
        args = encode(["bytes", "bytes32"], [payload, normalize_salt(salt)])
        return "0x" + (selector + args).hex()

    async def _report(
        self,
        stage: str,
        message: str,
        on_progress: Optional[ProgressCallback] = None
    ) -> None:
        LOG.info(message)
        if self.log_service is not None:
            await self.log_service.log(message, "log")
        if on_progress is not None:
            result = on_progress(stage, message)
            if inspect.isawaitable(result):
                await result

    async def submit(
        self,
        payload: bytes,
        salt: Union[str, bytes],
        sender: str,
        on_progress: Optional[ProgressCallback] = None
    ) -> Dict[str, Any]:
        """
        Send the factory ``deploy`` transaction and wait for its receipt.

        Raises:
            UserRejected: If the wallet user rejected the transaction
            DeploymentFailed: On any other failure, including a reverted receipt
        """
        data = self.encode_deploy_call(payload, salt)
        await self._report(STAGE_DEPLOYING, "Deploying contract", on_progress)

        try:
            receipt = await self.provider.send_transaction(self.factory_address, data, sender)
        except Exception as e:
            if is_user_rejection(e):
                LOG.warning(f"Deployment rejected by user: {_error_message(e)}")
                raise UserRejected(_error_message(e), cause=e)
            LOG.error(f"Deployment transaction failed: {e}")
            raise DeploymentFailed(
                f"Deployment transaction failed: {_error_message(e)}",
                phase="submit",
                cause=e
            )

        status = (receipt or {}).get("status")
        if status is not None and hex_to_int(status) == 0:
            raise DeploymentFailed(
                "Deployment transaction reverted",
                phase="submit",
                code=ErrorCodes.DEPLOYMENT_REVERTED,
                details={"transaction_hash": (receipt or {}).get("transactionHash")}
            )

        await self._report(STAGE_RESOLVING, "Contract deployed, retrieving address", on_progress)
        return receipt

    async def resolve_address(
        self,
        payload: bytes,
        salt: Union[str, bytes],
        on_progress: Optional[ProgressCallback] = None
    ) -> str:
        """
        Ask the factory for the deterministic address of (payload, salt).

        Raises:
            DeploymentFailed: If the call fails or returns no address
        """
        data = self.encode_get_address_call(payload, salt)
        try:
            result = await self.provider.call_read_only(self.factory_address, data)
            raw = decode_hex(result or "")
            (address,) = decode(["address"], raw)
        except Exception as e:
            LOG.error(f"Address resolution failed: {e}")
            raise DeploymentFailed(
                f"Failed to resolve deployed address: {_error_message(e)}",
                phase="resolve",
                code=ErrorCodes.DEPLOYMENT_RESOLVE_FAILED,
                cause=e
            )

        address = to_checksum_address(address)
        await self._report(
            STAGE_DEPLOYED,
            f"Address received, deployed contract address: {address}",
            on_progress
        )
        return address

    async def deploy(
        self,
        payload: bytes,
        salt: Union[str, bytes],
        sender: str,
        on_progress: Optional[ProgressCallback] = None
    ) -> DeploymentRecord:
        """
        Deploy ``payload`` with ``salt`` and return the resulting record.

        Args:
            payload: Init code (bytecode ++ encoded constructor arguments)
            salt: Hex salt, left-padded to 32 bytes
            sender: Account sending the deploy transaction
            on_progress: Called with (stage, message) at each step

        Returns:
            DeploymentRecord with the resolved address
        """
        receipt = await self.submit(payload, salt, sender, on_progress)
        address = await self.resolve_address(payload, salt, on_progress)
        tx_hash = (receipt or {}).get("transactionHash")
        return DeploymentRecord(
            address=address,
            transaction_hash=tx_hash,
            salt=salt if isinstance(salt, str) else "0x" + bytes(salt).hex(),
        )
