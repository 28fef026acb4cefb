"""
Deployment session

A session tracks a single deployment attempt from artifact loading through
completion or failure, and keeps the history of successful deployments for
as long as it lives.

The lifecycle is modelled twice:
- ``transition(state, event)`` is a pure function over immutable SessionState
- ``DeploymentSession`` drives it with the host file service, the chain
  provider and the factory deployer

Phases:

    IDLE -> ARTIFACT_LOADED -> COLLECTING_INPUT -> READY_TO_DEPLOY
         -> DEPLOYING -> RESOLVING_ADDRESS -> IDLE (record added)
                      \\-> FAILED -> IDLE (session reset)

Usage:
    async with DeploymentSession(file_service, provider) as session:
        await session.load_artifact()
        session.set_input("amount", "100")
        session.generate_salt()
        record = await session.deploy()
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import List, Mapping, Optional, Sequence, Set, Tuple, Union

from .artifact import CompiledArtifact, parse_artifact
from .capabilities import (
    ACCOUNTS_CHANGED,
    CHAIN_CHANGED,
    CURRENT_FILE_CHANGED,
    NO_FILE_SELECTED,
    ChainProvider,
    FileService,
)
from .codec import ConstructorInput, EncodedArgument, encode_arguments
from .factory import (
    STAGE_RESOLVING,
    DeploymentRecord,
    FactoryDeployer,
    generate_salt,
    normalize_salt,
)
from .networks import NETWORKS, Network
from .payload import build_payload
from ..utils.exceptions import (
    ArtifactParseError,
    DeploymentFailed,
    DeploymentInProgressError,
    ErrorCodes,
    NetworkSwitchFailed,
    NetworkSwitchRejected,
    UserRejected,
    ValidationError,
    is_user_rejection,
)

LOG = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    IDLE = "idle"
    ARTIFACT_LOADED = "artifact_loaded"
    COLLECTING_INPUT = "collecting_input"
    READY_TO_DEPLOY = "ready_to_deploy"
    DEPLOYING = "deploying"
    RESOLVING_ADDRESS = "resolving_address"
    FAILED = "failed"


IN_FLIGHT = (SessionPhase.DEPLOYING, SessionPhase.RESOLVING_ADDRESS)

_EMPTY_INPUTS: Mapping[str, ConstructorInput] = MappingProxyType({})


@dataclass(frozen=True)
class SessionState:
    """Immutable snapshot of a session"""
    phase: SessionPhase = SessionPhase.IDLE
    artifact: Optional[CompiledArtifact] = None
    inputs: Mapping[str, ConstructorInput] = field(default_factory=lambda: _EMPTY_INPUTS)
    salt: str = ""
    network_id: Optional[int] = None
    failure_reason: Optional[str] = None
    history: Tuple[DeploymentRecord, ...] = ()


# Events

@dataclass(frozen=True)
class ArtifactParsed:
    artifact: CompiledArtifact


@dataclass(frozen=True)
class InputChanged:
    name: str
    type: str
    value: str


@dataclass(frozen=True)
class SaltChanged:
    salt: str


@dataclass(frozen=True)
class DeployRequested:
    pass


@dataclass(frozen=True)
class SubmitConfirmed:
    pass


@dataclass(frozen=True)
class AddressResolved:
    record: DeploymentRecord


@dataclass(frozen=True)
class DeploymentErrored:
    reason: str


@dataclass(frozen=True)
class SessionReset:
    network_id: Optional[int] = None


@dataclass(frozen=True)
class NetworkChanged:
    network_id: Optional[int]


SessionEvent = Union[
    ArtifactParsed, InputChanged, SaltChanged, DeployRequested, SubmitConfirmed,
    AddressResolved, DeploymentErrored, SessionReset, NetworkChanged,
]


def is_ready(state: SessionState) -> bool:
    """
    Check whether a deployment may be triggered.

    With constructor parameters, every declared name needs a non-empty value
    and the number of entries must match exactly; a salt is always required.
    """
    if state.artifact is None:
        return False
    if not state.salt:
        return False

    declared = state.artifact.constructor_inputs
    if not declared:
        return True

    if len(state.inputs) != len(declared):
        return False
    return all(
        p.name in state.inputs and bool(state.inputs[p.name].value)
        for p in declared
    )


def _settle(state: SessionState) -> SessionState:
    if is_ready(state):
        phase = SessionPhase.READY_TO_DEPLOY
    elif state.artifact is not None and state.artifact.has_constructor_args:
        phase = SessionPhase.COLLECTING_INPUT
    else:
        phase = SessionPhase.ARTIFACT_LOADED
    return replace(state, phase=phase)


def transition(state: SessionState, event: SessionEvent) -> SessionState:
    """
    Apply an event to a state.

    Returns a new state; a blocked transition returns ``state`` itself.
    """
    phase = state.phase

    if isinstance(event, NetworkChanged):
        return replace(state, network_id=event.network_id)

    if isinstance(event, SessionReset):
        return SessionState(network_id=event.network_id, history=state.history)

    if phase in IN_FLIGHT:
        if isinstance(event, SubmitConfirmed) and phase == SessionPhase.DEPLOYING:
            return replace(state, phase=SessionPhase.RESOLVING_ADDRESS)
        if isinstance(event, AddressResolved) and phase == SessionPhase.RESOLVING_ADDRESS:
            return SessionState(
                network_id=state.network_id,
                history=(event.record,) + state.history,
            )
        if isinstance(event, DeploymentErrored):
            return replace(state, phase=SessionPhase.FAILED, failure_reason=event.reason)
        return state

    if isinstance(event, ArtifactParsed):
        return _settle(replace(
            state,
            artifact=event.artifact,
            inputs=_EMPTY_INPUTS,
            failure_reason=None,
        ))

    if state.artifact is None or phase == SessionPhase.FAILED:
        return state

    if isinstance(event, InputChanged):
        inputs = dict(state.inputs)
        inputs[event.name] = ConstructorInput(type=event.type, value=event.value)
        return _settle(replace(state, inputs=MappingProxyType(inputs)))

    if isinstance(event, SaltChanged):
        return _settle(replace(state, salt=event.salt))

    if isinstance(event, DeployRequested):
        if is_ready(state):
            return replace(state, phase=SessionPhase.DEPLOYING)
        return state

    return state


class DeploymentSession:
    """
    Drives one deployment session against a host.

    Only one deployment may be in flight; provider account and network
    notifications update the session without interrupting it.
    """

    def __init__(
        self,
        file_service: FileService,
        provider: ChainProvider,
        deployer: Optional[FactoryDeployer] = None,
        networks: Sequence[Network] = NETWORKS,
        salt_size: int = 7
    ):
        self.file_service = file_service
        self.provider = provider
        self.deployer = deployer or FactoryDeployer(provider, log_service=file_service)
        self.networks = tuple(networks)
        self.salt_size = salt_size

        self.state = SessionState()
        self.accounts: List[str] = []
        self.can_load = False
        self.error = ""

        self._deploy_lock = asyncio.Lock()
        self._pending: Set["asyncio.Task[Optional[str]]"] = set()
        self._started = False

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # Properties

    @property
    def phase(self) -> SessionPhase:
        return self.state.phase

    @property
    def artifact(self) -> Optional[CompiledArtifact]:
        return self.state.artifact

    @property
    def salt(self) -> str:
        return self.state.salt

    @property
    def inputs(self) -> Mapping[str, ConstructorInput]:
        return self.state.inputs

    @property
    def network_id(self) -> Optional[int]:
        return self.state.network_id

    @property
    def history(self) -> Tuple[DeploymentRecord, ...]:
        return self.state.history

    @property
    def is_ready(self) -> bool:
        return is_ready(self.state)

    @property
    def is_deploying(self) -> bool:
        return self.state.phase in IN_FLIGHT or self._deploy_lock.locked()

    def _dispatch(self, event: SessionEvent) -> SessionState:
        previous = self.state.phase
        self.state = transition(self.state, event)
        if self.state.phase != previous:
            LOG.debug(f"Session phase {previous.value} -> {self.state.phase.value}")
        return self.state

    def _find_network(self, chain_id: Optional[int]) -> Optional[Network]:
        for network in self.networks:
            if network.chain_id == chain_id:
                return network
        return None

    # Lifecycle

    async def start(self) -> None:
        """Request accounts, sync the network and register listeners"""
        if self._started:
            return

        self.file_service.on(CURRENT_FILE_CHANGED, self._on_current_file_changed)
        self.file_service.on(NO_FILE_SELECTED, self._on_no_file_selected)
        await self.refresh_current_file()

        self.accounts = list(await self.provider.request_accounts())
        self.provider.on(ACCOUNTS_CHANGED, self._on_accounts_changed)
        self.provider.on(CHAIN_CHANGED, self._on_chain_changed)
        await self.sync_network()

        self._started = True
        LOG.info(
            f"Session started: {len(self.accounts)} account(s), network {self.network_id}"
        )

    def close(self) -> None:
        """Deregister all listeners"""
        self.file_service.off(CURRENT_FILE_CHANGED, self._on_current_file_changed)
        self.file_service.off(NO_FILE_SELECTED, self._on_no_file_selected)
        self.provider.remove_listener(ACCOUNTS_CHANGED, self._on_accounts_changed)
        self.provider.remove_listener(CHAIN_CHANGED, self._on_chain_changed)
        for task in self._pending:
            task.cancel()
        self._pending.clear()
        self._started = False

    async def sync_network(self) -> Optional[int]:
        """Re-read the selected network from the provider"""
        chain_id = await self.provider.current_network_id()
        network_id = chain_id if self._find_network(chain_id) else None
        self._dispatch(NetworkChanged(network_id))
        return network_id

    async def reset(self) -> None:
        """Clear artifact, inputs and salt; keep history; re-read the network"""
        try:
            chain_id = await self.provider.current_network_id()
        except Exception as e:
            LOG.warning(f"Could not re-read network during reset: {e}")
            chain_id = None
        network_id = chain_id if self._find_network(chain_id) else None
        self._dispatch(SessionReset(network_id))

    # Provider / host notifications

    def _on_accounts_changed(self, accounts: List[str]) -> None:
        if accounts:
            self.accounts = list(accounts)
            LOG.info(f"Accounts changed: {self.accounts[0]}")

    def _on_chain_changed(self, chain_id: Union[int, str]) -> None:
        if isinstance(chain_id, str):
            chain_id = int(chain_id, 0)
        if self._find_network(chain_id):
            self._dispatch(NetworkChanged(chain_id))
            LOG.info(f"Network changed: {chain_id}")

    def _on_current_file_changed(self, path: Optional[str] = None, *args) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to re-query the host; trust the event until the next refresh
            self.can_load = bool(path)
            return
        task = loop.create_task(self.refresh_current_file())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _on_no_file_selected(self, *args) -> None:
        self.can_load = False

    async def refresh_current_file(self) -> Optional[str]:
        try:
            path = await self.file_service.get_current_file()
        except Exception as e:
            LOG.debug(f"No current file: {e}")
            path = None
        self.can_load = bool(path)
        return path

    # Input collection

    async def load_artifact(self) -> CompiledArtifact:
        """
        Read and parse the currently selected file.

        Raises:
            ArtifactParseError: If nothing is selected or the file is malformed;
                the session phase is left unchanged
            DeploymentInProgressError: If a deployment is in flight
        """
        if self.is_deploying:
            raise DeploymentInProgressError()

        self.error = ""
        path = await self.refresh_current_file()
        if not path:
            self.error = "No compiled json selected"
            raise ArtifactParseError(self.error)

        try:
            raw_text = await self.file_service.read_file(path)
            artifact = parse_artifact(raw_text, path=path)
        except ArtifactParseError as e:
            self.error = e.message
            raise
        except (OSError, UnicodeDecodeError) as e:
            self.error = f"Failed to read {path}: {e}"
            raise ArtifactParseError(self.error, path=path, cause=e)

        self._dispatch(ArtifactParsed(artifact))
        return artifact

    def set_input(self, name: str, value: str) -> None:
        """Set the raw value of a constructor parameter"""
        artifact = self.state.artifact
        if artifact is None:
            raise ValidationError("No artifact loaded", code=ErrorCodes.VALIDATION_NOT_READY)
        if self.is_deploying:
            raise DeploymentInProgressError()

        for param in artifact.constructor_inputs:
            if param.name == name:
                self._dispatch(InputChanged(name, param.type, value))
                return
        raise ValidationError(
            f"Constructor has no parameter '{name}'",
            parameter=name
        )

    def set_salt(self, salt: str) -> None:
        if self.state.artifact is None:
            raise ValidationError("No artifact loaded", code=ErrorCodes.VALIDATION_NOT_READY)
        if self.is_deploying:
            raise DeploymentInProgressError()
        self._dispatch(SaltChanged(salt.strip()))

    def generate_salt(self) -> str:
        salt = generate_salt(self.salt_size)
        self.set_salt(salt)
        return salt

    def encoded_arguments(self) -> List[EncodedArgument]:
        artifact = self.state.artifact
        if artifact is None:
            return []
        return encode_arguments(artifact.constructor_inputs, self.state.inputs)

    def build_payload(self) -> bytes:
        artifact = self.state.artifact
        if artifact is None:
            raise ValidationError("No artifact loaded", code=ErrorCodes.VALIDATION_NOT_READY)
        return build_payload(
            artifact.bytecode,
            artifact.constructor_inputs,
            self.encoded_arguments()
        )

    # Network selection

    async def select_network(self, chain_id: int) -> Network:
        """
        Ask the provider to switch to ``chain_id``.

        Raises:
            ValidationError: If the chain id is not in the registry
            NetworkSwitchRejected: If the user declined; the session is reset
            NetworkSwitchFailed: On any other failure; the session is reset
        """
        network = self._find_network(chain_id)
        if network is None:
            raise ValidationError(
                f"Unknown network: {chain_id}",
                code=ErrorCodes.VALIDATION_UNKNOWN_NETWORK
            )
        if self.is_deploying:
            raise DeploymentInProgressError()

        self._dispatch(NetworkChanged(chain_id))
        try:
            await self.provider.switch_network(network.chain_id_hex)
        except Exception as e:
            message = getattr(e, "message", None) or str(e)
            await self.reset()
            if is_user_rejection(e):
                self.error = message
                raise NetworkSwitchRejected(message, chain_id=chain_id, cause=e)
            LOG.error(f"Network switch to {network.name} failed: {message}")
            raise NetworkSwitchFailed(
                f"Failed to switch to {network.name}: {message}",
                chain_id=chain_id,
                cause=e
            )

        LOG.info(f"Switched to {network.name}")
        return network

    # Deployment

    async def _on_progress(self, stage: str, message: str) -> None:
        if stage == STAGE_RESOLVING:
            self._dispatch(SubmitConfirmed())

    async def deploy(self) -> DeploymentRecord:
        """
        Deploy the loaded artifact.

        Returns:
            The new DeploymentRecord, also prepended to ``history``

        Raises:
            DeploymentInProgressError: If a deployment is already in flight
            ValidationError: If the session is not ready or no account is available
            UserRejected: If the wallet user rejected the transaction
            DeploymentFailed: On any other submit or resolve failure
        """
        if self.is_deploying:
            raise DeploymentInProgressError()

        async with self._deploy_lock:
            if not self.is_ready:
                raise ValidationError(
                    "Every constructor argument and a salt are required before deploying",
                    code=ErrorCodes.VALIDATION_NOT_READY
                )
            if not self.accounts:
                raise ValidationError(
                    "No account available to send the deployment",
                    code=ErrorCodes.VALIDATION_NOT_READY
                )

            payload = self.build_payload()
            salt = self.state.salt
            normalize_salt(salt)  # raises ValidationError before anything is sent
            self.error = ""

            self._dispatch(DeployRequested())
            try:
                record = await self.deployer.deploy(
                    payload, salt, self.accounts[0], on_progress=self._on_progress
                )
            except asyncio.CancelledError:
                self._dispatch(DeploymentErrored("Deployment cancelled"))
                await self.reset()
                raise
            except UserRejected as e:
                self._dispatch(DeploymentErrored(e.message))
                self.error = e.message
                await self.reset()
                raise
            except DeploymentFailed as e:
                self._dispatch(DeploymentErrored(e.message))
                await self.reset()
                raise
            except Exception as e:
                self._dispatch(DeploymentErrored(str(e)))
                await self.reset()
                raise DeploymentFailed(f"Deployment failed: {e}", cause=e)

            if self.state.phase == SessionPhase.DEPLOYING:
                self._dispatch(SubmitConfirmed())
            self._dispatch(AddressResolved(record))
            # Network selection is re-synchronized after every attempt
            await self.reset()
            return record
