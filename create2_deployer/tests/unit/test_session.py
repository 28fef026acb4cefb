"""
Unit tests for the deployment session state machine
"""

import asyncio

import pytest
from eth_abi import encode

from create2_deployer.core.artifact import parse_artifact
from create2_deployer.core.capabilities import ACCOUNTS_CHANGED, CHAIN_CHANGED, CURRENT_FILE_CHANGED
from create2_deployer.core.client.local_host import LocalFileService
from create2_deployer.core.factory import compute_create2_address
from create2_deployer.core.session import (
    AddressResolved,
    ArtifactParsed,
    DeployRequested,
    DeploymentErrored,
    DeploymentSession,
    InputChanged,
    SaltChanged,
    SessionPhase,
    SessionReset,
    SessionState,
    SubmitConfirmed,
    is_ready,
    transition,
)
from create2_deployer.core.factory import DeploymentRecord
from create2_deployer.utils.exceptions import (
    APIError,
    ArtifactParseError,
    DeploymentFailed,
    DeploymentInProgressError,
    NetworkSwitchFailed,
    NetworkSwitchRejected,
    UserRejected,
    ValidationError,
)
from create2_deployer.tests.conftest import (
    ACCOUNT,
    ADDRESS_A,
    ADDRESS_B,
    BYTECODE,
    FakeChainProvider,
    FakeFileService,
    make_artifact,
)

TWO_PARAMS = make_artifact([
    {"name": "a", "type": "uint256"},
    {"name": "b", "type": "uint256"},
])


def _loaded(raw: str) -> SessionState:
    return transition(SessionState(), ArtifactParsed(parse_artifact(raw)))


class TestTransition:
    """Test the pure transition function"""

    def test_default_state(self):
        state = SessionState()

        assert state.phase == SessionPhase.IDLE
        assert dict(state.inputs) == {}
        assert state.history == ()
        assert SessionState() == state

    def test_artifact_with_parameters_collects_input(self):
        state = _loaded(TWO_PARAMS)

        assert state.phase == SessionPhase.COLLECTING_INPUT

    def test_artifact_without_parameters_waits_for_salt(self):
        state = _loaded(make_artifact(None))
        assert state.phase == SessionPhase.ARTIFACT_LOADED
        assert not is_ready(state)

        state = transition(state, SaltChanged("0x01"))
        assert state.phase == SessionPhase.READY_TO_DEPLOY

    def test_readiness_gate(self):
        state = _loaded(TWO_PARAMS)
        state = transition(state, SaltChanged("0x01"))
        state = transition(state, InputChanged("a", "uint256", "1"))
        assert not is_ready(state)
        assert state.phase == SessionPhase.COLLECTING_INPUT

        state = transition(state, InputChanged("b", "uint256", ""))
        assert not is_ready(state)

        state = transition(state, InputChanged("b", "uint256", "2"))
        assert is_ready(state)
        assert state.phase == SessionPhase.READY_TO_DEPLOY

    def test_readiness_requires_salt(self):
        state = _loaded(TWO_PARAMS)
        state = transition(state, InputChanged("a", "uint256", "1"))
        state = transition(state, InputChanged("b", "uint256", "2"))
        assert not is_ready(state)

        state = transition(state, SaltChanged("0x01"))
        assert is_ready(state)

        state = transition(state, SaltChanged(""))
        assert state.phase == SessionPhase.COLLECTING_INPUT

    def test_stray_input_blocks_readiness(self):
        state = _loaded(TWO_PARAMS)
        state = transition(state, SaltChanged("0x01"))
        state = transition(state, InputChanged("a", "uint256", "1"))
        state = transition(state, InputChanged("c", "uint256", "3"))

        assert not is_ready(state)

    def test_deploy_blocked_when_not_ready(self):
        state = _loaded(TWO_PARAMS)

        assert transition(state, DeployRequested()) is state

    def test_successful_lifecycle(self):
        state = transition(_loaded(make_artifact(None)), SaltChanged("0x01"))
        state = transition(state, DeployRequested())
        assert state.phase == SessionPhase.DEPLOYING

        assert transition(state, SaltChanged("0x02")) is state
        assert transition(state, ArtifactParsed(state.artifact)) is state

        state = transition(state, SubmitConfirmed())
        assert state.phase == SessionPhase.RESOLVING_ADDRESS

        first = DeploymentRecord(ADDRESS_A)
        state = transition(state, AddressResolved(first))
        assert state.phase == SessionPhase.IDLE
        assert state.artifact is None
        assert state.salt == ""
        assert state.history == (first,)

        state = transition(_loaded(make_artifact(None)), SaltChanged("0x01"))
        state = SessionState(
            phase=SessionPhase.RESOLVING_ADDRESS,
            artifact=state.artifact,
            salt="0x01",
            history=(first,),
        )
        second = DeploymentRecord(ADDRESS_B)
        state = transition(state, AddressResolved(second))
        assert state.history == (second, first)

    def test_failure_then_reset(self):
        state = transition(_loaded(TWO_PARAMS), SaltChanged("0x01"))
        state = transition(state, InputChanged("a", "uint256", "1"))
        state = transition(state, InputChanged("b", "uint256", "2"))
        state = transition(state, DeployRequested())

        state = transition(state, DeploymentErrored("boom"))
        assert state.phase == SessionPhase.FAILED
        assert state.failure_reason == "boom"

        state = transition(state, SessionReset(network_id=4))
        assert state.phase == SessionPhase.IDLE
        assert state.artifact is None
        assert dict(state.inputs) == {}
        assert state.salt == ""
        assert state.network_id == 4

    def test_new_artifact_clears_inputs(self):
        state = transition(_loaded(TWO_PARAMS), InputChanged("a", "uint256", "1"))
        state = transition(state, SaltChanged("0x01"))

        state = transition(state, ArtifactParsed(parse_artifact(TWO_PARAMS)))

        assert dict(state.inputs) == {}
        assert state.salt == "0x01"


class TestDeploymentSession:
    """Test DeploymentSession against in-memory host and provider"""

    @pytest.mark.asyncio
    async def test_start_and_close_manage_listeners(self, file_service, provider):
        session = DeploymentSession(file_service, provider)

        async with session:
            assert session.accounts == [ACCOUNT]
            assert session.network_id == 5
            assert provider.listener_count(ACCOUNTS_CHANGED) == 1
            assert provider.listener_count(CHAIN_CHANGED) == 1

        assert provider.listener_count(ACCOUNTS_CHANGED) == 0
        assert provider.listener_count(CHAIN_CHANGED) == 0

    @pytest.mark.asyncio
    async def test_provider_notifications(self, session, provider):
        provider.emit(ACCOUNTS_CHANGED, [])
        assert session.accounts == [ACCOUNT]

        provider.emit(ACCOUNTS_CHANGED, [ADDRESS_A])
        assert session.accounts == [ADDRESS_A]

        provider.emit(CHAIN_CHANGED, 999999)
        assert session.network_id == 5

        provider.emit(CHAIN_CHANGED, "0xaa36a7")
        assert session.network_id == 11155111

    @pytest.mark.asyncio
    async def test_unknown_network_on_start(self, file_service):
        provider = FakeChainProvider(chain_id=31337)

        async with DeploymentSession(file_service, provider) as session:
            assert session.network_id is None

    @pytest.mark.asyncio
    async def test_current_file_failure_means_no_file(self, session, file_service):
        file_service.current_file_error = RuntimeError("plugin not ready")

        assert await session.refresh_current_file() is None
        assert session.can_load is False

    @pytest.mark.asyncio
    async def test_load_without_file(self, session):
        with pytest.raises(ArtifactParseError):
            await session.load_artifact()

        assert session.phase == SessionPhase.IDLE

    @pytest.mark.asyncio
    async def test_parse_error_keeps_phase(self, session, file_service):
        file_service.select("Token.json", TWO_PARAMS)
        await session.load_artifact()
        session.set_input("a", "1")

        file_service.select("broken.json", "{")
        with pytest.raises(ArtifactParseError):
            await session.load_artifact()

        assert session.phase == SessionPhase.COLLECTING_INPUT
        assert session.inputs["a"].value == "1"
        assert session.error

    @pytest.mark.asyncio
    async def test_set_input_unknown_parameter(self, session, file_service):
        file_service.select("Token.json", TWO_PARAMS)
        await session.load_artifact()

        with pytest.raises(ValidationError):
            session.set_input("c", "1")

    @pytest.mark.asyncio
    async def test_deploy_with_constructor(self, session, file_service, provider):
        file_service.select("Token.json", make_artifact([
            {"name": "amount", "type": "uint256"},
            {"name": "recipients", "type": "address[]"},
        ]))
        await session.load_artifact()
        session.set_input("amount", "100")
        session.set_input("recipients", f"{ADDRESS_A}, {ADDRESS_B}")
        session.set_salt("0x01")
        assert session.phase == SessionPhase.READY_TO_DEPLOY

        payload = session.build_payload()
        expected_payload = bytes.fromhex(BYTECODE) + encode(
            ["uint256", "address[]"],
            [100, [ADDRESS_A, ADDRESS_B]]
        )
        assert payload == expected_payload

        provider.chain_id = 11155111
        record = await session.deploy()

        assert record.address == compute_create2_address(
            session.deployer.factory_address, "0x01", payload
        )
        assert session.history == (record,)
        assert session.phase == SessionPhase.IDLE
        assert session.artifact is None
        assert session.salt == ""
        assert dict(session.inputs) == {}
        assert session.network_id == 11155111

    @pytest.mark.asyncio
    async def test_deploy_without_constructor(self, session, file_service, provider):
        file_service.select("Plain.json", make_artifact(None))
        await session.load_artifact()
        assert not session.is_ready

        salt = session.generate_salt()
        assert session.is_ready
        assert session.build_payload() == bytes.fromhex(BYTECODE)

        first = await session.deploy()
        assert first.salt == salt

        await session.load_artifact()
        session.set_salt("0x02")
        second = await session.deploy()

        assert session.history == (second, first)

    @pytest.mark.asyncio
    async def test_deploy_not_ready(self, session, file_service):
        file_service.select("Token.json", TWO_PARAMS)
        await session.load_artifact()
        session.set_input("a", "1")
        session.set_salt("0x01")

        with pytest.raises(ValidationError):
            await session.deploy()

        assert session.phase == SessionPhase.COLLECTING_INPUT

    @pytest.mark.asyncio
    async def test_user_rejection_resets(self, session, file_service, provider):
        file_service.select("Plain.json", make_artifact(None))
        await session.load_artifact()
        session.set_salt("0x01")
        provider.send_error = APIError("User denied transaction signature.", code=4001)

        with pytest.raises(UserRejected):
            await session.deploy()

        assert session.phase == SessionPhase.IDLE
        assert session.history == ()
        assert session.error == "User denied transaction signature."
        assert session.artifact is None
        assert session.salt == ""

    @pytest.mark.asyncio
    async def test_other_failure_resets_silently(self, session, file_service, provider):
        file_service.select("Plain.json", make_artifact(None))
        await session.load_artifact()
        session.set_salt("0x01")
        provider.send_error = APIError("execution reverted", code=3)
        provider.chain_id = 11155111

        with pytest.raises(DeploymentFailed):
            await session.deploy()

        assert session.phase == SessionPhase.IDLE
        assert session.history == ()
        assert session.error == ""
        assert session.network_id == 11155111

    @pytest.mark.asyncio
    async def test_resolve_failure_resets(self, session, file_service, provider):
        file_service.select("Plain.json", make_artifact(None))
        await session.load_artifact()
        session.set_salt("0x01")
        provider.call_error = APIError("header not found", code=-32000)

        with pytest.raises(DeploymentFailed) as exc_info:
            await session.deploy()

        assert exc_info.value.details["phase"] == "resolve"
        assert len(provider.sent) == 1
        assert session.phase == SessionPhase.IDLE
        assert session.history == ()
        assert session.artifact is None
        assert session.error == ""

    @pytest.mark.asyncio
    async def test_cancelled_deploy_resets(self, session, file_service, provider):
        file_service.select("Plain.json", make_artifact(None))
        await session.load_artifact()
        session.set_salt("0x01")
        provider.release = asyncio.Event()

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(session.deploy(), 0.05)

        assert session.phase == SessionPhase.IDLE
        assert session.is_deploying is False
        assert session.history == ()

        provider.release = None
        await session.load_artifact()
        session.set_salt("0x02")
        record = await session.deploy()
        assert session.history == (record,)

    @pytest.mark.asyncio
    async def test_reentrant_deploy_is_rejected(self, session, file_service, provider):
        file_service.select("Plain.json", make_artifact(None))
        await session.load_artifact()
        session.set_salt("0x01")
        provider.release = asyncio.Event()

        first = asyncio.ensure_future(session.deploy())
        for _ in range(3):
            await asyncio.sleep(0)
        assert session.phase == SessionPhase.DEPLOYING

        with pytest.raises(DeploymentInProgressError):
            await session.deploy()
        with pytest.raises(DeploymentInProgressError):
            session.set_salt("0x02")
        with pytest.raises(DeploymentInProgressError):
            await session.load_artifact()

        provider.release.set()
        record = await first

        assert session.history == (record,)
        assert len(provider.sent) == 1

    @pytest.mark.asyncio
    async def test_select_network(self, session, provider):
        network = await session.select_network(4)

        assert network.chain_id == 4
        assert provider.switches == ["0x4"]
        assert session.network_id == 4

    @pytest.mark.asyncio
    async def test_select_unknown_network(self, session, provider):
        with pytest.raises(ValidationError):
            await session.select_network(31337)

        assert provider.switches == []

    @pytest.mark.asyncio
    async def test_network_switch_rejected(self, session, file_service, provider):
        file_service.select("Plain.json", make_artifact(None))
        await session.load_artifact()
        session.set_salt("0x01")
        provider.switch_error = APIError("User rejected the request.", code=4001)

        with pytest.raises(NetworkSwitchRejected):
            await session.select_network(1)

        assert session.error == "User rejected the request."
        assert session.phase == SessionPhase.IDLE
        assert session.artifact is None
        assert session.network_id == 5

    @pytest.mark.asyncio
    async def test_network_switch_failed(self, session, provider):
        provider.switch_error = APIError("Unrecognized chain ID", code=4902)

        with pytest.raises(NetworkSwitchFailed):
            await session.select_network(42)

        assert session.network_id == 5
        assert session.error == ""


@pytest.mark.asyncio
async def test_session_without_accounts():
    file_service = FakeFileService()
    file_service.select("Plain.json", make_artifact(None))
    provider = FakeChainProvider(accounts=[])

    async with DeploymentSession(file_service, provider) as session:
        await session.load_artifact()
        session.set_salt("0x01")

        with pytest.raises(ValidationError):
            await session.deploy()

    assert provider.sent == []


@pytest.mark.asyncio
async def test_undecodable_file_is_parse_error(tmp_path, provider):
    artifact = tmp_path / "Token.json"
    artifact.write_bytes(b"\xff\xfe\x00garbage")
    file_service = LocalFileService(artifact)

    async with DeploymentSession(file_service, provider) as session:
        with pytest.raises(ArtifactParseError) as exc_info:
            await session.load_artifact()

        assert isinstance(exc_info.value.cause, UnicodeDecodeError)
        assert session.error.startswith("Failed to read")
        assert session.phase == SessionPhase.IDLE


@pytest.mark.asyncio
async def test_file_change_event_refreshes(session, file_service):
    assert session.can_load is False

    file_service.select("Token.json", TWO_PARAMS)
    file_service.emit(CURRENT_FILE_CHANGED, "Token.json")
    for _ in range(3):
        await asyncio.sleep(0)

    assert session.can_load is True


def test_file_change_event_without_loop(file_service, provider):
    session = DeploymentSession(file_service, provider)

    session._on_current_file_changed("Token.json")
    assert session.can_load is True

    session._on_current_file_changed(None)
    assert session.can_load is False
