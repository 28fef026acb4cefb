"""
Shared fixtures for create2-deployer tests.

FakeChainProvider stands in for a wallet: it records transactions and answers
factory getAddress calls by computing the CREATE2 address locally, so the
deterministic-address properties hold without a node.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from eth_abi import decode, encode

from create2_deployer.core.capabilities import EventEmitter
from create2_deployer.core.factory import DEFAULT_FACTORY_ADDRESS, compute_create2_address
from create2_deployer.core.session import DeploymentSession

BYTECODE = "6080604052348015600f57600080fd5b50603f80601d6000396000f3fe"

ACCOUNT = "0x90F8bf6A479f320ead074411a4B0e7944Ea8c9C1"
ADDRESS_A = "0x" + "aa" * 20
ADDRESS_B = "0x" + "bb" * 20


def make_artifact(inputs: Optional[List[Dict[str, str]]] = None, bytecode: str = BYTECODE) -> str:
    """Build a Remix-style compiled contract JSON"""
    abi = [
        {"type": "function", "name": "owner", "inputs": [], "stateMutability": "view"},
    ]
    if inputs is not None:
        abi.insert(0, {
            "type": "constructor",
            "inputs": [
                {"name": p["name"], "type": p["type"], "internalType": p.get("internalType", p["type"])}
                for p in inputs
            ],
            "stateMutability": "nonpayable",
        })
    return json.dumps({"abi": abi, "data": {"bytecode": {"object": bytecode}}})


class FakeChainProvider(EventEmitter):
    """In-memory ChainProvider"""

    def __init__(self, accounts: Optional[List[str]] = None, chain_id: int = 5):
        super().__init__()
        self.accounts = list(accounts if accounts is not None else [ACCOUNT])
        self.chain_id = chain_id
        self.sent: List[Dict[str, Any]] = []
        self.calls: List[Dict[str, Any]] = []
        self.switches: List[str] = []
        self.send_error: Optional[BaseException] = None
        self.call_error: Optional[BaseException] = None
        self.switch_error: Optional[BaseException] = None
        self.receipt_status = 1
        self.release: Optional[asyncio.Event] = None

    async def request_accounts(self) -> List[str]:
        return list(self.accounts)

    async def current_network_id(self) -> int:
        return self.chain_id

    async def switch_network(self, chain_id_hex: str) -> None:
        self.switches.append(chain_id_hex)
        if self.switch_error is not None:
            raise self.switch_error
        self.chain_id = int(chain_id_hex, 16)

    async def send_transaction(self, to: str, data: str, from_: str) -> Dict[str, Any]:
        self.sent.append({"to": to, "data": data, "from": from_})
        if self.release is not None:
            await self.release.wait()
        if self.send_error is not None:
            raise self.send_error
        return {"status": self.receipt_status, "transactionHash": "0x" + "ab" * 32}

    async def call_read_only(self, to: str, data: str) -> str:
        self.calls.append({"to": to, "data": data})
        if self.call_error is not None:
            raise self.call_error
        init_code, salt = decode(["bytes", "bytes32"], bytes.fromhex(data[10:]))
        address = compute_create2_address(to, salt, init_code)
        return "0x" + encode(["address"], [address]).hex()


class FakeFileService(EventEmitter):
    """In-memory FileService"""

    def __init__(self, files: Optional[Dict[str, str]] = None, current: Optional[str] = None):
        super().__init__()
        self.files = dict(files or {})
        self.current = current
        self.messages: List[str] = []
        self.current_file_error: Optional[BaseException] = None

    async def get_current_file(self) -> Optional[str]:
        if self.current_file_error is not None:
            raise self.current_file_error
        return self.current

    async def read_file(self, path: str) -> str:
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]

    async def log(self, message: str, level: str = "log") -> None:
        self.messages.append(message)

    def select(self, path: str, contents: str) -> None:
        self.files[path] = contents
        self.current = path


@pytest.fixture
def provider() -> FakeChainProvider:
    return FakeChainProvider()


@pytest.fixture
def file_service() -> FakeFileService:
    return FakeFileService()


@pytest.fixture
def factory_address() -> str:
    return DEFAULT_FACTORY_ADDRESS


@pytest_asyncio.fixture
async def session(file_service, provider):
    """A started DeploymentSession, closed after the test"""
    session = DeploymentSession(file_service, provider)
    await session.start()
    yield session
    session.close()
