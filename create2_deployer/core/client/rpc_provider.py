"""
JSON-RPC chain provider

Implements the ChainProvider capability over HTTP JSON-RPC with aiohttp.
Transactions are either signed locally with an eth_account key or sent with
eth_sendTransaction from an account unlocked on the node (anvil, hardhat,
or a wallet exposing an RPC endpoint).

Usage:
    async with JsonRpcProvider("http://127.0.0.1:8545") as provider:
        accounts = await provider.request_accounts()
        receipt = await provider.send_transaction(factory, data, accounts[0])
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import aiohttp
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import add_0x_prefix
from web3 import Web3

from ..capabilities import ACCOUNTS_CHANGED, CHAIN_CHANGED, EventEmitter
from ...utils.common import hex_to_int
from ...utils.exceptions import APIError, DeploymentFailed, ErrorCodes

LOG = logging.getLogger(__name__)

# JSON-RPC "method not found"
METHOD_NOT_FOUND = -32601


def to_checksum_address(address: str) -> str:
    """Convert address to EIP-55 checksum format"""
    return Web3.to_checksum_address(add_0x_prefix(address))


class JsonRpcProvider(EventEmitter):
    """ChainProvider over HTTP JSON-RPC"""

    def __init__(
        self,
        rpc_url: str,
        private_key: Optional[str] = None,
        timeout: float = 30.0,
        receipt_timeout: float = 120.0,
        poll_interval: float = 1.0,
        gas_padding: float = 1.2
    ):
        super().__init__()
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.receipt_timeout = receipt_timeout
        self.poll_interval = poll_interval
        self.gas_padding = gas_padding
        self.account: Optional[LocalAccount] = Account.from_key(private_key) if private_key else None
        self.session: Optional[aiohttp.ClientSession] = None
        self._request_id = 0
        self._known_accounts: Optional[List[str]] = None
        self._known_chain_id: Optional[int] = None

    async def __aenter__(self):
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout)
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.session:
            await self.session.close()
            self.session = None

    async def send_request(self, method: str, params: List[Any] = None) -> Any:
        """Send JSON-RPC request

        Args:
            method: RPC method name
            params: Parameter list

        Returns:
            RPC response result

        Raises:
            APIError: Request failed or returned error; ``code`` holds the RPC error code
        """
        if not self.session:
            raise RuntimeError("Provider not initialized. Use async with statement.")

        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
            "id": self._request_id
        }

        try:
            async with self.session.post(self.rpc_url, json=payload) as response:
                if response.status != 200:
                    text = await response.text()
                    raise APIError(
                        f"HTTP {response.status}: {text}",
                        code=response.status
                    )

                result = await response.json(content_type=None)
                if "error" in result:
                    error = result["error"]
                    raise APIError(
                        error.get("message", str(error)),
                        code=error.get("code"),
                        details={"method": method, "data": error.get("data")}
                    )

                return result.get("result")

        except asyncio.TimeoutError as e:
            raise APIError(f"Request timeout after {self.timeout}s", code=ErrorCodes.RPC_ERROR, cause=e)
        except aiohttp.ClientError as e:
            raise APIError(f"Connection error: {e}", code=ErrorCodes.RPC_ERROR, cause=e)
        except json.JSONDecodeError as e:
            raise APIError(f"Invalid JSON response: {e}", code=ErrorCodes.RPC_ERROR, cause=e)

    # ChainProvider

    async def request_accounts(self) -> List[str]:
        if self.account is not None:
            return [self.account.address]
        accounts = await self.send_request("eth_accounts")
        return [to_checksum_address(a) for a in accounts or []]

    async def current_network_id(self) -> int:
        return hex_to_int(await self.send_request("eth_chainId"))

    async def switch_network(self, chain_id_hex: str) -> None:
        """
        Request a chain switch.

        Plain nodes do not implement wallet_switchEthereumChain; for them the
        switch succeeds only if the node already serves the requested chain.
        """
        try:
            await self.send_request(
                "wallet_switchEthereumChain",
                [{"chainId": chain_id_hex}]
            )
        except APIError as e:
            if e.code != METHOD_NOT_FOUND:
                raise
            current = await self.current_network_id()
            if current != hex_to_int(chain_id_hex):
                raise APIError(
                    f"Node at {self.rpc_url} serves chain {current}, "
                    f"cannot switch to {hex_to_int(chain_id_hex)}",
                    code=ErrorCodes.RPC_ERROR
                )
        await self.poll_changes()

    async def call_read_only(self, to: str, data: str) -> str:
        return await self.send_request("eth_call", [{"to": to, "data": data}, "latest"])

    async def send_transaction(self, to: str, data: str, from_: str) -> Dict[str, Any]:
        """Send a transaction and wait for its receipt"""
        if self.account is not None:
            tx_hash = await self._send_signed(to, data)
        else:
            tx_hash = await self.send_request(
                "eth_sendTransaction",
                [{"from": from_, "to": to, "data": data}]
            )
        LOG.info(f"Transaction sent: {tx_hash}")
        return await self.wait_for_receipt(tx_hash)

    async def _send_signed(self, to: str, data: str) -> str:
        address = self.account.address
        nonce = hex_to_int(await self.send_request("eth_getTransactionCount", [address, "pending"]))
        chain_id = await self.current_network_id()
        gas_estimate = hex_to_int(await self.send_request(
            "eth_estimateGas",
            [{"from": address, "to": to, "data": data}]
        ))
        gas_price = hex_to_int(await self.send_request("eth_gasPrice"))

        tx = {
            "to": to_checksum_address(to),
            "data": data,
            "value": 0,
            "nonce": nonce,
            "chainId": chain_id,
            "gas": max(int(gas_estimate * self.gas_padding), 21000),
            "gasPrice": gas_price,
        }
        signed = self.account.sign_transaction(tx)
        return await self.send_request(
            "eth_sendRawTransaction",
            ["0x" + bytes(signed.raw_transaction).hex()]
        )

    async def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        """Poll for a transaction receipt

        Raises:
            DeploymentFailed: If no receipt shows up within ``receipt_timeout``
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        while True:
            receipt = await self.send_request("eth_getTransactionReceipt", [tx_hash])
            if receipt is not None:
                return receipt
            if loop.time() - start_time > self.receipt_timeout:
                raise DeploymentFailed(
                    f"No receipt for {tx_hash} after {self.receipt_timeout}s",
                    code=ErrorCodes.DEPLOYMENT_TIMEOUT,
                    details={"transaction_hash": tx_hash}
                )
            await asyncio.sleep(self.poll_interval)

    # Change notifications

    async def poll_changes(self) -> None:
        """Emit accountsChanged / chainChanged when the node state differs from the last poll"""
        accounts = await self.request_accounts()
        chain_id = await self.current_network_id()

        if self._known_accounts is not None and accounts != self._known_accounts:
            self.emit(ACCOUNTS_CHANGED, accounts)
        if self._known_chain_id is not None and chain_id != self._known_chain_id:
            self.emit(CHAIN_CHANGED, chain_id)

        self._known_accounts = accounts
        self._known_chain_id = chain_id
