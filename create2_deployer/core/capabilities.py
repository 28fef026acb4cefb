"""
Host capabilities consumed by the deployment pipeline

The core never talks to a concrete host. It is handed a file/log service and
a chain provider implementing these protocols; see ``core/client`` for the
bundled implementations.
"""

from typing import Any, Callable, Dict, List, Optional, Protocol

# File service events
CURRENT_FILE_CHANGED = "currentFileChanged"
NO_FILE_SELECTED = "noFileSelected"

# Chain provider events
ACCOUNTS_CHANGED = "accountsChanged"
CHAIN_CHANGED = "chainChanged"


class FileService(Protocol):
    """Access to the currently selected file and the host log"""

    async def get_current_file(self) -> Optional[str]:
        ...

    async def read_file(self, path: str) -> str:
        ...

    async def log(self, message: str, level: str = "log") -> None:
        ...

    def on(self, event: str, callback: Callable[..., Any]) -> None:
        ...

    def off(self, event: str, callback: Callable[..., Any]) -> None:
        ...


class ChainProvider(Protocol):
    """Wallet / node connection"""

    async def request_accounts(self) -> List[str]:
        ...

    async def current_network_id(self) -> int:
        ...

    async def switch_network(self, chain_id_hex: str) -> None:
        ...

    async def send_transaction(self, to: str, data: str, from_: str) -> Dict[str, Any]:
        ...

    async def call_read_only(self, to: str, data: str) -> str:
        ...

    def on(self, event: str, callback: Callable[..., Any]) -> None:
        ...

    def remove_listener(self, event: str, callback: Callable[..., Any]) -> None:
        ...


class EventEmitter:
    """Minimal listener registry shared by the bundled host implementations"""

    def __init__(self):
        self._listeners: Dict[str, List[Callable[..., Any]]] = {}

    def on(self, event: str, callback: Callable[..., Any]) -> None:
        self._listeners.setdefault(event, []).append(callback)

    def remove_listener(self, event: str, callback: Callable[..., Any]) -> None:
        listeners = self._listeners.get(event, [])
        if callback in listeners:
            listeners.remove(callback)

    off = remove_listener

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, *args) -> None:
        for callback in list(self._listeners.get(event, [])):
            callback(*args)
