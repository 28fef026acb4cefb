from .local_host import LocalFileService
from .rpc_provider import JsonRpcProvider

__all__ = ["LocalFileService", "JsonRpcProvider"]
