"""
Exception hierarchy for create2-deployer

All errors raised by the deployment pipeline derive from Create2DeployerError,
which carries an optional numeric code, a details dictionary and the causing
exception.

Design Notes:
- Parse and validation errors block progress without touching session state
- Protocol errors (submit/resolve/network switch) always reset the session
- UserRejected keeps the wallet's message verbatim for display
"""

from typing import Any, Dict, Optional

# EIP-1193: the user rejected the request
USER_REJECTED_CODE = 4001


class ErrorCodes:
    """Numeric error codes attached to Create2DeployerError instances"""
    ARTIFACT_INVALID_JSON = 1001
    ARTIFACT_MISSING_ABI = 1002
    ARTIFACT_MISSING_BYTECODE = 1003
    ARTIFACT_INVALID_BYTECODE = 1004

    VALIDATION_MISSING_ARGUMENT = 2001
    VALIDATION_INVALID_ARGUMENT = 2002
    VALIDATION_INVALID_SALT = 2003
    VALIDATION_NOT_READY = 2004
    VALIDATION_UNKNOWN_NETWORK = 2005

    DEPLOYMENT_FAILED = 3001
    DEPLOYMENT_REVERTED = 3002
    DEPLOYMENT_RESOLVE_FAILED = 3003
    DEPLOYMENT_IN_PROGRESS = 3004
    DEPLOYMENT_TIMEOUT = 3005

    NETWORK_SWITCH_FAILED = 4000
    USER_REJECTED = USER_REJECTED_CODE

    CONFIG_FILE_NOT_FOUND = 5001
    CONFIG_VALIDATION_FAILED = 5002

    RPC_ERROR = 6001


class Create2DeployerError(Exception):
    """Base exception class for create2-deployer"""

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        self.cause = cause
        super().__init__(message)

    def __str__(self) -> str:
        if self.code is not None:
            return f"[{self.code}] {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for logs and JSON output"""
        result = {
            "error": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
        }
        if self.cause is not None:
            result["cause"] = repr(self.cause)
        return result


class ArtifactParseError(Create2DeployerError):
    """Compiled-contract artifact is malformed"""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        kwargs.setdefault("code", ErrorCodes.ARTIFACT_INVALID_JSON)
        super().__init__(message, **kwargs)
        if path:
            self.details["path"] = path


class ValidationError(Create2DeployerError):
    """Missing or invalid constructor argument, salt or selection"""

    def __init__(self, message: str, parameter: Optional[str] = None, **kwargs):
        kwargs.setdefault("code", ErrorCodes.VALIDATION_INVALID_ARGUMENT)
        super().__init__(message, **kwargs)
        if parameter:
            self.details["parameter"] = parameter


class UserRejected(Create2DeployerError):
    """The wallet user explicitly rejected the request"""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("code", ErrorCodes.USER_REJECTED)
        super().__init__(message, **kwargs)


class DeploymentFailed(Create2DeployerError):
    """On-chain or network failure while submitting or resolving"""

    def __init__(self, message: str, phase: Optional[str] = None, **kwargs):
        kwargs.setdefault("code", ErrorCodes.DEPLOYMENT_FAILED)
        super().__init__(message, **kwargs)
        if phase:
            self.details["phase"] = phase


class DeploymentInProgressError(Create2DeployerError):
    """A deployment was triggered while another one is in flight"""

    def __init__(self, message: str = "A deployment is already in progress", **kwargs):
        kwargs.setdefault("code", ErrorCodes.DEPLOYMENT_IN_PROGRESS)
        super().__init__(message, **kwargs)


class NetworkSwitchRejected(Create2DeployerError):
    """The user declined a chain switch request"""

    def __init__(self, message: str, chain_id: Optional[int] = None, **kwargs):
        kwargs.setdefault("code", ErrorCodes.USER_REJECTED)
        super().__init__(message, **kwargs)
        if chain_id is not None:
            self.details["chain_id"] = chain_id


class NetworkSwitchFailed(Create2DeployerError):
    """Chain switch failed for a reason other than user rejection"""

    def __init__(self, message: str, chain_id: Optional[int] = None, **kwargs):
        kwargs.setdefault("code", ErrorCodes.NETWORK_SWITCH_FAILED)
        super().__init__(message, **kwargs)
        if chain_id is not None:
            self.details["chain_id"] = chain_id


class ConfigurationError(Create2DeployerError):
    """Configuration file missing or invalid"""

    def __init__(
        self,
        message: str,
        config_file: Optional[str] = None,
        field: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        if config_file:
            self.details["config_file"] = config_file
        if field:
            self.details["field"] = field


class APIError(Create2DeployerError):
    """JSON-RPC call error; ``code`` is the RPC error code when present"""
    pass


def is_user_rejection(error: BaseException) -> bool:
    """Check whether an error carries the EIP-1193 user-rejection code"""
    return getattr(error, "code", None) == USER_REJECTED_CODE
