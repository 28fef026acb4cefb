"""
Compiled-contract artifact parsing

Turns the JSON produced by the compiler into a CompiledArtifact exposing the
ABI description and the creation bytecode.

Accepted layouts:
- Remix: ``{"abi": [...], "data": {"bytecode": {"object": "6080..."}}}``
- Foundry: ``{"abi": [...], "bytecode": {"object": "0x6080..."}}``
- Hardhat: ``{"abi": [...], "bytecode": "0x6080..."}``
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from eth_utils import decode_hex, is_hex, remove_0x_prefix

from ..utils.exceptions import ArtifactParseError, ErrorCodes

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class AbiParameter:
    """A single declared input of an ABI entry"""
    name: str
    type: str
    internal_type: str = ""

    @property
    def is_array(self) -> bool:
        return "[]" in self.type


@dataclass(frozen=True)
class AbiEntry:
    """One item of the ABI description (constructor, function, event, ...)"""
    type: str
    name: str = ""
    inputs: Tuple[AbiParameter, ...] = ()
    state_mutability: Optional[str] = None


@dataclass(frozen=True)
class CompiledArtifact:
    """Parsed compiler output"""
    abi: Tuple[AbiEntry, ...]
    bytecode: str  # hex, no 0x prefix, no constructor arguments
    constructor: Optional[AbiEntry] = None
    raw_abi: List[Dict[str, Any]] = field(default_factory=list, compare=False, repr=False)

    @property
    def constructor_inputs(self) -> Tuple[AbiParameter, ...]:
        if self.constructor is None:
            return ()
        return self.constructor.inputs

    @property
    def has_constructor_args(self) -> bool:
        return len(self.constructor_inputs) > 0

    @property
    def bytecode_bytes(self) -> bytes:
        return decode_hex(self.bytecode)


def _parse_parameter(raw: Dict[str, Any], entry_name: str, index: int) -> AbiParameter:
    if not isinstance(raw, dict):
        raise ArtifactParseError(
            f"Input #{index} of '{entry_name}' is not an object",
            code=ErrorCodes.ARTIFACT_MISSING_ABI
        )
    param_type = raw.get("type")
    if not isinstance(param_type, str) or not param_type:
        raise ArtifactParseError(
            f"Input #{index} of '{entry_name}' has no type",
            code=ErrorCodes.ARTIFACT_MISSING_ABI
        )
    name = raw.get("name") or ""
    if not isinstance(name, str):
        raise ArtifactParseError(
            f"Input #{index} of '{entry_name}' has a non-string name",
            code=ErrorCodes.ARTIFACT_MISSING_ABI
        )
    internal_type = raw.get("internalType")
    return AbiParameter(
        name=name,
        type=param_type,
        internal_type=internal_type if isinstance(internal_type, str) and internal_type else param_type,
    )


def _parse_entry(raw: Dict[str, Any]) -> AbiEntry:
    if not isinstance(raw, dict):
        raise ArtifactParseError(
            "ABI entries must be objects",
            code=ErrorCodes.ARTIFACT_MISSING_ABI
        )
    # Solidity omits "type" for functions in some older outputs
    entry_type = raw.get("type", "function")
    name = raw.get("name") or ""
    if not isinstance(entry_type, str) or not isinstance(name, str):
        raise ArtifactParseError(
            "ABI entry type and name must be strings",
            code=ErrorCodes.ARTIFACT_MISSING_ABI
        )
    raw_inputs = raw.get("inputs") or []
    if not isinstance(raw_inputs, list):
        raise ArtifactParseError(
            f"Inputs of '{name or entry_type}' must be an array",
            code=ErrorCodes.ARTIFACT_MISSING_ABI
        )
    inputs = tuple(
        _parse_parameter(p, name or entry_type, i) for i, p in enumerate(raw_inputs)
    )
    return AbiEntry(
        type=entry_type,
        name=name,
        inputs=inputs,
        state_mutability=raw.get("stateMutability"),
    )


def _extract_bytecode(contract_json: Dict[str, Any]) -> str:
    candidates = []
    data = contract_json.get("data")
    if isinstance(data, dict):
        candidates.append(data.get("bytecode"))
    candidates.append(contract_json.get("bytecode"))

    for candidate in candidates:
        if isinstance(candidate, dict):
            candidate = candidate.get("object")
        if isinstance(candidate, str) and candidate:
            return candidate

    raise ArtifactParseError(
        "Missing bytecode in artifact (expected data.bytecode.object)",
        code=ErrorCodes.ARTIFACT_MISSING_BYTECODE
    )


def find_constructor(abi: Tuple[AbiEntry, ...]) -> Optional[AbiEntry]:
    """Return the first constructor entry if it declares at least one input"""
    for entry in abi:
        if entry.type == "constructor":
            if entry.inputs:
                return entry
            return None
    return None


def parse_artifact(raw_text: str, path: Optional[str] = None) -> CompiledArtifact:
    """
    Parse a compiled-contract artifact.

    Args:
        raw_text: File contents
        path: Source path, used in error details only

    Returns:
        CompiledArtifact

    Raises:
        ArtifactParseError: If the text is not JSON, or lacks an ABI array or bytecode
    """
    try:
        contract_json = json.loads(raw_text)
    except (TypeError, ValueError) as e:
        raise ArtifactParseError(
            f"Artifact is not valid JSON: {e}",
            path=path,
            cause=e
        )

    if not isinstance(contract_json, dict):
        raise ArtifactParseError("Artifact must be a JSON object", path=path)

    raw_abi = contract_json.get("abi")
    if not isinstance(raw_abi, list):
        raise ArtifactParseError(
            "Missing 'abi' array in artifact",
            path=path,
            code=ErrorCodes.ARTIFACT_MISSING_ABI
        )

    abi = tuple(_parse_entry(entry) for entry in raw_abi)

    bytecode = remove_0x_prefix(_extract_bytecode(contract_json))
    if len(bytecode) % 2 != 0 or not is_hex(bytecode):
        raise ArtifactParseError(
            "Bytecode is not valid hex (unlinked libraries?)",
            path=path,
            code=ErrorCodes.ARTIFACT_INVALID_BYTECODE
        )

    constructor = find_constructor(abi)
    artifact = CompiledArtifact(
        abi=abi,
        bytecode=bytecode,
        constructor=constructor,
        raw_abi=raw_abi,
    )

    if constructor:
        LOG.info(
            f"Loaded artifact with constructor "
            f"({', '.join(p.type + ' ' + p.name for p in constructor.inputs)})"
        )
    else:
        LOG.info("Loaded artifact without constructor arguments")
    return artifact
