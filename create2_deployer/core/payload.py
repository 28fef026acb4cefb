"""
Deployment payload builder

The factory expects init code: the creation bytecode followed by the
ABI-encoded constructor arguments. Arguments arrive as strings (see
``core/codec.py``) and are coerced to the Python types eth_abi needs.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, List, Sequence, Union

from eth_abi import encode
from eth_abi.exceptions import EncodingError, ParseError
from eth_abi.grammar import BasicType, TupleType, normalize, parse
from eth_utils import decode_hex, is_address, to_bytes, to_checksum_address

from .artifact import AbiParameter
from .codec import EncodedArgument, arrayify
from ..utils.exceptions import ErrorCodes, ValidationError

LOG = logging.getLogger(__name__)

_TRUE = ("true", "1", "yes")
_FALSE = ("false", "0", "no", "")


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("bool is not an integer")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.lower().startswith(("0x", "-0x")):
        return int(text, 16)
    return int(text, 10)


def _coerce(abi_type: Union[BasicType, TupleType], value: Any) -> Any:
    if isinstance(abi_type, TupleType):
        raise TypeError("tuple parameters are not supported")

    if abi_type.arrlist:
        if isinstance(value, str):
            value = arrayify(value)
        return [_coerce(abi_type.item_type, item) for item in value]

    base = abi_type.base
    if base in ("uint", "int"):
        return _to_int(value)
    if base == "address":
        if not is_address(value):
            raise ValueError(f"'{value}' is not an address")
        return to_checksum_address(value)
    if base == "bool":
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise ValueError(f"'{value}' is not a boolean")
    if base == "bytes":
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        return to_bytes(hexstr=value)
    if base == "string":
        return str(value)
    if base in ("fixed", "ufixed"):
        return Decimal(str(value).strip())
    raise TypeError(f"unsupported ABI type '{abi_type.to_type_str()}'")


def coerce_value(abi_type: str, value: Any, name: str = "") -> Any:
    """
    Convert a codec value to what eth_abi accepts for ``abi_type``.

    Raises:
        ValidationError: If the value cannot represent the type
    """
    try:
        return _coerce(parse(normalize(abi_type)), value)
    except (ValueError, TypeError, InvalidOperation, ParseError) as e:
        label = f"{abi_type} {name}" if name else abi_type
        raise ValidationError(
            f"Invalid value for {label}: {e}",
            parameter=name or None,
            cause=e
        )


def encode_constructor_args(types: Sequence[str], values: Sequence[Any]) -> bytes:
    """ABI-encode already coerced constructor values"""
    try:
        return encode([normalize(t) for t in types], list(values))
    except (EncodingError, ParseError, ValueError, TypeError) as e:
        raise ValidationError(
            f"Failed to ABI-encode constructor arguments: {e}",
            cause=e
        )


def _bytecode_to_bytes(bytecode: Union[str, bytes]) -> bytes:
    if isinstance(bytecode, (bytes, bytearray)):
        return bytes(bytecode)
    return decode_hex(bytecode)


def build_payload(
    bytecode: Union[str, bytes],
    declared_params: Sequence[AbiParameter],
    encoded_args: Sequence[EncodedArgument]
) -> bytes:
    """
    Build the init code submitted to the factory.

    Args:
        bytecode: Creation bytecode (hex string or bytes)
        declared_params: Constructor inputs in declared order
        encoded_args: Codec output, index-aligned with ``declared_params``

    Returns:
        bytecode followed by the ABI-encoded arguments

    Raises:
        ValidationError: On a length mismatch or an argument that cannot be encoded
    """
    code = _bytecode_to_bytes(bytecode)

    if len(declared_params) != len(encoded_args):
        raise ValidationError(
            f"Expected {len(declared_params)} constructor arguments, got {len(encoded_args)}",
            code=ErrorCodes.VALIDATION_MISSING_ARGUMENT
        )

    if not declared_params:
        return code

    types: List[str] = [p.type for p in declared_params]
    values = [
        coerce_value(param.type, arg.params, param.name)
        for param, arg in zip(declared_params, encoded_args)
    ]
    encoded = encode_constructor_args(types, values)
    LOG.debug(f"Encoded {len(values)} constructor arguments ({len(encoded)} bytes)")
    return code + encoded


def payload_hex(payload: bytes) -> str:
    return "0x" + payload.hex()
