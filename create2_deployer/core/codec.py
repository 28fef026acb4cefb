"""
Constructor argument codec

Converts the strings a user typed for each constructor parameter into values
ready for ABI encoding. Only two shapes need special handling:

- array types (``"[]"`` in the type) take a comma separated list
- byte-string types (``"bytes"`` in the type) take ASCII text, sent as hex

Everything else is passed through as a string; type coercion happens in the
payload builder. The substring checks are intentionally loose and match any
type name containing ``bytes`` or ``[]``.
"""

from dataclasses import dataclass
from typing import List, Mapping, Sequence, Union

from web3 import Web3

from .artifact import AbiParameter
from ..utils.exceptions import ErrorCodes, ValidationError

EncodableValue = Union[str, List[str]]


@dataclass(frozen=True)
class EncodedArgument:
    """A constructor argument ready for ABI encoding"""
    type: str
    params: EncodableValue


@dataclass(frozen=True)
class ConstructorInput:
    """Raw user input for a single constructor parameter"""
    type: str
    value: str


def arrayify(value: str) -> List[str]:
    """Split a comma separated list, trimming each element"""
    if value.strip() == "":
        return []
    return [item.strip() for item in value.split(",")]


def ascii_to_hex(value: str) -> str:
    return Web3.to_hex(text=value)


def get_hint(param_type: str) -> str:
    """Input hint shown next to a parameter"""
    if "[]" in param_type:
        return "- Arguments separated with comma"
    return ""


def encode_argument(declared: Union[AbiParameter, str], raw_value: str) -> EncodedArgument:
    """
    Prepare one user-supplied value for ABI encoding.

    Args:
        declared: The declared parameter (or just its ABI type)
        raw_value: What the user typed

    Returns:
        EncodedArgument with a string or a list of strings
    """
    param_type = declared.type if isinstance(declared, AbiParameter) else declared

    params: EncodableValue = arrayify(raw_value) if "[]" in param_type else raw_value

    if "bytes" in param_type:
        if isinstance(params, list):
            params = [ascii_to_hex(p) for p in params]
        else:
            params = ascii_to_hex(params)

    return EncodedArgument(type=param_type, params=params)


def encode_arguments(
    declared: Sequence[AbiParameter],
    inputs: Mapping[str, ConstructorInput]
) -> List[EncodedArgument]:
    """Encode every declared constructor parameter, in declared order

    Raises:
        ValidationError: If a declared parameter has no input
    """
    encoded = []
    for param in declared:
        entry = inputs.get(param.name)
        if entry is None:
            raise ValidationError(
                f"Missing value for constructor argument '{param.name}'",
                parameter=param.name,
                code=ErrorCodes.VALIDATION_MISSING_ARGUMENT
            )
        encoded.append(encode_argument(param, entry.value))
    return encoded
