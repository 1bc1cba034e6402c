"""EIP-712 typed structured data.

A :class:`TypedSchema` is the ordered field list for a primary struct and every
struct it references. Together with an :class:`EIP712Domain` it defines the
digest space a signer and a verifier must agree on:

``digest = keccak256(0x19 0x01 ‖ domainSeparator ‖ hashStruct(message))``

Hashing is delegated to ``eth_account.messages.encode_typed_data``. Arrays
(including arrays of structs) hash their elements in order, so element order
is significant. Changing ``domain.version`` or the field set moves every
digest; there is no compatibility shim for older signatures.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Sequence, Tuple, Union

from eth_abi.exceptions import EncodingError
from eth_account.messages import SignableMessage, encode_typed_data
from eth_utils import keccak, to_checksum_address

from .errors import ConfigError

_ARRAY_SUFFIX = re.compile(r"^(?P<base>.+)\[(?P<size>\d*)\]$")
_ATOMIC_PREFIXES = ("uint", "int", "bytes")

_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]


@dataclass(frozen=True)
class StructField:
    name: str
    type: str


FieldSpec = Union[StructField, Tuple[str, str], Mapping[str, str]]


def _as_field(spec: FieldSpec) -> StructField:
    if isinstance(spec, StructField):
        return spec
    if isinstance(spec, Mapping):
        return StructField(name=spec["name"], type=spec["type"])
    name, type_ = spec
    return StructField(name=name, type=type_)


def _base_type(type_name: str) -> str:
    match = _ARRAY_SUFFIX.match(type_name)
    while match:
        type_name = match.group("base")
        match = _ARRAY_SUFFIX.match(type_name)
    return type_name


def _is_atomic(type_name: str) -> bool:
    if type_name in ("address", "bool", "string", "bytes"):
        return True
    return type_name.startswith(_ATOMIC_PREFIXES) and type_name.rstrip("0123456789") in _ATOMIC_PREFIXES


class TypedSchema:
    """Struct definitions reachable from ``primary_type``."""

    def __init__(self, primary_type: str, structs: Mapping[str, Sequence[FieldSpec]]) -> None:
        if primary_type not in structs:
            raise ConfigError(f"primary type {primary_type} is not defined", reason="invalid_schema")
        self.primary_type = primary_type
        self.structs: Dict[str, Tuple[StructField, ...]] = {
            name: tuple(_as_field(item) for item in fields) for name, fields in structs.items()
        }
        for name in self.structs:
            self._check_references(name)

    def _check_references(self, type_name: str) -> None:
        for item in self.structs[type_name]:
            base = _base_type(item.type)
            if base in self.structs or _is_atomic(base):
                continue
            raise ConfigError(f"{type_name}.{item.name} references unknown type {base}", reason="invalid_schema")

    def fields(self, type_name: str | None = None) -> Tuple[StructField, ...]:
        return self.structs[type_name or self.primary_type]

    def field_names(self, type_name: str | None = None) -> List[str]:
        return [item.name for item in self.fields(type_name)]

    def as_types(self) -> Dict[str, List[Dict[str, str]]]:
        return {
            name: [{"name": item.name, "type": item.type} for item in fields]
            for name, fields in self.structs.items()
        }


@dataclass(frozen=True)
class EIP712Domain:
    """Signing domain; fixed configuration shared by signer and verifier."""

    name: str
    version: str
    chain_id: int
    verifying_contract: str

    def __post_init__(self) -> None:
        if not isinstance(self.chain_id, int) or self.chain_id <= 0:
            raise ConfigError("chain_id must be a positive integer", reason="invalid_config")
        try:
            object.__setattr__(self, "verifying_contract", to_checksum_address(self.verifying_contract))
        except (TypeError, ValueError) as exc:
            raise ConfigError("verifying_contract must be an address", reason="invalid_address") from exc

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return value


def typed_data_payload(domain: EIP712Domain, schema: TypedSchema, message: Mapping[str, Any]) -> Dict[str, Any]:
    """The ``eth_signTypedData_v4`` document for ``message``."""

    types: Dict[str, List[Dict[str, str]]] = {"EIP712Domain": list(_DOMAIN_TYPE)}
    types.update(schema.as_types())
    return {
        "types": types,
        "primaryType": schema.primary_type,
        "domain": domain.as_dict(),
        "message": _jsonable(message),
    }


def signable_message(domain: EIP712Domain, schema: TypedSchema, message: Mapping[str, Any]) -> SignableMessage:
    """``header`` is the domain separator and ``body`` the struct hash."""

    missing = [name for name in schema.field_names() if name not in message]
    if missing:
        raise ConfigError(f"{schema.primary_type} is missing {', '.join(missing)}", reason="invalid_value")
    try:
        return encode_typed_data(full_message=typed_data_payload(domain, schema, message))
    except (EncodingError, KeyError, OverflowError, TypeError, ValueError) as exc:
        raise ConfigError(f"{schema.primary_type} cannot be encoded: {exc}", reason="invalid_value") from exc


def digest(domain: EIP712Domain, schema: TypedSchema, message: Mapping[str, Any]) -> bytes:
    signable = signable_message(domain, schema, message)
    return keccak(b"\x19" + signable.version + signable.header + signable.body)


def abi_components(schema: TypedSchema, type_name: str | None = None) -> List[Dict[str, Any]]:
    """ABI tuple components matching a struct, for building contract calls."""

    components: List[Dict[str, Any]] = []
    for item in schema.fields(type_name):
        base = _base_type(item.type)
        if base in schema.structs:
            suffix = item.type[len(base):]
            components.append(
                {
                    "name": item.name,
                    "type": "tuple" + suffix,
                    "internalType": f"struct {base}{suffix}",
                    "components": abi_components(schema, base),
                }
            )
        else:
            components.append({"name": item.name, "type": item.type, "internalType": item.type})
    return components


def abi_values(schema: TypedSchema, type_name: str, message: Mapping[str, Any]) -> Tuple[Any, ...]:
    """Convert a message mapping into the positional tuple web3 expects."""

    values = []
    for item in schema.fields(type_name):
        value = message[item.name]
        base = _base_type(item.type)
        if base in schema.structs:
            if item.type == base:
                value = abi_values(schema, base, value)
            else:
                value = [abi_values(schema, base, element) for element in value]
        elif base == "address":
            value = to_checksum_address(value) if item.type == base else [to_checksum_address(v) for v in value]
        values.append(value)
    return tuple(values)


__all__ = [
    "EIP712Domain",
    "StructField",
    "TypedSchema",
    "abi_components",
    "abi_values",
    "digest",
    "signable_message",
    "typed_data_payload",
]
