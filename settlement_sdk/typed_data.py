"""
EIP-712 typed data for Gateway burn intents.
"""
import json
import logging
from typing import Dict, Any, List

from eth_account.messages import encode_typed_data
from web3 import Web3

from .models import BurnIntent
from .utils import address_to_bytes32, bytes32_from_hex

logger = logging.getLogger(__name__)

GATEWAY_DOMAIN = {"name": "GatewayWallet", "version": "1"}

EIP712_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
]

TRANSFER_SPEC_TYPE = [
    {"name": "version", "type": "uint32"},
    {"name": "sourceDomain", "type": "uint32"},
    {"name": "destinationDomain", "type": "uint32"},
    {"name": "sourceContract", "type": "bytes32"},
    {"name": "destinationContract", "type": "bytes32"},
    {"name": "sourceToken", "type": "bytes32"},
    {"name": "destinationToken", "type": "bytes32"},
    {"name": "sourceDepositor", "type": "bytes32"},
    {"name": "destinationRecipient", "type": "bytes32"},
    {"name": "sourceSigner", "type": "bytes32"},
    {"name": "destinationCaller", "type": "bytes32"},
    {"name": "value", "type": "uint256"},
    {"name": "salt", "type": "bytes32"},
    {"name": "hookData", "type": "bytes"},
]

BURN_INTENT_TYPE = [
    {"name": "maxBlockHeight", "type": "uint256"},
    {"name": "maxFee", "type": "uint256"},
    {"name": "spec", "type": "TransferSpec"},
]

_ADDRESS_FIELDS = {
    "source_contract": "sourceContract",
    "destination_contract": "destinationContract",
    "source_token": "sourceToken",
    "destination_token": "destinationToken",
    "source_depositor": "sourceDepositor",
    "destination_recipient": "destinationRecipient",
    "source_signer": "sourceSigner",
    "destination_caller": "destinationCaller",
}


def _types() -> Dict[str, List[Dict[str, str]]]:
    return {
        "EIP712Domain": [dict(f) for f in EIP712_DOMAIN_TYPE],
        "TransferSpec": [dict(f) for f in TRANSFER_SPEC_TYPE],
        "BurnIntent": [dict(f) for f in BURN_INTENT_TYPE],
    }


def build_burn_intent_typed_data(intent: BurnIntent) -> Dict[str, Any]:
    """
    Build the EIP-712 document for a burn intent.

    Every address field of the transfer spec is converted to its 32-byte
    left-padded form; numeric and bytes fields are left as they are. The
    function is pure: the same intent always yields the same document.

    Args:
        intent: Burn intent to encode

    Returns:
        Typed-data document with ``types``, ``domain``, ``primaryType`` and ``message``

    Raises:
        InvalidAddress: If any address field is not 20 bytes
    """
    spec = intent.spec
    message_spec: Dict[str, Any] = {
        "version": spec.version,
        "sourceDomain": spec.source_domain,
        "destinationDomain": spec.destination_domain,
    }
    for field, alias in _ADDRESS_FIELDS.items():
        message_spec[alias] = address_to_bytes32(getattr(spec, field))
    message_spec["value"] = spec.value
    message_spec["salt"] = bytes32_from_hex(spec.salt)
    message_spec["hookData"] = spec.hook_data

    return {
        "types": _types(),
        "domain": dict(GATEWAY_DOMAIN),
        "primaryType": "BurnIntent",
        "message": {
            "maxBlockHeight": intent.max_block_height,
            "maxFee": intent.max_fee,
            "spec": message_spec,
        },
    }


def _stringify_ints(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, dict):
        return {k: _stringify_ints(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_stringify_ints(v) for v in value]
    return value


def message_for_wire(document: Dict[str, Any]) -> Dict[str, Any]:
    """
    The ``message`` of a typed-data document with integers as decimal strings.

    uint256 values such as ``maxBlockHeight`` do not fit in a JSON number.
    """
    return _stringify_ints(document["message"])


def typed_data_to_json(document: Dict[str, Any]) -> str:
    """Serialise a typed-data document for the custodial signing API."""
    wire = dict(document)
    wire["message"] = message_for_wire(document)
    return json.dumps(wire, separators=(",", ":"))


def _to_encodable(fields: List[Dict[str, str]], values: Dict[str, Any], types: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for field in fields:
        name, type_ = field["name"], field["type"]
        value = values[name]
        if type_ in types:
            out[name] = _to_encodable(types[type_], value, types)
        elif type_.startswith("uint"):
            out[name] = int(value)
        elif type_.startswith("bytes"):
            out[name] = Web3.to_bytes(hexstr=value) if isinstance(value, str) else bytes(value)
        else:
            out[name] = value
    return out


def typed_data_digest(document: Dict[str, Any]) -> str:
    """
    Compute the EIP-712 digest of a typed-data document.

    Used as the fingerprint of a burn intent in transfer records and logs.

    Returns:
        0x-prefixed keccak256 digest
    """
    types = document["types"]
    primary = document["primaryType"]
    encodable = {
        "types": types,
        "domain": document["domain"],
        "primaryType": primary,
        "message": _to_encodable(types[primary], document["message"], types),
    }
    signable = encode_typed_data(full_message=encodable)
    digest = Web3.keccak(b"\x19" + signable.version + signable.header + signable.body)
    return "0x" + digest.hex().removeprefix("0x")
