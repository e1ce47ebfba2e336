"""Static ABI tables and call-data encoding.

Only the functions the bridge calls are listed:
- SwarmCoordinator.registerPeer() / submitWinners(): the two operations
- ModularAccount.execute(): wraps a call for the smart account
- AccountFactory.createSemiModularAccount() / getAddressSemiModular()
- EntryPoint.getNonce()

Encoding goes through eth_abi, which applies the standard ABI rules (32-byte
head slots, dynamic-type offsets, right-padded bytes/strings). A wrong
encoding is a silent on-chain revert, so nothing here is hand-packed.
"""

from __future__ import annotations

from typing import Any

from eth_abi import decode, encode
from eth_utils import keccak

SWARM_COORDINATOR_ABI = [
    {
        "inputs": [{"name": "peerId", "type": "string", "internalType": "string"}],
        "name": "registerPeer",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "roundNumber", "type": "uint256", "internalType": "uint256"},
            {"name": "winners", "type": "string[]", "internalType": "string[]"},
        ],
        "name": "submitWinners",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

MODULAR_ACCOUNT_ABI = [
    {
        "inputs": [
            {"name": "target", "type": "address"},
            {"name": "value", "type": "uint256"},
            {"name": "data", "type": "bytes"},
        ],
        "name": "execute",
        "outputs": [{"name": "result", "type": "bytes"}],
        "stateMutability": "payable",
        "type": "function",
    },
]

ACCOUNT_FACTORY_ABI = [
    {
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "salt", "type": "uint256"},
        ],
        "name": "createSemiModularAccount",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "salt", "type": "uint256"},
        ],
        "name": "getAddressSemiModular",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
]

ENTRY_POINT_ABI = [
    {
        "inputs": [
            {"name": "sender", "type": "address"},
            {"name": "key", "type": "uint192"},
        ],
        "name": "getNonce",
        "outputs": [{"name": "nonce", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]


def _find_function(abi: list[dict[str, Any]], name: str) -> dict[str, Any]:
    for entry in abi:
        if entry.get("type") == "function" and entry.get("name") == name:
            return entry
    raise ValueError(f"Function {name!r} not found in ABI")


def _input_types(entry: dict[str, Any]) -> list[str]:
    return [i["type"] for i in entry["inputs"]]


def function_signature(abi: list[dict[str, Any]], name: str) -> str:
    """Canonical signature, e.g. ``submitWinners(uint256,string[])``."""
    entry = _find_function(abi, name)
    return f"{name}({','.join(_input_types(entry))})"


def function_selector(abi: list[dict[str, Any]], name: str) -> bytes:
    """First four bytes of keccak256(signature)."""
    return keccak(text=function_signature(abi, name))[:4]


def encode_function_call(abi: list[dict[str, Any]], name: str, args: list[Any] | tuple[Any, ...]) -> bytes:
    """Encode ``name(*args)`` into call-data: selector + ABI-encoded arguments.

    Raises ValueError for unknown functions or wrong arity; eth_abi raises
    ``EncodingError`` when a value does not fit its declared type.
    """
    entry = _find_function(abi, name)
    types = _input_types(entry)
    if len(args) != len(types):
        raise ValueError(f"{name} expects {len(types)} arguments, got {len(args)}")
    return function_selector(abi, name) + encode(types, list(args))


def decode_function_call(abi: list[dict[str, Any]], data: bytes) -> tuple[str, tuple[Any, ...]]:
    """Reverse of encode_function_call: returns (function name, arguments)."""
    if len(data) < 4:
        raise ValueError("call-data shorter than a selector")
    selector = data[:4]
    for entry in abi:
        if entry.get("type") != "function":
            continue
        if function_selector(abi, entry["name"]) == selector:
            return entry["name"], tuple(decode(_input_types(entry), data[4:]))
    raise ValueError(f"Unknown selector 0x{selector.hex()}")


def decode_function_result(abi: list[dict[str, Any]], name: str, data: bytes) -> tuple[Any, ...]:
    """Decode the return data of an ``eth_call`` to ``name``."""
    entry = _find_function(abi, name)
    return tuple(decode([o["type"] for o in entry["outputs"]], data))
