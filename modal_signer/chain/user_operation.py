"""ERC-4337 v0.7 user operation: RPC form and hash."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from eth_abi import encode
from eth_utils import keccak, to_checksum_address


def _quantity(value: int) -> str:
    return hex(value)


def _data(value: bytes) -> str:
    return "0x" + value.hex()


def _pack_uint128_pair(high: int, low: int) -> bytes:
    return high.to_bytes(16, "big") + low.to_bytes(16, "big")


def _parse_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    return int(str(value), 16) if str(value).startswith("0x") else int(str(value))


@dataclass(frozen=True)
class UserOperation:
    """Unpacked v0.7 user operation, as accepted by ``eth_sendUserOperation``."""

    sender: str
    nonce: int
    call_data: bytes
    factory: str | None = None
    factory_data: bytes = b""
    call_gas_limit: int = 0
    verification_gas_limit: int = 0
    pre_verification_gas: int = 0
    max_fee_per_gas: int = 0
    max_priority_fee_per_gas: int = 0
    paymaster: str | None = None
    paymaster_verification_gas_limit: int = 0
    paymaster_post_op_gas_limit: int = 0
    paymaster_data: bytes = b""
    signature: bytes = b""

    @property
    def init_code(self) -> bytes:
        if self.factory is None:
            return b""
        return bytes.fromhex(self.factory.removeprefix("0x")) + self.factory_data

    @property
    def paymaster_and_data(self) -> bytes:
        if self.paymaster is None:
            return b""
        return (
            bytes.fromhex(self.paymaster.removeprefix("0x"))
            + self.paymaster_verification_gas_limit.to_bytes(16, "big")
            + self.paymaster_post_op_gas_limit.to_bytes(16, "big")
            + self.paymaster_data
        )

    def hash(self, entry_point: str, chain_id: int) -> bytes:
        """userOpHash = keccak256(abi.encode(keccak256(pack(op)), entryPoint, chainId)).

        The signature is not part of the hash.
        """
        packed = encode(
            ["address", "uint256", "bytes32", "bytes32", "bytes32", "uint256", "bytes32", "bytes32"],
            [
                to_checksum_address(self.sender),
                self.nonce,
                keccak(self.init_code),
                keccak(self.call_data),
                _pack_uint128_pair(self.verification_gas_limit, self.call_gas_limit),
                self.pre_verification_gas,
                _pack_uint128_pair(self.max_priority_fee_per_gas, self.max_fee_per_gas),
                keccak(self.paymaster_and_data),
            ],
        )
        return keccak(
            encode(
                ["bytes32", "address", "uint256"],
                [keccak(packed), to_checksum_address(entry_point), chain_id],
            )
        )

    def with_sponsorship(self, fields: dict[str, Any]) -> UserOperation:
        """Copy with gas limits, fees and paymaster fields from the paymaster response."""
        return replace(
            self,
            call_gas_limit=_parse_int(fields["callGasLimit"]),
            verification_gas_limit=_parse_int(fields["verificationGasLimit"]),
            pre_verification_gas=_parse_int(fields["preVerificationGas"]),
            max_fee_per_gas=_parse_int(fields["maxFeePerGas"]),
            max_priority_fee_per_gas=_parse_int(fields["maxPriorityFeePerGas"]),
            paymaster=fields.get("paymaster") or None,
            paymaster_verification_gas_limit=_parse_int(fields.get("paymasterVerificationGasLimit", 0)),
            paymaster_post_op_gas_limit=_parse_int(fields.get("paymasterPostOpGasLimit", 0)),
            paymaster_data=bytes.fromhex(str(fields.get("paymasterData") or "0x").removeprefix("0x")),
        )

    def to_rpc(self, *, partial: bool = False) -> dict[str, Any]:
        """JSON-RPC form. ``partial`` omits gas, paymaster and signature (for sponsorship requests)."""
        op: dict[str, Any] = {
            "sender": self.sender,
            "nonce": _quantity(self.nonce),
            "callData": _data(self.call_data),
        }
        if self.factory is not None:
            op["factory"] = self.factory
            op["factoryData"] = _data(self.factory_data)
        if partial:
            return op
        op.update(
            {
                "callGasLimit": _quantity(self.call_gas_limit),
                "verificationGasLimit": _quantity(self.verification_gas_limit),
                "preVerificationGas": _quantity(self.pre_verification_gas),
                "maxFeePerGas": _quantity(self.max_fee_per_gas),
                "maxPriorityFeePerGas": _quantity(self.max_priority_fee_per_gas),
                "signature": _data(self.signature),
            }
        )
        if self.paymaster is not None:
            op["paymaster"] = self.paymaster
            op["paymasterVerificationGasLimit"] = _quantity(self.paymaster_verification_gas_limit)
            op["paymasterPostOpGasLimit"] = _quantity(self.paymaster_post_op_gas_limit)
            op["paymasterData"] = _data(self.paymaster_data)
        return op
