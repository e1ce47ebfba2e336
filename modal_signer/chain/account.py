"""Modular Account v2 (semi-modular) smart account derivation.

The account address is counterfactual: the factory computes it from the owner
address and a salt, so it is known before the account is deployed. The first
user operation deploys it through ``factory``/``factoryData``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import structlog
from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address

from modal_signer.chain.contracts import (
    ACCOUNT_FACTORY_ABI,
    MODULAR_ACCOUNT_ABI,
    decode_function_result,
    encode_function_call,
)
from modal_signer.core.errors import SubmissionError

if TYPE_CHECKING:
    from modal_signer.chain.relay import RelayClient

log = structlog.get_logger()

# 0xFF: reserved validation-data index (the account's fallback signer),
# 0x00: EOA signature type
SIGNATURE_PREFIX = b"\xff\x00"

# ECDSA-shaped placeholder used only for gas estimation
DUMMY_ECDSA_SIGNATURE = b"\xff" * 15 + b"\xf0" + b"\x00" * 15 + b"\x07" + b"\xaa" * 32 + b"\x1c"

# (entityId 0 << 8) | global-validation flag
DEFAULT_NONCE_KEY = 1


class MessageSigner(Protocol):
    @property
    def address(self) -> str: ...

    async def sign_message(self, message: str | bytes) -> bytes: ...


@dataclass(frozen=True)
class SmartAccount:
    """A derived smart account bound to the signer that owns it."""

    address: str
    owner: MessageSigner
    factory_address: str
    salt: int = 0
    nonce_key: int = DEFAULT_NONCE_KEY

    @property
    def factory_data(self) -> bytes:
        return encode_function_call(
            ACCOUNT_FACTORY_ABI,
            "createSemiModularAccount",
            [to_checksum_address(self.owner.address), self.salt],
        )

    def encode_execute(self, target: str, data: bytes, value: int = 0) -> bytes:
        """Wrap a contract call so the account executes it."""
        return encode_function_call(
            MODULAR_ACCOUNT_ABI,
            "execute",
            [to_checksum_address(target), value, data],
        )

    @property
    def dummy_signature(self) -> bytes:
        return SIGNATURE_PREFIX + DUMMY_ECDSA_SIGNATURE

    async def sign_user_operation_hash(self, user_op_hash: bytes) -> bytes:
        """Owner signs the hash as a raw personal message; result is packed for the account."""
        signature = await self.owner.sign_message(user_op_hash)
        return SIGNATURE_PREFIX + signature


class SmartAccountFactory:
    """Derives the counterfactual account address for a signer.

    Read-only: a single ``eth_call`` against the factory, no deployment.
    """

    def __init__(self, relay: RelayClient, factory_address: str, salt: int = 0) -> None:
        self._relay = relay
        self._factory_address = to_checksum_address(factory_address)
        self._salt = salt

    async def derive(self, signer: MessageSigner) -> SmartAccount:
        owner = to_checksum_address(signer.address)
        data = encode_function_call(ACCOUNT_FACTORY_ABI, "getAddressSemiModular", [owner, self._salt])
        raw = await self._relay.eth_call(self._factory_address, data)
        try:
            (address,) = decode_function_result(ACCOUNT_FACTORY_ABI, "getAddressSemiModular", raw)
        except DecodingError as e:
            raise SubmissionError(f"factory returned undecodable address: 0x{raw.hex()}") from e
        account = SmartAccount(
            address=to_checksum_address(address),
            owner=signer,
            factory_address=self._factory_address,
            salt=self._salt,
        )
        log.info("smart_account_derived", owner=owner, account=account.address)
        return account
