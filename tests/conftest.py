"""Shared fixtures for bridge tests."""

from __future__ import annotations

import json
import os
from collections.abc import Iterator
from typing import Any

import pytest

# Keep tests independent of a developer .env
os.environ.setdefault("ALCHEMY_API_KEY", "test-alchemy-key")
os.environ.setdefault("PAYMASTER_POLICY_ID", "test-policy")
os.environ.setdefault("SMART_CONTRACT_ADDRESS", "0x" + "ab" * 20)

from cryptography.hazmat.primitives.asymmetric import ec
from eth_abi import encode
from eth_account import Account

from modal_signer.chain.account import SmartAccountFactory
from modal_signer.chain.contracts import ACCOUNT_FACTORY_ABI, ENTRY_POINT_ABI, function_selector
from modal_signer.config import DEFAULT_ACCOUNT_FACTORY, DEFAULT_ENTRY_POINT
from modal_signer.core.credentials import ApiKeyPair, SqliteCredentialStore, UserRecord
from modal_signer.core.pipeline import SigningServices
from modal_signer.core.stamper import StampedEnvelope, compressed_public_key
from modal_signer.core.submitter import OperationSubmitter

OWNER_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
ORG_ID = "org-5b1e"
TARGET = "0x" + "ab" * 20
SMART_ACCOUNT = "0x" + "5a" * 20
USER_OP_HASH = "0xdeadbeef"


def make_api_key() -> ApiKeyPair:
    private_key = ec.generate_private_key(ec.SECP256R1())
    scalar = private_key.private_numbers().private_value
    return ApiKeyPair(public_key=compressed_public_key(private_key), private_key=f"{scalar:064x}")


class FakeSigningTransport:
    """Signs the digest in the stamped body with a local key, as custody would."""

    def __init__(self, key: str = OWNER_KEY) -> None:
        self._account = Account.from_key(key)
        self.envelopes: list[StampedEnvelope] = []

    async def sign(self, envelope: StampedEnvelope) -> bytes:
        self.envelopes.append(envelope)
        digest = json.loads(envelope.body)["parameters"]["payload"]
        signed = Account.unsafe_sign_hash(bytes.fromhex(digest[2:]), self._account.key)
        return bytes(signed.signature)


class FakeRelay:
    """In-memory stand-in for the Alchemy JSON-RPC endpoint."""

    def __init__(self, *, deployed: bool = False, nonce: int = 0) -> None:
        self.deployed = deployed
        self.nonce = nonce
        self.sponsorship_requests: list[dict[str, Any]] = []
        self.sent: list[dict[str, Any]] = []

    async def eth_call(self, to: str, data: bytes) -> bytes:
        selector = data[:4]
        if selector == function_selector(ACCOUNT_FACTORY_ABI, "getAddressSemiModular"):
            return encode(["address"], [SMART_ACCOUNT])
        if selector == function_selector(ENTRY_POINT_ABI, "getNonce"):
            return encode(["uint256"], [self.nonce])
        raise AssertionError(f"unexpected eth_call selector 0x{selector.hex()}")

    async def get_code(self, address: str) -> bytes:
        return b"\x60\x80" if self.deployed else b""

    async def request_gas_and_paymaster_data(
        self,
        policy_id: str,
        entry_point: str,
        dummy_signature: bytes,
        user_operation: dict[str, Any],
    ) -> dict[str, Any]:
        self.sponsorship_requests.append(
            {"policy_id": policy_id, "entry_point": entry_point, "user_operation": user_operation}
        )
        return {
            "callGasLimit": "0x1d4c0",
            "verificationGasLimit": "0x30d40",
            "preVerificationGas": "0xc350",
            "maxFeePerGas": "0x3b9aca00",
            "maxPriorityFeePerGas": "0x5f5e100",
            "paymaster": "0x" + "cd" * 20,
            "paymasterVerificationGasLimit": "0x7530",
            "paymasterPostOpGasLimit": "0x0",
            "paymasterData": "0x1234",
        }

    async def send_user_operation(self, user_operation: dict[str, Any], entry_point: str) -> str:
        self.sent.append(user_operation)
        return USER_OP_HASH


@pytest.fixture
def owner() -> Any:
    return Account.from_key(OWNER_KEY)


@pytest.fixture
def api_key() -> ApiKeyPair:
    return make_api_key()


@pytest.fixture
def user(owner: Any) -> UserRecord:
    return UserRecord(org_id=ORG_ID, address=owner.address)


@pytest.fixture
def store(user: UserRecord, api_key: ApiKeyPair) -> Iterator[SqliteCredentialStore]:
    s = SqliteCredentialStore()
    s.upsert_user(user.org_id, user.address)
    s.add_api_key(user.org_id, api_key.public_key, api_key.private_key)
    yield s
    s.close()


@pytest.fixture
def transport() -> FakeSigningTransport:
    return FakeSigningTransport()


@pytest.fixture
def relay() -> FakeRelay:
    return FakeRelay()


@pytest.fixture
def services(
    store: SqliteCredentialStore,
    transport: FakeSigningTransport,
    relay: FakeRelay,
) -> SigningServices:
    return SigningServices(
        store=store,
        transport=transport,
        account_factory=SmartAccountFactory(relay, DEFAULT_ACCOUNT_FACTORY),  # type: ignore[arg-type]
        submitter=OperationSubmitter(
            relay,  # type: ignore[arg-type]
            policy_id="test-policy",
            entry_point=DEFAULT_ENTRY_POINT,
            chain_id=685685,
        ),
        target_address=TARGET,
    )
