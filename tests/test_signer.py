"""Tests for the delegated signer and the Alchemy signing transport."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak

from modal_signer.core.credentials import ApiKeyPair, UserRecord
from modal_signer.core.errors import SigningRelayError, UnsupportedOperationError
from modal_signer.core.signer import AlchemySigningTransport, DelegatedSigner, hash_personal_message
from modal_signer.core.stamper import StampedEnvelope

SIGNATURE = "0x" + "11" * 65


def _envelope() -> StampedEnvelope:
    return StampedEnvelope(
        body='{"organizationId":"org-1"}',
        stamp_header_name="X-Stamp",
        stamp_header_value="c3RhbXA",
        url="https://api.turnkey.com/public/v1/submit/sign_raw_payload",
    )


def _transport(handler: Any) -> AlchemySigningTransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AlchemySigningTransport(api_key="svc-key", base_url="https://api.g.alchemy.com", http_client=client)


class TestHashPersonalMessage:
    def test_text_message(self) -> None:
        assert hash_personal_message("hello") == keccak(b"\x19Ethereum Signed Message:\n5hello")

    def test_raw_bytes_use_byte_length(self) -> None:
        digest = b"\xaa" * 32
        assert hash_personal_message(digest) == keccak(b"\x19Ethereum Signed Message:\n32" + digest)

    def test_recoverable_by_eth_account(self, owner: Any) -> None:
        signed = Account.sign_message(encode_defunct(text="hello"), owner.key)
        assert signed.message_hash == hash_personal_message("hello")


class TestAlchemySigningTransport:
    @pytest.mark.asyncio
    async def test_forwards_envelope_with_bearer(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"signature": SIGNATURE})

        envelope = _envelope()
        signature = await _transport(handler).sign(envelope)

        assert signature == bytes.fromhex("11" * 65)
        request = seen[0]
        assert str(request.url) == "https://api.g.alchemy.com/signer/v1/sign-payload"
        assert request.headers["authorization"] == "Bearer svc-key"
        sent = json.loads(request.content)
        assert sent == {"stampedRequest": envelope.to_json()}
        assert sent["stampedRequest"]["body"] == envelope.body

    @pytest.mark.asyncio
    async def test_non_success_status_raises(self) -> None:
        transport = _transport(lambda r: httpx.Response(401, text="invalid stamp"))
        with pytest.raises(SigningRelayError) as exc_info:
            await transport.sign(_envelope())
        assert exc_info.value.status_code == 401
        assert exc_info.value.body == "invalid stamp"

    @pytest.mark.asyncio
    async def test_missing_signature_raises(self) -> None:
        transport = _transport(lambda r: httpx.Response(200, json={"result": "ok"}))
        with pytest.raises(SigningRelayError, match="malformed"):
            await transport.sign(_envelope())

    @pytest.mark.asyncio
    async def test_wrong_length_signature_raises(self) -> None:
        transport = _transport(lambda r: httpx.Response(200, json={"signature": "0x1234"}))
        with pytest.raises(SigningRelayError, match="2-byte"):
            await transport.sign(_envelope())

    @pytest.mark.asyncio
    async def test_network_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(SigningRelayError, match="unreachable"):
            await _transport(handler).sign(_envelope())

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        transport = AlchemySigningTransport(api_key="k", http_client=client)
        await transport.close()
        assert not client.is_closed
        await client.aclose()


class TestDelegatedSigner:
    @pytest.mark.asyncio
    async def test_signature_recovers_to_user_address(
        self, user: UserRecord, api_key: ApiKeyPair, transport: Any
    ) -> None:
        signer = DelegatedSigner(user, api_key, transport)
        signature = await signer.sign_message("hello")
        recovered = Account.recover_message(encode_defunct(text="hello"), signature=signature)
        assert recovered == user.address

    @pytest.mark.asyncio
    async def test_deterministic_for_same_message(
        self, user: UserRecord, api_key: ApiKeyPair, transport: Any
    ) -> None:
        signer = DelegatedSigner(user, api_key, transport)
        assert await signer.sign_message(b"\x01" * 32) == await signer.sign_message(b"\x01" * 32)

    @pytest.mark.asyncio
    async def test_one_byte_change_changes_signature(
        self, user: UserRecord, api_key: ApiKeyPair, transport: Any
    ) -> None:
        signer = DelegatedSigner(user, api_key, transport)
        a = await signer.sign_message(b"\x01" * 32)
        b = await signer.sign_message(b"\x01" * 31 + b"\x02")
        assert a != b

    @pytest.mark.asyncio
    async def test_request_names_org_and_address(
        self, user: UserRecord, api_key: ApiKeyPair, transport: Any
    ) -> None:
        await DelegatedSigner(user, api_key, transport).sign_message("hello")
        body = json.loads(transport.envelopes[0].body)
        assert body["organizationId"] == user.org_id
        assert body["parameters"]["signWith"] == user.address
        assert body["parameters"]["payload"] == "0x" + hash_personal_message("hello").hex()

    @pytest.mark.asyncio
    async def test_relay_failure_propagates(self, user: UserRecord, api_key: ApiKeyPair) -> None:
        failing = AsyncMock()
        failing.sign.side_effect = SigningRelayError("HTTP 500", status_code=500, body="x" * 5000)
        with pytest.raises(SigningRelayError):
            await DelegatedSigner(user, api_key, failing).sign_message("hello")
        failing.sign.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_typed_data_unsupported(self, user: UserRecord, api_key: ApiKeyPair, transport: Any) -> None:
        signer = DelegatedSigner(user, api_key, transport)
        with pytest.raises(UnsupportedOperationError):
            await signer.sign_typed_data({"types": {}})
        with pytest.raises(NotImplementedError):
            await signer.sign_transaction({"to": user.address})
        assert transport.envelopes == []

    def test_exposes_identity(self, user: UserRecord, api_key: ApiKeyPair, transport: Any) -> None:
        signer = DelegatedSigner(user, api_key, transport)
        assert signer.address == user.address
        assert signer.org_id == user.org_id
