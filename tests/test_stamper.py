"""Tests for API-key stamping of custody sign requests."""

from __future__ import annotations

import base64
import json

import pytest
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from modal_signer.core.credentials import ApiKeyPair
from modal_signer.core.errors import CredentialInconsistencyError
from modal_signer.core.stamper import (
    STAMP_HEADER_NAME,
    STAMP_SCHEME,
    SigningRequest,
    load_private_key,
    stamp,
    stamp_body,
)

DIGEST = bytes(range(32))


def _decode_stamp(value: str) -> dict:
    padded = value + "=" * (-len(value) % 4)
    return json.loads(base64.urlsafe_b64decode(padded))


def _verify(stamp_value: str, body: str) -> None:
    decoded = _decode_stamp(stamp_value)
    public_key = ec.EllipticCurvePublicKey.from_encoded_point(
        ec.SECP256R1(), bytes.fromhex(decoded["publicKey"])
    )
    public_key.verify(bytes.fromhex(decoded["signature"]), body.encode(), ec.ECDSA(hashes.SHA256()))


class TestSigningRequest:
    def test_body_is_compact_json(self) -> None:
        request = SigningRequest("org-1", "0x" + "12" * 20, DIGEST, timestamp_ms="1700000000000")
        body = request.to_body()
        assert " " not in body
        parsed = json.loads(body)
        assert parsed["organizationId"] == "org-1"
        assert parsed["timestampMs"] == "1700000000000"
        assert parsed["type"] == "ACTIVITY_TYPE_SIGN_RAW_PAYLOAD_V2"
        assert parsed["parameters"]["payload"] == "0x" + DIGEST.hex()
        assert parsed["parameters"]["encoding"] == "PAYLOAD_ENCODING_HEXADECIMAL"
        assert parsed["parameters"]["hashFunction"] == "HASH_FUNCTION_NO_OP"

    def test_rejects_short_digest(self) -> None:
        with pytest.raises(ValueError, match="32 bytes"):
            SigningRequest("org-1", "0x" + "12" * 20, b"\x00" * 31)

    def test_timestamp_defaults_to_now(self) -> None:
        request = SigningRequest("org-1", "0x" + "12" * 20, DIGEST)
        assert request.timestamp_ms.isdigit()


class TestStamp:
    def test_stamp_verifies_against_public_key(self, api_key: ApiKeyPair) -> None:
        request = SigningRequest("org-1", "0x" + "12" * 20, DIGEST)
        envelope = stamp(request, api_key)
        _verify(envelope.stamp_header_value, envelope.body)

    def test_body_forwarded_unchanged(self, api_key: ApiKeyPair) -> None:
        request = SigningRequest("org-1", "0x" + "12" * 20, DIGEST, timestamp_ms="1")
        envelope = stamp(request, api_key)
        assert envelope.body == request.to_body()

    def test_stamp_fields(self, api_key: ApiKeyPair) -> None:
        envelope = stamp(SigningRequest("org-1", "0x" + "12" * 20, DIGEST), api_key)
        assert envelope.stamp_header_name == STAMP_HEADER_NAME
        assert "=" not in envelope.stamp_header_value
        decoded = _decode_stamp(envelope.stamp_header_value)
        assert decoded["scheme"] == STAMP_SCHEME
        assert decoded["publicKey"] == api_key.public_key

    def test_url_uses_base(self, api_key: ApiKeyPair) -> None:
        envelope = stamp(
            SigningRequest("org-1", "0x" + "12" * 20, DIGEST),
            api_key,
            base_url="https://custody.example/",
        )
        assert envelope.url == "https://custody.example/public/v1/submit/sign_raw_payload"

    def test_tampered_body_fails_verification(self, api_key: ApiKeyPair) -> None:
        value = stamp_body('{"a":1}', api_key)
        with pytest.raises(InvalidSignature):
            _verify(value, '{"a":2}')

    def test_envelope_json_shape(self, api_key: ApiKeyPair) -> None:
        envelope = stamp(SigningRequest("org-1", "0x" + "12" * 20, DIGEST), api_key)
        assert envelope.to_json() == {
            "body": envelope.body,
            "stamp": {
                "stampHeaderName": "X-Stamp",
                "stampHeaderValue": envelope.stamp_header_value,
            },
            "url": envelope.url,
        }


class TestLoadPrivateKey:
    def test_mismatched_public_key(self, api_key: ApiKeyPair) -> None:
        other = ApiKeyPair(public_key="02" + "00" * 32, private_key=api_key.private_key)
        with pytest.raises(CredentialInconsistencyError, match="does not match"):
            load_private_key(other)

    def test_zero_scalar(self) -> None:
        with pytest.raises(CredentialInconsistencyError, match="P-256"):
            load_private_key(ApiKeyPair(public_key="02", private_key="00"))

    def test_non_hex_private_key(self) -> None:
        with pytest.raises(CredentialInconsistencyError):
            load_private_key(ApiKeyPair(public_key="02", private_key="zz"))
