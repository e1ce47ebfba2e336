"""API-key stamping for custody sign requests.

A stamp is a P-256 ECDSA signature over the exact request body, made with the
organization's API key. The custody backend verifies it against the
registered public key; the relay that forwards the request never sees the
private half. Stamping is local: nothing here touches the network.

Stamp header value: base64url (unpadded) of
``{"publicKey": <compressed hex>, "scheme": "SIGNATURE_SCHEME_TK_API_P256",
"signature": <DER hex>}``.
"""

from __future__ import annotations

import base64
import json
import time
from dataclasses import dataclass, field
from typing import Any

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from modal_signer.core.credentials import ApiKeyPair
from modal_signer.core.errors import CredentialInconsistencyError

STAMP_HEADER_NAME = "X-Stamp"
STAMP_SCHEME = "SIGNATURE_SCHEME_TK_API_P256"
SIGN_RAW_PAYLOAD_PATH = "/public/v1/submit/sign_raw_payload"

ACTIVITY_TYPE_SIGN_RAW_PAYLOAD = "ACTIVITY_TYPE_SIGN_RAW_PAYLOAD_V2"
PAYLOAD_ENCODING_HEX = "PAYLOAD_ENCODING_HEXADECIMAL"
HASH_FUNCTION_NO_OP = "HASH_FUNCTION_NO_OP"


def _now_ms() -> str:
    return str(int(time.time() * 1000))


@dataclass(frozen=True)
class SigningRequest:
    """Raw-payload sign activity for one digest. Built fresh for every signature."""

    organization_id: str
    sign_with: str
    digest: bytes
    timestamp_ms: str = field(default_factory=_now_ms)

    def __post_init__(self) -> None:
        if len(self.digest) != 32:
            raise ValueError(f"digest must be 32 bytes, got {len(self.digest)}")

    def to_body(self) -> str:
        """Compact JSON body; this exact string is what gets stamped."""
        payload: dict[str, Any] = {
            "organizationId": self.organization_id,
            "timestampMs": self.timestamp_ms,
            "type": ACTIVITY_TYPE_SIGN_RAW_PAYLOAD,
            "parameters": {
                "signWith": self.sign_with,
                "payload": "0x" + self.digest.hex(),
                "encoding": PAYLOAD_ENCODING_HEX,
                "hashFunction": HASH_FUNCTION_NO_OP,
            },
        }
        return json.dumps(payload, separators=(",", ":"))


@dataclass(frozen=True)
class StampedEnvelope:
    """Stamped request, forwarded unmodified to the signing relay."""

    body: str
    stamp_header_name: str
    stamp_header_value: str
    url: str

    def to_json(self) -> dict[str, Any]:
        return {
            "body": self.body,
            "stamp": {
                "stampHeaderName": self.stamp_header_name,
                "stampHeaderValue": self.stamp_header_value,
            },
            "url": self.url,
        }


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def load_private_key(api_key: ApiKeyPair) -> ec.EllipticCurvePrivateKey:
    """Load the P-256 private key and check it matches the stored public key."""
    try:
        scalar = int(api_key.private_key.removeprefix("0x"), 16)
        private_key = ec.derive_private_key(scalar, ec.SECP256R1())
    except ValueError:
        raise CredentialInconsistencyError("API private key is not a valid P-256 scalar")
    if compressed_public_key(private_key) != api_key.public_key.removeprefix("0x").lower():
        raise CredentialInconsistencyError("API public key does not match private key")
    return private_key


def compressed_public_key(private_key: ec.EllipticCurvePrivateKey) -> str:
    raw = private_key.public_key().public_bytes(
        serialization.Encoding.X962,
        serialization.PublicFormat.CompressedPoint,
    )
    return raw.hex()


def stamp_body(body: str, api_key: ApiKeyPair) -> str:
    """Return the stamp header value for ``body``."""
    private_key = load_private_key(api_key)
    signature = private_key.sign(body.encode("utf-8"), ec.ECDSA(hashes.SHA256()))
    stamp = {
        "publicKey": compressed_public_key(private_key),
        "scheme": STAMP_SCHEME,
        "signature": signature.hex(),
    }
    return _b64url(json.dumps(stamp, separators=(",", ":")).encode("utf-8"))


def stamp(
    request: SigningRequest,
    api_key: ApiKeyPair,
    *,
    base_url: str = "https://api.turnkey.com",
) -> StampedEnvelope:
    """Stamp a sign request with the organization's API key."""
    body = request.to_body()
    return StampedEnvelope(
        body=body,
        stamp_header_name=STAMP_HEADER_NAME,
        stamp_header_value=stamp_body(body, api_key),
        url=base_url.rstrip("/") + SIGN_RAW_PAYLOAD_PATH,
    )
