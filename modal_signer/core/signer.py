"""Delegated signer: message signing backed by remote key custody.

The signer never holds the user's wallet key. For each message it:
1. hashes the message with the EIP-191 personal-message convention,
2. stamps a raw-payload sign request with the organization's API key (local),
3. forwards the stamped request to the signing relay, which verifies the
   stamp, has the custody backend sign, and returns the signature.

The relay hop is a ``SigningTransport`` so other custody backends can be
swapped in without touching the signer.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any, Protocol

import httpx
import structlog
from eth_account.messages import encode_defunct
from eth_utils import keccak

from modal_signer.core.credentials import ApiKeyPair, UserRecord
from modal_signer.core.errors import SigningRelayError, UnsupportedOperationError
from modal_signer.core.stamper import SigningRequest, StampedEnvelope, stamp

log = structlog.get_logger()

Stamper = Callable[[SigningRequest, ApiKeyPair], StampedEnvelope]

SIGNATURE_LENGTH = 65


def hash_personal_message(message: str | bytes) -> bytes:
    """EIP-191 version ``E`` hash: keccak256("\\x19Ethereum Signed Message:\\n" + len + message).

    ``str`` is signed as UTF-8 text, ``bytes`` as the raw byte string.
    """
    if isinstance(message, str):
        signable = encode_defunct(text=message)
    else:
        signable = encode_defunct(primitive=bytes(message))
    return keccak(b"\x19" + signable.version + signable.header + signable.body)


class SigningTransport(Protocol):
    async def sign(self, envelope: StampedEnvelope) -> bytes: ...


class AlchemySigningTransport:
    """Forwards stamped requests to the Alchemy signer API.

    Authenticated with the service-level bearer key, never the user's key.
    """

    SIGN_PAYLOAD_PATH = "/signer/v1/sign-payload"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.g.alchemy.com",
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._url = base_url.rstrip("/") + self.SIGN_PAYLOAD_PATH
        self._timeout = timeout
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    async def sign(self, envelope: StampedEnvelope) -> bytes:
        from modal_signer.api.metrics import SIGNING_LATENCY, SIGNING_REQUESTS

        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        start = time.perf_counter()
        try:
            resp = await asyncio.wait_for(
                self._client.post(self._url, json={"stampedRequest": envelope.to_json()}, headers=headers),
                timeout=self._timeout,
            )
        except TimeoutError:
            SIGNING_REQUESTS.labels(result="timeout").inc()
            raise SigningRelayError(f"Signing relay timed out after {self._timeout}s")
        except httpx.RequestError as e:
            SIGNING_REQUESTS.labels(result="network_error").inc()
            raise SigningRelayError(f"Signing relay unreachable: {e}") from e
        finally:
            SIGNING_LATENCY.observe(time.perf_counter() - start)

        if not resp.is_success:
            SIGNING_REQUESTS.labels(result="rejected").inc()
            raise SigningRelayError(
                f"Signing relay returned HTTP {resp.status_code}",
                status_code=resp.status_code,
                body=resp.text,
            )

        try:
            data = resp.json()
            signature = bytes.fromhex(str(data["signature"]).removeprefix("0x"))
        except (ValueError, KeyError, TypeError):
            SIGNING_REQUESTS.labels(result="malformed").inc()
            raise SigningRelayError(
                "Signing relay returned a malformed signature",
                status_code=resp.status_code,
                body=resp.text,
            )
        if len(signature) != SIGNATURE_LENGTH:
            SIGNING_REQUESTS.labels(result="malformed").inc()
            raise SigningRelayError(
                f"Signing relay returned {len(signature)}-byte signature, expected {SIGNATURE_LENGTH}",
                status_code=resp.status_code,
                body=resp.text,
            )
        SIGNING_REQUESTS.labels(result="success").inc()
        return signature


class DelegatedSigner:
    """Account that signs messages through the custody service.

    Only message signing is supported: the smart account builds and hashes
    the user operation itself and asks for a signature over that hash.
    """

    def __init__(
        self,
        user: UserRecord,
        api_key: ApiKeyPair,
        transport: SigningTransport,
        stamper: Stamper = stamp,
    ) -> None:
        self._user = user
        self._api_key = api_key
        self._transport = transport
        self._stamper = stamper

    @property
    def address(self) -> str:
        return self._user.address

    @property
    def org_id(self) -> str:
        return self._user.org_id

    async def sign_message(self, message: str | bytes) -> bytes:
        digest = hash_personal_message(message)
        request = SigningRequest(
            organization_id=self._user.org_id,
            sign_with=self._user.address,
            digest=digest,
        )
        envelope = self._stamper(request, self._api_key)
        log.debug("sign_request_stamped", org_id=self._user.org_id, digest="0x" + digest.hex())

        try:
            signature = await self._transport.sign(envelope)
        except SigningRelayError as e:
            log.error(
                "signing_relay_failed",
                org_id=self._user.org_id,
                status=e.status_code,
                body=e.body[:1000],
                error=str(e),
            )
            raise
        log.info("message_signed", org_id=self._user.org_id, address=self._user.address)
        return signature

    async def sign_typed_data(self, *args: Any, **kwargs: Any) -> bytes:
        raise UnsupportedOperationError("sign_typed_data is not supported by the delegated signer")

    async def sign_transaction(self, *args: Any, **kwargs: Any) -> bytes:
        raise UnsupportedOperationError("sign_transaction is not supported by the delegated signer")
