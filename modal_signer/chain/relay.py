"""JSON-RPC client for the smart-account relay.

One Alchemy endpoint serves node methods (``eth_call``, ``eth_getCode``),
the paymaster (``alchemy_requestGasAndPaymasterAndData``) and the bundler
(``eth_sendUserOperation``). Every call is bounded by an explicit timeout and
is never retried: a failed call surfaces as ``SubmissionError`` immediately.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import structlog
from web3 import AsyncWeb3
from web3.types import RPCEndpoint

from modal_signer.core.errors import SubmissionError

log = structlog.get_logger()

# Connection-type errors that indicate the relay is unreachable
_NETWORK_ERRORS = (ConnectionError, OSError)


def _redact_url(url: str) -> str:
    """Drop the API key path segment from an Alchemy URL for logging."""
    head, sep, _ = url.rpartition("/v2/")
    return f"{head}{sep}<redacted>" if sep else url


class RelayClient:
    """Async JSON-RPC client over a web3 HTTP provider."""

    def __init__(self, rpc_url: str, timeout: float = 30.0) -> None:
        self._rpc_url = rpc_url
        self._timeout = timeout
        self._w3 = self._create_provider(rpc_url)

    def _create_provider(self, url: str) -> AsyncWeb3:
        return AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(
                url,
                request_kwargs={"timeout": self._timeout},
                exception_retry_configuration=None,
            )
        )

    async def request(self, method: str, params: list[Any]) -> Any:
        """Send one JSON-RPC request and return its ``result``.

        Raises SubmissionError on timeout, transport failure or a JSON-RPC
        error object (code and data are preserved for diagnostics).
        """
        from modal_signer.api.metrics import RELAY_CALLS, RELAY_LATENCY

        start = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self._w3.provider.make_request(RPCEndpoint(method), params),
                timeout=self._timeout,
            )
        except TimeoutError:
            RELAY_CALLS.labels(method=method, result="timeout").inc()
            raise SubmissionError(f"{method} timed out after {self._timeout}s")
        except _NETWORK_ERRORS as e:
            RELAY_CALLS.labels(method=method, result="network_error").inc()
            log.warning("relay_unreachable", method=method, url=_redact_url(self._rpc_url), err=str(e))
            raise SubmissionError(f"{method} failed: relay unreachable") from e
        except Exception as e:
            # HTTP status errors and provider-level failures (e.g. 401 on a bad key)
            RELAY_CALLS.labels(method=method, result="transport_error").inc()
            raise SubmissionError(f"{method} failed: {type(e).__name__}") from e
        finally:
            RELAY_LATENCY.labels(method=method).observe(time.perf_counter() - start)

        error = response.get("error")
        if error:
            RELAY_CALLS.labels(method=method, result="rpc_error").inc()
            if isinstance(error, dict):
                message = error.get("message", "unknown error")
                code = error.get("code")
                data = error.get("data")
            else:
                message, code, data = str(error), None, None
            raise SubmissionError(f"{method} rejected: {message}", code=code, data=data)
        if "result" not in response:
            RELAY_CALLS.labels(method=method, result="malformed").inc()
            raise SubmissionError(f"{method} returned no result")
        RELAY_CALLS.labels(method=method, result="success").inc()
        return response["result"]

    async def eth_call(self, to: str, data: bytes) -> bytes:
        result = await self.request("eth_call", [{"to": to, "data": "0x" + data.hex()}, "latest"])
        return _hex_to_bytes(result, "eth_call")

    async def get_code(self, address: str) -> bytes:
        result = await self.request("eth_getCode", [address, "latest"])
        return _hex_to_bytes(result, "eth_getCode")

    async def request_gas_and_paymaster_data(
        self,
        policy_id: str,
        entry_point: str,
        dummy_signature: bytes,
        user_operation: dict[str, Any],
    ) -> dict[str, Any]:
        """Ask the paymaster to sponsor the operation and fill in gas fields."""
        result = await self.request(
            "alchemy_requestGasAndPaymasterAndData",
            [
                {
                    "policyId": policy_id,
                    "entryPoint": entry_point,
                    "dummySignature": "0x" + dummy_signature.hex(),
                    "userOperation": user_operation,
                }
            ],
        )
        if not isinstance(result, dict):
            raise SubmissionError("paymaster returned an invalid sponsorship payload")
        return result

    async def send_user_operation(self, user_operation: dict[str, Any], entry_point: str) -> str:
        """Hand the signed operation to the bundler; returns the user operation hash."""
        result = await self.request("eth_sendUserOperation", [user_operation, entry_point])
        if not isinstance(result, str) or not result.startswith("0x"):
            raise SubmissionError(f"bundler returned an invalid hash: {result!r}")
        return result

    async def close(self) -> None:
        """Close the underlying HTTP provider session."""
        provider = self._w3.provider
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is None:
            return
        try:
            await asyncio.wait_for(disconnect(), timeout=5.0)
        except TimeoutError:
            log.warning("relay_client_close_timeout")
        except Exception as e:
            log.warning("relay_client_close_error", err=str(e))

    @property
    def rpc_url(self) -> str:
        """Relay URL with the API key redacted."""
        return _redact_url(self._rpc_url)


def _hex_to_bytes(value: Any, method: str) -> bytes:
    if not isinstance(value, str):
        raise SubmissionError(f"{method} returned non-hex result: {value!r}")
    try:
        return bytes.fromhex(value.removeprefix("0x"))
    except ValueError:
        raise SubmissionError(f"{method} returned non-hex result: {value!r}")
