"""Error taxonomy for the signing pipeline.

Every failure raised below the request boundary is one of these. Each class
carries the HTTP status the pipeline maps it to, so the handler never has to
branch on exception types to pick a response code.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all pipeline failures."""

    http_status: int = 500


class ValidationError(BridgeError):
    """Request body is unparseable or missing required fields."""

    http_status = 400


class NotFoundError(BridgeError):
    """No user record exists for the organization."""

    http_status = 404


class CredentialInconsistencyError(BridgeError):
    """User record exists but no API key pair is provisioned for it."""

    http_status = 500


class SigningRelayError(BridgeError):
    """The signing relay rejected or failed a stamped request."""

    http_status = 500

    def __init__(self, message: str, *, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class SubmissionError(BridgeError):
    """Call-data encoding or user operation submission failed."""

    http_status = 500

    def __init__(self, message: str, *, code: int | None = None, data: object = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data


class UnsupportedOperationError(BridgeError, NotImplementedError):
    """Signing mode this signer refuses to provide."""

    http_status = 500
