"""Request pipeline shared by every operation.

Each operation (register-peer, submit-winner) is the same linear sequence:

    Received -> Validated -> CredentialResolved -> SignerBound -> Submitted
             -> Succeeded | Failed

and differs only in its request schema and in which contract function it
calls with which arguments. ``Pipeline`` is parametrized by exactly those two
things. Every path through ``handle`` ends in one status code and one JSON
body; internal error detail is logged, never returned.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import structlog
from pydantic import ValidationError as PydanticValidationError

from modal_signer.api.models import (
    ErrorResponse,
    HashResponse,
    OrgRequest,
    RegisterPeerRequest,
    SubmitWinnerRequest,
)
from modal_signer.core.credentials import ApiKeyPair, CredentialStore, UserRecord
from modal_signer.core.errors import (
    CredentialInconsistencyError,
    NotFoundError,
    ValidationError,
)
from modal_signer.core.signer import DelegatedSigner, SigningTransport, Stamper
from modal_signer.core.stamper import stamp

if TYPE_CHECKING:
    from modal_signer.chain.account import SmartAccountFactory
    from modal_signer.config import Config
    from modal_signer.core.submitter import OperationSubmitter

log = structlog.get_logger()

RequestT = TypeVar("RequestT", bound=OrgRequest)


@dataclass(frozen=True)
class PipelineResponse:
    status_code: int
    content: dict[str, Any]


@dataclass
class SigningServices:
    """Collaborators every pipeline needs; built once at startup."""

    store: CredentialStore
    transport: SigningTransport
    account_factory: SmartAccountFactory
    submitter: OperationSubmitter
    target_address: str
    stamper: Stamper = stamp
    resources: list[Any] = field(default_factory=list)

    async def close(self) -> None:
        """Close owned HTTP clients."""
        for resource in self.resources:
            try:
                await resource.close()
            except Exception as e:
                log.warning("resource_close_error", resource=type(resource).__name__, error=str(e))


class Pipeline(Generic[RequestT]):
    def __init__(
        self,
        name: str,
        schema: type[RequestT],
        function_name: str,
        build_args: Callable[[RequestT], list[Any]],
        services: SigningServices,
    ) -> None:
        self.name = name
        self.function_name = function_name
        self._schema = schema
        self._build_args = build_args
        self._services = services

    def parse(self, body: bytes) -> RequestT:
        """Validate the raw body. Unparseable JSON, non-objects and schema failures all raise ValidationError."""
        try:
            return self._schema.model_validate_json(body)
        except PydanticValidationError as e:
            fields = sorted({".".join(str(p) for p in err["loc"]) or "body" for err in e.errors()})
            raise ValidationError(f"invalid request: {', '.join(fields)}") from e

    async def resolve_credentials(self, org_id: str) -> tuple[UserRecord, ApiKeyPair]:
        """Fetch the user record and its latest key pair with the same org_id."""
        user = await self._services.store.get_user(org_id)
        if user is None:
            raise NotFoundError(f"no user record for org {org_id}")
        if user.org_id != org_id:
            raise CredentialInconsistencyError(f"store returned record for {user.org_id} when asked for {org_id}")
        api_key = await self._services.store.get_latest_api_key(org_id)
        if api_key is None:
            raise CredentialInconsistencyError(f"user exists but no API key for org {org_id}")
        return user, api_key

    def _respond(self, status_code: int, content: dict[str, Any]) -> PipelineResponse:
        from modal_signer.api.metrics import PIPELINE_OUTCOMES

        PIPELINE_OUTCOMES.labels(operation=self.name, status=str(status_code)).inc()
        return PipelineResponse(status_code=status_code, content=content)

    async def handle(self, body: bytes) -> PipelineResponse:
        try:
            request = self.parse(body)
        except ValidationError as e:
            log.warning("pipeline_bad_request", operation=self.name, error=str(e))
            return self._respond(400, ErrorResponse(error="bad request").model_dump())

        with structlog.contextvars.bound_contextvars(operation=self.name, org_id=request.org_id):
            log.info("pipeline_received")
            try:
                user, api_key = await self.resolve_credentials(request.org_id)
            except NotFoundError:
                log.info("pipeline_user_not_found")
                return self._respond(404, ErrorResponse(error="user not found").model_dump())
            except CredentialInconsistencyError as e:
                log.error("pipeline_credential_inconsistent", error=str(e))
                return self._respond(500, ErrorResponse(error="api key not found").model_dump())
            except Exception as e:
                log.error("pipeline_credential_lookup_failed", error=str(e), exc_info=True)
                return self._respond(500, ErrorResponse(error="error").model_dump())
            log.info("pipeline_credentials_resolved", address=user.address)

            services = self._services
            try:
                signer = DelegatedSigner(user, api_key, services.transport, services.stamper)
                account = await services.account_factory.derive(signer)
                result = await services.submitter.submit(
                    account,
                    services.target_address,
                    self.function_name,
                    self._build_args(request),
                )
            except Exception as e:
                # Downstream detail stays in the logs; the caller gets a generic 500.
                log.error(
                    "pipeline_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                return self._respond(500, ErrorResponse(error="error").model_dump())

            log.info("pipeline_succeeded", hash=result.hash)
            return self._respond(200, HashResponse(hash=result.hash).model_dump())


def _register_peer_args(request: RegisterPeerRequest) -> list[Any]:
    return [request.peer_id]


def _submit_winner_args(request: SubmitWinnerRequest) -> list[Any]:
    return [request.round_number, list(request.winners)]


def build_pipelines(
    services: SigningServices,
) -> tuple[Pipeline[RegisterPeerRequest], Pipeline[SubmitWinnerRequest]]:
    """The two operations the bridge serves."""
    register_peer = Pipeline(
        name="register_peer",
        schema=RegisterPeerRequest,
        function_name="registerPeer",
        build_args=_register_peer_args,
        services=services,
    )
    submit_winner = Pipeline(
        name="submit_winner",
        schema=SubmitWinnerRequest,
        function_name="submitWinners",
        build_args=_submit_winner_args,
        services=services,
    )
    return register_peer, submit_winner


def build_services(config: Config, store: CredentialStore) -> SigningServices:
    """Wire production collaborators from an explicit Config."""
    from modal_signer.chain.account import SmartAccountFactory
    from modal_signer.chain.relay import RelayClient
    from modal_signer.core.signer import AlchemySigningTransport
    from modal_signer.core.submitter import OperationSubmitter

    relay = RelayClient(config.rpc_url, timeout=config.relay_timeout)
    transport = AlchemySigningTransport(
        api_key=config.alchemy_api_key,
        base_url=config.alchemy_base_url,
        timeout=config.signer_timeout,
    )
    return SigningServices(
        store=store,
        transport=transport,
        account_factory=SmartAccountFactory(
            relay,
            factory_address=config.account_factory_address,
            salt=config.account_salt,
        ),
        submitter=OperationSubmitter(
            relay,
            policy_id=config.paymaster_policy_id,
            entry_point=config.entry_point_address,
            chain_id=config.chain_info.chain_id,
        ),
        target_address=config.smart_contract_address,
        stamper=partial(stamp, base_url=config.turnkey_base_url),
        resources=[transport, relay],
    )
