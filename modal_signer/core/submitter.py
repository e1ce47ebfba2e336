"""Builds, sponsors, signs and submits user operations.

Flow for one contract call:
1. Encode ``function_name(*args)`` against the static ABI table.
2. Wrap it in the account's ``execute`` and read deployment state + nonce.
3. Paymaster fills gas fields under the sponsorship policy.
4. The account owner (delegated signer) signs the user operation hash.
5. Bundler accepts the operation and returns its hash.

The returned hash is a submission handle; inclusion is not awaited.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

import structlog
from eth_abi.exceptions import DecodingError, EncodingError
from eth_utils import to_checksum_address

from modal_signer.chain.contracts import (
    ENTRY_POINT_ABI,
    SWARM_COORDINATOR_ABI,
    decode_function_result,
    encode_function_call,
)
from modal_signer.chain.user_operation import UserOperation
from modal_signer.core.errors import SubmissionError

if TYPE_CHECKING:
    from modal_signer.chain.account import SmartAccount
    from modal_signer.chain.relay import RelayClient

log = structlog.get_logger()


@dataclass(frozen=True)
class SubmissionResult:
    hash: str


class OperationSubmitter:
    """Submits sponsored contract calls for a smart account."""

    def __init__(
        self,
        relay: RelayClient,
        policy_id: str,
        entry_point: str,
        chain_id: int,
        abi: list[dict[str, Any]] | None = None,
    ) -> None:
        self._relay = relay
        self._policy_id = policy_id
        self._entry_point = to_checksum_address(entry_point)
        self._chain_id = chain_id
        self._abi = abi if abi is not None else SWARM_COORDINATOR_ABI

    def encode_call(self, function_name: str, args: list[Any]) -> bytes:
        try:
            return encode_function_call(self._abi, function_name, args)
        except (ValueError, EncodingError) as e:
            raise SubmissionError(f"cannot encode {function_name}: {e}") from e

    async def _get_nonce(self, account: SmartAccount) -> int:
        data = encode_function_call(ENTRY_POINT_ABI, "getNonce", [account.address, account.nonce_key])
        raw = await self._relay.eth_call(self._entry_point, data)
        try:
            (nonce,) = decode_function_result(ENTRY_POINT_ABI, "getNonce", raw)
        except DecodingError as e:
            raise SubmissionError(f"entry point returned undecodable nonce: 0x{raw.hex()}") from e
        return nonce

    async def build_user_operation(self, account: SmartAccount, target: str, call_data: bytes) -> UserOperation:
        """Unsigned, unsponsored operation; includes deployment data for a fresh account."""
        try:
            execute_data = account.encode_execute(target, call_data)
        except (ValueError, EncodingError) as e:
            raise SubmissionError(f"invalid target address {target!r}") from e
        code = await self._relay.get_code(account.address)
        nonce = await self._get_nonce(account)
        deployed = len(code) > 0
        log.debug("account_state", account=account.address, deployed=deployed, nonce=nonce)
        return UserOperation(
            sender=account.address,
            nonce=nonce,
            call_data=execute_data,
            factory=None if deployed else account.factory_address,
            factory_data=b"" if deployed else account.factory_data,
        )

    async def sponsor(self, account: SmartAccount, user_op: UserOperation) -> UserOperation:
        fields = await self._relay.request_gas_and_paymaster_data(
            policy_id=self._policy_id,
            entry_point=self._entry_point,
            dummy_signature=account.dummy_signature,
            user_operation=user_op.to_rpc(partial=True),
        )
        try:
            return user_op.with_sponsorship(fields)
        except (KeyError, ValueError, TypeError) as e:
            raise SubmissionError(f"paymaster response missing gas fields: {e}") from e

    async def submit(
        self,
        account: SmartAccount,
        target: str,
        function_name: str,
        args: list[Any],
    ) -> SubmissionResult:
        call_data = self.encode_call(function_name, args)
        log.info(
            "call_encoded",
            function=function_name,
            target=target,
            call_data="0x" + call_data.hex(),
        )

        user_op = await self.build_user_operation(account, target, call_data)
        user_op = await self.sponsor(account, user_op)

        user_op_hash = user_op.hash(self._entry_point, self._chain_id)
        signature = await account.sign_user_operation_hash(user_op_hash)
        user_op = replace(user_op, signature=signature)

        tx_hash = await self._relay.send_user_operation(user_op.to_rpc(), self._entry_point)
        log.info(
            "user_operation_sent",
            function=function_name,
            account=account.address,
            hash=tx_hash,
            policy_id=self._policy_id,
        )
        return SubmissionResult(hash=tx_hash)
