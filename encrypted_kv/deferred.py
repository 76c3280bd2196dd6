"""Unsigned NEAR transactions for the on-chain (wallet-paid) path.

Nothing here touches the network or a signing key: the caller's wallet signs
and submits, then comes back with the tx hash for ``resolver``.
"""
from __future__ import annotations

import base64
import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

from . import envelope
from .config import DeferredCallPolicy, KeyManagerProgram, ResourceLimits
from .execution import ACTION_DECRYPT, ACTION_ENCRYPT, ExecutionRequest, build_execution_request

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NearFunctionCall:
    receiver_id: str
    method_name: str
    args: str
    deposit: str
    gas: str


@dataclass(frozen=True)
class PreparedTransaction:
    transaction: NearFunctionCall
    submit_url: str
    instructions: str

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def encode_args(request: ExecutionRequest) -> str:
    raw = json.dumps(request.to_payload(u64_as_string=True), separators=(",", ":"), ensure_ascii=False)
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


class DeferredPreparer:
    def __init__(
        self,
        policy: Optional[DeferredCallPolicy] = None,
        program: Optional[KeyManagerProgram] = None,
        limits: Optional[ResourceLimits] = None,
    ) -> None:
        self.policy = policy or DeferredCallPolicy()
        self.program = program or KeyManagerProgram()
        self.limits = limits or ResourceLimits()

    @classmethod
    def from_settings(cls, settings: Any) -> "DeferredPreparer":
        return cls(policy=settings.deferred, program=settings.program, limits=settings.resource_limits)

    def prepare(
        self,
        action: str,
        group_id: str,
        account_id: str,
        extra_fields: Optional[Mapping[str, Any]] = None,
    ) -> PreparedTransaction:
        request = build_execution_request(
            action,
            group_id,
            account_id,
            extra_fields,
            program=self.program,
            limits=self.limits,
        )
        logger.debug("Prepared %s transaction for %s", action, account_id)
        return PreparedTransaction(
            transaction=NearFunctionCall(
                receiver_id=self.policy.contract_id,
                method_name=self.policy.method_name,
                args=encode_args(request),
                deposit=str(self.policy.deposit_yocto),
                gas=str(self.policy.gas),
            ),
            submit_url=self.policy.submit_url,
            instructions=self.policy.instructions,
        )

    def prepare_encrypt(self, *, account_id: str, group_id: str, value: str) -> PreparedTransaction:
        plaintext_b64 = base64.b64encode(value.encode("utf-8")).decode("ascii")
        return self.prepare(ACTION_ENCRYPT, group_id, account_id, {"plaintext_b64": plaintext_b64})

    def prepare_decrypt(self, *, account_id: str, group_id: str, ciphertext: str) -> PreparedTransaction:
        # Best effort: a malformed descriptor is embedded as-is and left to the key manager.
        ciphertext_b64 = envelope.decode_lenient(ciphertext)
        return self.prepare(ACTION_DECRYPT, group_id, account_id, {"ciphertext_b64": ciphertext_b64})
