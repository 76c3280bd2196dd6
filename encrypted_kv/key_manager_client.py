"""HTTP client for the OutLayer-hosted key manager (direct, pay-per-call path).

The key manager runs inside a TEE; this client only ships execution requests
and maps the JSON that comes back. Plaintext and payment keys are never logged.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import requests

from .config import KeyManagerProgram, ResourceLimits
from .errors import MissingCredentialError, ServiceRejectedError, ServiceUnavailableError
from .execution import (
    ACTION_BATCH_ENCRYPT,
    ACTION_DECRYPT,
    ACTION_ENCRYPT,
    build_execution_request,
)

logger = logging.getLogger(__name__)

PAYMENT_KEY_HEADER = "X-Payment-Key"


def _optional_str(payload: Mapping[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    return value if isinstance(value, str) else None


@dataclass(frozen=True)
class EncryptOutcome:
    ciphertext_b64: Optional[str]
    key_id: Optional[str]
    attestation_hash: Optional[str]

    @classmethod
    def from_response(cls, payload: Mapping[str, Any]) -> "EncryptOutcome":
        return cls(
            ciphertext_b64=_optional_str(payload, "ciphertext_b64"),
            key_id=_optional_str(payload, "key_id"),
            attestation_hash=_optional_str(payload, "attestation_hash"),
        )


@dataclass(frozen=True)
class DecryptOutcome:
    plaintext_b64: Optional[str]
    plaintext_utf8: Optional[str]
    key_id: Optional[str]

    @classmethod
    def from_response(cls, payload: Mapping[str, Any]) -> "DecryptOutcome":
        return cls(
            plaintext_b64=_optional_str(payload, "plaintext_b64"),
            plaintext_utf8=_optional_str(payload, "plaintext_utf8"),
            key_id=_optional_str(payload, "key_id"),
        )


@dataclass(frozen=True)
class BatchItemOutcome:
    key: Optional[str]
    ciphertext_b64: Optional[str]
    error: Optional[str]


@dataclass(frozen=True)
class BatchEncryptOutcome:
    key_id: Optional[str]
    items: List[BatchItemOutcome] = field(default_factory=list)

    @classmethod
    def from_response(cls, payload: Mapping[str, Any]) -> "BatchEncryptOutcome":
        raw_items = payload.get("items")
        items: List[BatchItemOutcome] = []
        if isinstance(raw_items, list):
            for raw in raw_items:
                if not isinstance(raw, dict):
                    raw = {}
                items.append(
                    BatchItemOutcome(
                        key=_optional_str(raw, "key"),
                        ciphertext_b64=_optional_str(raw, "ciphertext_b64"),
                        error=_optional_str(raw, "error"),
                    )
                )
        return cls(key_id=_optional_str(payload, "key_id"), items=items)


def require_payment_key(payment_key: Optional[str]) -> str:
    if not payment_key or not payment_key.strip():
        raise MissingCredentialError()
    return payment_key.strip()


def _error_text(error: Any) -> str:
    if isinstance(error, str):
        return error
    return json.dumps(error, separators=(",", ":"), sort_keys=True)


class KeyManagerClient:
    def __init__(
        self,
        call_url: str,
        program: Optional[KeyManagerProgram] = None,
        limits: Optional[ResourceLimits] = None,
        timeout_seconds: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.call_url = call_url
        self.program = program or KeyManagerProgram()
        self.limits = limits or ResourceLimits()
        self.timeout_seconds = timeout_seconds
        self._http = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Any, session: Optional[requests.Session] = None) -> "KeyManagerClient":
        return cls(
            call_url=settings.key_manager_call_url,
            program=settings.program,
            limits=settings.resource_limits,
            timeout_seconds=settings.key_manager_timeout_seconds,
            session=session,
        )

    def invoke(
        self,
        payment_key: Optional[str],
        action: str,
        group_id: str,
        account_id: str,
        extra_fields: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Run one key-manager action and return the raw JSON result object."""
        payment_key = require_payment_key(payment_key)

        request = build_execution_request(
            action,
            group_id,
            account_id,
            extra_fields,
            program=self.program,
            limits=self.limits,
        )
        logger.info("Calling key manager action=%s account=%s group=%s", action, account_id, group_id)
        try:
            response = self._http.post(
                self.call_url,
                json=request.to_payload(),
                headers={
                    "Content-Type": "application/json",
                    PAYMENT_KEY_HEADER: payment_key,
                },
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            logger.warning("Key manager request failed (%s): %s", self.call_url, exc)
            raise ServiceUnavailableError(f"OutLayer request failed: {exc}") from exc

        try:
            result = response.json()
        except ValueError as exc:
            logger.warning("Key manager returned non-JSON body (status=%s)", response.status_code)
            raise ServiceUnavailableError(f"Invalid OutLayer response: {exc}") from exc
        if not isinstance(result, dict):
            raise ServiceUnavailableError("Invalid OutLayer response: expected a JSON object")

        if "error" in result:
            message = _error_text(result.get("error"))
            logger.info("Key manager rejected action=%s: %s", action, message)
            raise ServiceRejectedError(f"Key Manager error: {message}")
        if response.status_code >= 500:
            raise ServiceUnavailableError(f"OutLayer returned HTTP {response.status_code}")
        return result

    def encrypt(self, payment_key: Optional[str], *, group_id: str, account_id: str, plaintext_b64: str) -> EncryptOutcome:
        result = self.invoke(
            payment_key,
            ACTION_ENCRYPT,
            group_id,
            account_id,
            {"plaintext_b64": plaintext_b64},
        )
        return EncryptOutcome.from_response(result)

    def decrypt(self, payment_key: Optional[str], *, group_id: str, account_id: str, ciphertext_b64: str) -> DecryptOutcome:
        result = self.invoke(
            payment_key,
            ACTION_DECRYPT,
            group_id,
            account_id,
            {"ciphertext_b64": ciphertext_b64},
        )
        return DecryptOutcome.from_response(result)

    def batch_encrypt(
        self,
        payment_key: Optional[str],
        *,
        group_id: str,
        account_id: str,
        items: List[Dict[str, str]],
    ) -> BatchEncryptOutcome:
        result = self.invoke(
            payment_key,
            ACTION_BATCH_ENCRYPT,
            group_id,
            account_id,
            {"items": items},
        )
        return BatchEncryptOutcome.from_response(result)
