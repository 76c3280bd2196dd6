"""Resolve on-chain key-manager executions back into encrypt/decrypt results.

The key manager's output only exists as free-form receipt logs, so each log
line is run through an ordered list of shape recognizers; the first recognizer
that accepts a line wins. Unrecognized transactions fall back to the raw RPC
``result`` so a new output shape degrades to passthrough instead of an error.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import requests

from . import envelope
from .errors import InvalidLedgerResponseError, LedgerUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransactionResult:
    success: bool
    result: Optional[Any] = None
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ShapeRecognizer:
    name: str
    matches: Callable[[Mapping[str, Any]], bool]
    extract: Callable[[Mapping[str, Any]], Dict[str, Any]]


def _str_field(payload: Mapping[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    return value if isinstance(value, str) else None


def _extract_encrypt(payload: Mapping[str, Any]) -> Dict[str, Any]:
    key_id = _str_field(payload, "key_id") or ""
    return {
        "encrypted_value": envelope.wrap(key_id, payload["ciphertext_b64"]),
        "key_id": key_id,
        "attestation": payload.get("attestation_hash"),
    }


def _extract_decrypt_utf8(payload: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "plaintext": payload["plaintext_utf8"],
        "key_id": _str_field(payload, "key_id") or "",
    }


def _extract_decrypt_b64(payload: Mapping[str, Any]) -> Dict[str, Any]:
    try:
        raw = base64.b64decode(payload["plaintext_b64"], validate=True)
    except (binascii.Error, ValueError):
        raw = b""
    try:
        plaintext_utf8: Optional[str] = raw.decode("utf-8")
    except UnicodeDecodeError:
        plaintext_utf8 = None
    return {
        "plaintext": raw.decode("utf-8", errors="replace"),
        "plaintext_utf8": plaintext_utf8,
        "key_id": _str_field(payload, "key_id") or "",
    }


DEFAULT_RECOGNIZERS: Sequence[ShapeRecognizer] = (
    ShapeRecognizer(
        name="encrypt",
        matches=lambda payload: isinstance(payload.get("ciphertext_b64"), str),
        extract=_extract_encrypt,
    ),
    ShapeRecognizer(
        name="decrypt",
        matches=lambda payload: isinstance(payload.get("plaintext_utf8"), str),
        extract=_extract_decrypt_utf8,
    ),
    ShapeRecognizer(
        name="decrypt_b64",
        matches=lambda payload: isinstance(payload.get("plaintext_b64"), str),
        extract=_extract_decrypt_b64,
    ),
)


def parse_log_line(line: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(line, str) or not line.startswith('{"'):
        return None
    try:
        parsed = json.loads(line)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def first_receipt_logs(rpc_result: Any) -> List[Any]:
    if not isinstance(rpc_result, dict):
        return []
    outcomes = rpc_result.get("receipts_outcome")
    if not isinstance(outcomes, list) or not outcomes:
        return []
    first = outcomes[0]
    outcome = first.get("outcome") if isinstance(first, dict) else None
    logs = outcome.get("logs") if isinstance(outcome, dict) else None
    return logs if isinstance(logs, list) else []


def recognize(logs: Iterable[Any], recognizers: Sequence[ShapeRecognizer] = DEFAULT_RECOGNIZERS) -> Optional[Dict[str, Any]]:
    for line in logs:
        payload = parse_log_line(line)
        if payload is None:
            continue
        for recognizer in recognizers:
            if recognizer.matches(payload):
                logger.debug("Log line matched %s shape", recognizer.name)
                return recognizer.extract(payload)
    return None


def _error_text(error: Any) -> str:
    if isinstance(error, str):
        return error
    return json.dumps(error, separators=(",", ":"), sort_keys=True)


def _execution_failure(rpc_result: Any) -> Optional[Any]:
    if not isinstance(rpc_result, dict):
        return None
    status = rpc_result.get("status")
    if isinstance(status, dict) and "Failure" in status:
        return status["Failure"]
    return None


class ResultResolver:
    def __init__(
        self,
        rpc_url: str,
        signer_id: str,
        timeout_seconds: float = 10.0,
        recognizers: Sequence[ShapeRecognizer] = DEFAULT_RECOGNIZERS,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.signer_id = signer_id
        self.timeout_seconds = timeout_seconds
        self.recognizers = tuple(recognizers)
        self._http = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Any, session: Optional[requests.Session] = None) -> "ResultResolver":
        return cls(
            rpc_url=settings.near_rpc_url,
            signer_id=settings.near_tx_signer_id,
            timeout_seconds=settings.near_rpc_timeout_seconds,
            session=session,
        )

    def fetch_transaction(self, tx_hash: str, signer_id: Optional[str] = None) -> Dict[str, Any]:
        request = {
            "jsonrpc": "2.0",
            "id": "dontcare",
            "method": "tx",
            "params": [tx_hash, signer_id or self.signer_id],
        }
        try:
            response = self._http.post(self.rpc_url, json=request, timeout=self.timeout_seconds)
        except requests.RequestException as exc:
            logger.warning("NEAR RPC request failed (%s): %s", self.rpc_url, exc)
            raise LedgerUnavailableError(f"RPC error: {exc}") from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise InvalidLedgerResponseError(f"Invalid RPC response: {exc}") from exc
        if not isinstance(payload, dict):
            raise InvalidLedgerResponseError("Invalid RPC response: expected a JSON object")
        return payload

    def resolve(self, tx_hash: str, signer_id: Optional[str] = None) -> TransactionResult:
        payload = self.fetch_transaction(tx_hash, signer_id)

        if "error" in payload:
            logger.info("Ledger reported error for tx %s", tx_hash)
            return TransactionResult(success=False, error=_error_text(payload["error"]))

        rpc_result = payload.get("result")
        failure = _execution_failure(rpc_result)
        if failure is not None:
            logger.info("Transaction %s failed on chain", tx_hash)
            return TransactionResult(success=False, error=_error_text(failure))

        recognized = recognize(first_receipt_logs(rpc_result), self.recognizers)
        if recognized is not None:
            return TransactionResult(success=True, result=recognized)

        logger.debug("No key-manager output in logs of tx %s; returning raw result", tx_hash)
        return TransactionResult(success=True, result=rpc_result)
