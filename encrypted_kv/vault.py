"""Caller-facing encrypted value operations, independent of the HTTP layer."""
from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from . import envelope
from .accounts import default_group_id, validate_account_id, validate_tx_hash
from .deferred import DeferredPreparer
from .key_manager_client import KeyManagerClient, require_payment_key
from .queries import PrefixQueryBuilder
from .resolver import ResultResolver

logger = logging.getLogger(__name__)


def _b64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def _decode_plaintext(plaintext_b64: Optional[str]) -> bytes:
    if not plaintext_b64:
        return b""
    try:
        return base64.b64decode(plaintext_b64, validate=True)
    except (binascii.Error, ValueError):
        logger.warning("Key manager returned undecodable plaintext_b64")
        return b""


def _key_id_or_blank(key_id: Optional[str], action: str) -> str:
    if key_id is None:
        logger.warning("Key manager %s response carried no key_id", action)
        return ""
    return key_id


class EncryptedVault:
    def __init__(
        self,
        key_manager: KeyManagerClient,
        preparer: DeferredPreparer,
        resolver: ResultResolver,
        queries: Optional[PrefixQueryBuilder] = None,
    ) -> None:
        self.key_manager = key_manager
        self.preparer = preparer
        self.resolver = resolver
        self.queries = queries or PrefixQueryBuilder("s_kv_last")

    @classmethod
    def from_settings(cls, settings: Any) -> "EncryptedVault":
        return cls(
            key_manager=KeyManagerClient.from_settings(settings),
            preparer=DeferredPreparer.from_settings(settings),
            resolver=ResultResolver.from_settings(settings),
            queries=PrefixQueryBuilder.from_settings(settings),
        )

    @staticmethod
    def _scope(account_id: str, group_id: Optional[str]) -> str:
        validate_account_id(account_id)
        return group_id if group_id is not None else default_group_id(account_id)

    # Direct path (caller pays via X-Payment-Key)

    def encrypt(
        self,
        payment_key: Optional[str],
        *,
        account_id: str,
        value: str,
        group_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        require_payment_key(payment_key)
        group = self._scope(account_id, group_id)
        outcome = self.key_manager.encrypt(
            payment_key,
            group_id=group,
            account_id=account_id,
            plaintext_b64=_b64(value),
        )
        key_id = _key_id_or_blank(outcome.key_id, "encrypt")
        return {
            "encrypted_value": envelope.wrap(key_id, outcome.ciphertext_b64 or ""),
            "key_id": key_id,
            "attestation": outcome.attestation_hash,
        }

    def decrypt(
        self,
        payment_key: Optional[str],
        *,
        account_id: str,
        ciphertext: str,
        group_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        require_payment_key(payment_key)
        group = self._scope(account_id, group_id)
        ciphertext_b64 = envelope.decode(ciphertext)
        outcome = self.key_manager.decrypt(
            payment_key,
            group_id=group,
            account_id=account_id,
            ciphertext_b64=ciphertext_b64,
        )
        raw = _decode_plaintext(outcome.plaintext_b64)
        plaintext_utf8 = outcome.plaintext_utf8
        if plaintext_utf8 is None:
            try:
                plaintext_utf8 = raw.decode("utf-8")
            except UnicodeDecodeError:
                plaintext_utf8 = None
        return {
            "plaintext": raw.decode("utf-8", errors="replace"),
            "plaintext_utf8": plaintext_utf8,
            "key_id": _key_id_or_blank(outcome.key_id or envelope.key_id_of(ciphertext), "decrypt"),
        }

    def batch_encrypt(
        self,
        payment_key: Optional[str],
        *,
        account_id: str,
        items: Sequence[Mapping[str, str]],
        group_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        require_payment_key(payment_key)
        group = self._scope(account_id, group_id)
        request_items = [
            {"key": item["key"], "plaintext_b64": _b64(item["value"])} for item in items
        ]
        outcome = self.key_manager.batch_encrypt(
            payment_key,
            group_id=group,
            account_id=account_id,
            items=request_items,
        )
        key_id = _key_id_or_blank(outcome.key_id, "batch_encrypt")
        results: List[Dict[str, Any]] = []
        for item in outcome.items:
            if item.error is not None:
                logger.info("Batch item %s failed: %s", item.key, item.error)
            results.append(
                {
                    "key": item.key or "",
                    "encrypted_value": envelope.wrap(key_id, item.ciphertext_b64 or ""),
                    "error": item.error,
                }
            )
        return {"key_id": key_id, "items": results}

    # On-chain path (caller's wallet signs and pays)

    def prepare_encrypt(self, *, account_id: str, value: str, group_id: Optional[str] = None) -> Dict[str, Any]:
        group = self._scope(account_id, group_id)
        return self.preparer.prepare_encrypt(account_id=account_id, group_id=group, value=value).as_dict()

    def prepare_decrypt(self, *, account_id: str, ciphertext: str, group_id: Optional[str] = None) -> Dict[str, Any]:
        group = self._scope(account_id, group_id)
        return self.preparer.prepare_decrypt(account_id=account_id, group_id=group, ciphertext=ciphertext).as_dict()

    def result(self, tx_hash: str, sender_id: Optional[str] = None) -> Dict[str, Any]:
        tx_hash = validate_tx_hash(tx_hash)
        if sender_id is not None:
            validate_account_id(sender_id, "sender_id")
        return self.resolver.resolve(tx_hash, sender_id).as_dict()


__all__ = ["EncryptedVault"]
