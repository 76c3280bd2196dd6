"""NEAR account-id and transaction-hash validation."""
from __future__ import annotations

import re

from .errors import InvalidParameterError

ACCOUNT_ID_MIN_LEN = 2
ACCOUNT_ID_MAX_LEN = 64

# Parts of lowercase alphanumerics joined by single "-", "_" or "." separators.
_ACCOUNT_ID_RE = re.compile(r"^(?:[a-z\d]+[-_])*[a-z\d]+(?:\.(?:[a-z\d]+[-_])*[a-z\d]+)*$")
_TX_HASH_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{43,44}$")


def is_valid_account_id(value: str) -> bool:
    if not isinstance(value, str):
        return False
    if not ACCOUNT_ID_MIN_LEN <= len(value) <= ACCOUNT_ID_MAX_LEN:
        return False
    return _ACCOUNT_ID_RE.match(value) is not None


def validate_account_id(value: str, field: str = "account_id") -> str:
    if not is_valid_account_id(value):
        raise InvalidParameterError(f"Invalid {field}: {value!r}")
    return value


def validate_tx_hash(value: str) -> str:
    candidate = (value or "").strip()
    if not _TX_HASH_RE.match(candidate):
        raise InvalidParameterError("tx_hash must be a base58-encoded transaction hash")
    return candidate


def default_group_id(account_id: str) -> str:
    return f"{account_id}/private"
