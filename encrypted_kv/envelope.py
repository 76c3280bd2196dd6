"""Codec for encrypted-value descriptors.

A descriptor is ``enc:<scheme>:<key_id>:<base64 ciphertext>``. The scheme tag
versions the format: a new cipher gets a new tag, never a new segment count.
Strings without the ``enc:`` prefix are legacy raw ciphertext and pass through.
"""
from __future__ import annotations

import base64
from typing import List, Optional

from .errors import MalformedDescriptorError

DESCRIPTOR_TAG = "enc"
SCHEME_TAG = "AES256"
DESCRIPTOR_PREFIX = f"{DESCRIPTOR_TAG}:"
_SEGMENT_COUNT = 4


def wrap(key_id: str, ciphertext_b64: str) -> str:
    """Build a descriptor from an already base64-encoded ciphertext."""
    return f"{DESCRIPTOR_TAG}:{SCHEME_TAG}:{key_id}:{ciphertext_b64}"


def encode(key_id: str, ciphertext: bytes) -> str:
    return wrap(key_id, base64.b64encode(ciphertext).decode("ascii"))


def _split(descriptor: str) -> Optional[List[str]]:
    parts = descriptor.split(":")
    if len(parts) == _SEGMENT_COUNT and parts[0] == DESCRIPTOR_TAG and parts[1] == SCHEME_TAG:
        return parts
    return None


def decode(descriptor: str) -> str:
    """Return the base64 ciphertext segment of ``descriptor``.

    Raises MalformedDescriptorError when the value claims to be a descriptor
    (``enc:`` prefix) but does not have the expected shape.
    """
    parts = _split(descriptor)
    if parts is not None:
        return parts[3]
    if descriptor.startswith(DESCRIPTOR_PREFIX):
        raise MalformedDescriptorError(
            f"Invalid encrypted value format. Expected: {DESCRIPTOR_TAG}:{SCHEME_TAG}:<key_id>:<ciphertext>"
        )
    return descriptor


def decode_lenient(descriptor: str) -> str:
    """Like decode, but a malformed descriptor is passed through verbatim."""
    parts = _split(descriptor)
    if parts is not None:
        return parts[3]
    return descriptor


def key_id_of(descriptor: str) -> Optional[str]:
    parts = _split(descriptor)
    return parts[2] if parts is not None else None
