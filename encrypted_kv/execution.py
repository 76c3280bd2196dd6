"""Builder for key-manager execution requests.

The direct HTTP path and the on-chain path both go through
``build_execution_request`` so the ``input_data`` they ship is byte-identical.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from .config import KeyManagerProgram, ResourceLimits
from .errors import InvalidParameterError

ACTION_ENCRYPT = "encrypt"
ACTION_DECRYPT = "decrypt"
ACTION_BATCH_ENCRYPT = "batch_encrypt"
ACTIONS = frozenset({ACTION_ENCRYPT, ACTION_DECRYPT, ACTION_BATCH_ENCRYPT})

RESPONSE_FORMAT = "Json"
_BASE_FIELDS = ("action", "group_id", "account_id")


def serialize_command(command: Mapping[str, Any]) -> str:
    return json.dumps(command, separators=(",", ":"), sort_keys=True, ensure_ascii=False)


@dataclass(frozen=True)
class ExecutionRequest:
    program: KeyManagerProgram
    input_data: str
    resource_limits: ResourceLimits
    response_format: str = RESPONSE_FORMAT

    def to_payload(self, *, u64_as_string: bool = False) -> Dict[str, Any]:
        """Render the request body.

        NEAR contracts take u64 values as JSON strings, so the on-chain args
        set ``u64_as_string``. ``input_data`` is the same either way.
        """
        max_instructions: Any = self.resource_limits.max_instructions
        if u64_as_string:
            max_instructions = str(max_instructions)
        return {
            "source": {
                "WasmUrl": {
                    "url": self.program.url,
                    "hash": self.program.hash,
                    "build_target": self.program.build_target,
                }
            },
            "input_data": self.input_data,
            "resource_limits": {
                "max_instructions": max_instructions,
                "max_memory_mb": self.resource_limits.max_memory_mb,
                "max_execution_seconds": self.resource_limits.max_execution_seconds,
            },
            "response_format": self.response_format,
        }

    def command(self) -> Dict[str, Any]:
        return json.loads(self.input_data)


def build_command(
    action: str,
    group_id: str,
    account_id: str,
    extra_fields: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    if action not in ACTIONS:
        raise InvalidParameterError(f"Unsupported key-manager action: {action}")
    command: Dict[str, Any] = {
        "action": action,
        "group_id": group_id,
        "account_id": account_id,
    }
    for key, value in (extra_fields or {}).items():
        if key in _BASE_FIELDS:
            # Identity fields always come from the caller-validated arguments.
            continue
        command[key] = value
    return command


def build_execution_request(
    action: str,
    group_id: str,
    account_id: str,
    extra_fields: Optional[Mapping[str, Any]] = None,
    *,
    program: Optional[KeyManagerProgram] = None,
    limits: Optional[ResourceLimits] = None,
) -> ExecutionRequest:
    command = build_command(action, group_id, account_id, extra_fields)
    return ExecutionRequest(
        program=program or KeyManagerProgram(),
        input_data=serialize_command(command),
        resource_limits=limits or ResourceLimits(),
    )
