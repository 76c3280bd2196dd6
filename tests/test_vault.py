import base64
import json
from unittest.mock import MagicMock

import pytest

from encrypted_kv import envelope
from encrypted_kv.config import GatewaySettings
from encrypted_kv.deferred import DeferredPreparer
from encrypted_kv.errors import InvalidParameterError, MalformedDescriptorError, MissingCredentialError
from encrypted_kv.key_manager_client import KeyManagerClient
from encrypted_kv.resolver import ResultResolver
from encrypted_kv.vault import EncryptedVault


class EchoKeyManager:
    """Stands in for the TEE: 'encrypts' by echoing the plaintext base64 back."""

    def __init__(self, key_id="k1", failing_keys=()):
        self.key_id = key_id
        self.failing_keys = set(failing_keys)
        self.calls = []

    def post(self, url, **kwargs):
        command = json.loads(kwargs["json"]["input_data"])
        self.calls.append((command, kwargs["headers"]))
        action = command["action"]
        if action == "encrypt":
            body = {"ciphertext_b64": command["plaintext_b64"], "key_id": self.key_id, "attestation_hash": "att"}
        elif action == "decrypt":
            raw = base64.b64decode(command["ciphertext_b64"])
            body = {"plaintext_b64": command["ciphertext_b64"], "key_id": self.key_id}
            try:
                body["plaintext_utf8"] = raw.decode("utf-8")
            except UnicodeDecodeError:
                pass
        else:
            items = []
            for item in command["items"]:
                if item["key"] in self.failing_keys:
                    items.append({"key": item["key"], "error": "encryption failed"})
                else:
                    items.append({"key": item["key"], "ciphertext_b64": item["plaintext_b64"]})
            body = {"key_id": self.key_id, "items": items}
        response = MagicMock()
        response.status_code = 200
        response.json.return_value = body
        return response


def build_vault(session):
    return EncryptedVault(
        key_manager=KeyManagerClient(call_url="http://key-manager.test/call/o/p", session=session),
        preparer=DeferredPreparer(),
        resolver=ResultResolver(rpc_url="http://near-rpc.test", signer_id="kampouse.near", session=MagicMock()),
    )


def test_encrypt_defaults_group_and_round_trips_through_echo():
    stub = EchoKeyManager()
    vault = build_vault(stub)

    encrypted = vault.encrypt("pk", account_id="alice.near", value="hello")

    command, headers = stub.calls[0]
    assert command["group_id"] == "alice.near/private"
    assert headers["X-Payment-Key"] == "pk"
    assert encrypted["key_id"] == "k1"
    assert encrypted["attestation"] == "att"
    assert envelope.decode(encrypted["encrypted_value"]) == base64.b64encode(b"hello").decode()

    decrypted = vault.decrypt("pk", account_id="alice.near", ciphertext=encrypted["encrypted_value"])
    assert decrypted == {"plaintext": "hello", "plaintext_utf8": "hello", "key_id": "k1"}


def test_explicit_group_is_forwarded():
    stub = EchoKeyManager()
    build_vault(stub).encrypt("pk", account_id="alice.near", value="v", group_id="shared/team")
    assert stub.calls[0][0]["group_id"] == "shared/team"


def test_decrypt_non_utf8_plaintext_is_lossy():
    stub = EchoKeyManager()
    result = build_vault(stub).decrypt("pk", account_id="alice.near", ciphertext=envelope.encode("k1", b"\xff\xfe"))
    assert result["plaintext_utf8"] is None
    assert result["plaintext"] == "��"


def test_decrypt_accepts_raw_ciphertext():
    stub = EchoKeyManager()
    result = build_vault(stub).decrypt("pk", account_id="alice.near", ciphertext="aGk=")
    assert stub.calls[0][0]["ciphertext_b64"] == "aGk="
    assert result["plaintext"] == "hi"


def test_decrypt_rejects_malformed_descriptor_before_network():
    session = MagicMock()
    with pytest.raises(MalformedDescriptorError):
        build_vault(session).decrypt("pk", account_id="alice.near", ciphertext="enc:AES256:only-three")
    session.post.assert_not_called()


def test_invalid_account_rejected_before_network():
    session = MagicMock()
    with pytest.raises(InvalidParameterError):
        build_vault(session).encrypt("pk", account_id="Not A Valid Account", value="x")
    session.post.assert_not_called()


def test_missing_payment_key_rejected_before_network():
    session = MagicMock()
    with pytest.raises(MissingCredentialError):
        build_vault(session).batch_encrypt(None, account_id="alice.near", items=[{"key": "a", "value": "1"}])
    session.post.assert_not_called()


def test_batch_partial_failure_is_per_item():
    stub = EchoKeyManager(key_id="shared", failing_keys={"second"})
    items = [
        {"key": "first", "value": "one"},
        {"key": "second", "value": "two"},
        {"key": "third", "value": "three"},
    ]

    result = build_vault(stub).batch_encrypt("pk", account_id="alice.near", items=items)

    assert result["key_id"] == "shared"
    assert len(result["items"]) == 3
    first, second, third = result["items"]
    assert second["error"] == "encryption failed"
    assert first["error"] is None and third["error"] is None
    assert first["encrypted_value"] == envelope.encode("shared", b"one")
    assert third["encrypted_value"] == envelope.encode("shared", b"three")


def test_missing_key_id_is_accepted_as_blank():
    session = MagicMock()
    response = MagicMock()
    response.status_code = 200
    response.json.return_value = {"ciphertext_b64": "QQ=="}
    session.post.return_value = response
    result = build_vault(session).encrypt("pk", account_id="alice.near", value="A")
    assert result == {"encrypted_value": "enc:AES256::QQ==", "key_id": "", "attestation": None}


def test_prepare_paths_need_no_credential():
    session = MagicMock()
    vault = build_vault(session)
    prepared = vault.prepare_encrypt(account_id="alice.near", value="hello")
    args = json.loads(base64.b64decode(prepared["transaction"]["args"]))
    assert json.loads(args["input_data"])["group_id"] == "alice.near/private"
    assert vault.prepare_decrypt(account_id="alice.near", ciphertext="enc:bad")["transaction"]["method_name"] == "request_execution"
    session.post.assert_not_called()


def test_result_validates_tx_hash():
    vault = build_vault(MagicMock())
    with pytest.raises(InvalidParameterError):
        vault.result("not-a-hash!")


def test_from_settings_binds_scan_queries_to_configured_table():
    vault = EncryptedVault.from_settings(GatewaySettings(_env_file=None, kv_table="kv_v2", scan_timeout_seconds=4.0))
    query = vault.queries.prefix_scan("widget/")
    assert "FROM kv_v2 WHERE" in query.statement
    assert query.timeout_seconds == 4.0
