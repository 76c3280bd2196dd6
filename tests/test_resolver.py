from unittest.mock import MagicMock

import pytest
import requests

from encrypted_kv.errors import InvalidLedgerResponseError, LedgerUnavailableError
from encrypted_kv.resolver import DEFAULT_RECOGNIZERS, ResultResolver, ShapeRecognizer, recognize

TX_HASH = "9ZbL1rYtJmQfWz3cE5m2sV8pN6xD4kHaRuGj7TqBwC1"


def rpc_payload(logs, status=None):
    result = {
        "status": status or {"SuccessValue": ""},
        "receipts_outcome": [{"id": "r1", "outcome": {"logs": logs}}],
    }
    return {"jsonrpc": "2.0", "id": "dontcare", "result": result}


def make_resolver(body=None, side_effect=None, invalid_json=False, **kwargs):
    session = MagicMock()
    if side_effect is not None:
        session.post.side_effect = side_effect
    else:
        response = MagicMock()
        response.status_code = 200
        if invalid_json:
            response.json.side_effect = ValueError("Expecting value")
        else:
            response.json.return_value = body
        session.post.return_value = response
    resolver = ResultResolver(
        rpc_url="http://near-rpc.test", signer_id="kampouse.near", session=session, **kwargs
    )
    return resolver, session


def test_encrypt_result_reconstructed_from_logs():
    body = rpc_payload(["not json at all", '{"ciphertext_b64":"QQ==","key_id":"k1"}'])
    resolver, session = make_resolver(body)

    outcome = resolver.resolve(TX_HASH)

    assert outcome.success is True
    assert outcome.error is None
    assert outcome.result["encrypted_value"] == "enc:AES256:k1:QQ=="
    assert outcome.result["key_id"] == "k1"
    request = session.post.call_args.kwargs["json"]
    assert request["method"] == "tx"
    assert request["params"] == [TX_HASH, "kampouse.near"]


def test_signer_override_is_forwarded():
    resolver, session = make_resolver(rpc_payload([]))
    resolver.resolve(TX_HASH, "bob.near")
    assert session.post.call_args.kwargs["json"]["params"] == [TX_HASH, "bob.near"]


def test_attestation_passed_through():
    body = rpc_payload(['{"ciphertext_b64":"QQ==","key_id":"k1","attestation_hash":"att-1"}'])
    resolver, _ = make_resolver(body)
    assert resolver.resolve(TX_HASH).result["attestation"] == "att-1"


def test_decrypt_result_reconstructed_from_logs():
    body = rpc_payload(['{"plaintext_b64":"aGVsbG8=","plaintext_utf8":"hello","key_id":"k1"}'])
    resolver, _ = make_resolver(body)
    outcome = resolver.resolve(TX_HASH)
    assert outcome.success is True
    assert outcome.result == {"plaintext": "hello", "key_id": "k1"}


def test_first_matching_line_wins():
    body = rpc_payload(
        [
            '{"event":"started"}',
            '{"ciphertext_b64":"Zmlyc3Q=","key_id":"k1"}',
            '{"ciphertext_b64":"c2Vjb25k","key_id":"k2"}',
        ]
    )
    resolver, _ = make_resolver(body)
    assert resolver.resolve(TX_HASH).result["encrypted_value"] == "enc:AES256:k1:Zmlyc3Q="


def test_binary_plaintext_without_utf8_field():
    body = rpc_payload(['{"plaintext_b64":"/w==","key_id":"k1"}'])
    resolver, _ = make_resolver(body)
    result = resolver.resolve(TX_HASH).result
    assert result["plaintext_utf8"] is None
    assert result["plaintext"] == "�"


def test_unrecognized_logs_fall_back_to_raw_result():
    body = rpc_payload(["EVENT_JSON:{}", '{"unrelated":true}'])
    resolver, _ = make_resolver(body)
    outcome = resolver.resolve(TX_HASH)
    assert outcome.success is True
    assert outcome.result == body["result"]


def test_missing_receipts_fall_back_to_raw_result():
    body = {"jsonrpc": "2.0", "id": "dontcare", "result": {"status": {"SuccessValue": ""}}}
    resolver, _ = make_resolver(body)
    assert resolver.resolve(TX_HASH).result == body["result"]


def test_ledger_error_is_not_fatal():
    body = {"jsonrpc": "2.0", "id": "dontcare", "error": {"name": "HANDLER_ERROR", "cause": {"name": "UNKNOWN_TRANSACTION"}}}
    resolver, _ = make_resolver(body)

    outcome = resolver.resolve(TX_HASH)

    assert outcome.success is False
    assert outcome.result is None
    assert "UNKNOWN_TRANSACTION" in outcome.error


def test_on_chain_failure_reported_as_unsuccessful():
    body = rpc_payload([], status={"Failure": {"ActionError": {"index": 0}}})
    resolver, _ = make_resolver(body)
    outcome = resolver.resolve(TX_HASH)
    assert outcome.success is False
    assert "ActionError" in outcome.error


def test_transport_failure_raises_ledger_unavailable():
    resolver, _ = make_resolver(side_effect=requests.ConnectionError("boom"))
    with pytest.raises(LedgerUnavailableError):
        resolver.resolve(TX_HASH)


@pytest.mark.parametrize("kwargs", [{"invalid_json": True}, {"body": ["not", "an", "object"]}])
def test_undecodable_reply_raises_invalid_ledger_response(kwargs):
    resolver, _ = make_resolver(**kwargs)
    with pytest.raises(InvalidLedgerResponseError):
        resolver.resolve(TX_HASH)


def test_custom_recognizer_can_be_added_without_touching_resolver():
    signed = ShapeRecognizer(
        name="signature",
        matches=lambda payload: "signature_b64" in payload,
        extract=lambda payload: {"signature": payload["signature_b64"]},
    )
    logs = ['{"signature_b64":"c2ln"}']
    assert recognize(logs) is None
    assert recognize(logs, (*DEFAULT_RECOGNIZERS, signed)) == {"signature": "c2ln"}
