import base64
import hmac
from hashlib import sha256

from realtorpro.services.billing.signature import (
    MATCH_RAW,
    sign_webhook_body,
    verify_webhook_signature,
)

SECRET = "whsec_test"  # noqa: S105 - test fixture value
BODY = b'{"event":"payment.succeeded","object":{"id":"pay_1"}}'


def _expected(body: bytes, secret: str = SECRET) -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, sha256).digest()).decode()


def test_sign_matches_base64_hmac_sha256():
    assert sign_webhook_body(BODY, SECRET) == _expected(BODY)


def test_valid_signature_verifies_against_raw_body():
    result = verify_webhook_signature(BODY, _expected(BODY), SECRET)

    assert result.verified is True
    assert result.matched == MATCH_RAW


def test_surrounding_whitespace_in_header_is_ignored():
    result = verify_webhook_signature(BODY, f"  {_expected(BODY)}\n", SECRET)

    assert result.verified is True


def test_mismatch_is_rejected():
    result = verify_webhook_signature(BODY, _expected(BODY, "other-secret"), SECRET)

    assert result.verified is False
    assert result.reason == "mismatch"


def test_tampered_body_is_rejected():
    signature = _expected(BODY)

    result = verify_webhook_signature(BODY.replace(b"pay_1", b"pay_2"), signature, SECRET)

    assert result.verified is False


def test_missing_secret_fails_closed():
    result = verify_webhook_signature(BODY, _expected(BODY), None)

    assert result.verified is False
    assert result.reason == "missing_secret"


def test_missing_signature_fails_closed():
    assert verify_webhook_signature(BODY, None, SECRET).reason == "missing_signature"
    assert verify_webhook_signature(BODY, "", SECRET).reason == "missing_signature"


def test_non_ascii_signature_is_a_mismatch_not_an_error():
    result = verify_webhook_signature(BODY, "подпись", SECRET)

    assert result.verified is False
    assert result.reason == "mismatch"


def test_utf8_body_signed_as_sent():
    body = '{"description":"Подписка на РиелторПро"}'.encode()

    assert verify_webhook_signature(body, _expected(body), SECRET).verified is True
