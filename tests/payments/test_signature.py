import hashlib
import hmac

from application.services.signature import SIGNATURE_HEADER, SignatureVerifier, get_header
from core.logging_config import mask_token_path

BODY = b'{"event_type":"payment.completed","transaction_token":"tok-1"}'


def _sign(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def test_correct_signature_passes():
    verifier = SignatureVerifier("whsec")
    assert verifier.verify(BODY, _sign("whsec", BODY))


def test_prefixed_and_uppercase_signature_passes():
    verifier = SignatureVerifier("whsec")
    assert verifier.verify(BODY, "sha256=" + _sign("whsec", BODY).upper())


def test_tampered_body_fails():
    verifier = SignatureVerifier("whsec")
    signature = _sign("whsec", BODY)
    assert not verifier.verify(BODY.replace(b"tok-1", b"tok-2"), signature)


def test_wrong_secret_or_missing_header_fails():
    verifier = SignatureVerifier("whsec")
    assert not verifier.verify(BODY, _sign("other", BODY))
    assert not verifier.verify(BODY, None)
    assert not verifier.verify(BODY, "")


def test_non_ascii_signature_fails_instead_of_raising():
    verifier = SignatureVerifier("whsec")
    assert not verifier.verify(BODY, "é" * 64)
    assert not verifier.verify(BODY, "sha256=" + "ÿ" * 64)


def test_no_secret_accepts_everything():
    verifier = SignatureVerifier(None)
    assert verifier.enabled is False
    assert verifier.verify(BODY, None)
    assert verifier.verify(BODY, "garbage")


def test_header_lookup_is_case_insensitive():
    headers = {"x-bna-signature": "abc", "Content-Type": "application/json"}
    assert get_header(headers, SIGNATURE_HEADER) == "abc"
    assert get_header(headers, "X-Missing") is None


def test_token_paths_are_shortened_for_logs():
    assert (
        mask_token_path("/api/v1/payments/transactions/tok-abcdef123456/status")
        == "/api/v1/payments/transactions/tok-ab.../status"
    )
    assert mask_token_path("/api/v1/payments/checkout") == "/api/v1/payments/checkout"
