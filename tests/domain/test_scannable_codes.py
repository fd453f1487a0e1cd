"""
Tests for signed QR payloads and time-window codes (``access_kernel.domain.codes``).
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from access_kernel.domain.codes import QR_PREFIX, CodeSigner, is_qr_payload
from access_kernel.domain.credential import Credential, CredentialStatus
from access_kernel.exceptions import ConfigurationError, InvalidCodeError

KEY = b"unit-test-signing-key-0123456789"
NOW = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


def make_credential(**overrides) -> Credential:
    fields = dict(
        credential_id=uuid4(),
        request_id=uuid4(),
        code="Qm9vdGhDb2RlRXhhbXBsZQ",
        status=CredentialStatus.ACTIVE,
        issued_at=NOW,
        expires_at=NOW + timedelta(hours=8),
        usage_limit=5,
        usage_count=0,
        version=1,
        permissions=frozenset({"standard", "escort-required"}),
    )
    fields.update(overrides)
    return Credential(**fields)


@pytest.fixture
def signer() -> CodeSigner:
    return CodeSigner(KEY, time_window_seconds=300)


class TestSignerConstruction:
    def test_short_key_rejected(self):
        with pytest.raises(ConfigurationError, match="at least 16 bytes"):
            CodeSigner(b"too-short")

    def test_window_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            CodeSigner(KEY, time_window_seconds=0)


class TestQRPayload:
    def test_decode_returns_encoded_fields(self, signer):
        cred = make_credential()

        payload = signer.decode_qr(signer.encode_qr(cred))

        assert payload.credential_id == cred.credential_id
        assert payload.request_id == cred.request_id
        assert payload.code == cred.code
        assert payload.expires_at == cred.expires_at
        assert payload.permissions == cred.permissions
        assert not payload.is_expired(NOW)
        assert payload.is_expired(cred.expires_at)

    def test_expiry_normalised_to_utc(self, signer):
        plus_eight = timezone(timedelta(hours=8))
        cred = make_credential(expires_at=datetime(2024, 6, 1, 17, 0, tzinfo=plus_eight))
        payload = signer.decode_qr(signer.encode_qr(cred))
        assert payload.expires_at == cred.expires_at
        assert payload.expires_at.utcoffset() == timedelta(0)

    def test_prefix(self, signer):
        content = signer.encode_qr(make_credential())
        assert content.startswith(QR_PREFIX)
        assert is_qr_payload(content)
        assert not is_qr_payload("plain-code")

    def test_edited_body_rejected(self, signer):
        content = signer.encode_qr(make_credential())
        body, signature = content[len(QR_PREFIX):].rsplit(".", 1)
        tampered = body[:-2] + ("AA" if body[-2:] != "AA" else "BB")

        with pytest.raises(InvalidCodeError, match="signature mismatch"):
            signer.decode_qr(f"{QR_PREFIX}{tampered}.{signature}")

    def test_other_key_rejected(self, signer):
        content = CodeSigner(b"another-key-with-enough-bytes").encode_qr(make_credential())
        with pytest.raises(InvalidCodeError):
            signer.decode_qr(content)

    @pytest.mark.parametrize("content", [
        "plain-code",
        QR_PREFIX,
        QR_PREFIX + "no-signature",
        QR_PREFIX + ".sig",
        QR_PREFIX + "bödy.sig",
    ])
    def test_malformed_content_rejected(self, signer, content):
        with pytest.raises(InvalidCodeError) as exc_info:
            signer.decode_qr(content)
        assert exc_info.value.code == "INVALID_CODE"


class TestTimeWindowCode:
    def test_shape(self, signer):
        code = signer.time_code("abc", NOW)
        assert len(code) == 8
        assert code.isdigit()

    def test_stable_within_window(self, signer):
        start = NOW.replace(minute=0)
        assert signer.time_code("abc", start) == signer.time_code("abc", start + timedelta(seconds=299))

    def test_depends_on_code_and_key(self, signer):
        assert signer.time_code("abc", NOW) != signer.time_code("abd", NOW)
        other = CodeSigner(b"another-key-with-enough-bytes", time_window_seconds=300)
        assert signer.time_code("abc", NOW) != other.time_code("abc", NOW)

    def test_previous_window_accepted(self, signer):
        issued = signer.time_code("abc", NOW)
        assert signer.check_time_code("abc", issued, NOW + timedelta(seconds=300))
        assert not signer.check_time_code("abc", issued, NOW + timedelta(seconds=600))

    def test_future_window_rejected(self, signer):
        ahead = signer.time_code("abc", NOW + timedelta(seconds=300))
        assert not signer.check_time_code("abc", ahead, NOW)

    def test_garbage_rejected(self, signer):
        assert not signer.check_time_code("abc", "not-digits", NOW)
        assert not signer.check_time_code("abc", "１２３４５６７８", NOW)

    def test_window_end(self, signer):
        end = signer.window_end(NOW + timedelta(seconds=10))
        assert end == NOW + timedelta(seconds=300)
        assert end.tzinfo is not None
