"""
Scannable credential codes.

Two representations sit on top of a credential's stored ``code``:

- A signed QR payload carrying the credential id, request id, code, expiry
  and permissions.  The signature is HMAC-SHA256 over the encoded body, so
  a checkpoint can reject a forged or edited payload before touching the
  database.
- A rotating time-window code, HOTP-style: eight digits derived from the
  stored code and the current window index.  It is shown next to the QR
  payload and only proves the holder saw the credential recently; the
  stored code is still what the gate resolves.

Pure functions of their inputs.  The signing key is supplied by the caller.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from access_kernel.domain.credential import Credential
from access_kernel.exceptions import ConfigurationError, InvalidCodeError
from access_kernel.utils.hashing import canonicalize_json

QR_PREFIX = "AK1."
QR_PAYLOAD_VERSION = 1
TIME_CODE_DIGITS = 8
MIN_KEY_BYTES = 16


@dataclass(frozen=True)
class QRPayload:
    """Decoded contents of a signed QR payload."""

    credential_id: UUID
    request_id: UUID
    code: str
    expires_at: datetime
    permissions: frozenset[str] = field(default_factory=frozenset)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class ScannableCode:
    """What a holder is shown: the QR content and, optionally, a time code."""

    credential_id: UUID
    qr_content: str
    time_code: str | None = None
    time_code_valid_until: datetime | None = None


def is_qr_payload(value: str) -> bool:
    return isinstance(value, str) and value.startswith(QR_PREFIX)


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


class CodeSigner:
    """Encodes and checks QR payloads and time-window codes under one key."""

    def __init__(self, key: bytes, time_window_seconds: int = 300):
        if len(key) < MIN_KEY_BYTES:
            raise ConfigurationError(
                "code signing key", [f"key must be at least {MIN_KEY_BYTES} bytes"],
            )
        if time_window_seconds <= 0:
            raise ConfigurationError(
                "code signing key", ["time_window_seconds must be positive"],
            )
        self._key = key
        self.time_window_seconds = time_window_seconds

    # ------------------------------------------------------------------
    # QR payload
    # ------------------------------------------------------------------

    def encode_qr(self, credential: Credential) -> str:
        body = canonicalize_json({
            "v": QR_PAYLOAD_VERSION,
            "cid": credential.credential_id,
            "rid": credential.request_id,
            "code": credential.code,
            "exp": credential.expires_at,
            "perm": credential.permissions,
        })
        encoded = _b64encode(body.encode("utf-8"))
        return f"{QR_PREFIX}{encoded}.{self._sign(encoded)}"

    def decode_qr(self, content: str) -> QRPayload:
        """Parse and authenticate a QR payload.

        Raises:
            InvalidCodeError: Wrong prefix, bad signature, or a body that
                does not decode to a current-version payload.
        """
        if not is_qr_payload(content):
            raise InvalidCodeError("not a QR payload")
        if not content.isascii():
            raise InvalidCodeError("non-ASCII characters")
        encoded, sep, signature = content[len(QR_PREFIX):].rpartition(".")
        if not sep or not encoded:
            raise InvalidCodeError("missing signature")
        if not hmac.compare_digest(signature, self._sign(encoded)):
            raise InvalidCodeError("signature mismatch")

        try:
            data = json.loads(_b64decode(encoded))
            if data["v"] != QR_PAYLOAD_VERSION:
                raise InvalidCodeError(f"unsupported payload version {data['v']}")
            return QRPayload(
                credential_id=UUID(data["cid"]),
                request_id=UUID(data["rid"]),
                code=data["code"],
                expires_at=datetime.fromisoformat(data["exp"]),
                permissions=frozenset(data["perm"]),
            )
        except (binascii.Error, UnicodeDecodeError, ValueError, KeyError, TypeError) as exc:
            raise InvalidCodeError(f"malformed payload: {exc}") from exc

    def _sign(self, encoded: str) -> str:
        return _b64encode(hmac.new(self._key, encoded.encode("ascii"), hashlib.sha256).digest())

    # ------------------------------------------------------------------
    # Time-window code
    # ------------------------------------------------------------------

    def window_index(self, at: datetime) -> int:
        return int(at.timestamp()) // self.time_window_seconds

    def window_end(self, at: datetime) -> datetime:
        end = (self.window_index(at) + 1) * self.time_window_seconds
        return datetime.fromtimestamp(end, tz=at.tzinfo)

    def time_code(self, code: str, at: datetime) -> str:
        return self._time_code_for_window(code, self.window_index(at))

    def check_time_code(self, code: str, candidate: str, at: datetime, skew_windows: int = 1) -> bool:
        """True if ``candidate`` matches the window at ``at`` or one of the
        ``skew_windows`` windows before it."""
        if not isinstance(candidate, str) or not candidate.isascii():
            return False
        current = self.window_index(at)
        return any(
            hmac.compare_digest(candidate, self._time_code_for_window(code, window))
            for window in range(current - skew_windows, current + 1)
        )

    def _time_code_for_window(self, code: str, window: int) -> str:
        mac = hmac.new(self._key, f"{code}:{window}".encode("utf-8"), hashlib.sha256).digest()
        offset = mac[-1] & 0x0F
        value = int.from_bytes(mac[offset:offset + 4], "big") & 0x7FFFFFFF
        return str(value % 10**TIME_CODE_DIGITS).zfill(TIME_CODE_DIGITS)
