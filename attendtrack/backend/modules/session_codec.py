# attendtrack/backend/modules/session_codec.py

import hmac
import hashlib
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel

from ..config.config import settings
from ..models.session_models import AttendanceSession, QRPayload
from .clock import to_reference

logger = logging.getLogger(__name__)

# Wire order of the payload keys. This text crosses a printed QR code, so it must not change.
PAYLOAD_FIELDS = ("courseId", "courseCode", "courseName", "generatedAt", "expiresAt")
SIGNATURE_FIELD = "signature"


class DecodeError(ValueError):
    """Raised when scanned text is not a well-formed attendance payload."""
    pass


class DecodeResult(BaseModel):
    """Outcome of a decode attempt that never raises."""
    payload: Optional[QRPayload] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.payload is not None


def _parse_timestamp(field: str, value: str) -> datetime:
    try:
        # fromisoformat rejects a trailing 'Z' before Python 3.11.
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        # Instants near datetime.min/max overflow when shifted to the reference offset.
        return to_reference(parsed)
    except (ValueError, OverflowError) as e:
        raise DecodeError(f"Field '{field}' is not an ISO-8601 timestamp in range.") from e


class SessionCodec:
    """
    Maps an attendance session to the JSON text embedded in its QR code and back.

    With a signing key, `encode` appends an HMAC-SHA256 over the canonical
    unsigned body so `verify_signature` can detect fabricated payloads. Without
    one, payloads are plain JSON and anyone can forge them.
    """

    def __init__(self, signing_key: Optional[str] = None):
        self._signing_key = signing_key.encode("utf-8") if signing_key else None

    @property
    def signs_payloads(self) -> bool:
        return self._signing_key is not None

    @staticmethod
    def _canonical_body(course_id: str, course_code: str, course_name: str,
                        generated_at: datetime, expires_at: datetime) -> Dict[str, Any]:
        return {
            "courseId": course_id,
            "courseCode": course_code,
            "courseName": course_name,
            "generatedAt": to_reference(generated_at).isoformat(),
            "expiresAt": to_reference(expires_at).isoformat(),
        }

    @staticmethod
    def _dumps(body: Dict[str, Any]) -> str:
        return json.dumps(body, ensure_ascii=False, separators=(",", ":"))

    def _sign(self, unsigned_text: str) -> str:
        return hmac.new(key=self._signing_key, msg=unsigned_text.encode("utf-8"), digestmod=hashlib.sha256).hexdigest()

    def encode(self, session: AttendanceSession) -> str:
        """Deterministically renders the session's public fields as payload text."""
        body = self._canonical_body(
            session.course_id, session.course_code, session.course_name,
            session.issued_at, session.expires_at
        )
        if self._signing_key:
            body[SIGNATURE_FIELD] = self._sign(self._dumps(body))
        return self._dumps(body)

    def decode(self, raw: Union[str, bytes]) -> QRPayload:
        """Parses payload text, raising DecodeError on anything malformed."""
        try:
            data = json.loads(raw)
        except (ValueError, TypeError, RecursionError) as e:
            raise DecodeError("Invalid QR code format.") from e

        if not isinstance(data, dict):
            raise DecodeError("Invalid QR code format.")

        missing = [field for field in PAYLOAD_FIELDS if field not in data]
        if missing:
            raise DecodeError(f"QR code is missing required fields: {', '.join(missing)}.")

        for field in PAYLOAD_FIELDS:
            value = data[field]
            if not isinstance(value, str) or not value.strip():
                raise DecodeError(f"Field '{field}' must be a non-empty string.")

        signature = data.get(SIGNATURE_FIELD)
        if signature is not None and not isinstance(signature, str):
            raise DecodeError(f"Field '{SIGNATURE_FIELD}' must be a string.")

        generated_at = _parse_timestamp("generatedAt", data["generatedAt"])
        expires_at = _parse_timestamp("expiresAt", data["expiresAt"])
        if expires_at <= generated_at:
            raise DecodeError("QR code expires before it was generated.")

        return QRPayload(
            course_id=data["courseId"],
            course_code=data["courseCode"],
            course_name=data["courseName"],
            generated_at=generated_at,
            expires_at=expires_at,
            signature=signature,
        )

    def safe_decode(self, raw: Union[str, bytes]) -> DecodeResult:
        """Like `decode`, but reports failures in the result instead of raising."""
        try:
            return DecodeResult(payload=self.decode(raw))
        except DecodeError as e:
            logger.info(f"Rejected malformed QR payload: {e}")
            return DecodeResult(error=str(e))

    def verify_signature(self, payload: QRPayload) -> bool:
        """True when no key is configured, or when the payload's signature matches."""
        if not self._signing_key:
            return True
        if not payload.signature:
            return False
        unsigned_text = self._dumps(self._canonical_body(
            payload.course_id, payload.course_code, payload.course_name,
            payload.generated_at, payload.expires_at
        ))
        return hmac.compare_digest(self._sign(unsigned_text), payload.signature)


def get_session_codec() -> SessionCodec:
    return SessionCodec(signing_key=settings.SESSION_SIGNING_KEY)
