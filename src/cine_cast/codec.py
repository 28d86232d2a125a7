"""Encoding and decoding of relay payloads.

Two payload shapes travel over the relay:

* **flat** - base64 of the JSON session description ``{"type", "sdp"}``;
* **enveloped** - base64 of JSON ``{"action", "name", "sdp"}`` where ``sdp``
  is itself a flat payload. The outer layer lets a relay route by stream
  name without understanding SDP.

Both shapes are accepted on decode. Encoding produces the enveloped shape
whenever a stream name is available and the flat shape otherwise.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from .errors import DecodeError
from .models import Role, SessionDescription, SignalingEnvelope

logger = logging.getLogger(__name__)

MALFORMED_PAYLOAD = "malformed payload"
UNRECOGNIZED_FORMAT = "unrecognized format"


@dataclass(frozen=True, slots=True)
class DecodeResult:
    """Outcome of :func:`decode_remote`; exactly one field is set."""

    description: SessionDescription | None = None
    error: DecodeError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.description is not None

    @classmethod
    def success(cls, description: SessionDescription) -> "DecodeResult":
        return cls(description=description)

    @classmethod
    def failure(cls, reason: str) -> "DecodeResult":
        return cls(error=DecodeError(reason))


def _b64encode_json(payload: dict[str, Any]) -> str:
    text = json.dumps(payload, separators=(",", ":"))
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def _b64decode_json(text: str) -> Any:
    raw = base64.b64decode(text.strip(), validate=True)
    return json.loads(raw.decode("utf-8"))


def encode_description(description: SessionDescription) -> str:
    """Return the flat wire form of *description*."""

    return _b64encode_json(description.model_dump())


def encode_offer(
    description: SessionDescription,
    stream_name: str | None,
    role: Role,
) -> str:
    """Serialise a finalized local description for the relay."""

    inner = encode_description(description)
    name = (stream_name or "").strip()
    if not name:
        return inner
    envelope = SignalingEnvelope(action=Role(role).action, name=name, sdp=inner)
    return _b64encode_json(envelope.model_dump())


def _description_from(payload: Any) -> SessionDescription | None:
    if isinstance(payload, dict) and "type" in payload and "sdp" in payload:
        return SessionDescription.model_validate(payload)
    return None


def decode_remote(wire: str) -> DecodeResult:
    """Decode a counterpart payload without ever raising."""

    try:
        parsed = _b64decode_json(wire)
        if not isinstance(parsed, dict):
            return DecodeResult.failure(UNRECOGNIZED_FORMAT)
        description = _description_from(parsed)
        if description is not None:
            return DecodeResult.success(description)
        if "sdp" in parsed:
            inner = parsed["sdp"]
            if not isinstance(inner, str):
                return DecodeResult.failure(MALFORMED_PAYLOAD)
            description = _description_from(_b64decode_json(inner))
            if description is not None:
                return DecodeResult.success(description)
        return DecodeResult.failure(UNRECOGNIZED_FORMAT)
    except (binascii.Error, UnicodeError, ValueError, TypeError, AttributeError, RecursionError) as exc:
        # ``ValueError`` covers JSON errors and pydantic validation errors;
        # ``RecursionError`` comes from deeply nested JSON.
        logger.debug("Rejected relay payload: %s", exc)
        return DecodeResult.failure(MALFORMED_PAYLOAD)


def decode_envelope(wire: str) -> SignalingEnvelope:
    """Parse the enveloped form strictly, raising :class:`DecodeError`."""

    try:
        parsed = _b64decode_json(wire)
    except (binascii.Error, UnicodeError, ValueError, RecursionError) as exc:
        raise DecodeError(MALFORMED_PAYLOAD) from exc
    if not isinstance(parsed, dict) or "action" not in parsed:
        raise DecodeError(UNRECOGNIZED_FORMAT)
    try:
        return SignalingEnvelope.model_validate(parsed)
    except ValidationError as exc:
        raise DecodeError(MALFORMED_PAYLOAD) from exc


__all__ = [
    "DecodeResult",
    "MALFORMED_PAYLOAD",
    "UNRECOGNIZED_FORMAT",
    "decode_envelope",
    "decode_remote",
    "encode_description",
    "encode_offer",
]
