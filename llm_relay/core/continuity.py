"""Continuity marker codec and history lookup.

Wire format: ``modelId + "\\" + JSON``.  The JSON carries the marker
fields plus an extension tag so foreign data parts are ignored.  Markers
travel as side-channel data parts, never as rendered text.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Sequence

from ..types import (
    STATEFUL_MARKER_MIME,
    ChatMessage,
    ContinuityMarker,
    DataPart,
    MarkerDecodeError,
    MarkerMatch,
)

logger = logging.getLogger(__name__)

MARKER_EXTENSION = "vicanent.gcmp"
_SEPARATOR = "\\"


def encode_marker(model_id: str, marker: ContinuityMarker) -> bytes:
    """Serialize *marker* owned by *model_id* into an opaque payload."""
    if _SEPARATOR in model_id:
        raise ValueError(f"model id must not contain a backslash: {model_id!r}")
    fields = {
        "provider": marker.provider,
        "modelId": marker.model_id,
        "sdkMode": marker.sdk_mode,
        "sessionId": marker.session_id,
        "responseId": marker.response_id,
    }
    if marker.expire_at is not None:
        fields["expireAt"] = marker.expire_at
    fields["extension"] = MARKER_EXTENSION
    return (model_id + _SEPARATOR + json.dumps(fields, ensure_ascii=False)).encode("utf-8")


def decode_marker_envelope(data: bytes) -> tuple[str, dict]:
    """Split a payload into ``(owner_model_id, raw_fields)``.

    Raises:
        MarkerDecodeError: payload is not UTF-8, has no separator, or the
            body is not a JSON object.
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MarkerDecodeError(f"marker payload is not UTF-8: {e}") from e
    model_id, sep, body = text.partition(_SEPARATOR)
    if not sep:
        raise MarkerDecodeError("marker payload has no model separator")
    try:
        fields = json.loads(body)
    except json.JSONDecodeError as e:
        raise MarkerDecodeError(f"marker body is not JSON: {e}") from e
    if not isinstance(fields, dict):
        raise MarkerDecodeError("marker body is not a JSON object")
    return model_id, fields


def decode_marker(data: bytes) -> ContinuityMarker:
    """Inverse of :func:`encode_marker`.

    Raises:
        MarkerDecodeError: payload is malformed, carries a foreign
            extension tag, or lacks required fields.
    """
    _, fields = decode_marker_envelope(data)
    if fields.get("extension") != MARKER_EXTENSION:
        raise MarkerDecodeError(f"unknown marker extension: {fields.get('extension')!r}")
    try:
        expire_at = fields.get("expireAt")
        return ContinuityMarker(
            provider=str(fields["provider"]),
            model_id=str(fields["modelId"]),
            sdk_mode=str(fields["sdkMode"]),
            session_id=str(fields["sessionId"]),
            response_id=str(fields["responseId"]),
            expire_at=int(expire_at) if expire_at is not None else None,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MarkerDecodeError(f"marker is missing fields: {e}") from e


def iter_markers(history: Sequence[ChatMessage]) -> Iterator[MarkerMatch]:
    """Yield every decodable marker in assistant turns, newest first."""
    for idx in range(len(history) - 1, -1, -1):
        message = history[idx]
        if message.role != "assistant":
            continue
        for part in message.content:
            if not isinstance(part, DataPart) or part.mime_type != STATEFUL_MARKER_MIME:
                continue
            try:
                marker = decode_marker(part.data)
            except MarkerDecodeError as e:
                logger.debug("Skipping undecodable marker at message %d: %s", idx, e)
                continue
            yield MarkerMatch(marker=marker, index=idx)


def find_marker(
    history: Sequence[ChatMessage],
    sdk_mode: str,
    model_id: str,
    provider: str | None = None,
) -> MarkerMatch | None:
    """Newest marker matching protocol variant and model (and vendor if given).

    Non-matching markers are skipped, not removed.
    """
    for match in iter_markers(history):
        marker = match.marker
        if not marker.session_id:
            continue
        if marker.sdk_mode != sdk_mode or marker.model_id != model_id:
            continue
        if provider is not None and marker.provider != provider:
            continue
        return match
    return None


def strip_markers(message: ChatMessage) -> ChatMessage:
    """Copy of *message* without continuity data parts, for vendor payload conversion."""
    return ChatMessage(
        role=message.role,
        content=[
            p for p in message.content
            if not (isinstance(p, DataPart) and p.mime_type == STATEFUL_MARKER_MIME)
        ],
    )
