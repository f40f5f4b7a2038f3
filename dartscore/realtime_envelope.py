"""Realtime event envelope: `{"type": ..., "payload": ...}` over the game channel."""

import json
import logging
from typing import Any
from uuid import UUID

from pydantic import ValidationError

from dartscore.models.schema_models import (
    GameSnapshotSchema,
    RealtimeEventEnvelope,
    RealtimeEventType,
)

CHANNEL_PREFIX = "game"


def game_channel(game_id: UUID | str) -> str:
    """One logical channel per game id; reconnects reuse the same address."""
    return f"{CHANNEL_PREFIX}:{game_id}"


def parse_realtime_event(data: str | bytes) -> RealtimeEventEnvelope | None:
    """Parse a raw channel message as an envelope.

    Returns None for anything that is not JSON, not an object, or carries an
    unknown type.
    """
    try:
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        parsed = json.loads(data)
        if not isinstance(parsed, dict):
            return None
        return RealtimeEventEnvelope.model_validate(parsed)
    except (UnicodeDecodeError, ValueError, ValidationError) as e:
        logging.debug(f"Dropping unparseable realtime message: {e}")
        return None


def is_game_snapshot_event(event: RealtimeEventEnvelope) -> bool:
    return event.type == RealtimeEventType.game_snapshot


def parse_snapshot_payload(event: RealtimeEventEnvelope) -> GameSnapshotSchema | None:
    try:
        return GameSnapshotSchema.model_validate(event.payload)
    except ValidationError as e:
        logging.debug(f"Dropping malformed snapshot payload: {e}")
        return None


def build_event(event_type: RealtimeEventType, payload: Any) -> str:
    """Serialize an envelope for publishing."""
    if isinstance(payload, GameSnapshotSchema):
        payload = payload.model_dump(mode="json")
    return json.dumps({"type": event_type.value, "payload": payload})
