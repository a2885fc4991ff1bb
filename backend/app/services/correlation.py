"""Correlation ID codec.

A correlation ID carries ``(game_id, user_id, session_id)`` through the
payment provider and comes back verbatim in its webhook::

    game_<game_id>__user_<user_id>__session_<session_id>

Decoding splits on ``__`` and then on the first ``_`` of each segment, so a
component that contains ``__`` or starts/ends with ``_`` would decode to the
wrong triple. ``encode_correlation_id`` refuses such components instead of
producing an ID that cannot be read back.
"""
from typing import NamedTuple, Optional

JOINER = "__"
LABEL_SEPARATOR = "_"

GAME_LABEL = "game"
USER_LABEL = "user"
SESSION_LABEL = "session"


class CorrelationParts(NamedTuple):
    game_id: Optional[str]
    user_id: Optional[str]
    session_id: Optional[str]

    @property
    def complete(self) -> bool:
        return bool(self.game_id and self.user_id and self.session_id)


def _check_component(name: str, value: str) -> None:
    if not isinstance(value, str) or not value:
        raise ValueError(f"{name} must be a non-empty string")
    if JOINER in value:
        raise ValueError(f"{name} must not contain {JOINER!r}: {value!r}")
    if value.startswith(LABEL_SEPARATOR) or value.endswith(LABEL_SEPARATOR):
        raise ValueError(f"{name} must not start or end with {LABEL_SEPARATOR!r}: {value!r}")


def encode_correlation_id(game_id: str, user_id: str, session_id: str) -> str:
    """Encode the triple. Raises ValueError for components that would not round-trip."""
    _check_component("game_id", game_id)
    _check_component("user_id", user_id)
    _check_component("session_id", session_id)
    return JOINER.join(
        f"{label}{LABEL_SEPARATOR}{value}"
        for label, value in (
            (GAME_LABEL, game_id),
            (USER_LABEL, user_id),
            (SESSION_LABEL, session_id),
        )
    )


def decode_correlation_id(correlation_id) -> CorrelationParts:
    """Decode a correlation ID. Missing or malformed fields come back as None."""
    if not isinstance(correlation_id, str):
        return CorrelationParts(None, None, None)

    fields: dict[str, str] = {}
    for segment in correlation_id.split(JOINER):
        label, sep, value = segment.partition(LABEL_SEPARATOR)
        if sep and value:
            fields[label] = value

    return CorrelationParts(
        game_id=fields.get(GAME_LABEL),
        user_id=fields.get(USER_LABEL),
        session_id=fields.get(SESSION_LABEL),
    )
