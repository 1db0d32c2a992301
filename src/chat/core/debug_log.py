"""Bounded in-memory ring buffer of recent pipeline events for the debug view."""

import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any, Deque, Dict, List, Optional

from .config import ChatConfig


logger = logging.getLogger(__name__)

_SENSITIVE_KEYS = {"apikey", "api_key", "authorization", "token", "password", "secret"}


@dataclass
class DebugLogEntry:
    timestamp: str
    event: str
    payload: Dict[str, Any] = field(default_factory=dict)
    correlation_id: Optional[str] = None
    conversation_id: Optional[str] = None


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: "[redacted]" if str(key).lower() in _SENSITIVE_KEYS else _redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value


class DebugLogBuffer:
    """Injected event buffer; one instance per process, created by the app factory or CLI.

    Levels: 0 disabled, 1 drops ``*.raw`` events, 2 keeps everything,
    3 keeps everything with sensitive payload keys redacted.
    """

    def __init__(self, level: int = 1, capacity: int = 500, log: Optional[logging.Logger] = None):
        self.level = level
        self.capacity = capacity
        self._entries: Deque[DebugLogEntry] = deque(maxlen=capacity)
        self._logger = log or logger

    @classmethod
    def from_config(cls, config: ChatConfig) -> "DebugLogBuffer":
        return cls(level=config.debug_log_level, capacity=config.debug_log_limit)

    @property
    def enabled(self) -> bool:
        return self.level > 0

    def log(
        self,
        event: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        correlation_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> None:
        payload = dict(payload or {})
        if event.endswith(".error"):
            self._logger.error("%s correlation_id=%s payload=%s", event, correlation_id, payload)
        else:
            self._logger.debug("%s correlation_id=%s", event, correlation_id)
        if not self.enabled:
            return
        if self.level == 1 and event.endswith(".raw"):
            return
        if self.level >= 3:
            payload = _redact(payload)
        self._entries.append(
            DebugLogEntry(
                timestamp=datetime.now(UTC).isoformat(),
                event=event,
                payload=payload,
                correlation_id=correlation_id,
                conversation_id=conversation_id,
            )
        )

    def bind(self, *, correlation_id: Optional[str] = None, conversation_id: Optional[str] = None) -> "BoundDebugLog":
        return BoundDebugLog(self, correlation_id=correlation_id, conversation_id=conversation_id)

    def entries(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        items = list(self._entries)
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return [asdict(item) for item in items]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class BoundDebugLog:
    def __init__(self, buffer: DebugLogBuffer, *, correlation_id: Optional[str], conversation_id: Optional[str]):
        self.buffer = buffer
        self.correlation_id = correlation_id
        self.conversation_id = conversation_id

    def log(self, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        self.buffer.log(
            event,
            payload,
            correlation_id=self.correlation_id,
            conversation_id=self.conversation_id,
        )
