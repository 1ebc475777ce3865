"""
LookBridge Event Stream

Append-only record of bridge and oracle events, the in-process stand-in
for contract event logs.  Subscribers are notified synchronously; a
failing subscriber is logged and never blocks the emitter.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..logger import get_logger

logger = get_logger(__name__)


BRIDGE_INITIATED = "BridgeInitiated"
BRIDGE_COMPLETED = "BridgeCompleted"
BRIDGE_REGISTERED = "BridgeRegistered"
SUPPLY_UPDATED = "SupplyUpdated"
SUPPLY_RECONCILED = "SupplyReconciled"
CIRCUIT_BREAKER_TRIGGERED = "CircuitBreakerTriggered"
CIRCUIT_BREAKER_RESET = "CircuitBreakerReset"
PROTOCOL_STATUS_UPDATED = "ProtocolStatusUpdated"
PROTOCOL_FEES_UPDATED = "ProtocolFeesUpdated"
FEES_WITHDRAWN = "FeesWithdrawn"

EVENT_NAMES = (
    BRIDGE_INITIATED,
    BRIDGE_COMPLETED,
    BRIDGE_REGISTERED,
    SUPPLY_UPDATED,
    SUPPLY_RECONCILED,
    CIRCUIT_BREAKER_TRIGGERED,
    CIRCUIT_BREAKER_RESET,
    PROTOCOL_STATUS_UPDATED,
    PROTOCOL_FEES_UPDATED,
    FEES_WITHDRAWN,
)


@dataclass(frozen=True)
class BridgeEvent:
    """A single emitted event."""
    name: str
    args: Dict[str, Any]
    index: int
    timestamp: float = field(default_factory=time.time)

    def __getitem__(self, key: str) -> Any:
        return self.args[key]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.name,
            "index": self.index,
            "args": {k: str(v) if isinstance(v, int) and not isinstance(v, bool) else v
                     for k, v in self.args.items()},
            "timestamp": self.timestamp,
        }


EventCallback = Callable[[BridgeEvent], None]


class EventLog:
    """
    Ordered event log shared by the components of one deployment.
    """

    def __init__(self, source: str = ""):
        self.source = source
        self._events: List[BridgeEvent] = []
        self._subscribers: List[tuple] = []
        self._lock = threading.RLock()

    def emit(self, name: str, **args: Any) -> BridgeEvent:
        if name not in EVENT_NAMES:
            raise ValueError(f"Unknown event: {name}")
        with self._lock:
            event = BridgeEvent(name=name, args=args, index=len(self._events))
            self._events.append(event)
            subscribers = list(self._subscribers)

        logger.debug(f"{self.source or 'events'}: {name} {args}")
        for wanted, callback in subscribers:
            if wanted is not None and wanted != name:
                continue
            try:
                callback(event)
            except Exception as exc:
                logger.error(f"Event subscriber failed on {name}: {exc}", exc_info=True)
        return event

    def subscribe(self, callback: EventCallback, name: Optional[str] = None) -> None:
        """Register `callback` for every event, or only events called `name`."""
        with self._lock:
            self._subscribers.append((name, callback))

    def unsubscribe(self, callback: EventCallback) -> None:
        with self._lock:
            self._subscribers = [(n, cb) for n, cb in self._subscribers if cb is not callback]

    def filter(self, name: Optional[str] = None, **match: Any) -> List[BridgeEvent]:
        """Events with the given name whose args contain every `match` pair."""
        with self._lock:
            events = list(self._events)
        return [
            e for e in events
            if (name is None or e.name == name)
            and all(e.args.get(k) == v for k, v in match.items())
        ]

    def count(self, name: Optional[str] = None) -> int:
        return len(self.filter(name))

    def last(self, name: Optional[str] = None) -> Optional[BridgeEvent]:
        events = self.filter(name)
        return events[-1] if events else None

    def __len__(self) -> int:
        return len(self._events)
