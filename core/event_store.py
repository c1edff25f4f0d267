"""
Event store for Volume Radar.

Holds the bounded, deduplicated, newest-first list of volume events together with
the per-symbol candle cache, and notifies observers whenever either changes.
"""
import logging
import time
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from core.models import SymbolUniverseEntry, VolumeEvent

logger = logging.getLogger(__name__)

DEFAULT_EVENT_CAP = 500


class StoreChange(str, Enum):
    """What part of the store changed."""
    EVENTS = "events"
    SYMBOLS = "symbols"


Observer = Callable[[StoreChange], None]


class EventStore:
    """In-memory store of volume events and tracked symbols."""

    def __init__(self, cap: int = DEFAULT_EVENT_CAP):
        """Initialize an empty store holding at most `cap` events."""
        if cap < 1:
            raise ValueError(f"Event cap must be positive, got {cap}")
        self.cap = cap
        self._events: List[VolumeEvent] = []  # newest first
        self._event_ids: set[str] = set()
        self._symbols: Dict[str, SymbolUniverseEntry] = {}
        self._observers: List[Observer] = []
        self.last_update = int(time.time() * 1000)

    # Event management
    def add_event(self, event: VolumeEvent) -> bool:
        """
        Insert an event at the front of the list.

        Returns:
            True if inserted, False if an event with the same id already exists
        """
        if event.id in self._event_ids:
            logger.debug(f"Duplicate event ignored: {event.id}")
            return False

        self._events.insert(0, event)
        self._event_ids.add(event.id)

        while len(self._events) > self.cap:
            evicted = self._events.pop()
            self._event_ids.discard(evicted.id)

        self._notify(StoreChange.EVENTS)
        return True

    def set_events(self, events: Iterable[VolumeEvent]):
        """Replace all events at once, newest first, keeping the `cap` most recent."""
        ordered = sorted(events, key=lambda e: e.time, reverse=True)[:self.cap]
        self._events = ordered
        self._event_ids = {e.id for e in ordered}
        self._notify(StoreChange.EVENTS)

    def clear_events(self):
        """Drop every stored event."""
        self.set_events([])

    def list_events(self) -> List[VolumeEvent]:
        """Snapshot of stored events, newest first."""
        return list(self._events)

    def get_event(self, event_id: str) -> Optional[VolumeEvent]:
        if event_id not in self._event_ids:
            return None
        return next(e for e in self._events if e.id == event_id)

    @property
    def event_count(self) -> int:
        return len(self._events)

    # Symbol management
    def upsert_symbol(self, entry: SymbolUniverseEntry):
        """Cache refresh for one symbol. Runs every scan, so it does not notify."""
        self._symbols[entry.symbol] = entry

    def upsert_symbols(self, entries: Iterable[SymbolUniverseEntry]):
        for entry in entries:
            self._symbols[entry.symbol] = entry
        self._touch_symbols()

    def replace_symbols(self, entries: Iterable[SymbolUniverseEntry]):
        """Swap the whole tracked universe for a freshly discovered one."""
        self._symbols = {entry.symbol: entry for entry in entries}
        self._touch_symbols()

    def remove_symbol(self, symbol: str) -> bool:
        """Stop tracking a symbol. Returns False if it was not tracked."""
        if self._symbols.pop(symbol, None) is None:
            return False
        self._touch_symbols()
        return True

    def get_symbol(self, symbol: str) -> Optional[SymbolUniverseEntry]:
        return self._symbols.get(symbol)

    def list_symbols(self) -> List[SymbolUniverseEntry]:
        return list(self._symbols.values())

    def _touch_symbols(self):
        self.last_update = int(time.time() * 1000)
        self._notify(StoreChange.SYMBOLS)

    # Observer pattern
    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """
        Register an observer called synchronously on every change.

        Returns:
            Function that removes the observer; calling it twice is harmless
        """
        self._observers.append(observer)

        def unsubscribe():
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _notify(self, change: StoreChange):
        # Snapshot so observers may (un)subscribe while being notified
        for observer in list(self._observers):
            try:
                observer(change)
            except Exception as e:
                logger.error(f"Store observer failed on {change.value} change: {e}", exc_info=True)
