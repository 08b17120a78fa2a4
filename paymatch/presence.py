"""
presence.py - Presence Registry

Tracks which principals are discoverable for nearby payments. A record is live
while now - last_seen_at < presence_timeout; stale records are swept before
every read, so a principal that stops sending heartbeats disappears without
an explicit withdraw.
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional
import threading

from .clock import Clock, SystemClock
from .config import MatchingConfig, DEFAULT_CONFIG
from .core import (
    PresenceRecord, PresentPrincipal,
    SIGNAL_MAX, SIGNAL_DECAY_MS,
)
from .logging_config import get_logger

logger = get_logger(__name__)


def signal_strength(last_seen_at: datetime, now: datetime) -> int:
    """
    Cosmetic signal strength derived from heartbeat recency.

    Starts at SIGNAL_MAX and loses one point per SIGNAL_DECAY_MS; never negative.
    """
    elapsed_ms = int((now - last_seen_at).total_seconds() * 1000)
    return max(0, SIGNAL_MAX - max(0, elapsed_ms) // SIGNAL_DECAY_MS)


class PresenceRegistry:
    """Liveness claims of discoverable principals, guarded by one lock."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        config: Optional[MatchingConfig] = None,
    ):
        self.clock = clock or SystemClock()
        self.config = config or DEFAULT_CONFIG
        self._records: Dict[str, PresenceRecord] = {}
        self._lock = threading.Lock()

    def _is_live(self, record: PresenceRecord, now: datetime) -> bool:
        return now - record.last_seen_at < self.config.presence_timeout

    def _sweep(self, now: datetime) -> int:
        stale = [pid for pid, r in self._records.items() if not self._is_live(r, now)]
        for pid in stale:
            del self._records[pid]
        if stale:
            logger.debug("Swept %d stale presence records", len(stale))
        return len(stale)

    def announce(self, principal_id: str, display_name: str, device_label: str) -> PresenceRecord:
        """Create or replace a principal's presence record, seen now."""
        if not principal_id:
            raise ValueError("Principal id cannot be empty")
        now = self.clock.now()
        record = PresenceRecord(
            principal_id=principal_id,
            display_name=display_name,
            device_label=device_label,
            last_seen_at=now,
        )
        with self._lock:
            self._sweep(now)
            self._records[principal_id] = record
        logger.info("User %s registered as nearby", display_name)
        return record

    def heartbeat(self, principal_id: str) -> bool:
        """
        Refresh a live record.

        Returns False without creating anything when the principal has no
        live record, so a withdrawn or decayed principal is not resurrected.
        """
        now = self.clock.now()
        with self._lock:
            self._sweep(now)
            record = self._records.get(principal_id)
            if record is None:
                return False
            self._records[principal_id] = replace(record, last_seen_at=now)
            return True

    def withdraw(self, principal_id: str) -> bool:
        """Remove a principal immediately. Returns whether a record existed."""
        with self._lock:
            removed = self._records.pop(principal_id, None) is not None
        if removed:
            logger.info("User %s left nearby discovery", principal_id)
        return removed

    def is_present(self, principal_id: str) -> bool:
        now = self.clock.now()
        with self._lock:
            self._sweep(now)
            return principal_id in self._records

    def list_present(self, excluding: Optional[str] = None) -> List[PresentPrincipal]:
        """
        List live principals other than the caller.

        Args:
            excluding: Principal to leave out (normally the caller)

        Returns:
            Live principals, strongest signal first.
        """
        now = self.clock.now()
        with self._lock:
            self._sweep(now)
            records = [r for pid, r in self._records.items() if pid != excluding]

        present = [
            PresentPrincipal(
                principal_id=r.principal_id,
                display_name=r.display_name,
                device_label=r.device_label,
                signal_strength=signal_strength(r.last_seen_at, now),
            )
            for r in records
        ]
        present.sort(key=lambda p: (-p.signal_strength, p.principal_id))
        return present
