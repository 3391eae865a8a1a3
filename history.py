"""Publication cycles, persisted snapshots, and between-cycle deltas.

The report is republished every half hour. We treat minute :02 and :32 as
the start of a cycle (two minutes of slack after publication) and only move
the comparison baseline forward when the cycle changes, so reloading the
page mid-cycle keeps showing what changed since the previous cycle.
"""

import os
import json
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Callable, Protocol

from scraper import ServerRecord

logger = logging.getLogger(__name__)

CYCLE_OFFSET_MINUTES = 2
CYCLE_LENGTH_MINUTES = 30

# Store keys
LAST_UPDATE_TIME = "last_update_time"
LAST_UPDATE_CYCLE = "last_update_cycle"
LAST_CALCULATED_DIFFS = "last_calculated_diffs"
PREVIOUS_RANKING_STATE = "previous_ranking_state"


# ---------------------------------------------------------------------------
# Cycle arithmetic
# ---------------------------------------------------------------------------

def cycle_start(moment: datetime) -> datetime:
    """Start of the cycle containing moment (always at :02 or :32)."""
    shifted = moment - timedelta(minutes=CYCLE_OFFSET_MINUTES)
    floored = shifted.replace(
        minute=shifted.minute - shifted.minute % CYCLE_LENGTH_MINUTES,
        second=0,
        microsecond=0,
    )
    return floored + timedelta(minutes=CYCLE_OFFSET_MINUTES)


def cycle_id(moment: datetime) -> str:
    """Comparable key for the cycle, e.g. '2026-10-18-09:32'."""
    return cycle_start(moment).strftime("%Y-%m-%d-%H:%M")


def next_update_time(moment: datetime) -> datetime:
    return cycle_start(moment) + timedelta(minutes=CYCLE_LENGTH_MINUTES)


def format_time_remaining(seconds: float) -> str:
    """Format a countdown as MM:SS; negative values show as 00:00."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


# ---------------------------------------------------------------------------
# Key/value persistence
# ---------------------------------------------------------------------------

class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStore:
    def __init__(self, data: dict[str, str] | None = None):
        self.data = dict(data or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value


class JsonFileStore:
    """All keys live in one JSON object on disk.

    A missing or unreadable file reads as empty; writes go through a temp
    file so a crash never leaves half a document behind.
    """

    def __init__(self, path: str):
        self.path = path

    def _load(self) -> dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable state file %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring state file %s: not a JSON object", self.path)
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.path)


def _load_json(store: KeyValueStore, key: str) -> dict:
    raw = store.get(key)
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning("Discarding corrupted %s: %s", key, e)
        return {}
    if not isinstance(value, dict):
        logger.warning("Discarding corrupted %s: expected an object", key)
        return {}
    return value


# ---------------------------------------------------------------------------
# Snapshots and deltas
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ServerDelta:
    grade_changed: bool = False
    progress_diff: float = 0.0


def build_snapshot(ranking: list[ServerRecord]) -> dict[str, dict]:
    """Per-server baseline used for the next cycle's comparison."""
    return {
        r.server_name: {
            "grade": r.grade,
            "progress": r.progress,
            "progress_num": r.progress_percentage * 100,
        }
        for r in ranking
    }


def compute_deltas(ranking: list[ServerRecord], snapshot: dict | None) -> dict[str, ServerDelta]:
    deltas = {}
    for r in ranking:
        prev = (snapshot or {}).get(r.server_name)
        if not isinstance(prev, dict):
            deltas[r.server_name] = ServerDelta()
            continue

        grade_changed = False
        progress_diff = 0.0
        try:
            if "grade" in prev:
                grade_changed = int(prev["grade"]) != r.grade
            if prev.get("progress_num") is not None:
                progress_diff = r.progress_percentage * 100 - float(prev["progress_num"])
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed snapshot entry for %s", r.server_name)
            grade_changed, progress_diff = False, 0.0
        deltas[r.server_name] = ServerDelta(grade_changed, progress_diff)
    return deltas


def load_snapshot(store: KeyValueStore) -> dict:
    return _load_json(store, PREVIOUS_RANKING_STATE)


def load_deltas(store: KeyValueStore) -> dict[str, ServerDelta]:
    deltas = {}
    for name, entry in _load_json(store, LAST_CALCULATED_DIFFS).items():
        if not isinstance(entry, dict):
            continue
        try:
            deltas[name] = ServerDelta(
                grade_changed=bool(entry.get("grade_changed", False)),
                progress_diff=float(entry.get("progress_diff", 0.0)),
            )
        except (TypeError, ValueError):
            continue
    return deltas


def dump_deltas(deltas: dict[str, ServerDelta]) -> str:
    return json.dumps({name: asdict(d) for name, d in deltas.items()})


class CycleTracker:
    """Keeps the snapshot, the cached deltas and the cycle id in step."""

    def __init__(self, store: KeyValueStore, clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.clock = clock

    def update(self, ranking: list[ServerRecord], now: datetime | None = None) -> dict[str, ServerDelta]:
        """Return the delta map for the current cycle.

        On the first call of a new cycle the deltas are computed against the
        stored snapshot, and the deltas, the snapshot and the cycle id are all
        replaced. Later calls in the same cycle return the cached deltas.
        """
        now = now or self.clock()
        current = cycle_id(now)
        last = self.store.get(LAST_UPDATE_CYCLE)

        if last and last == current:
            logger.debug("Still in cycle %s, reusing cached deltas", current)
            return load_deltas(self.store)

        logger.info("New cycle detected: %s (previous: %s)", current, last)
        deltas = compute_deltas(ranking, load_snapshot(self.store))
        self.store.set(LAST_CALCULATED_DIFFS, dump_deltas(deltas))
        self.store.set(LAST_UPDATE_CYCLE, current)
        self.store.set(PREVIOUS_RANKING_STATE, json.dumps(build_snapshot(ranking)))
        return deltas
