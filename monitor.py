"""The coordinator that owns the scraped state and drives a refresh."""

import os
import logging
from datetime import datetime
from typing import Callable

from scraper import ServerRecord, fetch_report_html, parse_report
from ranking import ALL_DATA_CENTERS, create_ranking, get_data_centers
from history import (
    LAST_UPDATE_TIME,
    CycleTracker,
    KeyValueStore,
    ServerDelta,
    next_update_time,
)

logger = logging.getLogger(__name__)

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
STATE_FILE = os.environ.get("COSMIC_STATE_FILE", os.path.join(BASE_DIR, "output", "state.json"))

# Smallest progress gain (in percentage points) worth flagging.
PROGRESS_MARK_THRESHOLD = 0.01


class CosmicMonitor:
    """Holds the latest record set and the delta map for the current cycle.

    Everything a display needs goes through scrape(), create_ranking(),
    get_data_centers(), deltas and refresh().
    """

    def __init__(
        self,
        store: KeyValueStore,
        fetch: Callable[[], str | None] = fetch_report_html,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.fetch = fetch
        self.clock = clock
        self.tracker = CycleTracker(store, clock)
        self.records: list[ServerRecord] = []
        self.deltas: dict[str, ServerDelta] = {}
        # Shown until the first refresh of this run completes.
        self.last_update_time: datetime | None = self._stored_update_time()
        self.next_update_time: datetime | None = None
        self.last_error: str | None = None
        self._refresh_in_progress = False

    def _fetch_records(self) -> list[ServerRecord] | None:
        html = self.fetch()
        if not html:
            self.last_error = "Report unavailable, all sources failed"
            logger.error("Scrape aborted: no report markup")
            return None
        return parse_report(html)

    def scrape(self) -> bool:
        """Fetch and parse the report. The record set is only replaced on success."""
        records = self._fetch_records()
        if records is None:
            return False
        self.records = records
        self.last_error = None
        return True

    def create_ranking(self, data_center: str | None = ALL_DATA_CENTERS) -> list[ServerRecord]:
        return create_ranking(self.records, data_center)

    def get_data_centers(self) -> list[str]:
        return get_data_centers(self.records)

    def refresh(self) -> bool | None:
        """Scrape, rank and update deltas.

        Returns None when a refresh is already running (the request is
        dropped, not queued), otherwise whether the refresh succeeded.
        Records and deltas are swapped in together once everything,
        including the store writes, has gone through.
        """
        if self._refresh_in_progress:
            logger.debug("Refresh already in progress, skipping")
            return None

        self._refresh_in_progress = True
        try:
            now = self.clock()
            self.next_update_time = next_update_time(now)
            records = self._fetch_records()
            if records is None:
                return False
            ranking = create_ranking(records, ALL_DATA_CENTERS)
            try:
                deltas = self.tracker.update(ranking, now)
                self.store.set(LAST_UPDATE_TIME, now.isoformat())
            except OSError as e:
                self.last_error = "Could not save monitor state"
                logger.warning("Refresh discarded, state store failed: %s", e)
                return False

            self.records = records
            self.deltas = deltas
            self.last_update_time = now
            self.last_error = None
            logger.info("Refreshed %d servers across %d data centers",
                        len(records), len(self.get_data_centers()))
            return True
        finally:
            self._refresh_in_progress = False

    def refresh_due(self, now: datetime | None = None) -> bool:
        if self.next_update_time is None:
            return True
        return (now or self.clock()) >= self.next_update_time

    def _stored_update_time(self) -> datetime | None:
        raw = self.store.get(LAST_UPDATE_TIME)
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("Ignoring malformed %s: %r", LAST_UPDATE_TIME, raw)
            return None


# ---------------------------------------------------------------------------
# Display rows
# ---------------------------------------------------------------------------

def change_marks(delta: ServerDelta | None) -> tuple[str, str]:
    """(grade mark, progress mark) for a row; empty strings when nothing changed."""
    if delta is None:
        return "", ""
    grade_mark = "★" if delta.grade_changed else ""
    progress_mark = ""
    if delta.progress_diff > PROGRESS_MARK_THRESHOLD:
        progress_mark = f"↑ +{delta.progress_diff:.2f}%"
    return grade_mark, progress_mark


def build_rows(ranking: list[ServerRecord], deltas: dict[str, ServerDelta]) -> list[dict]:
    rows = []
    for r in ranking:
        grade_mark, progress_mark = change_marks(deltas.get(r.server_name))
        rows.append({
            "rank": r.rank,
            "server_name": r.server_name,
            "data_center": r.data_center,
            "grade": r.grade,
            "progress": r.progress,
            "progress_percentage": r.progress_percentage,
            "status_text": r.status_text,
            "status": "complete" if r.is_complete else "progress",
            "grade_mark": grade_mark,
            "progress_mark": progress_mark,
        })
    return rows
