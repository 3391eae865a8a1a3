"""Dense ranking of server records, plus the search/pagination used by displays."""

import math
from collections import Counter
from dataclasses import dataclass, replace

from scraper import ServerRecord

ALL_DATA_CENTERS = "all"


def _rank_key(r: ServerRecord) -> tuple[int, float]:
    return (r.grade, r.progress_percentage)


def format_progress(fraction: float) -> str:
    return f"{fraction * 100:.2f}%"


def create_ranking(records: list[ServerRecord], data_center: str | None = None) -> list[ServerRecord]:
    """Rank records by grade, then progress, both descending.

    Records sharing a (grade, progress) pair share a rank, and the next
    distinct pair is ranked after everyone placed so far (1, 1, 3, ...).
    Ranks are computed over the filtered subset when a data center is given.
    Order within a tie follows the order the records were scraped in.
    """
    if not records:
        return []

    rows = list(records)
    if data_center and data_center != ALL_DATA_CENTERS:
        rows = [r for r in rows if r.data_center == data_center]

    rows.sort(key=lambda r: (-r.grade, -r.progress_percentage))

    group_counts = Counter(_rank_key(r) for r in rows)
    ordered_keys = sorted(group_counts, key=lambda k: (-k[0], -k[1]))

    rank_for_key = {}
    position = 0
    for key in ordered_keys:
        rank_for_key[key] = position + 1
        position += group_counts[key]

    ranked = [
        replace(r, rank=rank_for_key[_rank_key(r)], progress=format_progress(r.progress_percentage))
        for r in rows
    ]
    ranked.sort(key=lambda r: r.rank)
    return ranked


def get_data_centers(records: list[ServerRecord]) -> list[str]:
    return sorted({r.data_center for r in records})


def search_servers(ranking: list[ServerRecord], query: str | None) -> list[ServerRecord]:
    """Case-insensitive substring match on server name. Ranks are left as-is."""
    query = (query or "").strip().lower()
    if not query:
        return list(ranking)
    return [r for r in ranking if query in r.server_name.lower()]


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------

@dataclass
class Page:
    number: int
    total_pages: int
    total_items: int
    rows: list

    @property
    def has_prev(self) -> bool:
        return self.number > 1

    @property
    def has_next(self) -> bool:
        return self.number < self.total_pages


def total_pages(item_count: int, per_page: int) -> int:
    return max(1, math.ceil(item_count / per_page))


def paginate(rows: list, page: int = 1, per_page: int = 10) -> Page:
    """Slice one page out of rows, clamping the page number into range."""
    if per_page < 1:
        raise ValueError(f"per_page must be positive, got {per_page}")
    pages = total_pages(len(rows), per_page)
    number = max(1, min(page, pages))
    start = (number - 1) * per_page
    return Page(
        number=number,
        total_pages=pages,
        total_items=len(rows),
        rows=rows[start:start + per_page],
    )
