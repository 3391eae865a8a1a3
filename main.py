"""Cosmic Monitor - console view of the cosmic exploration ranking."""

import os
import time
import logging
import argparse
from datetime import datetime

from history import JsonFileStore, format_time_remaining
from monitor import STATE_FILE, CosmicMonitor, build_rows
from ranking import ALL_DATA_CENTERS, Page, paginate, search_servers

logging.basicConfig(
    level=os.environ.get("COSMIC_LOG_LEVEL", "WARNING").upper(),
    format="%(message)s",
)
logger = logging.getLogger(__name__)

PAGE_SIZE = int(os.environ.get("COSMIC_PAGE_SIZE", 10))


def _fmt_time(dt: datetime | None) -> str:
    return dt.strftime("%Y-%m-%d %H:%M:%S") if dt else "-"


def render_table(rows: list[dict]) -> str:
    """Plain-text ranking table, one line per server."""
    if not rows:
        return "  No data available"

    name_w = max(6, *(len(r["server_name"]) for r in rows))
    dc_w = max(11, *(len(r["data_center"]) for r in rows))
    lines = [
        f"  {'Rank':<6}{'Server':<{name_w + 2}}{'Data Center':<{dc_w + 2}}"
        f"{'Grade':<8}{'Progress':<20}Status",
    ]
    for r in rows:
        grade = f"{r['grade']} {r['grade_mark']}".strip()
        progress = f"{r['progress']} {r['progress_mark']}".strip()
        lines.append(
            f"  {'#' + str(r['rank']):<6}{r['server_name']:<{name_w + 2}}"
            f"{r['data_center']:<{dc_w + 2}}{grade:<8}{progress:<20}{r['status_text']}"
        )
    return "\n".join(lines)


def page_summary(page: Page) -> str:
    """'Page X of Y' line; an empty ranking shows as page 1 of 1."""
    return f"  Page {page.number} of {page.total_pages} ({page.total_items} servers)"


def show(monitor: CosmicMonitor, data_center: str, search: str, page: int) -> None:
    ranking = search_servers(monitor.create_ranking(data_center), search)
    current = paginate(build_rows(ranking, monitor.deltas), page, PAGE_SIZE)

    print()
    print(f"  Last update: {_fmt_time(monitor.last_update_time)}")
    print(f"  Next update: {_fmt_time(monitor.next_update_time)}")
    print(f"  Data centers: {', '.join(monitor.get_data_centers()) or '-'}")
    print()
    print(render_table(current.rows))
    print()
    print(page_summary(current))
    print()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Cosmic exploration ranking")
    parser.add_argument("--dc", default=ALL_DATA_CENTERS, help="only rank this data center")
    parser.add_argument("--search", default="", help="filter servers by name")
    parser.add_argument("--page", type=int, default=1)
    parser.add_argument("--watch", action="store_true", help="refresh at every cycle boundary")
    parser.add_argument("--state-file", default=STATE_FILE)
    args = parser.parse_args(argv)

    monitor = CosmicMonitor(JsonFileStore(args.state_file))

    while True:
        print()
        print("  Cosmic Monitor - fetching the exploration report...")
        ok = monitor.refresh()
        if ok:
            show(monitor, args.dc, args.search, args.page)
        else:
            print(f"  ERROR: {monitor.last_error or 'refresh failed'}. Try again later.")
            if monitor.records:
                show(monitor, args.dc, args.search, args.page)

        if not args.watch:
            return 0 if ok else 1

        wait = (monitor.next_update_time - datetime.now()).total_seconds()
        print(f"  Next refresh in {format_time_remaining(wait)}")
        time.sleep(max(wait, 1))


if __name__ == "__main__":
    raise SystemExit(main())
