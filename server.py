"""Tiny server that serves the current cosmic exploration ranking."""

import os
import json
import html
import logging
from datetime import datetime
from http.server import HTTPServer, BaseHTTPRequestHandler
from urllib.parse import urlencode, urlparse, parse_qs

from history import JsonFileStore, format_time_remaining
from monitor import STATE_FILE, CosmicMonitor, build_rows
from ranking import ALL_DATA_CENTERS, paginate, search_servers

logger = logging.getLogger(__name__)

PORT = int(os.environ.get("PORT", 8080))
PAGE_SIZE = int(os.environ.get("COSMIC_PAGE_SIZE", 10))


def _int_param(params: dict, name: str, default: int) -> int:
    try:
        return int(params.get(name, [default])[0])
    except (TypeError, ValueError):
        return default


def ranking_payload(monitor: CosmicMonitor, data_center: str, query: str, page: int) -> dict:
    ranking = search_servers(monitor.create_ranking(data_center), query)
    current = paginate(build_rows(ranking, monitor.deltas), page, PAGE_SIZE)
    return {
        "data_center": data_center,
        "query": query,
        "page": current.number,
        "has_prev": current.has_prev,
        "has_next": current.has_next,
        "total_pages": current.total_pages,
        "total_items": current.total_items,
        "rows": current.rows,
        "last_update_time": monitor.last_update_time.isoformat() if monitor.last_update_time else None,
        "next_update_time": monitor.next_update_time.isoformat() if monitor.next_update_time else None,
        "error": monitor.last_error,
    }


def page_link(payload: dict, page: int) -> str:
    """Relative URL for another page of the same view; dc and q are kept."""
    return "?" + urlencode({"dc": payload["data_center"], "q": payload["query"], "page": page})


def pager_html(payload: dict) -> str:
    parts = []
    if payload["has_prev"]:
        parts.append(f'<a class="prev" href="{html.escape(page_link(payload, payload["page"] - 1))}">&#8592; Previous</a>')
    parts.append(f"Page {payload['page']} of {payload['total_pages']}")
    if payload["has_next"]:
        parts.append(f'<a class="next" href="{html.escape(page_link(payload, payload["page"] + 1))}">Next &#8594;</a>')
    return " &middot; ".join(parts)


def render_page(monitor: CosmicMonitor, payload: dict) -> str:
    esc = html.escape
    if payload["rows"]:
        body_rows = []
        for r in payload["rows"]:
            body_rows.append(f"""
    <tr>
      <td>#{r['rank']}</td>
      <td>{esc(r['server_name'])}</td>
      <td>{esc(r['data_center'])}</td>
      <td>{r['grade']} <span class="mark">{r['grade_mark']}</span></td>
      <td><div class="bar"><div class="fill" style="width: {r['progress']}"></div></div>
          {r['progress']} <span class="mark up">{esc(r['progress_mark'])}</span></td>
      <td class="status-{r['status']}">{esc(r['status_text'])}</td>
    </tr>""")
        rows_html = "".join(body_rows)
    else:
        rows_html = '\n    <tr><td colspan="6" class="no-data">No data available</td></tr>'

    error_html = ""
    if payload["error"]:
        error_html = f'<div class="error">{esc(payload["error"])}. Please try again later.</div>'

    options = [f'<option value="{ALL_DATA_CENTERS}">All data centers</option>']
    for dc in monitor.get_data_centers():
        selected = " selected" if dc == payload["data_center"] else ""
        options.append(f'<option value="{esc(dc)}"{selected}>{esc(dc)}</option>')

    remaining = "--:--"
    if monitor.next_update_time:
        remaining = format_time_remaining((monitor.next_update_time - datetime.now()).total_seconds())
    last = monitor.last_update_time.strftime("%Y-%m-%d %H:%M:%S") if monitor.last_update_time else "-"

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>Cosmic Exploration Ranking</title>
<style>
  body {{ font-family: system-ui, sans-serif; background: #0f1923; color: #c7d5e0; max-width: 960px; margin: 40px auto; padding: 0 20px; }}
  table {{ width: 100%; border-collapse: collapse; }}
  td, th {{ padding: 0.4rem; border-bottom: 1px solid #1b2838; text-align: left; }}
  .bar {{ background: #1b2838; height: 6px; width: 120px; }}
  .fill {{ background: #66c0f4; height: 6px; }}
  .mark {{ color: #f5c542; }}
  .mark.up {{ color: #7cfc00; }}
  .status-complete {{ color: #7cfc00; }}
  .error {{ color: #ff6a6a; margin: 1rem 0; }}
</style>
</head>
<body>
<h1>Cosmic Exploration Ranking</h1>
<p>Last update: {last} &middot; Next update in {remaining}</p>
{error_html}
<form method="get">
  <select name="dc" onchange="this.form.submit()">{''.join(options)}</select>
  <input name="q" value="{esc(payload['query'])}" placeholder="Server name">
</form>
<table>
  <thead><tr><th>Rank</th><th>Server</th><th>Data Center</th><th>Grade</th><th>Progress</th><th>Status</th></tr></thead>
  <tbody>{rows_html}
  </tbody>
</table>
<p class="pager">{pager_html(payload)}</p>
</body>
</html>"""


class RankingHandler(BaseHTTPRequestHandler):
    # Set by make_server; HTTPServer is single-threaded so requests never overlap.
    monitor: CosmicMonitor = None

    def _send(self, status: int, content_type: str, body: bytes) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Cache-Control", "no-cache, max-age=0")
        self.end_headers()
        self.wfile.write(body)

    def _send_json(self, payload, status: int = 200) -> None:
        self._send(status, "application/json", json.dumps(payload).encode("utf-8"))

    def do_GET(self):
        url = urlparse(self.path)
        params = parse_qs(url.query)

        if url.path == "/health":
            self._send_json({"status": "ok"})
            return

        if self.monitor.refresh_due():
            self.monitor.refresh()

        if url.path == "/api/datacenters":
            self._send_json(self.monitor.get_data_centers())
            return

        data_center = params.get("dc", [ALL_DATA_CENTERS])[0]
        query = params.get("q", [""])[0]
        page = _int_param(params, "page", 1)
        payload = ranking_payload(self.monitor, data_center, query, page)

        if url.path == "/api/ranking":
            self._send_json(payload)
            return

        if url.path in ("/", "/index.html"):
            body = render_page(self.monitor, payload).encode("utf-8")
            self._send(200, "text/html; charset=utf-8", body)
            return

        self._send_json({"error": "not found"}, status=404)

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)


def make_server(monitor: CosmicMonitor, port: int = PORT) -> HTTPServer:
    handler = type("BoundRankingHandler", (RankingHandler,), {"monitor": monitor})
    return HTTPServer(("0.0.0.0", port), handler)


if __name__ == "__main__":
    logging.basicConfig(level=os.environ.get("COSMIC_LOG_LEVEL", "INFO").upper(), format="%(message)s")
    server = make_server(CosmicMonitor(JsonFileStore(STATE_FILE)))
    print(f"Serving cosmic exploration ranking on port {PORT}")
    print(f"  /                 → ranking table")
    print(f"  /api/ranking      → ranking JSON (dc, q, page)")
    print(f"  /api/datacenters  → data center list")
    server.serve_forever()
