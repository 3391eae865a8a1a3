import threading
from datetime import datetime

import requests

import main
from monitor import CosmicMonitor
from conftest import card_html, dc_html
from server import PAGE_SIZE, make_server, ranking_payload, render_page


def refreshed_monitor(store, html):
    monitor = CosmicMonitor(store, fetch=lambda: html, clock=lambda: datetime(2026, 10, 18, 9, 40))
    monitor.refresh()
    return monitor


def test_ranking_payload_filters_and_pages(store, report_html):
    monitor = refreshed_monitor(store, report_html)

    payload = ranking_payload(monitor, "Light", "", 1)
    assert payload["total_items"] == 3
    assert payload["page"] == 1
    assert [r["server_name"] for r in payload["rows"]] == ["Lich", "Alpha", "Odin"]

    payload = ranking_payload(monitor, "all", "ODIN", 5)
    assert payload["page"] == 1
    assert [(r["server_name"], r["rank"]) for r in payload["rows"]] == [("Odin", 2)]


def test_render_page_lists_servers(store, report_html):
    monitor = refreshed_monitor(store, report_html)
    page = render_page(monitor, ranking_payload(monitor, "all", "", 1))

    assert "Lich" in page
    assert "100.00%" in page
    assert '<option value="Chaos">Chaos</option>' in page


def test_render_page_shows_error_and_empty_state(store):
    monitor = refreshed_monitor(store, None)
    page = render_page(monitor, ranking_payload(monitor, "all", "", 1))

    assert "No data available" in page
    assert "Please try again later" in page


def test_http_endpoints(store, report_html):
    monitor = refreshed_monitor(store, report_html)
    monitor.next_update_time = datetime.max
    server = make_server(monitor, port=0)
    port = server.server_address[1]
    thread = threading.Thread(target=lambda: [server.handle_request() for _ in range(3)], daemon=True)
    thread.start()
    try:
        health = requests.get(f"http://127.0.0.1:{port}/health", timeout=5)
        assert health.json() == {"status": "ok"}

        dcs = requests.get(f"http://127.0.0.1:{port}/api/datacenters", timeout=5)
        assert dcs.json() == ["Chaos", "Light"]

        ranking = requests.get(f"http://127.0.0.1:{port}/api/ranking?dc=Chaos", timeout=5).json()
        assert [r["server_name"] for r in ranking["rows"]] == ["Omega", "Ragnarok"]
    finally:
        thread.join(timeout=5)
        server.server_close()


def test_console_table(store, report_html):
    monitor = refreshed_monitor(store, report_html)
    from monitor import build_rows

    table = main.render_table(build_rows(monitor.create_ranking(), monitor.deltas))
    lines = table.splitlines()
    assert "Rank" in lines[0]
    assert lines[1].split()[:2] == ["#1", "Lich"]
    assert main.render_table([]) == "  No data available"


def test_pager_links_keep_filters(store):
    cards = [card_html(f"Server{i:02d}", 5, "in progress", f"gauge-{i % 8}") for i in range(PAGE_SIZE + 2)]
    monitor = refreshed_monitor(store, dc_html("l", "Light", cards))

    first = render_page(monitor, ranking_payload(monitor, "Light", "server", 1))
    assert 'href="?dc=Light&amp;q=server&amp;page=2"' in first
    assert 'class="prev"' not in first
    assert "Page 1 of 2" in first

    second = render_page(monitor, ranking_payload(monitor, "Light", "server", 2))
    assert 'href="?dc=Light&amp;q=server&amp;page=1"' in second
    assert 'class="next"' not in second
    assert "Page 2 of 2" in second


def test_console_page_summary_matches_web_convention():
    assert main.page_summary(main.paginate([], 1, 10)) == "  Page 1 of 1 (0 servers)"
    assert main.page_summary(main.paginate(list(range(25)), 3, 10)) == "  Page 3 of 3 (25 servers)"
