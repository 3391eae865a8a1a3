"""Fetching and parsing for the Lodestone cosmic exploration report."""

import os
import re
import time
import logging
import requests
from bs4 import BeautifulSoup
from dataclasses import dataclass
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

logger = logging.getLogger(__name__)


@retry(
    retry=retry_if_exception_type(requests.exceptions.RequestException),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)
def _http_get(url: str, headers: dict, params: dict | None = None, timeout: int = 10) -> requests.Response:
    """HTTP GET with automatic retry on transient failures."""
    resp = requests.get(url, headers=headers, params=params, timeout=timeout)
    resp.raise_for_status()
    return resp

HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; CosmicMonitor/1.0)",
    "Accept-Language": "en-US,en;q=0.8",
}

DEFAULT_REPORT_URLS = [
    "https://eu.finalfantasyxiv.com/lodestone/cosmic_exploration/report/",
    "https://na.finalfantasyxiv.com/lodestone/cosmic_exploration/report/",
]

# Mirrors are tried in order; the first non-empty body wins.
REPORT_URLS = [
    u.strip()
    for u in os.environ.get("COSMIC_REPORT_URLS", ",".join(DEFAULT_REPORT_URLS)).split(",")
    if u.strip()
]
FETCH_TIMEOUT = int(os.environ.get("COSMIC_FETCH_TIMEOUT", 10))

COMPLETION_MARKER = "complete"
DC_CLASS = "cosmic__report__dc"
GAUGE_STEPS = 8


# ---------------------------------------------------------------------------
# Markup source
# ---------------------------------------------------------------------------

def fetch_report_html(urls: list[str] | None = None, timeout: int = FETCH_TIMEOUT) -> str | None:
    """Fetch the raw report markup, falling back through the mirror list.

    Returns None once every mirror has failed or returned an empty body.
    """
    urls = urls or REPORT_URLS
    for url in urls:
        # Lodestone sits behind a CDN; a timestamp keeps us off stale copies.
        params = {"_t": int(time.time() * 1000)}
        try:
            resp = _http_get(url, headers=HEADERS, params=params, timeout=timeout)
        except requests.RequestException as e:
            logger.warning("Report fetch failed for %s: %s", url, e)
            continue
        if not resp.text or not resp.text.strip():
            logger.warning("Report fetch returned an empty body for %s", url)
            continue
        return resp.text

    logger.error("No report markup available (%d mirrors tried)", len(urls))
    return None


# ---------------------------------------------------------------------------
# Gauge decoding
# ---------------------------------------------------------------------------

_GAUGE_TOKEN_RE = re.compile(r"^gauge-(max|\d+)$")
_GAUGE_STEP_RE = re.compile(r"gauge-(\d+)")


@dataclass(frozen=True)
class Gauge:
    """A progress bar reading: no gauge, one of the 0-7 steps, or full."""

    kind: str  # "absent" | "step" | "max"
    step: int = 0

    @property
    def fraction(self) -> float:
        if self.kind == "max":
            return 1.0
        if self.kind == "step":
            return self.step / float(GAUGE_STEPS)
        return 0.0

    @property
    def token(self) -> str:
        if self.kind == "max":
            return "gauge-max"
        return f"gauge-{self.step}"


ABSENT_GAUGE = Gauge("absent")
MAX_GAUGE = Gauge("max")


def parse_gauge(indicator: str | None) -> Gauge:
    """Parse a gauge class token such as 'gauge-3' or 'gauge-max'."""
    if not indicator:
        return ABSENT_GAUGE
    if "gauge-max" in indicator:
        return MAX_GAUGE
    m = _GAUGE_STEP_RE.search(indicator)
    if m:
        step = int(m.group(1))
        if 0 <= step < GAUGE_STEPS:
            return Gauge("step", step)
    logger.debug("Unrecognized gauge indicator %r", indicator)
    return ABSENT_GAUGE


def decode_gauge(indicator: str | None) -> float:
    """Map a gauge indicator to a fraction in [0, 1]. Never raises."""
    return parse_gauge(indicator).fraction


# ---------------------------------------------------------------------------
# Record extraction
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ServerRecord:
    server_name: str
    data_center: str
    grade: int
    progress_percentage: float
    raw_gauge: str
    status_text: str
    # Filled in by ranking.create_ranking on a copy of the record.
    rank: int | None = None
    progress: str = ""

    @property
    def is_complete(self) -> bool:
        return COMPLETION_MARKER in self.status_text.lower()


def _text(parent, selector: str) -> str:
    """Trimmed text of the first match, or '' when nothing matches."""
    el = parent.select_one(selector)
    return el.get_text(strip=True) if el else ""


def _parse_grade(text: str) -> int:
    m = re.search(r"-?\d+", text or "")
    return int(m.group()) if m else 0


def _gauge_token(progress_bar) -> str | None:
    """Pick the gauge class off the progress bar element.

    A token matching the known vocabulary wins over any other 'gauge-*' class.
    """
    if progress_bar is None:
        return None
    classes = progress_bar.get("class") or []
    candidates = [c for c in classes if c.startswith("gauge-")]
    for c in candidates:
        if _GAUGE_TOKEN_RE.match(c):
            return c
    return candidates[0] if candidates else None


def _card_gauge(card) -> tuple[Gauge, str]:
    # A <p> under the progress block means the grade is mid-transition;
    # the bar itself may not have been re-gauged yet, so treat it as full.
    if card.select_one(".cosmic__report__status__progress p") is not None:
        return MAX_GAUGE, MAX_GAUGE.token

    token = _gauge_token(card.select_one(".cosmic__report__status__progress__bar"))
    if token is None:
        token = "gauge-0"
    return parse_gauge(token), token


def _parse_card(card, dc_name: str) -> ServerRecord:
    server_name = _text(card, ".cosmic__report__card__name")
    grade = _parse_grade(_text(card, ".cosmic__report__grade__level p"))
    status_text = _text(card, ".cosmic__report__status__text")

    # The report shows the finished grade as "complete" while the raw level
    # already counts the next one.
    if COMPLETION_MARKER in status_text.lower():
        grade -= 1

    gauge, token = _card_gauge(card)
    return ServerRecord(
        server_name=server_name,
        data_center=dc_name,
        grade=grade,
        progress_percentage=gauge.fraction,
        raw_gauge=token,
        status_text=status_text,
    )


def extract_records(soup: BeautifulSoup) -> list[ServerRecord]:
    """Walk data center blocks, then server cards, in document order.

    Only divs with an id whose class is exactly 'cosmic__report__dc' count;
    variants carrying extra classes are not data center blocks.
    """
    records = []
    for dc in soup.find_all("div", id=True, class_=DC_CLASS):
        if dc.get("class") != [DC_CLASS]:
            continue
        dc_name = _text(dc, ".cosmic__report__dc__title")
        for card in dc.select(".cosmic__report__card"):
            records.append(_parse_card(card, dc_name))
    return records


def parse_report(html: str) -> list[ServerRecord]:
    """Parse raw report markup into server records."""
    soup = BeautifulSoup(html, "html.parser")
    records = extract_records(soup)
    logger.debug("Extracted %d server records", len(records))
    return records
