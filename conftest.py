import pytest

from history import MemoryStore


def card_html(name="", grade=None, status=None, bar_classes="gauge-0", transition=False, bar=True):
    grade_html = f'<div class="cosmic__report__grade__level"><p>{grade}</p></div>' if grade is not None else ""
    status_html = f'<p class="cosmic__report__status__text">{status}</p>' if status is not None else ""
    bar_html = (
        f'<div class="cosmic__report__status__progress__bar {bar_classes}"></div>' if bar else ""
    )
    transition_html = "<p>Grade up!</p>" if transition else ""
    return f"""
      <div class="cosmic__report__card">
        <p class="cosmic__report__card__name">{name}</p>
        {grade_html}
        <div class="cosmic__report__status">
          {status_html}
          <div class="cosmic__report__status__progress">
            {bar_html}
            {transition_html}
          </div>
        </div>
      </div>"""


def dc_html(dc_id, title, cards):
    return f"""
    <div id="{dc_id}" class="cosmic__report__dc">
      <h3 class="cosmic__report__dc__title">{title}</h3>
      {''.join(cards)}
    </div>"""


LIGHT_HTML = dc_html("light", "Light", [
    card_html("Alpha", 5, "Grade 5 in progress", "gauge-4"),
    card_html("Lich", 6, "Grade 5 Complete", "gauge-2", transition=True),
    card_html("Odin", 5, "Grade 5 in progress", "gauge-4"),
])

CHAOS_HTML = dc_html("chaos", "Chaos", [
    card_html("Omega", 4, "Grade 4 in progress", "gauge-7"),
    card_html("Ragnarok", bar_classes=""),
])

# No id attribute, so it is not a data center block.
TEMPLATE_HTML = card_html("Ghost", 9, "in progress", "gauge-5")

REPORT_HTML = f"""<!DOCTYPE html>
<html><body>
<div class="cosmic__report">
  {LIGHT_HTML}
  {CHAOS_HTML}
  <div class="cosmic__report__dc">
    <h3 class="cosmic__report__dc__title">Template</h3>
    {TEMPLATE_HTML}
  </div>
</div>
</body></html>"""


@pytest.fixture
def report_html():
    return REPORT_HTML


@pytest.fixture
def store():
    return MemoryStore()
