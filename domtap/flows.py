"""End-to-end flows: launch, connect, act, clean up.

Two flows ship with domtap:

* extract: save a selector's outerHTML to a file and optionally reopen it
  in the same tab.
* fill: type into elements (reachable through shadow roots) and capture a
  screenshot of the result.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from domtap.config import Config
from domtap.core import CDPSession
from domtap.launcher import page_websocket_url, running_browser
from domtap.page import Page

logger = logging.getLogger(__name__)

T = TypeVar("T")

PATH_SEPARATOR = ">>"
DEFAULT_HTML_SELECTOR = "section.content"


@dataclass
class FillStep:
    """Text to type into the element at the end of a selector path."""

    path: list[str]
    text: str

    def __str__(self) -> str:
        return f"{f' {PATH_SEPARATOR} '.join(self.path)} = {self.text!r}"


def parse_fill(spec: str) -> FillStep:
    """Parse ``"#host >> #inner=some text"`` into a FillStep.

    ``>>`` steps into the previous match's shadow root. The first ``=``
    outside the path splits selector from text, so selectors containing
    ``=`` (attribute selectors) should be bracketed: ``input[name=q]=hi``.
    """
    depth = 0
    split_at = -1
    for i, ch in enumerate(spec):
        if ch in "[(":
            depth += 1
        elif ch in "])":
            depth -= 1
        elif ch == "=" and depth == 0:
            split_at = i
            break
    if split_at < 0:
        raise ValueError(f"Fill spec needs 'selector=text': {spec!r}")
    path = [p.strip() for p in spec[:split_at].split(PATH_SEPARATOR)]
    if not all(path):
        raise ValueError(f"Empty selector in fill spec: {spec!r}")
    return FillStep(path=path, text=spec[split_at + 1:])


def extract_html(
    page: Page,
    selector: str = DEFAULT_HTML_SELECTOR,
    out_path: str | Path = "site.html",
    *,
    open_saved: bool = False,
) -> Path:
    """Save the outerHTML of ``selector`` to ``out_path``."""
    html = page.outer_html(selector)
    if not html:
        logger.warning("Selector %r matched nothing; writing an empty file", selector)
    path = Path(out_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(html, encoding="utf-8")
    logger.info("Saved %d chars of HTML to %s", len(html), path)
    if open_saved:
        page.navigate_to_file(path)
    return path


def fill_and_capture(
    page: Page,
    steps: list[FillStep],
    screenshot_path: str | Path | None = "screenshot.png",
    *,
    delay_ms: int = 100,
    settle: float = 0.0,
) -> Path | None:
    """Type each step's text into its element, then screenshot the page."""
    for step in steps:
        handle = page.query_path(step.path)
        page.type_text(handle, step.text, delay_ms=delay_ms)
        logger.info("Filled %s", step)
    if screenshot_path is None:
        return None
    return page.screenshot(screenshot_path, settle=settle)


def run(config: Config, flow: Callable[[Page], T]) -> T:
    """Launch a browser on ``config.target_url`` and run ``flow`` on its page.

    The transport is closed and the browser killed whether or not the
    flow succeeds.
    """
    with running_browser(config):
        ws_url = page_websocket_url(config.host, config.debugging_port)
        with CDPSession.connect(ws_url) as cdp:
            page = Page(cdp)
            try:
                page.wait_for_ready(config.load_timeout)
                return flow(page)
            except Exception as e:
                logger.debug("Flow aborted on %s: %s", config.target_url, e)
                raise
