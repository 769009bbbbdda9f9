"""Tests for domtap.page.Page against the fake DOM."""

from __future__ import annotations

import base64
import json
import shutil
import subprocess

import pytest

from domtap.core import (
    CDPError,
    ElementNotFoundError,
    ProtocolExtractionError,
    ScreenshotFailedError,
    SelectorNotFoundError,
    ShadowRootNotFoundError,
)
from domtap.js_expressions import simulate_typing_js

# 1x1 transparent PNG
PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)

# Minimal element and event classes; the declaration runs with the element as
# `this` and every dispatched event is recorded.
_TYPING_HARNESS = """
(function () {
  class Event {
    constructor(type, init) { this.type = type; Object.assign(this, init || {}); }
  }
  class InputEvent extends Event {}
  class KeyboardEvent extends Event {}
  const el = {
    value: "", focused: false, events: [],
    focus() { this.focused = true; },
    dispatchEvent(e) { this.events.push([e.constructor.name, e.type, e.data || e.key || null]); return true; },
  };
  const fn = (%s);
  fn.call(el, %s, 0).then(ret => {
    process.stdout.write(JSON.stringify({ret, value: el.value, focused: el.focused, events: el.events}));
  });
})();
"""


def _run_typing(text):
    script = _TYPING_HARNESS % (simulate_typing_js(), json.dumps(text))
    out = subprocess.run(
        [shutil.which("node"), "-e", script],
        capture_output=True, text=True, timeout=30, check=True,
    )
    return json.loads(out.stdout)


class TestEvaluate:

    def test_returns_value(self, page) -> None:
        assert page.evaluate("1 + 1") == 2

    def test_returns_object_id_when_not_by_value(self, page) -> None:
        assert page.evaluate("document", return_by_value=False) == "doc"

    def test_undefined_is_none(self, page) -> None:
        assert page.evaluate("void 0") is None

    def test_js_exception_raises(self, page, fake_cdp) -> None:
        fake_cdp.on("Runtime.evaluate", lambda cmd: {
            "result": {"type": "object", "subtype": "error"},
            "exceptionDetails": {"text": "Uncaught",
                                 "exception": {"description": "ReferenceError: x is not defined"}},
        })
        with pytest.raises(CDPError, match="ReferenceError"):
            page.evaluate("x")

    def test_missing_value_and_handle_raises(self, page, fake_cdp) -> None:
        fake_cdp.on("Runtime.evaluate", lambda cmd: {"result": {"type": "object"}})
        with pytest.raises(ProtocolExtractionError):
            page.evaluate("weird()")


class TestQueries:

    def test_query_selector_returns_handle(self, page) -> None:
        assert page.query_selector("#userName") == "host-1"

    def test_selector_travels_as_argument(self, page, fake_cdp) -> None:
        selector = "input[name='it''s']"
        with pytest.raises(SelectorNotFoundError):
            page.query_selector(selector)
        call = fake_cdp.received[-1]
        assert call["method"] == "Runtime.callFunctionOn"
        assert call["params"]["arguments"] == [{"value": selector}]
        assert selector not in call["params"]["functionDeclaration"]

    def test_missing_selector_raises_naming_it(self, page) -> None:
        with pytest.raises(SelectorNotFoundError, match="#nope") as exc:
            page.query_selector("#nope")
        assert exc.value.selector == "#nope"

    def test_shadow_root(self, page) -> None:
        assert page.shadow_root("host-1") == "root-1"

    def test_no_shadow_root_raises(self, page) -> None:
        with pytest.raises(ShadowRootNotFoundError):
            page.shadow_root("input-0")

    def test_query_inside_shadow_root(self, page) -> None:
        assert page.query_selector_in("root-1", "#kils") == "input-1"

    def test_missing_element_in_shadow_root(self, page) -> None:
        with pytest.raises(ElementNotFoundError, match="#missing"):
            page.query_selector_in("root-1", "#missing")

    def test_query_path_descends_shadow_roots(self, page) -> None:
        assert page.query_path(["#userName", "#kils"]) == "input-1"

    def test_query_path_names_host_without_shadow(self, page) -> None:
        with pytest.raises(ShadowRootNotFoundError, match="#plain"):
            page.query_path(["#plain", "#kils"])

    def test_empty_path(self, page) -> None:
        with pytest.raises(ValueError):
            page.query_path([])

    def test_outer_html(self, page) -> None:
        assert page.outer_html("section.content") == '<section class="content">hi</section>'
        assert page.outer_html("section.absent") == ""


class TestTyping:

    def test_shadow_root_scenario(self, page, fake_dom) -> None:
        host = page.query_selector("#userName")
        root = page.shadow_root(host)
        field = page.query_selector_in(root, "#kils")
        assert field != host
        page.type_text(field, "John Doe")
        assert page.get_value(field) == "John Doe"

    def test_typing_command_shape(self, page, fake_cdp) -> None:
        page.type_text("input-0", "dev.to", delay_ms=25)
        params = fake_cdp.received[-1]["params"]
        assert params["objectId"] == "input-0"
        assert params["arguments"] == [{"value": "dev.to"}, {"value": 25}]
        assert params["userGesture"] is True
        assert params["awaitPromise"] is True

    def test_default_delay_is_100ms(self, page, fake_cdp) -> None:
        page.type_text("input-0", "x")
        assert fake_cdp.received[-1]["params"]["arguments"][1] == {"value": 100}

    def test_event_script(self) -> None:
        js = simulate_typing_js()
        loop_body = js[js.index("for (const char of text)"):js.index("this.dispatchEvent(new KeyboardEvent('keyup'")]
        assert loop_body.index("'input'") < loop_body.index("'keydown'")
        assert "setTimeout(resolve, delayMs)" in loop_body
        assert js.count("'keyup'") == 1
        assert js.count("'change'") == 1
        assert "'change'" not in loop_body

    @pytest.mark.skipif(shutil.which("node") is None, reason="node not installed")
    def test_dispatched_events_per_character(self) -> None:
        result = _run_typing("John Doe")
        assert result["ret"] == result["value"] == "John Doe"
        assert result["focused"] is True
        events = result["events"]
        per_char = events[:-2]
        assert per_char == [
            e for c in "John Doe"
            for e in (["InputEvent", "input", c], ["KeyboardEvent", "keydown", c])
        ]
        assert events[-2:] == [["KeyboardEvent", "keyup", None], ["Event", "change", None]]
        assert [e[1] for e in events].count("input") == len("John Doe")
        assert [e[1] for e in events].count("change") == 1

    @pytest.mark.skipif(shutil.which("node") is None, reason="node not installed")
    def test_empty_text_fires_only_closing_events(self) -> None:
        result = _run_typing("")
        assert result["value"] == ""
        assert [e[1] for e in result["events"]] == ["keyup", "change"]


class TestNavigation:

    def test_navigate(self, page, fake_cdp) -> None:
        fake_cdp.on("Page.navigate", lambda cmd: {"frameId": "F"})
        page.navigate("https://example.com")
        assert fake_cdp.received[-1]["params"] == {"url": "https://example.com"}

    def test_navigate_waits_for_load(self, page, fake_cdp) -> None:
        fake_cdp.on("Page.enable", lambda cmd: {})
        fake_cdp.on("Page.navigate", lambda cmd: [
            {"id": cmd["id"], "result": {"frameId": "F"}},
            {"method": "Page.loadEventFired", "params": {"timestamp": 3.0}},
        ])
        page.navigate("https://example.com", wait_for_load=True)
        assert fake_cdp.methods()[-2:] == ["Page.enable", "Page.navigate"]

    def test_missing_load_event_times_out(self, page, fake_cdp, caplog) -> None:
        fake_cdp.on("Page.enable", lambda cmd: {})
        fake_cdp.on("Page.navigate", lambda cmd: {"frameId": "F"})
        result = page.navigate("https://stalled.test", wait_for_load=True, load_timeout=0.2)
        assert result == {"frameId": "F"}
        assert "No load event from https://stalled.test" in caplog.text

    def test_navigation_error_text_is_logged(self, page, fake_cdp, caplog) -> None:
        fake_cdp.on("Page.navigate", lambda cmd: {"frameId": "F", "errorText": "net::ERR_NAME_NOT_RESOLVED"})
        page.navigate("https://nowhere.invalid")
        assert "ERR_NAME_NOT_RESOLVED" in caplog.text

    def test_navigate_to_file(self, page, fake_cdp, tmp_path) -> None:
        fake_cdp.on("Page.navigate", lambda cmd: {"frameId": "F"})
        saved = tmp_path / "site.html"
        saved.write_text("<p>x</p>")
        uri = page.navigate_to_file(saved)
        assert uri.startswith("file://")
        assert fake_cdp.received[-1]["params"]["url"] == uri

    def test_navigate_to_missing_file(self, page, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            page.navigate_to_file(tmp_path / "absent.html")

    def test_wait_for_ready_times_out(self, page, fake_dom) -> None:
        fake_dom.ready_state = "loading"
        assert page.wait_for_ready(timeout=0.05, interval=0.01) is False
        fake_dom.ready_state = "complete"
        assert page.wait_for_ready(timeout=0.05) is True


class TestScreenshot:

    def test_writes_decoded_png(self, page, fake_cdp, tmp_path) -> None:
        data = base64.b64encode(PNG_BYTES).decode()
        fake_cdp.on("Page.captureScreenshot", lambda cmd: {"data": data})
        out = page.screenshot(tmp_path / "shots" / "screenshot.png")
        assert out.read_bytes() == PNG_BYTES
        assert out.read_bytes().startswith(b"\x89PNG\r\n\x1a\n")
        assert fake_cdp.received[-1]["params"] == {"format": "png"}

    def test_missing_data_raises(self, page, fake_cdp, tmp_path) -> None:
        fake_cdp.on("Page.captureScreenshot", lambda cmd: {})
        with pytest.raises(ScreenshotFailedError):
            page.screenshot(tmp_path / "x.png")
        assert not (tmp_path / "x.png").exists()

    def test_invalid_base64_raises(self, page, fake_cdp, tmp_path) -> None:
        fake_cdp.on("Page.captureScreenshot", lambda cmd: {"data": "@@not base64@@"})
        with pytest.raises(ScreenshotFailedError):
            page.screenshot(tmp_path / "x.png")
