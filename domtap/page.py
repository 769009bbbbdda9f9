"""DOM-level operations on one page, built on CDPSession.

Handles returned here are CDP RemoteObjectId strings. They stay valid for
the page's current execution context and are never released explicitly.

    page = Page(cdp)
    host = page.query_selector("#userName")
    field = page.query_selector_in(page.shadow_root(host), "#kils")
    page.type_text(field, "John Doe")
"""

from __future__ import annotations

import base64
import logging
import time
from pathlib import Path
from typing import Any

from domtap.core import (
    CDPError,
    CDPSession,
    ElementNotFoundError,
    ProtocolExtractionError,
    ScreenshotFailedError,
    SelectorNotFoundError,
    ShadowRootNotFoundError,
)
from domtap.js_expressions import (
    outer_html_js,
    query_selector_js,
    shadow_root_js,
    simulate_typing_js,
    value_js,
)

logger = logging.getLogger(__name__)

DEFAULT_TYPING_DELAY_MS = 100


def _remote_object(result: dict) -> dict:
    """Pull the RemoteObject out of an evaluate/callFunctionOn result."""
    exc = result.get("exceptionDetails")
    if exc:
        desc = exc.get("exception", {}).get("description", exc.get("text", ""))
        raise CDPError(f"JS Error: {desc}")
    return result.get("result", {})


def _unwrap(remote: dict) -> Any:
    """Value when serialized by value, else the objectId handle."""
    if "value" in remote:
        return remote["value"]
    if "objectId" in remote:
        return remote["objectId"]
    if remote.get("type") == "undefined" or remote.get("subtype") == "null":
        return None
    raise ProtocolExtractionError(f"Response carried neither value nor objectId: {remote}")


class Page:
    """A single page target driven over one CDP session."""

    def __init__(self, cdp: CDPSession) -> None:
        self._cdp = cdp

    @property
    def cdp(self) -> CDPSession:
        return self._cdp

    # ── Evaluation ──

    def evaluate(
        self, expression: str, *, return_by_value: bool = True, await_promise: bool = False
    ) -> Any:
        """Evaluate a JS expression in the page.

        Returns the JSON value when ``return_by_value`` is set (or the
        result is a primitive), otherwise the remote object handle.
        """
        result = self._cdp.send(
            "Runtime.evaluate",
            expression=expression,
            returnByValue=return_by_value,
            awaitPromise=await_promise,
        )
        return _unwrap(_remote_object(result))

    def call_function(
        self,
        object_id: str,
        declaration: str,
        *args: Any,
        return_by_value: bool = False,
        await_promise: bool = False,
        user_gesture: bool = False,
    ) -> dict:
        """Run ``declaration`` with ``this`` bound to ``object_id``.

        Positional ``args`` are passed by value through the protocol.
        Returns the raw RemoteObject of the result.
        """
        params: dict[str, Any] = {
            "objectId": object_id,
            "functionDeclaration": declaration,
            "arguments": [{"value": a} for a in args],
            "returnByValue": return_by_value,
        }
        if await_promise:
            params["awaitPromise"] = True
        if user_gesture:
            params["userGesture"] = True
        return _remote_object(self._cdp.send("Runtime.callFunctionOn", **params))

    def document(self) -> str:
        """Handle of the current document."""
        handle = self.evaluate("document", return_by_value=False)
        if not isinstance(handle, str):
            raise ProtocolExtractionError("Document handle missing from response")
        return handle

    # ── Queries ──

    def query_selector(self, selector: str) -> str:
        """First element matching ``selector`` in the document."""
        remote = self.call_function(self.document(), query_selector_js(), selector)
        object_id = remote.get("objectId")
        if not object_id:
            raise SelectorNotFoundError(selector)
        logger.debug("Selector %r -> %s", selector, object_id)
        return object_id

    def shadow_root(self, host_id: str, *, host: str | None = None) -> str:
        """Shadow root attached to the element ``host_id``.

        ``host`` only labels the error message.
        """
        remote = self.call_function(host_id, shadow_root_js())
        object_id = remote.get("objectId")
        if not object_id:
            raise ShadowRootNotFoundError(host)
        logger.debug("Shadow root found for %s", host or host_id)
        return object_id

    def query_selector_in(self, root_id: str, selector: str) -> str:
        """First match for ``selector`` under a shadow root (or any node)."""
        remote = self.call_function(root_id, query_selector_js(), selector)
        object_id = remote.get("objectId")
        if not object_id:
            raise ElementNotFoundError(selector)
        logger.debug("Element %r found in shadow root", selector)
        return object_id

    def query_path(self, selectors: list[str]) -> str:
        """Resolve a chain of selectors across shadow boundaries.

        The first selector is matched against the document. Each later one
        is matched inside the shadow root of the previous match.
        """
        if not selectors:
            raise ValueError("Selector path is empty")
        handle = self.query_selector(selectors[0])
        for host, selector in zip(selectors, selectors[1:]):
            root = self.shadow_root(handle, host=host)
            handle = self.query_selector_in(root, selector)
        return handle

    def outer_html(self, selector: str) -> str:
        """outerHTML of the first match, or "" when nothing matches."""
        remote = self.call_function(
            self.document(), outer_html_js(), selector, return_by_value=True
        )
        return remote.get("value") or ""

    def get_value(self, object_id: str) -> Any:
        """The ``value`` property of a form control."""
        return self.call_function(object_id, value_js(), return_by_value=True).get("value")

    # ── Input ──

    def type_text(
        self, object_id: str, text: str, *, delay_ms: int = DEFAULT_TYPING_DELAY_MS
    ) -> None:
        """Type ``text`` into an element character by character.

        Blocks until the in-page typing loop finishes.
        """
        remote = self.call_function(
            object_id,
            simulate_typing_js(),
            text,
            delay_ms,
            return_by_value=True,
            await_promise=True,
            user_gesture=True,
        )
        logger.info("Typed %d chars (value now %r)", len(text), remote.get("value"))

    # ── Navigation ──

    def navigate(
        self, url: str, *, wait_for_load: bool = False, load_timeout: float = 10.0
    ) -> dict:
        """Point the page at ``url``.

        With ``wait_for_load`` the Page domain is enabled and the call
        blocks until ``Page.loadEventFired`` or ``load_timeout`` seconds.
        """
        if wait_for_load:
            self._cdp.send("Page.enable")
            self._cdp.events.clear()
        result = self._cdp.send("Page.navigate", url=url)
        if result.get("errorText"):
            logger.warning("Navigation to %s reported: %s", url, result["errorText"])
        if wait_for_load and self._cdp.wait_for_event(
            "Page.loadEventFired", timeout=load_timeout
        ) is None:
            logger.warning("No load event from %s after %gs", url, load_timeout)
        logger.info("Navigated to %s", url)
        return result

    def wait_for_ready(self, timeout: float = 30.0, interval: float = 0.25) -> bool:
        """Poll ``document.readyState`` until it is "complete".

        Returns False (and logs a warning) if ``timeout`` elapses first.
        """
        deadline = time.monotonic() + timeout
        while True:
            if self.evaluate("document.readyState") == "complete":
                return True
            if time.monotonic() >= deadline:
                logger.warning("Page still loading after %gs; continuing", timeout)
                return False
            time.sleep(interval)

    def navigate_to_file(self, path: str | Path, *, wait_for_load: bool = False) -> str:
        """Open a local file in the page. Returns the file:// URI used."""
        file_path = Path(path).resolve()
        if not file_path.is_file():
            raise FileNotFoundError(f"File not found: {file_path}")
        uri = file_path.as_uri()
        self.navigate(uri, wait_for_load=wait_for_load)
        return uri

    # ── Screenshot ──

    def screenshot(
        self, path: str | Path, *, format: str = "png", settle: float = 0.0
    ) -> Path:
        """Capture the viewport and write the decoded image to ``path``.

        ``settle`` seconds are slept first so rendering can catch up.
        """
        if settle > 0:
            time.sleep(settle)
        result = self._cdp.send("Page.captureScreenshot", format=format)
        data = result.get("data")
        if not data:
            raise ScreenshotFailedError()
        try:
            image = base64.b64decode(data, validate=True)
        except ValueError as e:
            raise ScreenshotFailedError(f"invalid base64 payload ({e})") from e
        out_path = Path(path)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_bytes(image)
        logger.info("Screenshot saved to %s (%d bytes)", out_path, len(image))
        return out_path
