"""Core CDP transport and session.

Transport is the WebSocket wrapper; CDPSession correlates commands and
responses over it. Use Page (domtap.page) for DOM-level work.

    from domtap.core import CDPSession

    cdp = CDPSession.connect(ws_url)
    result = cdp.send("Runtime.evaluate", expression="1+1")
    cdp.close()
"""

from __future__ import annotations

import json
import logging
import time
from collections import deque
from typing import Any

from websockets.exceptions import ConnectionClosed, InvalidURI, WebSocketException
from websockets.sync.client import connect as ws_connect

logger = logging.getLogger(__name__)

# Longest message excerpt written to the debug log.
_LOG_EXCERPT = 300


def _excerpt(text: str) -> str:
    if len(text) <= _LOG_EXCERPT:
        return text
    return f"{text[:_LOG_EXCERPT]}... ({len(text)} chars)"


# ── Errors ──


class CDPError(Exception):
    """Error from the Chrome DevTools Protocol."""

    pass


class TransportError(CDPError, ConnectionError):
    """The WebSocket connection failed, closed, or was never opened."""

    pass


class BrowserNotRunning(TransportError):
    """Raised when CDP endpoint is unreachable."""

    def __init__(self, cdp_url: str) -> None:
        self.cdp_url = cdp_url
        port = cdp_url.rsplit(":", 1)[-1].split("/")[0]
        super().__init__(
            f"Cannot connect to browser at {cdp_url}\n\n"
            f"Make sure Chrome/Chromium is running with remote debugging enabled:\n"
            f"  chrome --remote-debugging-port={port}\n\n"
            f"Or let domtap start one for you:\n"
            f"  domtap extract <url> --port {port}"
        )


class ProtocolExtractionError(CDPError):
    """A response arrived but lacked the field the caller needed."""

    pass


class SelectorNotFoundError(ProtocolExtractionError):
    def __init__(self, selector: str) -> None:
        self.selector = selector
        super().__init__(f"Selector '{selector}' not found")


class ShadowRootNotFoundError(ProtocolExtractionError):
    def __init__(self, host: str | None = None) -> None:
        self.host = host
        where = f" on '{host}'" if host else ""
        super().__init__(f"Shadow root not found{where}")


class ElementNotFoundError(ProtocolExtractionError):
    def __init__(self, selector: str) -> None:
        self.selector = selector
        super().__init__(f"Element '{selector}' not found in shadow root")


class ScreenshotFailedError(ProtocolExtractionError):
    def __init__(self, detail: str = "no image data in response") -> None:
        super().__init__(f"Failed to capture screenshot: {detail}")


class ProcessLaunchError(CDPError):
    """The browser process could not be started or never became debuggable."""

    pass


# ── Transport ──


class Transport:
    """One WebSocket connection carrying CDP text messages.

    ``max_size=None`` accepts messages of any length (base64 screenshots
    routinely exceed the library's 1 MiB default). Pass an integer to cap it.
    """

    def __init__(self, ws: Any) -> None:
        self._ws = ws
        self._closed = False

    @classmethod
    def connect(cls, url: str, *, max_size: int | None = None) -> Transport:
        """Open a connection to a ``ws://`` debugger URL."""
        try:
            ws = ws_connect(url, max_size=max_size)
        except InvalidURI as e:
            raise TransportError(f"Invalid debugger URL {url!r}: {e}") from e
        except (OSError, WebSocketException) as e:
            raise TransportError(f"Cannot connect to {url}: {e}") from e
        logger.debug("Connected to %s", url)
        return cls(ws)

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, text: str) -> None:
        """Send one complete text message."""
        if self._closed:
            raise TransportError("Connection is closed")
        try:
            self._ws.send(text)
        except ConnectionClosed as e:
            self._closed = True
            raise TransportError(f"Connection closed while sending: {e}") from e

    def receive(self, timeout: float | None = None) -> str:
        """Block until a whole message arrives and return its text.

        Frames are read one at a time until the final fragment; their
        payloads are joined in order. With ``timeout`` the library
        reassembles the frames and ``TimeoutError`` is raised if no
        message arrives in time.
        """
        if self._closed:
            raise TransportError("Connection is closed")
        parts: list[str | bytes] = []
        try:
            if timeout is None:
                for fragment in self._ws.recv_streaming():
                    parts.append(fragment)
            else:
                parts.append(self._ws.recv(timeout=timeout))
        except ConnectionClosed as e:
            self._closed = True
            raise TransportError(f"Connection closed while receiving: {e}") from e
        if parts and isinstance(parts[0], bytes):
            return b"".join(parts).decode("utf-8")  # type: ignore[arg-type]
        return "".join(parts)  # type: ignore[arg-type]

    def close(self) -> None:
        """Close with a normal-closure frame. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        try:
            self._ws.close()
        except (OSError, WebSocketException) as e:
            logger.debug("Ignoring error while closing transport: %s", e)

    def __enter__(self) -> Transport:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


# ── CDP Session ──


class CDPSession:
    """Synchronous CDP command/response exchange over one Transport.

    Commands go out one at a time. Each sent id stays in the pending map
    until its response is read; unsolicited events are buffered in
    ``events``.

    Example:
        cdp = CDPSession.connect(ws_url)
        resp = cdp.exchange({"id": 1, "method": "Page.navigate",
                             "params": {"url": "https://example.com"}})
        cdp.close()
    """

    def __init__(self, transport: Transport, *, max_events: int = 1000) -> None:
        self._transport = transport
        self._id = 0
        self._pending: dict[int, dict | None] = {}
        self.events: deque[dict] = deque(maxlen=max_events)

    @classmethod
    def connect(cls, ws_url: str, *, max_size: int | None = None) -> CDPSession:
        """Open a transport to ``ws_url`` and wrap it in a session."""
        return cls(Transport.connect(ws_url, max_size=max_size))

    @property
    def transport(self) -> Transport:
        return self._transport

    def _next_id(self) -> int:
        self._id += 1
        while self._id in self._pending:
            self._id += 1
        return self._id

    def _read_message(self, timeout: float | None = None) -> dict:
        raw = self._transport.receive(timeout)
        try:
            msg = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CDPError(f"Malformed CDP message: {_excerpt(raw)}") from e
        if not isinstance(msg, dict):
            raise CDPError(f"Unexpected CDP message: {_excerpt(raw)}")
        logger.debug("<< %s", _excerpt(raw))
        return msg

    def _dispatch(self, msg: dict) -> None:
        """File a message that is not the response currently awaited."""
        msg_id = msg.get("id")
        if msg_id is None:
            if "method" in msg:
                self.events.append(msg)
            else:
                logger.debug("Dropping message without id or method: %s", msg)
        elif msg_id in self._pending:
            self._pending[msg_id] = msg
        else:
            logger.warning("Dropping response for unknown id %s", msg_id)

    def submit(self, command: dict) -> int:
        """Register ``command`` as pending and send it. Returns its id.

        ``command`` needs an integer ``id`` and a ``method``; ``params``
        defaults to an empty object.
        """
        msg_id = command.get("id")
        if not isinstance(msg_id, int) or isinstance(msg_id, bool):
            raise ValueError(f"Command id must be an integer, got {msg_id!r}")
        if "method" not in command:
            raise ValueError("Command has no method")
        if msg_id in self._pending:
            raise ValueError(f"Command id {msg_id} is already in flight")

        payload = {"id": msg_id, "method": command["method"],
                   "params": command.get("params") or {}}
        text = json.dumps(payload)
        self._pending[msg_id] = None
        logger.debug(">> %s", _excerpt(text))
        try:
            self._transport.send(text)
        except TransportError:
            del self._pending[msg_id]
            raise
        return msg_id

    def wait_for_response(self, msg_id: int) -> dict:
        """Return the response for a submitted id.

        A response already filed while another id was being awaited is
        returned without reading. Otherwise messages are read until it
        arrives.
        """
        if msg_id not in self._pending:
            raise ValueError(f"Command id {msg_id} is not in flight")
        try:
            while self._pending[msg_id] is None:
                msg = self._read_message()
                if msg.get("id") == msg_id:
                    return msg
                self._dispatch(msg)
            return self._pending[msg_id]  # type: ignore[return-value]
        finally:
            self._pending.pop(msg_id, None)

    def exchange(self, command: dict) -> dict:
        """Send ``command`` and return the parsed response carrying its id."""
        return self.wait_for_response(self.submit(command))

    def send(self, method: str, **params: Any) -> dict:
        """Send a CDP command and wait for the response."""
        msg = self.exchange({"id": self._next_id(), "method": method, "params": params})
        if "error" in msg:
            err = msg["error"]
            raise CDPError(
                f"{method}: {err.get('message', str(err)) if isinstance(err, dict) else err}"
            )
        return msg.get("result", {})

    def wait_for_event(self, event_name: str, timeout: float = 10.0) -> dict | None:
        """Block until ``event_name`` fires and return its params.

        Events already buffered are checked first. Returns None if the
        event has not arrived within ``timeout`` seconds.
        """
        for i, event in enumerate(self.events):
            if event.get("method") == event_name:
                del self.events[i]
                return event.get("params", {})

        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            remaining = max(0.1, deadline - time.monotonic())
            try:
                msg = self._read_message(timeout=remaining)
            except TimeoutError:
                break
            if msg.get("method") == event_name and "id" not in msg:
                return msg.get("params", {})
            self._dispatch(msg)
        return None

    def close(self) -> None:
        """Close the WebSocket connection."""
        self._transport.close()

    def __enter__(self) -> CDPSession:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
