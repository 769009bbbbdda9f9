"""
Pytest fixtures: an in-process WebSocket server that speaks just enough CDP.
"""
import json
import threading

import pytest
from websockets.sync.server import serve

from domtap.js_expressions import (
    outer_html_js,
    query_selector_js,
    shadow_root_js,
    simulate_typing_js,
    value_js,
)


class FakeCDP:
    """Answers CDP commands from per-method handlers.

    A handler gets the parsed command and returns either a dict (sent back
    as that command's ``result``) or a list of raw outgoing messages. Each
    raw item is a dict (JSON-encoded), a str, or a list of str fragments
    sent as one fragmented message.
    """

    def __init__(self):
        self.received = []
        self.handlers = {}
        self._server = None
        self._thread = None
        self.url = None

    def on(self, method, handler):
        self.handlers[method] = handler

    def _respond(self, websocket, cmd):
        handler = self.handlers.get(cmd.get("method"))
        if handler is None:
            out = [{"id": cmd["id"], "error": {"code": -32601,
                                               "message": f"'{cmd['method']}' wasn't found"}}]
        else:
            reply = handler(cmd)
            if reply == "close":
                websocket.close()
                return
            out = [{"id": cmd["id"], "result": reply}] if isinstance(reply, dict) else reply
        for item in out:
            websocket.send(json.dumps(item) if isinstance(item, dict) else item)

    def _handle(self, websocket):
        for message in websocket:
            cmd = json.loads(message)
            self.received.append(cmd)
            self._respond(websocket, cmd)

    def start(self):
        self._server = serve(self._handle, "127.0.0.1", 0, max_size=None)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        port = self._server.socket.getsockname()[1]
        self.url = f"ws://127.0.0.1:{port}/devtools/page/FAKE"
        return self

    def stop(self):
        self._server.shutdown()
        self._thread.join(timeout=5)

    def methods(self):
        return [c["method"] for c in self.received]


class FakeDom:
    """A tiny object graph answering Runtime.evaluate / callFunctionOn.

    Nodes are keyed by objectId. ``children`` maps selectors to objectIds.
    """

    def __init__(self):
        self.nodes = {
            "doc": {"children": {"#userName": "host-1", "#plain": "input-0",
                                 "section.content": "section-1"}},
            "host-1": {"children": {}, "shadow": "root-1"},
            "root-1": {"children": {"#kils": "input-1"}},
            "input-0": {"children": {}, "value": ""},
            "input-1": {"children": {}, "value": ""},
            "section-1": {"children": {}, "html": "<section class=\"content\">hi</section>"},
        }
        self.ready_state = "complete"

    def install(self, fake):
        fake.on("Runtime.evaluate", self.evaluate)
        fake.on("Runtime.callFunctionOn", self.call_function_on)

    def evaluate(self, cmd):
        expr = cmd["params"]["expression"]
        if expr == "document":
            return {"result": {"type": "object", "className": "HTMLDocument", "objectId": "doc"}}
        if expr == "document.readyState":
            return {"result": {"type": "string", "value": self.ready_state}}
        if expr == "1 + 1":
            return {"result": {"type": "number", "value": 2, "description": "2"}}
        return {"result": {"type": "undefined"}}

    def call_function_on(self, cmd):
        params = cmd["params"]
        node = self.nodes[params["objectId"]]
        decl = params["functionDeclaration"]
        args = [a["value"] for a in params.get("arguments", [])]
        null = {"result": {"type": "object", "subtype": "null", "value": None}}

        if decl == query_selector_js():
            found = node["children"].get(args[0])
            if found is None:
                return null
            return {"result": {"type": "object", "subtype": "node", "objectId": found}}
        if decl == shadow_root_js():
            if "shadow" not in node:
                return null
            return {"result": {"type": "object", "subtype": "node", "objectId": node["shadow"]}}
        if decl == outer_html_js():
            found = node["children"].get(args[0])
            html = self.nodes[found]["html"] if found else ""
            return {"result": {"type": "string", "value": html}}
        if decl == value_js():
            return {"result": {"type": "string", "value": node["value"]}}
        if decl == simulate_typing_js():
            node["value"] += args[0]
            return {"result": {"type": "string", "value": node["value"]}}
        return {"exceptionDetails": {"text": "Uncaught", "exception": {"description": "unknown function"}},
                "result": {"type": "object", "subtype": "error"}}


@pytest.fixture
def fake_cdp():
    fake = FakeCDP().start()
    yield fake
    fake.stop()


@pytest.fixture
def fake_dom(fake_cdp):
    dom = FakeDom()
    dom.install(fake_cdp)
    return dom


@pytest.fixture
def session(fake_cdp):
    from domtap.core import CDPSession

    cdp = CDPSession.connect(fake_cdp.url)
    yield cdp
    cdp.close()


@pytest.fixture
def page(session, fake_dom):
    from domtap.page import Page

    return Page(session)
