"""domtap — drive a Chrome page over the DevTools Protocol.

Launch a browser with remote debugging, attach to its page and run DOM
operations one command at a time, including inside shadow roots.

Quick start:
    from domtap import CDPSession, Page
    from domtap.launcher import page_websocket_url

    cdp = CDPSession.connect(page_websocket_url(port=9222))
    page = Page(cdp)
    field = page.query_path(["#userName", "#kils"])   # '#kils' inside a shadow root
    page.type_text(field, "John Doe")
    page.screenshot("screenshot.png")
    cdp.close()
"""

from domtap.core import CDPSession, Transport
from domtap.page import Page

__version__ = "0.1.0"
__all__ = ["CDPSession", "Page", "Transport"]
