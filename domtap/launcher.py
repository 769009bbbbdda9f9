"""Browser process lifecycle and debugger discovery."""

from __future__ import annotations

import contextlib
import glob
import json
import logging
import os
import shutil
import subprocess
import sys
import tempfile
import time
from collections.abc import Iterator
from pathlib import Path
from urllib.error import URLError
from urllib.request import urlopen

from domtap.config import Config
from domtap.core import BrowserNotRunning, CDPError, ProcessLaunchError

logger = logging.getLogger(__name__)


def find_chrome() -> str | None:
    """Auto-detect Chrome/Chromium binary path."""
    candidates = []

    if sys.platform == "darwin":
        candidates = [
            "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
            "/Applications/Chromium.app/Contents/MacOS/Chromium",
            "/Applications/Google Chrome Canary.app/Contents/MacOS/Google Chrome Canary",
            "/Applications/Brave Browser.app/Contents/MacOS/Brave Browser",
            "/Applications/Microsoft Edge.app/Contents/MacOS/Microsoft Edge",
        ]
    elif sys.platform == "linux":
        candidates = [
            "google-chrome",
            "google-chrome-stable",
            "chromium",
            "chromium-browser",
            "brave-browser",
            "microsoft-edge",
        ]
    elif sys.platform == "win32":
        for pattern in [
            os.path.expandvars(r"%ProgramFiles%\Google\Chrome\Application\chrome.exe"),
            os.path.expandvars(r"%ProgramFiles(x86)%\Google\Chrome\Application\chrome.exe"),
            os.path.expandvars(r"%LocalAppData%\Google\Chrome\Application\chrome.exe"),
        ]:
            candidates.extend(glob.glob(pattern))

    for c in candidates:
        if os.path.isfile(c):
            return c
        # Bare names are looked up on PATH
        if os.path.sep not in c:
            found = shutil.which(c)
            if found:
                return found

    return None


def _fetch_json(url: str, timeout: float = 2.0) -> object:
    with urlopen(url, timeout=timeout) as resp:
        return json.loads(resp.read())


def page_websocket_url(host: str = "127.0.0.1", port: int = 9222) -> str:
    """WebSocket debugger URL of the first ``page`` target."""
    cdp_url = f"http://{host}:{port}"
    try:
        targets = _fetch_json(f"{cdp_url}/json")
    except (URLError, OSError):
        raise BrowserNotRunning(cdp_url)
    except json.JSONDecodeError as e:
        raise CDPError(f"Discovery endpoint returned invalid JSON: {e}") from e
    if isinstance(targets, list):
        for target in targets:
            if isinstance(target, dict) and target.get("type") == "page":
                ws_url = target.get("webSocketDebuggerUrl")
                if ws_url:
                    logger.debug("Page target %s -> %s", target.get("id"), ws_url)
                    return ws_url
    raise CDPError(
        "No debuggable page target found.\n"
        "Hint: is another DevTools client already attached to the tab?"
    )


def _wait_until_ready(proc: subprocess.Popen, config: Config) -> None:
    deadline = time.monotonic() + config.startup_timeout
    while time.monotonic() < deadline:
        if proc.poll() is not None:
            raise ProcessLaunchError(
                f"Browser exited during startup with code {proc.returncode}"
            )
        try:
            _fetch_json(f"{config.cdp_url}/json/version")
            return
        except (URLError, OSError, json.JSONDecodeError):
            time.sleep(0.3)
    terminate(proc)
    raise ProcessLaunchError(
        f"Browser started but CDP not ready on port {config.debugging_port} "
        f"after {config.startup_timeout:g}s.\n"
        f"Check if another process is using port {config.debugging_port}."
    )


def launch(config: Config) -> subprocess.Popen:
    """Start the browser with remote debugging and wait until it answers.

    Uses ``config.profile_dir`` as the user data dir, or a fresh temporary
    directory so each run gets an isolated profile.
    """
    chrome = config.browser_path or find_chrome()
    if not chrome:
        raise ProcessLaunchError(
            "Chrome/Chromium not found. Install it or set CHROME_PATH / --chrome.\n\n"
            "Install options:\n"
            "  macOS:   brew install --cask google-chrome\n"
            "  Ubuntu:  sudo apt install chromium-browser\n"
            "  Fedora:  sudo dnf install chromium"
        )

    if config.profile_dir:
        data_dir = str(Path(config.profile_dir).expanduser())
        os.makedirs(data_dir, exist_ok=True)
    else:
        data_dir = tempfile.mkdtemp(prefix="domtap-profile-")

    cmd = [
        chrome,
        f"--remote-debugging-port={config.debugging_port}",
        "--no-first-run",
        f"--user-data-dir={data_dir}",
    ]
    if config.headless:
        cmd.append("--headless=new")
    cmd.append(config.target_url)

    logger.info("Starting browser: %s", " ".join(cmd))
    try:
        proc = subprocess.Popen(
            cmd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except OSError as e:
        raise ProcessLaunchError(f"Failed to start {chrome}: {e}") from e

    _wait_until_ready(proc, config)
    logger.info("Browser ready on port %d (pid %s)", config.debugging_port, proc.pid)
    return proc


def terminate(proc: subprocess.Popen) -> None:
    """Kill the browser if it is still running."""
    if proc.poll() is None:
        logger.info("Terminating browser (pid %s)", proc.pid)
        proc.kill()
        proc.wait()


@contextlib.contextmanager
def running_browser(config: Config) -> Iterator[subprocess.Popen]:
    """Launch for the duration of a ``with`` block; always terminate."""
    proc = launch(config)
    try:
        yield proc
    finally:
        terminate(proc)
