"""domtap CLI — launch a browser, act on one page, exit.

Usage:
    domtap <command> [args...] [options]
    domtap --help

Examples:
    domtap extract https://example.com --selector main --out page.html
    domtap fill https://example.com/form --fill "#userName >> #kils=John Doe"
    domtap eval https://example.com "document.title"
    domtap screenshot https://example.com shot.png
"""

from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import asdict

from domtap.config import load_config, save_config
from domtap.core import BrowserNotRunning, CDPError, ProcessLaunchError
from domtap.flows import (
    DEFAULT_HTML_SELECTOR,
    extract_html,
    fill_and_capture,
    parse_fill,
    run,
)

# ── Colors (disable with NO_COLOR env var) ──

_NO_COLOR = os.environ.get("NO_COLOR") or not sys.stdout.isatty()


def _dim(s: str) -> str:
    return s if _NO_COLOR else f"\033[2m{s}\033[0m"


def _bold(s: str) -> str:
    return s if _NO_COLOR else f"\033[1m{s}\033[0m"


def _green(s: str) -> str:
    return s if _NO_COLOR else f"\033[32m{s}\033[0m"


def _yellow(s: str) -> str:
    return s if _NO_COLOR else f"\033[33m{s}\033[0m"


def _red(s: str) -> str:
    return s if _NO_COLOR else f"\033[31m{s}\033[0m"


# ── Help text ──

COMMANDS_HELP = {
    "extract": {
        "usage": "domtap extract <url> [--selector CSS] [--out FILE] [--open]",
        "desc": (
            "Open a page and save the outerHTML of one element to a file.\n"
            f"The selector defaults to '{DEFAULT_HTML_SELECTOR}'. With --open the tab\n"
            "then navigates to the saved file."
        ),
        "example": (
            "  $ domtap extract https://example.com --selector main --out main.html\n"
            "  ✓ Saved main.html"
        ),
    },
    "fill": {
        "usage": "domtap fill <url> --fill 'SEL [>> SEL...]=TEXT' [...] [--screenshot FILE] [--delay MS]",
        "desc": (
            "Type text into elements one character at a time, then take a screenshot.\n"
            "'>>' steps into the shadow root of the element matched so far.\n"
            "Repeat --fill for several fields. --no-screenshot skips the capture."
        ),
        "example": (
            "  $ domtap fill https://selectorshub.com/xpath-practice-page/ \\\n"
            "      --fill '#userName >> #kils=John Doe'\n"
            "  ✓ Screenshot saved: screenshot.png"
        ),
        "hint": "Input listeners see one input/keydown pair per character, 100ms apart.",
    },
    "eval": {
        "usage": "domtap eval <url> <javascript>",
        "desc": "Open a page, evaluate a JavaScript expression and print the result.",
        "example": "  $ domtap eval https://example.com \"document.title\"\n  Example Domain",
    },
    "screenshot": {
        "usage": "domtap screenshot <url> [FILE]",
        "desc": "Open a page and save a PNG screenshot.",
        "example": "  $ domtap screenshot https://example.com shot.png",
    },
    "config": {
        "usage": "domtap config [--save]",
        "desc": (
            "Print the effective configuration (file + environment + flags).\n"
            "With --save, write it to ~/.domtap/config.json (or $DOMTAP_CONFIG)."
        ),
    },
}

GLOBAL_OPTIONS = (
    "  --port PORT        Remote debugging port (default 9222, env DOMTAP_PORT)\n"
    "  --chrome PATH      Browser binary (env CHROME_PATH; auto-detected)\n"
    "  --profile DIR      Profile directory (default: fresh temp dir)\n"
    "  --headless         Run without a window\n"
    "  -v, --verbose      Log CDP traffic"
)


def print_main_help() -> None:
    print(_bold("domtap") + " — drive a browser page over the DevTools Protocol\n")
    print(_bold("Commands:"))
    for name, info in COMMANDS_HELP.items():
        print(f"  {name:<12} {info['desc'].splitlines()[0]}")
    print()
    print(_bold("Options:"))
    print(GLOBAL_OPTIONS)
    print()
    print(_dim("Run 'domtap <command> --help' for details."))


def print_command_help(cmd: str) -> None:
    info = COMMANDS_HELP.get(cmd)
    if not info:
        print(_red(f"Unknown command: {cmd}"))
        return
    print(_bold("Usage: ") + info["usage"])
    print()
    print(info["desc"])
    if info.get("example"):
        print()
        print(_bold("Example:"))
        print(info["example"])
    if info.get("hint"):
        print()
        print(_dim("💡 " + info["hint"]))


# ── Argument parsing ──

# flag → (option name, takes value)
_OPTIONS: dict[str, tuple[str, bool]] = {
    "--port": ("debugging_port", True),
    "--chrome": ("browser_path", True),
    "--profile": ("profile_dir", True),
    "--headless": ("headless", False),
    "--selector": ("selector", True),
    "--out": ("html_path", True),
    "--open": ("open", False),
    "--fill": ("fill", True),
    "--screenshot": ("screenshot_path", True),
    "--no-screenshot": ("no_screenshot", False),
    "--delay": ("typing_delay_ms", True),
    "--save": ("save", False),
    "--verbose": ("verbose", False),
    "-v": ("verbose", False),
}

_CONFIG_KEYS = (
    "debugging_port",
    "browser_path",
    "profile_dir",
    "headless",
    "html_path",
    "screenshot_path",
    "typing_delay_ms",
)


def parse_args(args: list[str]) -> tuple[list[str], dict]:
    """Split ``args`` into positionals and options.

    ``--fill`` may repeat; every other option keeps its last value.
    """
    positional: list[str] = []
    opts: dict = {"fill": []}
    i = 0
    while i < len(args):
        arg = args[i]
        if arg in _OPTIONS:
            name, takes_value = _OPTIONS[arg]
            if takes_value:
                if i + 1 >= len(args):
                    raise ValueError(f"{arg} needs a value")
                value = args[i + 1]
                if name == "fill":
                    opts["fill"].append(value)
                else:
                    opts[name] = value
                i += 2
            else:
                opts[name] = True
                i += 1
        elif arg.startswith("--"):
            raise ValueError(f"Unknown option: {arg}")
        else:
            positional.append(arg)
            i += 1

    for key in ("debugging_port", "typing_delay_ms"):
        if key in opts:
            try:
                opts[key] = int(opts[key])
            except ValueError:
                raise ValueError(f"Expected a number for {key}, got {opts[key]!r}") from None
    return positional, opts


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def run_command(cmd: str, positional: list[str], opts: dict) -> str | None:
    """Execute a command and return the output string."""
    overrides = {k: opts.get(k) for k in _CONFIG_KEYS}

    if cmd == "config":
        config = load_config(**overrides)
        if opts.get("save"):
            path = save_config(config)
            return _green(f"✓ Saved config to {path}")
        return json.dumps(asdict(config), indent=2)

    if not positional:
        print_command_help(cmd)
        return None
    config = load_config(target_url=positional[0], **overrides)

    if cmd == "extract":
        path = run(
            config,
            lambda page: extract_html(
                page,
                opts.get("selector", DEFAULT_HTML_SELECTOR),
                config.html_path,
                open_saved=bool(opts.get("open")),
            ),
        )
        return _green(f"✓ Saved {path}")

    elif cmd == "fill":
        if not opts["fill"]:
            print_command_help("fill")
            return None
        steps = [parse_fill(s) for s in opts["fill"]]
        shot = None if opts.get("no_screenshot") else config.screenshot_path
        path = run(
            config,
            lambda page: fill_and_capture(
                page,
                steps,
                shot,
                delay_ms=config.typing_delay_ms,
                settle=config.screenshot_settle,
            ),
        )
        lines = [_green(f"✓ Filled {len(steps)} field(s)")]
        if path:
            lines.append(_green(f"✓ Screenshot saved: {path}"))
        return "\n".join(lines)

    elif cmd == "eval":
        if len(positional) < 2:
            print_command_help("eval")
            return None
        expression = " ".join(positional[1:])
        result = run(config, lambda page: page.evaluate(expression, await_promise=True))
        if isinstance(result, str):
            return result
        if result is None:
            return "(undefined)"
        return json.dumps(result, indent=2)

    elif cmd == "screenshot":
        out = positional[1] if len(positional) > 1 else config.screenshot_path
        path = run(config, lambda page: page.screenshot(out, settle=config.screenshot_settle))
        return _green(f"✓ Screenshot saved: {path}")

    else:
        print(_red(f"Unknown command: {cmd}"))
        print("Run 'domtap --help' to see all commands.")
        sys.exit(1)


def main() -> None:
    """CLI entry point."""
    args = sys.argv[1:]

    if not args or args[0] in ("--help", "-h", "help"):
        print_main_help()
        return

    cmd = args[0].lower()
    cmd_args = args[1:]

    if cmd in ("--version", "-V", "version"):
        from domtap import __version__
        print(f"domtap {__version__}")
        return

    if "--help" in cmd_args or "-h" in cmd_args:
        print_command_help(cmd)
        return

    try:
        positional, opts = parse_args(cmd_args)
        _setup_logging(bool(opts.get("verbose")))
        result = run_command(cmd, positional, opts)
        if result is not None:
            print(result)
    except BrowserNotRunning as e:
        print(_red("✗ Browser not reachable\n"))
        print(str(e))
        sys.exit(1)
    except ProcessLaunchError as e:
        print(_red(f"✗ {e}"))
        print()
        print(_yellow("💡 Quick fix:") + " pass " + _bold("--chrome /path/to/chrome") + " or set CHROME_PATH.")
        sys.exit(1)
    except CDPError as e:
        print(_red(f"✗ {e}"))
        sys.exit(1)
    except (FileNotFoundError, ValueError) as e:
        print(_red(f"✗ {e}"))
        sys.exit(1)
    except KeyboardInterrupt:
        pass
    except Exception as e:
        print(_red(f"✗ Error: {e}"))
        sys.exit(1)


if __name__ == "__main__":
    main()
