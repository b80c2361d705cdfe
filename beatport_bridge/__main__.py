"""
Entry point for `python -m beatport_bridge` and the `beatport-bridge` script.
"""

import asyncio
import logging
import os
import sys

from rich.console import Console

from beatport_bridge.cli.app import app
from beatport_bridge.cli.formatters import format_error_with_suggestions
from beatport_bridge.exceptions import BridgeError, ConfigurationError

log = logging.getLogger("beatport_bridge")


def _use_utf8_streams() -> None:
    # Track titles and status glyphs are not representable in cp1252
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.reconfigure(encoding="utf-8")
        except (TypeError, AttributeError):
            pass


def main() -> None:
    if os.name == "nt":
        _use_utf8_streams()

    console = Console(stderr=True)
    try:
        app()
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print(
            "\n[yellow]⚠️  Interrupted; queued downloads keep running on the service."
            "[/yellow]"
        )
        sys.exit(130)
    except ConfigurationError as e:
        console.print(format_error_with_suggestions(e))
        sys.exit(2)
    except BridgeError as e:
        console.print(format_error_with_suggestions(e))
        sys.exit(1)
    except Exception as e:
        log.debug("Unhandled error", exc_info=True)
        console.print(format_error_with_suggestions(e, {"type": "Unexpected"}))
        sys.exit(1)


if __name__ == "__main__":
    main()
