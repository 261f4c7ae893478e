"""Bar Queue — entry point."""
import asyncio
import logging
import sys

import uvicorn
from rich import print as rprint
from rich.logging import RichHandler

from barqueue.config import HOST, LOG_LEVEL, PORT
from barqueue.preflight import run_preflight
from barqueue.web.server import create_app


def _setup_logging():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
    )


def main():
    _setup_logging()

    ok = asyncio.run(run_preflight())
    if not ok:
        sys.exit(1)

    app = create_app()
    uvicorn.run(app, host=HOST, port=PORT, log_config=None)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        rprint("\n\n  [bold]Queue closed.[/bold] Goodbye.\n")
        sys.exit(0)
