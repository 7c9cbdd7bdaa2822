"""Entry point for Token Cat.

SECURITY MODEL:
- Nothing printed or logged here ever includes tokens or credentials.
"""

import logging
import sys

from .config import APP_NAME, APP_TAGLINE, LOG_PATH


def _setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    fmt = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
    datefmt = "%H:%M:%S"

    # Console handler
    logging.basicConfig(level=level, format=fmt, datefmt=datefmt)

    # File handler so crashes can be diagnosed after the fact
    try:
        LOG_PATH.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(LOG_PATH), mode="w", encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
        logging.getLogger().addHandler(fh)
    except OSError:
        logging.getLogger(__name__).warning("Cannot write log file %s", LOG_PATH)


def main() -> None:
    args = sys.argv[1:]

    if "--help" in args or "-h" in args:
        print(f"{APP_NAME} — {APP_TAGLINE}")
        print()
        print("Usage:")
        print("  python -m tokencat            Start Token Cat")
        print("  python -m tokencat --verbose  Verbose logging")
        return

    _setup_logging("--verbose" in args or "-v" in args)

    from .app import App
    App().run()


if __name__ == "__main__":
    main()
