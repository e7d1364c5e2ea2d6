"""
Provider process entry point.

stdout carries protocol frames only, so logging is pointed at stderr
before anything else runs.
"""

import logging
import sys

from ..config import config
from .erp_backend import create_backend
from .erp_tools import build_registry
from .messaging import create_outbox
from .server import StdioToolServer


def main() -> int:
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    registry = build_registry(create_backend(config.erp), create_outbox(config.messaging))
    StdioToolServer(registry).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
