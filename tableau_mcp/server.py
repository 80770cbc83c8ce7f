"""
tableau_mcp/server.py
=====================

Process entry point: ``python -m tableau_mcp`` or the ``tableau-mcp`` script.

Logging goes to **stderr**: on the stdio transport stdout carries the MCP
protocol itself.
"""

import logging
import sys

from .config import Config
from .errors import ConfigurationError
from .tool_definitions import apply_tool_selection, mcp

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def main() -> None:
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        configure_logging()
        logger.error("Invalid configuration: %s", e)
        sys.exit(1)

    configure_logging(config.log_level)
    try:
        apply_tool_selection(mcp, config.include_tools, config.exclude_tools)
    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(1)

    logger.info("Starting Tableau MCP for %s on the %s transport", config.server, config.transport)
    if config.transport == "http":
        mcp.run(transport="http", port=config.http_port)
    else:
        mcp.run()


if __name__ == "__main__":
    main()
