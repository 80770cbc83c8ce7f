"""
tableau_mcp/tools/toolkit.py
============================

Dependency container for everything the tool functions need.

Tool functions (in ``tool_definitions/``) need the session, the endpoint
client, the bounded context and the error handler.  ``Toolkit`` creates one
of each and ``get_toolkit()`` hands the same instance to every tool, so the
whole process shares a single authenticated session.
"""

import logging
from typing import Optional

import httpx

from ..config import Config
from .bounded_context import BoundedContext
from .error_handler import ErrorHandler
from .session import SessionManager
from .tableau_client import TableauClient

logger = logging.getLogger(__name__)


class Toolkit:
    """Wires the infrastructure together into one injectable container.

    Parameters
    ----------
    config:
        A fully validated ``Config`` instance.
    transport:
        Optional ``httpx`` transport handed to the session (tests use
        ``httpx.MockTransport``).

    Attributes
    ----------
    config:
        Application configuration.
    session:
        The process-wide ``SessionManager``.
    tableau:
        Endpoint client bound to ``session``.
    bounded_context:
        Allowed projects, data sources and workbooks.
    error_handler:
        Stateless error classification and formatting utility.
    """

    def __init__(self, config: Config, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.session = SessionManager(
            config.server,
            config.credential(),
            site_name=config.site_name,
            api_version=config.api_version,
            timeout=config.request_timeout_seconds,
            mask_secrets=not config.disable_log_masking,
            transport=transport,
        )
        self.tableau = TableauClient(self.session)
        self.bounded_context = BoundedContext.from_config(config)
        self.error_handler = ErrorHandler()
        logger.debug("Toolkit initialised for %s (auth=%s)", config.server, config.auth)

    def result_cap(self, limit: Optional[int] = None) -> Optional[int]:
        """The effective result cap: the smaller of the caller's ``limit`` and ``MAX_RESULT_LIMIT``."""
        caps = [cap for cap in (limit, self.config.max_result_limit) if cap is not None]
        return min(caps) if caps else None

    async def close(self) -> None:
        await self.session.close()


_toolkit: Optional[Toolkit] = None


def get_toolkit() -> Toolkit:
    """Return the shared Toolkit instance, creating it on first call."""
    global _toolkit
    if _toolkit is None:
        _toolkit = Toolkit(Config.from_env())
    return _toolkit


async def close_toolkit() -> None:
    """Sign out and drop the shared Toolkit, if one was created."""
    global _toolkit
    toolkit, _toolkit = _toolkit, None
    if toolkit is not None:
        await toolkit.close()
