"""
tableau_mcp/errors.py
=====================

Exception taxonomy shared by the session layer, the filter grammar, the
paginated executor and the tool layer.

Every exception derives from ``TableauMcpError`` so the tool layer can catch
one base class and hand the error to ``ErrorHandler`` for formatting.  The
core never swallows these: it only owns the retry-once policy for a 401.

Kinds
-----
- ``ConfigurationError`` : bad or missing environment configuration.
- ``SigningError``       : connected-app secret unusable; never retried.
- ``AuthenticationError``: sign-in failed, or a 401 survived the retry.
- ``FilterSyntaxError`` / ``FilterSemanticError``: caller input defects.
- ``PaginationError``    : a page could not be fetched; partial results dropped.
- ``ApiError``           : any other non-2xx response from the platform.
- ``FeatureDisabledError``: an optional API (VizQL Data Service) is off.
- ``ResourceNotAllowedError``: outside the configured bounded context.
- ``InvalidQueryError``: a VizQL query that cannot be sent as given.
"""

from typing import Any, Optional


class TableauMcpError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(TableauMcpError):
    """Raised by ``Config.from_env`` when the environment is unusable."""


class SigningError(TableauMcpError):
    """Raised when a connected-app assertion cannot be signed."""


class AuthenticationError(TableauMcpError):
    """Raised when the server refuses to establish or keep a session.

    Attributes
    ----------
    status_code:
        HTTP status of the failing response, or ``None`` for transport errors.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FilterError(TableauMcpError):
    """Base class for filter-string errors.

    Attributes
    ----------
    field:
        Field name of the offending clause (may be empty when the clause
        could not be split).
    token:
        The offending token (operator, field or the raw clause).
    position:
        1-based index of the offending clause in the filter string.
    """

    def __init__(self, message: str, *, field: str = "", token: str = "", position: int = 0):
        super().__init__(message)
        self.field = field
        self.token = token
        self.position = position


class FilterSyntaxError(FilterError):
    """The filter string does not follow ``field:operator:value[,...]``."""


class FilterSemanticError(FilterError):
    """The clause is well formed but not permitted for its field."""


class PaginationError(TableauMcpError):
    """Raised when a page fetch fails.  The original error is ``__cause__``."""

    def __init__(self, page_number: int, cause: BaseException):
        super().__init__(f"Failed to fetch page {page_number}: {cause}")
        self.page_number = page_number


class ApiError(TableauMcpError):
    """A non-2xx, non-401 response from the platform.

    The REST API answers errors with
    ``{"error": {"code": ..., "summary": ..., "detail": ...}}``; whatever is
    available is kept so the tool layer can show it.
    """

    def __init__(
        self,
        status_code: int,
        *,
        code: Optional[str] = None,
        summary: Optional[str] = None,
        detail: Optional[str] = None,
        body: Any = None,
    ):
        parts = [f"HTTP {status_code}"]
        if code:
            parts.append(f"[{code}]")
        if summary:
            parts.append(summary)
        if detail:
            parts.append(f"- {detail}")
        super().__init__(" ".join(parts))
        self.status_code = status_code
        self.code = code
        self.summary = summary
        self.detail = detail
        self.body = body


class FeatureDisabledError(TableauMcpError):
    """The platform answered 404 for a whole API, meaning it is turned off for the site."""


class ResourceNotAllowedError(TableauMcpError):
    """The resource lies outside the projects, data sources or workbooks this server may touch."""


class InvalidQueryError(TableauMcpError):
    """A VizQL query was rejected before sending: it names no fields."""
