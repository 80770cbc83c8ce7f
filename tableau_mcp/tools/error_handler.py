"""
tableau_mcp/tools/error_handler.py
==================================

User-friendly, actionable error responses for the MCP tools.

Design Strategy
---------------
The core raises typed exceptions (see ``tableau_mcp/errors.py``).  A tool
catches ``TableauMcpError`` and hands it to ``ErrorHandler``, which looks the
error up by kind and returns:

1. A short ``error_type`` heading, so the caller can tell "your input was
   invalid" from "could not authenticate" from "data could not be fully
   retrieved".
2. A plain-English ``message``.
3. Concrete ``suggestions``.

``ApiError`` is looked up by HTTP status first, so a 403 and a 404 get
different advice.  A ``PaginationError`` caused by a failed sign-in is
reported as the authentication failure it is.  Lookup walks the exception's MRO, so a subclass without its
own entry inherits its parent's.
"""

import json
from typing import Any, Dict, List, Optional, Tuple

from ..errors import (
    ApiError,
    AuthenticationError,
    ConfigurationError,
    FeatureDisabledError,
    FilterSemanticError,
    FilterSyntaxError,
    InvalidQueryError,
    PaginationError,
    ResourceNotAllowedError,
    SigningError,
)


class ErrorHandler:
    """Translates package exceptions into Markdown error responses.

    Attributes
    ----------
    ERRORS:
        Map of exception class → ``{type, message, suggestions}``.
    API_ERRORS:
        Map of HTTP status → ``{type, message, suggestions}`` for ``ApiError``.
    """

    ERRORS: Dict[type, dict] = {
        FilterSyntaxError: {
            "type": "InvalidFilter",
            "message": "The filter is not well formed.",
            "suggestions": [
                "Write each clause as field:operator:value and separate clauses with commas",
                "Values cannot contain ':' or ','",
                "Use an operator listed for the field in the tool description (eq, in, has, gt, gte, lt or lte)",
            ],
        },
        FilterSemanticError: {
            "type": "InvalidFilter",
            "message": "The filter uses a field or operator this tool does not support.",
            "suggestions": [
                "Check the field name against the fields listed in the tool description",
                "Use an operator allowed for that field's type",
            ],
        },
        AuthenticationError: {
            "type": "AuthenticationError",
            "message": "Could not authenticate with Tableau.",
            "suggestions": [
                "Check the credential variables for the configured AUTH type",
                "Verify SERVER and SITE_NAME point at the right site",
                "Make sure the personal access token or connected app is still enabled",
            ],
        },
        SigningError: {
            "type": "SigningError",
            "message": "The connected app assertion could not be signed.",
            "suggestions": [
                "Check CONNECTED_APP_SECRET_VALUE is the secret value, not its id",
                "Generate a new secret for the connected app if it was rotated",
            ],
        },
        PaginationError: {
            "type": "IncompleteResults",
            "message": "The data could not be fully retrieved; no partial results are returned.",
            "suggestions": [
                "Try the request again",
                "Narrow the request with a filter or a smaller limit",
            ],
        },
        FeatureDisabledError: {
            "type": "FeatureDisabled",
            "message": "VizQL Data Service is disabled on this site.",
            "suggestions": [
                "Ask a site administrator to enable the VizQL Data Service",
                "Use get_view_data to read the data behind a view instead",
            ],
        },
        ResourceNotAllowedError: {
            "type": "NotAllowed",
            "message": "This resource is outside what the server is configured to access.",
            "suggestions": [
                "Use one of the projects, data sources or workbooks returned by the list tools",
            ],
        },
        InvalidQueryError: {
            "type": "InvalidQuery",
            "message": "The query is not valid.",
            "suggestions": [
                "Include at least one entry in the query's 'fields' list",
                "Use get_datasource_metadata to find the field captions",
            ],
        },
        ConfigurationError: {
            "type": "ConfigurationError",
            "message": "The server configuration is invalid.",
            "suggestions": [
                "Check the environment variables and the .env file",
            ],
        },
    }

    API_ERRORS: Dict[int, dict] = {
        400: {
            "type": "BadRequest",
            "message": "Tableau rejected the request as invalid.",
            "suggestions": [
                "Check the identifiers and parameters passed to the tool",
                "For query_datasource, read the data source metadata and use exact field captions",
            ],
        },
        403: {
            "type": "PermissionDenied",
            "message": "You don't have permission to access this resource.",
            "suggestions": [
                "Ask the content owner for access",
                "For connected apps, check the JWT scopes grant this operation",
            ],
        },
        404: {
            "type": "NotFound",
            "message": "The resource was not found.",
            "suggestions": [
                "Verify the id or LUID is correct",
                "Use the list tools to find the resource",
            ],
        },
    }

    @staticmethod
    def handle_error(error: Exception) -> Tuple[str, str, List[str]]:
        """Match an exception to a known error kind.

        Returns
        -------
        Tuple[str, str, List[str]]
            ``(error_type, user_message, suggestions)``
        """
        # A page that failed to authenticate is an auth problem, not a data one.
        if isinstance(error, PaginationError) and isinstance(error.__cause__, (AuthenticationError, SigningError)):
            error = error.__cause__

        if isinstance(error, ApiError) and error.status_code in ErrorHandler.API_ERRORS:
            info = ErrorHandler.API_ERRORS[error.status_code]
            return info["type"], info["message"], info["suggestions"]

        for cls in type(error).__mro__:
            info = ErrorHandler.ERRORS.get(cls)
            if info:
                return info["type"], info["message"], info["suggestions"]

        return (
            "TableauError",
            "An error occurred while talking to Tableau.",
            [
                "Check the error details above",
                "Try the operation again; it might be a temporary problem",
            ],
        )

    @staticmethod
    def format_error_response(
        error: Exception,
        error_type: str,
        message: str,
        suggestions: List[str],
        query: Optional[Any] = None,
    ) -> str:
        """Render a user-facing error response string.

        Parameters
        ----------
        error:
            Original exception (used for the technical details section).
        error_type:
            Short error category label.
        message:
            User-friendly description of what went wrong.
        suggestions:
            Ordered list of things to try.
        query:
            Optional VizQL query that caused the error (shown as JSON).
        """
        response = f"❌ **{error_type}**\n\n{message}\n\n"

        if query:
            response += f"**Query:**\n```json\n{json.dumps(query, indent=2)}\n```\n\n"

        response += "**💡 Suggestions:**\n"
        for i, suggestion in enumerate(suggestions, 1):
            response += f"{i}. {suggestion}\n"

        response += f"\n**Technical Details:**\n{error}"
        return response

    @staticmethod
    def respond(error: Exception, query: Optional[Any] = None) -> str:
        """``handle_error`` then ``format_error_response``."""
        error_type, message, suggestions = ErrorHandler.handle_error(error)
        return ErrorHandler.format_error_response(error, error_type, message, suggestions, query)
