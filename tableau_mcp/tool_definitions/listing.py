"""
tableau_mcp/tool_definitions/listing.py
=======================================

The flow every list tool shares:

1. validate the caller's filter against the tool's lexicon (no request is
   made for an invalid filter);
2. page through the endpoint up to ``min(limit, MAX_RESULT_LIMIT)`` items;
3. drop items outside the bounded context;
4. explain an empty result instead of returning ``[]``.
"""

import inspect
import logging
from typing import Any, Callable, List, Mapping, Optional

from ..errors import TableauMcpError
from ..tools.filters import FieldType, FilterLexicon, describe_lexicon, validated_filter
from ..tools.formatters import format_as_json
from ..tools.pagination import fetch_all
from ..tools.toolkit import Toolkit

logger = logging.getLogger(__name__)


def filter_examples(lexicon: FilterLexicon) -> List[str]:
    """Example filters the lexicon accepts, with a date clause when it has a date field."""
    examples = ["name:eq:Sales"]
    temporal = next((name for name, kind in lexicon.items() if kind is FieldType.TEMPORAL), None)
    if temporal:
        examples.append(f"name:eq:Sales,{temporal}:gt:2024-01-01")
    return examples


def filter_help(lexicon: FilterLexicon) -> str:
    examples = " or ".join(f"``{example}``" for example in filter_examples(lexicon))
    return (
        "Filter syntax: ``field:operator:value``, clauses separated by commas, "
        f"e.g. {examples}. "
        "Values cannot contain ':' or ',' (there is no escaping), so dates are "
        "given as YYYY-MM-DD and a time of day cannot be expressed. "
        "List values for the in operator are written [a|b]."
    )


def with_filter_help(lexicon: FilterLexicon) -> Callable:
    """Append the filter syntax and the lexicon's fields to a tool's docstring."""
    def decorator(fn):
        fn.__doc__ = f"{inspect.cleandoc(fn.__doc__ or '')}\n\n{filter_help(lexicon)}\n\n{describe_lexicon(lexicon)}\n"
        return fn
    return decorator


async def list_resources(
    toolkit: Toolkit,
    list_page: Callable,
    *,
    plural: str,
    lexicon: FilterLexicon,
    filter: str = "",
    page_size: Optional[int] = None,
    limit: Optional[int] = None,
    allow: Optional[Callable[[Mapping[str, Any]], bool]] = None,
) -> str:
    """Run a list tool end to end and return its response text.

    Parameters
    ----------
    list_page:
        ``TableauClient`` list method: ``(filter, page_size, page_number) -> Page``.
    plural:
        Human name of the resource for messages, e.g. ``"data sources"``.
    allow:
        Bounded-context predicate; ``None`` keeps every item.
    """
    try:
        filter_string = validated_filter(filter, lexicon)
        items = await fetch_all(
            lambda page_number: list_page(filter_string, page_size, page_number),
            toolkit.result_cap(limit),
        )
    except TableauMcpError as e:
        return toolkit.error_handler.respond(e)

    if not items:
        return (
            f"No {plural} were found. Either none exist or you do not have permission to view them."
        )

    if allow is not None:
        allowed = [item for item in items if allow(item)]
        if not allowed:
            return (
                f"The set of allowed {plural} is limited by the server configuration. "
                f"While {plural} were found, they were all filtered out by the server configuration."
            )
        if len(allowed) < len(items):
            logger.debug("Bounded context removed %d of %d %s", len(items) - len(allowed), len(items), plural)
        items = allowed

    return format_as_json(items)
