"""
tableau_mcp/tools/formatters.py
===============================

Shared output formatting for tool results.

Listings and API payloads go back as indented JSON so the caller can read
ids and nested fields; tabular query results go back as a Markdown table.
"""

import json
from typing import Any, Dict, List


def format_as_json(data: Any) -> str:
    """Serialize a tool result as indented JSON."""
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


def format_as_table(data: List[Dict[str, Any]], max_rows: int = 100) -> str:
    """Format a list of row-dicts as a Markdown table.

    Parameters
    ----------
    data:
        List of row dictionaries.  Columns come from the first row.
    max_rows:
        Cap on rendered rows, to keep responses within the caller's context
        window.

    Returns
    -------
    str
        Markdown-formatted table string, including a footer with row count.
        Returns ``"No data returned"`` for empty inputs.

    Example
    -------
    >>> rows = [{"Region": "West", "SUM(Sales)": 125000}]
    >>> print(format_as_table(rows))
    | Region | SUM(Sales) |
    |------|------|
    | West | 125000 |
    <BLANKLINE>
    *1 rows*
    """
    if not data:
        return "No data returned"

    display_data = data[:max_rows]
    total_rows = len(data)
    columns = list(display_data[0].keys())

    header = "| " + " | ".join(str(col) for col in columns) + " |"
    separator = "|" + "|".join("------" for _ in columns) + "|"

    rows = []
    for row in display_data:
        values = []
        for col in columns:
            val = row.get(col, "")
            val_str = str(val) if val is not None else ""
            if len(val_str) > 50:
                val_str = val_str[:47] + "..."
            # Pipes would split the cell
            values.append(val_str.replace("|", "\\|"))
        rows.append("| " + " | ".join(values) + " |")

    table = "\n".join([header, separator] + rows)

    if total_rows > max_rows:
        table += f"\n\n*Showing {max_rows} of {total_rows} rows*"
    else:
        table += f"\n\n*{total_rows} rows*"

    return table
