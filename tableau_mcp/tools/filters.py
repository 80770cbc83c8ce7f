"""
tableau_mcp/tools/filters.py
============================

Filter grammar shared by every list-style tool.

Grammar
-------
A filter string is a comma-separated list of clauses; each clause is exactly
three colon-separated segments::

    field:operator:value[,field:operator:value...]

e.g. ``name:eq:Finance,createdAt:gt:2024-01-01``.  Dates are written without
a time of day, since a time would need a colon.

A value cannot contain a literal ``:`` or ``,``: there is no escaping.  The
REST API shares this limitation, so we reject such input rather than guess.

Validation
----------
Each field in a lexicon has a ``FieldType``; each type permits a subset of the
global ``FilterOperator`` enumeration:

=========  ==========================
STRING     eq, in
TEXT       eq, in, has
BOOLEAN    eq
NUMERIC    eq, gt, gte, lt, lte
TEMPORAL   eq, gt, gte, lt, lte
=========  ==========================

An operator token outside the enumeration is a *syntax* error; a known
operator the field's type does not allow, or a field the lexicon does not
know, is a *semantic* error.  Both report the clause position.

Field lists follow the REST API filtering reference:
https://help.tableau.com/current/api/rest_api/en-us/REST/rest_api_concepts_filtering_and_sorting.htm
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence

from ..errors import FilterSemanticError, FilterSyntaxError

CLAUSE_SEPARATOR = ","
SEGMENT_SEPARATOR = ":"


class FilterOperator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    HAS = "has"
    IN = "in"


class FieldType(Enum):
    STRING = "string"
    TEXT = "text"
    BOOLEAN = "boolean"
    NUMERIC = "numeric"
    TEMPORAL = "temporal"

    @property
    def operators(self) -> FrozenSet[FilterOperator]:
        return _OPERATORS_BY_TYPE[self]


_ORDERED = frozenset({
    FilterOperator.EQ,
    FilterOperator.GT,
    FilterOperator.GTE,
    FilterOperator.LT,
    FilterOperator.LTE,
})

_OPERATORS_BY_TYPE: Dict[FieldType, FrozenSet[FilterOperator]] = {
    FieldType.STRING: frozenset({FilterOperator.EQ, FilterOperator.IN}),
    FieldType.TEXT: frozenset({FilterOperator.EQ, FilterOperator.IN, FilterOperator.HAS}),
    FieldType.BOOLEAN: frozenset({FilterOperator.EQ}),
    FieldType.NUMERIC: _ORDERED,
    FieldType.TEMPORAL: _ORDERED,
}


FilterLexicon = Mapping[str, FieldType]


@dataclass(frozen=True)
class FilterClause:
    field: str
    operator: FilterOperator
    value: str

    def __str__(self) -> str:
        return SEGMENT_SEPARATOR.join((self.field, self.operator.value, self.value))


def parse_and_validate(filter_string: Optional[str], lexicon: FilterLexicon) -> List[FilterClause]:
    """Parse ``filter_string`` and check every clause against ``lexicon``.

    Returns the clauses in input order.  An empty or blank string yields
    an empty list.

    Raises
    ------
    FilterSyntaxError
        Wrong number of segments, an empty segment or an unknown operator.
    FilterSemanticError
        Unknown field, or an operator the field's type does not permit.
    """
    if filter_string is None or not filter_string.strip():
        return []

    clauses = []
    for position, raw in enumerate(filter_string.split(CLAUSE_SEPARATOR), start=1):
        clause = raw.strip()
        segments = clause.split(SEGMENT_SEPARATOR)
        if len(segments) != 3:
            raise FilterSyntaxError(
                f"Clause {position} '{clause}' must have the form field:operator:value "
                f"(found {len(segments)} segment(s); ':' and ',' cannot appear in values)",
                field=segments[0] if len(segments) > 1 else "",
                token=clause,
                position=position,
            )

        field_name, op_token, value = (segment.strip() for segment in segments)
        if not field_name or not op_token or not value:
            raise FilterSyntaxError(
                f"Clause {position} '{clause}' has an empty field, operator or value",
                field=field_name,
                token=clause,
                position=position,
            )

        try:
            operator = FilterOperator(op_token)
        except ValueError:
            valid = ", ".join(op.value for op in FilterOperator)
            raise FilterSyntaxError(
                f"Clause {position}: unknown operator '{op_token}' for field '{field_name}'. "
                f"Valid operators are: {valid}",
                field=field_name,
                token=op_token,
                position=position,
            ) from None

        field_type = lexicon.get(field_name)
        if field_type is None:
            raise FilterSemanticError(
                f"Clause {position}: unknown filter field '{field_name}'. "
                f"Supported fields are: {', '.join(lexicon)}",
                field=field_name,
                token=field_name,
                position=position,
            )

        if operator not in field_type.operators:
            allowed = ", ".join(sorted(op.value for op in field_type.operators))
            raise FilterSemanticError(
                f"Clause {position}: operator '{operator.value}' is not allowed for field "
                f"'{field_name}'. Allowed operators: {allowed}",
                field=field_name,
                token=operator.value,
                position=position,
            )

        clauses.append(FilterClause(field=field_name, operator=operator, value=value))

    return clauses


def serialize(clauses: Sequence[FilterClause]) -> str:
    """Join clauses back into a filter string, preserving order."""
    return CLAUSE_SEPARATOR.join(str(clause) for clause in clauses)


def validated_filter(filter_string: Optional[str], lexicon: FilterLexicon) -> Optional[str]:
    """Validate and normalise a filter for use as the ``filter`` query parameter.

    Returns ``None`` when there is nothing to filter on, so callers can omit
    the parameter entirely.
    """
    clauses = parse_and_validate(filter_string, lexicon)
    return serialize(clauses) if clauses else None


def describe_lexicon(lexicon: FilterLexicon) -> str:
    """Render a lexicon as a Markdown table for tool descriptions."""
    rows = ["| Field | Operators |", "|------|------|"]
    for name, field_type in lexicon.items():
        ops = ", ".join(op.value for op in FilterOperator if op in field_type.operators)
        rows.append(f"| {name} | {ops} |")
    return "\n".join(rows)


# ── Lexicons ──────────────────────────────────────────────────────────────────

DATASOURCE_FIELDS: Dict[str, FieldType] = {
    "name": FieldType.STRING,
    "contentUrl": FieldType.STRING,
    "projectName": FieldType.STRING,
    "ownerName": FieldType.STRING,
    "ownerEmail": FieldType.STRING,
    "type": FieldType.STRING,
    "tags": FieldType.STRING,
    "hasExtracts": FieldType.BOOLEAN,
    "isCertified": FieldType.BOOLEAN,
    "favoritesTotal": FieldType.NUMERIC,
    "size": FieldType.NUMERIC,
    "createdAt": FieldType.TEMPORAL,
    "updatedAt": FieldType.TEMPORAL,
}

WORKBOOK_FIELDS: Dict[str, FieldType] = {
    "name": FieldType.STRING,
    "contentUrl": FieldType.STRING,
    "projectName": FieldType.STRING,
    "ownerName": FieldType.STRING,
    "ownerEmail": FieldType.STRING,
    "tags": FieldType.STRING,
    "favoritesTotal": FieldType.NUMERIC,
    "size": FieldType.NUMERIC,
    "createdAt": FieldType.TEMPORAL,
    "updatedAt": FieldType.TEMPORAL,
}

VIEW_FIELDS: Dict[str, FieldType] = {
    "name": FieldType.STRING,
    "viewUrlName": FieldType.STRING,
    "contentUrl": FieldType.STRING,
    "projectName": FieldType.STRING,
    "ownerName": FieldType.STRING,
    "workbookName": FieldType.STRING,
    "tags": FieldType.STRING,
    "favoritesTotal": FieldType.NUMERIC,
    "createdAt": FieldType.TEMPORAL,
    "updatedAt": FieldType.TEMPORAL,
}

PROJECT_FIELDS: Dict[str, FieldType] = {
    "name": FieldType.STRING,
    "ownerDomain": FieldType.STRING,
    "ownerEmail": FieldType.STRING,
    "ownerName": FieldType.STRING,
    "parentProjectId": FieldType.STRING,
    "topLevelProject": FieldType.BOOLEAN,
    "createdAt": FieldType.TEMPORAL,
    "updatedAt": FieldType.TEMPORAL,
}

USER_FIELDS: Dict[str, FieldType] = {
    "name": FieldType.STRING,
    "siteRole": FieldType.STRING,
    "friendlyName": FieldType.TEXT,
    "lastLogin": FieldType.TEMPORAL,
}

GROUP_FIELDS: Dict[str, FieldType] = {
    "name": FieldType.TEXT,
    "domainName": FieldType.TEXT,
    "minimumSiteRole": FieldType.STRING,
    "isLocal": FieldType.BOOLEAN,
}
