from __future__ import annotations
import re
from typing import Optional
from auditsource.schema import SqlType

COMMITTED_VALUE_TOKEN = "{$committed_value}"

_OPTIONAL_CLAUSE = re.compile(r"\[([^\[\]]*)\]")


def format_literal(value: str, sql_type: SqlType) -> str:
    if sql_type in (SqlType.INTEGER, SqlType.BOOLEAN, SqlType.FLOATING_POINT):
        return value
    if sql_type is SqlType.TIMESTAMP:
        return f"TIMESTAMP '{value}'"
    return f"'{value}'"


def _substitute(clause: str, value: str, sql_type: SqlType) -> str:
    quoted = f"'{COMMITTED_VALUE_TOKEN}'"
    if quoted in clause:
        clause = clause.replace(quoted, f"'{value}'")
    return clause.replace(COMMITTED_VALUE_TOKEN, format_literal(value, sql_type))


def render_query_template(template: str, committed_value: Optional[str], sql_type: SqlType) -> str:
    """Resolve the optional-clause syntax of a configured query.

    ``SELECT * FROM t [WHERE c > '{$committed_value}'] ORDER BY c``

    Bracketed clauses are dropped while nothing has been committed; afterwards
    the brackets turn into spaces and the token is replaced. A token the
    template already quotes gets the raw value, a bare one gets a literal
    formatted for the cursor column type.
    """
    if committed_value is None:
        return _OPTIONAL_CLAUSE.sub("", template)
    rendered = _OPTIONAL_CLAUSE.sub(lambda m: f" {m.group(1)} ", template)
    return _substitute(rendered, committed_value, sql_type)


def build_query(explicit_query: Optional[str], table_name: Optional[str], cursor_column: str,
                cursor_type: SqlType, committed_value: Optional[str]) -> str:
    if explicit_query is not None:
        return explicit_query

    query = f"SELECT * FROM {table_name}"
    if committed_value is not None:
        query += f" WHERE {cursor_column} > {format_literal(committed_value, cursor_type)}"
    return query + f" ORDER BY {cursor_column}"
