from typing import FrozenSet, List, Set

import re
import sqlglot
from sqlglot import expressions as exp
from sqlglot.errors import SqlglotError

from .errors import RejectionReason, SQLRejected


ALLOWLISTED_TABLES: FrozenSet[str] = frozenset({
    "till_summaries",
    "orders",
    "order_items",
    "products",
    "locations",
})

FORBIDDEN_KEYWORDS = (
    "INSERT", "UPDATE", "DELETE", "DROP", "CREATE", "ALTER",
    "TRUNCATE", "EXEC", "CALL", "GRANT", "REVOKE",
)

MAX_LIMIT = 1000
DEFAULT_LIMIT = 100

_FORBIDDEN_RE = re.compile(r"\b(" + "|".join(FORBIDDEN_KEYWORDS) + r")\b", flags=re.IGNORECASE)
_SYSTEM_SCHEMA_RE = re.compile(r"\b(pg_\w*|information_schema|sys|mysql)\b", flags=re.IGNORECASE)
_SELECT_RE = re.compile(r"^select\b", flags=re.IGNORECASE)
# Quoted strings and identifiers are matched first so comment markers inside
# them are left alone.
_TOKEN_RE = re.compile(
    r"'(?:[^']|'')*'"
    r'|"(?:[^"]|"")*"'
    r"|--[^\n]*"
    r"|/\*.*?\*/"
    r"|;",
    flags=re.DOTALL,
)


def strip_comments(sql: str) -> str:
    def _drop(match: "re.Match[str]") -> str:
        token = match.group(0)
        if token.startswith("--") or token.startswith("/*"):
            return " "
        return token

    return _TOKEN_RE.sub(_drop, sql).strip()


def split_statements(sql: str) -> List[str]:
    """Split on semicolons outside quoted strings, dropping empty fragments."""
    parts: List[str] = []
    start = 0
    for match in _TOKEN_RE.finditer(sql):
        if match.group(0) == ";":
            parts.append(sql[start:match.start()])
            start = match.end()
    parts.append(sql[start:])
    return [part for part in parts if part.strip()]


def referenced_tables(tree: exp.Expression) -> Set[str]:
    """Base tables a parsed statement reads from, lower-cased and unqualified.

    CTE names defined inside the statement and table-valued function calls are
    not base tables and are left out.
    """
    cte_names = {cte.alias_or_name.lower() for cte in tree.find_all(exp.CTE)}
    tables: Set[str] = set()
    for table in tree.find_all(exp.Table):
        if not isinstance(table.this, exp.Identifier):
            continue
        name = table.name.lower()
        if name and name not in cte_names:
            tables.add(name)
    return tables


def _row_count(node: exp.Expression) -> int:
    value = node.args.get("count") if isinstance(node, exp.Fetch) else node.args.get("expression")
    # Expressions, parameters and LIMIT ALL cannot be bounded statically.
    if isinstance(value, exp.Literal) and value.is_int:
        return min(int(value.name), MAX_LIMIT)
    return MAX_LIMIT


def clamp_limit(tree: exp.Expression) -> str:
    """Clamp every LIMIT/FETCH to MAX_LIMIT, give the outer query one, render."""
    for node in list(tree.find_all(exp.Limit, exp.Fetch)):
        node.replace(exp.Limit(expression=exp.Literal.number(_row_count(node))))
    if tree.args.get("limit") is None:
        tree.set("limit", exp.Limit(expression=exp.Literal.number(DEFAULT_LIMIT)))
    return tree.sql(dialect="postgres", comments=False)


def harden(raw_sql: str) -> str:
    """Validate a candidate statement and return its row-capped rewrite.

    Raises SQLRejected with the first failing check, in this order: statement
    count, forbidden keywords, system schemas, SELECT prefix, table allowlist.
    """
    sql = strip_comments(raw_sql or "")

    if len(split_statements(sql)) > 1:
        raise SQLRejected(RejectionReason.MULTIPLE_STATEMENTS, "Multiple SQL statements are not allowed")
    sql = sql.rstrip().rstrip(";").rstrip()

    keyword = _FORBIDDEN_RE.search(sql)
    if keyword:
        raise SQLRejected(
            RejectionReason.FORBIDDEN_KEYWORD,
            f"Query contains forbidden keyword: {keyword.group(1).upper()}",
        )

    if _SYSTEM_SCHEMA_RE.search(sql):
        raise SQLRejected(RejectionReason.SYSTEM_SCHEMA_ACCESS, "Access to system schemas is not allowed")

    if not _SELECT_RE.match(sql):
        raise SQLRejected(RejectionReason.NOT_A_SELECT, "Query must be a SELECT statement")

    try:
        tree = sqlglot.parse_one(sql, read="postgres")
    except SqlglotError as e:
        raise SQLRejected(RejectionReason.UNPARSEABLE, f"Query could not be parsed: {e}") from e
    if not isinstance(tree, (exp.Select, exp.Union, exp.Intersect, exp.Except)):
        raise SQLRejected(RejectionReason.NOT_A_SELECT, "Query must be a SELECT statement")

    for name in sorted(referenced_tables(tree)):
        if name not in ALLOWLISTED_TABLES:
            raise SQLRejected(RejectionReason.TABLE_NOT_ALLOWED, f"Table not allowed: {name}", table=name)

    return clamp_limit(tree)
