"""
Query text safety checks for the graph store.

Structural queries arrive as SQL text. Reads must be a single SELECT/WITH
statement; writes through execute_write must be a single INSERT or a
WHERE-qualified UPDATE. Anything destructive is rejected before it
reaches the database.
"""

import re

FORBIDDEN_KEYWORDS = (
    "DELETE",
    "DROP",
    "ALTER",
    "CREATE",
    "REPLACE",
    "TRUNCATE",
    "ATTACH",
    "DETACH",
    "PRAGMA",
    "VACUUM",
    "REINDEX",
)

_FORBIDDEN_RE = re.compile(r"\b(" + "|".join(FORBIDDEN_KEYWORDS) + r")\b", re.IGNORECASE)
_STRING_LITERAL_RE = re.compile(r"'(?:[^']|'')*'")
_COMMENT_RE = re.compile(r"--[^\n]*|/\*.*?\*/", re.DOTALL)


class UnsafeQueryError(ValueError):
    """Raised when query text is outside the permitted operation set."""

    pass


def _strip_literals(query: str) -> str:
    # keywords inside string literals are data, not statements
    without_comments = _COMMENT_RE.sub(" ", query)
    return _STRING_LITERAL_RE.sub("''", without_comments)


def _single_statement(query: str) -> str:
    if not query or not query.strip():
        raise UnsafeQueryError("Query text must not be empty")
    stripped = _strip_literals(query).strip().rstrip(";").strip()
    if ";" in stripped:
        raise UnsafeQueryError("Multiple statements are not allowed")
    return stripped


def ensure_read_only(query: str) -> None:
    """Reject anything but a single SELECT/WITH statement.

    Raises:
        UnsafeQueryError: If the query could modify data
    """
    stripped = _single_statement(query)
    first = stripped.split(None, 1)[0].upper()
    if first not in ("SELECT", "WITH"):
        raise UnsafeQueryError(f"Only SELECT queries are allowed, got {first}")
    match = _FORBIDDEN_RE.search(stripped)
    if match:
        raise UnsafeQueryError(f"Forbidden keyword in query: {match.group(1).upper()}")
    if re.search(r"\b(INSERT|UPDATE)\b", stripped, re.IGNORECASE):
        raise UnsafeQueryError("Write keywords are not allowed in read queries")


def ensure_safe_write(query: str) -> None:
    """Allow a single INSERT, or an UPDATE that carries a WHERE clause.

    Raises:
        UnsafeQueryError: If the query is outside the permitted write set
    """
    stripped = _single_statement(query)
    first = stripped.split(None, 1)[0].upper()
    if first not in ("INSERT", "UPDATE"):
        raise UnsafeQueryError(f"Write operation {first} is not permitted")
    match = _FORBIDDEN_RE.search(stripped)
    if match:
        raise UnsafeQueryError(f"Forbidden keyword in query: {match.group(1).upper()}")
    if first == "UPDATE" and not re.search(r"\bWHERE\b", stripped, re.IGNORECASE):
        raise UnsafeQueryError("UPDATE without WHERE is not permitted")
