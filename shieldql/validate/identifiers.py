"""Identifier validation and semantic ↔ storage name mapping.

Table and column names end up in SQL *text*; they cannot be bound as query
parameters.  :class:`IdentifierValidator` is the gate every identifier passes
before the query builder quotes and embeds it.

Validation is a denylist heuristic layered on a strict allowlist:

1. the name must match ``^[A-Za-z_][A-Za-z0-9_]*$``;
2. it must not contain a dangerous SQL keyword as a whole word;
3. it must not contain an injection marker (quotes, ``;``, comment markers,
   whitespace-delimited ``OR``/``AND``, sub-selects).

It is not a SQL parser.  Identifiers that pass are additionally quoted by the
dialect compiler.

Semantic names (what callers and policies use, typically ``camelCase``) are
translated to storage names (what the database uses, typically
``snake_case``) through an explicit mapping table, falling back to automatic
case conversion unless ``strict`` is set::

    ids = IdentifierValidator({"userId": "user_id"}, strict=False)
    ids.to_storage("userId")       # 'user_id'   (explicit)
    ids.to_storage("firstName")    # 'first_name' (converted)
    ids.to_semantic("created_at")  # 'createdAt'
"""
from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

from shieldql.errors import IdentifierRejectedError
from shieldql.match.patterns import is_sequence

logger = logging.getLogger(__name__)

IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

DANGEROUS_KEYWORDS: tuple[str, ...] = (
    "SELECT",
    "INSERT",
    "UPDATE",
    "DELETE",
    "DROP",
    "CREATE",
    "ALTER",
    "UNION",
    "WHERE",
    "FROM",
    "JOIN",
    "EXEC",
    "EXECUTE",
    "TRUNCATE",
)

_KEYWORD_RE = re.compile(r"\b(" + "|".join(DANGEROUS_KEYWORDS) + r")\b")

_INJECTION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"['\";]"),
    re.compile(r"--"),
    re.compile(r"/\*"),
    re.compile(r"\*/"),
    re.compile(r"\s+(OR|AND)\s+", re.IGNORECASE),
    re.compile(r"\(\s*SELECT", re.IGNORECASE),
    re.compile(r"UNION\s+SELECT", re.IGNORECASE),
)

_CAMEL_BOUNDARY_RE = re.compile(r"(?<!^)(?=[A-Z])")
_SNAKE_SEGMENT_RE = re.compile(r"(?<=[a-z0-9])_([a-z0-9])")

DEFAULT_MAPPINGS: dict[str, str] = {
    "id": "id",
    "userId": "user_id",
    "partnerId": "partner_id",
    "orderId": "order_id",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "deletedAt": "deleted_at",
    "firstName": "first_name",
    "lastName": "last_name",
    "emailAddress": "email_address",
    "phoneNumber": "phone_number",
}


def to_snake_case(name: str) -> str:
    """``firstName`` → ``first_name``."""
    return _CAMEL_BOUNDARY_RE.sub("_", name).lower()


def to_camel_case(name: str) -> str:
    """``first_name`` → ``firstName``; leading underscores are kept."""
    return _SNAKE_SEGMENT_RE.sub(lambda m: m.group(1).upper(), name)


def rejection_reason(name: Any) -> str | None:
    """Return why ``name`` is not a safe identifier, or ``None`` if it is."""
    if not isinstance(name, str) or not name:
        return "empty or non-string identifier"
    if not IDENTIFIER_RE.fullmatch(name):
        return "contains characters outside [A-Za-z0-9_] or starts with a digit"
    if _KEYWORD_RE.search(name.upper()):
        return "contains a reserved SQL keyword"
    for pattern in _INJECTION_PATTERNS:
        if pattern.search(name):
            return "contains a SQL injection pattern"
    return None


def is_valid_field_name(name: Any) -> bool:
    """Return ``True`` if ``name`` may be embedded in SQL text as an identifier."""
    return rejection_reason(name) is None


class IdentifierValidator:
    """Validates identifiers and maps them between semantic and storage names.

    Args:
        mappings: Explicit ``{semantic: storage}`` name table.
        strict: Reject names that are not explicitly mapped instead of
            converting them automatically.
        auto_convert: Convert unmapped names between ``camelCase`` and
            ``snake_case``.  When ``False`` they pass through unchanged.
    """

    def __init__(
        self,
        mappings: Mapping[str, str] | None = None,
        strict: bool = False,
        auto_convert: bool = True,
    ) -> None:
        self._to_storage: dict[str, str] = dict(mappings or {})
        self._to_semantic: dict[str, str] = {v: k for k, v in self._to_storage.items()}
        self.strict = strict
        self.auto_convert = auto_convert

    @classmethod
    def default(cls, strict: bool = False, **extra: str) -> IdentifierValidator:
        """Return a validator preloaded with common id / timestamp / name mappings."""
        return cls({**DEFAULT_MAPPINGS, **extra}, strict=strict)

    @property
    def mappings(self) -> dict[str, str]:
        return dict(self._to_storage)

    def valid_fields(self) -> list[str]:
        """Return the explicitly mapped semantic names."""
        return list(self._to_storage)

    is_valid_field_name = staticmethod(is_valid_field_name)

    def validate(self, name: Any, table: str | None = None, role: str | None = None) -> str:
        """Return ``name`` unchanged if it is a safe identifier.

        Raises:
            IdentifierRejectedError: Otherwise.
        """
        reason = rejection_reason(name)
        if reason is not None:
            raise IdentifierRejectedError(str(name), reason, table=table, role=role)
        return name

    # ------------------------------------------------------------------
    # Single names
    # ------------------------------------------------------------------

    def to_storage(self, name: str, table: str | None = None, role: str | None = None) -> str:
        """Translate a semantic name into a validated storage name.

        Raises:
            IdentifierRejectedError: If ``name`` is unsafe, or unmapped while
                ``strict`` is set.
        """
        self.validate(name, table=table, role=role)
        storage = self._to_storage.get(name)
        if storage is None:
            if self.strict:
                raise IdentifierRejectedError(name, "not an allowed field", table=table, role=role)
            storage = to_snake_case(name) if self.auto_convert else name
        # explicit targets and conversions are re-checked before use in SQL
        return self.validate(storage, table=table, role=role)

    def to_semantic(self, name: str) -> str:
        """Translate a storage name back into its semantic name.

        Raises:
            IdentifierRejectedError: If ``name`` is unmapped while ``strict``
                is set.
        """
        semantic = self._to_semantic.get(name)
        if semantic is not None:
            return semantic
        if self.strict:
            raise IdentifierRejectedError(name, "not an allowed field")
        return to_camel_case(name) if self.auto_convert else name

    # ------------------------------------------------------------------
    # Whole payloads
    # ------------------------------------------------------------------

    def map_to_storage(self, obj: Any) -> Any:
        """Rename every mapping key in ``obj`` to its storage name.

        Sequences are mapped element by element; other values (dates
        included) pass through.  Invalid keys are dropped with a warning, or
        raise when ``strict`` is set.

        Raises:
            IdentifierRejectedError: In strict mode, naming the offending key.
        """
        if is_sequence(obj):
            return [self.map_to_storage(item) for item in obj]
        if not isinstance(obj, Mapping):
            return obj
        result: dict[str, Any] = {}
        for key, value in obj.items():
            try:
                storage = self.to_storage(key)
            except IdentifierRejectedError as exc:
                if self.strict:
                    raise
                logger.warning("Skipping invalid field %r: %s", exc.identifier, exc.details["reason"])
                continue
            result[storage] = self.map_to_storage(value)
        return result

    def map_to_semantic(self, obj: Any) -> Any:
        """Rename every mapping key in ``obj`` to its semantic name.

        Raises:
            IdentifierRejectedError: In strict mode, for an unmapped key.
        """
        if is_sequence(obj):
            return [self.map_to_semantic(item) for item in obj]
        if not isinstance(obj, Mapping):
            return obj
        return {self.to_semantic(key): self.map_to_semantic(value) for key, value in obj.items()}
