from __future__ import annotations

import re
from enum import Enum
from typing import Any, Optional


class RelAlgError(Exception):
    """Base error for relational algebra engine."""

class SchemaError(RelAlgError):
    pass

class CompatibilityError(SchemaError):
    """Raised by union/minus when the two schemas do not line up."""

class DomainError(RelAlgError):
    pass

class ParseError(RelAlgError):
    pass


def _assert(cond: bool, msg: str, err=RelAlgError):
    if not cond:
        raise err(msg)


INT_RE = re.compile(r"-?\d+")
REAL_RE = re.compile(r"-?(?:\d+\.\d*|\d*\.\d+)(?:[eE][-+]?\d+)?")


#############################
# Domain descriptors
#############################

class Domain(Enum):
    """Value kind expected at an attribute position."""
    INTEGER = "Integer"
    REAL = "Real"
    TEXT = "String"

    @classmethod
    def parse(cls, name: str) -> "Domain":
        dom = _DOMAIN_NAMES.get(name.strip().lower())
        _assert(dom is not None, f"Unknown domain {name!r}", SchemaError)
        return dom

    @classmethod
    def of(cls, value: Any) -> Optional["Domain"]:
        # bool is an int subclass but never a valid INTEGER
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return cls.INTEGER
        if isinstance(value, float):
            return cls.REAL
        if isinstance(value, str):
            return cls.TEXT
        return None

    def accepts(self, value: Any) -> bool:
        return Domain.of(value) is self

    def coerce(self, literal: str) -> Any:
        """Turn a condition literal into a value of this domain."""
        text = unquote(literal)
        if self is Domain.TEXT:
            return text
        try:
            return int(text) if self is Domain.INTEGER else float(text)
        except ValueError:
            raise DomainError(f"Literal {literal!r} is not a valid {self.value}") from None

    def __str__(self):
        return self.value


_DOMAIN_NAMES = {
    "integer": Domain.INTEGER, "int": Domain.INTEGER, "long": Domain.INTEGER,
    "short": Domain.INTEGER, "byte": Domain.INTEGER,
    "real": Domain.REAL, "double": Domain.REAL, "float": Domain.REAL,
    "string": Domain.TEXT, "str": Domain.TEXT, "text": Domain.TEXT,
    "character": Domain.TEXT, "char": Domain.TEXT, "varchar": Domain.TEXT,
}


def is_quoted(s: str) -> bool:
    return len(s) >= 2 and s[0] == s[-1] and s[0] in ("'", '"')

def unquote(s: str) -> str:
    return s[1:-1] if is_quoted(s) else s

def is_numeric(s: str) -> bool:
    return bool(INT_RE.fullmatch(s) or REAL_RE.fullmatch(s))

def coerce_literal(s: str):
    """Best-effort conversion of a literal with no domain to compare against."""
    s = s.strip()
    if is_quoted(s):
        return s[1:-1]
    if INT_RE.fullmatch(s): return int(s)
    if REAL_RE.fullmatch(s): return float(s)
    return s
