from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from relation_types import (
    Domain, DomainError, ParseError, SchemaError, _assert, coerce_literal, is_numeric, is_quoted,
)

COMPARISONS = ("==", "!=", "<", "<=", ">", ">=")
BOOLEANS = ("&", "|")

# comparisons bind tightest, then &, then |
PRECEDENCE = {op: 3 for op in COMPARISONS}
PRECEDENCE.update({"&": 2, "|": 1})

TOKEN_RE = re.compile(r"'[^']*'|\"[^\"]*\"|\S+")

Instr = Tuple[str, Any]


def tokenize(condition: Optional[str]) -> List[str]:
    if condition is None or not condition.strip():
        return []
    tokens = TOKEN_RE.findall(condition)
    for tok in tokens:
        if not is_quoted(tok) and ("(" in tok or ")" in tok):
            raise ParseError(f"Parentheses are not supported in conditions: {condition!r}")
    return tokens

def precedence(token: str) -> int:
    return PRECEDENCE.get(token, 0)

def infix2postfix(condition: Optional[str]) -> List[str]:
    """Convert an infix condition into postfix tokens, no parentheses.
    Ex: "1979 < year & year < 1990" --> ["1979", "year", "<", "year", "1990", "<", "&"]
    """
    out: List[str] = []; ops: List[str] = []
    for tok in tokenize(condition):
        if precedence(tok) == 0:
            out.append(tok)
            continue
        while ops and precedence(ops[-1]) >= precedence(tok):
            out.append(ops.pop())
        ops.append(tok)
    while ops:
        out.append(ops.pop())
    return out

def compare(x, op: str, y) -> bool:
    try:
        if op == "==": return x == y
        if op == "!=": return x != y
        if op == "<": return x < y
        if op == "<=": return x <= y
        if op == ">": return x > y
        if op == ">=": return x >= y
    except TypeError:
        raise DomainError(f"Cannot compare {x!r} {op} {y!r}") from None
    raise ParseError(f"Unknown comparison {op}")


#############################
# Condition Evaluator
#############################

_BOOL = object()


class ConditionEvaluator:
    """Compile a flat boolean condition against a schema and evaluate it per tuple.

    `positions` maps every name the condition may use (plain or qualified) to a
    tuple position; `domains` gives the domain at each position. Operands that
    are not attribute names are literals, coerced to the domain of the attribute
    they are compared with.
    """

    def __init__(self, positions: Dict[str, int], domains: Sequence[Domain], condition: Optional[str]):
        self.positions = positions
        self.domains = list(domains)
        self.condition = condition
        self.postfix = infix2postfix(condition)
        self.comparisons: List[Tuple[str, Instr, Instr]] = []
        self.connectives: List[str] = []
        self.program = self._compile()

    @classmethod
    def for_schema(cls, attributes: Sequence[str], domains: Sequence[Domain], condition: Optional[str]):
        return cls({a: i for i, a in enumerate(attributes)}, domains, condition)

    @property
    def is_empty(self) -> bool:
        return not self.program

    def eval_tuple(self, tup: Sequence[Any]) -> bool:
        if not self.program:
            return True
        stack: List[Any] = []
        for kind, arg in self.program:
            if kind == "ATTR":
                stack.append(tup[arg])
            elif kind == "CONST":
                stack.append(arg)
            elif kind == "CMP":
                y = stack.pop(); x = stack.pop()
                stack.append(compare(x, arg, y))
            else:
                b = stack.pop(); a = stack.pop()
                stack.append((a and b) if arg == "&" else (a or b))
        return bool(stack.pop())

    # The symbolic pass mirrors the runtime stack, so a malformed condition is
    # rejected before any tuple is looked at.
    def _compile(self) -> List[Instr]:
        program: List[Instr] = []
        pending: List[Any] = []
        for tok in self.postfix:
            if tok in COMPARISONS:
                _assert(len(pending) >= 2, f"Comparison {tok!r} is missing an operand in {self.condition!r}", ParseError)
                right = pending.pop(); left = pending.pop()
                _assert(left is not _BOOL and right is not _BOOL,
                        f"Comparison {tok!r} applied to a boolean in {self.condition!r}", ParseError)
                lhs, rhs = self._resolve_pair(left, right)
                program.extend((lhs, rhs, ("CMP", tok)))
                self.comparisons.append((tok, lhs, rhs))
                pending.append(_BOOL)
            elif tok in BOOLEANS:
                _assert(len(pending) >= 2, f"Operator {tok!r} is missing an operand in {self.condition!r}", ParseError)
                right = pending.pop(); left = pending.pop()
                _assert(left is _BOOL and right is _BOOL,
                        f"Operator {tok!r} expects two comparisons in {self.condition!r}", ParseError)
                program.append(("BOOL", tok))
                self.connectives.append(tok)
                pending.append(_BOOL)
            else:
                pending.append(tok)
        if pending:
            _assert(len(pending) == 1 and pending[0] is _BOOL, f"Malformed condition {self.condition!r}", ParseError)
        return program

    def _resolve_pair(self, left: str, right: str) -> Tuple[Instr, Instr]:
        lpos = self._position(left); rpos = self._position(right)
        if lpos is not None and rpos is not None:
            return ("ATTR", lpos), ("ATTR", rpos)
        if lpos is not None:
            return ("ATTR", lpos), ("CONST", self._literal(right, self.domains[lpos]))
        if rpos is not None:
            return ("CONST", self._literal(left, self.domains[rpos])), ("ATTR", rpos)
        for tok in (left, right):
            _assert(is_quoted(tok) or is_numeric(tok), f"Unknown attribute {tok!r} in condition", SchemaError)
        return ("CONST", coerce_literal(left)), ("CONST", coerce_literal(right))

    @staticmethod
    def _literal(token: str, domain: Domain):
        try:
            return domain.coerce(token)
        except DomainError:
            # a bare word that is no value of the domain was meant as an attribute
            if not (is_quoted(token) or is_numeric(token)):
                raise SchemaError(f"Unknown attribute {token!r} in condition") from None
            # numbers compare across INTEGER and REAL, e.g. year > 1976.5
            if is_numeric(token) and domain in (Domain.INTEGER, Domain.REAL):
                return coerce_literal(token)
            raise

    def _position(self, token: str) -> Optional[int]:
        if is_quoted(token):
            return None
        return self.positions.get(token)

    def __repr__(self):
        return f"ConditionEvaluator({' '.join(self.postfix)!r})"
