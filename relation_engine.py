from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from condition import ConditionEvaluator
from key_index import KeyIndex, SortedKeyIndex
from relation_types import CompatibilityError, Domain, SchemaError, _assert

logger = logging.getLogger(__name__)

DEFAULT_MAX_WIDTH = 24
# second occurrence of a join attribute becomes e.g. "s_name"
JOIN_RENAME_SEPARATOR = "_"
# conditions refer to the other join operand as e.g. "s.name" or "studio.name"
JOIN_QUALIFIER_SEPARATOR = "."
# derived relations are named e.g. "movie_0", then "movie_0_1"
NAME_COUNTER_SEPARATOR = "_"

Row = Tuple[Any, ...]
Trace = Callable[[str], None]


class TempNamer:
    """Names derived relations: source name, a separator and a running counter."""

    def __init__(self, start: int = 0):
        self.count = start

    def next_name(self, base: str) -> str:
        name = f"{base}{NAME_COUNTER_SEPARATOR}{self.count}"
        self.count += 1
        return name


def log_trace(line: str) -> None:
    logger.info(line)


class Relation:
    """A named relation: typed attributes, a primary key, tuples in insertion
    order and an index from key values to tuples.

    Only `insert` mutates a relation. The algebraic operators return new
    relations that share this relation's namer and trace collaborators.
    """

    def __init__(
        self,
        name: str,
        attributes: Sequence[str],
        domains: Sequence[Union[Domain, str]],
        key: Optional[Sequence[str]] = None,
        *,
        namer: Optional[TempNamer] = None,
        trace: Optional[Trace] = None,
        index_factory: Callable[[], KeyIndex] = SortedKeyIndex,
    ):
        attributes = list(attributes)
        domains = [d if isinstance(d, Domain) else Domain.parse(d) for d in domains]
        _assert(len(attributes) == len(domains),
                f"{name}: {len(attributes)} attributes but {len(domains)} domains", SchemaError)
        _assert(len(set(attributes)) == len(attributes), f"{name}: duplicate attribute names in {attributes}", SchemaError)
        if key is not None:
            key = list(key)
            _assert(key, f"{name}: primary key must name at least one attribute", SchemaError)
            for k in key:
                _assert(k in attributes, f"{name}: key attribute {k!r} not in {attributes}", SchemaError)

        self.name = name
        self._attributes = tuple(attributes)
        self._domains = tuple(domains)
        self._key = tuple(key) if key is not None else None
        self._key_pos = [attributes.index(k) for k in key] if key is not None else None
        self._tuples: List[Row] = []
        self._index_factory = index_factory
        self._index = index_factory()
        self.namer = namer if namer is not None else TempNamer()
        self.trace = trace if trace is not None else log_trace

    @classmethod
    def from_strings(cls, name: str, attributes: str, domains: str, key: str, **kwargs) -> "Relation":
        """Build from space separated name, domain and key lists.
        #usage Relation.from_strings("movie", "title year studioNo", "String Integer Integer", "title")
        """
        rel = cls(name, attributes.split(), domains.split(), key.split(), **kwargs)
        rel.trace(f"DDL> create table {name} ({attributes})")
        return rel

    @classmethod
    def like(cls, rel: "Relation", suffix: str) -> "Relation":
        """Empty relation with the metadata of `rel`, named rel.name + suffix."""
        return cls(rel.name + suffix, rel._attributes, rel._domains, rel._key,
                   namer=rel.namer, trace=rel.trace, index_factory=rel._index_factory)

    @property
    def attributes(self) -> Tuple[str, ...]:
        return self._attributes

    @property
    def domains(self) -> Tuple[Domain, ...]:
        return self._domains

    @property
    def key(self) -> Optional[Tuple[str, ...]]:
        return self._key

    @property
    def tuples(self) -> Tuple[Row, ...]:
        return tuple(self._tuples)

    @property
    def index(self) -> KeyIndex:
        return self._index

    def __len__(self) -> int:
        return len(self._tuples)

    def __iter__(self) -> Iterator[Row]:
        return iter(list(self._tuples))

    def __repr__(self):
        return f"Relation({self.name!r}, {list(self._attributes)}, key={self._key}, {len(self)} tuples)"

    ########################
    # Data manipulation
    ########################

    def insert(self, tup: Iterable[Any]) -> bool:
        """Insert a tuple. Returns False, leaving the relation untouched, when the
        tuple has the wrong arity, a value outside its domain or a duplicate key.
        #usage movie.insert(("Star_Wars", 1977, 124, "T", "Fox", 12345))
        """
        tup = tuple(tup)
        self.trace(f"DML> insert into {self.name} values ( {list(tup)} )")

        if not self._type_check(tup):
            logger.warning("insert into %s rejected: %r does not match domains %s",
                           self.name, tup, [str(d) for d in self._domains])
            return False
        if self._key_pos is not None:
            key_val = self._key_of(tup)
            if key_val in self._index:
                logger.warning("insert into %s rejected: duplicate key %r", self.name, key_val)
                return False
            self._index.insert(key_val, tup)
        self._tuples.append(tup)
        return True

    def lookup(self, *key_values: Any) -> Optional[Row]:
        """Exact match on the primary key, values given in key order."""
        _assert(self._key is not None, f"{self.name} has no primary key", SchemaError)
        _assert(len(key_values) == len(self._key),
                f"{self.name}: key {list(self._key)} needs {len(self._key)} values", SchemaError)
        return self._index.lookup(key_values)

    ########################
    # Relational algebra
    ########################

    def project(self, attributes: Union[str, Sequence[str]]) -> "Relation":
        """Keep only the given attributes, in the given order. Duplicates are kept.
        #usage movie.project("title year studioNo")
        """
        names = _split_names(attributes)
        self.trace(f"RA> {self.name}.project ({' '.join(names)})")
        _assert(names, f"{self.name}.project: empty attribute list", SchemaError)

        col_pos = self._match(names)
        col_domain = [self._domains[j] for j in col_pos]
        new_key = None
        if self._key is not None and all(k in names for k in self._key):
            new_key = list(self._key)

        rows = [tuple(tup[j] for j in col_pos) for tup in self._tuples]
        return self._derive(names, col_domain, new_key, rows)

    def select(self, condition: Optional[str]) -> "Relation":
        """Keep the tuples satisfying the condition; None or "" keeps all.
        #usage movie.select("1979 < year & year < 1990")
        """
        self.trace(f"RA> {self.name}.select ({condition})")
        evaluator = ConditionEvaluator.for_schema(self._attributes, self._domains, condition)
        rows = [tup for tup in self._tuples if evaluator.eval_tuple(tup)]
        return self._derive(self._attributes, self._domains, self._key, rows)

    def union(self, other: "Relation") -> "Relation":
        """All tuples of this relation, then the tuples of `other` not equal to any
        of them. Duplicates already inside either operand are left alone.
        #usage movie.union(show)
        """
        self.trace(f"RA> {self.name}.union ({other.name})")
        self._check_compatible(other, "union")

        mine = set(self._tuples)
        rows = list(self._tuples)
        rows.extend(tup for tup in other._tuples if tup not in mine)
        return self._derive(self._attributes, self._domains, self._key, rows)

    def minus(self, other: "Relation") -> "Relation":
        """#usage movie.minus(show)"""
        self.trace(f"RA> {self.name}.minus ({other.name})")
        self._check_compatible(other, "minus")

        theirs = set(other._tuples)
        rows = [tup for tup in self._tuples if tup not in theirs]
        return self._derive(self._attributes, self._domains, self._key, rows)

    def join(self, condition: Optional[str], other: "Relation") -> "Relation":
        """Join with `other` on a condition; None gives the cross product.

        Names in the condition resolve against this relation first; qualify them
        with the other relation's initial or name ("s.name", "studio.name") to
        reach the other one. In the result a clashing attribute of `other` is
        renamed with the same initial ("s_name").
        #usage movie.join("studioNo == name", studio)
        #usage movieStar.join("name == s.name", starsIn)
        """
        self.trace(f"RA> {self.name}.join ({condition}, {other.name})")

        attributes, renamed = self._join_schema(other)
        domains = self._domains + other._domains
        evaluator = ConditionEvaluator(self._join_positions(other, renamed), domains, condition)

        key = None
        if self._key is not None and other._key is not None:
            key = list(self._key) + [renamed[k] for k in other._key]

        feeds = self._index_plan(evaluator, other)
        rows: List[Row] = []
        if feeds is not None:
            logger.debug("%s.join: index lookup on %s.%s", self.name, other.name, list(other._key))
            for tup in self._tuples:
                match = other._index.lookup(tuple(tup[i] for i in feeds))
                if match is not None and evaluator.eval_tuple(tup + match):
                    rows.append(tup + match)
        else:
            logger.debug("%s.join: nested loop over %s", self.name, other.name)
            for tup in self._tuples:
                for tup2 in other._tuples:
                    joined = tup + tup2
                    if evaluator.eval_tuple(joined):
                        rows.append(joined)

        return self._derive(attributes, domains, key, rows)

    def compatible(self, other: "Relation") -> bool:
        """Same number of attributes, with equal names (ignoring case) and domains."""
        if len(self._attributes) != len(other._attributes):
            return False
        for a, b in zip(self._attributes, other._attributes):
            if a.lower() != b.lower():
                return False
        return self._domains == other._domains

    ########################
    # Output
    ########################

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "attributes": list(self._attributes),
            "domains": [str(d) for d in self._domains],
            "key": list(self._key) if self._key is not None else None,
            "tuples": [list(t) for t in self._tuples],
        }

    def to_csv(self, delimiter: str = ",") -> str:
        out = [delimiter.join(self._attributes)]
        for t in self._tuples:
            out.append(delimiter.join(map(_to_str, t)))
        return "\n".join(out)

    def pretty(self, max_width: int = DEFAULT_MAX_WIDTH, show_domains: bool = False) -> str:
        cols = list(self._attributes)
        header = [cols] + ([[str(d) for d in self._domains]] if show_domains else [])
        data = header + [list(map(_to_str, t)) for t in self._tuples]
        widths = [0] * len(cols)
        for row in data:
            for i, cell in enumerate(row):
                widths[i] = max(widths[i], len(cell))
        widths = [min(w, max_width) for w in widths]

        def fmt(row):
            cells = []
            for i, cell in enumerate(row):
                if len(cell) > widths[i]:
                    cell = cell[: max(0, widths[i] - 1)] + "…"
                cells.append(cell.ljust(widths[i]))
            return " | ".join(cells)

        rule = "-+-".join("-" * w for w in widths)
        lines = [f"Relation {self.name}", fmt(cols)]
        if show_domains:
            lines += [rule, fmt(header[1])]
        lines.append(rule)
        lines.extend(fmt(row) for row in data[len(header):])
        return "\n".join(lines)

    ########################
    # Helpers
    ########################

    def _derive(self, attributes, domains, key, rows: List[Row]) -> "Relation":
        result = Relation(self.namer.next_name(self.name), attributes, domains, key,
                          namer=self.namer, trace=self.trace, index_factory=self._index_factory)
        result._tuples = list(rows)
        result._rebuild_index()
        return result

    def _rebuild_index(self) -> None:
        if self._key_pos is None:
            return
        for tup in self._tuples:
            key_val = self._key_of(tup)
            if key_val in self._index:
                logger.debug("%s: key %s is not unique, dropping it", self.name, list(self._key))
                self._index.clear()
                self._key = None
                self._key_pos = None
                return
            self._index.insert(key_val, tup)

    def _key_of(self, tup: Row) -> Row:
        return tuple(tup[j] for j in self._key_pos)

    def _type_check(self, tup: Row) -> bool:
        if len(tup) != len(self._domains):
            return False
        return all(d.accepts(v) for d, v in zip(self._domains, tup))

    def _column_pos(self, column: str) -> int:
        _assert(column in self._attributes,
                f"{self.name}: attribute {column!r} not in {list(self._attributes)}", SchemaError)
        return self._attributes.index(column)

    def _match(self, columns: Sequence[str]) -> List[int]:
        return [self._column_pos(c) for c in columns]

    def _check_compatible(self, other: "Relation", op: str) -> None:
        if not self.compatible(other):
            raise CompatibilityError(
                f"{self.name}.{op}({other.name}): incompatible schemas "
                f"{_schema_str(self)} vs {_schema_str(other)}")

    def _join_schema(self, other: "Relation") -> Tuple[List[str], Dict[str, str]]:
        attributes = list(self._attributes)
        renamed: Dict[str, str] = {}
        prefix = other.name[:1] + JOIN_RENAME_SEPARATOR
        for a in other._attributes:
            new = a
            while new in attributes:
                new = prefix + new
            attributes.append(new)
            renamed[a] = new
        return attributes, renamed

    def _join_positions(self, other: "Relation", renamed: Dict[str, str]) -> Dict[str, int]:
        n = len(self._attributes)
        positions = {a: i for i, a in enumerate(self._attributes)}
        for i, a in enumerate(self._attributes):
            positions[f"{self.name}{JOIN_QUALIFIER_SEPARATOR}{a}"] = i
        qualifiers = {other.name[:1], other.name}
        for j, a in enumerate(other._attributes):
            positions.setdefault(renamed[a], n + j)
            for q in qualifiers:
                positions[f"{q}{JOIN_QUALIFIER_SEPARATOR}{a}"] = n + j
        return positions

    def _index_plan(self, evaluator: ConditionEvaluator, other: "Relation") -> Optional[List[int]]:
        """Positions in this relation feeding other's key, when the condition is a
        conjunction with an equality on every key attribute of `other`."""
        if other._key_pos is None or not evaluator.comparisons:
            return None
        if any(op != "&" for op in evaluator.connectives):
            return None
        n = len(self._attributes)
        feeds: Dict[int, int] = {}
        for op, lhs, rhs in evaluator.comparisons:
            if op != "==" or lhs[0] != "ATTR" or rhs[0] != "ATTR":
                continue
            a, b = lhs[1], rhs[1]
            if a >= n > b:
                a, b = b, a
            if a < n <= b:
                feeds.setdefault(b - n, a)
        if not all(j in feeds for j in other._key_pos):
            return None
        return [feeds[j] for j in other._key_pos]


def _split_names(attributes: Union[str, Sequence[str]]) -> List[str]:
    if isinstance(attributes, str):
        return [a for a in re.split(r"[,\s]+", attributes.strip()) if a]
    return list(attributes)

def _schema_str(rel: Relation) -> str:
    return "(" + ", ".join(f"{a}: {d}" for a, d in zip(rel.attributes, rel.domains)) + ")"

def _to_str(x: Any) -> str:
    return x if isinstance(x, str) else str(x)
