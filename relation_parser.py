from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Tuple

from relation_engine import Relation, TempNamer, Trace
from relation_types import DomainError, ParseError, RelAlgError, _assert

logger = logging.getLogger(__name__)

#############################
# Parsing Relations
#############################

# movie (title: String, year: Integer) key (title) = { ... }
RELATION_DEF_RE = re.compile(
    r"""([A-Za-z_][A-Za-z0-9_]*)\s*\(([^)]*)\)\s*(?:key\s*\(([^)]*)\)\s*)?=\s*\{\s*(.*?)\s*\}""",
    re.DOTALL | re.IGNORECASE,
)

def parse_relations(input_text: str, trace: Optional[Trace] = None,
                    namer: Optional[TempNamer] = None) -> Dict[str, Relation]:
    """Parse one or more relation blocks into populated Relation objects.
    Every relation shares one namer so derived names never collide.
    """
    namer = namer or TempNamer()
    relations: Dict[str, Relation] = {}
    for m in RELATION_DEF_RE.finditer(input_text):
        name = m.group(1).strip()
        attributes, domains = _parse_schema(name, m.group(2))
        key = [k.strip() for k in m.group(3).split(",") if k.strip()] if m.group(3) else list(attributes)
        _assert(name not in relations, f"Relation {name} is defined twice", ParseError)

        try:
            rel = Relation(name, attributes, domains, key, namer=namer, trace=trace)
        except RelAlgError as e:
            raise ParseError(f"Bad definition for relation {name}: {e}") from e
        rel.trace(f"DDL> create table {name} ({' '.join(attributes)})")

        for line in m.group(4).splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            parts = [p.strip() for p in split_csv_like(line)]
            if len(parts) != len(attributes):
                raise ParseError(f"Row {line!r} has {len(parts)} values but schema has {len(attributes)} columns for relation {name}")
            try:
                values = tuple(d.coerce(p) for d, p in zip(rel.domains, parts))
            except DomainError as e:
                raise ParseError(f"Row {line!r} of relation {name}: {e}") from e
            if not rel.insert(values):
                raise ParseError(f"Row {line!r} rejected by relation {name} (duplicate key)")

        relations[name] = rel

    if not relations:
        raise ParseError("No relation definitions found. Check your input format.")
    return relations

def _parse_schema(name: str, schema_raw: str) -> Tuple[List[str], List[str]]:
    attributes: List[str] = []; domains: List[str] = []
    for col in (c.strip() for c in schema_raw.split(",")):
        if not col:
            continue
        m = re.fullmatch(r"([A-Za-z_][A-Za-z0-9_]*)\s*:\s*([A-Za-z]+)", col)
        if not m:
            raise ParseError(f"Column {col!r} of relation {name} must look like 'attr: Domain'")
        attributes.append(m.group(1)); domains.append(m.group(2))
    return attributes, domains

def split_csv_like(line: str) -> List[str]:
    """Split a single line by commas, respecting quotes and escapes."""
    out: List[str] = []
    cur: List[str] = []
    i = 0; quote: Optional[str] = None
    while i < len(line):
        ch = line[i]
        if quote:
            if ch == "\\" and i + 1 < len(line):
                cur.append(line[i+1]); i += 2; continue
            if ch == quote:
                cur.append(ch); i += 1; quote = None; continue
            cur.append(ch); i += 1; continue
        else:
            if ch in ("'", '"'):
                quote = ch; cur.append(ch); i += 1; continue
            if ch == ",":
                out.append("".join(cur).strip()); cur = []; i += 1; continue
            cur.append(ch); i += 1; continue
    if cur: out.append("".join(cur).strip())
    return out

#############################
# Parsing RA Queries
#############################

class ASTNode:
    def evaluate(self, env: Dict[str, Relation]) -> Relation:
        raise NotImplementedError()

class NameNode(ASTNode):
    def __init__(self, name: str):
        self.name = name
    def evaluate(self, env):
        _assert(self.name in env, f"Unknown relation {self.name}", ParseError)
        return env[self.name]
    def __repr__(self): return self.name

class SelectNode(ASTNode):
    def __init__(self, condition: str, child: ASTNode):
        self.condition = condition; self.child = child
    def evaluate(self, env): return self.child.evaluate(env).select(self.condition)
    def __repr__(self): return f"σ[{self.condition}]({self.child!r})"

class ProjectNode(ASTNode):
    def __init__(self, attrs: List[str], child: ASTNode):
        self.attrs = attrs; self.child = child
    def evaluate(self, env): return self.child.evaluate(env).project(self.attrs)
    def __repr__(self): return f"π[{', '.join(self.attrs)}]({self.child!r})"

class JoinNode(ASTNode):
    def __init__(self, left: ASTNode, right: ASTNode, on: Optional[str] = None):
        self.left = left; self.right = right; self.on = on
    def evaluate(self, env): return self.left.evaluate(env).join(self.on, self.right.evaluate(env))
    def __repr__(self): return f"({self.left!r})⋈[{self.on or ''}]({self.right!r})"

class UnionNode(ASTNode):
    def __init__(self, left: ASTNode, right: ASTNode):
        self.left = left; self.right = right
    def evaluate(self, env): return self.left.evaluate(env).union(self.right.evaluate(env))
    def __repr__(self): return f"({self.left!r})⋃({self.right!r})"

class MinusNode(ASTNode):
    def __init__(self, left: ASTNode, right: ASTNode):
        self.left = left; self.right = right
    def evaluate(self, env): return self.left.evaluate(env).minus(self.right.evaluate(env))
    def __repr__(self): return f"({self.left!r})−({self.right!r})"

SET_OPS = {"⋃": UnionNode, "∪": UnionNode, "union": UnionNode, "−": MinusNode, "minus": MinusNode}

def parse_query(q: str) -> ASTNode:
    parser = RAParser(q.strip())
    node = parser.parse_expression()
    tok = parser._peek()
    if tok[0] != "EOF":
        raise ParseError(f"Unexpected {tok[2]!r} after end of query")
    return node

def _requote(text: str, quote: str) -> str:
    """Quote unescaped literal text so conditions can tokenize it again."""
    for q in (quote, "'" if quote == '"' else '"'):
        if q not in text:
            return f"{q}{text}{q}"
    raise ParseError(f"String literal {text!r} cannot contain both quote characters")

class RAParser:
    def __init__(self, s: str):
        self.s = s
        self.tokens = self._tokenize(s)
        self.pos = 0

    def _peek(self): return self.tokens[self.pos] if self.pos < len(self.tokens) else ("EOF", "", "")
    def _eat(self, kind=None, value=None):
        tok = self._peek()
        if kind is not None and tok[0] != kind: raise ParseError(f"Expected {kind} but found {tok[2] or 'end of query'!r}")
        if value is not None and tok[1] != value: raise ParseError(f"Expected {value!r} but found {tok[2] or 'end of query'!r}")
        self.pos += 1; return tok

    def _set_op(self) -> Optional[str]:
        tok = self._peek()
        if tok[0] == "SYMBOL" and tok[1] in SET_OPS:
            return tok[1]
        if tok[0] == "IDENT" and tok[1].lower() in SET_OPS:
            return tok[1].lower()
        return None

    def parse_expression(self) -> ASTNode:
        node = self.parse_term()
        while True:
            op = self._set_op()
            if op is None:
                break
            self.pos += 1
            node = SET_OPS[op](node, self.parse_term())
        return node

    def parse_term(self, allow_join: bool = True) -> ASTNode:
        node = self._parse_operand()
        # a ⋈ b ⋈ c groups as (a ⋈ b) ⋈ c
        while allow_join and self._peek()[0] == "SYMBOL" and self._peek()[1] == "⋈":
            self._eat("SYMBOL", "⋈")
            on = None
            if self._peek()[0] == "SUB":
                on = self._eat("SUB")[1] or None
            node = JoinNode(node, self.parse_term(allow_join=False), on)
        return node

    def _parse_operand(self) -> ASTNode:
        tok = self._peek()
        keyword = tok[1].lower() if tok[0] == "IDENT" else tok[1]

        # select
        if (tok[0] == "SYMBOL" and tok[1] == "σ") or keyword == "select":
            self.pos += 1
            cond = self._parse_until_paren_text()
            child = self._parse_paren_expr()
            return SelectNode(cond, child)

        # project
        if (tok[0] == "SYMBOL" and tok[1] == "π") or keyword == "project":
            self.pos += 1
            attrs = [a for a in re.split(r"[,\s]+", self._parse_until_paren_text()) if a]
            _assert(attrs, "Empty projection list", ParseError)
            child = self._parse_paren_expr()
            return ProjectNode(attrs, child)

        # join keyword
        if keyword == "join":
            self._eat("IDENT"); self._eat("PUNC", "(")
            left = self.parse_expression(); self._eat("PUNC", ",")
            right = self.parse_expression()
            on = None
            nxt = self._peek()
            if nxt[0] == "PUNC" and nxt[1] == ",":
                self._eat("PUNC", ",")
                key = self._eat("IDENT")[1].lower()
                if key != "on": raise ParseError('Expected on="..." in join(...)')
                self._eat("OP", "=")
                on = self._eat("STRING")[1]
            self._eat("PUNC", ")")
            return JoinNode(left, right, on)

        if tok[0] == "IDENT":
            return NameNode(self._eat("IDENT")[1])
        if tok[0] == "PUNC" and tok[1] == "(":
            return self._parse_paren_expr()
        raise ParseError(f"Unexpected {tok[2] or 'end of query'!r} in term")

    def _parse_paren_expr(self) -> ASTNode:
        self._eat("PUNC", "(")
        inner = self.parse_expression()
        self._eat("PUNC", ")")
        return inner

    # conditions are space tokenized, so tokens are glued back with spaces
    def _parse_until_paren_text(self) -> str:
        parts = []
        while True:
            tok = self._peek()
            if tok[0] == "PUNC" and tok[1] == "(":
                break
            if tok[0] == "EOF":
                raise ParseError("Expected '('")
            parts.append(tok[2])
            self.pos += 1
        text = " ".join(parts).strip()
        if not text:
            raise ParseError("Missing text before '('")
        return text

    def _tokenize(self, s: str):
        tokens = []
        i = 0
        while i < len(s):
            ch = s[i]
            if ch.isspace():
                i += 1; continue
            if ch in "(),":
                tokens.append(("PUNC", ch, ch)); i += 1; continue
            if ch == "_" and i + 1 < len(s) and s[i+1] == "{":
                j = i + 2; depth = 1; buf = []
                while j < len(s) and depth > 0:
                    if s[j] == "{": depth += 1
                    elif s[j] == "}": depth -= 1
                    if depth > 0: buf.append(s[j])
                    j += 1
                if depth != 0: raise ParseError("Unclosed _{ ... }")
                tokens.append(("SUB", "".join(buf).strip(), s[i:j])); i = j; continue
            if ch in "σπ⋈⋃∪−":
                tokens.append(("SYMBOL", ch, ch)); i += 1; continue
            if ch in "&|":
                tokens.append(("OP", ch, ch)); i += 1; continue
            if ch in "<>=!":
                if s[i:i+2] in ("<=", ">=", "!=", "=="):
                    tokens.append(("OP", s[i:i+2], s[i:i+2])); i += 2; continue
                if ch == "!": raise ParseError("Unexpected '!'")
                tokens.append(("OP", ch, ch)); i += 1; continue
            if ch in "'\"":
                quote = ch; j = i + 1; buf = []
                while j < len(s) and s[j] != quote:
                    if s[j] == "\\" and j+1 < len(s): buf.append(s[j+1]); j += 2
                    else: buf.append(s[j]); j += 1
                if j >= len(s): raise ParseError("Unclosed string literal")
                text = "".join(buf)
                tokens.append(("STRING", text, _requote(text, quote))); i = j + 1; continue
            m = re.match(r"[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)?", s[i:])
            if m:
                ident = m.group(0); tokens.append(("IDENT", ident, ident)); i += len(ident); continue
            m = re.match(r"-?(?:\d+\.\d*|\d*\.\d+|\d+)", s[i:])
            if m:
                num = m.group(0); tokens.append(("NUMBER", num, num)); i += len(num); continue
            raise ParseError(f"Bad character {ch!r} in query")
        tokens.append(("EOF", "", ""))
        return tokens

#############################
# Runner utilities (public)
#############################

def run(relations_text: str, query_text: str, trace: Optional[Trace] = None) -> Relation:
    env = parse_relations(relations_text, trace=trace)
    ast = parse_query(query_text)
    logger.debug("running %r", ast)
    return ast.evaluate(env)
