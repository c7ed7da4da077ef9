"""Condition expressions for `loop.condition` and `failWhen`.

Supported syntax::

    review.hasIssues
    !plan.approved && attempts.count < 3
    (status == "blocked" || status == 'failed') && retries >= 2
    review.summary.includes("security")
    branch.startsWith("feature/")

Expressions are parsed once, when the workflow definition is loaded. A path
that does not resolve makes the whole expression evaluate to False.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from .context import MISSING
from .errors import ConditionSyntaxError

logger = logging.getLogger(__name__)

_OPERATORS = ("&&", "||", "==", "!=", ">=", "<=", ">", "<", "!", "(", ")", ",")
_COMPARISONS = {"==", "!=", ">", "<", ">=", "<="}
_KEYWORDS: dict[str, Any] = {"true": True, "false": False, "null": None}
_METHODS = {"includes", "startsWith"}


class _Resolver(Protocol):
    def resolve(self, path: str) -> Any: ...


class _Unresolved(Exception):
    """Raised internally when a path does not resolve."""


@dataclass(frozen=True, slots=True)
class _Token:
    kind: str  # "op" | "path" | "literal" | "end"
    value: Any
    pos: int


def _is_ident_start(ch: str) -> bool:
    return ch.isalpha() or ch in "_$"


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_$-"


def _tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue

        if ch in "\"'":
            start = i
            i += 1
            buf: list[str] = []
            while i < n and text[i] != ch:
                if text[i] == "\\" and i + 1 < n:
                    i += 1
                buf.append(text[i])
                i += 1
            if i >= n:
                raise ConditionSyntaxError(text, start, "unterminated string literal")
            i += 1
            tokens.append(_Token("literal", "".join(buf), start))
            continue

        if ch.isdigit() or (ch == "-" and i + 1 < n and text[i + 1].isdigit()):
            start = i
            i += 1
            while i < n and (text[i].isdigit() or text[i] == "."):
                i += 1
            raw = text[start:i]
            try:
                number: int | float = float(raw) if "." in raw else int(raw)
            except ValueError:
                raise ConditionSyntaxError(text, start, f"invalid number {raw!r}") from None
            tokens.append(_Token("literal", number, start))
            continue

        if _is_ident_start(ch):
            start = i
            while i < n:
                if _is_ident_char(text[i]):
                    i += 1
                elif text[i] == "." and i + 1 < n and (_is_ident_char(text[i + 1])):
                    i += 1
                else:
                    break
            word = text[start:i]
            if word in _KEYWORDS:
                tokens.append(_Token("literal", _KEYWORDS[word], start))
            else:
                tokens.append(_Token("path", word, start))
            continue

        for op in _OPERATORS:
            if text.startswith(op, i):
                tokens.append(_Token("op", op, i))
                i += len(op)
                break
        else:
            raise ConditionSyntaxError(text, i, f"unexpected character {ch!r}")

    tokens.append(_Token("end", None, n))
    return tokens


# --- AST ---


class _Node(Protocol):
    def eval(self, ctx: _Resolver) -> Any: ...


@dataclass(frozen=True, slots=True)
class _Literal:
    value: Any

    def eval(self, ctx: _Resolver) -> Any:
        return self.value


@dataclass(frozen=True, slots=True)
class _Path:
    path: str

    def eval(self, ctx: _Resolver) -> Any:
        value = ctx.resolve(self.path)
        if value is MISSING:
            raise _Unresolved(self.path)
        return value


@dataclass(frozen=True, slots=True)
class _Not:
    operand: _Node

    def eval(self, ctx: _Resolver) -> Any:
        return not _truthy(self.operand.eval(ctx))


@dataclass(frozen=True, slots=True)
class _And:
    left: _Node
    right: _Node

    def eval(self, ctx: _Resolver) -> Any:
        return _truthy(self.left.eval(ctx)) and _truthy(self.right.eval(ctx))


@dataclass(frozen=True, slots=True)
class _Or:
    left: _Node
    right: _Node

    def eval(self, ctx: _Resolver) -> Any:
        return _truthy(self.left.eval(ctx)) or _truthy(self.right.eval(ctx))


@dataclass(frozen=True, slots=True)
class _Compare:
    op: str
    left: _Node
    right: _Node

    def eval(self, ctx: _Resolver) -> Any:
        return _compare(self.op, self.left.eval(ctx), self.right.eval(ctx))


@dataclass(frozen=True, slots=True)
class _MethodCall:
    method: str
    target: _Node
    argument: _Node

    def eval(self, ctx: _Resolver) -> Any:
        target = self.target.eval(ctx)
        argument = self.argument.eval(ctx)
        if self.method == "includes":
            if isinstance(target, str):
                return isinstance(argument, str) and argument in target
            if isinstance(target, (list, tuple)):
                return argument in target
            if isinstance(target, Mapping):
                return argument in target
            return False
        # startsWith
        return isinstance(target, str) and isinstance(argument, str) and target.startswith(argument)


def _truthy(value: Any) -> bool:
    return bool(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _compare(op: str, left: Any, right: Any) -> bool:
    if op in ("==", "!="):
        if isinstance(left, bool) != isinstance(right, bool):
            equal = False
        else:
            equal = left == right
        return equal if op == "==" else not equal

    comparable = (_is_number(left) and _is_number(right)) or (
        isinstance(left, str) and isinstance(right, str)
    )
    if not comparable:
        return False
    if op == ">":
        return left > right
    if op == "<":
        return left < right
    if op == ">=":
        return left >= right
    return left <= right


# --- parser ---


class _Parser:
    def __init__(self, text: str) -> None:
        self._text = text
        self._tokens = _tokenize(text)
        self._index = 0

    def _peek(self) -> _Token:
        return self._tokens[self._index]

    def _advance(self) -> _Token:
        token = self._tokens[self._index]
        self._index += 1
        return token

    def _at_op(self, *ops: str) -> bool:
        token = self._peek()
        return token.kind == "op" and token.value in ops

    def _expect_op(self, op: str) -> None:
        token = self._peek()
        if not (token.kind == "op" and token.value == op):
            raise self._error(token, f"expected {op!r}")
        self._advance()

    def _error(self, token: _Token, reason: str) -> ConditionSyntaxError:
        found = "end of expression" if token.kind == "end" else repr(token.value)
        return ConditionSyntaxError(self._text, token.pos, f"{reason}, found {found}")

    def parse(self) -> _Node:
        if self._peek().kind == "end":
            raise ConditionSyntaxError(self._text, 0, "empty expression")
        node = self._parse_or()
        token = self._peek()
        if token.kind != "end":
            raise self._error(token, "unexpected token")
        return node

    def _parse_or(self) -> _Node:
        node = self._parse_and()
        while self._at_op("||"):
            self._advance()
            node = _Or(node, self._parse_and())
        return node

    def _parse_and(self) -> _Node:
        node = self._parse_unary()
        while self._at_op("&&"):
            self._advance()
            node = _And(node, self._parse_unary())
        return node

    def _parse_unary(self) -> _Node:
        if self._at_op("!"):
            self._advance()
            return _Not(self._parse_unary())
        return self._parse_comparison()

    def _parse_comparison(self) -> _Node:
        left = self._parse_primary()
        token = self._peek()
        if token.kind == "op" and token.value in _COMPARISONS:
            self._advance()
            right = self._parse_primary()
            if self._peek().kind == "op" and self._peek().value in _COMPARISONS:
                raise self._error(self._peek(), "chained comparison")
            return _Compare(token.value, left, right)
        return left

    def _parse_primary(self) -> _Node:
        token = self._peek()
        if token.kind == "op" and token.value == "(":
            self._advance()
            node = self._parse_or()
            self._expect_op(")")
            return node
        if token.kind == "literal":
            self._advance()
            return _Literal(token.value)
        if token.kind == "path":
            self._advance()
            if self._at_op("("):
                return self._parse_method_call(token)
            return _Path(token.value)
        raise self._error(token, "expected a value")

    def _parse_method_call(self, token: _Token) -> _Node:
        path, _, method = str(token.value).rpartition(".")
        if not path or method not in _METHODS:
            raise ConditionSyntaxError(
                self._text,
                token.pos,
                f"unsupported method call {token.value!r} "
                f"(supported: {', '.join(sorted(_METHODS))})",
            )
        self._expect_op("(")
        argument = self._parse_or()
        self._expect_op(")")
        return _MethodCall(method, _Path(path), argument)


@dataclass(frozen=True, slots=True)
class Condition:
    """A compiled condition expression."""

    text: str
    _root: _Node

    def evaluate(self, ctx: _Resolver) -> bool:
        try:
            return _truthy(self._root.eval(ctx))
        except _Unresolved as e:
            logger.debug(
                "Condition references an unresolved path",
                extra={"condition": self.text, "path": str(e)},
            )
            return False


def parse_condition(text: str) -> Condition:
    """Compile `text`, raising `ConditionSyntaxError` on malformed input."""

    return Condition(text, _Parser(text).parse())


class ConditionEvaluator:
    """Compiles and caches conditions by their source text."""

    def __init__(self) -> None:
        self._cache: dict[str, Condition] = {}

    def compile(self, text: str) -> Condition:
        condition = self._cache.get(text)
        if condition is None:
            condition = parse_condition(text)
            self._cache[text] = condition
        return condition

    def evaluate(self, text: str, ctx: _Resolver) -> bool:
        return self.compile(text).evaluate(ctx)
