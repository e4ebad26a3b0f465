"""
expression.py
─────────────────────────────────────────────────────────────────────────────
Sandboxed row expressions for `generate` and `count if`.

Source text is tokenized, parsed into a small AST and interpreted node by
node. Nothing is handed to eval/exec: the only names an expression can see
are the sheet's columns, the constant `pi` and the functions in FUNCTIONS.

Grammar (lowest precedence first):

    ternary     := or ( '?' ternary ':' ternary )?
    or          := and ( ('|' | '||' | 'or') and )*
    and         := not ( ('&' | '&&' | 'and') not )*
    not         := ('!' | '~' | 'not') not | comparison
    comparison  := additive ( ('==' | '!=' | '~=' | '<' | '<=' | '>' | '>=') additive )*
    additive    := term ( ('+' | '-') term )*
    term        := unary ( ('*' | '/' | '%') unary )*
    unary       := ('-' | '+') unary | power
    power       := primary ( ('^' | '**') unary )?
    primary     := NUMBER | STRING | '.' | NAME | NAME '(' args ')' | '(' ternary ')'

Missing cells bind to NaN so arithmetic on them stays missing instead of
silently becoming zero. String operations on a missing cell also give
missing, and ordering comparisons against it are false. A lone '.' is the
missing literal; `x == .` and `x != .` test whether x is missing.
─────────────────────────────────────────────────────────────────────────────
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from datastat.core.profiler import is_missing, is_number
from datastat.models import Row, Value
from datastat.utils.exceptions import ExpressionError
from datastat.utils.logger import get_logger

logger = get_logger(__name__)

_NUMBER_RE = re.compile(r"(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_SYMBOLS = (
    "**", "==", "!=", "~=", "<=", ">=", "&&", "||",
    "+", "-", "*", "/", "%", "^", "<", ">", "!", "~", "&", "|",
    "(", ")", ",", "?", ":",
)
_WORD_OPERATORS = {"and": "&", "or": "|", "not": "!"}
_CONSTANTS = {"pi": math.pi}


@dataclass(frozen=True)
class Token:
    kind: str  # number, string, name, op, missing, end
    text: str
    pos: int
    value: Any = None


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


def binding_order(columns: Iterable[str]) -> List[str]:
    """Column names longest first, so a short name never claims part of a longer one."""
    return sorted(set(columns), key=lambda c: (-len(c), c))


# ── tokenizer ─────────────────────────────────────────────────────────────────
class _Tokenizer:
    def __init__(self, text: str, columns: Sequence[str]):
        self.text = text
        self.columns = [c for c in columns if c and not _NUMBER_RE.fullmatch(c)]

    def _column_at(self, pos: int) -> Optional[str]:
        ident = _IDENT_RE.match(self.text, pos)
        ident_len = ident.end() - pos if ident else 0
        for name in self.columns:
            if len(name) < ident_len or not self.text.startswith(name, pos):
                continue
            end = pos + len(name)
            if end < len(self.text) and _is_ident_char(name[-1]) and _is_ident_char(self.text[end]):
                continue
            return name
        return None

    def _string(self, pos: int) -> Tuple[Token, int]:
        quote = self.text[pos]
        end = self.text.find(quote, pos + 1)
        if end == -1:
            raise ExpressionError(f"Unterminated string starting at position {pos + 1}.")
        literal = self.text[pos + 1:end]
        return Token("string", literal, pos, literal), end + 1

    def tokens(self) -> List[Token]:
        out: List[Token] = []
        text, pos = self.text, 0
        while pos < len(text):
            ch = text[pos]
            if ch.isspace():
                pos += 1
                continue
            if ch in "\"'":
                token, pos = self._string(pos)
                out.append(token)
                continue

            column = self._column_at(pos)
            if column is not None:
                out.append(Token("name", column, pos))
                pos += len(column)
                continue

            number = _NUMBER_RE.match(text, pos)
            if number:
                literal = number.group(0)
                out.append(Token("number", literal, pos, float(literal)))
                pos = number.end()
                continue
            if ch == ".":
                out.append(Token("missing", ".", pos))
                pos += 1
                continue

            ident = _IDENT_RE.match(text, pos)
            if ident:
                word = ident.group(0)
                if word.lower() in _WORD_OPERATORS:
                    out.append(Token("op", _WORD_OPERATORS[word.lower()], pos))
                else:
                    out.append(Token("name", word, pos))
                pos = ident.end()
                continue

            for symbol in _SYMBOLS:
                if text.startswith(symbol, pos):
                    # caret is exponentiation
                    normalized = "**" if symbol == "^" else symbol
                    normalized = {"&&": "&", "||": "|", "~": "!", "~=": "!="}.get(normalized, normalized)
                    out.append(Token("op", normalized, pos))
                    pos += len(symbol)
                    break
            else:
                raise ExpressionError(f"Unexpected character '{ch}' at position {pos + 1}.")

        out.append(Token("end", "", len(text)))
        return out


# ── value helpers ─────────────────────────────────────────────────────────────
def _truthy(value: Value) -> bool:
    if isinstance(value, str):
        return value != ""
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return False
    return value != 0


def _absent(value: Value) -> bool:
    return isinstance(value, float) and math.isnan(value)


def _number(value: Value, what: str) -> float:
    if is_number(value):
        return value
    raise ExpressionError(f"Type mismatch: {what} expects a number, got '{value}'.")


def _text(value: Value, what: str) -> str:
    if isinstance(value, str):
        return value
    raise ExpressionError(f"Type mismatch: {what} expects a string, got {value}.")


def _divide(a: float, b: float) -> float:
    if b == 0:
        if a == 0 or math.isnan(a):
            return math.nan
        return math.inf if a > 0 else -math.inf
    return a / b


def _power(a: float, b: float) -> float:
    try:
        return math.pow(a, b)
    except OverflowError:
        return math.inf
    except ValueError:
        return math.nan


def _arith(op: str, a: Value, b: Value) -> Value:
    if _absent(a) or _absent(b):
        return math.nan
    if op == "+" and isinstance(a, str) and isinstance(b, str):
        return a + b
    a, b = _number(a, f"'{op}'"), _number(b, f"'{op}'")
    if op == "+":
        return a + b
    if op == "-":
        return a - b
    if op == "*":
        return a * b
    if op == "/":
        return _divide(a, b)
    if op == "%":
        return math.nan if b == 0 else math.fmod(a, b)
    return _power(a, b)


def _compare(op: str, a: Value, b: Value) -> int:
    if _absent(a) or _absent(b):
        same = _absent(a) and _absent(b)
        if op == "==":
            return int(same)
        if op == "!=":
            return int(not same)
        return 0
    if isinstance(a, str) != isinstance(b, str):
        if op == "==":
            return 0
        if op == "!=":
            return 1
        raise ExpressionError(f"Type mismatch: cannot compare '{a}' with '{b}'.")
    if op == "==":
        return int(a == b)
    if op == "!=":
        return int(a != b)
    if op == "<":
        return int(a < b)
    if op == "<=":
        return int(a <= b)
    if op == ">":
        return int(a > b)
    return int(a >= b)


# ── functions ─────────────────────────────────────────────────────────────────
def _math(fn: Callable[..., float], name: Optional[str] = None) -> Callable[..., float]:
    label = name or fn.__name__

    def wrapper(*args: Value) -> float:
        nums = [_number(a, label) for a in args]
        try:
            return fn(*nums)
        except OverflowError:
            return math.inf
        except ValueError:
            return math.nan
    wrapper.__name__ = label
    return wrapper


def _round(x: float, digits: float = 0) -> float:
    if math.isnan(x) or math.isinf(x):
        return x
    scale = 10 ** int(digits)
    return math.floor(x * scale + 0.5) / scale


def _extreme(pick: Callable[..., float]) -> Callable[..., float]:
    def wrapper(*args: Value) -> float:
        nums = [_number(a, pick.__name__) for a in args]
        present = [n for n in nums if not math.isnan(n)]
        return pick(present) if present else math.nan
    return wrapper


def _real(value: Value) -> float:
    if is_number(value):
        return value
    try:
        return float(_text(value, "real").strip())
    except ValueError:
        return math.nan


def _string(value: Value) -> str:
    if isinstance(value, str):
        return value
    if math.isnan(value):
        return ""
    return str(int(value)) if float(value).is_integer() else repr(value)


def _on_present(fn: Callable[..., Value]) -> Callable[..., Value]:
    """Missing in, missing out."""
    def wrapper(*args: Value) -> Value:
        if any(_absent(a) for a in args):
            return math.nan
        return fn(*args)
    return wrapper


def _substr(s: Value, start: Value, length: Value) -> str:
    s = _text(s, "substr")
    begin = int(_number(start, "substr")) - 1
    return s[max(begin, 0):max(begin, 0) + max(int(_number(length, "substr")), 0)]


# name -> (min args, max args, callable); max None means variadic
FUNCTIONS: Dict[str, Tuple[int, Optional[int], Callable[..., Value]]] = {
    "abs": (1, 1, _math(math.fabs)),
    "sqrt": (1, 1, _math(math.sqrt)),
    "exp": (1, 1, _math(math.exp)),
    "ln": (1, 1, _math(math.log)),
    "log": (1, 1, _math(math.log)),
    "log10": (1, 1, _math(math.log10)),
    "floor": (1, 1, _math(math.floor)),
    "ceil": (1, 1, _math(math.ceil)),
    "int": (1, 1, _math(math.trunc)),
    "round": (1, 2, _math(_round, "round")),
    "sin": (1, 1, _math(math.sin)),
    "cos": (1, 1, _math(math.cos)),
    "tan": (1, 1, _math(math.tan)),
    "atan": (1, 1, _math(math.atan)),
    "min": (1, None, _extreme(min)),
    "max": (1, None, _extreme(max)),
    "missing": (1, None, lambda *args: int(any(
        is_missing(a) for a in args))),
    "strlen": (1, 1, _on_present(lambda s: len(_text(s, "strlen")))),
    "upper": (1, 1, _on_present(lambda s: _text(s, "upper").upper())),
    "lower": (1, 1, _on_present(lambda s: _text(s, "lower").lower())),
    "trim": (1, 1, _on_present(lambda s: _text(s, "trim").strip())),
    "string": (1, 1, _string),
    "real": (1, 1, _real),
    "substr": (3, 3, _on_present(_substr)),
}


# ── AST ───────────────────────────────────────────────────────────────────────
class Node:
    def evaluate(self, env: Dict[str, Value]) -> Value:
        raise NotImplementedError


@dataclass
class Literal(Node):
    value: Value

    def evaluate(self, env):
        return self.value


@dataclass
class Variable(Node):
    name: str

    def evaluate(self, env):
        return env[self.name]


@dataclass
class Unary(Node):
    op: str
    operand: Node

    def evaluate(self, env):
        value = self.operand.evaluate(env)
        if self.op == "!":
            return int(not _truthy(value))
        value = _number(value, f"unary '{self.op}'")
        return -value if self.op == "-" else value


@dataclass
class Binary(Node):
    op: str
    left: Node
    right: Node

    def evaluate(self, env):
        a, b = self.left.evaluate(env), self.right.evaluate(env)
        if self.op in ("==", "!=", "<", "<=", ">", ">="):
            return _compare(self.op, a, b)
        return _arith(self.op, a, b)


@dataclass
class Logical(Node):
    op: str
    left: Node
    right: Node

    def evaluate(self, env):
        left = _truthy(self.left.evaluate(env))
        if self.op == "&":
            return int(left and _truthy(self.right.evaluate(env)))
        return int(left or _truthy(self.right.evaluate(env)))


@dataclass
class Conditional(Node):
    test: Node
    body: Node
    orelse: Node

    def evaluate(self, env):
        if _truthy(self.test.evaluate(env)):
            return self.body.evaluate(env)
        return self.orelse.evaluate(env)


@dataclass
class Call(Node):
    name: str
    args: List[Node]

    def evaluate(self, env):
        if self.name == "cond":
            test, body, orelse = self.args
            return body.evaluate(env) if _truthy(test.evaluate(env)) else orelse.evaluate(env)
        fn = FUNCTIONS[self.name][2]
        return fn(*(arg.evaluate(env) for arg in self.args))


# ── parser ────────────────────────────────────────────────────────────────────
_COMPARISONS = ("==", "!=", "<", "<=", ">", ">=")


class _Parser:
    def __init__(self, tokens: List[Token], columns: Sequence[str]):
        self.tokens = tokens
        self.index = 0
        self.columns = set(columns)
        self.names: List[str] = []

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def _accept(self, *ops: str) -> Optional[str]:
        token = self.current
        if token.kind == "op" and token.text in ops:
            self.index += 1
            return token.text
        return None

    def _expect(self, op: str) -> None:
        if not self._accept(op):
            raise self._error(f"expected '{op}'")

    def _error(self, what: str) -> ExpressionError:
        token = self.current
        found = "end of expression" if token.kind == "end" else f"'{token.text}'"
        return ExpressionError(f"Invalid expression: {what}, found {found} at position {token.pos + 1}.")

    def parse(self) -> Node:
        if self.current.kind == "end":
            raise ExpressionError("Invalid expression: nothing to evaluate.")
        node = self.ternary()
        if self.current.kind != "end":
            raise self._error("unexpected token")
        return node

    def ternary(self) -> Node:
        test = self.logical_or()
        if self._accept("?"):
            body = self.ternary()
            self._expect(":")
            return Conditional(test, body, self.ternary())
        return test

    def logical_or(self) -> Node:
        node = self.logical_and()
        while self._accept("|"):
            node = Logical("|", node, self.logical_and())
        return node

    def logical_and(self) -> Node:
        node = self.logical_not()
        while self._accept("&"):
            node = Logical("&", node, self.logical_not())
        return node

    def logical_not(self) -> Node:
        if self._accept("!"):
            return Unary("!", self.logical_not())
        return self.comparison()

    def comparison(self) -> Node:
        node = self.additive()
        while True:
            op = self._accept(*_COMPARISONS)
            if not op:
                return node
            node = Binary(op, node, self.additive())

    def additive(self) -> Node:
        node = self.term()
        while True:
            op = self._accept("+", "-")
            if not op:
                return node
            node = Binary(op, node, self.term())

    def term(self) -> Node:
        node = self.unary()
        while True:
            op = self._accept("*", "/", "%")
            if not op:
                return node
            node = Binary(op, node, self.unary())

    def unary(self) -> Node:
        op = self._accept("-", "+")
        if op:
            return Unary(op, self.unary())
        return self.power()

    def power(self) -> Node:
        base = self.primary()
        if self._accept("**"):
            return Binary("**", base, self.unary())
        return base

    def primary(self) -> Node:
        token = self.current
        if token.kind in ("number", "string"):
            self._advance()
            return Literal(token.value)
        if token.kind == "missing":
            self._advance()
            return Literal(math.nan)
        if token.kind == "name":
            self._advance()
            if self.current.kind == "op" and self.current.text == "(" and token.text not in self.columns:
                return self._call(token)
            return self._name(token)
        if self._accept("("):
            node = self.ternary()
            self._expect(")")
            return node
        raise self._error("expected a value")

    def _name(self, token: Token) -> Node:
        if token.text in self.columns:
            if token.text not in self.names:
                self.names.append(token.text)
            return Variable(token.text)
        if token.text in _CONSTANTS:
            return Literal(_CONSTANTS[token.text])
        raise ExpressionError(f"Variable '{token.text}' not found.")

    def _call(self, token: Token) -> Node:
        name = token.text.lower()
        if name != "cond" and name not in FUNCTIONS:
            raise ExpressionError(f"Unknown function '{token.text}'.")
        self._expect("(")
        args: List[Node] = []
        if not self._accept(")"):
            args.append(self.ternary())
            while self._accept(","):
                args.append(self.ternary())
            self._expect(")")

        low, high = (3, 3) if name == "cond" else FUNCTIONS[name][:2]
        if len(args) < low or (high is not None and len(args) > high):
            raise ExpressionError(f"Function '{name}' takes {low if low == high else f'{low}+'} argument(s), got {len(args)}.")
        return Call(name, args)


# ── public API ────────────────────────────────────────────────────────────────
def finalize(value: Value) -> Value:
    """Booleans become 1/0 and non-finite numbers become missing."""
    if isinstance(value, bool):
        return int(value)
    if is_number(value) and not math.isfinite(value):
        return None
    return value


@dataclass
class CompiledExpression:
    source: str
    tree: Node
    names: List[str]

    def evaluate(self, row: Row) -> Value:
        env = {}
        for name in self.names:
            value = row.get(name)
            env[name] = math.nan if is_missing(value) else value
        try:
            return finalize(self.tree.evaluate(env))
        except ExpressionError:
            raise
        except (TypeError, ValueError, ArithmeticError) as e:
            raise ExpressionError(f"Error evaluating '{self.source}': {e}")


def compile_expression(source: str, columns: Iterable[str]) -> CompiledExpression:
    """
    Compile an expression once so it can be evaluated against many rows.

    Args:
        source: Expression text, e.g. "price * 0.1" or "cond(qty > 0, price / qty, .)".
        columns: Column names the expression may reference.

    Returns:
        CompiledExpression

    Raises:
        ExpressionError: On syntax errors, unknown variables or unknown functions.
    """
    ordered = binding_order(columns)
    try:
        tokens = _Tokenizer(source, ordered).tokens()
        parser = _Parser(tokens, ordered)
        tree = parser.parse()
    except RecursionError:
        raise ExpressionError("Invalid expression: nested too deeply.")
    logger.debug(f"Compiled expression '{source}' referencing {parser.names}")
    return CompiledExpression(source=source, tree=tree, names=parser.names)


def evaluate_rows(source: str, rows: Sequence[Row], columns: Iterable[str]) -> List[Value]:
    """Evaluate an expression for every row. Any failure aborts the whole batch."""
    compiled = compile_expression(source, columns)
    return [compiled.evaluate(row) for row in rows]
