"""Formula fields.

Expressions are parsed into a small tree and evaluated against a row. Only
literals, row fields and the functions in ``FUNCTIONS`` are reachable, there
is no path from a formula to Python builtins or the surrounding process.

    expr    := or
    or      := and ("||" and)*
    and     := compare ("&&" compare)*
    compare := add (("=="|"!="|"<"|"<="|">"|">=") add)?
    add     := mul (("+"|"-") mul)*
    mul     := unary (("*"|"/"|"%") unary)*
    unary   := ("-"|"!") unary | primary
    primary := NUMBER | STRING | IDENTIFIER | IDENTIFIER "(" args ")" | "(" expr ")"
"""

import math
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID

from pydantic import ValidationError

from core.exceptions import FormulaException
from model.dao.enums import ColumnType, FormulaResultType
from model.dto.data_table import ColumnDTO
from model.dto.field_config import FormulaFieldConfig
from service.computed_fields.base import ComputedFieldResolver, ResolverContext
from service.computed_fields.formula_lexer import FormulaLexer


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class FieldRef:
    name: str


@dataclass(frozen=True)
class Unary:
    op: str
    operand: Any
    depth: int = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "depth", _depth(self.operand) + 1)


@dataclass(frozen=True)
class Binary:
    op: str
    left: Any
    right: Any
    depth: int = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "depth", max(_depth(self.left), _depth(self.right)) + 1)


@dataclass(frozen=True)
class Call:
    name: str
    args: tuple
    depth: int = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "depth", max(map(_depth, self.args), default=0) + 1)


def _depth(node) -> int:
    return getattr(node, "depth", 1)


# Bounds both parser recursion and the depth of the evaluated tree
MAX_FORMULA_DEPTH = 64

_KEYWORDS = {"true": True, "false": False, "null": None}
_COMPARISONS = {"EQ", "NE", "LT", "LE", "GT", "GE"}


class FormulaParser:
    def __init__(self, source: str):
        self._source = source
        self._tokens = FormulaLexer().tokenize(source)
        self._pos = 0
        self._nesting = 0

    def _peek(self, offset: int = 0):
        index = self._pos + offset
        return self._tokens[index] if index < len(self._tokens) else None

    def _accept(self, *types: str):
        tok = self._peek()
        if tok is not None and tok.type in types:
            self._pos += 1
            return tok
        return None

    def _expect(self, token_type: str):
        tok = self._accept(token_type)
        if tok is None:
            found = self._peek()
            where = f"'{found.value}'" if found is not None else "end of formula"
            raise FormulaException(f"Expected {token_type} but found {where}")
        return tok

    @contextmanager
    def _nested(self):
        self._nesting += 1
        if self._nesting > MAX_FORMULA_DEPTH:
            raise FormulaException("Formula is nested too deeply")
        try:
            yield
        finally:
            self._nesting -= 1

    def _checked(self, node):
        if node.depth > MAX_FORMULA_DEPTH:
            raise FormulaException("Formula is nested too deeply")
        return node

    def parse(self):
        if not self._tokens:
            raise FormulaException("Formula is empty")
        node = self._or()
        if self._peek() is not None:
            raise FormulaException(f"Unexpected '{self._peek().value}'")
        return node

    def _or(self):
        node = self._and()
        while self._accept("OR"):
            node = self._checked(Binary("||", node, self._and()))
        return node

    def _and(self):
        node = self._compare()
        while self._accept("AND"):
            node = self._checked(Binary("&&", node, self._compare()))
        return node

    def _compare(self):
        node = self._add()
        tok = self._accept(*_COMPARISONS)
        if tok is not None:
            op = "==" if tok.type == "EQ" else "!=" if tok.type == "NE" else tok.value
            node = self._checked(Binary(op, node, self._add()))
        return node

    def _add(self):
        node = self._mul()
        while (tok := self._accept("PLUS", "MINUS")) is not None:
            node = self._checked(Binary(tok.value, node, self._mul()))
        return node

    def _mul(self):
        node = self._unary()
        while (tok := self._accept("TIMES", "DIVIDE", "MODULO")) is not None:
            node = self._checked(Binary(tok.value, node, self._unary()))
        return node

    def _unary(self):
        tok = self._accept("MINUS", "NOT")
        if tok is not None:
            with self._nested():
                operand = self._unary()
            return self._checked(Unary("-" if tok.type == "MINUS" else "!", operand))
        return self._primary()

    def _primary(self):
        tok = self._accept("NUMBER", "STRING")
        if tok is not None:
            return Literal(tok.value)

        if self._accept("LPAREN"):
            with self._nested():
                node = self._or()
            self._expect("RPAREN")
            return node

        tok = self._accept("IDENTIFIER")
        if tok is None:
            found = self._peek()
            raise FormulaException(
                f"Unexpected '{found.value}'" if found else "Formula ends unexpectedly"
            )

        if self._accept("LPAREN"):
            name = tok.value.upper()
            if name not in FUNCTIONS:
                raise FormulaException(f"Unknown function {tok.value}")
            args = []
            if not self._accept("RPAREN"):
                with self._nested():
                    args.append(self._or())
                    while self._accept("COMMA"):
                        args.append(self._or())
                self._expect("RPAREN")
            return self._checked(Call(name, tuple(args)))

        if tok.value.lower() in _KEYWORDS:
            return Literal(_KEYWORDS[tok.value.lower()])
        return FieldRef(tok.value)


def parse_formula(source: str):
    return FormulaParser(source).parse()


def _number(value: Any) -> float | int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if value is None:
        return 0
    if isinstance(value, str):
        try:
            return float(value) if value.strip() else 0
        except ValueError:
            raise FormulaException(f"'{value}' is not a number")
    raise FormulaException(f"Unsupported operand {value!r}")


def _text(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _truthy(value: Any) -> bool:
    if isinstance(value, float) and math.isnan(value):
        return False
    return bool(value)


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise FormulaException(f"'{value}' is not a date")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _today() -> str:
    return datetime.now(UTC).date().isoformat()


def _days_between(start: Any, end: Any) -> int:
    delta = _to_datetime(end) - _to_datetime(start)
    return math.floor(delta.total_seconds() / 86400)


def _round(value: Any, digits: Any = 0) -> float | int:
    # Halves round up, so ROUND(2.5) is 3 and ROUND(-2.5) is -2
    factor = 10 ** int(_number(digits))
    rounded = math.floor(_number(value) * factor + 0.5) / factor
    return int(rounded) if factor == 1 else rounded


def _min(*values: Any):
    if not values:
        raise FormulaException("MIN needs at least one argument")
    return min(_number(value) for value in values)


def _max(*values: Any):
    if not values:
        raise FormulaException("MAX needs at least one argument")
    return max(_number(value) for value in values)


FUNCTIONS: dict[str, Callable[..., Any]] = {
    "TODAY": _today,
    "DAYS_BETWEEN": _days_between,
    "MIN": _min,
    "MAX": _max,
    "ABS": lambda value: abs(_number(value)),
    "ROUND": _round,
    "FLOOR": lambda value: math.floor(_number(value)),
    "CEIL": lambda value: math.ceil(_number(value)),
    # IF is evaluated lazily by the evaluator
    "IF": None,
}


def formula_value(value: Any) -> Any:
    """Normalise a row value into something a formula can operate on."""
    if value is None:
        return 0
    if isinstance(value, dict):
        if "relatedId" in value:
            return formula_value(value.get("displayFieldValue"))
        return str(value)
    if isinstance(value, list):
        return ", ".join(_text(formula_value(item)) for item in value)
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return value


class FormulaEvaluator:
    def __init__(self, row: dict[str, Any]):
        self._row = row

    def evaluate(self, node) -> Any:
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, FieldRef):
            return formula_value(self._row.get(node.name))
        if isinstance(node, Unary):
            operand = self.evaluate(node.operand)
            if node.op == "-":
                return -_number(operand)
            return not _truthy(operand)
        if isinstance(node, Binary):
            return self._binary(node)
        if isinstance(node, Call):
            return self._call(node)
        raise FormulaException(f"Cannot evaluate {node!r}")

    def _binary(self, node: Binary) -> Any:
        if node.op == "&&":
            left = self.evaluate(node.left)
            return self.evaluate(node.right) if _truthy(left) else left
        if node.op == "||":
            left = self.evaluate(node.left)
            return left if _truthy(left) else self.evaluate(node.right)

        left = self.evaluate(node.left)
        right = self.evaluate(node.right)

        if node.op == "+":
            if isinstance(left, str) or isinstance(right, str):
                return _text(left) + _text(right)
            return _number(left) + _number(right)
        if node.op == "-":
            return _number(left) - _number(right)
        if node.op == "*":
            return _number(left) * _number(right)
        if node.op in ("/", "%"):
            divisor = _number(right)
            if divisor == 0:
                raise FormulaException("Division by zero")
            if node.op == "/":
                return _number(left) / divisor
            return math.fmod(_number(left), divisor)

        if isinstance(left, str) and isinstance(right, str):
            a, b = left, right
        elif isinstance(left, str) or isinstance(right, str):
            if node.op in ("==", "!="):
                equal = _text(left) == _text(right)
                return equal if node.op == "==" else not equal
            a, b = _number(left), _number(right)
        else:
            a, b = _number(left), _number(right)

        if node.op == "==":
            return a == b
        if node.op == "!=":
            return a != b
        if node.op == "<":
            return a < b
        if node.op == "<=":
            return a <= b
        if node.op == ">":
            return a > b
        if node.op == ">=":
            return a >= b
        raise FormulaException(f"Unknown operator {node.op}")

    def _call(self, node: Call) -> Any:
        if node.name == "IF":
            if len(node.args) != 3:
                raise FormulaException("IF needs a condition and two values")
            condition = self.evaluate(node.args[0])
            branch = node.args[1] if _truthy(condition) else node.args[2]
            return self.evaluate(branch)

        args = [self.evaluate(arg) for arg in node.args]
        try:
            return FUNCTIONS[node.name](*args)
        except TypeError:
            raise FormulaException(f"Wrong number of arguments for {node.name}")


def coerce_result(value: Any, result_type: str) -> Any:
    if value is None:
        return None

    if result_type in (FormulaResultType.NUMBER, FormulaResultType.CURRENCY):
        number = _number(value)
        if isinstance(number, float) and (math.isnan(number) or math.isinf(number)):
            return None
        return number
    if result_type == FormulaResultType.TEXT:
        return _text(value)
    if result_type == FormulaResultType.DATE:
        if isinstance(value, str):
            try:
                return _to_datetime(value).date().isoformat()
            except FormulaException:
                return value
        return value
    if result_type == FormulaResultType.BOOLEAN:
        return _truthy(value)
    return value


def evaluate_formula(
    formula: str | Any,
    row: dict[str, Any],
    result_type: str = FormulaResultType.NUMBER,
) -> Any:
    """Evaluate a formula (source text or parsed tree) for one row."""
    tree = parse_formula(formula) if isinstance(formula, str) else formula
    return coerce_result(FormulaEvaluator(row).evaluate(tree), result_type)


class FormulaResolver(ComputedFieldResolver):
    """Evaluates formula fields per row, after every other computed field."""

    column_type = ColumnType.FORMULA

    async def resolve_column(
        self, rows: list[dict[str, Any]], column: ColumnDTO, context: ResolverContext
    ) -> None:
        try:
            config = FormulaFieldConfig.model_validate(column.config)
            tree = parse_formula(config.formula)
        except (ValidationError, FormulaException) as exc:
            self._logger.warning(f"Formula `{column.name}` cannot be parsed: {exc}")
            for row in rows:
                row[column.name] = None
            return

        for row in rows:
            try:
                row[column.name] = evaluate_formula(tree, row, config.result_type)
            except (FormulaException, ArithmeticError, ValueError, TypeError) as exc:
                self._logger.warning(f"Formula `{column.name}` failed for row {row.get('id')}: {exc}")
                row[column.name] = None
