"""Arithmetic expressions for the math directive.

Grammar: numeric literals, ``${attribute}`` references, binary
``+ - * / % **``, unary ``+``/``-`` and parentheses. Expressions are
parsed once with :mod:`ast` and evaluated by walking a whitelisted node
set; anything else is rejected when the config is compiled.

``**`` is computed on floats, so an oversized result raises
OverflowError rather than growing without bound.
"""

import ast
import math
import operator
import re
from typing import Any, Callable

from .errors import ComputeError, ConfigError
from .sample import Sample, to_number

REFERENCE = re.compile(r"\$\{([^}]+)\}")

_BINARY: dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
    ast.Pow: math.pow,
}

_UNARY: dict[type, Callable[[Any], Any]] = {
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}


class Expression:
    """A compiled math expression."""

    def __init__(self, text: str):
        self.text = text
        self.references: list[str] = []

        def _placeholder(match: re.Match) -> str:
            name = match.group(1)
            if name not in self.references:
                self.references.append(name)
            return f"_ref{self.references.index(name)}"

        source = REFERENCE.sub(_placeholder, text).strip()
        if not source:
            raise ConfigError(f"empty math expression '{text}'")
        try:
            self._tree = ast.parse(source, mode="eval")
        except SyntaxError as e:
            raise ConfigError(f"invalid math expression '{text}': {e.msg}") from e
        self._check(self._tree.body)

    def _check(self, node: ast.AST):
        if isinstance(node, ast.BinOp):
            if type(node.op) not in _BINARY:
                raise ConfigError(f"unsupported operator in '{self.text}'")
            self._check(node.left)
            self._check(node.right)
        elif isinstance(node, ast.UnaryOp):
            if type(node.op) not in _UNARY:
                raise ConfigError(f"unsupported operator in '{self.text}'")
            self._check(node.operand)
        elif isinstance(node, ast.Constant):
            if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
                raise ConfigError(f"only numeric literals are allowed in '{self.text}'")
        elif isinstance(node, ast.Name):
            if not node.id.startswith("_ref"):
                raise ConfigError(
                    f"bare name '{node.id}' in '{self.text}', reference attributes as ${{name}}"
                )
        else:
            raise ConfigError(f"unsupported syntax in '{self.text}'")

    def evaluate(self, sample: Sample) -> float:
        """Evaluate against a sample; raises ComputeError on any failure."""
        values = []
        for name in self.references:
            if name not in sample:
                raise ComputeError(f"attribute '{name}' not found", attribute=name)
            number = to_number(sample[name])
            if number is None:
                raise ComputeError(f"attribute '{name}' is not numeric", attribute=name)
            values.append(number)
        try:
            result = self._eval(self._tree.body, values)
        except (ZeroDivisionError, OverflowError, ValueError) as e:
            raise ComputeError(f"cannot evaluate '{self.text}': {e}") from e
        return result

    def _eval(self, node: ast.AST, values: list) -> Any:
        if isinstance(node, ast.BinOp):
            return _BINARY[type(node.op)](self._eval(node.left, values), self._eval(node.right, values))
        if isinstance(node, ast.UnaryOp):
            return _UNARY[type(node.op)](self._eval(node.operand, values))
        if isinstance(node, ast.Constant):
            return node.value
        return values[int(node.id[len("_ref"):])]

    def __repr__(self) -> str:
        return f"Expression({self.text!r})"
