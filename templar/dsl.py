"""Boolean expression language used by ``dsl`` matchers.

Expressions are written in the template syntax::

    status_code == 200 && contains(body, "admin") || !regex("^4\\d\\d$", status)

The text is rewritten to Python operators outside string literals, parsed with
:mod:`ast`, validated against a whitelist and evaluated by walking the tree.
Nothing is ever passed to ``eval``.

Names:
  - ``status_code`` (int), ``status`` (str), ``body`` (str), ``header`` (str),
    ``content_length`` (int)

Functions:
  - ``contains(haystack, needle)``, ``regex(pattern, subject)``, ``len(value)``,
    ``tolower(value)``, ``toupper(value)``
"""

import ast
import re
from typing import Any, Callable, Dict, Mapping

from templar.errors import DSLError

_STRING_LITERAL = re.compile(r'"(?:\\.|[^"\\])*"|\'(?:\\.|[^\'\\])*\'')

_OPERATOR_REWRITES = (
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
    (re.compile(r"\btrue\b"), "True"),
    (re.compile(r"\bfalse\b"), "False"),
)

ALLOWED_NAMES = {"status_code", "status", "body", "header", "content_length"}
ALLOWED_CMP_OPS = (ast.Eq, ast.NotEq, ast.Lt, ast.LtE, ast.Gt, ast.GtE)


def _regex(pattern: Any, subject: Any) -> bool:
    try:
        return re.search(str(pattern), str(subject)) is not None
    except re.error as e:
        raise DSLError(f"invalid regex {pattern!r}: {e}") from e


def _len(value: Any) -> int:
    if not isinstance(value, (str, bytes)):
        raise DSLError(f"len() expects a string, got {type(value).__name__}")
    return len(value)


FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "contains": lambda haystack, needle: str(needle) in str(haystack),
    "regex": _regex,
    "len": _len,
    "tolower": lambda value: str(value).lower(),
    "toupper": lambda value: str(value).upper(),
}


def translate(expression: str) -> str:
    """Rewrite ``&&``/``||``/``!``/``true``/``false`` outside string literals."""
    out = []
    pos = 0
    for literal in _STRING_LITERAL.finditer(expression):
        out.append(_rewrite_operators(expression[pos:literal.start()]))
        out.append(literal.group(0))
        pos = literal.end()
    out.append(_rewrite_operators(expression[pos:]))
    return "".join(out).strip()


def _rewrite_operators(segment: str) -> str:
    for pattern, replacement in _OPERATOR_REWRITES:
        segment = pattern.sub(replacement, segment)
    return segment


class _ExpressionValidator(ast.NodeVisitor):
    def visit(self, node: ast.AST) -> Any:
        if isinstance(node, ast.Load):
            return None
        if isinstance(node, ast.Expression):
            return self.visit(node.body)
        return super().visit(node)

    def generic_visit(self, node: ast.AST) -> Any:
        allowed = (ast.BoolOp, ast.UnaryOp, ast.Compare, ast.Name, ast.Constant, ast.Call)
        if not isinstance(node, allowed):
            raise DSLError(f"Disallowed syntax: {type(node).__name__}")
        return super().generic_visit(node)

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id not in ALLOWED_NAMES:
            raise DSLError(f"Unknown name: {node.id}")

    def visit_Constant(self, node: ast.Constant) -> Any:
        if not isinstance(node.value, (str, int, float, bool)):
            raise DSLError(f"Unsupported constant: {node.value!r}")

    def visit_Call(self, node: ast.Call) -> Any:
        if not isinstance(node.func, ast.Name) or node.func.id not in FUNCTIONS:
            raise DSLError(f"Unknown function: {ast.unparse(node.func)}")
        if node.keywords:
            raise DSLError("Keyword arguments are not allowed")
        for arg in node.args:
            self.visit(arg)

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        for value in node.values:
            self.visit(value)

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        if not isinstance(node.op, ast.Not):
            raise DSLError("Disallowed unary operator")
        self.visit(node.operand)

    def visit_Compare(self, node: ast.Compare) -> Any:
        for op in node.ops:
            if not isinstance(op, ALLOWED_CMP_OPS):
                raise DSLError("Disallowed comparison operator")
        self.visit(node.left)
        for comp in node.comparators:
            self.visit(comp)


def compile_expression(expression: str) -> ast.Expression:
    """Translate, parse and validate an expression."""
    source = translate(expression)
    if not source:
        raise DSLError("empty expression")
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as e:
        raise DSLError(f"Invalid syntax in {expression!r}: {e.msg}") from e
    _ExpressionValidator().visit(tree)
    return tree


def build_scope(status_code: int = 0, body: str = "", header: str = "") -> Dict[str, Any]:
    return {
        "status_code": status_code,
        "status": str(status_code),
        "body": body,
        "header": header,
        "content_length": len(body.encode("utf-8", errors="replace")),
    }


def evaluate(expression: str, scope: Mapping[str, Any]) -> bool:
    """Evaluate ``expression`` and return its boolean result.

    Raises:
        DSLError: the expression is malformed, uses anything outside the
            whitelist, or evaluates to a non-boolean value.
    """
    tree = compile_expression(expression)
    result = _eval_node(tree.body, scope)
    if not isinstance(result, bool):
        raise DSLError(
            f"expression {expression!r} evaluated to {type(result).__name__}, not bool"
        )
    return result


def _eval_node(node: ast.AST, scope: Mapping[str, Any]) -> Any:
    if isinstance(node, ast.Constant):
        return node.value

    if isinstance(node, ast.Name):
        return scope.get(node.id)

    if isinstance(node, ast.Call):
        args = [_eval_node(arg, scope) for arg in node.args]
        try:
            return FUNCTIONS[node.func.id](*args)
        except TypeError as e:
            raise DSLError(f"{node.func.id}(): {e}") from e

    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            for v in node.values:
                if not _truth(_eval_node(v, scope)):
                    return False
            return True
        for v in node.values:
            if _truth(_eval_node(v, scope)):
                return True
        return False

    if isinstance(node, ast.UnaryOp):
        return not _truth(_eval_node(node.operand, scope))

    if isinstance(node, ast.Compare):
        left = _eval_node(node.left, scope)
        for op, right_node in zip(node.ops, node.comparators):
            right = _eval_node(right_node, scope)
            if not _compare(op, left, right):
                return False
            left = right
        return True

    raise DSLError(f"Unhandled syntax: {type(node).__name__}")


def _truth(value: Any) -> bool:
    if not isinstance(value, bool):
        raise DSLError(f"boolean operand expected, got {type(value).__name__}")
    return value


def _compare(op: ast.cmpop, left: Any, right: Any) -> bool:
    if isinstance(op, ast.Eq):
        return left == right
    if isinstance(op, ast.NotEq):
        return left != right
    try:
        if isinstance(op, ast.Lt):
            return left < right
        if isinstance(op, ast.LtE):
            return left <= right
        if isinstance(op, ast.Gt):
            return left > right
        return left >= right
    except TypeError as e:
        raise DSLError(f"cannot order {left!r} and {right!r}") from e
