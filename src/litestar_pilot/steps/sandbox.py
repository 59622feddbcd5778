"""Sandboxed evaluation of ``code`` step expressions.

A code step holds a single Python expression with the resolved step input bound
to ``input``::

    [item["title"] for item in input["items"] if item["score"] > 0.5]

The expression is parsed and walked node by node; only an allow-list of AST
nodes, builtins and container methods is evaluated. Host ``eval`` is never
used, nothing is imported, and private or dunder names are rejected.
"""

from __future__ import annotations

import ast
import logging
import operator
from typing import TYPE_CHECKING, Any

from litestar_pilot.exceptions import SandboxError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator

__all__ = [
    "MAX_ITEMS",
    "MAX_NODES",
    "SAFE_FUNCTIONS",
    "SAFE_METHODS",
    "FunctionRegistry",
    "SandboxEvaluator",
    "run_code",
]

logger = logging.getLogger(__name__)

MAX_NODES = 1000
"""Largest accepted expression, counted in AST nodes."""

MAX_ITEMS = 10_000
"""Largest collection an expression may build."""

MAX_EXPONENT = 1000

SAFE_OPERATORS: dict[type[ast.AST], Callable[..., Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Not: operator.not_,
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.In: lambda x, y: x in y,
    ast.NotIn: lambda x, y: x not in y,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}


def _bounded_range(*args: int) -> list[int]:
    values = range(*args)
    if len(values) > MAX_ITEMS:
        msg = f"range() larger than {MAX_ITEMS} items"
        raise SandboxError(msg)
    return list(values)


SAFE_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "abs": abs,
    "all": all,
    "any": any,
    "bool": bool,
    "dict": dict,
    "enumerate": lambda iterable, start=0: list(enumerate(iterable, start)),
    "float": float,
    "int": int,
    "len": len,
    "list": list,
    "max": max,
    "min": min,
    "range": _bounded_range,
    "reversed": lambda seq: list(reversed(seq)),
    "round": round,
    "set": set,
    "sorted": sorted,
    "str": str,
    "sum": sum,
    "tuple": tuple,
    "zip": lambda *iterables: list(zip(*iterables)),
}

SAFE_METHODS: dict[type, frozenset[str]] = {
    str: frozenset(
        {
            "capitalize",
            "count",
            "endswith",
            "find",
            "isdigit",
            "join",
            "lower",
            "lstrip",
            "replace",
            "rstrip",
            "split",
            "splitlines",
            "startswith",
            "strip",
            "title",
            "upper",
        }
    ),
    dict: frozenset({"get", "items", "keys", "values"}),
    list: frozenset({"count", "index"}),
}


class FunctionRegistry:
    """Named pure functions callable from code expressions.

    Example:
        >>> registry = FunctionRegistry()
        >>> registry.register("slugify", lambda text: text.lower().replace(" ", "-"))
        >>> run_code('slugify(input["title"])', {"title": "Hello World"}, registry)
        'hello-world'
    """

    def __init__(self, functions: dict[str, Callable[..., Any]] | None = None) -> None:
        self._functions: dict[str, Callable[..., Any]] = {}
        for name, func in (functions or {}).items():
            self.register(name, func)

    def register(self, name: str, func: Callable[..., Any]) -> None:
        """Register ``func`` under ``name``.

        Raises:
            ValueError: If the name is private or shadows a builtin.
        """
        if name.startswith("_") or name in SAFE_FUNCTIONS or name == "input":
            msg = f"Cannot register function under reserved name '{name}'"
            raise ValueError(msg)
        self._functions[name] = func

    def get(self, name: str) -> Callable[..., Any] | None:
        return self._functions.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._functions

    def names(self) -> list[str]:
        return sorted(self._functions)


class SandboxEvaluator(ast.NodeVisitor):
    """AST walking evaluator for a single expression.

    Restricts evaluation to:
    - literals, containers and comprehensions
    - arithmetic, comparison and boolean operators
    - subscripts, slices, conditional expressions and f-strings
    - the builtins in ``SAFE_FUNCTIONS`` and functions of a ``FunctionRegistry``
    - the ``str``/``dict``/``list`` methods in ``SAFE_METHODS``
    - simple lambdas, for ``sorted(key=...)`` and friends
    """

    def __init__(self, variables: dict[str, Any], functions: FunctionRegistry | None = None) -> None:
        self._scopes: list[dict[str, Any]] = [dict(variables)]
        self._functions = functions or FunctionRegistry()
        self._callables: set[int] = {id(func) for func in SAFE_FUNCTIONS.values()}

    def evaluate(self, expression: str) -> Any:
        try:
            tree = ast.parse(expression.strip(), mode="eval")
        except SyntaxError as e:
            msg = f"Invalid expression syntax: {e.msg}"
            raise SandboxError(msg) from e
        size = sum(1 for _ in ast.walk(tree))
        if size > MAX_NODES:
            msg = f"Expression too large ({size} nodes, limit {MAX_NODES})"
            raise SandboxError(msg)
        return self.visit(tree)

    def generic_visit(self, node: ast.AST) -> Any:
        msg = f"AST node type not allowed: {type(node).__name__}"
        raise SandboxError(msg)

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        name = node.id
        if name.startswith("_"):
            msg = f"Access to private name not allowed: {name}"
            raise SandboxError(msg)
        for scope in reversed(self._scopes):
            if name in scope:
                return scope[name]
        registered = self._functions.get(name)
        if registered is not None:
            self._callables.add(id(registered))
            return registered
        if name in SAFE_FUNCTIONS:
            return SAFE_FUNCTIONS[name]
        msg = f"Undefined variable: {name}"
        raise SandboxError(msg)

    def visit_List(self, node: ast.List) -> list[Any]:
        return self._check_size([self.visit(item) for item in node.elts])

    def visit_Tuple(self, node: ast.Tuple) -> tuple[Any, ...]:
        return tuple(self.visit(item) for item in node.elts)

    def visit_Set(self, node: ast.Set) -> set[Any]:
        return {self.visit(item) for item in node.elts}

    def visit_Dict(self, node: ast.Dict) -> dict[Any, Any]:
        result: dict[Any, Any] = {}
        for key, value in zip(node.keys, node.values):
            if key is None:
                unpacked = self.visit(value)
                if not isinstance(unpacked, dict):
                    msg = "Only dicts can be unpacked with **"
                    raise SandboxError(msg)
                result.update(unpacked)
            else:
                result[self.visit(key)] = self.visit(value)
        return result

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        left = self.visit(node.left)
        right = self.visit(node.right)
        op = SAFE_OPERATORS.get(type(node.op))
        if op is None:
            msg = f"Operator not allowed: {type(node.op).__name__}"
            raise SandboxError(msg)
        if isinstance(node.op, ast.Pow) and isinstance(right, (int, float)) and abs(right) > MAX_EXPONENT:
            msg = f"Exponent larger than {MAX_EXPONENT}"
            raise SandboxError(msg)
        if isinstance(node.op, ast.Mult):
            for seq, count in ((left, right), (right, left)):
                if isinstance(seq, (str, list, tuple)) and isinstance(count, int) and len(seq) * count > MAX_ITEMS:
                    msg = f"Sequence repetition larger than {MAX_ITEMS} items"
                    raise SandboxError(msg)
        return op(left, right)

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        op = SAFE_OPERATORS.get(type(node.op))
        if op is None:
            msg = f"Operator not allowed: {type(node.op).__name__}"
            raise SandboxError(msg)
        return op(self.visit(node.operand))

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        # Short-circuits and returns the deciding operand, like Python itself.
        value: Any = None
        for operand in node.values:
            value = self.visit(operand)
            if isinstance(node.op, ast.And) and not value:
                return value
            if isinstance(node.op, ast.Or) and value:
                return value
        return value

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op_node, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            op = SAFE_OPERATORS.get(type(op_node))
            if op is None:
                msg = f"Operator not allowed: {type(op_node).__name__}"
                raise SandboxError(msg)
            if not op(left, right):
                return False
            left = right
        return True

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        value = self.visit(node.value)
        return value[self.visit(node.slice)]

    def visit_Slice(self, node: ast.Slice) -> slice:
        return slice(
            self.visit(node.lower) if node.lower else None,
            self.visit(node.upper) if node.upper else None,
            self.visit(node.step) if node.step else None,
        )

    def visit_JoinedStr(self, node: ast.JoinedStr) -> str:
        return "".join(str(self.visit(part)) for part in node.values)

    def visit_FormattedValue(self, node: ast.FormattedValue) -> str:
        value = self.visit(node.value)
        if node.conversion == ord("r"):
            value = repr(value)
        elif node.conversion in (ord("s"), ord("a")):
            value = str(value)
        spec = self.visit(node.format_spec) if node.format_spec else ""
        return format(value, spec)

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        msg = f"Attribute access not allowed: {node.attr}"
        raise SandboxError(msg)

    def visit_Call(self, node: ast.Call) -> Any:
        if any(isinstance(arg, ast.Starred) for arg in node.args) or any(kw.arg is None for kw in node.keywords):
            msg = "Argument unpacking not allowed"
            raise SandboxError(msg)
        args = [self.visit(arg) for arg in node.args]
        kwargs = {kw.arg: self.visit(kw.value) for kw in node.keywords}

        if isinstance(node.func, ast.Attribute):
            return self._call_method(node.func, args, kwargs)

        func = self.visit(node.func)
        if id(func) not in self._callables:
            name = getattr(node.func, "id", type(node.func).__name__)
            msg = f"Function not allowed: {name}"
            raise SandboxError(msg)
        return func(*args, **kwargs)

    def visit_Lambda(self, node: ast.Lambda) -> Callable[..., Any]:
        arguments = node.args
        if arguments.vararg or arguments.kwarg or arguments.kwonlyargs or arguments.defaults:
            msg = "Only simple positional lambdas are allowed"
            raise SandboxError(msg)
        names = [arg.arg for arg in arguments.args]

        def closure(*values: Any) -> Any:
            if len(values) != len(names):
                msg = f"Lambda expects {len(names)} arguments, got {len(values)}"
                raise SandboxError(msg)
            self._scopes.append(dict(zip(names, values)))
            try:
                return self.visit(node.body)
            finally:
                self._scopes.pop()

        self._callables.add(id(closure))
        return closure

    def visit_ListComp(self, node: ast.ListComp) -> list[Any]:
        return [self.visit(node.elt) for _ in self._iterate(node.generators)]

    def visit_GeneratorExp(self, node: ast.GeneratorExp) -> list[Any]:
        return [self.visit(node.elt) for _ in self._iterate(node.generators)]

    def visit_SetComp(self, node: ast.SetComp) -> set[Any]:
        return {self.visit(node.elt) for _ in self._iterate(node.generators)}

    def visit_DictComp(self, node: ast.DictComp) -> dict[Any, Any]:
        return {self.visit(node.key): self.visit(node.value) for _ in self._iterate(node.generators)}

    def _call_method(self, node: ast.Attribute, args: list[Any], kwargs: dict[str, Any]) -> Any:
        target = self.visit(node.value)
        name = node.attr
        allowed = next((methods for kind, methods in SAFE_METHODS.items() if isinstance(target, kind)), None)
        if name.startswith("_") or allowed is None or name not in allowed:
            msg = f"Method not allowed: {type(target).__name__}.{name}"
            raise SandboxError(msg)
        result = getattr(target, name)(*args, **kwargs)
        if name in {"items", "keys", "values"}:
            return list(result)
        return result

    def _iterate(self, generators: list[ast.comprehension]) -> Iterator[None]:
        produced = 0
        self._scopes.append({})
        try:
            for _ in self._walk_generators(generators, 0):
                produced += 1
                if produced > MAX_ITEMS:
                    msg = f"Comprehension produced more than {MAX_ITEMS} items"
                    raise SandboxError(msg)
                yield None
        finally:
            self._scopes.pop()

    def _walk_generators(self, generators: list[ast.comprehension], index: int) -> Iterator[None]:
        if index == len(generators):
            yield None
            return
        generator = generators[index]
        if generator.is_async:
            msg = "Async comprehensions not allowed"
            raise SandboxError(msg)
        for item in self._as_iterable(self.visit(generator.iter)):
            self._bind(generator.target, item)
            if all(self.visit(condition) for condition in generator.ifs):
                yield from self._walk_generators(generators, index + 1)

    def _bind(self, target: ast.expr, value: Any) -> None:
        if isinstance(target, ast.Name):
            if target.id.startswith("_") and target.id != "_":
                msg = f"Access to private name not allowed: {target.id}"
                raise SandboxError(msg)
            self._scopes[-1][target.id] = value
        elif isinstance(target, ast.Tuple):
            values = list(value)
            if len(values) != len(target.elts):
                msg = f"Cannot unpack {len(values)} values into {len(target.elts)} names"
                raise SandboxError(msg)
            for element, item in zip(target.elts, values):
                self._bind(element, item)
        else:
            msg = f"Unsupported loop target: {type(target).__name__}"
            raise SandboxError(msg)

    @staticmethod
    def _as_iterable(value: Any) -> Iterable[Any]:
        if isinstance(value, dict):
            return list(value)
        if isinstance(value, (list, tuple, str, set, frozenset)):
            return value
        msg = f"Cannot iterate over {type(value).__name__}"
        raise SandboxError(msg)

    @staticmethod
    def _check_size(items: list[Any]) -> list[Any]:
        if len(items) > MAX_ITEMS:
            msg = f"List larger than {MAX_ITEMS} items"
            raise SandboxError(msg)
        return items


def _to_json_compatible(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [_to_json_compatible(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return [_to_json_compatible(item) for item in sorted(value, key=repr)]
    if isinstance(value, dict):
        return {key: _to_json_compatible(item) for key, item in value.items()}
    return value


def run_code(code: str, input: Any, functions: FunctionRegistry | None = None) -> Any:
    """Evaluate a code step expression.

    Args:
        code: A single Python expression.
        input: The resolved step input, bound to ``input``.
        functions: Optional registry of extra callable functions.

    Returns:
        The expression value with tuples and sets converted to lists.

    Raises:
        SandboxError: If the expression is rejected or fails while evaluating.

    Example:
        >>> run_code("[n * 2 for n in input['numbers']]", {"numbers": [1, 2]})
        [2, 4]
    """
    if not code or not code.strip():
        msg = "Empty code expression"
        raise SandboxError(msg)
    evaluator = SandboxEvaluator({"input": input}, functions)
    try:
        result = evaluator.evaluate(code)
    except SandboxError:
        raise
    except RecursionError as e:
        msg = "Expression nested too deeply"
        raise SandboxError(msg) from e
    except Exception as e:
        logger.debug("Code expression failed: %s", e)
        msg = f"{type(e).__name__}: {e}"
        raise SandboxError(msg) from e
    return _to_json_compatible(result)
