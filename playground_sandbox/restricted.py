"""Compilation policy and runtime guards for submitted snippets.

A snippet is the body of an async function. It is parsed, grafted into a fixed
host template (`async def snippet(): ...`), checked and rewritten by
`SnippetPolicy`, and executed against an explicit globals dict whose builtins
are a curated table. Nothing reaches the snippet except what that dict holds.

Rules enforced at compile time:
  - no imports, `global`/`nonlocal`, class definitions or `match` statements
  - no names or attributes starting with "_"
  - no introspection attributes that lead to frames, code objects or the loop
  - attributes may be read but never assigned or deleted

Rewrites that make the run interruptible:
  - every attribute read goes through `_getattr_`
  - every `for` iterable goes through `_getiter_`
  - every `while` / `async for` body starts with `_tick_()`
  - every `**` goes through `_pow_`
The first three check the run's deadline. Builtins that hand out iterators
(`iter`, `map`, `filter`, `zip`, `enumerate`, `reversed`) return `_getiter_`
generators, so C-level consumers such as `list()` or `sum()` step through
Python code and see the deadline too.
"""

from __future__ import annotations

import ast
import asyncio
import re
import textwrap
import time
from types import CodeType
from typing import Any, Callable, Iterable, Iterator

from .errors import InvalidInput

SNIPPET_FILENAME = "<snippet>"
SNIPPET_FUNCTION = "snippet"
RANGE_LIMIT = 1_000_000
# Upper bound on the bit length of an integer power.
POW_BIT_LIMIT = 1_000_000

_TEMPLATE = f"async def {SNIPPET_FUNCTION}():\n    pass\n"

# Caller-visible boilerplate; each end is stripped independently.
_BOILERPLATE_HEAD = re.compile(r"\Aasync def main\(\):[ \t]*\r?\n")
_BOILERPLATE_TAIL = re.compile(r"\r?\n(?:asyncio\.run\(main\(\)\)|await main\(\))[ \t]*\s*\Z")

_FORBIDDEN_ATTRIBUTES = frozenset(
    {
        # generators, coroutines, async generators
        "gi_frame",
        "gi_code",
        "gi_yieldfrom",
        "cr_frame",
        "cr_code",
        "cr_await",
        "cr_origin",
        "ag_frame",
        "ag_code",
        "ag_await",
        # frames, tracebacks, code objects
        "f_back",
        "f_builtins",
        "f_code",
        "f_globals",
        "f_locals",
        "f_trace",
        "tb_frame",
        "tb_next",
        "co_code",
        "co_consts",
        # futures hand out the event loop
        "get_loop",
        # AttributeError keeps the object the lookup failed on
        "obj",
        # str.format resolves attribute paths at runtime
        "format",
        "format_map",
    }
)


class DeadlineExceeded(BaseException):
    """Raised inside a snippet once its run is out of time.

    A BaseException so that `except Exception` in the snippet cannot absorb it.
    """


class Deadline:
    def __init__(self, seconds: float):
        self.seconds = float(seconds)
        self.expires_at = time.monotonic() + self.seconds

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at

    def check(self) -> None:
        if self.expired:
            raise DeadlineExceeded(f"run exceeded {self.seconds:g}s")


def strip_boilerplate(code: str) -> str:
    """Remove `async def main():` ... `asyncio.run(main())` wrapping, if present."""
    code = _BOILERPLATE_HEAD.sub("", code, count=1)
    code = _BOILERPLATE_TAIL.sub("\n", code, count=1)
    return textwrap.dedent(code)


class SnippetPolicy(ast.NodeTransformer):
    def __init__(self) -> None:
        self.errors: list[str] = []

    def _reject(self, node: ast.AST, message: str) -> None:
        self.errors.append(f"Line {getattr(node, 'lineno', '?')}: {message}")

    def _check_name(self, node: ast.AST, name: str | None) -> None:
        if name and name.startswith("_"):
            self._reject(node, f'"{name}" is an invalid name because it starts with "_"')

    # --- Forbidden statements ---

    def visit_Import(self, node: ast.Import) -> ast.AST:
        self._reject(node, "import statements are not allowed")
        return node

    def visit_ImportFrom(self, node: ast.ImportFrom) -> ast.AST:
        self._reject(node, "import statements are not allowed")
        return node

    def visit_Global(self, node: ast.Global) -> ast.AST:
        self._reject(node, "global statements are not allowed")
        return node

    def visit_Nonlocal(self, node: ast.Nonlocal) -> ast.AST:
        self._reject(node, "nonlocal statements are not allowed")
        return node

    def visit_ClassDef(self, node: ast.ClassDef) -> ast.AST:
        self._reject(node, "class definitions are not allowed")
        return node

    def visit_Match(self, node: ast.AST) -> ast.AST:
        self._reject(node, "match statements are not allowed")
        return node

    # --- Names ---

    def visit_Name(self, node: ast.Name) -> ast.AST:
        self._check_name(node, node.id)
        return node

    def visit_arg(self, node: ast.arg) -> ast.AST:
        self._check_name(node, node.arg)
        return self.generic_visit(node)

    def visit_FunctionDef(self, node: ast.FunctionDef) -> ast.AST:
        self._check_name(node, node.name)
        return self.generic_visit(node)

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> ast.AST:
        self._check_name(node, node.name)
        return self.generic_visit(node)

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> ast.AST:
        self._check_name(node, node.name)
        return self.generic_visit(node)

    # --- Attributes ---

    def visit_Attribute(self, node: ast.Attribute) -> ast.AST:
        self.generic_visit(node)
        if node.attr.startswith("_"):
            self._reject(node, f'"{node.attr}" is an invalid attribute name because it starts with "_"')
            return node
        if node.attr in _FORBIDDEN_ATTRIBUTES:
            self._reject(node, f'"{node.attr}" is not an allowed attribute')
            return node
        if not isinstance(node.ctx, ast.Load):
            self._reject(node, "assigning or deleting attributes is not allowed")
            return node
        call = ast.Call(
            func=ast.Name(id="_getattr_", ctx=ast.Load()),
            args=[node.value, ast.Constant(value=node.attr)],
            keywords=[],
        )
        return ast.copy_location(call, node)

    # --- Arithmetic ---

    def visit_BinOp(self, node: ast.BinOp) -> ast.AST:
        self.generic_visit(node)
        if not isinstance(node.op, ast.Pow):
            return node
        call = ast.Call(func=ast.Name(id="_pow_", ctx=ast.Load()), args=[node.left, node.right], keywords=[])
        return ast.copy_location(call, node)

    def visit_AugAssign(self, node: ast.AugAssign) -> ast.AST:
        self.generic_visit(node)
        if not isinstance(node.op, ast.Pow):
            return node
        if not isinstance(node.target, ast.Name):
            self._reject(node, '"**=" is only allowed on plain names')
            return node
        call = ast.Call(
            func=ast.Name(id="_pow_", ctx=ast.Load()),
            args=[ast.Name(id=node.target.id, ctx=ast.Load()), node.value],
            keywords=[],
        )
        assign = ast.Assign(targets=[node.target], value=ast.copy_location(call, node))
        return ast.copy_location(assign, node)

    # --- Loops ---

    def visit_For(self, node: ast.For) -> ast.AST:
        self.generic_visit(node)
        node.iter = self._guard_iter(node.iter)
        return node

    def visit_AsyncFor(self, node: ast.AsyncFor) -> ast.AST:
        self.generic_visit(node)
        node.body.insert(0, self._tick(node))
        return node

    def visit_While(self, node: ast.While) -> ast.AST:
        self.generic_visit(node)
        node.body.insert(0, self._tick(node))
        return node

    def visit_comprehension(self, node: ast.comprehension) -> ast.AST:
        self.generic_visit(node)
        if not node.is_async:
            node.iter = self._guard_iter(node.iter)
        return node

    def _guard_iter(self, expr: ast.expr) -> ast.expr:
        call = ast.Call(func=ast.Name(id="_getiter_", ctx=ast.Load()), args=[expr], keywords=[])
        return ast.copy_location(call, expr)

    def _tick(self, node: ast.AST) -> ast.stmt:
        call = ast.Call(func=ast.Name(id="_tick_", ctx=ast.Load()), args=[], keywords=[])
        return ast.copy_location(ast.Expr(value=ast.copy_location(call, node)), node)


def compile_snippet(body: str) -> CodeType:
    """Compile a snippet body into a module defining `async def snippet()`.

    Raises InvalidInput for syntax errors and policy violations.
    """
    try:
        parsed = compile(
            body,
            SNIPPET_FILENAME,
            "exec",
            flags=ast.PyCF_ONLY_AST | ast.PyCF_ALLOW_TOP_LEVEL_AWAIT,
            dont_inherit=True,
        )
    except SyntaxError as exc:
        raise InvalidInput(f"Line {exc.lineno}: {exc.msg}") from None

    module = ast.parse(_TEMPLATE, filename=SNIPPET_FILENAME)
    if parsed.body:
        module.body[0].body = parsed.body

    policy = SnippetPolicy()
    module = policy.visit(module)
    if policy.errors:
        raise InvalidInput("; ".join(policy.errors))
    ast.fix_missing_locations(module)

    try:
        return compile(module, SNIPPET_FILENAME, "exec", dont_inherit=True)
    except SyntaxError as exc:
        raise InvalidInput(f"Line {exc.lineno}: {exc.msg}") from None


def _limited_range(*args: int) -> range:
    r = range(*args)
    if len(r) > RANGE_LIMIT:
        raise ValueError(f"range() is limited to {RANGE_LIMIT} items")
    return r


def _bounded_pow(base: Any, exp: Any, *mod: Any) -> Any:
    # A single huge power runs inside one C call where no deadline check can reach it.
    if not mod and isinstance(base, int) and isinstance(exp, int) and exp > 0:
        if max(base.bit_length(), 1) * exp > POW_BIT_LIMIT:
            raise ValueError(f"pow() result is limited to {POW_BIT_LIMIT} bits")
    return pow(base, exp, *mod)


SAFE_BUILTINS: dict[str, Any] = {
    "True": True,
    "False": False,
    "None": None,
    # Type constructors
    "int": int,
    "float": float,
    "str": str,
    "bool": bool,
    "list": list,
    "dict": dict,
    "tuple": tuple,
    "set": set,
    "frozenset": frozenset,
    "bytes": bytes,
    # Iterables
    "range": _limited_range,
    "enumerate": enumerate,
    "zip": zip,
    "map": map,
    "filter": filter,
    "sorted": sorted,
    "reversed": reversed,
    "iter": iter,
    "next": next,
    # Math/comparison
    "len": len,
    "min": min,
    "max": max,
    "sum": sum,
    "abs": abs,
    "round": round,
    "pow": _bounded_pow,
    "divmod": divmod,
    # String/char
    "chr": chr,
    "ord": ord,
    "repr": repr,
    "ascii": ascii,
    # Type checking
    "isinstance": isinstance,
    "callable": callable,
    # Collections
    "all": all,
    "any": any,
    "slice": slice,
    # Exceptions
    "Exception": Exception,
    "ArithmeticError": ArithmeticError,
    "AssertionError": AssertionError,
    "AttributeError": AttributeError,
    "IndexError": IndexError,
    "KeyError": KeyError,
    "LookupError": LookupError,
    "NotImplementedError": NotImplementedError,
    "RuntimeError": RuntimeError,
    "StopIteration": StopIteration,
    "StopAsyncIteration": StopAsyncIteration,
    "TimeoutError": TimeoutError,
    "TypeError": TypeError,
    "ValueError": ValueError,
    "ZeroDivisionError": ZeroDivisionError,
    # BLOCKED: __import__, open, eval, exec, compile, type, getattr, setattr,
    # vars, dir, globals, locals, input, breakpoint, format, BaseException
}


def build_globals(capabilities: dict[str, Any], *, deadline: Deadline, print_fn: Callable[..., None]) -> dict[str, Any]:
    """The complete namespace a snippet executes in."""

    def _getattr_(obj: Any, name: str) -> Any:
        deadline.check()
        return getattr(obj, name)

    def _getiter_(iterable: Iterable[Any]) -> Iterator[Any]:
        for item in iterable:
            deadline.check()
            yield item

    def guarded(factory: Callable[..., Iterable[Any]]) -> Callable[..., Iterator[Any]]:
        def make(*args: Any, **kwargs: Any) -> Iterator[Any]:
            # Built eagerly so bad arguments fail at the call site.
            return _getiter_(factory(*args, **kwargs))

        make.__name__ = factory.__name__
        return make

    builtins = dict(SAFE_BUILTINS)
    for name in ("iter", "map", "filter", "zip", "enumerate", "reversed"):
        builtins[name] = guarded(SAFE_BUILTINS[name])
    builtins["print"] = print_fn

    namespace: dict[str, Any] = {
        "__builtins__": builtins,
        "__name__": "snippet",
        "_getattr_": _getattr_,
        "_getiter_": _getiter_,
        "_tick_": deadline.check,
        "_pow_": _bounded_pow,
    }
    namespace.update(capabilities)
    return namespace


def make_sleep(deadline: Deadline) -> Callable[[float], Any]:
    """Timer primitive for snippets; refuses to start once the run is out of time."""

    async def sleep(seconds: float) -> None:
        deadline.check()
        await asyncio.sleep(max(0.0, float(seconds)))

    return sleep
