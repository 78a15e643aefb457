from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from . import ast
from .borrow_checker import CheckedProgram
from .config import DEFAULT_SETTINGS, Settings
from .diagnostics import Diagnostic, DiagnosticError, DiagnosticKind, Span, report_runtime_violation
from .places import BoxValue, CellState, Heap, RefValue
from .runtime import BUILTINS, BuiltinFunction, RuntimeContext, format_template
from .tracker import BorrowKind, BorrowStacks, Violation

logger = logging.getLogger(__name__)

_I32_MIN = -(2**31)
_I32_MAX = 2**31 - 1

# Host stack frames a single source-level call can use up.
_HOST_FRAMES_PER_CALL = 40

_OVERFLOW_VERBS = {"+": "add", "-": "subtract", "*": "multiply", "/": "divide", "%": "calculate the remainder"}


class RunError(DiagnosticError):
    """Dynamic failure while evaluating an accepted program."""


class ReturnSignal(Exception):
    def __init__(self, value: object) -> None:
        self.value = value


@dataclass
class Scope:
    names: Dict[str, int] = field(default_factory=dict)
    # Cells owned by the scope, in creation order (bindings and temporaries).
    cells: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class Location:
    """The cell a place expression denotes, and how it was reached."""

    addr: int
    # Tag of the reference the path went through; None when reached from a binding.
    tag: Optional[int] = None
    # Cells passed through box derefs after that reference or binding, outermost first.
    owners: Tuple[int, ...] = ()
    # Expression whose value was the reference.
    ref: Optional[ast.Expr] = None

    @property
    def cells(self) -> Tuple[int, ...]:
        return self.owners + (self.addr,)


@dataclass
class Activation:
    function: str
    scopes: List[Scope] = field(default_factory=list)

    def lookup(self, name: str) -> int:
        for scope in reversed(self.scopes):
            addr = scope.names.get(name)
            if addr is not None:
                return addr
        raise RuntimeError(f"Unknown identifier '{name}'")


class Interpreter:
    def __init__(
        self,
        checked: CheckedProgram,
        settings: Optional[Settings] = None,
        builtins: Mapping[str, BuiltinFunction] | None = None,
        filename: Optional[str] = None,
    ) -> None:
        self.program = checked.program
        self.settings = settings or DEFAULT_SETTINGS
        self.entry = checked.entry
        self.functions: Dict[str, ast.FunctionDef] = {fn.name: fn for fn in self.program.functions}
        self.builtins = builtins or BUILTINS
        self.filename = filename
        self.heap = Heap()
        self.borrows = BorrowStacks()
        self.runtime_ctx = RuntimeContext(self.heap)
        self.frames: List[Activation] = []

    @property
    def outputs(self) -> List[str]:
        return self.runtime_ctx.outputs

    def run(self) -> List[str]:
        entry = self.functions[self.entry]
        with _host_stack_headroom(self.settings.max_call_depth):
            self._call(entry, [], entry.loc)
        logger.debug(
            "run finished: %d cells allocated, %d freed, %d live",
            self.heap.allocated,
            self.heap.freed,
            self.heap.live_cells,
        )
        return list(self.outputs)

    # -- calls and scopes -------------------------------------------------

    def _call(self, fn: ast.FunctionDef, args: List[object], loc: ast.Located) -> object:
        if len(self.frames) >= self.settings.max_call_depth:
            raise self._error(
                DiagnosticKind.STACK_EXHAUSTED,
                f"call depth exceeded {self.settings.max_call_depth} frames in `{fn.name}`",
                loc,
                subject=fn.name,
            )
        frame = Activation(fn.name)
        self.frames.append(frame)
        self._push_scope()
        try:
            for param, value in zip(fn.params, args):
                self._bind(param.name, value)
            try:
                return self._eval_block(fn.body)
            except ReturnSignal as signal:
                return signal.value
        finally:
            while frame.scopes:
                self._pop_scope()
            self.frames.pop()

    def _push_scope(self) -> None:
        self.frames[-1].scopes.append(Scope())

    def _pop_scope(self) -> None:
        scope = self.frames[-1].scopes.pop()
        for addr in reversed(scope.cells):
            self._drop_cell(addr)

    def _bind(self, name: str, value: object, initialized: bool = True) -> int:
        addr = self.heap.alloc(value, initialized=initialized)
        scope = self.frames[-1].scopes[-1]
        scope.names[name] = addr
        scope.cells.append(addr)
        return addr

    def _materialize(self, value: object) -> int:
        """Give a temporary a cell that lives until the enclosing scope ends."""
        addr = self.heap.alloc(value)
        self.frames[-1].scopes[-1].cells.append(addr)
        return addr

    def _drop_cell(self, addr: int) -> None:
        cell = self.heap.cell(addr)
        if cell.state is CellState.LIVE:
            self._drop_value(cell.value)
        self.heap.free(addr)
        self.borrows.forget(addr)

    def _drop_value(self, value: object) -> None:
        if isinstance(value, BoxValue):
            self._drop_cell(value.addr)

    # -- statements -------------------------------------------------------

    def _eval_block(self, block: ast.Block) -> object:
        self._push_scope()
        try:
            for stmt in block.statements:
                self._exec_stmt(stmt)
            if block.tail is not None:
                return self._eval_expr(block.tail)
            return None
        finally:
            self._pop_scope()

    def _exec_stmt(self, stmt: ast.Stmt) -> None:
        if isinstance(stmt, ast.LetStmt):
            if stmt.value is None:
                self._bind(stmt.name, None, initialized=False)
            else:
                self._bind(stmt.name, self._eval_expr(stmt.value))
            return
        if isinstance(stmt, ast.AssignStmt):
            self._assign(stmt)
            return
        if isinstance(stmt, ast.ReturnStmt):
            value = self._eval_expr(stmt.value) if stmt.value is not None else None
            raise ReturnSignal(value)
        if isinstance(stmt, ast.WhileStmt):
            while self._eval_expr(stmt.condition):
                self._eval_block(stmt.body)
            return
        if isinstance(stmt, ast.ExprStmt):
            self._drop_value(self._eval_expr(stmt.value))
            return
        raise RuntimeError(f"Unsupported statement {stmt}")

    def _assign(self, stmt: ast.AssignStmt) -> None:
        value = self._eval_expr(stmt.value)
        loc = self._eval_place(stmt.target)
        if stmt.op is not None:
            current = self._load(loc, stmt.target)
            result = self._arith(stmt.op, current, value, stmt.loc)
            self._access(loc, stmt.target, write=True, cause=DiagnosticKind.ASSIGN_WHILE_BORROWED)
            self.heap.store(loc.addr, result)
            return
        self._access(loc, stmt.target, write=True, cause=DiagnosticKind.ASSIGN_WHILE_BORROWED)
        cell = self.heap.cell(loc.addr)
        if cell.state is CellState.LIVE:
            self._drop_value(cell.value)
        self.heap.store(loc.addr, value)

    # -- expressions ------------------------------------------------------

    def _eval_expr(self, expr: ast.Expr) -> object:
        if isinstance(expr, ast.Literal):
            return expr.value
        if ast.is_place_expr(expr):
            return self._read(self._eval_place(expr), expr)
        if isinstance(expr, ast.Deref):
            return self._read(self._eval_place(expr), expr)
        if isinstance(expr, ast.Unary):
            operand = self._eval_expr(expr.operand)
            if expr.op == "!":
                return not operand
            return self._check_range(-operand, "-", expr.loc, verb="negate")
        if isinstance(expr, ast.Binary):
            return self._eval_binary(expr)
        if isinstance(expr, ast.Borrow):
            if ast.is_place_expr(expr.operand):
                loc = self._eval_place(expr.operand)
                self._access(loc, expr.operand, write=expr.mutable, cause=DiagnosticKind.CONFLICTING_BORROW)
                addr = loc.addr
            else:
                addr = self._materialize(self._eval_expr(expr.operand))
            kind = BorrowKind.EXCLUSIVE if expr.mutable else BorrowKind.SHARED
            return RefValue(addr, expr.mutable, self.borrows.push(addr, kind))
        if isinstance(expr, ast.BoxNew):
            return BoxValue(self.heap.alloc(self._eval_expr(expr.value)))
        if isinstance(expr, ast.Call):
            return self._eval_call(expr)
        if isinstance(expr, ast.MacroCall):
            return self._eval_macro(expr)
        if isinstance(expr, ast.IfExpr):
            if self._eval_expr(expr.condition):
                return self._eval_block(expr.then_block)
            if expr.else_block is not None:
                return self._eval_block(expr.else_block)
            return None
        if isinstance(expr, ast.BlockExpr):
            return self._eval_block(expr.block)
        raise RuntimeError(f"Unsupported expression {expr}")

    def _eval_place(self, expr: ast.Expr) -> Location:
        """The cell an expression denotes."""
        if isinstance(expr, ast.Name):
            return Location(self.frames[-1].lookup(expr.ident))
        if isinstance(expr, ast.Deref):
            inner = expr.operand
            if isinstance(inner, ast.Borrow) and ast.is_place_expr(inner.operand):
                return self._eval_place(inner.operand)
            base: Optional[Location] = None
            if ast.is_place_expr(inner):
                base = self._eval_place(inner)
                pointer = self._load(base, inner)
            else:
                pointer = self._eval_expr(inner)
                if isinstance(pointer, BoxValue):
                    # `*Box::new(..)`: the box is a temporary owned by the scope.
                    self._materialize(pointer)
            if isinstance(pointer, RefValue):
                return Location(pointer.addr, pointer.tag, (), inner)
            if isinstance(pointer, BoxValue):
                if base is None:
                    return Location(pointer.addr)
                return Location(pointer.addr, base.tag, base.cells, base.ref)
            raise RuntimeError(f"cannot dereference {pointer!r}")
        raise RuntimeError(f"not a place expression: {expr}")

    def _access(self, loc: Location, expr: ast.Expr, *, write: bool, cause: DiagnosticKind) -> None:
        """
        Record a use of `loc` in the borrow stacks.

        The reference the path went through must still be valid for the
        first cell; cells below it through boxes are accessed on its behalf.
        """
        cells = loc.cells
        if cells[0] not in self.heap:
            raise self._violation(Violation(DiagnosticKind.DANGLING_BORROW, cells[0], "freed"), loc, expr)
        try:
            self.borrows.access(cells[0], loc.tag, write=write, cause=cause)
            for addr in cells[1:]:
                self.borrows.access(addr, None, write=write, cause=cause)
        except Violation as violation:
            raise self._violation(violation, loc, expr) from None

    def _load(self, loc: Location, expr: ast.Expr) -> object:
        self._access(loc, expr, write=False, cause=DiagnosticKind.CONFLICTING_BORROW)
        state = self.heap.state(loc.addr)
        if state is not CellState.LIVE:
            raise self._error(
                DiagnosticKind.USE_AFTER_MOVE,
                "use of moved value" if state is CellState.MOVED else "use of uninitialized value",
                expr.loc,
            )
        return self.heap.load(loc.addr)

    def _read(self, loc: Location, expr: ast.Expr) -> object:
        """Read a cell in value position; boxes are moved out."""
        value = self._load(loc, expr)
        if not isinstance(value, BoxValue):
            return value
        # Moving a box ends every borrow of it and of what it owns.
        self._access(loc, expr, write=True, cause=DiagnosticKind.MOVE_WHILE_BORROWED)
        owned: object = value
        while isinstance(owned, BoxValue):
            self.borrows.access(owned.addr, None, write=True, cause=DiagnosticKind.MOVE_WHILE_BORROWED)
            cell = self.heap.cell(owned.addr)
            owned = cell.value if cell.state is CellState.LIVE else None
        return self.heap.take(loc.addr)

    def _follow(self, value: object, expr: ast.Expr) -> None:
        """Check each reference that displaying `value` goes through."""
        while isinstance(value, (BoxValue, RefValue)):
            if isinstance(value, RefValue):
                value = self._load(Location(value.addr, value.tag, (), expr), expr)
            else:
                value = self.heap.load(value.addr)

    def _eval_binary(self, expr: ast.Binary) -> object:
        op = expr.op
        if op == "&&":
            return bool(self._eval_expr(expr.left)) and bool(self._eval_expr(expr.right))
        if op == "||":
            return bool(self._eval_expr(expr.left)) or bool(self._eval_expr(expr.right))
        left = self._eval_expr(expr.left)
        right = self._eval_expr(expr.right)
        if op == "==":
            return left == right
        if op == "!=":
            return left != right
        if op == "<":
            return left < right
        if op == ">":
            return left > right
        if op == "<=":
            return left <= right
        if op == ">=":
            return left >= right
        return self._arith(op, left, right, expr.loc)

    def _arith(self, op: str, left: object, right: object, loc: ast.Located) -> int:
        assert isinstance(left, int) and isinstance(right, int)
        if op == "+":
            result = left + right
        elif op == "-":
            result = left - right
        elif op == "*":
            result = left * right
        elif op in ("/", "%"):
            if right == 0:
                message = "attempt to divide by zero" if op == "/" else (
                    "attempt to calculate the remainder with a divisor of zero"
                )
                raise self._error(DiagnosticKind.ARITHMETIC_FAULT, message, loc)
            # Rust division truncates toward zero.
            quotient = abs(left) // abs(right)
            if (left < 0) != (right < 0):
                quotient = -quotient
            result = quotient if op == "/" else left - right * quotient
        else:
            raise RuntimeError(f"Unsupported operator {op}")
        return self._check_range(result, op, loc)

    def _check_range(self, value: int, op: str, loc: ast.Located, verb: Optional[str] = None) -> int:
        if _I32_MIN <= value <= _I32_MAX:
            return value
        raise self._error(
            DiagnosticKind.ARITHMETIC_FAULT,
            f"attempt to {verb or _OVERFLOW_VERBS[op]} with overflow",
            loc,
        )

    def _eval_call(self, expr: ast.Call) -> object:
        args = [self._eval_expr(arg) for arg in expr.args]
        builtin = self.builtins.get(expr.func)
        if expr.func not in self.functions and builtin is not None:
            return builtin.impl(self.runtime_ctx, args)
        return self._call(self.functions[expr.func], args, expr.loc)

    def _eval_macro(self, expr: ast.MacroCall) -> object:
        values: List[object] = []
        owned: List[object] = []
        for arg in expr.args:
            if ast.is_place_expr(arg):
                values.append(self._load(self._eval_place(arg), arg))
            else:
                value = self._eval_expr(arg)
                values.append(value)
                owned.append(value)
        for arg, value in zip(expr.args, values):
            self._follow(value, arg)
        self.runtime_ctx.emit(format_template(expr.template, values, self.heap))
        for value in owned:
            self._drop_value(value)
        return None

    def _error(
        self,
        kind: DiagnosticKind,
        message: str,
        loc: Optional[ast.Located],
        subject: Optional[str] = None,
    ) -> RunError:
        return RunError(
            Diagnostic(
                message=message,
                kind=kind,
                phase="eval",
                span=Span.from_loc(loc, self.filename),
                subject=subject,
            )
        )

    def _violation(self, violation: Violation, loc: Location, expr: ast.Expr) -> RunError:
        subject = _describe(loc.ref if loc.ref is not None else expr)
        span = Span.from_loc(expr.loc, self.filename)
        return RunError(report_runtime_violation(violation, subject=subject, span=span))


def _describe(expr: ast.Expr) -> str:
    """Source-like text of a place expression for diagnostics."""
    if isinstance(expr, ast.Name):
        return expr.ident
    if isinstance(expr, ast.Deref):
        return "*" + _describe(expr.operand)
    if isinstance(expr, ast.Borrow):
        return ("&mut " if expr.mutable else "&") + _describe(expr.operand)
    if isinstance(expr, ast.Call):
        return f"{expr.func}(..)"
    return "value"


@contextmanager
def _host_stack_headroom(max_call_depth: int) -> Iterator[None]:
    """Raise the interpreter's recursion limit so the call ceiling is hit first."""
    previous = sys.getrecursionlimit()
    needed = max_call_depth * _HOST_FRAMES_PER_CALL + 1000
    if needed > previous:
        sys.setrecursionlimit(needed)
    try:
        yield
    finally:
        sys.setrecursionlimit(previous)


def run_program(
    checked: CheckedProgram,
    settings: Optional[Settings] = None,
    filename: Optional[str] = None,
) -> List[str]:
    return Interpreter(checked, settings, filename=filename).run()
