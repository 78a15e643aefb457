# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Static ownership and borrow checking.

The checker walks each function body in statement order, inferring types as
it goes and driving an `OwnershipTracker`. It stops at the first violation
and raises `CheckError` with a single diagnostic.

Extents:
- A borrow that is not stored in a binding is temporary and ends with the
  statement that created it.
- A borrow stored in a binding (its holder) ends when the holder is
  reassigned or leaves scope. In "nll" mode it also ends after the last
  statement that still mentions the holder (see `liveness`). A reference that
  nothing mentions after its creation is pinned to its holder's scope.
- Calls returning a reference carry their arguments' borrows into the result.
- A reference written through another reference (`*rr = &y`, or a call
  taking `&mut &T`) is also held by the binding it lands in, found from the
  borrows the outer reference holds.

Control flow:
- `if`/`else` arms are checked on forked tracker state and joined.
  Arms that end in `return` do not flow into the join.
- `while` bodies are checked twice so state carried into a second iteration
  (a move inside the loop, a borrow kept across it) is seen.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Set

from . import ast
from .config import DEFAULT_SETTINGS, Settings
from .diagnostics import Diagnostic, DiagnosticError, DiagnosticKind, Span, report_violation
from .liveness import LiveNames, names_used
from .places import DerefVia, PlaceArena
from .runtime import BUILTINS, MACROS, TemplateError, split_template
from .tracker import BorrowKind, OwnershipTracker, Violation
from .types import (
	BOOL,
	I32,
	UNIT,
	FunctionSignature,
	ReferenceType,
	Type,
	TypeSystemError,
	UnknownTypeError,
	box_of,
	coerces_to,
	contains_reference,
	is_box,
	is_copy,
	is_displayable,
	pointee,
	ref_of,
	resolve_type,
)

logger = logging.getLogger(__name__)

_ARITHMETIC_OPS = frozenset({"+", "-", "*", "/", "%"})
_ORDERING_OPS = frozenset({"<", ">", "<=", ">="})
_EQUALITY_OPS = frozenset({"==", "!="})
_LOGICAL_OPS = frozenset({"&&", "||"})


class CheckError(DiagnosticError):
	"""Raised for the first static error found in a program."""


@dataclass
class FunctionInfo:
	signature: FunctionSignature
	node: Optional[ast.FunctionDef] = None


@dataclass
class CheckedProgram:
	program: ast.Program
	functions: Dict[str, FunctionInfo] = field(default_factory=dict)
	entry: str = "main"


@dataclass
class Binding:
	name: str
	place: int


@dataclass(frozen=True)
class Operand:
	"""Result of checking an expression in value position."""

	ty: Type
	# Borrows the value carries (temporaries until a binding adopts them).
	loans: FrozenSet[int] = frozenset()
	diverges: bool = False


def _plural(count: int, word: str) -> str:
	return f"{count} {word}" if count == 1 else f"{count} {word}s"


class BorrowChecker:
	"""Type and borrow checker for a parsed program."""

	def __init__(self, settings: Optional[Settings] = None, filename: Optional[str] = None) -> None:
		self.settings = settings or DEFAULT_SETTINGS
		self.filename = filename
		self._functions: Dict[str, FunctionInfo] = {}
		self._arena = PlaceArena()
		self._tracker = OwnershipTracker(self._arena)
		self._scopes: List[Dict[str, Binding]] = []
		self._live = LiveNames()
		self._current: Optional[FunctionInfo] = None

	def check(self, program: ast.Program) -> CheckedProgram:
		"""Check every function; return the program annotated with signatures."""
		self._functions = self._collect_signatures(program)
		entry = self._functions.get(self.settings.entry)
		if entry is None:
			raise self._error(
				DiagnosticKind.UNRESOLVED_NAME,
				f"`{self.settings.entry}` function not found",
				None,
				subject=self.settings.entry,
			)
		if entry.signature.params:
			raise self._error(
				DiagnosticKind.TYPE_MISMATCH,
				f"`{self.settings.entry}` function must not take parameters",
				entry.node,
				subject=self.settings.entry,
			)
		for fn in program.functions:
			self._check_function(fn, self._functions[fn.name])
		return CheckedProgram(program=program, functions=dict(self._functions), entry=self.settings.entry)

	def _collect_signatures(self, program: ast.Program) -> Dict[str, FunctionInfo]:
		functions: Dict[str, FunctionInfo] = {}
		for fn in program.functions:
			if fn.name in functions or fn.name in BUILTINS:
				raise self._error(
					DiagnosticKind.DUPLICATE_DEFINITION,
					f"the name `{fn.name}` is defined multiple times",
					fn,
					subject=fn.name,
				)
			params = tuple(self._resolve(p.type_expr, p) for p in fn.params)
			ret = self._resolve(fn.return_type, fn) if fn.return_type is not None else UNIT
			functions[fn.name] = FunctionInfo(FunctionSignature(fn.name, params, ret), fn)
		return functions

	# -- functions and blocks ---------------------------------------------

	def _check_function(self, fn: ast.FunctionDef, info: FunctionInfo) -> None:
		logger.debug("borrow-checking fn %s (lifetimes=%s)", fn.name, self.settings.lifetimes)
		self._arena = PlaceArena()
		self._tracker = OwnershipTracker(self._arena)
		self._scopes = [{}]
		self._live = LiveNames()
		self._current = info
		self._tracker.push_frame()
		for param, ty in zip(fn.params, info.signature.params):
			if param.name in self._scopes[-1]:
				raise self._error(
					DiagnosticKind.DUPLICATE_DEFINITION,
					f"identifier `{param.name}` is bound more than once in this parameter list",
					param,
					subject=param.name,
				)
			place = self._arena.new_local(param.name, ty, mutable=param.mutable, is_param=True)
			self._tracker.declare(place, initialized=True)
			self._scopes[-1][param.name] = Binding(param.name, place)
		body = self._check_block(fn.body, fn_body=True)
		ret = info.signature.return_type
		if not body.diverges and not coerces_to(body.ty, ret):
			node = fn.body.tail if fn.body.tail is not None else fn
			raise self._error(
				DiagnosticKind.TYPE_MISMATCH,
				f"mismatched types: expected `{ret}`, found `{body.ty}`",
				node,
			)
		self._guarded(fn, self._tracker.pop_frame)
		logger.debug("fn %s: %d places tracked", fn.name, len(self._arena.nodes))

	def _check_block(self, block: ast.Block, *, fn_body: bool = False) -> Operand:
		self._tracker.push_frame()
		self._scopes.append({})
		statements = block.statements
		# later[i]: names mentioned after statement i (including the tail).
		later: List[FrozenSet[str]] = [frozenset()] * (len(statements) + 1)
		later[-1] = names_used(block.tail)
		for index in range(len(statements) - 1, -1, -1):
			later[index] = later[index + 1] | names_used(statements[index])
		diverges = False
		for index, stmt in enumerate(statements):
			with self._live.scope(later[index + 1]):
				if self._check_stmt(stmt):
					diverges = True
				self._end_statement()
		if block.tail is not None:
			tail = self._check_expr(block.tail)
			result = Operand(tail.ty, tail.loans, diverges or tail.diverges)
			if fn_body:
				self._check_escape(result, block.tail)
		else:
			result = Operand(UNIT, frozenset(), diverges)
		self._tracker.end_temporaries(keep=result.loans)
		if not self.settings.lexical:
			self._tracker.release_dead(self._holder_live)
		self._scopes.pop()
		try:
			self._tracker.pop_frame()
		except Violation as violation:
			origin = violation.conflict.origin if violation.conflict is not None else None
			raise CheckError(
				report_violation(violation, self._arena, span=Span.from_loc(origin or block.loc, self.filename))
			) from None
		return result

	def _end_statement(self) -> None:
		self._tracker.end_temporaries()
		if self.settings.lexical:
			return
		released = self._tracker.release_dead(self._holder_live)
		if released:
			logger.debug("released %d borrow(s) after last use", len(released))

	def _holder_live(self, holder: int) -> bool:
		return self._arena.node(holder).name in self._live

	# -- statements -------------------------------------------------------

	def _check_stmt(self, stmt: ast.Stmt) -> bool:
		"""Check one statement; return True when it always diverges."""
		if isinstance(stmt, ast.LetStmt):
			self._check_let(stmt)
			return False
		if isinstance(stmt, ast.AssignStmt):
			self._check_assign(stmt)
			return False
		if isinstance(stmt, ast.ReturnStmt):
			self._check_return(stmt)
			return True
		if isinstance(stmt, ast.WhileStmt):
			self._check_while(stmt)
			return False
		if isinstance(stmt, ast.ExprStmt):
			return self._check_expr(stmt.value).diverges
		raise TypeError(f"unsupported statement {type(stmt).__name__}")

	def _check_let(self, stmt: ast.LetStmt) -> None:
		declared = self._resolve(stmt.type_expr, stmt) if stmt.type_expr is not None else None
		value: Optional[Operand] = None
		if stmt.value is not None:
			value = self._check_expr(stmt.value)
			if declared is not None:
				self._expect(declared, value, stmt.value)
		ty = declared if declared is not None else (value.ty if value is not None else None)
		place = self._arena.new_local(stmt.name, ty, mutable=stmt.mutable)
		self._tracker.declare(place, initialized=value is not None)
		self._scopes[-1][stmt.name] = Binding(stmt.name, place)
		if value is not None and value.loans:
			self._store_loans(place, value.loans)

	def _check_assign(self, stmt: ast.AssignStmt) -> None:
		target = stmt.target
		if not ast.is_place_expr(target):
			raise self._error(DiagnosticKind.INVALID_ASSIGN_TARGET, "invalid left-hand side of assignment", target)
		value = self._check_expr(stmt.value)
		place = self._place_of(target)
		node = self._arena.node(place)
		if stmt.op is not None:
			self._guarded(target, self._tracker.can_read, place)
			if node.ty != I32 or value.ty != I32:
				found = node.ty if node.ty != I32 else value.ty
				raise self._error(
					DiagnosticKind.TYPE_MISMATCH,
					f"cannot apply `{stmt.op}=` to type `{found}`",
					stmt,
				)
		elif node.ty is None:
			# First assignment to an unannotated `let x;` fixes its type.
			node.ty = value.ty
		else:
			self._expect(node.ty, value, stmt.value)
		self._guarded(target, self._tracker.can_write, place)
		root = self._arena.root(place)
		if place == root:
			self._tracker.end_borrows_held_by(place)
		self._tracker.mark_live(place)
		if not value.loans:
			return
		# Behind a reference the stored value lands in another binding's storage.
		if self._arena.reference_deref(place) is None or not self._store_into([place], value.loans, stmt.value):
			self._store_loans(root, value.loans)

	def _check_return(self, stmt: ast.ReturnStmt) -> None:
		assert self._current is not None
		ret = self._current.signature.return_type
		node = stmt.value if stmt.value is not None else stmt
		value = self._check_expr(stmt.value) if stmt.value is not None else Operand(UNIT)
		self._expect(ret, value, node)
		self._check_escape(value, node)

	def _check_while(self, stmt: ast.WhileStmt) -> None:
		before = self._tracker.fork()
		with self._live.scope(names_used(stmt)):
			for _ in range(2):
				cond = self._check_expr(stmt.condition)
				self._expect(BOOL, cond, stmt.condition)
				self._tracker.end_temporaries()
				body = self._check_block(stmt.body)
				if not body.diverges and body.ty != UNIT:
					raise self._error(
						DiagnosticKind.TYPE_MISMATCH,
						f"mismatched types: expected `()`, found `{body.ty}`",
						stmt.body.tail or stmt,
					)
		# The loop may not run at all.
		self._tracker.join(before)

	def _pinned(self, holder: int) -> bool:
		return self.settings.lexical or self._arena.node(holder).name not in self._live

	def _store_loans(self, holder: int, loans: FrozenSet[int]) -> None:
		self._tracker.adopt(loans, holder, pinned=self._pinned(holder))

	def _store_into(self, places: Iterable[int], loans: FrozenSet[int], node: Any) -> Set[int]:
		"""
		Give copies of `loans` to every binding whose storage `places` may
		denote. Storage outside this function must not receive borrows of
		its locals. Returns the bindings that received copies.
		"""
		holders: Set[int] = set()
		for place in places:
			found = self._referents(place)
			if found is None:
				self._check_escape(Operand(UNIT, loans), node, stored=True)
				return set()
			holders |= found
		for holder in sorted(holders):
			self._tracker.share(loans, holder, pinned=self._pinned(holder))
		return holders

	def _referents(self, place: int) -> Optional[Set[int]]:
		"""
		Bindings whose storage `place` may denote.

		A place behind a reference is resolved through the borrows held by
		the binding that owns the reference. None when the reference comes
		from a parameter, i.e. the storage belongs to a caller.
		"""
		if self._arena.reference_deref(place) is None:
			return {self._arena.root(place)}
		base = place
		for pid in reversed(self._arena.chain(place)):
			if self._arena.node(pid).via in (DerefVia.SHARED_REF, DerefVia.MUT_REF):
				base = self._arena.node(pid).parent
				break
		owner = self._arena.root(base)
		held = self._tracker.held_by(owner)
		if not held:
			return None if self._arena.node(owner).is_param else set()
		out: Set[int] = set()
		for rec in held:
			ty = self._arena.node(rec.place).ty
			if ty is None or not contains_reference(ty):
				continue
			found = self._referents(rec.place)
			if found is None:
				return None
			out |= found
		return out

	def _check_escape(self, value: Operand, node: Any, *, stored: bool = False) -> None:
		"""Reject a reference to storage owned by this function leaving it."""
		for bid in sorted(value.loans):
			rec = self._tracker.borrows.get(bid)
			if rec is None or self._arena.reference_deref(rec.place) is not None:
				continue
			if stored:
				variant = "scope"
			else:
				variant = "return-local" if self._arena.node(rec.place).parent is None else "return-data"
			violation = Violation(DiagnosticKind.DANGLING_BORROW, rec.place, variant, rec)
			raise CheckError(report_violation(violation, self._arena, span=self._span(node)))

	# -- expressions ------------------------------------------------------

	def _check_expr(self, expr: ast.Expr) -> Operand:
		if isinstance(expr, ast.Literal):
			if isinstance(expr.value, bool):
				return Operand(BOOL)
			if expr.value is None:
				return Operand(UNIT)
			return Operand(I32)
		if isinstance(expr, (ast.Name, ast.Deref)) and ast.is_place_expr(expr):
			return self._use_place(self._place_of(expr), expr)
		if isinstance(expr, ast.Deref):
			return self._check_deref_value(expr)
		if isinstance(expr, ast.Unary):
			return self._check_unary(expr)
		if isinstance(expr, ast.Binary):
			return self._check_binary(expr)
		if isinstance(expr, ast.Borrow):
			return self._check_borrow(expr)
		if isinstance(expr, ast.Call):
			return self._check_call(expr)
		if isinstance(expr, ast.BoxNew):
			inner = self._check_expr(expr.value)
			return Operand(box_of(inner.ty), inner.loans)
		if isinstance(expr, ast.MacroCall):
			return self._check_macro(expr)
		if isinstance(expr, ast.IfExpr):
			return self._check_if(expr)
		if isinstance(expr, ast.BlockExpr):
			return self._check_block(expr.block)
		raise TypeError(f"unsupported expression {type(expr).__name__}")

	def _use_place(self, place: int, expr: ast.Expr) -> Operand:
		"""Read a place in value position: copy it or move out of it."""
		node = self._arena.node(place)
		if node.ty is None:
			self._guarded(expr, self._tracker.can_read, place)
			raise self._error(DiagnosticKind.TYPE_MISMATCH, "type annotations needed", expr)
		ty = node.ty
		if is_copy(ty):
			self._guarded(expr, self._tracker.can_read, place)
			loans: FrozenSet[int] = frozenset()
			if contains_reference(ty):
				loans = self._tracker.clone_held(self._arena.root(place))
			return Operand(ty, loans)
		self._guarded(expr, self._tracker.can_move, place)
		loans = frozenset()
		if node.parent is None:
			loans = self._tracker.detach(place)
		self._tracker.mark_moved(place)
		return Operand(ty, loans)

	def _place_of(self, expr: ast.Expr) -> int:
		if isinstance(expr, ast.Name):
			return self._lookup(expr).place
		if not isinstance(expr, ast.Deref):
			raise TypeError(f"not a place expression: {type(expr).__name__}")
		inner = expr.operand
		if isinstance(inner, ast.Borrow):
			# `*&p` names `p` itself once the borrow is known to be legal.
			place = self._place_of(inner.operand)
			if inner.mutable:
				self._guarded(inner, self._tracker.check_mutable, place, borrow=True)
			kind = BorrowKind.EXCLUSIVE if inner.mutable else BorrowKind.SHARED
			self._guarded(inner, self._tracker.check_borrow, place, kind)
			return place
		base = self._place_of(inner)
		base_ty = self._arena.node(base).ty
		if base_ty is None:
			self._guarded(inner, self._tracker.can_read, base)
			raise self._error(DiagnosticKind.TYPE_MISMATCH, "type annotations needed", inner)
		target = pointee(base_ty)
		if target is None:
			raise self._error(
				DiagnosticKind.TYPE_MISMATCH,
				f"type `{base_ty}` cannot be dereferenced",
				expr,
			)
		if is_box(base_ty):
			via = DerefVia.BOX
		elif isinstance(base_ty, ReferenceType) and base_ty.mutable:
			via = DerefVia.MUT_REF
		else:
			via = DerefVia.SHARED_REF
		return self._arena.deref(base, via, target)

	def _lookup(self, name: ast.Name) -> Binding:
		for scope in reversed(self._scopes):
			binding = scope.get(name.ident)
			if binding is not None:
				return binding
		raise self._error(
			DiagnosticKind.UNRESOLVED_NAME,
			f"cannot find value `{name.ident}` in this scope",
			name,
			subject=name.ident,
		)

	def _check_deref_value(self, expr: ast.Deref) -> Operand:
		"""`*e` where `e` is not a place, e.g. `*Box::new(1)`."""
		inner = self._check_expr(expr.operand)
		target = pointee(inner.ty)
		if target is None:
			raise self._error(
				DiagnosticKind.TYPE_MISMATCH,
				f"type `{inner.ty}` cannot be dereferenced",
				expr,
			)
		if isinstance(inner.ty, ReferenceType) and not is_copy(target):
			kind = "mutable" if inner.ty.mutable else "shared"
			raise self._error(
				DiagnosticKind.MOVE_OUT_OF_BORROW,
				f"cannot move out of a {kind} reference",
				expr,
			)
		loans = inner.loans if contains_reference(target) else frozenset()
		return Operand(target, loans)

	def _check_unary(self, expr: ast.Unary) -> Operand:
		operand = self._check_expr(expr.operand)
		expected = I32 if expr.op == "-" else BOOL
		if operand.ty != expected:
			raise self._error(
				DiagnosticKind.TYPE_MISMATCH,
				f"cannot apply unary operator `{expr.op}` to type `{operand.ty}`",
				expr,
			)
		return Operand(expected)

	def _check_binary(self, expr: ast.Binary) -> Operand:
		left = self._check_expr(expr.left)
		if expr.op in _LOGICAL_OPS:
			self._expect(BOOL, left, expr.left)
			# The right operand may not be evaluated.
			skipped = self._tracker.fork()
			right = self._check_expr(expr.right)
			self._expect(BOOL, right, expr.right)
			self._tracker.join(skipped)
			return Operand(BOOL)
		right = self._check_expr(expr.right)
		if expr.op in _ARITHMETIC_OPS or expr.op in _ORDERING_OPS:
			for side, operand in ((expr.left, left), (expr.right, right)):
				if operand.ty != I32:
					raise self._error(
						DiagnosticKind.TYPE_MISMATCH,
						f"cannot apply binary operator `{expr.op}` to type `{operand.ty}`",
						side,
					)
			return Operand(I32 if expr.op in _ARITHMETIC_OPS else BOOL)
		if expr.op in _EQUALITY_OPS:
			if left.ty not in (I32, BOOL):
				raise self._error(
					DiagnosticKind.TYPE_MISMATCH,
					f"binary operation `{expr.op}` cannot be applied to type `{left.ty}`",
					expr.left,
				)
			self._expect(left.ty, right, expr.right)
			return Operand(BOOL)
		raise TypeError(f"unsupported binary operator {expr.op!r}")

	def _check_borrow(self, expr: ast.Borrow) -> Operand:
		if not ast.is_place_expr(expr.operand):
			# Borrow of a temporary: the reference carries the temporary's borrows.
			inner = self._check_expr(expr.operand)
			return Operand(ref_of(inner.ty, expr.mutable), inner.loans)
		place = self._place_of(expr.operand)
		kind = BorrowKind.EXCLUSIVE if expr.mutable else BorrowKind.SHARED
		if expr.mutable:
			self._guarded(expr, self._tracker.check_mutable, place, borrow=True)
		bid = self._guarded(expr, self._tracker.begin_borrow, place, kind, origin=expr.loc)
		ty = self._arena.node(place).ty
		assert ty is not None
		return Operand(ref_of(ty, expr.mutable), frozenset({bid}))

	def _check_call(self, expr: ast.Call) -> Operand:
		info = self._functions.get(expr.func)
		if info is not None:
			sig = info.signature
		elif expr.func in BUILTINS:
			sig = BUILTINS[expr.func].signature
		else:
			raise self._error(
				DiagnosticKind.UNRESOLVED_NAME,
				f"cannot find function `{expr.func}` in this scope",
				expr,
				subject=expr.func,
			)
		if len(expr.args) != len(sig.params):
			verb = "was" if len(expr.args) == 1 else "were"
			raise self._error(
				DiagnosticKind.TYPE_MISMATCH,
				f"this function takes {_plural(len(sig.params), 'argument')} "
				f"but {_plural(len(expr.args), 'argument')} {verb} supplied",
				expr,
				subject=expr.func,
			)
		arg_loans: List[FrozenSet[int]] = []
		for arg, param_ty in zip(expr.args, sig.params):
			value = self._reborrow_arg(arg, param_ty)
			if value is None:
				value = self._check_expr(arg)
			self._expect(param_ty, value, arg)
			arg_loans.append(value.loans)
		# A `&mut` to a reference lets the callee store any other argument's borrows in it.
		for index, param_ty in enumerate(sig.params):
			if not (isinstance(param_ty, ReferenceType) and param_ty.mutable and contains_reference(param_ty.args[0])):
				continue
			others = frozenset().union(*(held for i, held in enumerate(arg_loans) if i != index))
			targets = [self._tracker.borrows[bid].place for bid in sorted(arg_loans[index]) if bid in self._tracker.borrows]
			if others and targets:
				self._store_into(targets, others, expr.args[index])
		loans = frozenset().union(*arg_loans)
		carried = loans if contains_reference(sig.return_type) else frozenset()
		return Operand(sig.return_type, carried)

	def _reborrow_arg(self, arg: ast.Expr, param_ty: Type) -> Optional[Operand]:
		"""Pass a `&mut` binding to a `&mut` parameter as `&mut *r` instead of moving it."""
		if not (isinstance(param_ty, ReferenceType) and param_ty.mutable and ast.is_place_expr(arg)):
			return None
		place = self._place_of(arg)
		arg_ty = self._arena.node(place).ty
		if not (isinstance(arg_ty, ReferenceType) and arg_ty.mutable):
			return None
		self._guarded(arg, self._tracker.can_read, place)
		inner = self._arena.deref(place, DerefVia.MUT_REF, arg_ty.args[0])
		bid = self._guarded(arg, self._tracker.begin_borrow, inner, BorrowKind.EXCLUSIVE, origin=arg.loc)
		return Operand(arg_ty, frozenset({bid}))

	def _check_macro(self, expr: ast.MacroCall) -> Operand:
		if expr.name not in MACROS:
			raise self._error(
				DiagnosticKind.UNRESOLVED_NAME,
				f"cannot find macro `{expr.name}` in this scope",
				expr,
				subject=f"{expr.name}!",
			)
		try:
			holes = len(split_template(expr.template)) - 1
		except TemplateError as exc:
			raise self._error(DiagnosticKind.FORMAT_MISMATCH, str(exc), expr) from None
		if holes != len(expr.args):
			verb = "was" if len(expr.args) == 1 else "were"
			raise self._error(
				DiagnosticKind.FORMAT_MISMATCH,
				f"{_plural(holes, 'positional argument')} in format string, "
				f"but {_plural(len(expr.args), 'argument')} {verb} given",
				expr,
			)
		for arg in expr.args:
			# Format arguments are borrowed, never moved.
			if ast.is_place_expr(arg):
				place = self._place_of(arg)
				self._guarded(arg, self._tracker.check_borrow, place, BorrowKind.SHARED)
				ty = self._arena.node(place).ty
			else:
				ty = self._check_expr(arg).ty
			if ty is None or not is_displayable(ty):
				raise self._error(
					DiagnosticKind.TYPE_MISMATCH,
					f"`{ty}` doesn't implement `std::fmt::Display`",
					arg,
				)
		return Operand(UNIT)

	def _check_if(self, expr: ast.IfExpr) -> Operand:
		cond = self._check_expr(expr.condition)
		self._expect(BOOL, cond, expr.condition)
		else_tracker = self._tracker.fork()
		then = self._check_block(expr.then_block)
		then_tracker = self._tracker
		self._tracker = else_tracker
		if expr.else_block is not None:
			other = self._check_block(expr.else_block)
		else:
			other = Operand(UNIT)
		else_tracker = self._tracker
		if then.diverges and not other.diverges:
			self._tracker = else_tracker
		elif other.diverges and not then.diverges:
			self._tracker = then_tracker
		else:
			then_tracker.join(else_tracker)
			self._tracker = then_tracker

		if expr.else_block is None:
			if not then.diverges and then.ty != UNIT:
				raise self._error(
					DiagnosticKind.TYPE_MISMATCH,
					f"`if` may be missing an `else` clause: expected `()`, found `{then.ty}`",
					expr.then_block.tail or expr,
				)
			return Operand(UNIT)
		if then.diverges and other.diverges:
			return Operand(then.ty, diverges=True)
		if then.diverges:
			return Operand(other.ty, other.loans)
		if other.diverges:
			return Operand(then.ty, then.loans)
		if not coerces_to(other.ty, then.ty):
			raise self._error(
				DiagnosticKind.TYPE_MISMATCH,
				f"`if` and `else` have incompatible types: expected `{then.ty}`, found `{other.ty}`",
				expr,
			)
		return Operand(then.ty, then.loans | other.loans)

	# -- helpers ----------------------------------------------------------

	def _resolve(self, type_expr: ast.TypeExpr, node: Any) -> Type:
		try:
			return resolve_type(type_expr)
		except UnknownTypeError as exc:
			raise self._error(DiagnosticKind.UNRESOLVED_NAME, str(exc), node, subject=type_expr.name) from None
		except TypeSystemError as exc:
			raise self._error(DiagnosticKind.TYPE_MISMATCH, str(exc), node) from None

	def _expect(self, expected: Type, value: Operand, node: Any) -> None:
		if value.diverges or coerces_to(value.ty, expected):
			return
		raise self._error(
			DiagnosticKind.TYPE_MISMATCH,
			f"mismatched types: expected `{expected}`, found `{value.ty}`",
			node,
		)

	def _guarded(self, node: Any, op: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
		"""Run a tracker operation, reporting a violation at `node`."""
		try:
			return op(*args, **kwargs)
		except Violation as violation:
			raise CheckError(report_violation(violation, self._arena, span=self._span(node))) from None

	def _span(self, node: Any) -> Span:
		return Span.from_loc(getattr(node, "loc", None), self.filename)

	def _error(self, kind: DiagnosticKind, message: str, node: Any, *, subject: Optional[str] = None) -> CheckError:
		return CheckError(
			Diagnostic(
				message=message,
				kind=kind,
				phase="borrowcheck",
				span=self._span(node),
				subject=subject,
			)
		)


def check_program(
	program: ast.Program,
	settings: Optional[Settings] = None,
	filename: Optional[str] = None,
) -> CheckedProgram:
	return BorrowChecker(settings, filename).check(program)


__all__ = ["BorrowChecker", "CheckError", "CheckedProgram", "FunctionInfo", "check_program"]
