# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Diagnostics for the parser, borrow checker and evaluator.

Every failure surfaced to a caller is exactly one `Diagnostic`: a kind from
the error taxonomy, the offending place or expression, a source span and a
rustc-style message. The borrow checker reports rule violations through
`report_violation`, which owns the message catalogue.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

if TYPE_CHECKING:
	from .places import PlaceArena
	from .tracker import Violation


@dataclass(frozen=True)
class Span:
	"""Best-effort file/line/column of a diagnostic."""

	file: Optional[str] = None
	line: Optional[int] = None
	column: Optional[int] = None

	@classmethod
	def from_loc(cls, loc: Any, file: Optional[str] = None) -> "Span":
		if loc is None:
			return cls(file=file)
		if isinstance(loc, cls):
			return loc
		line = getattr(loc, "line", None)
		column = getattr(loc, "column", None)
		return cls(file=file, line=line or None, column=column or None)

	def __str__(self) -> str:
		parts = [self.file or "<input>"]
		if self.line is not None:
			parts.append(str(self.line))
			if self.column is not None:
				parts.append(str(self.column))
		return ":".join(parts)


class DiagnosticKind(Enum):
	"""Error taxonomy. Values are the names shown to users."""

	# Static ownership and borrowing rules.
	CONFLICTING_BORROW = "ConflictingBorrow"
	USE_AFTER_MOVE = "UseAfterMove"
	ASSIGN_WHILE_BORROWED = "AssignWhileBorrowed"
	ASSIGN_IMMUTABLE = "AssignImmutable"
	DANGLING_BORROW = "DanglingBorrow"
	MOVE_WHILE_BORROWED = "MoveWhileBorrowed"
	MOVE_OUT_OF_BORROW = "MoveOutOfBorrow"
	USE_UNINITIALIZED = "UseUninitialized"
	# Typing and name resolution.
	TYPE_MISMATCH = "TypeMismatch"
	UNRESOLVED_NAME = "UnresolvedName"
	DUPLICATE_DEFINITION = "DuplicateDefinition"
	INVALID_ASSIGN_TARGET = "InvalidAssignTarget"
	FORMAT_MISMATCH = "FormatMismatch"
	SYNTAX_ERROR = "SyntaxError"
	# Dynamic.
	STACK_EXHAUSTED = "StackExhausted"
	ARITHMETIC_FAULT = "ArithmeticFault"


@dataclass
class Diagnostic:
	"""A single reported failure."""

	message: str
	kind: DiagnosticKind
	# "parser", "borrowcheck" or "eval".
	phase: Optional[str] = None
	severity: str = "error"
	span: Span = field(default_factory=Span)
	notes: list[str] = field(default_factory=list)
	# Offending place (`*b`) or expression name, when there is one.
	subject: Optional[str] = None

	def __post_init__(self) -> None:
		if self.span is None:  # type: ignore[unreachable]
			self.span = Span()

	@property
	def code(self) -> str:
		return self.kind.value


class DiagnosticError(Exception):
	"""Carries one diagnostic out of a failing pass."""

	def __init__(self, diagnostic: Diagnostic) -> None:
		super().__init__(diagnostic.message)
		self.diagnostic = diagnostic

	def __str__(self) -> str:
		return render(self.diagnostic)


_K = DiagnosticKind

# (kind, variant) -> template. `{place}` is the offending place, `{root}` its
# binding, `{other}` the place of the conflicting borrow.
_MESSAGES: Dict[Tuple[DiagnosticKind, str], str] = {
	(_K.ASSIGN_WHILE_BORROWED, "assign"): "cannot assign to `{place}` because it is borrowed",
	(_K.ASSIGN_IMMUTABLE, "assign-twice"): "cannot assign twice to immutable variable `{place}`",
	(_K.ASSIGN_IMMUTABLE, "assign-behind-shared"): "cannot assign to `{place}`, which is behind a `&` reference",
	(_K.ASSIGN_IMMUTABLE, "assign-immutable-owner"): "cannot assign to `{place}`, as `{root}` is not declared as mutable",
	(_K.ASSIGN_IMMUTABLE, "borrow-immutable"): "cannot borrow `{place}` as mutable, as it is not declared as mutable",
	(_K.ASSIGN_IMMUTABLE, "borrow-immutable-owner"): "cannot borrow `{place}` as mutable, as `{root}` is not declared as mutable",
	(_K.ASSIGN_IMMUTABLE, "borrow-behind-shared"): "cannot borrow `{place}` as mutable, as it is behind a `&` reference",
	(_K.CONFLICTING_BORROW, "mut-while-shared"): "cannot borrow `{place}` as mutable because it is also borrowed as immutable",
	(_K.CONFLICTING_BORROW, "mut-twice"): "cannot borrow `{place}` as mutable more than once at a time",
	(_K.CONFLICTING_BORROW, "shared-while-mut"): "cannot borrow `{place}` as immutable because it is also borrowed as mutable",
	(_K.CONFLICTING_BORROW, "use-while-mut"): "cannot use `{place}` because it was mutably borrowed",
	(_K.USE_AFTER_MOVE, "use"): "use of moved value: `{place}`",
	(_K.USE_AFTER_MOVE, "borrow"): "borrow of moved value: `{place}`",
	(_K.USE_AFTER_MOVE, "assign-part"): "assign to part of moved value: `{place}`",
	(_K.MOVE_WHILE_BORROWED, "move"): "cannot move out of `{place}` because it is borrowed",
	(_K.MOVE_OUT_OF_BORROW, "shared"): "cannot move out of `{place}` which is behind a shared reference",
	(_K.MOVE_OUT_OF_BORROW, "mut"): "cannot move out of `{place}` which is behind a mutable reference",
	(_K.DANGLING_BORROW, "scope"): "`{place}` does not live long enough",
	(_K.DANGLING_BORROW, "return-local"): "cannot return reference to local variable `{place}`",
	(_K.DANGLING_BORROW, "return-data"): "cannot return value referencing local data `{place}`",
	(_K.USE_UNINITIALIZED, "use"): "used binding `{place}` isn't initialized",
	# Evaluation time; `{place}` is the expression holding the reference.
	(_K.ASSIGN_WHILE_BORROWED, "invalidated"): "`{place}` was used after the value it borrows was assigned",
	(_K.MOVE_WHILE_BORROWED, "invalidated"): "`{place}` was used after the value it borrows was moved",
	(_K.CONFLICTING_BORROW, "invalidated"): "`{place}` was used after a conflicting borrow of the value it borrows",
	(_K.DANGLING_BORROW, "freed"): "`{place}` refers to storage that was already freed",
}


def report_violation(
	violation: "Violation",
	arena: "PlaceArena",
	*,
	span: Span,
	phase: str = "borrowcheck",
) -> Diagnostic:
	"""Map a tracker violation to the user-facing diagnostic."""
	place = arena.render(violation.place)
	root = arena.render(arena.root(violation.place))
	template = _MESSAGES.get((violation.kind, violation.variant))
	if template is None:
		raise KeyError(f"no message for {violation.kind.value}/{violation.variant}")
	notes: list[str] = []
	conflict = violation.conflict
	if conflict is not None:
		other = arena.render(conflict.place)
		where = f" at {conflict.origin.line}:{conflict.origin.column}" if conflict.origin is not None else ""
		notes.append(f"borrow of `{other}` occurs here{where}")
	return Diagnostic(
		message=template.format(place=place, root=root),
		kind=violation.kind,
		phase=phase,
		span=span,
		notes=notes,
		subject=place,
	)


def report_runtime_violation(violation: "Violation", *, subject: str, span: Span) -> Diagnostic:
	"""Map a violation found while evaluating; `violation.place` is a cell address."""
	template = _MESSAGES.get((violation.kind, violation.variant))
	if template is None:
		raise KeyError(f"no message for {violation.kind.value}/{violation.variant}")
	return Diagnostic(
		message=template.format(place=subject, root=subject),
		kind=violation.kind,
		phase="eval",
		span=span,
		subject=subject,
	)


def render(diag: Diagnostic) -> str:
	"""Format a diagnostic the way rustc prints one."""
	lines = [f"{diag.severity}[{diag.code}]: {diag.message}", f" --> {diag.span}"]
	for note in diag.notes:
		lines.append(f"  = note: {note}")
	return "\n".join(lines)


def to_json(diag: Diagnostic) -> dict[str, Any]:
	return {
		"phase": diag.phase,
		"kind": diag.code,
		"message": diag.message,
		"severity": diag.severity,
		"subject": diag.subject,
		"file": diag.span.file,
		"line": diag.span.line,
		"column": diag.span.column,
		"notes": list(diag.notes),
	}


__all__ = [
	"Diagnostic",
	"DiagnosticError",
	"DiagnosticKind",
	"Span",
	"render",
	"report_runtime_violation",
	"report_violation",
	"to_json",
]
