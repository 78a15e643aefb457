#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Borrow checker tests over whole programs."""

import pytest

from ferrum.borrow_checker import CheckError, check_program
from ferrum.config import Settings
from ferrum.diagnostics import DiagnosticKind
from ferrum.driver import check_source
from ferrum.parser import parse_program

K = DiagnosticKind


def _main(body: str, extra: str = "") -> str:
	return f"{extra}\nfn main() {{\n{body}\n}}\n"


def _accepts(src: str, **settings) -> None:
	check_source(src, Settings(**settings))


def _rejects(src: str, **settings):
	with pytest.raises(CheckError) as excinfo:
		check_source(src, Settings(**settings))
	diag = excinfo.value.diagnostic
	assert diag.phase == "borrowcheck"
	return diag


# -- borrows ---------------------------------------------------------------


def test_borrow_ends_after_last_use():
	"""A reference binding stops borrowing once it is no longer mentioned."""
	_accepts(_main("let mut a = 1; let r = &a; displayi32(*r); a = 2; displayi32(a);"))


def test_lexical_mode_keeps_borrow_until_scope_end():
	"""With lexical lifetimes the same program is rejected."""
	diag = _rejects(
		_main("let mut a: Box<i32> = Box::new(32); let b: &Box<i32> = &a; displayi32(**b); *a = 48;"),
		lifetimes="lexical",
	)
	assert diag.kind is K.ASSIGN_WHILE_BORROWED
	assert diag.message == "cannot assign to `*a` because it is borrowed"


def test_unmentioned_reference_binding_keeps_its_borrow():
	"""A reference bound but never mentioned again holds its borrow to the end of its scope."""
	diag = _rejects(_main("let mut a = 1; let r = &a; a = 2;"))
	assert diag.kind is K.ASSIGN_WHILE_BORROWED


@pytest.mark.parametrize(
	"body, message",
	[
		(
			"let mut a = 1; let r = &a; let m = &mut a; displayi32(*r);",
			"cannot borrow `a` as mutable because it is also borrowed as immutable",
		),
		(
			"let mut a = 1; let m = &mut a; let r = &a; *m = 2;",
			"cannot borrow `a` as immutable because it is also borrowed as mutable",
		),
		(
			"let mut a = 1; let m = &mut a; displayi32(a); *m = 2;",
			"cannot use `a` because it was mutably borrowed",
		),
	],
)
def test_conflicting_borrows(body, message):
	"""Exclusive borrows exclude every other access while they are live."""
	diag = _rejects(_main(body))
	assert diag.kind is K.CONFLICTING_BORROW
	assert diag.message == message


def test_conflict_note_points_at_first_borrow():
	"""The diagnostic notes where the conflicting borrow was created."""
	src = "fn main() {\n    let mut a = 1;\n    let r = &a;\n    let m = &mut a;\n    displayi32(*r);\n}\n"
	diag = _rejects(src)
	assert diag.span.line == 4
	assert diag.notes == ["borrow of `a` occurs here at 3:13"]


def test_copied_shared_reference_keeps_borrow():
	"""Copying a `&T` copies its borrow to the new binding."""
	diag = _rejects(_main("let mut a = 1; let r = &a; let s = r; let m = &mut a; displayi32(*s);"))
	assert diag.kind is K.CONFLICTING_BORROW
	_accepts(_main("let a = 1; let r = &a; let s = r; displayi32(*r); displayi32(*s);"))


def test_assignment_inside_branch_while_borrowed():
	"""Both arms of an `if` see borrows created before it."""
	diag = _rejects(_main("let mut a = 1; let b = &a; if a > 0 { a = 2; } else { a = 3; } displayi32(*b);"))
	assert diag.kind is K.ASSIGN_WHILE_BORROWED


def test_assignment_in_loop_while_borrowed():
	"""A loop body cannot assign a place borrowed across the loop."""
	diag = _rejects(
		_main("let mut a = 1; let r = &a; let mut i = 0; while i < 2 { a = a + 1; i += 1; } displayi32(*r);")
	)
	assert diag.kind is K.ASSIGN_WHILE_BORROWED


def test_mutable_reference_is_reborrowed_for_calls():
	"""Passing a `&mut` binding to a `&mut` parameter does not move it."""
	_accepts(
		_main(
			"let mut a = 1; let r = &mut a; bump(r); bump(r); displayi32(a);",
			extra="fn bump(x: &mut i32) { *x += 1; }",
		)
	)


def test_call_result_carries_argument_borrows():
	"""A returned reference keeps the borrows of the arguments alive."""
	pick = "fn pick(x: &i32) -> &i32 { x }"
	diag = _rejects(_main("let mut a = 1; let r = pick(&a); a = 2; displayi32(*r);", extra=pick))
	assert diag.kind is K.ASSIGN_WHILE_BORROWED
	_accepts(_main("let mut a = 1; let r = pick(&a); displayi32(*r); a = 2;", extra=pick))


def test_value_result_does_not_carry_borrows():
	"""A call returning `i32` ends the argument borrows with the statement."""
	_accepts(
		_main(
			"let mut a = 1; let v = val(&a); a = 2; displayi32(v);",
			extra="fn val(x: &i32) -> i32 { *x }",
		)
	)


def test_println_borrows_its_arguments():
	"""Format arguments are borrowed, so a box stays usable after printing."""
	_accepts(_main('let b = Box::new(1); println!("{}", b); displayi32(*b);'))


# -- moves -----------------------------------------------------------------


def test_use_after_move():
	"""Reading through a moved box is rejected at the read."""
	src = "fn main() {\n    let a = Box::new(1);\n    let b = a;\n    displayi32(*a);\n}\n"
	diag = _rejects(src)
	assert diag.kind is K.USE_AFTER_MOVE
	assert diag.message == "use of moved value: `a`"
	assert diag.subject == "a"
	assert diag.span.line == 4


def test_move_while_borrowed():
	"""A borrowed owner cannot be moved."""
	diag = _rejects(_main("let a = Box::new(1); let r = &a; let b = a; displayi32(**r);"))
	assert diag.kind is K.MOVE_WHILE_BORROWED
	assert diag.message == "cannot move out of `a` because it is borrowed"


def test_move_out_of_reference():
	"""Owned values cannot be moved out from behind a reference."""
	diag = _rejects(_main("let a = Box::new(1); let r = &a; let b = *r;"))
	assert diag.kind is K.MOVE_OUT_OF_BORROW
	assert diag.message == "cannot move out of `*r` which is behind a shared reference"
	diag = _rejects("fn f(r: &mut Box<i32>) -> Box<i32> { *r }\nfn main() {}")
	assert diag.kind is K.MOVE_OUT_OF_BORROW


def test_move_in_one_branch_is_a_move():
	"""A value moved on any path is moved after the `if`."""
	diag = _rejects(_main("let a = Box::new(1); if true { let b = a; } displayi32(*a);"))
	assert diag.kind is K.USE_AFTER_MOVE


def test_diverging_branch_does_not_poison_join():
	"""A move in an arm that returns does not affect code after the `if`."""
	_accepts(
		_main(
			"displayi32(take(Box::new(1), true));",
			extra="fn take(a: Box<i32>, c: bool) -> i32 {\n if c { let b = a; return *b; }\n *a\n}",
		)
	)


def test_move_in_loop_body():
	"""A move inside a loop conflicts with the next iteration."""
	diag = _rejects(
		_main(
			"let b = Box::new(1); let mut i = 0; while i < 2 { consume(b); i += 1; }",
			extra="fn consume(b: Box<i32>) {}",
		)
	)
	assert diag.kind is K.USE_AFTER_MOVE


def test_moved_mutable_reference():
	"""`&mut` references move; writing through the moved binding fails."""
	diag = _rejects(_main("let mut a = 1; let m = &mut a; let n = m; *m = 2;"))
	assert diag.kind is K.USE_AFTER_MOVE


def test_reassigning_moved_box():
	"""A moved `mut` binding can be given a new value and used again."""
	_accepts(_main("let mut b = Box::new(1); let c = b; b = Box::new(2); displayi32(*b + *c);"))
	diag = _rejects(_main("let mut b = Box::new(1); let c = b; *b = 2;"))
	assert diag.kind is K.USE_AFTER_MOVE
	assert diag.message == "assign to part of moved value: `*b`"


# -- mutability and initialization -------------------------------------------


@pytest.mark.parametrize(
	"body, message",
	[
		("let a = 1; a = 2;", "cannot assign twice to immutable variable `a`"),
		("let b = Box::new(1); *b = 2;", "cannot assign to `*b`, as `b` is not declared as mutable"),
		("let mut a = 1; let r = &a; *r = 2;", "cannot assign to `*r`, which is behind a `&` reference"),
		("let a = 1; let m = &mut a;", "cannot borrow `a` as mutable, as it is not declared as mutable"),
	],
)
def test_mutability_errors(body, message):
	"""Writes and `&mut` borrows follow the binding's `mut` and the reference kinds on the path."""
	diag = _rejects(_main(body))
	assert diag.kind is K.ASSIGN_IMMUTABLE
	assert diag.message == message


def test_deferred_initialization():
	"""An immutable binding may be initialized once on every path."""
	_accepts(_main("let x: i32; if true { x = 1; } else { x = 2; } displayi32(x);"))
	diag = _rejects(_main("let x: i32; if true { x = 1; } displayi32(x);"))
	assert diag.kind is K.USE_UNINITIALIZED
	assert diag.message == "used binding `x` isn't initialized"


def test_untyped_deferred_binding_takes_first_assigned_type():
	"""`let y;` gets its type from the first assignment."""
	_accepts(_main("let y; y = true; if y { displayi32(1); }"))


# -- scopes and returns -------------------------------------------------------


def test_reference_outliving_scope():
	"""A reference stored outside a block cannot point into the block."""
	diag = _rejects(_main("let r: &i32;\n{ let x = 5; r = &x; }\ndisplayi32(*r);"))
	assert diag.kind is K.DANGLING_BORROW
	assert diag.message == "`x` does not live long enough"


def test_block_value_referencing_block_local():
	"""A block cannot evaluate to a reference into its own locals."""
	diag = _rejects(_main("let r: &i32 = { let x = 1; &x }; displayi32(*r);"))
	assert diag.kind is K.DANGLING_BORROW


def test_returning_references():
	"""References into the caller's data may be returned; references to locals may not."""
	_accepts(
		_main(
			"let a = 1; let b = Box::new(2); displayi32(*first(&a, &a)); displayi32(*inner(&b));",
			extra="fn first(x: &i32, y: &i32) -> &i32 { x }\nfn inner(b: &Box<i32>) -> &i32 { &**b }",
		)
	)
	diag = _rejects("fn make() -> &i32 { let x = 7; return &x; }\nfn main() {}")
	assert diag.message == "cannot return reference to local variable `x`"
	diag = _rejects("fn make() -> &i32 { let b = Box::new(1); &*b }\nfn main() {}")
	assert diag.message == "cannot return value referencing local data `*b`"


_SET = "fn set(rr: &mut &i32, v: &i32) { *rr = v; }"


@pytest.mark.parametrize("lifetimes", ["nll", "lexical"])
@pytest.mark.parametrize(
	"inner, extra",
	[
		("let rr: &mut &i32 = &mut r; *rr = &y;", ""),
		("set(&mut r, &y);", _SET),
	],
	ids=["assign", "call"],
)
def test_reference_stored_through_reference(lifetimes, inner, extra):
	"""A reference written through `&mut r` is held by `r` and cannot outlive its target."""
	src = _main(f"let x = 1; let mut r: &i32 = &x;\n{{ let y = 2; {inner} }}\ndisplayi32(*r);", extra=extra)
	diag = _rejects(src, lifetimes=lifetimes)
	assert diag.kind is K.DANGLING_BORROW
	assert diag.message == "`y` does not live long enough"


def test_reference_stored_through_reference_to_longer_lived_value():
	"""Storing through `&mut r` is fine when the target outlives `r`."""
	_accepts(_main("let y = 2; let x = 1; let mut r: &i32 = &x; { let rr: &mut &i32 = &mut r; *rr = &y; } displayi32(*r);"))
	_accepts(_main("let y = 2; let x = 1; let mut r: &i32 = &x; set(&mut r, &y); displayi32(*r);", extra=_SET))


def test_storing_local_reference_into_caller_storage():
	"""A function cannot write a reference to its own local through a parameter."""
	diag = _rejects("fn put(rr: &mut &i32) { let y = 1; *rr = &y; }\nfn main() {}")
	assert diag.message == "`y` does not live long enough"
	diag = _rejects(f"{_SET}\nfn put(rr: &mut &i32) {{ let y = 1; set(rr, &y); }}\nfn main() {{}}")
	assert diag.message == "`y` does not live long enough"


# -- typing and names ---------------------------------------------------------


@pytest.mark.parametrize(
	"src, kind, message",
	[
		(_main("let x: bool = 1;"), K.TYPE_MISMATCH, "mismatched types: expected `bool`, found `i32`"),
		(_main("let x: String = 1;"), K.UNRESOLVED_NAME, "cannot find type `String` in this scope"),
		(_main("displayi32(y);"), K.UNRESOLVED_NAME, "cannot find value `y` in this scope"),
		(_main("foo(1);"), K.UNRESOLVED_NAME, "cannot find function `foo` in this scope"),
		(
			_main("displayi32(1, 2);"),
			K.TYPE_MISMATCH,
			"this function takes 1 argument but 2 arguments were supplied",
		),
		(_main("let a = 1; displayi32(*a);"), K.TYPE_MISMATCH, "type `i32` cannot be dereferenced"),
		(_main("let b = 1 && true;"), K.TYPE_MISMATCH, None),
		(_main("let mut f = true; f += 1;"), K.TYPE_MISMATCH, "cannot apply `+=` to type `bool`"),
		(_main("let x = if true { 1 };"), K.TYPE_MISMATCH, None),
		("fn f() -> i32 { true }\nfn main() {}", K.TYPE_MISMATCH, "mismatched types: expected `i32`, found `bool`"),
		(_main("let a = 1; a + 1 = 2;"), K.INVALID_ASSIGN_TARGET, "invalid left-hand side of assignment"),
		(
			_main('println!("{} {}", 1);'),
			K.FORMAT_MISMATCH,
			"2 positional arguments in format string, but 1 argument was given",
		),
		(_main('println!("{x}", 1);'), K.FORMAT_MISMATCH, None),
		(_main('println!("{}", ());'), K.TYPE_MISMATCH, "`()` doesn't implement `std::fmt::Display`"),
		(_main('format!("{}", 1);'), K.UNRESOLVED_NAME, "cannot find macro `format` in this scope"),
		("fn f() {}\nfn f() {}\nfn main() {}", K.DUPLICATE_DEFINITION, "the name `f` is defined multiple times"),
		("fn displayi32(x: i32) {}\nfn main() {}", K.DUPLICATE_DEFINITION, None),
		("fn f() {}", K.UNRESOLVED_NAME, "`main` function not found"),
		("fn main(x: i32) {}", K.TYPE_MISMATCH, "`main` function must not take parameters"),
	],
)
def test_static_errors(src, kind, message):
	"""Typing, naming and format errors each map to their own kind."""
	diag = _rejects(src)
	assert diag.kind is kind
	if message is not None:
		assert diag.message == message


def test_shadowing_rebinds_name():
	"""A later `let` shadows an earlier binding of another type."""
	_accepts(_main("let a = 1; let a = true; if a { displayi32(1); }"))


def test_custom_entry_function():
	"""The entry point can be renamed through settings."""
	_accepts("fn start() { displayi32(1); }", entry="start")


def test_checking_is_deterministic():
	"""Checking the same program twice gives the same verdict and diagnostic."""
	program = parse_program(_main("let mut a = 1; let r = &a; a = 2; displayi32(*r);"))
	messages = []
	for _ in range(2):
		with pytest.raises(CheckError) as excinfo:
			check_program(program)
		messages.append((excinfo.value.diagnostic.message, excinfo.value.diagnostic.span))
	assert messages[0] == messages[1]

	program = parse_program(_main("let y; y = 1; displayi32(y);"))
	first = check_program(program)
	second = check_program(program)
	assert first.functions.keys() == second.functions.keys()
