# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
ferrum: ownership and borrow checking plus evaluation for a small Rust subset.
"""

from .borrow_checker import BorrowChecker, CheckedProgram, CheckError
from .config import Settings
from .diagnostics import Diagnostic, DiagnosticError, DiagnosticKind
from .driver import Outcome, check_source, run_source
from .interp import Interpreter, RunError
from .parser import ParseError, parse_program

__all__ = [
	"BorrowChecker",
	"CheckError",
	"CheckedProgram",
	"Diagnostic",
	"DiagnosticError",
	"DiagnosticKind",
	"Interpreter",
	"Outcome",
	"ParseError",
	"RunError",
	"Settings",
	"check_source",
	"parse_program",
	"run_source",
]
