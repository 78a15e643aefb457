# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Entry points: `run_source` / `check_source` for library callers and the
`ferrum` command line.

A run either produces the full output sequence or exactly one diagnostic;
outputs of a run that fails at evaluation time are discarded.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .borrow_checker import CheckedProgram, check_program
from .config import LIFETIME_MODES, Settings
from .diagnostics import Diagnostic, DiagnosticError, render, to_json
from .fixtures import read_expectation, verify
from .interp import run_program
from .parser import parse_program

logger = logging.getLogger(__name__)


@dataclass
class Outcome:
	outputs: List[str] = field(default_factory=list)
	diagnostic: Optional[Diagnostic] = None

	@property
	def ok(self) -> bool:
		return self.diagnostic is None


def check_source(source: str, settings: Optional[Settings] = None, filename: Optional[str] = None) -> CheckedProgram:
	"""Parse and borrow-check; raises `DiagnosticError` on the first error."""
	program = parse_program(source, filename)
	return check_program(program, settings, filename)


def run_source(source: str, settings: Optional[Settings] = None, filename: Optional[str] = None) -> Outcome:
	"""Parse, check and evaluate a program."""
	try:
		checked = check_source(source, settings, filename)
		outputs = run_program(checked, settings, filename)
	except DiagnosticError as err:
		logger.debug("%s failed in %s: %s", filename or "<input>", err.diagnostic.phase, err.diagnostic.message)
		return Outcome(diagnostic=err.diagnostic)
	return Outcome(outputs=outputs)


def _diag_to_json(diag: Diagnostic, source: Path) -> dict:
	out = to_json(diag)
	if out["file"] is None:
		out["file"] = str(source)
	return out


def main(argv: list[str] | None = None) -> int:
	"""
	Check and run each source file in turn.

	Prints each file's outputs one per line, or its diagnostic to stderr.
	With --json, prints one JSON object per file
	(exit_code/outputs/diagnostics). With --verify, compares each run with the
	file's `// Output:` or `// Error:` annotation instead of printing outputs.
	"""
	parser = argparse.ArgumentParser(prog="ferrum", description="Borrow-check and run programs in a Rust subset")
	parser.add_argument("source", type=Path, nargs="+", help="Path(s) to source file(s)")
	parser.add_argument("--json", action="store_true", help="Emit results as JSON")
	parser.add_argument("--check-only", action="store_true", help="Stop after borrow checking")
	parser.add_argument("--verify", action="store_true", help="Compare results with `// Output:` / `// Error:` annotations")
	parser.add_argument("--entry", help="Entry function (default: main)")
	parser.add_argument("--max-call-depth", type=int, help="Call frames allowed before StackExhausted (default: 1000)")
	parser.add_argument("--lifetimes", choices=LIFETIME_MODES, help="Borrow extent rule (default: nll)")
	parser.add_argument("-v", "--verbose", action="store_true", help="Log debug information to stderr")
	args = parser.parse_args(argv)

	if args.verbose:
		logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
	try:
		settings = Settings.from_args(args)
	except ValueError as err:
		parser.error(str(err))

	exit_code = 0
	for path in args.source:
		try:
			source = path.read_text()
		except OSError as err:
			print(f"{path}: error: {err.strerror or err}", file=sys.stderr)
			exit_code = 1
			continue
		filename = str(path)
		if args.check_only:
			try:
				check_source(source, settings, filename)
				outcome = Outcome()
			except DiagnosticError as err:
				outcome = Outcome(diagnostic=err.diagnostic)
		else:
			outcome = run_source(source, settings, filename)

		if args.verify:
			try:
				expectation = read_expectation(source)
			except ValueError as err:
				problems = [str(err)]
			else:
				message = outcome.diagnostic.message if outcome.diagnostic is not None else None
				problems = verify(expectation, None if args.check_only else outcome.outputs, message)
				if expectation.is_empty:
					problems = ["no `// Output:` or `// Error:` annotation"]
			file_code = 1 if problems else 0
			if args.json:
				print(json.dumps({"file": filename, "exit_code": file_code, "problems": problems}))
			else:
				status = "FAIL" if problems else "ok"
				print(f"{status} {filename}")
				for problem in problems:
					print(f"  {problem}")
			exit_code = max(exit_code, file_code)
			continue

		file_code = 0 if outcome.ok else 1
		if args.json:
			diagnostics = [_diag_to_json(outcome.diagnostic, path)] if outcome.diagnostic is not None else []
			print(json.dumps({"exit_code": file_code, "outputs": outcome.outputs, "diagnostics": diagnostics}))
		elif outcome.diagnostic is not None:
			print(render(outcome.diagnostic), file=sys.stderr)
		else:
			for line in outcome.outputs:
				print(line)
		exit_code = max(exit_code, file_code)
	return exit_code


__all__ = ["Outcome", "check_source", "main", "run_source"]
