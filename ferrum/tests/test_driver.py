#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""CLI, settings and annotation tests."""

import json
from pathlib import Path
from types import SimpleNamespace

import pytest

from ferrum.config import Settings
from ferrum.diagnostics import Diagnostic, DiagnosticKind, Span, render
from ferrum.driver import main
from ferrum.fixtures import Expectation, read_expectation, verify

PROGRAMS = Path(__file__).with_name("programs")


def _write(tmp_path: Path, name: str, text: str) -> Path:
	path = tmp_path / name
	path.write_text(text)
	return path


def test_successful_run_prints_outputs(tmp_path: Path, capsys):
	"""Outputs go to stdout one per line and the exit code is 0."""
	path = _write(tmp_path, "ok.rs", "fn main() { displayi32(1); displayi32(2); }")
	assert main([str(path)]) == 0
	out = capsys.readouterr()
	assert out.out.splitlines() == ["1", "2"]
	assert out.err == ""


def test_rejected_program_reports_diagnostic(tmp_path: Path, capsys):
	"""A rejected program prints a rendered diagnostic to stderr and exits 1."""
	path = _write(tmp_path, "bad.rs", "fn main() {\n    let a = 1;\n    a = 2;\n}\n")
	assert main([str(path)]) == 1
	out = capsys.readouterr()
	assert out.out == ""
	assert "error[AssignImmutable]: cannot assign twice to immutable variable `a`" in out.err
	assert f"--> {path}:3:" in out.err


def test_json_output(tmp_path: Path, capsys):
	"""--json emits one object per file with exit code, outputs and diagnostics."""
	good = _write(tmp_path, "good.rs", "fn main() { displayi32(7); }")
	bad = _write(tmp_path, "bad.rs", "fn main() { let z = 0; displayi32(1 / z); }")
	assert main(["--json", str(good), str(bad)]) == 1
	lines = capsys.readouterr().out.splitlines()
	first, second = (json.loads(line) for line in lines)
	assert first == {"exit_code": 0, "outputs": ["7"], "diagnostics": []}
	assert second["exit_code"] == 1
	assert second["outputs"] == []
	diag = second["diagnostics"][0]
	assert diag["kind"] == "ArithmeticFault"
	assert diag["phase"] == "eval"
	assert diag["file"] == str(bad)
	assert diag["line"] == 1


def test_check_only_does_not_run(tmp_path: Path, capsys):
	"""--check-only stops before evaluation."""
	path = _write(tmp_path, "p.rs", "fn main() { let z = 0; displayi32(1 / z); }")
	assert main(["--check-only", str(path)]) == 0
	assert capsys.readouterr().out == ""


def test_settings_flags(tmp_path: Path, capsys):
	"""--lifetimes, --entry and --max-call-depth reach the checker and evaluator."""
	nll = PROGRAMS / "nll.rs"
	assert main([str(nll)]) == 0
	assert main(["--lifetimes", "lexical", str(nll)]) == 1

	start = _write(tmp_path, "start.rs", "fn start() { displayi32(3); }")
	assert main(["--entry", "start", str(start)]) == 0

	deep = _write(tmp_path, "deep.rs", "fn f(x: i32) -> i32 { f(x) }\nfn main() { displayi32(f(1)); }")
	assert main(["--max-call-depth", "10", str(deep)]) == 1
	assert "error[StackExhausted]" in capsys.readouterr().err


def test_invalid_settings_are_usage_errors(tmp_path: Path):
	"""A non-positive call depth is rejected before any file is read."""
	path = _write(tmp_path, "p.rs", "fn main() {}")
	with pytest.raises(SystemExit) as excinfo:
		main(["--max-call-depth", "-1", str(path)])
	assert excinfo.value.code == 2


def test_missing_file(tmp_path: Path, capsys):
	"""An unreadable path is reported and counted as a failure."""
	assert main([str(tmp_path / "nope.rs")]) == 1
	assert "nope.rs" in capsys.readouterr().err


def test_verify_corpus(capsys):
	"""--verify checks every corpus program against its annotation."""
	paths = sorted(str(p) for p in PROGRAMS.glob("*.rs"))
	assert main(["--verify", *paths]) == 0
	lines = capsys.readouterr().out.splitlines()
	assert len(lines) == len(paths)
	assert all(line.startswith("ok ") for line in lines)


def test_verify_reports_mismatch(tmp_path: Path, capsys):
	"""A wrong annotation fails verification with a description."""
	path = _write(tmp_path, "w.rs", "// Output: 2\nfn main() { displayi32(1); }")
	assert main(["--verify", str(path)]) == 1
	out = capsys.readouterr().out
	assert out.startswith(f"FAIL {path}")
	assert "expected output ['2'], got ['1']" in out


def test_verify_requires_annotation(tmp_path: Path, capsys):
	"""Programs without annotations cannot be verified."""
	path = _write(tmp_path, "n.rs", "fn main() {}")
	assert main(["--verify", "--json", str(path)]) == 1
	result = json.loads(capsys.readouterr().out)
	assert result["exit_code"] == 1
	assert result["problems"] == ["no `// Output:` or `// Error:` annotation"]


def test_verify_reports_contradictory_annotations(tmp_path: Path, capsys):
	"""A file expecting both output and an error fails verification instead of crashing."""
	path = _write(tmp_path, "both.rs", "// Output: 1\n// Error: boom\nfn main() { displayi32(1); }")
	ok = _write(tmp_path, "ok.rs", "// Output: 1\nfn main() { displayi32(1); }")
	assert main(["--verify", str(path), str(ok)]) == 1
	lines = capsys.readouterr().out.splitlines()
	assert lines == [
		f"FAIL {path}",
		"  a program cannot expect both output and an error",
		f"ok {ok}",
	]


def test_read_expectation_forms():
	"""Annotations accept empty output lists and reject contradictory pairs."""
	assert read_expectation("// Output:\nfn main() {}").outputs == []
	assert read_expectation("// Output: 1  2\n").outputs == ["1", "2"]
	assert read_expectation("// Error: boom \n").error == "boom"
	assert read_expectation("fn main() {}").is_empty
	with pytest.raises(ValueError):
		read_expectation("// Output: 1\n// Error: x\n")


def test_verify_matches_error_substring():
	"""Expected errors match as substrings of the actual message."""
	expectation = Expectation(error="because it is borrowed")
	assert verify(expectation, [], "cannot assign to `a` because it is borrowed") == []
	assert verify(expectation, ["1"], None) != []
	assert verify(Expectation(outputs=["1"]), None, None) == []


def test_settings_defaults_and_validation():
	"""Settings fall back to defaults for absent CLI values."""
	settings = Settings.from_args(SimpleNamespace(entry=None, max_call_depth=None, lifetimes="lexical"))
	assert settings == Settings(lifetimes="lexical")
	assert settings.lexical
	with pytest.raises(ValueError):
		Settings(lifetimes="dynamic")


def test_render_format():
	"""Rendered diagnostics follow the rustc layout."""
	diag = Diagnostic(
		message="use of moved value: `a`",
		kind=DiagnosticKind.USE_AFTER_MOVE,
		span=Span(file="x.rs", line=4, column=16),
		notes=["value moved here"],
	)
	assert render(diag) == "error[UseAfterMove]: use of moved value: `a`\n --> x.rs:4:16\n  = note: value moved here"
