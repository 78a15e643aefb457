#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Run every annotated program under `programs/` and compare with its
`// Output:` or `// Error:` annotation.
"""

from pathlib import Path

import pytest

from ferrum.driver import run_source
from ferrum.fixtures import read_expectation, verify

PROGRAMS = Path(__file__).with_name("programs")


@pytest.mark.parametrize("path", sorted(PROGRAMS.glob("*.rs")), ids=lambda p: p.stem)
def test_program_matches_annotation(path: Path):
	source = path.read_text()
	expectation = read_expectation(source)
	assert not expectation.is_empty, f"{path.name} has no annotation"
	outcome = run_source(source, filename=str(path))
	message = outcome.diagnostic.message if outcome.diagnostic is not None else None
	assert verify(expectation, outcome.outputs, message) == []
