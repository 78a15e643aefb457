# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Expected-result annotations embedded in program comments.

	// Output: 32 48
	// Error: cannot assign to `a` because it is borrowed

`Output` lists the expected outputs separated by whitespace (an empty list
is written `// Output:`). `Error` gives the expected diagnostic message, or a
substring of it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional

_OUTPUT_RE = re.compile(r"//\s*Output:[ \t]*(?P<rest>[^\n]*)")
_ERROR_RE = re.compile(r"//\s*Error:[ \t]*(?P<rest>[^\n]*)")


@dataclass(frozen=True)
class Expectation:
	outputs: Optional[List[str]] = None
	error: Optional[str] = None

	@property
	def is_empty(self) -> bool:
		return self.outputs is None and self.error is None


def read_expectation(source: str) -> Expectation:
	outputs: Optional[List[str]] = None
	error: Optional[str] = None
	match = _OUTPUT_RE.search(source)
	if match is not None:
		outputs = match.group("rest").split()
	match = _ERROR_RE.search(source)
	if match is not None:
		error = match.group("rest").strip()
	if outputs is not None and error is not None:
		raise ValueError("a program cannot expect both output and an error")
	return Expectation(outputs=outputs, error=error)


def verify(expectation: Expectation, outputs: Optional[List[str]], message: Optional[str]) -> List[str]:
	"""
	Compare one run against an expectation; return mismatch descriptions.

	`outputs` is None when the program was only checked, not run.
	"""
	problems: List[str] = []
	if expectation.error is not None:
		if message is None:
			problems.append(f"expected error containing {expectation.error!r}, program ran successfully")
		elif expectation.error not in message:
			problems.append(f"expected error containing {expectation.error!r}, got {message!r}")
	elif expectation.outputs is not None:
		if message is not None:
			problems.append(f"expected output {expectation.outputs}, got error {message!r}")
		elif outputs is not None and outputs != expectation.outputs:
			problems.append(f"expected output {expectation.outputs}, got {outputs}")
	return problems


__all__ = ["Expectation", "read_expectation", "verify"]
