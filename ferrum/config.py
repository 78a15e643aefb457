# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Run settings shared by the checker, the evaluator and the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

LIFETIME_MODES = ("nll", "lexical")


@dataclass(frozen=True)
class Settings:
	"""
	entry: function evaluated as the program's entry point.
	max_call_depth: activation frames allowed before `StackExhausted`.
	lifetimes: "nll" ends a held borrow after its holder's last use;
	  "lexical" keeps every held borrow until the holder leaves scope.
	"""

	entry: str = "main"
	max_call_depth: int = 1000
	lifetimes: str = "nll"

	def __post_init__(self) -> None:
		if self.lifetimes not in LIFETIME_MODES:
			raise ValueError(f"unknown lifetime mode {self.lifetimes!r}; expected one of {', '.join(LIFETIME_MODES)}")
		if self.max_call_depth < 1:
			raise ValueError("max_call_depth must be positive")

	@property
	def lexical(self) -> bool:
		return self.lifetimes == "lexical"

	@classmethod
	def from_args(cls, args: Any) -> "Settings":
		"""Build settings from an argparse namespace, falling back to defaults."""
		defaults = cls()
		return cls(
			entry=getattr(args, "entry", None) or defaults.entry,
			max_call_depth=getattr(args, "max_call_depth", None) or defaults.max_call_depth,
			lifetimes=getattr(args, "lifetimes", None) or defaults.lifetimes,
		)


DEFAULT_SETTINGS = Settings()

__all__ = ["DEFAULT_SETTINGS", "LIFETIME_MODES", "Settings"]
