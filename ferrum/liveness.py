# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Extent inference for reference bindings.

A binding that holds a reference keeps its borrows alive while some later
statement still mentions it. The checker walks each block statement by
statement and keeps a stack of "mentioned later" name sets, one per enclosing
block (plus one per enclosing loop, holding every name the loop mentions,
since the next iteration can revisit them). A binding is live when any set on
the stack contains its name.

Names are matched textually. A shadowed binding therefore counts as live for
as long as its shadow is mentioned, which only lengthens extents.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import fields, is_dataclass
from typing import FrozenSet, Iterator, List

from . import ast


def names_used(*nodes: object) -> FrozenSet[str]:
	"""Every identifier read, written or borrowed anywhere inside `nodes`."""
	found: set[str] = set()
	stack: List[object] = list(nodes)
	while stack:
		node = stack.pop()
		if node is None:
			continue
		if isinstance(node, (list, tuple)):
			stack.extend(node)
			continue
		if isinstance(node, ast.Name):
			found.add(node.ident)
			continue
		if isinstance(node, (ast.Expr, ast.Stmt, ast.Block)) and is_dataclass(node):
			for f in fields(node):
				if f.name in ("loc", "type_expr"):
					continue
				stack.append(getattr(node, f.name))
	return frozenset(found)


class LiveNames:
	"""Stack of name sets that are still mentioned later in the program."""

	def __init__(self) -> None:
		self._stack: List[FrozenSet[str]] = []

	@contextmanager
	def scope(self, names: FrozenSet[str]) -> Iterator[None]:
		self._stack.append(names)
		try:
			yield
		finally:
			self._stack.pop()

	def __contains__(self, name: object) -> bool:
		return any(name in names for names in self._stack)


__all__ = ["LiveNames", "names_used"]
