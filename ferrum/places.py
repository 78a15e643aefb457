# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Value & place model.

Static side: a `PlaceArena` of place nodes linked to their parents by index.
A place is either a binding's slot (`LOCAL`) or the target of a dereference
of another place (`DEREF`), tagged with what was dereferenced (a box, a shared
reference or a mutable reference). Places are addressed by their arena index
so the tracker can key state on plain integers.

Dynamic side: the values the evaluator manipulates and the `Heap` of cells
that back both stack slots and boxes.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, Iterator, List, Optional

from .types import Type


class PlaceKind(Enum):
	LOCAL = auto()
	DEREF = auto()


class DerefVia(Enum):
	"""What a DEREF place dereferences."""

	BOX = auto()
	SHARED_REF = auto()
	MUT_REF = auto()


@dataclass
class PlaceNode:
	id: int
	kind: PlaceKind
	parent: Optional[int]
	# Binding name for locals; empty for derefs.
	name: str = ""
	ty: Optional[Type] = None
	via: Optional[DerefVia] = None
	# Declared `mut` (locals only).
	mutable: bool = False
	is_param: bool = False


class PlaceArena:
	"""Index-addressed storage for place nodes of one function."""

	def __init__(self) -> None:
		self.nodes: List[PlaceNode] = []
		self._deref_child: Dict[int, int] = {}

	def new_local(self, name: str, ty: Optional[Type], *, mutable: bool = False, is_param: bool = False) -> int:
		node = PlaceNode(
			id=len(self.nodes),
			kind=PlaceKind.LOCAL,
			parent=None,
			name=name,
			ty=ty,
			mutable=mutable,
			is_param=is_param,
		)
		self.nodes.append(node)
		return node.id

	def deref(self, parent: int, via: DerefVia, ty: Optional[Type]) -> int:
		"""Return the `*parent` place, creating it on first use."""
		existing = self._deref_child.get(parent)
		if existing is not None:
			node = self.nodes[existing]
			node.via = via
			node.ty = ty
			return existing
		node = PlaceNode(id=len(self.nodes), kind=PlaceKind.DEREF, parent=parent, ty=ty, via=via)
		self.nodes.append(node)
		self._deref_child[parent] = node.id
		return node.id

	def node(self, place: int) -> PlaceNode:
		return self.nodes[place]

	def root(self, place: int) -> int:
		node = self.nodes[place]
		while node.parent is not None:
			node = self.nodes[node.parent]
		return node.id

	def chain(self, place: int) -> List[int]:
		"""Places from the root local down to `place`, inclusive."""
		out: List[int] = []
		current: Optional[int] = place
		while current is not None:
			out.append(current)
			current = self.nodes[current].parent
		out.reverse()
		return out

	def depth(self, place: int) -> int:
		return len(self.chain(place)) - 1

	def is_prefix(self, prefix: int, place: int) -> bool:
		current: Optional[int] = place
		while current is not None:
			if current == prefix:
				return True
			current = self.nodes[current].parent
		return False

	def overlaps(self, a: int, b: int) -> bool:
		"""True when one place is a prefix of the other."""
		return self.is_prefix(a, b) or self.is_prefix(b, a)

	def descendants(self, place: int) -> Iterator[int]:
		current = self._deref_child.get(place)
		while current is not None:
			yield current
			current = self._deref_child.get(current)

	def reference_deref(self, place: int) -> Optional[DerefVia]:
		"""
		Innermost reference deref on the path to `place`.

		Storage reached through a reference is not owned by the root binding.
		"""
		found: Optional[DerefVia] = None
		for pid in self.chain(place):
			via = self.nodes[pid].via
			if via in (DerefVia.SHARED_REF, DerefVia.MUT_REF):
				found = via
		return found

	def render(self, place: int) -> str:
		node = self.nodes[self.root(place)]
		return "*" * self.depth(place) + node.name


# ---------------------------------------------------------------------------
# Runtime values


@dataclass(frozen=True)
class BoxValue:
	"""Owning pointer to a heap cell."""

	addr: int


@dataclass(frozen=True)
class RefValue:
	"""Non-owning pointer to a cell (a local slot or a box's contents)."""

	addr: int
	mutable: bool = False
	# Borrow tag checked against the cell's stack on every use.
	tag: Optional[int] = None


class CellState(Enum):
	UNINIT = auto()
	LIVE = auto()
	MOVED = auto()


@dataclass
class Cell:
	value: object = None
	state: CellState = CellState.UNINIT


class HeapError(RuntimeError):
	"""Internal storage corruption (double free, access to a freed cell)."""


class Heap:
	"""Cells addressed by integers. Stack slots and boxes share one space."""

	def __init__(self) -> None:
		self._cells: Dict[int, Cell] = {}
		self._next = 1
		self.allocated = 0
		self.freed = 0

	def alloc(self, value: object = None, *, initialized: bool = True) -> int:
		addr = self._next
		self._next += 1
		self._cells[addr] = Cell(value, CellState.LIVE if initialized else CellState.UNINIT)
		self.allocated += 1
		return addr

	def __contains__(self, addr: object) -> bool:
		return addr in self._cells

	def cell(self, addr: int) -> Cell:
		cell = self._cells.get(addr)
		if cell is None:
			raise HeapError(f"access to freed cell {addr}")
		return cell

	def state(self, addr: int) -> CellState:
		return self.cell(addr).state

	def load(self, addr: int) -> object:
		return self.cell(addr).value

	def store(self, addr: int, value: object) -> None:
		cell = self.cell(addr)
		cell.value = value
		cell.state = CellState.LIVE

	def take(self, addr: int) -> object:
		"""Move the value out of a cell, leaving it MOVED."""
		cell = self.cell(addr)
		cell.state = CellState.MOVED
		value = cell.value
		cell.value = None
		return value

	def free(self, addr: int) -> None:
		if self._cells.pop(addr, None) is None:
			raise HeapError(f"double free of cell {addr}")
		self.freed += 1

	@property
	def live_cells(self) -> int:
		return len(self._cells)


__all__ = [
	"BoxValue",
	"Cell",
	"CellState",
	"DerefVia",
	"Heap",
	"HeapError",
	"PlaceArena",
	"PlaceKind",
	"PlaceNode",
	"RefValue",
]
