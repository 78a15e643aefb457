# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Ownership/borrow state tracker.

Holds, for one function being checked, the move state of every place and the
set of active borrows, and answers the capability questions the borrow
checker asks before each read, write, move or borrow. A failed check raises
`Violation`; the checker turns it into a diagnostic with the span of the node
it was visiting.

A borrow's extent is expressed by its holder: the local place of the binding
whose value carries the reference. Temporaries (no holder) end with their
statement. A held borrow ends when its holder is reassigned, goes out of
scope, or (unless pinned) is no longer live.

`BorrowStacks` is the evaluator's side of the same discipline: it follows
concrete reference values through the heap and reports the use of a
reference whose borrow a write, a move or a conflicting borrow has ended.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import Callable, Container, Dict, FrozenSet, Iterable, Iterator, List, Optional

from .ast import Located
from .diagnostics import DiagnosticKind
from .places import DerefVia, PlaceArena


class BorrowKind(Enum):
	SHARED = "shared"
	EXCLUSIVE = "exclusive"


class MoveState(Enum):
	UNINIT = auto()
	LIVE = auto()
	MOVED = auto()


@dataclass(frozen=True)
class BorrowRecord:
	id: int
	place: int
	kind: BorrowKind
	holder: Optional[int] = None
	# Extent is the holder's whole scope instead of the holder's last use.
	pinned: bool = False
	origin: Optional[Located] = None


class Violation(Exception):
	"""A rule violation found by the tracker."""

	def __init__(
		self,
		kind: DiagnosticKind,
		place: int,
		variant: str,
		conflict: Optional[BorrowRecord] = None,
	) -> None:
		super().__init__(f"{kind.value}/{variant} on place {place}")
		self.kind = kind
		self.place = place
		self.variant = variant
		self.conflict = conflict


def merge_move_state(a: Optional[MoveState], b: Optional[MoveState]) -> Optional[MoveState]:
	"""Join states from two control-flow paths; the more restrictive wins."""
	if a is None:
		return b
	if b is None:
		return a
	for state in (MoveState.MOVED, MoveState.UNINIT):
		if a is state or b is state:
			return state
	return MoveState.LIVE


class OwnershipTracker:
	def __init__(self, arena: PlaceArena, *, ids: Optional[Iterator[int]] = None) -> None:
		self.arena = arena
		self.states: Dict[int, MoveState] = {}
		self.borrows: Dict[int, BorrowRecord] = {}
		self.frames: List[List[int]] = [[]]
		# Shared with forks so ids stay unique across branches.
		self._ids = ids if ids is not None else itertools.count(1)

	# -- scopes -----------------------------------------------------------

	def push_frame(self) -> None:
		self.frames.append([])

	def pop_frame(self) -> List[BorrowRecord]:
		"""
		Leave the innermost scope.

		Borrows held by bindings of the scope end. Any surviving borrow of
		storage owned by a dying binding would dangle and raises
		`DanglingBorrow`.
		"""
		if len(self.frames) == 1:
			raise RuntimeError("cannot pop the outermost frame")
		dying = self.frames.pop()
		dying_set = set(dying)
		released = [rec for rec in self.borrows.values() if rec.holder in dying_set]
		for rec in released:
			del self.borrows[rec.id]
		for rec in self._ordered(self.borrows.values()):
			root = self.arena.root(rec.place)
			if root in dying_set and self.arena.reference_deref(rec.place) is None:
				raise Violation(DiagnosticKind.DANGLING_BORROW, root, "scope", rec)
		for place in reversed(dying):
			self.states.pop(place, None)
			for child in self.arena.descendants(place):
				self.states.pop(child, None)
		return released

	def declare(self, place: int, *, initialized: bool = False) -> None:
		self.frames[-1].append(place)
		self.states[place] = MoveState.LIVE if initialized else MoveState.UNINIT

	# -- move state -------------------------------------------------------

	def state(self, place: int) -> MoveState:
		if self._moved_overlap(place) is not None:
			return MoveState.MOVED
		if self.states.get(self.arena.root(place)) is MoveState.UNINIT:
			return MoveState.UNINIT
		return MoveState.LIVE

	def mark_moved(self, place: int) -> None:
		self.states[place] = MoveState.MOVED

	def mark_live(self, place: int) -> None:
		self.states[place] = MoveState.LIVE
		for child in self.arena.descendants(place):
			self.states.pop(child, None)

	def _moved_overlap(self, place: int) -> Optional[int]:
		for pid in self.arena.chain(place):
			if self.states.get(pid) is MoveState.MOVED:
				return pid
		for pid in self.arena.descendants(place):
			if self.states.get(pid) is MoveState.MOVED:
				return pid
		return None

	def _require_initialized(self, place: int) -> None:
		root = self.arena.root(place)
		if self.states.get(root) is MoveState.UNINIT:
			raise Violation(DiagnosticKind.USE_UNINITIALIZED, root, "use")

	# -- capability checks ------------------------------------------------

	def can_read(self, place: int) -> None:
		self._require_initialized(place)
		moved = self._moved_overlap(place)
		if moved is not None:
			raise Violation(DiagnosticKind.USE_AFTER_MOVE, moved, "use")
		for rec in self.borrows_on(place):
			if rec.kind is BorrowKind.EXCLUSIVE:
				raise Violation(DiagnosticKind.CONFLICTING_BORROW, place, "use-while-mut", rec)

	def can_move(self, place: int) -> None:
		self._require_initialized(place)
		moved = self._moved_overlap(place)
		if moved is not None:
			raise Violation(DiagnosticKind.USE_AFTER_MOVE, moved, "use")
		via = self.arena.reference_deref(place)
		if via is not None:
			variant = "mut" if via is DerefVia.MUT_REF else "shared"
			raise Violation(DiagnosticKind.MOVE_OUT_OF_BORROW, place, variant)
		for rec in self.borrows_on(place):
			raise Violation(DiagnosticKind.MOVE_WHILE_BORROWED, place, "move", rec)

	def can_write(self, place: int) -> None:
		chain = self.arena.chain(place)
		for pid in chain[:-1]:
			state = self.states.get(pid)
			if state is MoveState.UNINIT:
				raise Violation(DiagnosticKind.USE_UNINITIALIZED, pid, "use")
			if state is MoveState.MOVED:
				raise Violation(DiagnosticKind.USE_AFTER_MOVE, place, "assign-part")
		first_init = len(chain) == 1 and self.states.get(place) is MoveState.UNINIT
		if not first_init:
			self.check_mutable(place, borrow=False)
		for rec in self.borrows_on(place):
			raise Violation(DiagnosticKind.ASSIGN_WHILE_BORROWED, place, "assign", rec)

	def check_mutable(self, place: int, *, borrow: bool) -> None:
		"""
		Reject writes (or `&mut` borrows) the mutability chain forbids.

		The root binding's `mut` flag applies until a reference deref: `&mut`
		grants mutability regardless of the binding, `&` revokes it. Box
		derefs inherit from their owner.
		"""
		chain = self.arena.chain(place)
		mutable = self.arena.node(chain[0]).mutable
		behind_shared = False
		for pid in chain[1:]:
			via = self.arena.node(pid).via
			if via is DerefVia.MUT_REF:
				mutable, behind_shared = True, False
			elif via is DerefVia.SHARED_REF:
				mutable, behind_shared = False, True
		if mutable:
			return
		if behind_shared:
			variant = "borrow-behind-shared" if borrow else "assign-behind-shared"
		elif len(chain) == 1:
			variant = "borrow-immutable" if borrow else "assign-twice"
		else:
			variant = "borrow-immutable-owner" if borrow else "assign-immutable-owner"
		raise Violation(DiagnosticKind.ASSIGN_IMMUTABLE, place, variant)

	# -- borrows ----------------------------------------------------------

	def check_borrow(self, place: int, kind: BorrowKind) -> None:
		"""Raise if `place` cannot be borrowed as `kind` right now."""
		self._require_initialized(place)
		moved = self._moved_overlap(place)
		if moved is not None:
			raise Violation(DiagnosticKind.USE_AFTER_MOVE, moved, "borrow")
		for rec in self.borrows_on(place):
			if kind is BorrowKind.EXCLUSIVE:
				variant = "mut-twice" if rec.kind is BorrowKind.EXCLUSIVE else "mut-while-shared"
			elif rec.kind is BorrowKind.EXCLUSIVE:
				variant = "shared-while-mut"
			else:
				continue
			raise Violation(DiagnosticKind.CONFLICTING_BORROW, place, variant, rec)

	def begin_borrow(
		self,
		place: int,
		kind: BorrowKind,
		*,
		holder: Optional[int] = None,
		pinned: bool = False,
		origin: Optional[Located] = None,
	) -> int:
		self.check_borrow(place, kind)
		bid = next(self._ids)
		self.borrows[bid] = BorrowRecord(bid, place, kind, holder=holder, pinned=pinned, origin=origin)
		return bid

	def end_borrow(self, bid: int) -> None:
		self.borrows.pop(bid, None)

	def borrows_on(self, place: int) -> List[BorrowRecord]:
		return [rec for rec in self._ordered(self.borrows.values()) if self.arena.overlaps(rec.place, place)]

	def held_by(self, holder: int) -> List[BorrowRecord]:
		return [rec for rec in self._ordered(self.borrows.values()) if rec.holder == holder]

	def end_borrows_held_by(self, holder: int) -> List[BorrowRecord]:
		released = self.held_by(holder)
		for rec in released:
			del self.borrows[rec.id]
		return released

	def adopt(self, bids: Iterable[int], holder: int, *, pinned: bool) -> None:
		"""Hand borrows carried by a value over to the binding that stores it."""
		for bid in bids:
			rec = self.borrows.get(bid)
			if rec is not None:
				self.borrows[bid] = replace(rec, holder=holder, pinned=pinned)

	def share(self, bids: Iterable[int], holder: int, *, pinned: bool) -> FrozenSet[int]:
		"""Give `holder` its own copy of each borrow; the originals are untouched."""
		out = []
		for bid in sorted(bids):
			rec = self.borrows.get(bid)
			if rec is None:
				continue
			copy = next(self._ids)
			self.borrows[copy] = replace(rec, id=copy, holder=holder, pinned=pinned)
			out.append(copy)
		return frozenset(out)

	def detach(self, holder: int) -> FrozenSet[int]:
		"""Moving a holder's value turns its borrows into temporaries."""
		out = []
		for rec in self.held_by(holder):
			self.borrows[rec.id] = replace(rec, holder=None, pinned=False)
			out.append(rec.id)
		return frozenset(out)

	def clone_held(self, holder: int) -> FrozenSet[int]:
		"""Copying a shared reference duplicates its borrows as temporaries."""
		out = []
		for rec in self.held_by(holder):
			if rec.kind is not BorrowKind.SHARED:
				continue
			bid = next(self._ids)
			self.borrows[bid] = replace(rec, id=bid, holder=None, pinned=False)
			out.append(bid)
		return frozenset(out)

	def end_temporaries(self, keep: Container[int] = ()) -> None:
		for rec in list(self.borrows.values()):
			if rec.holder is None and rec.id not in keep:
				del self.borrows[rec.id]

	def release_dead(self, is_live: Callable[[int], bool]) -> List[BorrowRecord]:
		"""
		End unpinned borrows whose holder is no longer live.

		A holder stays live while any surviving borrow is rooted at it, since
		that borrow reaches memory through the holder's reference.
		"""
		holders = {rec.holder for rec in self.borrows.values() if rec.holder is not None}
		alive = {h for h in holders if is_live(h)}
		changed = True
		while changed:
			changed = False
			for rec in self.borrows.values():
				kept = rec.holder is None or rec.pinned or rec.holder in alive
				if not kept:
					continue
				root = self.arena.root(rec.place)
				if root in holders and root not in alive:
					alive.add(root)
					changed = True
		released = [
			rec
			for rec in self._ordered(self.borrows.values())
			if rec.holder is not None and not rec.pinned and rec.holder not in alive
		]
		for rec in released:
			del self.borrows[rec.id]
		return released

	# -- branching --------------------------------------------------------

	def fork(self) -> "OwnershipTracker":
		clone = OwnershipTracker(self.arena, ids=self._ids)
		clone.states = dict(self.states)
		clone.borrows = dict(self.borrows)
		clone.frames = [list(frame) for frame in self.frames]
		return clone

	def join(self, other: "OwnershipTracker") -> None:
		"""Merge state reached along another path into this tracker."""
		for place in set(self.states) | set(other.states):
			merged = merge_move_state(self.states.get(place), other.states.get(place))
			if merged is not None:
				self.states[place] = merged
		for bid, rec in other.borrows.items():
			mine = self.borrows.get(bid)
			if mine is None:
				self.borrows[bid] = rec
			elif rec.pinned and not mine.pinned:
				self.borrows[bid] = replace(mine, pinned=True)

	@staticmethod
	def _ordered(records: Iterable[BorrowRecord]) -> List[BorrowRecord]:
		return sorted(records, key=lambda rec: rec.id)


# ---------------------------------------------------------------------------
# Evaluation-time bookkeeping


@dataclass(frozen=True)
class StackItem:
	tag: int
	kind: BorrowKind


class BorrowStacks:
	"""
	Borrow state of the evaluator's cells.

	Every reference value carries a tag. Each cell keeps the tags still
	allowed to reach it, oldest first, with the owning binding as the implicit
	bottom. An access through a tag invalidates the tags pushed after it that
	the access conflicts with (all of them for a write, the exclusive ones for
	a read); an access by the owner does the same from the bottom. Using an
	invalidated tag later raises `Violation`, so a reference that is never
	used again after a conflicting access is not an error, matching the
	checker's last-use extents.
	"""

	def __init__(self) -> None:
		self.stacks: Dict[int, List[StackItem]] = {}
		# Invalidated tag -> kind of the access that invalidated it.
		self.revoked: Dict[int, DiagnosticKind] = {}
		self._tags = itertools.count(1)

	def push(self, addr: int, kind: BorrowKind) -> int:
		tag = next(self._tags)
		self.stacks.setdefault(addr, []).append(StackItem(tag, kind))
		return tag

	def access(self, addr: int, tag: Optional[int], *, write: bool, cause: DiagnosticKind) -> None:
		"""Record a read or write of `addr`, through `tag` or by the owner when None."""
		stack = self.stacks.get(addr, [])
		keep = 0 if tag is None else self._position(addr, stack, tag) + 1
		cut = keep
		if not write:
			while cut < len(stack) and stack[cut].kind is BorrowKind.SHARED:
				cut += 1
		for item in stack[cut:]:
			self.revoked[item.tag] = cause
		del stack[cut:]

	def forget(self, addr: int) -> None:
		"""Drop the stack of a freed cell."""
		self.stacks.pop(addr, None)

	def _position(self, addr: int, stack: List[StackItem], tag: int) -> int:
		# Newest tags are used most, so search from the top.
		for index in range(len(stack) - 1, -1, -1):
			if stack[index].tag == tag:
				return index
		raise Violation(self.revoked.get(tag, DiagnosticKind.CONFLICTING_BORROW), addr, "invalidated")


__all__ = [
	"BorrowKind",
	"BorrowRecord",
	"BorrowStacks",
	"MoveState",
	"OwnershipTracker",
	"StackItem",
	"Violation",
	"merge_move_state",
]
