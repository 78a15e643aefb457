#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Property tests for the ownership tracker and the format template splitter.

Invariants:
- an exclusive borrow never overlaps any other active borrow
- a rejected operation leaves the tracker unchanged
- joining two paths never makes a place more usable than either path
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from ferrum.places import DerefVia, PlaceArena
from ferrum.runtime import TemplateError, split_template
from ferrum.tracker import BorrowKind, MoveState, OwnershipTracker, Violation, merge_move_state
from ferrum.types import I32, box_of


def _setup():
	arena = PlaceArena()
	tracker = OwnershipTracker(arena)
	tracker.push_frame()
	places = []
	for name in ("a", "b"):
		local = arena.new_local(name, box_of(box_of(I32)), mutable=True)
		tracker.declare(local, initialized=True)
		inner = arena.deref(local, DerefVia.BOX, box_of(I32))
		innermost = arena.deref(inner, DerefVia.BOX, I32)
		places.extend([local, inner, innermost])
	return arena, tracker, places


@st.composite
def borrow_ops(draw):
	"""("begin", place index, kind) or ("end", nth active borrow)."""
	ops = []
	for _ in range(draw(st.integers(min_value=1, max_value=30))):
		if draw(st.booleans()):
			kind = draw(st.sampled_from([BorrowKind.SHARED, BorrowKind.EXCLUSIVE]))
			ops.append(("begin", draw(st.integers(min_value=0, max_value=5)), kind))
		else:
			ops.append(("end", draw(st.integers(min_value=0, max_value=10)), None))
	return ops


@given(ops=borrow_ops())
def test_exclusive_borrows_never_overlap(ops):
	"""No sequence of begin/end operations leaves two overlapping borrows with one exclusive."""
	arena, tracker, places = _setup()
	for op, arg, kind in ops:
		if op == "begin":
			before = dict(tracker.borrows)
			try:
				tracker.begin_borrow(places[arg], kind)
			except Violation:
				assert tracker.borrows == before
		elif tracker.borrows:
			ids = sorted(tracker.borrows)
			tracker.end_borrow(ids[arg % len(ids)])
		records = list(tracker.borrows.values())
		for rec in records:
			if rec.kind is not BorrowKind.EXCLUSIVE:
				continue
			for other in records:
				if other.id != rec.id:
					assert not arena.overlaps(rec.place, other.place)


move_states = st.sampled_from([MoveState.UNINIT, MoveState.LIVE, MoveState.MOVED])


@given(a=move_states, b=move_states)
def test_merge_is_commutative_and_never_more_permissive(a, b):
	"""The joined state equals one of the inputs and is at least as restrictive as both."""
	rank = {MoveState.LIVE: 0, MoveState.UNINIT: 1, MoveState.MOVED: 2}
	merged = merge_move_state(a, b)
	assert merged is merge_move_state(b, a)
	assert merged in (a, b)
	assert rank[merged] == max(rank[a], rank[b])


@given(moved=st.lists(st.booleans(), min_size=6, max_size=6))
def test_join_with_self_fork_is_identity(moved):
	"""Joining a tracker with an untouched fork of itself changes nothing."""
	arena, tracker, places = _setup()
	for place, flag in zip(places, moved):
		if flag:
			tracker.mark_moved(place)
	expected = {place: tracker.state(place) for place in places}
	tracker.join(tracker.fork())
	assert {place: tracker.state(place) for place in places} == expected


literal_text = st.text(alphabet=st.sampled_from(list("ab {}")), max_size=12).map(
	lambda s: s.replace("{", "{{").replace("}", "}}")
)


@given(pieces=st.lists(literal_text, min_size=1, max_size=5))
def test_split_template_inverts_join(pieces):
	"""Joining escaped pieces with `{}` holes splits back into the unescaped pieces."""
	template = "{}".join(pieces)
	unescaped = [p.replace("{{", "{").replace("}}", "}") for p in pieces]
	assert split_template(template) == unescaped


@pytest.mark.parametrize("template", ["{", "}", "{x}", "a } b"])
def test_split_template_rejects_malformed(template):
	"""Lone braces and named holes are rejected."""
	with pytest.raises(TemplateError):
		split_template(template)
