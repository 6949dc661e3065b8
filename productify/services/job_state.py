"""Pure reducers over a job's item snapshot.

Job status is never stored independently of its items: every mutation of an
item is followed by `derive_status` over the full, current item list.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from productify.schemas.job import ItemStatus, JobStatus, TERMINAL_ITEM_STATUSES


def _statuses(items: Iterable) -> list:
	return [ItemStatus(getattr(item, "status", item)) for item in items]


def derive_status(items: Iterable) -> JobStatus:
	"""Reduce item statuses to the job status.

	Accepts item objects with a ``status`` attribute or bare status values.
	"""
	statuses = _statuses(items)
	if not statuses:
		return JobStatus.PENDING
	if all(s == ItemStatus.COMPLETED for s in statuses):
		return JobStatus.COMPLETED
	if all(s == ItemStatus.PENDING for s in statuses):
		return JobStatus.PENDING
	if any(s == ItemStatus.PROCESSING for s in statuses):
		return JobStatus.PROCESSING
	if any(s == ItemStatus.FAILED for s in statuses):
		return JobStatus.FAILED
	# Pending and completed mixed, nothing failed
	return JobStatus.PROCESSING


def compute_progress(items: Sequence) -> int:
	"""Percentage of items in a terminal state, floored."""
	statuses = _statuses(items)
	if not statuses:
		return 0
	terminal = sum(1 for s in statuses if s in TERMINAL_ITEM_STATUSES)
	return (terminal * 100) // len(statuses)


def next_progress(previous: int, items: Sequence) -> int:
	"""Stored progress never decreases while a job runs."""
	return max(previous or 0, compute_progress(items))
