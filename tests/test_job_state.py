import pytest

from productify.schemas.job import ItemStatus, JobStatus
from productify.services.job_state import compute_progress, derive_status, next_progress

P, R, C, F = ItemStatus.PENDING, ItemStatus.PROCESSING, ItemStatus.COMPLETED, ItemStatus.FAILED


@pytest.mark.parametrize(
    "statuses,expected",
    [
        ([P, P, P], JobStatus.PENDING),
        ([C, C], JobStatus.COMPLETED),
        ([R, P], JobStatus.PROCESSING),
        ([C, P], JobStatus.PROCESSING),
        ([F, R], JobStatus.PROCESSING),
        ([F, P], JobStatus.FAILED),
        ([F, C], JobStatus.FAILED),
        ([F], JobStatus.FAILED),
    ],
)
def test_derive_status(statuses, expected):
    assert derive_status(statuses) == expected


def test_derive_status_reads_item_objects():
    class Item:
        def __init__(self, status):
            self.status = status

    assert derive_status([Item("completed"), Item("failed")]) == JobStatus.FAILED


def test_progress_is_floored_share_of_terminal_items():
    assert compute_progress([C, P, P]) == 33
    assert compute_progress([C, F, P]) == 66
    assert compute_progress([R, R]) == 0


def test_progress_reaches_100_only_when_every_item_is_terminal():
    statuses = [C] * 199 + [R]
    assert compute_progress(statuses) == 99
    assert compute_progress([C] * 199 + [F]) == 100


def test_stored_progress_never_decreases():
    assert next_progress(50, [C, P, P, P]) == 50
    assert next_progress(25, [C, C, P, P]) == 50
