from __future__ import annotations

import pytest

from scribe.core.errors import HistoryError
from scribe.services import history


def test_creation_patch_is_never_replayed() -> None:
    record = {"id": 1, "data": {"title": "a"}}
    patches = [history.diff_forward(record)]
    assert history.replay(patches, record) == [record]


def test_replay_walks_back_through_updates() -> None:
    first = {"id": 1, "data": {"title": "a"}}
    second = {"id": 1, "data": {"title": "b"}}
    third = {"id": 1, "data": {"title": "c", "extra": True}}
    patches = [history.diff_forward(first)]
    patches = history.append_patch(patches, second, first)
    patches = history.append_patch(patches, third, second)
    assert len(patches) == 3
    assert history.replay(patches, third) == [third, second, first]


def test_append_patch_seeds_missing_history() -> None:
    old = {"id": 4, "title": "old"}
    new = {"id": 4, "title": "new"}
    patches = history.append_patch(None, new, old)
    assert len(patches) == 2
    assert history.replay(patches, new) == [new, old]


def test_replay_with_empty_history_returns_current() -> None:
    current = {"id": 2}
    assert history.replay([], current) == [current]


def test_replay_rejects_malformed_patch() -> None:
    current = {"id": 1}
    with pytest.raises(HistoryError):
        history.replay(["first", "not a patch"], current)
