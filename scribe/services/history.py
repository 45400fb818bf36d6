"""Reversible patch history for component records.

Every record owns an ordered list of diff-match-patch patches. Index 0 is
written at creation time (initial state -> empty string) and is never
replayed. Each update appends the patch that turns the new serialized state
back into the previous one, so replaying from the newest patch down to index 1
walks the record backwards in time.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from diff_match_patch import diff_match_patch

from scribe.core.errors import HistoryError


logger = logging.getLogger(__name__)


def serialize(record: dict[str, Any]) -> str:
    # Patches are made and replayed against this exact text form.
    return json.dumps(record)


def diff_forward(value: dict[str, Any]) -> str:
    """Creation patch: the full initial state to the empty string."""
    dmp = diff_match_patch()
    return dmp.patch_toText(dmp.patch_make(serialize(value), ""))


def diff_backward(new_value: dict[str, Any], old_value: dict[str, Any]) -> str:
    """Update patch: the new state back to the old one."""
    dmp = diff_match_patch()
    return dmp.patch_toText(dmp.patch_make(serialize(new_value), serialize(old_value)))


def replay(patches: list[str], current: dict[str, Any]) -> list[dict[str, Any]]:
    """Rebuild every stored state of a record, most recent first."""
    dmp = diff_match_patch()
    snapshots = [current]
    text = serialize(current)
    # Index 0 is the creation sentinel and is never applied.
    for index in range(len(patches) - 1, 0, -1):
        try:
            text, results = dmp.patch_apply(dmp.patch_fromText(patches[index]), text)
        except ValueError as exc:
            raise HistoryError(f"Malformed patch at index {index}") from exc
        if not all(results):
            logger.warning("history_patch_partial index=%s applied=%s", index, results)
        try:
            snapshots.append(json.loads(text))
        except ValueError as exc:
            raise HistoryError(f"Patch at index {index} produced an invalid record") from exc
    return snapshots


def append_patch(patches: list[str] | None, new_value: dict[str, Any], old_value: dict[str, Any]) -> list[str]:
    # Records without history get a creation patch for the old state first.
    history = list(patches) if patches else [diff_forward(old_value)]
    history.append(diff_backward(new_value, old_value))
    return history
