"""
Saving and restoring activity state.

Sources are large and can always be re-derived, so saved state leaves them
out. `prune_activity_state_for_save` produces a JSON-ready dict of the same
shape minus every ``source`` field; `add_source_to_activity_state` puts the
sources back by matching ids (ignoring ``|N`` suffixes) against the tree.

For any state ``s`` built from ``source``:
    add_source_to_activity_state(prune_activity_state_for_save(s), source) == s
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping

from loguru import logger
from pydantic import ValidationError

from src.activity.errors import ConsistencyError
from src.activity.source import (
    ActivitySource,
    SelectSource,
    SequenceSource,
    SingleDocSource,
    base_id,
)
from src.activity.state import (
    ActivityAndDocStates,
    ActivityState,
    SelectState,
    SequenceAttemptState,
    SequenceState,
    SingleDocState,
)


def prune_activity_state_for_save(
    state: ActivityState,
    clear_doc_state: bool = False,
) -> dict[str, Any]:
    """
    Drop every ``source`` from `state`.

    Args:
        state: State to save
        clear_doc_state: Also forget which document state each doc points to

    Returns:
        A camelCase dict ready for ``json.dumps``
    """
    match state:
        case SingleDocState():
            data = state.model_dump(by_alias=True, exclude={"source"})
            if clear_doc_state:
                data["doenetStateIdx"] = None
            return data
        case SelectState():
            data = state.model_dump(
                by_alias=True,
                exclude={"source", "all_children", "selected_children"},
            )
            data["allChildren"] = [
                prune_activity_state_for_save(child, clear_doc_state)
                for child in state.all_children
            ]
            data["selectedChildren"] = [
                prune_activity_state_for_save(child, clear_doc_state)
                for child in state.selected_children
            ]
            return data
        case SequenceState():
            data = state.model_dump(
                by_alias=True,
                exclude={"source", "latest_child_states", "attempts"},
            )
            data["latestChildStates"] = [
                prune_activity_state_for_save(child, clear_doc_state)
                for child in state.latest_child_states
            ]
            data["attempts"] = [
                {
                    "activities": [
                        prune_activity_state_for_save(child, clear_doc_state)
                        for child in attempt.activities
                    ],
                    "creditAchieved": attempt.credit_achieved,
                }
                for attempt in state.attempts
            ]
            return data


def add_source_to_activity_state(
    pruned: Mapping[str, Any],
    source: ActivitySource,
) -> ActivityState:
    """
    Rebuild a full state from a pruned blob and its source.

    Raises:
        ConsistencyError: If the blob does not fit the source tree
    """
    state_id = pruned.get("id")
    if state_id is None or base_id(state_id) != source.id:
        raise ConsistencyError(f"Saved state {state_id} does not match source {source.id}")
    if pruned.get("type") != source.type:
        raise ConsistencyError(
            f"Saved state {state_id} is a {pruned.get('type')}, source is a {source.type}"
        )

    data = dict(pruned)
    data["source"] = source

    match source:
        case SingleDocSource():
            return _validate(SingleDocState, data)
        case SelectSource():
            items = _items_by_id(source)
            data["allChildren"] = [
                _add_child_source(child, items, state_id)
                for child in pruned.get("allChildren", [])
            ]
            data["selectedChildren"] = [
                _add_child_source(child, items, state_id)
                for child in pruned.get("selectedChildren", [])
            ]
            return _validate(SelectState, data)
        case SequenceSource():
            items = _items_by_id(source)
            data["latestChildStates"] = [
                _add_child_source(child, items, state_id)
                for child in pruned.get("latestChildStates", [])
            ]
            data["attempts"] = [
                SequenceAttemptState(
                    activities=[
                        _add_child_source(child, items, state_id)
                        for child in attempt.get("activities", [])
                    ],
                    credit_achieved=attempt.get("creditAchieved", 0.0),
                )
                for attempt in pruned.get("attempts", [])
            ]
            return _validate(SequenceState, data)


def _items_by_id(source: SelectSource | SequenceSource) -> dict[str, ActivitySource]:
    return {item.id: item for item in source.items}


def _add_child_source(
    child: Mapping[str, Any],
    items: Mapping[str, ActivitySource],
    parent_id: str,
) -> ActivityState:
    child_id = child.get("id", "")
    item = items.get(base_id(child_id))
    if item is None:
        raise ConsistencyError(f"Saved child {child_id} of {parent_id} has no source")
    return add_source_to_activity_state(child, item)


def _validate(model, data: dict[str, Any]):
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ConsistencyError(f"Saved state {data.get('id')} is malformed: {e}") from e


# ============================================================================
# ACTIVITY + DOCUMENT STATES
# ============================================================================


def dump_activity_and_doc_states(
    state: ActivityAndDocStates,
    clear_doc_state: bool = False,
) -> dict[str, Any]:
    return {
        "activityState": prune_activity_state_for_save(state.activity_state, clear_doc_state),
        "doenetStates": list(state.doenet_states),
        "itemAttemptNumbers": list(state.item_attempt_numbers),
    }


def load_activity_and_doc_states(
    data: Mapping[str, Any],
    source: ActivitySource,
) -> ActivityAndDocStates:
    if "activityState" not in data:
        raise ConsistencyError("Saved state has no activityState")
    return ActivityAndDocStates(
        activity_state=add_source_to_activity_state(data["activityState"], source),
        doenet_states=list(data.get("doenetStates", [])),
        item_attempt_numbers=list(data.get("itemAttemptNumbers", [])),
    )


def save_state_file(
    path: Path,
    state: ActivityAndDocStates,
    clear_doc_state: bool = False,
    indent: int | None = 2,
) -> None:
    """Write the pruned state to `path` as JSON."""
    path.write_text(
        json.dumps(dump_activity_and_doc_states(state, clear_doc_state), indent=indent),
        encoding="utf-8",
    )
    logger.debug(f"Saved activity state to {path}")


def load_state_file(path: Path, source: ActivitySource) -> ActivityAndDocStates:
    """Read a state file written by `save_state_file` and reattach `source`."""
    if not path.exists():
        raise ConsistencyError(f"State file {path} not found")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConsistencyError(f"State file {path} is not valid JSON: {e}") from e
    return load_activity_and_doc_states(data, source)
