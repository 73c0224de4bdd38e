"""
Activity reducer.

A single-writer reducer over `ActivityAndDocStates`: each action produces a
new state together with the events the embedding page should forward.
Nothing here talks to a transport; callers deliver the returned events.

Actions:
- reset: placeholder state mirroring a source, with no seeds drawn
- initialize: fresh attempt-0 state from a source
- set: replace the state wholesale (e.g. after loading a save)
- generateNewActivityAttempt: new attempt for the whole activity or a subtree
- generateSingleDocSubActivityAttempt: new attempt for one item
- updateSingleState: record a document's state and score

Events (only when ``allow_save_state``):
- reportScoreAndState: score, per-item scores and the pruned state to save
- reportScoreByItem: score and per-item scores (for ``set``)
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Mapping, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.activity.credit import (
    get_item_sequence,
    item_credit_dicts,
    update_single_doc_state,
)
from src.activity.errors import ConsistencyError
from src.activity.generator import (
    generate_new_activity_attempt,
    generate_new_item_attempt,
    generate_new_sub_activity_attempt,
)
from src.activity.serializer import prune_activity_state_for_save
from src.activity.source import ActivitySource
from src.activity.state import (
    ActivityAndDocStates,
    ActivityState,
    SingleDocState,
    gather_states,
    initialize_activity_state,
    uninitialized_activity_state,
)


class EventSubject(str, Enum):
    """Message subjects understood by the embedding page."""

    REPORT_SCORE_AND_STATE = "SPLICE.reportScoreAndState"
    REPORT_SCORE_BY_ITEM = "SPLICE.reportScoreByItem"


# ============================================================================
# ACTIONS
# ============================================================================


class _Action(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class ResetAction(_Action):
    type: Literal["reset"] = "reset"
    source: ActivitySource


class InitializeAction(_Action):
    type: Literal["initialize"] = "initialize"
    source: ActivitySource
    variant_index: int
    num_activity_variants: dict[str, int] = Field(default_factory=dict)


class SetAction(_Action):
    type: Literal["set"] = "set"
    state: ActivityAndDocStates
    allow_save_state: bool = False
    base_id: str = ""


class GenerateNewActivityAttemptAction(_Action):
    """New attempt of the whole activity, or of the subtree `id` when given."""

    type: Literal["generateNewActivityAttempt"] = "generateNewActivityAttempt"
    id: str | None = None
    num_activity_variants: dict[str, int] = Field(default_factory=dict)
    initial_question_counter: int = 1
    question_counts: dict[str, int] = Field(default_factory=dict)
    allow_save_state: bool = False
    base_id: str = ""
    source_hash: str = ""


class GenerateSingleDocSubActivityAttemptAction(_Action):
    """New attempt of the item showing document `doc_id` at position `doenet_state_idx`."""

    type: Literal["generateSingleDocSubActivityAttempt"] = "generateSingleDocSubActivityAttempt"
    doc_id: str
    doenet_state_idx: int = Field(ge=0)
    item_sequence: list[str]
    num_activity_variants: dict[str, int] = Field(default_factory=dict)
    initial_question_counter: int = 1
    question_counts: dict[str, int] = Field(default_factory=dict)
    allow_save_state: bool = False
    base_id: str = ""
    source_hash: str = ""


class UpdateSingleStateAction(_Action):
    """Document `doc_id`, shown as item `doenet_state_idx`, reported new state and credit."""

    type: Literal["updateSingleState"] = "updateSingleState"
    doc_id: str
    doenet_state_idx: int = Field(ge=0)
    doenet_state: Any = None
    item_sequence: list[str]
    credit_achieved: float = Field(ge=0.0, le=1.0)
    allow_save_state: bool = False
    base_id: str = ""
    source_hash: str = ""


ActivityAction = Annotated[
    Union[
        ResetAction,
        InitializeAction,
        SetAction,
        GenerateNewActivityAttemptAction,
        GenerateSingleDocSubActivityAttemptAction,
        UpdateSingleStateAction,
    ],
    Field(discriminator="type"),
]


# ============================================================================
# EVENTS
# ============================================================================


class ReportEvent(BaseModel):
    """A message for the embedding page. Optional fields are omitted when unset."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    subject: EventSubject
    score: float
    item_scores: list[dict[str, Any]]
    activity_id: str
    state: dict[str, Any] | None = None
    new_attempt: bool | None = None
    new_attempt_for_item: int | None = None
    new_doenet_state_idx: int | None = None
    item_updated: int | None = None

    def to_message(self) -> dict[str, Any]:
        data = self.model_dump(by_alias=True, mode="json")
        return {key: value for key, value in data.items() if value is not None}


def _score_and_state_event(
    state: ActivityAndDocStates,
    base_id: str,
    source_hash: str,
    **extra: Any,
) -> ReportEvent:
    activity_state = state.activity_state
    return ReportEvent(
        subject=EventSubject.REPORT_SCORE_AND_STATE,
        score=activity_state.credit_achieved,
        item_scores=item_credit_dicts(activity_state),
        state={
            "activityState": prune_activity_state_for_save(activity_state),
            "doenetStates": list(state.doenet_states),
            "itemAttemptNumbers": list(state.item_attempt_numbers),
            "sourceHash": source_hash,
        },
        activity_id=base_id,
        **extra,
    )


# ============================================================================
# REDUCER
# ============================================================================


def activity_doc_state_reducer(
    state: ActivityAndDocStates,
    action: ActivityAction,
) -> tuple[ActivityAndDocStates, list[ReportEvent]]:
    """
    Apply one action.

    Returns:
        The new state and the events to deliver (possibly none)

    Raises:
        ActivityError: The action could not be applied; `state` is unchanged
    """
    logger.info(f"Activity action {action.type} on {state.activity_state.id}")

    match action:
        case ResetAction():
            return ActivityAndDocStates(
                activity_state=uninitialized_activity_state(action.source)
            ), []

        case InitializeAction():
            activity_state = initialize_activity_state(
                action.source,
                action.variant_index,
                None,
                action.num_activity_variants,
            )
            return ActivityAndDocStates(activity_state=activity_state), []

        case SetAction():
            events = []
            if action.allow_save_state:
                activity_state = action.state.activity_state
                events.append(
                    ReportEvent(
                        subject=EventSubject.REPORT_SCORE_BY_ITEM,
                        score=activity_state.credit_achieved,
                        item_scores=item_credit_dicts(activity_state),
                        activity_id=action.base_id,
                    )
                )
            return action.state, events

        case GenerateNewActivityAttemptAction():
            return _generate_new_activity_attempt(state, action)

        case GenerateSingleDocSubActivityAttemptAction():
            return _generate_item_attempt(state, action)

        case UpdateSingleStateAction():
            return _update_single_state(state, action)


def _generate_new_activity_attempt(
    state: ActivityAndDocStates,
    action: GenerateNewActivityAttemptAction,
) -> tuple[ActivityAndDocStates, list[ReportEvent]]:
    root = state.activity_state

    if action.id is None or action.id == root.id:
        new_root = generate_new_activity_attempt(
            root,
            action.num_activity_variants,
            action.initial_question_counter,
            action.question_counts,
            parent_attempt=1,
            reset_credit=True,
        ).state
        num_items = len(get_item_sequence(new_root))
        new_state = ActivityAndDocStates(
            activity_state=new_root,
            doenet_states=[],
            item_attempt_numbers=[1] * num_items,
        )
    else:
        new_root = generate_new_sub_activity_attempt(
            root,
            action.id,
            action.num_activity_variants,
            action.question_counts,
        )
        new_state = _refresh_items(state, new_root)

    events = []
    if action.allow_save_state:
        events.append(
            _score_and_state_event(new_state, action.base_id, action.source_hash, new_attempt=True)
        )
    return new_state, events


def _generate_item_attempt(
    state: ActivityAndDocStates,
    action: GenerateSingleDocSubActivityAttemptAction,
) -> tuple[ActivityAndDocStates, list[ReportEvent]]:
    _check_item(action.doc_id, action.doenet_state_idx, action.item_sequence)

    new_root = generate_new_item_attempt(
        state.activity_state,
        action.doc_id,
        action.num_activity_variants,
        action.question_counts,
    )
    new_state = _refresh_items(state, new_root, force_item=action.doenet_state_idx)

    events = []
    if action.allow_save_state:
        events.append(
            _score_and_state_event(
                new_state,
                action.base_id,
                action.source_hash,
                new_attempt=True,
                new_attempt_for_item=action.doenet_state_idx + 1,
            )
        )
    return new_state, events


def _update_single_state(
    state: ActivityAndDocStates,
    action: UpdateSingleStateAction,
) -> tuple[ActivityAndDocStates, list[ReportEvent]]:
    _check_item(action.doc_id, action.doenet_state_idx, action.item_sequence)

    idx = action.doenet_state_idx
    doenet_states = list(state.doenet_states)
    if len(doenet_states) <= idx:
        doenet_states.extend([None] * (idx + 1 - len(doenet_states)))
    doenet_states[idx] = action.doenet_state

    new_root = update_single_doc_state(
        state.activity_state,
        action.doc_id,
        action.credit_achieved,
        doenet_state_idx=idx,
    )
    new_state = state.model_copy(
        update={"activity_state": new_root, "doenet_states": doenet_states}
    )

    events = []
    if action.allow_save_state:
        events.append(
            _score_and_state_event(
                new_state,
                action.base_id,
                action.source_hash,
                new_doenet_state_idx=idx,
                item_updated=idx + 1,
            )
        )
    return new_state, events


def _check_item(doc_id: str, idx: int, item_sequence: list[str]) -> None:
    if idx >= len(item_sequence) or item_sequence[idx] != doc_id:
        raise ConsistencyError(f"Item {idx + 1} of the item sequence is not {doc_id}")


def _refresh_items(
    state: ActivityAndDocStates,
    new_root: ActivityState,
    force_item: int | None = None,
) -> ActivityAndDocStates:
    """
    Carry per-item bookkeeping over to a partially regenerated tree.

    An item whose document changed, or got a new attempt, starts over: its
    attempt number goes up and its saved document state is dropped.
    """
    old_docs = gather_states(state.activity_state)
    new_docs = gather_states(new_root)
    old_sequence = get_item_sequence(state.activity_state)
    new_sequence = get_item_sequence(new_root)

    attempt_numbers = list(state.item_attempt_numbers)
    doenet_states = list(state.doenet_states)

    for i, doc_id in enumerate(new_sequence):
        if i >= len(attempt_numbers):
            attempt_numbers.append(1)
            continue
        if i == force_item or _item_changed(old_sequence, old_docs, new_docs, i, doc_id):
            attempt_numbers[i] += 1
            if i < len(doenet_states):
                doenet_states[i] = None

    del attempt_numbers[len(new_sequence):]

    return ActivityAndDocStates(
        activity_state=new_root,
        doenet_states=doenet_states,
        item_attempt_numbers=attempt_numbers,
    )


def _item_changed(
    old_sequence: list[str],
    old_docs: Mapping[str, ActivityState],
    new_docs: Mapping[str, ActivityState],
    i: int,
    doc_id: str,
) -> bool:
    if i >= len(old_sequence) or old_sequence[i] != doc_id:
        return True
    old_doc, new_doc = old_docs.get(doc_id), new_docs.get(doc_id)
    if isinstance(old_doc, SingleDocState) and isinstance(new_doc, SingleDocState):
        return old_doc.attempt_number != new_doc.attempt_number
    return False
