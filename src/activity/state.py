"""
Activity state model.

The state tree mirrors the source tree and records everything that changes
over time: attempt numbers, chosen variants and children, credit achieved.

- SingleDocState: chosen variant and its history
- SelectState: every option (`all_children`), the current choice
  (`selected_children`) and the history of chosen ids
- SequenceState: current child states in source order, plus one
  `SequenceAttemptState` per attempt holding the displayed order

States are frozen. Engine operations build new nodes and reuse untouched
subtrees. A child refers to its parent only through the `parent_id` string.
"""

from __future__ import annotations

from typing import Annotated, Any, Iterator, Literal, Mapping, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.activity.rng import random_index, seed_key, seeded_rng
from src.activity.source import (
    ID_SEPARATOR,
    ActivitySource,
    SelectSource,
    SequenceSource,
    SingleDocSource,
)
from src.activity.variants import calc_num_variants

# Child initial variants are drawn from [0, CHILD_VARIANT_RANGE)
CHILD_VARIANT_RANGE = 1_000_000


class _StateModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class VariantSlice(_StateModel):
    """Restrict a node to variants ``idx, idx + num_slices, ...`` (idx is 1-based)."""

    idx: int = Field(ge=1)
    num_slices: int = Field(ge=1)


class SingleDocState(_StateModel):
    type: Literal["singleDoc"] = "singleDoc"
    id: str
    parent_id: str | None = None
    source: SingleDocSource
    initial_variant: int
    credit_achieved: float = 0.0
    attempt_number: int = 0
    initial_question_counter: int = 0
    restrict_to_variant_slice: VariantSlice | None = None
    # 0 until the first attempt is generated
    current_variant: int = 0
    previous_variants: list[int] = Field(default_factory=list)
    doenet_state_idx: int | None = None


class SelectState(_StateModel):
    type: Literal["select"] = "select"
    id: str
    parent_id: str | None = None
    source: SelectSource
    initial_variant: int
    credit_achieved: float = 0.0
    attempt_number: int = 0
    initial_question_counter: int = 0
    restrict_to_variant_slice: VariantSlice | None = None
    all_children: list[ActivityState] = Field(default_factory=list)
    selected_children: list[ActivityState] = Field(default_factory=list)
    previous_selections: list[str] = Field(default_factory=list)


class SequenceAttemptState(_StateModel):
    """One attempt of a sequence: children in displayed order and the attempt's credit."""

    activities: list[ActivityState] = Field(default_factory=list)
    credit_achieved: float = 0.0


class SequenceState(_StateModel):
    type: Literal["sequence"] = "sequence"
    id: str
    parent_id: str | None = None
    source: SequenceSource
    initial_variant: int
    credit_achieved: float = 0.0
    attempt_number: int = 0
    initial_question_counter: int = 0
    restrict_to_variant_slice: VariantSlice | None = None
    latest_child_states: list[ActivityState] = Field(default_factory=list)
    attempts: list[SequenceAttemptState] = Field(default_factory=list)

    @property
    def ordered_children(self) -> list[ActivityState]:
        """Children in displayed order for the current attempt (source order before any attempt)."""
        if not self.attempts:
            return list(self.latest_child_states)
        return list(self.attempts[-1].activities)


ActivityState = Annotated[
    Union[SingleDocState, SelectState, SequenceState],
    Field(discriminator="type"),
]


class ActivityAndDocStates(_StateModel):
    """
    Activity state plus what the page keeps per rendered item.

    `doenet_states[i]` is the opaque document state of item i (None when the
    item has not reported any) and `item_attempt_numbers[i]` counts its attempts.
    """

    activity_state: ActivityState
    doenet_states: list[Any] = Field(default_factory=list)
    item_attempt_numbers: list[int] = Field(default_factory=list)


SelectState.model_rebuild()
SequenceAttemptState.model_rebuild()
SequenceState.model_rebuild()
ActivityAndDocStates.model_rebuild()


# ============================================================================
# INITIALIZATION
# ============================================================================


def initialize_activity_state(
    source: ActivitySource,
    variant: int,
    parent_id: str | None,
    num_activity_variants: Mapping[str, int],
    restrict_to_variant_slice: VariantSlice | None = None,
    id_suffix: str = "",
) -> ActivityState:
    """
    Create the attempt-0 state for `source`.

    Args:
        source: Activity source to mirror
        variant: Seed material for this node (the activity's variant index)
        parent_id: Id of the parent state, None for the root
        num_activity_variants: Variant count per document id
        restrict_to_variant_slice: Slice this node is limited to
        id_suffix: ``|N`` suffix applied to this node and all descendants

    Returns:
        A state with no attempts; call the attempt generator next.
    """
    state_id = source.id + id_suffix

    match source:
        case SingleDocSource():
            return SingleDocState(
                id=state_id,
                parent_id=parent_id,
                source=source,
                initial_variant=variant,
                restrict_to_variant_slice=restrict_to_variant_slice,
            )
        case SelectSource():
            return _initialize_select_state(
                source,
                state_id,
                variant,
                parent_id,
                num_activity_variants,
                restrict_to_variant_slice,
                id_suffix,
            )
        case SequenceSource():
            rng = seeded_rng(seed_key(variant, state_id))
            children = [
                initialize_activity_state(
                    item,
                    random_index(rng, CHILD_VARIANT_RANGE),
                    state_id,
                    num_activity_variants,
                    restrict_to_variant_slice,
                    id_suffix,
                )
                for item in source.items
            ]
            return SequenceState(
                id=state_id,
                parent_id=parent_id,
                source=source,
                initial_variant=variant,
                restrict_to_variant_slice=restrict_to_variant_slice,
                latest_child_states=children,
            )


def uninitialized_activity_state(
    source: ActivitySource,
    parent_id: str | None = None,
) -> ActivityState:
    """
    Mirror `source` without drawing any seeds.

    Every node gets initial variant 0 and no attempts. Selects are not
    expanded by variant, since variant counts are not known yet. This is
    the placeholder state before an activity is initialized.
    """
    match source:
        case SingleDocSource():
            return SingleDocState(
                id=source.id, parent_id=parent_id, source=source, initial_variant=0
            )
        case SelectSource():
            return SelectState(
                id=source.id,
                parent_id=parent_id,
                source=source,
                initial_variant=0,
                all_children=[
                    uninitialized_activity_state(item, source.id) for item in source.items
                ],
            )
        case SequenceSource():
            return SequenceState(
                id=source.id,
                parent_id=parent_id,
                source=source,
                initial_variant=0,
                latest_child_states=[
                    uninitialized_activity_state(item, source.id) for item in source.items
                ],
            )


def _initialize_select_state(
    source: SelectSource,
    state_id: str,
    variant: int,
    parent_id: str | None,
    num_activity_variants: Mapping[str, int],
    restrict_to_variant_slice: VariantSlice | None,
    id_suffix: str,
) -> SelectState:
    rng = seeded_rng(seed_key(variant, state_id))
    expand_by_variant = source.select_by_variant and source.num_to_select > 1

    children: list[ActivityState] = []
    for item in source.items:
        child_variant = random_index(rng, CHILD_VARIANT_RANGE)

        if not expand_by_variant:
            children.append(
                initialize_activity_state(
                    item, child_variant, state_id, num_activity_variants, id_suffix=id_suffix
                )
            )
            continue

        # One option per variant, each confined to its own slice
        num_variants = calc_num_variants(item, num_activity_variants)
        for idx in range(1, num_variants + 1):
            children.append(
                initialize_activity_state(
                    item,
                    child_variant,
                    state_id,
                    num_activity_variants,
                    restrict_to_variant_slice=VariantSlice(idx=idx, num_slices=num_variants),
                    id_suffix=f"{id_suffix}{ID_SEPARATOR}{idx}",
                )
            )

    if expand_by_variant:
        logger.debug(f"Select {state_id} expanded into {len(children)} variant options")

    return SelectState(
        id=state_id,
        parent_id=parent_id,
        source=source,
        initial_variant=variant,
        restrict_to_variant_slice=restrict_to_variant_slice,
        all_children=children,
    )


# ============================================================================
# TREE HELPERS
# ============================================================================


def child_states(state: ActivityState) -> list[ActivityState]:
    """The current state of every child, in source order."""
    match state:
        case SingleDocState():
            return []
        case SelectState():
            return list(state.all_children)
        case SequenceState():
            return list(state.latest_child_states)


def iter_states(state: ActivityState) -> Iterator[ActivityState]:
    """Pre-order walk over `state` and every descendant."""
    yield state
    for child in child_states(state):
        yield from iter_states(child)


def gather_states(state: ActivityState) -> dict[str, ActivityState]:
    """Index every node of the tree by id."""
    return {node.id: node for node in iter_states(state)}


def find_state(state: ActivityState, activity_id: str) -> ActivityState | None:
    for node in iter_states(state):
        if node.id == activity_id:
            return node
    return None
