"""
Attempt generation.

Produces a new attempt for an activity node and, recursively, for every
descendant that the attempt shows. All randomness comes from Alea seeded
with ``initialVariant|id|attemptNumber|parentAttempt`` so identical inputs
always give identical attempts.

Coverage before repeat:
- A single doc with N variants shows each of them once before any repeat
  (a sliding exclusion window over its variant history).
- A select walks through its options in groups; an option is not drawn
  again until every option of the current group has been drawn.
- A sequence optionally shuffles the runs between its descriptions.

Entry points:
- generate_new_activity_attempt: new attempt for a node and its subtree
- generate_new_sub_activity_attempt: regenerate one subtree, update the root
- generate_new_item_attempt: item-level retry (climbs single-choice selects)
- generate_new_single_doc_attempt_for_multi_select: redraw one slot of a
  multi-select without touching its siblings
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Mapping

from loguru import logger

from src.activity.credit import propagate_state_change_to_root
from src.activity.errors import (
    ConfigurationError,
    ConsistencyError,
    InvariantViolation,
)
from src.activity.rng import RandomFn, random_index, seed_key, seeded_rng
from src.activity.source import SingleDocSource
from src.activity.state import (
    ActivityState,
    SelectState,
    SequenceAttemptState,
    SequenceState,
    SingleDocState,
    find_state,
)
from src.activity.variants import (
    calc_num_variants_from_state,
    project_into_slice,
    variant_slice_position,
)


@dataclass
class AttemptResult:
    """A regenerated node plus the question counter for whatever comes next."""
    state: ActivityState
    final_question_counter: int


def generate_new_activity_attempt(
    state: ActivityState,
    num_activity_variants: Mapping[str, int],
    initial_question_counter: int,
    question_counts: Mapping[str, int],
    parent_attempt: int = 1,
    reset_credit: bool = False,
) -> AttemptResult:
    """
    Generate a new attempt of `state` and of the descendants it shows.

    Args:
        state: Node to regenerate
        num_activity_variants: Variant count per document id
        initial_question_counter: Number of the first question of this node
        question_counts: Questions per document id (to advance the counter)
        parent_attempt: Attempt number of the parent (seed material)
        reset_credit: Also reset sequence credit (single docs and selects
            always start a new attempt at 0)

    Returns:
        AttemptResult with the new node and the advanced question counter
    """
    match state:
        case SingleDocState():
            return _generate_single_doc_attempt(
                state, num_activity_variants, initial_question_counter,
                question_counts, parent_attempt,
            )
        case SelectState():
            return _generate_select_attempt(
                state, num_activity_variants, initial_question_counter,
                question_counts, parent_attempt,
            )
        case SequenceState():
            return _generate_sequence_attempt(
                state, num_activity_variants, initial_question_counter,
                question_counts, parent_attempt, reset_credit,
            )


# ============================================================================
# SINGLE DOC
# ============================================================================


def _generate_single_doc_attempt(
    state: SingleDocState,
    num_activity_variants: Mapping[str, int],
    initial_question_counter: int,
    question_counts: Mapping[str, int],
    parent_attempt: int,
) -> AttemptResult:
    variant_slice = state.restrict_to_variant_slice
    total_variants = num_activity_variants.get(state.source.id, 1)
    num_variants = calc_num_variants_from_state(state, num_activity_variants)
    if num_variants < 1:
        raise ConfigurationError(f"{state.id} has no variants to choose from")

    # Exclusion works on positions within the slice
    history = [variant_slice_position(v, variant_slice) for v in state.previous_variants]
    num_to_exclude = len(history) % num_variants
    excluded = sorted(
        {
            position
            for position in history[len(history) - num_to_exclude:]
            if 1 <= position <= num_variants
        }
    )

    rng = seeded_rng(
        seed_key(state.initial_variant, state.id, state.attempt_number, parent_attempt)
    )
    draw = _draw_with_holes(rng, num_variants, excluded)
    variant = project_into_slice(draw, total_variants, variant_slice)

    if variant_slice is not None and variant_slice.idx > total_variants:
        logger.warning(
            f"Slice {variant_slice.idx}/{variant_slice.num_slices} of {state.id} "
            f"is beyond its {total_variants} variants; using variant {variant}"
        )

    logger.debug(
        f"{state.id}: attempt {state.attempt_number + 1} variant {variant} "
        f"(excluded {excluded} of {num_variants})"
    )

    new_state = state.model_copy(
        update={
            "current_variant": variant,
            "previous_variants": [*state.previous_variants, variant],
            "attempt_number": state.attempt_number + 1,
            "credit_achieved": 0.0,
            "doenet_state_idx": None,
            "initial_question_counter": initial_question_counter,
        }
    )

    final_counter = initial_question_counter + question_counts.get(state.source.id, 0)
    return AttemptResult(state=new_state, final_question_counter=final_counter)


def _draw_with_holes(rng: RandomFn, num_values: int, excluded: list[int]) -> int:
    """
    Draw uniformly from ``1..num_values`` minus the sorted `excluded` values.

    A draw over the smaller range is shifted up past every hole at or below it.
    """
    draw = random_index(rng, num_values - len(excluded)) + 1
    for hole in excluded:
        if hole <= draw:
            draw += 1
    return draw


# ============================================================================
# SELECT
# ============================================================================


def _option_weights(state: SelectState, num_activity_variants: Mapping[str, int]) -> list[int]:
    """
    How many slots each option occupies in a selection group.

    Pre-expanded options count once each. Otherwise selecting by variant
    weighs a child by its variant count.
    """
    source = state.source
    if not source.select_by_variant or source.num_to_select > 1:
        return [1] * len(state.all_children)
    return [
        calc_num_variants_from_state(child, num_activity_variants)
        for child in state.all_children
    ]


def _current_group_counts(
    previous_selections: list[str],
    index_by_id: Mapping[str, int],
    weights: list[int],
) -> tuple[list[int], int]:
    """
    Replay the selection history into groups.

    A group closes once it is full; an option showing up more often than its
    weight also starts a new group. Ids no longer among the options are skipped.

    Returns:
        Per-option counts within the current group and the group's size so far
    """
    total = sum(weights)
    counts = [0] * len(weights)
    num_in_group = 0

    for selected_id in previous_selections:
        idx = index_by_id.get(selected_id)
        if idx is None:
            continue
        if num_in_group == total or counts[idx] >= weights[idx]:
            counts = [0] * len(weights)
            num_in_group = 0
        counts[idx] += 1
        num_in_group += 1

    if num_in_group == total:
        counts = [0] * len(weights)
        num_in_group = 0

    return counts, num_in_group


def _generate_select_attempt(
    state: SelectState,
    num_activity_variants: Mapping[str, int],
    initial_question_counter: int,
    question_counts: Mapping[str, int],
    parent_attempt: int,
) -> AttemptResult:
    source = state.source
    num_to_select = source.num_to_select

    if not state.all_children:
        logger.debug(f"Select {state.id} has no items to choose from")
        new_state = state.model_copy(
            update={
                "selected_children": [],
                "attempt_number": state.attempt_number + 1,
                "credit_achieved": 0.0,
                "initial_question_counter": initial_question_counter,
            }
        )
        return AttemptResult(state=new_state, final_question_counter=initial_question_counter)

    weights = _option_weights(state, num_activity_variants)
    total_options = sum(weights)

    if num_to_select > total_options:
        what = "variants" if source.select_by_variant else "activities"
        raise ConfigurationError(
            f"numToSelect ({num_to_select}) of {state.id} is larger than "
            f"the number of available {what} ({total_options})"
        )

    index_by_id = {child.id: i for i, child in enumerate(state.all_children)}
    counts, num_in_group = _current_group_counts(
        state.previous_selections, index_by_id, weights
    )

    num_prev_selected = num_to_select * state.attempt_number
    if (
        len(state.previous_selections) == num_prev_selected
        and num_in_group != num_prev_selected % total_options
    ):
        raise InvariantViolation(
            f"Select {state.id}: {num_in_group} options in the current group, "
            f"expected {num_prev_selected % total_options}"
        )

    options_left = [
        idx
        for idx, weight in enumerate(weights)
        for _ in range(weight - counts[idx])
    ]
    num_left = total_options - num_in_group
    if len(options_left) != num_left:
        raise InvariantViolation(
            f"Select {state.id}: {len(options_left)} options left in the group, "
            f"expected {num_left}"
        )

    rng = seeded_rng(
        seed_key(state.initial_variant, state.id, state.attempt_number, parent_attempt)
    )

    chosen: list[int] = []
    for _ in range(min(num_to_select, num_left)):
        chosen.append(options_left.pop(random_index(rng, len(options_left))))

    if len(chosen) < num_to_select:
        # Start the next group with options that were already drawn in the
        # finished one, never with the options just chosen
        next_options = [
            idx for idx, weight in enumerate(weights)
            if weight > 0 and idx not in chosen
        ]
        while len(chosen) < num_to_select:
            chosen.append(next_options.pop(random_index(rng, len(next_options))))

    new_attempt_number = state.attempt_number + 1
    all_children = list(state.all_children)
    selected: list[ActivityState] = []
    counter = initial_question_counter

    for idx in chosen:
        result = generate_new_activity_attempt(
            all_children[idx],
            num_activity_variants,
            counter,
            question_counts,
            parent_attempt=new_attempt_number,
            reset_credit=True,
        )
        counter = result.final_question_counter
        all_children[idx] = result.state
        selected.append(result.state)

    logger.debug(
        f"Select {state.id}: attempt {new_attempt_number} chose "
        f"{[child.id for child in selected]}"
    )

    new_state = state.model_copy(
        update={
            "all_children": all_children,
            "selected_children": selected,
            "previous_selections": [*state.previous_selections, *(c.id for c in selected)],
            "attempt_number": new_attempt_number,
            "credit_achieved": 0.0,
            "initial_question_counter": initial_question_counter,
        }
    )
    return AttemptResult(state=new_state, final_question_counter=counter)


def generate_new_single_doc_attempt_for_multi_select(
    state: SelectState,
    child_id: str,
    num_activity_variants: Mapping[str, int],
    question_counts: Mapping[str, int],
    parent_attempt: int = 1,
) -> AttemptResult:
    """
    Replace one selected option of a multi-select, keeping its siblings.

    The replacement is never one of the other current selections, and it
    follows the coverage history of the remaining option pool. The select's
    credit becomes the mean of its selections with the new one at 0.

    Raises:
        ConsistencyError: If `child_id` is not currently selected
    """
    slot = next(
        (i for i, child in enumerate(state.selected_children) if child.id == child_id),
        None,
    )
    if slot is None:
        raise ConsistencyError(f"{child_id} is not a current selection of {state.id}")

    weights = _option_weights(state, num_activity_variants)
    index_by_id = {child.id: i for i, child in enumerate(state.all_children)}
    other_ids = {
        child.id for i, child in enumerate(state.selected_children) if i != slot
    }

    pool_ids = {
        child.id
        for i, child in enumerate(state.all_children)
        if child.id not in other_ids and weights[i] > 0
    }
    pool_history = [s for s in state.previous_selections if s in pool_ids]
    num_recent = len(pool_history) % len(pool_ids)
    recent_ids = set(pool_history[len(pool_history) - num_recent:])

    # 1-based positions in all_children that cannot be drawn
    unavailable = {
        child.id for i, child in enumerate(state.all_children) if weights[i] == 0
    }
    excluded = sorted(
        index_by_id[child_id_] + 1
        for child_id_ in other_ids | recent_ids | unavailable
    )

    rng = seeded_rng(
        seed_key(state.initial_variant, state.id, state.attempt_number, parent_attempt)
    )
    new_idx = _draw_with_holes(rng, len(state.all_children), excluded) - 1

    old_child = state.selected_children[slot]
    new_attempt_number = state.attempt_number + 1
    result = generate_new_activity_attempt(
        state.all_children[new_idx],
        num_activity_variants,
        old_child.initial_question_counter,
        question_counts,
        parent_attempt=new_attempt_number,
        reset_credit=True,
    )
    new_child = result.state

    all_children = list(state.all_children)
    all_children[new_idx] = new_child
    selected = list(state.selected_children)
    selected[slot] = new_child

    credit = sum(child.credit_achieved for child in selected) / len(selected)

    logger.debug(
        f"Select {state.id}: replaced {old_child.id} with {new_child.id} "
        f"(excluded {sorted(other_ids | recent_ids)})"
    )

    new_state = state.model_copy(
        update={
            "all_children": all_children,
            "selected_children": selected,
            "previous_selections": [*state.previous_selections, new_child.id],
            "attempt_number": new_attempt_number,
            "credit_achieved": credit,
        }
    )
    return AttemptResult(state=new_state, final_question_counter=result.final_question_counter)


# ============================================================================
# SEQUENCE
# ============================================================================


def shuffle_with_anchors(
    items: list,
    is_anchor: Callable[[object], bool],
    rng: RandomFn,
) -> list:
    """
    Fisher-Yates shuffle every run of items between anchors.

    Anchors keep their positions. Runs are shuffled in order, all from `rng`.
    """
    result = list(items)
    run_start = 0
    for end in range(len(result) + 1):
        if end < len(result) and not is_anchor(result[end]):
            continue
        run = result[run_start:end]
        for i in range(len(run) - 1, 0, -1):
            j = random_index(rng, i + 1)
            run[i], run[j] = run[j], run[i]
        result[run_start:end] = run
        run_start = end + 1
    return result


def is_description(state: ActivityState) -> bool:
    return isinstance(state.source, SingleDocSource) and state.source.is_description


def _generate_sequence_attempt(
    state: SequenceState,
    num_activity_variants: Mapping[str, int],
    initial_question_counter: int,
    question_counts: Mapping[str, int],
    parent_attempt: int,
    reset_credit: bool,
) -> AttemptResult:
    children = list(state.latest_child_states)
    order = list(range(len(children)))

    if state.source.shuffle:
        rng = seeded_rng(
            seed_key(state.initial_variant, state.id, state.attempt_number, parent_attempt)
        )
        order = shuffle_with_anchors(order, lambda i: is_description(children[i]), rng)

    new_attempt_number = state.attempt_number + 1
    counter = initial_question_counter
    displayed: list[ActivityState] = []

    # Generate in displayed order so question numbers read top to bottom
    for idx in order:
        result = generate_new_activity_attempt(
            children[idx],
            num_activity_variants,
            counter,
            question_counts,
            parent_attempt=new_attempt_number,
            reset_credit=reset_credit,
        )
        counter = result.final_question_counter
        children[idx] = result.state
        displayed.append(result.state)

    update: dict = {
        "latest_child_states": children,
        "attempts": [*state.attempts, SequenceAttemptState(activities=displayed)],
        "attempt_number": new_attempt_number,
        "initial_question_counter": initial_question_counter,
    }
    if reset_credit:
        update["credit_achieved"] = 0.0

    logger.debug(
        f"Sequence {state.id}: attempt {new_attempt_number} order "
        f"{[child.id for child in displayed]}"
    )
    return AttemptResult(state=state.model_copy(update=update), final_question_counter=counter)


# ============================================================================
# SUB-ACTIVITY AND ITEM ATTEMPTS
# ============================================================================


def generate_new_sub_activity_attempt(
    root: ActivityState,
    activity_id: str,
    num_activity_variants: Mapping[str, int],
    question_counts: Mapping[str, int],
    initial_question_counter: int | None = None,
) -> ActivityState:
    """
    Regenerate the subtree rooted at `activity_id` and update its ancestors.

    Regenerating the root is a full new attempt with credit reset. Below the
    root, ancestors keep their credit (max accumulation).
    """
    node = find_state(root, activity_id)
    if node is None:
        raise ConfigurationError(f"No activity with id {activity_id}")

    counter = node.initial_question_counter if initial_question_counter is None else initial_question_counter

    if node.parent_id is None:
        return generate_new_activity_attempt(
            node, num_activity_variants, counter, question_counts,
            parent_attempt=1, reset_credit=True,
        ).state

    parent = find_state(root, node.parent_id)
    if parent is None:
        raise ConsistencyError(f"Parent {node.parent_id} of {node.id} not found")

    result = generate_new_activity_attempt(
        node, num_activity_variants, counter, question_counts,
        parent_attempt=parent.attempt_number,
    )
    logger.info(f"Generated attempt {result.state.attempt_number} of sub-activity {activity_id}")
    return propagate_state_change_to_root(root, result.state)


def generate_new_item_attempt(
    root: ActivityState,
    activity_id: str,
    num_activity_variants: Mapping[str, int],
    question_counts: Mapping[str, int],
) -> ActivityState:
    """
    New attempt for the item containing `activity_id`.

    A select choosing a single option stands for the item, so the retry
    climbs through such selects. Inside a multi-select only the one slot is
    redrawn. Otherwise the node itself is regenerated.
    """
    node = find_state(root, activity_id)
    if node is None:
        raise ConfigurationError(f"No activity with id {activity_id}")

    parent: ActivityState | None = None
    while node.parent_id is not None:
        parent = find_state(root, node.parent_id)
        if parent is None:
            raise ConsistencyError(f"Parent {node.parent_id} of {node.id} not found")
        if isinstance(parent, SelectState) and parent.source.num_to_select == 1:
            node = parent
            parent = None
            continue
        break

    if isinstance(parent, SelectState):
        grandparent_attempt = 1
        if parent.parent_id is not None:
            grandparent = find_state(root, parent.parent_id)
            if grandparent is None:
                raise ConsistencyError(f"Parent {parent.parent_id} of {parent.id} not found")
            grandparent_attempt = grandparent.attempt_number

        result = generate_new_single_doc_attempt_for_multi_select(
            parent, node.id, num_activity_variants, question_counts,
            parent_attempt=grandparent_attempt,
        )
        logger.info(f"Replaced {node.id} in multi-select {parent.id}")
        return propagate_state_change_to_root(root, result.state)

    return generate_new_sub_activity_attempt(
        root, node.id, num_activity_variants, question_counts
    )
