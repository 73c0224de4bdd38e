"""
Credit propagation and item credit reporting.

A score reported for one document changes the credit of every ancestor.
`propagate_state_change_to_root` rebuilds the path from a changed node up to
the root, one parent at a time:
- sequence: weighted average of its non-description children
- select: plain average of its current selections
Each level keeps the larger of its old and new credit.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from src.activity.errors import (
    ConfigurationError,
    ConsistencyError,
    WrongActivityTypeError,
)
from src.activity.source import SingleDocSource
from src.activity.state import (
    ActivityState,
    SelectState,
    SequenceAttemptState,
    SequenceState,
    SingleDocState,
    find_state,
    gather_states,
)


@dataclass
class ItemCredit:
    """Score of one scorable item, as reported to the embedding page."""
    id: str
    score: float
    shuffled_order: int
    doc_id: str | None = None
    variant: int | None = None

    def to_dict(self) -> dict:
        """Serialize with the camelCase keys the page expects, omitting unset fields."""
        data = {
            "id": self.id,
            "score": self.score,
            "docId": self.doc_id,
            "shuffledOrder": self.shuffled_order,
            "variant": self.variant,
        }
        return {key: value for key, value in data.items() if value is not None}


# ============================================================================
# PROPAGATION
# ============================================================================


def update_single_doc_state(
    root: ActivityState,
    doc_id: str,
    credit_achieved: float,
    doenet_state_idx: int | None = None,
) -> ActivityState:
    """
    Record a score for document `doc_id` and update every ancestor.

    The document keeps the best credit of its current attempt.

    Raises:
        ConfigurationError: Unknown id, or credit outside [0, 1]
        WrongActivityTypeError: `doc_id` is not a single document
    """
    if not 0.0 <= credit_achieved <= 1.0:
        raise ConfigurationError(
            f"Credit {credit_achieved} for {doc_id} is outside the range [0, 1]"
        )

    doc_state = find_state(root, doc_id)
    if doc_state is None:
        raise ConfigurationError(f"No activity with id {doc_id}")
    if not isinstance(doc_state, SingleDocState):
        raise WrongActivityTypeError("update_single_doc_state", "singleDoc", doc_state.type)

    new_doc_state = doc_state.model_copy(
        update={
            "credit_achieved": max(doc_state.credit_achieved, credit_achieved),
            "doenet_state_idx": doenet_state_idx,
        }
    )
    return propagate_state_change_to_root(root, new_doc_state)


def propagate_state_change_to_root(
    root: ActivityState,
    changed: ActivityState,
) -> ActivityState:
    """
    Put `changed` into the tree and recompute credit on the way to the root.

    Raises:
        ConsistencyError: If a parent does not record the child being replaced
    """
    states = gather_states(root)
    current = changed

    while current.parent_id is not None:
        parent = states.get(current.parent_id)
        if parent is None:
            raise ConsistencyError(f"Parent {current.parent_id} of {current.id} not found")

        match parent:
            case SelectState():
                current = _replace_select_child(parent, current)
            case SequenceState():
                current = _replace_sequence_child(parent, current)
            case SingleDocState():
                raise ConsistencyError(f"Single doc activity {parent.id} cannot be a parent")

    if current.id != root.id:
        raise ConsistencyError(f"Propagation ended at {current.id}, not at root {root.id}")

    return current


def _replace_select_child(parent: SelectState, child: ActivityState) -> SelectState:
    all_children = list(parent.all_children)
    selected = list(parent.selected_children)

    found = False
    for children in (all_children, selected):
        for i, existing in enumerate(children):
            if existing.id == child.id:
                children[i] = child
                found = True

    if not found:
        raise ConsistencyError(f"Something went wrong as {parent.id} didn't have child {child.id}")

    credit = select_credit(selected)
    return parent.model_copy(
        update={
            "all_children": all_children,
            "selected_children": selected,
            "credit_achieved": max(parent.credit_achieved, credit),
        }
    )


def _replace_sequence_child(parent: SequenceState, child: ActivityState) -> SequenceState:
    latest = list(parent.latest_child_states)
    child_idx = next((i for i, s in enumerate(latest) if s.id == child.id), None)
    if child_idx is None:
        raise ConsistencyError(f"Something went wrong as {parent.id} didn't have child {child.id}")
    latest[child_idx] = child

    credit = sequence_credit(latest, parent.source.weights)
    update: dict = {
        "latest_child_states": latest,
        "credit_achieved": max(parent.credit_achieved, credit),
    }

    if parent.attempts:
        last_attempt = parent.attempts[-1]
        activities = list(last_attempt.activities)
        attempt_idx = next((i for i, s in enumerate(activities) if s.id == child.id), None)
        if attempt_idx is None:
            raise ConsistencyError(
                f"Something went wrong as {parent.id} didn't have child {child.id} in last attempt"
            )
        activities[attempt_idx] = child
        update["attempts"] = [
            *parent.attempts[:-1],
            SequenceAttemptState(
                activities=activities,
                credit_achieved=max(last_attempt.credit_achieved, credit),
            ),
        ]

    return parent.model_copy(update=update)


def sequence_credit(children: list[ActivityState], weights: list[float] | None) -> float:
    """
    Weighted average credit of the non-description children.

    Missing weights count as 1; extra weights are ignored.
    """
    scored = [
        child for child in children
        if not (isinstance(child.source, SingleDocSource) and child.source.is_description)
    ]
    if not scored:
        return 0.0

    padded = list(weights or [])[:len(scored)]
    padded += [1.0] * (len(scored) - len(padded))
    total_weight = sum(padded)
    if total_weight <= 0:
        logger.warning("Sequence credit weights sum to zero; reporting credit 0")
        return 0.0

    return sum(child.credit_achieved * w for child, w in zip(scored, padded)) / total_weight


def select_credit(selected: list[ActivityState]) -> float:
    if not selected:
        return 0.0
    return sum(child.credit_achieved for child in selected) / len(selected)


# ============================================================================
# REPORTING
# ============================================================================


def extract_activity_item_credit(state: ActivityState) -> list[ItemCredit]:
    """
    Flatten the tree into scorable items.

    Descriptions are skipped. Sequence items come back in source order with
    `shuffled_order` giving their displayed position.
    """
    return _extract_item_credit(state, 0)


def _extract_item_credit(state: ActivityState, num_before: int) -> list[ItemCredit]:
    match state:
        case SingleDocState():
            if state.source.is_description:
                return []
            return [
                ItemCredit(
                    id=state.id,
                    score=state.credit_achieved,
                    shuffled_order=num_before + 1,
                    doc_id=state.id,
                    variant=state.current_variant if state.attempt_number > 0 else None,
                )
            ]

        case SelectState():
            single_question = state.source.num_to_select == 1 and all(
                isinstance(child, SingleDocState) for child in state.all_children
            )
            if single_question and state.selected_children:
                # The select behaves as one question
                chosen = state.selected_children[0]
                return [
                    ItemCredit(
                        id=state.id,
                        score=state.credit_achieved,
                        shuffled_order=num_before + 1,
                        doc_id=chosen.id,
                        variant=chosen.current_variant,
                    )
                ]
            if state.attempt_number == 0:
                return [ItemCredit(id=state.id, score=state.credit_achieved, shuffled_order=num_before + 1)]

            items: list[ItemCredit] = []
            for child in state.selected_children:
                items.extend(_extract_item_credit(child, num_before + len(items)))
            return items

        case SequenceState():
            if state.attempt_number == 0:
                return [ItemCredit(id=state.id, score=0.0, shuffled_order=num_before + 1)]

            by_child: dict[str, list[ItemCredit]] = {}
            count = num_before
            for child in state.ordered_children:
                child_items = _extract_item_credit(child, count)
                count += len(child_items)
                by_child[child.id] = child_items

            return [
                item
                for child in state.latest_child_states
                for item in by_child.get(child.id, [])
            ]


def item_credit_dicts(state: ActivityState) -> list[dict]:
    return [item.to_dict() for item in extract_activity_item_credit(state)]


def get_item_sequence(state: ActivityState) -> list[str]:
    """Ids of the documents rendered for the current attempt, in displayed order."""
    match state:
        case SingleDocState():
            return [state.id]
        case SelectState():
            if state.attempt_number == 0:
                return [state.id]
            return [
                doc_id
                for child in state.selected_children
                for doc_id in get_item_sequence(child)
            ]
        case SequenceState():
            if state.attempt_number == 0:
                return [state.id]
            return [
                doc_id
                for child in state.ordered_children
                for doc_id in get_item_sequence(child)
            ]

