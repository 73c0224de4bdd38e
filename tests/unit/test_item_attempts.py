"""
Unit tests for sub-activity and item attempts.

Tests regenerating a subtree, retrying a single item and replacing one slot
of a multi-select without touching its siblings.
"""

import pytest

from src.activity import (
    ConfigurationError,
    ConsistencyError,
    SelectState,
    generate_new_activity_attempt,
    generate_new_item_attempt,
    generate_new_single_doc_attempt_for_multi_select,
    generate_new_sub_activity_attempt,
    initialize_activity_state,
    update_single_doc_state,
)
from src.activity.state import find_state

NESTED_TABLE = {"q1a": 3, "q1b": 2, "q3": 2}


@pytest.fixture
def nested_state(nested_source):
    state = initialize_activity_state(nested_source, 1, None, NESTED_TABLE)
    return generate_new_activity_attempt(state, NESTED_TABLE, 1, {}, reset_credit=True).state


@pytest.fixture
def multi_select_state(multi_select_source):
    state = initialize_activity_state(multi_select_source, 1, None, {})
    return generate_new_activity_attempt(state, {}, 1, {}).state


class TestSubActivityAttempt:
    """Test regenerating one subtree."""

    def test_only_subtree_changes(self, nested_state):
        new_root = generate_new_sub_activity_attempt(nested_state, "q3", NESTED_TABLE, {})

        assert find_state(new_root, "q3").attempt_number == 2
        assert find_state(new_root, "pick1") == find_state(nested_state, "pick1")
        assert find_state(new_root, "pick2") == find_state(nested_state, "pick2")
        assert new_root.attempt_number == nested_state.attempt_number

    def test_ancestors_keep_credit(self, nested_state):
        """Should not lower the root credit when a subtree restarts."""
        state = update_single_doc_state(nested_state, "q3", 1.0)
        before = state.credit_achieved

        state = generate_new_sub_activity_attempt(state, "q3", NESTED_TABLE, {})
        assert find_state(state, "q3").credit_achieved == 0.0
        assert state.credit_achieved == before

    def test_root_is_full_attempt(self, nested_state):
        state = update_single_doc_state(nested_state, "q3", 1.0)
        state = generate_new_sub_activity_attempt(state, "quiz", NESTED_TABLE, {})
        assert state.attempt_number == 2
        assert state.credit_achieved == 0.0

    def test_keeps_question_numbers(self, nested_source):
        counts = {"q1a": 1, "q1b": 1, "q3": 2}
        state = initialize_activity_state(nested_source, 1, None, NESTED_TABLE)
        state = generate_new_activity_attempt(state, NESTED_TABLE, 1, counts, reset_credit=True).state
        before = find_state(state, "q3").initial_question_counter

        state = generate_new_sub_activity_attempt(state, "q3", NESTED_TABLE, counts)
        assert find_state(state, "q3").initial_question_counter == before

    def test_unknown_id(self, nested_state):
        with pytest.raises(ConfigurationError):
            generate_new_sub_activity_attempt(nested_state, "nope", NESTED_TABLE, {})


class TestItemAttempt:
    """Test retrying a single item."""

    def test_climbs_single_choice_select(self, nested_state):
        """Should redraw the whole single-choice select for its document."""
        chosen = find_state(nested_state, "pick1").selected_children[0].id
        state = generate_new_item_attempt(nested_state, chosen, NESTED_TABLE, {})

        pick1 = find_state(state, "pick1")
        assert pick1.attempt_number == 2
        assert len(pick1.selected_children) == 1
        # Coverage moves on to the other option
        assert pick1.selected_children[0].id != chosen

    def test_plain_document(self, nested_state):
        state = generate_new_item_attempt(nested_state, "q3", NESTED_TABLE, {})
        assert find_state(state, "q3").attempt_number == 2
        assert find_state(state, "pick2") == find_state(nested_state, "pick2")

    def test_multi_select_slot(self, nested_state):
        """Should replace only the retried slot of a multi-select."""
        pick2 = find_state(nested_state, "pick2")
        retried, kept = (child.id for child in pick2.selected_children)

        state = generate_new_item_attempt(nested_state, retried, NESTED_TABLE, {})
        new_pick2 = find_state(state, "pick2")

        assert new_pick2.selected_children[1].id == kept
        assert new_pick2.selected_children[0].id != kept
        assert find_state(state, "pick1") == find_state(nested_state, "pick1")


class TestMultiSelectSlotReplacement:
    """Test replacing one selected option."""

    def test_never_duplicates_other_selection(self, multi_select_state):
        state = multi_select_state
        for _ in range(12):
            first, second = state.selected_children
            state = generate_new_single_doc_attempt_for_multi_select(
                state, first.id, {}, {}
            ).state
            assert state.selected_children[1].id == second.id
            assert state.selected_children[0].id != second.id

    def test_covers_pool_before_repeating(self, multi_select_state):
        """Should draw every other option before the slot repeats one."""
        state = multi_select_state
        kept = state.selected_children[1].id
        pool = {"doc1", "doc2", "doc3", "doc4"} - {kept}

        seen = []
        for _ in range(2 * len(pool)):
            state = generate_new_single_doc_attempt_for_multi_select(
                state, state.selected_children[0].id, {}, {}
            ).state
            seen.append(state.selected_children[0].id)

        assert set(seen) == pool

    def test_credit_is_mean_with_new_slot_at_zero(self, multi_select_state):
        state = multi_select_state
        first, second = state.selected_children
        state = update_single_doc_state(state, first.id, 1.0)
        state = update_single_doc_state(state, second.id, 1.0)

        state = generate_new_single_doc_attempt_for_multi_select(state, first.id, {}, {}).state
        assert state.credit_achieved == pytest.approx(0.5)
        assert state.selected_children[0].credit_achieved == 0.0

    def test_bumps_attempt_and_history(self, multi_select_state):
        state = multi_select_state
        new_state = generate_new_single_doc_attempt_for_multi_select(
            state, state.selected_children[0].id, {}, {}
        ).state

        assert isinstance(new_state, SelectState)
        assert new_state.attempt_number == state.attempt_number + 1
        assert new_state.previous_selections[:-1] == state.previous_selections
        assert new_state.previous_selections[-1] == new_state.selected_children[0].id

    def test_unselected_child(self, multi_select_state):
        unselected = next(
            child.id for child in multi_select_state.all_children
            if child not in multi_select_state.selected_children
        )
        with pytest.raises(ConsistencyError, match="not a current selection"):
            generate_new_single_doc_attempt_for_multi_select(multi_select_state, unselected, {}, {})
