"""
Unit tests for credit propagation and item credit reports.
"""

import pytest

from src.activity import (
    ConfigurationError,
    ConsistencyError,
    WrongActivityTypeError,
    extract_activity_item_credit,
    generate_new_activity_attempt,
    get_item_sequence,
    initialize_activity_state,
    load_source,
    propagate_state_change_to_root,
    update_single_doc_state,
)
from src.activity.credit import sequence_credit


def _attempt(source, table=None, variant=1):
    table = table or {}
    state = initialize_activity_state(source, variant, None, table)
    return generate_new_activity_attempt(state, table, 1, {}, reset_credit=True).state


class TestSingleDocCredit:
    """Test credit on a lone document."""

    def test_credit_keeps_maximum(self, single_doc_source):
        """Scores 0.2, 0.1, 0.3 give credit 0.2, 0.2, 0.3."""
        state = _attempt(single_doc_source, {"doc": 5})

        credits = []
        for score in (0.2, 0.1, 0.3):
            state = update_single_doc_state(state, "doc", score)
            credits.append(state.credit_achieved)

        assert credits == [0.2, 0.2, 0.3]

    def test_new_attempt_resets(self, single_doc_source):
        state = _attempt(single_doc_source, {"doc": 5})
        state = update_single_doc_state(state, "doc", 0.9)
        state = generate_new_activity_attempt(state, {"doc": 5}, 1, {}).state
        assert state.credit_achieved == 0.0

    def test_records_doc_state_index(self, single_doc_source):
        state = _attempt(single_doc_source)
        state = update_single_doc_state(state, "doc", 0.5, doenet_state_idx=0)
        assert state.doenet_state_idx == 0

    @pytest.mark.parametrize("credit", [1.7, -0.1])
    def test_credit_out_of_range(self, single_doc_source, credit):
        """Should refuse credit outside [0, 1] and leave the state untouched."""
        state = _attempt(single_doc_source, {"doc": 5})
        state = update_single_doc_state(state, "doc", 0.4)

        with pytest.raises(ConfigurationError, match="outside the range"):
            update_single_doc_state(state, "doc", credit)
        assert state.credit_achieved == pytest.approx(0.4)

    def test_credit_bounds_accepted(self, single_doc_source):
        state = _attempt(single_doc_source)
        state = update_single_doc_state(state, "doc", 0.0)
        state = update_single_doc_state(state, "doc", 1.0)
        assert state.credit_achieved == 1.0

    def test_unknown_id(self, single_doc_source):
        state = _attempt(single_doc_source)
        with pytest.raises(ConfigurationError, match="No activity with id nope"):
            update_single_doc_state(state, "nope", 1.0)

    def test_wrong_type(self, sequence_source):
        """Should refuse to score a container."""
        state = _attempt(sequence_source)
        with pytest.raises(WrongActivityTypeError, match="expected singleDoc, got sequence"):
            update_single_doc_state(state, "seq", 1.0)


class TestSequenceCredit:
    """Test credit averaging in sequences."""

    def test_average(self, three_doc_sequence_source):
        state = _attempt(three_doc_sequence_source)
        state = update_single_doc_state(state, "doc1", 1.0)
        state = update_single_doc_state(state, "doc2", 0.5)
        assert state.credit_achieved == pytest.approx(0.5)
        assert state.attempts[-1].credit_achieved == pytest.approx(0.5)

    def test_weights(self):
        """Should weight children and pad missing weights with 1."""
        source = load_source({
            "type": "sequence",
            "id": "s",
            "weights": [3],
            "items": [{"type": "singleDoc", "id": "a"}, {"type": "singleDoc", "id": "b"}],
        })
        state = _attempt(source)
        state = update_single_doc_state(state, "a", 1.0)
        assert state.credit_achieved == pytest.approx(0.75)

    def test_descriptions_not_scored(self, shuffled_sequence_source):
        state = _attempt(shuffled_sequence_source)
        for doc_id in ("a", "b", "c", "d", "e"):
            state = update_single_doc_state(state, doc_id, 1.0)
        assert state.credit_achieved == pytest.approx(1.0)

    def test_zero_weights(self, three_doc_sequence_source):
        """Should report 0 when the weights sum to zero."""
        state = _attempt(three_doc_sequence_source)
        children = [c.model_copy(update={"credit_achieved": 1.0}) for c in state.latest_child_states]
        assert sequence_credit(children, [0, 0, 0]) == 0.0

    def test_max_accumulation_across_submissions(self, three_doc_sequence_source):
        """A lower resubmission never lowers the sequence credit."""
        state = _attempt(three_doc_sequence_source)
        state = update_single_doc_state(state, "doc1", 0.9)
        before = state.credit_achieved
        state = update_single_doc_state(state, "doc2", 0.0)
        assert state.credit_achieved == before

    def test_root_attempt_resets_sequence(self, three_doc_sequence_source):
        state = _attempt(three_doc_sequence_source)
        state = update_single_doc_state(state, "doc1", 1.0)
        state = generate_new_activity_attempt(state, {}, 1, {}, reset_credit=True).state
        assert state.credit_achieved == 0.0
        assert all(c.credit_achieved == 0.0 for c in state.latest_child_states)


class TestSelectCredit:
    """Test credit of selects."""

    def test_mean_of_selections(self, multi_select_source):
        state = _attempt(multi_select_source)
        first, second = state.selected_children
        state = update_single_doc_state(state, first.id, 1.0)
        assert state.credit_achieved == pytest.approx(0.5)
        state = update_single_doc_state(state, second.id, 0.5)
        assert state.credit_achieved == pytest.approx(0.75)

    def test_nested_propagation(self, nested_source):
        """Should carry a document score through a select to the root."""
        state = _attempt(nested_source, {"q1a": 3, "q1b": 2, "q3": 2})
        pick1 = state.latest_child_states[1]
        chosen = pick1.selected_children[0].id

        state = update_single_doc_state(state, chosen, 1.0)
        assert state.latest_child_states[1].credit_achieved == pytest.approx(1.0)
        # Three scored children: pick1, pick2, q3
        assert state.credit_achieved == pytest.approx(1 / 3)


class TestPropagation:
    """Test tree bookkeeping during propagation."""

    def test_missing_parent(self, three_doc_sequence_source):
        state = _attempt(three_doc_sequence_source)
        orphan = state.latest_child_states[0].model_copy(update={"parent_id": "ghost"})
        with pytest.raises(ConsistencyError):
            propagate_state_change_to_root(state, orphan)

    def test_parent_without_child(self, three_doc_sequence_source):
        state = _attempt(three_doc_sequence_source)
        stranger = state.latest_child_states[0].model_copy(update={"id": "stranger"})
        with pytest.raises(ConsistencyError, match="didn't have child stranger"):
            propagate_state_change_to_root(state, stranger)


class TestItemCredit:
    """Test flattening the tree into scorable items."""

    def test_single_question_select_reports_itself(self, nested_source):
        state = _attempt(nested_source, {"q1a": 3, "q1b": 2, "q3": 2})
        items = extract_activity_item_credit(state)

        assert [item.id for item in items][0] == "pick1"
        pick1 = items[0]
        assert pick1.doc_id in {"q1a", "q1b"}
        assert pick1.variant is not None
        assert len(items) == 4

    def test_item_order_and_positions(self, nested_source):
        state = _attempt(nested_source)
        items = extract_activity_item_credit(state)
        assert sorted(item.shuffled_order for item in items) == [1, 2, 3, 4]

    def test_shuffled_order_follows_display(self, shuffled_sequence_source):
        """Should report in source order with displayed positions."""
        state = _attempt(shuffled_sequence_source)
        items = extract_activity_item_credit(state)
        assert [item.id for item in items] == ["a", "b", "c", "d", "e"]

        displayed = [c.id for c in state.attempts[-1].activities if c.id != "intro"]
        for item in items:
            assert displayed[item.shuffled_order - 1] == item.id

    def test_unattempted_select(self, select_source):
        state = initialize_activity_state(select_source, 1, None, {})
        items = extract_activity_item_credit(state)
        assert len(items) == 1
        assert items[0].score == 0.0

    def test_to_dict_omits_unset(self):
        from src.activity import ItemCredit

        data = ItemCredit(id="x", score=0.5, shuffled_order=2).to_dict()
        assert data == {"id": "x", "score": 0.5, "shuffledOrder": 2}

    def test_item_sequence(self, nested_source):
        """Should list rendered documents in displayed order, descriptions included."""
        state = _attempt(nested_source)
        sequence = get_item_sequence(state)
        assert sequence[0] == "intro"
        assert sequence[1] in {"q1a", "q1b"}
        assert set(sequence[2:4]) <= {"q2a", "q2b", "q2c"}
        assert sequence[4] == "q3"
