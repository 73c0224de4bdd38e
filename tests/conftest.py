"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests:
small activity sources in the shapes the engine has to handle and the
variant tables that go with them.
"""
import pytest
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.activity import gather_document_structure, load_source  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


def doc(doc_id: str, num_variants: int | None = None, **extra) -> dict:
    """Build a single doc source dict."""
    data = {"type": "singleDoc", "id": doc_id, "doenetML": f"<p>{doc_id}</p>", "version": "0.7"}
    if num_variants is not None:
        data["numVariants"] = num_variants
    data.update(extra)
    return data


@pytest.fixture
def single_doc_source():
    """One document with 5 variants."""
    return load_source(doc("doc", 5))


@pytest.fixture
def sequence_source():
    """Unshuffled sequence of a 4-variant and a 5-variant document."""
    return load_source({
        "type": "sequence",
        "id": "seq",
        "items": [doc("doc4", 4, numQuestions=2), doc("doc5", 5, numQuestions=3)],
    })


@pytest.fixture
def three_doc_sequence_source():
    """Unshuffled sequence of three single-variant documents."""
    return load_source({
        "type": "sequence",
        "id": "seq3",
        "items": [doc("doc1"), doc("doc2"), doc("doc3")],
    })


@pytest.fixture
def shuffled_sequence_source():
    """Shuffled sequence with a description anchored in the middle."""
    return load_source({
        "type": "sequence",
        "id": "seqShuf",
        "shuffle": True,
        "items": [
            doc("a"),
            doc("b"),
            doc("c"),
            doc("intro", isDescription=True),
            doc("d"),
            doc("e"),
        ],
    })


@pytest.fixture
def select_by_variant_source():
    """Select one of 10 document variants (1 + 4 + 5)."""
    return load_source({
        "type": "select",
        "id": "sel",
        "selectByVariant": True,
        "items": [doc("doc1", 1), doc("doc4", 4), doc("doc5", 5)],
    })


@pytest.fixture
def select_source():
    """Select one of three documents, ignoring their variant counts."""
    return load_source({
        "type": "select",
        "id": "selNoVariant",
        "items": [doc("doc1", 1), doc("doc4", 4), doc("doc5", 5)],
    })


@pytest.fixture
def multi_select_one_doc_source():
    """Select two variants of a single 5-variant document."""
    return load_source({
        "type": "select",
        "id": "selMult1doc",
        "numToSelect": 2,
        "selectByVariant": True,
        "items": [doc("doc5", 5)],
    })


@pytest.fixture
def multi_select_source():
    """Select two of four documents."""
    return load_source({
        "type": "select",
        "id": "selMult",
        "numToSelect": 2,
        "items": [doc("doc1"), doc("doc2"), doc("doc3"), doc("doc4")],
    })


@pytest.fixture
def nested_source():
    """Sequence holding a description, a single-choice select and a multi-select."""
    return load_source({
        "type": "sequence",
        "id": "quiz",
        "items": [
            doc("intro", isDescription=True),
            {
                "type": "select",
                "id": "pick1",
                "items": [doc("q1a", 3, numQuestions=1), doc("q1b", 2, numQuestions=1)],
            },
            {
                "type": "select",
                "id": "pick2",
                "numToSelect": 2,
                "items": [doc("q2a"), doc("q2b"), doc("q2c")],
            },
            doc("q3", 2, numQuestions=2),
        ],
    })


@pytest.fixture
def empty_select_source():
    return load_source({"type": "select", "id": "empty", "items": []})


@pytest.fixture
def structure_of():
    """Return the variant and question tables of a source."""
    return gather_document_structure
