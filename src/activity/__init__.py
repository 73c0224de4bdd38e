"""
Activity State Engine.

Builds and evolves the state of randomized, auto-graded activities:
- source: immutable activity definitions (single doc, select, sequence)
- state: the living state tree mirroring a source
- generator: seeded, coverage-before-repeat attempt generation
- credit: credit propagation to the root and per-item credit reports
- serializer: source-free persistence and rehydration
- reducer: action/event protocol used by the embedding page

All operations are pure: they take a state and return a new one.
"""

from src.activity.credit import (
    ItemCredit,
    extract_activity_item_credit,
    get_item_sequence,
    propagate_state_change_to_root,
    update_single_doc_state,
)
from src.activity.errors import (
    ActivityError,
    ConfigurationError,
    ConsistencyError,
    InvalidSourceError,
    InvariantViolation,
    WrongActivityTypeError,
)
from src.activity.generator import (
    AttemptResult,
    generate_new_activity_attempt,
    generate_new_item_attempt,
    generate_new_single_doc_attempt_for_multi_select,
    generate_new_sub_activity_attempt,
)
from src.activity.reducer import (
    ActivityAction,
    EventSubject,
    GenerateNewActivityAttemptAction,
    GenerateSingleDocSubActivityAttemptAction,
    InitializeAction,
    ReportEvent,
    ResetAction,
    SetAction,
    UpdateSingleStateAction,
    activity_doc_state_reducer,
)
from src.activity.rng import Alea, seed_key, seeded_rng
from src.activity.serializer import (
    add_source_to_activity_state,
    dump_activity_and_doc_states,
    load_activity_and_doc_states,
    prune_activity_state_for_save,
)
from src.activity.source import (
    ActivitySource,
    DocumentStructure,
    SelectSource,
    SequenceSource,
    SingleDocSource,
    gather_document_structure,
    load_source,
    validate_ids,
)
from src.activity.state import (
    ActivityAndDocStates,
    ActivityState,
    SelectState,
    SequenceAttemptState,
    SequenceState,
    SingleDocState,
    VariantSlice,
    initialize_activity_state,
    uninitialized_activity_state,
)
from src.activity.variants import (
    calc_num_variants,
    calc_num_variants_from_state,
    get_num_items,
)

__all__ = [
    # Sources
    "ActivitySource",
    "SingleDocSource",
    "SelectSource",
    "SequenceSource",
    "DocumentStructure",
    "load_source",
    "validate_ids",
    "gather_document_structure",
    # State
    "ActivityState",
    "SingleDocState",
    "SelectState",
    "SequenceState",
    "SequenceAttemptState",
    "VariantSlice",
    "ActivityAndDocStates",
    "initialize_activity_state",
    "uninitialized_activity_state",
    # Variants
    "calc_num_variants",
    "calc_num_variants_from_state",
    "get_num_items",
    # RNG
    "Alea",
    "seeded_rng",
    "seed_key",
    # Generation
    "AttemptResult",
    "generate_new_activity_attempt",
    "generate_new_sub_activity_attempt",
    "generate_new_item_attempt",
    "generate_new_single_doc_attempt_for_multi_select",
    # Credit
    "ItemCredit",
    "update_single_doc_state",
    "propagate_state_change_to_root",
    "extract_activity_item_credit",
    "get_item_sequence",
    # Persistence
    "prune_activity_state_for_save",
    "add_source_to_activity_state",
    "dump_activity_and_doc_states",
    "load_activity_and_doc_states",
    # Reducer
    "ActivityAction",
    "ResetAction",
    "InitializeAction",
    "SetAction",
    "GenerateNewActivityAttemptAction",
    "GenerateSingleDocSubActivityAttemptAction",
    "UpdateSingleStateAction",
    "ReportEvent",
    "EventSubject",
    "activity_doc_state_reducer",
    # Errors
    "ActivityError",
    "ConfigurationError",
    "InvalidSourceError",
    "WrongActivityTypeError",
    "ConsistencyError",
    "InvariantViolation",
]
