"""
Variant arithmetic.

Counts how many distinct variants an activity can produce such that a full
cycle through them never repeats anything:
- single doc: the count reported for the document (1 if unreported)
- sequence: the minimum over its children
- select: floor(sum over children / numToSelect)

The *from_state* variant additionally honors a variant-slice restriction.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Mapping

from src.activity.source import (
    ActivitySource,
    SelectSource,
    SequenceSource,
    SingleDocSource,
)

if TYPE_CHECKING:
    from src.activity.state import ActivityState, VariantSlice


def calc_num_variants(
    source: ActivitySource,
    num_activity_variants: Mapping[str, int],
) -> int:
    """Number of fully disjoint variants of `source`."""
    match source:
        case SingleDocSource():
            return num_activity_variants.get(source.id, 1)
        case SelectSource():
            total = sum(
                calc_num_variants(item, num_activity_variants)
                for item in source.items
            )
            return total // source.num_to_select
        case SequenceSource():
            if not source.items:
                return 0
            return min(
                calc_num_variants(item, num_activity_variants)
                for item in source.items
            )


def calc_num_variants_from_state(
    state: ActivityState,
    num_activity_variants: Mapping[str, int],
) -> int:
    """
    Number of fully disjoint variants of a live state.

    A sequence passes its slice restriction to its children, so its count
    already reflects the slice. Single docs and selects apply their own slice.
    """
    from src.activity.state import SelectState, SequenceState, SingleDocState

    match state:
        case SingleDocState():
            num_variants = num_activity_variants.get(state.source.id, 1)
            return num_variants_in_slice(num_variants, state.restrict_to_variant_slice)
        case SelectState():
            total = sum(
                calc_num_variants_from_state(child, num_activity_variants)
                for child in state.all_children
            )
            num_variants = total // state.source.num_to_select
            return num_variants_in_slice(num_variants, state.restrict_to_variant_slice)
        case SequenceState():
            if not state.latest_child_states:
                return 0
            return min(
                calc_num_variants_from_state(child, num_activity_variants)
                for child in state.latest_child_states
            )


def num_variants_in_slice(num_variants: int, variant_slice: VariantSlice | None) -> int:
    """
    Count variants ``v`` in ``1..num_variants`` with ``v`` in the slice.

    Slice ``{idx, numSlices}`` holds ``idx, idx + numSlices, idx + 2*numSlices, ...``.
    A slice that starts beyond the last variant still gets one variant.
    """
    if variant_slice is None:
        return num_variants
    if variant_slice.idx > num_variants:
        return 1
    return (num_variants - variant_slice.idx) // variant_slice.num_slices + 1


def project_into_slice(
    draw: int,
    num_variants: int,
    variant_slice: VariantSlice | None,
) -> int:
    """
    Map a 1-based draw within a slice to the actual variant number.

    `num_variants` is the unsliced count; slices starting beyond it wrap around.
    """
    if variant_slice is None:
        return draw
    if variant_slice.idx > num_variants:
        return (variant_slice.idx - 1) % num_variants + 1
    return (draw - 1) * variant_slice.num_slices + variant_slice.idx


def variant_slice_position(variant: int, variant_slice: VariantSlice | None) -> int:
    """Inverse of `project_into_slice` for variants inside the slice."""
    if variant_slice is None:
        return variant
    return (variant - variant_slice.idx) // variant_slice.num_slices + 1


def get_num_items(source: ActivitySource) -> int:
    """
    Number of documents that will be rendered for `source`.

    For a select this is an upper bound: numToSelect times its largest option.
    """
    match source:
        case SingleDocSource():
            return 1
        case SelectSource():
            if not source.items:
                return 0
            return source.num_to_select * max(get_num_items(item) for item in source.items)
        case SequenceSource():
            return sum(get_num_items(item) for item in source.items)
