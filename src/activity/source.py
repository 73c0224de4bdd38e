"""
Activity source definitions.

A source is the immutable, author-written description of an activity tree:
- SingleDocSource: one document (optionally a non-scored description)
- SelectSource: a random choice of `numToSelect` among child sources
- SequenceSource: an ordered, optionally shuffled list of child sources

Sources are parsed from the same camelCase JSON the authoring tools write.
Ids must be unique within a tree and must not contain ``|``, which is
reserved for the suffix of duplicated or variant-sliced children.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Union

from loguru import logger
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
)
from pydantic.alias_generators import to_camel

from src.activity.errors import InvalidSourceError

ID_SEPARATOR = "|"


class _SourceModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class SingleDocSource(_SourceModel):
    """A single document. Descriptions are shown but never scored or shuffled."""

    type: Literal["singleDoc"] = "singleDoc"
    id: str
    title: str | None = None
    is_description: bool = False
    doenet_ml: str = Field(default="", alias="doenetML")
    version: str = ""
    # Declared counts, used when the renderer has not reported them
    num_variants: int | None = Field(default=None, ge=1)
    num_questions: int | None = Field(default=None, ge=0)


class SelectSource(_SourceModel):
    """Randomly choose `num_to_select` of `items` on each attempt."""

    type: Literal["select"] = "select"
    id: str
    title: str | None = None
    items: list[ActivitySource] = Field(default_factory=list)
    num_to_select: int = Field(default=1, ge=1)
    select_by_variant: bool = False


class SequenceSource(_SourceModel):
    """Present `items` in order, reshuffling non-description runs if `shuffle`."""

    type: Literal["sequence"] = "sequence"
    id: str
    title: str | None = None
    items: list[ActivitySource] = Field(default_factory=list)
    shuffle: bool = False
    weights: list[float] | None = Field(
        default=None,
        validation_alias=AliasChoices("weights", "creditWeights"),
    )


ActivitySource = Annotated[
    Union[SingleDocSource, SelectSource, SequenceSource],
    Field(discriminator="type"),
]

SelectSource.model_rebuild()
SequenceSource.model_rebuild()

_source_adapter: TypeAdapter[ActivitySource] = TypeAdapter(ActivitySource)


@dataclass
class DocumentStructure:
    """Per-document tables the attempt generator needs."""
    num_activity_variants: dict[str, int] = field(default_factory=dict)
    question_counts: dict[str, int] = field(default_factory=dict)


# ============================================================================
# LOADING & VALIDATION
# ============================================================================


def load_source(data: dict[str, Any] | str) -> ActivitySource:
    """
    Parse and validate an activity source.

    Args:
        data: Parsed JSON object, or a JSON string

    Returns:
        The validated source tree

    Raises:
        InvalidSourceError: If the schema is wrong or the ids are invalid
    """
    try:
        if isinstance(data, str):
            source = _source_adapter.validate_json(data)
        else:
            source = _source_adapter.validate_python(data)
    except ValidationError as e:
        raise InvalidSourceError(f"Invalid activity source: {e}") from e

    ids = validate_ids(source)
    logger.debug(f"Loaded activity source {source.id} with {len(ids)} activities")
    return source


def dump_source(source: ActivitySource) -> dict[str, Any]:
    """Serialize a source back to its camelCase JSON form."""
    return source.model_dump(by_alias=True, exclude_none=True)


def validate_ids(source: ActivitySource) -> list[str]:
    """
    Check that ids are unique and free of the reserved separator.

    Returns:
        All ids of the tree in pre-order

    Raises:
        InvalidSourceError: On a duplicate id or an id containing ``|``
    """
    ids = _collect_ids(source)

    for source_id in ids:
        if ID_SEPARATOR in source_id:
            raise InvalidSourceError(
                f'Source id "{source_id}" contains a "{ID_SEPARATOR}"'
            )

    seen: set[str] = set()
    duplicates: list[str] = []
    for source_id in ids:
        if source_id in seen and source_id not in duplicates:
            duplicates.append(source_id)
        seen.add(source_id)

    if duplicates:
        raise InvalidSourceError(f"Duplicate ids: {', '.join(duplicates)}")

    return ids


def _collect_ids(source: ActivitySource) -> list[str]:
    match source:
        case SingleDocSource():
            return [source.id]
        case SelectSource() | SequenceSource():
            ids = [source.id]
            for item in source.items:
                ids.extend(_collect_ids(item))
            return ids


def iter_documents(source: ActivitySource):
    """Yield every single-doc source of the tree in pre-order."""
    match source:
        case SingleDocSource():
            yield source
        case SelectSource() | SequenceSource():
            for item in source.items:
                yield from iter_documents(item)


def gather_document_structure(source: ActivitySource) -> DocumentStructure:
    """
    Build the variant and question count tables from declared counts.

    Documents that declare nothing get one variant and no questions.
    """
    structure = DocumentStructure()
    for doc in iter_documents(source):
        structure.num_activity_variants[doc.id] = doc.num_variants or 1
        structure.question_counts[doc.id] = doc.num_questions or 0
    return structure


def base_id(activity_id: str) -> str:
    """Strip a ``|N`` duplicate/slice suffix: ``"doc4|2"`` -> ``"doc4"``."""
    return activity_id.split(ID_SEPARATOR)[0]
