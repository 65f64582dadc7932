from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field, field_validator

LOCKS_NODE = "locks"


class WorkItem(BaseModel):
    """
    A work submission as it will be stored in the registry.

    Attributes:
        work_id: Child node name under the registry. A single path segment;
            ``locks`` (any case) is reserved for claim markers.
        data: Opaque payload handed to the processor.
    """

    model_config = ConfigDict(frozen=True)

    work_id: str = Field(min_length=1)
    data: bytes = b""

    @field_validator("work_id")
    @classmethod
    def _single_node_name(cls, value: str) -> str:
        if value.lower() == LOCKS_NODE:
            raise ValueError(f"{LOCKS_NODE} is reserved work id")
        if "/" in value or value in (".", ".."):
            raise ValueError("work id must be a single node name")
        return value


@dataclass(frozen=True)
class ClaimedWork:
    """A claimed item handed to the worker pool."""

    work_id: str
    item_path: str
    lock_path: str
    data: bytes
