"""Pydantic models for job payloads consumed from the ingest queue."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _JobModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class IngestUrlJob(_JobModel):
    type: Literal["ingest_url"] = "ingest_url"
    source_id: str = Field(alias="sourceId")
    org_id: str = Field(alias="orgId")
    pocket_id: str = Field(alias="pocketId")
    url: str


class IngestFileJob(_JobModel):
    type: Literal["ingest_file"] = "ingest_file"
    source_id: str = Field(alias="sourceId")
    org_id: str = Field(alias="orgId")
    pocket_id: str = Field(alias="pocketId")
    storage_path: str = Field(alias="storagePath")
    mime_type: str = Field(alias="mimeType")


class ChunkMemoryJob(_JobModel):
    type: Literal["chunk_memory"] = "chunk_memory"
    memory_id: str = Field(alias="memoryId")
    org_id: str = Field(alias="orgId")
    user_id: str = Field(alias="userId")


IngestJob = Annotated[
    Union[IngestUrlJob, IngestFileJob, ChunkMemoryJob],
    Field(discriminator="type"),
]

_JOB_ADAPTER: TypeAdapter[Any] = TypeAdapter(IngestJob)


def parse_job(payload: Mapping[str, Any]) -> IngestUrlJob | IngestFileJob | ChunkMemoryJob:
    """Validate a raw queue payload into its typed job model."""
    return _JOB_ADAPTER.validate_python(dict(payload))


__all__ = ["IngestUrlJob", "IngestFileJob", "ChunkMemoryJob", "IngestJob", "parse_job"]
