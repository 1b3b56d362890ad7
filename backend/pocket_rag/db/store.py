"""Persistence interface used by the ingestion pipeline, with an SQLite adapter."""

from __future__ import annotations

import sqlite3
from typing import Any, Mapping, Protocol, Sequence

import orjson

from pocket_rag.db.sqlite import SQLiteDatabase, blob_to_vector, vector_to_blob
from pocket_rag.models.entities import (
    AuditEvent,
    Chunk,
    Memory,
    MemoryChunk,
    Source,
    SourceStatus,
    SourceType,
)
from pocket_rag.utils.ids import new_id
from pocket_rag.utils.time import utc_now_iso

SOURCE_UPDATABLE_FIELDS = frozenset({"status", "error_message", "title", "size_bytes"})


class KnowledgeStore(Protocol):
    """Operations the pipeline needs from the relational/vector store.

    ``replace_chunks`` must be atomic: readers see either the previous chunk set
    or the complete new one, never a mix.
    """

    async def get_source(self, source_id: str) -> Source | None: ...

    async def transition_source(
        self, source_id: str, expected: SourceStatus, new: SourceStatus, **fields: Any
    ) -> bool: ...

    async def find_chunk_vectors(
        self, source_id: str, content_hashes: Sequence[str]
    ) -> dict[str, list[float]]: ...

    async def replace_chunks(self, source_id: str, chunks: Sequence[Chunk]) -> None: ...

    async def list_chunks(self, source_id: str) -> list[Chunk]: ...

    async def record_audit_event(
        self,
        org_id: str,
        pocket_id: str | None,
        event_type: str,
        metadata: Mapping[str, Any],
        user_id: str | None = None,
    ) -> AuditEvent: ...

    async def list_audit_events(
        self, org_id: str, event_type: str | None = None
    ) -> list[AuditEvent]: ...

    async def get_memory(self, memory_id: str) -> Memory | None: ...

    async def replace_memory_chunks(self, memory_id: str, chunks: Sequence[MemoryChunk]) -> None: ...

    async def get_user_api_key(self, user_id: str) -> str | None: ...


class SQLiteKnowledgeStore:
    """KnowledgeStore backed by a local SQLite database."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self.db = database

    # Sources ---------------------------------------------------------

    async def add_source(self, source: Source) -> Source:
        now = utc_now_iso()
        self.db.execute(
            """
            INSERT INTO sources (
              id, org_id, pocket_id, type, title, url, storage_path, mime_type,
              size_bytes, status, error_message, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                source.id,
                source.org_id,
                source.pocket_id,
                SourceType(source.type).value,
                source.title,
                source.url,
                source.storage_path,
                source.mime_type,
                source.size_bytes,
                SourceStatus(source.status).value,
                source.error_message,
                now,
                now,
            ],
        )
        source.created_at = source.updated_at = now
        return source

    async def get_source(self, source_id: str) -> Source | None:
        row = self.db.execute("SELECT * FROM sources WHERE id = ?", [source_id]).fetchone()
        return _row_to_source(row) if row else None

    async def transition_source(
        self, source_id: str, expected: SourceStatus, new: SourceStatus, **fields: Any
    ) -> bool:
        """Set status to ``new`` only while it is still ``expected``.

        Returns False when another writer moved the source first, in which case
        nothing is written.
        """
        assignments, values = _source_assignments({**fields, "status": new})
        cursor = self.db.execute(
            f"UPDATE sources SET {assignments}, updated_at = ? WHERE id = ? AND status = ?",
            [*values, utc_now_iso(), source_id, SourceStatus(expected).value],
        )
        return cursor.rowcount == 1

    # Chunks ----------------------------------------------------------

    async def find_chunk_vectors(
        self, source_id: str, content_hashes: Sequence[str]
    ) -> dict[str, list[float]]:
        if not content_hashes:
            return {}
        placeholders = ",".join("?" for _ in content_hashes)
        rows = self.db.query(
            f"""
            SELECT content_hash, embedding FROM chunks
            WHERE source_id = ? AND embedding IS NOT NULL AND content_hash IN ({placeholders})
            """,
            [source_id, *content_hashes],
        )
        return {row["content_hash"]: blob_to_vector(row["embedding"]) for row in rows}

    async def replace_chunks(self, source_id: str, chunks: Sequence[Chunk]) -> None:
        now = utc_now_iso()
        with self.db.transaction() as cursor:
            cursor.execute("DELETE FROM chunks WHERE source_id = ?", [source_id])
            cursor.executemany(
                """
                INSERT INTO chunks (
                  id, org_id, pocket_id, source_id, idx, page, text, content_hash, embedding, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        chunk.id,
                        chunk.org_id,
                        chunk.pocket_id,
                        source_id,
                        chunk.idx,
                        chunk.page,
                        chunk.text,
                        chunk.content_hash,
                        vector_to_blob(chunk.embedding) if chunk.embedding is not None else None,
                        now,
                    )
                    for chunk in chunks
                ],
            )

    async def list_chunks(self, source_id: str) -> list[Chunk]:
        rows = self.db.query(
            "SELECT * FROM chunks WHERE source_id = ? ORDER BY idx", [source_id]
        )
        return [
            Chunk(
                id=row["id"],
                org_id=row["org_id"],
                pocket_id=row["pocket_id"],
                source_id=row["source_id"],
                idx=row["idx"],
                page=row["page"],
                text=row["text"],
                content_hash=row["content_hash"],
                embedding=blob_to_vector(row["embedding"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    # Audit -----------------------------------------------------------

    async def record_audit_event(
        self,
        org_id: str,
        pocket_id: str | None,
        event_type: str,
        metadata: Mapping[str, Any],
        user_id: str | None = None,
    ) -> AuditEvent:
        event = AuditEvent(
            id=new_id(),
            org_id=org_id,
            pocket_id=pocket_id,
            event_type=event_type,
            metadata=dict(metadata),
            user_id=user_id,
            created_at=utc_now_iso(),
        )
        self.db.execute(
            """
            INSERT INTO audit_events (id, org_id, pocket_id, user_id, event_type, metadata_json, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                event.id,
                event.org_id,
                event.pocket_id,
                event.user_id,
                event.event_type,
                orjson.dumps(event.metadata).decode("utf-8"),
                event.created_at,
            ],
        )
        return event

    async def list_audit_events(
        self, org_id: str, event_type: str | None = None
    ) -> list[AuditEvent]:
        sql = "SELECT * FROM audit_events WHERE org_id = ?"
        params: list[Any] = [org_id]
        if event_type is not None:
            sql += " AND event_type = ?"
            params.append(event_type)
        rows = self.db.query(sql + " ORDER BY rowid", params)
        return [
            AuditEvent(
                id=row["id"],
                org_id=row["org_id"],
                pocket_id=row["pocket_id"],
                user_id=row["user_id"],
                event_type=row["event_type"],
                metadata=orjson.loads(row["metadata_json"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    # Memories --------------------------------------------------------

    async def add_memory(self, memory: Memory) -> Memory:
        memory.created_at = utc_now_iso()
        self.db.execute(
            "INSERT INTO memories (id, org_id, user_id, content, created_at) VALUES (?, ?, ?, ?, ?)",
            [memory.id, memory.org_id, memory.user_id, memory.content, memory.created_at],
        )
        return memory

    async def get_memory(self, memory_id: str) -> Memory | None:
        row = self.db.execute("SELECT * FROM memories WHERE id = ?", [memory_id]).fetchone()
        if row is None:
            return None
        return Memory(
            id=row["id"],
            org_id=row["org_id"],
            user_id=row["user_id"],
            content=row["content"],
            created_at=row["created_at"],
        )

    async def replace_memory_chunks(self, memory_id: str, chunks: Sequence[MemoryChunk]) -> None:
        now = utc_now_iso()
        with self.db.transaction() as cursor:
            cursor.execute("DELETE FROM memory_chunks WHERE memory_id = ?", [memory_id])
            cursor.executemany(
                """
                INSERT INTO memory_chunks (id, org_id, memory_id, idx, text, content_hash, embedding, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        chunk.id,
                        chunk.org_id,
                        memory_id,
                        chunk.idx,
                        chunk.text,
                        chunk.content_hash,
                        vector_to_blob(chunk.embedding) if chunk.embedding is not None else None,
                        now,
                    )
                    for chunk in chunks
                ],
            )

    async def list_memory_chunks(self, memory_id: str) -> list[MemoryChunk]:
        rows = self.db.query(
            "SELECT * FROM memory_chunks WHERE memory_id = ? ORDER BY idx", [memory_id]
        )
        return [
            MemoryChunk(
                id=row["id"],
                org_id=row["org_id"],
                memory_id=row["memory_id"],
                idx=row["idx"],
                text=row["text"],
                content_hash=row["content_hash"],
                embedding=blob_to_vector(row["embedding"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    # User settings ---------------------------------------------------

    async def get_user_api_key(self, user_id: str) -> str | None:
        row = self.db.execute(
            "SELECT openrouter_api_key_encrypted FROM user_settings WHERE user_id = ?", [user_id]
        ).fetchone()
        return row["openrouter_api_key_encrypted"] if row else None

    async def set_user_api_key(self, user_id: str, encrypted_key: str | None) -> None:
        self.db.execute(
            """
            INSERT INTO user_settings (user_id, openrouter_api_key_encrypted, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
              openrouter_api_key_encrypted = excluded.openrouter_api_key_encrypted,
              updated_at = excluded.updated_at
            """,
            [user_id, encrypted_key, utc_now_iso()],
        )


def _source_assignments(fields: Mapping[str, Any]) -> tuple[str, list[Any]]:
    unknown = set(fields) - SOURCE_UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update source fields: {sorted(unknown)}")
    assignments = ", ".join(f"{key} = ?" for key in fields)
    values = [value.value if isinstance(value, SourceStatus) else value for value in fields.values()]
    return assignments, values


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        org_id=row["org_id"],
        pocket_id=row["pocket_id"],
        type=SourceType(row["type"]),
        title=row["title"],
        status=SourceStatus(row["status"]),
        url=row["url"],
        storage_path=row["storage_path"],
        mime_type=row["mime_type"],
        size_bytes=row["size_bytes"],
        error_message=row["error_message"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


__all__ = ["KnowledgeStore", "SQLiteKnowledgeStore", "SOURCE_UPDATABLE_FIELDS"]
