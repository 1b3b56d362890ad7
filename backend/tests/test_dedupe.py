"""Tests for embedding reuse and batching."""

import pytest

from pocket_rag.core.errors import EmbeddingServiceError
from pocket_rag.ingest.dedupe import EmbeddingDeduplicator, dedupe_hashes, embed_all, iter_batches
from pocket_rag.models.entities import Chunk
from pocket_rag.utils.hashing import content_hash


class ShortChangingEmbeddings:
    model = "broken"

    async def embed(self, texts):
        return [[1.0, 0.0]] * (len(texts) - 1)


def test_dedupe_hashes_keeps_first_occurrence_order() -> None:
    assert dedupe_hashes(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]


def test_iter_batches_splits_evenly() -> None:
    assert [list(batch) for batch in iter_batches(["a", "b", "c", "d", "e"], 2)] == [["a", "b"], ["c", "d"], ["e"]]
    with pytest.raises(ValueError):
        list(iter_batches(["a"], 0))


@pytest.mark.asyncio
async def test_stored_vectors_are_reused(store, add_source, embeddings) -> None:
    await add_source("src-1")
    stored_vector = [0.5] * embeddings.dim
    await store.replace_chunks(
        "src-1",
        [
            Chunk(
                id="chunk-old",
                org_id="org-1",
                pocket_id="pocket-1",
                source_id="src-1",
                idx=0,
                text="already embedded",
                content_hash=content_hash("already embedded"),
                embedding=stored_vector,
            )
        ],
    )

    deduplicator = EmbeddingDeduplicator(store, embeddings, batch_size=10)
    results, stats = await deduplicator.embed_for_source("src-1", ["already embedded", "brand new", "brand new"])

    assert embeddings.calls == [["brand new"]]
    assert [item.text for item in results] == ["already embedded", "brand new", "brand new"]
    assert results[0].reused and results[0].vector == stored_vector
    assert results[1].vector == results[2].vector
    assert stats.to_dict() == {"reused": 1, "computed": 1, "batches": 1}


@pytest.mark.asyncio
async def test_vectors_of_other_sources_are_not_reused(store, add_source, embeddings) -> None:
    await add_source("src-1")
    await add_source("src-2")
    await store.replace_chunks(
        "src-1",
        [
            Chunk(
                id="chunk-a",
                org_id="org-1",
                pocket_id="pocket-1",
                source_id="src-1",
                idx=0,
                text="shared text",
                content_hash=content_hash("shared text"),
                embedding=[1.0] * embeddings.dim,
            )
        ],
    )

    _, stats = await EmbeddingDeduplicator(store, embeddings).embed_for_source("src-2", ["shared text"])

    assert stats.reused == 0
    assert embeddings.texts_embedded == 1


@pytest.mark.asyncio
async def test_batches_are_sequential_and_bounded(store, add_source, embeddings) -> None:
    await add_source("src-1")
    texts = [f"text number {idx}" for idx in range(7)]

    results, stats = await EmbeddingDeduplicator(store, embeddings, batch_size=3).embed_for_source("src-1", texts)

    assert [len(batch) for batch in embeddings.calls] == [3, 3, 1]
    assert [item.text for item in results] == texts
    assert stats.batches == 3


@pytest.mark.asyncio
async def test_vector_count_mismatch_fails(store, add_source) -> None:
    await add_source("src-1")
    deduplicator = EmbeddingDeduplicator(store, ShortChangingEmbeddings())
    with pytest.raises(EmbeddingServiceError):
        await deduplicator.embed_for_source("src-1", ["one", "two"])
    with pytest.raises(EmbeddingServiceError):
        await embed_all(ShortChangingEmbeddings(), ["one"])


@pytest.mark.asyncio
async def test_embed_all_embeds_everything(embeddings) -> None:
    results = await embed_all(embeddings, ["a", "b", "c"], batch_size=2)
    assert [item.text for item in results] == ["a", "b", "c"]
    assert embeddings.calls == [["a", "b"], ["c"]]
    assert results[0].content_hash == content_hash("a")


@pytest.mark.asyncio
async def test_duplicates_across_batches_are_embedded_once(store, add_source, embeddings) -> None:
    await add_source("src-1")
    texts = ["same text", "a", "b", "same text"]

    results, stats = await EmbeddingDeduplicator(store, embeddings, batch_size=2).embed_for_source("src-1", texts)

    assert embeddings.calls == [["same text", "a"], ["b"]]
    assert embeddings.texts_embedded == 3
    assert results[3].vector == results[0].vector
    assert not results[3].reused
    assert stats.to_dict() == {"reused": 0, "computed": 3, "batches": 2}
