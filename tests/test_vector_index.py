"""Tests for the in-memory vector index."""

import threading

import numpy as np
import pytest

from conftest import make_chunk
from ragchat.core.errors import ConfigurationError, EmptyIndexError
from ragchat.core.models.document import IndexStatistics
from ragchat.infrastructure.vector_stores.memory_store import (
    InMemoryVectorIndex,
    cosine_similarities,
    cosine_similarity,
)


class TestCosineSimilarity:

    def test_symmetric(self):
        a = np.array([1.0, 2.0, 3.0])
        b = np.array([-2.0, 0.5, 4.0])
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))

    def test_self_similarity_is_one(self):
        a = np.array([0.3, -1.2, 5.0])
        assert cosine_similarity(a, a) == pytest.approx(1.0)

    def test_opposite_vectors(self):
        a = np.array([1.0, 1.0])
        assert cosine_similarity(a, -a) == pytest.approx(-1.0)

    def test_zero_vector_scores_zero(self):
        assert cosine_similarity(np.zeros(3), np.array([1.0, 0.0, 0.0])) == 0.0
        assert cosine_similarity(np.zeros(3), np.zeros(3)) == 0.0

    def test_always_in_range(self):
        rng = np.random.default_rng(7)
        for _ in range(50):
            a, b = rng.normal(size=8), rng.normal(size=8)
            assert -1.0 <= cosine_similarity(a, b) <= 1.0

    def test_matrix_version_matches_pairwise(self):
        rng = np.random.default_rng(3)
        matrix = rng.normal(size=(5, 4))
        matrix[2] = 0.0
        query = rng.normal(size=4)
        sims = cosine_similarities(query, matrix)
        for row, sim in zip(matrix, sims):
            assert sim == pytest.approx(cosine_similarity(query, row))


def unit(*values: float) -> np.ndarray:
    return np.array(values, dtype=np.float64)


@pytest.fixture
def index() -> InMemoryVectorIndex:
    idx = InMemoryVectorIndex()
    idx.insert(make_chunk("north", "docs/a.md"), unit(1.0, 0.0))
    idx.insert(make_chunk("north-east", "docs/b.md"), unit(1.0, 1.0))
    idx.insert(make_chunk("east", "docs/c.md"), unit(0.0, 1.0))
    idx.insert(make_chunk("south", "docs/c.md", chunk_index=1), unit(-1.0, 0.0))
    return idx


class TestQuery:

    def test_empty_index_raises(self):
        with pytest.raises(EmptyIndexError):
            InMemoryVectorIndex().query(unit(1.0, 0.0), k=3)

    def test_rejects_non_positive_k(self, index):
        with pytest.raises(ConfigurationError):
            index.query(unit(1.0, 0.0), k=0)

    def test_sorted_descending(self, index):
        hits = index.query(unit(1.0, 0.0), k=4)
        sims = [s for _, s in hits]
        assert sims == sorted(sims, reverse=True)
        assert [c.content for c, _ in hits] == ["north", "north-east", "east", "south"]
        assert sims[0] == pytest.approx(1.0)
        assert sims[-1] == pytest.approx(-1.0)

    def test_k_limits_results(self, index):
        assert len(index.query(unit(1.0, 0.0), k=2)) == 2

    def test_k_larger_than_index(self, index):
        assert len(index.query(unit(1.0, 0.0), k=50)) == 4

    def test_ties_keep_insertion_order(self):
        idx = InMemoryVectorIndex()
        for name in ("first", "second", "third"):
            idx.insert(make_chunk(name), unit(1.0, 0.0))
        idx.insert(make_chunk("other"), unit(0.0, 1.0))

        hits = idx.query(unit(1.0, 0.0), k=2)
        assert [c.content for c, _ in hits] == ["first", "second"]

    def test_zero_query_scores_zero(self, index):
        hits = index.query(unit(0.0, 0.0), k=4)
        assert all(s == 0.0 for _, s in hits)

    def test_dimension_mismatch(self, index):
        with pytest.raises(ConfigurationError):
            index.query(unit(1.0, 0.0, 0.0), k=1)
        with pytest.raises(ConfigurationError):
            index.insert(make_chunk("bad"), unit(1.0, 2.0, 3.0))


class TestMutation:

    def test_insert_same_id_replaces(self):
        idx = InMemoryVectorIndex()
        chunk = make_chunk("old", chunk_id="fixed")
        idx.insert(chunk, unit(1.0, 0.0))
        idx.insert(make_chunk("new", chunk_id="fixed"), unit(0.0, 1.0))

        assert idx.count() == 1
        hits = idx.query(unit(0.0, 1.0), k=1)
        assert hits[0][0].content == "new"
        assert hits[0][1] == pytest.approx(1.0)
        assert idx.statistics().total_chunks == 1

    def test_bulk_load_and_statistics(self):
        idx = InMemoryVectorIndex()
        items = [
            (make_chunk(f"chunk {i}", f"docs/file{i % 3}.md", chunk_index=i), unit(float(i), 1.0))
            for i in range(10)
        ]
        assert idx.bulk_load(items) == 10
        assert idx.count() == 10

        stats = idx.statistics()
        assert stats.total_chunks == 10
        assert stats.total_documents == 3
        assert sorted(stats.indexed_files) == ["docs/file0.md", "docs/file1.md", "docs/file2.md"]

    def test_bulk_load_grows_past_initial_capacity(self):
        idx = InMemoryVectorIndex()
        items = [(make_chunk(f"c{i}"), unit(1.0, float(i))) for i in range(200)]
        idx.bulk_load(items)
        assert idx.count() == 200
        hits = idx.query(unit(1.0, 0.0), k=1)
        assert hits[0][0].content == "c0"

    def test_bulk_load_empty(self):
        idx = InMemoryVectorIndex()
        assert idx.bulk_load([]) == 0
        assert idx.count() == 0

    def test_remove_file(self, index):
        assert index.remove_file("docs/c.md") == 2
        assert index.count() == 2
        assert all(c.file_path != "docs/c.md" for c in index.chunks())
        hits = index.query(unit(0.0, 1.0), k=4)
        assert [c.content for c, _ in hits] == ["north-east", "north"]

    def test_remove_unknown_file(self, index):
        assert index.remove_file("docs/missing.md") == 0
        assert index.count() == 4

    def test_clear_resets_everything(self, index):
        index.record_failure("docs/broken.pdf")
        index.record_processing_time(1.5)
        index.clear()

        assert index.count() == 0
        stats = index.statistics()
        assert stats.total_chunks == 0
        assert stats.total_documents == 0
        assert stats.failed_files == []
        assert stats.processing_time == 0.0
        with pytest.raises(EmptyIndexError):
            index.query(unit(1.0, 0.0), k=1)

    def test_statistics_is_a_copy(self, index):
        stats = index.statistics()
        stats.add_failure("tampered")
        assert index.statistics().failed_files == []

    def test_entries_snapshot(self, index):
        chunks, vectors = index.entries()
        assert len(chunks) == 4
        assert vectors.shape == (4, 2)
        vectors[:] = 0.0
        assert index.query(unit(1.0, 0.0), k=1)[0][1] == pytest.approx(1.0)

    def test_replace_file(self, index):
        new = [
            (make_chunk("east v2", "docs/c.md"), unit(0.0, 1.0)),
            (make_chunk("west v2", "docs/c.md", chunk_index=1), unit(-1.0, 0.0)),
            (make_chunk("up v2", "docs/c.md", chunk_index=2), unit(0.5, 0.5)),
        ]
        assert index.replace_file("docs/c.md", new) == 3

        contents = sorted(c.content for c in index.chunks() if c.file_path == "docs/c.md")
        assert contents == ["east v2", "up v2", "west v2"]
        assert index.count() == 5
        assert index.statistics().total_documents == 3

    def test_replace_file_bad_vector_keeps_old_chunks(self, index):
        with pytest.raises(ConfigurationError):
            index.replace_file(
                "docs/c.md",
                [
                    (make_chunk("ok", "docs/c.md"), unit(1.0, 0.0)),
                    (make_chunk("bad", "docs/c.md", chunk_index=1), unit(1.0, 0.0, 0.0)),
                ],
            )
        contents = sorted(c.content for c in index.chunks() if c.file_path == "docs/c.md")
        assert contents == ["east", "south"]

    def test_readers_never_see_a_file_half_replaced(self, index, monkeypatch):
        seen: list[int] = []
        readers: list[threading.Thread] = []
        remove = index._remove_locked

        def remove_then_read(file_path):
            # A reader arriving mid-replace must wait for the whole swap
            reader = threading.Thread(
                target=lambda: seen.append(
                    sum(c.file_path == "docs/c.md" for c in index.chunks())
                )
            )
            reader.start()
            readers.append(reader)
            return remove(file_path)

        monkeypatch.setattr(index, "_remove_locked", remove_then_read)
        index.replace_file("docs/c.md", [(make_chunk("east v2", "docs/c.md"), unit(0.0, 1.0))])
        for reader in readers:
            reader.join(timeout=5)

        assert seen == [1]

    def test_replace_all(self, index):
        saved = IndexStatistics(processing_time=2.5, failed_files=["docs/broken.pdf"])
        loaded = index.replace_all(
            [(make_chunk("only", "docs/z.md"), unit(0.0, 0.0, 1.0))], saved
        )

        assert loaded == 1
        assert [c.content for c in index.chunks()] == ["only"]
        assert index.dimension == 3
        stats = index.statistics()
        assert stats.total_documents == 1
        assert stats.processing_time == 2.5
        assert stats.failed_files == ["docs/broken.pdf"]

    def test_replace_all_rejects_mixed_dimensions(self, index):
        with pytest.raises(ConfigurationError):
            index.replace_all(
                [(make_chunk("a"), unit(1.0, 0.0)), (make_chunk("b"), unit(1.0, 0.0, 0.0))]
            )
        assert index.count() == 4


def test_concurrent_queries_during_bulk_load():
    idx = InMemoryVectorIndex()
    idx.insert(make_chunk("seed"), unit(1.0, 0.0))
    errors: list[Exception] = []

    def writer():
        for batch in range(20):
            idx.bulk_load(
                (make_chunk(f"b{batch}-{i}"), unit(1.0, float(i))) for i in range(25)
            )

    def reader():
        try:
            for _ in range(200):
                hits = idx.query(unit(1.0, 0.0), k=5)
                sims = [s for _, s in hits]
                assert sims == sorted(sims, reverse=True)
                # bulk loads land whole: seed plus a multiple of 25
                assert (idx.count() - 1) % 25 == 0
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=writer)] + [threading.Thread(target=reader) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert idx.count() == 1 + 20 * 25
