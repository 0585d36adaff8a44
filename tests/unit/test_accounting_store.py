from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from sheets_etl.etl.types import Watermark


@dataclass(frozen=True)
class Job:
    document_id: str
    sub_table_name: str


class TestEnsureSchema:
    def test_is_idempotent_and_keeps_data(self, store):
        store.mark_document_seen("D1", "2024-01-01T00:00:00Z", "Doc 1")
        store.ensure_schema()
        store.ensure_schema()
        assert store.get_document("D1").name == "Doc 1"


class TestMarkDocumentSeen:
    def test_insert_then_update(self, store):
        store.mark_document_seen("D1", "2024-01-01T00:00:00Z", "Viejo")
        first = store.get_document("D1")
        store.mark_document_seen("D1", "2024-01-02T00:00:00Z", "Nuevo")
        second = store.get_document("D1")

        assert second.remote_modified == "2024-01-02T00:00:00Z"
        assert second.name == "Nuevo"
        assert second.last_seen > first.last_seen

    def test_unknown_document_is_none(self, store):
        assert store.get_document("nada") is None


class TestGreatestSeenModified:
    def test_empty_store(self, store):
        assert store.greatest_seen_modified() is None

    def test_ties_broken_by_id(self, store):
        store.mark_document_seen("B", "2024-01-01T00:00:00Z")
        store.mark_document_seen("A", "2024-01-01T00:00:00Z")
        assert store.greatest_seen_modified() == Watermark("2024-01-01T00:00:00Z", "B")

    def test_watermark_is_monotonic(self, store):
        """
        Verifica que el cursor nunca retrocede y termina siendo el máximo
        (modifiedTime, id) registrado.
        """
        sequence = [
            ("D3", "2024-01-02T00:00:00Z"),
            ("D1", "2024-01-01T00:00:00Z"),
            ("D9", "2024-01-02T00:00:00Z"),
            ("D2", "2023-12-31T23:59:59Z"),
            ("D4", "2024-01-03T10:00:00.000Z"),
            ("D0", "2024-01-03T10:00:00.000Z"),
        ]
        previous = None
        for document_id, modified in sequence:
            store.mark_document_seen(document_id, modified)
            current = store.greatest_seen_modified()
            if previous is not None:
                assert current >= previous
            previous = current

        expected = max(Watermark(m, d) for d, m in sequence)
        assert store.greatest_seen_modified() == expected


class TestOldestSeenDocument:
    def test_empty_store(self, store):
        assert store.oldest_seen_document() is None

    def test_returns_smallest_last_seen(self, store):
        store.mark_document_seen("A", "2024-01-01T00:00:00Z")
        store.mark_document_seen("B", "2024-01-01T00:00:00Z")
        assert store.oldest_seen_document() == "A"

        store.mark_document_seen("A", "2024-01-01T00:00:00Z")
        assert store.oldest_seen_document() == "B"


class TestDocumentsNotSeenSince:
    def test_stale_documents_ordered_by_id(self, store, clock):
        store.mark_document_seen("Z", "2024-01-01T00:00:00Z")
        store.mark_document_seen("M", "2024-01-01T00:00:00Z")
        cutoff = clock.current
        store.mark_document_seen("A", "2024-01-01T00:00:00Z")

        assert store.documents_not_seen_since(cutoff + (clock.current - cutoff) / 2) == ["M", "Z"]
        assert store.documents_not_seen_since(datetime(2000, 1, 1, tzinfo=timezone.utc)) == []
        assert store.documents_not_seen_since(datetime(2100, 1, 1, tzinfo=timezone.utc), limit=2) == ["A", "M"]


class TestKnownDocumentIds:
    def test_known_subset(self, store):
        store.mark_document_seen("D1", "2024-01-01T00:00:00Z")
        assert store.known_document_ids(["D1", "D2", "D1"]) == {"D1"}

    def test_empty_input(self, store):
        assert store.known_document_ids([]) == set()

    def test_more_ids_than_bound_parameters(self, store, sqlite_agent):
        ids = [f"D{i}" for i in range(sqlite_agent.max_parameters + 10)]
        store.mark_document_seen(ids[-1], "2024-01-01T00:00:00Z")
        assert store.known_document_ids(ids) == {ids[-1]}


class TestFilterExtractable:
    def test_empty_candidates(self, store):
        assert store.filter_extractable([]) == []

    def test_new_job_then_loaded(self, store):
        """
        Verifica el escenario base: un documento visto sin job es extraíble;
        tras cargarlo con el mismo modifiedTime deja de serlo.
        """
        store.mark_document_seen("D1", "2024-01-01T00:00:00Z", "Doc 1")
        job = Job("D1", "Sheet1")
        assert store.filter_extractable([job]) == [job]

        store.commit_load("D1", "Sheet1", "people", ["name"], [["Ana"]], "h1")
        assert store.filter_extractable([job]) == []

    def test_modified_document_is_extractable_again(self, store):
        store.mark_document_seen("D1", "2024-01-01T00:00:00Z")
        store.commit_load("D1", "Sheet1", "people", ["name"], [["Ana"]], "h1")
        store.mark_document_seen("D1", "2024-01-02T00:00:00Z")
        assert store.filter_extractable([Job("D1", "Sheet1")]) == [Job("D1", "Sheet1")]

    def test_unknown_documents_are_skipped(self, store):
        assert store.filter_extractable([Job("nunca-visto", "Sheet1")]) == []

    def test_preserves_order_and_only_matching_sheet(self, store):
        store.mark_document_seen("D1", "2024-01-01T00:00:00Z")
        store.mark_document_seen("D2", "2024-01-01T00:00:00Z")
        store.commit_load("D1", "Cargada", "t1", ["a"], [["x"]], "h1")

        jobs = [Job("D2", "S"), Job("D1", "Cargada"), Job("D1", "Otra"), Job("D3", "S")]
        assert store.filter_extractable(jobs) == [Job("D2", "S"), Job("D1", "Otra")]

    def test_issues_one_query_per_batch(self, store, sqlite_agent, monkeypatch):
        calls = []
        original = sqlite_agent.load_states

        def counting(document_ids):
            calls.append(list(document_ids))
            return original(document_ids)

        monkeypatch.setattr(sqlite_agent, "load_states", counting)
        store.mark_document_seen("D1", "2024-01-01T00:00:00Z")
        store.filter_extractable([Job("D1", f"S{i}") for i in range(50)])
        assert len(calls) == 1


class TestGetJob:
    def test_reports_target_table(self, store):
        store.mark_document_seen("D1", "2024-01-01T00:00:00Z")
        store.commit_load("D1", "Sheet1", "people", ["name"], [["Ana"]], "h1")
        job = store.get_job("D1", "Sheet1")
        assert job.target_table == "people"
        assert job.loaded_modified == "2024-01-01T00:00:00Z"
        assert job.content_fingerprint == "h1"
        assert store.get_job("D1", "Otra") is None
