"""Unit tests for annotation_service/producer.py - task fan-out."""

from unittest.mock import MagicMock

import pytest

from annotation_service.messaging import decode_message
from annotation_service.messaging.broker import Topology
from annotation_service.producer import TaskProducer, build_tasks, chunk_text, iter_sources


class TestChunking:
    """Tests for chunk_text() / build_tasks()."""

    def test_groups_sentences(self, fake_backend):
        assert chunk_text("A. B. C.", fake_backend, 2) == ["A. B.", "C."]

    def test_single_chunk_when_small(self, fake_backend):
        assert chunk_text("Alice met Bob. Bob left.", fake_backend, 50) == ["Alice met Bob. Bob left."]

    def test_blank_text_gives_one_empty_chunk(self, fake_backend):
        assert chunk_text("  \n ", fake_backend, 5) == [""]

    def test_invalid_group_size(self, fake_backend):
        with pytest.raises(ValueError):
            chunk_text("A.", fake_backend, 0)

    def test_tasks_carry_chunk_metadata(self, fake_backend):
        tasks = build_tasks("A. B. C.", "book", fake_backend, 1)
        assert [t["id"] for t in tasks] == ["book-0", "book-1", "book-2"]
        assert all(t["task_id"] == "book" and t["total_chunks"] == 3 for t in tasks)
        assert [t["chunk_index"] for t in tasks] == [0, 1, 2]

    def test_tasks_decode_as_inbound(self, fake_backend):
        for task in build_tasks("Alice met Bob. Bob left.", "t", fake_backend, 1):
            assert decode_message(task, max_text_length=1000).task_id == "t"


class TestSources:
    """Tests for iter_sources()."""

    def test_single_file(self, tmp_path):
        path = tmp_path / "a.txt"
        path.write_text("Bob left.", encoding="utf-8")
        assert list(iter_sources(path)) == [(path, "Bob left.")]

    def test_directory_recursive_txt_only(self, tmp_path):
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "b.txt").write_text("B.", encoding="utf-8")
        (tmp_path / "a.txt").write_text("A.", encoding="utf-8")
        (tmp_path / "skip.md").write_text("no", encoding="utf-8")
        names = [p.name for p, _ in iter_sources(tmp_path)]
        assert sorted(names) == ["a.txt", "b.txt"]

    def test_missing_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            list(iter_sources(tmp_path / "nope.txt"))


class TestTaskProducer:
    """Tests for TaskProducer publishing (kombu Producer mocked)."""

    def test_publish_text(self, fake_backend, settings):
        producer = MagicMock()
        topology = Topology(settings.broker)
        count = TaskProducer(producer, topology, fake_backend, sentences_per_task=1).publish_text(
            "Alice met Bob. Bob left.", "story",
        )
        assert count == 2
        first_body = producer.publish.call_args_list[0].args[0]
        assert first_body == {
            "id": "story-0", "text": "Alice met Bob.",
            "task_id": "story", "chunk_index": 0, "total_chunks": 2,
        }
        kwargs = producer.publish.call_args.kwargs
        assert kwargs["routing_key"] == settings.broker.input_routing_key
        assert kwargs["serializer"] == "json"

    def test_publish_path(self, tmp_path, fake_backend, settings):
        (tmp_path / "one.txt").write_text("A. B.", encoding="utf-8")
        (tmp_path / "two.txt").write_text("C.", encoding="utf-8")
        producer = MagicMock()
        published = TaskProducer(
            producer, Topology(settings.broker), fake_backend, sentences_per_task=1,
        ).publish_path(tmp_path)
        assert sorted(published.values()) == [1, 2]
        assert all(task_id.startswith(("one-", "two-")) for task_id in published)
        assert producer.publish.call_count == 3
