"""Tests for core.utils.worker_id module."""

from unittest.mock import patch

from core.utils.worker_id import generate_worker_id


class TestGenerateWorkerId:
    def test_slug_only_without_prefix(self):
        with patch("core.utils.worker_id.generate_slug", return_value="swift-blue-falcon") as slug:
            assert generate_worker_id() == "swift-blue-falcon"
        slug.assert_called_once_with(3)

    def test_prefix_prepended(self):
        with patch("core.utils.worker_id.generate_slug", return_value="swift-blue-falcon"):
            assert generate_worker_id("relay-consumer") == "relay-consumer-swift-blue-falcon"

    def test_empty_prefix_treated_as_no_prefix(self):
        worker_id = generate_worker_id("")
        assert not worker_id.startswith("-")

    def test_ids_differ_between_calls(self):
        ids = {generate_worker_id("relay-consumer") for _ in range(10)}
        assert len(ids) == 10
        assert all(worker_id.startswith("relay-consumer-") for worker_id in ids)
