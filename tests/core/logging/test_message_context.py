"""Tests for broker delivery logging context."""

import pytest

from core.logging.message_context import (
    MessageLogContext,
    clear_message_context,
    get_message_context,
    set_message_context,
)


@pytest.fixture(autouse=True)
def reset_message_context():
    """Reset message context before each test."""
    clear_message_context()
    yield
    clear_message_context()


class TestSetMessageContext:
    def test_defaults(self):
        assert get_message_context() == {
            "message_queue": "",
            "message_delivery_tag": -1,
            "message_redelivered": False,
        }

    def test_sets_all_fields(self):
        set_message_context(queue="maxwell_consumer", delivery_tag=7, redelivered=True, message_id="m-1")
        assert get_message_context() == {
            "message_queue": "maxwell_consumer",
            "message_delivery_tag": 7,
            "message_redelivered": True,
            "message_id": "m-1",
        }

    def test_message_id_omitted_when_unset(self):
        set_message_context(queue="q", delivery_tag=1)
        assert "message_id" not in get_message_context()

    def test_partial_update(self):
        set_message_context(queue="q", delivery_tag=1)
        set_message_context(delivery_tag=2)
        context = get_message_context()
        assert context["message_queue"] == "q"
        assert context["message_delivery_tag"] == 2

    def test_clear(self):
        set_message_context(queue="q", delivery_tag=1, redelivered=True, message_id="m")
        clear_message_context()
        assert get_message_context()["message_queue"] == ""
        assert get_message_context()["message_delivery_tag"] == -1


class TestMessageLogContext:
    def test_sets_context_inside_block(self):
        with MessageLogContext(queue="q", delivery_tag=3, redelivered=False):
            context = get_message_context()
            assert context["message_queue"] == "q"
            assert context["message_delivery_tag"] == 3

    def test_restores_previous_context(self):
        set_message_context(queue="outer", delivery_tag=1)
        with MessageLogContext(queue="inner", delivery_tag=2, message_id="m-2"):
            assert get_message_context()["message_queue"] == "inner"
        context = get_message_context()
        assert context["message_queue"] == "outer"
        assert context["message_delivery_tag"] == 1
        assert "message_id" not in context

    def test_restores_on_exception(self):
        with pytest.raises(RuntimeError):
            with MessageLogContext(queue="q", delivery_tag=9):
                raise RuntimeError("boom")
        assert get_message_context()["message_queue"] == ""

    def test_none_values_keep_outer_values(self):
        set_message_context(queue="outer")
        with MessageLogContext(delivery_tag=5):
            assert get_message_context()["message_queue"] == "outer"
