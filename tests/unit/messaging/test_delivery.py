"""Unit tests for annotation_service/messaging/delivery.py and redelivery.py."""

from unittest.mock import MagicMock

import pytest

from annotation_service.messaging import (
    Delivery,
    DeliveryAlreadySettled,
    Disposition,
    RedeliveryTracker,
    header_attempt,
)


class TestDelivery:
    """Tests for the settle-once acknowledgment scope."""

    def test_ack(self):
        message = MagicMock()
        delivery = Delivery(message, "d1")
        delivery.ack()
        message.ack.assert_called_once_with()
        assert delivery.disposition == Disposition.ACKED

    def test_retry_requeues(self):
        message = MagicMock()
        Delivery(message).retry()
        message.requeue.assert_called_once_with()

    def test_dead_letter_rejects_without_requeue(self):
        message = MagicMock()
        Delivery(message).dead_letter()
        message.reject.assert_called_once_with(requeue=False)

    def test_second_settle_raises(self):
        message = MagicMock()
        delivery = Delivery(message)
        delivery.ack()
        with pytest.raises(DeliveryAlreadySettled):
            delivery.dead_letter()
        message.reject.assert_not_called()

    def test_exception_in_scope_requeues(self):
        message = MagicMock()
        with pytest.raises(KeyError):
            with Delivery(message) as delivery:
                raise KeyError("boom")
        assert delivery.disposition == Disposition.REQUEUED
        message.requeue.assert_called_once_with()

    def test_exception_after_settle_keeps_disposition(self):
        message = MagicMock()
        with pytest.raises(KeyError):
            with Delivery(message) as delivery:
                delivery.ack()
                raise KeyError("boom")
        message.requeue.assert_not_called()

    def test_clean_exit_leaves_open_delivery_open(self):
        with Delivery(MagicMock()) as delivery:
            pass
        assert not delivery.settled

    def test_abandon_skips_broker(self):
        message = MagicMock()
        delivery = Delivery(message)
        delivery.abandon()
        assert delivery.disposition == Disposition.ABANDONED
        message.requeue.assert_not_called()

    def test_metadata_accessors(self):
        message = MagicMock()
        message.headers = {"x-delivery-count": 2}
        message.delivery_info = {"redelivered": True}
        message.body = b"{}"
        delivery = Delivery(message)
        assert delivery.headers == {"x-delivery-count": 2}
        assert delivery.redelivered is True
        assert delivery.body == b"{}"


class TestRedelivery:
    """Tests for header_attempt() and RedeliveryTracker."""

    @pytest.mark.parametrize("headers,redelivered,expected", [
        (None, False, 1),
        ({}, True, 2),
        ({"x-delivery-count": 0}, False, 1),
        ({"x-delivery-count": 3}, True, 4),
        ({"x-delivery-count": "junk"}, False, 1),
    ])
    def test_header_attempt(self, headers, redelivered, expected):
        assert header_attempt(headers, redelivered) == expected

    def test_local_count_increments(self):
        tracker = RedeliveryTracker()
        assert [tracker.record("d1") for _ in range(3)] == [1, 2, 3]

    def test_header_wins_when_higher(self):
        tracker = RedeliveryTracker()
        assert tracker.record("d1", {"x-delivery-count": 4}) == 5
        assert tracker.record("d1") == 6

    def test_forget(self):
        tracker = RedeliveryTracker()
        tracker.record("d1")
        tracker.forget("d1")
        assert "d1" not in tracker
        assert tracker.record("d1") == 1

    def test_bounded(self):
        tracker = RedeliveryTracker(max_entries=2)
        for doc_id in ("a", "b", "c"):
            tracker.record(doc_id)
        assert len(tracker) == 2
        assert "a" not in tracker
