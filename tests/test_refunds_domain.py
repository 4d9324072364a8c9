"""Tests for refund execution (storage mocked)."""

from contextlib import contextmanager
from unittest.mock import MagicMock, patch

import pytest

from stayza.domain.refunds import RefundNotFound, process_pending_refunds, process_refund
from stayza.errors import GatewayError


@contextmanager
def _fake_txn():
    yield MagicMock()


@pytest.fixture
def gateway():
    client = MagicMock()
    client.refund_payment.return_value = {"refund_id": "rfnd_1", "status": "processed"}
    return client


def _refund(**overrides) -> dict:
    refund = {
        "id": "f1",
        "reservation_id": "r1",
        "hotel_id": "hotel-1",
        "reason": "cancelled",
        "amount_minor": 612000,
        "gateway_payment_id": "pay_1",
        "status": "pending",
        "gateway_refund_id": None,
        "failure_reason": None,
        "processed_at": None,
    }
    refund.update(overrides)
    return refund


def _patched(refund):
    return (
        patch("stayza.domain.refunds.txn", _fake_txn),
        patch("stayza.domain.refunds.get_pending_refund", return_value=refund),
        patch("stayza.domain.refunds.mark_refund_processed"),
        patch("stayza.domain.refunds.mark_refund_failed"),
        patch("stayza.domain.refunds.set_payment_status"),
    )


class TestProcessRefund:
    def test_refunds_payment_and_marks_reservation(self, gateway):
        p_txn, p_get, p_done, p_failed, p_status = _patched(_refund())
        with p_txn, p_get, p_done as mock_done, p_failed as mock_failed, p_status as mock_status:
            result = process_refund("f1", gateway_client=gateway)

        assert result == {
            "status": "processed",
            "refund_id": "f1",
            "reservation_id": "r1",
            "gateway_refund_id": "rfnd_1",
        }
        gateway.refund_payment.assert_called_once_with(
            payment_id="pay_1",
            amount_minor=612000,
            idempotency_key="refund:f1",
            correlation_id=None,
        )
        assert mock_done.call_args.kwargs["gateway_refund_id"] == "rfnd_1"
        assert mock_status.call_args.kwargs == {"reservation_id": "r1", "payment_status": "REFUNDED"}
        mock_failed.assert_not_called()

    def test_gateway_failure_is_recorded(self, gateway):
        gateway.refund_payment.side_effect = GatewayError("Failed to refund payment")
        p_txn, p_get, p_done, p_failed, p_status = _patched(_refund())
        with p_txn, p_get, p_done as mock_done, p_failed as mock_failed, p_status as mock_status:
            result = process_refund("f1", gateway_client=gateway)

        assert result["status"] == "failed"
        assert result["failure_reason"] == "Failed to refund payment"
        assert mock_failed.call_args.kwargs == {
            "refund_id": "f1",
            "failure_reason": "Failed to refund payment",
        }
        mock_done.assert_not_called()
        mock_status.assert_not_called()

    def test_previously_failed_refund_is_retried(self, gateway):
        p_txn, p_get, p_done, p_failed, p_status = _patched(_refund(status="failed"))
        with p_txn, p_get, p_done, p_failed, p_status:
            result = process_refund("f1", gateway_client=gateway)

        assert result["status"] == "processed"
        gateway.refund_payment.assert_called_once()

    def test_processed_refund_is_not_sent_again(self, gateway):
        refund = _refund(status="processed", gateway_refund_id="rfnd_old")
        p_txn, p_get, p_done, p_failed, p_status = _patched(refund)
        with p_txn, p_get, p_done as mock_done, p_failed, p_status:
            result = process_refund("f1", gateway_client=gateway)

        assert result == {
            "status": "already_processed",
            "refund_id": "f1",
            "gateway_refund_id": "rfnd_old",
        }
        gateway.refund_payment.assert_not_called()
        mock_done.assert_not_called()

    def test_refund_without_payment_id_fails_without_gateway_call(self, gateway):
        p_txn, p_get, p_done, p_failed, p_status = _patched(_refund(gateway_payment_id=None))
        with p_txn, p_get, p_done, p_failed as mock_failed, p_status:
            result = process_refund("f1", gateway_client=gateway)

        assert result["status"] == "failed"
        gateway.refund_payment.assert_not_called()
        mock_failed.assert_called_once()

    def test_unknown_refund(self, gateway):
        p_txn, p_get, p_done, p_failed, p_status = _patched(None)
        with p_txn, p_get, p_done, p_failed, p_status:
            with pytest.raises(RefundNotFound):
                process_refund("missing", gateway_client=gateway)
        gateway.refund_payment.assert_not_called()


class TestProcessPendingRefunds:
    def test_counts_outcomes_and_isolates_errors(self, gateway):
        outcomes = {
            "f1": {"status": "processed"},
            "f2": {"status": "failed"},
            "f3": {"status": "already_processed"},
        }

        def fake_process(refund_id, **kwargs):
            if refund_id == "f4":
                raise RuntimeError("storage unavailable")
            return outcomes[refund_id]

        with patch("stayza.domain.refunds.txn", _fake_txn), patch(
            "stayza.domain.refunds.list_refund_ids_by_status",
            return_value=["f1", "f4", "f2", "f3"],
        ) as mock_list, patch(
            "stayza.domain.refunds.process_refund", side_effect=fake_process
        ) as mock_process:
            summary = process_pending_refunds(gateway_client=gateway, batch_size=10)

        assert summary == {"found": 4, "processed": 1, "failed": 2, "skipped": 1}
        assert mock_list.call_args.kwargs == {"status": "pending", "limit": 10}
        assert mock_process.call_count == 4
