"""Unit tests for the relay record store and data models."""

import pytest

from chain_relayer.explorer import transaction_url, transaction_urls
from chain_relayer.models import (
    MetricsSnapshot,
    RelayOutcome,
    RelayRecord,
    SubmissionRequest,
    TransactionStatus,
)
from chain_relayer.record_store import RelayRecordStore


def finished_record(source_hash: str, outcome: RelayOutcome, attempts: int) -> RelayRecord:
    record = RelayRecord(source_hash=source_hash)
    for _ in range(attempts):
        record.begin_attempt()
    if outcome is RelayOutcome.SUCCESS:
        record.mark_success("0xtarget", 21_000, {})
    elif outcome is RelayOutcome.PERMANENT_FAILURE:
        record.mark_permanent_failure("boom")
    return record


class TestRelayRecordStore:
    """Tests for record keeping."""

    def test_get_or_create_is_keyed_by_source_hash(self):
        store = RelayRecordStore()

        first, created = store.get_or_create("0xaa")
        again, created_again = store.get_or_create("0xaa")

        assert created is True
        assert created_again is False
        assert first is again
        assert len(store) == 1
        assert "0xaa" in store
        assert store.get("0xbb") is None

    def test_by_outcome(self):
        store = RelayRecordStore()
        for source_hash, outcome in [("0x1", RelayOutcome.SUCCESS), ("0x2", RelayOutcome.PERMANENT_FAILURE)]:
            record, _ = store.get_or_create(source_hash)
            record.begin_attempt()
            if outcome is RelayOutcome.SUCCESS:
                record.mark_success("0xt", 1, {})
            else:
                record.mark_permanent_failure("nope")

        assert [r.source_hash for r in store.by_outcome(RelayOutcome.PERMANENT_FAILURE)] == ["0x2"]
        assert [r.source_hash for r in store.by_outcome(RelayOutcome.SUCCESS)] == ["0x1"]
        assert store.by_outcome(RelayOutcome.PENDING) == []

    def test_snapshot_counts(self):
        """Retry success counts only successful records that needed more than one attempt."""
        store = RelayRecordStore()
        store._records = {
            "0x1": finished_record("0x1", RelayOutcome.SUCCESS, 1),
            "0x2": finished_record("0x2", RelayOutcome.SUCCESS, 2),
            "0x3": finished_record("0x3", RelayOutcome.PERMANENT_FAILURE, 3),
            "0x4": finished_record("0x4", RelayOutcome.PENDING, 1),
        }

        snapshot = store.snapshot(disconnections=2)

        assert snapshot.transactions == 4
        assert snapshot.successful == 2
        assert snapshot.failed == 1
        assert snapshot.pending == 1
        assert snapshot.retries == 3
        assert snapshot.retried_successes == 1
        assert snapshot.retried_records == 2
        assert snapshot.disconnections == 2
        assert snapshot.success_rate == 50.0
        assert snapshot.retry_success_rate == 50.0

    def test_empty_snapshot(self):
        snapshot = RelayRecordStore().snapshot()

        assert snapshot.transactions == 0
        assert snapshot.success_rate == 0.0
        assert snapshot.retry_success_rate is None
        assert snapshot.to_dict()["retry_success_rate"] == "N/A"


class TestModels:
    """Tests for model invariants."""

    def test_relay_record_lifecycle(self):
        record = RelayRecord(source_hash="0xaa")

        assert record.begin_attempt() == 1
        record.mark_failed_attempt("reverted", target_hash="0xbad")
        assert not record.is_final
        assert record.target_hash == "0xbad"

        assert record.begin_attempt() == 2
        record.mark_success("0xgood", 21_000, {"etherscan": "https://etherscan.io/tx/0xgood"})

        assert record.outcome is RelayOutcome.SUCCESS
        assert record.retried
        assert record.error is None
        assert record.completed_at is not None
        assert record.to_dict()["outcome"] == "success"

    def test_permanent_failure_serializes(self):
        record = RelayRecord(source_hash="0xaa")
        record.begin_attempt()
        record.mark_permanent_failure("GasCeilingExceeded: too expensive")

        assert record.to_dict()["outcome"] == "permanentFailure"
        assert record.is_final

    def test_transaction_settles_once(self, source_tx):
        source_tx.status = TransactionStatus.PENDING

        source_tx.settle(TransactionStatus.CONFIRMED, 5)

        assert source_tx.block_number == 5
        with pytest.raises(ValueError):
            source_tx.settle(TransactionStatus.FAILED, 6)

    def test_submission_request_drops_source_fields(self, source_tx):
        request = SubmissionRequest.from_transaction(source_tx)
        params = request.to_tx_params()

        assert "nonce" not in params
        assert "chainId" not in params
        assert params["to"] == "0x" + "2" * 40
        assert params["value"] == source_tx.value
        assert params["gas"] == source_tx.gas_limit

    def test_snapshot_to_dict_formats_rates(self):
        snapshot = MetricsSnapshot(
            transactions=3, successful=2, failed=1, pending=0,
            retries=1, retried_successes=1, disconnections=0, retried_records=1,
        )

        data = snapshot.to_dict()

        assert data["success_rate"] == "66.67%"
        assert data["retry_success_rate"] == "100.00%"


class TestExplorerLinks:
    """Tests for explorer URL generation."""

    def test_one_link_per_explorer(self):
        urls = transaction_urls("0xabc", {
            "blockscout": "https://blockscout.defi-oracle.io/",
            "quorum": "https://explorer.defi-oracle.io",
        })

        assert urls == {
            "blockscout": "https://blockscout.defi-oracle.io/tx/0xabc",
            "quorum": "https://explorer.defi-oracle.io/tx/0xabc",
        }

    def test_single_url(self):
        assert transaction_url("https://etherscan.io", "0x1") == "https://etherscan.io/tx/0x1"
        assert transaction_urls("0x1", {}) == {}
