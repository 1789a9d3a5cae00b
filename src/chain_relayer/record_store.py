"""
In-memory ledger of relay records.

Records are keyed by source transaction hash and are never removed while
the relayer instance lives; the metrics snapshot is derived from them.
"""

from collections.abc import Iterator

from .models import MetricsSnapshot, RelayOutcome, RelayRecord


class RelayRecordStore:
    """Keyed collection of relay records, one per source transaction."""

    def __init__(self) -> None:
        self._records: dict[str, RelayRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[RelayRecord]:
        return iter(list(self._records.values()))

    def __contains__(self, source_hash: object) -> bool:
        return source_hash in self._records

    def get(self, source_hash: str) -> RelayRecord | None:
        return self._records.get(source_hash)

    def get_or_create(self, source_hash: str) -> tuple[RelayRecord, bool]:
        """
        Get the record for a source transaction, creating it on first sight.

        Returns:
            Tuple of (record, created)
        """
        if record := self._records.get(source_hash):
            return record, False
        record = self._records[source_hash] = RelayRecord(source_hash=source_hash)
        return record, True

    def by_outcome(self, outcome: RelayOutcome) -> list[RelayRecord]:
        return [record for record in self._records.values() if record.outcome is outcome]

    def snapshot(self, disconnections: int = 0) -> MetricsSnapshot:
        """
        Aggregate all records into a metrics snapshot.

        Args:
            disconnections: Disconnections observed on the endpoints

        Returns:
            MetricsSnapshot computed from the current records
        """
        successful = failed = pending = retries = retried_successes = retried_records = 0
        for record in self._records.values():
            match record.outcome:
                case RelayOutcome.SUCCESS:
                    successful += 1
                case RelayOutcome.PERMANENT_FAILURE:
                    failed += 1
                case RelayOutcome.PENDING:
                    pending += 1

            retries += max(record.attempts - 1, 0)
            if record.retried:
                retried_records += 1
                if record.outcome is RelayOutcome.SUCCESS:
                    retried_successes += 1

        return MetricsSnapshot(
            transactions=len(self._records),
            successful=successful,
            failed=failed,
            pending=pending,
            retries=retries,
            retried_successes=retried_successes,
            disconnections=disconnections,
            retried_records=retried_records,
        )
