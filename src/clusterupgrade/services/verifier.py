"""Read/write verifier: seeds durability probes and checks them after restarts."""

from typing import Iterable, Optional

from clusterupgrade.errors import HarnessError, VerificationMismatchError, WriteError
from clusterupgrade.errors_catalog import actionable_error
from clusterupgrade.models import KeyValueRecord


class ReadWriteVerifier:
    def __init__(self, client, logger):
        self.client = client
        self.logger = logger

    def seed(self, records: Iterable[KeyValueRecord]):
        count = 0
        for record in records:
            try:
                self.client.put(record.key, record.value)
            except HarnessError as exc:
                raise WriteError(
                    actionable_error("write_failed", key=record.key, error=str(exc)),
                    key=record.key,
                ) from exc
            count += 1
        self.logger.info("Seeded %s records", count)

    def verify(self, records: Iterable[KeyValueRecord], node_index: Optional[int] = None):
        """Reads every record back; ``node_index`` names the restart being checked."""
        after = f" after restarting node {node_index}" if node_index is not None else ""
        count = 0
        for record in records:
            try:
                actual = self.client.get(record.key)
            except HarnessError as exc:
                raise VerificationMismatchError(
                    f"Could not read key {record.key!r}{after}: {exc}",
                    key=record.key,
                    expected=record.value,
                    actual=None,
                    node_index=node_index,
                ) from exc

            if actual != record.value:
                raise VerificationMismatchError(
                    actionable_error(
                        "value_mismatch",
                        key=record.key,
                        actual=actual,
                        expected=record.value,
                        after=after,
                    ),
                    key=record.key,
                    expected=record.value,
                    actual=actual,
                    node_index=node_index,
                )
            count += 1
        self.logger.info("Verified %s records%s", count, after)
