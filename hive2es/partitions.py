"""
Partition enumeration and validation.

Discovered partitions are the source of truth: user-supplied partitions must
match one exactly, and discovered ones must be plain key=value pairs before
they are put into generated HQL.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from hive2es.config import VALID_PARTITION_KEY_CHARS, VALID_PARTITION_VALUE_CHARS
from hive2es.errors import ColumnNotFound, InvalidPartitionFormat, PartitionNotFound
from hive2es.utils import get_logger


PARTITION_RE = re.compile(
    rf"^([{VALID_PARTITION_KEY_CHARS}]+)=([{VALID_PARTITION_VALUE_CHARS}]+)$"
)


@dataclass(frozen=True)
class PartitionKeyValue:
    """A single Hive partition, identified by its 'key=value' string."""
    key: str
    value: str

    @classmethod
    def parse(cls, descriptor: str, table: str = "") -> "PartitionKeyValue":
        """
        Parse a 'key=value' descriptor.

        Raises:
            InvalidPartitionFormat: If the descriptor has other characters or shape
        """
        match = PARTITION_RE.match(descriptor)
        if not match:
            raise InvalidPartitionFormat(descriptor, table)
        return cls(key=match.group(1), value=match.group(2))

    @property
    def predicate(self) -> str:
        """HQL WHERE predicate selecting this partition."""
        return f"{self.key}='{self.value}'"

    def __str__(self) -> str:
        return f"{self.key}={self.value}"


class PartitionEnumerator:
    """
    Lists and validates the partitions of a Hive table.

    Args:
        provider: MetadataProvider used to list partitions
        logger: Logger instance
    """

    def __init__(self, provider, logger: Optional[logging.Logger] = None):
        self.provider = provider
        self.logger = logger or get_logger()

    def discover(self, db: str, table: str) -> List[str]:
        """
        List raw partition descriptors, empty for an unpartitioned table.

        Raises:
            DiscoveryError: If the partitions could not be listed
        """
        qualified = f"{db}.{table}"
        self.logger.info(f"getting Hive partitions for table {qualified} (this may take a minute)")
        found = [line.strip() for line in self.provider.list_partitions(db, table) if line.strip()]
        self.logger.info(
            f"{qualified} is {'' if found else 'not '}a partitioned table",
            extra={"event": "partitions_discovered", "metadata": {"count": len(found)}},
        )
        return found

    def select(
        self,
        discovered: Sequence[str],
        requested: Sequence[str],
        table: str,
    ) -> List[PartitionKeyValue]:
        """
        Pick the partitions to index.

        With requested partitions each must exactly match a discovered one and
        the requested order is kept. Without, every discovered partition is
        taken in discovery order and must be a valid key=value pair.

        Raises:
            PartitionNotFound: If a requested partition wasn't discovered
            InvalidPartitionFormat: If a descriptor isn't a plain key=value pair
        """
        if requested:
            known = set(discovered)
            for partition in requested:
                if partition not in known:
                    raise PartitionNotFound(partition, table)
            return [PartitionKeyValue.parse(p, table) for p in requested]

        return [PartitionKeyValue.parse(p, table) for p in discovered]


def check_partition_key(partition: PartitionKeyValue, column_names: Sequence[str], table: str) -> None:
    """
    Ensure the partition key is one of the table's columns.

    Raises:
        ColumnNotFound: If the key is not a known column
    """
    if partition.key not in column_names:
        raise ColumnNotFound(partition.key, table, column_names)
