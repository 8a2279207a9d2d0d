"""
Schema resolution for the source table or view.

Parses 'describe' output into ordered column definitions and validates the
user-requested columns against them.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from hive2es.errors import ColumnNotFound, SchemaNotFound
from hive2es.utils import get_logger


# 'describe' lists partition columns a second time under this section, and
# views append a detailed information section; stop parsing at either
SECTION_MARKER_RE = re.compile(r"Partition Information|# Detailed Table Information", re.IGNORECASE)
COLUMN_LINE_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s+([A-Za-z]+)\s*$")


@dataclass(frozen=True)
class ColumnDefinition:
    """A single column name and its Hive type."""
    name: str
    type: str

    def declaration(self) -> str:
        """Field declaration line for the staging table."""
        return f"    {self.name:<20}  {self.type}"


def parse_describe_output(lines: Iterable[str]) -> List[ColumnDefinition]:
    """
    Parse Hive 'describe' output.

    Only lines that look like '<column_name> <type>' are taken, everything
    from the first section marker on is ignored. Duplicate names keep their
    first-seen position and type.

    Args:
        lines: Output lines of 'describe db.table'

    Returns:
        Ordered list of ColumnDefinition
    """
    columns: List[ColumnDefinition] = []
    seen = set()
    for line in lines:
        if SECTION_MARKER_RE.search(line):
            break
        match = COLUMN_LINE_RE.match(line)
        if not match:
            continue
        name, col_type = match.group(1), match.group(2)
        if name in seen:
            continue
        seen.add(name)
        columns.append(ColumnDefinition(name=name, type=col_type))
    return columns


class SchemaResolver:
    """
    Resolves the columns to index for a table or view.

    Args:
        provider: MetadataProvider used to describe the relation
        logger: Logger instance
    """

    def __init__(self, provider, logger: Optional[logging.Logger] = None):
        self.provider = provider
        self.logger = logger or get_logger()
        self.discovered: List[ColumnDefinition] = []

    def resolve(
        self,
        db: str,
        table: str,
        view: Optional[str] = None,
        requested: Sequence[str] = (),
    ) -> List[ColumnDefinition]:
        """
        Resolve the ordered list of columns to index.

        Without requested columns every discovered column is indexed. With
        requested columns and no view, each one must exist in the table
        definition. With a view that check is skipped: a view may generate or
        rename columns the table definition doesn't show, so a mismatch only
        surfaces when the Hive job fails.

        Raises:
            SchemaNotFound: If no columns could be parsed
            ColumnNotFound: If a requested column is missing or has no known type
        """
        relation = view or table
        kind = "view" if view else "table"
        qualified = f"{db}.{relation}"

        self.logger.info(
            f"checking columns in {kind} {qualified} (this may take a minute)",
            extra={"event": "describe_started", "metadata": {"relation": qualified}},
        )
        discovered = self.provider.describe_columns(db, relation)
        if not discovered:
            raise SchemaNotFound(f"found no columns for {qualified} - does {kind} exist?")
        self.discovered = list(discovered)

        by_name = {c.name: c for c in discovered}
        discovered_names = [c.name for c in discovered]

        if not requested:
            self.logger.info("no columns specified, will index all columns to Elasticsearch")
            self.logger.debug("auto-determined columns as follows:\n" + "\n".join(discovered_names))
            return list(discovered)

        if not view:
            self.logger.info(f"validating requested columns against {kind} definition")
            for column in requested:
                if column not in by_name:
                    raise ColumnNotFound(column, qualified, discovered_names)

        resolved = []
        for column in requested:
            if column not in by_name:
                # only reachable via a view
                raise ColumnNotFound(column, qualified, discovered_names)
            resolved.append(by_name[column])
        return resolved
