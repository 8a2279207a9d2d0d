"""
Error classes for hive2es.

Errors fall into classes that decide how far a failure reaches:
- ConfigError: bad options, detected before any external call
- DiscoveryError: schema/partition lookup failed, nothing has been loaded yet
- InterruptedRun: user interrupt, stop attempting further partitions

Administrative Elasticsearch failures are not exceptions; they are reported
as AdminResult values by the index manager and only logged.
Load failures are non-zero Hive exit codes handled by the orchestrator.
"""

# Nagios style exit codes
EXIT_OK = 0
EXIT_WARNING = 1
EXIT_CRITICAL = 2
EXIT_UNKNOWN = 3


class Hive2EsError(Exception):
    """Base exception for hive2es."""
    pass


class ConfigError(Hive2EsError):
    """Invalid or conflicting options."""
    pass


class JarNotFound(ConfigError):
    """A jar required by the ES-Hadoop storage handler could not be found."""
    pass


class DiscoveryError(Hive2EsError):
    """
    Schema or partition discovery failed.

    Fatal for the whole run: there is nothing to retry since no data has
    been loaded yet.
    """
    pass


class SchemaNotFound(DiscoveryError):
    """No columns could be parsed for the table or view."""
    pass


class ColumnNotFound(DiscoveryError):
    """A requested column is not part of the table definition."""

    def __init__(self, column: str, table: str, valid_columns=None):
        self.column = column
        self.table = table
        self.valid_columns = list(valid_columns or [])
        message = f"column '{column}' was not found in the Hive definition for '{table}'"
        if self.valid_columns:
            message += "\n\nValid columns are:\n\n" + "\n".join(self.valid_columns)
        super().__init__(message)


class PartitionNotFound(DiscoveryError):
    """A requested partition does not exist in the table."""

    def __init__(self, partition: str, table: str):
        self.partition = partition
        self.table = table
        super().__init__(
            f"partition '{partition}' does not exist in list of available "
            f"partitions for Hive table {table}"
        )


class InvalidPartitionFormat(DiscoveryError):
    """A discovered partition descriptor is not a plain key=value pair."""

    def __init__(self, partition: str, table: str):
        self.partition = partition
        self.table = table
        super().__init__(
            f"invalid partition '{partition}' detected in Hive table {table} "
            "when attempting to iterate and index all partitions"
        )


class InterruptedRun(Hive2EsError):
    """The user interrupted the run (Control-C), no further partitions are attempted."""
    pass
