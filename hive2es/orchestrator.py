"""
Partition indexing orchestrator for hive2es.

Drives one indexing run: discover partitions, then for each partition
resolve columns (once), prepare the index, run the Hive job and finish or
clean up the index depending on the job's exit code.

Per-partition states:

    NOT_STARTED -> COLUMNS_RESOLVED -> INDEX_PREPARED -> LOADING -> SUCCEEDED
                                    \\-> SKIPPED                  \\-> FAILED

A failed partition either aborts the run (interrupt, or stop_on_failure) or,
when the table has several partitions, waits out a cooldown before the next
one so an unattended multi-day run can ride out transient outages.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from elasticsearch import ApiError, TransportError

from hive2es.config import DEFAULT_FAILURE_COOLDOWN_SECONDS, IndexingConfig
from hive2es.errors import EXIT_CRITICAL, EXIT_OK, EXIT_UNKNOWN, InterruptedRun
from hive2es.index_manager import AdminResult, IndexManager
from hive2es.partitions import PartitionEnumerator, PartitionKeyValue, check_partition_key
from hive2es.query_builder import JarPaths, build_job_name, build_query
from hive2es.schema import ColumnDefinition, SchemaResolver
from hive2es.tools.base import INTERRUPT_EXIT_CODE, is_interrupt_exit
from hive2es.utils import Cooldown, format_elapsed, get_logger, print_banner


class PartitionState(str, Enum):
    NOT_STARTED = "not_started"
    COLUMNS_RESOLVED = "columns_resolved"
    INDEX_PREPARED = "index_prepared"
    LOADING = "loading"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class IndexTarget:
    """Physical index for one partition and the logical name it is served under."""

    base_name: str
    shards: int
    suffix: Optional[str] = None
    alias: Optional[str] = None
    replicas: int = 0
    refresh_interval: str = "-1"

    @property
    def name(self) -> str:
        if self.suffix:
            return f"{self.base_name}_{self.suffix}"
        return self.base_name

    @property
    def logical_name(self) -> str:
        return self.alias or self.base_name


@dataclass
class JobRun:
    """One Hive => Elasticsearch job execution."""

    table: str
    index: str
    exit_code: int
    elapsed_seconds: float
    view: Optional[str] = None
    partition: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    @property
    def interrupted(self) -> bool:
        return is_interrupt_exit(self.exit_code)


@dataclass
class PartitionResult:
    """Outcome of indexing one partition (or a whole unpartitioned table)."""

    index: str
    state: PartitionState = PartitionState.NOT_STARTED
    partition: Optional[str] = None
    job_run: Optional[JobRun] = None
    admin_results: List[AdminResult] = field(default_factory=list)
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.state in (PartitionState.SUCCEEDED, PartitionState.SKIPPED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "partition": self.partition,
            "index": self.index,
            "state": self.state.value,
            "exit_code": self.job_run.exit_code if self.job_run else None,
            "elapsed_seconds": self.job_run.elapsed_seconds if self.job_run else None,
            "admin_results": [r.to_dict() for r in self.admin_results],
            "error_message": self.error_message,
        }


@dataclass
class RunResult:
    """Result of a complete indexing run."""

    success: bool
    started_at: datetime
    ended_at: datetime
    duration_seconds: float
    partitions: List[PartitionResult] = field(default_factory=list)
    interrupted: bool = False
    stopped_on_failure: bool = False
    error_message: Optional[str] = None

    @property
    def failed_partitions(self) -> List[PartitionResult]:
        return [p for p in self.partitions if not p.success]

    @property
    def exit_code(self) -> int:
        if self.interrupted:
            return EXIT_UNKNOWN
        if not self.success:
            return EXIT_CRITICAL
        return EXIT_OK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "partitions": [p.to_dict() for p in self.partitions],
            "interrupted": self.interrupted,
            "stopped_on_failure": self.stopped_on_failure,
            "error_message": self.error_message,
        }


class PartitionIndexer:
    """
    Indexes a Hive table to Elasticsearch partition by partition.

    Args:
        config: Validated run configuration
        hive: Hive adapter, used as metadata provider and job runner
        index_manager: Elasticsearch index lifecycle operations
        jars: Jars added to each Hive job
        kerberos: Optional Kerberos adapter, renewed before every partition
        cooldown_seconds: Wait after a failed partition before the next one
        cooldown: Cancellable delay used for the cooldown
        confirm: Callback asked before indexing every partition of a table,
            returns False to abort
        logger: Logger instance
    """

    def __init__(
        self,
        config: IndexingConfig,
        hive,
        index_manager: IndexManager,
        jars: JarPaths,
        kerberos=None,
        cooldown_seconds: float = DEFAULT_FAILURE_COOLDOWN_SECONDS,
        cooldown: Optional[Cooldown] = None,
        confirm: Optional[Callable[[str], bool]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.hive = hive
        self.index_manager = index_manager
        self.jars = jars
        self.kerberos = kerberos
        self.cooldown_seconds = cooldown_seconds
        self.cooldown = cooldown or Cooldown()
        self.confirm = confirm
        self.logger = logger or get_logger()

        self.schema_resolver = SchemaResolver(hive, self.logger)
        self.partition_enumerator = PartitionEnumerator(hive, self.logger)

        self._columns: Optional[List[ColumnDefinition]] = None
        self._discovered_count = 0

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def plan(self) -> List[Optional[PartitionKeyValue]]:
        """
        Work out which partitions this run indexes.

        Returns:
            Partitions in processing order, [None] for an unpartitioned table

        Raises:
            DiscoveryError: If discovery or validation fails
            InterruptedRun: If the user declined the confirmation prompt
        """
        config = self.config
        discovered = self.partition_enumerator.discover(config.db, config.table)
        self._discovered_count = len(discovered)

        if config.partitions:
            return self.partition_enumerator.select(discovered, config.partitions, config.qualified_table)

        if not discovered:
            return [None]

        self.logger.info("partitioned table and no partitions specified, iterating on indexing all partitions")
        self._confirm(
            f"Are you sure you want to index all partitions of Hive table '{config.qualified_table}' "
            "to Elasticsearch? (this could be a *lot* of data to index and may take a very long time)"
        )
        if config.recreate_index:
            self.logger.info("index re-creation requested before indexing (clean index re-build)")
            self._confirm(
                "Are you sure you want to delete and re-create all Elasticsearch indices for all "
                f"partitions of Hive table '{config.qualified_table}'? (this will delete and re-index "
                "them one-by-one which could be a *lot* of data to re-index and may take a very long time)"
            )
        return self.partition_enumerator.select(discovered, [], config.qualified_table)

    def run(self) -> RunResult:
        """
        Run the whole indexing job.

        Discovery errors propagate; everything after discovery is recorded in
        the returned RunResult.
        """
        started_at = datetime.utcnow()
        start_time = time.time()
        config = self.config

        print_banner(f"Hive database '{config.db}' table '{config.table}' => Elasticsearch")
        self.logger.info(
            "Starting indexing run",
            extra={"event": "run_started", "metadata": {"table": config.qualified_table, "index": config.index}},
        )

        results: List[PartitionResult] = []
        interrupted = False
        stopped = False
        error_message = None

        try:
            partitions = self.plan()
            total = len(partitions)
            for position, partition in enumerate(partitions, start=1):
                if total > 1:
                    self.logger.info(f"partition {position}/{total}: {partition}")
                self._renew_ticket()

                result = self.index_partition(partition)
                results.append(result)
                if result.success:
                    continue

                if result.job_run is not None and result.job_run.interrupted:
                    raise InterruptedRun("Control-C detected, exiting without attempting further indices")
                if config.stop_on_failure:
                    self.logger.error("Stopping on failure", extra={"event": "stop_on_failure"})
                    stopped = True
                    error_message = result.error_message
                    break
                if self._discovered_count > 1 and position < total:
                    self._wait_after_failure()
        except (InterruptedRun, KeyboardInterrupt) as e:
            interrupted = True
            error_message = str(e) or "Control-C detected, exiting without attempting further indices"
            self.logger.error(error_message, extra={"event": "run_interrupted"})

        duration = time.time() - start_time
        failed = [r for r in results if not r.success]
        success = not interrupted and not stopped and not failed

        if success:
            self.logger.info(
                f"Finished: {len(results)} indexed in {format_elapsed(duration)}",
                extra={"event": "run_completed", "metadata": {"duration_seconds": duration}},
            )
        elif not interrupted:
            failed_names = [r.index for r in failed]
            error_message = error_message or f"failed indices: {', '.join(failed_names)}"
            self.logger.warning(
                f"Finished with failures: {', '.join(failed_names)}",
                extra={"event": "run_completed_with_failures", "metadata": {"failed": failed_names}},
            )

        return RunResult(
            success=success,
            started_at=started_at,
            ended_at=datetime.utcnow(),
            duration_seconds=duration,
            partitions=results,
            interrupted=interrupted,
            stopped_on_failure=stopped,
            error_message=error_message,
        )

    # ------------------------------------------------------------------
    # One partition
    # ------------------------------------------------------------------

    def target_for(self, partition: Optional[PartitionKeyValue]) -> IndexTarget:
        """Index target for a partition, suffixed when the table has several partitions."""
        # index names must be lowercase
        suffix = partition.value.lower() if partition is not None and self._discovered_count > 1 else None
        return IndexTarget(
            base_name=self.config.index,
            shards=self.config.shards,
            suffix=suffix,
            alias=self.config.alias,
        )

    def resolve_columns(self) -> List[ColumnDefinition]:
        """Resolve columns once per run."""
        if self._columns is None:
            config = self.config
            self._columns = self.schema_resolver.resolve(
                config.db, config.table, config.view, config.columns
            )
        return self._columns

    def index_partition(self, partition: Optional[PartitionKeyValue]) -> PartitionResult:
        """
        Index one partition, or the whole table when partition is None.

        Returns:
            PartitionResult, with the JobRun attached if the job ran

        Raises:
            DiscoveryError: If columns can't be resolved or the partition key isn't a column
        """
        config = self.config
        target = self.target_for(partition)
        label = str(partition) if partition is not None else None
        result = PartitionResult(index=target.name, partition=label)
        extra_partition = label or "-"

        self.logger.info(
            f"starting processing of table {config.qualified_table} "
            + (f"partition {label} " if label else "")
            + (f"(via view {config.db}.{config.view}) " if config.view else "")
            + f"to index '{target.name}'",
            extra={"partition": extra_partition, "event": "partition_started"},
        )

        columns = self.resolve_columns()
        if partition is not None:
            check_partition_key(
                partition, [c.name for c in self.schema_resolver.discovered], config.qualified_table
            )
        result.state = PartitionState.COLUMNS_RESOLVED

        if config.skip_existing:
            self.logger.info(f"user requested to skip existing index, checking if index '{target.name}' exists")
            try:
                exists = self.index_manager.exists(target.name)
            except (ApiError, TransportError) as e:
                # never load on top of an index that may already exist
                result.state = PartitionState.FAILED
                result.error_message = f"failed to check if index '{target.name}' exists: {e}"
                self.logger.error(
                    f"{result.error_message}, not indexing while --skip-existing is set",
                    extra={"partition": extra_partition, "event": "partition_failed"},
                )
                return result
            if exists:
                self.logger.info(
                    f"index '{target.name}' already exists and user requested --skip-existing, "
                    f"skipping index '{target.name}'",
                    extra={"partition": extra_partition, "event": "partition_skipped"},
                )
                result.state = PartitionState.SKIPPED
                return result

        self._prepare_index(target, result)
        result.state = PartitionState.INDEX_PREPARED

        hql = build_query(config, columns, target.name, self.jars, partition)
        job_name = build_job_name(config.db, config.table, partition)

        self.logger.info(
            f"running Hive => Elasticsearch indexing process for table {config.qualified_table} "
            + (f"partition {label} " if label else "")
            + "(this may run for a very long time)",
            extra={"partition": extra_partition, "event": "job_started"},
        )
        self.logger.debug(hql)

        result.state = PartitionState.LOADING
        start = time.time()
        try:
            exit_code = self.hive.run_job(hql, job_name, verbose=config.verbose)
        except KeyboardInterrupt:
            exit_code = INTERRUPT_EXIT_CODE
        elapsed = time.time() - start

        result.job_run = JobRun(
            table=config.table,
            view=config.view,
            partition=label,
            index=target.name,
            exit_code=exit_code,
            elapsed_seconds=elapsed,
        )
        message = (
            f"with exit code '{exit_code}' for index '{target.name}' "
            f"with {target.shards} shards in {format_elapsed(elapsed)}"
        )
        metadata = {"exit_code": exit_code, "elapsed_seconds": elapsed, "index": target.name}

        if exit_code == 0:
            self._finish_index(target, result)
            result.state = PartitionState.SUCCEEDED
            self.logger.info(
                f"INDEXING SUCCEEDED {message}",
                extra={"partition": extra_partition, "event": "partition_succeeded", "metadata": metadata},
            )
            self.logger.info(
                f"don't forget to add replicas (currently {target.replicas}) and change the "
                f"refresh interval (currently {target.refresh_interval}) if needed"
            )
        else:
            result.state = PartitionState.FAILED
            result.error_message = f"indexing failed {message}"
            self.logger.error(
                f"INDEXING FAILED {message}",
                extra={"partition": extra_partition, "event": "partition_failed", "metadata": metadata},
            )
            if config.delete_on_failure:
                self.logger.info(f"deleting index '{target.name}' to clean up")
                result.admin_results.append(self.index_manager.delete(target.name))

        return result

    def _prepare_index(self, target: IndexTarget, result: PartitionResult) -> None:
        """Create, recreate or keep the index before loading."""
        if self.index_manager.exists_or_false(target.name):
            if self.config.recreate_index:
                self.logger.info(f"deleting pre-existing index '{target.name}' for re-creation at user's request")
                result.admin_results.append(self.index_manager.delete(target.name))
                result.admin_results.append(self._create(target))
            else:
                self.logger.info(f"index '{target.name}' already exists, appending to it")
        else:
            result.admin_results.append(self._create(target))

    def _create(self, target: IndexTarget) -> AdminResult:
        plural = "" if target.shards == 1 else "s"
        self.logger.info(
            f"creating index '{target.name}' with {target.shards} shard{plural}, no replicas and "
            "no refresh in order to maximize bulk indexing performance"
        )
        return self.index_manager.create(target.name, target.shards)

    def _finish_index(self, target: IndexTarget, result: PartitionResult) -> None:
        """Refresh, alias and optimize after a successful load. Failures are only logged."""
        self.logger.info("refreshing index")
        result.admin_results.append(self.index_manager.refresh(target.name))
        if target.alias:
            self.logger.info(f"aliasing index '{target.name}' to alias '{target.alias}'")
            result.admin_results.append(self.index_manager.alias(target.name, target.alias))
        if self.config.optimize:
            self.logger.info(f"optimizing index '{target.name}'")
            result.admin_results.append(self.index_manager.optimize(target.name))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _renew_ticket(self) -> None:
        if self.kerberos is not None:
            self.kerberos.renew()

    def _wait_after_failure(self) -> None:
        minutes = self.cooldown_seconds / 60
        self.logger.warning(
            f"Indexing failure detected... sleeping for {minutes:g} mins before trying any remaining "
            "partitions in case it's a temporary outage",
            extra={"event": "failure_cooldown", "metadata": {"seconds": self.cooldown_seconds}},
        )
        if self.cooldown.wait(self.cooldown_seconds):
            raise InterruptedRun("cooldown cancelled, exiting without attempting further indices")

    def _confirm(self, question: str) -> None:
        if self.config.assume_yes or self.confirm is None:
            return
        if not self.confirm(question):
            raise InterruptedRun("aborting...")
