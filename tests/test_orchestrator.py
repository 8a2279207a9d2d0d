"""Tests for the partition indexing orchestrator.

Tests cover:
- Index naming (suffix per partition when a table has several)
- Index preparation: create, append, recreate, skip-existing
- Post-load steps: refresh, alias, optimize
- Failure handling: delete-on-failure, cooldown, stop-on-failure
- Interrupts abort the run
"""

from unittest.mock import MagicMock, call

import pytest
from elasticsearch import ConnectionError

from hive2es.errors import (
    EXIT_CRITICAL,
    EXIT_OK,
    EXIT_UNKNOWN,
    ColumnNotFound,
    PartitionNotFound,
    SchemaNotFound,
)
from hive2es.index_manager import AdminResult, AdminStatus, IndexManager
from hive2es.orchestrator import IndexTarget, PartitionIndexer, PartitionState
from hive2es.schema import ColumnDefinition

from conftest import FakeHive


PARTITIONS = ["dt=2020-01-01", "dt=2020-01-02", "dt=2020-01-03"]


def job_name(partition=None):
    name = "default.sales=>ES"
    return f"{name}-{partition}" if partition else name


def admin_calls(manager, operations=("create", "delete", "refresh", "alias", "optimize")):
    """Ordered (operation, args) pairs for mutating admin calls."""
    return [(name, args) for name, args, _ in manager.method_calls if name in operations]


@pytest.fixture
def build(index_manager, jars, cooldown):
    def factory(config, hive, **kwargs):
        kwargs.setdefault("cooldown", cooldown)
        return PartitionIndexer(config, hive, index_manager, jars, **kwargs)
    return factory


class TestIndexTarget:
    """Tests for physical index naming."""

    def test_name_without_suffix(self):
        assert IndexTarget(base_name="sales", shards=5).name == "sales"

    def test_name_with_suffix(self):
        target = IndexTarget(base_name="sales", shards=5, suffix="2020-01-01")
        assert target.name == "sales_2020-01-01"

    def test_logical_name_prefers_alias(self):
        assert IndexTarget(base_name="sales", shards=5, alias="current").logical_name == "current"
        assert IndexTarget(base_name="sales", shards=5).logical_name == "sales"


class TestUnpartitionedTable:
    """Tests for a table without partitions."""

    def test_indexes_whole_table_to_base_index(self, build, make_config, fake_hive, index_manager):
        result = build(make_config(), fake_hive).run()

        assert result.success
        assert result.exit_code == EXIT_OK
        assert fake_hive.job_names == [job_name()]
        assert admin_calls(index_manager) == [("create", ("sales", 5)), ("refresh", ("sales",))]
        assert result.partitions[0].state == PartitionState.SUCCEEDED
        assert result.partitions[0].partition is None

    def test_hql_has_no_partition_predicate(self, build, make_config, fake_hive):
        build(make_config(), fake_hive).run()

        hql = fake_hive.jobs[0][1]
        assert "WHERE" not in hql
        assert "'es.resource' = 'sales/sales'" in hql

    def test_existing_index_is_appended_to(self, build, make_config, fake_hive, index_manager):
        index_manager.exists_or_false.return_value = True

        result = build(make_config(), fake_hive).run()

        assert result.success
        assert admin_calls(index_manager, ("create", "delete")) == []
        assert len(fake_hive.jobs) == 1

    def test_create_on_existing_index_is_not_fatal(self, build, make_config, fake_hive, index_manager):
        index_manager.create.side_effect = lambda index, shards: AdminResult(
            "create", index, AdminStatus.ALREADY_IN_STATE, "resource_already_exists_exception"
        )

        result = build(make_config(), fake_hive).run()

        assert result.success
        assert len(fake_hive.jobs) == 1

    def test_admin_errors_do_not_fail_the_partition(self, build, make_config, fake_hive, index_manager):
        index_manager.refresh.side_effect = lambda index: AdminResult(
            "refresh", index, AdminStatus.ERROR, "connection refused"
        )

        result = build(make_config(), fake_hive).run()

        assert result.success
        statuses = [r.status for r in result.partitions[0].admin_results]
        assert AdminStatus.ERROR in statuses


class TestSkipExisting:
    """Tests for --skip-existing."""

    def test_existing_index_is_skipped(self, build, make_config, fake_hive, index_manager):
        index_manager.exists.return_value = True

        result = build(make_config(skip_existing=True), fake_hive).run()

        assert result.success
        assert fake_hive.jobs == []
        assert admin_calls(index_manager) == []
        assert result.partitions[0].state == PartitionState.SKIPPED

    def test_missing_index_is_indexed(self, build, make_config, fake_hive, index_manager):
        result = build(make_config(skip_existing=True), fake_hive).run()

        assert result.success
        index_manager.exists.assert_called_once_with("sales")
        assert len(fake_hive.jobs) == 1

    def test_unreachable_cluster_fails_partition(self, make_config, jars, cooldown):
        """An unanswered existence check fails the partition and the run carries on."""
        client = MagicMock()
        client.indices.exists.side_effect = ConnectionError("cluster down")
        hive = FakeHive(partitions=PARTITIONS)

        result = PartitionIndexer(
            make_config(skip_existing=True), hive, IndexManager(client), jars, cooldown=cooldown
        ).run()

        assert hive.jobs == []
        client.indices.create.assert_not_called()
        assert [p.state for p in result.partitions] == [PartitionState.FAILED] * 3
        assert "cluster down" in result.partitions[0].error_message
        assert cooldown.wait.call_count == 2
        assert result.exit_code == EXIT_CRITICAL

    def test_unreachable_cluster_with_stop_on_failure(self, build, make_config, index_manager):
        index_manager.exists.side_effect = ConnectionError("cluster down")
        hive = FakeHive(partitions=PARTITIONS)

        result = build(make_config(skip_existing=True, stop_on_failure=True), hive).run()

        assert len(result.partitions) == 1
        assert result.stopped_on_failure
        assert result.exit_code == EXIT_CRITICAL


class TestRecreateIndex:
    """Tests for --recreate-index."""

    def test_existing_index_deleted_then_created_once(self, build, make_config, fake_hive, index_manager):
        index_manager.exists_or_false.return_value = True

        build(make_config(recreate_index=True), fake_hive).run()

        assert admin_calls(index_manager, ("create", "delete")) == [
            ("delete", ("sales",)),
            ("create", ("sales", 5)),
        ]

    def test_missing_index_only_created(self, build, make_config, fake_hive, index_manager):
        build(make_config(recreate_index=True), fake_hive).run()

        assert admin_calls(index_manager, ("create", "delete")) == [("create", ("sales", 5))]


class TestPartitionedTable:
    """Tests for tables with several partitions."""

    def test_all_partitions_indexed_to_suffixed_indices(self, build, make_config, index_manager):
        hive = FakeHive(partitions=PARTITIONS[:2])

        result = build(make_config(), hive).run()

        assert result.success
        assert hive.job_names == [job_name(p) for p in PARTITIONS[:2]]
        created = [args[0] for name, args in admin_calls(index_manager, ("create",))]
        assert created == ["sales_2020-01-01", "sales_2020-01-02"]
        index_manager.alias.assert_not_called()

    def test_requested_partitions_keep_requested_order(self, build, make_config):
        hive = FakeHive(partitions=PARTITIONS)
        config = make_config(partition_key="dt", partitions=(PARTITIONS[2], PARTITIONS[0]))

        build(config, hive).run()

        assert hive.job_names == [job_name(PARTITIONS[2]), job_name(PARTITIONS[0])]

    def test_requested_partition_gets_where_predicate(self, build, make_config):
        hive = FakeHive(partitions=PARTITIONS)
        config = make_config(partition_key="dt", partitions=(PARTITIONS[1],))

        build(config, hive).run()

        assert hive.jobs[0][1].rstrip().endswith("FROM sales WHERE dt='2020-01-02';")

    def test_single_partition_table_is_not_suffixed(self, build, make_config, index_manager):
        hive = FakeHive(partitions=PARTITIONS[:1])

        build(make_config(), hive).run()

        index_manager.create.assert_called_once_with("sales", 5)

    def test_suffix_lowercased(self, build, make_config, index_manager):
        hive = FakeHive(partitions=["region=EU", "region=US"], columns=[ColumnDefinition("region", "string")])

        build(make_config(), hive).run()

        created = [args[0] for name, args in admin_calls(index_manager, ("create",))]
        assert created == ["sales_eu", "sales_us"]

    def test_alias_applied_per_partition(self, build, make_config, index_manager):
        hive = FakeHive(partitions=PARTITIONS[:2])

        build(make_config(alias="sales_current"), hive).run()

        assert index_manager.alias.call_args_list == [
            call("sales_2020-01-01", "sales_current"),
            call("sales_2020-01-02", "sales_current"),
        ]

    def test_optimize_after_load(self, build, make_config, index_manager, fake_hive):
        build(make_config(optimize=True), fake_hive).run()

        assert admin_calls(index_manager) == [
            ("create", ("sales", 5)),
            ("refresh", ("sales",)),
            ("optimize", ("sales",)),
        ]

    def test_columns_resolved_once_per_run(self, build, make_config):
        hive = FakeHive(partitions=PARTITIONS)

        build(make_config(), hive).run()

        assert hive.describe_calls == ["default.sales"]

    def test_kerberos_renewed_before_each_partition(self, build, make_config):
        hive = FakeHive(partitions=PARTITIONS)
        kerberos = MagicMock()

        build(make_config(), hive, kerberos=kerberos).run()

        assert kerberos.renew.call_count == 3


class TestDiscoveryErrors:
    """Discovery errors abort the run before any load."""

    def test_unknown_requested_partition(self, build, make_config, index_manager):
        hive = FakeHive(partitions=PARTITIONS)
        config = make_config(partition_key="dt", partitions=("dt=2019-12-31",))

        with pytest.raises(PartitionNotFound):
            build(config, hive).run()

        assert hive.jobs == []
        assert admin_calls(index_manager) == []

    def test_partition_key_not_a_column(self, build, make_config):
        hive = FakeHive(
            columns=[c for c in FakeHive().columns if c.name != "dt"],
            partitions=PARTITIONS,
        )

        with pytest.raises(ColumnNotFound, match="'dt'"):
            build(make_config(), hive).run()

        assert hive.jobs == []

    def test_partition_key_checked_against_all_columns(self, build, make_config):
        hive = FakeHive(partitions=PARTITIONS[:1])

        result = build(make_config(columns=("id", "amount")), hive).run()

        assert result.success

    def test_no_columns_found(self, build, make_config):
        hive = FakeHive(columns=[])

        with pytest.raises(SchemaNotFound):
            build(make_config(), hive).run()


class TestFailureHandling:
    """Tests for failed partition loads."""

    def test_failure_deletes_index_cools_down_and_continues(
        self, build, make_config, index_manager, cooldown
    ):
        hive = FakeHive(partitions=PARTITIONS, exit_codes={job_name(PARTITIONS[1]): 1})

        result = build(make_config(delete_on_failure=True), hive, cooldown_seconds=600).run()

        assert hive.job_names == [job_name(p) for p in PARTITIONS]
        index_manager.delete.assert_called_once_with("sales_2020-01-02")
        cooldown.wait.assert_called_once_with(600)
        assert [p.state for p in result.partitions] == [
            PartitionState.SUCCEEDED,
            PartitionState.FAILED,
            PartitionState.SUCCEEDED,
        ]
        assert not result.success
        assert result.exit_code == EXIT_CRITICAL
        assert [p.index for p in result.failed_partitions] == ["sales_2020-01-02"]

    def test_failed_index_kept_without_delete_on_failure(self, build, make_config, index_manager):
        hive = FakeHive(exit_codes={job_name(): 2})

        result = build(make_config(), hive).run()

        index_manager.delete.assert_not_called()
        assert result.partitions[0].job_run.exit_code == 2
        assert "exit code '2'" in result.partitions[0].error_message

    def test_no_cooldown_after_last_partition(self, build, make_config, cooldown):
        hive = FakeHive(partitions=PARTITIONS[:2], exit_codes={job_name(PARTITIONS[1]): 1})

        build(make_config(), hive).run()

        cooldown.wait.assert_not_called()

    def test_no_cooldown_for_unpartitioned_table(self, build, make_config, cooldown):
        hive = FakeHive(exit_codes={job_name(): 1})

        result = build(make_config(), hive).run()

        cooldown.wait.assert_not_called()
        assert result.exit_code == EXIT_CRITICAL

    def test_stop_on_failure(self, build, make_config, cooldown):
        hive = FakeHive(partitions=PARTITIONS, exit_codes={job_name(PARTITIONS[0]): 1})

        result = build(make_config(stop_on_failure=True), hive).run()

        assert hive.job_names == [job_name(PARTITIONS[0])]
        assert result.stopped_on_failure
        assert result.exit_code == EXIT_CRITICAL
        cooldown.wait.assert_not_called()

    def test_cancelled_cooldown_ends_run(self, build, make_config, cooldown):
        cooldown.wait.return_value = True
        hive = FakeHive(partitions=PARTITIONS, exit_codes={job_name(PARTITIONS[0]): 1})

        result = build(make_config(), hive).run()

        assert hive.job_names == [job_name(PARTITIONS[0])]
        assert result.interrupted
        assert result.exit_code == EXIT_UNKNOWN


class TestInterrupts:
    """An interrupt stops the run regardless of stop-on-failure."""

    @pytest.mark.parametrize("exit_code", [130, -2])
    def test_interrupted_job_aborts_run(self, build, make_config, cooldown, exit_code):
        hive = FakeHive(partitions=PARTITIONS, exit_codes={job_name(PARTITIONS[0]): exit_code})

        result = build(make_config(stop_on_failure=False), hive).run()

        assert hive.job_names == [job_name(PARTITIONS[0])]
        assert result.interrupted
        assert result.exit_code == EXIT_UNKNOWN
        cooldown.wait.assert_not_called()

    def test_keyboard_interrupt_during_job(self, build, make_config):
        hive = FakeHive(partitions=PARTITIONS, exit_codes={job_name(PARTITIONS[1]): KeyboardInterrupt()})

        result = build(make_config(), hive).run()

        assert len(hive.jobs) == 2
        assert result.interrupted
        assert result.partitions[1].job_run.interrupted

    def test_interrupted_job_still_deletes_on_failure(self, build, make_config, index_manager):
        hive = FakeHive(exit_codes={job_name(): 130})

        build(make_config(delete_on_failure=True), hive).run()

        index_manager.delete.assert_called_once_with("sales")


class TestConfirmation:
    """Indexing every partition of a table asks first."""

    def test_declined_confirmation_aborts(self, build, make_config):
        hive = FakeHive(partitions=PARTITIONS)
        confirm = MagicMock(return_value=False)

        result = build(make_config(assume_yes=False), hive, confirm=confirm).run()

        confirm.assert_called_once()
        assert hive.jobs == []
        assert result.interrupted

    def test_recreate_asks_twice(self, build, make_config):
        hive = FakeHive(partitions=PARTITIONS)
        confirm = MagicMock(return_value=True)

        build(make_config(assume_yes=False, recreate_index=True), hive, confirm=confirm).run()

        assert confirm.call_count == 2
        assert len(hive.jobs) == 3

    def test_assume_yes_skips_prompt(self, build, make_config):
        hive = FakeHive(partitions=PARTITIONS)
        confirm = MagicMock(return_value=False)

        build(make_config(assume_yes=True), hive, confirm=confirm).run()

        confirm.assert_not_called()
        assert len(hive.jobs) == 3

    def test_requested_partitions_not_confirmed(self, build, make_config):
        hive = FakeHive(partitions=PARTITIONS)
        confirm = MagicMock(return_value=False)
        config = make_config(assume_yes=False, partition_key="dt", partitions=(PARTITIONS[0],))

        build(config, hive, confirm=confirm).run()

        confirm.assert_not_called()


class TestRunResult:
    """Tests for the run summary."""

    def test_to_dict(self, build, make_config, fake_hive):
        result = build(make_config(), fake_hive).run()

        data = result.to_dict()
        assert data["success"] is True
        assert data["partitions"][0]["index"] == "sales"
        assert data["partitions"][0]["state"] == "succeeded"
        assert data["partitions"][0]["exit_code"] == 0
