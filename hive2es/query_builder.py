"""
Query Builder - Generate the HQL for one Hive => Elasticsearch indexing job.

The generated script:
- adds the ES-Hadoop and commons-httpclient jars to the session
- names the job and routes it to the scheduler queue
- disables speculative execution (and task retries if requested) so
  documents are not sent twice
- drops and recreates the <table>_elasticsearch staging table bound to the
  target index/type and nodes, so the binding never carries settings from a
  previous partition's run
- selects the columns from the table or view into the staging table

Hive CLI mishandles comments inside -e scripts, so the generated HQL has none.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from hive2es.config import IndexingConfig
from hive2es.partitions import PartitionKeyValue
from hive2es.schema import ColumnDefinition


STORAGE_HANDLER = "org.elasticsearch.hadoop.hive.EsStorageHandler"

NO_TASK_RETRY_SETTINGS = [
    "mapreduce.map.maxattempts=1",
    "mapreduce.reduce.maxattempts=1",
    "mapred.map.max.attempts=1",
    "mapred.reduce.max.attempts=1",
    "tez.am.task.max.failed.attempts=0",
]

NO_SPECULATION_SETTINGS = [
    "mapreduce.map.speculative=FALSE",
    "mapreduce.reduce.speculative=FALSE",
    "mapred.map.tasks.speculative.execution=FALSE",
    "mapred.reduce.tasks.speculative.execution=FALSE",
]


@dataclass(frozen=True)
class JarPaths:
    """Jars the ES storage handler needs on the Hive session classpath."""
    elasticsearch_hadoop: str
    commons_httpclient: str


def staging_table_name(table: str) -> str:
    return f"{table}_elasticsearch"


def build_job_name(db: str, table: str, partition: Optional[PartitionKeyValue] = None) -> str:
    """Job/session name, e.g. 'default.sales=>ES-dt=2020-01-01'."""
    name = f"{db}.{table}=>ES"
    if partition is not None:
        name += f"-{partition}"
    return name


def _set_lines(settings: Sequence[str]) -> List[str]:
    return [f"SET {s};" for s in settings]


def build_query(
    config: IndexingConfig,
    columns: Sequence[ColumnDefinition],
    index: str,
    jars: JarPaths,
    partition: Optional[PartitionKeyValue] = None,
) -> str:
    """
    Build the HQL script indexing one partition (or the whole table).

    Args:
        config: Run configuration
        columns: Resolved columns, in select order
        index: Physical Elasticsearch index to write to
        jars: Jar paths to add to the session
        partition: Partition to select, None for the whole table

    Returns:
        HQL script text
    """
    if not columns:
        raise ValueError("no columns to index")

    job_name = build_job_name(config.db, config.table, partition)
    staging = staging_table_name(config.table)

    lines = [
        f"ADD JAR {jars.elasticsearch_hadoop};",
        f"ADD JAR {jars.commons_httpclient};",
        f"SET hive.session.id={job_name};",
        f"SET mapred.job.name=Hive={job_name};",
        f"SET tez.queue.name={config.queue};",
        f"SET mapreduce.job.queuename={config.queue};",
    ]
    if config.no_task_retries:
        lines.extend(_set_lines(NO_TASK_RETRY_SETTINGS))
    lines.extend(_set_lines(NO_SPECULATION_SETTINGS))
    if config.verbose > 2:
        lines.append("SET -v;")

    declarations = ",\n".join(c.declaration() for c in columns)
    select_list = ",\n    ".join(c.name for c in columns)

    lines.extend([
        f"USE {config.db};",
        f"DROP TABLE IF EXISTS {staging};",
        f"CREATE EXTERNAL TABLE {staging} (",
        declarations,
        f") STORED BY '{STORAGE_HANDLER}'",
        f"LOCATION '/tmp/{staging}'",
        "TBLPROPERTIES(",
        f"    'es.nodes'    = '{config.es_nodes}',",
        f"    'es.port'     = '{config.port}',",
        f"    'es.resource' = '{index}/{config.doc_type}',",
        "    'es.index.auto.create'   = 'true',",
        "    'es.batch.write.refresh' = 'true'",
        ");",
        f"INSERT OVERWRITE TABLE {staging} SELECT",
        f"    {select_list}",
        f"FROM {config.source_name}",
    ])

    hql = "\n".join(lines)
    if partition is not None:
        hql += f" WHERE {partition.predicate}"
    return hql + ";\n"
