"""
CLI interface for hive2es.

Provides commands: run, validate, init.

Exit codes follow the Nagios convention used by the cluster monitoring:
0 OK, 2 CRITICAL (a partition failed to index), 3 UNKNOWN (bad options,
discovery errors, interrupts).
"""

import signal
from pathlib import Path

import click
import yaml

from hive2es import __version__
from hive2es.config import (
    DEFAULT_DATABASE,
    DEFAULT_FAILURE_COOLDOWN_SECONDS,
    DEFAULT_HIVE_COMMAND,
    DEFAULT_JAR_SEARCH_PATHS,
    DEFAULT_JOB_TIMEOUT_SECONDS,
    DEFAULT_KINIT_COMMAND,
    DEFAULT_NODES,
    DEFAULT_PORT,
    DEFAULT_QUEUE,
    DEFAULT_SHARDS,
    IndexingConfig,
    get_hive2es_home,
    load_settings,
)
from hive2es.errors import (
    EXIT_OK,
    EXIT_UNKNOWN,
    ConfigError,
    DiscoveryError,
    Hive2EsError,
)
from hive2es.index_manager import IndexManager, create_client
from hive2es.jars import locate_jars
from hive2es.orchestrator import PartitionIndexer
from hive2es.tools import HiveAdapter, KerberosAdapter
from hive2es.utils import (
    Cooldown,
    print_error,
    print_info,
    print_success,
    print_warning,
    setup_logging,
)


class OptionError(click.UsageError):
    """Usage error reported with the UNKNOWN exit code."""

    exit_code = EXIT_UNKNOWN


def _log_level(settings, verbose: int) -> str:
    return "DEBUG" if verbose > 1 else settings.get_log_level()


@click.group()
@click.version_option(version=__version__, prog_name="hive2es")
def main():
    """
    hive2es - Index Hive tables into Elasticsearch, partition by partition.

    Runs one ES-Hadoop backed Hive job per partition and manages the
    Elasticsearch index around it.
    """
    pass


@main.command()
@click.option("-N", "--nodes", "--node", "nodes", multiple=True,
              help=f"Elasticsearch node(s) host[:port], comma separated or repeated (default: {DEFAULT_NODES})")
@click.option("-P", "--port", default=str(DEFAULT_PORT), show_default=True,
              help="Elasticsearch port for nodes given without one")
@click.option("-d", "--db", default=DEFAULT_DATABASE, show_default=True, help="Hive database")
@click.option("-T", "--table", help="Hive table to index (required)")
@click.option("--view", help="Hive view to select the data from instead of the table")
@click.option("-C", "--columns", help="Columns to index, comma separated (default: all)")
@click.option("--column-file", type=click.Path(path_type=Path),
              help="File listing columns to index, one per line")
@click.option("-p", "--partition-key", help="Partition key to index")
@click.option("-u", "--partition-values", help="Partition values to index, comma separated")
@click.option("-i", "--index", help="Elasticsearch index name (default: table name)")
@click.option("-y", "--type", "doc_type", help="Elasticsearch type (default: index name)")
@click.option("-s", "--shards", default=str(DEFAULT_SHARDS), show_default=True,
              help="Number of shards for newly created indices")
@click.option("-a", "--alias", help="Alias to add to each index once indexed")
@click.option("-o", "--optimize", is_flag=True, help="Optimize each index once indexed")
@click.option("-q", "--queue", default=DEFAULT_QUEUE, show_default=True, help="Hadoop scheduler queue")
@click.option("--recreate-index", is_flag=True, help="Delete and re-create each index before indexing")
@click.option("--delete-on-failure", is_flag=True, help="Delete an index if its indexing job fails")
@click.option("--skip-existing", is_flag=True, help="Skip partitions whose index already exists")
@click.option("--no-task-retries", is_flag=True,
              help="Fail the job on the first task failure instead of retrying")
@click.option("--stop-on-failure", is_flag=True,
              help="Stop at the first failed partition instead of continuing")
@click.option("--yes", "assume_yes", is_flag=True, help="Don't ask for confirmation")
@click.option("--config", type=click.Path(path_type=Path),
              help="Custom settings file (default: ~/.config/hive2es/config.yaml)")
@click.option("-v", "--verbose", count=True, help="Verbose mode (repeat for more)")
def run(nodes, port, db, table, view, columns, column_file, partition_key, partition_values,
        index, doc_type, shards, alias, optimize, queue, recreate_index, delete_on_failure,
        skip_existing, no_task_retries, stop_on_failure, assume_yes, config, verbose):
    """
    Index a Hive table (or its partitions) into Elasticsearch.

    If the table is partitioned and no partition values are given, every
    partition is indexed, each to its own index '<index>_<partition value>'.

    Examples:

      # Index a whole table
      hive2es run --table sales --index sales --nodes es1:9200,es2:9200

      # Index two partitions, aliasing each index
      hive2es run -T sales -p dt -u 2020-01-01,2020-01-02 --alias sales

      # Rebuild all partitions unattended
      hive2es run -T sales --recreate-index --yes
    """
    # default verbosity is 1 to match the -v levels Hive expects
    verbose = verbose + 1

    try:
        settings = load_settings(config)
    except ConfigError as e:
        raise OptionError(str(e))

    logger = setup_logging(
        log_file=settings.get_log_file_path(),
        log_level=_log_level(settings, verbose),
        log_format=settings.get_log_format(),
        console_output=settings.should_log_to_console(),
    )

    try:
        indexing_config = IndexingConfig.from_options(
            table=table,
            index=index or (table or "").lower() or None,
            db=db,
            view=view,
            columns=columns,
            column_file=column_file,
            partition_key=partition_key,
            partition_values=partition_values,
            type=doc_type,
            alias=alias,
            shards=shards,
            optimize=optimize,
            queue=queue,
            nodes=list(nodes) or DEFAULT_NODES,
            port=port,
            recreate_index=recreate_index,
            delete_on_failure=delete_on_failure,
            skip_existing=skip_existing,
            no_task_retries=no_task_retries,
            stop_on_failure=stop_on_failure,
            verbose=verbose,
            assume_yes=assume_yes,
        )
        jars = locate_jars(
            settings.jar_search_paths,
            elasticsearch_hadoop_jar=settings.elasticsearch_hadoop_jar,
            commons_httpclient_jar=settings.commons_httpclient_jar,
            logger=logger,
        )
    except ConfigError as e:
        raise OptionError(str(e))

    hive = HiveAdapter(settings.hive_command, job_timeout=settings.job_timeout_seconds, logger=logger)
    hive_check = hive.validate()
    if not hive_check["valid"]:
        for error in hive_check["errors"]:
            print_error(error)
        raise SystemExit(EXIT_UNKNOWN)

    kerberos = KerberosAdapter(settings.kinit_command, logger=logger)
    kerberos.renew()

    index_manager = IndexManager(create_client(indexing_config.es_hosts), logger=logger)

    cooldown = Cooldown()
    indexer = PartitionIndexer(
        indexing_config,
        hive,
        index_manager,
        jars,
        kerberos=kerberos,
        cooldown_seconds=settings.failure_cooldown_seconds,
        cooldown=cooldown,
        confirm=lambda question: click.confirm(question, default=False),
        logger=logger,
    )

    # Control-C during the failure cooldown ends the run instead of waiting it out
    def _on_sigint(signum, frame):
        cooldown.cancel()
        raise KeyboardInterrupt

    previous_handler = signal.signal(signal.SIGINT, _on_sigint)
    try:
        result = indexer.run()
    except DiscoveryError as e:
        print_error(str(e))
        raise SystemExit(EXIT_UNKNOWN)
    except Hive2EsError as e:
        print_error(f"Indexing failed: {e}")
        raise SystemExit(EXIT_UNKNOWN)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if result.success:
        print_success(f"Indexed {len(result.partitions)} partition(s) of {indexing_config.qualified_table} to Elasticsearch")
    elif result.interrupted:
        print_warning(result.error_message or "Interrupted")
    else:
        for failed in result.failed_partitions:
            print_error(failed.error_message or f"index '{failed.index}' failed")

    raise SystemExit(result.exit_code)


@main.command()
@click.option("--config", type=click.Path(path_type=Path), help="Custom settings file")
def validate(config):
    """
    Validate settings and local dependencies.

    Checks:
    - Settings file syntax and values
    - hive and kinit on PATH
    - ES-Hadoop and commons-httpclient jars can be found

    Examples:

      hive2es validate
      hive2es validate --config /path/to/config.yaml
    """
    try:
        settings = load_settings(config)
    except ConfigError as e:
        print_error(f"Configuration invalid: {e}")
        raise SystemExit(EXIT_UNKNOWN)
    print_success(f"Settings OK ({settings.config_path or 'defaults'})")

    valid = True
    for adapter in (HiveAdapter(settings.hive_command), KerberosAdapter(settings.kinit_command)):
        check = adapter.validate()
        for error in check["errors"]:
            print_error(error)
        for warning in check["warnings"]:
            print_warning(warning)
        if check["valid"] and not check["warnings"]:
            print_success(f"{adapter.executable} found")
        valid = valid and check["valid"]

    try:
        jars = locate_jars(
            settings.jar_search_paths,
            elasticsearch_hadoop_jar=settings.elasticsearch_hadoop_jar,
            commons_httpclient_jar=settings.commons_httpclient_jar,
        )
    except ConfigError as e:
        print_error(str(e))
        valid = False
    else:
        print_success(f"Found {jars.elasticsearch_hadoop}")
        print_success(f"Found {jars.commons_httpclient}")

    raise SystemExit(EXIT_OK if valid else EXIT_UNKNOWN)


@main.command()
@click.option("--force", is_flag=True, help="Overwrite an existing settings file")
def init(force):
    """
    Create a default settings file in $HIVE2ES_HOME (~/.config/hive2es).

    Examples:

      hive2es init
      HIVE2ES_HOME=/etc/hive2es hive2es init --force
    """
    home = get_hive2es_home()
    config_path = home / "config.yaml"
    if config_path.exists() and not force:
        print_error(f"Config already exists at {config_path}, use --force to overwrite")
        raise SystemExit(1)

    home.mkdir(parents=True, exist_ok=True)
    defaults = {
        "hive_command": DEFAULT_HIVE_COMMAND,
        "kinit_command": DEFAULT_KINIT_COMMAND,
        "jar_search_paths": DEFAULT_JAR_SEARCH_PATHS,
        "elasticsearch_hadoop_jar": None,
        "commons_httpclient_jar": None,
        "failure_cooldown_seconds": DEFAULT_FAILURE_COOLDOWN_SECONDS,
        "job_timeout_seconds": DEFAULT_JOB_TIMEOUT_SECONDS,
        "env_file": str(home / ".env"),
        "logging": {"level": "INFO", "format": "pretty", "console": True},
    }
    config_path.write_text(yaml.safe_dump(defaults, sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text(
            "# Elasticsearch credentials, leave empty for an unsecured cluster\n"
            "ELASTICSEARCH_API_KEY=\n"
            "ELASTICSEARCH_USERNAME=\n"
            "ELASTICSEARCH_PASSWORD=\n"
        )

    print_success(f"Initialized hive2es config at {config_path}")
    print_info(f"Credentials file: {env_path}")


if __name__ == "__main__":
    main()
