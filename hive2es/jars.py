"""
Locate the jars required by the ES-Hadoop Hive storage handler.

Hive CLI can add local jars to the session, so the ES-Hadoop jar and
Apache commons-httpclient are looked up on this machine: explicit paths from
settings first, then the search paths in order (first path with a match wins).
"""

import glob
import logging
import os
import re
from pathlib import Path
from typing import Iterable, List, Optional

from hive2es.errors import JarNotFound
from hive2es.query_builder import JarPaths
from hive2es.utils import get_logger


ES_HADOOP_JAR_RE = re.compile(
    r"^elasticsearch-hadoop(?:-hive)?-\d+(?:\.\d+)*(?:\.Beta\d+)?\.jar$", re.IGNORECASE
)
COMMONS_HTTPCLIENT_JAR_RE = re.compile(r"^commons-httpclient.*\.jar$")


def _expand(path: str) -> List[str]:
    """Expand ~ and globs in a search path."""
    expanded = os.path.expanduser(path)
    matches = sorted(glob.glob(expanded))
    return matches or [expanded]


def _candidates(search_dir: str, nested_dist: bool) -> List[str]:
    found = sorted(glob.glob(os.path.join(search_dir, "*.jar")))
    if nested_dist:
        # zip from elastic.co unpacked in place
        found += sorted(glob.glob(os.path.join(search_dir, "elasticsearch-hadoop-*", "dist", "*.jar")))
    return found


def find_jar(
    pattern: re.Pattern,
    search_paths: Iterable[str],
    nested_dist: bool = False,
    logger: Optional[logging.Logger] = None,
) -> Optional[Path]:
    """
    Find a jar whose file name matches pattern.

    Returns:
        Absolute path of the last match in the first search path that has one,
        or None
    """
    logger = logger or get_logger()
    for search_path in search_paths:
        for search_dir in _expand(search_path):
            logger.debug(f"checking path {search_dir} for jars")
            match = None
            for candidate in _candidates(search_dir, nested_dist):
                if os.path.isfile(candidate) and pattern.match(os.path.basename(candidate)):
                    match = Path(candidate).resolve()
            if match:
                logger.debug(f"found jar {match}")
                return match
    return None


def _explicit_jar(path: Optional[str], description: str) -> Optional[Path]:
    if not path:
        return None
    jar = Path(path).expanduser()
    if not jar.is_file():
        raise JarNotFound(f"{description} jar not found: {jar}")
    return jar.resolve()


def locate_jars(
    search_paths: Iterable[str],
    elasticsearch_hadoop_jar: Optional[str] = None,
    commons_httpclient_jar: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
) -> JarPaths:
    """
    Locate both jars.

    Raises:
        JarNotFound: If either jar can't be found
    """
    logger = logger or get_logger()
    search_paths = list(search_paths)

    es_jar = _explicit_jar(elasticsearch_hadoop_jar, "elasticsearch hadoop hive") or find_jar(
        ES_HADOOP_JAR_RE, search_paths, nested_dist=True, logger=logger
    )
    if es_jar is None:
        raise JarNotFound(
            "cannot find elasticsearch-hadoop-hive.jar or elasticsearch-hadoop.jar in "
            f"{', '.join(search_paths)}, please place the jar in one of those or set "
            "elasticsearch_hadoop_jar in the config"
        )

    http_jar = _explicit_jar(commons_httpclient_jar, "commons httpclient") or find_jar(
        COMMONS_HTTPCLIENT_JAR_RE, search_paths, logger=logger
    )
    if http_jar is None:
        raise JarNotFound(
            f"cannot find commons-httpclient.jar in {', '.join(search_paths)}, please place "
            "the jar in one of those or set commons_httpclient_jar in the config"
        )

    logger.debug(f"using jar {es_jar}")
    logger.debug(f"using jar {http_jar}")
    return JarPaths(elasticsearch_hadoop=str(es_jar), commons_httpclient=str(http_jar))
