"""Schema of the tracking database and connection setup for SQLite and MySQL."""
import logging
import os
import sqlite3
import mysql.connector
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

# CREATE TABLE statements, in dependency order
MYSQL_TABLES = {
    "EXPERIMENT": """
    CREATE TABLE IF NOT EXISTS EXPERIMENT (
        id INT PRIMARY KEY AUTO_INCREMENT,
        name VARCHAR(255) NOT NULL UNIQUE,
        artifact_location VARCHAR(1024),
        lifecycle_stage VARCHAR(32) NOT NULL
    )
    """,
    "RUN": """
    CREATE TABLE IF NOT EXISTS RUN (
        run_id VARCHAR(32) PRIMARY KEY,
        experiment_id INT NOT NULL,
        run_name TEXT,
        user_id VARCHAR(256),
        status VARCHAR(20) NOT NULL,
        start_time BIGINT NOT NULL,
        end_time BIGINT,
        source_type VARCHAR(20),
        source_name VARCHAR(500),
        entry_point_name VARCHAR(50),
        source_version VARCHAR(50),
        artifact_uri VARCHAR(1024),
        lifecycle_stage VARCHAR(32) NOT NULL,
        FOREIGN KEY (experiment_id) REFERENCES EXPERIMENT(id)
    )
    """,
    "METRIC": """
    CREATE TABLE IF NOT EXISTS METRIC (
        id INT PRIMARY KEY AUTO_INCREMENT,
        run_id VARCHAR(32) NOT NULL,
        name VARCHAR(250) NOT NULL,
        value DOUBLE NOT NULL,
        is_nan BOOLEAN NOT NULL DEFAULT 0,
        timestamp BIGINT NOT NULL,
        step BIGINT NOT NULL,
        FOREIGN KEY (run_id) REFERENCES RUN(run_id)
    )
    """,
    "PARAM": """
    CREATE TABLE IF NOT EXISTS PARAM (
        run_id VARCHAR(32) NOT NULL,
        name VARCHAR(250) NOT NULL,
        value VARCHAR(500) NOT NULL,
        PRIMARY KEY (run_id, name),
        FOREIGN KEY (run_id) REFERENCES RUN(run_id)
    )
    """,
    "TAG": """
    CREATE TABLE IF NOT EXISTS TAG (
        run_id VARCHAR(32) NOT NULL,
        name VARCHAR(250) NOT NULL,
        value TEXT,
        PRIMARY KEY (run_id, name),
        FOREIGN KEY (run_id) REFERENCES RUN(run_id)
    )
    """,
}

# same tables in SQLite dialect
SQLITE_TABLES = {
    name: sql.replace("INT PRIMARY KEY AUTO_INCREMENT", "INTEGER PRIMARY KEY AUTOINCREMENT")
             .replace("BIGINT", "INTEGER")
             .replace("DOUBLE", "REAL")
    for name, sql in MYSQL_TABLES.items()
}

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_metric_run_name ON METRIC (run_id, name)",
    "CREATE INDEX IF NOT EXISTS idx_run_experiment ON RUN (experiment_id)",
]


def init_sqlite_db(db_path: Union[str, Path], recreate: bool = False, readonly: bool = False) -> sqlite3.Connection:
    """Open (and create when missing) the tracking database at ``db_path``.

    ``recreate`` deletes an existing file first; a ``readonly`` connection
    skips schema creation.
    """
    db_path = Path(db_path)

    if recreate and db_path.exists():
        os.remove(db_path)

    db_path.parent.mkdir(parents=True, exist_ok=True)

    # the server uses one connection from its worker threads, access is serialized by the manager
    if readonly:
        conn = sqlite3.connect(f"file:{db_path}?mode=ro", uri=True, check_same_thread=False)
    else:
        conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    cursor = conn.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")

    if not readonly:
        for table_name, create_sql in SQLITE_TABLES.items():
            try:
                cursor.execute(create_sql)
            except sqlite3.OperationalError as e:
                logger.error(f"Error creating table {table_name}: {e}")
                raise
        for index_sql in INDEXES:
            cursor.execute(index_sql)
        conn.commit()
    return conn


def init_mysql_db(host: str, user: str, password: str, database: str,
                  port: Optional[int] = None, recreate: bool = False) -> mysql.connector.MySQLConnection:
    """Connect to a MySQL server, creating ``database`` and the tracking tables when missing.

    ``recreate`` drops the database first.
    """
    # the database may not exist yet
    connect_args = dict(host=host, user=user, password=password)
    if port:
        connect_args["port"] = port
    conn = mysql.connector.connect(**connect_args)
    cursor = conn.cursor(dictionary=True)

    if recreate:
        cursor.execute(f"DROP DATABASE IF EXISTS {database}")

    cursor.execute(f"CREATE DATABASE IF NOT EXISTS {database}")
    cursor.execute(f"USE {database}")

    for table_name, create_sql in MYSQL_TABLES.items():
        try:
            cursor.execute(create_sql)
        except mysql.connector.Error as e:
            logger.error(f"Error creating table {table_name}: {e}")
            raise

    # MySQL has no CREATE INDEX IF NOT EXISTS
    cursor.execute("SHOW INDEX FROM METRIC WHERE Key_name = 'idx_metric_run_name'")
    if not cursor.fetchall():
        cursor.execute("CREATE INDEX idx_metric_run_name ON METRIC (run_id, name)")

    conn.commit()
    return conn
