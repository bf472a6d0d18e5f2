"""Database connections known to dbsnap.

ConnectionRegistry is the production implementation of the contract the snapshot
lifecycle needs from the host application:

    set_default(name) / default      which connection a load targets
    resolve_config(name)             ConnectionConfig for a connection
    reconnect(name)                  throw away pooled handles after a schema change
    drop_all_tables(name)            destructive: empties the schema
    execute_unprepared(name, sql)    run a multi-statement SQL script as-is

Engines are SQLAlchemy engines created lazily per connection name.
"""

import threading
from dataclasses import dataclass, field

from sqlalchemy import MetaData, create_engine
from sqlalchemy.engine import URL, make_url

from dbsnap.errors import ConfigError

DEFAULT_PORTS = {"pgsql": 5432, "postgres": 5432, "postgresql": 5432, "mysql": 3306, "mariadb": 3306}

SQLALCHEMY_DRIVERS = {
    "sqlite": "sqlite",
    "pgsql": "postgresql",
    "postgres": "postgresql",
    "postgresql": "postgresql",
    "mysql": "mysql+pymysql",
    "mariadb": "mysql+pymysql",
}

# pymysql CLIENT.MULTI_STATEMENTS, needed to run a dump as one batch
_MYSQL_MULTI_STATEMENTS = 1 << 16


def _resolve_host(raw):
    """Prefer the first read replica, then a single read host, then the plain host."""
    read = raw.get("read") or {}
    read_host = read.get("host")
    if isinstance(read_host, (list, tuple)) and read_host:
        return read_host[0]
    if isinstance(read_host, str) and read_host:
        return read_host
    return raw.get("host")


def cascade_drop_statement(dialect, tables):
    """One DROP TABLE for all tables, taking dependent objects with it."""
    preparer = dialect.identifier_preparer
    names = ", ".join(preparer.format_table(table) for table in tables)
    return f"DROP TABLE IF EXISTS {names} CASCADE"


@dataclass
class ConnectionConfig:
    name: str
    driver: str
    host: str = None
    port: int = None
    username: str = None
    password: str = None
    database: str = None
    options: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, name, raw):
        if "driver" not in raw:
            raise ConfigError(f"Connection {name!r} has no driver")
        known = {"driver", "host", "port", "username", "password", "database", "read"}
        driver = raw["driver"]
        port = raw.get("port") or DEFAULT_PORTS.get(driver)
        return cls(
            name=name,
            driver=driver,
            host=_resolve_host(raw),
            port=int(port) if port is not None else None,
            username=raw.get("username"),
            password=raw.get("password"),
            database=raw.get("database"),
            options={k: v for k, v in raw.items() if k not in known},
        )

    def option(self, dotted, default=None):
        """Look up a nested option, e.g. option("restore.add_extra_option")."""
        value = self.options
        for part in dotted.split("."):
            if not isinstance(value, dict) or part not in value:
                return default
            value = value[part]
        return value

    def sqlalchemy_url(self):
        if self.options.get("url"):
            return make_url(self.options["url"])
        drivername = SQLALCHEMY_DRIVERS.get(self.driver, self.driver)
        if drivername == "sqlite":
            return URL.create("sqlite", database=self.database)
        return URL.create(
            drivername,
            username=self.username,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
        )


class ConnectionRegistry:

    def __init__(self, connections, default="default"):
        self._configs = {
            name: raw if isinstance(raw, ConnectionConfig) else ConnectionConfig.from_dict(name, raw)
            for name, raw in connections.items()
        }
        self._engines = {}
        self._lock = threading.Lock()
        self.default = default

    @classmethod
    def from_config(cls, config):
        return cls(config.get("connections") or {}, config.get("default_connection", "default"))

    def names(self):
        return sorted(self._configs)

    def set_default(self, name):
        self.resolve_config(name)
        self.default = name

    def resolve_config(self, name=None):
        name = name or self.default
        if name not in self._configs:
            raise ConfigError(
                f"Unknown connection: {name!r}. Available: {self.names()}"
            )
        return self._configs[name]

    def engine(self, name=None):
        config = self.resolve_config(name)
        with self._lock:
            engine = self._engines.get(config.name)
            if engine is None:
                connect_args = dict(config.options.get("connect_args") or {})
                if SQLALCHEMY_DRIVERS.get(config.driver, "").startswith("mysql"):
                    connect_args.setdefault("client_flag", _MYSQL_MULTI_STATEMENTS)
                engine = create_engine(config.sqlalchemy_url(), connect_args=connect_args)
                self._engines[config.name] = engine
            return engine

    def reconnect(self, name=None):
        """Dispose the pooled connections so the next use opens fresh ones."""
        config = self.resolve_config(name)
        with self._lock:
            engine = self._engines.pop(config.name, None)
        if engine is not None:
            engine.dispose()

    def drop_all_tables(self, name=None):
        """Drop every table in the connection's schema. There is no undo.

        Postgres drops everything in one DROP TABLE ... CASCADE so views and other
        objects depending on the tables go too. MySQL drops with foreign key checks
        off. Other dialects drop in dependency order. Returns the dropped names.
        """
        engine = self.engine(name)
        metadata = MetaData()
        with engine.begin() as conn:
            metadata.reflect(bind=conn)
            tables = metadata.sorted_tables
            if conn.dialect.name == "postgresql":
                if tables:
                    conn.exec_driver_sql(cascade_drop_statement(conn.dialect, tables))
            elif conn.dialect.name == "mysql":
                conn.exec_driver_sql("SET FOREIGN_KEY_CHECKS=0")
                try:
                    metadata.drop_all(bind=conn)
                finally:
                    conn.exec_driver_sql("SET FOREIGN_KEY_CHECKS=1")
            else:
                metadata.drop_all(bind=conn)
        return [table.name for table in tables]

    def execute_unprepared(self, name, sql):
        """Run sql as a single unprepared batch on a raw DBAPI connection."""
        engine = self.engine(name)
        raw = engine.raw_connection()
        try:
            driver_connection = raw.driver_connection
            if hasattr(driver_connection, "executescript"):
                # sqlite3 only runs multiple statements through executescript
                driver_connection.executescript(sql)
            else:
                cursor = raw.cursor()
                try:
                    cursor.execute(sql)
                finally:
                    cursor.close()
            raw.commit()
        finally:
            raw.close()

    def dispose(self):
        with self._lock:
            engines = list(self._engines.values())
            self._engines.clear()
        for engine in engines:
            engine.dispose()
