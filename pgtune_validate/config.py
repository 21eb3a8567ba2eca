import configparser
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .errors import ConfigError

# Same defaults as the workshop container (docker-compose service pg-tuning-demo).
DB_DEFAULTS = {
    'host': 'localhost',
    'port': 5432,
    'database': 'pgday',
    'user': 'demo_user',
    'password': '',
}


@dataclass
class PostgresConfig:
    host: str = DB_DEFAULTS['host']
    port: int = DB_DEFAULTS['port']
    database: str = DB_DEFAULTS['database']
    user: str = DB_DEFAULTS['user']
    password: str = DB_DEFAULTS['password']
    connect_timeout: int = 10
    application_name: str = "pgtune-validate"

    def connect_kwargs(self) -> Dict[str, Any]:
        kwargs = {
            'host': self.host,
            'port': self.port,
            'dbname': self.database,
            'user': self.user,
            'connect_timeout': self.connect_timeout,
            'application_name': self.application_name,
        }
        if self.password:
            kwargs['password'] = self.password
        return kwargs


@dataclass
class HarnessConfig:
    timeout: Optional[float] = 60.0
    parallel: int = 1
    truncate: int = 2000


@dataclass
class ToolConfig:
    postgres: PostgresConfig = field(default_factory=PostgresConfig)
    harness: HarnessConfig = field(default_factory=HarnessConfig)
    path: Optional[str] = None


def read_parser(path: str) -> configparser.ConfigParser:
    # Interpolation off: LIKE patterns and to_char formats use '%'.
    parser = configparser.ConfigParser(interpolation=None)
    try:
        read = parser.read(path, encoding="utf-8")
    except configparser.Error as exc:
        raise ConfigError("Invalid config file %s: %s" % (path, exc)) from exc
    if not read:
        raise ConfigError("Config file not found: %s" % path)
    return parser


def load_config(path: str) -> ToolConfig:
    parser = read_parser(path)
    pg_raw = _section_to_dict(parser, "postgres")
    harness_raw = _section_to_dict(parser, "harness")

    postgres = PostgresConfig(
        host=pg_raw.get("host", DB_DEFAULTS['host']),
        port=_to_int(pg_raw.get("port", DB_DEFAULTS['port']), "postgres.port"),
        database=pg_raw.get("database", DB_DEFAULTS['database']),
        user=pg_raw.get("user", DB_DEFAULTS['user']),
        password=pg_raw.get("password", DB_DEFAULTS['password']),
        connect_timeout=_to_int(pg_raw.get("connect_timeout", 10), "postgres.connect_timeout"),
        application_name=pg_raw.get("application_name", "pgtune-validate"),
    )

    harness = HarnessConfig(
        timeout=to_timeout(harness_raw.get("timeout", "60")),
        parallel=_to_int(harness_raw.get("parallel", 1), "harness.parallel"),
        truncate=_to_int(harness_raw.get("truncate", 2000), "harness.truncate"),
    )
    if harness.parallel < 1:
        raise ConfigError("harness.parallel must be at least 1")

    return ToolConfig(postgres=postgres, harness=harness, path=path)


def env_override(config: ToolConfig) -> ToolConfig:
    """
    libpq-style environment variables win over the file, so passwords do not
    have to live in the scenario config.
    """
    pg = config.postgres
    if os.environ.get("PGHOST"):
        pg.host = os.environ["PGHOST"]
    if os.environ.get("PGPORT"):
        pg.port = _to_int(os.environ["PGPORT"], "PGPORT")
    if os.environ.get("PGDATABASE"):
        pg.database = os.environ["PGDATABASE"]
    if os.environ.get("PGUSER"):
        pg.user = os.environ["PGUSER"]
    if os.environ.get("PGPASSWORD"):
        pg.password = os.environ["PGPASSWORD"]
    return config


def _section_to_dict(parser: configparser.ConfigParser, section: str) -> Dict[str, str]:
    if not parser.has_section(section):
        return {}
    return {k: v for k, v in parser.items(section)}


def _to_int(value: Any, key: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError("%s must be an integer, got %r" % (key, value)) from exc


def to_timeout(value, key: str = "harness.timeout") -> Optional[float]:
    # 0, "none" or empty disables the per-scenario budget
    if value is None or str(value).strip().lower() in ("", "none", "off"):
        return None
    try:
        timeout = float(value)
    except ValueError as exc:
        raise ConfigError("%s must be a number of seconds, got %r" % (key, value)) from exc
    if timeout < 0:
        raise ConfigError("%s must be non-negative" % key)
    return timeout or None
