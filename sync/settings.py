"""Runtime configuration read from environment variables."""
import os
from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass(frozen=True)
class Settings:
    """Configuration shared by the Lambda handlers and the CLI."""
    jobs_table_name: str = 'cleaning-jobs'
    properties_table_name: str = 'properties'
    region_name: Optional[str] = None
    log_level: str = 'INFO'
    timeout_seconds: int = 30
    max_retries: int = 3
    sync_concurrency: int = 8


def _int_setting(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < 1:
        raise ValueError(f"{name} must be at least 1, got {value}")
    return value


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from environment variables.

    Args:
        environ: Mapping to read from (default: os.environ)

    Returns:
        Settings instance
    """
    env = os.environ if environ is None else environ

    return Settings(
        jobs_table_name=env.get('JOBS_TABLE_NAME', 'cleaning-jobs'),
        properties_table_name=env.get('PROPERTIES_TABLE_NAME', 'properties'),
        region_name=env.get('AWS_REGION') or None,
        log_level=env.get('LOG_LEVEL', 'INFO'),
        timeout_seconds=_int_setting(env, 'TIMEOUT_SECONDS', 30),
        max_retries=_int_setting(env, 'MAX_RETRIES', 3),
        sync_concurrency=_int_setting(env, 'SYNC_CONCURRENCY', 8)
    )
