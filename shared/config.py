"""
Service configuration.

Values come from the environment, optionally seeded from a `.env` file in the
working directory. `ServiceConfig.from_env()` snapshots them into a dataclass
that the bootstrap code hands to every component.
"""

import os
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv

from shared.constants import (
    CLOUDCONVERT_DAILY_LIMIT,
    COBALT_API_URL,
    DEFAULT_DATA_DIR,
    DEFAULT_DATABASE_FILENAME,
    DEFAULT_DOWNLOAD_TIMEOUT,
    DEFAULT_JOB_TIMEOUT,
    DEFAULT_LOG_PATH,
    DEFAULT_MAX_DOWNLOAD_MB,
    DEFAULT_PERSIST_WORKERS,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_PROVIDER_TIMEOUT,
    DEFAULT_REQUEST_DEADLINE,
    SOURCE_URL_TEMPLATE,
)

load_dotenv()

SECRET_FIELDS = (
    "rapidapi_keys",
    "cloudconvert_api_key",
    "cloudconvert_sandbox_api_key",
    "s3_access_key_id",
    "s3_secret_access_key",
)


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _collect_rapidapi_keys(env: Mapping[str, str]) -> List[str]:
    """RAPIDAPI_KEY, RAPIDAPI_KEY_2, RAPIDAPI_KEY_3 and RAPIDAPI_KEYS (comma list), deduplicated in order."""
    keys = [env.get("RAPIDAPI_KEY"), env.get("RAPIDAPI_KEY_2"), env.get("RAPIDAPI_KEY_3")]
    keys += (env.get("RAPIDAPI_KEYS") or "").split(",")
    out: List[str] = []
    for key in keys:
        key = (key or "").strip()
        if key and key not in out:
            out.append(key)
    return out


@dataclass
class ServiceConfig:
    """
    Runtime configuration for the conversion service.

    Secrets are kept in memory only; `to_dict()` redacts them.
    """
    rapidapi_keys: List[str] = field(default_factory=list)
    cloudconvert_api_key: Optional[str] = None
    cloudconvert_sandbox_api_key: Optional[str] = None
    cloudconvert_daily_limit: int = CLOUDCONVERT_DAILY_LIMIT
    cobalt_api_url: str = COBALT_API_URL
    source_url_template: str = SOURCE_URL_TEMPLATE

    storage_backend: str = "local"  # s3 | local
    s3_endpoint: Optional[str] = None
    s3_bucket: str = "audio-files"
    s3_access_key_id: Optional[str] = None
    s3_secret_access_key: Optional[str] = None
    s3_region: str = "auto"
    s3_public_base_url: Optional[str] = None
    local_storage_dir: str = str(Path(DEFAULT_DATA_DIR) / "objects")
    database_path: str = str(Path(DEFAULT_DATA_DIR) / DEFAULT_DATABASE_FILENAME)

    provider_timeout: float = DEFAULT_PROVIDER_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    job_timeout: float = DEFAULT_JOB_TIMEOUT
    request_deadline: float = DEFAULT_REQUEST_DEADLINE
    download_timeout: float = DEFAULT_DOWNLOAD_TIMEOUT
    max_download_mb: int = DEFAULT_MAX_DOWNLOAD_MB
    redirect_first: bool = True
    persist_workers: int = DEFAULT_PERSIST_WORKERS
    pool_attempts_per_call: int = 1

    log_level: str = "INFO"
    log_path: str = DEFAULT_LOG_PATH

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'ServiceConfig':
        """Read configuration from `env` (defaults to os.environ)."""
        env = os.environ if env is None else env
        defaults = cls()
        return cls(
            rapidapi_keys=_collect_rapidapi_keys(env),
            cloudconvert_api_key=env.get("CLOUDCONVERT_API_KEY") or None,
            cloudconvert_sandbox_api_key=env.get("CLOUDCONVERT_SANDBOX_API_KEY") or None,
            cloudconvert_daily_limit=int(env.get("CLOUDCONVERT_DAILY_LIMIT", defaults.cloudconvert_daily_limit)),
            cobalt_api_url=env.get("COBALT_API_URL", defaults.cobalt_api_url),
            source_url_template=env.get("SOURCE_URL_TEMPLATE", defaults.source_url_template),
            storage_backend=env.get("STORAGE_BACKEND", defaults.storage_backend).strip().lower(),
            s3_endpoint=env.get("S3_ENDPOINT") or None,
            s3_bucket=env.get("S3_BUCKET", defaults.s3_bucket),
            s3_access_key_id=env.get("S3_ACCESS_KEY_ID") or None,
            s3_secret_access_key=env.get("S3_SECRET_ACCESS_KEY") or None,
            s3_region=env.get("S3_REGION", defaults.s3_region),
            s3_public_base_url=env.get("S3_PUBLIC_BASE_URL") or None,
            local_storage_dir=env.get("LOCAL_STORAGE_DIR", defaults.local_storage_dir),
            database_path=env.get("DATABASE_PATH", defaults.database_path),
            provider_timeout=float(env.get("PROVIDER_TIMEOUT_SEC", defaults.provider_timeout)),
            poll_interval=float(env.get("POLL_INTERVAL_SEC", defaults.poll_interval)),
            job_timeout=float(env.get("JOB_TIMEOUT_SEC", defaults.job_timeout)),
            request_deadline=float(env.get("REQUEST_DEADLINE_SEC", defaults.request_deadline)),
            download_timeout=float(env.get("DOWNLOAD_TIMEOUT_SEC", defaults.download_timeout)),
            max_download_mb=int(env.get("MAX_DOWNLOAD_MB", defaults.max_download_mb)),
            redirect_first=_flag(env.get("REDIRECT_FIRST"), defaults.redirect_first),
            persist_workers=int(env.get("PERSIST_WORKERS", defaults.persist_workers)),
            pool_attempts_per_call=int(env.get("POOL_ATTEMPTS_PER_CALL", defaults.pool_attempts_per_call)),
            log_level=env.get("LOG_LEVEL", defaults.log_level).upper(),
            log_path=env.get("LOG_PATH", defaults.log_path),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary with secrets redacted."""
        data = asdict(self)
        for name in SECRET_FIELDS:
            value = data.get(name)
            if isinstance(value, list):
                data[name] = [f"{v[:4]}***" for v in value]
            elif value:
                data[name] = f"{value[:4]}***"
        return data
