"""
Runtime configuration and logging setup.

Configuration is a Pydantic model with defaults, overridable from
NOTIFIER_* environment variables:

    NOTIFIER_PARTITIONS            partitions per topic (in-memory broker)
    NOTIFIER_GROUP_ID              consumer group id
    NOTIFIER_MAX_WORKERS           partition worker threads
    NOTIFIER_FETCH_MAX             max records fetched per partition per poll
    NOTIFIER_POLL_INTERVAL_S       sleep between empty polls
    NOTIFIER_USER_LOOKUP           "fixtures" or "http"
    NOTIFIER_USER_SERVICE_URL      base URL of the platform user API
    NOTIFIER_LOOKUP_TIMEOUT_S      timeout for one user lookup
    NOTIFIER_DATA_DIR              directory holding users.json
    NOTIFIER_EMAIL_FROM            sender address
    NOTIFIER_EMAIL_FAIL_RATE       simulated email failure rate (0.0 - 1.0)
    NOTIFIER_LOG_LEVEL             logging level name

Values that fail to parse are ignored and the default is kept.
"""

import logging
import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field

LOG_FORMAT = "%(asctime)s | %(name)-24s | %(levelname)-5s | %(message)s"
LOG_DATEFMT = "%H:%M:%S"

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


class NotifierConfig(BaseModel):
    """Settings for both sides of the pipeline."""

    partitions: int = Field(default=3, ge=1)
    group_id: str = "notification-service"
    max_workers: int = Field(default=4, ge=1)
    fetch_max: int = Field(default=100, ge=1)
    poll_interval_s: float = Field(default=0.5, gt=0)

    user_lookup: Literal["fixtures", "http"] = "fixtures"
    user_service_url: str = "http://localhost:8080"
    lookup_timeout_s: float = Field(default=5.0, gt=0)
    data_dir: Path = DEFAULT_DATA_DIR

    email_from: str = "notifications@freelance-platform.com"
    email_fail_rate: float = Field(default=0.0, ge=0.0, le=1.0)

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None) -> "NotifierConfig":
        """Build a config from defaults overridden by NOTIFIER_* variables."""
        env = os.environ if environ is None else environ
        data: dict = {}

        converters = {
            "partitions": int,
            "group_id": str,
            "max_workers": int,
            "fetch_max": int,
            "poll_interval_s": float,
            "user_lookup": lambda v: v.strip().lower(),
            "user_service_url": str,
            "lookup_timeout_s": float,
            "data_dir": Path,
            "email_from": str,
            "email_fail_rate": float,
            "log_level": lambda v: v.strip().upper(),
        }
        for name, convert in converters.items():
            raw = env.get(f"NOTIFIER_{name.upper()}")
            if raw is None or str(raw).strip() == "":
                continue
            try:
                data[name] = convert(raw)
            except ValueError:
                continue

        defaults = cls()
        for name in list(data):
            try:
                cls.model_validate({**defaults.model_dump(), name: data[name]})
            except ValueError:
                data.pop(name)

        return cls.model_validate(data)


def configure_logging(level: str = "INFO") -> None:
    """Apply the project's log format to the root logger."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )
