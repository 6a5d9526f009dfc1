"""Global configuration: command-line tool constants and runtime settings."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping

from pydantic import BaseModel, Field

# Executable name of the version-control command-line tool
DEFAULT_P4_BIN = "p4"

# Flags placed before the subcommand to switch on tagged output
TAGGED_FLAGS = ("-ztag",)
JSON_FLAGS = ("-ztag", "-Mj")

# Preamble line some servers prepend to diff output
DIFF_BANNER = "Differences ..."

# Line prefix that opens a file-scoped block in diff output
FILE_SEPARATOR = "==== "

# Pseudo-changelist that always exists for pending work
DEFAULT_CHANGELIST = 0

# Descriptions that mark a scratch changelist
JUNK_MARKERS = ("junk", "do not submit", "temp")
JUNK_DESCRIPTION = "[JUNK - Do Not Submit]"

# Server property holding the review-service base URL
REVIEW_URL_PROPERTY = "P4.Swarm.URL"
REVIEW_API_VERSION = "v9"

# Number of paths per revert call
REVERT_BATCH_SIZE = 50

# Environment variable name -> Settings field
_ENV_KEYS: dict[str, str] = {
    "DEPOTDESK_P4_BIN": "p4_bin",
    "DEPOTDESK_LOG_LEVEL": "log_level",
    "DEPOTDESK_QUERY_CONCURRENCY": "query_concurrency",
    "DEPOTDESK_DETAIL_CONCURRENCY": "detail_concurrency",
    "DEPOTDESK_RECONCILE_LIMIT": "reconcile_limit",
    "DEPOTDESK_RECONCILE_BATCH": "reconcile_batch_size",
    "DEPOTDESK_HEARTBEAT_SECONDS": "heartbeat_seconds",
    "DEPOTDESK_REVIEW_URL": "review_url",
    "DEPOTDESK_REVIEW_TIMEOUT": "review_timeout",
}


class Settings(BaseModel):
    """Runtime knobs for the integration layer."""

    p4_bin: str = DEFAULT_P4_BIN
    log_level: str = "INFO"

    query_concurrency: int = Field(default=5, ge=1)
    """Concurrent subprocesses for per-item queries (streams, shelves)."""

    detail_concurrency: int = Field(default=10, ge=1)
    """Concurrent subprocesses for per-workspace detail lookups."""

    reconcile_limit: int = Field(default=5000, ge=1)
    """Full reconcile aborts when the preview finds more candidates than this."""

    reconcile_batch_size: int = Field(default=200, ge=1)

    heartbeat_seconds: float = Field(default=1.0, gt=0)

    review_url: str | None = None
    review_timeout: float = Field(default=5.0, gt=0)


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build :class:`Settings` from defaults overridden by ``DEPOTDESK_*`` variables.

    Parameters
    ----------
    env:
        Mapping to read from.  Defaults to :data:`os.environ`.
    """
    if env is None:
        env = os.environ

    values: dict[str, str] = {}
    for key, field_name in _ENV_KEYS.items():
        value = env.get(key)
        if value is not None and value != "":
            values[field_name] = value

    return Settings.model_validate(values)


def configure_logging(level: str | int | None = None) -> logging.Logger:
    """Attach a stream handler to the ``depotdesk`` logger.

    Calling this more than once does not stack handlers.
    """
    if level is None:
        level = load_settings().log_level

    logger = logging.getLogger("depotdesk")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logger.addHandler(handler)
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    return logger
