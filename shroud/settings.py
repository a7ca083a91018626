# shroud/settings.py
from __future__ import annotations

import os
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

# Environment variable names
ENV_DATABASE_URL = "SHROUD_DATABASE_URL"
ENV_POLL_INTERVAL = "SHROUD_POLL_INTERVAL"
ENV_FINALIZE_TIMEOUT = "SHROUD_FINALIZE_TIMEOUT"
ENV_CLUSTER_URL = "SHROUD_CLUSTER_URL"
ENV_CLUSTER_MAX_RETRIES = "SHROUD_CLUSTER_MAX_RETRIES"
ENV_CLUSTER_TIMEOUT = "SHROUD_CLUSTER_TIMEOUT"
ENV_LOG_LEVEL = "SHROUD_LOG_LEVEL"


class ProtocolSettings(BaseModel):
    """
    Deployment configuration handed to `ConfidentialTokenProgram`.

    Build it explicitly in code/tests, or from the process environment with
    `ProtocolSettings.from_env()`.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    database_url: str = Field("sqlite+pysqlite:///:memory:", description="SQLAlchemy URL for ledger state.")
    poll_interval: float = Field(0.05, gt=0, description="Seconds between finalization polls.")
    finalize_timeout: float = Field(30.0, gt=0, description="Default await timeout (seconds).")
    cluster_url: Optional[str] = Field(None, description="Remote MPC cluster; local cluster when unset.")
    cluster_max_retries: int = Field(3, ge=1, description="Submission attempts before giving up.")
    cluster_timeout: float = Field(10.0, gt=0, description="Per-request HTTP timeout (seconds).")
    log_level: str = Field("INFO", description="Level passed to setup_logging().")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ProtocolSettings":
        env = os.environ if env is None else env
        values = {}
        for field, var in (
            ("database_url", ENV_DATABASE_URL),
            ("poll_interval", ENV_POLL_INTERVAL),
            ("finalize_timeout", ENV_FINALIZE_TIMEOUT),
            ("cluster_url", ENV_CLUSTER_URL),
            ("cluster_max_retries", ENV_CLUSTER_MAX_RETRIES),
            ("cluster_timeout", ENV_CLUSTER_TIMEOUT),
            ("log_level", ENV_LOG_LEVEL),
        ):
            raw = env.get(var)
            if raw is not None and raw.strip() != "":
                values[field] = raw.strip()
        return cls(**values)
