"""Operator settings loaded from the environment."""

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)


def _env_float(name, default):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={value!r}, using {default}")
        return default


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, read once at startup."""

    service_account: str = "noobaa-operator"
    reconcile_timeout: float = 120.0
    request_timeout: float = 30.0
    resync_interval: float = 30.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        return cls(
            service_account=os.getenv("NOOBAA_OPERATOR_SERVICE_ACCOUNT", cls.service_account),
            reconcile_timeout=_env_float("NOOBAA_RECONCILE_TIMEOUT", cls.reconcile_timeout),
            request_timeout=_env_float("NOOBAA_REQUEST_TIMEOUT", cls.request_timeout),
            resync_interval=_env_float("NOOBAA_RESYNC_INTERVAL", cls.resync_interval),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
        )
