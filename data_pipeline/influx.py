"""
InfluxDB connection settings.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from influxdb_client import InfluxDBClient

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class InfluxConfig:
    """Configuration required to connect to InfluxDB."""

    url: str = "http://localhost:8086"
    token: str | None = None
    org: str = "tradegate"
    bucket: str = "tradegate"

    @staticmethod
    def from_env() -> "InfluxConfig":
        base_url = "http://localhost:8086"
        base_org = "tradegate"
        base_bucket = "tradegate"
        token = None
        try:
            import config as config_module  # type: ignore
        except ModuleNotFoundError:
            config_module = None  # type: ignore

        if config_module is not None:
            base_url = getattr(config_module, "INFLUX_URL", base_url)
            base_org = getattr(config_module, "INFLUX_ORG", base_org)
            base_bucket = getattr(config_module, "INFLUX_BUCKET", base_bucket)
            token = getattr(config_module, "INFLUX_TOKEN", None)

        token = os.getenv("INFLUX_TOKEN") or token
        if token and str(token).upper().startswith("REPLACE"):
            token = None
        return InfluxConfig(
            url=os.getenv("INFLUX_URL") or base_url,
            token=token,
            org=os.getenv("INFLUX_ORG") or base_org,
            bucket=os.getenv("INFLUX_BUCKET") or base_bucket,
        )

    def ping(self) -> bool:
        """Return True when the configured instance answers a health ping."""
        if not self.token:
            return False
        try:
            with InfluxDBClient(url=self.url, token=self.token, org=self.org, timeout=3000) as client:
                return bool(client.ping())
        except Exception as exc:  # pragma: no cover - network path
            logger.debug("InfluxDB ping failed for %s: %s", self.url, exc)
            return False
