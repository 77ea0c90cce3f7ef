"""Health probing against the backend's version endpoint."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

import httpx

logger = logging.getLogger(__name__)

HEALTHY_CODE = 0


class HealthProbeResult(Enum):
    """Outcome of a single readiness check.

    Transport failures are reported as UNHEALTHY: an unreachable service is
    simply not ready yet.
    """

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthProbe:
    """Issues ``GET <base_url>/<path>`` and inspects the ``code`` field.

    A JSON body whose ``code`` equals 0 is healthy. Any other code, a
    non-JSON body, an HTTP error status or a transport error is unhealthy.
    """

    def __init__(
        self,
        base_url: str,
        path: str = "api/version",
        timeout: float = 5.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.path = path.lstrip("/")
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            trust_env=False,
        )

    @property
    def url(self) -> str:
        return f"{self.base_url}/{self.path}"

    def __call__(self) -> HealthProbeResult:
        return self.probe()

    def probe(self) -> HealthProbeResult:
        logger.debug(f"Probing {self.url}")
        try:
            response = self._client.get(self.path)
        except httpx.HTTPError as e:
            logger.warning(f"Health probe to {self.url} failed, service is not running: {e}")
            return HealthProbeResult.UNHEALTHY

        if response.status_code >= 400:
            logger.warning(f"Health probe to {self.url} returned HTTP {response.status_code}")
            return HealthProbeResult.UNHEALTHY

        code = self._extract_code(response)
        if code == HEALTHY_CODE:
            return HealthProbeResult.HEALTHY

        logger.warning(f"Health probe to {self.url} reported code {code!r}, service is not running")
        return HealthProbeResult.UNHEALTHY

    @staticmethod
    def _extract_code(response: httpx.Response) -> Any:
        try:
            body = response.json()
        except ValueError:
            return None
        if not isinstance(body, dict):
            return None
        code = body.get("code")
        # bool is an int subclass; False must not read as 0
        if isinstance(code, bool):
            return None
        return code

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> HealthProbe:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
