"""
Shared transport of the processor REST clients: lazy httpx client with a bearer
token, every call through the processor's circuit breaker, failures mapped to
UpstreamError and recorded in the processor metrics.
"""
import logging
import time
from typing import Any

import httpx
import pybreaker
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from paygate.core.errors import UpstreamError
from paygate.services.circuit_breaker import get_circuit_breaker
from paygate.utils.metrics import processor_requests_total, processor_request_duration_seconds

logger = logging.getLogger(__name__)


class ProcessorClient:
    processor_name: str = ""
    display_name: str = ""

    def __init__(self, token: str, api_url: str, timeout: float) -> None:
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._client: httpx.Client | None = None

    def is_available(self) -> bool:
        return bool(self.token)

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.api_url,
                timeout=self.timeout,
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def parse(self, model: type[BaseModel], data: Any):
        try:
            return model.model_validate(data)
        except SchemaError as e:
            raise UpstreamError(
                f"Unexpected {self.display_name} response: {e.error_count()} invalid field(s)"
            ) from e

    def _request(self, method_name: str, http_method: str, path: str, **kwargs: Any) -> dict:
        if not self.is_available():
            raise UpstreamError(f"{self.display_name} credentials are not configured")

        breaker = get_circuit_breaker(self.processor_name)
        start = time.time()
        try:
            data = breaker.call(self._send, http_method, path, **kwargs)
        except pybreaker.CircuitBreakerError as e:
            self._record(method_name, "circuit_open", start)
            raise UpstreamError(
                f"{self.display_name} temporarily unavailable",
                context={"method": method_name},
            ) from e
        except httpx.HTTPStatusError as e:
            self._record(method_name, str(e.response.status_code), start)
            logger.warning(
                "processor_request_failed",
                extra={
                    "processor": self.processor_name,
                    "method": method_name,
                    "status_code": e.response.status_code,
                    "error": e.response.text[:500],
                },
            )
            raise UpstreamError(
                f"{self.display_name} API error: {e.response.status_code}",
                context={"method": method_name, "status_code": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            self._record(method_name, "error", start)
            logger.warning(
                "processor_request_failed",
                extra={"processor": self.processor_name, "method": method_name, "error": str(e)},
            )
            raise UpstreamError(
                f"{self.display_name} request failed: {e}", context={"method": method_name}
            ) from e
        except ValueError as e:
            self._record(method_name, "invalid_response", start)
            raise UpstreamError(f"Invalid JSON response from {self.display_name}: {e}") from e

        self._record(method_name, "success", start)
        return data

    def _send(self, http_method: str, path: str, **kwargs: Any) -> dict:
        response = self.client.request(http_method, path, **kwargs)
        response.raise_for_status()
        return response.json()

    def _record(self, method_name: str, status: str, start: float) -> None:
        processor_requests_total.labels(processor=self.processor_name, method=method_name, status=status).inc()
        processor_request_duration_seconds.labels(processor=self.processor_name, method=method_name).observe(
            time.time() - start
        )
