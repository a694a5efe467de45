"""Transport for delivering location events to the logs API."""
from dataclasses import dataclass
from typing import Optional, Dict, Any

import requests

from location_queue import settings
from location_queue.logging_conf import logger


@dataclass
class SendResult:
    """Outcome of one delivery attempt."""

    error: bool
    status_code: Optional[int] = None
    message: Optional[str] = None


class Transport:
    """Sends one location event. Implementations may also raise on failure."""

    def send(self, data: Any, headers: Dict[str, Any]) -> SendResult:
        raise NotImplementedError


class LogsApiTransport(Transport):
    """POSTs location events to the driver logs endpoint."""

    def __init__(self, url: str = None, token: str = None, timeout: float = None, session: requests.Session = None):
        self.url = url or settings.LOGS_API_URL
        if not self.url:
            raise settings.ConfigError("LogsApiTransport needs an endpoint URL (LOGS_API_URL)")
        self.timeout = timeout if timeout is not None else settings.TRANSPORT_TIMEOUT
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
            "code": settings.APP_CODE,
        })
        token = token if token is not None else settings.API_TOKEN
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def send(self, data: Any, headers: Dict[str, Any]) -> SendResult:
        """
        Deliver one location event.

        Args:
            data: JSON-serializable location payload
            headers: Per-item headers (auth context, device ids); these
                override the session defaults for this request

        Returns:
            SendResult with error=False on any 2xx response
        """
        request_headers = {str(k): str(v) for k, v in (headers or {}).items()}
        try:
            response = self.session.post(self.url, json=data, headers=request_headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Location update request failed: {e}")
            return SendResult(error=True, message=str(e))

        if 200 <= response.status_code < 300:
            return SendResult(error=False, status_code=response.status_code)

        if response.status_code == 429:
            logger.warning(f"Rate limited by logs API (Retry-After: {response.headers.get('Retry-After')})")
        else:
            logger.warning(f"Logs API returned {response.status_code}")
        return SendResult(error=True, status_code=response.status_code, message=response.text[:500])
