from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class HttpClientConfig:
    base_url: str
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float = 10.0
    log_requests: bool = True


def _log_request(request: httpx.Request) -> None:
    logger.info(
        "Outbound request",
        extra={"method": request.method, "url": str(request.url)},
    )


def _log_response(response: httpx.Response) -> None:
    logger.info(
        "Outbound response",
        extra={"url": str(response.request.url), "status_code": response.status_code},
    )


def build_client(config: HttpClientConfig) -> httpx.Client:
    event_hooks = (
        {"request": [_log_request], "response": [_log_response]}
        if config.log_requests
        else {}
    )
    return httpx.Client(
        base_url=config.base_url,
        headers=config.headers,
        timeout=config.timeout,
        event_hooks=event_hooks,
    )
