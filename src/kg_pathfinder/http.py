from __future__ import annotations

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential, wait_random

from kg_pathfinder.settings import PathfinderSettings, settings as default_settings


def default_timeout(cfg: PathfinderSettings | None = None) -> httpx.Timeout:
    cfg = cfg or default_settings
    return httpx.Timeout(
        connect=cfg.connect_timeout_s,
        read=cfg.request_timeout_s,
        write=cfg.request_timeout_s,
        pool=cfg.connect_timeout_s,
    )


def default_limits(cfg: PathfinderSettings | None = None) -> httpx.Limits:
    cfg = cfg or default_settings
    return httpx.Limits(
        max_connections=cfg.max_connections,
        max_keepalive_connections=max(1, cfg.max_connections // 2),
    )


class HttpClientFactory:
    """Creates shared httpx clients with sane defaults.

    Keep one client per process and share it between explorations;
    httpx.AsyncClient is safe for concurrent requests.
    """

    @staticmethod
    def client(
        headers: dict | None = None,
        cfg: PathfinderSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> httpx.AsyncClient:
        cfg = cfg or default_settings
        return httpx.AsyncClient(
            headers={"User-Agent": cfg.user_agent, **(headers or {})},
            timeout=default_timeout(cfg),
            limits=default_limits(cfg),
            follow_redirects=True,
            transport=transport,
        )


TransientHttpError = (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, TransientHttpError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code >= 500 or code == 429
    return False


def transient_retry(attempts: int = 2, backoff_s: float = 0.5):
    """One try plus at most ``attempts - 1`` retries, exponential backoff with jitter."""
    return retry(
        reraise=True,
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=backoff_s, max=max(backoff_s, 5.0)) + wait_random(0, backoff_s),
        retry=retry_if_exception(is_transient),
    )
