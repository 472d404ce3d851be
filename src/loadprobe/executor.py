import asyncio
import logging

import aiohttp

from .models import ERROR_NETWORK, ERROR_TIMEOUT, RequestOutcome, Target
from .utils import elapsed_ms, normalize_base_url, now

logger = logging.getLogger(__name__)


class RequestExecutor:
    """Issues one timed HTTP request per call. Holds no per-request state."""

    def __init__(self, base_url: str, timeout_ms: float = 5000.0) -> None:
        self.base_url = normalize_base_url(base_url)
        self.timeout_ms = timeout_ms
        total = timeout_ms / 1000.0
        # aiohttp rounds timeouts above ceil_threshold up to the next whole second
        self._timeout = aiohttp.ClientTimeout(total=total, ceil_threshold=total + 1)

    def url_for(self, target: Target) -> str:
        return self.base_url + target.path

    async def execute(self, session: aiohttp.ClientSession, target: Target) -> RequestOutcome:
        url = self.url_for(target)
        headers = {"Accept": target.accept_header}
        kwargs = {"headers": headers, "timeout": self._timeout, "allow_redirects": False}
        if target.payload is not None:
            kwargs["json"] = target.payload

        start = now()
        try:
            async with session.request(target.method, url, **kwargs) as resp:
                body = await resp.read()
                duration = elapsed_ms(start)
                logger.debug(
                    f"{target.method} {target.path}: status={resp.status}, "
                    f"size={len(body)} bytes, {duration:.1f}ms"
                )
                return RequestOutcome(
                    target=target,
                    started_at=start,
                    duration_ms=duration,
                    status_code=resp.status,
                    response_bytes=len(body),
                )
        except (TimeoutError, asyncio.TimeoutError):
            # aiohttp drops the connection instead of returning it to the pool
            duration = elapsed_ms(start)
            logger.debug(f"Timeout for {target.method} {url} after {duration:.1f}ms")
            return RequestOutcome(target, start, duration, error_kind=ERROR_TIMEOUT)
        except (aiohttp.ClientError, OSError) as e:
            duration = elapsed_ms(start)
            logger.debug(f"Network error for {target.method} {url}: {e!r}")
            return RequestOutcome(target, start, duration, error_kind=ERROR_NETWORK)
