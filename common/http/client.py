import asyncio
import logging

import aiohttp

from common.auth import Principal
from common.config import HTTP_CONNECT_TIMEOUT, HTTP_READ_TIMEOUT, http_retry_policy
from common.errors import (ConflictError, NotFoundError, TransientDependencyError, UnauthorizedError,
                           ValidationError, ForbiddenError)
from common.retry import RetryPolicy

REQ_ERROR_STR = 'Requests error'


class ServiceClient:
    """JSON client for a peer service.

    Every request uses distinct connect and read timeouts. Connection errors,
    timeouts and 5xx answers become ``TransientDependencyError`` and are
    retried by ``policy``; 4xx answers map to the matching ``ServiceError`` and
    are never retried. The caller's credentials are forwarded from the explicit
    ``principal`` argument.
    """

    def __init__(self, name: str, base_url: str,
                 policy: RetryPolicy | None = None,
                 connect_timeout: float = HTTP_CONNECT_TIMEOUT,
                 read_timeout: float = HTTP_READ_TIMEOUT,
                 session: aiohttp.ClientSession | None = None):
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.policy = policy or http_retry_policy()
        self.timeout = aiohttp.ClientTimeout(connect=connect_timeout, sock_read=read_timeout)
        self._session = session

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def request(self, method: str, path: str,
                      principal: Principal | None = None,
                      json=None,
                      headers: dict[str, str] | None = None):
        all_headers = principal.auth_headers() if principal else {}
        if headers:
            all_headers.update(headers)
        return await self.policy.call(self._send, method, path, json, all_headers)

    async def get(self, path: str, principal: Principal | None = None, **kwargs):
        return await self.request("GET", path, principal, **kwargs)

    async def post(self, path: str, principal: Principal | None = None, **kwargs):
        return await self.request("POST", path, principal, **kwargs)

    async def patch(self, path: str, principal: Principal | None = None, **kwargs):
        return await self.request("PATCH", path, principal, **kwargs)

    async def _send(self, method: str, path: str, json, headers: dict[str, str]):
        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().request(method, url, json=json, headers=headers) as resp:
                body = await self._read_body(resp)
                if resp.status >= 500:
                    raise TransientDependencyError(f"{self.name} answered {resp.status} for {method} {path}")
                if resp.status >= 400:
                    raise self._client_error(resp.status, body, method, path)
                return body
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
            logging.warning(f"[HTTP {self.name}] {method} {path} failed: {type(e).__name__}: {e}")
            raise TransientDependencyError(f"{REQ_ERROR_STR}: {self.name} unreachable") from e

    @staticmethod
    async def _read_body(resp: aiohttp.ClientResponse):
        try:
            return await resp.json(content_type=None)
        except ValueError:
            return None

    def _client_error(self, status: int, body, method: str, path: str):
        message = f"{self.name} answered {status} for {method} {path}"
        if isinstance(body, dict) and body.get("message"):
            message = body["message"]
        if status == 404:
            return NotFoundError(message)
        if status == 409:
            return ConflictError(message)
        if status == 401:
            return UnauthorizedError(message)
        if status == 403:
            return ForbiddenError(message)
        return ValidationError(message)


def unwrap(body):
    """Payload of a ``{"status", "message", "data"}`` envelope."""
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body
