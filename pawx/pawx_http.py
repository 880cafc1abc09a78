import asyncio
import json
from typing import Any, Callable, Dict, Optional

import httpx

from pawx.pawx_datatypes import ErrorValue, PawxObject
from pawx.pawx_errors import PawxError, PawxRuntimeError, PawxTypeError
from pawx.pawx_future import PawxFuture, describe_host_error
from pawx.pawx_serialize import deserialize, to_builtin

CONFIG_KEYS = ("headers", "params", "timeout", "retries", "backoff")


def _config(config) -> dict:
    if config is None:
        return {}
    if not isinstance(config, PawxObject):
        raise PawxTypeError("Http config must be an object")
    cfg = to_builtin(config)
    unknown = set(cfg) - set(CONFIG_KEYS)
    if unknown:
        raise PawxTypeError(f"unknown Http config key(s): {', '.join(sorted(unknown))}")
    return cfg


def _payload(data) -> tuple:
    """Returns (content, default content type) for a request body."""
    if data is None:
        return None, None
    if isinstance(data, bytes):
        return data, "application/octet-stream"
    if isinstance(data, str):
        return data.encode("utf-8"), "text/plain; charset=utf-8"
    return json.dumps(to_builtin(data), ensure_ascii=False).encode("utf-8"), "application/json"


async def http_request(method: str, url: str, *, config: Optional[Dict] = None, data: Any = None,
                       transport: Optional[httpx.AsyncBaseTransport] = None) -> Any:
    """
    Core HTTP helper: returns the deserialized body on 2xx, raises on anything else.

    Transport failures and 5xx responses are retried with exponential backoff.
    """
    cfg = dict(config or {})
    timeout = float(cfg.pop('timeout', 5.0))
    retries = int(cfg.pop('retries', 2))
    backoff = float(cfg.pop('backoff', 0.2))
    headers = {str(k): str(v) for k, v in dict(cfg.pop('headers', None) or {}).items()}
    params = {str(k): v for k, v in dict(cfg.pop('params', None) or {}).items()}

    body, content_type = _payload(data)
    if content_type and not any(k.lower() == "content-type" for k in headers):
        headers["Content-Type"] = content_type

    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True, transport=transport) as client:
        for attempt in range(retries + 1):
            try:
                resp = await client.request(method.upper(), url, headers=headers, params=params, content=body)
            except httpx.HTTPError as e:
                if attempt < retries:
                    await asyncio.sleep(backoff * (2 ** attempt))
                    continue
                raise PawxRuntimeError(f"HTTP {method.upper()} {url} failed: {str(e) or type(e).__name__}")
            if resp.status_code >= 500 and attempt < retries:
                await asyncio.sleep(backoff * (2 ** attempt))
                continue
            if 200 <= resp.status_code < 300:
                return deserialize(resp.content, content_type=resp.headers.get("Content-Type"))
            preview = (resp.text or "")[:200]
            raise PawxRuntimeError(f"HTTP {resp.status_code} for {url}: {preview}")


class HttpBridge:
    """The `Http` namespace: every request runs as a task and returns a Future."""

    def __init__(self, scheduler_ref: Callable[[], Any], transport: Optional[httpx.AsyncBaseTransport] = None):
        self._scheduler_ref = scheduler_ref
        self.transport = transport

    def _start(self, method: str, url, config, data=None) -> PawxFuture:
        if not isinstance(url, str):
            raise PawxTypeError("Http url must be a string")
        cfg = _config(config)
        scheduler = self._scheduler_ref()
        future = PawxFuture(scheduler, label=f"Http.{method.lower()}")

        async def run():
            try:
                value = await http_request(method, url, config=cfg, data=data, transport=self.transport)
            except PawxError as e:
                future.reject(e.to_value())
            except Exception as e:
                future.reject(ErrorValue("RuntimeError", describe_host_error(e)))
            else:
                future.fulfill(value)
        scheduler.spawn(run())
        return future

    def get(self, url, config=None):
        return self._start("GET", url, config)

    def post(self, url, data, config=None):
        return self._start("POST", url, config, data)

    def put(self, url, data, config=None):
        return self._start("PUT", url, config, data)

    def delete(self, url, config=None):
        return self._start("DELETE", url, config)

    def namespace(self) -> PawxObject:
        return PawxObject({"get": self.get, "post": self.post, "put": self.put, "delete": self.delete})
