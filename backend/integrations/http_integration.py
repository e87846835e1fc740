"""HTTP integration provider and webhook executor.

Both use ``httpx.AsyncClient``. Tests (and callers needing custom
networking) pass an ``httpx`` transport in through ``transport``.
"""

import base64
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import httpx
import structlog

from app.config import get_settings
from automation.executors import BaseActionExecutor
from automation.models import ActionType
from registry.base import BaseIntegration

logger = structlog.get_logger(__name__)

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD")


def _auth_headers(auth_config: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Headers for a ``{"type": "bearer|basic|api_key", ...}`` auth block."""
    if not auth_config:
        return {}
    auth_type = auth_config.get("type", "")
    if auth_type == "bearer":
        return {"Authorization": f"Bearer {auth_config['token']}"}
    if auth_type == "basic":
        creds = base64.b64encode(
            f"{auth_config['username']}:{auth_config['password']}".encode()
        ).decode()
        return {"Authorization": f"Basic {creds}"}
    if auth_type == "api_key":
        return {auth_config.get("header", "X-API-Key"): auth_config["key"]}
    raise ValueError(f"Unsupported auth type: {auth_type}")


def _validate_url(url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme.lower() not in ("http", "https"):
        raise ValueError(f"Unsupported scheme: {parsed.scheme}. Only HTTP and HTTPS allowed.")
    if not parsed.hostname:
        raise ValueError("URL must have a valid hostname")


def _response_payload(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        data = response.text
    return {
        "status_code": response.status_code,
        "headers": dict(response.headers),
        "data": data,
    }


class HttpIntegration(BaseIntegration):
    """REST API provider backed by a persistent ``httpx.AsyncClient``.

    Config:
        base_url: API root (required)
        headers: Default headers
        auth: Auth block (bearer, basic or api_key)
        timeout: Request timeout in seconds
        health_check_path: Path probed on connect and by check_health

    Actions are HTTP methods (``get``, ``post`` ...). Params:
        path, params, json, headers
    """

    def __init__(
        self,
        component_id: str,
        config: Optional[Dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(component_id, config)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def base_url(self) -> str:
        return str(self.config.get("base_url", "")).rstrip("/")

    async def on_connect(self) -> None:
        if not self.base_url:
            raise ValueError(f"Integration {self.id} requires base_url")
        _validate_url(self.base_url)

        headers = dict(self.config.get("headers") or {})
        headers.update(_auth_headers(self.config.get("auth")))
        timeout = float(self.config.get("timeout", get_settings().HTTP_TIMEOUT_SECONDS))

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout),
            transport=self._transport,
        )
        if not self.config.get("health_check_path"):
            return
        try:
            healthy = await self.on_health_check()
        except Exception:
            await self.on_disconnect()
            raise
        if not healthy:
            await self.on_disconnect()
            raise ConnectionError(f"Health check failed for integration {self.id}")

    async def on_disconnect(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def on_execute(self, action: str, params: Dict[str, Any]) -> Any:
        method = action.upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"Unsupported action '{action}' for integration {self.id}")
        if self._client is None:
            await self.connect()

        response = await self._client.request(
            method,
            params.get("path", "/"),
            params=params.get("params"),
            json=params.get("json"),
            headers=params.get("headers"),
        )
        payload = _response_payload(response)
        if response.status_code >= 400:
            raise RuntimeError(f"HTTP {response.status_code} from {self.id}")
        return payload

    async def on_health_check(self) -> bool:
        if self._client is None:
            return False
        path = self.config.get("health_check_path") or "/"
        response = await self._client.get(path)
        healthy = 200 <= response.status_code < 400
        logger.info("Integration health check", integration_id=self.id, status_code=response.status_code, healthy=healthy)
        return healthy


class HttpWebhookExecutor(BaseActionExecutor):
    """Real ``CALL_WEBHOOK`` executor.

    Config:
        url: Target URL (required)
        method: HTTP method (default: POST)
        headers: Dict of HTTP headers
        auth: Auth block (bearer, basic or api_key)
        body: JSON body; defaults to the accumulated context
        timeout: Request timeout in seconds
    """

    action_type = ActionType.CALL_WEBHOOK.value
    display_name = "Call Webhook (HTTP)"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: Optional[float] = None):
        self._transport = transport
        self._timeout = timeout if timeout is not None else get_settings().HTTP_TIMEOUT_SECONDS

    async def execute(self, config: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
        url = config.get("url")
        if not url:
            raise ValueError("Missing required config: url")
        _validate_url(url)

        method = config.get("method", "POST").upper()
        headers = dict(config.get("headers") or {})
        headers.update(_auth_headers(config.get("auth")))
        kwargs: Dict[str, Any] = {"headers": headers}
        if method in ("POST", "PUT", "PATCH"):
            kwargs["json"] = config.get("body", context)

        async with httpx.AsyncClient(
            transport=self._transport,
            timeout=float(config.get("timeout", self._timeout)),
        ) as client:
            response = await client.request(method, url, **kwargs)

        logger.info("Webhook called", url=url, method=method, status_code=response.status_code)
        if response.status_code >= 400:
            raise RuntimeError(f"Webhook returned HTTP {response.status_code}")
        return {"success": True, **_response_payload(response)}
