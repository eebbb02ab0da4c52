import asyncio
import hmac
import hashlib
import json
import time
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

import aiohttp


class ExchangeAPIError(Exception):
    def __init__(
        self,
        exchange: str,
        status: int,
        code: Optional[Any],
        msg: Optional[str],
        body: str,
    ):
        self.exchange = exchange
        self.status = status
        self.code = code
        self.msg = msg
        self.body = body
        text = f"{exchange} API error (status={status}, code={code}, msg={msg})"
        super().__init__(text)


SignedParts = Tuple[Dict[str, Any], Dict[str, str], Optional[str]]


class RESTClient:
    """aiohttp session wrapper shared by the exchange transports.

    Subclasses override ``_sign`` to attach their authentication scheme.
    """

    def __init__(
        self,
        base_url: str,
        exchange: str,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        timeout_s: float = 15.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.exchange = exchange
        self.api_key = api_key
        self.api_secret = api_secret
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession(timeout=self.timeout)
            return self._session

    async def close(self):
        async with self._lock:
            if self._session and not self._session.closed:
                await self._session.close()
            self._session = None

    def can_sign(self) -> bool:
        return bool(self.api_key and self.api_secret)

    def _sign(
        self,
        method: str,
        path: str,
        params: Dict[str, Any],
        body: Optional[str],
    ) -> SignedParts:
        return params, {}, body

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        signed: bool = False,
    ) -> Any:
        session = await self._get_session()
        params = dict(params or {})
        body = json.dumps(json_body, separators=(",", ":")) if json_body is not None else None
        headers: Dict[str, str] = {}
        if body is not None:
            headers["Content-Type"] = "application/json"

        if signed:
            if not self.can_sign():
                raise RuntimeError(f"{self.exchange} API credentials required for signed request")
            params, extra_headers, body = self._sign(method.upper(), path, params, body)
            headers.update(extra_headers)

        url = f"{self.base_url}{path}"
        async with session.request(
            method.upper(),
            url,
            params=params or None,
            data=body,
            headers=headers,
        ) as resp:
            text = await resp.text()
            payload: Any
            try:
                payload = json.loads(text) if text else None
            except ValueError:
                payload = text

            if resp.status >= 400:
                code = None
                msg = None
                if isinstance(payload, dict):
                    code = payload.get("code")
                    msg = payload.get("msg") or payload.get("message")
                raise ExchangeAPIError(self.exchange, resp.status, code, msg, text)

            return payload

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        signed: bool = False,
    ) -> Any:
        return await self._request("GET", path, params=params, signed=signed)

    async def post(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        signed: bool = False,
    ) -> Any:
        return await self._request("POST", path, params=params, json_body=json_body, signed=signed)

    async def delete(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        signed: bool = False,
    ) -> Any:
        return await self._request("DELETE", path, params=params, signed=signed)


class QuerySignedRESTClient(RESTClient):
    """Binance-style futures API: HMAC-SHA256 over the query string, key in header."""

    def __init__(self, *args, recv_window_ms: int = 5000, **kwargs):
        super().__init__(*args, **kwargs)
        self.recv_window_ms = recv_window_ms

    def _sign(self, method, path, params, body) -> SignedParts:
        params.setdefault("timestamp", int(time.time() * 1000))
        params.setdefault("recvWindow", self.recv_window_ms)
        query = urlencode(params, doseq=True)
        params["signature"] = hmac.new(
            self.api_secret.encode("utf-8"),
            query.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return params, {"X-MBX-APIKEY": self.api_key}, body


class HeaderSignedRESTClient(RESTClient):
    """Nexo Pro style: HMAC-SHA256 over timestamp + method + path + body in headers."""

    def _sign(self, method, path, params, body) -> SignedParts:
        timestamp = str(int(time.time() * 1000))
        signed_path = f"{path}?{urlencode(params, doseq=True)}" if params else path
        message = f"{timestamp}{method}{signed_path}{body or ''}"
        signature = hmac.new(
            self.api_secret.encode("utf-8"),
            message.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        headers = {
            "Nexo-API-Key": self.api_key,
            "Nexo-Request-Timestamp": timestamp,
            "Nexo-Signature": signature,
        }
        return params, headers, body


class BearerRESTClient(RESTClient):
    """Token auth: every request carries the API key as a bearer token."""

    def can_sign(self) -> bool:
        return bool(self.api_key)

    async def _request(self, method, path, params=None, json_body=None, signed=False) -> Any:
        return await super()._request(method, path, params=params, json_body=json_body, signed=True)

    def _sign(self, method, path, params, body) -> SignedParts:
        return params, {"Authorization": f"Bearer {self.api_key}"}, body
