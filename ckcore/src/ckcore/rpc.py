"""
JSON-RPC transport for the node services (bitcoind, counterpartyd, eth-service, geth).

Transport failures are never retried here; they propagate to the caller as
``httpx.HTTPError``. JSON-RPC error objects are raised as :class:`RPCError`.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from typing import Any

import httpx
from loguru import logger

from ckcore.cache import TTLCache

DEFAULT_CONNECT_TIMEOUT = 15.0
DEFAULT_RPC_TIMEOUT = 240.0

RPCParams = list[Any] | dict[str, Any] | None


class RPCError(ValueError):
    """JSON-RPC error returned by a service."""

    def __init__(self, method: str, code: Any, message: str):
        self.method = method
        self.code = code
        self.message = message
        super().__init__(f"RPC error {code} in {method}: {message}")


class UnknownEndpointError(LookupError):
    """Raised when a call names an endpoint that is not configured."""

    pass


class JSONRPCClient:
    """
    Synchronous JSON-RPC 2.0 client for a single endpoint.

    Params may be positional (list, bitcoind style) or named (dict,
    counterpartyd style).
    """

    def __init__(
        self,
        url: str,
        user: str | None = None,
        password: str | None = None,
        timeout: float = DEFAULT_RPC_TIMEOUT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        self.url = url.rstrip("/")
        auth = (user, password or "") if user else None
        self.client = httpx.Client(
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            auth=auth,
            transport=transport,
        )
        self._request_id = 0

    def call(self, method: str, params: RPCParams = None) -> Any:
        """
        Make an RPC call.

        Returns:
            Decoded ``result`` member of the response

        Raises:
            RPCError: On JSON-RPC errors
            httpx.HTTPError: On connection/timeout/HTTP status errors
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params if params is not None else [],
        }

        try:
            response = self.client.post(self.url, json=payload)
            data = self._decode(response)
        except httpx.TimeoutException as e:
            logger.error(f"RPC call timed out: {method} - {e}")
            raise
        except httpx.HTTPError as e:
            logger.error(f"RPC call failed: {method} - {e}")
            raise

        if data.get("error"):
            error_info = data["error"]
            if isinstance(error_info, Mapping):
                raise RPCError(
                    method,
                    error_info.get("code", "unknown"),
                    error_info.get("message", str(error_info)),
                )
            raise RPCError(method, "unknown", str(error_info))

        return data.get("result")

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        # bitcoind reports RPC errors with HTTP 500 and a JSON error body
        if response.status_code == 500:
            try:
                return response.json()
            except ValueError:
                pass
        response.raise_for_status()
        return response.json()

    def close(self) -> None:
        self.client.close()


class RPCServicePool:
    """
    Named JSON-RPC endpoints with optional result caching.

    Results are only cached after a successful call, and only when the caller
    asks for it.
    """

    def __init__(
        self,
        clients: Mapping[str, JSONRPCClient],
        cache: TTLCache | None = None,
    ):
        self._clients = dict(clients)
        self.cache = cache if cache is not None else TTLCache()

    def has_endpoint(self, name: str) -> bool:
        return name in self._clients

    def client(self, name: str) -> JSONRPCClient:
        try:
            return self._clients[name]
        except KeyError:
            raise UnknownEndpointError(f"RPC endpoint not configured: {name}") from None

    @staticmethod
    def _cache_key(endpoint: str, method: str, params: RPCParams) -> str:
        return f"rpc:{endpoint}:{method}:{json.dumps(params, sort_keys=True, default=str)}"

    def execute(
        self,
        endpoint: str,
        method: str,
        params: RPCParams = None,
        log_result: bool = False,
        cache_result: bool = False,
        cache_if: Callable[[Any], bool] | None = None,
    ) -> Any:
        """
        Execute ``method`` against a named endpoint.

        Args:
            endpoint: Configured endpoint name (e.g. "bitcoind", "eth-service")
            method: RPC method
            params: Positional or named params
            log_result: Log the call result at INFO instead of DEBUG
            cache_result: Serve from / store into the result cache
            cache_if: Extra predicate a result must pass before it is cached
        """
        client = self.client(endpoint)
        key = self._cache_key(endpoint, method, params)

        if cache_result and key in self.cache:
            result = self.cache.get(key)
            logger.debug(f"{endpoint}.{method}: served from cache")
            return result

        result = client.call(method, params)

        if log_result:
            logger.info(f"{endpoint}.{method}({params}) -> {result}")
        else:
            logger.debug(f"{endpoint}.{method} completed")

        if cache_result and (cache_if is None or cache_if(result)):
            self.cache.set(key, result)

        return result

    def close(self) -> None:
        for client in self._clients.values():
            client.close()
