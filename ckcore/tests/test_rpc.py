"""
Tests for ckcore.rpc
"""

import json

import httpx
import pytest

from ckcore.cache import TTLCache
from ckcore.rpc import JSONRPCClient, RPCError, RPCServicePool, UnknownEndpointError


def make_client(handler) -> JSONRPCClient:
    return JSONRPCClient(
        "http://node.local:8332/",
        user="rpcuser",
        password="rpcpass",
        transport=httpx.MockTransport(handler),
    )


class TestJSONRPCClient:
    def test_call_sends_jsonrpc_payload(self) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"result": 812345, "error": None, "id": 1})

        client = make_client(handler)
        assert client.call("getblockcount") == 812345

        body = json.loads(requests[0].content)
        assert body["method"] == "getblockcount"
        assert body["params"] == []
        assert body["jsonrpc"] == "2.0"
        assert requests[0].url.host == "node.local"
        assert requests[0].headers["authorization"].startswith("Basic ")

    def test_named_params(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(json.loads(request.content))
            return httpx.Response(200, json={"result": {"block_index": 5}})

        client = make_client(handler)
        client.call("get_block_info", {"block_index": 5})
        assert seen["params"] == {"block_index": 5}

    def test_request_ids_increment(self) -> None:
        ids = []

        def handler(request: httpx.Request) -> httpx.Response:
            ids.append(json.loads(request.content)["id"])
            return httpx.Response(200, json={"result": None})

        client = make_client(handler)
        client.call("a")
        client.call("b")
        assert ids == [1, 2]

    def test_error_object_raises_rpc_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                500,
                json={
                    "result": None,
                    "error": {"code": -5, "message": "No such mempool or blockchain transaction"},
                },
            )

        client = make_client(handler)
        with pytest.raises(RPCError, match="No such mempool") as exc_info:
            client.call("getrawtransaction", ["00" * 32, 1])
        assert exc_info.value.code == -5
        assert exc_info.value.method == "getrawtransaction"

    def test_http_error_propagates(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, text="Unauthorized")

        client = make_client(handler)
        with pytest.raises(httpx.HTTPStatusError):
            client.call("getblockcount")

    def test_server_error_without_json_propagates(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="Internal Server Error")

        client = make_client(handler)
        with pytest.raises(httpx.HTTPStatusError):
            client.call("getblockcount")

    def test_connection_error_propagates(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)
        with pytest.raises(httpx.ConnectError):
            client.call("getblockcount")


class TestRPCServicePool:
    def make_pool(self, results: dict, calls: list) -> RPCServicePool:
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            calls.append(body["method"])
            return httpx.Response(200, json={"result": results[body["method"]]})

        return RPCServicePool({"bitcoind": make_client(handler)}, cache=TTLCache())

    def test_unknown_endpoint(self) -> None:
        pool = RPCServicePool({})
        assert not pool.has_endpoint("geth")
        with pytest.raises(UnknownEndpointError, match="geth"):
            pool.execute("geth", "eth_blockNumber")

    def test_uncached_calls_hit_the_service(self) -> None:
        calls: list = []
        pool = self.make_pool({"getrawmempool": ["aa"]}, calls)
        pool.execute("bitcoind", "getrawmempool")
        pool.execute("bitcoind", "getrawmempool")
        assert calls == ["getrawmempool", "getrawmempool"]

    def test_cached_result_is_reused(self) -> None:
        calls: list = []
        pool = self.make_pool({"getrawtransaction": "0100"}, calls)
        first = pool.execute("bitcoind", "getrawtransaction", ["ab", 0], cache_result=True)
        second = pool.execute("bitcoind", "getrawtransaction", ["ab", 0], cache_result=True)
        assert first == second == "0100"
        assert calls == ["getrawtransaction"]

    def test_cache_keyed_by_params(self) -> None:
        calls: list = []
        pool = self.make_pool({"getrawtransaction": "0100"}, calls)
        pool.execute("bitcoind", "getrawtransaction", ["ab", 0], cache_result=True)
        pool.execute("bitcoind", "getrawtransaction", ["cd", 0], cache_result=True)
        assert len(calls) == 2

    def test_cache_if_rejects_result(self) -> None:
        calls: list = []
        pool = self.make_pool({"getrawtransaction": ""}, calls)
        pool.execute("bitcoind", "getrawtransaction", ["ab", 0], cache_result=True, cache_if=bool)
        pool.execute("bitcoind", "getrawtransaction", ["ab", 0], cache_result=True, cache_if=bool)
        assert len(calls) == 2

    def test_errors_are_not_cached(self) -> None:
        responses = iter(
            [
                httpx.Response(500, json={"error": {"code": -28, "message": "Loading"}}),
                httpx.Response(200, json={"result": 7}),
            ]
        )

        def handler(request: httpx.Request) -> httpx.Response:
            return next(responses)

        pool = RPCServicePool({"bitcoind": make_client(handler)})
        with pytest.raises(RPCError):
            pool.execute("bitcoind", "getblockcount", cache_result=True)
        assert pool.execute("bitcoind", "getblockcount", cache_result=True) == 7
