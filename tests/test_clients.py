import asyncio
import json

import httpx
import pytest

from raffle_watcher.api import BlockberryClient, IndexerNotConfiguredError, RpcError, SuiRpcClient


def rpc_with(handler) -> SuiRpcClient:
    return SuiRpcClient("https://rpc.test", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def indexer_with(handler, api_key: str = "secret") -> BlockberryClient:
    return BlockberryClient(
        api_key=api_key,
        base_url="https://indexer.test/v1/sui",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def test_query_events_sends_descending_query():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(json.loads(request.content))
        return httpx.Response(
            200,
            json={
                "jsonrpc": "2.0",
                "id": 1,
                "result": {
                    "data": [{"id": {"txDigest": "D", "eventSeq": "0"}}],
                    "nextCursor": {"txDigest": "D", "eventSeq": "0"},
                    "hasNextPage": True,
                },
            },
        )

    page = asyncio.run(rpc_with(handler).query_events("0x2::coin::TransferEvent<T>", limit=50))

    assert seen["method"] == "suix_queryEvents"
    assert seen["params"] == [{"MoveEventType": "0x2::coin::TransferEvent<T>"}, None, 50, True]
    assert len(page.data) == 1
    assert page.has_next_page
    assert page.next_cursor == {"txDigest": "D", "eventSeq": "0"}


def test_rpc_error_object_raises():
    def handler(request):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "bad"}})

    with pytest.raises(RpcError):
        asyncio.run(rpc_with(handler).get_token_metadata("0x2::sui::SUI"))


def test_sender_lookup_failure_returns_none():
    def handler(request):
        return httpx.Response(503)

    assert asyncio.run(rpc_with(handler).get_transaction_sender("D")) is None


def test_latest_epoch_is_a_string():
    def handler(request):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {"epoch": 812}})

    assert asyncio.run(rpc_with(handler).get_latest_epoch()) == "812"


def test_trades_accepts_bare_list():
    def handler(request):
        assert request.headers["x-api-key"] == "secret"
        assert request.url.params["coinType"] == "0xabc::moon::MOON"
        return httpx.Response(200, json=[{"txDigest": "T1"}])

    page = asyncio.run(indexer_with(handler).fetch_trades("0xabc::moon::MOON"))
    assert page.trades == [{"txDigest": "T1"}]
    assert page.next_cursor is None


def test_trades_reads_cursor_variants():
    def handler(request):
        return httpx.Response(200, json={"data": [{"txDigest": "T1"}], "pageInfo": {"endCursor": "abc"}})

    page = asyncio.run(indexer_with(handler).fetch_trades("0xabc::moon::MOON"))
    assert page.next_cursor == "abc"


def test_trades_with_non_list_data_is_empty():
    def handler(request):
        return httpx.Response(200, json={"data": {"unexpected": True}})

    page = asyncio.run(indexer_with(handler).fetch_trades("0xabc::moon::MOON"))
    assert page.trades == []


def test_unconfigured_indexer_refuses_calls():
    client = indexer_with(lambda request: httpx.Response(200, json=[]), api_key="")
    assert not client.is_configured()
    with pytest.raises(IndexerNotConfiguredError):
        asyncio.run(client.fetch_trades("0xabc::moon::MOON"))


def test_http_errors_propagate():
    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(indexer_with(lambda request: httpx.Response(500)).fetch_trades("0xabc::moon::MOON"))
