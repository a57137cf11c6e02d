import json

import httpx
import pytest
import respx

from annocache.exceptions import NetworkError, ParseError
from annocache.infra.http_fetcher import HttpFetcher, classify_transport_error
from annocache.models import FailureKind

URL = "https://api.example.org/data"


@pytest.fixture
def fetcher():
    return HttpFetcher(timeout=5.0, user_agent="annocache-tests")


class TestClassifyTransportError:
    @pytest.mark.parametrize(
        "error,kind,reason",
        [
            (httpx.ConnectError("dns"), FailureKind.NETWORK_OFFLINE, "Network offline"),
            (httpx.ConnectTimeout("slow"), FailureKind.TIMEOUT, "Request timed out"),
            (httpx.ReadTimeout("slow"), FailureKind.TIMEOUT, "Request timed out"),
            (httpx.ReadError("reset"), FailureKind.REMOTE_ERROR, "Connection error"),
            (httpx.RemoteProtocolError("bad"), FailureKind.REMOTE_ERROR, "Connection error"),
        ],
    )
    def test_table(self, error, kind, reason):
        classified = classify_transport_error(error)
        assert (classified.kind, classified.reason) == (kind, reason)


class TestHttpFetcher:
    @pytest.mark.asyncio
    async def test_sends_user_agent(self):
        async with HttpFetcher(user_agent="annocache-tests") as f:
            with respx.mock:
                route = respx.get(URL).mock(return_value=httpx.Response(200, json={"ok": True}))
                assert await f.get_json(URL) == {"ok": True}
                assert route.calls[0].request.headers["User-Agent"] == "annocache-tests"
        assert f.is_closed

    @pytest.mark.asyncio
    async def test_query_params(self, fetcher):
        with respx.mock:
            route = respx.get(host="api.example.org", path="/data").mock(
                return_value=httpx.Response(200, text="{}")
            )
            await fetcher.get_text(URL, params={"chrom": "chr1", "start": 99})
            assert "chrom=chr1" in str(route.calls[0].request.url)
            assert "start=99" in str(route.calls[0].request.url)

    @pytest.mark.asyncio
    async def test_non_2xx_is_api_error(self, fetcher):
        with respx.mock:
            respx.get(URL).mock(return_value=httpx.Response(503))
            with pytest.raises(NetworkError) as exc_info:
                await fetcher.get_text(URL)
        assert exc_info.value.reason == "API error: 503"
        assert exc_info.value.kind == FailureKind.REMOTE_ERROR

    @pytest.mark.asyncio
    async def test_not_found_allowed(self, fetcher):
        with respx.mock:
            respx.get(URL).mock(return_value=httpx.Response(404))
            assert await fetcher.get_json(URL, allow_not_found=True) is None
            with pytest.raises(NetworkError, match="API error: 404"):
                await fetcher.get_json(URL)

    @pytest.mark.asyncio
    async def test_connect_error_is_offline(self, fetcher):
        with respx.mock:
            respx.get(URL).mock(side_effect=httpx.ConnectError("no route"))
            with pytest.raises(NetworkError) as exc_info:
                await fetcher.get_text(URL)
        assert exc_info.value.kind == FailureKind.NETWORK_OFFLINE
        assert exc_info.value.reason == "Network offline"

    @pytest.mark.asyncio
    async def test_timeout(self, fetcher):
        with respx.mock:
            respx.get(URL).mock(side_effect=httpx.ReadTimeout("slow"))
            with pytest.raises(NetworkError) as exc_info:
                await fetcher.get_text(URL)
        assert exc_info.value.kind == FailureKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_invalid_json_is_parse_error(self, fetcher):
        with respx.mock:
            respx.get(URL).mock(return_value=httpx.Response(200, text="<html>"))
            with pytest.raises(ParseError):
                await fetcher.get_json(URL)

    @pytest.mark.asyncio
    async def test_post_json(self, fetcher):
        with respx.mock:
            route = respx.post(URL).mock(return_value=httpx.Response(200, json={"data": 1}))
            assert await fetcher.post_json(URL, {"query": "{ x }"}) == {"data": 1}
            assert json.loads(route.calls[0].request.content) == {"query": "{ x }"}
