import httpx
import pytest

from errors import RateUnavailable
from sol_price import SolPriceFeed


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


class Upstream:
    """Counts requests and serves whatever ``response`` currently is."""

    def __init__(self, response) -> None:
        self.response = response
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def _feed(upstream: Upstream, clock: FakeClock, api_key=None) -> SolPriceFeed:
    return SolPriceFeed(
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(upstream)),
        cache_seconds=60,
        coingecko_api_key=api_key,
        coingecko_base_url="https://coingecko.example/api/v3",
        jupiter_api_url="https://quote.example/v6",
        clock=clock,
    )


class TestSolPriceFeed:
    @pytest.mark.asyncio
    async def test_jupiter_quote_without_api_key(self) -> None:
        upstream = Upstream(httpx.Response(200, json={"outAmount": "150250000"}))
        rate = await _feed(upstream, FakeClock()).get_rate()

        assert rate == pytest.approx(150.25)
        assert upstream.requests[0].url.path == "/v6/quote"
        assert upstream.requests[0].url.params["amount"] == "1000000000"

    @pytest.mark.asyncio
    async def test_coingecko_with_api_key(self) -> None:
        upstream = Upstream(httpx.Response(200, json={"solana": {"usd": 151.5}}))
        rate = await _feed(upstream, FakeClock(), api_key="demo-key").get_rate()

        assert rate == 151.5
        request = upstream.requests[0]
        assert request.url.path == "/api/v3/simple/price"
        assert request.headers["x-cg-demo-api-key"] == "demo-key"

    @pytest.mark.asyncio
    async def test_cached_within_window(self) -> None:
        upstream = Upstream(httpx.Response(200, json={"outAmount": "150000000"}))
        clock = FakeClock()
        feed = _feed(upstream, clock)

        await feed.get_rate()
        clock.now += 59
        await feed.get_rate()
        assert len(upstream.requests) == 1

        clock.now += 2
        upstream.response = httpx.Response(200, json={"outAmount": "160000000"})
        assert await feed.get_rate() == pytest.approx(160.0)
        assert len(upstream.requests) == 2

    @pytest.mark.asyncio
    async def test_stale_price_reused_when_upstream_fails(self) -> None:
        upstream = Upstream(httpx.Response(200, json={"outAmount": "150000000"}))
        clock = FakeClock()
        feed = _feed(upstream, clock)
        await feed.get_rate()

        clock.now += 3_600
        upstream.response = httpx.Response(500, text="boom")
        assert await feed.get_rate() == pytest.approx(150.0)

    @pytest.mark.asyncio
    async def test_no_cache_and_failure_raises(self) -> None:
        upstream = Upstream(httpx.ConnectError("unreachable"))
        with pytest.raises(RateUnavailable):
            await _feed(upstream, FakeClock()).get_rate()

    @pytest.mark.asyncio
    async def test_non_positive_price_rejected(self) -> None:
        upstream = Upstream(httpx.Response(200, json={"solana": {"usd": 0}}))
        with pytest.raises(RateUnavailable):
            await _feed(upstream, FakeClock(), api_key="demo-key").get_rate()
