# sol_price.py
import logging
import time
from typing import Callable, Optional

import httpx

from config import (
    COINGECKO_API_KEY, COINGECKO_BASE_URL, HTTP_TIMEOUT_SECONDS, JUPITER_API_URL,
    SOL_DECIMALS, SOL_PRICE_CACHE_SECONDS, USDC_DECIMALS, USDC_MINT_ADDRESS, WSOL_MINT_ADDRESS,
)
from errors import RateUnavailable


class SolPriceFeed:
    """
    SOL/USD rate with a read-through cache.

    CoinGecko is used when an API key is configured, otherwise the rate comes
    from a 1 SOL -> USDC Jupiter quote. When the upstream fails the last cached
    price is returned, however old.
    """

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, cache_seconds: int = SOL_PRICE_CACHE_SECONDS,
                 coingecko_api_key: Optional[str] = COINGECKO_API_KEY, coingecko_base_url: str = COINGECKO_BASE_URL,
                 jupiter_api_url: str = JUPITER_API_URL, clock: Callable[[], float] = time.monotonic):
        self.http_client = http_client or httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS)
        self.cache_seconds = cache_seconds
        self.coingecko_api_key = coingecko_api_key
        self.coingecko_base_url = coingecko_base_url.rstrip("/")
        self.jupiter_api_url = jupiter_api_url.rstrip("/")
        self.clock = clock
        self.sol_price_cache = {"price": None, "timestamp": 0.0}

    async def get_rate(self) -> float:
        now = self.clock()
        cached_price = self.sol_price_cache["price"]
        if cached_price is not None and now - self.sol_price_cache["timestamp"] < self.cache_seconds:
            return cached_price

        try:
            if self.coingecko_api_key:
                price = await self._fetch_from_coingecko()
            else:
                price = await self._fetch_from_jupiter()
        except RateUnavailable as e:
            if cached_price is not None:
                logging.warning(f"SOL price refresh failed, reusing cached {cached_price}: {e}")
                return cached_price
            raise

        self.sol_price_cache = {"price": price, "timestamp": now}
        return price

    async def _fetch_from_coingecko(self) -> float:
        headers = {"accept": "application/json", "x-cg-demo-api-key": self.coingecko_api_key}
        params = {"ids": "solana", "vs_currencies": "usd"}
        try:
            response = await self.http_client.get(f"{self.coingecko_base_url}/simple/price", params=params, headers=headers)
            response.raise_for_status()
            price = float(response.json()["solana"]["usd"])
        except httpx.HTTPError as e:
            raise RateUnavailable(f"Error fetching SOL price from CoinGecko: {e}") from e
        except (KeyError, TypeError, ValueError) as e:
            raise RateUnavailable("Invalid response format from CoinGecko API") from e
        if price <= 0:
            raise RateUnavailable("Invalid SOL price received from CoinGecko API.")
        return price

    async def _fetch_from_jupiter(self) -> float:
        params = {
            "inputMint": WSOL_MINT_ADDRESS,
            "outputMint": USDC_MINT_ADDRESS,
            "amount": 10**SOL_DECIMALS, # 1 SOL in lamports
            "slippageBps": 50,
        }
        try:
            response = await self.http_client.get(f"{self.jupiter_api_url}/quote", params=params)
            response.raise_for_status()
            price = float(response.json().get("outAmount", 0)) / (10**USDC_DECIMALS)
        except httpx.HTTPError as e:
            raise RateUnavailable(f"Error fetching SOL price from Jupiter: {e}") from e
        except (AttributeError, TypeError, ValueError) as e:
            raise RateUnavailable("Invalid quote format from Jupiter API") from e
        if price <= 0:
            raise RateUnavailable("Invalid SOL price received from Jupiter API.")
        return price

    async def close(self):
        await self.http_client.aclose()
