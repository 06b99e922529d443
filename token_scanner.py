# token_scanner.py
import logging
from typing import Optional

import httpx

from config import HTTP_TIMEOUT_SECONDS, TOKEN_SCANNER_API_KEY, TOKEN_SCANNER_API_URL
from errors import NotFound
from positions import TokenSnapshot


class TokenScanner:
    """Price lookup against the token analytics API. Prices and market caps are in USD."""

    def __init__(self, base_url: Optional[str] = TOKEN_SCANNER_API_URL, api_key: Optional[str] = TOKEN_SCANNER_API_KEY,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.http_client = http_client or httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS)

    async def get_token_snapshot(self, token_address: str) -> TokenSnapshot:
        """
        Fetches name, symbol, price, supply and market cap for a token.

        Raises:
            NotFound: The token is unknown or the API could not be reached.
        """
        headers = {"X-API-KEY": self.api_key or "", "Content-Type": "application/json"}
        try:
            response = await self.http_client.get(f"{self.base_url}/token/{token_address}", headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise NotFound(f"Token {token_address} not found ({e.response.status_code})") from e
        except httpx.RequestError as e:
            raise NotFound(f"Token lookup for {token_address} failed: {e}") from e
        except ValueError as e:
            raise NotFound(f"Token lookup for {token_address} returned invalid JSON") from e

        if not isinstance(data, dict):
            raise NotFound(f"Token lookup for {token_address} returned an unexpected payload")
        token_data = data.get("tokenData") or {}
        token_info = data.get("tokenInfo") or {}
        if not isinstance(token_data, dict) or not isinstance(token_info, dict) or not token_info:
            raise NotFound(f"No token info for {token_address}")

        try:
            snapshot = TokenSnapshot(
                address=token_data.get("address", token_address),
                name=token_data.get("tokenName", ""),
                symbol=token_data.get("tokenSymbol", ""),
                price=float(token_info.get("price") or 0),
                market_cap=float(round(token_info.get("mktCap") or 0)),
                supply=float(round(token_info.get("supplyAmount") or 0)),
            )
        except (TypeError, ValueError) as e:
            raise NotFound(f"Malformed token info for {token_address}: {e}") from e

        logging.debug(f"Token snapshot for {token_address}: price={snapshot.price} mc={snapshot.market_cap}")
        return snapshot

    async def close(self):
        await self.http_client.aclose()
