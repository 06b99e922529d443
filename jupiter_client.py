# jupiter_client.py
import logging
from base64 import b64decode
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from config import HTTP_TIMEOUT_SECONDS, JUPITER_API_URL, PRIORITY_FEE_LAMPORTS, SLIPPAGE_BPS
from errors import NoRoute, QuoteUnavailable


@dataclass(frozen=True)
class Quote:
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    price_impact_pct: float
    slippage_bps: int
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass
class SwapInstructions:
    compute_budget_instructions: List[Instruction]
    setup_instructions: List[Instruction]
    swap_instruction: Instruction
    cleanup_instruction: Optional[Instruction]
    address_lookup_table_addresses: List[str]


def deserialize_instruction(payload: Dict[str, Any]) -> Instruction:
    """Builds a solders Instruction from Jupiter's JSON instruction shape."""
    accounts = [
        AccountMeta(
            pubkey=Pubkey.from_string(account["pubkey"]),
            is_signer=account["isSigner"],
            is_writable=account["isWritable"],
        )
        for account in payload["accounts"]
    ]
    return Instruction(
        program_id=Pubkey.from_string(payload["programId"]),
        data=b64decode(payload["data"]),
        accounts=accounts,
    )


class JupiterSwapClient:
    """Quote provider backed by the Jupiter v6 aggregator API."""

    def __init__(self, api_url: str = JUPITER_API_URL, http_client: Optional[httpx.AsyncClient] = None,
                 slippage_bps: int = SLIPPAGE_BPS, priority_fee_lamports: int = PRIORITY_FEE_LAMPORTS):
        self.jupiter_api_url = api_url.rstrip("/")
        self.http_client = http_client or httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS)
        self.slippage_bps = slippage_bps
        self.priority_fee_lamports = priority_fee_lamports

    async def get_quote(self, input_mint: str, output_mint: str, amount: int, slippage_bps: Optional[int] = None) -> Quote:
        """
        Gets a quote for swapping ``amount`` raw units of input_mint into output_mint.

        Raises:
            NoRoute: Jupiter found no liquidity path for the pair.
            QuoteUnavailable: Transport error, timeout or malformed response.
        """
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": amount,
            "slippageBps": slippage_bps if slippage_bps is not None else self.slippage_bps,
            "asLegacyTransaction": "false",
        }
        try:
            response = await self.http_client.get(f"{self.jupiter_api_url}/quote", params=params)
        except httpx.TimeoutException as e:
            raise QuoteUnavailable(f"Timed out fetching quote for {input_mint} -> {output_mint}") from e
        except httpx.RequestError as e:
            raise QuoteUnavailable(f"Network error fetching quote: {e}") from e

        if response.status_code >= 400:
            body = self._safe_json(response)
            error_code = str(body.get("errorCode", ""))
            error_message = str(body.get("error", response.text))
            if error_code in ("COULD_NOT_FIND_ANY_ROUTE", "TOKEN_NOT_TRADABLE") or "route" in error_message.lower():
                raise NoRoute(f"No route for {input_mint} -> {output_mint}: {error_message}")
            raise QuoteUnavailable(f"Quote request failed ({response.status_code}): {error_message}")

        quote = self._safe_json(response)
        if not quote.get("outAmount"):
            raise QuoteUnavailable("Did not receive a valid quote from Jupiter API.")

        try:
            parsed = Quote(
                input_mint=quote.get("inputMint", input_mint),
                output_mint=quote.get("outputMint", output_mint),
                in_amount=int(quote.get("inAmount", amount)),
                out_amount=int(quote["outAmount"]),
                price_impact_pct=float(quote.get("priceImpactPct") or 0.0),
                slippage_bps=int(quote.get("slippageBps", params["slippageBps"])),
                raw=quote,
            )
        except (TypeError, ValueError) as e:
            raise QuoteUnavailable(f"Malformed quote from Jupiter API: {e}") from e

        if parsed.out_amount <= 0:
            raise NoRoute(f"Quote for {input_mint} -> {output_mint} has no output")
        logging.info(f"Received quote. {parsed.in_amount} {input_mint} -> {parsed.out_amount} {output_mint} (impact {parsed.price_impact_pct}%)")
        return parsed

    async def get_swap_instructions(self, quote: Quote, user_public_key: str) -> SwapInstructions:
        """Fetches the execution leg for a quote as individual instructions."""
        payload = {
            "quoteResponse": quote.raw,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": True,
            "prioritizationFeeLamports": self.priority_fee_lamports,
            "asLegacyTransaction": False,
        }
        try:
            response = await self.http_client.post(f"{self.jupiter_api_url}/swap-instructions", json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise QuoteUnavailable(f"Failed to get swap instructions: {e.response.status_code} - {e.response.text}") from e
        except httpx.RequestError as e:
            raise QuoteUnavailable(f"Network error fetching swap instructions: {e}") from e

        data = self._safe_json(response)
        if data.get("error") or not data.get("swapInstruction"):
            raise QuoteUnavailable(f"Failed to get swap instructions: {data.get('error', 'missing swapInstruction')}")

        try:
            cleanup = data.get("cleanupInstruction")
            return SwapInstructions(
                compute_budget_instructions=[deserialize_instruction(i) for i in data.get("computeBudgetInstructions") or []],
                setup_instructions=[deserialize_instruction(i) for i in data.get("setupInstructions") or []],
                swap_instruction=deserialize_instruction(data["swapInstruction"]),
                cleanup_instruction=deserialize_instruction(cleanup) if cleanup else None,
                address_lookup_table_addresses=list(data.get("addressLookupTableAddresses") or []),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise QuoteUnavailable(f"Malformed swap instructions from Jupiter API: {e}") from e

    async def close(self):
        await self.http_client.aclose()

    @staticmethod
    def _safe_json(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
