import base64

import httpx
import pytest
from solders.pubkey import Pubkey

from conftest import TOKEN_X
from config import WSOL_MINT_ADDRESS
from errors import NoRoute, QuoteUnavailable
from jupiter_client import JupiterSwapClient, Quote, deserialize_instruction

API = "https://quote.example/v6"
PROGRAM = "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"
ACCOUNT = "So11111111111111111111111111111111111111112"


def _client(handler) -> JupiterSwapClient:
    return JupiterSwapClient(api_url=API, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
                             slippage_bps=1500, priority_fee_lamports=5_000_000)


def _ix(data: bytes = b"\x02\x03") -> dict:
    return {
        "programId": PROGRAM,
        "accounts": [{"pubkey": ACCOUNT, "isSigner": False, "isWritable": True}],
        "data": base64.b64encode(data).decode(),
    }


QUOTE_BODY = {
    "inputMint": WSOL_MINT_ADDRESS,
    "outputMint": TOKEN_X,
    "inAmount": "1000000000",
    "outAmount": "1500000000",
    "priceImpactPct": "0.12",
    "slippageBps": 1500,
}


class TestGetQuote:
    @pytest.mark.asyncio
    async def test_parses_quote(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = request.url
            return httpx.Response(200, json=QUOTE_BODY)

        quote = await _client(handler).get_quote(WSOL_MINT_ADDRESS, TOKEN_X, 1_000_000_000)

        assert quote == Quote(WSOL_MINT_ADDRESS, TOKEN_X, 1_000_000_000, 1_500_000_000, 0.12, 1500)
        assert quote.raw == QUOTE_BODY
        assert seen["url"].path == "/v6/quote"
        assert seen["url"].params["amount"] == "1000000000"
        assert seen["url"].params["slippageBps"] == "1500"

    @pytest.mark.asyncio
    async def test_no_route_error_code(self) -> None:
        def handler(request):
            return httpx.Response(400, json={"error": "Could not find any route", "errorCode": "COULD_NOT_FIND_ANY_ROUTE"})

        with pytest.raises(NoRoute):
            await _client(handler).get_quote(WSOL_MINT_ADDRESS, TOKEN_X, 1_000)

    @pytest.mark.asyncio
    async def test_zero_output_is_no_route(self) -> None:
        def handler(request):
            return httpx.Response(200, json={**QUOTE_BODY, "outAmount": "0"})

        with pytest.raises(NoRoute):
            await _client(handler).get_quote(WSOL_MINT_ADDRESS, TOKEN_X, 1_000)

    @pytest.mark.asyncio
    async def test_server_error_is_quote_unavailable(self) -> None:
        def handler(request):
            return httpx.Response(503, text="upstream down")

        with pytest.raises(QuoteUnavailable) as exc_info:
            await _client(handler).get_quote(WSOL_MINT_ADDRESS, TOKEN_X, 1_000)
        assert not isinstance(exc_info.value, NoRoute)

    @pytest.mark.asyncio
    async def test_timeout_is_quote_unavailable(self) -> None:
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(QuoteUnavailable):
            await _client(handler).get_quote(WSOL_MINT_ADDRESS, TOKEN_X, 1_000)


class TestGetSwapInstructions:
    @pytest.mark.asyncio
    async def test_deserializes_all_groups(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = request.read()
            return httpx.Response(200, json={
                "computeBudgetInstructions": [_ix(b"\x01"), _ix(b"\x02")],
                "setupInstructions": [_ix(b"\x03")],
                "swapInstruction": _ix(b"\x04"),
                "cleanupInstruction": None,
                "addressLookupTableAddresses": [ACCOUNT],
            })

        quote = Quote(WSOL_MINT_ADDRESS, TOKEN_X, 1, 2, 0.0, 1500, raw=QUOTE_BODY)
        instructions = await _client(handler).get_swap_instructions(quote, ACCOUNT)

        assert seen["path"] == "/v6/swap-instructions"
        assert b'"prioritizationFeeLamports":5000000' in seen["body"].replace(b" ", b"")
        assert [bytes(i.data) for i in instructions.compute_budget_instructions] == [b"\x01", b"\x02"]
        assert bytes(instructions.swap_instruction.data) == b"\x04"
        assert instructions.cleanup_instruction is None
        assert instructions.address_lookup_table_addresses == [ACCOUNT]

    @pytest.mark.asyncio
    async def test_error_payload(self) -> None:
        def handler(request):
            return httpx.Response(200, json={"error": "quote expired"})

        quote = Quote(WSOL_MINT_ADDRESS, TOKEN_X, 1, 2, 0.0, 1500)
        with pytest.raises(QuoteUnavailable):
            await _client(handler).get_swap_instructions(quote, ACCOUNT)


def test_deserialize_instruction() -> None:
    instruction = deserialize_instruction(_ix(b"\xff\x00"))
    assert instruction.program_id == Pubkey.from_string(PROGRAM)
    assert bytes(instruction.data) == b"\xff\x00"
    assert instruction.accounts[0].is_writable is True
    assert instruction.accounts[0].is_signer is False
