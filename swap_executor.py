# swap_executor.py
import enum
import logging
from dataclasses import dataclass
from typing import Optional

from solders.message import MessageV0
from solders.transaction import VersionedTransaction

from config import (
    FEE_WALLET_ADDRESS, MINIMUM_FEE_LAMPORTS, PLATFORM_FEE_RATE, PRIORITY_FEE_LAMPORTS,
    SLIPPAGE_BPS, SOLSCAN_TX_URL, WSOL_MINT_ADDRESS,
)
from errors import ConfirmationTimeout, InsufficientFunds, InvalidInput, TradingError
from fees import create_fee_transfer_instruction, hybrid_fee
from jupiter_client import JupiterSwapClient, Quote
from solana_client import SolanaLedgerClient
from wallet import keypair_from_credential, parse_address


class SwapDirection(enum.Enum):
    BUY = "BUY" # SOL -> token
    SELL = "SELL" # token -> SOL


class SwapOutcome(enum.Enum):
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN" # submitted, never confirmed


@dataclass
class SwapResult:
    success: bool
    outcome: SwapOutcome
    signature: Optional[str] = None
    tx_url: Optional[str] = None
    error: Optional[str] = None
    error_details: Optional[Exception] = None
    quote: Optional[Quote] = None
    fee_lamports: int = 0

    @property
    def error_kind(self) -> Optional[str]:
        if isinstance(self.error_details, TradingError):
            return self.error_details.code
        if self.error_details is not None:
            return "UNKNOWN"
        return None


class SwapExecutor:
    """
    Builds, signs and submits a fee-adjusted Jupiter swap.

    Bookkeeping is the caller's job: the result carries the quote so a trade
    can be recorded, but only when ``success`` is True.
    """

    def __init__(self, quote_provider: JupiterSwapClient, ledger: SolanaLedgerClient,
                 fee_wallet_address: Optional[str] = FEE_WALLET_ADDRESS, fee_rate: float = PLATFORM_FEE_RATE,
                 minimum_fee_lamports: int = MINIMUM_FEE_LAMPORTS, priority_fee_lamports: int = PRIORITY_FEE_LAMPORTS,
                 slippage_bps: int = SLIPPAGE_BPS):
        self.quote_provider = quote_provider
        self.ledger = ledger
        self.fee_wallet_address = fee_wallet_address
        self.fee_rate = fee_rate
        self.minimum_fee_lamports = minimum_fee_lamports
        self.priority_fee_lamports = priority_fee_lamports
        self.slippage_bps = slippage_bps

    async def get_quote_info(self, token_address: str, direction: SwapDirection, amount: int) -> Quote:
        """Quote preview without executing anything."""
        input_mint, output_mint = self._mints(token_address, direction)
        return await self.quote_provider.get_quote(input_mint, output_mint, amount, self.slippage_bps)

    async def execute_swap(self, token_address: str, direction: SwapDirection, amount: int, credential: str) -> SwapResult:
        signature = None
        quote = None
        total_fees = 0
        try:
            if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
                raise InvalidInput(f"Swap amount must be a positive integer, got {amount!r}")
            if not isinstance(direction, SwapDirection):
                raise InvalidInput(f"Unknown swap direction: {direction!r}")
            parse_address(token_address)
            payer = keypair_from_credential(credential)
            fee_recipient = parse_address(self.fee_wallet_address, "Fee wallet address")

            input_mint, output_mint = self._mints(token_address, direction)
            logging.info(f"Executing {direction.value} of {token_address} with {amount} raw units for {payer.pubkey()}")

            quote = await self.quote_provider.get_quote(input_mint, output_mint, amount, self.slippage_bps)

            notional = amount if direction is SwapDirection.BUY else quote.out_amount
            platform_fee = hybrid_fee(notional, self.fee_rate, self.minimum_fee_lamports)
            total_fees = platform_fee + self.priority_fee_lamports

            required = (amount if direction is SwapDirection.BUY else 0) + total_fees
            available = await self.ledger.get_balance(payer.pubkey())
            if available < required:
                raise InsufficientFunds(required, available)

            swap_instructions = await self.quote_provider.get_swap_instructions(quote, str(payer.pubkey()))

            # Fee transfer goes first so it is collected before the swap touches the balance
            instructions = [create_fee_transfer_instruction(payer.pubkey(), platform_fee, fee_recipient)]
            instructions.extend(swap_instructions.compute_budget_instructions)
            instructions.extend(swap_instructions.setup_instructions)
            instructions.append(swap_instructions.swap_instruction)
            if swap_instructions.cleanup_instruction is not None:
                instructions.append(swap_instructions.cleanup_instruction)

            lookup_tables = await self.ledger.get_address_lookup_tables(swap_instructions.address_lookup_table_addresses)
            blockhash, last_valid_block_height = await self.ledger.get_latest_blockhash()

            message = MessageV0.try_compile(payer.pubkey(), instructions, lookup_tables, blockhash)
            transaction = VersionedTransaction(message, [payer])

            signature = await self.ledger.submit(transaction)
            await self.ledger.confirm(signature, last_valid_block_height)

            logging.info(f"{direction.value} of {token_address} confirmed: {signature}")
            return SwapResult(
                success=True,
                outcome=SwapOutcome.CONFIRMED,
                signature=str(signature),
                tx_url=f"{SOLSCAN_TX_URL}{signature}",
                quote=quote,
                fee_lamports=total_fees,
            )

        except ConfirmationTimeout as e:
            logging.error(f"Swap outcome unknown for {token_address}: {e}. Check the transaction before retrying.")
            return SwapResult(
                success=False,
                outcome=SwapOutcome.UNKNOWN,
                signature=e.signature,
                tx_url=f"{SOLSCAN_TX_URL}{e.signature}",
                error=f"{e.code}: {e.message}",
                error_details=e,
                quote=quote,
                fee_lamports=total_fees,
            )
        except TradingError as e:
            logging.error(f"Swap execution error for {token_address}: {e.code}: {e.message}")
            return SwapResult(
                success=False,
                outcome=SwapOutcome.FAILED,
                error=f"{e.code}: {e.message}",
                error_details=e,
                quote=quote,
            )
        except Exception as e:
            # Once submitted, an unexpected error leaves the outcome undetermined
            outcome = SwapOutcome.UNKNOWN if signature is not None else SwapOutcome.FAILED
            logging.error(f"Unexpected swap execution error for {token_address}: {e}", exc_info=True)
            return SwapResult(
                success=False,
                outcome=outcome,
                signature=str(signature) if signature is not None else None,
                error=f"UNKNOWN: {e or 'Unknown error occurred'}",
                error_details=e,
                quote=quote,
            )

    @staticmethod
    def _mints(token_address: str, direction: SwapDirection):
        if direction is SwapDirection.BUY:
            return WSOL_MINT_ADDRESS, token_address
        return token_address, WSOL_MINT_ADDRESS
