# trading_bot.py
import asyncio
import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import List, Optional

from solana.exceptions import SolanaRpcException
from solders.pubkey import Pubkey

from config import BALANCE_CACHE_SECONDS, SCHEDULED_TASK_INTERVAL_SECONDS, SOL_DECIMALS
from errors import InvalidInput, NotFound
from jupiter_client import JupiterSwapClient, Quote
from positions import Position, PortfolioSummary, TokenSnapshot, Trade, derive_positions, refresh_pnl, summarize
from sessions import PositionsPage, UserSession, paginate_positions
from sol_price import SolPriceFeed
from solana_client import SolanaLedgerClient
from swap_executor import SwapDirection, SwapExecutor, SwapResult
from token_scanner import TokenScanner
from user_repository import User, UserRepository
from wallet import create_wallet


@dataclass
class TradeOutcome:
    """What a buy or sell produced. ``trade`` is None unless the swap was confirmed and recorded."""
    result: SwapResult
    trade: Optional[Trade] = None
    user: Optional[User] = None


class TradingBot:
    def __init__(self, repository: Optional[UserRepository] = None, jupiter_client: Optional[JupiterSwapClient] = None,
                 ledger: Optional[SolanaLedgerClient] = None, scanner: Optional[TokenScanner] = None,
                 sol_price_feed: Optional[SolPriceFeed] = None, executor: Optional[SwapExecutor] = None):
        self.repository = repository or UserRepository()
        self.jupiter_client = jupiter_client or JupiterSwapClient()
        self.ledger = ledger or SolanaLedgerClient()
        self.scanner = scanner or TokenScanner()
        self.sol_price_feed = sol_price_feed or SolPriceFeed()
        self.executor = executor or SwapExecutor(self.jupiter_client, self.ledger)
        logging.info("TradingBot initialized.")

    # --- users and wallets ---

    async def get_or_create_user(self, telegram_id: str) -> User:
        """Loads the user, provisioning a wallet and fetching its balance on first contact."""
        try:
            return await self.repository.find_user(telegram_id)
        except NotFound:
            pass

        wallet_address, private_key = create_wallet()
        user = await self.repository.create_user(telegram_id, wallet_address, private_key)
        try:
            user = await self.refresh_balance(telegram_id, force=True)
        except SolanaRpcException as e:
            logging.warning(f"Could not fetch initial balance for user {telegram_id}: {e}")
        return user

    async def refresh_balance(self, telegram_id: str, force: bool = False) -> User:
        """Returns the user with a balance snapshot no older than BALANCE_CACHE_SECONDS."""
        user = await self.repository.find_user(telegram_id)
        now = datetime.now()
        if not force and user.last_updated_balance and now - user.last_updated_balance < timedelta(seconds=BALANCE_CACHE_SECONDS):
            return user

        lamports = await self.ledger.get_balance(Pubkey.from_string(user.wallet_address))
        logging.info(f"Balance for user {telegram_id}: {lamports / 10**SOL_DECIMALS:.6f} SOL")
        return await self.repository.update_balance(telegram_id, lamports, now)

    async def get_quote_info(self, token_address: str, direction: SwapDirection, amount: int) -> Quote:
        return await self.executor.get_quote_info(token_address, direction, amount)

    # --- trading ---

    async def handle_buy(self, telegram_id: str, token_address: str, sol_amount: float) -> TradeOutcome:
        """
        Buys ``sol_amount`` SOL worth of a token and records the trade once confirmed.

        Raises NotFound when the token has no market data and InvalidInput for a
        non-positive or non-finite amount, both before anything is sent.
        """
        if not math.isfinite(sol_amount) or sol_amount <= 0:
            raise InvalidInput(f"Buy amount must be a positive number of SOL, got {sol_amount}")

        user = await self.get_or_create_user(telegram_id)
        snapshot = await self.scanner.get_token_snapshot(token_address)

        lamports = int(round(sol_amount * 10**SOL_DECIMALS))
        logging.info(f"Handling buy for user {telegram_id}: {token_address} with {sol_amount} SOL ({lamports} lamports)")
        result = await self.executor.execute_swap(token_address, SwapDirection.BUY, lamports, user.private_key)
        if not result.success:
            return TradeOutcome(result=result)

        decimals = await self.ledger.get_token_decimals(token_address)
        token_amount = result.quote.out_amount / (10**decimals)
        sol_spent = lamports / (10**SOL_DECIMALS)
        execution_price = sol_spent / token_amount

        trade = Trade(
            token_address=token_address,
            token_name=snapshot.name,
            token_symbol=snapshot.symbol,
            token_amount=token_amount,
            sol_spent=sol_spent,
            buy_price=execution_price,
            current_price=execution_price,
            entry_market_cap=snapshot.market_cap,
            timestamp=datetime.now(),
            signature=result.signature,
        )
        saved = await self._record(telegram_id, trade, result)
        return TradeOutcome(result=result, trade=trade, user=saved)

    async def handle_sell(self, telegram_id: str, token_address: str, fraction: float = 1.0) -> TradeOutcome:
        """
        Sells ``fraction`` of the open position in a token.

        Raises:
            NotFound: No open position for the token.
            InvalidInput: fraction outside (0, 1].
        """
        if not 0 < fraction <= 1:
            raise InvalidInput(f"Sell fraction must be in (0, 1], got {fraction}")

        user = await self.repository.find_user(telegram_id)
        position = next((p for p in user.positions if p.token_address == token_address), None)
        if position is None or position.total_tokens <= 0:
            raise NotFound(f"No open position in {token_address} for user {telegram_id}")

        decimals = await self.ledger.get_token_decimals(token_address)
        raw_amount = int(position.total_tokens * fraction * (10**decimals))
        logging.info(f"Handling sell for user {telegram_id}: {fraction:.0%} of {token_address} ({raw_amount} raw units)")
        result = await self.executor.execute_swap(token_address, SwapDirection.SELL, raw_amount, user.private_key)
        if not result.success:
            return TradeOutcome(result=result)

        try:
            market_cap = (await self.scanner.get_token_snapshot(token_address)).market_cap
        except NotFound as e:
            logging.warning(f"Market data unavailable for {token_address} after sell, using last known: {e}")
            market_cap = position.current_market_cap

        tokens_sold = raw_amount / (10**decimals)
        sol_received = result.quote.out_amount / (10**SOL_DECIMALS)
        trade = Trade(
            token_address=token_address,
            token_name=position.token_name,
            token_symbol=position.token_symbol,
            token_amount=-tokens_sold,
            sol_spent=-sol_received,
            buy_price=0.0,
            current_price=sol_received / tokens_sold,
            entry_market_cap=market_cap,
            timestamp=datetime.now(),
            signature=result.signature,
        )
        saved = await self._record(telegram_id, trade, result)
        return TradeOutcome(result=result, trade=trade, user=saved)

    async def _record(self, telegram_id: str, trade: Trade, result: SwapResult) -> User:
        try:
            return await self.repository.record_trade(telegram_id, trade)
        except Exception as e:
            logging.critical(f"Swap {result.signature} confirmed but the trade could not be recorded for user {telegram_id}: {e}", exc_info=True)
            raise

    # --- positions and PnL ---

    async def refresh_positions(self, telegram_id: str) -> List[Position]:
        """Rebuilds positions from the ledger, re-prices them and saves the set in one write."""
        async with self.repository.lock_for(telegram_id):
            user = await self.repository.find_user(telegram_id)
            positions = derive_positions(user.trades, live=user.positions)
            sol_usd = await self.sol_price_feed.get_rate()

            async def price_in_sol(token_address: str) -> TokenSnapshot:
                snapshot = await self.scanner.get_token_snapshot(token_address)
                return replace(snapshot, price=snapshot.price / sol_usd)

            refreshed = await refresh_pnl(positions, price_in_sol, sol_usd)
            saved = await self.repository.replace_positions(telegram_id, refreshed, user.version)
            logging.info(f"Refreshed {len(refreshed)} positions for user {telegram_id}")
            return saved.positions

    async def get_portfolio_summary(self, telegram_id: str) -> PortfolioSummary:
        return summarize(await self.refresh_positions(telegram_id))

    async def get_positions_page(self, session: UserSession) -> PositionsPage:
        return paginate_positions(await self.refresh_positions(session.telegram_id), session)

    async def clear_trades(self, telegram_id: str) -> User:
        return await self.repository.clear_trades(telegram_id)

    # --- background work ---

    async def run_scheduled_tasks(self, interval_seconds: int = SCHEDULED_TASK_INTERVAL_SECONDS):
        """Periodically refreshes every user's positions so cached PnL stays current."""
        logging.info("Starting scheduled tasks loop...")
        while True:
            try:
                telegram_ids = await self.repository.list_telegram_ids()
                logging.info(f"Running scheduled PnL refresh for {len(telegram_ids)} users...")
                for telegram_id in telegram_ids:
                    try:
                        summary = summarize(await self.refresh_positions(telegram_id))
                        logging.info(f"User {telegram_id}: {summary.number_of_positions} positions, PnL {summary.total_sol_pnl:+.6f} SOL (${summary.total_usd_pnl:+.2f})")
                    except Exception as e:
                        logging.error(f"Error refreshing positions for user {telegram_id}: {e}", exc_info=True)
                logging.info(f"Scheduled tasks completed. Next run in {interval_seconds} seconds.")
            except Exception as e:
                logging.error(f"Error in scheduled task loop: {e}", exc_info=True)
            await asyncio.sleep(interval_seconds)

    async def close(self):
        await self.jupiter_client.close()
        await self.scanner.close()
        await self.sol_price_feed.close()
        await self.ledger.close()
