import asyncio
import gc
from datetime import timedelta

import pytest

from conftest import T0, TOKEN_X, TOKEN_Y, make_trade
from errors import ConcurrentUpdate, InvalidArgument, NotFound
from positions import derive_positions
from user_repository import positions_diverge
from wallet import create_wallet

TELEGRAM_ID = "424242"


async def _create(repository, telegram_id=TELEGRAM_ID):
    address, private_key = create_wallet()
    return await repository.create_user(telegram_id, address, private_key)


class TestUserDocument:
    @pytest.mark.asyncio
    async def test_find_missing_user_raises_not_found(self, repository) -> None:
        with pytest.raises(NotFound):
            await repository.find_user("nobody")

    @pytest.mark.asyncio
    async def test_create_then_find(self, repository) -> None:
        created = await _create(repository)
        found = await repository.find_user(TELEGRAM_ID)
        assert found.wallet_address == created.wallet_address
        assert found.private_key == created.private_key
        assert found.trades == [] and found.positions == []
        assert found.version == created.version

    @pytest.mark.asyncio
    async def test_create_twice_returns_existing(self, repository) -> None:
        first = await _create(repository)
        second = await _create(repository)
        assert second.wallet_address == first.wallet_address

    @pytest.mark.asyncio
    async def test_stale_save_is_rejected(self, repository) -> None:
        await _create(repository)
        a = await repository.find_user(TELEGRAM_ID)
        b = await repository.find_user(TELEGRAM_ID)

        a.user_balance = 10
        saved = await repository.save_user(a)
        assert saved.version == a.version + 1

        b.user_balance = 20
        with pytest.raises(ConcurrentUpdate):
            await repository.save_user(b)
        assert (await repository.find_user(TELEGRAM_ID)).user_balance == 10

    @pytest.mark.asyncio
    async def test_ledger_is_append_only(self, repository) -> None:
        await _create(repository)
        await repository.record_trade(TELEGRAM_ID, make_trade(1000, 1.0, minutes=0))
        await repository.record_trade(TELEGRAM_ID, make_trade(500, 0.6, minutes=1))

        user = await repository.find_user(TELEGRAM_ID)
        user.trades = user.trades[:1]
        with pytest.raises(InvalidArgument):
            await repository.save_user(user)

    @pytest.mark.asyncio
    async def test_update_balance(self, repository) -> None:
        await _create(repository)
        at = T0 + timedelta(days=1)
        user = await repository.update_balance(TELEGRAM_ID, 2_500_000_000, at)
        assert user.user_balance == 2_500_000_000
        assert user.last_updated_balance == at


class TestRecordTrade:
    @pytest.mark.asyncio
    async def test_first_buy_opens_position(self, repository) -> None:
        await _create(repository)
        trade = make_trade(1000, 1.0)
        user = await repository.record_trade(TELEGRAM_ID, trade)

        assert user.trades == [trade]
        [position] = user.positions
        assert position.token_address == TOKEN_X
        assert position.total_tokens == 1000
        assert position.trades == [trade]

    @pytest.mark.asyncio
    async def test_scenario_e_persisted(self, repository) -> None:
        await _create(repository)
        await repository.record_trade(TELEGRAM_ID, make_trade(1000, 1.0, minutes=0))
        await repository.record_trade(TELEGRAM_ID, make_trade(500, 0.6, minutes=1))
        await repository.record_trade(TELEGRAM_ID, make_trade(-500, -0.58, minutes=2))

        [position] = (await repository.find_user(TELEGRAM_ID)).positions
        assert position.total_tokens == 1000
        assert position.total_sol_spent == pytest.approx(1.02)
        assert position.average_buy_price == pytest.approx(0.00102)
        assert len(position.trades) == 3

    @pytest.mark.asyncio
    async def test_sell_without_position_only_hits_ledger(self, repository) -> None:
        await _create(repository)
        user = await repository.record_trade(TELEGRAM_ID, make_trade(-500, -0.58, token_address=TOKEN_Y))
        assert len(user.trades) == 1
        assert user.positions == []

    @pytest.mark.asyncio
    async def test_scenario_f_concurrent_trades_are_not_lost(self, repository) -> None:
        await _create(repository)
        await asyncio.gather(
            repository.record_trade(TELEGRAM_ID, make_trade(1000, 1.0, minutes=0)),
            repository.record_trade(TELEGRAM_ID, make_trade(500, 0.6, minutes=1)),
            repository.record_trade(TELEGRAM_ID, make_trade(250, 0.3, minutes=2)),
        )
        user = await repository.find_user(TELEGRAM_ID)
        assert len(user.trades) == 3
        [position] = user.positions
        assert position.total_tokens == 1750
        assert position.total_sol_spent == pytest.approx(1.9)

    @pytest.mark.asyncio
    async def test_cached_positions_matching_the_ledger(self, repository) -> None:
        await _create(repository)
        await repository.record_trade(TELEGRAM_ID, make_trade(1000, 1.0, minutes=0))
        user = await repository.record_trade(TELEGRAM_ID, make_trade(10, 0.2, minutes=1, token_address=TOKEN_Y))
        assert not positions_diverge(user.positions, derive_positions(user.trades, live=user.positions))

    @pytest.mark.asyncio
    async def test_diverged_cache_is_rebuilt_from_ledger(self, repository) -> None:
        await _create(repository)
        await repository.record_trade(TELEGRAM_ID, make_trade(1000, 1.0, minutes=0))

        user = await repository.find_user(TELEGRAM_ID)
        user.positions[0].total_tokens = 999_999
        await repository.save_user(user)

        user = await repository.record_trade(TELEGRAM_ID, make_trade(500, 0.6, minutes=1))
        assert user.positions[0].total_tokens == 1500

    @pytest.mark.asyncio
    async def test_clear_trades_empties_ledger_and_positions(self, repository) -> None:
        await _create(repository)
        await repository.record_trade(TELEGRAM_ID, make_trade(1000, 1.0))
        user = await repository.clear_trades(TELEGRAM_ID)
        assert user.trades == [] and user.positions == []

        user = await repository.find_user(TELEGRAM_ID)
        assert user.trades == [] and user.positions == []

    @pytest.mark.asyncio
    async def test_replace_positions_requires_current_version(self, repository) -> None:
        await _create(repository)
        user = await repository.record_trade(TELEGRAM_ID, make_trade(1000, 1.0))
        stale_version = user.version
        await repository.record_trade(TELEGRAM_ID, make_trade(500, 0.6, minutes=1))

        with pytest.raises(ConcurrentUpdate):
            await repository.replace_positions(TELEGRAM_ID, user.positions, stale_version)

    @pytest.mark.asyncio
    async def test_list_telegram_ids(self, repository) -> None:
        await _create(repository, "1")
        await _create(repository, "2")
        assert sorted(await repository.list_telegram_ids()) == ["1", "2"]


class TestUserLocks:
    def test_same_lock_while_in_use(self, repository) -> None:
        lock = repository.lock_for(TELEGRAM_ID)
        assert repository.lock_for(TELEGRAM_ID) is lock
        assert repository.lock_for("other") is not lock

    def test_unused_locks_are_released(self, repository) -> None:
        lock = repository.lock_for(TELEGRAM_ID)
        del lock
        gc.collect()
        assert TELEGRAM_ID not in repository._locks
