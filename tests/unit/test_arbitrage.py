"""
Unit tests for the arbitrage orchestrator and PendingArbitrage lifecycle.
"""

import re
from unittest.mock import AsyncMock, Mock

import pytest

from crosschain_arbitrage.arbitrage import (
    ArbitrageOrchestrator,
    ArbitrageStatus,
    PendingArbitrage,
    new_arbitrage_id,
)
from crosschain_arbitrage.exceptions import (
    DataError,
    ExecutionError,
    InsufficientBalanceError,
    ValidationError,
)
from dex.types import (
    Opportunity,
    PoolInfo,
    PoolReserves,
    PriceSnapshot,
    Quote,
    TokenReserve,
    TradeResult,
)

from conftest import (
    ARB_POOL,
    ARB_SEED,
    ARB_WETH,
    ETH_POOL,
    ETH_SEED,
    ETH_WETH,
    make_network,
)

ONE = 10**18


def make_opportunity(deviation=5.0, profit=None, size=0.5, buy="arbitrum", sell="ethereum"):
    return Opportunity(
        buy_network=buy,
        sell_network=sell,
        buy_price_usd=19.0,
        sell_price_usd=20.0,
        deviation_pct=deviation,
        profit_pct=deviation if profit is None else profit,
        absolute_difference=1.0,
        gas_estimate=230_000,
        optimal_trade_amount=size,
        buy_fee=3000,
        sell_fee=3000,
    )


def make_pending(**overrides):
    fields = dict(
        id="1700000000000-abcdefghi",
        buy_network="arbitrum",
        sell_network="ethereum",
        opportunity=make_opportunity(),
        created_at=0.0,
    )
    fields.update(overrides)
    return PendingArbitrage(**fields)


@pytest.fixture
def executor():
    executor = Mock()
    executor.get_token_balance = AsyncMock()
    executor.execute_trade = AsyncMock()
    return executor


@pytest.fixture
def price_feed():
    feed = Mock()
    feed.fetch_prices = AsyncMock(return_value=PriceSnapshot(base_usd=2000.0))
    return feed


@pytest.fixture
def notifier():
    notifier = Mock()
    notifier.send_custom_message = AsyncMock()
    return notifier


@pytest.fixture
def orchestrator(networks, mock_pool_service, executor, price_feed, notifier):
    orchestrator = ArbitrageOrchestrator(
        networks,
        mock_pool_service,
        Mock(),
        executor,
        price_feed,
        notifier=notifier,
        on_error=Mock(),
        on_success=Mock(),
        sleep=AsyncMock(),
    )
    yield orchestrator
    orchestrator.close()


class TestPendingArbitrage:
    def test_happy_path(self):
        pending = make_pending()
        pending.transition(ArbitrageStatus.EXECUTING)
        pending.buy_tx_hash = "0xbuy"
        pending.sell_tx_hash = "0xsell"
        pending.transition(ArbitrageStatus.COMPLETED)

        assert pending.status == ArbitrageStatus.COMPLETED
        assert pending.is_terminal

    def test_pending_can_fail(self):
        pending = make_pending()
        pending.transition(ArbitrageStatus.FAILED)
        assert pending.is_terminal

    def test_illegal_transition(self):
        pending = make_pending()
        with pytest.raises(ExecutionError, match="Illegal"):
            pending.transition(ArbitrageStatus.COMPLETED)

        pending.transition(ArbitrageStatus.FAILED)
        with pytest.raises(ExecutionError):
            pending.transition(ArbitrageStatus.EXECUTING)

    def test_complete_requires_both_hashes(self):
        pending = make_pending()
        pending.transition(ArbitrageStatus.EXECUTING)
        pending.buy_tx_hash = "0xbuy"

        with pytest.raises(ExecutionError, match="both leg"):
            pending.transition(ArbitrageStatus.COMPLETED)
        assert pending.status == ArbitrageStatus.EXECUTING

    def test_new_arbitrage_id_format(self):
        arbitrage_id = new_arbitrage_id()
        assert re.fullmatch(r"\d{13}-[0-9a-z]{9}", arbitrage_id)
        assert new_arbitrage_id() != arbitrage_id


class TestConfiguration:
    def test_requires_two_networks(self, networks, mock_pool_service, executor, price_feed):
        with pytest.raises(ValueError):
            ArbitrageOrchestrator(
                {"ethereum": networks["ethereum"]}, mock_pool_service, Mock(), executor, price_feed
            )

    def test_thresholds(self, orchestrator):
        orchestrator.set_min_profit_threshold(1.5)
        orchestrator.set_balance_threshold(0.5)
        assert orchestrator.get_status()["min_profit_threshold_pct"] == 1.5
        assert orchestrator.get_status()["balance_threshold_pct"] == 0.5

        with pytest.raises(ValidationError):
            orchestrator.set_min_profit_threshold(-1)
        with pytest.raises(ValidationError):
            orchestrator.set_balance_threshold(-0.1)

    def test_initial_state(self, orchestrator):
        assert orchestrator.state == "idle"
        assert orchestrator.network_keys == ("ethereum", "arbitrum")
        assert orchestrator.can_trade()


class TestEvaluate:
    @pytest.mark.asyncio
    async def test_evaluate_with_reserves(self, orchestrator, mock_pool_service):
        def reserves(weth, weth_reserve, seed, seed_reserve):
            return PoolReserves(
                token0=TokenReserve(seed, "SEED", 18, seed_reserve),
                token1=TokenReserve(weth, "WETH", 18, weth_reserve),
            )

        pools = {
            "ethereum": PoolInfo(is_valid=True, fee=10000, reserves=reserves(ETH_WETH, 10.0, ETH_SEED, 900.0)),
            "arbitrum": PoolInfo(is_valid=True, fee=3000, reserves=reserves(ARB_WETH, 10.0, ARB_SEED, 1000.0)),
        }
        quotes = {
            "ethereum": Quote("ethereum", 1 / 100, 100.0, ETH_POOL, 10000),
            "arbitrum": Quote("arbitrum", 1 / 105, 105.0, ARB_POOL, 3000),
        }
        mock_pool_service.get_primary_pool_info = AsyncMock(side_effect=lambda net: pools[net.key])
        orchestrator.quote_service.get_quote = AsyncMock(side_effect=lambda key: quotes[key])

        opportunity = await orchestrator.evaluate()

        assert opportunity.buy_network == "arbitrum"
        assert opportunity.deviation_pct == pytest.approx(4.878049, abs=1e-5)
        assert opportunity.optimal_trade_amount == pytest.approx(900 / 1010)

    @pytest.mark.asyncio
    async def test_evaluate_missing_quote(self, orchestrator):
        orchestrator.quote_service.get_quote = AsyncMock(return_value=None)
        assert await orchestrator.evaluate() is None

    @pytest.mark.asyncio
    async def test_evaluate_invalid_pool(self, orchestrator, mock_pool_service):
        orchestrator.quote_service.get_quote = AsyncMock(
            return_value=Quote("ethereum", 0.01, 100.0, ETH_POOL, 3000)
        )
        mock_pool_service.get_primary_pool_info = AsyncMock(return_value=PoolInfo.invalid())
        assert await orchestrator.evaluate() is None


class TestScan:
    @pytest.mark.asyncio
    async def test_balanced_prices_do_not_execute(self, orchestrator):
        opportunity = make_opportunity(deviation=0.1)
        orchestrator.evaluate = AsyncMock(return_value=opportunity)
        orchestrator.execute_arbitrage = AsyncMock()

        assert await orchestrator.scan() is opportunity
        orchestrator.execute_arbitrage.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_profit_below_minimum_does_not_execute(self, orchestrator):
        orchestrator.evaluate = AsyncMock(return_value=make_opportunity(deviation=0.5, profit=0.05))
        orchestrator.execute_arbitrage = AsyncMock()

        await orchestrator.scan()
        orchestrator.execute_arbitrage.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_profitable_opportunity_executes(self, orchestrator):
        opportunity = make_opportunity(deviation=5.0)
        orchestrator.evaluate = AsyncMock(return_value=opportunity)
        orchestrator.execute_arbitrage = AsyncMock()

        await orchestrator.scan()
        orchestrator.execute_arbitrage.assert_awaited_once_with(opportunity)
        assert orchestrator.state == "idle"

    @pytest.mark.asyncio
    async def test_read_only_does_not_execute(
        self, mock_pool_service, executor, price_feed
    ):
        networks = {
            "ethereum": make_network("ethereum", ETH_WETH, ETH_SEED),
            "arbitrum": make_network("arbitrum", ARB_WETH, ARB_SEED),
        }
        orchestrator = ArbitrageOrchestrator(
            networks, mock_pool_service, Mock(), executor, price_feed
        )
        orchestrator.evaluate = AsyncMock(return_value=make_opportunity(deviation=5.0))
        orchestrator.execute_arbitrage = AsyncMock()

        await orchestrator.scan()
        orchestrator.execute_arbitrage.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reentrant_scan_returns_none(self, orchestrator):
        orchestrator.evaluate = AsyncMock()
        orchestrator._scanning = True

        assert await orchestrator.scan() is None
        orchestrator.evaluate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_scan_swallows_errors(self, orchestrator):
        orchestrator.evaluate = AsyncMock(side_effect=DataError("rate limited", source="coingecko"))
        assert await orchestrator.scan() is None
        assert orchestrator.state == "idle"

    @pytest.mark.asyncio
    async def test_scan_survives_execution_failure(self, orchestrator):
        opportunity = make_opportunity(deviation=5.0)
        orchestrator.evaluate = AsyncMock(return_value=opportunity)
        orchestrator.execute_arbitrage = AsyncMock(side_effect=ExecutionError("buy leg failed"))

        assert await orchestrator.scan() is opportunity


class TestExecuteArbitrage:
    @pytest.mark.asyncio
    async def test_successful_execution(self, orchestrator, executor, notifier, networks):
        executor.get_token_balance.side_effect = [2 * ONE, 0, 50 * ONE]
        executor.execute_trade.side_effect = [
            TradeResult(success=True, tx_hash="0xbuy"),
            TradeResult(success=True, tx_hash="0xsell"),
        ]

        pending = await orchestrator.execute_arbitrage(make_opportunity(size=0.5))

        assert pending.status == ArbitrageStatus.COMPLETED
        assert pending.buy_tx_hash == "0xbuy"
        assert pending.sell_tx_hash == "0xsell"
        assert orchestrator.completed_count == 1
        orchestrator._on_success.assert_called_once()
        orchestrator._sleep.assert_awaited_once_with(5.0)

        buy, sell = [c.args[0] for c in executor.execute_trade.call_args_list]
        assert buy.network == "arbitrum"
        assert buy.token_in == networks["arbitrum"].base_token.address
        assert buy.token_out == networks["arbitrum"].traded_token.address
        assert buy.amount_in == ONE // 2
        assert buy.min_amount_out == 0
        assert sell.network == "ethereum"
        assert sell.token_in == networks["ethereum"].traded_token.address
        assert sell.token_out == networks["ethereum"].base_token.address
        assert sell.amount_in == 50 * ONE

        notifier.send_custom_message.assert_awaited_once()
        assert notifier.send_custom_message.call_args.args[0] == "Arbitrage completed"
        assert orchestrator.state == "idle"
        assert pending in orchestrator.get_pending()

    @pytest.mark.asyncio
    async def test_buy_failure_marks_failed(self, orchestrator, executor, notifier):
        executor.get_token_balance.side_effect = [2 * ONE, 0]
        executor.execute_trade.return_value = TradeResult(success=False, error="STF")

        with pytest.raises(ExecutionError, match="Buy leg failed: STF") as exc_info:
            await orchestrator.execute_arbitrage(make_opportunity())

        pending = orchestrator.get_pending()[0]
        assert pending.status == ArbitrageStatus.FAILED
        assert exc_info.value.arbitrage_id == pending.id
        assert orchestrator.failed_count == 1
        assert orchestrator.consecutive_errors == 1
        orchestrator._on_error.assert_called_once()
        assert notifier.send_custom_message.call_args.args[0] == "Arbitrage failed"
        executor.execute_trade.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, orchestrator, executor):
        executor.get_token_balance.side_effect = [ONE // 10]

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await orchestrator.execute_arbitrage(make_opportunity(size=0.5))

        assert exc_info.value.required == pytest.approx(0.51)
        assert exc_info.value.available == pytest.approx(0.1)
        executor.execute_trade.assert_not_awaited()
        assert orchestrator.get_pending()[0].status == ArbitrageStatus.FAILED

    @pytest.mark.asyncio
    async def test_nothing_received_stops_before_sell(self, orchestrator, executor):
        executor.get_token_balance.side_effect = [2 * ONE, 5 * ONE, 5 * ONE]
        executor.execute_trade.return_value = TradeResult(success=True, tx_hash="0xbuy")

        with pytest.raises(ExecutionError, match="No SEED received"):
            await orchestrator.execute_arbitrage(make_opportunity())

        pending = orchestrator.get_pending()[0]
        assert pending.buy_tx_hash == "0xbuy"
        assert pending.sell_tx_hash is None
        assert pending.status == ArbitrageStatus.FAILED
        executor.execute_trade.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_size(self, orchestrator, executor):
        with pytest.raises(ExecutionError, match="no trade size"):
            await orchestrator.execute_arbitrage(make_opportunity(size=None))
        executor.execute_trade.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_single_flight(self, orchestrator):
        orchestrator._executing = True
        with pytest.raises(ExecutionError, match="already executing"):
            await orchestrator.execute_arbitrage(make_opportunity())
        assert orchestrator.get_pending() == []

    @pytest.mark.asyncio
    async def test_finished_arbitrage_is_forgotten(self, orchestrator, executor):
        executor.get_token_balance.side_effect = [ONE // 10]
        with pytest.raises(ExecutionError):
            await orchestrator.execute_arbitrage(make_opportunity())

        pending = orchestrator.get_pending()[0]
        orchestrator._forget(pending.id)
        assert orchestrator.get_pending() == []
