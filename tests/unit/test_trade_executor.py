"""
Unit tests for the swap executor.
"""

from unittest.mock import Mock

import pytest

from crosschain_arbitrage.config_loader import ExecutionSettings
from crosschain_arbitrage.exceptions import ExecutionError
from dex.executor import MAX_UINT256, TradeExecutor, normalize_error
from dex.types import TradeParams

from conftest import ETH_SEED, ETH_WETH, SIGNER, make_contract, make_network, make_web3

ROUTER = "0xE592427A0AEce92De3Edee1F18E0157C05861564"
TX_HASH = b"\xab" * 32
ONE = 10**18


def build_network(weth_balance=10 * ONE, allowance=MAX_UINT256, status=1, signer=True):
    weth = make_contract(balanceOf=weth_balance, allowance=allowance, approve=None)
    weth.functions.approve.return_value.build_transaction.return_value = {"data": "0xapprove"}
    seed = make_contract(balanceOf=0, allowance=0)
    web3 = make_web3({ETH_WETH: weth, ETH_SEED: seed})
    web3.eth.gas_price = 10**9
    web3.eth.get_transaction_count.return_value = 5
    web3.eth.send_raw_transaction.return_value = TX_HASH
    web3.eth.get_transaction_receipt.return_value = {"status": status, "blockNumber": 123}
    web3.eth.get_balance.return_value = ONE // 2

    network = make_network("ethereum", ETH_WETH, ETH_SEED, web3=web3, signer=signer)
    if signer:
        network.swap_router.address = ROUTER
        network.swap_router.functions.exactInputSingle.return_value.build_transaction.return_value = {
            "data": "0xswap"
        }
        network.account.sign_transaction.return_value = Mock(raw_transaction=b"\x01\x02")
    return network, weth


def buy_params(amount_in=ONE):
    return TradeParams(
        token_in=ETH_WETH,
        token_out=ETH_SEED,
        fee=10000,
        amount_in=amount_in,
        network="ethereum",
    )


class TestNormalizeError:
    def test_prefers_reason(self):
        error = Exception("execution reverted")
        error.reason = "execution reverted: STF"
        assert normalize_error(error) == "execution reverted: STF"

    def test_cuts_at_parenthesis(self):
        error = ValueError("insufficient funds for gas * price + value (supplied gas 500000)")
        assert normalize_error(error) == "insufficient funds for gas * price + value"

    def test_falls_back_to_full_message(self):
        error = ValueError("(nothing before the parenthesis)")
        assert normalize_error(error) == "(nothing before the parenthesis)"


class TestTradeExecutor:
    @pytest.mark.asyncio
    async def test_successful_trade(self):
        network, _ = build_network()
        executor = TradeExecutor({"ethereum": network})

        result = await executor.execute_trade(buy_params())

        assert result.success
        assert result.tx_hash == "0x" + "ab" * 32
        assert result.error is None
        assert executor.is_our_transaction(result.tx_hash.upper().replace("0X", "0x"))
        network.web3.eth.send_raw_transaction.assert_called_once_with(b"\x01\x02")

        swap_params = network.swap_router.functions.exactInputSingle.call_args.args[0]
        assert swap_params[2] == 10000
        assert swap_params[3] == SIGNER
        assert swap_params[5] == ONE
        assert swap_params[6] == 0
        assert swap_params[7] == 0

        tx_fields = network.swap_router.functions.exactInputSingle.return_value.build_transaction.call_args.args[0]
        assert tx_fields["gasPrice"] == 1_100_000_000
        assert tx_fields["gas"] == 500_000
        assert tx_fields["nonce"] == 5
        assert tx_fields["chainId"] == 1
        assert executor.get_stats()["trades_successful"] == 1

    @pytest.mark.asyncio
    async def test_gas_premium_is_configurable(self):
        network, _ = build_network()
        executor = TradeExecutor(
            {"ethereum": network}, ExecutionSettings(gas_price_premium_pct=25.0)
        )

        await executor.execute_trade(buy_params())

        build = network.swap_router.functions.exactInputSingle.return_value.build_transaction
        assert build.call_args.args[0]["gasPrice"] == 1_250_000_000

    @pytest.mark.asyncio
    async def test_insufficient_balance_does_not_submit(self):
        network, weth = build_network(weth_balance=ONE // 10)
        executor = TradeExecutor({"ethereum": network})

        result = await executor.execute_trade(buy_params())

        assert not result.success
        assert result.tx_hash is None
        assert result.error.startswith("Insufficient WETH balance on ethereum")
        network.web3.eth.send_raw_transaction.assert_not_called()
        weth.functions.approve.assert_not_called()

    @pytest.mark.asyncio
    async def test_low_allowance_approves_max(self):
        network, weth = build_network(allowance=0)
        executor = TradeExecutor({"ethereum": network})

        result = await executor.execute_trade(buy_params())

        assert result.success
        weth.functions.approve.assert_called_once_with(ROUTER, MAX_UINT256)
        assert network.web3.eth.send_raw_transaction.call_count == 2

    @pytest.mark.asyncio
    async def test_reverted_trade(self):
        network, _ = build_network(status=0)
        executor = TradeExecutor({"ethereum": network})

        result = await executor.execute_trade(buy_params())

        assert not result.success
        assert result.error == "Transaction reverted"
        assert result.tx_hash == "0x" + "ab" * 32
        assert executor.is_our_transaction(result.tx_hash)
        assert executor.get_stats()["trades_failed"] == 1

    @pytest.mark.asyncio
    async def test_submission_error_is_normalized(self):
        network, _ = build_network()
        network.web3.eth.send_raw_transaction.side_effect = ValueError(
            "nonce too low (code -32000)"
        )
        executor = TradeExecutor({"ethereum": network})

        result = await executor.execute_trade(buy_params())

        assert not result.success
        assert result.error == "nonce too low"
        assert result.tx_hash is None

    @pytest.mark.asyncio
    async def test_unknown_network(self):
        network, _ = build_network()
        executor = TradeExecutor({"ethereum": network})

        params = TradeParams(ETH_WETH, ETH_SEED, 3000, ONE, network="base")
        result = await executor.execute_trade(params)

        assert not result.success
        assert "Unknown network" in result.error

    @pytest.mark.asyncio
    async def test_no_signer(self):
        network, _ = build_network(signer=False)
        executor = TradeExecutor({"ethereum": network})

        result = await executor.execute_trade(buy_params())

        assert not result.success
        assert "No signer" in result.error
        network.web3.eth.send_raw_transaction.assert_not_called()

    def test_is_our_transaction_by_sender(self):
        network, _ = build_network()
        executor = TradeExecutor({"ethereum": network})

        assert executor.is_our_transaction("0xdead", SIGNER.upper().replace("0X", "0x"))
        assert not executor.is_our_transaction("0xdead", "0x2222222222222222222222222222222222222222")
        assert not executor.is_our_transaction("0xdead")

    @pytest.mark.asyncio
    async def test_check_balances(self):
        network, _ = build_network(weth_balance=3 * ONE // 2)
        executor = TradeExecutor({"ethereum": network})

        balances = await executor.check_balances("ethereum")

        assert balances == {"base": 1.5, "traded": 0.0, "native": 0.5}

    @pytest.mark.asyncio
    async def test_check_balances_requires_signer(self):
        network, _ = build_network(signer=False)
        executor = TradeExecutor({"ethereum": network})

        with pytest.raises(ExecutionError):
            await executor.check_balances("ethereum")
