"""
Swap execution engine for single-pool exact-input trades.

Handles:
- Pre-submission balance checks
- Router allowance top-up (approve max, wait for receipt)
- Transaction building, signing and direct submission
- Confirmation monitoring and error normalization
- Tracking of our own transaction hashes for loop prevention
"""

import asyncio
import time
from typing import Any, Dict, Optional, Set

from web3 import Web3
from web3.exceptions import TransactionNotFound
from web3.types import TxParams

from crosschain_arbitrage.config_loader import ExecutionSettings
from crosschain_arbitrage.exceptions import ExecutionError
from crosschain_arbitrage.utils import from_base_units, get_logger, run_blocking

from .abi import ERC20_ABI
from .types import NetworkHandle, TradeParams, TradeResult

logger = get_logger(__name__)

MAX_UINT256 = 2**256 - 1
RECEIPT_POLL_INTERVAL_SEC = 1.0


def normalize_error(error: Exception) -> str:
    """
    Reduce an RPC/contract error to a short human-readable message.

    Prefers the revert reason, falls back to the message, and cuts everything
    from the first "(" onwards.
    """
    message = getattr(error, "reason", None) or getattr(error, "message", None) or str(error)
    short = str(message).split("(")[0].strip()
    return short or str(error)


class TradeExecutor:
    """
    Executes exact-input swaps through each network's SwapRouter.

    execute_trade() never raises: every failure is reported through
    TradeResult(success=False, error=...).
    """

    def __init__(
        self,
        networks: Dict[str, NetworkHandle],
        settings: Optional[ExecutionSettings] = None,
    ):
        """
        Initialize executor.

        Args:
            networks: Mapping of network key -> live network handle
            settings: Gas, deadline and confirmation settings
        """
        self.networks = networks
        self.settings = settings or ExecutionSettings()

        # Lower-cased hashes of every swap we submitted
        self.our_transactions: Set[str] = set()

        # Execution statistics
        self.trades_attempted = 0
        self.trades_successful = 0
        self.trades_failed = 0

    async def execute_trade(self, params: TradeParams) -> TradeResult:
        """
        Execute one exact-input swap and wait for its confirmation.

        Args:
            params: Swap request

        Returns:
            TradeResult with the transaction hash on success
        """
        self.trades_attempted += 1

        network = self.networks.get(params.network)
        if network is None:
            return self._failed(f"Unknown network: {params.network}")
        if not network.can_trade:
            return self._failed(f"No signer configured for {params.network}")

        tx_hash: Optional[str] = None
        try:
            token_in = Web3.to_checksum_address(params.token_in)

            balance = await self.get_token_balance(network, token_in)
            if balance < params.amount_in:
                symbol = self._symbol_for(network, token_in)
                decimals = self._decimals_for(network, token_in)
                return self._failed(
                    f"Insufficient {symbol} balance on {network.key}: "
                    f"have {from_base_units(balance, decimals):.6f}, "
                    f"need {from_base_units(params.amount_in, decimals):.6f}"
                )

            await self._ensure_allowance(network, token_in, params.amount_in)

            tx = await self._build_swap_transaction(network, params)
            tx_hash = await self._submit_direct(network, tx)
            self.our_transactions.add(tx_hash.lower())
            logger.info(f"[{network.key}] Swap submitted: {tx_hash}")

            receipt = await self._wait_for_transaction(network, tx_hash)
            if receipt["status"] != 1:
                return self._failed("Transaction reverted", tx_hash)

            self.trades_successful += 1
            logger.info(f"[{network.key}] Swap confirmed in block {receipt['blockNumber']}")
            return TradeResult(success=True, tx_hash=tx_hash)

        except Exception as e:
            return self._failed(normalize_error(e), tx_hash)

    def is_our_transaction(self, tx_hash: str, sender: Optional[str] = None) -> bool:
        """Check whether a transaction was submitted by this bot."""
        if tx_hash and tx_hash.lower() in self.our_transactions:
            return True
        if sender:
            signers = {
                network.address.lower()
                for network in self.networks.values()
                if network.address
            }
            return sender.lower() in signers
        return False

    async def get_token_balance(self, network: NetworkHandle, token_address: str) -> int:
        """Raw ERC-20 balance of the signer."""
        token = network.web3.eth.contract(
            address=Web3.to_checksum_address(token_address), abi=ERC20_ABI
        )
        return int(await run_blocking(token.functions.balanceOf(network.address).call))

    async def check_balances(self, network_key: str) -> Dict[str, float]:
        """
        Signer balances on one network in human units.

        Returns:
            Dict with "base", "traded" and "native" balances
        """
        network = self.networks.get(network_key)
        if network is None or network.address is None:
            raise ExecutionError(f"No signer configured for {network_key}", network=network_key)

        base_raw, traded_raw, native_raw = await asyncio.gather(
            self.get_token_balance(network, network.base_token.address),
            self.get_token_balance(network, network.traded_token.address),
            run_blocking(network.web3.eth.get_balance, network.address),
        )
        return {
            "base": from_base_units(base_raw, network.base_token.decimals),
            "traded": from_base_units(traded_raw, network.traded_token.decimals),
            "native": from_base_units(native_raw, 18),
        }

    async def _ensure_allowance(
        self, network: NetworkHandle, token_address: str, amount: int
    ) -> None:
        """Approve the router for the max amount if the allowance is too low."""
        router_address = network.swap_router.address
        token = network.web3.eth.contract(address=token_address, abi=ERC20_ABI)

        allowance = int(
            await run_blocking(token.functions.allowance(network.address, router_address).call)
        )
        if allowance >= amount:
            return

        logger.info(
            f"[{network.key}] Approving {self._symbol_for(network, token_address)} for router"
        )
        tx_fields = await self._base_transaction_fields(network)
        approve_tx = await run_blocking(
            token.functions.approve(router_address, MAX_UINT256).build_transaction, tx_fields
        )
        approve_hash = await self._submit_direct(network, approve_tx)
        receipt = await self._wait_for_transaction(network, approve_hash)
        if receipt["status"] != 1:
            raise ExecutionError(
                f"Approval reverted: {approve_hash}", network=network.key
            )

    async def _build_swap_transaction(
        self, network: NetworkHandle, params: TradeParams
    ) -> TxParams:
        """Build the exactInputSingle router call."""
        deadline = int(time.time()) + self.settings.deadline_sec
        swap_params = (
            Web3.to_checksum_address(params.token_in),
            Web3.to_checksum_address(params.token_out),
            int(params.fee),
            network.address,
            deadline,
            int(params.amount_in),
            int(params.min_amount_out),
            0,
        )
        tx_fields = await self._base_transaction_fields(network)
        return await run_blocking(
            network.swap_router.functions.exactInputSingle(swap_params).build_transaction,
            tx_fields,
        )

    async def _base_transaction_fields(self, network: NetworkHandle) -> TxParams:
        gas_price, nonce = await asyncio.gather(
            self._get_gas_price(network),
            run_blocking(network.web3.eth.get_transaction_count, network.address, "pending"),
        )
        return {
            "from": network.address,
            "nonce": nonce,
            "gas": self.settings.gas_limit,
            "gasPrice": gas_price,
            "chainId": network.chain_id,
        }

    async def _get_gas_price(self, network: NetworkHandle) -> int:
        """Observed gas price plus the configured premium."""
        current_gas_price = int(await run_blocking(lambda: network.web3.eth.gas_price))
        multiplier = int(round((100 + self.settings.gas_price_premium_pct) * 100))
        gas_price = current_gas_price * multiplier // 10_000

        logger.debug(
            f"[{network.key}] Gas price: {Web3.from_wei(gas_price, 'gwei'):.2f} gwei "
            f"(observed: {Web3.from_wei(current_gas_price, 'gwei'):.2f})"
        )
        return gas_price

    async def _submit_direct(self, network: NetworkHandle, tx_params: TxParams) -> str:
        """Sign and broadcast a transaction, returning its hex hash."""
        signed_tx = network.account.sign_transaction(tx_params)
        tx_hash = await run_blocking(
            network.web3.eth.send_raw_transaction, signed_tx.raw_transaction
        )
        return Web3.to_hex(tx_hash)

    async def _wait_for_transaction(self, network: NetworkHandle, tx_hash: str) -> Dict[str, Any]:
        """
        Wait for transaction confirmation.

        Raises:
            TimeoutError: If transaction not confirmed within the receipt timeout
        """
        timeout = self.settings.receipt_timeout_sec
        start = time.time()

        while time.time() - start < timeout:
            try:
                receipt = await run_blocking(network.web3.eth.get_transaction_receipt, tx_hash)
                if receipt:
                    return receipt
            except TransactionNotFound:
                pass

            await asyncio.sleep(RECEIPT_POLL_INTERVAL_SEC)

        raise TimeoutError(f"Transaction {tx_hash} not confirmed after {timeout}s")

    def _failed(self, error: str, tx_hash: Optional[str] = None) -> TradeResult:
        self.trades_failed += 1
        logger.error(f"Trade failed: {error}")
        return TradeResult(success=False, tx_hash=tx_hash, error=error)

    @staticmethod
    def _symbol_for(network: NetworkHandle, token_address: str) -> str:
        for token in (network.base_token, network.traded_token):
            if token.address.lower() == token_address.lower():
                return token.symbol
        return token_address

    @staticmethod
    def _decimals_for(network: NetworkHandle, token_address: str) -> int:
        for token in (network.base_token, network.traded_token):
            if token.address.lower() == token_address.lower():
                return token.decimals
        return 18

    def get_stats(self) -> Dict[str, Any]:
        """Get execution statistics."""
        success_rate = (
            self.trades_successful / self.trades_attempted * 100
            if self.trades_attempted > 0
            else 0.0
        )
        return {
            "trades_attempted": self.trades_attempted,
            "trades_successful": self.trades_successful,
            "trades_failed": self.trades_failed,
            "success_rate_pct": success_rate,
            "tracked_transactions": len(self.our_transactions),
        }
