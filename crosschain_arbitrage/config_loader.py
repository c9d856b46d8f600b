"""
Configuration loading and normalization for the cross-chain arbitrage bot.

Loads the YAML config file, applies environment overrides (RPC endpoints,
gas prices, volume target, API keys, webhook, signer key) and returns an
immutable BotConfig that is passed explicitly to every component.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import yaml

from .exceptions import ConfigurationError

PROFIT_FORMULAS = ("deviation", "spread")


@dataclass(frozen=True)
class TokenSettings:
    """A token as configured for one network."""

    address: str
    decimals: int
    symbol: str
    name: str = ""


@dataclass(frozen=True)
class NetworkSettings:
    """Normalized settings for one EVM network."""

    key: str
    chain_id: int
    name: str
    rpc_url: str
    quoter_address: str
    router_address: str
    base_token: TokenSettings
    traded_token: TokenSettings
    pools: Tuple[str, ...]
    gas_price_gwei: Optional[float] = None
    dexscreener_chain: str = ""


@dataclass(frozen=True)
class ArbitrageSettings:
    """Opportunity thresholds and execution sizing."""

    min_profit_pct: float = 0.1
    balance_threshold_pct: float = 0.2
    profit_formula: str = "deviation"
    settle_delay_sec: float = 5.0
    gas_buffer_base: float = 0.01
    pending_ttl_sec: float = 300.0
    probe_amount_traded: float = 1.0
    probe_amount_base: float = 1.0


@dataclass(frozen=True)
class QueueSettings:
    """Event queue bounds, cadence and backoff."""

    max_queue_size: int = 100
    tick_interval_sec: float = 3.0
    cooldown_sec: float = 1.0
    max_consecutive_errors: int = 5
    error_backoff_sec: float = 30.0


@dataclass(frozen=True)
class ExecutionSettings:
    """Swap submission parameters."""

    gas_price_premium_pct: float = 10.0
    gas_limit: int = 500_000
    deadline_sec: int = 300
    receipt_timeout_sec: float = 120.0


@dataclass(frozen=True)
class VolumeSettings:
    """Daily volume target and randomized rebalance sizing."""

    enabled: bool = True
    target_volume_usd: float = 10_000.0
    check_interval_sec: float = 300.0
    max_rebalance_attempts: int = 10
    volume_reset_interval_sec: float = 86_400.0
    reset_jitter_sec: float = 300.0
    min_trade_usd: float = 150.0
    max_deficit_fraction: float = 0.8
    hard_cap_base: Optional[float] = 10.0
    min_multiplier: float = 0.5
    max_multiplier: float = 2.0
    onchain_lookback_blocks: int = 100


@dataclass(frozen=True)
class PriceFeedSettings:
    """CoinGecko simple-price endpoint settings."""

    url: str = "https://api.coingecko.com/api/v3/simple/price"
    api_keys: Tuple[str, ...] = ()
    min_interval_sec: float = 1.2
    timeout_sec: float = 10.0
    base_asset_id: str = "ethereum"
    traded_asset_id: Optional[str] = None


@dataclass(frozen=True)
class VolumeApiSettings:
    """DexScreener pair endpoint settings."""

    url: str = "https://api.dexscreener.com/latest/dex/pairs"
    timeout_sec: float = 10.0
    user_agent: str = "ArbitrageBot/1.0"


@dataclass(frozen=True)
class ListenerSettings:
    """Swap log subscription cadence and reconnect policy."""

    poll_interval_sec: float = 4.0
    reconnect_delay_sec: float = 5.0
    refresh_interval_sec: float = 3600.0


@dataclass(frozen=True)
class NotificationSettings:
    """Outbound webhook settings."""

    webhook_url: Optional[str] = None
    low_balance_native: float = 0.01


@dataclass(frozen=True)
class BotConfig:
    """Immutable runtime configuration object."""

    networks: Dict[str, NetworkSettings]
    arbitrage: ArbitrageSettings = field(default_factory=ArbitrageSettings)
    queue: QueueSettings = field(default_factory=QueueSettings)
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    volume: VolumeSettings = field(default_factory=VolumeSettings)
    price_feed: PriceFeedSettings = field(default_factory=PriceFeedSettings)
    volume_api: VolumeApiSettings = field(default_factory=VolumeApiSettings)
    listener: ListenerSettings = field(default_factory=ListenerSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    private_key: Optional[str] = field(default=None, repr=False)

    @property
    def network_keys(self) -> Tuple[str, str]:
        """The two network keys in configured order (N1, N2)."""
        keys = tuple(self.networks.keys())
        return keys[0], keys[1]


def load_yaml_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Load and parse YAML configuration file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to load config {config_path}: {e}") from e

    if config_dict is None:
        raise ConfigurationError(f"Empty configuration file: {config_path}")
    if not isinstance(config_dict, dict):
        raise ConfigurationError(f"Top level of {config_path} must be a mapping")

    return config_dict


def _get_required(d: Mapping[str, Any], key: str, expected_type: type, where: str) -> Any:
    """Get required config field with type validation."""
    if key not in d or d[key] is None:
        raise ConfigurationError(f"Missing required config field: {where}.{key}")
    val = d[key]
    if not isinstance(val, expected_type):
        raise ConfigurationError(
            f"Config field '{where}.{key}' must be {expected_type.__name__}, "
            f"got {type(val).__name__}"
        )
    return val


def _as_float(value: Any, where: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Config field '{where}' must be a number: {value!r}") from e


def _as_int(value: Any, where: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Config field '{where}' must be an integer: {value!r}") from e


def _normalize_token(raw: Any, where: str) -> TokenSettings:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Token '{where}' config must be a dict")
    address = _get_required(raw, "address", str, where)
    if "decimals" not in raw:
        raise ConfigurationError(f"Token '{where}' missing 'decimals'")
    return TokenSettings(
        address=address,
        decimals=_as_int(raw["decimals"], f"{where}.decimals"),
        symbol=str(raw.get("symbol", "")),
        name=str(raw.get("name", "")),
    )


def _normalize_network(key: str, raw: Any, env: Mapping[str, str]) -> NetworkSettings:
    """Normalize one network block and apply its RPC and gas overrides."""
    where = f"networks.{key}"
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Network '{key}' config must be a dict")

    env_prefix = key.upper()
    rpc_url = env.get(f"{env_prefix}_RPC") or raw.get("rpc_url")
    if not rpc_url:
        raise ConfigurationError(
            f"Missing RPC endpoint for {key}: set {where}.rpc_url or {env_prefix}_RPC"
        )

    gas_price = env.get(f"GAS_PRICE_{env_prefix}", raw.get("gas_price_gwei"))

    tokens = _get_required(raw, "tokens", dict, where)
    pools = raw.get("pools") or []
    if isinstance(pools, str):
        pools = [pools]
    if not pools:
        raise ConfigurationError(f"Network '{key}' must list at least one pool")

    return NetworkSettings(
        key=key,
        chain_id=_as_int(_get_required(raw, "chain_id", int, where), f"{where}.chain_id"),
        name=str(raw.get("name", key)),
        rpc_url=str(rpc_url),
        quoter_address=_get_required(raw, "quoter_address", str, where),
        router_address=_get_required(raw, "router_address", str, where),
        base_token=_normalize_token(tokens.get("base"), f"{where}.tokens.base"),
        traded_token=_normalize_token(tokens.get("traded"), f"{where}.tokens.traded"),
        pools=tuple(str(p) for p in pools),
        gas_price_gwei=_as_float(gas_price, f"{where}.gas_price_gwei")
        if gas_price not in (None, "")
        else None,
        dexscreener_chain=str(raw.get("dexscreener_chain", key)),
    )


def _normalize_arbitrage(config_dict: Dict[str, Any]) -> ArbitrageSettings:
    arb = config_dict.get("arbitrage") or {}
    profit_formula = arb.get("profit_formula", "deviation")
    if profit_formula not in PROFIT_FORMULAS:
        raise ConfigurationError(
            f"arbitrage.profit_formula must be one of {PROFIT_FORMULAS}, got {profit_formula!r}"
        )
    return ArbitrageSettings(
        min_profit_pct=_as_float(arb.get("min_profit_pct", 0.1), "arbitrage.min_profit_pct"),
        balance_threshold_pct=_as_float(
            arb.get("balance_threshold_pct", 0.2), "arbitrage.balance_threshold_pct"
        ),
        profit_formula=profit_formula,
        settle_delay_sec=_as_float(arb.get("settle_delay_sec", 5.0), "arbitrage.settle_delay_sec"),
        gas_buffer_base=_as_float(arb.get("gas_buffer_base", 0.01), "arbitrage.gas_buffer_base"),
        pending_ttl_sec=_as_float(arb.get("pending_ttl_sec", 300.0), "arbitrage.pending_ttl_sec"),
        probe_amount_traded=_as_float(
            arb.get("probe_amount_traded", 1.0), "arbitrage.probe_amount_traded"
        ),
        probe_amount_base=_as_float(
            arb.get("probe_amount_base", 1.0), "arbitrage.probe_amount_base"
        ),
    )


def _normalize_queue(config_dict: Dict[str, Any]) -> QueueSettings:
    queue = config_dict.get("queue") or {}
    settings = QueueSettings(
        max_queue_size=_as_int(queue.get("max_queue_size", 100), "queue.max_queue_size"),
        tick_interval_sec=_as_float(queue.get("tick_interval_sec", 3.0), "queue.tick_interval_sec"),
        cooldown_sec=_as_float(queue.get("cooldown_sec", 1.0), "queue.cooldown_sec"),
        max_consecutive_errors=_as_int(
            queue.get("max_consecutive_errors", 5), "queue.max_consecutive_errors"
        ),
        error_backoff_sec=_as_float(queue.get("error_backoff_sec", 30.0), "queue.error_backoff_sec"),
    )
    if settings.max_queue_size < 1:
        raise ConfigurationError("queue.max_queue_size must be at least 1")
    return settings


def _normalize_execution(config_dict: Dict[str, Any]) -> ExecutionSettings:
    execution = config_dict.get("execution") or {}
    return ExecutionSettings(
        gas_price_premium_pct=_as_float(
            execution.get("gas_price_premium_pct", 10.0), "execution.gas_price_premium_pct"
        ),
        gas_limit=_as_int(execution.get("gas_limit", 500_000), "execution.gas_limit"),
        deadline_sec=_as_int(execution.get("deadline_sec", 300), "execution.deadline_sec"),
        receipt_timeout_sec=_as_float(
            execution.get("receipt_timeout_sec", 120.0), "execution.receipt_timeout_sec"
        ),
    )


def _normalize_volume(config_dict: Dict[str, Any], env: Mapping[str, str]) -> VolumeSettings:
    volume = config_dict.get("volume") or {}
    target = env.get("TARGET_VOLUME", volume.get("target_volume_usd", 10_000.0))
    check_interval = env.get("CHECK_INTERVAL", volume.get("check_interval_sec", 300.0))
    hard_cap = volume.get("hard_cap_base", 10.0)

    settings = VolumeSettings(
        enabled=bool(volume.get("enabled", True)),
        target_volume_usd=_as_float(target, "volume.target_volume_usd"),
        check_interval_sec=_as_float(check_interval, "volume.check_interval_sec"),
        max_rebalance_attempts=_as_int(
            volume.get("max_rebalance_attempts", 10), "volume.max_rebalance_attempts"
        ),
        volume_reset_interval_sec=_as_float(
            volume.get("volume_reset_interval_sec", 86_400.0), "volume.volume_reset_interval_sec"
        ),
        reset_jitter_sec=_as_float(volume.get("reset_jitter_sec", 300.0), "volume.reset_jitter_sec"),
        min_trade_usd=_as_float(volume.get("min_trade_usd", 150.0), "volume.min_trade_usd"),
        max_deficit_fraction=_as_float(
            volume.get("max_deficit_fraction", 0.8), "volume.max_deficit_fraction"
        ),
        hard_cap_base=_as_float(hard_cap, "volume.hard_cap_base") if hard_cap is not None else None,
        min_multiplier=_as_float(volume.get("min_multiplier", 0.5), "volume.min_multiplier"),
        max_multiplier=_as_float(volume.get("max_multiplier", 2.0), "volume.max_multiplier"),
        onchain_lookback_blocks=_as_int(
            volume.get("onchain_lookback_blocks", 100), "volume.onchain_lookback_blocks"
        ),
    )
    if settings.min_multiplier > settings.max_multiplier:
        raise ConfigurationError("volume.min_multiplier must not exceed volume.max_multiplier")
    return settings


def _normalize_price_feed(config_dict: Dict[str, Any], env: Mapping[str, str]) -> PriceFeedSettings:
    feed = config_dict.get("price_feed") or {}
    keys_raw = env.get("COINGECKO_API_KEYS")
    if keys_raw is not None:
        api_keys = tuple(k.strip() for k in keys_raw.split(",") if k.strip())
    else:
        api_keys = tuple(str(k) for k in feed.get("api_keys") or ())

    return PriceFeedSettings(
        url=str(feed.get("url", PriceFeedSettings.url)),
        api_keys=api_keys,
        min_interval_sec=_as_float(feed.get("min_interval_sec", 1.2), "price_feed.min_interval_sec"),
        timeout_sec=_as_float(feed.get("timeout_sec", 10.0), "price_feed.timeout_sec"),
        base_asset_id=str(feed.get("base_asset_id", "ethereum")),
        traded_asset_id=feed.get("traded_asset_id"),
    )


def _normalize_volume_api(config_dict: Dict[str, Any]) -> VolumeApiSettings:
    api = config_dict.get("volume_api") or {}
    return VolumeApiSettings(
        url=str(api.get("url", VolumeApiSettings.url)).rstrip("/"),
        timeout_sec=_as_float(api.get("timeout_sec", 10.0), "volume_api.timeout_sec"),
        user_agent=str(api.get("user_agent", VolumeApiSettings.user_agent)),
    )


def _normalize_listener(config_dict: Dict[str, Any]) -> ListenerSettings:
    listener = config_dict.get("listener") or {}
    return ListenerSettings(
        poll_interval_sec=_as_float(
            listener.get("poll_interval_sec", 4.0), "listener.poll_interval_sec"
        ),
        reconnect_delay_sec=_as_float(
            listener.get("reconnect_delay_sec", 5.0), "listener.reconnect_delay_sec"
        ),
        refresh_interval_sec=_as_float(
            listener.get("refresh_interval_sec", 3600.0), "listener.refresh_interval_sec"
        ),
    )


def _normalize_notifications(
    config_dict: Dict[str, Any], env: Mapping[str, str]
) -> NotificationSettings:
    notifications = config_dict.get("notifications") or {}
    webhook_url = env.get("DISCORD_WEBHOOK_URL") or notifications.get("webhook_url")
    return NotificationSettings(
        webhook_url=webhook_url or None,
        low_balance_native=_as_float(
            notifications.get("low_balance_native", 0.01), "notifications.low_balance_native"
        ),
    )


def build_bot_config(
    config_dict: Dict[str, Any], env: Optional[Mapping[str, str]] = None
) -> BotConfig:
    """
    Normalize a raw config mapping into a BotConfig.

    Args:
        config_dict: Parsed YAML mapping
        env: Environment mapping for overrides (defaults to os.environ)

    Returns:
        Frozen BotConfig

    Raises:
        ConfigurationError: If required fields are missing or invalid
    """
    env = os.environ if env is None else env

    networks_raw = config_dict.get("networks")
    if not isinstance(networks_raw, dict):
        raise ConfigurationError("Config must contain a 'networks' mapping")
    if len(networks_raw) != 2:
        raise ConfigurationError(
            f"Exactly two networks must be configured, got {len(networks_raw)}"
        )

    networks = {
        str(key): _normalize_network(str(key), raw, env)
        for key, raw in networks_raw.items()
    }

    return BotConfig(
        networks=networks,
        arbitrage=_normalize_arbitrage(config_dict),
        queue=_normalize_queue(config_dict),
        execution=_normalize_execution(config_dict),
        volume=_normalize_volume(config_dict, env),
        price_feed=_normalize_price_feed(config_dict, env),
        volume_api=_normalize_volume_api(config_dict),
        listener=_normalize_listener(config_dict),
        notifications=_normalize_notifications(config_dict, env),
        private_key=env.get("PRIVATE_KEY") or None,
    )


def load_bot_config(
    config_path: Union[str, Path], env: Optional[Mapping[str, str]] = None
) -> BotConfig:
    """
    Load and normalize a bot configuration file.

    Args:
        config_path: Path to the YAML configuration file
        env: Environment mapping for overrides (defaults to os.environ)

    Returns:
        Frozen BotConfig
    """
    return build_bot_config(load_yaml_config(config_path), env)
