"""
Configuration for the gasless payments SDK.

Network endpoints come from the packaged `networks.json` and may be
overridden per network through environment variables. Runtime settings
(topic, accounts, sponsor fee model) are read from the environment by
`GaslessConfig.from_env`.
"""
import importlib.resources
import json
import logging
import os
import threading
import urllib.parse
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

DEFAULT_NETWORK = "hedera-testnet"


def validate_url(url: str, name: str = "url") -> str:
    """
    Require https unless the host is local or insecure HTTP is allowed.

    Args:
        url: URL to validate
        name: Setting name used in the error message

    Returns:
        The URL, unchanged

    Raises:
        ValueError: If the URL is invalid or uses insecure HTTP
    """
    parsed = urllib.parse.urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"Invalid {name} '{url}'")
    host = parsed.hostname or ""
    is_local = host in ("localhost", "127.0.0.1", "::1")
    if parsed.scheme != "https" and not is_local:
        if os.environ.get("GASLESS_INSECURE_HTTP") != "1":
            raise ValueError(
                f"{name} must use https:// for security (got: {parsed.scheme}://). "
                "Set GASLESS_INSECURE_HTTP=1 to allow HTTP for development."
            )
    return url


def _env_prefix(network: str) -> str:
    return network.upper().replace("-", "_")


class NetworkConfig:
    """
    Lookup of per-network endpoints.

    The packaged network file is loaded once and cached for the process.
    """

    _networks_cache: Optional[Dict[str, Dict[str, Any]]] = None
    _cache_lock = threading.RLock()

    @classmethod
    def load_networks(cls) -> Dict[str, Dict[str, Any]]:
        """Load (and cache) the packaged network definitions."""
        with cls._cache_lock:
            if cls._networks_cache is None:
                resource = importlib.resources.files("gasless_sdk").joinpath("networks.json")
                with resource.open("r", encoding="utf-8") as f:
                    cls._networks_cache = json.load(f)
            return cls._networks_cache

    @classmethod
    def get_network(cls, network: str) -> Dict[str, Any]:
        """
        Raises:
            ValueError: If the network is unknown
        """
        networks = cls.load_networks()
        if network not in networks:
            available = ", ".join(sorted(networks))
            raise ValueError(f"Unknown network '{network}'. Available networks: {available}")
        return networks[network]

    @classmethod
    def get_mirror_node_url(cls, network: str, override: Optional[str] = None) -> str:
        """
        Mirror node URL: explicit override, then `{NETWORK}_MIRROR_NODE_URL`,
        then the network file.
        """
        if override:
            return override
        env_url = os.environ.get(f"{_env_prefix(network)}_MIRROR_NODE_URL")
        if env_url:
            return env_url
        return cls.get_network(network)["mirrorNode"]

    @classmethod
    def get_rpc_url(cls, network: str, override: Optional[str] = None) -> str:
        """
        JSON-RPC URL: explicit override, then `{NETWORK}_RPC_URL`, then the
        network file.
        """
        if override:
            return override
        env_url = os.environ.get(f"{_env_prefix(network)}_RPC_URL")
        if env_url:
            return env_url
        return cls.get_network(network)["rpc"]

    @classmethod
    def get_chain_id(cls, network: str) -> int:
        return int(cls.get_network(network)["chainId"])


class GaslessConfig(BaseModel):
    """
    Runtime settings.

    Attributes:
        network: Network name from networks.json
        topic_id: Log (topic) that carries the payment messages
        mirror_node_url: Mirror node override
        rpc_url: JSON-RPC override
        account_id: Operator account (sender or sponsor)
        private_key: Operator private key; never included in repr
        fee_model: Sponsor fee model, "flat" or "percentage"
        flat_fee: Flat sponsor fee in HBAR
        percentage_fee: Percentage sponsor fee (1 = 1%)
        min_balance: Sponsor balance floor in HBAR
        poll_interval_ms: Sponsor polling interval in milliseconds
        max_batch: Maximum payments relayed per poll
    """
    network: str = DEFAULT_NETWORK
    topic_id: Optional[str] = None
    mirror_node_url: Optional[str] = None
    rpc_url: Optional[str] = None
    account_id: Optional[str] = None
    private_key: Optional[str] = Field(default=None, repr=False)
    fee_model: str = "percentage"
    flat_fee: float = Field(default=0.01, ge=0)
    percentage_fee: float = Field(default=1.0, ge=0)
    min_balance: float = Field(default=10.0, ge=0)
    poll_interval_ms: int = Field(default=5000, gt=0)
    max_batch: int = Field(default=5, gt=0)

    @field_validator("fee_model")
    @classmethod
    def check_fee_model(cls, value: str) -> str:
        value = value.lower()
        if value not in ("flat", "percentage"):
            raise ValueError(f"fee_model must be 'flat' or 'percentage', got '{value}'")
        return value

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "GaslessConfig":
        """
        Build settings from environment variables.

        Recognized variables: GASLESS_NETWORK, GASLESS_TOPIC_ID (or
        P2P_GASLESS_TOPIC_ID), GASLESS_MIRROR_NODE_URL, GASLESS_RPC_URL,
        GASLESS_ACCOUNT_ID, GASLESS_PRIVATE_KEY, SPONSOR_FEE_MODEL,
        SPONSOR_FLAT_FEE, SPONSOR_PERCENTAGE_FEE, SPONSOR_MIN_BALANCE,
        SPONSOR_POLL_INTERVAL, SPONSOR_MAX_BATCH.
        """
        env = os.environ if environ is None else environ
        mapping = {
            "network": env.get("GASLESS_NETWORK"),
            "topic_id": env.get("GASLESS_TOPIC_ID") or env.get("P2P_GASLESS_TOPIC_ID"),
            "mirror_node_url": env.get("GASLESS_MIRROR_NODE_URL"),
            "rpc_url": env.get("GASLESS_RPC_URL"),
            "account_id": env.get("GASLESS_ACCOUNT_ID"),
            "private_key": env.get("GASLESS_PRIVATE_KEY"),
            "fee_model": env.get("SPONSOR_FEE_MODEL"),
            "flat_fee": env.get("SPONSOR_FLAT_FEE"),
            "percentage_fee": env.get("SPONSOR_PERCENTAGE_FEE"),
            "min_balance": env.get("SPONSOR_MIN_BALANCE"),
            "poll_interval_ms": env.get("SPONSOR_POLL_INTERVAL"),
            "max_batch": env.get("SPONSOR_MAX_BATCH"),
        }
        return cls(**{key: value for key, value in mapping.items() if value not in (None, "")})

    def require_topic_id(self) -> str:
        """
        Raises:
            ValueError: If no topic is configured
        """
        if not self.topic_id:
            raise ValueError(
                "No P2P topic configured. Set GASLESS_TOPIC_ID (or P2P_GASLESS_TOPIC_ID) "
                "or pass topic_id explicitly."
            )
        return self.topic_id

    def resolved_mirror_node_url(self) -> str:
        return validate_url(NetworkConfig.get_mirror_node_url(self.network, self.mirror_node_url), "mirror_node_url")

    def resolved_rpc_url(self) -> str:
        return validate_url(NetworkConfig.get_rpc_url(self.network, self.rpc_url), "rpc_url")
