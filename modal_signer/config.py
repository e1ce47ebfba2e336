"""Bridge configuration loaded from environment variables."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

_ETH_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

# ERC-4337 v0.7 EntryPoint and Modular Account v2 factory (same address on every chain)
DEFAULT_ENTRY_POINT = "0x0000000071727De22E5E9d8BAf0edAc6f37da032"
DEFAULT_ACCOUNT_FACTORY = "0x00000000000017c61b5bEe81050EC8eFc9c6fecd"


@dataclass(frozen=True)
class ChainInfo:
    chain_id: int
    alchemy_network: str  # RPC subdomain: https://{alchemy_network}.g.alchemy.com/v2


CHAINS: dict[str, ChainInfo] = {
    "gensyn-testnet": ChainInfo(chain_id=685685, alchemy_network="gensyn-testnet"),
    "base-sepolia": ChainInfo(chain_id=84532, alchemy_network="base-sepolia"),
    "base-mainnet": ChainInfo(chain_id=8453, alchemy_network="base-mainnet"),
    "eth-sepolia": ChainInfo(chain_id=11155111, alchemy_network="eth-sepolia"),
}


def _int_env(key: str, default: str) -> int:
    val = os.getenv(key, default)
    try:
        return int(val)
    except (ValueError, TypeError):
        raise ValueError(f"Invalid integer for {key}: {val!r}")


def _float_env(key: str, default: str) -> float:
    val = os.getenv(key, default)
    try:
        return float(val)
    except (ValueError, TypeError):
        raise ValueError(f"Invalid float for {key}: {val!r}")


@dataclass(frozen=True)
class Config:
    # Alchemy (signing relay + bundler + paymaster)
    alchemy_api_key: str = os.getenv("ALCHEMY_API_KEY", "")
    alchemy_base_url: str = os.getenv("ALCHEMY_BASE_URL", "https://api.g.alchemy.com")
    paymaster_policy_id: str = os.getenv("PAYMASTER_POLICY_ID", "")

    # Custody API the stamped requests are addressed to
    turnkey_base_url: str = os.getenv("TURNKEY_BASE_URL", "https://api.turnkey.com")

    # Chain
    chain: str = os.getenv("CHAIN", "gensyn-testnet")
    smart_contract_address: str = os.getenv("SMART_CONTRACT_ADDRESS", "")
    entry_point_address: str = os.getenv("ENTRY_POINT_ADDRESS", DEFAULT_ENTRY_POINT)
    account_factory_address: str = os.getenv("ACCOUNT_FACTORY_ADDRESS", DEFAULT_ACCOUNT_FACTORY)
    account_salt: int = _int_env("ACCOUNT_SALT", "0")

    # Credential store
    credentials_db_path: str = os.getenv("CREDENTIALS_DB_PATH", "data/credentials.db")

    # API
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = _int_env("API_PORT", "3000")
    cors_origins: str = os.getenv("CORS_ORIGINS", "")

    # Timeouts (seconds)
    signer_timeout: float = _float_env("SIGNER_TIMEOUT", "15.0")
    relay_timeout: float = _float_env("RELAY_TIMEOUT", "30.0")

    @property
    def chain_info(self) -> ChainInfo:
        try:
            return CHAINS[self.chain]
        except KeyError:
            raise ValueError(f"Unknown CHAIN {self.chain!r} (known: {', '.join(CHAINS)})")

    @property
    def rpc_url(self) -> str:
        """Alchemy JSON-RPC endpoint serving both node and bundler methods."""
        return f"https://{self.chain_info.alchemy_network}.g.alchemy.com/v2/{self.alchemy_api_key}"

    def validate(self) -> list[str]:
        """Validate config at startup. Raises ValueError on hard errors, returns warnings."""
        warnings: list[str] = []
        if not self.alchemy_api_key:
            raise ValueError("ALCHEMY_API_KEY is required")
        if not self.paymaster_policy_id:
            raise ValueError("PAYMASTER_POLICY_ID is required")
        if self.chain not in CHAINS:
            raise ValueError(f"CHAIN must be one of {', '.join(CHAINS)}, got {self.chain!r}")
        for name in ("smart_contract_address", "entry_point_address", "account_factory_address"):
            addr = getattr(self, name)
            if not addr:
                raise ValueError(f"{name.upper()} must be set")
            if not _ETH_ADDRESS_RE.match(addr):
                raise ValueError(f"{name.upper()} is not a valid Ethereum address: {addr!r}")
        for name in ("alchemy_base_url", "turnkey_base_url"):
            url = getattr(self, name)
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"{name.upper()} must start with http:// or https://, got {url!r}")
        if self.api_port < 1 or self.api_port > 65535:
            raise ValueError(f"API_PORT must be 1-65535, got {self.api_port}")
        if self.account_salt < 0:
            raise ValueError(f"ACCOUNT_SALT must be >= 0, got {self.account_salt}")
        if self.signer_timeout <= 0:
            raise ValueError(f"SIGNER_TIMEOUT must be > 0, got {self.signer_timeout}")
        if self.relay_timeout <= 0:
            raise ValueError(f"RELAY_TIMEOUT must be > 0, got {self.relay_timeout}")
        if self.chain != "gensyn-testnet":
            warnings.append(f"CHAIN={self.chain!r} differs from the default deployment (gensyn-testnet)")
        if not self.alchemy_base_url.startswith("https://"):
            warnings.append("ALCHEMY_BASE_URL is not https; bearer credential will be sent in clear text")
        return warnings
