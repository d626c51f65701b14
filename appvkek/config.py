"""Chain table and the immutable run configuration."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from appvkek.errors import ConfigError, UsageError

# Etherscan's unified endpoint serves every supported chain, selected by the
# ``chainid`` query parameter.
EXPLORER_API_URL = "https://api.etherscan.io/v2/api"

ADDRESS_RE = re.compile(r"^(0x)?[0-9a-f]{40}$")


@dataclass(frozen=True)
class ChainConfig:
    name: str
    chain_id: int
    api_base_url: str
    api_key_env_var: str
    rpc_url: str


CHAINS: Dict[str, ChainConfig] = {
    "bsc": ChainConfig(
        name="bsc",
        chain_id=56,
        api_base_url=EXPLORER_API_URL,
        api_key_env_var="APPVKEK_BSCSCAN_APIKEY",
        rpc_url="https://bsc-dataseed.binance.org/",
    ),
    "ethereum": ChainConfig(
        name="ethereum",
        chain_id=1,
        api_base_url=EXPLORER_API_URL,
        api_key_env_var="APPVKEK_ETHERSCAN_APIKEY",
        rpc_url="https://rpc.ankr.com/eth",
    ),
    "polygon": ChainConfig(
        name="polygon",
        chain_id=137,
        api_base_url=EXPLORER_API_URL,
        api_key_env_var="APPVKEK_POLYGONSCAN_APIKEY",
        rpc_url="https://polygon-rpc.com/",
    ),
}


@dataclass(frozen=True)
class Config:
    """Everything a run needs, built once at startup and passed around."""

    chain: ChainConfig
    api_key: str
    address: str
    execution_time: bool = False
    live: bool = False
    check_eoa: bool = True
    rpc_url: Optional[str] = None

    @property
    def node_url(self) -> str:
        return self.rpc_url or self.chain.rpc_url


def normalise_address(address: str) -> str:
    """Return ``address`` as lower-case hex with a 0x prefix.

    Raises UsageError when the value is not a 20 byte hex address.
    """
    lowered = address.strip().lower()
    if not ADDRESS_RE.match(lowered):
        raise UsageError(f"address is not in the correct format: {address!r}")
    if not lowered.startswith("0x"):
        lowered = "0x" + lowered
    return lowered


def get_chain(name: str) -> ChainConfig:
    try:
        return CHAINS[name.lower()]
    except KeyError:
        choices = ", ".join(sorted(CHAINS))
        raise UsageError(f"unsupported chain {name!r} (choose from {choices})") from None


def load_config(
    chain: str,
    address: str,
    environ: Optional[Mapping[str, str]] = None,
    **options,
) -> Config:
    """Build the run configuration from parsed flags and the environment.

    The API key is looked up in the chain's environment variable; a missing
    or blank value raises ConfigError.
    """
    if environ is None:
        environ = os.environ
    chain_config = get_chain(chain)
    owner = normalise_address(address)
    api_key = environ.get(chain_config.api_key_env_var, "").strip()
    if not api_key:
        raise ConfigError(
            f"required environment variable {chain_config.api_key_env_var!r} is not set"
        )
    return Config(chain=chain_config, api_key=api_key, address=owner, **options)
