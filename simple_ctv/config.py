"""
Covenant Configuration and Constants

Defines the per-network parameters (fee anchor address, RPC port, wallet
name), the fee and amount defaults, and the configuration object handed to
the orchestrator at construction.
"""

import os
from dataclasses import dataclass
from typing import Optional

from simple_ctv.errors import ConfigError
from simple_ctv.script import ScriptVariant

# Pay-to-anchor addresses
# https://bitcoinops.org/en/bitcoin-core-28-wallet-integration-guide/
NETWORK_DEFAULTS = {
    "mainnet": {
        "fee_anchor_address": "bc1pfeessrawgf",
        "rpc_port": 8332,
        "wallet_name": "simple_ctv",
    },
    "signet": {
        "fee_anchor_address": "tb1pfees9rn5nz",
        "rpc_port": 38332,
        "wallet_name": "siggy",
    },
    "regtest": {
        "fee_anchor_address": "bcrt1pfeesnyr2tx",
        "rpc_port": 18443,
        "wallet_name": "simple_ctv",
    },
}

# network names passed to bitcoinutils.setup
CHAIN_SETUP = {
    "mainnet": "mainnet",
    "signet": "signet",
    "regtest": "regtest",
}

# Fee configuration (adjustable)
FEE_CONFIG = {
    "anchor_amount": 240,         # min value for the anchor output (sats)
    "payout_amount": 1337,        # committed payout output (sats)
    "fee_reserve_amount": 10000,  # separate UTXO that pays for the child (sats)
    "child_feerate": 2,           # package fee rate targeted by the child (sat/vB)
}

CONFIRMATION_CONFIG = {
    "timeout": 600.0,     # seconds before giving up on a funding transaction
    "poll_interval": 10.0,
    "min_confirmations": 1,
}

DEFAULT_CHILD_DATA = b"99 problems but 0 fees aint 1"


def check_network(network):
    """Return ``network`` if known, raise ConfigError otherwise."""
    if network not in NETWORK_DEFAULTS:
        raise ConfigError(
            f"Unsupported network: {network} (expected one of {', '.join(NETWORK_DEFAULTS)})"
        )
    return network


def default_rpc_endpoint(network, wallet_name, host="localhost"):
    """Wallet-scoped RPC URL for the local node of ``network``."""
    port = NETWORK_DEFAULTS[check_network(network)]["rpc_port"]
    return f"http://{host}:{port}/wallet/{wallet_name}"


@dataclass(frozen=True)
class CovenantConfig:
    """Static configuration consumed by the orchestrator at start."""

    network: str
    fee_anchor_address: str
    rpc_endpoint: str
    wallet_name: str
    rpc_user: str = ""
    rpc_password: str = ""
    script_variant: ScriptVariant = ScriptVariant.MINIMAL
    payout_amount: int = FEE_CONFIG["payout_amount"]
    anchor_amount: int = FEE_CONFIG["anchor_amount"]
    fee_reserve_amount: int = FEE_CONFIG["fee_reserve_amount"]
    child_feerate: int = FEE_CONFIG["child_feerate"]
    confirmation_timeout: float = CONFIRMATION_CONFIG["timeout"]
    poll_interval: float = CONFIRMATION_CONFIG["poll_interval"]
    min_confirmations: int = CONFIRMATION_CONFIG["min_confirmations"]
    auto_mine: bool = False

    def __post_init__(self):
        check_network(self.network)
        if self.payout_amount <= 0 or self.anchor_amount < 0:
            raise ConfigError("Payout must be positive and anchor non-negative")
        if self.fee_reserve_amount <= 0:
            raise ConfigError("Fee reserve amount must be positive")
        if self.confirmation_timeout <= 0 or self.poll_interval <= 0:
            raise ConfigError("Confirmation timeout and poll interval must be positive")

    @property
    def chain(self):
        """Network name understood by ``bitcoinutils.setup.setup``."""
        return CHAIN_SETUP[self.network]

    @property
    def covenant_amount(self):
        """Value sent to the covenant address: payout plus anchor, parent pays zero fee."""
        return self.payout_amount + self.anchor_amount

    @classmethod
    def for_network(cls, network="regtest", **overrides):
        """Build a configuration from the network defaults."""
        defaults = NETWORK_DEFAULTS[check_network(network)]
        wallet_name = overrides.pop("wallet_name", defaults["wallet_name"])
        rpc_endpoint = overrides.pop("rpc_endpoint", None) or default_rpc_endpoint(network, wallet_name)
        if "script_variant" in overrides:
            overrides["script_variant"] = parse_variant(overrides["script_variant"])
        overrides.setdefault("auto_mine", network == "regtest")
        return cls(
            network=network,
            fee_anchor_address=overrides.pop("fee_anchor_address", defaults["fee_anchor_address"]),
            rpc_endpoint=rpc_endpoint,
            wallet_name=wallet_name,
            **overrides,
        )

    @classmethod
    def from_env(cls, environ: Optional[dict] = None, **overrides):
        """
        Build a configuration from process environment variables.

        Reads BITCOIN_RPC_USER / BITCOIN_RPC_PASS (required), and the optional
        CTV_NETWORK, CTV_WALLET, CTV_RPC_URL and CTV_SCRIPT_VARIANT.
        Keyword overrides take precedence over the environment.
        """
        env = os.environ if environ is None else environ
        try:
            user = env["BITCOIN_RPC_USER"]
            password = env["BITCOIN_RPC_PASS"]
        except KeyError as e:
            raise ConfigError(f"{e.args[0]} not set") from e

        settings = {"rpc_user": user, "rpc_password": password}
        if env.get("CTV_WALLET"):
            settings["wallet_name"] = env["CTV_WALLET"]
        if env.get("CTV_RPC_URL"):
            settings["rpc_endpoint"] = env["CTV_RPC_URL"]
        if env.get("CTV_SCRIPT_VARIANT"):
            settings["script_variant"] = env["CTV_SCRIPT_VARIANT"]
        settings.update({k: v for k, v in overrides.items() if v is not None})

        network = settings.pop("network", None) or env.get("CTV_NETWORK", "regtest")
        return cls.for_network(network, **settings)


def parse_variant(value):
    """Accept a ScriptVariant or its name ("minimal", "with_drop")."""
    if isinstance(value, ScriptVariant):
        return value
    try:
        return ScriptVariant(str(value).lower().replace("-", "_"))
    except ValueError as e:
        raise ConfigError(f"Unsupported script variant: {value}") from e
