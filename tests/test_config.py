"""Tests for network defaults and CovenantConfig construction."""

from dataclasses import FrozenInstanceError

import pytest

from simple_ctv.config import (
    check_network,
    CovenantConfig,
    default_rpc_endpoint,
    FEE_CONFIG,
    parse_variant,
)
from simple_ctv.errors import ConfigError
from simple_ctv.script import ScriptVariant

ENV = {"BITCOIN_RPC_USER": "alice", "BITCOIN_RPC_PASS": "secret"}


class TestNetworkDefaults:
    def test_known_networks(self) -> None:
        for network in ("mainnet", "signet", "regtest"):
            assert check_network(network) == network

    def test_unknown_network(self) -> None:
        with pytest.raises(ConfigError):
            check_network("testnet3")

    def test_rpc_endpoint(self) -> None:
        assert default_rpc_endpoint("regtest", "w") == "http://localhost:18443/wallet/w"
        assert default_rpc_endpoint("signet", "siggy", "node") == "http://node:38332/wallet/siggy"


class TestForNetwork:
    def test_regtest_defaults(self) -> None:
        config = CovenantConfig.for_network()
        assert config.network == "regtest"
        assert config.chain == "regtest"
        assert config.fee_anchor_address == "bcrt1pfeesnyr2tx"
        assert config.wallet_name == "simple_ctv"
        assert config.rpc_endpoint == "http://localhost:18443/wallet/simple_ctv"
        assert config.script_variant is ScriptVariant.MINIMAL
        assert config.auto_mine is True
        assert config.covenant_amount == FEE_CONFIG["payout_amount"] + FEE_CONFIG["anchor_amount"]

    def test_signet_defaults(self) -> None:
        config = CovenantConfig.for_network("signet")
        assert config.chain == "signet"
        assert config.fee_anchor_address == "tb1pfees9rn5nz"
        assert config.wallet_name == "siggy"
        assert config.auto_mine is False

    def test_overrides(self) -> None:
        config = CovenantConfig.for_network(
            "regtest", wallet_name="other", script_variant="with-drop", payout_amount=5000
        )
        assert config.rpc_endpoint.endswith("/wallet/other")
        assert config.script_variant is ScriptVariant.WITH_DROP
        assert config.covenant_amount == 5000 + FEE_CONFIG["anchor_amount"]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"payout_amount": 0},
            {"anchor_amount": -1},
            {"fee_reserve_amount": 0},
            {"confirmation_timeout": 0},
            {"poll_interval": -1},
        ],
    )
    def test_invalid_values(self, overrides) -> None:
        with pytest.raises(ConfigError):
            CovenantConfig.for_network(**overrides)

    def test_unknown_network(self) -> None:
        with pytest.raises(ConfigError):
            CovenantConfig.for_network("liquid")

    def test_immutable(self) -> None:
        config = CovenantConfig.for_network()
        with pytest.raises(FrozenInstanceError):
            config.network = "mainnet"


class TestFromEnv:
    def test_requires_credentials(self) -> None:
        with pytest.raises(ConfigError, match="BITCOIN_RPC_USER"):
            CovenantConfig.from_env({})
        with pytest.raises(ConfigError, match="BITCOIN_RPC_PASS"):
            CovenantConfig.from_env({"BITCOIN_RPC_USER": "alice"})

    def test_reads_environment(self) -> None:
        env = dict(
            ENV,
            CTV_NETWORK="signet",
            CTV_WALLET="vault",
            CTV_RPC_URL="http://10.0.0.2:38332/wallet/vault",
            CTV_SCRIPT_VARIANT="with_drop",
        )
        config = CovenantConfig.from_env(env)
        assert config.rpc_user == "alice"
        assert config.rpc_password == "secret"
        assert config.network == "signet"
        assert config.wallet_name == "vault"
        assert config.rpc_endpoint == "http://10.0.0.2:38332/wallet/vault"
        assert config.script_variant is ScriptVariant.WITH_DROP

    def test_overrides_win_and_none_is_ignored(self) -> None:
        env = dict(ENV, CTV_WALLET="vault")
        config = CovenantConfig.from_env(env, wallet_name="other", network=None, child_feerate=None)
        assert config.network == "regtest"
        assert config.wallet_name == "other"
        assert config.child_feerate == FEE_CONFIG["child_feerate"]

    def test_process_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("BITCOIN_RPC_USER", "bob")
        monkeypatch.setenv("BITCOIN_RPC_PASS", "pw")
        for name in ("CTV_NETWORK", "CTV_WALLET", "CTV_RPC_URL", "CTV_SCRIPT_VARIANT"):
            monkeypatch.delenv(name, raising=False)
        assert CovenantConfig.from_env().rpc_user == "bob"


class TestParseVariant:
    def test_accepts_names_and_members(self) -> None:
        assert parse_variant("minimal") is ScriptVariant.MINIMAL
        assert parse_variant("WITH_DROP") is ScriptVariant.WITH_DROP
        assert parse_variant(ScriptVariant.WITH_DROP) is ScriptVariant.WITH_DROP

    def test_rejects_unknown(self) -> None:
        with pytest.raises(ConfigError):
            parse_variant("bare")
