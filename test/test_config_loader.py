"""
Test the config_loader module.
"""

import pytest
from web3 import Web3

from app.seeker.config_loader import build_chain_clients, load_account, load_config, read_config_file
from app.seeker.exceptions import ConfigError


def test_config_loaded_ok(config):
    """
    Test the load_config function.
    """
    assert config.environment == "test"
    assert not config.is_production
    assert config.liquidator == Web3.to_checksum_address("0x5fbdb2315678afecb367f032d93f642f64180aa3")
    assert len(config.bid_topic) == 32
    assert config.min_usd_borrow == 20 * 10**18
    assert config.min_eth_borrow == 10**16
    assert config.min_liquidation_profit_usd == 10**16
    assert config.transmutation_percent == 100.2
    assert config.accounts_to_watch_path == "state/accounts-to-watch.json"
    assert config.target_chain.fallback_rpc_url


def test_mnemonic_is_not_in_repr(config):
    assert config.mnemonic not in repr(config)


def test_load_account(config):
    assert load_account(config).address == Web3.to_checksum_address("0xf39fd6e51aad88f6f4ce6ab8827279cfffb92266")


def test_missing_required_env(config, monkeypatch):
    monkeypatch.delenv("MNEMONIC")
    with pytest.raises(ConfigError):
        load_config()


def test_invalid_environment(config, monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "staging")
    with pytest.raises(ConfigError):
        load_config()


def test_target_rpc_api_key_is_appended(config, monkeypatch):
    monkeypatch.setenv("TARGET_RPC_URL", "https://blast.example/v2/")
    monkeypatch.setenv("TARGET_RPC_API_KEY", "secret")
    assert load_config().target_chain.rpc_url == "https://blast.example/v2/secret"


def test_min_usd_borrow_override(config, monkeypatch):
    monkeypatch.setenv("MIN_USD_BORROW", "50.5")
    assert load_config().min_usd_borrow == 505 * 10**17


def test_invalid_liquidator_address(config, monkeypatch):
    monkeypatch.setenv("ETHER_LIQUIDATOR_ADDRESS", "0x1234")
    with pytest.raises(ConfigError):
        load_config()


def test_config_file_errors(tmp_path):
    with pytest.raises(ConfigError):
        read_config_file(str(tmp_path / "missing.yaml"))

    broken = tmp_path / "broken.yaml"
    broken.write_text("global: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigError):
        read_config_file(str(broken))

    partial = tmp_path / "partial.yaml"
    partial.write_text("global: {}\ntarget_chain: {}\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        read_config_file(str(partial))


def test_build_chain_clients(config, monkeypatch):
    target, auction = build_chain_clients(config)
    assert len(target.providers) == 2
    assert len(auction.providers) == 1
    assert target.chain_id == config.target_chain.chain_id
    assert auction.chain_id == config.auction_network.chain_id

    monkeypatch.setenv("TARGET_RPC_URL", config.target_chain.fallback_rpc_url)
    target, _ = build_chain_clients(load_config())
    assert len(target.providers) == 1
