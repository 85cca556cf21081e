"""Tests for configuration loading and credential sources."""

import json

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from executor_relay.config import ConfigError, load_config, load_evm_account, load_solana_keypair
from executor_relay.core.addresses import ChainFamily

PROGRAM = str(Pubkey.new_unique())
CORE_BRIDGE = str(Pubkey.new_unique())


def _config(**overrides):
    data = {
        "network": "Testnet",
        "chains": {
            "solana": {
                "wormhole_chain_id": 1,
                "family": "svm",
                "rpc_url": "https://api.devnet.solana.com",
                "program_id": PROGRAM,
                "wormhole_core_bridge": CORE_BRIDGE,
            },
            "sepolia": {
                "wormhole_chain_id": 10002,
                "family": "evm",
                "contract_address": "0xc83dcae38111019e8efba0b78ce6ba055e7a3f2c",
            },
        },
    }
    data.update(overrides)
    return data


def _write(tmp_path, data):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_load_config_applies_defaults(tmp_path):
    config = load_config(_write(tmp_path, _config()))

    assert config.network == "Testnet"
    assert config.api_urls.executor == "https://executor-testnet.labsapis.com/v0"
    assert config.defaults.max_quote_attempts == 3
    assert config.defaults.gas_limit == 200_000

    solana = config.chain("solana")
    assert solana.family is ChainFamily.SVM
    assert str(solana.program_id) == PROGRAM
    assert solana.native_decimals == 9
    assert solana.executor_chain_name == "Solana"

    sepolia = config.chain_by_id(10002)
    assert sepolia.contract_address == "0xC83dcae38111019e8efbA0B78CE6BA055e7A3f2c"
    assert sepolia.native_decimals == 18
    assert sepolia.executor_chain_name == "Sepolia"


def test_load_config_reads_path_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("EXECUTOR_RELAY_CONFIG", str(_write(tmp_path, _config())))

    assert load_config().chain("solana").wormhole_chain_id == 1


def test_api_url_overrides_are_trimmed(tmp_path):
    config = load_config(_write(tmp_path, _config(api_urls={"executor": "http://localhost:3000/v0/"})))

    assert config.api_urls.executor == "http://localhost:3000/v0"
    assert config.api_urls.wormholescan == "https://api.testnet.wormholescan.io"


@pytest.mark.parametrize(
    "overrides",
    [
        {"network": "Devnet"},
        {"chains": {}},
        {"defaults": {"poll_interval": 0}},
        {"defaults": {"poll_interval": 10, "max_poll_interval": 5}},
        {"chains": {"a": {"wormhole_chain_id": 1, "family": "move"}}},
        {"chains": {"a": {"wormhole_chain_id": 70000, "family": "evm", "contract_address": "0x" + "11" * 20}}},
        {"chains": {"a": {"wormhole_chain_id": 2, "family": "evm", "contract_address": "0x1234"}}},
        {"chains": {"a": {"wormhole_chain_id": 1, "family": "svm", "program_id": "not-a-key",
                          "wormhole_core_bridge": CORE_BRIDGE}}},
        {"chains": {"a": {"wormhole_chain_id": 1, "family": "svm", "program_id": PROGRAM}}},
    ],
)
def test_invalid_config_is_rejected(tmp_path, overrides):
    with pytest.raises(ConfigError):
        load_config(_write(tmp_path, _config(**overrides)))


def test_duplicate_chain_ids_are_rejected(tmp_path):
    data = _config()
    data["chains"]["fogo"] = dict(data["chains"]["solana"])

    with pytest.raises(ConfigError, match="share wormhole_chain_id"):
        load_config(_write(tmp_path, data))


def test_missing_and_invalid_files(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "absent.json")

    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(broken)


def test_unknown_chain_lookup(tmp_path):
    config = load_config(_write(tmp_path, _config()))

    with pytest.raises(ConfigError):
        config.chain("aptos")
    with pytest.raises(ConfigError):
        config.chain_by_id(51)
    with pytest.raises(ConfigError):
        config.chain("sepolia").ensure_program_id()


def test_solana_keypair_from_environment(monkeypatch):
    keypair = Keypair()
    monkeypatch.setenv("PRIVATE_KEY_SOLANA", json.dumps(list(bytes(keypair))))

    assert load_solana_keypair().pubkey() == keypair.pubkey()

    monkeypatch.setenv("PRIVATE_KEY_SOLANA", str(keypair))
    assert load_solana_keypair().pubkey() == keypair.pubkey()


def test_solana_keypair_from_file(tmp_path, monkeypatch):
    monkeypatch.delenv("PRIVATE_KEY_SOLANA", raising=False)
    keypair = Keypair()
    path = tmp_path / "id.json"
    path.write_text(json.dumps(list(bytes(keypair))), encoding="utf-8")

    assert load_solana_keypair(keypair_path=path).pubkey() == keypair.pubkey()
    with pytest.raises(ConfigError):
        load_solana_keypair(keypair_path=tmp_path / "missing.json")


def test_evm_account_from_environment(monkeypatch):
    monkeypatch.setenv("PRIVATE_KEY_EVM", "0x" + "01" * 32)

    assert load_evm_account().address.startswith("0x")

    monkeypatch.delenv("PRIVATE_KEY_EVM")
    with pytest.raises(ConfigError):
        load_evm_account()

    monkeypatch.setenv("PRIVATE_KEY_EVM", "nonsense")
    with pytest.raises(ConfigError):
        load_evm_account()
