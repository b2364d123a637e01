"""
Tests for ckchain.config
"""

import pytest
from pydantic import ValidationError

from ckchain.config import Settings, get_settings
from ckcore.constants import LAST_BLOCK_UPDATE_INTERVAL, TOKEN_UPDATE_INTERVAL


def test_defaults() -> None:
    settings = get_settings()
    assert settings.layer is None
    assert settings.rpc == {}
    assert settings.mongo is None
    assert settings.token_cache_ttl == TOKEN_UPDATE_INTERVAL
    assert settings.last_block_ttl == LAST_BLOCK_UPDATE_INTERVAL
    assert settings.log_level == "INFO"


def test_layer_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("CRYPTOKIT_LAYER", "EthereumMongo")
    assert get_settings().layer == "EthereumMongo"


def test_rpc_endpoints_from_environment(monkeypatch) -> None:
    monkeypatch.setenv(
        "CRYPTOKIT_RPC",
        '{"eth_service": {"url": "http://127.0.0.1:8080/"}, "bitcoind": '
        '{"url": "http://127.0.0.1:8332", "user": "rpc", "password": "secret"}}',
    )
    settings = get_settings()
    assert set(settings.rpc) == {"eth-service", "bitcoind"}
    assert settings.rpc["bitcoind"].user == "rpc"

    client = settings.rpc["eth-service"].create_client()
    try:
        assert client.url == "http://127.0.0.1:8080"
    finally:
        client.close()


def test_env_file(tmp_path) -> None:
    (tmp_path / ".env").write_text("CRYPTOKIT_LAYER=Ethereum\nCRYPTOKIT_LOG_LEVEL=DEBUG\n")
    settings = get_settings()
    assert settings.layer == "Ethereum"
    assert settings.log_level == "DEBUG"


class TestAssetContracts:
    def test_assets_are_lower_cased(self) -> None:
        settings = Settings(assets={"TKN": {"contract_address": "0xABCDEF"}})
        assert settings.asset_contracts() == {"TKN": "0xabcdef"}

    def test_legacy_contracts_map(self) -> None:
        settings = Settings(contracts={"TKN": "0xABC", "EVX": "0xDEF"})
        assert settings.asset_contracts() == {"TKN": "0xabc", "EVX": "0xdef"}

    def test_assets_take_precedence(self) -> None:
        settings = Settings(
            assets={"TKN": {"contract_address": "0x01"}}, contracts={"OLD": "0x02"}
        )
        assert settings.asset_contracts() == {"TKN": "0x01"}


@pytest.mark.parametrize("field", ["token_cache_ttl", "last_block_ttl"])
def test_negative_ttl_rejected(field) -> None:
    with pytest.raises(ValidationError):
        Settings(**{field: -1})


def test_endpoint_timeouts_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        Settings(rpc={"geth": {"url": "http://geth", "timeout": 0}})
