import pytest

from app.core.settings import Settings, SettingsValidationError, SignerType
from networks import NetworkId, NetworkMode

VAULT_BSC = "0x2222222222222222222222222222222222222222"


@pytest.fixture
def clean_env(monkeypatch):
    for key in (
        "ACTIVE_NETWORK",
        "NETWORK_MODE",
        "SIGNER_TYPE",
        "PRIVATE_KEY",
        "KEYSTORE_PASSWORD",
        "DEFAULT_TOKEN_DECIMALS",
        "VAULT_LOG_LEVEL",
        "AUTO_APPROVE_DEPOSITS",
        "HTTP_TIMEOUT_SEC",
    ):
        monkeypatch.delenv(key, raising=False)
    for network in NetworkId:
        monkeypatch.delenv(f"VAULT_CONTRACT_{network.value}", raising=False)
        monkeypatch.delenv(f"SETTLE_DELAY_MS_{network.value}", raising=False)
    return monkeypatch


def test_defaults(clean_env):
    s = Settings()
    assert s.active_network is NetworkId.ETH
    assert s.NETWORK_MODE is NetworkMode.TESTNET
    assert s.SIGNER_TYPE is SignerType.ENV_PRIVATE_KEY
    assert s.DEFAULT_TOKEN_DECIMALS == 18
    assert s.AUTO_APPROVE_DEPOSITS is True
    assert s.VAULT_CONTRACTS == {}
    assert s.SETTLE_DELAY_OVERRIDES_MS == {}


def test_env_overrides(clean_env):
    clean_env.setenv("ACTIVE_NETWORK", "bsc")
    clean_env.setenv("NETWORK_MODE", "MAINNET")
    clean_env.setenv("VAULT_CONTRACT_BSC", VAULT_BSC)
    clean_env.setenv("SETTLE_DELAY_MS_BASE", "500")
    clean_env.setenv("AUTO_APPROVE_DEPOSITS", "false")
    clean_env.setenv("SIGNER_TYPE", "remote")
    clean_env.setenv("HTTP_TIMEOUT_SEC", "7")

    s = Settings()
    assert s.active_network is NetworkId.BSC
    assert s.NETWORK_MODE is NetworkMode.MAINNET
    assert s.VAULT_CONTRACTS == {NetworkId.BSC: VAULT_BSC}
    assert s.SETTLE_DELAY_OVERRIDES_MS == {NetworkId.BASE: 500}
    assert s.AUTO_APPROVE_DEPOSITS is False
    assert s.SIGNER_TYPE is SignerType.REMOTE
    assert s.HTTP_TIMEOUT_SEC == 7


@pytest.mark.parametrize(
    "key,value",
    [
        ("ACTIVE_NETWORK", "polygon"),
        ("DEFAULT_TOKEN_DECIMALS", "300"),
        ("SETTLE_DELAY_MS_ETH", "-1"),
        ("VAULT_CONTRACT_ETH", "0x1234"),
        ("VAULT_LOG_LEVEL", "chatty"),
    ],
)
def test_invalid_values_fail_fast(clean_env, key, value):
    clean_env.setenv(key, value)
    with pytest.raises(SettingsValidationError):
        Settings()


def test_to_dict_redacts_secrets(clean_env):
    clean_env.setenv("PRIVATE_KEY", "0x" + "11" * 32)
    clean_env.setenv("KEYSTORE_PASSWORD", "hunter2")
    clean_env.setenv("VAULT_CONTRACT_BSC", VAULT_BSC)

    d = Settings().to_dict()
    assert d["PRIVATE_KEY"] == "***REDACTED***"
    assert d["KEYSTORE_PASSWORD"] == "***REDACTED***"
    assert d["VAULT_CONTRACTS"] == {"BSC": VAULT_BSC}
    assert d["NETWORK_MODE"] == "testnet"
    assert d["DEFAULT_TOKEN_DECIMALS"] == 18


def test_container_passes_http_timeout_to_web3(clean_env):
    from app.core.container import Container

    clean_env.setenv("HTTP_TIMEOUT_SEC", "7")
    container = Container(Settings())
    assert container.w3_factory.keywords == {"timeout_sec": 7.0}
