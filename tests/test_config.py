import pytest

from moove_money.config import DisbursementSettings, load_settings
from moove_money.errors import ConfigurationError

ACCOUNT = "ab" * 32

PROFILE_YAML = f"""
profiles:
  default:
    network: Custom
    private_key: "ed25519-priv-0x{'11' * 32}"
    account: {ACCOUNT}
    rest_url: "https://testnet.movementnetwork.xyz/v1"
    faucet_url: "https://faucet.testnet.movementnetwork.xyz"
  other:
    account: "0x{'cd' * 32}"
    rest_url: "http://localhost:8080/v1"
"""


@pytest.fixture()
def config_file(tmp_path):
    path = tmp_path / ".movement" / "config.yaml"
    path.parent.mkdir()
    path.write_text(PROFILE_YAML)
    return path


def test_default_profile(config_file):
    settings = load_settings(config_file, env={})

    assert settings.profile.account == "0x" + ACCOUNT
    assert settings.profile.rest_url == "https://testnet.movementnetwork.xyz/v1"
    assert settings.profile.private_key.startswith("ed25519-priv-")
    # the profile account doubles as the module address
    assert settings.disbursement.module_address == "0x" + ACCOUNT
    assert settings.logging.level == "INFO"


def test_named_profile_and_env_overrides(config_file):
    env = {
        "MOOVE_PROFILE": "other",
        "MOOVE_REST_URL": "http://127.0.0.1:9000/v1",
        "MOOVE_MODULE_ADDRESS": "0xBEEF",
        "MOOVE_MAX_WAIT": "30",
        "MOOVE_LOG_LEVEL": "DEBUG",
    }
    settings = load_settings(config_file, env=env)

    assert settings.profile.name == "other"
    assert settings.profile.private_key is None
    assert settings.profile.rest_url == "http://127.0.0.1:9000/v1"
    assert settings.disbursement.module_address == "0xbeef"
    assert settings.disbursement.max_wait == 30.0
    assert settings.logging.level == "DEBUG"


def test_config_path_from_env(config_file):
    settings = load_settings(env={"MOOVE_CONFIG_PATH": str(config_file)})
    assert settings.profile.name == "default"


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_settings(tmp_path / "missing.yaml", env={})


def test_unknown_profile(config_file):
    with pytest.raises(ConfigurationError, match="Profile 'nope'"):
        load_settings(config_file, profile="nope", env={})


def test_invalid_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("profiles: [unclosed")
    with pytest.raises(ConfigurationError, match="Invalid YAML"):
        load_settings(path, env={})


def test_profile_without_rest_url(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(f"profiles:\n  default:\n    account: {ACCOUNT}\n")
    with pytest.raises(ConfigurationError, match="rest_url"):
        load_settings(path, env={})


@pytest.mark.parametrize("field,value", [
    ("poll_interval", 0),
    ("max_wait", -1),
    ("preflight_workers", 0),
])
def test_disbursement_settings_validation(field, value):
    settings = DisbursementSettings(module_address="0x1")
    setattr(settings, field, value)
    with pytest.raises(ConfigurationError):
        settings.validate()


def test_unknown_log_level(config_file):
    with pytest.raises(ConfigurationError, match="logging level"):
        load_settings(config_file, env={"MOOVE_LOG_LEVEL": "chatty"})
