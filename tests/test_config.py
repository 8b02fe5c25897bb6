# =============================================================================
# Configuration Tests
# =============================================================================

import pytest

from popkeep.config import Config, ConfigError, SyncConfig, get_xdg_config_home
from popkeep.core import Account, Credentials, SecurityMode
from popkeep.errors import ConfigurationError


CONFIG_TOML = """
[sync]
batch_size = 20
timeout_seconds = 10
reconnect_per_message = true

[accounts.personal]
email = "me@example.com"
pop_host = "pop.example.com"
pop_security = "ssl"

[accounts.old]
email = "old@example.com"
username = "olduser"
pop_host = "pop.old.example"
pop_port = 1110
pop_security = "starttls"
enabled = false
"""


@pytest.fixture
def config_file(temp_dir):
    path = temp_dir / "config.toml"
    path.write_text(CONFIG_TOML)
    return path


def test_load(config_file):
    config = Config.load(config_file)

    assert config.sync.batch_size == 20
    assert config.sync.timeout_seconds == 10.0
    assert config.sync.reconnect_per_message is True
    assert config.sync.verify_certificates is True

    personal = config.accounts["personal"]
    assert personal.username == "me@example.com"
    assert personal.security_mode == SecurityMode.IMPLICIT_TLS
    assert config.accounts["old"].username == "olduser"


def test_missing_file_gives_defaults(temp_dir):
    config = Config.load(temp_dir / "nope.toml")

    assert config.accounts == {}
    assert config.sync.batch_size == 50
    assert config.sync.timeout_seconds == 30.0


def test_invalid_toml(temp_dir):
    path = temp_dir / "config.toml"
    path.write_text("[sync\nbatch_size = ")

    with pytest.raises(ConfigError):
        Config.load(path)


def test_unknown_security_mode(temp_dir):
    path = temp_dir / "config.toml"
    path.write_text('[accounts.x]\nemail = "x@example.com"\npop_host = "h"\npop_security = "ssl3"\n')

    with pytest.raises(ConfigurationError):
        Config.load(path)


def test_bad_batch_size(temp_dir):
    path = temp_dir / "config.toml"
    path.write_text("[sync]\nbatch_size = 0\n")

    with pytest.raises(ConfigError):
        Config.load(path)


def test_save_round_trip(config_file, temp_dir):
    config = Config.load(config_file)
    config.path = temp_dir / "saved.toml"
    config.save()

    reloaded = Config.load(temp_dir / "saved.toml")

    assert reloaded.sync == config.sync
    assert reloaded.accounts["old"].pop_port == 1110
    assert reloaded.accounts["old"].enabled is False


def test_select_accounts(config_file):
    config = Config.load(config_file)

    assert [a.name for a in config.select_accounts()] == ["personal"]
    assert [a.name for a in config.select_accounts(["old"])] == ["old"]
    with pytest.raises(ConfigError):
        config.select_accounts(["ghost"])


def test_xdg_config_home(monkeypatch, temp_dir):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(temp_dir))
    assert get_xdg_config_home() == temp_dir / "popkeep"
    assert Config.config_file_path() == temp_dir / "popkeep" / "config.toml"


class TestConnectionSettings:

    def test_default_ports(self):
        assert Account(name="a", email="a@x", pop_host="h").connection_config().port == 995
        plain = Account(name="a", email="a@x", pop_host="h", pop_security="plain")
        assert plain.connection_config().port == 110

    def test_security_aliases(self):
        assert SecurityMode.parse("none") == SecurityMode.PLAIN
        assert SecurityMode.parse("SSL") == SecurityMode.IMPLICIT_TLS
        assert SecurityMode.parse("tls") == SecurityMode.STARTTLS
        assert SecurityMode.parse("starttls") == SecurityMode.STARTTLS

    def test_missing_host(self):
        with pytest.raises(ConfigurationError):
            Account(name="a", email="a@x").connection_config()

    def test_sync_config_applies_tunables(self):
        account = Account(name="a", email="a@x", pop_host="h", pop_port=2995)
        config = SyncConfig(timeout_seconds=5, max_line_length=1000, ca_file="/tmp/ca.pem")
        connection = config.connection_config(account)

        assert connection.port == 2995
        assert connection.timeout == 5
        assert connection.max_line_length == 1000
        assert connection.ca_file == "/tmp/ca.pem"

    def test_credentials_repr_masks_password(self):
        assert "hunter2" not in repr(Credentials("user", "hunter2"))
