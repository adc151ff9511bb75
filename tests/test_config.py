"""Tests for pvenix.config module."""

from __future__ import annotations

import bcrypt
import pytest
import yaml

from pvenix.config import load_config, parse_positive_int, parse_privileged, read_config_file
from pvenix.exceptions import ValidationError
from pvenix.models import DeployerConfig
from pvenix.nixos import render_guest_config


@pytest.fixture
def config_file(tmp_path):
    """Write a config.yaml and return its path."""

    def _write(data):
        path = tmp_path / "config.yaml"
        path.write_text(data if isinstance(data, str) else yaml.dump(data))
        return path

    return _write


class TestDefaults:
    def test_no_file_no_env(self, clean_env):
        assert load_config() == DeployerConfig()


class TestReadConfigFile:
    def test_missing_file(self, tmp_path):
        with pytest.raises(ValidationError, match="Configuration file missing"):
            read_config_file(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, config_file):
        with pytest.raises(ValidationError, match="invalid YAML"):
            read_config_file(config_file("storage: [unclosed\n"))

    def test_non_mapping(self, config_file):
        with pytest.raises(ValidationError, match="mapping"):
            read_config_file(config_file("- a\n- b\n"))

    def test_empty_file(self, config_file):
        assert read_config_file(config_file("")) == {}

    def test_unknown_keys_dropped_with_warning(self, config_file, capsys):
        data = read_config_file(config_file({"storage": "tank", "colour": "blue"}))
        assert data == {"storage": "tank"}
        assert "colour" in capsys.readouterr().out


class TestLoadConfig:
    def test_file_values(self, clean_env, config_file):
        path = config_file(
            {
                "storage": "local-zfs",
                "bridge": "vmbr1",
                "gateway": "10.0.0.1",
                "cores": 4,
                "memory": 4096,
                "privileged": False,
                "packages": ["git", "vim"],
                "ready_interval": 0.5,
            }
        )
        config = load_config(path)
        assert config.storage == "local-zfs"
        assert config.bridge == "vmbr1"
        assert config.gateway == "10.0.0.1"
        assert config.resources.cores == 4
        assert config.resources.memory_mb == 4096
        assert config.privileged is False
        assert config.packages == ("git", "vim")
        assert config.ready_interval == 0.5

    def test_env_overrides_file(self, clean_env, config_file, monkeypatch):
        path = config_file({"storage": "local-zfs", "cores": 4})
        monkeypatch.setenv("PVE_STORAGE", "ceph")
        monkeypatch.setenv("NODE_CORES", "8")
        config = load_config(path)
        assert config.storage == "ceph"
        assert config.resources.cores == 8

    def test_config_path_from_env(self, clean_env, config_file, monkeypatch):
        monkeypatch.setenv("PVENIX_CONFIG", str(config_file({"dns": "9.9.9.9"})))
        assert load_config().dns == "9.9.9.9"

    def test_packages_from_comma_separated_env(self, clean_env, monkeypatch):
        monkeypatch.setenv("NODE_PACKAGES", "git, curl ,jq")
        assert load_config().packages == ("git", "curl", "jq")

    @pytest.mark.parametrize(
        "env,value,match",
        [
            ("NODE_CORES", "0", "cores"),
            ("NODE_MEMORY", "8", "memory"),
            ("NODE_GATEWAY", "192.168.0.1/24", "gateway"),
            ("NODE_DNS", "dns.example", "Invalid IPv4"),
            ("NODE_PRIVILEGED", "sometimes", "privileged"),
            ("NIXOS_STATE_VERSION", "unstable", "YY.MM"),
            ("NODE_PACKAGES", "git;rm -rf", "package"),
            ("READY_INTERVAL", "-1", "ready_interval"),
            ("PVE_STORAGE", "  ", "storage"),
        ],
    )
    def test_invalid_values(self, clean_env, monkeypatch, env, value, match):
        monkeypatch.setenv(env, value)
        with pytest.raises(ValidationError, match=match):
            load_config()

    def test_guest_password_is_hashed(self, clean_env, monkeypatch):
        monkeypatch.setenv("GUEST_PASSWORD", "s3cret")
        config = load_config()
        assert config.guest.password_hash != "s3cret"
        assert bcrypt.checkpw(b"s3cret", config.guest.password_hash.encode("utf-8"))

    def test_plaintext_password_warns(self, clean_env, monkeypatch, capsys):
        monkeypatch.setenv("GUEST_PASSWORD", "s3cret")
        load_config()
        assert "GUEST_PASSWORD_HASH" in capsys.readouterr().out

    def test_prehashed_password_renders_identically_across_loads(self, clean_env, monkeypatch, node_spec):
        hashed = bcrypt.hashpw(b"s3cret", bcrypt.gensalt()).decode("utf-8")
        monkeypatch.setenv("GUEST_PASSWORD_HASH", hashed)
        first = render_guest_config(node_spec, load_config().guest)
        second = render_guest_config(node_spec, load_config().guest)
        assert first == second
        assert f'hashedPassword = "{hashed}";' in first

    def test_prehashed_password_wins_over_plaintext(self, clean_env, monkeypatch):
        monkeypatch.setenv("GUEST_PASSWORD_HASH", "$6$salt$digest")
        monkeypatch.setenv("GUEST_PASSWORD", "ignored")
        assert load_config().guest.password_hash == "$6$salt$digest"

    def test_password_hash_from_file(self, clean_env, config_file):
        path = config_file({"password_hash": "$y$j9T$abc$def"})
        assert load_config(path).guest.password_hash == "$y$j9T$abc$def"

    @pytest.mark.parametrize("value", ["s3cret", "$2b$", "2b$12$abc"])
    def test_malformed_password_hash_rejected(self, clean_env, monkeypatch, value):
        monkeypatch.setenv("GUEST_PASSWORD_HASH", value)
        with pytest.raises(ValidationError, match="crypt"):
            load_config()

    def test_guest_options(self, clean_env, monkeypatch):
        monkeypatch.setenv("SSH_PUBKEY", "ssh-ed25519 AAAA me@host ")
        monkeypatch.setenv("PERMIT_ROOT_LOGIN", "no")
        monkeypatch.setenv("NIXOS_STATE_VERSION", "24.11")
        guest = load_config().guest
        assert guest.ssh_pubkey == "ssh-ed25519 AAAA me@host"
        assert guest.permit_root_login is False
        assert guest.state_version == "24.11"
        assert guest.password_hash is None

    def test_explicit_missing_path(self, clean_env, tmp_path):
        with pytest.raises(ValidationError, match="missing"):
            load_config(tmp_path / "nope.yaml")


class TestArgumentParsers:
    def test_positive_int(self):
        assert parse_positive_int("count", "3") == 3
        with pytest.raises(ValidationError):
            parse_positive_int("count", "0")

    def test_privileged(self):
        assert parse_privileged("false") is False
        with pytest.raises(ValidationError):
            parse_privileged("2")
