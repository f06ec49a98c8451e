"""Tests for runtime settings and pihole.yml loading."""
import pytest
from pydantic import ValidationError

from bodhilab.cli_support import find_pihole_config
from bodhilab.config import is_valid_cidr, is_valid_ipv4
from bodhilab.config.loader import PiholeConfigLoader, load_pihole_config
from bodhilab.core.config import BodhiConfig
from bodhilab.models.config import ConfigValidationError
from bodhilab.models.pihole import PiholeDefaults, PiholeSettings

PIHOLE_YML = """
install:
  base_vmid: 300
  base_ip: 10.0.0.50/24
  gateway: 10.0.0.1
  storage: nvme-data
settings:
  blocklists:
    - https://example.org/hosts.txt
  whitelist:
    - example.com
  custom_dns:
    - nas.lan,10.0.0.10
"""


class TestValidators:
    """Format-only address checks."""

    @pytest.mark.parametrize("value,valid", [
        ("192.168.1.100/24", True),
        ("10.0.0.1/8", True),
        ("192.168.1.100", False),
        ("192.168.1/24", False),
        ("a.b.c.d/24", False),
        ("", False),
    ])
    def test_cidr(self, value, valid):
        assert is_valid_cidr(value) is valid

    def test_octet_range_not_enforced(self):
        assert is_valid_cidr("999.1.1.1/24")
        assert is_valid_ipv4("300.0.0.1")

    def test_ipv4(self):
        assert is_valid_ipv4("192.168.1.1")
        assert not is_valid_ipv4("192.168.1.1/24")


class TestPiholeModels:
    """pydantic models behind pihole.yml."""

    def test_defaults(self):
        defaults = PiholeDefaults()

        assert defaults.base_vmid == 200
        assert defaults.base_ip == "192.168.1.100/24"
        assert defaults.gateway == "192.168.1.1"
        assert defaults.memory == 1024
        assert defaults.disk == 8
        assert defaults.cores == 2

    def test_rejects_low_vmid(self):
        with pytest.raises(ValidationError):
            PiholeDefaults(base_vmid=99)

    def test_rejects_base_ip_without_prefix(self):
        with pytest.raises(ValidationError, match="CIDR notation"):
            PiholeDefaults(base_ip="192.168.1.100")

    def test_settings_unset_by_default(self):
        settings = PiholeSettings()

        assert settings.is_empty()
        assert settings.whitelist is None
        assert settings.dnssec is None

    def test_empty_list_is_not_unset(self):
        settings = PiholeSettings(whitelist=[])

        assert settings.whitelist == []
        assert not settings.is_empty()

    def test_custom_dns_needs_comma(self):
        with pytest.raises(ValidationError, match="domain,ip"):
            PiholeSettings(custom_dns=["nas.lan 10.0.0.10"])

    def test_custom_dns_comments_allowed(self):
        assert PiholeSettings(custom_dns=["# nas.lan"]).custom_dns == ["# nas.lan"]


class TestPiholeConfigLoader:
    """Loading pihole.yml from disk."""

    def test_no_file_gives_defaults(self):
        config = load_pihole_config(None)

        assert config.install.base_vmid == 200
        assert config.settings.is_empty()

    def test_load(self, tmp_path):
        path = tmp_path / "pihole.yml"
        path.write_text(PIHOLE_YML)

        config = load_pihole_config(str(path))

        assert config.install.base_vmid == 300
        assert config.install.storage == "nvme-data"
        assert config.install.hostname == "pihole-unbound"
        assert config.settings.custom_dns == ["nas.lan,10.0.0.10"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_pihole_config(str(tmp_path / "absent.yml"))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "pihole.yml"
        path.write_text("")

        assert load_pihole_config(str(path)).install.base_vmid == 200

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "pihole.yml"
        path.write_text("install: [unclosed\n")

        with pytest.raises(ConfigValidationError, match="Invalid YAML"):
            load_pihole_config(str(path))

    def test_unknown_keys_rejected(self, tmp_path):
        path = tmp_path / "pihole.yml"
        path.write_text("install:\n  base_vmdi: 300\n")

        with pytest.raises(ConfigValidationError) as exc:
            PiholeConfigLoader(str(path)).load()
        assert exc.value.path == path
        assert "base_vmdi" in str(exc.value)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "pihole.yml"
        path.write_text("- install\n")

        with pytest.raises(ConfigValidationError, match="mapping"):
            load_pihole_config(str(path))


class TestConfigDiscovery:
    """Where pihole.yml is looked up."""

    def test_explicit_path_wins(self, monkeypatch):
        monkeypatch.setenv("BODHI_PIHOLE_CONFIG", "/from/env.yml")

        assert find_pihole_config("/explicit.yml") == "/explicit.yml"
        assert find_pihole_config() == "/from/env.yml"

    def test_working_directory(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "pihole.yml").write_text("")

        assert find_pihole_config() == "./pihole.yml"


class TestBodhiConfig:
    """Runtime settings from the environment."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("BODHI_POOL", "tank")
        monkeypatch.setenv("BODHI_STAGGER_DELAY", "0.5")
        monkeypatch.setenv("BODHI_MAX_WORKERS", "2")

        config = BodhiConfig.from_env()

        assert config.pool == "tank"
        assert config.stagger_delay == 0.5
        assert config.max_workers == 2
        assert config.container_boot_wait == 10
