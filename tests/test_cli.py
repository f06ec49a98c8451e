"""Tests for the bodhi command line."""
import signal

import pytest
from typer.testing import CliRunner

from bodhilab import cli_pihole_commands, cli_zfs_commands
from bodhilab.cli import app
from bodhilab.core import safety
from bodhilab.models.pihole import PiholeDefaults
from bodhilab.services.proxmox.containers.templates import TemplateEntry
from bodhilab.services.proxmox.storage import StorageEntry

runner = CliRunner()


@pytest.fixture
def log_file(tmp_path, monkeypatch):
    """Run from an empty directory and log into it."""
    monkeypatch.chdir(tmp_path)
    return str(tmp_path / "bodhi.log")


class TestHelp:
    """Command groups and their help text."""

    def test_root_help(self):
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        for group in ("zfs", "pihole", "host", "ssh"):
            assert group in result.output

    @pytest.mark.parametrize("group,command", [
        ("zfs", "optimize"),
        ("zfs", "dashboard"),
        ("zfs", "maintain"),
        ("pihole", "install"),
        ("pihole", "update"),
        ("host", "post-install"),
        ("host", "advanced"),
        ("ssh", "setup"),
    ])
    def test_group_help(self, group, command):
        result = runner.invoke(app, [group, "--help"])

        assert result.exit_code == 0
        assert command in result.output


class TestPiholeInstallCommand:
    """`bodhi pihole install` validation and mock runs."""

    def test_bad_node_selection(self, log_file):
        result = runner.invoke(app, ["pihole", "install", "--nodes", "1,x", "--yes", "--log-file", log_file])

        assert result.exit_code == 2
        assert "Error:" in result.output

    def test_bad_base_ip(self, log_file):
        result = runner.invoke(app, ["pihole", "install", "--base-ip", "10.0.0.5", "--yes", "--log-file", log_file])

        assert result.exit_code == 2
        assert "Invalid CIDR address" in result.output

    def test_low_vmid(self, log_file):
        result = runner.invoke(app, ["pihole", "install", "--base-vmid", "42", "--yes", "--log-file", log_file])

        assert result.exit_code == 2

    def test_invalid_config_file(self, log_file, tmp_path):
        config = tmp_path / "broken.yml"
        config.write_text("install:\n  colour: blue\n")

        result = runner.invoke(app, ["pihole", "install", "--config", str(config), "--yes", "--log-file", log_file])

        assert result.exit_code == 2

    def test_requires_root(self, log_file, monkeypatch):
        monkeypatch.setattr(safety.os, "geteuid", lambda: 1000)

        result = runner.invoke(app, ["pihole", "install", "--yes", "--log-file", log_file])

        assert result.exit_code == 1
        assert "must be run as root" in result.output

    def test_mock_install(self, log_file, monkeypatch):
        monkeypatch.setenv("BODHI_MOCK", "1")

        result = runner.invoke(app, ["pihole", "install", "--yes", "--log-file", log_file])

        assert result.exit_code == 0, result.output
        assert "1 succeeded, 0 partial, 0 failed" in result.output
        assert "http://192.168.1.100/admin" in result.output

    def test_mock_custom_setup(self, log_file, monkeypatch):
        monkeypatch.setenv("BODHI_MOCK", "1")

        result = runner.invoke(
            app, ["pihole", "install", "--base-vmid", "250", "--log-file", log_file],
            input="n\ncurrent\n\n\n\n2\n\n\n512\n\n",
        )

        assert result.exit_code == 0, result.output
        assert "250" in result.output


class TestOtherCommands:
    """Prerequisite handling of the remaining command groups."""

    def test_update_rejects_low_container_id(self, log_file):
        result = runner.invoke(app, ["pihole", "update", "--container", "50", "--log-file", log_file])

        assert result.exit_code == 2

    def test_optimize_requires_root(self, log_file, monkeypatch):
        monkeypatch.setattr(safety.os, "geteuid", lambda: 1000)

        result = runner.invoke(app, ["zfs", "optimize", "--log-file", log_file])

        assert result.exit_code == 1
        assert "must be run as root" in result.output

    def test_post_install_requires_root(self, log_file, monkeypatch):
        monkeypatch.setattr(safety.os, "geteuid", lambda: 1000)

        result = runner.invoke(app, ["host", "post-install", "--answers", "n", "--log-file", log_file])

        assert result.exit_code == 1

    def test_ssh_setup_aborted(self, log_file, monkeypatch, tmp_path):
        monkeypatch.setattr(safety, "missing_commands", lambda names: [])

        result = runner.invoke(
            app, ["ssh", "setup", "--ssh-dir", str(tmp_path / ".ssh"), "--answers", ",,,,n", "--log-file", log_file],
        )

        assert result.exit_code == 0
        assert "Aborted" in result.output

    def test_update_requires_config_file(self, log_file):
        result = runner.invoke(app, ["pihole", "update", "--container", "300", "--log-file", log_file])

        assert result.exit_code == 2
        assert "Config file not found" in result.output

    def test_update_requires_settings_section(self, log_file, tmp_path):
        config = tmp_path / "pihole.yml"
        config.write_text("install:\n  base_vmid: 300\n")

        result = runner.invoke(app, ["pihole", "update", "--container", "300", "--log-file", log_file])

        assert result.exit_code == 2
        assert "nothing to update" in result.output


class TestZfsInterrupts:
    """Ctrl-C and SIGTERM during the optimizer menu."""

    def test_terminate_handler_unwinds_like_ctrl_c(self):
        with pytest.raises(KeyboardInterrupt):
            cli_zfs_commands._terminate(signal.SIGTERM, None)

    def test_sigterm_prints_interrupted(self, log_file, monkeypatch):
        class TerminatedOptimizer:
            def report_profile(self):
                pass

            def run(self):
                signal.getsignal(signal.SIGTERM)(signal.SIGTERM, None)

        monkeypatch.setattr(safety.os, "geteuid", lambda: 0)
        monkeypatch.setattr(cli_zfs_commands, "_build_optimizer", lambda pool, prompter, console: TerminatedOptimizer())
        before = signal.getsignal(signal.SIGTERM)

        result = runner.invoke(app, ["zfs", "optimize", "--log-file", log_file])

        assert result.exit_code == 1
        assert "Interrupted" in result.output
        assert signal.getsignal(signal.SIGTERM) is before


class TestContainerOptions:
    """Storage, template, key and size questions of the custom setup."""

    STORAGES = [
        StorageEntry("local", "dir", "active"),
        StorageEntry("local-lvm", "lvmthin", "active"),
    ]
    TEMPLATES = [
        TemplateEntry("local:vztmpl/alpine-3.19-default_20240207_amd64.tar.xz", "3.20MB"),
        TemplateEntry("local:vztmpl/debian-12-standard_12.7-1_amd64.tar.zst", "120.29MB"),
    ]

    def test_defaults_pick_first_storage_and_debian(self, scripted, console):
        prompter = scripted("", "", "", "", "")

        chosen = cli_pihole_commands._ask_container_options(
            prompter, console, PiholeDefaults(), self.STORAGES, self.TEMPLATES,
        )

        assert chosen.storage == "local"
        assert chosen.template == "debian-12-standard_12.7-1_amd64.tar.zst"
        assert chosen.ssh_key is None
        assert (chosen.memory, chosen.disk) == (1024, 8)

    def test_custom_answers(self, scripted, console, tmp_path):
        key = tmp_path / "id_ed25519.pub"
        key.write_text("ssh-ed25519 AAAA test\n")
        prompter = scripted("2", "2", str(key), "2048", "16")

        chosen = cli_pihole_commands._ask_container_options(
            prompter, console, PiholeDefaults(), self.STORAGES, self.TEMPLATES,
        )

        assert chosen.storage == "local-lvm"
        assert chosen.ssh_key == str(key)
        assert (chosen.memory, chosen.disk) == (2048, 16)

    def test_invalid_storage_asked_again(self, scripted, console):
        prompter = scripted("9", "x", "2", "", "", "", "")

        chosen = cli_pihole_commands._ask_container_options(
            prompter, console, PiholeDefaults(), self.STORAGES, self.TEMPLATES,
        )

        assert chosen.storage == "local-lvm"
        assert prompter.asked.count("Select storage number") == 3
        assert "Invalid selection" in console.export_text()

    def test_alpine_needs_confirmation(self, scripted, console):
        prompter = scripted("", "1", "n", "1", "y", "", "", "")

        chosen = cli_pihole_commands._ask_container_options(
            prompter, console, PiholeDefaults(), self.STORAGES, self.TEMPLATES,
        )

        assert chosen.template == "alpine-3.19-default_20240207_amd64.tar.xz"
        assert prompter.asked.count("Continue with this template?") == 2

    def test_missing_key_file_skipped(self, scripted, console, tmp_path):
        prompter = scripted("", "", str(tmp_path / "absent.pub"), "0", "512", "")

        chosen = cli_pihole_commands._ask_container_options(
            prompter, console, PiholeDefaults(), self.STORAGES, self.TEMPLATES,
        )

        assert chosen.ssh_key is None
        assert chosen.memory == 512
        assert "SSH key not found" in console.export_text()

    def test_configured_storage_and_template_not_asked(self, scripted, console):
        defaults = PiholeDefaults(storage="nvme-data", template="debian-12.tar.zst")
        prompter = scripted("", "", "")

        chosen = cli_pihole_commands._ask_container_options(
            prompter, console, defaults, self.STORAGES, self.TEMPLATES,
        )

        assert chosen.storage == "nvme-data"
        assert chosen.template == "debian-12.tar.zst"
        assert len(prompter.asked) == 3
