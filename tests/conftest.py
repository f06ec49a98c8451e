"""Shared test fixtures for bodhilab tests."""
import shlex
from dataclasses import dataclass
from typing import List, Optional

import pytest
from rich.console import Console

from bodhilab.core.config import BodhiConfig, set_config
from bodhilab.core.prompts import ScriptedPrompter
from bodhilab.core.runner import CommandResult, CommandRunner
from bodhilab.models.system import SystemProfile
from bodhilab.services.zfs.tuning import HostPaths


@dataclass
class Rule:
    fragment: str
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    times: Optional[int] = None  # None: answer forever


class FakeRunner(CommandRunner):
    """CommandRunner that records commands and returns scripted output.

    Rules match when their fragment occurs in the shell-joined command and
    are checked in registration order; unmatched commands succeed silently.
    """

    def __init__(self, hostname: str = "pve1"):
        super().__init__(mock=False, ssh_user="root", hostname=hostname)
        self.rules: List[Rule] = []
        self.calls: List[str] = []
        self.inputs: List[Optional[str]] = []

    def on(self, fragment: str, stdout: str = "", returncode: int = 0, stderr: str = "",
           times: Optional[int] = None) -> "FakeRunner":
        self.rules.append(Rule(fragment, returncode, stdout, stderr, times))
        return self

    def fail(self, fragment: str, stderr: str = "error", times: Optional[int] = None) -> "FakeRunner":
        return self.on(fragment, returncode=1, stderr=stderr, times=times)

    def _execute(self, full_cmd, timeout=None, input=None) -> CommandResult:
        joined = shlex.join(full_cmd)
        self.calls.append(joined)
        self.inputs.append(input)
        for rule in self.rules:
            if rule.fragment in joined and rule.times != 0:
                if rule.times is not None:
                    rule.times -= 1
                return CommandResult(list(full_cmd), rule.returncode, rule.stdout, rule.stderr)
        return CommandResult(list(full_cmd), 0)

    def ran(self, fragment: str) -> bool:
        return any(fragment in call for call in self.calls)

    def matching(self, fragment: str) -> List[str]:
        return [call for call in self.calls if fragment in call]


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Every test starts from default settings and outside mock mode."""
    monkeypatch.delenv("BODHI_MOCK", raising=False)
    monkeypatch.delenv("BODHI_PIHOLE_CONFIG", raising=False)
    set_config(BodhiConfig(stagger_delay=0, container_boot_wait=0))
    yield
    set_config(None)


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def console():
    """Console that records output instead of printing it."""
    return Console(record=True, width=120, force_terminal=False)


@pytest.fixture
def scripted():
    """Factory for ScriptedPrompter instances."""
    return lambda *answers: ScriptedPrompter(answers)


@pytest.fixture
def host_paths(tmp_path):
    """HostPaths pointing every host file into a temporary directory."""
    (tmp_path / "sys" / "block").mkdir(parents=True)
    return HostPaths(
        modprobe=tmp_path / "modprobe.d" / "zfs.conf",
        sysctl=tmp_path / "sysctl.conf",
        udev_rules=tmp_path / "udev" / "60-scheduler.rules",
        arcstats=tmp_path / "arcstats",
        block_dir=tmp_path / "sys" / "block",
        bin_dir=tmp_path / "bin",
        backup_dir=tmp_path / "root",
    )


@pytest.fixture
def n150_profile():
    return SystemProfile(
        cpu_model="Intel(R) N150",
        cpu_cores=4,
        ram_gb=31,
        ram_mb=31800,
        pool="local-nvme",
        pool_size="1.81T",
        pool_health="ONLINE",
    )


@pytest.fixture
def generic_profile():
    return SystemProfile(
        cpu_model="AMD Ryzen 5 5600G",
        cpu_cores=12,
        ram_gb=64,
        ram_mb=64000,
        pool="tank",
        pool_size="928G",
        pool_health="ONLINE",
    )
