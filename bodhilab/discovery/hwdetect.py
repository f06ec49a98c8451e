import re
import shlex
import subprocess

from bodhilab.core.safety import PrerequisiteError
from bodhilab.models.system import SystemProfile


class SystemDetector:
    """
    Collects the hardware facts the ZFS optimizer bases its recommendations on.
    The resulting SystemProfile is passed explicitly to every menu flow.
    """

    def __init__(self, run_cmd=None):
        self.run_cmd = run_cmd or self._run

    # -----------------------------
    #  Core detection entry point
    # -----------------------------
    def detect(self, pool: str) -> SystemProfile:
        size, health = self._detect_pool(pool)
        ram_gb, ram_mb = self._detect_memory()
        model, cores = self._detect_cpu()
        return SystemProfile(
            cpu_model=model,
            cpu_cores=cores,
            ram_gb=ram_gb,
            ram_mb=ram_mb,
            pool=pool,
            pool_size=size,
            pool_health=health,
        )

    # -----------------------------
    #  Individual detectors
    # -----------------------------
    def _detect_cpu(self):
        try:
            output = self.run_cmd("grep -m1 'model name' /proc/cpuinfo")
            model = output.split(":", 1)[1].strip() if ":" in output else "Unknown CPU"
        except Exception:
            model = "Unknown CPU"
        try:
            cores = int(self.run_cmd("nproc").strip())
        except ValueError:
            cores = 0
        return model, cores

    def _detect_memory(self):
        return self._free_total("-g"), self._free_total("-m")

    def total_ram_mb(self) -> int:
        return self._free_total("-m")

    def _free_total(self, unit_flag: str) -> int:
        try:
            output = self.run_cmd(f"free {unit_flag}")
            match = re.search(r"^Mem:\s+(\d+)", output, re.MULTILINE)
            return int(match.group(1)) if match else 0
        except Exception:
            return 0

    def _detect_pool(self, pool: str):
        output = self.run_cmd(f"zpool list -H -o size,health {shlex.quote(pool)} 2>/dev/null").strip()
        parts = output.split()
        if len(parts) != 2:
            raise PrerequisiteError(f"ZFS pool '{pool}' not found!")
        return parts[0], parts[1]

    # -----------------------------
    #  Utility helpers
    # -----------------------------
    def _run(self, cmd: str) -> str:
        return subprocess.getoutput(cmd)


def detect_profile(pool: str, run_cmd=None) -> SystemProfile:
    """Shortcut used by the CLI."""
    return SystemDetector(run_cmd=run_cmd).detect(pool)
