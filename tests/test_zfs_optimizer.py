"""Tests for the interactive ZFS optimizer."""
import pytest

from bodhilab.core.prompts import PromptExhausted, ScriptedPrompter
from bodhilab.core.zfs_manager import SetOutcome, ZFSManager
from bodhilab.services.zfs import menus
from bodhilab.services.zfs.optimizer import ZFSOptimizer

VOLBLOCKSIZE_REJECTED = "cannot set property for 'local-nvme': 'volblocksize' does not apply to datasets of this type"

CORE_MENUS = [
    ("recordsize", menus.RECORDSIZE),
    ("compression", menus.COMPRESSION),
    ("volblocksize", menus.VOLBLOCKSIZE),
    ("atime", menus.ATIME),
]

CORE_CHOICES = [
    (position, prop, key, option.value)
    for position, (prop, menu) in enumerate(CORE_MENUS)
    for key, option in menu.options.items()
]


@pytest.fixture
def make_optimizer(fake_runner, console, host_paths, n150_profile):
    def build(*answers, profile=None):
        zfs = ZFSManager(fake_runner, "local-nvme")
        return ZFSOptimizer(
            zfs,
            ScriptedPrompter(answers),
            profile or n150_profile,
            fake_runner,
            console,
            paths=host_paths,
            sleep=lambda seconds: None,
        )
    return build


class TestCorePerformance:
    """Record size, compression, volblocksize and atime menus."""

    def test_volblocksize_rejected_on_filesystem_is_skipped(self, make_optimizer, fake_runner):
        """Answers 3,4,3,1: 64K, zstd-3, 32K (skipped on the pool root), atime off."""
        fake_runner.fail("zfs set volblocksize=32K", stderr=VOLBLOCKSIZE_REJECTED)
        optimizer = make_optimizer("3", "4", "3", "1")

        results = optimizer.configure_core_performance()

        assert results == {
            "recordsize": SetOutcome.APPLIED,
            "compression": SetOutcome.APPLIED,
            "volblocksize": SetOutcome.SKIPPED,
            "atime": SetOutcome.APPLIED,
        }
        assert fake_runner.ran("zfs set recordsize=64K local-nvme")
        assert fake_runner.ran("zfs set compression=zstd-3 local-nvme")
        assert fake_runner.ran("zfs set atime=off local-nvme")

    def test_volblocksize_keep_current(self, make_optimizer, fake_runner):
        """Answers 3,4,5,1: the volblocksize table maps 5 to keep current."""
        optimizer = make_optimizer("3", "4", "5", "1")

        results = optimizer.configure_core_performance()

        assert "volblocksize" not in results
        assert not fake_runner.ran("volblocksize=")
        assert results["recordsize"] == SetOutcome.APPLIED
        assert results["atime"] == SetOutcome.APPLIED

    @pytest.mark.parametrize("position,prop,key,value", CORE_CHOICES)
    def test_every_option_sets_one_property(self, make_optimizer, fake_runner, position, prop, key, value):
        """Each menu answer issues exactly one matching zfs set; keep-current issues none."""
        answers = ["x"] * len(CORE_MENUS)
        answers[position] = key
        optimizer = make_optimizer(*answers)

        results = optimizer.configure_core_performance()

        issued = fake_runner.matching("zfs set")
        if value is None:
            assert issued == []
            assert results == {}
        else:
            assert issued == [f"zfs set {prop}={value} local-nvme"]
            assert results == {prop: SetOutcome.APPLIED}

    def test_invalid_choice_changes_nothing(self, make_optimizer, fake_runner):
        """Out-of-range answers keep every property as it is."""
        optimizer = make_optimizer("9", "x", "", "7")

        results = optimizer.configure_core_performance()

        assert results == {}
        assert not fake_runner.ran("zfs set")

    def test_failed_set_reported(self, make_optimizer, fake_runner, console):
        """A rejected property change is FAILED and printed as an error."""
        fake_runner.fail("zfs set recordsize=1M", stderr="permission denied")
        optimizer = make_optimizer("5", "8", "5", "3")

        results = optimizer.configure_core_performance()

        assert results == {"recordsize": SetOutcome.FAILED}
        assert "Failed to set record size to 1M" in console.export_text()


class TestMemoryManagement:
    """ARC and sysctl memory menus."""

    def test_conservative_arc_written(self, make_optimizer, host_paths):
        optimizer = make_optimizer("1", "3")

        limits = optimizer.configure_memory_management()

        assert limits.max_bytes == 4294967296
        content = host_paths.modprobe.read_text()
        assert "options zfs zfs_arc_max=4294967296" in content
        assert "options zfs zfs_arc_min=1073741824" in content
        assert not host_paths.sysctl.exists()

    def test_custom_arc_requires_numbers(self, make_optimizer, host_paths):
        optimizer = make_optimizer("4", "big", "2", "3")

        assert optimizer.configure_memory_management() is None
        assert not host_paths.modprobe.exists()

    def test_memory_choice_appends_sysctl(self, make_optimizer, host_paths, fake_runner):
        optimizer = make_optimizer("5", "1")

        optimizer.configure_memory_management()

        content = host_paths.sysctl.read_text()
        assert "# ZFS + VM Memory Optimization" in content
        assert "vm.swappiness=1" in content
        assert fake_runner.ran("sysctl -p")


class TestSpecializedDatasets:
    """Datasets, quotas and Proxmox storage registration."""

    def test_creates_tunes_and_registers(self, make_optimizer, fake_runner):
        fake_runner.fail("zfs list -H -o name")
        fake_runner.on("zpool list -H -o size local-nvme", stdout="1000G\n")
        optimizer = make_optimizer()

        optimizer.create_specialized_datasets()

        for name in ("vms", "templates", "containers", "backups"):
            assert fake_runner.ran(f"zfs create local-nvme/{name}")
        assert fake_runner.ran("zfs set compression=gzip-6 local-nvme/backups")
        assert fake_runner.ran("zfs set quota=650G local-nvme/containers")
        assert fake_runner.ran("zfs set quota=150G local-nvme/vms")
        assert fake_runner.ran(
            "pvesm add zfspool local-nvme-vms --pool local-nvme/vms --content images,rootdir"
        )
        assert not fake_runner.ran("pvesm add zfspool local-nvme-backups")

    def test_existing_storage_not_registered_twice(self, make_optimizer, fake_runner):
        fake_runner.on("pvesm status", stdout=(
            "Name              Type     Status     Total   Used   Available  %\n"
            "local-nvme-vms    zfspool  active     100     10     90         10%\n"
        ))
        optimizer = make_optimizer()

        optimizer.register_proxmox_storage()

        assert not fake_runner.ran("pvesm add zfspool local-nvme-vms")
        assert fake_runner.ran("pvesm add zfspool local-nvme-containers")


class TestCompleteOptimization:
    """Apply-everything flow."""

    def test_cancelled_by_default(self, make_optimizer, fake_runner, host_paths):
        optimizer = make_optimizer("")

        assert optimizer.complete_optimization() is None
        assert not fake_runner.ran("zfs set")
        assert not host_paths.modprobe.exists()

    def test_n150_recommendations(self, make_optimizer, fake_runner, host_paths):
        """Backup first, then N150 core settings, ARC, scheduler and scripts."""
        fake_runner.on("zfs get all", stdout="NAME PROPERTY VALUE SOURCE\n")
        optimizer = make_optimizer("y", "3", "n")

        backup = optimizer.complete_optimization()

        assert backup.parent == host_paths.backup_dir
        assert backup.name.startswith("zfs-settings-backup-")
        assert "Pool: local-nvme" in backup.read_text()
        assert fake_runner.ran("zfs set recordsize=64K local-nvme")
        assert fake_runner.ran("zfs set compression=zstd-3 local-nvme")
        assert fake_runner.ran("zfs set atime=off local-nvme")
        # 31GB is below the dedup threshold
        assert not fake_runner.ran("dedup=on")
        modprobe = host_paths.modprobe.read_text()
        assert "zfs_arc_max=4294967296" in modprobe
        assert "zfs_prefetch_disable=1" in modprobe
        assert 'ATTR{queue/scheduler}="none"' in host_paths.udev_rules.read_text()
        assert (host_paths.bin_dir / "zfs-health-monitor.sh").exists()
        assert not fake_runner.ran("reboot")

    def test_dedup_enabled_with_abundant_ram(self, make_optimizer, fake_runner, generic_profile):
        optimizer = make_optimizer("y", "3", "n", profile=generic_profile)

        optimizer.complete_optimization()

        assert fake_runner.ran("zfs set recordsize=32K local-nvme")
        assert fake_runner.ran("zfs set compression=lz4 local-nvme")
        assert fake_runner.ran("zfs set dedup=on local-nvme")


class TestCustomConfiguration:
    """Free-text property values."""

    def test_restricted_values(self, make_optimizer, fake_runner):
        optimizer = make_optimizer("4", "maybe", "6", "always", "5", "on", "8")

        optimizer.custom_configuration()

        assert not fake_runner.ran("atime=maybe")
        assert fake_runner.ran("zfs set sync=always local-nvme")
        assert fake_runner.ran("zfs set dedup=on local-nvme")

    def test_custom_arc_overwrites_modprobe(self, make_optimizer, host_paths):
        host_paths.modprobe.parent.mkdir(parents=True)
        host_paths.modprobe.write_text("options zfs zfs_txg_timeout=5\n")
        optimizer = make_optimizer("7", "6", "2", "8")

        optimizer.custom_configuration()

        content = host_paths.modprobe.read_text()
        assert "zfs_txg_timeout" not in content
        assert f"zfs_arc_max={6 * 1024 ** 3}" in content


class TestMainMenu:
    """Main loop dispatch."""

    def test_exit(self, make_optimizer, console):
        optimizer = make_optimizer("9")

        optimizer.run()

        assert "Exiting ZFS optimizer" in console.export_text()

    def test_invalid_then_exit(self, make_optimizer, console):
        optimizer = make_optimizer("0", "9")

        optimizer.run()

        assert "Invalid choice, please try again" in console.export_text()

    def test_runs_out_of_answers(self, make_optimizer):
        optimizer = make_optimizer("1")

        with pytest.raises(PromptExhausted):
            optimizer.run()
