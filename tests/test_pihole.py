"""Tests for the Pi-hole + Unbound installer, orchestrator and updater."""
from datetime import datetime

import pytest
from rich.console import Console

from bodhilab.core.config import BodhiConfig
from bodhilab.core.safety import PrerequisiteError
from bodhilab.models.container import ContainerDescriptor
from bodhilab.models.node import NodeDescriptor
from bodhilab.models.pihole import PiholeDefaults, PiholeSettings
from bodhilab.models.result import InstallResult, InstallStatus, InstallStep
from bodhilab.services.pihole.addressing import derive_ip, derive_vmid
from bodhilab.services.pihole.installer import PiholeNodeInstaller, outcome_for
from bodhilab.services.pihole.orchestrator import PiholeOrchestrator
from bodhilab.services.pihole.summary import render_summary, summarize
from bodhilab.services.pihole.updater import PiholeUpdater, parse_custom_record

LOCAL = NodeDescriptor(name="pve1", node_id=1, is_local=True)

PCT_LIST_WITH_200 = """VMID       Status     Lock         Name
200        running                 pihole-unbound
"""


def descriptor(**overrides):
    values = dict(vmid=200, ip="192.168.1.100/24", storage="local-lvm",
                  template="debian-12-standard_12.7-1_amd64.tar.zst")
    values.update(overrides)
    return ContainerDescriptor(**values)


class TestAddressing:
    """Container ID and IP derivation per node index."""

    def test_derive_vmid(self):
        assert [derive_vmid(200, i) for i in range(3)] == [200, 201, 202]

    @pytest.mark.parametrize("base,index,expected", [
        ("192.168.1.100/24", 0, "192.168.1.100/24"),
        ("192.168.1.100/24", 2, "192.168.1.102/24"),
        ("192.168.1.250/24", 4, "192.168.1.254/24"),
        ("192.168.1.250/24", 5, "192.168.2.1/24"),
        ("10.0.0.5/16", 1, "10.0.0.6/16"),
    ])
    def test_derive_ip(self, base, index, expected):
        assert derive_ip(base, index) == expected

    def test_derive_ip_requires_cidr(self):
        with pytest.raises(ValueError, match="CIDR"):
            derive_ip("192.168.1.100", 0)


class TestOutcome:
    """Mapping of the last completed step to a node status."""

    @pytest.mark.parametrize("step,status", [
        (None, InstallStatus.FAILED),
        (InstallStep.CREATED, InstallStatus.FAILED),
        (InstallStep.PACKAGES_INSTALLED, InstallStatus.PARTIAL),
        (InstallStep.RESOLVER_INSTALLED, InstallStatus.PARTIAL),
        (InstallStep.FIREWALL_CONFIGURED, InstallStatus.PARTIAL),
        (InstallStep.DONE, InstallStatus.SUCCESS),
    ])
    def test_outcome_for(self, step, status):
        assert outcome_for(step) == status


class TestNodeInstaller:
    """Per-node step sequence against a scripted runner."""

    def test_full_install(self, fake_runner):
        desc = descriptor()

        result = PiholeNodeInstaller(fake_runner).install(LOCAL, desc)

        assert result.status == InstallStatus.SUCCESS
        assert result.last_step == InstallStep.DONE
        assert result.reason is None
        assert result.web_password == desc.web_password
        assert fake_runner.ran("pct create 200 local:vztmpl/debian-12-standard_12.7-1_amd64.tar.zst")
        assert fake_runner.ran("pct start 200")
        assert fake_runner.ran("/etc/unbound/unbound.conf.d/pi-hole.conf")
        assert fake_runner.ran("/etc/pihole/setupVars.conf")
        assert fake_runner.ran("install.pi-hole.net")
        assert fake_runner.ran("ufw allow 53/udp")
        assert not fake_runner.ran("pct set 200 --net0")

    def test_unreachable_node(self, fake_runner):
        node = NodeDescriptor(name="pve3", reachable=False)

        result = PiholeNodeInstaller(fake_runner).install(node, descriptor())

        assert result.status == InstallStatus.FAILED
        assert "pve3" in result.reason
        assert fake_runner.calls == []

    def test_vmid_collision(self, fake_runner):
        fake_runner.on("pct list", stdout=PCT_LIST_WITH_200)

        result = PiholeNodeInstaller(fake_runner).install(LOCAL, descriptor())

        assert result.status == InstallStatus.FAILED
        assert result.reason == "Container ID 200 already exists on pve1"
        assert not fake_runner.ran("pct create")

    def test_collision_checked_on_every_cluster_node(self, fake_runner):
        fake_runner.on("root@pve2 'pct list'", stdout=PCT_LIST_WITH_200)

        installer = PiholeNodeInstaller(fake_runner, cluster_nodes=["pve1", "pve2"])
        result = installer.install(LOCAL, descriptor())

        assert result.reason == "Container ID 200 already exists on pve2"

    def test_no_storage(self, fake_runner):
        fake_runner.on("pvesm status", stdout="Name Type Status Total Used Available %\n")

        result = PiholeNodeInstaller(fake_runner).install(LOCAL, descriptor(storage=None))

        assert result.status == InstallStatus.FAILED
        assert result.reason == "No local/nvme/lvm storage available"

    def test_storage_auto_selected(self, fake_runner):
        fake_runner.on("pvesm status", stdout=(
            "Name       Type     Status  Total  Used  Available  %\n"
            "local-lvm  lvmthin  active  100    10    90         10%\n"
        ))
        desc = descriptor(storage=None)

        PiholeNodeInstaller(fake_runner).install(LOCAL, desc)

        assert desc.storage == "local-lvm"
        assert fake_runner.ran("--rootfs local-lvm:8")

    def test_create_failure(self, fake_runner):
        fake_runner.fail("pct create", stderr="unable to create CT 200")

        result = PiholeNodeInstaller(fake_runner).install(LOCAL, descriptor())

        assert result.status == InstallStatus.FAILED
        assert result.last_step is None
        assert "unable to create CT 200" in result.reason

    def test_package_failure_after_create(self, fake_runner):
        fake_runner.fail("apt update")

        result = PiholeNodeInstaller(fake_runner).install(LOCAL, descriptor())

        assert result.status == InstallStatus.FAILED
        assert result.last_step == InstallStep.CREATED

    def test_network_failure_is_partial(self, fake_runner):
        """No connectivity even after the interface was recreated."""
        fake_runner.fail("ping -c 1")

        result = PiholeNodeInstaller(fake_runner).install(LOCAL, descriptor())

        assert result.status == InstallStatus.PARTIAL
        assert result.last_step == InstallStep.PACKAGES_INSTALLED
        assert fake_runner.ran("pct set 200 --net0 name=eth0,bridge=vmbr0,ip=192.168.1.100/24,gw=192.168.1.1")
        assert len(fake_runner.matching("ping -c 1")) == 2
        assert not fake_runner.ran("unbound")

    def test_network_recovers_after_recreate(self, fake_runner):
        fake_runner.fail("ping -c 1", times=1)

        result = PiholeNodeInstaller(fake_runner).install(LOCAL, descriptor())

        assert result.status == InstallStatus.SUCCESS
        assert fake_runner.ran("pct set 200 --net0")

    def test_unbound_failure_is_partial(self, fake_runner):
        fake_runner.fail("apt install -y unbound")

        result = PiholeNodeInstaller(fake_runner).install(LOCAL, descriptor())

        assert result.status == InstallStatus.PARTIAL
        assert result.last_step == InstallStep.NETWORK_VERIFIED
        assert not fake_runner.ran("install.pi-hole.net")

    def test_dns_self_test_failure_only_warns(self, fake_runner):
        fake_runner.fail("dig @127.0.0.1")

        result = PiholeNodeInstaller(fake_runner).install(LOCAL, descriptor())

        assert result.status == InstallStatus.SUCCESS

    def test_alpine_uses_apk(self, fake_runner):
        desc = descriptor(template="alpine-3.19-default_20240207_amd64.tar.xz")

        PiholeNodeInstaller(fake_runner).install(LOCAL, desc)

        assert fake_runner.ran("apk add")
        assert not fake_runner.ran("apt upgrade")

    def test_remote_node_commands_go_over_ssh(self, fake_runner):
        node = NodeDescriptor(name="pve2", node_id=2)

        result = PiholeNodeInstaller(fake_runner).install(node, descriptor())

        assert result.status == InstallStatus.SUCCESS
        create = fake_runner.matching("pct create 200")
        assert create and create[0].startswith("ssh root@pve2 ")
        staged = [call for call in fake_runner.matching("scp -q") if "bodhi-200-pi-hole.conf-" in call]
        assert staged and "root@pve2:/tmp/bodhi-200-pi-hole.conf-" in staged[0]


class StubInstaller:
    """Installer double: succeeds unless the node name is listed in ``crash``."""

    def __init__(self, seen, crash=()):
        self.seen = seen
        self.crash = crash

    def install(self, node, desc):
        self.seen.append(node.name)
        if node.name in self.crash:
            raise RuntimeError("ssh connection reset")
        return InstallResult(node=node.name, vmid=desc.vmid, ip=desc.ip, status=InstallStatus.SUCCESS)


class TestOrchestrator:
    """Planning and fan-out across nodes."""

    NODES = [NodeDescriptor(name=f"pve{i}", node_id=i) for i in (1, 2, 3)]

    def test_plan_single_node(self):
        planned = PiholeOrchestrator(lambda: None).plan(self.NODES[:1])

        assert planned[0].container.hostname == "pihole-unbound"
        assert planned[0].container.vmid == 200
        assert planned[0].container.ip == "192.168.1.100/24"

    def test_plan_multiple_nodes(self):
        orchestrator = PiholeOrchestrator(lambda: None, defaults=PiholeDefaults(storage="nvme-data"))

        planned = orchestrator.plan(self.NODES, base_vmid=300, base_ip="10.0.0.253/24", gateway="10.0.0.1")

        assert [p.container.vmid for p in planned] == [300, 301, 302]
        assert [p.container.ip for p in planned] == ["10.0.0.253/24", "10.0.0.254/24", "10.0.1.1/24"]
        assert [p.container.hostname for p in planned] == [
            "pihole-unbound-pve1", "pihole-unbound-pve2", "pihole-unbound-pve3",
        ]
        assert all(p.container.gateway == "10.0.0.1" for p in planned)
        assert planned[2].container.storage == "nvme-data"
        assert len({p.container.root_password for p in planned}) == 3

    def test_sequential(self):
        seen = []
        orchestrator = PiholeOrchestrator(lambda: StubInstaller(seen))

        results = orchestrator.run(orchestrator.plan(self.NODES), parallel=False)

        assert seen == ["pve1", "pve2", "pve3"]
        assert [r.node for r in results] == ["pve1", "pve2", "pve3"]

    def test_parallel_results_in_plan_order(self):
        seen = []
        delays = []
        orchestrator = PiholeOrchestrator(
            lambda: StubInstaller(seen),
            config=BodhiConfig(stagger_delay=3, max_workers=2),
            sleep=delays.append,
        )

        results = orchestrator.run(orchestrator.plan(self.NODES))

        assert sorted(seen) == ["pve1", "pve2", "pve3"]
        assert [r.node for r in results] == ["pve1", "pve2", "pve3"]
        assert [r.vmid for r in results] == [200, 201, 202]
        assert delays == [3, 3]

    def test_crash_fails_only_that_node(self):
        seen = []
        orchestrator = PiholeOrchestrator(lambda: StubInstaller(seen, crash=("pve2",)))

        results = orchestrator.run(orchestrator.plan(self.NODES), parallel=True)

        assert [r.status for r in results] == [
            InstallStatus.SUCCESS, InstallStatus.FAILED, InstallStatus.SUCCESS,
        ]
        assert results[1].reason == "ssh connection reset"
        assert results[1].ip == "192.168.1.101/24"


class TestSummary:
    """Result counting and the final report."""

    RESULTS = [
        InstallResult("pve1", 200, "192.168.1.100/24", InstallStatus.SUCCESS,
                      root_password="rootpw", web_password="webpw"),
        InstallResult("pve2", 201, "192.168.1.101/24", InstallStatus.PARTIAL, reason="unbound failed"),
        InstallResult("pve3", 202, "192.168.1.102/24", InstallStatus.FAILED, reason="Cannot reach pve3 over SSH"),
    ]

    def test_counts_add_up(self):
        summary = summarize(self.RESULTS)

        assert (summary.success, summary.partial, summary.failed, summary.total) == (1, 1, 1, 3)
        assert summary.success + summary.partial + summary.failed == summary.total
        assert not summary.all_succeeded

    def test_empty(self):
        summary = summarize([])

        assert summary.total == 0
        assert not summary.all_succeeded

    def test_render_summary(self):
        console = Console(record=True, width=140, force_terminal=False)

        render_summary(self.RESULTS, console)

        text = console.export_text()
        assert "1 succeeded, 1 partial, 1 failed (of 3 nodes)" in text
        assert "http://192.168.1.100/admin" in text
        assert "webpw" in text
        assert "pct exec 200 -- pihole-status.sh" in text
        assert "http://192.168.1.101/admin" not in text
        assert "Cannot reach pve3 over SSH" in text


class TestUpdater:
    """Re-applying settings to a running container."""

    @pytest.fixture
    def make_updater(self, fake_runner, tmp_path):
        def build(node=None, **settings):
            return PiholeUpdater(
                fake_runner, 300, PiholeSettings(**settings),
                node=node,
                backup_root=tmp_path,
                clock=lambda: datetime(2024, 1, 2, 3, 4, 5),
                sleep=lambda seconds: None,
            )
        return build

    def test_missing_container(self, make_updater, fake_runner):
        fake_runner.fail("pct status 300", stderr="Configuration file does not exist")

        with pytest.raises(PrerequisiteError, match="does not exist"):
            make_updater().check_container()

    def test_stopped_container(self, make_updater, fake_runner):
        fake_runner.on("pct status 300", stdout="status: stopped\n")

        with pytest.raises(PrerequisiteError, match="pct start 300"):
            make_updater().check_container()

    def test_backup(self, make_updater, fake_runner, tmp_path):
        target = make_updater().backup()

        assert target == tmp_path / "pihole-backup-20240102-030405" / "pihole-backup.tar.gz"
        assert target.parent.is_dir()
        assert fake_runner.ran("tar -czf /tmp/pihole-backup.tar.gz /etc/pihole/ /etc/dnsmasq.d/ /opt/pihole/")
        assert fake_runner.ran(f"pct pull 300 /tmp/pihole-backup.tar.gz {target}")
        assert not fake_runner.ran("scp")

    def test_backup_from_remote_node(self, make_updater, fake_runner, tmp_path):
        target = make_updater(node="pve2").backup()

        staged = "/tmp/bodhi-pihole-backup-300.tar.gz"
        assert target == tmp_path / "pihole-backup-20240102-030405" / "pihole-backup.tar.gz"
        assert fake_runner.ran(f"ssh root@pve2 'pct pull 300 /tmp/pihole-backup.tar.gz {staged}'")
        assert fake_runner.ran(f"scp -q root@pve2:{staged} {target}")
        assert fake_runner.ran(f"ssh root@pve2 'rm -f {staged}'")
        pull = fake_runner.calls.index(next(c for c in fake_runner.calls if "pct pull" in c))
        copy = fake_runner.calls.index(next(c for c in fake_runner.calls if c.startswith("scp")))
        assert pull < copy

    def test_blocklists_skip_blank(self, make_updater, fake_runner):
        added = make_updater(blocklists=["https://example.org/list.txt", "  "]).update_blocklists()

        assert added == ["https://example.org/list.txt"]
        assert fake_runner.ran("pihole -b https://example.org/list.txt")
        assert fake_runner.calls[-1] == "pct exec 300 -- pihole -g"

    def test_whitelist_skips_comments(self, make_updater, fake_runner):
        updater = make_updater(
            whitelist=["example.com", "# disabled.com", "", "half#comment.com"],
            regex_whitelist=[r"(\.|^)apple\.com$"],
        )

        applied = updater.update_whitelist()

        assert applied == {"exact": ["example.com"], "regex": [r"(\.|^)apple\.com$"]}
        assert fake_runner.ran("DELETE FROM domainlist WHERE type = 0;")
        assert not fake_runner.ran("disabled.com")

    def test_dns_settings(self, make_updater, fake_runner):
        make_updater(dns_1="127.0.0.1#5335", dns_2="1.1.1.1", dnssec=True).update_dns_settings()

        assert fake_runner.ran("pihole -a -d '127.0.0.1#5335' 1.1.1.1")
        assert fake_runner.ran("pihole -a --dnssec enable")

    def test_dnssec_left_alone_when_unset(self, make_updater, fake_runner):
        make_updater(dns_1="127.0.0.1#5335").update_dns_settings()

        assert fake_runner.ran("pihole -a -d")
        assert not fake_runner.ran("--dnssec")

    def test_unset_sections_leave_pihole_untouched(self, make_updater, fake_runner):
        updater = make_updater()

        assert updater.update_blocklists() is None
        assert updater.update_whitelist() is None
        assert updater.update_dns_settings() is False
        assert updater.update_custom_dns() is None
        assert fake_runner.calls == []

    def test_empty_whitelist_clears_exact_entries(self, make_updater, fake_runner):
        applied = make_updater(whitelist=[]).update_whitelist()

        assert applied == {"exact": [], "regex": []}
        assert fake_runner.ran("DELETE FROM domainlist WHERE type = 0;")

    def test_regex_only_keeps_exact_entries(self, make_updater, fake_runner):
        make_updater(regex_whitelist=[r"(\.|^)apple\.com$"]).update_whitelist()

        assert not fake_runner.ran("DELETE FROM domainlist")
        assert fake_runner.ran("--regex-whitelist")

    def test_run_without_settings_changes_nothing(self, make_updater, fake_runner):
        fake_runner.on("pct status 300", stdout="status: running\n")

        with pytest.raises(PrerequisiteError, match="No Pi-hole settings"):
            make_updater().run()
        assert fake_runner.calls == []

    def test_run_with_partial_settings(self, make_updater, fake_runner):
        fake_runner.on("pct status 300", stdout="status: running\n")

        make_updater(blocklists=["https://example.org/list.txt"]).run()

        assert fake_runner.ran("pihole -b https://example.org/list.txt")
        for untouched in ("DELETE FROM domainlist", "pihole -a -d", "--dnssec", "truncate"):
            assert not fake_runner.ran(untouched)

    def test_custom_dns(self, make_updater, fake_runner):
        updater = make_updater(custom_dns=["nas.lan,192.168.1.10", "#old.lan,192.168.1.9", "broken,"])

        records = updater.update_custom_dns()

        assert records == [("nas.lan", "192.168.1.10")]
        assert fake_runner.ran("truncate -s 0 /etc/pihole/custom.list")
        assert fake_runner.ran("192.168.1.10 nas.lan")
        assert not fake_runner.ran("old.lan")

    def test_parse_custom_record(self):
        assert parse_custom_record(" nas.lan , 10.0.0.2 ") == ("nas.lan", "10.0.0.2")
        assert parse_custom_record("nas.lan") is None

    def test_verify_never_raises(self, make_updater, fake_runner):
        fake_runner.fail("is-active --quiet lighttpd")

        checks = make_updater().verify()

        assert checks == {"pihole-FTL": True, "lighttpd": False, "dns": True}

    def test_web_url(self, make_updater, fake_runner):
        fake_runner.on("hostname -I", stdout="192.168.1.100 fd00::5\n")

        assert make_updater().web_url() == "http://192.168.1.100/admin"

    def test_run_order(self, make_updater, fake_runner):
        fake_runner.on("pct status 300", stdout="status: running\n")

        make_updater(
            blocklists=["https://example.org/list.txt"],
            whitelist=["example.com"],
            dns_1="127.0.0.1#5335",
            dnssec=False,
            custom_dns=["nas.lan,192.168.1.10"],
        ).run()

        order = [
            "pct status 300",
            "tar -czf",
            "pihole -g",
            "DELETE FROM domainlist",
            "pihole -a --dnssec",
            "truncate -s 0",
            "systemctl restart pihole-FTL",
            "systemctl restart lighttpd",
            "is-active --quiet pihole-FTL",
        ]
        positions = [
            next(i for i, call in enumerate(fake_runner.calls) if fragment in call)
            for fragment in order
        ]
        assert positions == sorted(positions)
