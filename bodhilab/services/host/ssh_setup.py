"""SSH key and ~/.ssh/config bootstrap for a Proxmox node."""
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Callable, Optional

from bodhilab.core.logger import get_logger
from bodhilab.core.prompts import Prompter
from bodhilab.core.runner import CommandRunner

logger = get_logger(__name__)

DEFAULT_NICK = "vayu"
DEFAULT_HOST = "192.168.1.141"
DEFAULT_USER = "root"


@dataclass
class SSHTarget:
    nick: str
    host: str
    user: str
    keyfile: Path

    @property
    def pubfile(self) -> Path:
        return self.keyfile.with_name(self.keyfile.name + ".pub")


def strip_host_block(text: str, nick: str) -> str:
    """Remove the ``Host <nick>`` block from ssh config text.

    The block runs from its ``Host`` line up to (not including) the next
    non-empty line whose first word is ``Host``. Everything else is kept.
    """
    kept = []
    skipping = False
    for line in text.splitlines():
        words = line.split()
        if words[:2] == ["Host", nick]:
            skipping = True
            continue
        if skipping and words and words[0] == "Host":
            skipping = False
        if not skipping:
            kept.append(line)
    return "\n".join(kept) + ("\n" if kept else "")


def host_block(target: SSHTarget, added: date) -> str:
    return (
        f"\n# Proxmox node - added {added:%Y-%m-%d}\n"
        f"Host {target.nick}\n"
        f"  HostName {target.host}\n"
        f"  User {target.user}\n"
        f"  IdentityFile {target.keyfile}\n"
        f"  IdentitiesOnly yes\n"
    )


class SSHBootstrap:
    """Creates a key, installs it on a node and adds a config alias."""

    def __init__(
        self,
        runner: CommandRunner,
        prompter: Prompter,
        ssh_dir: Optional[Path] = None,
        today: Callable[[], date] = date.today,
    ):
        self.runner = runner
        self.prompter = prompter
        self.ssh_dir = Path(ssh_dir) if ssh_dir else Path.home() / ".ssh"
        self.today = today

    @property
    def config_path(self) -> Path:
        return self.ssh_dir / "config"

    def ask_target(self) -> SSHTarget:
        nick = self.prompter.ask("Short nickname you'll type (Host)", default=DEFAULT_NICK)
        host = self.prompter.ask("IP or FQDN of the node", default=DEFAULT_HOST)
        user = self.prompter.ask("Login user", default=DEFAULT_USER)
        keyfile = self.prompter.ask(
            "Private key file (will be created if missing)",
            default=str(self.ssh_dir / "id_ed25519"),
        )
        return SSHTarget(nick=nick, host=host, user=user, keyfile=Path(keyfile).expanduser())

    def ensure_key(self, target: SSHTarget) -> bool:
        """Generate an ed25519 key when the key file does not exist.

        Returns:
            True when a new key was generated
        """
        if target.keyfile.exists():
            return False
        logger.info(f"Generating new ed25519 key at {target.keyfile}...")
        target.keyfile.parent.mkdir(parents=True, exist_ok=True)
        self.runner.run([
            "ssh-keygen", "-t", "ed25519", "-f", str(target.keyfile),
            "-C", f"{target.user}@{target.nick}", "-N", "",
        ])
        return True

    def install_key(self, target: SSHTarget) -> None:
        if not self.runner.ok(["ssh-add", "-q", str(target.keyfile)]):
            logger.warning("Could not load key into ssh-agent (is an agent running?)")
        logger.info(f"Copying public key to {target.user}@{target.host} (password asked once)...")
        self.runner.run(
            ["ssh-copy-id", "-i", str(target.pubfile), f"{target.user}@{target.host}"],
            check=True,
        )

    def update_config(self, target: SSHTarget) -> Path:
        """Replace the alias block for ``target.nick`` in ~/.ssh/config."""
        self.ssh_dir.mkdir(parents=True, exist_ok=True)
        current = self.config_path.read_text() if self.config_path.exists() else ""
        content = strip_host_block(current, target.nick) + host_block(target, self.today())
        self.config_path.write_text(content)
        self.config_path.chmod(0o600)
        logger.info(f"✓ Updated {self.config_path}")
        return self.config_path

    def run(self) -> Optional[SSHTarget]:
        """Interactive bootstrap; None when the operator aborts."""
        target = self.ask_target()
        logger.info(f"Nickname: {target.nick}  Host: {target.host}  User: {target.user}  Keyfile: {target.keyfile}")
        if not self.prompter.confirm("Proceed?"):
            logger.info("Aborted.")
            return None

        self.ensure_key(target)
        self.install_key(target)
        self.update_config(target)
        logger.info(f"✓ All set. Test with: ssh {target.nick}")
        return target
