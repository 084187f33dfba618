# tests/fixtures/host.py
"""
Fake host shared by the lifecycle tests.

Commands are recorded like the runner fakes elsewhere in the suite; systemctl,
the account tools and ``<binary> --version`` are simulated. Ownership is kept
in a ledger keyed by inode so it follows files across atomic renames.
"""

import os
from pathlib import Path

import pytest

from rkhost.config import ManagerSettings, ServiceDefinition
from rkhost.exceptions import RkHostError
from rkhost.host import Host
from rkhost.services.orchestrator import Orchestrator
from rkhost.util import CommandResult


def ok(stdout: str = "") -> CommandResult:
    return CommandResult(exit_code=0, stdout=stdout, stderr="")


def failed(exit_code: int = 1, stderr: str = "") -> CommandResult:
    return CommandResult(exit_code=exit_code, stdout="", stderr=stderr)


def make_definition(root: Path) -> ServiceDefinition:
    return ServiceDefinition(
        prefix=root / "opt/reasonkit",
        symlink_path=root / "usr/local/bin/reasonkit-web",
        config_dir=root / "etc/reasonkit",
        data_dir=root / "var/lib/reasonkit",
        log_dir=root / "var/log/reasonkit",
        runtime_dir=root / "run/reasonkit",
        unit_dir=root / "etc/systemd/system",
        tmpfiles_dir=root / "etc/tmpfiles.d",
        logrotate_dir=root / "etc/logrotate.d",
    )


def write_binary(path: Path, version: str, mode: int = 0o755) -> Path:
    """Create a fake build whose ``--version`` output is its content."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"{version}\n")
    path.chmod(mode)
    return path


class FakeHost(Host):
    def __init__(self, definition: ServiceDefinition, settings: ManagerSettings):
        super().__init__(settings=settings)
        self.definition = definition
        self.commands = []
        self.responses = {}

        self.effective_uid = 0
        self.release = {"ID": "debian", "VERSION_ID": "13", "PRETTY_NAME": "Debian GNU/Linux 13 (trixie)"}
        self.available = {"systemctl", "curl", "journalctl", "apt-get"}

        self.users = {"root": "root"}
        self.groups = {"root"}
        self.ownership = {}

        self.active = False
        self.enabled = False
        self.main_pid = 4242
        self.daemon_reloads = 0
        self.journal = []
        self.rss_mb = 120
        self.sockets = []

    def set_response(self, binary: str, result: CommandResult) -> None:
        self.responses[binary] = result

    def systemctl_calls(self, verb: str):
        return [c for c in self.commands if c[0] == "systemctl" and c[1] == verb]

    # Host interface ----------------------------------------------------

    def run(self, command, error_cls=RkHostError):
        self.commands.append(list(command))
        binary = command[0]
        if binary in self.responses:
            return self.responses[binary]
        if len(command) == 2 and command[1] == "--version":
            return self._version(Path(binary), error_cls)
        handler = getattr(self, f"_cmd_{binary.replace('-', '_')}", None)
        if handler is None:
            raise AssertionError(f"No response registered for {binary}")
        return handler(command[1:])

    def which(self, name):
        return f"/usr/bin/{name}" if name in self.available else None

    def euid(self):
        return self.effective_uid

    def os_release(self):
        return dict(self.release)

    def hostname(self):
        return "test-host"

    def user_exists(self, name):
        return name in self.users

    def group_exists(self, name):
        return name in self.groups

    def user_info(self, name):
        if name not in self.users:
            return None
        return {"uid": "999", "gid": "999", "shell": "/usr/sbin/nologin"}

    def owner(self, path):
        return self.ownership.get(os.lstat(path).st_ino, ("root", "root"))

    def chown(self, path, user, group):
        if user not in self.users:
            raise LookupError(f"no such user: {user!r}")
        if group not in self.groups:
            raise LookupError(f"no such group: {group!r}")
        self.ownership[os.lstat(path).st_ino] = (user, group)

    def process_rss_mb(self, pid):
        return self.rss_mb

    def listening_sockets(self, pid):
        return list(self.sockets)

    # Simulated commands ------------------------------------------------

    def _version(self, path: Path, error_cls):
        if not path.exists():
            raise error_cls(f"Binary not found: {path}")
        content = path.read_text().strip()
        if not content:
            return failed(1, "no version")
        return ok(content + "\n")

    def _cmd_systemctl(self, args):
        verb = args[0]
        unit_present = self.definition.unit_path.exists()
        if verb == "is-system-running":
            return ok("running\n")
        if verb == "daemon-reload":
            self.daemon_reloads += 1
            return ok()
        if verb == "is-active":
            return ok() if self.active else failed(3)
        if verb == "is-enabled":
            return ok() if self.enabled else failed(1)
        if verb == "show":
            return ok(self._show(unit_present))
        if verb in ("start", "restart"):
            if not unit_present:
                return failed(5, f"Unit {self.definition.unit_name} not found.")
            self.active = True
            return ok()
        if verb == "stop":
            self.active = False
            return ok()
        if verb == "enable":
            if not unit_present:
                return failed(1, f"Unit file {self.definition.unit_name} does not exist.")
            self.enabled = True
            return ok()
        if verb == "disable":
            self.enabled = False
            return ok()
        raise AssertionError(f"Unexpected systemctl call: {args}")

    def _show(self, unit_present: bool) -> str:
        lines = [
            f"Id={self.definition.unit_name}",
            f"LoadState={'loaded' if unit_present else 'not-found'}",
            f"ActiveState={'active' if self.active else 'inactive'}",
            f"SubState={'running' if self.active else 'dead'}",
            f"MainPID={self.main_pid if self.active else 0}",
            f"UnitFileState={'enabled' if self.enabled else 'disabled'}",
            f"ActiveEnterTimestamp={'Sat 2026-10-17 12:00:00 UTC' if self.active else ''}",
        ]
        return "\n".join(lines) + "\n"

    def _cmd_journalctl(self, args):
        return ok("".join(f"{line}\n" for line in self.journal))

    def _cmd_groupadd(self, args):
        name = args[-1]
        if name in self.groups:
            return failed(9, f"groupadd: group '{name}' already exists")
        self.groups.add(name)
        return ok()

    def _cmd_useradd(self, args):
        name = args[-1]
        if name in self.users:
            return failed(9, f"useradd: user '{name}' already exists")
        group = args[args.index("--gid") + 1]
        if group not in self.groups:
            return failed(6, f"useradd: group '{group}' does not exist")
        self.users[name] = group
        return ok()

    def _cmd_userdel(self, args):
        if self.users.pop(args[-1], None) is None:
            return failed(6, f"userdel: user '{args[-1]}' does not exist")
        return ok()

    def _cmd_groupdel(self, args):
        if args[-1] not in self.groups:
            return failed(6, f"groupdel: group '{args[-1]}' does not exist")
        self.groups.discard(args[-1])
        return ok()

    def _cmd_pkill(self, args):
        return failed(1)

    def _cmd_apt_get(self, args):
        return ok()

    def _cmd_systemd_tmpfiles(self, args):
        return ok()


@pytest.fixture
def definition(tmp_path):
    return make_definition(tmp_path / "root")


@pytest.fixture
def settings(tmp_path):
    return ManagerSettings(
        lock_dir=tmp_path / "lock",
        engine_search_paths=[str(tmp_path / "engine" / "chromium")],
    )


@pytest.fixture
def fake_host(definition, settings):
    return FakeHost(definition, settings)


@pytest.fixture
def orchestrator(definition, fake_host):
    return Orchestrator(definition, fake_host)


@pytest.fixture
def candidate_binary(tmp_path):
    return write_binary(tmp_path / "build" / "reasonkit-web", "reasonkit-web 1.0.0")


@pytest.fixture
def engine_binary(tmp_path):
    return write_binary(tmp_path / "engine" / "chromium", "Chromium 130.0.6723.91")
