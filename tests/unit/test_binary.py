import os

import pytest

from fixtures.host import write_binary
from rkhost.exceptions import BinaryInvalid
from rkhost.services.binary import BinaryInstaller, installed_prefix
from rkhost.services.controller import ServiceController
from rkhost.services.provisioner import ResourceProvisioner


@pytest.fixture
def installer(definition, fake_host):
    ResourceProvisioner(definition, fake_host).provision()
    fake_host.commands.clear()
    return BinaryInstaller(definition, fake_host, ServiceController(definition, fake_host))


def test_install_copies_and_links(installer, definition, fake_host, candidate_binary):
    result = installer.install(candidate_binary)

    assert result.version == "reasonkit-web 1.0.0"
    assert definition.binary_path.read_text() == candidate_binary.read_text()
    assert os.stat(definition.binary_path).st_mode & 0o777 == 0o755
    assert fake_host.owner(definition.binary_path) == ("root", "root")
    assert os.readlink(definition.symlink_path) == str(definition.binary_path)
    assert result.warnings == []


def test_leaves_no_temp_files(installer, definition, candidate_binary):
    installer.install(candidate_binary)

    assert sorted(p.name for p in definition.bin_dir.iterdir()) == ["reasonkit-web"]


def test_missing_candidate(installer, tmp_path):
    with pytest.raises(BinaryInvalid):
        installer.install(tmp_path / "nope")


def test_non_executable_candidate_is_fixed(installer, tmp_path):
    candidate = write_binary(tmp_path / "build" / "reasonkit-web", "reasonkit-web 1.0.0", mode=0o644)

    installer.install(candidate)

    assert os.access(candidate, os.X_OK)


def test_version_failure_is_warning(installer, definition, tmp_path):
    candidate = write_binary(tmp_path / "build" / "reasonkit-web", "")

    result = installer.install(candidate)

    assert result.version is None
    assert any("Version check failed" in w for w in result.warnings)
    assert definition.binary_path.exists()


def test_repoints_foreign_symlink_with_warning(installer, definition, tmp_path, candidate_binary):
    definition.symlink_path.parent.mkdir(parents=True)
    definition.symlink_path.symlink_to(tmp_path / "old-build")

    result = installer.install(candidate_binary)

    assert os.readlink(definition.symlink_path) == str(definition.binary_path)
    assert any("pointed to" in w for w in result.warnings)


def test_refuses_regular_file_at_symlink_path(installer, definition, candidate_binary):
    definition.symlink_path.parent.mkdir(parents=True)
    definition.symlink_path.write_text("someone else's script")

    with pytest.raises(BinaryInvalid):
        installer.install(candidate_binary)

    assert definition.symlink_path.read_text() == "someone else's script"


def test_prefix_at_invocation_directory_skips_symlink(definition, fake_host, candidate_binary):
    moved = definition.with_prefix(definition.symlink_path.parent.parent)
    assert moved.binary_path == moved.symlink_path
    ResourceProvisioner(moved, fake_host).provision()
    installer = BinaryInstaller(moved, fake_host, ServiceController(moved, fake_host))

    installer.install(candidate_binary)
    result = installer.install(candidate_binary)

    assert not moved.symlink_path.is_symlink()
    assert moved.binary_path.read_text() == candidate_binary.read_text()
    assert result.warnings == []


def test_resolve_candidate_search_order(installer, tmp_path):
    write_binary(tmp_path / "src" / "target" / "debug" / "reasonkit-web", "debug")
    release = write_binary(tmp_path / "src" / "target" / "release" / "reasonkit-web", "release")

    assert installer.resolve_candidate(None, search_root=tmp_path / "src") == release


def test_resolve_candidate_nothing_built(installer, tmp_path):
    with pytest.raises(BinaryInvalid) as exc_info:
        installer.resolve_candidate(None, search_root=tmp_path)

    assert "--binary" in exc_info.value.hint


def test_upgrade_stops_and_starts_active_service(installer, definition, fake_host, candidate_binary, tmp_path):
    installer.install(candidate_binary)
    definition.unit_path.parent.mkdir(parents=True)
    definition.unit_path.write_text("[Unit]\n")
    fake_host.active = True
    fake_host.commands.clear()
    new_build = write_binary(tmp_path / "new" / "reasonkit-web", "reasonkit-web 2.0.0")

    result = installer.upgrade(new_build)

    verbs = [c[1] for c in fake_host.commands if c[0] == "systemctl" and c[1] in ("stop", "start")]
    assert verbs == ["stop", "start"]
    assert fake_host.active is True
    assert result.version == "reasonkit-web 2.0.0"
    assert definition.binary_path.read_text().strip() == "reasonkit-web 2.0.0"


def test_upgrade_leaves_inactive_service_stopped(installer, fake_host, candidate_binary):
    installer.upgrade(candidate_binary)

    assert fake_host.systemctl_calls("start") == []
    assert fake_host.active is False


def test_upgrade_rejects_before_stopping(installer, fake_host, tmp_path):
    fake_host.active = True

    with pytest.raises(BinaryInvalid):
        installer.upgrade(tmp_path / "missing")

    assert fake_host.systemctl_calls("stop") == []
    assert fake_host.active is True


def test_installed_prefix_reads_unit_exec_start(definition, tmp_path):
    definition.unit_path.parent.mkdir(parents=True)
    definition.unit_path.write_text(f"[Service]\nExecStart={tmp_path}/srv/rk/bin/reasonkit-web serve\n")

    assert installed_prefix(definition) == tmp_path / "srv" / "rk"


def test_installed_prefix_falls_back_to_symlink(installer, definition, candidate_binary, tmp_path):
    moved = definition.with_prefix(tmp_path / "srv" / "rk")
    ResourceProvisioner(moved, installer.host).provision()
    BinaryInstaller(moved, installer.host, installer.controller).install(candidate_binary)

    assert installed_prefix(definition) == tmp_path / "srv" / "rk"


def test_installed_prefix_nothing_installed(definition):
    assert installed_prefix(definition) is None
