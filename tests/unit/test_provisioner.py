import stat

import pytest

from fixtures.host import failed
from rkhost.exceptions import AccountProvisioningError, FilesystemPermissionError
from rkhost.services.provisioner import ResourceProvisioner, directory_matrix


@pytest.fixture
def provisioner(definition, fake_host):
    return ResourceProvisioner(definition, fake_host)


def _mode(path):
    return stat.S_IMODE(path.stat().st_mode)


def test_creates_group_before_account(provisioner, fake_host):
    provisioner.provision()

    tools = [c[0] for c in fake_host.commands if c[0] in ("groupadd", "useradd")]
    assert tools == ["groupadd", "useradd"]
    useradd = next(c for c in fake_host.commands if c[0] == "useradd")
    assert "--system" in useradd
    assert "--no-create-home" in useradd
    assert useradd[useradd.index("--shell") + 1] == "/usr/sbin/nologin"
    assert fake_host.users["reasonkit"] == "reasonkit"


def test_permission_matrix(provisioner, definition, fake_host):
    provisioner.provision()

    expected = {
        definition.bin_dir: ("root", "root", 0o755),
        definition.config_dir: ("root", "reasonkit", 0o750),
        definition.data_dir: ("reasonkit", "reasonkit", 0o750),
        definition.log_dir: ("reasonkit", "reasonkit", 0o750),
        definition.runtime_dir: ("reasonkit", "reasonkit", 0o755),
    }
    for path, (owner, group, mode) in expected.items():
        assert fake_host.owner(path) == (owner, group), path
        assert _mode(path) == mode, path


def test_second_run_creates_nothing(provisioner, fake_host):
    provisioner.provision()
    fake_host.commands.clear()

    provisioner.provision()

    assert fake_host.commands == []
    assert all(state.conforms for state in provisioner.directory_states())


def test_reasserts_drifted_mode(provisioner, definition):
    provisioner.provision()
    definition.data_dir.chmod(0o777)

    provisioner.provision()

    assert _mode(definition.data_dir) == 0o750


def test_skip_user_requires_existing_account(provisioner, fake_host):
    with pytest.raises(AccountProvisioningError) as exc_info:
        provisioner.provision(skip_user=True)

    assert "user 'reasonkit'" in str(exc_info.value)
    assert not any(c[0] in ("groupadd", "useradd") for c in fake_host.commands)


def test_skip_user_with_existing_account(provisioner, fake_host):
    fake_host.groups.add("reasonkit")
    fake_host.users["reasonkit"] = "reasonkit"

    provisioner.provision(skip_user=True)

    assert fake_host.commands == []


def test_useradd_failure(provisioner, fake_host):
    fake_host.set_response("useradd", failed(1, "useradd: cannot lock /etc/passwd"))

    with pytest.raises(AccountProvisioningError) as exc_info:
        provisioner.provision()

    assert "cannot lock /etc/passwd" in str(exc_info.value)


def test_file_in_place_of_directory(provisioner, definition):
    definition.log_dir.parent.mkdir(parents=True)
    definition.log_dir.write_text("not a dir")

    with pytest.raises(FilesystemPermissionError):
        provisioner.provision()


def test_directory_states_for_missing_tree(provisioner):
    states = provisioner.directory_states()

    assert [s.role for s in states] == ["prefix", "bin", "config", "data", "log", "runtime"]
    assert not any(s.exists for s in states)


def test_matrix_follows_prefix(definition, tmp_path):
    moved = definition.with_prefix(tmp_path / "elsewhere")

    roles = {spec.role: spec.path for spec in directory_matrix(moved)}

    assert roles["bin"] == tmp_path / "elsewhere" / "bin"
