"""Renders and writes the systemd unit plus its tmpfiles.d and logrotate companions."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from loguru import logger

from rkhost.config import ServiceDefinition
from rkhost.exceptions import FilesystemPermissionError, ServiceControlError
from rkhost.host import Host
from rkhost.services.controller import ServiceController
from rkhost.util import atomic_write, ensure_success


def _flag(value: bool) -> str:
    return "yes" if value else "no"


def render_unit(definition: ServiceDefinition) -> str:
    """Render the unit file. Output depends only on ``definition``."""
    limits = definition.limits
    restart = definition.restart
    sandbox = definition.sandbox
    exec_start = " ".join([str(definition.binary_path), *definition.serve_args])
    read_write = " ".join(str(p) for p in definition.read_write_paths)

    lines = [
        "[Unit]",
        f"Description={definition.description}",
        f"Documentation={definition.documentation}",
        "After=network-online.target",
        "Wants=network-online.target",
        f"StartLimitIntervalSec={restart.start_limit_interval_sec}",
        f"StartLimitBurst={restart.start_limit_burst}",
        "",
        "[Service]",
        "Type=simple",
        f"User={definition.account}",
        f"Group={definition.group}",
        f"ExecStart={exec_start}",
        f"EnvironmentFile=-{definition.config_path}",
        f"WorkingDirectory={definition.data_dir}",
        "",
        "# Resource limits",
        f"LimitNOFILE={limits.limit_nofile}",
        f"LimitNPROC={limits.limit_nproc}",
        f"MemoryMax={limits.memory_max}",
        f"CPUQuota={limits.cpu_quota}",
        "",
        "# Sandbox",
        f"NoNewPrivileges={_flag(sandbox.no_new_privileges)}",
        f"ProtectSystem={sandbox.protect_system}",
        f"ProtectHome={_flag(sandbox.protect_home)}",
        f"PrivateTmp={_flag(sandbox.private_tmp)}",
        f"PrivateDevices={_flag(sandbox.private_devices)}",
        f"ProtectKernelTunables={_flag(sandbox.protect_kernel_tunables)}",
        f"ProtectKernelModules={_flag(sandbox.protect_kernel_modules)}",
        f"ProtectControlGroups={_flag(sandbox.protect_control_groups)}",
        f"RestrictAddressFamilies={' '.join(sandbox.address_families)}",
        f"RestrictNamespaces={_flag(sandbox.restrict_namespaces)}",
        f"RestrictRealtime={_flag(sandbox.restrict_realtime)}",
        f"RestrictSUIDSGID={_flag(sandbox.restrict_suid_sgid)}",
        f"LockPersonality={_flag(sandbox.lock_personality)}",
        f"ReadWritePaths={read_write}",
        "",
        "StandardOutput=journal",
        "StandardError=journal",
        f"SyslogIdentifier={definition.service_name}",
        "",
        f"Restart={restart.restart}",
        f"RestartSec={restart.restart_sec}s",
        f"TimeoutStartSec={restart.timeout_start_sec}",
        f"TimeoutStopSec={restart.timeout_stop_sec}",
        "",
        "[Install]",
        "WantedBy=multi-user.target",
    ]
    return "\n".join(lines) + "\n"


def render_tmpfiles(definition: ServiceDefinition) -> str:
    return (
        f"# {definition.service_name} runtime directory\n"
        f"d {definition.runtime_dir} 0755 {definition.account} {definition.group} -\n"
    )


def render_logrotate(definition: ServiceDefinition) -> str:
    return "\n".join(
        [
            f"{definition.log_dir}/*.log {{",
            "    daily",
            "    rotate 14",
            "    compress",
            "    delaycompress",
            "    missingok",
            "    notifempty",
            f"    create 0640 {definition.account} {definition.group}",
            "    sharedscripts",
            "    postrotate",
            f"        systemctl reload {definition.service_name} > /dev/null 2>&1 || true",
            "    endscript",
            "}",
            "",
        ]
    )


@dataclass
class UnitWriteResult:
    changed: List[Path] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class UnitGenerator:
    """Writes the unit files; never starts or stops the service."""

    def __init__(self, definition: ServiceDefinition, host: Host, controller: ServiceController):
        self.definition = definition
        self.host = host
        self.controller = controller

    def install(self) -> UnitWriteResult:
        result = UnitWriteResult()
        d = self.definition
        for path, content in (
            (d.unit_path, render_unit(d)),
            (d.tmpfiles_path, render_tmpfiles(d)),
            (d.logrotate_path, render_logrotate(d)),
        ):
            if self._write_if_changed(path, content):
                result.changed.append(path)

        self.controller.daemon_reload()
        self._apply_tmpfiles(result)
        return result

    def _write_if_changed(self, path: Path, content: str) -> bool:
        data = content.encode("utf-8")
        try:
            if path.is_file() and path.read_bytes() == data:
                logger.info(f"{path} is up to date")
                return False
            path.parent.mkdir(parents=True, exist_ok=True)
            admin, admin_group = self.definition.admin_user, self.definition.admin_group
            atomic_write(path, data, 0o644, chown=lambda p: self.host.chown(p, admin, admin_group))
        except (OSError, LookupError) as e:
            raise FilesystemPermissionError(f"Failed to write {path}: {e}") from e
        logger.info(f"Wrote {path}")
        return True

    def _apply_tmpfiles(self, result: UnitWriteResult) -> None:
        command = ["systemd-tmpfiles", "--create", str(self.definition.tmpfiles_path)]
        try:
            output = self.host.run(command, ServiceControlError)
            ensure_success(output, "systemd-tmpfiles --create", ServiceControlError)
        except ServiceControlError as e:
            message = f"Runtime directory declaration not applied: {e}"
            logger.warning(message)
            result.warnings.append(message)
