"""Reconciles the service environment file with operator edits.

The live document is only ever rewritten by ``configure``; ``install`` writes
defaults when it is missing and otherwise leaves it alone. Keys the manager
does not recognise are carried through every rewrite untouched.
"""

from __future__ import annotations

import shutil
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from loguru import logger
from pydantic import ValidationError

from rkhost.config import EngineEnvironment, ServiceDefinition
from rkhost.exceptions import ConfigWriteError
from rkhost.host import Host
from rkhost.models import ConfigurationDocument
from rkhost.services.preflight import detect_engine
from rkhost.util import atomic_write

Prompt = Callable[[str, str], str]
Confirm = Callable[[str], bool]

PROMPTS = [
    ("RUST_LOG", "Log level (error, warn, info, debug, trace)"),
    ("CHROME_PATH", "Chrome/Chromium path (leave empty for auto-detect)"),
    ("REASONKIT_HEADLESS", "Run in headless mode? (true/false)"),
    ("REASONKIT_DISABLE_GPU", "Disable GPU acceleration? (true/false)"),
    ("MCP_TIMEOUT_SECS", "MCP request timeout (seconds)"),
    ("TOKIO_WORKER_THREADS", "Tokio worker threads"),
]


def known_keys() -> List[str]:
    return [f.alias for name, f in ConfigurationDocument.model_fields.items() if f.alias]


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def parse_env(text: str) -> Tuple[Dict[str, str], List[Tuple[str, str]]]:
    """Split an environment file into recognised values and passthrough pairs.

    Comments and blank lines are dropped. Recognised values are unquoted for
    validation; passthrough values keep their quoting as written. Passthrough
    pairs keep file order and a later assignment of the same key wins, as it
    does for systemd.
    """
    recognised = set(known_keys())
    values: Dict[str, str] = {}
    passthrough: Dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key, value = key.strip(), value.strip()
        if key in recognised:
            values[key] = _unquote(value)
        else:
            passthrough[key] = value
    return values, list(passthrough.items())


def render_env(document: ConfigurationDocument, service_name: str, generated: Optional[str] = None) -> str:
    values = document.env_values()
    lines = ["# ReasonKit Web Configuration"]
    if generated:
        lines.append(f"# Generated: {generated}")
    lines += [
        "# ==========================",
        "#",
        "# This file is sourced by the systemd service.",
        f"# After changes, run: systemctl restart {service_name}",
        "",
        "# Logging level: error, warn, info, debug, trace",
        f"RUST_LOG={values['RUST_LOG']}",
        "",
    ]
    if "CHROME_PATH" in values:
        lines += ["# Chrome/Chromium path", f"CHROME_PATH={values['CHROME_PATH']}", ""]
    lines += [
        "# Browser options",
        f"REASONKIT_HEADLESS={values['REASONKIT_HEADLESS']}",
        f"REASONKIT_DISABLE_GPU={values['REASONKIT_DISABLE_GPU']}",
        "",
        "# MCP server settings",
        f"MCP_TIMEOUT_SECS={values['MCP_TIMEOUT_SECS']}",
        "",
        "# Performance tuning",
        f"TOKIO_WORKER_THREADS={values['TOKIO_WORKER_THREADS']}",
    ]
    if document.passthrough:
        lines += ["", "# Additional settings (preserved)"]
        lines += [f"{key}={value}" for key, value in document.passthrough]
    return "\n".join(lines) + "\n"


def build_document(values: Dict[str, str], passthrough=()) -> ConfigurationDocument:
    data = {key: value for key, value in values.items() if value not in ("", None)}
    try:
        return ConfigurationDocument.model_validate({**data, "passthrough": tuple(passthrough)})
    except ValidationError as e:
        problems = []
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"]) or "document"
            problems.append(f"{location}: {error['msg']}")
        raise ConfigWriteError(f"Invalid configuration: {'; '.join(problems)}") from e


class ConfigurationReconciler:
    def __init__(self, definition: ServiceDefinition, host: Host):
        self.definition = definition
        self.host = host

    @property
    def path(self) -> Path:
        return self.definition.config_path

    def require_installation(self) -> None:
        if not self.definition.config_dir.is_dir():
            raise ConfigWriteError(
                f"{self.definition.service_name} is not installed ({self.definition.config_dir} is missing)",
                hint="Run 'rkhost install' first.",
            )

    def read(self) -> Tuple[Dict[str, str], List[Tuple[str, str]]]:
        if not self.path.is_file():
            return {}, []
        try:
            return parse_env(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigWriteError(f"Failed to read {self.path}: {e}") from e

    def load(self) -> ConfigurationDocument:
        values, passthrough = self.read()
        return build_document(values, passthrough)

    def install_defaults(self) -> bool:
        """Write the default document unless one exists. Returns True when written."""
        self.install_reference()
        if self.path.exists():
            logger.info("Configuration file already exists, preserving")
            return False
        generated = datetime.now().astimezone().isoformat(timespec="seconds")
        self._write(self.path, render_env(ConfigurationDocument(), self.definition.service_name, generated))
        logger.info("Default configuration created")
        return True

    def install_reference(self) -> None:
        """Refresh the reference copy next to the live document."""
        target = self.definition.example_config_path
        content = render_env(ConfigurationDocument(), self.definition.service_name)
        if target.is_file() and target.read_text(encoding="utf-8") == content:
            return
        admin, admin_group = self.definition.admin_user, self.definition.admin_group
        try:
            atomic_write(
                target,
                content.encode("utf-8"),
                0o644,
                chown=lambda p: self.host.chown(p, admin, admin_group),
            )
        except (OSError, LookupError) as e:
            raise ConfigWriteError(f"Failed to write {target}: {e}") from e
        logger.info(f"Reference configuration written to {target}")

    def configure(
        self,
        non_interactive: bool = False,
        prompt: Optional[Prompt] = None,
        confirm: Optional[Confirm] = None,
    ) -> Optional[ConfigurationDocument]:
        """Rewrite the live document. Returns None when the operator declines."""
        self.require_installation()
        current, passthrough = self.read()
        values = {**ConfigurationDocument().env_values(), **current}

        if not values.get("CHROME_PATH"):
            detected = detect_engine(self.host.settings.engine_search_paths)
            if detected:
                logger.info(f"Detected Chrome: {detected}")
                values["CHROME_PATH"] = detected
            else:
                logger.warning("Chrome/Chromium not found. You may need to specify the path.")

        if non_interactive:
            logger.info("Using non-interactive configuration")
            values.update(EngineEnvironment().overrides())
        elif prompt is not None:
            for key, label in PROMPTS:
                values[key] = prompt(label, values.get(key, "")).strip()

        document = build_document(values, passthrough)

        if not non_interactive and confirm is not None:
            summary = "\n".join(f"  {k}={v}" for k, v in document.env_values().items())
            if not confirm(f"{summary}\nSave this configuration?"):
                logger.info("Configuration cancelled")
                return None

        self.write(document)
        return document

    def write(self, document: ConfigurationDocument) -> None:
        if self.path.exists():
            backup = self.backup()
            logger.info(f"Backup created: {backup}")
        generated = datetime.now().astimezone().isoformat(timespec="seconds")
        self._write(self.path, render_env(document, self.definition.service_name, generated))
        logger.info(f"Configuration saved to {self.path}")

    def backup(self) -> Path:
        stamp = datetime.now().strftime("%Y%m%dT%H%M%S")
        target = self.path.with_name(f"{self.path.name}.bak.{stamp}")
        suffix = 1
        while target.exists():
            target = self.path.with_name(f"{self.path.name}.bak.{stamp}-{suffix}")
            suffix += 1
        try:
            shutil.copy2(self.path, target)
            target.chmod(0o640)
            self.host.chown(target, self.definition.admin_user, self.definition.group)
        except (OSError, LookupError) as e:
            raise ConfigWriteError(f"Failed to back up {self.path}: {e}") from e
        return target

    def _write(self, path: Path, content: str) -> None:
        admin, group = self.definition.admin_user, self.definition.group
        try:
            atomic_write(path, content.encode("utf-8"), 0o640, chown=lambda p: self.host.chown(p, admin, group))
        except (OSError, LookupError) as e:
            raise ConfigWriteError(f"Failed to write {path}: {e}") from e
