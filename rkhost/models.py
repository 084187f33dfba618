from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class CheckStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"


class CheckResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Check name")
    status: CheckStatus = Field(..., description="pass, fail or warn")
    detail: str = Field("", description="Human readable detail")


class ReportSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    passed: int = Field(..., description="Number of passing checks")
    failed: int = Field(..., description="Number of failing checks")
    warnings: int = Field(..., description="Number of checks with warnings")


class VerificationReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: str = Field(..., description="ISO 8601 timestamp of the report")
    hostname: str = Field(..., description="Host the checks ran on")
    summary: ReportSummary
    checks: List[CheckResult] = Field(..., description="Checks in execution order")

    @classmethod
    def build(cls, checks: List[CheckResult], hostname: str, timestamp: Optional[str] = None) -> "VerificationReport":
        summary = ReportSummary(
            passed=sum(1 for c in checks if c.status == CheckStatus.PASS),
            failed=sum(1 for c in checks if c.status == CheckStatus.FAIL),
            warnings=sum(1 for c in checks if c.status == CheckStatus.WARN),
        )
        return cls(
            timestamp=timestamp or datetime.now(timezone.utc).isoformat(),
            hostname=hostname,
            summary=summary,
            checks=list(checks),
        )

    @property
    def ok(self) -> bool:
        return self.summary.failed == 0

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)

    def to_text(self, verbose: bool = False) -> str:
        lines = []
        for check in self.checks:
            lines.append(f"[{check.status.value.upper()}] {check.name}")
            if check.detail and (verbose or check.status != CheckStatus.PASS):
                lines.append(f"       {check.detail}")
        lines.append("")
        lines.append(
            f"Summary: {self.summary.passed} passed, {self.summary.failed} failed, "
            f"{self.summary.warnings} warnings"
        )
        lines.append("All checks passed" if self.ok else "Verification failed")
        return "\n".join(lines)


class ServiceStatus(BaseModel):
    load_state: Optional[str] = Field(None, description="Systemd LoadState")
    active_state: Optional[str] = Field(None, description="Systemd ActiveState")
    sub_state: Optional[str] = Field(None, description="Systemd SubState")
    unit_file_state: Optional[str] = Field(None, description="Systemd UnitFileState")
    main_pid: Optional[int] = Field(None, description="Main process PID")
    active_since: Optional[str] = Field(None, description="Systemd ActiveEnterTimestamp")

    @property
    def active(self) -> bool:
        return self.active_state == "active"

    @property
    def enabled(self) -> bool:
        return self.unit_file_state == "enabled"


class DirectoryState(BaseModel):
    role: str
    path: str
    exists: bool
    owner: Optional[str] = None
    group: Optional[str] = None
    mode: Optional[int] = None
    expected_owner: str
    expected_group: str
    expected_mode: int

    @property
    def conforms(self) -> bool:
        return (
            self.exists
            and self.owner == self.expected_owner
            and self.group == self.expected_group
            and self.mode == self.expected_mode
        )


class InstallationState(BaseModel):
    """Observed state of the host. Recomputed on every invocation."""

    group_exists: bool
    account_exists: bool
    directories: List[DirectoryState]
    binary_present: bool
    binary_executable: bool
    binary_version: Optional[str] = None
    symlink_target: Optional[str] = None
    unit_present: bool
    config_present: bool
    enabled: bool
    active: bool

    @property
    def installed(self) -> bool:
        return self.binary_present and self.unit_present


class InstallSummary(BaseModel):
    binary: str
    version: Optional[str]
    symlink: str
    config: str
    unit: str
    account: str
    status: ServiceStatus
    warnings: List[str] = Field(default_factory=list)


class UninstallResult(BaseModel):
    removed: List[str] = Field(default_factory=list)
    preserved: List[str] = Field(default_factory=list)
    account_preserved: Optional[str] = None


LogLevel = Literal["error", "warn", "info", "debug", "trace"]


class ConfigurationDocument(BaseModel):
    """Typed view of the service environment file.

    Recognised keys map to fields through their aliases; anything else is
    kept in ``passthrough`` in file order and written back verbatim.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    log_level: LogLevel = Field("info", alias="RUST_LOG")
    chrome_path: Optional[str] = Field(None, alias="CHROME_PATH")
    headless: bool = Field(True, alias="REASONKIT_HEADLESS")
    disable_gpu: bool = Field(True, alias="REASONKIT_DISABLE_GPU")
    timeout_secs: int = Field(30, alias="MCP_TIMEOUT_SECS", gt=0)
    worker_threads: int = Field(4, alias="TOKIO_WORKER_THREADS", ge=1, le=1024)
    passthrough: Tuple[Tuple[str, str], ...] = Field(default=(), exclude=True)

    def env_values(self) -> dict:
        """Recognised settings keyed by environment variable, as file strings."""
        values = {}
        for name, field in type(self).model_fields.items():
            if name == "passthrough":
                continue
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, bool):
                value = "true" if value else "false"
            values[field.alias] = str(value)
        return values
