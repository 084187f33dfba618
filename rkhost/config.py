"""
Deployment description and manager settings using Pydantic v2.
"""

from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ResourceLimits(BaseModel):
    """Resource ceilings enforced by systemd."""

    model_config = ConfigDict(frozen=True)

    memory_max: str = "2G"
    cpu_quota: str = "200%"
    limit_nofile: int = Field(default=65536, ge=1)
    limit_nproc: int = Field(default=4096, ge=1)


class RestartPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    restart: Literal["on-failure", "always", "on-abnormal"] = "on-failure"
    restart_sec: int = Field(default=5, ge=0)
    start_limit_interval_sec: int = Field(default=60, ge=0)
    start_limit_burst: int = Field(default=3, ge=1)
    timeout_start_sec: int = Field(default=30, ge=1)
    timeout_stop_sec: int = Field(default=30, ge=1)


class SandboxPolicy(BaseModel):
    """Sandbox directives; read-write paths are derived from the definition."""

    model_config = ConfigDict(frozen=True)

    protect_system: Literal["strict", "full", "true"] = "strict"
    protect_home: bool = True
    private_tmp: bool = True
    private_devices: bool = True
    no_new_privileges: bool = True
    address_families: List[str] = Field(default_factory=lambda: ["AF_UNIX", "AF_INET", "AF_INET6"])
    restrict_namespaces: bool = True
    protect_kernel_modules: bool = True
    protect_kernel_tunables: bool = True
    protect_control_groups: bool = True
    restrict_realtime: bool = True
    restrict_suid_sgid: bool = True
    lock_personality: bool = True

    @field_validator("address_families", mode="after")
    @classmethod
    def validate_address_families(cls, v: List[str]) -> List[str]:
        """Reject anything that is not an AF_* family name."""
        for family in v:
            if not family.startswith("AF_"):
                raise ValueError(f"Invalid address family: {family}")
        return v


class ServiceDefinition(BaseModel):
    """Static description of the deployment. Never mutated once built."""

    model_config = ConfigDict(frozen=True)

    service_name: str = "reasonkit-web"
    description: str = "ReasonKit Web - Web Sensing & Browser Automation Layer"
    documentation: str = "https://reasonkit.sh/docs"
    account: str = "reasonkit"
    group: str = "reasonkit"
    account_comment: str = "ReasonKit Web Service"
    admin_user: str = "root"
    admin_group: str = "root"

    prefix: Path = Path("/opt/reasonkit")
    symlink_path: Path = Path("/usr/local/bin/reasonkit-web")
    config_dir: Path = Path("/etc/reasonkit")
    data_dir: Path = Path("/var/lib/reasonkit")
    log_dir: Path = Path("/var/log/reasonkit")
    runtime_dir: Path = Path("/run/reasonkit")
    unit_dir: Path = Path("/etc/systemd/system")
    tmpfiles_dir: Path = Path("/etc/tmpfiles.d")
    logrotate_dir: Path = Path("/etc/logrotate.d")

    serve_args: List[str] = Field(default_factory=lambda: ["serve"])
    limits: ResourceLimits = Field(default_factory=ResourceLimits)
    restart: RestartPolicy = Field(default_factory=RestartPolicy)
    sandbox: SandboxPolicy = Field(default_factory=SandboxPolicy)

    @property
    def bin_dir(self) -> Path:
        return self.prefix / "bin"

    @property
    def binary_path(self) -> Path:
        return self.bin_dir / self.service_name

    @property
    def unit_name(self) -> str:
        return f"{self.service_name}.service"

    @property
    def unit_path(self) -> Path:
        return self.unit_dir / self.unit_name

    @property
    def config_path(self) -> Path:
        return self.config_dir / f"{self.service_name}.env"

    @property
    def example_config_path(self) -> Path:
        return self.config_dir / f"{self.service_name}.env.example"

    @property
    def tmpfiles_path(self) -> Path:
        return self.tmpfiles_dir / f"{self.service_name}.conf"

    @property
    def logrotate_path(self) -> Path:
        return self.logrotate_dir / self.service_name

    @property
    def read_write_paths(self) -> List[Path]:
        return [self.data_dir, self.log_dir, self.runtime_dir]

    def with_prefix(self, prefix: Optional[Path]) -> "ServiceDefinition":
        """Return a copy installed under another prefix."""
        if prefix is None:
            return self
        return self.model_copy(update={"prefix": Path(prefix)})


class ManagerSettings(BaseSettings):
    """Tuning for the manager itself, read from RKHOST_* variables."""

    command_timeout_seconds: float = Field(default=120.0, gt=0)
    max_output_bytes: int = Field(default=65536, ge=1024)
    lock_dir: Path = Field(default=Path("/run/lock"))
    log_level: str = Field(default="INFO")
    engine_search_paths: List[str] = Field(
        default_factory=lambda: [
            "/usr/bin/chromium",
            "/usr/bin/chromium-browser",
            "/usr/bin/google-chrome",
            "/usr/bin/google-chrome-stable",
            "/snap/bin/chromium",
            "/opt/google/chrome/chrome",
        ]
    )

    # Verification thresholds
    memory_pass_mb: int = Field(default=500, ge=1)
    memory_warn_mb: int = Field(default=1500, ge=1)
    error_lookback_minutes: int = Field(default=60, ge=1, le=1440)
    max_recent_errors: int = Field(default=0, ge=0)

    model_config = SettingsConfigDict(
        env_prefix="RKHOST_",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level", mode="after")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()


class EngineEnvironment(BaseSettings):
    """Configure overrides taken from the environment (non-interactive mode).

    Every field is optional: an unset variable means "keep what is there".
    """

    rust_log: Optional[str] = Field(default=None, alias="RUST_LOG")
    chrome_path: Optional[str] = Field(default=None, alias="CHROME_PATH")
    reasonkit_headless: Optional[str] = Field(default=None, alias="REASONKIT_HEADLESS")
    reasonkit_disable_gpu: Optional[str] = Field(default=None, alias="REASONKIT_DISABLE_GPU")
    mcp_timeout_secs: Optional[str] = Field(default=None, alias="MCP_TIMEOUT_SECS")
    tokio_worker_threads: Optional[str] = Field(default=None, alias="TOKIO_WORKER_THREADS")

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def overrides(self) -> dict:
        """Return the non-empty variables keyed by their document key."""
        overrides = {}
        for name, field in type(self).model_fields.items():
            value = getattr(self, name)
            if value:
                overrides[field.alias] = value
        return overrides


DEFAULT_DEFINITION = ServiceDefinition()
