"""Error taxonomy for the lifecycle manager.

Every error carries a ``hint``: the next step an operator should take.
"""


class RkHostError(Exception):
    """Base class for all lifecycle manager errors."""

    hint = "Re-run the command with --log-level DEBUG for details."

    def __init__(self, message: str, hint: str = None):
        super().__init__(message)
        if hint:
            self.hint = hint


class PrivilegeError(RkHostError):
    hint = "Re-run the command as root (for example with sudo)."


class PlatformMismatch(RkHostError):
    hint = "Use a supported Debian 13+ host, or pass --yes to accept the mismatch."


class MissingDependency(RkHostError):
    hint = "Install the missing package with apt-get and re-run."


class AccountProvisioningError(RkHostError):
    hint = "Check useradd/groupadd output and /etc/passwd, then re-run install."


class FilesystemPermissionError(RkHostError):
    hint = "Check the path ownership and free space, then re-run install."


class BinaryInvalid(RkHostError):
    hint = "Pass a valid build with --binary (cargo build --release)."


class ServiceControlError(RkHostError):
    hint = "Inspect 'journalctl -u reasonkit-web' and 'systemctl status reasonkit-web'."


class ConfigWriteError(RkHostError):
    hint = "Fix the offending value or run 'rkhost install' first, then re-run configure."


class VerificationCheckError(RkHostError):
    """Raised inside a single verification check; folded into the report."""


class LockHeldError(RkHostError):
    hint = "Wait for the other rkhost invocation to finish, then re-run."
