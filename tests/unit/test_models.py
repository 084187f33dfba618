import json

import pytest
from pydantic import ValidationError

from rkhost.models import CheckResult, CheckStatus, ConfigurationDocument, VerificationReport


def _checks(*statuses):
    return [CheckResult(name=f"check {i}", status=s, detail=f"detail {i}") for i, s in enumerate(statuses)]


def test_report_counts():
    report = VerificationReport.build(
        _checks(CheckStatus.PASS, CheckStatus.WARN, CheckStatus.FAIL, CheckStatus.PASS),
        hostname="node-1",
    )

    assert report.summary.passed == 2
    assert report.summary.failed == 1
    assert report.summary.warnings == 1
    assert report.exit_code == 1


@pytest.mark.parametrize(
    "statuses, expected",
    [
        ((CheckStatus.PASS, CheckStatus.PASS), 0),
        ((CheckStatus.WARN, CheckStatus.WARN, CheckStatus.PASS), 0),
        ((CheckStatus.WARN, CheckStatus.FAIL), 1),
        ((), 0),
    ],
)
def test_exit_code_depends_only_on_failures(statuses, expected):
    report = VerificationReport.build(_checks(*statuses), hostname="node-1")

    assert report.exit_code == expected
    assert report.ok is (report.summary.failed == 0)


def test_json_schema():
    report = VerificationReport.build(
        _checks(CheckStatus.PASS, CheckStatus.WARN), hostname="node-1", timestamp="2026-10-18T10:00:00+00:00"
    )

    data = json.loads(report.to_json())

    assert set(data) == {"timestamp", "hostname", "summary", "checks"}
    assert data["timestamp"] == "2026-10-18T10:00:00+00:00"
    assert data["summary"] == {"passed": 1, "failed": 0, "warnings": 1}
    assert data["checks"][1] == {"name": "check 1", "status": "warn", "detail": "detail 1"}


def test_text_hides_pass_details_unless_verbose():
    report = VerificationReport.build(_checks(CheckStatus.PASS, CheckStatus.FAIL), hostname="node-1")

    quiet = report.to_text()
    verbose = report.to_text(verbose=True)

    assert "[PASS] check 0" in quiet
    assert "detail 0" not in quiet
    assert "detail 1" in quiet
    assert "detail 0" in verbose
    assert "Verification failed" in quiet


def test_text_and_json_list_the_same_checks():
    report = VerificationReport.build(
        _checks(CheckStatus.PASS, CheckStatus.WARN, CheckStatus.FAIL), hostname="node-1"
    )
    text_lines = [line for line in report.to_text().splitlines() if line.startswith("[")]
    from_json = [f"[{c['status'].upper()}] {c['name']}" for c in json.loads(report.to_json())["checks"]]

    assert text_lines == from_json


class TestConfigurationDocument:
    def test_defaults(self):
        document = ConfigurationDocument()

        assert document.env_values() == {
            "RUST_LOG": "info",
            "REASONKIT_HEADLESS": "true",
            "REASONKIT_DISABLE_GPU": "true",
            "MCP_TIMEOUT_SECS": "30",
            "TOKIO_WORKER_THREADS": "4",
        }

    def test_parses_file_strings(self):
        document = ConfigurationDocument.model_validate(
            {"RUST_LOG": "debug", "REASONKIT_HEADLESS": "false", "MCP_TIMEOUT_SECS": "60", "CHROME_PATH": "/usr/bin/chromium"}
        )

        assert document.log_level == "debug"
        assert document.headless is False
        assert document.timeout_secs == 60
        assert document.env_values()["CHROME_PATH"] == "/usr/bin/chromium"

    @pytest.mark.parametrize(
        "values",
        [
            {"RUST_LOG": "verbose"},
            {"MCP_TIMEOUT_SECS": "0"},
            {"TOKIO_WORKER_THREADS": "many"},
            {"REASONKIT_HEADLESS": "maybe"},
            {"UNKNOWN_KEY": "1"},
        ],
    )
    def test_rejects_invalid_values(self, values):
        with pytest.raises(ValidationError):
            ConfigurationDocument.model_validate(values)

    def test_passthrough_not_in_values(self):
        document = ConfigurationDocument(passthrough=(("CUSTOM", "1"),))

        assert "CUSTOM" not in document.env_values()
        assert document.passthrough == (("CUSTOM", "1"),)
