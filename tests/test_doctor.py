from pathlib import Path

from profilesync.workflows.doctor import build_doctor_report, format_doctor_report
from profilesync.workflows.sync_config import SyncConfig


def _check(report, name):
    return next(check for check in report["checks"] if check["name"] == name)


def test_doctor_report_ok_for_default_config(tmp_path: Path) -> None:
    report = build_doctor_report(SyncConfig(db_path=tmp_path / "profiles.db"))

    assert report["ok"] is True
    assert report["generated_at"].endswith("Z")
    assert _check(report, "PROFILESYNC_DB_PATH")["status"] == "ok"
    assert _check(report, "lxml")["status"] == "ok"
    assert _check(report, "PROFILESYNC_STRATEGIES")["detail"] == "mobile_web, desktop_web, app_api"


def test_doctor_flags_bad_settings(tmp_path: Path) -> None:
    config = SyncConfig(db_path=tmp_path / "missing" / "profiles.db", strategies=("fax",))

    report = build_doctor_report(config)

    assert report["ok"] is False
    assert _check(report, "PROFILESYNC_DB_PATH")["status"] == "missing"
    assert _check(report, "PROFILESYNC_STRATEGIES")["status"] == "missing"


def test_disabled_delays_are_informational(tmp_path: Path) -> None:
    report = build_doctor_report(SyncConfig(db_path=tmp_path / "p.db").without_delays())

    assert _check(report, "delays")["level"] == "info"
    assert _check(report, "delays")["status"] == "missing"
    assert report["ok"] is True


def test_format_doctor_report(tmp_path: Path) -> None:
    report = build_doctor_report(SyncConfig(db_path=tmp_path / "missing" / "p.db"))

    text = format_doctor_report(report)

    assert text.startswith("profilesync doctor\n")
    assert "- [warn] PROFILESYNC_DB_PATH: missing" in text
    assert "remedy:" in text
    assert text.endswith("\n")
