from __future__ import annotations

import importlib.util
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .sync_config import SyncConfig


def _check_writable(path: Path) -> bool:
    try:
        if path.exists():
            return os.access(path, os.W_OK)
        parent = path.parent if str(path.parent) else Path(".")
        if not parent.exists():
            return False
        return os.access(parent, os.W_OK)
    except OSError:
        return False


def _module_available(name: str) -> bool:
    return importlib.util.find_spec(name) is not None


def build_doctor_report(config: Optional[SyncConfig] = None) -> Dict[str, Any]:
    config = config or SyncConfig()
    report: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "ok": True,
        "checks": [],
    }

    def add_check(
        name: str,
        status: bool,
        *,
        detail: Optional[str] = None,
        remedy: Optional[str] = None,
        level: str = "warn",
    ) -> None:
        entry = {
            "name": name,
            "status": "ok" if status else "missing",
            "level": level,
            "detail": detail,
        }
        if remedy:
            entry["remedy"] = remedy
        report["checks"].append(entry)
        if not status and level == "warn":
            report["ok"] = False

    db_path = Path(config.db_path)
    add_check(
        "PROFILESYNC_DB_PATH",
        str(db_path) == ":memory:" or _check_writable(db_path),
        detail=str(db_path),
        remedy="Create the parent directory or set PROFILESYNC_DB_PATH to a writable location.",
    )

    unknown = [name for name in config.strategies if name not in config.strategy_urls]
    add_check(
        "PROFILESYNC_STRATEGIES",
        bool(config.strategies) and not unknown,
        detail=", ".join(config.strategies) or "(none)",
        remedy=f"Known strategies: {', '.join(sorted(config.strategy_urls))}.",
    )

    add_check(
        "timeouts",
        config.profile_timeout > 0 and config.image_timeout > 0,
        detail=f"profile={config.profile_timeout:g}s image={config.image_timeout:g}s",
        remedy="Set PROFILESYNC_PROFILE_TIMEOUT / PROFILESYNC_IMAGE_TIMEOUT to positive seconds.",
    )

    delays_on = config.jitter[1] > 0 or config.strategy_delay[1] > 0
    add_check(
        "delays",
        delays_on,
        detail=(
            f"jitter={config.jitter[0]:g}-{config.jitter[1]:g}s "
            f"strategy_delay={config.strategy_delay[0]:g}-{config.strategy_delay[1]:g}s"
        ),
        remedy="Unset PROFILESYNC_DISABLE_DELAYS outside of tests to avoid rate limits.",
        level="info",
    )

    lxml_ok = _module_available("lxml")
    add_check(
        "lxml",
        lxml_ok,
        detail="HTML parser available" if lxml_ok else "HTML parser missing",
        remedy="pip install lxml",
    )
    return report


def format_doctor_report(report: Dict[str, Any]) -> str:
    lines: List[str] = []
    lines.append("profilesync doctor")
    lines.append(f"Generated: {report.get('generated_at')}")
    lines.append("")
    for check in report.get("checks", []):
        name = check.get("name", "check")
        status = check.get("status", "unknown")
        level = check.get("level", "info")
        lines.append(f"- [{level}] {name}: {status}")
        detail = check.get("detail")
        if detail:
            lines.append(f"  detail: {detail}")
        remedy = check.get("remedy")
        if remedy and status != "ok":
            lines.append(f"  remedy: {remedy}")
    return "\n".join(lines).rstrip() + "\n"
