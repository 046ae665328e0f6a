"""Scenario report service: writes per-run JSON with step timings."""

import json
import os
import tempfile
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from clusterupgrade.models import ScenarioResult


class ReportService:
    """Collects scenario outcomes and rewrites the report file on every change."""

    def __init__(self, report_file: str, logger):
        self.report_file = report_file
        self.logger = logger
        self.report: Dict[str, Any] = {
            "run_id": None,
            "status": "running",
            "started_at": None,
            "finished_at": None,
            "duration_seconds": None,
            "metadata": {},
            "scenarios": {},
            "error": None,
        }

    def start_run(self, run_id: str, metadata: Dict[str, Any]):
        self.report["run_id"] = run_id
        self.report["status"] = "running"
        self.report["started_at"] = self._now()
        self.report["metadata"] = metadata
        self.write()

    def scenario_started(self, name: str):
        self.report["scenarios"][name] = {
            "status": "running",
            "started_at": self._now(),
            "finished_at": None,
            "steps": [],
        }
        self.write()

    def step_started(self, scenario: str, step_name: str, details: Optional[Dict[str, Any]] = None):
        self.report["scenarios"][scenario]["steps"].append(
            {
                "name": step_name,
                "status": "running",
                "started_at": self._now(),
                "finished_at": None,
                "duration_seconds": None,
                "details": details or {},
                "error": None,
            }
        )
        self.write()

    def step_finished(self, scenario: str, step_name: str, status: str, error: Optional[str] = None):
        for step in reversed(self.report["scenarios"][scenario]["steps"]):
            if step["name"] == step_name and step["status"] == "running":
                step["status"] = status
                step["finished_at"] = self._now()
                step["error"] = error
                step["duration_seconds"] = self._duration(step["started_at"], step["finished_at"])
                break
        self.write()

    def scenario_finished(self, result: ScenarioResult):
        entry = self.report["scenarios"].setdefault(result.name, {"steps": [], "started_at": None})
        entry.update(asdict(result))
        entry["finished_at"] = self._now()
        self.write()

    def finalize(self, status: str, error: Optional[str] = None):
        self.report["status"] = status
        self.report["finished_at"] = self._now()
        if self.report.get("started_at"):
            self.report["duration_seconds"] = self._duration(
                self.report["started_at"], self.report["finished_at"]
            )
        self.report["error"] = error
        self.write()

    def write(self):
        os.makedirs(os.path.dirname(self.report_file) or ".", exist_ok=True)

        fd, temp_path = tempfile.mkstemp(
            prefix="upgrade-report-",
            suffix=".json",
            dir=os.path.dirname(self.report_file) or ".",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump(self.report, file_obj, indent=2, sort_keys=True)
                file_obj.write("\n")
            os.replace(temp_path, self.report_file)
        except OSError as exc:
            self.logger.warning("Could not write report file '%s': %s", self.report_file, exc)
            try:
                os.remove(temp_path)
            except OSError:
                pass

    @staticmethod
    def _duration(started_at: str, finished_at: str) -> float:
        return (datetime.fromisoformat(finished_at) - datetime.fromisoformat(started_at)).total_seconds()

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
