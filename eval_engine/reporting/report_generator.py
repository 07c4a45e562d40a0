"""
Suite report generator.

Takes a SuiteResult and renders markdown/JSON reports using Jinja2 templates.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader

from utils.exceptions import ReportingError

from ..suite import SuiteResult

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"


@dataclass
class ReportConfig:
    """Configuration for report generation."""

    report_dir: Path = Path("./reports")
    formats: List[str] = field(default_factory=lambda: ["markdown", "json"])
    # Pass rate at or above which an evaluator is shown as healthy
    healthy_pass_rate: float = 0.8


def _sanitize_name(name: str) -> str:
    """Convert a suite name to a safe filename."""
    return re.sub(r"[^\w.-]+", "_", name).strip("_") or "suite"


def _status(pass_rate: float, healthy: float) -> str:
    if pass_rate >= healthy:
        return "OK"
    elif pass_rate > 0:
        return "DEGRADED"
    else:
        return "FAILING"


class SuiteReportGenerator:
    """Generates suite reports from SuiteResult data."""

    def __init__(self, config: Optional[ReportConfig] = None):
        self.config = config or ReportConfig()
        self._env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def generate(self, result: SuiteResult) -> Path:
        """
        Generate reports from a SuiteResult.

        Returns:
            Path to the markdown report (or the JSON report when markdown
            is not among the configured formats).

        Raises:
            ReportingError: If report generation fails.
        """
        try:
            self.config.report_dir.mkdir(parents=True, exist_ok=True)

            stem = f"{_sanitize_name(result.suite_name)}_{result.timestamp:%Y%m%d_%H%M%S}"
            md_path = self.config.report_dir / f"{stem}.md"
            json_path = self.config.report_dir / f"{stem}.json"

            if "markdown" in self.config.formats:
                template = self._env.get_template("suite_report.md.j2")
                md_path.write_text(template.render(**self._build_context(result)), encoding="utf-8")
                logger.info(f"Markdown report saved to {md_path}")

            if "json" in self.config.formats:
                with open(json_path, "w", encoding="utf-8") as f:
                    json.dump(result.to_dict(), f, indent=2, ensure_ascii=False, default=str)
                logger.info(f"JSON report saved to {json_path}")

            return md_path if "markdown" in self.config.formats else json_path

        except Exception as e:
            raise ReportingError(f"Failed to generate report: {e}") from e

    def _build_context(self, result: SuiteResult) -> Dict[str, Any]:
        """Build the Jinja2 template context from a SuiteResult."""
        evaluators = [
            {
                "id": evaluator_id,
                "passed": summary["passed"],
                "total": summary["total"],
                "pass_rate": f"{summary['pass_rate'] * 100:.0f}",
                "mean_score": f"{summary['mean_score']:.3f}",
                "status": _status(summary["pass_rate"], self.config.healthy_pass_rate),
            }
            for evaluator_id, summary in result.evaluator_summaries().items()
        ]

        failures = [
            {
                "case_id": r.case_id,
                "evaluator_id": r.evaluator_id,
                "score": f"{r.output.score:.3f}" if r.output.score is not None else "N/A",
                "reason": (r.output.reason or "").replace("|", "\\|").replace("\n", " "),
            }
            for r in result.results
            if not r.output.passed
        ]

        return {
            "suite_name": result.suite_name,
            "timestamp": result.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            "duration": f"{result.duration_ms / 1000:.2f}",
            "total": result.total,
            "passed": result.passed_count,
            "pass_rate": f"{result.pass_rate * 100:.0f}",
            "evaluators": evaluators,
            "failures": failures,
        }
