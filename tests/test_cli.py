"""Tests for the command-line interface."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from eval_engine import cli
from eval_engine.providers import OllamaProvider


@pytest.fixture
def run_cli(tmp_path: Path, capsys: pytest.CaptureFixture, mock_env: Path):
    """Run the CLI with logs redirected to a temporary directory."""

    def run(*argv: str) -> tuple:
        code = cli.main(["--log-dir", str(tmp_path / "logs"), *argv])
        return code, capsys.readouterr().out

    return run


class TestCli:
    def test_no_command_prints_help(self, run_cli) -> None:
        code, out = run_cli()
        assert code == 0
        assert "eval-engine" in out

    def test_similarity(self, run_cli) -> None:
        code, out = run_cli("similarity", "a b c", "a b d", "--algorithm", "jaccard")
        assert code == 0
        assert "0.5000" in out

    def test_evaluate_preset(self, run_cli, registry_file: Path) -> None:
        code, out = run_cli(
            "evaluate",
            "--registry", str(registry_file),
            "--evaluator", "gate",
            "--output", "Paris",
            "--expected", "Paris",
        )
        assert code == 0
        assert "PASS" in out

    def test_evaluate_failed_verdict_still_exits_zero(self, run_cli, registry_file: Path) -> None:
        code, out = run_cli(
            "evaluate",
            "--registry", str(registry_file),
            "--evaluator", "exact",
            "--output", "Lyon",
            "--expected", "Paris",
        )
        assert code == 0
        assert "FAIL" in out

    def test_evaluate_json(self, run_cli, registry_file: Path) -> None:
        code, out = run_cli(
            "evaluate",
            "--registry", str(registry_file),
            "--evaluator", "mentions-paris",
            "--output", "It is Paris",
            "--expected", "Paris",
            "--json",
        )
        assert code == 0
        assert json.loads(out)["passed"] is True

    def test_evaluate_bad_metadata(self, run_cli, registry_file: Path) -> None:
        code, out = run_cli(
            "evaluate",
            "--registry", str(registry_file),
            "--evaluator", "exact",
            "--output", "x",
            "--metadata", "{not json",
        )
        assert code == 1

    def test_missing_registry_exits_one(self, run_cli, tmp_path: Path) -> None:
        code, out = run_cli(
            "evaluate", "--registry", str(tmp_path / "none.yaml"), "--evaluator", "x", "--output", "y"
        )
        assert code == 1
        assert "not found" in out

    def test_check_cycles_ok(self, run_cli, registry_file: Path) -> None:
        code, out = run_cli("check-cycles", "--registry", str(registry_file))
        assert code == 0
        assert "No cycles in 6 evaluator(s)" in out

    def test_check_cycles_detects_cycle(self, run_cli, tmp_path: Path) -> None:
        f = tmp_path / "cycle.yaml"
        f.write_text(
            "evaluators:\n"
            "  - {id: a, type: composite, config: {evaluatorIds: [b]}}\n"
            "  - {id: b, type: composite, config: {evaluatorIds: [a]}}\n"
        )
        code, out = run_cli("check-cycles", "--registry", str(f))
        assert code == 1
        assert "a -> b -> a" in out

    def test_run_suite_writes_report(self, run_cli, registry_file: Path, tmp_path: Path) -> None:
        suite = registry_file.parent / "suite.yaml"
        suite.write_text(
            "name: smoke\n"
            "registry: evaluators.yaml\n"
            "evaluator_ids: [exact, short]\n"
            "cases:\n"
            "  - {id: one, input: q, output: Paris, expected: Paris}\n"
        )
        report_dir = tmp_path / "reports"

        code, out = run_cli("run-suite", "--suite", str(suite), "--report-dir", str(report_dir))

        assert code == 0
        assert "smoke" in out
        assert len(list(report_dir.glob("smoke_*.md"))) == 1
        assert len(list(report_dir.glob("smoke_*.json"))) == 1

    def test_creates_state_dir(self, run_cli, mock_env: Path) -> None:
        run_cli("similarity", "a", "a")
        assert (mock_env / "state" / "logs").is_dir()

    def test_list_models(self, run_cli) -> None:
        with (
            patch.object(OllamaProvider, "health_check", new=AsyncMock(return_value=True)),
            patch.object(
                OllamaProvider, "list_models", new=AsyncMock(return_value=["qwen2.5:7b", "llama3:8b"])
            ),
        ):
            code, out = run_cli("list-models", "--provider", "ollama")
        assert code == 0
        assert "ollama/qwen2.5:7b" in out
        assert "ollama/llama3:8b" in out

    def test_list_models_provider_unavailable(self, run_cli) -> None:
        with patch.object(OllamaProvider, "health_check", new=AsyncMock(return_value=False)):
            code, out = run_cli("list-models", "--provider", "ollama")
        assert code == 1
        assert "not available" in out
