"""
eval-engine CLI

Command-line interface for running evaluators and evaluation suites.

Usage:
    # Evaluate one output with a registered evaluator
    python -m eval_engine evaluate --registry evaluators.yaml --evaluator gate \\
        --input "What is 2+2?" --output "4" --expected "4"

    # Run a suite and write a report
    python -m eval_engine run-suite --suite suite.yaml --report-dir ./reports

    # Check a registry for composite reference cycles
    python -m eval_engine check-cycles --registry evaluators.yaml

    # Compare two strings
    python -m eval_engine similarity "hello world" "hello there" --algorithm jaccard

    # List models available for LLM grading
    python -m eval_engine list-models --provider ollama
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

import config
from utils.exceptions import CycleError, EvalEngineError
from utils.logging_config import setup_logging

from .providers import ProviderFactory
from .types import EvaluatorInput, EvaluatorOutput, SimilarityAlgorithm

console = Console()


def _print_verdict(evaluator_id: str, result: EvaluatorOutput) -> None:
    status = "[green]PASS[/green]" if result.passed else "[red]FAIL[/red]"
    score = f"{result.score:.3f}" if result.score is not None else "N/A"
    console.print(f"[bold]{evaluator_id}[/bold]: {status} (score {score})")
    if result.reason:
        console.print(f"[dim]{escape(result.reason)}[/dim]")


async def cmd_evaluate(args: argparse.Namespace) -> int:
    """Evaluate a single output with a registered evaluator."""
    from .providers import ProviderModelInvoker
    from .registry import EvaluatorRegistry

    registry = EvaluatorRegistry.from_yaml(Path(args.registry))
    for warning in registry.validate():
        console.print(f"[yellow]Warning: {warning}[/yellow]")

    try:
        metadata = json.loads(args.metadata) if args.metadata else {}
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid --metadata JSON: {e}[/red]")
        return 1

    evaluator_input = EvaluatorInput(
        input=args.input,
        output=args.output,
        expected=args.expected,
        metadata=metadata,
    )
    result = await registry.evaluate(
        args.evaluator, evaluator_input, model_invoker=ProviderModelInvoker()
    )

    if args.json:
        console.print_json(json.dumps(result.to_dict(), ensure_ascii=False, default=str))
    else:
        _print_verdict(args.evaluator, result)
    return 0


async def cmd_run_suite(args: argparse.Namespace) -> int:
    """Run an evaluation suite."""
    from .providers import ProviderModelInvoker
    from .reporting import ReportConfig, SuiteReportGenerator
    from .suite import EvaluationSuite, SuiteRunner

    suite = EvaluationSuite.from_yaml(Path(args.suite))
    suite.registry.validate()
    console.print(f"[cyan]Suite: {suite.name}[/cyan]")
    console.print(
        f"[dim]{len(suite.cases)} case(s), evaluators: {', '.join(suite.evaluator_ids)}[/dim]"
    )

    runner = SuiteRunner(suite.registry, model_invoker=ProviderModelInvoker())
    result = await runner.run(suite)

    table = Table(title=f"{suite.name}: {result.passed_count}/{result.total} passed")
    table.add_column("Evaluator", style="cyan")
    table.add_column("Passed", justify="right")
    table.add_column("Pass Rate", justify="right")
    table.add_column("Mean Score", justify="right")
    for evaluator_id, summary in result.evaluator_summaries().items():
        table.add_row(
            evaluator_id,
            f"{summary['passed']}/{summary['total']}",
            f"{summary['pass_rate'] * 100:.0f}%",
            f"{summary['mean_score']:.3f}",
        )
    console.print(table)

    for r in result.results:
        if not r.output.passed:
            reason = escape(r.output.reason or "")
            console.print(f"[red]✗[/red] {r.case_id} / {r.evaluator_id}: {reason}")

    if not args.no_report:
        generator = SuiteReportGenerator(ReportConfig(report_dir=Path(args.report_dir)))
        report_path = generator.generate(result)
        console.print(f"\n[green]Report saved to {report_path}[/green]")

    return 0


async def cmd_check_cycles(args: argparse.Namespace) -> int:
    """Validate composite references in a registry."""
    from .registry import EvaluatorRegistry

    registry = EvaluatorRegistry.from_yaml(Path(args.registry))
    try:
        warnings = registry.validate()
    except CycleError as e:
        console.print(f"[red]Cycle: {' -> '.join(e.path)}[/red]")
        return 1

    for warning in warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")
    console.print(f"[green]No cycles in {len(registry)} evaluator(s)[/green]")
    return 0


async def cmd_similarity(args: argparse.Namespace) -> int:
    """Print the similarity of two strings."""
    from .similarity import calculate_similarity

    score = calculate_similarity(args.a, args.b, args.algorithm)
    console.print(f"{args.algorithm}: [bold]{score:.4f}[/bold]")
    return 0


async def cmd_list_models(args: argparse.Namespace) -> int:
    """List the models a grading provider can serve."""
    provider = ProviderFactory.create(args.provider, model="")
    if not await provider.health_check():
        console.print(f"[yellow]{args.provider} not available[/yellow]")
        return 1

    models = await provider.list_models()
    table = Table(title=f"{args.provider} models")
    table.add_column("Model id", style="cyan")
    for model in sorted(models):
        table.add_row(f"{args.provider}/{model}")
    console.print(table)
    return 0


COMMANDS = {
    "evaluate": cmd_evaluate,
    "run-suite": cmd_run_suite,
    "check-cycles": cmd_check_cycles,
    "similarity": cmd_similarity,
    "list-models": cmd_list_models,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eval-engine",
        description="Evaluate LLM outputs with preset, code, LLM and composite evaluators",
    )
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="Log level")
    parser.add_argument("--log-dir", default=str(config.LOG_DIR), help="Log file directory")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # evaluate
    eval_parser = subparsers.add_parser("evaluate", help="Evaluate one output")
    eval_parser.add_argument("--registry", "-r", required=True, help="Evaluator registry YAML")
    eval_parser.add_argument("--evaluator", "-e", required=True, help="Evaluator id")
    eval_parser.add_argument("--output", "-o", required=True, help="Model output to evaluate")
    eval_parser.add_argument("--input", "-i", default="", help="Prompt that produced the output")
    eval_parser.add_argument("--expected", help="Expected/reference output")
    eval_parser.add_argument("--metadata", help="Extra metadata as a JSON object")
    eval_parser.add_argument("--json", action="store_true", help="Print the verdict as JSON")

    # run-suite
    suite_parser = subparsers.add_parser("run-suite", help="Run an evaluation suite")
    suite_parser.add_argument("--suite", "-s", required=True, help="Suite YAML")
    suite_parser.add_argument("--report-dir", default="./reports", help="Report output directory")
    suite_parser.add_argument("--no-report", action="store_true", help="Skip report generation")

    # check-cycles
    cycles_parser = subparsers.add_parser("check-cycles", help="Check composite references")
    cycles_parser.add_argument("--registry", "-r", required=True, help="Evaluator registry YAML")

    # similarity
    sim_parser = subparsers.add_parser("similarity", help="Compare two strings")
    sim_parser.add_argument("a", help="First string")
    sim_parser.add_argument("b", help="Second string")
    sim_parser.add_argument(
        "--algorithm",
        "-a",
        default=SimilarityAlgorithm.LEVENSHTEIN.value,
        choices=[a.value for a in SimilarityAlgorithm],
        help="Similarity algorithm",
    )

    # list-models
    models_parser = subparsers.add_parser("list-models", help="List grading models")
    models_parser.add_argument(
        "--provider",
        "-p",
        default=config.DEFAULT_PROVIDER,
        choices=ProviderFactory.available_providers(),
        help="Model provider",
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    config.validate_config()
    setup_logging(level=args.log_level, log_dir=Path(args.log_dir), json_logs=config.DEBUG)

    try:
        return asyncio.run(COMMANDS[args.command](args))
    except EvalEngineError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
