"""
Run object-lock scenarios against one or more S3 backends

Scenarios run sequentially, one bucket each. Results are written as JSON per
backend and, when more than one backend is involved or a report path is
given, as a markdown comparison report.
"""

import json
import logging
import sys
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import click

from s3lock.config import (
    BackendConfig,
    HarnessSettings,
    backend_from_env,
    selected_backends,
    settings_from_env,
)
from s3lock.driver import Driver, Status, Verdict
from s3lock.log import configure_logging
from s3lock.s3_client import S3Client, StorageAdapter, endpoint_reachable
from s3lock.scenarios import all_scenarios, get_scenario

STATUS_MARK = {"PASS": "✅", "FAIL": "❌", "SKIPPED": "⏭️"}


@dataclass
class RunSummary:
    """Summary of scenario results for a backend"""

    backend: str
    total: int
    passed: int
    failed: int
    skipped: int
    total_duration: float
    pass_rate: float
    results: List[Dict]

    @classmethod
    def from_verdicts(cls, backend: str, verdicts: List[Verdict]) -> "RunSummary":
        total = len(verdicts)
        passed = len([v for v in verdicts if v.status is Status.PASS])
        failed = len([v for v in verdicts if v.status is Status.FAIL])
        skipped = len([v for v in verdicts if v.status is Status.SKIPPED])
        executed = total - skipped
        return cls(
            backend=backend,
            total=total,
            passed=passed,
            failed=failed,
            skipped=skipped,
            total_duration=sum(v.duration for v in verdicts),
            pass_rate=(passed / executed * 100) if executed > 0 else 0,
            results=[v.to_dict() for v in verdicts],
        )


def run_backend(
    adapter: StorageAdapter,
    scenario_names: List[str],
    settings: HarnessSettings,
) -> List[Verdict]:
    driver = Driver(adapter, settings)
    verdicts = []
    for name in scenario_names:
        verdicts.append(driver.bind(get_scenario(name))())
    return verdicts


def wait_for_backend(backend: BackendConfig, timeout: int) -> bool:
    """Wait for backend to be ready"""
    click.echo(f"Waiting for {backend.name} to be ready...")
    start_time = time.time()
    while time.time() - start_time < timeout:
        if endpoint_reachable(backend.endpoint_url):
            click.echo(f"  {backend.name} is ready!")
            return True
        time.sleep(2)
    click.echo(f"  {backend.name} failed to become ready within {timeout}s")
    return False


def create_ascii_bar(value: float, max_value: float, width: int = 40) -> str:
    """Create an ASCII progress bar"""
    filled = int((value / max_value) * width) if max_value > 0 else 0
    return "█" * filled + "░" * (width - filled)


def generate_report(summaries: List[RunSummary], output_file: Path) -> str:
    """Markdown report: summary table, pass-rate bars, per-scenario matrix"""
    lines = [
        "# S3 Object Lock Conformance Report",
        "",
        f"**Generated:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        "",
        "## Summary",
        "",
        "| Backend | Scenarios | Passed | Failed | Skipped | Pass Rate | Duration |",
        "|---------|-----------|--------|--------|---------|-----------|----------|",
    ]
    for s in summaries:
        lines.append(
            f"| **{s.backend}** | {s.total} | {s.passed} | {s.failed} | "
            f"{s.skipped} | {s.pass_rate:.1f}% | {s.total_duration:.1f}s |"
        )
    lines += ["", "### Pass Rate", "", "```"]
    for s in summaries:
        bar = create_ascii_bar(s.pass_rate, 100, 50)
        lines.append(f"{s.backend:12} |{bar}| {s.pass_rate:.1f}%")
    lines += ["```", "", "## Results by Scenario", ""]

    names: List[str] = []
    for s in summaries:
        for r in s.results:
            if r["scenario"] not in names:
                names.append(r["scenario"])

    lines.append("| Scenario | " + " | ".join(s.backend for s in summaries) + " |")
    lines.append("|----------|" + "|".join(["-------"] * len(summaries)) + "|")
    differences = []
    for name in names:
        row = [name]
        statuses = set()
        for s in summaries:
            result = next((r for r in s.results if r["scenario"] == name), None)
            if result is None:
                row.append("N/A")
                continue
            statuses.add(result["status"])
            row.append(f"{STATUS_MARK.get(result['status'], '❓')} {result['status']}")
        if len(statuses) > 1:
            differences.append(name)
        lines.append("| " + " | ".join(row) + " |")
    lines.append("")

    if len(summaries) >= 2:
        lines += ["## Differences", ""]
        if differences:
            lines += [f"- `{name}`" for name in differences]
        else:
            lines.append("*All backends produced the same results.*")
        lines.append("")

    failures = [
        (s.backend, r) for s in summaries for r in s.results if r["status"] == "FAIL"
    ]
    if failures:
        lines += ["## Failure Details", ""]
        for backend, r in failures:
            lines.append(f"- **{backend}** `{r['scenario']}`: {r['detail']}")
        lines.append("")

    report = "\n".join(lines)
    with open(output_file, "w") as f:
        f.write(report)
    return report


@click.command()
@click.option(
    "--backend",
    "-b",
    "backends",
    multiple=True,
    help="Backend to test (can specify multiple); default is S3_ENDPOINT from the environment",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="YAML file with backend definitions",
)
@click.option(
    "--scenario",
    "-s",
    "scenarios",
    multiple=True,
    help="Scenario to run (can specify multiple); default is all",
)
@click.option("--list", "list_only", is_flag=True, help="List scenarios and exit")
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(),
    default="lock-results",
    help="Output directory for JSON results",
)
@click.option(
    "--report",
    "-r",
    type=click.Path(),
    default=None,
    help="Write a markdown comparison report to this path",
)
@click.option(
    "--wait",
    type=int,
    default=0,
    help="Seconds to wait for each endpoint to answer before running",
)
@click.option("--verbose", "-v", is_flag=True, help="Log state transitions")
def main(
    backends: Tuple[str, ...],
    config_path: Optional[str],
    scenarios: Tuple[str, ...],
    list_only: bool,
    output_dir: str,
    report: Optional[str],
    wait: int,
    verbose: bool,
):
    """Check S3 object-lock (WORM) behavior of S3-compatible backends"""

    if list_only:
        for scenario in all_scenarios():
            click.echo(f"{scenario.name:42} {scenario.description}")
        return

    configure_logging(logging.DEBUG if verbose else logging.INFO, stream=sys.stderr)
    settings = settings_from_env()

    try:
        names = [get_scenario(n).name for n in scenarios] or [
            s.name for s in all_scenarios()
        ]
        targets: List[BackendConfig] = (
            selected_backends(list(backends), config_path)
            if backends
            else [backend_from_env()]
        )
    except (KeyError, ValueError, FileNotFoundError) as e:
        raise click.UsageError(str(e.args[0] if e.args else e))

    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    summaries = []
    unreachable = []
    for backend in targets:
        if wait and not wait_for_backend(backend, wait):
            unreachable.append(backend.name)
            continue

        click.echo(f"\n{'=' * 60}")
        click.echo(f"Running {len(names)} scenarios against {backend.name}")
        click.echo(f"Endpoint: {backend.endpoint_url}")
        click.echo("=" * 60)

        adapter = S3Client.from_backend(backend, settings)
        verdicts = run_backend(adapter, names, settings)
        for v in verdicts:
            line = f"  {STATUS_MARK.get(v.status.value, '')} {v.scenario}: {v.status.value}"
            if v.detail:
                line += f" ({v.detail})"
            click.echo(line)

        summary = RunSummary.from_verdicts(backend.name, verdicts)
        summaries.append(summary)
        results_file = output_path / f"results_{backend.name.lower()}.json"
        with open(results_file, "w") as f:
            json.dump(asdict(summary), f, indent=2, default=str)
        click.echo(
            f"\n  Passed: {summary.passed}, Failed: {summary.failed}, "
            f"Skipped: {summary.skipped}"
        )

    if report or len(summaries) > 1:
        report_path = Path(report or output_path / "report.md")
        generate_report(summaries, report_path)
        click.echo(f"\nReport saved to: {report_path}")

    if unreachable:
        click.echo(f"\nUnreachable: {', '.join(unreachable)}", err=True)
    if unreachable or any(s.failed for s in summaries):
        sys.exit(1)


if __name__ == "__main__":
    main()
