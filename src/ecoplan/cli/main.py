"""
EcoPlan CLI - performance, scalability and eco scoring of PostgreSQL plans.

Reads textual EXPLAIN (ANALYZE, BUFFERS) output.

Usage:
    ecoplan analyze plan.txt
    ecoplan analyze --provider gcp --frequency 50000 plan.txt
    ecoplan analyze --json plan.txt
    ecoplan rules
"""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from ecoplan import __version__
from ecoplan.config import get_config
from ecoplan.economics import CloudProvider
from ecoplan.engine import AnalysisService
from ecoplan.exceptions import EcoPlanError, ExtractionError
from ecoplan.suggestions import SUGGESTION_LIBRARY, RuleRunStatus, Severity

# Markup tags only; plan comparisons such as "a < 5" are left alone
_HTML_TAG_RE = re.compile(r"</?[A-Za-z][A-Za-z0-9]*(?:\s[^<>]*)?/?>")


class ProviderOption(str, Enum):
    """Cloud providers accepted on the command line."""
    aws = "aws"
    gcp = "gcp"
    azure = "azure"


app = typer.Typer(
    name="ecoplan",
    help="Performance, scalability and environmental scoring of PostgreSQL plans",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"EcoPlan version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """EcoPlan - query plan impact analyzer."""
    pass


def sanitize_plan(raw_text: str, max_chars: int) -> str:
    """Strip markup tags and surrounding whitespace, then truncate to max_chars."""
    text = _HTML_TAG_RE.sub("", raw_text).strip()
    if len(text) > max_chars:
        text = text[:max_chars]
    return text


def read_plan(plan_file: Path, max_chars: int) -> str:
    """
    Read and sanitize a plan file.

    Raises:
        ExtractionError: If the file is not UTF-8 text or holds no plan
    """
    try:
        raw_text = plan_file.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ExtractionError("Plan file is not valid UTF-8 text", source=str(plan_file)) from e

    text = sanitize_plan(raw_text, max_chars)
    if not text:
        raise ExtractionError("Plan file is empty", source=str(plan_file))
    return text


def _severity_style(severity: Severity) -> str:
    if severity is Severity.CRITICAL:
        return "red bold"
    if severity is Severity.HIGH:
        return "red"
    if severity is Severity.MEDIUM:
        return "yellow"
    return "blue"


@app.command()
def analyze(
    plan_file: Annotated[
        Path,
        typer.Argument(
            help="Path to EXPLAIN ANALYZE output (text format)",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    provider: Annotated[
        Optional[ProviderOption],
        typer.Option(
            "--provider",
            "-p",
            help="Cloud provider rate table (default from configuration)",
        ),
    ] = None,
    frequency: Annotated[
        Optional[int],
        typer.Option(
            "--frequency",
            "-f",
            help="Executions per accounting period (clamped to 1..20,000,000)",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            "-j",
            help="Output results as JSON",
        ),
    ] = False,
) -> None:
    """
    Score a query plan and suggest fixes.

    Examples:

        $ psql -XqAt -c "EXPLAIN (ANALYZE, BUFFERS) SELECT ..." > plan.txt
        $ ecoplan analyze plan.txt
        $ ecoplan analyze --provider azure --frequency 100000 plan.txt
    """
    config = get_config()

    try:
        plan_text = read_plan(plan_file, config.max_plan_chars)

        service = AnalysisService(config)
        report = service.analyze(
            plan_text,
            provider=CloudProvider.from_string(provider.value) if provider else None,
            frequency=frequency,
        )
    except EcoPlanError as e:
        error_console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1)

    # JSON output mode
    if json_output:
        console.print_json(report.to_json())
        return

    source = "measured" if report.exec_time_in_explain else "estimated from cost"
    console.print(Panel(
        f"Efficiency score: [bold]{report.efficiency_score:.1f}[/bold] / 100\n"
        f"Execution time: {report.execution_time_ms:,.2f} ms ({source})\n"
        f"Projected cost: {report.economic_impact:,.4f} "
        f"({report.frequency:,} runs on {report.provider.value})\n"
        f"CO2: {report.green.co2_grams:,.2f} g "
        f"({report.green.tree_equivalent:,.2f} tree-days)\n\n"
        f"[dim]{report.breakdown}[/dim]",
        title="EcoPlan",
        border_style="green" if report.efficiency_score >= 50 else "red",
    ))

    if report.top_offenders:
        table = Table(title="Top offenders")
        table.add_column("Node", style="cyan")
        table.add_column("Impact", justify="right")
        for offender in report.top_offenders:
            table.add_row(offender.label, f"{offender.value:.0%}")
        console.print(table)

    if not report.suggestions:
        console.print("[green]No suggestions - the plan looks healthy.[/green]")
        return

    console.print(f"\n[bold]{len(report.suggestions)} suggestion(s):[/bold]\n")

    for suggestion in report.suggestions:
        style = _severity_style(suggestion.severity)
        console.print(
            f"[{style}][{suggestion.severity.value.upper()}][/{style}] {suggestion.title} "
            f"[dim]({suggestion.impact_summary.contribution}% of impact)[/dim]"
        )
        for line in suggestion.evidence:
            console.print(f"   {line}")
        console.print(Markdown(suggestion.explanation))
        console.print()

    failed = len(report.rule_runs_by_status(RuleRunStatus.FAIL))
    console.print(
        f"[dim]Evaluated {len(report.rule_runs)} rule(s), {failed} failed, "
        f"in {report.analysis_duration_ms:.1f}ms[/dim]"
    )


@app.command()
def rules() -> None:
    """
    List all suggestion rules.

    Shows rule IDs, kinds, base severity, trigger nodes and enabled state.
    """
    config = get_config()

    table = Table()
    table.add_column("Rule ID", style="cyan")
    table.add_column("Kind")
    table.add_column("Severity")
    table.add_column("Triggers")
    table.add_column("Min impact", justify="right")
    table.add_column("Enabled")

    for template in sorted(SUGGESTION_LIBRARY, key=lambda t: t.id):
        severity = template.base_severity
        style = _severity_style(severity)
        table.add_row(
            template.id,
            template.kind.value,
            f"[{style}]{severity.value.upper()}[/{style}]",
            ", ".join(template.trigger_nodes),
            f"{template.min_impact:.2f}",
            "yes" if config.is_rule_enabled(template.id) else "[dim]no[/dim]",
        )

    console.print(table)


if __name__ == "__main__":
    app()
