"""
deploykit plan command - preview the deploy order of a workspace
"""
import sys
from itertools import islice

import click
from rich.console import Console
from rich.table import Table

from deploykit.runtime.validation import (
    ValidationReport,
    WorkspaceValidationException,
    validate_and_plan_workspace_file,
)

console = Console()


def print_validation_failure(error: WorkspaceValidationException):
    """Render validation diagnostics, errors first"""
    console.print("[red]Workspace validation failed[/red]")
    for issue in error.diagnostics:
        colour = "red" if issue.severity == "error" else "yellow"
        scope = f" [dim]({issue.contract})[/dim]" if issue.contract else ""
        console.print(f"  [{colour}]{issue.severity}[/{colour}] {issue.message}{scope}")
        if issue.hint:
            console.print(f"    [dim]hint: {issue.hint}[/dim]")


def print_warnings(report: ValidationReport):
    for issue in report.warnings:
        scope = f" ({issue.contract})" if issue.contract else ""
        console.print(f"[yellow]⚠[/yellow]  {issue.message}{scope}")


def build_plan_table(report: ValidationReport) -> Table:
    table = Table(title="Deploy waves")
    table.add_column("Wave", justify="right")
    table.add_column("Contract")
    table.add_column("Depends on")

    # report.items follows graph.order, which is the waves laid end to end
    items = iter(report.items)
    for index, level in enumerate(report.graph.levels):
        for item in islice(items, len(level)):
            table.add_row(str(index), item.name, ", ".join(item.depends_on) or "-")
    return table


def register_plan_commands(cli_group):
    """Register the plan command to the main CLI"""

    @cli_group.command()
    @click.argument("workspace_file", type=click.Path(exists=True, dir_okay=False))
    def plan(workspace_file):
        """Validate WORKSPACE_FILE and show its deploy waves."""
        try:
            report = validate_and_plan_workspace_file(workspace_file)
        except WorkspaceValidationException as error:
            print_validation_failure(error)
            sys.exit(2)

        print_warnings(report)
        console.print(build_plan_table(report))
        console.print(
            f"[green]✓[/green] {len(report.items)} contract(s) in {len(report.graph.levels)} wave(s)"
        )
