"""
deploykit deploy command - run a batch deployment for a workspace
"""
import asyncio
import dataclasses
import logging
import signal
import sys
import uuid

import click
from rich.console import Console
from rich.table import Table

from deploykit.commands.plan import build_plan_table, print_validation_failure, print_warnings
from deploykit.runtime.execution import (
    BatchMode,
    BatchRequest,
    BatchRunResult,
    BatchScheduler,
    CancellationToken,
    CircuitBreaker,
    CircuitState,
    ItemStatus,
    RetryCoordinator,
    ShellCommandExecutor,
)
from deploykit.runtime.validation import WorkspaceValidationException, validate_and_plan_workspace_file
from deploykit.settings import RuntimeSettings

console = Console()
logger = logging.getLogger(__name__)

_STATUS_STYLES = {
    ItemStatus.RUNNING: "cyan",
    ItemStatus.SUCCEEDED: "green",
    ItemStatus.FAILED: "red",
    ItemStatus.SKIPPED: "yellow",
    ItemStatus.CANCELLED: "magenta",
}


def _print_progress(item, result):
    style = _STATUS_STYLES.get(result.status, "white")
    suffix = f" [dim]{result.error}[/dim]" if result.error and result.status is not ItemStatus.FAILED else ""
    console.print(f"[{style}]{result.status.value:>9}[/{style}] {item.name}{suffix}")


def build_results_table(result: BatchRunResult) -> Table:
    table = Table(title=f"Batch {result.batch_id} ({result.mode.value})")
    table.add_column("Contract")
    table.add_column("Status")
    table.add_column("Contract ID")
    table.add_column("Error")
    for item_result in result.results:
        style = _STATUS_STYLES.get(item_result.status, "white")
        table.add_row(
            item_result.id,
            f"[{style}]{item_result.status.value}[/{style}]",
            item_result.contract_id or "",
            item_result.error or "",
        )
    return table


def build_retry_table(coordinator: RetryCoordinator) -> Table:
    table = Table(title="Retry sessions")
    table.add_column("Session")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Last error")
    for session in coordinator.get_history():
        table.add_row(session.session_id, session.status.value, str(len(session.attempts)), session.last_error or "")
    return table


def build_retry_stats_table(coordinator: RetryCoordinator) -> Table:
    title = "Retry statistics"
    if coordinator.circuit_state is not None:
        title += f" (circuit {coordinator.circuit_state.value})"
    table = Table(title=title)
    table.add_column("Contract")
    table.add_column("Attempts", justify="right")
    table.add_column("Succeeded", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Backoff (s)", justify="right")
    table.add_column("Avg response (s)", justify="right")
    for name, stats in sorted(coordinator.get_all_retry_stats().items()):
        table.add_row(
            name,
            str(stats.total_attempts),
            str(stats.successful_attempts),
            str(stats.failed_attempts),
            f"{stats.total_delay_seconds:.2f}",
            f"{stats.average_response_seconds:.2f}",
        )
    return table


def install_interrupt_handler(loop, token: CancellationToken) -> bool:
    """First Ctrl+C cancels the batch; the handler then uninstalls itself so a second one aborts."""

    def on_interrupt():
        loop.remove_signal_handler(signal.SIGINT)
        token.cancel()
        console.print("[magenta]Cancelling: waiting for running deploys (Ctrl+C again to abort)[/magenta]")

    try:
        loop.add_signal_handler(signal.SIGINT, on_interrupt)
    except (NotImplementedError, RuntimeError):
        logger.debug("SIGINT handler not supported on this platform")
        return False
    return True


async def execute_batch(scheduler: BatchScheduler, request: BatchRequest) -> BatchRunResult:
    token = request.cancellation_token
    loop = asyncio.get_running_loop()
    installed = token is not None and install_interrupt_handler(loop, token)
    try:
        return await scheduler.run_batch(request)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def register_deploy_commands(cli_group):
    """Register the deploy command to the main CLI"""

    @cli_group.command()
    @click.argument("workspace_file", type=click.Path(exists=True, dir_okay=False))
    @click.option("--mode", type=click.Choice([mode.value for mode in BatchMode]), default=None,
                  help="Run contracts one at a time or concurrently")
    @click.option("--concurrency", type=click.IntRange(min=1), default=None,
                  help="Maximum deploys in flight in parallel mode")
    @click.option("--retry/--no-retry", default=True, help="Retry transient failures with backoff")
    @click.option("--circuit-breaker/--no-circuit-breaker", default=True,
                  help="Fail fast once repeated deploy failures open the circuit")
    @click.option("--max-attempts", type=click.IntRange(min=1), default=None, help="Attempts per contract")
    @click.option("--command", "default_command", default=None,
                  help="Deploy command for contracts that do not set one")
    @click.option("--timeout", type=click.FloatRange(min=0, min_open=True), default=None,
                  help="Seconds before a single deploy command is killed")
    @click.option("--batch-id", default=None, help="Identifier for this run (default: random)")
    @click.option("--dry-run", is_flag=True, help="Validate and show the deploy order without running anything")
    @click.pass_obj
    def deploy(settings, workspace_file, mode, concurrency, retry, circuit_breaker, max_attempts, default_command,
               timeout, batch_id, dry_run):
        """Deploy every contract in WORKSPACE_FILE in dependency order."""
        settings = settings or RuntimeSettings()
        try:
            report = validate_and_plan_workspace_file(workspace_file, base_retry_policy=settings.retry_policy)
        except WorkspaceValidationException as error:
            print_validation_failure(error)
            sys.exit(2)

        print_warnings(report)
        workspace = report.workspace

        if dry_run:
            console.print(build_plan_table(report))
            console.print(f"Dry run: {len(report.items)} contract(s) would be deployed")
            return

        batch_mode = BatchMode(mode or workspace.mode or settings.mode.value)
        request = BatchRequest(
            batch_id=batch_id or workspace.batch_id or uuid.uuid4().hex[:12],
            mode=batch_mode,
            items=report.items,
            concurrency=concurrency or workspace.concurrency or settings.concurrency,
            cancellation_token=CancellationToken(),
        )

        coordinator = None
        if retry:
            policy = report.retry_policy
            if max_attempts is not None:
                policy = dataclasses.replace(policy, max_attempts=max_attempts)
            breaker = CircuitBreaker() if circuit_breaker else None
            coordinator = RetryCoordinator(policy=policy, circuit_breaker=breaker)

        executor = ShellCommandExecutor(default_command=default_command, timeout_seconds=timeout)
        scheduler = BatchScheduler(executor, coordinator=coordinator)
        scheduler.on_item_change(_print_progress)

        console.print(
            f"Deploying {len(request.items)} contract(s) from {workspace_file} "
            f"[dim](batch {request.batch_id}, {batch_mode.value})[/dim]"
        )
        try:
            result = asyncio.run(execute_batch(scheduler, request))
        except KeyboardInterrupt:
            console.print("[red]Batch aborted; running deploy commands were killed[/red]")
            sys.exit(130)

        console.print(build_results_table(result))
        if coordinator is not None and (
            any(len(session.attempts) > 1 for session in coordinator.get_history())
            or coordinator.circuit_state not in (None, CircuitState.CLOSED)
        ):
            console.print(build_retry_table(coordinator))
            console.print(build_retry_stats_table(coordinator))

        if result.cancelled:
            console.print("[magenta]Batch cancelled[/magenta]")
            sys.exit(1)
        if result.count(ItemStatus.SUCCEEDED) != len(result.results):
            console.print("[red]Batch finished with failures[/red]")
            sys.exit(1)
        console.print(f"[green]✓[/green] All {len(result.results)} contract(s) deployed")
