"""Shell-command executor used by the CLI to deploy a single contract."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional, Tuple

from .models import BatchItem, ErrorKind, ExecutionOutcome

logger = logging.getLogger(__name__)

_CONTRACT_ID_PATTERN = re.compile(r"\b(C[A-Z2-7]{55})\b")
_TRANSACTION_HASH_PATTERN = re.compile(r"\b([0-9a-f]{64})\b")
_MAX_ERROR_CHARS = 2000

_NETWORK_MARKERS = ("econnrefused", "econnreset", "connection refused", "connection reset", "network", "502", "503", "504")
_TIMEOUT_MARKERS = ("etimedout", "timed out", "timeout")
_RATE_LIMIT_MARKERS = ("429", "too many requests", "rate limit")
_VALIDATION_MARKERS = ("400", "invalid", "malformed", "not found", "no such file")
_EXECUTION_MARKERS = ("401", "403", "unauthorized", "forbidden")


def classify_error_message(message: str) -> ErrorKind:
    lowered = message.lower()
    if any(marker in lowered for marker in _RATE_LIMIT_MARKERS):
        return ErrorKind.RATE_LIMIT
    if any(marker in lowered for marker in _TIMEOUT_MARKERS):
        return ErrorKind.TIMEOUT
    if any(marker in lowered for marker in _NETWORK_MARKERS):
        return ErrorKind.NETWORK
    if any(marker in lowered for marker in _EXECUTION_MARKERS):
        return ErrorKind.EXECUTION
    if any(marker in lowered for marker in _VALIDATION_MARKERS):
        return ErrorKind.VALIDATION
    return ErrorKind.UNKNOWN


def extract_deploy_identifiers(output: str) -> Tuple[Optional[str], Optional[str]]:
    """Last contract id and transaction hash printed by a deploy command."""
    contract_ids = _CONTRACT_ID_PATTERN.findall(output)
    hashes = _TRANSACTION_HASH_PATTERN.findall(output)
    return (contract_ids[-1] if contract_ids else None, hashes[-1] if hashes else None)


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()


class ShellCommandExecutor:
    """Runs ``item.command`` in the contract directory.

    A zero exit status is a success; anything else is a failure classified
    from the command's output. ``timeout_seconds`` bounds each invocation.
    """

    def __init__(self, default_command: Optional[str] = None, timeout_seconds: Optional[float] = None):
        self.default_command = default_command
        self.timeout_seconds = timeout_seconds

    async def __call__(self, item: BatchItem) -> ExecutionOutcome:
        command = item.command or self.default_command
        if not command:
            return ExecutionOutcome.failure(f"No deploy command configured for '{item.id}'", ErrorKind.VALIDATION)

        logger.debug("Running deploy command for %s: %s", item.id, command)
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                cwd=item.contract_dir or None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            return ExecutionOutcome.failure(f"Failed to start deploy command: {exc}", ErrorKind.VALIDATION)

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            await _kill(process)
            return ExecutionOutcome.failure(
                f"Deploy command timed out after {self.timeout_seconds}s", ErrorKind.TIMEOUT
            )
        except asyncio.CancelledError:
            logger.info("Deploy of %s interrupted; killing pid %s", item.id, process.pid)
            await _kill(process)
            raise

        out_text = stdout.decode("utf-8", errors="replace")
        err_text = stderr.decode("utf-8", errors="replace")

        if process.returncode != 0:
            detail = (err_text.strip() or out_text.strip() or f"exit status {process.returncode}")
            detail = detail[-_MAX_ERROR_CHARS:]
            return ExecutionOutcome.failure(detail, classify_error_message(detail))

        contract_id, transaction_hash = extract_deploy_identifiers(out_text + "\n" + err_text)
        return ExecutionOutcome(success=True, contract_id=contract_id, transaction_hash=transaction_hash)
