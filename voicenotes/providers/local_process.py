"""Subprocess execution for providers that run a local binary or interpreter."""

import asyncio
from typing import List, Optional, Tuple
import logging

from voicenotes.core.errors import ProviderError

logger = logging.getLogger(__name__)


async def run_process(
    cmd: List[str],
    provider_id: str,
    timeout_seconds: Optional[float],
    operation: str,
    stdin_data: Optional[bytes] = None
) -> Tuple[bytes, bytes]:
    """
    Run a local command and collect its output.

    The process is killed if it outlives ``timeout_seconds``.

    Args:
        cmd: Executable and arguments
        provider_id: Provider id for errors
        timeout_seconds: Time bound (None disables it)
        operation: Operation name for errors
        stdin_data: Bytes fed on stdin

    Returns:
        (stdout, stderr)

    Raises:
        ProviderError: PROVIDER_UNAVAILABLE if the executable is missing,
            CONNECTION_TIMEOUT on timeout, PROCESSING_FAILED on a non-zero exit
    """
    logger.debug(f"[{provider_id}] Running: {' '.join(cmd)}")
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE if stdin_data is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as e:
        raise ProviderError.provider_unavailable(
            provider_id, f"Cannot execute {cmd[0]}: {e}. Check the configured path."
        ) from e

    try:
        if timeout_seconds and timeout_seconds > 0:
            stdout, stderr = await asyncio.wait_for(proc.communicate(input=stdin_data), timeout=timeout_seconds)
        else:
            stdout, stderr = await proc.communicate(input=stdin_data)
    except asyncio.TimeoutError:
        await _kill(proc, provider_id)
        raise ProviderError.connection_timeout(provider_id, timeout_seconds, operation)
    except asyncio.CancelledError:
        await _kill(proc, provider_id)
        raise

    if proc.returncode != 0:
        tail = stderr.decode(errors="replace").strip()[-500:]
        logger.warning(f"[{provider_id}] {cmd[0]} exited with {proc.returncode}: {tail}")
        raise ProviderError.processing_failed(
            operation,
            provider_id=provider_id,
            cause=RuntimeError(f"exit code {proc.returncode}: {tail}"),
            metadata={"exit_code": proc.returncode, "stderr": tail},
        )

    return stdout, stderr


async def _kill(proc: asyncio.subprocess.Process, provider_id: str):
    if proc.returncode is not None:
        return
    logger.warning(f"[{provider_id}] Killing process {proc.pid}")
    try:
        proc.kill()
    except ProcessLookupError:
        return
    await proc.wait()
