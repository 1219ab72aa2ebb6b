"""
Async client for the speech worker subprocess.

Spawns the worker on demand, writes one request per line to its stdin and
resolves pending futures from the response lines on its stdout. If the
worker exits, every pending call fails with WorkerCrashedError and the next
call starts a fresh worker.
"""

import asyncio
import sys
from typing import Any, Dict, List, Optional, Sequence

from dictation.core.worker.protocol import WorkerMethod, WorkerRequest, WorkerResponse
from dictation.errors import ProtocolError, WorkerCrashedError, WorkerError
from dictation.logging import get_logger

logger = get_logger("worker")

# Responses are small, but the limit also bounds stderr lines
STREAM_LIMIT = 16 * 1024 * 1024


def default_worker_command() -> List[str]:
    return [sys.executable, "-m", "dictation.core.worker"]


class WorkerClient:
    """Request/response client over a worker process's stdio."""

    def __init__(
        self,
        command: Optional[Sequence[str]] = None,
        env: Optional[Dict[str, str]] = None,
    ):
        self.command = list(command) if command else default_worker_command()
        self.env = env
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._pending: Dict[int, asyncio.Future] = {}
        self._next_id = 0
        self._reader_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._start_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def start(self) -> None:
        """Start the worker process if it is not running."""
        async with self._start_lock:
            if self.is_running:
                return

            logger.info(f"Starting worker process: {' '.join(self.command)}")
            self._proc = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.env,
                limit=STREAM_LIMIT,
            )
            self._reader_task = asyncio.create_task(self._read_responses(self._proc))
            self._stderr_task = asyncio.create_task(self._read_stderr(self._proc))

    async def call(self, method: WorkerMethod, *args: Any) -> Any:
        """
        Invoke a worker method and wait for its result.

        Raises:
            WorkerError: If the worker answered with an error
            WorkerCrashedError: If the worker exited before answering
        """
        if not self.is_running:
            await self.start()
        assert self._proc is not None and self._proc.stdin is not None

        request_id = self._next_id
        self._next_id += 1
        request = WorkerRequest(id=request_id, method=method, args=list(args))

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            self._proc.stdin.write(request.encode())
            await self._proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            self._pending.pop(request_id, None)
            raise WorkerCrashedError(f"Worker stdin closed: {e}") from e

        try:
            return await future
        finally:
            self._pending.pop(request_id, None)

    async def _read_responses(self, proc: asyncio.subprocess.Process) -> None:
        assert proc.stdout is not None
        while True:
            line = await proc.stdout.readline()
            if not line:
                break
            if not line.strip():
                continue
            try:
                response = WorkerResponse.decode(line)
            except ProtocolError as e:
                logger.warning(f"Ignoring malformed worker output: {e}")
                continue

            future = self._pending.get(response.id)
            if future is None or future.done():
                continue
            if response.error is not None:
                future.set_exception(WorkerError(response.error))
            else:
                future.set_result(response.result)

        code = await proc.wait()
        logger.info(f"Worker process exited: code={code}")
        if proc is self._proc:
            self._proc = None
        self._reject_all(WorkerCrashedError(f"Worker exited with code {code}"))

    async def _read_stderr(self, proc: asyncio.subprocess.Process) -> None:
        assert proc.stderr is not None
        while True:
            line = await proc.stderr.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                logger.debug(f"[worker] {text}")

    def _reject_all(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

    async def stop(self) -> None:
        """Terminate the worker process."""
        proc = self._proc
        self._proc = None
        if proc is None:
            return

        if proc.returncode is None:
            proc.terminate()
            try:
                await asyncio.wait_for(proc.wait(), timeout=5)
            except asyncio.TimeoutError:
                logger.warning("Worker did not exit after terminate, killing")
                proc.kill()
                await proc.wait()

        for task in (self._reader_task, self._stderr_task):
            if task is not None:
                await task
        self._reader_task = None
        self._stderr_task = None
        self._reject_all(WorkerCrashedError("Worker stopped"))
        logger.debug("Worker terminated")
