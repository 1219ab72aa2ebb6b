"""
Resilient JSON-RPC bridge to the native OS helper process.

The helper supplies accessibility context, keyboard events and system-audio
control. Requests and responses are newline-delimited JSON on its stdio;
unsolicited key events arrive on the same stdout stream. When the helper
crashes it is restarted a bounded number of times.
"""

import asyncio
import json
import shutil
import signal
import sys
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

from pydantic import ValidationError

from dictation.collaborators import TelemetrySink
from dictation.errors import (
    HelperCrashedError,
    HelperError,
    HelperUnavailableError,
    ProtocolError,
    RpcError,
    RpcTimeoutError,
)
from dictation.helper.permissions import PermissionCache
from dictation.helper.protocol import (
    AccessibilityContext,
    AccessibilityContextResult,
    AccessibilityStatus,
    HelperEvent,
    HelperMethod,
    PermissionRequestResult,
    RpcRequest,
    RpcResponse,
    SuccessResult,
    helper_event_adapter,
    method_log_level,
)
from dictation.logging import get_logger
from dictation.telemetry import NativeHelperCrashed

logger = get_logger("native-bridge")

STREAM_LIMIT = 16 * 1024 * 1024


def default_helper_name() -> str:
    return "WindowsHelper.exe" if sys.platform == "win32" else "SwiftHelper"


class BridgeListener(Protocol):
    """Observer for helper lifecycle and key events."""

    def on_ready(self) -> None: ...

    def on_helper_event(self, event: HelperEvent) -> None: ...

    def on_error(self, error: Exception) -> None: ...

    def on_close(self, code: Optional[int], signal_name: Optional[str]) -> None: ...


class NativeHelperBridge:
    """
    Owns the helper subprocess and multiplexes RPC calls over its stdio.

    Calls made while the helper is down fail immediately with
    HelperUnavailableError rather than waiting for the timeout.
    """

    def __init__(
        self,
        helper_command: Sequence[str],
        telemetry: Optional[TelemetrySink] = None,
        *,
        timeout_ms: int = 5000,
        max_restarts: int = 3,
        restart_delay_ms: int = 1000,
        restart_reset_ms: int = 30000,
        permission_ttl_seconds: float = 10.0,
        helper_name: Optional[str] = None,
        listeners: Optional[List[BridgeListener]] = None,
    ):
        if not helper_command:
            raise ValueError("helper_command must not be empty")
        self.command = list(helper_command)
        self.telemetry = telemetry
        self.timeout_ms = timeout_ms
        self.max_restarts = max_restarts
        self.restart_delay_ms = restart_delay_ms
        self.restart_reset_ms = restart_reset_ms
        self.helper_name = helper_name or default_helper_name()
        self.permission_cache: PermissionCache[bool] = PermissionCache(
            ttl_seconds=permission_ttl_seconds
        )

        self._listeners: List[BridgeListener] = list(listeners or [])
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._pending: Dict[str, asyncio.Future] = {}
        self._exit_task: Optional[asyncio.Task] = None
        self._restart_task: Optional[asyncio.Task] = None
        self._stopping = False

        self._restart_count = 0
        self._last_restart_time: Optional[float] = None
        self._last_crash: Optional[Dict[str, Any]] = None
        self.stopped_permanently = False

        self._accessibility_context: Optional[AccessibilityContext] = None

    # -- listeners -------------------------------------------------------

    def add_listener(self, listener: BridgeListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: BridgeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, method: str, *args: Any) -> None:
        for listener in list(self._listeners):
            try:
                getattr(listener, method)(*args)
            except Exception:
                logger.exception(f"Bridge listener {method} failed")

    # -- process lifecycle -----------------------------------------------

    @property
    def restart_count(self) -> int:
        return self._restart_count

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def start(self) -> bool:
        """
        Spawn the helper process.

        Returns:
            True if the helper is running afterwards
        """
        if self.is_running():
            return True

        self._stopping = False
        executable = self.command[0]
        if shutil.which(executable) is None:
            message = f"{self.helper_name} executable not found or not executable: {executable}"
            logger.error(message)
            self._notify("on_error", HelperUnavailableError(message))
            return False

        logger.info(f"Spawning {self.helper_name}: {' '.join(self.command)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            logger.error(f"Failed to start {self.helper_name} process: {e}")
            self._notify("on_error", HelperUnavailableError(str(e)))
            return False

        self._proc = proc
        readers = [
            asyncio.create_task(self._read_stdout(proc)),
            asyncio.create_task(self._read_stderr(proc)),
        ]
        self._exit_task = asyncio.create_task(self._watch_exit(proc, readers))

        logger.info("Helper process started and listeners attached")
        self._notify("on_ready")
        return True

    async def _read_stdout(self, proc: asyncio.subprocess.Process) -> None:
        assert proc.stdout is not None
        while True:
            try:
                line = await proc.stdout.readline()
            except ValueError as e:
                logger.error(f"Oversized line from {self.helper_name}: {e}")
                continue
            if not line:
                break
            self._handle_line(line)

    async def _read_stderr(self, proc: asyncio.subprocess.Process) -> None:
        assert proc.stderr is not None
        while True:
            line = await proc.stderr.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                logger.warning(f"{self.helper_name} stderr output: {text}")

    def _handle_line(self, line: bytes) -> None:
        text = line.decode("utf-8", errors="replace").strip()
        if not text:
            return

        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            logger.error(f"Error parsing JSON from helper: {text[:200]}")
            self._notify(
                "on_error", ProtocolError(f"Error parsing JSON from helper: {text}")
            )
            return

        logger.debug(f"Received message from helper: {text[:200]}")

        try:
            response = RpcResponse.model_validate(message)
        except ValidationError:
            response = None
        if response is not None:
            future = self._pending.get(response.id)
            if future is None:
                # Late reply to a call that already timed out
                logger.debug(f"Ignoring response for unknown request id: {response.id}")
            elif not future.done():
                future.set_result(response)
            return

        try:
            event = helper_event_adapter.validate_python(message)
        except ValidationError:
            logger.warning(f"Received unknown message from helper: {text[:200]}")
            return
        self._notify("on_helper_event", event)

    async def _watch_exit(
        self, proc: asyncio.subprocess.Process, readers: List[asyncio.Task]
    ) -> None:
        code = await proc.wait()
        # Deliver whatever the helper wrote before it exited
        await asyncio.gather(*readers)

        intentional = proc is not self._proc
        if proc is self._proc:
            self._proc = None

        signal_name = None
        if code is not None and code < 0:
            try:
                signal_name = signal.Signals(-code).name
            except ValueError:
                signal_name = str(-code)
        exit_code = code if code is None or code >= 0 else None

        normal = intentional or code == 0 or signal_name == "SIGTERM"
        if normal:
            logger.info(f"{self.helper_name} process exited normally")
            self._reject_all(
                HelperUnavailableError(f"{self.helper_name} process exited")
            )
        else:
            logger.error(
                f"{self.helper_name} process crashed "
                f"(code={exit_code}, signal={signal_name})"
            )
            self._last_crash = {"code": exit_code, "signal": signal_name}
            self._reject_all(
                HelperCrashedError(
                    f"{self.helper_name} crashed (code={exit_code}, signal={signal_name})"
                )
            )

        self._notify("on_close", exit_code, signal_name)

        if not normal:
            self.attempt_restart()

    def _reject_all(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

    def attempt_restart(self) -> bool:
        """
        Schedule a restart after a crash, within the restart budget.

        The counter resets once the helper has stayed up longer than
        restart_reset_ms since the last restart.

        Returns:
            True if a restart was scheduled
        """
        now = time.monotonic()
        if (
            self._last_restart_time is None
            or (now - self._last_restart_time) * 1000 > self.restart_reset_ms
        ):
            self._restart_count = 0

        will_restart = self._restart_count < self.max_restarts
        crash = self._last_crash or {}

        if self.telemetry is not None:
            self.telemetry.record_metric(
                NativeHelperCrashed(
                    helper_name=self.helper_name,
                    platform=sys.platform,
                    exit_code=crash.get("code"),
                    signal=crash.get("signal"),
                    restart_attempt=self._restart_count + 1,
                    max_restarts=self.max_restarts,
                    will_restart=will_restart,
                )
            )

        if not will_restart:
            logger.error(
                f"{self.helper_name} crashed too many times, not restarting "
                f"(restarts: {self._restart_count}/{self.max_restarts})"
            )
            self.stopped_permanently = True
            self._notify(
                "on_error",
                HelperCrashedError(f"{self.helper_name} crashed too many times"),
            )
            return False

        self._restart_count += 1
        self._last_restart_time = now
        logger.info(
            f"Restarting {self.helper_name} in {self.restart_delay_ms}ms "
            f"(attempt {self._restart_count}/{self.max_restarts})"
        )
        self._restart_task = asyncio.create_task(self._restart_after_delay())
        return True

    async def _restart_after_delay(self) -> None:
        await asyncio.sleep(self.restart_delay_ms / 1000)
        if self._stopping:
            return
        await self.start()

    async def wait_for_restart(self) -> None:
        """Wait until a scheduled restart, if any, has run."""
        task = self._restart_task
        if task is not None and not task.done():
            await task

    async def stop(self) -> None:
        """Stop the helper intentionally; no restart follows."""
        self._stopping = True
        if self._restart_task is not None and not self._restart_task.done():
            self._restart_task.cancel()
        self._restart_task = None

        proc = self._proc
        self._proc = None
        if proc is None:
            return

        logger.info(f"Stopping {self.helper_name} process")
        if proc.returncode is None:
            proc.terminate()
            try:
                await asyncio.wait_for(proc.wait(), timeout=5)
            except asyncio.TimeoutError:
                logger.warning(f"{self.helper_name} did not exit after terminate, killing")
                proc.kill()
                await proc.wait()

        if self._exit_task is not None:
            await self._exit_task
        self._exit_task = None

    # -- RPC ---------------------------------------------------------------

    async def call(
        self,
        method: HelperMethod,
        params: Optional[Dict[str, Any]] = None,
        timeout_ms: Optional[int] = None,
    ) -> Any:
        """
        Send an RPC request and wait for its result.

        Args:
            method: Helper method to invoke
            params: Method parameters
            timeout_ms: Overrides the bridge's default timeout

        Returns:
            The ``result`` field of the response

        Raises:
            HelperUnavailableError: If the helper is not running
            HelperCrashedError: If the helper exited before answering
            RpcTimeoutError: If no response arrived in time
            RpcError: If the helper answered with an error
        """
        proc = self._proc
        if not self.is_running() or proc is None or proc.stdin is None:
            logger.warning(f"Cannot call {method.value}: helper not available")
            raise HelperUnavailableError(
                f"{self.helper_name} is not available for this operation"
            )

        request_id = str(uuid.uuid4())
        started = time.monotonic()
        started_at = datetime.now(timezone.utc).isoformat()
        request = RpcRequest(
            id=request_id, method=method, params=params if params is not None else {}
        )
        level = method_log_level(method)
        logger.log(level, f"Sending RPC request: {method.value} (id: {request_id})")

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            proc.stdin.write((request.model_dump_json() + "\n").encode("utf-8"))
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            self._pending.pop(request_id, None)
            logger.error(f"Error writing to helper stdin: {method.value} (id: {request_id})")
            raise HelperCrashedError(f"Failed to write to {self.helper_name}: {e}") from e

        timeout = self.timeout_ms if timeout_ms is None else timeout_ms
        try:
            response: RpcResponse = await asyncio.wait_for(future, timeout / 1000)
        except asyncio.TimeoutError as e:
            elapsed_ms = (time.monotonic() - started) * 1000
            logger.error(
                f"RPC call {method.value} (id: {request_id}) timed out after {timeout}ms"
            )
            raise RpcTimeoutError(
                method.value, request_id, timeout, elapsed_ms, started_at
            ) from e
        finally:
            self._pending.pop(request_id, None)

        if response.error is not None:
            raise RpcError(
                response.error.message,
                code=response.error.code,
                data=response.error.data,
            )

        duration_ms = (time.monotonic() - started) * 1000
        logger.log(
            level, f"RPC response received: {method.value} ({duration_ms:.0f}ms)"
        )
        return response.result

    # -- accessibility -----------------------------------------------------

    async def refresh_accessibility_context(self) -> Optional[AccessibilityContext]:
        """
        Fetch a fresh accessibility snapshot and cache it.

        Failures are logged and leave the previous snapshot in place.
        """
        try:
            result = await self.call(
                HelperMethod.GET_ACCESSIBILITY_CONTEXT, {"editableOnly": False}
            )
            parsed = AccessibilityContextResult.model_validate(result or {})
        except (HelperError, ValidationError) as e:
            logger.error(f"Failed to refresh accessibility context: {e}")
            return self._accessibility_context

        self._accessibility_context = parsed.context
        context = parsed.context
        logger.debug(
            "Accessibility context refreshed "
            f"(application: {context.application.name if context and context.application else None})"
        )
        return context

    def get_accessibility_context(self) -> Optional[AccessibilityContext]:
        return self._accessibility_context

    async def get_accessibility_status(self) -> AccessibilityStatus:
        result = await self.call(HelperMethod.GET_ACCESSIBILITY_STATUS, {})
        return AccessibilityStatus.model_validate(result)

    async def check_accessibility_permission(self) -> bool:
        """Whether accessibility permission is granted, cached for a few seconds."""

        async def check() -> bool:
            status = await self.get_accessibility_status()
            return status.has_permission

        return await self.permission_cache.get_or_refresh(check)

    async def request_accessibility_permission(self) -> PermissionRequestResult:
        result = await self.call(HelperMethod.REQUEST_ACCESSIBILITY_PERMISSION, {})
        self.permission_cache.invalidate()
        return PermissionRequestResult.model_validate(result)

    async def get_accessibility_tree_details(self, root_id: Optional[str] = None) -> Any:
        params = {"rootId": root_id} if root_id is not None else {}
        result = await self.call(HelperMethod.GET_ACCESSIBILITY_TREE_DETAILS, params)
        return (result or {}).get("tree")

    # -- actions -----------------------------------------------------------

    async def paste_text(self, text: str) -> SuccessResult:
        result = await self.call(HelperMethod.PASTE_TEXT, {"transcript": text})
        return SuccessResult.model_validate(result)

    async def mute_system_audio(self, play_sound: Optional[bool] = None) -> SuccessResult:
        params = {"playSound": play_sound} if play_sound is not None else {}
        result = await self.call(HelperMethod.MUTE_SYSTEM_AUDIO, params)
        return SuccessResult.model_validate(result)

    async def restore_system_audio(
        self, is_cancelled: Optional[bool] = None, play_sound: Optional[bool] = None
    ) -> SuccessResult:
        params: Dict[str, Any] = {}
        if is_cancelled is not None:
            params["isCancelled"] = is_cancelled
        if play_sound is not None:
            params["playSound"] = play_sound
        result = await self.call(HelperMethod.RESTORE_SYSTEM_AUDIO, params)
        return SuccessResult.model_validate(result)

    async def set_shortcuts(
        self, push_to_talk: List[str], toggle_recording: List[str]
    ) -> bool:
        """
        Sync the configured shortcuts so the helper can consume their keys.

        Returns:
            Whether the helper accepted them; failures are logged, not raised
        """
        try:
            result = await self.call(
                HelperMethod.SET_SHORTCUTS,
                {"pushToTalk": list(push_to_talk), "toggleRecording": list(toggle_recording)},
            )
            success = SuccessResult.model_validate(result).success
        except (HelperError, ValidationError) as e:
            logger.error(f"Failed to sync shortcuts to native helper: {e}")
            return False

        logger.info(
            f"Shortcuts synced to native helper (pushToTalk: {push_to_talk}, "
            f"toggleRecording: {toggle_recording}, success: {success})"
        )
        return success
