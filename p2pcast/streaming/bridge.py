"""RTMP bridge: feeds the broadcaster's recorded stream into ffmpeg.

The bridge is a small state machine around one ffmpeg subprocess::

    Idle -> Starting -> Streaming -> Stopping -> Idle
               |            \\-> Failed -> Stopping
               |-> Stopping (stop while starting)
               \\-> Failed -> Idle

A process leaves through Stopping and the bridge only returns to Idle once
that process has exited, so a new start never overlaps an old one.

Spawning, waiting for exit, the start/stop timeouts and the stdin writes
run as background tasks. Their results come back through
:attr:`MediaBridge.lock` and are tagged with a generation number, so a
signal from a process that is no longer current is ignored.
"""
from __future__ import annotations

import enum
import logging
import subprocess
import threading
import time
from collections import deque
from typing import Callable, List, Mapping, Optional

from ..errors import BridgeError, BridgeSpawnFailure, BridgeWriteFailure

logger = logging.getLogger(__name__)

MAX_PENDING_CHUNKS = 256


class BridgeState(enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    STREAMING = "streaming"
    STOPPING = "stopping"
    FAILED = "failed"


def build_ffmpeg_command(config: Mapping) -> List[str]:
    """Return the ffmpeg argv for re-encoding stdin to the RTMP target."""
    return [
        config.get("FFMPEG_BIN", "ffmpeg"),
        "-f", config.get("INPUT_FORMAT", "webm"),
        "-i", "pipe:0",
        "-c:v", config.get("VIDEO_CODEC", "libx264"),
        "-c:a", config.get("AUDIO_CODEC", "aac"),
        "-preset", "veryfast",
        "-tune", "zerolatency",
        "-b:v", config.get("VIDEO_BITRATE", "1000k"),
        "-b:a", config.get("AUDIO_BITRATE", "128k"),
        "-f", "flv",
        config.get("RTMP_URL", "rtmp://localhost:1935/live/stream"),
    ]


def spawn_process(command: List[str], popen=subprocess.Popen):
    return popen(
        command,
        stdin=subprocess.PIPE,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
    )


def _start_thread(target, *args):
    thread = threading.Thread(target=target, args=args, daemon=True)
    thread.start()
    return thread


def _signal(process, method: str) -> None:
    if process.poll() is not None:
        return
    try:
        getattr(process, method)()
    except ProcessLookupError:
        logger.debug("ffmpeg already gone before %s", method)


class MediaBridge:
    def __init__(
        self,
        command: Optional[List[str]] = None,
        spawn: Optional[Callable] = None,
        start_background_task: Optional[Callable] = None,
        sleep: Optional[Callable[[float], None]] = None,
        start_timeout: float = 10.0,
        stop_timeout: float = 5.0,
        max_pending: int = MAX_PENDING_CHUNKS,
    ) -> None:
        self.command = command or build_ffmpeg_command({})
        self.start_timeout = start_timeout
        self.stop_timeout = stop_timeout
        self.max_pending = max_pending
        self._spawn = spawn or spawn_process
        self._start_task = start_background_task or _start_thread
        self._sleep = sleep or time.sleep

        self.lock = threading.RLock()
        self._state = BridgeState.IDLE
        self._process = None
        self._generation = 0
        self.last_error: Optional[str] = None
        self._stderr_tail: deque = deque(maxlen=20)
        # chunks accepted for the current process, written by a single _pump task
        self._pending: deque = deque()
        self._pumping = False

    @property
    def state(self) -> BridgeState:
        return self._state

    @property
    def is_streaming(self) -> bool:
        return self._state is BridgeState.STREAMING

    @property
    def process(self):
        return self._process

    # -- requests -----------------------------------------------------------

    def start(self) -> bool:
        """Request a new ffmpeg run. No-op unless the bridge is idle."""
        with self.lock:
            if self._state in (BridgeState.STARTING, BridgeState.STREAMING):
                logger.debug("RTMP bridge already %s", self._state.value)
                return False
            if self._state is BridgeState.STOPPING:
                logger.info("RTMP bridge still stopping; start ignored")
                return False

            self._generation += 1
            generation = self._generation
            self._state = BridgeState.STARTING
            self.last_error = None
            self._stderr_tail.clear()
            logger.info("Starting RTMP stream: %s", " ".join(self.command))
            self._start_task(self._run_spawn, generation)
            self._start_task(self._expire_start, generation)
            return True

    def stop(self) -> bool:
        """Request a graceful stop. No-op when idle or already stopping."""
        with self.lock:
            if self._state is BridgeState.STARTING:
                # the spawn is still in flight; _on_started reaps what it returns
                self._state = BridgeState.STOPPING
                logger.info("Cancelling pending RTMP stream start")
                return True
            if self._state is not BridgeState.STREAMING:
                return False

            logger.info("Stopping RTMP stream (pid %s)", getattr(self._process, "pid", None))
            self._retire(self._process)
            return True

    def write(self, chunk: bytes) -> bool:
        """Queue ``chunk`` for ffmpeg's stdin; dropped unless streaming.

        Never touches the pipe itself, so a stalled ffmpeg cannot block the
        caller. Returns ``True`` when the chunk was queued.
        """
        with self.lock:
            if self._state is not BridgeState.STREAMING:
                logger.debug("Dropping %d bytes; RTMP bridge is %s", len(chunk), self._state.value)
                return False
            if len(self._pending) >= self.max_pending:
                logger.warning("FFmpeg is not keeping up; dropping %d bytes", len(chunk))
                return False
            self._pending.append(chunk)
            if not self._pumping:
                self._pumping = True
                self._start_task(self._pump, self._generation, self._process)
            return True

    # -- completion signals -------------------------------------------------

    def _run_spawn(self, generation: int) -> None:
        try:
            process = self._spawn(self.command)
        except (OSError, ValueError) as exc:
            self._on_spawn_error(generation, BridgeSpawnFailure(f"could not start ffmpeg: {exc}"))
            return
        self._on_started(generation, process)

    def _on_started(self, generation: int, process) -> None:
        streaming = False
        with self.lock:
            if generation != self._generation:
                logger.info("Discarding ffmpeg from an expired start (pid %s)", getattr(process, "pid", None))
                self._close_stdin(process)
                _signal(process, "terminate")
            elif self._state is BridgeState.STOPPING:
                # stop() arrived while spawning; stay Stopping until this exits
                logger.info("Stopping ffmpeg from a cancelled start (pid %s)", getattr(process, "pid", None))
                self._process = process
                self._retire(process)
            else:
                self._process = process
                self._state = BridgeState.STREAMING
                streaming = True
                logger.info("FFmpeg started (pid %s)", getattr(process, "pid", None))
        if streaming and process.stderr is not None:
            self._start_task(self._drain_stderr, process)
        self._start_task(self._watch, generation, process)

    def _on_spawn_error(self, generation: int, error: BridgeError) -> None:
        with self.lock:
            if generation != self._generation:
                logger.debug("Ignoring spawn error from stale start: %s", error)
                return
            self._fail(error)
            self._state = BridgeState.IDLE

    def _on_write_error(self, generation: int, process, error: BridgeError) -> None:
        with self.lock:
            if generation != self._generation or self._state is not BridgeState.STREAMING:
                logger.debug("Ignoring write error after stop: %s", error)
                return
            self._fail(error)
            self._retire(process)

    def _on_exit(self, generation: int, returncode) -> None:
        with self.lock:
            if generation != self._generation:
                logger.debug("Stale ffmpeg exited with code %s", returncode)
                return
            if self._state is BridgeState.STOPPING or returncode == 0:
                logger.info("FFmpeg process ended (code %s)", returncode)
            else:
                self.last_error = f"ffmpeg exited with code {returncode}"
                logger.error("FFmpeg error: %s", self.last_error)
                if self._stderr_tail:
                    logger.error("FFmpeg stderr:\n%s", "\n".join(self._stderr_tail))
            self._drop_pending()
            self._process = None
            self._state = BridgeState.IDLE

    def _expire_start(self, generation: int) -> None:
        self._sleep(self.start_timeout)
        with self.lock:
            if generation != self._generation or self._process is not None:
                return
            if self._state is BridgeState.STARTING:
                self._generation += 1
                self._fail(BridgeSpawnFailure(f"ffmpeg did not start within {self.start_timeout}s"))
                self._state = BridgeState.IDLE
            elif self._state is BridgeState.STOPPING:
                # cancelled and the spawn never came back
                self._generation += 1
                logger.warning("FFmpeg spawn still pending after %ss; giving up on it", self.start_timeout)
                self._state = BridgeState.IDLE

    def _expire_stop(self, generation: int, process) -> None:
        self._sleep(self.stop_timeout)
        with self.lock:
            if generation != self._generation or self._state is not BridgeState.STOPPING:
                return
            logger.warning("FFmpeg ignored SIGTERM for %ss; killing", self.stop_timeout)
            _signal(process, "kill")

    def _watch(self, generation: int, process) -> None:
        returncode = process.wait()
        self._close_stdin(process)
        self._on_exit(generation, returncode)

    def _pump(self, generation: int, process) -> None:
        """Write queued chunks to ``process`` in order, outside every lock."""
        while True:
            with self.lock:
                if generation != self._generation or self._state is not BridgeState.STREAMING:
                    break
                if not self._pending:
                    self._pumping = False
                    return
                chunk = self._pending.popleft()
            try:
                process.stdin.write(chunk)
                process.stdin.flush()
            except (OSError, ValueError) as exc:
                self._on_write_error(generation, process, BridgeWriteFailure(f"writing to ffmpeg failed: {exc}"))
                return
        # stopped while writing; this task is the only writer of the pipe
        self._close_stdin(process)

    def _drain_stderr(self, process) -> None:
        for line in process.stderr:
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                self._stderr_tail.append(text)
                logger.debug("ffmpeg: %s", text)

    # -- helpers ------------------------------------------------------------

    def _retire(self, process) -> None:
        """Move to Stopping and terminate ``process``. Caller holds the lock."""
        self._state = BridgeState.STOPPING
        # a running _pump closes stdin itself once its write returns
        if not self._pumping:
            self._close_stdin(process)
        self._drop_pending()
        _signal(process, "terminate")
        self._start_task(self._expire_stop, self._generation, process)

    def _drop_pending(self) -> None:
        if self._pending:
            logger.debug("Discarding %d queued chunks", len(self._pending))
        self._pending.clear()
        self._pumping = False

    def _fail(self, error: BridgeError) -> None:
        self._state = BridgeState.FAILED
        self.last_error = str(error)
        logger.error("RTMP bridge failed: %s", error)
        self._drop_pending()

    @staticmethod
    def _close_stdin(process) -> None:
        if process.stdin is None or process.stdin.closed:
            return
        try:
            process.stdin.close()
        except OSError as exc:
            logger.debug("Closing ffmpeg stdin: %s", exc)
