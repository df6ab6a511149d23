import io
import threading

from p2pcast.streaming import BridgeState, build_ffmpeg_command


def _streaming(bridge, tasks):
    assert bridge.start() is True
    tasks.run("_run_spawn")
    assert bridge.state is BridgeState.STREAMING
    return bridge.process


def test_build_ffmpeg_command_reads_stdin_and_targets_rtmp():
    command = build_ffmpeg_command({"RTMP_URL": "rtmp://media/live/x", "VIDEO_BITRATE": "2500k"})

    assert command[0] == "ffmpeg"
    assert command[command.index("-i") + 1] == "pipe:0"
    assert command[command.index("-b:v") + 1] == "2500k"
    assert command[-3:] == ["-f", "flv", "rtmp://media/live/x"]


def test_start_is_idempotent(bridge, spawner, tasks):
    assert bridge.start() is True
    assert bridge.start() is False
    assert tasks.names() == ["_run_spawn", "_expire_start"]

    tasks.run("_run_spawn")
    assert bridge.start() is False
    assert len(spawner.processes) == 1


def test_chunks_reach_ffmpeg_in_order(bridge, tasks):
    process = _streaming(bridge, tasks)
    chunks = [b"\x1aE\xdf\xa3", b"cluster-1", b"", b"cluster-2", bytes(range(256))]

    for chunk in chunks:
        if chunk:
            assert bridge.write(chunk) is True

    # one writer task drains the whole queue
    assert tasks.names().count("_pump") == 1
    assert process.stdin.chunks == []
    tasks.run("_pump")

    assert process.stdin.chunks == [c for c in chunks if c]
    assert bridge.write(b"next") is True
    tasks.run("_pump")
    assert process.stdin.chunks[-1] == b"next"


def test_chunks_dropped_unless_streaming(bridge, spawner, tasks):
    assert bridge.write(b"idle") is False
    bridge.start()
    assert bridge.write(b"starting") is False

    tasks.run("_run_spawn")
    assert spawner.processes[0].stdin.chunks == []


def test_stop_when_idle_does_nothing(bridge, spawner, tasks):
    assert bridge.stop() is False
    assert bridge.state is BridgeState.IDLE
    assert spawner.commands == []
    assert tasks.pending == []


def test_stop_terminates_then_exit_returns_to_idle(bridge, tasks):
    process = _streaming(bridge, tasks)

    assert bridge.stop() is True
    assert bridge.state is BridgeState.STOPPING
    assert process.stdin.closed
    assert process.terminated
    assert bridge.write(b"late") is False
    assert bridge.stop() is False

    tasks.run("_watch")
    assert bridge.state is BridgeState.IDLE
    assert bridge.process is None
    assert bridge.last_error is None


def test_start_while_stopping_is_ignored(bridge, spawner, tasks):
    _streaming(bridge, tasks)
    bridge.stop()

    assert bridge.start() is False
    tasks.run("_watch")
    assert bridge.start() is True
    tasks.run("_run_spawn")

    first, second = spawner.processes
    assert first.returncode is not None
    assert bridge.process is second


def test_stop_kills_process_that_ignores_sigterm(bridge, tasks):
    bridge.start()
    tasks.run("_run_spawn")
    process = bridge.process
    process.ignore_terminate = True

    bridge.stop()
    assert not process.killed
    tasks.run("_expire_stop")

    assert process.killed
    tasks.run("_watch")
    assert bridge.state is BridgeState.IDLE


def test_spawn_failure_returns_to_idle(bridge, spawner, tasks):
    spawner.error = FileNotFoundError(2, "No such file or directory", "ffmpeg")
    bridge.start()
    tasks.run("_run_spawn")

    assert bridge.state is BridgeState.IDLE
    assert "could not start ffmpeg" in bridge.last_error

    spawner.error = None
    assert bridge.start() is True


def test_start_timeout_discards_late_process(bridge, spawner, tasks):
    bridge.start()
    tasks.run("_expire_start")

    assert bridge.state is BridgeState.IDLE
    assert "did not start" in bridge.last_error

    tasks.run("_run_spawn")
    late = spawner.processes[0]
    assert late.terminated
    assert bridge.state is BridgeState.IDLE
    assert bridge.process is None


def test_unexpected_exit_is_recorded(bridge, tasks):
    process = _streaming(bridge, tasks)
    process.exit(1)

    tasks.run("_watch")

    assert bridge.state is BridgeState.IDLE
    assert bridge.last_error == "ffmpeg exited with code 1"


def test_stderr_is_drained(bridge, spawner, tasks):
    original = spawner.__call__

    def spawn_with_stderr(command):
        process = original(command)
        process.stderr = io.BytesIO(b"Input #0, matroska,webm\n\nrtmp://: I/O error\n")
        return process

    bridge._spawn = spawn_with_stderr
    bridge.start()
    tasks.run("_run_spawn")
    tasks.run("_drain_stderr")

    assert list(bridge._stderr_tail) == ["Input #0, matroska,webm", "rtmp://: I/O error"]


def test_stop_while_starting_waits_for_the_spawn(bridge, spawner, tasks):
    bridge.start()
    assert bridge.stop() is True
    assert bridge.state is BridgeState.STOPPING
    assert bridge.start() is False
    assert bridge.stop() is False

    tasks.run("_run_spawn")
    cancelled = spawner.processes[0]
    assert cancelled.terminated
    assert cancelled.stdin.closed
    assert bridge.state is BridgeState.STOPPING
    assert bridge.start() is False

    tasks.run("_watch")
    assert bridge.state is BridgeState.IDLE
    assert bridge.last_error is None

    assert bridge.start() is True
    tasks.run("_run_spawn")
    assert len(spawner.processes) == 2
    assert bridge.process is spawner.processes[1]


def test_restart_after_cancel_never_overlaps_processes(bridge, spawner, tasks):
    for _ in range(3):
        bridge.start()
        bridge.stop()
        bridge.start()
        tasks.run("_run_spawn")
        live = [p for p in spawner.processes if p.returncode is None]
        assert live == []
        tasks.run("_watch")

    assert bridge.state is BridgeState.IDLE
    assert len(spawner.processes) == 3


def test_stop_while_starting_with_failed_spawn(bridge, spawner, tasks):
    spawner.error = FileNotFoundError(2, "No such file or directory", "ffmpeg")
    bridge.start()
    bridge.stop()

    tasks.run("_run_spawn")

    assert bridge.state is BridgeState.IDLE
    assert "could not start ffmpeg" in bridge.last_error


def test_stop_while_starting_gives_up_on_a_hung_spawn(bridge, spawner, tasks):
    bridge.start()
    bridge.stop()

    tasks.run("_expire_start")
    assert bridge.state is BridgeState.IDLE

    tasks.run("_run_spawn")
    assert spawner.processes[0].terminated
    assert bridge.process is None


def test_write_failure_stops_without_raising(bridge, tasks):
    process = _streaming(bridge, tasks)
    process.stdin.broken = True

    assert bridge.write(b"chunk") is True
    tasks.run("_pump")

    assert bridge.state is BridgeState.STOPPING
    assert process.terminated
    assert "writing to ffmpeg failed" in bridge.last_error
    assert bridge.write(b"more") is False
    assert bridge.start() is False

    tasks.run("_watch")
    assert bridge.state is BridgeState.IDLE
    assert "writing to ffmpeg failed" in bridge.last_error
    assert bridge.start() is True


def test_stop_discards_queued_chunks(bridge, tasks):
    process = _streaming(bridge, tasks)
    bridge.write(b"one")
    bridge.write(b"two")

    bridge.stop()
    tasks.run("_pump")

    assert process.stdin.chunks == []
    assert process.stdin.closed


def test_queue_is_bounded(bridge, tasks):
    bridge.max_pending = 2
    process = _streaming(bridge, tasks)

    assert bridge.write(b"one") is True
    assert bridge.write(b"two") is True
    assert bridge.write(b"three") is False

    tasks.run("_pump")
    assert process.stdin.chunks == [b"one", b"two"]


def test_stalled_ffmpeg_does_not_block_the_bridge(bridge, tasks):
    process = _streaming(bridge, tasks)
    process.stdin.gate = threading.Event()
    bridge.write(b"stuck")
    writer = threading.Thread(target=tasks.take("_pump"), daemon=True)
    writer.start()
    try:
        assert process.stdin.entered.wait(timeout=2)
        results = []
        caller = threading.Thread(
            target=lambda: results.extend([bridge.write(b"queued"), bridge.stop(), bridge.write(b"late")]),
            daemon=True,
        )
        caller.start()
        caller.join(timeout=2)

        assert results == [True, True, False]
        assert bridge.state is BridgeState.STOPPING
        assert process.terminated
    finally:
        process.stdin.gate.set()
        writer.join(timeout=2)

    assert not writer.is_alive()
    assert process.stdin.chunks == [b"stuck"]
    assert process.stdin.closed
