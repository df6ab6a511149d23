import functools
import itertools
import threading

import pytest

from p2pcast.services import Coordinator
from p2pcast.streaming import MediaBridge


class RecordingTransport:
    """Stands in for Socket.IO: records emits and runs disconnects inline."""

    def __init__(self):
        self.sent = []
        self.closed = []
        self.on_close = None

    def emit(self, sid, event, payload=None):
        self.sent.append((sid, event, payload))

    def close(self, sid):
        self.closed.append(sid)
        if self.on_close is not None:
            self.on_close(sid)

    def events_for(self, sid):
        return [(event, payload) for target, event, payload in self.sent if target == sid]

    def clear(self):
        self.sent.clear()
        self.closed.clear()


class ManualTasks:
    """Background-task runner that only runs a task when the test asks."""

    def __init__(self):
        self.pending = []

    def __call__(self, fn, *args):
        self.pending.append((fn, args))

    def names(self):
        return [fn.__name__ for fn, _ in self.pending]

    def take(self, name):
        """Remove the first pending task called ``name`` and return it unrun."""
        for i, (fn, args) in enumerate(self.pending):
            if fn.__name__ == name:
                del self.pending[i]
                return functools.partial(fn, *args)
        raise AssertionError(f"no pending task {name!r}; pending: {self.names()}")

    def run(self, name):
        return self.take(name)()


class FakeStdin:
    def __init__(self):
        self.chunks = []
        self.closed = False
        self.broken = False
        # set gate to an Event to make write() hang like a full pipe
        self.gate = None
        self.entered = threading.Event()

    def write(self, data):
        if self.closed:
            raise ValueError("write to closed file")
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.broken:
            raise BrokenPipeError(32, "Broken pipe")
        self.chunks.append(bytes(data))

    def flush(self):
        pass

    def close(self):
        self.closed = True


_pids = itertools.count(1000)


class FakeProcess:
    def __init__(self):
        self.pid = next(_pids)
        self.stdin = FakeStdin()
        self.stderr = None
        self.returncode = None
        self.terminated = False
        self.killed = False
        self.ignore_terminate = False

    def poll(self):
        return self.returncode

    def terminate(self):
        self.terminated = True
        if not self.ignore_terminate:
            self.returncode = -15

    def kill(self):
        self.killed = True
        self.returncode = -9

    def wait(self):
        return self.returncode

    def exit(self, code):
        self.returncode = code


class FakeSpawner:
    def __init__(self):
        self.commands = []
        self.processes = []
        self.error = None

    def __call__(self, command):
        self.commands.append(command)
        if self.error is not None:
            raise self.error
        process = FakeProcess()
        self.processes.append(process)
        return process


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def tasks():
    return ManualTasks()


@pytest.fixture
def spawner():
    return FakeSpawner()


@pytest.fixture
def bridge(spawner, tasks):
    return MediaBridge(
        command=["ffmpeg", "-i", "pipe:0", "rtmp://example/live"],
        spawn=spawner,
        start_background_task=tasks,
        sleep=lambda seconds: None,
        start_timeout=1.0,
        stop_timeout=1.0,
    )


@pytest.fixture
def coordinator(transport, bridge):
    coord = Coordinator(transport, bridge)
    transport.on_close = coord.disconnect
    return coord
