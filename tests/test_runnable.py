# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import os
import signal
import sys

from fabric_infra.runnable import Buffer, Command, ExitError, LocalProcess

LONG_RUNNING = """
import signal, sys, time
signal.signal(signal.SIGTERM, lambda *_: sys.exit(0))
print("booting", flush=True)
print("listening on 7051", file=sys.stderr, flush=True)
while True:
    time.sleep(0.05)
"""


def test_buffer_detect_consumes_up_to_match():
    b = Buffer("test")
    b.write(b"balance: 100\nbalance: 90\n")
    assert b.detect(r"\d+").group(0) == b"100"
    assert b.unread() == b"\nbalance: 90\n"
    assert b.detect("100") is None
    assert b.detect("90") is not None
    assert b.contents() == b"balance: 100\nbalance: 90\n"


def test_buffer_accepts_bytes_pattern():
    b = Buffer()
    b.write(b"status:200")
    assert b.detect(rb"status:\d+") is not None
    assert b.unread() == b""


def test_command_success_captures_both_streams(tmp_path):
    cmd = Command(
        "echo",
        sys.executable,
        ["-c", "import sys; print('out'); print('err', file=sys.stderr)"],
        root=str(tmp_path),
    )
    handle = cmd.start()
    assert handle.wait(10)
    assert handle.is_ready()
    assert handle.error is None
    assert cmd.buffer().contents() == b"out\n"
    assert cmd.err().contents() == b"err\n"
    assert (tmp_path / "out").read_bytes() == b"out\n"
    assert (tmp_path / "err").read_bytes() == b"err\n"


def test_command_non_zero_exit_is_reported_on_termination():
    handle = Command("fail", sys.executable, ["-c", "import sys; sys.exit(3)"]).start()
    assert handle.wait(10)
    assert isinstance(handle.error, ExitError)
    assert handle.error.returncode == 3


def test_spawn_failure_terminates_handle_without_raising(tmp_path):
    missing = str(tmp_path / "no-such-binary")
    proc = LocalProcess("missing", missing)
    handle = proc.start()
    assert handle.is_exited()
    assert not handle.is_ready()
    assert isinstance(handle.error, OSError)
    assert proc.buffer().closed()


def test_long_lived_process_is_ready_on_pattern_and_stops_on_sigterm():
    proc = LocalProcess(
        "node", sys.executable, ["-c", LONG_RUNNING], ready_pattern=r"listening on \d+"
    )
    handle = proc.start()
    try:
        assert handle.wait_ready(10)
        assert not handle.is_exited()
        assert b"booting" in proc.buffer().contents()
    finally:
        handle.signal(signal.SIGTERM)
    assert handle.wait(10)
    assert handle.error is None


def test_process_exiting_before_ready_pattern_is_never_ready():
    proc = LocalProcess(
        "early-exit",
        sys.executable,
        ["-c", "print('nothing to see')"],
        ready_pattern="never printed",
    )
    handle = proc.start()
    assert handle.wait(10)
    assert not handle.is_ready()
    assert handle.error is None


def test_signal_after_exit_is_a_no_op():
    handle = Command("true", sys.executable, ["-c", "pass"]).start()
    assert handle.wait(10)
    handle.signal(signal.SIGTERM)
    handle.stop()


def test_extra_environment_is_merged(monkeypatch):
    monkeypatch.setenv("FROM_PARENT", "parent")
    cmd = Command(
        "env",
        sys.executable,
        ["-c", "import os; print(os.environ['FROM_PARENT'], os.environ['EXTRA'])"],
        env={"EXTRA": "extra"},
    )
    handle = cmd.start()
    assert handle.wait(10)
    assert cmd.buffer().contents().split() == [b"parent", b"extra"]
    assert os.environ.get("EXTRA") is None
