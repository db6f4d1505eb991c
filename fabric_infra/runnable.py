# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import ctypes
import os
import re
import signal
import subprocess
import threading

from loguru import logger as LOG

_libc = None


def _term_on_pdeathsig():
    # usr/include/linux/prctl.h: #define PR_SET_PDEATHSIG 1
    global _libc
    try:
        if _libc is None:
            _libc = ctypes.CDLL("libc.so.6")
        _libc.prctl(1, signal.SIGTERM)
    except OSError:
        pass


def popen(*args, **kwargs):
    kwargs["preexec_fn"] = _term_on_pdeathsig
    return subprocess.Popen(*args, **kwargs)


class ExitError(Exception):
    def __init__(self, name, returncode):
        super().__init__(f"{name} exited with status {returncode}")
        self.name = name
        self.returncode = returncode


class Buffer:
    """
    Thread-safe, append-only byte buffer with a read cursor.

    Writers (output pumps) append; matchers read what has not been consumed
    yet and move the cursor forward past whatever they matched.
    """

    def __init__(self, name=""):
        self.name = name
        self._data = bytearray()
        self._cursor = 0
        self._lock = threading.Lock()
        self._closed = False

    def write(self, data):
        with self._lock:
            self._data.extend(data)

    def close(self):
        with self._lock:
            self._closed = True

    def closed(self):
        with self._lock:
            return self._closed

    def contents(self):
        with self._lock:
            return bytes(self._data)

    def unread(self):
        with self._lock:
            return bytes(self._data[self._cursor :])

    def detect(self, pattern):
        """
        Search unread contents for `pattern`. On a match, the cursor is
        fast-forwarded past the end of the match.
        """
        regex = re.compile(pattern.encode() if isinstance(pattern, str) else pattern)
        with self._lock:
            m = regex.search(self._data, self._cursor)
            if m is None:
                return None
            self._cursor = m.end()
            return m

    def __repr__(self):
        unread = self.unread().decode(errors="replace")
        return f"<Buffer {self.name} unread={unread!r}>"


class Handle:
    """
    Ownership of one running unit. `ready` fires at most once, `exited`
    fires exactly once and carries `error` (None on success).
    """

    def __init__(self, name):
        self.name = name
        self.error = None
        self._ready = threading.Event()
        self._exited = threading.Event()

    @property
    def ready(self):
        return self._ready

    @property
    def exited(self):
        return self._exited

    def is_ready(self):
        return self._ready.is_set()

    def is_exited(self):
        return self._exited.is_set()

    def ready_or_exited(self):
        return self._ready.is_set() or self._exited.is_set()

    def wait_ready(self, timeout=None):
        return self._ready.wait(timeout)

    def wait(self, timeout=None):
        return self._exited.wait(timeout)

    def _mark_ready(self):
        if not self._ready.is_set():
            LOG.debug(f"[{self.name}] ready")
            self._ready.set()

    def _finish(self, error=None):
        if self._exited.is_set():
            return
        self.error = error
        self._exited.set()

    def signal(self, sig=signal.SIGTERM):
        raise NotImplementedError

    def stop(self):
        self.signal(signal.SIGTERM)


class ProcessHandle(Handle):
    def __init__(self, name, ready_pattern=None):
        super().__init__(name)
        self.proc = None
        self.ready_regex = re.compile(ready_pattern) if ready_pattern else None
        self._pumps = []

    @property
    def pid(self):
        return self.proc.pid if self.proc else None

    def _check_ready(self, line):
        if self.ready_regex is not None and not self.is_ready():
            if self.ready_regex.search(line.decode(errors="replace")):
                self._mark_ready()

    def _pump(self, stream, buffer, log_file):
        try:
            for line in iter(stream.readline, b""):
                buffer.write(line)
                if log_file is not None:
                    log_file.write(line)
                    log_file.flush()
                self._check_ready(line)
        finally:
            stream.close()
            if log_file is not None:
                log_file.close()

    def _reap(self, buffers=()):
        returncode = self.proc.wait()
        for pump in self._pumps:
            pump.join()
        for buffer in buffers:
            buffer.close()
        if returncode != 0:
            LOG.debug(f"[{self.name}] exited with status {returncode}")
            self._finish(ExitError(self.name, returncode))
        else:
            LOG.debug(f"[{self.name}] exited")
            self._finish(None)

    def signal(self, sig=signal.SIGTERM):
        if self.proc is None or self.is_exited():
            return
        try:
            self.proc.send_signal(sig)
        except ProcessLookupError:
            pass


class LocalProcess:
    """
    Long-lived local process. It is ready once `ready_pattern` appears on
    stdout or stderr, or as soon as it is spawned if no pattern is given.

    stdout and stderr are always captured into `buffer()` and `err()`. When
    `root` is set they are also written to `root/out` and `root/err`.
    """

    def __init__(
        self,
        name,
        path,
        args=None,
        cwd=None,
        env=None,
        ready_pattern=None,
        root=None,
    ):
        self.name = name
        self.path = path
        self.args = list(args or [])
        self.cwd = cwd
        self.env = env
        self.ready_pattern = ready_pattern
        self.root = root
        self._out = Buffer(f"{name}:out")
        self._err = Buffer(f"{name}:err")
        self.handle = None

    @property
    def cmd(self):
        return [self.path] + self.args

    def buffer(self):
        return self._out

    def err(self):
        return self._err

    def get_cmd(self):
        return " ".join(self.cmd)

    def _log_files(self):
        if self.root is None:
            return None, None
        os.makedirs(self.root, exist_ok=True)
        out_file = open(os.path.join(self.root, "out"), "wb")
        try:
            err_file = open(os.path.join(self.root, "err"), "wb")
        except OSError:
            out_file.close()
            raise
        return out_file, err_file

    def _environment(self):
        if self.env is None:
            return None
        env = dict(os.environ)
        env.update(self.env)
        return env

    def start(self):
        handle = ProcessHandle(self.name, self.ready_pattern)
        self.handle = handle
        LOG.info(f"[{self.name}] {self.get_cmd()}")
        out_file = err_file = None
        try:
            out_file, err_file = self._log_files()
            handle.proc = popen(
                self.cmd,
                cwd=self.cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                env=self._environment(),
            )
        except OSError as e:
            LOG.error(f"[{self.name}] failed to start: {e}")
            for log_file in (out_file, err_file):
                if log_file is not None:
                    log_file.close()
            self._out.close()
            self._err.close()
            handle._finish(e)
            return handle

        for stream, buffer, log_file in (
            (handle.proc.stdout, self._out, out_file),
            (handle.proc.stderr, self._err, err_file),
        ):
            pump = threading.Thread(
                target=handle._pump,
                args=(stream, buffer, log_file),
                name=f"{self.name}-pump",
                daemon=True,
            )
            pump.start()
            handle._pumps.append(pump)

        if handle.ready_regex is None:
            handle._mark_ready()

        threading.Thread(
            target=handle._reap,
            args=((self._out, self._err),),
            name=f"{self.name}-reaper",
            daemon=True,
        ).start()
        return handle


class Command(LocalProcess):
    """
    One-shot local command. Ready as soon as it is spawned; a non-zero exit
    status terminates the handle with an ExitError.
    """

    def __init__(self, name, path, args=None, cwd=None, env=None, root=None):
        super().__init__(
            name, path, args=args, cwd=cwd, env=env, ready_pattern=None, root=root
        )
