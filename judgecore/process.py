"""Subprocess runner with a wall-clock watchdog and bounded output capture."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
from typing import IO, Sequence

from judgecore.models import ProcessOutcome

try:
    import resource
except ImportError:  # not POSIX
    resource = None

logger = logging.getLogger(__name__)

_READ_CHUNK = 4096
_SAFE_PATH = "/usr/bin:/bin:/usr/local/bin"


class _TailBuffer:
    """Keeps only the most recent ``limit`` bytes written to it."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.truncated = False
        self._data = bytearray()

    def feed(self, chunk: bytes) -> None:
        self._data.extend(chunk)
        overflow = len(self._data) - self.limit
        if overflow > 0:
            del self._data[:overflow]
            self.truncated = True

    def text(self) -> str:
        return self._data.decode("utf-8", errors="replace")


def _drain(stream: IO[bytes], buffer: _TailBuffer) -> None:
    try:
        for chunk in iter(lambda: stream.read(_READ_CHUNK), b""):
            buffer.feed(chunk)
    except (OSError, ValueError):
        pass
    finally:
        stream.close()


def _feed_stdin(stream: IO[bytes], data: bytes) -> None:
    try:
        if data:
            stream.write(data)
    except (BrokenPipeError, OSError):
        # the program exited without reading all of its input
        pass
    finally:
        try:
            stream.close()
        except OSError:
            pass


def memory_limiter(max_memory_mb: int | None):
    """Return a ``preexec_fn`` capping the child's address space, or None."""
    if not max_memory_mb or resource is None:
        return None
    limit_bytes = max_memory_mb * 1024 * 1024

    def _limit() -> None:
        try:
            resource.setrlimit(resource.RLIMIT_AS, (limit_bytes, limit_bytes))
        except (ValueError, OSError):
            pass

    return _limit


def _kill(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError, AttributeError, OSError):
        try:
            proc.kill()
        except ProcessLookupError:
            pass


def run_process(
    argv: Sequence[str],
    *,
    stdin: str | None = None,
    timeout_ms: int,
    max_output_bytes: int,
    cwd: str | None = None,
    merge_stderr: bool = False,
    env: dict[str, str] | None = None,
    max_memory_mb: int | None = None,
) -> ProcessOutcome:
    """Run ``argv`` to completion, killing it after ``timeout_ms``.

    ``stdin`` is written to the child and then closed; ``None`` connects
    stdin to /dev/null. Each captured stream keeps at most
    ``max_output_bytes`` (the most recent bytes). With ``merge_stderr`` the
    child's stderr is folded into stdout.

    Spawn failures (missing binary, permission denied) propagate as
    ``OSError`` so callers can tell a missing toolchain from a failing
    program.
    """
    if env is None:
        env = {"PATH": os.environ.get("PATH", _SAFE_PATH), "LANG": "C.UTF-8"}
    proc = subprocess.Popen(
        list(argv),
        stdin=subprocess.PIPE if stdin is not None else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT if merge_stderr else subprocess.PIPE,
        cwd=cwd,
        env=env,
        start_new_session=True,
        preexec_fn=memory_limiter(max_memory_mb),
    )

    out_buf = _TailBuffer(max_output_bytes)
    err_buf = _TailBuffer(max_output_bytes)
    threads = [threading.Thread(target=_drain, args=(proc.stdout, out_buf), daemon=True)]
    if not merge_stderr:
        threads.append(threading.Thread(target=_drain, args=(proc.stderr, err_buf), daemon=True))
    if stdin is not None:
        threads.append(
            threading.Thread(target=_feed_stdin, args=(proc.stdin, stdin.encode("utf-8")), daemon=True)
        )
    for t in threads:
        t.start()

    timed_out = False
    try:
        proc.wait(timeout=timeout_ms / 1000)
    except subprocess.TimeoutExpired:
        timed_out = True
        logger.debug("Killing %s after %dms", argv[0], timeout_ms)
        _kill(proc)
        proc.wait()
    finally:
        for t in threads:
            t.join(timeout=1.0)

    returncode = proc.returncode
    signal_number = -returncode if returncode is not None and returncode < 0 else None
    return ProcessOutcome(
        stdout=out_buf.text(),
        stderr=err_buf.text(),
        exit_code=-1 if timed_out else returncode,
        timed_out=timed_out,
        signal_number=None if timed_out else signal_number,
        truncated=out_buf.truncated or err_buf.truncated,
    )
