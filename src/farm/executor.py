"""Remote command execution for farm.

Each call runs inside a forked worker and spawns exactly one child process:
``ssh`` into a non-interactive login shell, with the command text fed to the
shell on stdin and combined output captured through a pseudo-terminal.
"""

from __future__ import annotations

import asyncio
import errno
import os
import pty
import select
import signal
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, NamedTuple

import asyncssh

from .config import DEFAULT_SHELL, Config

# ssh exits with this status when the connection itself fails
SSH_ERROR_STATUS = 255

_READ_SIZE = 4096
_PIPE_CHUNK = 16384


class SpawnError(OSError):
    """The child process or its pty/pipe could not be created."""


class CommandOutput(NamedTuple):
    output: str
    exit_code: int


@dataclass
class SSHOptions:
    """Connection settings applied to every host."""

    user: str | None = None
    port: int | None = None
    ssh_key: Path | None = None
    connect_timeout: int = 10
    shell: str = DEFAULT_SHELL

    @classmethod
    def from_config(cls, config: Config) -> SSHOptions:
        d = config.defaults
        return cls(
            user=d.user,
            port=d.port,
            ssh_key=d.ssh_key,
            connect_timeout=d.connect_timeout,
            shell=d.shell,
        )


# (host, command) -> CommandOutput
Job = Callable[[str, str], CommandOutput]


def ssh_argv(host: str, options: SSHOptions | None = None) -> list[str]:
    """Build the ssh invocation for one host."""
    options = options or SSHOptions()
    argv = [
        "ssh",
        "-o", "BatchMode=yes",
        "-o", "StrictHostKeyChecking=no",
        "-o", "PasswordAuthentication=no",
        "-o", f"ConnectTimeout={options.connect_timeout}",
    ]
    if options.port:
        argv.extend(["-p", str(options.port)])
    if options.user:
        argv.extend(["-l", options.user])
    if options.ssh_key:
        argv.extend(["-i", str(options.ssh_key)])
    argv.append(host)
    argv.append(options.shell)
    return argv


def _read_pty(fd: int) -> bytes | None:
    """Read one chunk from a pty master.

    Returns None once the capture is complete. Linux reports a closed slave
    side as EIO rather than an empty read, so both mean the same thing here.
    """
    try:
        data = os.read(fd, _READ_SIZE)
    except OSError as e:
        if e.errno == errno.EIO:
            return None
        raise
    return data or None


def _close_all(fds: list[int]) -> None:
    for fd in fds:
        try:
            os.close(fd)
        except OSError:
            pass


def _normalize(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace").replace("\r\n", "\n")


def _exit_status(returncode: int) -> int:
    # Popen reports signal deaths as negative numbers
    if returncode < 0:
        return 128 + (-returncode)
    return returncode


def _exchange(master: int, stdin_write: int, input_text: str, fds: list[int]) -> list[bytes]:
    """Feed ``input_text`` to the child while collecting its pty output.

    Both directions go through one select loop, so neither a full stdin pipe
    nor a full pty can stall the other. The stdin write end is closed (and
    dropped from ``fds``) as soon as the text is sent or the child stops
    reading, which lets the shell see EOF.
    """
    data = (input_text if input_text.endswith("\n") else input_text + "\n").encode("utf-8")
    offset = 0
    writer: int | None = stdin_write
    os.set_blocking(stdin_write, False)

    def close_writer() -> None:
        nonlocal writer
        if writer is not None:
            fds.remove(writer)
            os.close(writer)
            writer = None

    chunks: list[bytes] = []
    while True:
        readable, writable, _ = select.select([master], [writer] if writer is not None else [], [])
        if writable:
            try:
                offset += os.write(writer, data[offset:offset + _PIPE_CHUNK])
            except BlockingIOError:
                pass
            except BrokenPipeError:
                # The child exited before reading all of its input
                close_writer()
            if offset >= len(data):
                close_writer()
        if readable:
            chunk = _read_pty(master)
            if chunk is None:
                break
            chunks.append(chunk)

    close_writer()
    return chunks


def run_command(argv: list[str], input_text: str) -> CommandOutput:
    """Run ``argv`` with ``input_text`` on stdin, capturing combined output.

    Raises SpawnError if the pty, the pipe or the process cannot be created.
    """
    fds: list[int] = []
    try:
        master, slave = pty.openpty()
        fds.extend([master, slave])
        stdin_read, stdin_write = os.pipe()
        fds.extend([stdin_read, stdin_write])
        proc = subprocess.Popen(
            argv,
            stdin=stdin_read,
            stdout=slave,
            stderr=slave,
            close_fds=True,
        )
    except OSError as e:
        _close_all(fds)
        raise SpawnError(e.errno, f"cannot run {argv[0]}: {e.strerror or e}") from e

    # Only the child keeps these
    _close_all([slave, stdin_read])
    fds = [master, stdin_write]

    try:
        chunks = _exchange(master, stdin_write, input_text, fds)
        returncode = proc.wait()
    finally:
        _close_all(fds)

    return CommandOutput(_normalize(b"".join(chunks)), _exit_status(returncode))


def ssh_command(host: str, command: str, options: SSHOptions | None = None) -> CommandOutput:
    """Run ``command`` on ``host`` through the ssh client."""
    return run_command(ssh_argv(host, options), command)


async def _asyncssh_run(host: str, command: str, options: SSHOptions) -> CommandOutput:
    connect_kwargs: dict = {
        "known_hosts": None,  # Same as StrictHostKeyChecking=no
        "preferred_auth": "publickey",
        "connect_timeout": options.connect_timeout,
    }
    if options.port:
        connect_kwargs["port"] = options.port
    if options.user:
        connect_kwargs["username"] = options.user
    if options.ssh_key:
        connect_kwargs["client_keys"] = [str(options.ssh_key)]

    try:
        async with asyncssh.connect(host, **connect_kwargs) as conn:
            result = await conn.run(
                options.shell,
                input=command if command.endswith("\n") else command + "\n",
                stderr=asyncssh.STDOUT,
                encoding="utf-8",
                errors="replace",
            )
    except (asyncssh.Error, OSError) as e:
        return CommandOutput(f"ssh: {host}: {e}\n", SSH_ERROR_STATUS)

    output = result.stdout or ""
    if result.exit_signal:
        signum = getattr(signal, f"SIG{result.exit_signal[0]}", None)
        exit_code = 128 + int(signum) if signum else SSH_ERROR_STATUS
    elif result.exit_status is not None and result.exit_status >= 0:
        exit_code = result.exit_status
    else:
        exit_code = SSH_ERROR_STATUS
    return CommandOutput(output.replace("\r\n", "\n"), exit_code)


def asyncssh_command(host: str, command: str, options: SSHOptions | None = None) -> CommandOutput:
    """Run ``command`` on ``host`` with asyncssh on a fresh event loop."""
    return asyncio.run(_asyncssh_run(host, command, options or SSHOptions()))


def make_job(config: Config) -> Job:
    """Bind the configured transport and ssh options into a job callable."""
    options = SSHOptions.from_config(config)
    run = asyncssh_command if config.transport == "asyncssh" else ssh_command

    def job(host: str, command: str) -> CommandOutput:
        return run(host, command, options)

    return job
