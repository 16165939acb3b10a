"""Bounded-concurrency job scheduler.

A single coordinating process forks one worker per host, never more than
``max_jobs`` at a time. Each worker runs the job and writes its result as one
JSON document to a pipe dedicated to that job, then exits. The coordinator
polls: it reaps exited workers without blocking, releases their slots, emits
their results and dispatches the next hosts.
"""

from __future__ import annotations

import os
import time
from typing import Callable, Iterable, NoReturn

from .executor import Job, SpawnError, ssh_command
from .hosts import HostQueue
from .logging import get_logger
from .pool import SlotPool
from .results import ResultEmitter, ResultRecord

logger = get_logger("scheduler")

EmitCallback = Callable[[ResultRecord], None]
DispatchCallback = Callable[[str, int], None]  # (host, slot_id) -> None


def _exit_code(wait_status: int) -> int:
    code = os.waitstatus_to_exitcode(wait_status)
    if code < 0:
        return 128 + (-code)
    return code


class Scheduler:
    """Runs one command on every host with at most ``max_jobs`` in flight.

    The scheduler owns the host queue, the slot pool and the drained flag.
    Workers are isolated processes and never see any of them.
    """

    def __init__(
        self,
        hosts: Iterable[str],
        command: str,
        max_jobs: int,
        job: Job | None = None,
        emit: EmitCallback | None = None,
        tick: float = 1.0,
        on_dispatch: DispatchCallback | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_jobs < 1:
            raise ValueError(f"max_jobs must be at least 1, got {max_jobs}")
        self.queue = HostQueue(hosts)
        self.pool = SlotPool(max_jobs)
        self.command = command
        self.max_jobs = max_jobs
        self.job: Job = job or ssh_command
        self.emit: EmitCallback = emit or ResultEmitter()
        self.tick = tick
        self.on_dispatch = on_dispatch
        self._sleep = sleep

        self.drained = False
        self.dispatched: list[str] = []

    def running_count(self) -> int:
        return self.pool.running_count()

    def run(self) -> None:
        """Dispatch every host and return once all results are emitted."""
        while True:
            self._reap()
            running = self.pool.running_count()

            if running == self.max_jobs:
                logger.debug("full_capacity", running=running)
                self._sleep(self.tick)
                continue

            if running == 0 and self.drained and self.queue.is_empty():
                logger.debug("finished", jobs=len(self.dispatched))
                return

            if running == 0 and self.queue.is_empty() and not self.drained:
                # Confirm on the next pass; nothing left to wait for
                self.drained = True
                logger.debug("drained")
                continue

            if self.queue.is_empty() and not self.drained:
                logger.debug("draining", running=running)
                self._sleep(self.tick)
                continue

            self._dispatch()

    def _reap(self) -> None:
        """Collect every worker that has already exited."""
        self.pool.pump()
        while True:
            try:
                pid, status = os.waitpid(-1, os.WNOHANG)
            except ChildProcessError:
                # No children at all
                return
            if pid == 0:
                return

            slot_id = self.pool.slot_for_pid(pid)
            if slot_id is None:
                continue
            record = self.pool.release(slot_id, status=_exit_code(status))
            logger.debug("reaped", host=record.host, pid=pid, slot=slot_id, exit=record.exit)
            self.emit(record)

    def _dispatch(self) -> None:
        slot_id = self.pool.find_idle()
        if slot_id is None:
            return
        host = self.queue.pop_next()
        if host is None:
            return

        self.dispatched.append(host)
        start = time.time()
        try:
            read_end, write_end = os.pipe()
        except OSError as e:
            self._spawn_failed(host, e, start)
            return
        try:
            pid = os.fork()
        except OSError as e:
            os.close(read_end)
            os.close(write_end)
            self._spawn_failed(host, e, start)
            return

        if pid == 0:
            os.close(read_end)
            self._work(host, write_end)

        os.close(write_end)
        self.pool.assign(slot_id, host, pid, read_end)
        logger.debug(
            "dispatch",
            host=host,
            slot=slot_id,
            pid=pid,
            running=self.pool.running_count(),
            remaining=len(self.queue),
        )
        if self.on_dispatch:
            self.on_dispatch(host, slot_id)

    def _spawn_failed(self, host: str, error: OSError, start: float) -> None:
        logger.warning("spawn_failed", host=host, error=str(error))
        self.emit(ResultRecord.failure(host, f"spawn failed: {error}", start=start, end=time.time()))

    def _work(self, host: str, channel: int) -> NoReturn:
        """Body of a forked worker. Never returns."""
        status = 1
        try:
            # Read ends of the other running jobs were inherited from the coordinator
            for slot in self.pool.slots:
                if slot.channel is not None:
                    os.close(slot.channel)

            start = time.time()
            try:
                output, exit_code = self.job(host, self.command)
                record = ResultRecord(host=host, mesg=output, exit=exit_code, start=start, end=time.time())
            except SpawnError as e:
                record = ResultRecord.failure(host, f"spawn failed: {e}", start=start, end=time.time())

            with os.fdopen(channel, "wb") as f:
                f.write(record.to_json().encode("utf-8"))
            status = 0
        except Exception:
            logger.exception("worker_failed", host=host)
        finally:
            os._exit(status)
