"""Fixed-size table of job slots."""

from __future__ import annotations

import os
import select
import time
from dataclasses import dataclass, field
from enum import Enum

from .results import FAILED_EXIT, ResultRecord

_READ_SIZE = 65536


class SlotError(RuntimeError):
    """A slot was used in a state that does not allow it."""


class SlotState(Enum):
    """State of a concurrency slot."""

    IDLE = "idle"
    RUNNING = "running"


@dataclass
class JobSlot:
    """One unit of concurrency, reused across jobs."""

    slot_id: int
    state: SlotState = SlotState.IDLE
    pid: int = 0
    host: str = ""
    start_time: float = 0.0
    channel: int | None = None
    buffer: bytearray = field(default_factory=bytearray)
    closed: bool = False  # channel reached EOF

    def reset(self) -> None:
        self.state = SlotState.IDLE
        self.pid = 0
        self.host = ""
        self.start_time = 0.0
        self.channel = None
        self.buffer = bytearray()
        self.closed = False


class SlotPool:
    """Tracks which slots run which worker.

    Slots are created once and never destroyed. The pid-to-slot map is owned
    here so the scheduler can route a reaped pid straight to its slot.
    """

    def __init__(self, size: int):
        if size < 1:
            raise ValueError(f"Slot pool size must be at least 1, got {size}")
        self.slots = [JobSlot(slot_id=i) for i in range(size)]
        self._by_pid: dict[int, int] = {}

    def __len__(self) -> int:
        return len(self.slots)

    def find_idle(self) -> int | None:
        for slot in self.slots:
            if slot.state is SlotState.IDLE:
                return slot.slot_id
        return None

    def running_count(self) -> int:
        return len(self._by_pid)

    def slot_for_pid(self, pid: int) -> int | None:
        return self._by_pid.get(pid)

    def assign(self, slot_id: int, host: str, pid: int, channel: int) -> JobSlot:
        """Mark a slot as running ``host`` in worker ``pid``."""
        slot = self.slots[slot_id]
        if slot.state is not SlotState.IDLE:
            raise SlotError(f"Slot {slot_id} is already running {slot.host}")
        slot.state = SlotState.RUNNING
        slot.pid = pid
        slot.host = host
        slot.start_time = time.time()
        slot.channel = channel
        self._by_pid[pid] = slot_id
        return slot

    def pump(self) -> None:
        """Move whatever is readable on running channels into slot buffers.

        Never blocks. Keeps a worker with a large result from stalling on a
        full pipe while the coordinator waits for it to exit.
        """
        open_channels = {
            slot.channel: slot
            for slot in self.slots
            if slot.state is SlotState.RUNNING and slot.channel is not None and not slot.closed
        }
        if not open_channels:
            return
        readable, _, _ = select.select(list(open_channels), [], [], 0)
        for fd in readable:
            slot = open_channels[fd]
            data = os.read(fd, _READ_SIZE)
            if data:
                slot.buffer.extend(data)
            else:
                slot.closed = True

    def release(self, slot_id: int, status: int = 0) -> ResultRecord:
        """Read the job's result, close its channel and free the slot.

        Must only be called once the worker has been reaped, so every write
        end of the channel is closed and the read below ends at EOF.
        ``status`` is the worker's exit status, reported if it sent nothing.
        """
        slot = self.slots[slot_id]
        if slot.state is not SlotState.RUNNING or slot.channel is None:
            raise SlotError(f"Slot {slot_id} has no running job")

        try:
            while not slot.closed:
                data = os.read(slot.channel, _READ_SIZE)
                if not data:
                    break
                slot.buffer.extend(data)
        finally:
            os.close(slot.channel)

        host, start, raw = slot.host, slot.start_time, bytes(slot.buffer)
        del self._by_pid[slot.pid]
        slot.reset()

        if not raw.strip():
            return ResultRecord.failure(
                host,
                "worker produced no result",
                start=start,
                end=time.time(),
                exit=status or FAILED_EXIT,
            )
        try:
            record = ResultRecord.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            return ResultRecord.failure(
                host,
                f"unreadable worker result: {e}",
                start=start,
                end=time.time(),
                exit=status or FAILED_EXIT,
            )
        record.start = start
        return record
