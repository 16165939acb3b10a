"""Result records and the emitter that prints them."""

from __future__ import annotations

import json
import re
import shutil
import sys
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import IO, Any

# Exit code used for jobs that never produced a command status
FAILED_EXIT = -1

_UNSAFE_NAME = re.compile(r"[^A-Za-z0-9._@-]")


@dataclass
class ResultRecord:
    """Outcome of one job, as sent from worker to coordinator."""

    host: str
    mesg: str
    exit: int
    start: float
    end: float
    error: str | None = None

    @classmethod
    def failure(cls, host: str, error: str, start: float, end: float, exit: int = FAILED_EXIT) -> ResultRecord:
        """A job that could not run or did not report back."""
        return cls(host=host, mesg="", exit=exit, start=start, end=end, error=error)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.error is None:
            del data["error"]
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: bytes | str) -> ResultRecord:
        data = json.loads(raw)
        return cls(
            host=data["host"],
            mesg=data["mesg"],
            exit=int(data["exit"]),
            start=float(data["start"]),
            end=float(data["end"]),
            error=data.get("error"),
        )


class ResultEmitter:
    """Writes one JSON line per record, and optionally per-host log files."""

    def __init__(
        self,
        stream: IO[str] | None = None,
        log_dir: Path | None = None,
        source_path: Path | None = None,
    ):
        self.stream = stream if stream is not None else sys.stdout
        self.count = 0
        self._log_dir: Path | None = None
        if log_dir is not None:
            self._setup_log_dir(log_dir, source_path)

    @property
    def log_dir(self) -> Path | None:
        return self._log_dir

    def _setup_log_dir(self, log_dir: Path, source_path: Path | None) -> None:
        """Set up log directory with timestamp."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self._log_dir = log_dir / timestamp
        self._log_dir.mkdir(parents=True, exist_ok=True)

        # Copy the source config file to the log directory
        if source_path and source_path.exists():
            shutil.copy(source_path, self._log_dir / "config.yaml")

    def log_path(self, host: str) -> Path | None:
        if self._log_dir is None:
            return None
        return self._log_dir / f"{_UNSAFE_NAME.sub('_', host)}.log"

    def __call__(self, record: ResultRecord) -> None:
        self.stream.write(record.to_json() + "\n")
        self.stream.flush()
        self.count += 1

        log_file = self.log_path(record.host)
        if log_file is not None:
            # Appending keeps every run of a host listed more than once
            with open(log_file, "a") as f:
                f.write(record.mesg)
                if record.error:
                    f.write(f"ERROR: {record.error}\n")
                f.write(f"[exit {record.exit}]\n")
