"""farm: Run one command on many SSH hosts with bounded concurrency."""

from .config import Config, Defaults, default_config, load_config
from .executor import CommandOutput, SpawnError, SSHOptions, run_command, ssh_command
from .hosts import HostQueue, parse_hosts, read_hosts_file
from .pool import JobSlot, SlotError, SlotPool, SlotState
from .results import ResultEmitter, ResultRecord
from .scheduler import Scheduler

__all__ = [
    "Config",
    "Defaults",
    "default_config",
    "load_config",
    "CommandOutput",
    "SpawnError",
    "SSHOptions",
    "run_command",
    "ssh_command",
    "HostQueue",
    "parse_hosts",
    "read_hosts_file",
    "JobSlot",
    "SlotError",
    "SlotPool",
    "SlotState",
    "ResultEmitter",
    "ResultRecord",
    "Scheduler",
]
