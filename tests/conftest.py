"""Pytest fixtures for farm tests."""

from typing import Generator

import pytest
import structlog

from farm.executor import CommandOutput, run_command
from farm.logging import configure_logging


@pytest.fixture(autouse=True)
def quiet_logging() -> Generator[None, None, None]:
    """Keep debug diagnostics out of captured output."""
    configure_logging(debug=False)
    yield
    structlog.reset_defaults()


def local_shell(host: str, command: str) -> CommandOutput:
    """Job that runs the command in a local shell instead of over ssh."""
    return run_command(["/bin/sh"], command)


@pytest.fixture
def local_job():
    return local_shell
