"""
Pytest configuration and fixtures for ic10c tests.
"""
import sys
from pathlib import Path

import pytest

PYTHON_SRC = Path(__file__).resolve().parents[1]
if str(PYTHON_SRC) not in sys.path:
    sys.path.insert(0, str(PYTHON_SRC))

from ic10c.config import TargetConfig  # noqa: E402


@pytest.fixture
def config():
    """Default target: 16 registers (2 for device I/O), 128 lines."""
    return TargetConfig()


@pytest.fixture
def small_config():
    """Tiny target used to hit resource limits with short programs."""
    return TargetConfig(register_count=4, io_registers=1, line_limit=8)
