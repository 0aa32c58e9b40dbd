"""Target machine configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional, Tuple

ENV_PREFIX = "IC10C_"

_ENV_FIELDS = {
    "REGISTERS": "register_count",
    "IO_REGISTERS": "io_registers",
    "LINE_LIMIT": "line_limit",
    "DEVICE_PINS": "device_pins",
    "LINES_PER_TICK": "lines_per_tick",
}


@dataclass(frozen=True)
class TargetConfig:
    """Resource limits of the device model being compiled for.

    ``register_count`` general registers are numbered ``r0`` upwards; the top
    ``io_registers`` of them are set aside for pinned device aliases and never
    handed out by the general allocator.
    """

    register_count: int = 16
    io_registers: int = 2
    line_limit: int = 128
    device_pins: int = 6
    lines_per_tick: int = 128

    def __post_init__(self) -> None:
        if self.register_count <= 0:
            raise ValueError("register_count must be positive")
        if not (0 <= self.io_registers <= self.register_count):
            raise ValueError(f"io_registers must be within 0..{self.register_count}")
        if self.line_limit <= 0:
            raise ValueError("line_limit must be positive")
        if self.device_pins < 0:
            raise ValueError("device_pins must be non-negative")
        if self.lines_per_tick <= 0:
            raise ValueError("lines_per_tick must be positive")

    @property
    def general_registers(self) -> Tuple[int, ...]:
        return tuple(range(self.register_count - self.io_registers))

    @property
    def io_register_indices(self) -> Tuple[int, ...]:
        return tuple(range(self.register_count - self.io_registers, self.register_count))

    @property
    def pool_size(self) -> int:
        return self.register_count - self.io_registers

    @property
    def device_designators(self) -> Tuple[str, ...]:
        return tuple(f"d{idx}" for idx in range(self.device_pins)) + ("db",)

    def with_overrides(self, **changes: Any) -> "TargetConfig":
        return replace(self, **changes)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, *, prefix: str = ENV_PREFIX) -> "TargetConfig":
        """Build a config from ``IC10C_*`` environment variables."""

        source = os.environ if env is None else env
        values = {}
        for suffix, field_name in _ENV_FIELDS.items():
            raw = source.get(prefix + suffix)
            if raw is None or raw.strip() == "":
                continue
            try:
                values[field_name] = int(raw, 0)
            except ValueError as exc:
                raise ValueError(f"{prefix}{suffix} expects integer literal, got '{raw}'") from exc
        return cls(**values)


DEFAULT_CONFIG = TargetConfig()

__all__ = ["DEFAULT_CONFIG", "ENV_PREFIX", "TargetConfig"]
