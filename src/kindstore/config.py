"""Configuration for kindstore clients."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class KindstoreConfig:
    """Configuration for a kindstore Client and its transport."""

    namespace: str | None = None
    project_id: str | None = None
    api_endpoint: str | None = None
    credentials: dict[str, Any] | None = None
    key_filename: str | None = None
    max_api_calls: int | None = None
    wrap_numbers: bool = False
    emulator_page_size: int = 300
    emulator_max_lookup: int = 1000
    emulator_max_mutations: int = 500
