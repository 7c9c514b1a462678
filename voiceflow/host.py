# -*- coding: utf-8 -*-
from __future__ import annotations

import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from voiceflow.config_paths import get_logger

logger = get_logger(__name__)

# Consolidated ASR models run in an external MLX daemon that needs Python 3.10+.
RUNTIME_MIN_VERSION = (3, 10)
RUNTIME_CANDIDATES = (
    "/opt/homebrew/bin/python3",  # Apple Silicon Homebrew
    "/usr/local/bin/python3",     # Intel Homebrew
    "/usr/bin/python3",           # Xcode CLT / system
)

_VERSION_RE = re.compile(r"(\d+)\.(\d+)")


@dataclass(frozen=True)
class HostCapabilities:
    physical_memory_gb: int
    optional_runtime_available: bool


def physical_memory_gb() -> int:
    try:
        pages = os.sysconf("SC_PHYS_PAGES")
        page_size = os.sysconf("SC_PAGE_SIZE")
    except (AttributeError, ValueError, OSError):
        logger.debug("Physical memory size is not available via sysconf", exc_info=True)
        return 0
    if pages <= 0 or page_size <= 0:
        return 0
    return int(pages * page_size // (1024 ** 3))


def _runtime_candidates() -> List[str]:
    candidates: List[str] = []
    override = os.environ.get("VOICEFLOW_RUNTIME_PYTHON")
    if override:
        candidates.append(override)
    candidates.extend(RUNTIME_CANDIDATES)
    on_path = shutil.which("python3")
    if on_path and on_path not in candidates:
        candidates.append(on_path)
    return candidates


def parse_python_version(output: str) -> Optional[tuple]:
    match = _VERSION_RE.search(output or "")
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def find_optional_runtime(candidates: Optional[Iterable[str]] = None) -> Optional[str]:
    """Return the first interpreter that reports a new enough ``--version``."""
    for candidate in candidates if candidates is not None else _runtime_candidates():
        if not Path(candidate).exists():
            continue
        try:
            completed = subprocess.run(
                [candidate, "--version"],
                capture_output=True,
                text=True,
                timeout=10,
            )
        except (OSError, subprocess.SubprocessError):
            logger.debug("Failed to query %s --version", candidate, exc_info=True)
            continue
        if completed.returncode != 0:
            continue
        version = parse_python_version(completed.stdout or completed.stderr)
        if version is not None and version >= RUNTIME_MIN_VERSION:
            return candidate
    return None


def detect_host_capabilities() -> HostCapabilities:
    caps = HostCapabilities(
        physical_memory_gb=physical_memory_gb(),
        optional_runtime_available=find_optional_runtime() is not None,
    )
    logger.info(
        "Host capabilities: %s GB RAM, optional runtime %s",
        caps.physical_memory_gb,
        "available" if caps.optional_runtime_available else "missing",
    )
    return caps
