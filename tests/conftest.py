"""Shared pytest fixtures for VoiceFlow model setup tests."""
from __future__ import annotations

import os
import sys
import tempfile
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import requests

# Ensure configuration paths stay inside a temporary directory so tests remain
# hermetic even when they exercise the real helpers.
_TEST_CONFIG_ROOT = Path(tempfile.mkdtemp(prefix="voiceflow-tests-"))
if sys.platform.startswith("win"):
    os.environ.setdefault("APPDATA", str(_TEST_CONFIG_ROOT))
else:
    os.environ.setdefault("XDG_CONFIG_HOME", str(_TEST_CONFIG_ROOT))

from voiceflow.catalog import Asset, AssetFamily, AssetFile, ModelCatalog, Profile  # noqa: E402

PAYLOAD = b"0123456789abcdef" * 4  # 64 bytes


class FakeResponse:
    def __init__(self, url: str, body: bytes, status: int = 200, gate: Optional[threading.Event] = None):
        self.url = url
        self.body = body
        self.status_code = status
        self.headers = {"Content-Length": str(len(body))}
        self.gate = gate
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error for url: {self.url}", response=self)

    def iter_content(self, chunk_size: int = 1):
        deadline = time.monotonic() + 10
        if self.gate is not None:
            # Hold the transfer open, yielding keep-alive chunks so cancellation is observed.
            while not self.gate.wait(0.01):
                if self.closed:
                    raise requests.ConnectionError("connection closed")
                if time.monotonic() > deadline:
                    raise requests.ConnectionError("test gate never opened")
                yield b""
        for start in range(0, len(self.body), chunk_size):
            if self.closed:
                raise requests.ConnectionError("connection closed")
            yield self.body[start:start + chunk_size]

    def close(self) -> None:
        self.closed = True


class FakeHttp:
    """Stands in for ``requests.Session``; routes are matched by URL suffix."""

    def __init__(self) -> None:
        self.calls: List[str] = []
        self.bodies: Dict[str, bytes] = {}
        self.statuses: Dict[str, int] = {}
        self.failures: Dict[str, Exception] = {}
        self.gates: Dict[str, threading.Event] = {}
        self.sessions_created = 0
        self.headers: Dict[str, str] = {}
        self._lock = threading.Lock()

    def session_factory(self) -> "FakeHttp":
        with self._lock:
            self.sessions_created += 1
        return self

    def _match(self, table: dict, url: str):
        for suffix, value in table.items():
            if url.endswith(suffix):
                return value
        return None

    def get(self, url: str, stream: bool = False, timeout=None) -> FakeResponse:
        with self._lock:
            self.calls.append(url)
        failure = self._match(self.failures, url)
        if failure is not None:
            raise failure
        body = self._match(self.bodies, url)
        status = self._match(self.statuses, url) or 200
        return FakeResponse(url, PAYLOAD if body is None else body, status, self._match(self.gates, url))

    def close(self) -> None:
        pass

    def fetched_names(self) -> List[str]:
        return [url.rsplit("/", 1)[-1] for url in self.calls]


class MemoryConfigStore:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.record = None
        self.writes: list = []

    def read(self):
        return self.record

    def write(self, record) -> bool:
        if self.fail:
            return False
        self.writes.append(record)
        self.record = record
        return True


def build_test_catalog() -> ModelCatalog:
    assets = [
        Asset(
            id="tiny-llm",
            family=AssetFamily.SINGLE_FILE_LLM,
            display_name="Tiny LLM",
            size_estimate="~64 B",
            size_gb=0.0,
            repo_id="acme/tiny-llm-GGUF",
            filename="tiny-llm-q4.gguf",
            min_size_bytes=32,
        ),
        Asset(
            id="ms-test",
            family=AssetFamily.MULTI_FILE_MOONSHINE,
            display_name="Moonshine Test",
            size_estimate="~256 B",
            size_gb=0.0,
            repo_id="acme/moonshine",
            subfolder="onnx/test",
            directory_name="moonshine-test",
            required_files=(
                AssetFile("a.onnx"),
                AssetFile("b.onnx"),
                AssetFile("c.onnx"),
                AssetFile("tokenizer.json", repo_id="acme/moonshine-test"),
            ),
            engine="moonshine",
            engine_model_id="test",
        ),
        Asset(
            id="asr-test",
            family=AssetFamily.MULTI_FILE_CONSOLIDATED,
            display_name="ASR Test",
            size_estimate="~192 B",
            size_gb=0.0,
            repo_id="acme/asr",
            directory_name="asr-test",
            required_files=(AssetFile("config.json"), AssetFile("vocab.json"), AssetFile("model.safetensors")),
            engine="qwen3-asr",
            engine_model_id="asr-test",
        ),
    ]
    profiles = [
        Profile("lightweight", "Lightweight", "", "", "", "ms-test", AssetFamily.MULTI_FILE_MOONSHINE,
                "tiny-llm", False, 8),
        Profile("recommended", "Recommended", "", "", "", "asr-test", AssetFamily.MULTI_FILE_CONSOLIDATED,
                "tiny-llm", True, 16),
        Profile("quality", "Higher Quality", "", "", "", "asr-test", AssetFamily.MULTI_FILE_CONSOLIDATED,
                "tiny-llm", True, 24),
    ]
    return ModelCatalog.build(assets, profiles)


@pytest.fixture
def catalog() -> ModelCatalog:
    return build_test_catalog()


@pytest.fixture
def models_root(tmp_path) -> Path:
    root = tmp_path / "models"
    root.mkdir()
    return root


@pytest.fixture
def fake_http() -> FakeHttp:
    return FakeHttp()


@pytest.fixture
def config_store() -> MemoryConfigStore:
    return MemoryConfigStore()


def install_asset(asset: Asset, models_root: Path, body: bytes = PAYLOAD) -> None:
    for item in asset.files():
        path = asset.local_path(models_root, item)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(body)


@pytest.fixture
def install():
    """Place every file of an asset on disk, as a completed download would."""
    return install_asset


@pytest.fixture(autouse=True)
def reset_settings(tmp_path, monkeypatch):
    """Reset persisted settings and isolate config/models directories per test."""
    config_home = tmp_path / "config"
    config_home.mkdir()
    if sys.platform.startswith("win"):
        monkeypatch.setenv("APPDATA", str(config_home))
    else:
        monkeypatch.setenv("XDG_CONFIG_HOME", str(config_home))
    monkeypatch.delenv("VOICEFLOW_MODELS_DIR", raising=False)

    # Reload config_paths so module-level state picks up the new directory.
    import importlib
    from voiceflow import config_paths

    importlib.reload(config_paths)

    # Ensure callers start from default settings each time.
    config_paths.load_settings()
    yield
