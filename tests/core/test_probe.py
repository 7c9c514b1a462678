from __future__ import annotations

import pytest

from voiceflow.probe import missing_files, probe, probe_all

pytestmark = pytest.mark.core_headless


def test_single_file_requires_size_floor(catalog, models_root):
    llm = catalog.llm_asset("tiny-llm")
    target = llm.local_path(models_root)

    assert probe(llm, models_root) is False

    target.write_bytes(b"x" * (llm.min_size_bytes - 1))
    assert probe(llm, models_root) is False

    target.write_bytes(b"x" * llm.min_size_bytes)
    assert probe(llm, models_root) is True


def test_multi_file_requires_every_file(catalog, models_root, install):
    asset = catalog.stt_asset("ms-test")
    install(asset, models_root)
    assert probe(asset, models_root) is True

    (asset.local_path(models_root) / "c.onnx").unlink()
    assert probe(asset, models_root) is False
    assert [f.path for f in missing_files(asset, models_root)] == ["c.onnx"]


def test_multi_file_accepts_empty_files(catalog, models_root, install):
    asset = catalog.stt_asset("asr-test")
    install(asset, models_root, body=b"")
    assert probe(asset, models_root) is True


def test_directory_in_place_of_file_is_not_present(catalog, models_root):
    llm = catalog.llm_asset("tiny-llm")
    llm.local_path(models_root).mkdir()
    assert probe(llm, models_root) is False


def test_probe_never_creates_directories(catalog, tmp_path):
    root = tmp_path / "absent"
    for asset in catalog.assets.values():
        assert probe(asset, root) is False
    assert not root.exists()


def test_probe_all_reports_each_asset(catalog, models_root, install):
    install(catalog.stt_asset("ms-test"), models_root)
    statuses = {s.asset_id: s.is_complete for s in probe_all(catalog, models_root)}
    assert statuses == {"tiny-llm": False, "ms-test": True, "asr-test": False}
