# -*- coding: utf-8 -*-
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List

from voiceflow.catalog import Asset, AssetFile, ModelCatalog


@dataclass(frozen=True)
class LocalAssetStatus:
    asset_id: str
    is_complete: bool


def file_present(asset: Asset, item: AssetFile, models_root: Path) -> bool:
    """Per-file rule: presence for multi-file assets, presence plus size floor otherwise."""
    path = asset.local_path(models_root, item)
    if asset.family.is_multi_file:
        return path.is_file()
    try:
        return path.is_file() and path.stat().st_size >= asset.min_size_bytes
    except OSError:
        return False


def probe(asset: Asset, models_root: Path) -> bool:
    """True iff every required file of ``asset`` is on disk and valid.

    Purely observational; never creates directories.
    """
    return all(file_present(asset, item, models_root) for item in asset.files())


def missing_files(asset: Asset, models_root: Path) -> List[AssetFile]:
    return [item for item in asset.files() if not file_present(asset, item, models_root)]


def probe_all(catalog: ModelCatalog, models_root: Path) -> List[LocalAssetStatus]:
    return [
        LocalAssetStatus(asset_id=asset.id, is_complete=probe(asset, models_root))
        for asset in catalog.assets.values()
    ]
