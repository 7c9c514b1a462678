# -*- coding: utf-8 -*-
"""
catalog.py
Static description of every model VoiceFlow can download: the speech
recognition bundles (Moonshine ONNX, Qwen3-ASR safetensors) and the GGUF
formatting models, plus the coarse profiles that pair one of each.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from huggingface_hub import hf_hub_url

from voiceflow.errors import CatalogLookupError, InvalidSelectionError

# Anything smaller is a truncated or failed download (GGUF weights are >1 GB).
LLM_MIN_SIZE_BYTES = 100_000_000

PIPELINE_STT_PLUS_LLM = "stt-plus-llm"


class AssetFamily(str, Enum):
    SINGLE_FILE_LLM = "single-file-llm"
    MULTI_FILE_MOONSHINE = "multi-file-moonshine"
    MULTI_FILE_CONSOLIDATED = "multi-file-consolidated"

    @property
    def is_multi_file(self) -> bool:
        return self is not AssetFamily.SINGLE_FILE_LLM

    @property
    def is_stt(self) -> bool:
        return self.is_multi_file


@dataclass(frozen=True)
class AssetFile:
    """One required file, relative to the asset directory.

    ``repo_id``/``subfolder`` override the asset's remote base for files that
    are published in a different repository.
    """

    path: str
    repo_id: Optional[str] = None
    subfolder: Optional[str] = None


@dataclass(frozen=True)
class Asset:
    id: str
    family: AssetFamily
    display_name: str
    size_estimate: str
    size_gb: float
    repo_id: str
    subfolder: Optional[str] = None
    revision: str = "main"
    filename: Optional[str] = None
    directory_name: Optional[str] = None
    required_files: Tuple[AssetFile, ...] = ()
    min_size_bytes: int = 0
    engine: Optional[str] = None
    engine_model_id: Optional[str] = None

    def files(self) -> Tuple[AssetFile, ...]:
        """Ordered download manifest."""
        if self.family.is_multi_file:
            return self.required_files
        return (AssetFile(self.filename or ""),)

    @property
    def remote_base(self) -> str:
        return hf_hub_url(self.repo_id, "", subfolder=self.subfolder, revision=self.revision).rstrip("/")

    def url_for(self, item: AssetFile) -> str:
        repo_id = item.repo_id or self.repo_id
        subfolder = item.subfolder if item.repo_id else (item.subfolder or self.subfolder)
        return hf_hub_url(repo_id, item.path, subfolder=subfolder or None, revision=self.revision)

    def local_path(self, models_root: Path, item: Optional[AssetFile] = None) -> Path:
        """Directory (multi-file) or file (single-file) for this asset, or one of its files."""
        root = Path(models_root)
        if self.family.is_multi_file:
            base = root / (self.directory_name or self.id)
            return base / item.path if item is not None else base
        return root / (self.filename or self.id)


@dataclass(frozen=True)
class Profile:
    id: str
    name: str
    description: str
    download_size: str
    best_for: str
    stt_asset_id: str
    stt_family: AssetFamily
    llm_asset_id: str
    requires_optional_runtime: bool
    min_ram_gb: int


@dataclass
class ModelCatalog:
    """Arena of assets and profiles indexed by id."""

    assets: Dict[str, Asset] = field(default_factory=dict)
    profiles: Dict[str, Profile] = field(default_factory=dict)

    @classmethod
    def build(cls, assets: Iterable[Asset], profiles: Iterable[Profile] = ()) -> "ModelCatalog":
        catalog = cls({a.id: a for a in assets}, {p.id: p for p in profiles})
        catalog.validate()
        return catalog

    def validate(self) -> None:
        for asset in self.assets.values():
            if asset.family.is_multi_file and not asset.required_files:
                raise ValueError(f"Multi-file asset '{asset.id}' declares no required files")
            if not asset.family.is_multi_file and not asset.filename:
                raise ValueError(f"Single-file asset '{asset.id}' declares no filename")
        for profile in self.profiles.values():
            stt = self.stt_asset(profile.stt_asset_id)
            self.llm_asset(profile.llm_asset_id)
            if stt.family is not profile.stt_family:
                raise ValueError(
                    f"Profile '{profile.id}' declares {profile.stt_family.value} "
                    f"but '{stt.id}' is {stt.family.value}"
                )

    def asset(self, asset_id: str) -> Asset:
        try:
            return self.assets[asset_id]
        except KeyError:
            raise CatalogLookupError("asset", asset_id) from None

    def profile(self, profile_id: str) -> Profile:
        try:
            return self.profiles[profile_id]
        except KeyError:
            raise CatalogLookupError("profile", profile_id) from None

    def stt_asset(self, asset_id: str) -> Asset:
        asset = self.asset(asset_id)
        if not asset.family.is_stt:
            raise InvalidSelectionError(asset_id, "a speech recognition model")
        return asset

    def llm_asset(self, asset_id: str) -> Asset:
        asset = self.asset(asset_id)
        if asset.family is not AssetFamily.SINGLE_FILE_LLM:
            raise InvalidSelectionError(asset_id, "a text formatting model")
        return asset

    def stt_assets(self) -> List[Asset]:
        return [a for a in self.assets.values() if a.family.is_stt]

    def llm_assets(self) -> List[Asset]:
        return [a for a in self.assets.values() if a.family is AssetFamily.SINGLE_FILE_LLM]

    def profiles_by_tier(self) -> List[Profile]:
        return sorted(self.profiles.values(), key=lambda p: p.min_ram_gb)


# ---------------- Static tables ----------------

_LLM_MODELS = (
    # id, display name, repo, filename, size GB
    ("qwen3-1.7b", "Qwen3 1.7B", "Qwen/Qwen3-1.7B-GGUF", "qwen3-1.7b-q4_k_m.gguf", 1.1),
    ("qwen3-4b", "Qwen3 4B", "Qwen/Qwen3-4B-GGUF", "Qwen3-4B-Q4_K_M.gguf", 2.5),
    ("smollm3-3b", "SmolLM3 3B", "ggml-org/SmolLM3-3B-GGUF", "SmolLM3-Q4_K_M.gguf", 1.92),
    ("gemma2-2b", "Gemma 2 2B", "bartowski/gemma-2-2b-it-GGUF", "gemma-2-2b-it-Q4_K_M.gguf", 1.71),
)

_MOONSHINE_ONNX_FILES = ("preprocess.onnx", "encode.onnx", "uncached_decode.onnx", "cached_decode.onnx")

_MOONSHINE_MODELS = (
    # size, display name, size MB
    ("tiny", "Moonshine Tiny", 190),
    ("base", "Moonshine Base", 400),
)

_CONSOLIDATED_COMMON_FILES = (
    "config.json",
    "chat_template.json",
    "vocab.json",
    "merges.txt",
    "tokenizer_config.json",
    "preprocessor_config.json",
    "generation_config.json",
)

_CONSOLIDATED_MODELS = (
    # id, display name, repo, size GB, weight files
    ("qwen3-asr-0.6b", "Qwen3-ASR 0.6B", "Qwen/Qwen3-ASR-0.6B", 1.2, ("model.safetensors",)),
    (
        "qwen3-asr-1.7b",
        "Qwen3-ASR 1.7B",
        "Qwen/Qwen3-ASR-1.7B",
        3.4,
        (
            "model.safetensors.index.json",
            "model-00001-of-00002.safetensors",
            "model-00002-of-00002.safetensors",
        ),
    ),
)


def _format_size(size_gb: float) -> str:
    if size_gb < 1:
        return f"~{int(round(size_gb * 1000))} MB"
    return f"~{size_gb:.1f} GB"


def _default_assets() -> List[Asset]:
    assets: List[Asset] = []
    for model_id, name, repo, filename, size_gb in _LLM_MODELS:
        assets.append(Asset(
            id=model_id,
            family=AssetFamily.SINGLE_FILE_LLM,
            display_name=name,
            size_estimate=_format_size(size_gb),
            size_gb=size_gb,
            repo_id=repo,
            filename=filename,
            min_size_bytes=LLM_MIN_SIZE_BYTES,
        ))

    for size, name, size_mb in _MOONSHINE_MODELS:
        files = tuple(AssetFile(f) for f in _MOONSHINE_ONNX_FILES)
        # The tokenizer ships with the per-size repo rather than the ONNX export.
        files += (AssetFile("tokenizer.json", repo_id=f"UsefulSensors/moonshine-{size}"),)
        assets.append(Asset(
            id=f"moonshine-{size}",
            family=AssetFamily.MULTI_FILE_MOONSHINE,
            display_name=name,
            size_estimate=f"~{size_mb} MB",
            size_gb=size_mb / 1000,
            repo_id="UsefulSensors/moonshine",
            subfolder=f"onnx/{size}",
            directory_name=f"moonshine-{size}",
            required_files=files,
            engine="moonshine",
            engine_model_id=size,
        ))

    for model_id, name, repo, size_gb, weights in _CONSOLIDATED_MODELS:
        assets.append(Asset(
            id=model_id,
            family=AssetFamily.MULTI_FILE_CONSOLIDATED,
            display_name=name,
            size_estimate=_format_size(size_gb),
            size_gb=size_gb,
            repo_id=repo,
            directory_name=model_id,
            required_files=tuple(AssetFile(f) for f in _CONSOLIDATED_COMMON_FILES + weights),
            engine="qwen3-asr",
            engine_model_id=model_id,
        ))
    return assets


def _default_profiles() -> List[Profile]:
    return [
        Profile(
            id="lightweight",
            name="Lightweight",
            description="Fastest performance, smallest download",
            download_size="~1.3 GB",
            best_for="Best for 8 GB machines or quick setup",
            stt_asset_id="moonshine-tiny",
            stt_family=AssetFamily.MULTI_FILE_MOONSHINE,
            llm_asset_id="qwen3-1.7b",
            requires_optional_runtime=False,
            min_ram_gb=8,
        ),
        Profile(
            id="recommended",
            name="Recommended",
            description="Great balance of speed and accuracy",
            download_size="~2.3 GB",
            best_for="Best for most machines with 16 GB+ RAM",
            stt_asset_id="qwen3-asr-0.6b",
            stt_family=AssetFamily.MULTI_FILE_CONSOLIDATED,
            llm_asset_id="qwen3-1.7b",
            requires_optional_runtime=True,
            min_ram_gb=16,
        ),
        Profile(
            id="quality",
            name="Higher Quality",
            description="Most accurate transcription and formatting",
            download_size="~3.7 GB",
            best_for="Best for 24 GB+ machines",
            stt_asset_id="qwen3-asr-0.6b",
            stt_family=AssetFamily.MULTI_FILE_CONSOLIDATED,
            llm_asset_id="qwen3-4b",
            requires_optional_runtime=True,
            min_ram_gb=24,
        ),
    ]


def default_catalog() -> ModelCatalog:
    return ModelCatalog.build(_default_assets(), _default_profiles())
