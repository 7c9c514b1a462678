# -*- coding: utf-8 -*-
from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Optional, Protocol

from voiceflow import config_paths
from voiceflow.catalog import PIPELINE_STT_PLUS_LLM, ModelCatalog
from voiceflow.config_paths import get_logger
from voiceflow.errors import ActivationPreconditionError, ConfigWriteError
from voiceflow.probe import probe
from voiceflow.profiles import EffectiveSelection

logger = get_logger(__name__)


@dataclass(frozen=True)
class ActivationRecord:
    selected_stt_engine: str
    selected_stt_model_id: str
    selected_llm_model_id: str
    pipeline_mode: str = PIPELINE_STT_PLUS_LLM

    def to_settings(self) -> Dict[str, object]:
        return {
            "stt_engine": self.selected_stt_engine,
            "stt_model": self.selected_stt_model_id,
            "llm_model": self.selected_llm_model_id,
            "pipeline_mode": self.pipeline_mode,
        }

    @classmethod
    def from_settings(cls, data: Dict[str, object]) -> Optional["ActivationRecord"]:
        values = [data.get(key) for key in ("stt_engine", "stt_model", "llm_model")]
        if not all(isinstance(v, str) and v for v in values):
            return None
        mode = data.get("pipeline_mode")
        return cls(*values, pipeline_mode=mode if isinstance(mode, str) and mode else PIPELINE_STT_PLUS_LLM)


class ConfigStore(Protocol):
    def read(self) -> Optional[ActivationRecord]: ...

    def write(self, record: ActivationRecord) -> bool: ...


class SettingsConfigStore:
    """Persists the activation record into settings.json in a single write."""

    def read(self) -> Optional[ActivationRecord]:
        with config_paths.settings_lock:
            if not config_paths.settings:
                config_paths.load_settings()
            if not config_paths.settings.get("setup_complete"):
                return None
            return ActivationRecord.from_settings(config_paths.settings)

    def write(self, record: ActivationRecord) -> bool:
        with config_paths.settings_lock:
            if not config_paths.settings:
                config_paths.load_settings()
            previous = dict(config_paths.settings)
            config_paths.settings.update(record.to_settings())
            config_paths.settings["setup_complete"] = True
            if config_paths.save_settings():
                return True
            # keep memory consistent with what is on disk
            config_paths.settings.clear()
            config_paths.settings.update(previous)
            return False


class ActivationCommitter:
    def __init__(self, catalog: ModelCatalog, models_root: Path, store: Optional[ConfigStore] = None):
        self.catalog = catalog
        self.models_root = Path(models_root)
        self.store: ConfigStore = store if store is not None else SettingsConfigStore()
        self._restart_required = False

    @property
    def restart_required(self) -> bool:
        """Sticky until the process is relaunched."""
        return self._restart_required

    def record_for(self, selection: EffectiveSelection) -> ActivationRecord:
        stt = self.catalog.stt_asset(selection.stt_asset_id)
        llm = self.catalog.llm_asset(selection.llm_asset_id)
        return ActivationRecord(
            selected_stt_engine=stt.engine or stt.family.value,
            selected_stt_model_id=stt.engine_model_id or stt.id,
            selected_llm_model_id=llm.id,
        )

    def commit(self, selection: EffectiveSelection) -> ActivationRecord:
        record = self.record_for(selection)
        missing = [
            asset_id
            for asset_id in (selection.stt_asset_id, selection.llm_asset_id)
            if not probe(self.catalog.asset(asset_id), self.models_root)
        ]
        if missing:
            raise ActivationPreconditionError(missing)

        current = self.store.read()
        if current == record:
            logger.info("Selection %s is already active; nothing to write", selection)
            return record

        if not self.store.write(record):
            raise ConfigWriteError(
                f"Failed to save configuration for {selection.stt_asset_id} + {selection.llm_asset_id}"
            )
        self._restart_required = True
        logger.info("Activated %s; restart required", asdict(record))
        return record
