# -*- coding: utf-8 -*-
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from voiceflow.catalog import AssetFamily, ModelCatalog
from voiceflow.config_paths import get_logger
from voiceflow.errors import CatalogLookupError, PreflightWarning
from voiceflow.host import HostCapabilities

logger = get_logger(__name__)


@dataclass(frozen=True)
class EffectiveSelection:
    stt_asset_id: str
    llm_asset_id: str


class ProfileResolver:
    """Turns a profile id and/or manual picks into the concrete asset pair."""

    def __init__(self, catalog: ModelCatalog):
        self.catalog = catalog

    def resolve(
        self,
        profile_id: Optional[str] = None,
        stt_override: Optional[str] = None,
        llm_override: Optional[str] = None,
    ) -> EffectiveSelection:
        if profile_id:
            profile = self.catalog.profile(profile_id)
            stt_id, llm_id = profile.stt_asset_id, profile.llm_asset_id
        else:
            if not stt_override:
                raise CatalogLookupError("asset", "", "A speech model must be chosen when no profile is given")
            if not llm_override:
                raise CatalogLookupError("asset", "", "A formatting model must be chosen when no profile is given")
            stt_id, llm_id = stt_override, llm_override

        if stt_override:
            stt_id = stt_override
        if llm_override:
            llm_id = llm_override

        self.catalog.stt_asset(stt_id)
        self.catalog.llm_asset(llm_id)
        selection = EffectiveSelection(stt_asset_id=stt_id, llm_asset_id=llm_id)
        logger.debug("Resolved profile=%s overrides=(%s, %s) -> %s", profile_id, stt_override, llm_override, selection)
        return selection

    def auto_select(self, host: HostCapabilities) -> str:
        """Highest tier whose RAM floor the host meets; the lowest tier otherwise."""
        tiers = self.catalog.profiles_by_tier()
        if not tiers:
            raise CatalogLookupError("profile", "", "The catalog defines no profiles")
        chosen = tiers[0]
        for profile in tiers:
            if profile.min_ram_gb <= host.physical_memory_gb:
                chosen = profile
        return chosen.id

    def requires_optional_runtime(self, selection: EffectiveSelection) -> bool:
        stt = self.catalog.stt_asset(selection.stt_asset_id)
        return stt.family is AssetFamily.MULTI_FILE_CONSOLIDATED

    def preflight(self, selection: EffectiveSelection, host: HostCapabilities) -> Optional[PreflightWarning]:
        if not self.requires_optional_runtime(selection) or host.optional_runtime_available:
            return None
        stt = self.catalog.stt_asset(selection.stt_asset_id)
        return PreflightWarning(
            asset_id=stt.id,
            message=(
                f"{stt.display_name} runs in a separate Python 3.10+ runtime that was not found "
                "on this machine. Install Python from https://www.python.org/downloads/ or choose "
                "the Lightweight profile."
            ),
        )
