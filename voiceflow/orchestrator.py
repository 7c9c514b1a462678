# -*- coding: utf-8 -*-
"""
orchestrator.py
Drives one setup attempt end to end:

    Idle -> ResolvingProfile -> ProbingStt -> [DownloadingStt -> ProbingStt]
         -> ProbingLlm -> [DownloadingLlm -> ProbingLlm] -> Committing -> Complete

Any error or a cancel moves to Failed and stops; files fetched so far stay on
disk and the next ``run`` re-probes instead of trusting memory. The thread that
calls ``run`` owns all state here and receives every event callback.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from voiceflow.activation import ActivationCommitter, ActivationRecord
from voiceflow.catalog import Asset, ModelCatalog
from voiceflow.config_paths import get_logger
from voiceflow.downloader import FamilyDownloader
from voiceflow.errors import (
    AcquisitionError,
    DownloadCancelledError,
    OrchestrationBusyError,
    PreflightWarning,
    VerificationError,
    VoiceFlowError,
)
from voiceflow.host import HostCapabilities
from voiceflow.probe import probe
from voiceflow.profiles import EffectiveSelection, ProfileResolver

logger = get_logger(__name__)


class Stage(str, Enum):
    IDLE = "idle"
    RESOLVING_PROFILE = "resolving-profile"
    PROBING_STT = "probing-stt"
    DOWNLOADING_STT = "downloading-stt"
    PROBING_LLM = "probing-llm"
    DOWNLOADING_LLM = "downloading-llm"
    COMMITTING = "committing"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class ProgressEvent:
    stage: Stage
    fraction: float
    error_message: Optional[str] = None
    asset_id: Optional[str] = None
    speed_bps: Optional[float] = None
    eta_s: Optional[float] = None


@dataclass
class OrchestrationResult:
    stage: Stage
    selection: Optional[EffectiveSelection] = None
    record: Optional[ActivationRecord] = None
    error: Optional[VoiceFlowError] = None
    cancelled: bool = False
    restart_required: bool = False
    preflight: Optional[PreflightWarning] = None

    @property
    def ok(self) -> bool:
        return self.stage is Stage.COMPLETE

    @property
    def declined(self) -> bool:
        return self.stage is Stage.IDLE and self.preflight is not None


EventCallback = Callable[[ProgressEvent], None]
PreflightCallback = Callable[[PreflightWarning], bool]


class AcquisitionOrchestrator:
    def __init__(
        self,
        catalog: ModelCatalog,
        downloader: FamilyDownloader,
        committer: ActivationCommitter,
        host: HostCapabilities,
        on_event: Optional[EventCallback] = None,
        confirm_preflight: Optional[PreflightCallback] = None,
    ):
        self.catalog = catalog
        self.downloader = downloader
        self.committer = committer
        self.host = host
        self.resolver = ProfileResolver(catalog)
        self.on_event = on_event
        self.confirm_preflight = confirm_preflight
        self.stage = Stage.IDLE
        self.history: List[Stage] = []
        self._busy = threading.Lock()
        self._cancel = threading.Event()
        self._current: Optional[Asset] = None

    @property
    def models_root(self):
        return self.downloader.models_root

    @property
    def restart_required(self) -> bool:
        return self.committer.restart_required

    # ---------------- Public API ----------------
    def run(
        self,
        profile_id: Optional[str] = None,
        stt_override: Optional[str] = None,
        llm_override: Optional[str] = None,
    ) -> OrchestrationResult:
        if not self._busy.acquire(blocking=False):
            raise OrchestrationBusyError("A model setup is already in progress")
        try:
            self._cancel.clear()
            self.history = []
            self._enter(Stage.IDLE)
            return self._run(profile_id, stt_override, llm_override)
        finally:
            self._current = None
            self._busy.release()

    def cancel(self) -> None:
        """Safe from any thread; stops the running download and any later stage."""
        self._cancel.set()
        current = self._current
        if current is not None:
            self.downloader.cancel(current.family)

    def skip(self) -> OrchestrationResult:
        """"Skip for now": leave setup without activating anything."""
        if self._busy.locked():
            raise OrchestrationBusyError("Cancel the running setup before skipping it")
        logger.info("Model setup skipped by user")
        self.history = []
        self._enter(Stage.IDLE)
        return OrchestrationResult(stage=Stage.IDLE)

    # ---------------- State machine ----------------
    def _run(self, profile_id, stt_override, llm_override) -> OrchestrationResult:
        selection: Optional[EffectiveSelection] = None
        try:
            self._enter(Stage.RESOLVING_PROFILE)
            selection = self.resolver.resolve(profile_id, stt_override, llm_override)
            logger.info("Model setup for %s + %s", selection.stt_asset_id, selection.llm_asset_id)

            warning = self.resolver.preflight(selection, self.host)
            if warning is not None:
                logger.warning("Preflight warning for %s: %s", warning.asset_id, warning.message)
                accepted = self.confirm_preflight(warning) if self.confirm_preflight else False
                if not accepted:
                    logger.info("Preflight warning declined; returning to idle")
                    self._enter(Stage.IDLE)
                    return OrchestrationResult(stage=Stage.IDLE, selection=selection, preflight=warning)

            stt = self.catalog.stt_asset(selection.stt_asset_id)
            llm = self.catalog.llm_asset(selection.llm_asset_id)
            self._acquire_stage(stt, Stage.PROBING_STT, Stage.DOWNLOADING_STT)
            self._acquire_stage(llm, Stage.PROBING_LLM, Stage.DOWNLOADING_LLM)

            self._check_cancelled(None)
            self._enter(Stage.COMMITTING)
            record = self.committer.commit(selection)
            self._enter(Stage.COMPLETE, fraction=1.0)
            return OrchestrationResult(
                stage=Stage.COMPLETE,
                selection=selection,
                record=record,
                restart_required=self.committer.restart_required,
            )
        except VoiceFlowError as exc:
            cancelled = isinstance(exc, DownloadCancelledError)
            if cancelled:
                logger.info("Model setup cancelled during %s", self.stage.value)
            else:
                logger.error("Model setup failed during %s: %s", self.stage.value, exc)
            self._enter(Stage.FAILED, error=exc)
            return OrchestrationResult(
                stage=Stage.FAILED,
                selection=selection,
                error=exc,
                cancelled=cancelled,
                restart_required=self.committer.restart_required,
            )

    def _acquire_stage(self, asset: Asset, probing: Stage, downloading: Stage) -> None:
        self._check_cancelled(asset)
        self._enter(probing, asset_id=asset.id)
        if probe(asset, self.models_root):
            logger.info("%s already present; skipping download", asset.id)
            return

        self._check_cancelled(asset)
        self._current = asset
        self._enter(downloading, asset_id=asset.id)
        try:
            job = self.downloader.start(asset)
            # cancel() may have run before the job was registered
            if self._cancel.is_set():
                self.downloader.cancel(asset.family)
            result = self.downloader.wait(
                job,
                on_progress=lambda fraction: self._emit(
                    downloading, fraction, asset_id=asset.id, speed_bps=job.speed_bps, eta_s=job.eta_s
                ),
            )
        finally:
            self._current = None
        if not result.ok:
            raise result.error or AcquisitionError(asset.id, "download failed")

        self._enter(probing, asset_id=asset.id)
        if not probe(asset, self.models_root):
            raise VerificationError(asset.id, "files are missing after download", asset.local_path(self.models_root))

    def _check_cancelled(self, asset: Optional[Asset]) -> None:
        if self._cancel.is_set():
            raise DownloadCancelledError(asset.id if asset else "setup")

    def _enter(self, stage: Stage, fraction: float = 0.0, error: Optional[Exception] = None,
               asset_id: Optional[str] = None) -> None:
        self.stage = stage
        self.history.append(stage)
        if error is not None:
            asset_id = getattr(error, "asset_id", None) or getattr(error, "item_id", None) or asset_id
        self._emit(stage, fraction, error_message=str(error) if error else None, asset_id=asset_id)

    def _emit(self, stage: Stage, fraction: float, error_message: Optional[str] = None,
              asset_id: Optional[str] = None, speed_bps: Optional[float] = None,
              eta_s: Optional[float] = None) -> None:
        if self.on_event is None:
            return
        try:
            self.on_event(ProgressEvent(stage, max(0.0, min(1.0, fraction)), error_message, asset_id, speed_bps, eta_s))
        except Exception:
            logger.exception("Progress listener raised for stage %s", stage.value)
