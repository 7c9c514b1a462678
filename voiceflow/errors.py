"""VoiceFlow model setup exception hierarchy."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union


class VoiceFlowError(Exception):
    """Base exception for all VoiceFlow setup errors."""


class CatalogLookupError(VoiceFlowError):
    """Unknown asset or profile id."""

    def __init__(self, kind: str, item_id: str, message: Optional[str] = None) -> None:
        self.kind = kind
        self.item_id = item_id
        super().__init__(message or f"Unknown {kind} '{item_id}'")


class InvalidSelectionError(CatalogLookupError):
    """An asset id was used for the wrong role (e.g. an LLM as STT)."""

    def __init__(self, item_id: str, expected: str) -> None:
        self.expected = expected
        super().__init__("asset", item_id, f"Asset '{item_id}' cannot be used as {expected}")


class AcquisitionError(VoiceFlowError):
    """Download of an asset could not be completed."""

    def __init__(self, asset_id: str, message: str, path: Optional[Union[str, Path]] = None) -> None:
        self.asset_id = asset_id
        self.path = str(path) if path is not None else None
        self.detail = message
        where = f" ({self.path})" if self.path else ""
        super().__init__(f"{asset_id}: {message}{where}")


class NetworkError(AcquisitionError):
    """Connection or HTTP error while fetching a file."""


class FilesystemError(AcquisitionError):
    """Directory creation or move-into-place failed."""


class VerificationError(AcquisitionError):
    """Files were written but the asset still does not probe complete."""


class DownloadCancelledError(AcquisitionError):
    """The user cancelled the download."""

    def __init__(self, asset_id: str, path: Optional[Union[str, Path]] = None) -> None:
        super().__init__(asset_id, "download cancelled", path)


class DownloadInProgressError(AcquisitionError):
    """A download for the same family is already running."""

    def __init__(self, asset_id: str, running_asset_id: str) -> None:
        self.running_asset_id = running_asset_id
        super().__init__(asset_id, f"a download for this model family is already running ({running_asset_id})")


class ActivationPreconditionError(VoiceFlowError):
    """Commit attempted before both assets are complete on disk."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"Cannot activate selection; incomplete assets: {', '.join(self.missing)}")


class ConfigWriteError(VoiceFlowError):
    """The configuration store refused or failed the write."""


class OrchestrationBusyError(VoiceFlowError):
    """The orchestrator is already running an acquisition."""


@dataclass(frozen=True)
class PreflightWarning:
    """Not an error: a user-confirmable gate shown before downloads start."""

    asset_id: str
    message: str
