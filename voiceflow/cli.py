# -*- coding: utf-8 -*-
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional

from voiceflow.activation import ActivationCommitter, SettingsConfigStore
from voiceflow.catalog import ModelCatalog, default_catalog
from voiceflow.config_paths import APP_NAME, get_logger, get_models_dir, load_settings
from voiceflow.downloader import FamilyDownloader, human_bytes, human_time
from voiceflow.errors import CatalogLookupError, PreflightWarning
from voiceflow.host import HostCapabilities, detect_host_capabilities
from voiceflow.orchestrator import AcquisitionOrchestrator, ProgressEvent, Stage
from voiceflow.probe import probe
from voiceflow.profiles import ProfileResolver

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_DECLINED = 3
EXIT_CANCELLED = 130

_STAGE_LABELS = {
    Stage.RESOLVING_PROFILE: "Resolving selection",
    Stage.PROBING_STT: "Checking speech recognition model",
    Stage.DOWNLOADING_STT: "Downloading speech recognition model",
    Stage.PROBING_LLM: "Checking text formatting model",
    Stage.DOWNLOADING_LLM: "Downloading text formatting model",
    Stage.COMMITTING: "Saving configuration",
    Stage.COMPLETE: "Setup complete",
}


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog=APP_NAME, add_help=True, description="Download and activate VoiceFlow models")
    choice = parser.add_mutually_exclusive_group()
    choice.add_argument("--profile", metavar="ID", help="Set up a named profile (lightweight, recommended, quality)")
    choice.add_argument("--auto", action="store_true", help="Pick the profile that fits this machine's memory")
    parser.add_argument("--stt", metavar="ASSET_ID", help="Speech recognition model (overrides the profile)")
    parser.add_argument("--llm", metavar="ASSET_ID", help="Text formatting model (overrides the profile)")
    parser.add_argument("--yes", action="store_true", help="Continue even if the optional runtime is missing")
    parser.add_argument("--models-dir", metavar="PATH", help="Directory that holds downloaded models")
    parser.add_argument("--list", action="store_true", help="List profiles and models with their local status")
    parser.add_argument("--status", action="store_true", help="Show the active configuration")
    args, _ = parser.parse_known_args(argv[1:])
    return args


def _print_listing(catalog: ModelCatalog, models_root: Path) -> None:
    print("Profiles:")
    for profile in catalog.profiles_by_tier():
        print(f"  {profile.id:<12} {profile.name} ({profile.download_size}) - {profile.best_for}")
    print("Speech recognition models:")
    for asset in catalog.stt_assets():
        mark = "installed" if probe(asset, models_root) else "missing"
        print(f"  {asset.id:<16} {asset.display_name:<18} {asset.size_estimate:>9}  [{mark}]")
    print("Text formatting models:")
    for asset in catalog.llm_assets():
        mark = "installed" if probe(asset, models_root) else "missing"
        print(f"  {asset.id:<16} {asset.display_name:<18} {asset.size_estimate:>9}  [{mark}]")


def _print_status() -> int:
    record = SettingsConfigStore().read()
    if record is None:
        print("No models have been activated yet.")
        return EXIT_OK
    print(f"Speech engine:   {record.selected_stt_engine} ({record.selected_stt_model_id})")
    print(f"Formatter model: {record.selected_llm_model_id}")
    print(f"Pipeline mode:   {record.pipeline_mode}")
    return EXIT_OK


class _ConsoleReporter:
    def __init__(self, stream=None):
        self.stream = stream or sys.stdout
        self._last_stage: Optional[Stage] = None
        self._last_pct = -1

    def __call__(self, event: ProgressEvent) -> None:
        if event.stage is Stage.FAILED:
            print(f"\nFailed: {event.error_message}", file=self.stream)
            return
        label = _STAGE_LABELS.get(event.stage)
        if label is None:
            return
        if event.stage is not self._last_stage:
            self._last_stage = event.stage
            self._last_pct = -1
            suffix = f" [{event.asset_id}]" if event.asset_id else ""
            print(f"\n{label}{suffix}", file=self.stream, end="")
        if event.stage in (Stage.DOWNLOADING_STT, Stage.DOWNLOADING_LLM):
            pct = int(event.fraction * 100)
            if pct != self._last_pct:
                self._last_pct = pct
                line = f"\r{label} [{event.asset_id}] {pct:3d}%"
                if event.speed_bps:
                    line += f"  {human_bytes(event.speed_bps)}/s"
                if event.eta_s is not None:
                    line += f"  ETA {human_time(event.eta_s)}"
                print(line, file=self.stream, end="")
        self.stream.flush()


def _confirm_on_console(auto_accept: bool):
    def _confirm(warning: PreflightWarning) -> bool:
        print(f"\nWarning: {warning.message}")
        if auto_accept:
            logger.info("Preflight warning auto-accepted for %s", warning.asset_id)
            return True
        try:
            answer = input("Download anyway? [y/N] ")
        except EOFError:
            return False
        return answer.strip().lower() in ("y", "yes")

    return _confirm


def run_setup(
    args: argparse.Namespace,
    catalog: Optional[ModelCatalog] = None,
    host: Optional[HostCapabilities] = None,
    downloader: Optional[FamilyDownloader] = None,
) -> int:
    catalog = catalog or default_catalog()
    models_root = Path(args.models_dir).expanduser() if args.models_dir else get_models_dir()

    if args.list:
        _print_listing(catalog, models_root)
        return EXIT_OK
    if args.status:
        return _print_status()

    if not (args.profile or args.auto or (args.stt and args.llm)):
        print("Choose --profile, --auto, or both --stt and --llm (see --list).", file=sys.stderr)
        return EXIT_USAGE

    host = host or detect_host_capabilities()
    profile_id = args.profile
    if args.auto:
        profile_id = ProfileResolver(catalog).auto_select(host)
        print(f"Selected profile '{profile_id}' for {host.physical_memory_gb} GB of memory")

    orchestrator = AcquisitionOrchestrator(
        catalog,
        downloader or FamilyDownloader(models_root),
        ActivationCommitter(catalog, models_root, SettingsConfigStore()),
        host,
        on_event=_ConsoleReporter(),
        confirm_preflight=_confirm_on_console(args.yes),
    )
    try:
        result = orchestrator.run(profile_id, args.stt, args.llm)
    except KeyboardInterrupt:
        orchestrator.cancel()
        print("\nDownload cancelled. Files downloaded so far are kept for the next attempt.")
        return EXIT_CANCELLED
    print()

    if result.ok:
        if result.restart_required:
            print("Restart VoiceFlow to use the new models.")
        else:
            print("These models are already active.")
        return EXIT_OK
    if result.declined:
        print("Setup skipped. You can download models later.")
        return EXIT_DECLINED
    if result.cancelled:
        return EXIT_CANCELLED
    if isinstance(result.error, CatalogLookupError):
        return EXIT_USAGE
    print("Run the same command again to retry; completed downloads will be reused.")
    return EXIT_FAILED


def main(argv: list[str]) -> int:
    args = parse_cli_args(argv)
    logger.debug("Parsed CLI arguments: %s", args)
    load_settings()
    return run_setup(args)


def console_entry() -> None:
    sys.exit(main(sys.argv))
