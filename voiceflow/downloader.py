# -*- coding: utf-8 -*-
"""
downloader.py
Per-family model download manager. Each family (GGUF formatter, Moonshine,
Qwen3-ASR) has at most one running job; files are fetched strictly in catalog
order by a background worker thread that only reports back through the job's
queue. The thread that calls ``wait`` applies those reports to the job and
fires the progress callback, so job state is only ever touched there.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from queue import Queue
from typing import Callable, Dict, List, Optional, Tuple

import requests

from voiceflow.catalog import Asset, AssetFamily, AssetFile
from voiceflow.config_paths import APP_NAME, APP_VERSION, get_logger, get_logs_dir
from voiceflow.errors import (
    AcquisitionError,
    DownloadCancelledError,
    DownloadInProgressError,
    FilesystemError,
    NetworkError,
    VerificationError,
)
from voiceflow.probe import file_present, probe

logger = get_logger(__name__)

_CHUNK = 1 << 18  # 256 KiB
USER_AGENT = f"{APP_NAME}/{APP_VERSION}"
# Connect timeout only; a stalled transfer waits until the user cancels it.
DEFAULT_TIMEOUT: Tuple[float, Optional[float]] = (10, None)
_WORKER_STOP_TIMEOUT = 5.0

ProgressCallback = Callable[[float], None]

_trace_lock = threading.Lock()


def trace_download_step(current_step: str, expected_next: Optional[str] = None) -> None:
    """Append a human-readable trace entry for the model download workflow."""

    step = current_step.strip()
    next_step = (expected_next or "").strip()
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")

    try:
        with _trace_lock:
            trace_path = get_logs_dir() / "download_trace.log"
            with trace_path.open("a", encoding="utf-8") as handle:
                if next_step:
                    handle.write(f"{timestamp} | {step} | next: {next_step}\n")
                else:
                    handle.write(f"{timestamp} | {step}\n")
    except Exception:
        logger.exception("Failed to write model download trace entry")


_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


def human_bytes(n: Optional[float]) -> str:
    if n is None:
        return "unknown"
    value = float(n)
    for unit in _SIZE_UNITS[:-1]:
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024.0
    return f"{value:.1f} {_SIZE_UNITS[-1]}"


def human_time(s: Optional[float]) -> str:
    if s is None:
        return "-"
    minutes, seconds = divmod(int(s), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h{minutes:02d}m"
    if minutes:
        return f"{minutes}m{seconds:02d}s"
    return f"{seconds}s"

class JobState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class _Transfer:
    """Holds the response currently being streamed so ``cancel`` can close it."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._response: Optional[requests.Response] = None

    def attach(self, response: requests.Response) -> None:
        with self._lock:
            self._response = response

    def detach(self) -> None:
        with self._lock:
            self._response = None

    def close(self) -> None:
        with self._lock:
            response = self._response
        if response is not None:
            try:
                response.close()
            except Exception:
                logger.debug("Closing the in-flight response raised", exc_info=True)


class DownloadJob:
    def __init__(self, asset: Asset, plan: Tuple[AssetFile, ...]):
        self.asset = asset
        self.asset_id = asset.id
        self.family: AssetFamily = asset.family
        self.plan = plan
        self.total_files = len(asset.files())
        self.completed_files = self.total_files - len(plan)
        self.current_file: Optional[str] = None
        self.current_file_progress = 0.0
        self.bytes_downloaded = 0
        self.current_file_bytes = 0
        self.bytes_total: Optional[int] = None
        self.state = JobState.IDLE
        self.error: Optional[AcquisitionError] = None
        self.cancelled = False
        self.network_requests = 0
        self.fetched_files: List[str] = []
        self.start_ts: Optional[float] = None
        self.channel: "Queue[tuple]" = Queue()
        self.cancel_event = threading.Event()
        self.transfer = _Transfer()
        self.worker: Optional[threading.Thread] = None
        self._reported: Optional[float] = None

    @property
    def fraction(self) -> float:
        if self.total_files == 0:
            return 1.0
        partial = self.current_file_progress if self.total_files == 1 else 0.0
        return min((self.completed_files + partial) / self.total_files, 1.0)

    @property
    def speed_bps(self) -> Optional[float]:
        if self.start_ts is None: return None
        dt = max(time.time() - self.start_ts, 1e-6)
        return self.bytes_downloaded / dt

    @property
    def eta_s(self) -> Optional[float]:
        """Single-file jobs only; multi-file byte totals are unknown up front."""
        if self.total_files != 1:
            return None
        if not self.bytes_total or self.speed_bps is None or self.speed_bps <= 0:
            return None
        remain = max(self.bytes_total - self.current_file_bytes, 0)
        return remain / self.speed_bps

    def result(self) -> "DownloadResult":
        return DownloadResult(
            asset_id=self.asset_id,
            state=self.state,
            error=self.error,
            cancelled=self.cancelled,
            fetched_files=list(self.fetched_files),
        )


@dataclass
class DownloadResult:
    asset_id: str
    state: JobState
    error: Optional[AcquisitionError] = None
    cancelled: bool = False
    fetched_files: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is JobState.SUCCEEDED


class _TransferCancelled(Exception):
    pass


class FamilyDownloader:
    """Single-flight downloader keyed by asset family."""

    def __init__(
        self,
        models_root: Path,
        session_factory: Callable[[], requests.Session] = requests.Session,
        chunk_size: int = _CHUNK,
        timeout: Tuple[float, Optional[float]] = DEFAULT_TIMEOUT,
    ):
        self.models_root = Path(models_root)
        self._session_factory = session_factory
        self._chunk_size = chunk_size
        self._timeout = timeout
        self._lock = threading.Lock()
        self._jobs: Dict[AssetFamily, DownloadJob] = {}

    # ---------------- Job table ----------------
    def active_job(self, family: AssetFamily) -> Optional[DownloadJob]:
        with self._lock:
            return self._jobs.get(family)

    def is_running(self, family: AssetFamily) -> bool:
        return self.active_job(family) is not None

    def start(self, asset: Asset) -> DownloadJob:
        """Register a job for ``asset`` and start its worker; rejects a second job per family."""
        with self._lock:
            running = self._jobs.get(asset.family)
            if running is not None:
                raise DownloadInProgressError(asset.id, running.asset_id)
            plan = tuple(item for item in asset.files() if not file_present(asset, item, self.models_root))
            job = DownloadJob(asset, plan)
            job.state = JobState.RUNNING
            job.start_ts = time.time()
            self._jobs[asset.family] = job

        if not plan:
            trace_download_step(f"acquire {asset.id}: all files present", "verify")
            job.channel.put(("done",))
            return job

        trace_download_step(
            f"acquire {asset.id}: {len(plan)} of {job.total_files} files to fetch",
            "spawn worker thread",
        )
        logger.info("Starting download of %s (%d/%d files missing)", asset.id, len(plan), job.total_files)
        worker = threading.Thread(
            target=self._download_worker,
            args=(job,),
            name=f"download-{asset.family.value}",
            daemon=True,
        )
        job.worker = worker
        worker.start()
        return job

    def wait(self, job: DownloadJob, on_progress: Optional[ProgressCallback] = None) -> DownloadResult:
        """Apply worker reports to ``job`` on the calling thread until it terminates."""
        try:
            while job.state is JobState.RUNNING:
                self._apply(job, job.channel.get(), on_progress)
        except BaseException:
            # Nobody is left to read the queue: stop the worker before the family slot is freed.
            logger.warning("Stopping download of %s after an interrupted wait", job.asset_id)
            job.cancel_event.set()
            job.transfer.close()
            if job.worker is not None and job.worker is not threading.current_thread():
                job.worker.join(timeout=_WORKER_STOP_TIMEOUT)
            raise
        finally:
            self._release(job)
        return job.result()

    def acquire(self, asset: Asset, on_progress: Optional[ProgressCallback] = None) -> DownloadResult:
        return self.wait(self.start(asset), on_progress)

    def cancel(self, family: AssetFamily) -> bool:
        """Stop the running job for ``family``; completed files stay on disk."""
        job = self.active_job(family)
        if job is None:
            return False
        trace_download_step(f"cancel {job.asset_id}", "close in-flight transfer")
        logger.info("Cancelling download of %s", job.asset_id)
        job.cancel_event.set()
        job.transfer.close()
        return True

    def _release(self, job: DownloadJob) -> None:
        with self._lock:
            if self._jobs.get(job.family) is job:
                del self._jobs[job.family]

    # ---------------- Coordinating side ----------------
    def _report(self, job: DownloadJob, on_progress: Optional[ProgressCallback]) -> None:
        fraction = job.fraction
        if job._reported is not None and fraction <= job._reported:
            return
        job._reported = fraction
        if on_progress is not None:
            on_progress(fraction)

    def _apply(self, job: DownloadJob, message: tuple, on_progress: Optional[ProgressCallback]) -> None:
        kind = message[0]
        if kind == "file_started":
            job.current_file = message[1]
            job.current_file_progress = 0.0
            job.current_file_bytes = 0
            job.bytes_total = None
            job.network_requests += 1
            self._report(job, on_progress)
        elif kind == "bytes":
            _, _path, downloaded, file_total = message
            job.bytes_downloaded += downloaded - job.current_file_bytes
            job.current_file_bytes = downloaded
            job.bytes_total = file_total or None
            job.current_file_progress = min(downloaded / file_total, 1.0) if file_total else 0.0
            if job.total_files == 1:
                self._report(job, on_progress)
        elif kind == "file_done":
            job.completed_files += 1
            job.fetched_files.append(message[1])
            job.current_file_progress = 0.0
            trace_download_step(f"{job.asset_id}: saved {message[1]}", "next file")
            self._report(job, on_progress)
        elif kind == "error":
            _, error_kind, text, path = message
            error_cls = {"network": NetworkError, "filesystem": FilesystemError}.get(error_kind, AcquisitionError)
            job.error = error_cls(job.asset_id, text, path)
            job.state = JobState.FAILED
            trace_download_step(f"{job.asset_id}: failed", str(job.error))
            logger.error("Model download failed: %s", job.error)
        elif kind == "cancelled":
            job.cancelled = True
            job.error = DownloadCancelledError(job.asset_id, message[1])
            job.state = JobState.FAILED
            trace_download_step(f"{job.asset_id}: cancelled", "report to caller")
            logger.info("Download of %s cancelled", job.asset_id)
        elif kind == "done":
            if probe(job.asset, self.models_root):
                job.state = JobState.SUCCEEDED
                job.completed_files = job.total_files
                job.current_file_progress = 0.0
                trace_download_step(f"{job.asset_id}: verified", "return success")
                logger.info(
                    "Download of %s complete (%d files, %s over %d requests)",
                    job.asset_id,
                    len(job.fetched_files),
                    human_bytes(job.bytes_downloaded),
                    job.network_requests,
                )
                self._report(job, on_progress)
            else:
                job.error = VerificationError(
                    job.asset_id,
                    "downloaded files failed verification",
                    job.asset.local_path(self.models_root),
                )
                job.state = JobState.FAILED
                trace_download_step(f"{job.asset_id}: verification failed", "report to caller")
                logger.error("Model download failed: %s", job.error)
        else:
            logger.warning("Ignoring unknown download message %r", message)

    # ---------------- Worker side ----------------
    def _download_worker(self, job: DownloadJob) -> None:
        put = job.channel.put
        asset = job.asset
        try:
            session = self._session_factory()
        except Exception as exc:
            logger.exception("Unable to create HTTP session for %s", asset.id)
            put(("error", "network", f"Unable to create HTTP session: {exc}", None))
            return
        try:
            session.headers["User-Agent"] = USER_AGENT
            for item in job.plan:
                if job.cancel_event.is_set():
                    put(("cancelled", item.path))
                    return
                target = asset.local_path(self.models_root, item)
                try:
                    target.parent.mkdir(parents=True, exist_ok=True)
                except OSError as exc:
                    put(("error", "filesystem", f"Failed to create model directory: {exc}", str(target.parent)))
                    return
                temp_path = target.with_name(target.name + ".part")
                _discard(temp_path)

                put(("file_started", item.path))
                try:
                    self._fetch(session, asset.url_for(item), temp_path, item.path, job)
                except Exception as exc:
                    _discard(temp_path)
                    if job.cancel_event.is_set() or isinstance(exc, _TransferCancelled):
                        put(("cancelled", item.path))
                    elif isinstance(exc, requests.RequestException):
                        put(("error", "network", f"Download failed: {exc}", item.path))
                    elif isinstance(exc, OSError):
                        put(("error", "filesystem", f"Failed to write {item.path}: {exc}", str(temp_path)))
                    else:
                        logger.exception("Unexpected error while downloading %s", item.path)
                        put(("error", "unexpected", f"Download failed: {exc}", item.path))
                    return

                try:
                    temp_path.replace(target)
                except OSError as exc:
                    _discard(temp_path)
                    put(("error", "filesystem", f"Failed to save {item.path}: {exc}", str(target)))
                    return
                put(("file_done", item.path))
            put(("done",))
        except Exception as exc:
            # The coordinating thread blocks on the queue; it must always get a terminal message.
            logger.exception("Download worker for %s crashed", asset.id)
            put(("error", "unexpected", f"Download failed: {exc}", None))
        finally:
            try:
                session.close()
            except Exception:
                logger.debug("Failed to close HTTP session", exc_info=True)

    def _fetch(self, session: requests.Session, url: str, temp_path: Path, rel_path: str, job: DownloadJob) -> None:
        put = job.channel.put
        with session.get(url, stream=True, timeout=self._timeout) as response:
            job.transfer.attach(response)
            try:
                response.raise_for_status()
                content_length = response.headers.get("Content-Length")
                file_total = int(content_length) if content_length and content_length.isdigit() else 0
                downloaded = 0
                with open(temp_path, "wb") as handle:
                    for chunk in response.iter_content(chunk_size=self._chunk_size):
                        if job.cancel_event.is_set():
                            raise _TransferCancelled()
                        if not chunk:
                            continue
                        handle.write(chunk)
                        downloaded += len(chunk)
                        put(("bytes", rel_path, downloaded, file_total))
            finally:
                job.transfer.detach()


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError:
        logger.warning("Unable to remove partial download %s", path, exc_info=True)
