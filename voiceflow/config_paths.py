# -*- coding: utf-8 -*-
from __future__ import annotations

import json
import logging
import os
import sys
import tempfile
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

APP_NAME = "VoiceFlow"
APP_VERSION = "0.4.0"
CONFIG_FILENAME = "settings.json"
LOG_DIR_NAME = "logs"
MODELS_DIR_NAME = "models"

DEFAULT_SETTINGS: Dict[str, object] = {
    "stt_engine": "moonshine",           # "moonshine" | "qwen3-asr"
    "stt_model": "tiny",
    "llm_model": "qwen3-1.7b",
    "pipeline_mode": "stt-plus-llm",     # "stt-plus-llm" | "consolidated"
    "setup_complete": False,
}

settings_lock = threading.RLock()
settings: Dict[str, object] = {}


def get_config_dir() -> Path:
    """
    All persistent data goes here:
      %APPDATA%/VoiceFlow (Windows)
      $XDG_CONFIG_HOME/VoiceFlow or ~/.config/VoiceFlow (others)
    Subfolders used:
      models/  logs/  (plus settings.json)
    """
    if sys.platform.startswith("win"):
        base_dir = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
    else:
        base_dir = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    config_dir = base_dir / APP_NAME
    config_dir.mkdir(parents=True, exist_ok=True)
    for sub in (MODELS_DIR_NAME, LOG_DIR_NAME):
        (config_dir / sub).mkdir(parents=True, exist_ok=True)
    return config_dir


def get_logs_dir() -> Path:
    logs_dir = get_config_dir() / LOG_DIR_NAME
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


def get_models_dir() -> Path:
    """Root of every downloaded asset; VOICEFLOW_MODELS_DIR overrides it."""
    override = os.environ.get("VOICEFLOW_MODELS_DIR")
    if override:
        return Path(override).expanduser()
    return get_config_dir() / MODELS_DIR_NAME


def get_config_file_path() -> Path:
    return get_config_dir() / CONFIG_FILENAME


def load_settings() -> Dict[str, object]:
    path = get_config_file_path()
    loaded = {}
    if path.exists():
        try:
            loaded = json.loads(path.read_text("utf-8-sig"))
        except Exception:
            get_logger().exception("Unable to read settings from %s", path)
    with settings_lock:
        settings.clear()
        settings.update(DEFAULT_SETTINGS)
        settings.update(loaded)
        return dict(settings)


def save_settings() -> bool:
    """Write the settings snapshot in one step; returns False if the write failed."""
    path = get_config_file_path()
    with settings_lock:
        snapshot = dict(settings)
    tmp_name: Optional[str] = None
    try:
        fd, tmp_name = tempfile.mkstemp(prefix=".settings-", suffix=".json", dir=str(path.parent))
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(json.dumps(snapshot, indent=2))
        os.replace(tmp_name, path)
        return True
    except Exception:
        get_logger().exception("Unable to save settings to %s", path)
        if tmp_name:
            try:
                Path(tmp_name).unlink(missing_ok=True)
            except OSError:
                get_logger().debug("Failed to remove temporary settings file %s", tmp_name, exc_info=True)
        return False


def _bootstrap_runtime_environment() -> None:
    """
    Keep Hugging Face caches inside the VoiceFlow config directory and point
    requests at the certifi bundle when the environment does not provide one.
    """
    try:
        hf_root = get_config_dir() / "hf-cache"
        (hf_root / "hub").mkdir(parents=True, exist_ok=True)
        os.environ.setdefault("HF_HOME", str(hf_root))
        os.environ.setdefault("HF_HUB_CACHE", str(hf_root / "hub"))
        os.environ.setdefault("HF_HUB_DISABLE_TELEMETRY", "1")
    except Exception:
        get_logger().exception("Failed to prepare Hugging Face cache directories")

    try:
        import certifi
    except ImportError:
        get_logger().warning("certifi is unavailable; HTTPS certificate bundle not configured")
        return

    cert_path = Path(certifi.where())
    if not cert_path.exists():
        return

    for env_name in ("SSL_CERT_FILE", "REQUESTS_CA_BUNDLE"):
        current = os.environ.get(env_name)
        if not current or not Path(current).exists():
            os.environ[env_name] = str(cert_path)


LOGGER_NAME = "voiceflow"
_LOG_HANDLER: Optional[RotatingFileHandler] = None
_CONSOLE_HANDLER: Optional[logging.Handler] = None
_LOG_CONFIG_LOCK = threading.Lock()


def _configure_logging() -> logging.Logger:
    global _LOG_HANDLER, _CONSOLE_HANDLER

    with _LOG_CONFIG_LOCK:
        vf_logger = logging.getLogger(LOGGER_NAME)
        if _LOG_HANDLER is None:
            logs_dir = get_logs_dir()
            handler = RotatingFileHandler(
                logs_dir / "voiceflow.log",
                maxBytes=1_048_576,
                backupCount=5,
                encoding="utf-8",
            )
            formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
            handler.setFormatter(formatter)
            handler.setLevel(logging.DEBUG)
            _LOG_HANDLER = handler

            root_logger = logging.getLogger()
            root_logger.addHandler(handler)
            if root_logger.level == logging.NOTSET or root_logger.level > logging.INFO:
                root_logger.setLevel(logging.INFO)

            if _CONSOLE_HANDLER is None:
                console_handler = logging.StreamHandler()
                console_handler.setLevel(logging.WARNING)
                console_handler.setFormatter(formatter)
                root_logger.addHandler(console_handler)
                _CONSOLE_HANDLER = console_handler

            logging.captureWarnings(True)

        vf_logger.setLevel(logging.INFO)
        vf_logger.propagate = True
        return vf_logger


_CONFIGURED_LOGGER = _configure_logging()
_bootstrap_runtime_environment()


def get_logger(name: str = LOGGER_NAME) -> logging.Logger:
    logger = _CONFIGURED_LOGGER if name == LOGGER_NAME else logging.getLogger(name)
    if logger is not _CONFIGURED_LOGGER:
        _configure_logging()
    return logger
