# -*- coding: utf-8 -*-
from __future__ import annotations
import sys

from voiceflow.config_paths import APP_VERSION, get_logger
from voiceflow.cli import main as cli_main

logger = get_logger(__name__)


def main(argv: list[str]) -> int:
    logger.info("VoiceFlow model setup starting (version %s)", APP_VERSION)
    code = cli_main(argv)
    logger.info("VoiceFlow model setup finished with exit code %s", code)
    return code


if __name__ == "__main__":
    sys.exit(main(sys.argv))
