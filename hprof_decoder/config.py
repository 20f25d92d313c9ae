"""Configuration for the HPROF decoder.

Settings come from the environment (optionally seeded from a ``.env`` file
through python-dotenv). Every variable is prefixed ``HPROF_DECODER_``.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = "HPROF_DECODER_"

_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")
_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


@dataclass
class DecoderConfig:
    """Settings for one decoder."""

    log_level: str = "WARNING"

    # Files larger than this are memory-mapped instead of read into memory;
    # 0 turns memory-mapping off
    mmap_threshold_mb: int = 100

    # Keep raw instance field bytes; sizes are always kept
    retain_instance_data: bool = True

    # Warnings past this count are only counted
    max_warnings: int = 1000

    @property
    def mmap_threshold_bytes(self) -> int:
        return self.mmap_threshold_mb * 1024 * 1024


def _parse_int(name: str, raw: str, default: int) -> int:
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Ignoring {ENV_PREFIX}{name}={raw!r}: not an integer")
        return default
    if value < 0:
        logger.warning(f"Ignoring {ENV_PREFIX}{name}={raw!r}: must not be negative")
        return default
    return value


def _parse_bool(name: str, raw: str, default: bool) -> bool:
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    logger.warning(f"Ignoring {ENV_PREFIX}{name}={raw!r}: not a boolean")
    return default


def config_from_mapping(env: Mapping[str, str]) -> DecoderConfig:
    """Build a config from ``HPROF_DECODER_*`` keys in ``env``."""
    config = DecoderConfig()

    level = env.get(ENV_PREFIX + "LOG_LEVEL")
    if level:
        if level.upper() in _LOG_LEVELS:
            config.log_level = level.upper()
        else:
            logger.warning(f"Ignoring {ENV_PREFIX}LOG_LEVEL={level!r}: unknown level")

    raw = env.get(ENV_PREFIX + "MMAP_THRESHOLD_MB")
    if raw:
        config.mmap_threshold_mb = _parse_int("MMAP_THRESHOLD_MB", raw, config.mmap_threshold_mb)

    raw = env.get(ENV_PREFIX + "RETAIN_INSTANCE_DATA")
    if raw:
        config.retain_instance_data = _parse_bool("RETAIN_INSTANCE_DATA", raw,
                                                  config.retain_instance_data)

    raw = env.get(ENV_PREFIX + "MAX_WARNINGS")
    if raw:
        config.max_warnings = _parse_int("MAX_WARNINGS", raw, config.max_warnings)

    return config


def load_config(dotenv_path: Optional[str] = None) -> DecoderConfig:
    """Load ``.env`` (without overriding the real environment) and read settings."""
    load_dotenv(dotenv_path or find_dotenv(usecwd=True))
    return config_from_mapping(os.environ)
