# -*- coding: utf-8 -*-
"""
Swatch: Perceptual palette extraction from sampled pixels
Copyright (c) 2026 opticsWolf

SPDX-License-Identifier: LGPL-3.0-or-later

Swatch Configuration
Environment variables and defaults shared by the clustering modules.
"""
import os
from typing import Literal


class Config:
    """Configuration class for Swatch."""

    # Logging
    LOG_LEVEL: str = os.environ.get("SWATCH_LOG_LEVEL", "INFO")

    # Assignment kernel
    CHUNK_SIZE: int = int(os.environ.get("SWATCH_CHUNK_SIZE", "1024"))
    NEAREST_STRATEGY: Literal["scalar", "blocked"] = os.environ.get("SWATCH_NEAREST_STRATEGY", "scalar")

    # Clustering defaults
    DEFAULT_K: int = int(os.environ.get("SWATCH_DEFAULT_K", "16"))
    DEFAULT_MAX_ITER: int = int(os.environ.get("SWATCH_DEFAULT_MAX_ITER", "40"))
    DEFAULT_TOL: float = float(os.environ.get("SWATCH_DEFAULT_TOL", "1e-3"))
    DEFAULT_SEED: int = int(os.environ.get("SWATCH_DEFAULT_SEED", "1"))

    # Sampling and comparison
    MAX_SAMPLES: int = int(os.environ.get("SWATCH_MAX_SAMPLES", "300000"))
    TAIL_LIMIT: int = int(os.environ.get("SWATCH_TAIL_LIMIT", "6"))

    SUPPORTED_STRATEGIES = ("scalar", "blocked")
    SUPPORTED_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}

    @classmethod
    def validate_strategy(cls, strategy: str) -> bool:
        """Validate nearest-centroid strategy name."""
        return strategy in cls.SUPPORTED_STRATEGIES

    @classmethod
    def validate_chunk_size(cls, chunk_size: int) -> bool:
        """Validate assignment chunk size."""
        return 1 <= chunk_size <= 1 << 20

    @classmethod
    def validate_log_level(cls, level: str) -> bool:
        return level.upper() in cls.SUPPORTED_LOG_LEVELS


# Global config instance
config = Config()
