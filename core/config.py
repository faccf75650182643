"""Runtime configuration for the matching and trust layers.

Every threshold used by the line matcher, anomaly detector and trust
evaluator lives here as a Pydantic model with production defaults.
Selected values can be overridden from the environment (a `.env` file at
the repo root is loaded when present).

Usage:
    from core.config import load_settings

    settings = load_settings()
    service = TrustService(..., config=settings.trust, anomaly_config=settings.anomaly)
"""

import os
from pathlib import Path
from typing import Callable, Optional, TypeVar

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator


ENV_PATH = Path(__file__).resolve().parents[1] / ".env"

T = TypeVar("T")


# =============================================================================
# Line Matching
# =============================================================================

class MatchBandConfig(BaseModel):
    """Score cut-offs for the high/medium/low confidence bands."""
    high: float = Field(default=0.80, ge=0, le=1, description="Auto-assign")
    medium: float = Field(default=0.50, ge=0, le=1, description="Suggest + quick confirm")
    low: float = Field(default=0.20, ge=0, le=1, description="Show as option only")

    @model_validator(mode="after")
    def _check_order(self) -> "MatchBandConfig":
        if not (self.high >= self.medium >= self.low):
            raise ValueError("band thresholds must satisfy high >= medium >= low")
        return self


class FuzzyMatchConfig(BaseModel):
    """Tuning for the in-memory catalog matcher."""
    min_similarity: float = Field(default=0.20, description="Min trigram similarity to keep")
    min_word_overlap: float = Field(default=0.30, description="Min word overlap to keep")
    word_overlap_weight: float = Field(
        default=0.90,
        description="Multiplier applied to word-overlap scores",
    )
    max_candidates: int = Field(default=5, ge=1, description="Max candidates returned")


class LookupConfig(BaseModel):
    """Limits applied to collaborator lookups made by the resolver."""
    timeout_seconds: Optional[float] = Field(
        default=2.0,
        description="Per-lookup timeout; None disables it",
    )


# =============================================================================
# Documents / Trust
# =============================================================================

class AnomalyConfig(BaseModel):
    """Thresholds for the per-vendor anomaly rules."""
    history_window_days: int = Field(default=30, ge=1)
    history_limit: int = Field(default=200, ge=1)

    large_total_min_history: int = 5
    large_total_percentile: float = Field(default=0.95, gt=0, le=1)

    new_format_confidence_max: float = 0.70
    new_format_min_posted: int = 3

    vendor_name_max_distance: float = 0.30

    line_count_min_history: int = 3
    line_count_max_deviation: float = 0.50

    duplicate_total_tolerance: float = 0.0001
    duplicate_window_days: int = Field(default=7, ge=0)


class TrustConfig(BaseModel):
    """Gates for automatic posting."""
    global_trust_threshold: int = Field(default=5, ge=0)
    auto_post_confidence_min: float = Field(default=0.85, ge=0, le=1)
    system_user_id: str = "system:auto-post"


class Settings(BaseModel):
    """All configuration sections bundled together."""
    bands: MatchBandConfig = Field(default_factory=MatchBandConfig)
    fuzzy: FuzzyMatchConfig = Field(default_factory=FuzzyMatchConfig)
    lookup: LookupConfig = Field(default_factory=LookupConfig)
    anomaly: AnomalyConfig = Field(default_factory=AnomalyConfig)
    trust: TrustConfig = Field(default_factory=TrustConfig)


DEFAULT_SETTINGS = Settings()


# =============================================================================
# Environment Loading
# =============================================================================

def _env(name: str, parse: Callable[[str], T]) -> Optional[T]:
    """Read and parse an environment variable; unset or blank means None."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return parse(raw.strip())
    except ValueError as e:
        raise ValueError(f"Invalid value for {name}: {raw!r}") from e


def _optional_float(raw: str) -> Optional[float]:
    if raw.lower() in ("none", "off", "0"):
        return None
    return float(raw)


def load_settings(env_file: Optional[Path] = ENV_PATH) -> Settings:
    """Build Settings from defaults plus environment overrides.

    Args:
        env_file: Optional .env file to load first (existing env vars win)

    Returns:
        Validated Settings

    Raises:
        ValueError: If an override cannot be parsed or fails validation
    """
    if env_file is not None and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    overrides = {
        "bands": {
            "high": _env("LINE_MATCH_BAND_HIGH", float),
            "medium": _env("LINE_MATCH_BAND_MEDIUM", float),
            "low": _env("LINE_MATCH_BAND_LOW", float),
        },
        "fuzzy": {
            "max_candidates": _env("LINE_MATCH_MAX_CANDIDATES", int),
        },
        "anomaly": {
            "history_window_days": _env("ANOMALY_HISTORY_WINDOW_DAYS", int),
            "duplicate_window_days": _env("ANOMALY_DUPLICATE_WINDOW_DAYS", int),
        },
        "trust": {
            "global_trust_threshold": _env("TRUST_GLOBAL_THRESHOLD", int),
            "auto_post_confidence_min": _env("TRUST_AUTO_POST_CONFIDENCE_MIN", float),
            "system_user_id": _env("TRUST_SYSTEM_USER_ID", str),
        },
    }

    data = {
        section: {k: v for k, v in values.items() if v is not None}
        for section, values in overrides.items()
    }

    # The timeout may be explicitly disabled, so it is handled apart from the
    # "None means unset" sections above.
    if os.getenv("LINE_MATCH_LOOKUP_TIMEOUT") is not None:
        data["lookup"] = {
            "timeout_seconds": _env("LINE_MATCH_LOOKUP_TIMEOUT", _optional_float),
        }

    return Settings.model_validate(data)
