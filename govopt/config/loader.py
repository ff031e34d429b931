"""
Governance Engine TOML Configuration Loader

Loads every section of govopt.toml with environment variable overrides.
Each section is a dataclass with from_dict / apply_env / validate; the
defaults come from govopt/constants.py.

Environment variable mapping:
    [selection] weight_success     → GOVOPT_SELECTION_WEIGHT_SUCCESS
    [voting] approval_threshold_bps → GOVOPT_APPROVAL_THRESHOLD_BPS
    [privacy] commit_period_seconds → GOVOPT_COMMIT_PERIOD_SECONDS
    ...
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from ..constants import (
    BPS_DENOMINATOR,
    EXPERTISE_AGGREGATION,
    EXPERTISE_ATTESTATION_WINDOW_SECONDS,
    EXPERTISE_DECAY_FLOOR_BPS,
    EXPERTISE_MIN_VERIFIERS,
    GOVERNANCE_APPROVAL_THRESHOLD_BPS,
    GOVERNANCE_EXPERTISE_MAX_BOOST_BPS,
    GOVERNANCE_HYBRID_BLEND_BPS,
    GOVERNANCE_MIN_VOTING_PERIOD_SECONDS,
    GOVERNANCE_QUORUM_MAX_DISCOUNT_BPS,
    GOVERNANCE_QUORUM_URGENCY_DISCOUNT_BPS,
    GOVERNANCE_QUORUM_WEIGHT,
    GOVERNANCE_STAKEHOLDER_BOOST_BPS,
    GOVERNANCE_VOTING_PERIOD_SECONDS,
    PRIVACY_ALLOW_COMMITMENT_OVERWRITE,
    PRIVACY_COMMIT_PERIOD_SECONDS,
    PRIVACY_MIN_EXPERTISE_SCORE,
    PRIVACY_MIN_PHASE_SECONDS,
    PRIVACY_REVEAL_PERIOD_SECONDS,
    SELECTION_EWMA_ALPHA_BPS,
    SELECTION_MAX_EXECUTION_TIME_SECONDS,
    SELECTION_NEUTRAL_PRIOR_BPS,
    SELECTION_WEIGHT_EXECUTION_TIME,
    SELECTION_WEIGHT_PARTICIPATION,
    SELECTION_WEIGHT_SUCCESS,
    parse_bool,
)
from ..exceptions import ConfigurationError
from ..logger import get_logger

logger = get_logger(__name__)


def _env_int(name: str) -> Optional[int]:
    v = os.environ.get(name)
    if v is None or not v.strip():
        return None
    try:
        return int(v)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {v!r}") from e


def _check_bps(name: str, value: int) -> None:
    if not 0 <= value <= BPS_DENOMINATOR:
        raise ConfigurationError(f"{name} must be within 0..{BPS_DENOMINATOR} bps, got {value}")


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass
class SelectionConfig:
    """[selection] section: module scoring weights and the feedback EWMA."""
    weight_success: int = SELECTION_WEIGHT_SUCCESS
    weight_participation: int = SELECTION_WEIGHT_PARTICIPATION
    weight_execution_time: int = SELECTION_WEIGHT_EXECUTION_TIME
    neutral_prior_bps: int = SELECTION_NEUTRAL_PRIOR_BPS
    ewma_alpha_bps: int = SELECTION_EWMA_ALPHA_BPS
    max_execution_time_seconds: int = SELECTION_MAX_EXECUTION_TIME_SECONDS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SelectionConfig":
        return cls(
            weight_success=data.get("weight_success", SELECTION_WEIGHT_SUCCESS),
            weight_participation=data.get("weight_participation", SELECTION_WEIGHT_PARTICIPATION),
            weight_execution_time=data.get("weight_execution_time", SELECTION_WEIGHT_EXECUTION_TIME),
            neutral_prior_bps=data.get("neutral_prior_bps", SELECTION_NEUTRAL_PRIOR_BPS),
            ewma_alpha_bps=data.get("ewma_alpha_bps", SELECTION_EWMA_ALPHA_BPS),
            max_execution_time_seconds=data.get(
                "max_execution_time_seconds", SELECTION_MAX_EXECUTION_TIME_SECONDS
            ),
        )

    def apply_env(self) -> None:
        if (v := _env_int("GOVOPT_SELECTION_WEIGHT_SUCCESS")) is not None:
            self.weight_success = v
        if (v := _env_int("GOVOPT_SELECTION_WEIGHT_PARTICIPATION")) is not None:
            self.weight_participation = v
        if (v := _env_int("GOVOPT_SELECTION_WEIGHT_EXECUTION_TIME")) is not None:
            self.weight_execution_time = v
        if (v := _env_int("GOVOPT_SELECTION_EWMA_ALPHA_BPS")) is not None:
            self.ewma_alpha_bps = v

    def validate(self) -> None:
        for name in ("weight_success", "weight_participation", "weight_execution_time"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"selection.{name} must be >= 0")
        _check_bps("selection.neutral_prior_bps", self.neutral_prior_bps)
        _check_bps("selection.ewma_alpha_bps", self.ewma_alpha_bps)
        if self.ewma_alpha_bps == 0:
            raise ConfigurationError("selection.ewma_alpha_bps must be > 0")
        if self.max_execution_time_seconds <= 0:
            raise ConfigurationError("selection.max_execution_time_seconds must be > 0")


@dataclass
class VotingConfig:
    """[voting] section: defaults applied to every registered strategy."""
    approval_threshold_bps: int = GOVERNANCE_APPROVAL_THRESHOLD_BPS
    quorum_weight: int = GOVERNANCE_QUORUM_WEIGHT
    quorum_urgency_discount_bps: int = GOVERNANCE_QUORUM_URGENCY_DISCOUNT_BPS
    quorum_max_discount_bps: int = GOVERNANCE_QUORUM_MAX_DISCOUNT_BPS
    voting_period_seconds: int = GOVERNANCE_VOTING_PERIOD_SECONDS
    min_voting_period_seconds: int = GOVERNANCE_MIN_VOTING_PERIOD_SECONDS
    stakeholder_boost_bps: int = GOVERNANCE_STAKEHOLDER_BOOST_BPS
    expertise_max_boost_bps: int = GOVERNANCE_EXPERTISE_MAX_BOOST_BPS
    hybrid_blend_bps: int = GOVERNANCE_HYBRID_BLEND_BPS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VotingConfig":
        return cls(
            approval_threshold_bps=data.get("approval_threshold_bps", GOVERNANCE_APPROVAL_THRESHOLD_BPS),
            quorum_weight=data.get("quorum_weight", GOVERNANCE_QUORUM_WEIGHT),
            quorum_urgency_discount_bps=data.get(
                "quorum_urgency_discount_bps", GOVERNANCE_QUORUM_URGENCY_DISCOUNT_BPS
            ),
            quorum_max_discount_bps=data.get("quorum_max_discount_bps", GOVERNANCE_QUORUM_MAX_DISCOUNT_BPS),
            voting_period_seconds=data.get("voting_period_seconds", GOVERNANCE_VOTING_PERIOD_SECONDS),
            min_voting_period_seconds=data.get(
                "min_voting_period_seconds", GOVERNANCE_MIN_VOTING_PERIOD_SECONDS
            ),
            stakeholder_boost_bps=data.get("stakeholder_boost_bps", GOVERNANCE_STAKEHOLDER_BOOST_BPS),
            expertise_max_boost_bps=data.get("expertise_max_boost_bps", GOVERNANCE_EXPERTISE_MAX_BOOST_BPS),
            hybrid_blend_bps=data.get("hybrid_blend_bps", GOVERNANCE_HYBRID_BLEND_BPS),
        )

    def apply_env(self) -> None:
        if (v := _env_int("GOVOPT_APPROVAL_THRESHOLD_BPS")) is not None:
            self.approval_threshold_bps = v
        if (v := _env_int("GOVOPT_QUORUM_WEIGHT")) is not None:
            self.quorum_weight = v
        if (v := _env_int("GOVOPT_VOTING_PERIOD_SECONDS")) is not None:
            self.voting_period_seconds = v

    def validate(self) -> None:
        _check_bps("voting.approval_threshold_bps", self.approval_threshold_bps)
        _check_bps("voting.quorum_urgency_discount_bps", self.quorum_urgency_discount_bps)
        _check_bps("voting.quorum_max_discount_bps", self.quorum_max_discount_bps)
        _check_bps("voting.hybrid_blend_bps", self.hybrid_blend_bps)
        if self.quorum_weight < 0:
            raise ConfigurationError("voting.quorum_weight must be >= 0")
        if self.min_voting_period_seconds <= 0:
            raise ConfigurationError("voting.min_voting_period_seconds must be > 0")
        if self.voting_period_seconds < self.min_voting_period_seconds:
            raise ConfigurationError("voting.voting_period_seconds below min_voting_period_seconds")
        if self.stakeholder_boost_bps < BPS_DENOMINATOR:
            raise ConfigurationError("voting.stakeholder_boost_bps must be >= 10000 (no penalty)")
        if self.expertise_max_boost_bps < 0:
            raise ConfigurationError("voting.expertise_max_boost_bps must be >= 0")


@dataclass
class PrivacyConfig:
    """[privacy] section: commit-reveal windows and eligibility."""
    commit_period_seconds: int = PRIVACY_COMMIT_PERIOD_SECONDS
    reveal_period_seconds: int = PRIVACY_REVEAL_PERIOD_SECONDS
    min_phase_seconds: int = PRIVACY_MIN_PHASE_SECONDS
    min_expertise_score: int = PRIVACY_MIN_EXPERTISE_SCORE
    allow_commitment_overwrite: bool = PRIVACY_ALLOW_COMMITMENT_OVERWRITE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PrivacyConfig":
        return cls(
            commit_period_seconds=data.get("commit_period_seconds", PRIVACY_COMMIT_PERIOD_SECONDS),
            reveal_period_seconds=data.get("reveal_period_seconds", PRIVACY_REVEAL_PERIOD_SECONDS),
            min_phase_seconds=data.get("min_phase_seconds", PRIVACY_MIN_PHASE_SECONDS),
            min_expertise_score=data.get("min_expertise_score", PRIVACY_MIN_EXPERTISE_SCORE),
            allow_commitment_overwrite=data.get(
                "allow_commitment_overwrite", PRIVACY_ALLOW_COMMITMENT_OVERWRITE
            ),
        )

    def apply_env(self) -> None:
        if (v := _env_int("GOVOPT_COMMIT_PERIOD_SECONDS")) is not None:
            self.commit_period_seconds = v
        if (v := _env_int("GOVOPT_REVEAL_PERIOD_SECONDS")) is not None:
            self.reveal_period_seconds = v
        if v := os.environ.get("GOVOPT_ALLOW_COMMITMENT_OVERWRITE"):
            parsed = parse_bool(v)
            if not isinstance(parsed, bool):
                raise ConfigurationError(f"GOVOPT_ALLOW_COMMITMENT_OVERWRITE must be True/False, got {v!r}")
            self.allow_commitment_overwrite = parsed

    def validate(self) -> None:
        if self.min_phase_seconds <= 0:
            raise ConfigurationError("privacy.min_phase_seconds must be > 0")
        if self.commit_period_seconds < self.min_phase_seconds:
            raise ConfigurationError("privacy.commit_period_seconds below min_phase_seconds")
        if self.reveal_period_seconds < self.min_phase_seconds:
            raise ConfigurationError("privacy.reveal_period_seconds below min_phase_seconds")
        if not 0 <= self.min_expertise_score <= 100:
            raise ConfigurationError("privacy.min_expertise_score must be within 0..100")


@dataclass
class ExpertiseConfig:
    """[expertise] section: verifier quorum, aggregation and decay."""
    min_verifiers: int = EXPERTISE_MIN_VERIFIERS
    attestation_window_seconds: int = EXPERTISE_ATTESTATION_WINDOW_SECONDS
    aggregation: str = EXPERTISE_AGGREGATION
    decay_floor_bps: int = EXPERTISE_DECAY_FLOOR_BPS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExpertiseConfig":
        return cls(
            min_verifiers=data.get("min_verifiers", EXPERTISE_MIN_VERIFIERS),
            attestation_window_seconds=data.get(
                "attestation_window_seconds", EXPERTISE_ATTESTATION_WINDOW_SECONDS
            ),
            aggregation=data.get("aggregation", EXPERTISE_AGGREGATION),
            decay_floor_bps=data.get("decay_floor_bps", EXPERTISE_DECAY_FLOOR_BPS),
        )

    def apply_env(self) -> None:
        if (v := _env_int("GOVOPT_EXPERTISE_MIN_VERIFIERS")) is not None:
            self.min_verifiers = v
        if v := os.environ.get("GOVOPT_EXPERTISE_AGGREGATION"):
            self.aggregation = v.strip().lower()

    def validate(self) -> None:
        if self.min_verifiers < 1:
            raise ConfigurationError("expertise.min_verifiers must be >= 1")
        if self.attestation_window_seconds <= 0:
            raise ConfigurationError("expertise.attestation_window_seconds must be > 0")
        if self.aggregation not in ("average", "median"):
            raise ConfigurationError(f"Invalid expertise.aggregation: {self.aggregation}")
        _check_bps("expertise.decay_floor_bps", self.decay_floor_bps)


@dataclass
class HistoryConfig:
    """[history] section."""
    verify_on_append: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryConfig":
        return cls(verify_on_append=data.get("verify_on_append", True))

    def apply_env(self) -> None:
        if v := os.environ.get("GOVOPT_HISTORY_VERIFY_ON_APPEND"):
            parsed = parse_bool(v)
            if isinstance(parsed, bool):
                self.verify_on_append = parsed


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Complete engine configuration (all sections)."""
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    voting: VotingConfig = field(default_factory=VotingConfig)
    privacy: PrivacyConfig = field(default_factory=PrivacyConfig)
    expertise: ExpertiseConfig = field(default_factory=ExpertiseConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        return cls(
            selection=SelectionConfig.from_dict(data.get("selection", {})),
            voting=VotingConfig.from_dict(data.get("voting", {})),
            privacy=PrivacyConfig.from_dict(data.get("privacy", {})),
            expertise=ExpertiseConfig.from_dict(data.get("expertise", {})),
            history=HistoryConfig.from_dict(data.get("history", {})),
        )

    @classmethod
    def from_file(cls, path: str) -> "EngineConfig":
        """
        Load from a TOML file, then apply env overrides and validate.

        A missing file yields the defaults (with env overrides).
        """
        config_path = Path(path)
        if config_path.exists():
            with open(config_path, "rb") as f:
                try:
                    data = tomllib.load(f)
                except tomllib.TOMLDecodeError as e:
                    raise ConfigurationError(f"Invalid TOML in {config_path}: {e}") from e
            logger.info(f"Loaded engine config from {config_path}")
        else:
            logger.info(f"No config at {config_path}, using defaults")
            data = {}

        config = cls.from_dict(data)
        config.apply_env()
        config.validate()
        return config

    def apply_env(self) -> None:
        self.selection.apply_env()
        self.voting.apply_env()
        self.privacy.apply_env()
        self.expertise.apply_env()
        self.history.apply_env()

    def validate(self) -> bool:
        """
        Validate all configuration sections.

        Raises:
            ConfigurationError: on invalid config
        """
        self.selection.validate()
        self.voting.validate()
        self.privacy.validate()
        self.expertise.validate()
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (for diagnostics, NOT for re-creating TOML)."""
        return {
            "selection": dict(vars(self.selection)),
            "voting": dict(vars(self.voting)),
            "privacy": dict(vars(self.privacy)),
            "expertise": dict(vars(self.expertise)),
            "history": dict(vars(self.history)),
        }


def load_config(path: Optional[str] = None) -> EngineConfig:
    """
    Load engine configuration.

    Resolution order:
        1. Explicit *path* argument
        2. GOVOPT_CONFIG env var
        3. ./govopt.toml in current directory
        4. Defaults (with env overrides)
    """
    if path is None:
        path = os.environ.get("GOVOPT_CONFIG", "govopt.toml")
    return EngineConfig.from_file(path)
