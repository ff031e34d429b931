"""
Governance Engine Configuration

Loads all sections of govopt.toml. Environment variables override TOML values.
"""

from .loader import (
    EngineConfig,
    ExpertiseConfig,
    HistoryConfig,
    PrivacyConfig,
    SelectionConfig,
    VotingConfig,
    load_config,
)

__all__ = [
    "EngineConfig",
    "ExpertiseConfig",
    "HistoryConfig",
    "PrivacyConfig",
    "SelectionConfig",
    "VotingConfig",
    "load_config",
]
