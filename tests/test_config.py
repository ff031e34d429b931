"""
Configuration Test Suite

Coverage:
  - Section defaults and from_dict
  - TOML loading (missing file, invalid TOML, invalid values)
  - GOVOPT_* environment overrides
  - load_config path resolution
  - .env-backed logger settings
"""

import os
import sys

import pytest

# ── Path setup ────────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from govopt import constants
from govopt.config import (
    EngineConfig,
    PrivacyConfig,
    SelectionConfig,
    VotingConfig,
    load_config,
)
from govopt.constants import ConfigBool, ConfigString, parse_bool
from govopt.exceptions import ConfigurationError


# ══════════════════════════════════════════════════════════════════════
#  HELPERS
# ══════════════════════════════════════════════════════════════════════

ENV_VARS = (
    "GOVOPT_CONFIG",
    "GOVOPT_QUORUM_WEIGHT",
    "GOVOPT_APPROVAL_THRESHOLD_BPS",
    "GOVOPT_VOTING_PERIOD_SECONDS",
    "GOVOPT_COMMIT_PERIOD_SECONDS",
    "GOVOPT_REVEAL_PERIOD_SECONDS",
    "GOVOPT_ALLOW_COMMITMENT_OVERWRITE",
    "GOVOPT_SELECTION_WEIGHT_SUCCESS",
    "GOVOPT_SELECTION_EWMA_ALPHA_BPS",
    "GOVOPT_EXPERTISE_MIN_VERIFIERS",
    "GOVOPT_EXPERTISE_AGGREGATION",
    "GOVOPT_HISTORY_VERIFY_ON_APPEND",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def write_toml(tmp_path, text, name="govopt.toml"):
    path = tmp_path / name
    path.write_text(text)
    return path


# ══════════════════════════════════════════════════════════════════════
#  DEFAULTS
# ══════════════════════════════════════════════════════════════════════

class TestDefaults:
    """Dataclass defaults mirror govopt/constants.py."""

    def test_sections(self):
        config = EngineConfig()
        assert config.selection.weight_success == 5
        assert config.selection.neutral_prior_bps == 5000
        assert config.voting.approval_threshold_bps == 5100
        assert config.voting.quorum_weight == 1000
        assert config.privacy.commit_period_seconds == 3 * 86400
        assert config.privacy.allow_commitment_overwrite is False
        assert config.expertise.min_verifiers == 2
        assert config.expertise.aggregation == "average"
        assert config.history.verify_on_append is True

    def test_defaults_validate(self):
        assert EngineConfig().validate() is True

    def test_from_dict_partial(self):
        config = EngineConfig.from_dict({
            "voting": {"quorum_weight": 42},
            "expertise": {"aggregation": "median"},
        })
        assert config.voting.quorum_weight == 42
        assert config.voting.approval_threshold_bps == 5100
        assert config.expertise.aggregation == "median"
        assert config.selection == SelectionConfig()

    def test_to_dict(self):
        snapshot = EngineConfig().to_dict()
        assert set(snapshot) == {"selection", "voting", "privacy", "expertise", "history"}
        assert snapshot["privacy"]["min_phase_seconds"] == 600


# ══════════════════════════════════════════════════════════════════════
#  VALIDATION
# ══════════════════════════════════════════════════════════════════════

class TestValidation:
    """validate() rejects inconsistent sections."""

    @pytest.mark.parametrize("section", [
        SelectionConfig(weight_success=-1),
        SelectionConfig(ewma_alpha_bps=0),
        SelectionConfig(neutral_prior_bps=10001),
        VotingConfig(approval_threshold_bps=10001),
        VotingConfig(quorum_weight=-1),
        VotingConfig(voting_period_seconds=60),
        VotingConfig(stakeholder_boost_bps=9000),
        PrivacyConfig(commit_period_seconds=10),
        PrivacyConfig(min_expertise_score=101),
    ])
    def test_invalid_section(self, section):
        with pytest.raises(ConfigurationError):
            section.validate()

    def test_invalid_aggregation(self):
        config = EngineConfig.from_dict({"expertise": {"aggregation": "mode"}})
        with pytest.raises(ConfigurationError):
            config.validate()


# ══════════════════════════════════════════════════════════════════════
#  TOML FILES
# ══════════════════════════════════════════════════════════════════════

class TestFromFile:
    """EngineConfig.from_file."""

    def test_missing_file_uses_defaults(self, tmp_path):
        config = EngineConfig.from_file(str(tmp_path / "absent.toml"))
        assert config.voting.quorum_weight == 1000

    def test_loads_values(self, tmp_path):
        path = write_toml(tmp_path, (
            "[voting]\nquorum_weight = 250\n\n"
            "[privacy]\nallow_commitment_overwrite = true\n"
        ))
        config = EngineConfig.from_file(str(path))
        assert config.voting.quorum_weight == 250
        assert config.privacy.allow_commitment_overwrite is True

    def test_invalid_toml(self, tmp_path):
        path = write_toml(tmp_path, "[voting\nquorum_weight = ")
        with pytest.raises(ConfigurationError):
            EngineConfig.from_file(str(path))

    def test_invalid_value(self, tmp_path):
        path = write_toml(tmp_path, "[voting]\napproval_threshold_bps = 20000\n")
        with pytest.raises(ConfigurationError):
            EngineConfig.from_file(str(path))

    def test_example_file_loads(self):
        config = EngineConfig.from_file(os.path.join(ROOT, "govopt.toml.example"))
        assert config.to_dict() == EngineConfig().to_dict()


# ══════════════════════════════════════════════════════════════════════
#  ENVIRONMENT
# ══════════════════════════════════════════════════════════════════════

class TestEnvOverrides:
    """GOVOPT_* variables win over TOML."""

    def test_int_override(self, tmp_path, monkeypatch):
        path = write_toml(tmp_path, "[voting]\nquorum_weight = 250\n")
        monkeypatch.setenv("GOVOPT_QUORUM_WEIGHT", "777")
        assert EngineConfig.from_file(str(path)).voting.quorum_weight == 777

    def test_invalid_int(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GOVOPT_QUORUM_WEIGHT", "lots")
        with pytest.raises(ConfigurationError):
            EngineConfig.from_file(str(tmp_path / "absent.toml"))

    def test_blank_is_ignored(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GOVOPT_QUORUM_WEIGHT", "  ")
        assert EngineConfig.from_file(str(tmp_path / "absent.toml")).voting.quorum_weight == 1000

    def test_bool_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GOVOPT_ALLOW_COMMITMENT_OVERWRITE", "true")
        config = EngineConfig.from_file(str(tmp_path / "absent.toml"))
        assert config.privacy.allow_commitment_overwrite is True

    def test_invalid_bool(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GOVOPT_ALLOW_COMMITMENT_OVERWRITE", "maybe")
        with pytest.raises(ConfigurationError):
            EngineConfig.from_file(str(tmp_path / "absent.toml"))

    def test_aggregation_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GOVOPT_EXPERTISE_AGGREGATION", " MEDIAN ")
        assert EngineConfig.from_file(str(tmp_path / "absent.toml")).expertise.aggregation == "median"

    def test_override_still_validated(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GOVOPT_SELECTION_EWMA_ALPHA_BPS", "0")
        with pytest.raises(ConfigurationError):
            EngineConfig.from_file(str(tmp_path / "absent.toml"))


# ══════════════════════════════════════════════════════════════════════
#  RESOLUTION
# ══════════════════════════════════════════════════════════════════════

class TestLoadConfig:
    """load_config path resolution."""

    def test_explicit_path(self, tmp_path):
        path = write_toml(tmp_path, "[selection]\nweight_success = 9\n", name="custom.toml")
        assert load_config(str(path)).selection.weight_success == 9

    def test_env_path(self, tmp_path, monkeypatch):
        path = write_toml(tmp_path, "[selection]\nweight_success = 8\n", name="env.toml")
        monkeypatch.setenv("GOVOPT_CONFIG", str(path))
        assert load_config().selection.weight_success == 8

    def test_cwd_default(self, tmp_path, monkeypatch):
        write_toml(tmp_path, "[selection]\nweight_success = 7\n")
        monkeypatch.chdir(tmp_path)
        assert load_config().selection.weight_success == 7

    def test_nothing_found(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert load_config().selection.weight_success == 5


# ══════════════════════════════════════════════════════════════════════
#  LOGGER SETTINGS
# ══════════════════════════════════════════════════════════════════════

class TestEnvironmentConstants:
    """.env-backed wrappers."""

    def test_parse_bool(self):
        assert parse_bool("True") is True
        assert parse_bool(" false ") is False
        assert parse_bool("yes") == "yes"
        assert parse_bool("") == ""
        assert parse_bool(3) == 3

    def test_wrappers_keep_default(self):
        flag = ConfigBool(False, True)
        assert flag == False  # noqa: E712
        assert flag.default() is True
        assert str(flag) == "False"
        text = ConfigString("DEBUG", "INFO")
        assert text == "DEBUG"
        assert text.default() == "INFO"

    def test_logger_settings_loaded(self):
        assert isinstance(constants.LOG_LEVEL, ConfigString)
        assert constants.LOG_LEVEL.default() == "INFO"
        assert isinstance(constants.GOVOPT_LOG_TO_FILE, ConfigBool)


class TestLogger:
    """govopt.logger."""

    def test_sanitize_strips_escapes(self):
        from govopt.logger import TerminalSafeFormatter
        dirty = "meta\x1b[31mred\x1b[0m\r\x07done\tok"
        assert TerminalSafeFormatter.sanitize(dirty) == "metareddone\tok"

    def test_get_logger_configures_once(self):
        from govopt.logger import LogManager, get_logger
        logger = get_logger("govopt.tests")
        assert logger.name == "govopt.tests"
        assert LogManager().is_configured
        assert LogManager() is LogManager()
