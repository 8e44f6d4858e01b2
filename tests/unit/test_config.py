"""
Unit tests for configuration management.
"""

import json

from modelchain.config import (
    ExecutionConfig,
    InvocationConfig,
    ModelChainConfig,
    SelectionConfig,
    default_config,
)
from modelchain.events import EventLogConfig


class TestDefaults:
    """Tests for default configuration values."""

    def test_selection_defaults(self):
        """Requests default to pro tier, medium budget, coding chain."""
        config = SelectionConfig()
        assert config.default_tier == "pro"
        assert config.default_budget == "medium"
        assert config.default_chain_type == "coding"

    def test_execution_defaults(self):
        """Roles time out after five minutes; excerpts are 500 characters."""
        config = ExecutionConfig()
        assert config.role_timeout_seconds == 300.0
        assert config.context_excerpt_chars == 500

    def test_invocation_defaults(self):
        """One-minute attempts, two retries with 1-8 second backoff."""
        config = InvocationConfig()
        assert config.attempt_timeout_seconds == 60.0
        assert config.max_retries == 2
        assert config.backoff_min_seconds == 1.0
        assert config.backoff_max_seconds == 8.0
        assert config.openrouter_base_url.startswith("https://openrouter.ai")

    def test_role_limit_leaves_room_for_retries(self):
        """Every attempt plus the maximum backoff fits in one role's limit."""
        invocation = InvocationConfig()
        worst_case = (invocation.max_retries + 1) * invocation.attempt_timeout_seconds + (
            invocation.max_retries * invocation.backoff_max_seconds
        )
        assert worst_case <= ExecutionConfig().role_timeout_seconds

    def test_event_log_disabled(self):
        """The JSONL sink is off by default."""
        assert default_config.event_log.enabled is False


class TestLoadSave:
    """Tests for loading and saving configuration."""

    def test_missing_file_gives_defaults(self, tmp_path):
        """A missing file yields the defaults."""
        config = ModelChainConfig.load(tmp_path / "missing.json")
        assert config == ModelChainConfig()

    def test_save_then_load(self, tmp_path):
        """Saved values are loaded back."""
        path = tmp_path / "nested" / "config.json"
        config = ModelChainConfig(
            selection=SelectionConfig(default_tier="free", default_budget="low"),
            execution=ExecutionConfig(role_timeout_seconds=30.0),
            event_log=EventLogConfig(enabled=True, log_path=str(tmp_path / "events.jsonl")),
        )
        config.save(path)

        loaded = ModelChainConfig.load(path)
        assert loaded.selection.default_tier == "free"
        assert loaded.execution.role_timeout_seconds == 30.0
        assert loaded.event_log.enabled is True

    def test_partial_file(self, tmp_path):
        """Sections missing from the file keep their defaults."""
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"invocation": {"max_retries": 5}}))

        config = ModelChainConfig.load(path)
        assert config.invocation.max_retries == 5
        assert config.invocation.max_tokens == 4096
        assert config.selection == SelectionConfig()
