"""
Tests for the modelchain command line.
"""

import json

import pytest

from modelchain.orchestrator import _parse_model_map, main
from modelchain.types import ConfigurationError


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point the CLI at a config file that does not exist."""
    monkeypatch.setattr("modelchain.config.DEFAULT_CONFIG_PATH", tmp_path / "config.json")


def json_output(out: str) -> dict:
    return json.loads(out[out.index("{"):])


class TestParseModelMap:
    """Tests for --model parsing."""

    def test_pairs(self):
        """Pairs keep their order."""
        models = _parse_model_map(["planner=m1", "builder=m2"])
        assert list(models.items()) == [("planner", "m1"), ("builder", "m2")]

    def test_model_id_with_equals(self):
        """Only the first '=' separates role from model."""
        assert _parse_model_map(["planner=a=b"]) == {"planner": "a=b"}

    @pytest.mark.parametrize("pair", ["planner", "=m1", "planner="])
    def test_malformed(self, pair):
        """Pairs without both halves are rejected."""
        with pytest.raises(ConfigurationError):
            _parse_model_map([pair])


class TestMain:
    """Tests for the CLI entry point."""

    @pytest.mark.asyncio
    async def test_list_templates(self, capsys):
        """--list-templates prints every template."""
        assert await main(["--list-templates"]) == 0

        out = capsys.readouterr().out
        assert "coding-standard: Standard Coding" in out
        assert "review-comprehensive" in out

    @pytest.mark.asyncio
    async def test_select(self, capsys):
        """--select prints the selection as JSON."""
        code = await main(["--select", "code-review:reviewer", "--tier", "pro", "--prioritize", "quality"])

        assert code == 0
        data = json_output(capsys.readouterr().out)
        assert data["model_id"] == "anthropic/claude-3.5-sonnet"
        assert data["score"] == 8.8

    @pytest.mark.asyncio
    async def test_select_unknown_role(self, capsys):
        """Selection errors exit with status 2."""
        assert await main(["--select", "code-review:wizard"]) == 2
        assert "Error: Unknown role 'wizard'" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_task_required(self):
        """Running a chain needs --task."""
        with pytest.raises(SystemExit):
            await main(["--dry-run"])

    @pytest.mark.asyncio
    async def test_malformed_model_flag(self):
        """Malformed --model values are usage errors."""
        with pytest.raises(SystemExit):
            await main(["--task", "t", "--model", "planner", "--dry-run"])

    @pytest.mark.asyncio
    async def test_dry_run_auto(self, capsys):
        """A dry run resolves the chain, reports progress and prints the result."""
        code = await main(["--task", "Build a CLI", "--tier", "free", "--budget", "low", "--dry-run"])

        assert code == 0
        out = capsys.readouterr().out
        assert "[1/3] planner -> meta-llama/llama-3.3-70b-instruct" in out
        assert "[3/3] reviewer -> deepseek/deepseek-chat" in out

        data = json_output(out)
        assert data["success"] is True
        assert data["status"] == "completed"
        assert list(data["results"]) == ["planner", "builder", "reviewer"]
        assert data["config"]["mode"] == "auto"

    @pytest.mark.asyncio
    async def test_dry_run_manual_inferred(self, capsys):
        """--model without --mode runs in manual mode."""
        code = await main(
            ["--task", "t", "--model", "planner=deepseek/deepseek-chat", "--model", "coder=deepseek/deepseek-chat", "--dry-run"]
        )

        assert code == 0
        data = json_output(capsys.readouterr().out)
        assert data["config"]["mode"] == "manual"
        assert data["config"]["roles"] == ["planner", "coder"]

    @pytest.mark.asyncio
    async def test_unknown_template(self, capsys):
        """Unknown templates exit with status 2."""
        assert await main(["--task", "t", "--template", "nope", "--dry-run"]) == 2
        assert "Error: Template 'nope' not found" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_events_jsonl(self, tmp_path, capsys):
        """--events-jsonl writes the chain's events."""
        path = tmp_path / "events.jsonl"
        code = await main(
            ["--task", "t", "--model", "planner=deepseek/deepseek-chat", "--dry-run", "--events-jsonl", str(path)]
        )

        assert code == 0
        events = [json.loads(line)["event"] for line in path.read_text().splitlines()]
        assert events == ["chain:started", "role:started", "role:completed", "chain:completed"]

    @pytest.mark.asyncio
    async def test_missing_keys(self, monkeypatch, capsys):
        """Without keys and without --dry-run the CLI exits with status 2."""
        for var in ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "OPENROUTER_API_KEY"):
            monkeypatch.delenv(var, raising=False)

        assert await main(["--task", "t"]) == 2
        assert "--dry-run" in capsys.readouterr().out
