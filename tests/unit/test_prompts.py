"""
Unit tests for role prompt construction.
"""

from modelchain.prompts import (
    ROLE_INSTRUCTIONS,
    build_system_prompt,
    build_task_prompt,
    excerpt,
)
from modelchain.roles import get_role


class TestSystemPrompt:
    """Tests for build_system_prompt."""

    def test_known_role(self):
        """Known roles get title, goal, backstory and capabilities."""
        prompt = build_system_prompt("reviewer")
        role = get_role("reviewer")

        assert prompt.startswith("# Role: Code Reviewer")
        assert f"## Your Goal\n{role.goal}" in prompt
        assert f"## Your Backstory\n{role.backstory}" in prompt
        assert "- code review" in prompt
        for line in ROLE_INSTRUCTIONS:
            assert f"- {line}" in prompt

    def test_alias(self):
        """Aliases use their target role's profile."""
        assert build_system_prompt("builder").startswith("# Role: Software Engineer")

    def test_unknown_role(self):
        """Unknown roles get a one-line generic prompt."""
        assert build_system_prompt("wizard") == "You are a wizard agent in a multi-agent system."


class TestExcerpt:
    """Tests for excerpt."""

    def test_short_text_unchanged(self):
        """Text within the limit is returned unchanged."""
        assert excerpt("abc", 3) == "abc"

    def test_truncated(self):
        """Longer text is cut with an ellipsis."""
        assert excerpt("abcdef", 3) == "abc..."


class TestTaskPrompt:
    """Tests for build_task_prompt."""

    def test_first_role(self):
        """The first role sees only the task."""
        prompt = build_task_prompt("planner", "Build a login form")

        assert prompt.startswith("# Task\nBuild a login form\n\n")
        assert "# Previous Agent Output" not in prompt
        assert "# Chain Context" not in prompt
        assert "# Your Task as planner" in prompt

    def test_previous_output_verbatim(self):
        """The previous output is included in full."""
        previous = "x" * 2000
        prompt = build_task_prompt("builder", "t", previous_output=previous, chain_context={"planner": previous})

        assert f"# Previous Agent Output\n{previous}\n\n" in prompt
        assert "## planner\n" + "x" * 500 + "...\n" in prompt

    def test_context_order(self):
        """Chain context follows role order."""
        prompt = build_task_prompt(
            "reviewer", "t", previous_output="b", chain_context={"planner": "a", "builder": "b"}
        )
        assert prompt.index("## planner") < prompt.index("## builder")

    def test_custom_excerpt_length(self):
        """The excerpt length is configurable."""
        prompt = build_task_prompt("reviewer", "t", chain_context={"planner": "abcdef"}, excerpt_chars=2)
        assert "## planner\nab...\n" in prompt
