"""Tests for issuefleet.model_selector and issuefleet.prompts."""

from __future__ import annotations

import pytest

from issuefleet.model_selector import select_model
from issuefleet.prompts import build_planner_prompt, build_pr_body, build_system_prompt, build_task_prompt
from issuefleet.tasks.model import Complexity, Domain


class TestSelectModel:
    @pytest.mark.parametrize("configured", ["opus", "haiku"])
    def test_explicit_choice_wins(self, make_task, configured):
        task = make_task(1, title="Fix typo", complexity=Complexity.COMPLEX)
        assert select_model(task, configured) == configured

    def test_complexity_first(self, make_task):
        assert select_model(make_task(1, title="Refactor auth", complexity=Complexity.SIMPLE)) == "haiku"
        assert select_model(make_task(2, title="Fix typo", complexity=Complexity.COMPLEX)) == "opus"

    def test_simple_keywords(self, make_task):
        assert select_model(make_task(1, title="Fix typo in README")) == "haiku"

    def test_complex_keywords(self, make_task):
        assert select_model(make_task(1, title="Redesign the job queue")) == "opus"

    def test_simple_keywords_checked_before_complex(self, make_task):
        assert select_model(make_task(1, title="Rename and refactor helpers")) == "haiku"

    def test_labels(self, make_task):
        assert select_model(make_task(1, title="Do the thing", labels=["Architecture"])) == "opus"
        assert select_model(make_task(2, title="Do the thing", labels=["docs"])) == "haiku"

    def test_default_sonnet(self, make_task):
        assert select_model(make_task(1, title="Add endpoint for users")) == "sonnet"


class TestPrompts:
    def test_task_prompt(self, make_task):
        prompt = build_task_prompt(make_task(42, title="Add login", body="Use OAuth"))
        assert "TASK: #42 - Add login" in prompt
        assert "Use OAuth" in prompt
        assert "ANALYSIS-42.md" in prompt

    def test_system_prompt(self, make_task):
        assert "issue #7" in build_system_prompt(make_task(7))

    def test_planner_prompt(self):
        prompt = build_planner_prompt("Add dark mode", "acme/widgets")
        assert "Add dark mode" in prompt
        assert "REPOSITORY: acme/widgets" in prompt
        assert '"depends_on": [1]' in prompt

    def test_pr_body(self, make_task):
        task = make_task(9, domain=Domain.FRONTEND)
        task.cost_usd = 1.234
        task.files_changed = 3
        task.lines_added = 10
        task.lines_removed = 2
        body = build_pr_body(task)
        assert body.startswith("Closes #9")
        assert "**Domain:** frontend" in body
        assert "$1.23" in body
        assert "3 files (+10/-2)" in body

    def test_pr_body_without_cost(self, make_task):
        assert "Agent cost" not in build_pr_body(make_task(1))
