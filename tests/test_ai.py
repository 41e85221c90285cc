"""
Tests for the AI assistant with a scripted model.
"""
from datetime import date, datetime

import pytest

from taskflow import ai, schemas
from taskflow.config import AIConfig
from taskflow.errors import AIError

NOW = datetime(2025, 6, 11, 12, 0)
EMPLOYEES = [
    schemas.Employee(id="u1", name="Alice"),
    schemas.Employee(id="u2", name="Bob"),
]


class ScriptedModel:
    """``generate(prompt, schema)`` that returns canned answers per schema."""

    def __init__(self, answers):
        self.answers = answers
        self.prompts = []

    def __call__(self, prompt, schema=None):
        self.prompts.append(prompt)
        answer = self.answers[schema]
        if isinstance(answer, Exception):
            raise answer
        return answer


def assistant(answers):
    model = ScriptedModel(answers)
    return ai.TaskAssistant(model, clock=lambda: NOW), model


class TestGenerateTasks:
    """Test TaskAssistant.generate_tasks."""

    def test_drafts_from_structured_output(self):
        helper, model = assistant({ai.GeneratedTasks: ai.GeneratedTasks(tasks=[
            ai.GeneratedTask(title="Write JD", description="Job description", assignee_id="u2", due_date="2025-06-14"),
            ai.GeneratedTask(title="Post ad", assignee_id="nobody", due_date="soon"),
        ])})
        drafts = helper.generate_tasks("Hire a designer", EMPLOYEES)

        assert drafts[0] == schemas.TaskDraft(title="Write JD", description="Job description",
                                              assignee_id="u2", due_date=date(2025, 6, 14))
        assert drafts[1].assignee_id == "u1"
        assert drafts[1].due_date is None
        assert "Hire a designer" in model.prompts[0]
        assert "2025-06-11" in model.prompts[0]

    def test_accepts_json_text(self):
        helper, _ = assistant({ai.GeneratedTasks: '{"tasks": [{"title": "Only"}]}'})
        assert [d.title for d in helper.generate_tasks("Goal", EMPLOYEES)] == ["Only"]

    def test_model_failure_becomes_ai_error(self):
        helper, _ = assistant({ai.GeneratedTasks: RuntimeError("quota exceeded")})
        with pytest.raises(AIError, match="Failed to generate tasks"):
            helper.generate_tasks("Goal", EMPLOYEES)


class TestSuggestions:
    """Test priority, subtask and advice helpers."""

    def test_priority(self):
        helper, _ = assistant({ai.PrioritySuggestion: {"priority": "Urgent"}})
        assert helper.suggest_priority("Prod is down", "") == schemas.Priority.URGENT

    def test_invalid_priority_defaults_to_medium(self):
        helper, _ = assistant({ai.PrioritySuggestion: {"priority": "ASAP!!"}})
        assert helper.suggest_priority("Something", "") == schemas.Priority.MEDIUM

    def test_subtasks_are_capped(self):
        items = [f"Step {i}" for i in range(10)] + ["  "]
        helper, _ = assistant({ai.SubtaskSuggestions: ai.SubtaskSuggestions(subtasks=items)})
        assert helper.generate_subtasks("Launch", "") == [f"Step {i}" for i in range(ai.MAX_SUBTASKS)]

    def test_advice_is_plain_text(self):
        helper, model = assistant({None: "Start with the outline."})
        assert helper.task_advice("Write report", "", "How do I start?") == "Start with the outline."
        assert "No description provided." in model.prompts[0]


class TestWeeklySummary:
    """Test summarize_week and weekly_summary."""

    def tasks(self):
        return [
            schemas.Task(id=1, space_id="s", title="Shipped", due_date=date(2025, 6, 10), assignee_id="u1",
                         status=schemas.TaskStatus.DONE, created_at=datetime(2025, 5, 1),
                         completed_at=datetime(2025, 6, 9)),
            schemas.Task(id=2, space_id="s", title="New", due_date=date(2025, 6, 20),
                         created_at=datetime(2025, 6, 10)),
            schemas.Task(id=3, space_id="s", title="Late", due_date=date(2025, 6, 1), assignee_id="u2",
                         created_at=datetime(2025, 5, 1)),
        ]

    def test_summarize_week(self):
        digest = ai.summarize_week(self.tasks(), NOW)
        assert {k: [t.id for t in v] for k, v in digest.items()} == {
            "completed": [1], "created": [2], "overdue": [3],
        }

    def test_prompt_lists_each_section(self):
        helper, model = assistant({None: "Great week."})
        assert helper.weekly_summary(self.tasks(), EMPLOYEES) == "Great week."
        prompt = model.prompts[0]
        assert '- "Shipped" (Assigned to: Alice)' in prompt
        assert '- "New" (Assigned to: N/A)' in prompt
        assert '- "Late" (Assigned to: Bob)' in prompt


class TestGetLLM:
    """Test get_llm provider selection."""

    def test_unsupported_provider(self):
        with pytest.raises(AIError):
            ai.get_llm(AIConfig(provider="carrier-pigeon"))
