"""
TaskFlow AI assistant.

Single-shot prompts over a chat model: break a goal into tasks, answer a
question about a task, suggest a priority, write a weekly summary and
draft a subtask checklist. The model is reached through one callable,
``generate(prompt, schema)``, which returns text when ``schema`` is None
and an instance of ``schema`` (or a dict / JSON string for it) otherwise.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Type

from pydantic import BaseModel, Field

from . import schemas
from .config import AIConfig
from .errors import AIError
from .schemas import utcnow

logger = logging.getLogger(__name__)

MAX_SUBTASKS = 6


class GeneratedTask(BaseModel):
    title: str = Field(description="A short, clear title for the task.")
    description: str = Field(default="", description="A brief description of what needs to be done.")
    assignee_id: str = Field(default="", description="The ID of the employee assigned to this task.")
    due_date: str = Field(default="", description="The due date in YYYY-MM-DD format.")


class GeneratedTasks(BaseModel):
    tasks: List[GeneratedTask]


class PrioritySuggestion(BaseModel):
    priority: str = Field(description="The suggested priority: Low, Medium, High or Urgent.")


class SubtaskSuggestions(BaseModel):
    subtasks: List[str]


def get_llm(config: Optional[AIConfig] = None):
    """Chat model for ``config`` (defaults from the environment)."""
    config = config or AIConfig.from_env()
    provider = config.provider.lower()
    if provider == "google":
        from langchain_google_genai import ChatGoogleGenerativeAI
        return ChatGoogleGenerativeAI(
            model=config.model_name,
            temperature=config.temperature,
            google_api_key=config.api_key,
            timeout=60.0,
        )
    raise AIError(f"Unsupported AI provider: {config.provider}")


class LangChainGenerator:
    """``generate(prompt, schema)`` backed by a langchain chat model."""

    def __init__(self, llm):
        self.llm = llm

    def __call__(self, prompt: str, schema: Optional[Type[BaseModel]] = None):
        if schema is None:
            return self.llm.invoke(prompt).content
        return self.llm.with_structured_output(schema).invoke(prompt)


def _coerce(result: Any, schema: Type[BaseModel]) -> BaseModel:
    if isinstance(result, schema):
        return result
    if isinstance(result, str):
        return schema.model_validate_json(result.strip())
    if isinstance(result, BaseModel):
        result = result.model_dump()
    return schema.model_validate(result)


def _parse_date(value: str) -> Optional[date]:
    try:
        return date.fromisoformat(value.strip()[:10])
    except (AttributeError, ValueError):
        return None


def summarize_week(tasks: Iterable[schemas.Task], now: datetime) -> Dict[str, List[schemas.Task]]:
    """Completed and created in the last 7 days, plus open tasks already past due."""
    week_ago = now - timedelta(days=7)
    tasks = list(tasks)
    return {
        "completed": [
            t for t in tasks
            if t.status == schemas.TaskStatus.DONE and t.completed_at and t.completed_at > week_ago
        ],
        "created": [t for t in tasks if t.created_at > week_ago],
        "overdue": [t for t in tasks if t.due_date < now.date() and t.status != schemas.TaskStatus.DONE],
    }


class TaskAssistant:
    def __init__(self, generate: Callable[..., Any], clock: Callable[[], datetime] = utcnow):
        self.generate = generate
        self.clock = clock

    @classmethod
    def from_config(cls, config: Optional[AIConfig] = None) -> "TaskAssistant":
        return cls(LangChainGenerator(get_llm(config)))

    def _ask(self, prompt: str, schema: Optional[Type[BaseModel]], failure: str):
        try:
            result = self.generate(prompt, schema)
            return result if schema is None else _coerce(result, schema)
        except Exception as e:
            logger.error("AI request failed: %s", e)
            raise AIError(failure) from e

    def generate_tasks(self, goal: str, employees: List[schemas.Employee]) -> List[schemas.TaskDraft]:
        employee_ids = [e.id for e in employees]
        prompt = f"""
Based on the following high-level goal, break it down into a list of specific, actionable tasks.

Goal: "{goal}"

Here are the available employees to assign tasks to: {', '.join(e.name for e in employees)}.

For each task, provide a concise title, a brief description, a suggested assignee ID from the list [{', '.join(employee_ids)}], and a due date.
The due date should be a reasonable number of days from today's date ({self.clock().date().isoformat()}), formatted YYYY-MM-DD.
Assign tasks logically based on what their role might be inferred from the goal. Distribute the tasks among the employees.
"""
        result = self._ask(prompt, GeneratedTasks, "Failed to generate tasks. The AI model may be temporarily unavailable.")
        fallback = employee_ids[0] if employee_ids else None
        return [
            schemas.TaskDraft(
                title=item.title,
                description=item.description,
                assignee_id=item.assignee_id if item.assignee_id in employee_ids else fallback,
                due_date=_parse_date(item.due_date),
            )
            for item in result.tasks
        ]

    def task_advice(self, title: str, description: str, question: str) -> str:
        prompt = f"""
You are a helpful project management assistant. You are advising on the following task:
- Task Title: "{title}"
- Task Description: "{description or 'No description provided.'}"

A user has the following question about this task: "{question}"

Please provide a helpful, concise, and actionable response. Format your response clearly.
"""
        return self._ask(prompt, None, "Failed to get advice. The AI model may be temporarily unavailable.")

    def suggest_priority(self, title: str, description: str) -> schemas.Priority:
        levels = ", ".join(p.value for p in schemas.PRIORITIES)
        prompt = f"""
Analyze the following task and suggest a priority level.
- Title: "{title}"
- Description: "{description or 'N/A'}"

Consider keywords like 'urgent', 'bug', 'critical', 'blocker' for high/urgent priority,
and 'plan', 'research', 'draft' for lower priority.

The available priority levels are: {levels}.
"""
        result = self._ask(prompt, PrioritySuggestion, "Failed to suggest a priority.")
        try:
            return schemas.Priority(result.priority.strip())
        except ValueError:
            logger.warning("AI suggested an invalid priority: %s. Defaulting to Medium.", result.priority)
            return schemas.Priority.MEDIUM

    def weekly_summary(self, tasks: Iterable[schemas.Task], employees: List[schemas.Employee]) -> str:
        digest = summarize_week(tasks, self.clock())
        names = {e.id: e.name for e in employees}

        def listing(items):
            if not items:
                return "None"
            return "\n".join(f'- "{t.title}" (Assigned to: {names.get(t.assignee_id, "N/A")})' for t in items)

        prompt = f"""
You are a project manager AI. Based on the following data, generate a concise, human-readable summary of the project's progress over the last week.
Structure the summary into sections: "Key Accomplishments", "New Tasks Created", and "Attention Needed".
Be encouraging and professional.

**Tasks Completed in the Last 7 Days:**
{listing(digest["completed"])}

**Tasks Created in the Last 7 Days:**
{listing(digest["created"])}

**Currently Overdue Tasks:**
{listing(digest["overdue"])}

Now, please generate the summary.
"""
        return self._ask(prompt, None, "Failed to generate the weekly summary.")

    def generate_subtasks(self, title: str, description: str) -> List[str]:
        prompt = f"""
For the task titled "{title}" with description "{description}", generate a list of 3 to 6 actionable subtasks (checklist items).
Return only the list of strings.
"""
        result = self._ask(prompt, SubtaskSuggestions, "Failed to generate subtasks.")
        items = [s.strip() for s in result.subtasks if s and s.strip()]
        return items[:MAX_SUBTASKS]
