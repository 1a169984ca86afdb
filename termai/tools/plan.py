"""Goal/checklist tracking and plan creation tools."""

import json
import uuid
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, Field

from termai.exceptions import ToolNotConfiguredError
from termai.logging import get_logger
from termai.tools.registry import Tool, ToolResult, parse_int

log = get_logger(__name__)


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


_STATUS_MARKERS = {
    TaskStatus.PENDING: "[ ]",
    TaskStatus.IN_PROGRESS: "[~]",
    TaskStatus.COMPLETED: "[x]",
    TaskStatus.FAILED: "[!]",
    TaskStatus.SKIPPED: "[-]",
}


class ChecklistItem(BaseModel):
    id: int
    description: str
    status: TaskStatus = TaskStatus.PENDING
    note: str | None = None

    @property
    def display(self) -> str:
        text = f"{_STATUS_MARKERS[self.status]} {self.id}. {self.description}"
        if self.note:
            text += f" [{self.note}]"
        return text


class TaskChecklist(BaseModel):
    goal: str
    items: list[ChecklistItem] = Field(default_factory=list)

    @classmethod
    def from_tasks(cls, goal: str, tasks: list[str]) -> "TaskChecklist":
        return cls(
            goal=goal,
            items=[ChecklistItem(id=index, description=task) for index, task in enumerate(tasks, start=1)],
        )

    def update(self, item_id: int, status: TaskStatus, note: str | None = None) -> bool:
        for item in self.items:
            if item.id == item_id:
                item.status = status
                if note is not None:
                    item.note = note
                return True
        return False

    @property
    def completed_count(self) -> int:
        return sum(1 for item in self.items if item.status is TaskStatus.COMPLETED)

    @property
    def progress_percent(self) -> int:
        if not self.items:
            return 0
        return int(self.completed_count / len(self.items) * 100)

    @property
    def is_complete(self) -> bool:
        return all(item.status in (TaskStatus.COMPLETED, TaskStatus.SKIPPED) for item in self.items)

    @property
    def display(self) -> str:
        header = f"CHECKLIST ({self.completed_count}/{len(self.items)} completed - {self.progress_percent}%):"
        return "\n".join([header, *(item.display for item in self.items)])


class PlanTrackDelegate(Protocol):
    """Receives goal and checklist updates from ``plan_and_track``."""

    async def set_goal_and_tasks(self, goal: str, tasks: list[str] | None) -> None: ...

    async def mark_task_in_progress(self, task_id: int) -> None: ...

    async def mark_task_complete(self, task_id: int, note: str | None) -> None: ...

    async def get_checklist_status(self) -> str | None: ...


class CreatePlanDelegate(Protocol):
    """Persists plans written in navigator mode."""

    async def create_plan(self, title: str, content: str) -> str: ...


class PlanTracker:
    """In-memory ``PlanTrackDelegate`` holding the current goal and checklist."""

    def __init__(self):
        self.goal: str | None = None
        self.checklist: TaskChecklist | None = None

    async def set_goal_and_tasks(self, goal: str, tasks: list[str] | None) -> None:
        self.goal = goal
        self.checklist = TaskChecklist.from_tasks(goal, tasks) if tasks else None

    async def mark_task_in_progress(self, task_id: int) -> None:
        if self.checklist is not None:
            self.checklist.update(task_id, TaskStatus.IN_PROGRESS)

    async def mark_task_complete(self, task_id: int, note: str | None) -> None:
        if self.checklist is not None:
            self.checklist.update(task_id, TaskStatus.COMPLETED, note)

    async def get_checklist_status(self) -> str | None:
        if self.checklist is None:
            return None
        return self.checklist.display

    def clear(self) -> None:
        self.goal = None
        self.checklist = None


class PlanStore:
    """In-memory ``CreatePlanDelegate``."""

    def __init__(self):
        self.plans: dict[str, tuple[str, str]] = {}

    async def create_plan(self, title: str, content: str) -> str:
        plan_id = str(uuid.uuid4())
        self.plans[plan_id] = (title, content)
        return plan_id


def parse_task_list(raw: str | None) -> list[str] | None:
    """Parse tasks given as a JSON array, or newline/comma separated text."""
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        parsed = None
    if isinstance(parsed, list):
        return [str(item).strip() for item in parsed if str(item).strip()]

    cleaned = raw.strip().strip("[]")
    if "\n" in cleaned:
        parts = [part.strip() for part in cleaned.split("\n")]
    elif "," in cleaned:
        parts = [part.strip().strip('"') for part in cleaned.split(",")]
    else:
        return None
    return [part for part in parts if part]


class PlanAndTrackTool(Tool):
    """Set a goal with a task checklist, and mark tasks started or complete."""

    name = "plan_and_track"
    description = (
        "CALL THIS FIRST to set a goal and create a task checklist. Essential for multi-step work. "
        "Also use to mark tasks complete."
    )
    parameters = {
        "type": "object",
        "properties": {
            "goal": {
                "type": "string",
                "description": "Clear, actionable goal statement (required when setting up a new plan)",
            },
            "tasks": {
                "type": "string",
                "description": 'JSON array of task descriptions, e.g. ["task 1", "task 2"]. Break work into 3-7 concrete steps.',
            },
            "start_task": {"type": "integer", "description": "Task ID to mark as in-progress (1-based)"},
            "complete_task": {
                "type": "integer",
                "description": "Task ID to mark complete (1-based). Call this after finishing each task.",
            },
            "task_note": {"type": "string", "description": "Optional note for the completed task"},
        },
    }

    def __init__(self, delegate: PlanTrackDelegate | None = None):
        self.delegate = delegate

    async def execute(
        self,
        goal: str | None = None,
        tasks: str | None = None,
        start_task: str | None = None,
        complete_task: str | None = None,
        task_note: str | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        if self.delegate is None:
            return ToolResult.fail(str(ToolNotConfiguredError(self.name, "Plan tracking delegate")))

        task_id = parse_int(start_task)
        if task_id is not None:
            await self.delegate.mark_task_in_progress(task_id)
            return await self._with_status(f"Started task {task_id}.")

        task_id = parse_int(complete_task)
        if task_id is not None:
            await self.delegate.mark_task_complete(task_id, task_note)
            return await self._with_status(f"Marked task {task_id} complete.")

        if not goal:
            return ToolResult.fail("Missing required argument: goal. Provide a clear, actionable goal statement.")

        task_list = parse_task_list(tasks)
        await self.delegate.set_goal_and_tasks(goal, task_list)

        response = f"Goal set: {goal}"
        if task_list:
            response += f"\n\nTask checklist created with {len(task_list)} items:"
            for index, task in enumerate(task_list, start=1):
                response += f"\n  {index}. {task}"
        return ToolResult.ok(response)

    async def _with_status(self, message: str) -> ToolResult:
        status = await self.delegate.get_checklist_status()
        if status:
            return ToolResult.ok(f"{message}\n\nCurrent checklist:\n{status}")
        return ToolResult.ok(message)


class CreatePlanTool(Tool):
    """Write an implementation plan (navigator mode)."""

    name = "create_plan"
    description = "Create an implementation plan. Use after exploring codebase and clarifying requirements with the user."
    parameters = {
        "type": "object",
        "properties": {
            "title": {
                "type": "string",
                "description": "Clear, descriptive title for the plan (e.g., 'Add User Authentication System')",
            },
            "content": {
                "type": "string",
                "description": "Markdown content with phases/context first, then a single flat checklist at the end using - [ ] syntax",
            },
        },
        "required": ["title", "content"],
    }

    def __init__(self, delegate: CreatePlanDelegate | None = None):
        self.delegate = delegate

    async def execute(self, title: str | None = None, content: str | None = None, **kwargs: Any) -> ToolResult:
        if self.delegate is None:
            return ToolResult.fail(str(ToolNotConfiguredError(self.name, "Create plan delegate")))
        if not title:
            return ToolResult.fail("Missing required argument: title. Provide a clear, descriptive title for the plan.")
        if not content:
            return ToolResult.fail(
                "Missing required argument: content. Provide the full markdown plan with implementation checklist."
            )
        if "- [ ]" not in content and "- [x]" not in content:
            return ToolResult.fail(
                "Plan content must include a checklist with '- [ ]' items. "
                "Please restructure the plan with actionable checklist items."
            )

        plan_id = await self.delegate.create_plan(title, content)
        log.info("Plan created", plan_id=plan_id, title=title)
        return ToolResult.ok(
            "PLAN CREATED SUCCESSFULLY\n"
            f"Plan ID: {plan_id}\n"
            f"Title: {title}\n\n"
            "Your work as Navigator is complete. STOP HERE.\n"
            "The user will now review the plan and can build it with Copilot "
            "(file operations only) or Pilot (full shell access).\n"
            "Do not create any more plans or continue exploring."
        )
