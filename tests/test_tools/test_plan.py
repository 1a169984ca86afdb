import pytest

from termai.tools.plan import (
    CreatePlanTool,
    PlanAndTrackTool,
    PlanStore,
    PlanTracker,
    TaskChecklist,
    TaskStatus,
    parse_task_list,
)


def test_parse_task_list_accepts_json_lines_and_commas():
    assert parse_task_list('["a", "b"]') == ["a", "b"]
    assert parse_task_list("first\nsecond\n") == ["first", "second"]
    assert parse_task_list('"x", "y"') == ["x", "y"]
    assert parse_task_list("") is None
    assert parse_task_list("single task") is None


def test_checklist_progress():
    checklist = TaskChecklist.from_tasks("ship", ["a", "b", "c", "d"])
    checklist.update(1, TaskStatus.COMPLETED)
    checklist.update(2, TaskStatus.SKIPPED)

    assert checklist.completed_count == 1
    assert checklist.progress_percent == 25
    assert checklist.is_complete is False
    assert checklist.update(9, TaskStatus.COMPLETED) is False
    assert checklist.display.startswith("CHECKLIST (1/4 completed - 25%):")
    assert "[x] 1. a" in checklist.display


@pytest.mark.asyncio
async def test_plan_and_track_sets_goal_and_marks_tasks():
    tracker = PlanTracker()
    tool = PlanAndTrackTool(tracker)

    created = await tool.execute(goal="Add login", tasks='["model", "view"]')
    started = await tool.execute(start_task="1")
    done = await tool.execute(complete_task="1", task_note="tests pass")

    assert created.output.startswith("Goal set: Add login")
    assert "Task checklist created with 2 items:" in created.output
    assert "  2. view" in created.output
    assert started.output.startswith("Started task 1.")
    assert done.output.startswith("Marked task 1 complete.")
    assert "[x] 1. model [tests pass]" in done.output
    assert tracker.checklist.items[1].status is TaskStatus.PENDING


@pytest.mark.asyncio
async def test_plan_and_track_requires_goal():
    result = await PlanAndTrackTool(PlanTracker()).execute()

    assert result.success is False
    assert result.error.startswith("Missing required argument: goal")


@pytest.mark.asyncio
async def test_create_plan_requires_checklist_and_stores_plan():
    store = PlanStore()
    tool = CreatePlanTool(store)

    rejected = await tool.execute(title="Auth", content="Just prose")
    created = await tool.execute(title="Auth", content="## Steps\n- [ ] add model\n- [ ] add view")

    assert rejected.success is False
    assert "- [ ]" in rejected.error
    assert created.output.startswith("PLAN CREATED SUCCESSFULLY")
    assert len(store.plans) == 1
    assert list(store.plans.values())[0][0] == "Auth"
