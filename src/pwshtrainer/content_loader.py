"""Load declarative module content from bundled JSON resources."""

from __future__ import annotations

import json
from importlib import resources
from pathlib import Path
from typing import Any

from .models import Exercise, Lesson, Module

CONTENT_PACKAGE = "pwshtrainer.content.modules"
DEFAULT_ICON = "*"


def _exercise_from_dict(lesson_id: str, raw: dict[str, Any] | None) -> Exercise | None:
    """Build an exercise from raw JSON content, if one is declared."""
    if not raw:
        return None
    instructions = str(raw.get("instructions", "")).strip()
    if not instructions:
        raise ValueError(f"Exercise for lesson '{lesson_id}' has no instructions.")
    return Exercise(
        id=str(raw.get("id", f"{lesson_id}-exercise")),
        instructions=instructions,
        starter_code=str(raw.get("starter_code", "")),
        solution=str(raw.get("solution", "")),
        hints=[str(hint).strip() for hint in raw.get("hints", []) if str(hint).strip()],
    )


def _lesson_from_dict(raw: dict[str, Any]) -> Lesson:
    """Build a lesson from raw JSON content."""
    lesson_id = str(raw["id"])
    return Lesson(
        id=lesson_id,
        title=str(raw["title"]),
        description=str(raw.get("description", "")),
        order=int(raw.get("order", 0)),
        duration_minutes=int(raw.get("duration_minutes", 15)),
        content=str(raw.get("content", "")),
        code_example=str(raw.get("code_example", "")),
        exercise=_exercise_from_dict(lesson_id, raw.get("exercise")),
    )


def _module_from_dict(raw: dict[str, Any]) -> Module:
    """Build a module from raw JSON content."""
    module_id = str(raw["id"])
    lessons = [_lesson_from_dict(lesson) for lesson in raw.get("lessons", [])]
    if not lessons:
        raise ValueError(f"Module '{module_id}' has no lessons.")
    lessons.sort(key=lambda item: item.order)
    return Module(
        id=module_id,
        title=str(raw["title"]),
        description=str(raw.get("description", "")),
        category=str(raw.get("category", "General")),
        difficulty=str(raw.get("difficulty", "Beginner")),
        icon=str(raw.get("icon", DEFAULT_ICON)),
        lessons=lessons,
    )


def _collect(raw_items: list[dict[str, Any]]) -> dict[str, Module]:
    """Build and validate modules, keeping the order they are declared in."""
    modules: dict[str, Module] = {}
    for raw in sorted(raw_items, key=lambda item: int(item.get("order", 0))):
        module = _module_from_dict(raw)
        if module.id in modules:
            raise ValueError(f"Duplicate module id: {module.id}")
        modules[module.id] = module
    _validate_unique_lesson_ids(modules)
    return modules


def load_modules() -> dict[str, Module]:
    """Load bundled modules in dashboard order."""
    raw_items: list[dict[str, Any]] = []
    for entry in resources.files(CONTENT_PACKAGE).iterdir():
        if entry.name.endswith(".json"):
            raw_items.append(json.loads(entry.read_text(encoding="utf-8-sig")))
    return _collect(raw_items)


def load_modules_from_dir(path: Path) -> dict[str, Module]:
    """Load modules from a directory for tests/tools."""
    raw_items = [json.loads(file_path.read_text(encoding="utf-8-sig")) for file_path in sorted(path.glob("*.json"))]
    return _collect(raw_items)


def _validate_unique_lesson_ids(modules: dict[str, Module]) -> None:
    """Validate that lesson ids are unique within each module."""
    for module in modules.values():
        seen: set[str] = set()
        for lesson in module.lessons:
            if lesson.id in seen:
                raise ValueError(f"Duplicate lesson id: {lesson.id} (in {module.id})")
            seen.add(lesson.id)
