"""Content models for learning modules, lessons, and exercises."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Exercise:
    """Hands-on task attached to a lesson."""

    id: str
    instructions: str
    starter_code: str
    solution: str
    hints: list[str]


@dataclass(frozen=True)
class Lesson:
    """Ordered lesson inside a module."""

    id: str
    title: str
    description: str
    order: int
    duration_minutes: int
    content: str
    code_example: str
    exercise: Exercise | None


@dataclass(frozen=True)
class Module:
    """Top-level learning module shown on the dashboard."""

    id: str
    title: str
    description: str
    category: str
    difficulty: str
    icon: str
    lessons: list[Lesson]

    def lesson_ids(self) -> list[str]:
        """Return lesson ids in display order."""
        return [lesson.id for lesson in self.lessons]
