"""Screen views: per-screen interaction state scoped to one application state."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import ClassVar

from .accounts import AccountStats, bare_account_number
from .models import Lesson, Module
from .states import AppState, FocusField

GRID_COLUMNS = 3
LESSON_TABS = ("Lesson", "Code Editor", "Output")
NAME_LIMIT = 50
EMAIL_LIMIT = 100
ACCOUNT_INPUT_LIMIT = 19


def _printable(char: str) -> bool:
    return len(char) == 1 and char.isprintable()


def _account_char(char: str) -> bool:
    return char == " " or (char.isascii() and char.isdigit())


@dataclass
class TextField:
    """Single-line input buffer with a length limit and a character filter."""

    limit: int
    accepts: Callable[[str], bool] = _printable
    value: str = ""

    def insert(self, char: str) -> bool:
        """Append `char` if it is accepted and fits; return whether it was taken."""
        if not self.accepts(char) or len(self.value) >= self.limit:
            return False
        self.value += char
        return True

    def backspace(self) -> None:
        self.value = self.value[:-1]

    def clear(self) -> None:
        self.value = ""


@dataclass
class IntroScreen:
    state: ClassVar[AppState] = AppState.INTRO

    frame: int = 0


@dataclass
class AuthMenuScreen:
    state: ClassVar[AppState] = AppState.AUTH_MENU

    cursor: int = 0

    def move(self, delta: int, option_count: int) -> None:
        """Move the cursor, clamped to the option list."""
        if option_count <= 0:
            self.cursor = 0
            return
        self.cursor = max(0, min(option_count - 1, self.cursor + delta))


@dataclass
class AccountCreationScreen:
    """Name/email form followed by the generated account number."""

    state: ClassVar[AppState] = AppState.ACCOUNT_CREATION

    name: TextField = field(default_factory=lambda: TextField(NAME_LIMIT))
    email: TextField = field(default_factory=lambda: TextField(EMAIL_LIMIT))
    focus: FocusField = FocusField.NAME
    generated_account_number: str = ""
    error: str = ""
    show_warning: bool = False
    warning_frame: int = 0

    @property
    def editing(self) -> bool:
        """Whether keystrokes go into a form field."""
        return self.focus is not FocusField.DISPLAY_INFO

    def focused_field(self) -> TextField | None:
        if self.focus is FocusField.NAME:
            return self.name
        if self.focus is FocusField.EMAIL:
            return self.email
        return None

    def cycle_focus(self, step: int) -> None:
        """Toggle between the name and email fields; display info is never reached."""
        if not self.editing:
            return
        order = (FocusField.NAME, FocusField.EMAIL)
        self.focus = order[(order.index(self.focus) + step) % len(order)]


@dataclass
class SignInScreen:
    state: ClassVar[AppState] = AppState.SIGN_IN

    account_input: TextField = field(default_factory=lambda: TextField(ACCOUNT_INPUT_LIMIT, _account_char))
    error: str = ""

    def account_number(self) -> str:
        """Entered number without spaces."""
        return bare_account_number(self.account_input.value)

    def validate(self) -> bool:
        """Check the entered number format, setting `error` on failure."""
        cleaned = self.account_number()
        if len(cleaned) != 16:
            self.error = "Account number must be exactly 16 digits"
            return False
        if not (cleaned.isascii() and cleaned.isdigit()):
            self.error = "Account number must contain only digits"
            return False
        self.error = ""
        return True


@dataclass
class DashboardScreen:
    """Module grid with the learner's stats."""

    state: ClassVar[AppState] = AppState.DASHBOARD

    modules: list[Module]
    width: int
    height: int
    user_name: str = ""
    stats: AccountStats | None = None
    completed: frozenset[tuple[str, str]] = frozenset()
    selected: int = 0

    def update(self, key: str) -> None:
        """Move the selection around the grid."""
        count = len(self.modules)
        if key in ("left",):
            if self.selected > 0:
                self.selected -= 1
        elif key in ("right", "l"):
            if self.selected < count - 1:
                self.selected += 1
        elif key in ("up", "k"):
            if self.selected >= GRID_COLUMNS:
                self.selected -= GRID_COLUMNS
        elif key in ("down", "j"):
            if self.selected < count - GRID_COLUMNS:
                self.selected += GRID_COLUMNS

    def selected_module(self) -> Module | None:
        if 0 <= self.selected < len(self.modules):
            return self.modules[self.selected]
        return None

    def module_progress(self, module: Module) -> float:
        """Fraction of the module's lessons completed, 0.0 to 1.0."""
        if not module.lessons:
            return 0.0
        done = sum(1 for lesson in module.lessons if (module.id, lesson.id) in self.completed)
        return done / len(module.lessons)

    def resized(self, width: int, height: int) -> DashboardScreen:
        return DashboardScreen(
            modules=self.modules,
            width=width,
            height=height,
            user_name=self.user_name,
            stats=self.stats,
            completed=self.completed,
            selected=self.selected,
        )


@dataclass
class LessonScreen:
    """Tabbed lesson reader with exercise hints and a simulated run."""

    state: ClassVar[AppState] = AppState.LESSON

    module: Module
    width: int
    height: int
    lesson_index: int = 0
    active_tab: int = 0
    show_hints: bool = False
    current_hint: int = 0
    user_code: str = ""
    output: str = ""
    message: str = ""
    completed: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if not self.user_code:
            self.user_code = self._starter_code()

    @property
    def lesson(self) -> Lesson:
        return self.module.lessons[self.lesson_index]

    def _starter_code(self) -> str:
        exercise = self.lesson.exercise
        return exercise.starter_code if exercise is not None else ""

    def _go_to(self, index: int) -> None:
        self.lesson_index = index
        self.show_hints = False
        self.current_hint = 0
        self.user_code = self._starter_code()
        self.output = ""
        self.message = ""

    def current_hint_text(self) -> str:
        exercise = self.lesson.exercise
        if not self.show_hints or exercise is None or not exercise.hints:
            return ""
        return exercise.hints[self.current_hint % len(exercise.hints)]

    def update(self, key: str) -> None:
        if key == "tab":
            self.active_tab = (self.active_tab + 1) % len(LESSON_TABS)
        elif key == "shift+tab":
            self.active_tab = (self.active_tab - 1) % len(LESSON_TABS)
        elif key == "?":
            if self.show_hints:
                self.current_hint += 1
            self.show_hints = not self.show_hints
        elif key == "n":
            if self.lesson_index < len(self.module.lessons) - 1:
                self._go_to(self.lesson_index + 1)
        elif key == "p":
            if self.lesson_index > 0:
                self._go_to(self.lesson_index - 1)
        elif key == "r":
            self.output = (
                f"PS> {self.user_code}\n\n"
                "# Output will appear here when connected to a PowerShell runtime.\n"
                "# This is a simulation for now."
            )
            self.active_tab = LESSON_TABS.index("Output")

    def mark_completed(self, lesson_id: str) -> None:
        self.completed = self.completed | {lesson_id}

    def resized(self, width: int, height: int) -> LessonScreen:
        return LessonScreen(
            module=self.module,
            width=width,
            height=height,
            lesson_index=self.lesson_index,
            active_tab=self.active_tab,
            show_hints=self.show_hints,
            current_hint=self.current_hint,
            user_code=self.user_code,
            output=self.output,
            message=self.message,
            completed=self.completed,
        )


@dataclass
class ModuleExplorerScreen:
    """Sidebar of menu options next to a content pane."""

    state: ClassVar[AppState] = AppState.MODULE_EXPLORER

    cursor: int = 0
    content: str = "Welcome! Select an option from the sidebar."

    def move(self, delta: int, option_count: int) -> None:
        if option_count <= 0:
            self.cursor = 0
            return
        self.cursor = max(0, min(option_count - 1, self.cursor + delta))


ActiveScreen = (
    IntroScreen
    | AuthMenuScreen
    | AccountCreationScreen
    | SignInScreen
    | DashboardScreen
    | LessonScreen
    | ModuleExplorerScreen
)
