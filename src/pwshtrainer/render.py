"""Turn a `Frame` into rich renderables."""

from __future__ import annotations

from dataclasses import dataclass

from rich import box
from rich.align import Align
from rich.console import Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .accounts import AccountStats
from .app import Frame, MenuView
from .states import AppState, FocusField
from .views import (
    GRID_COLUMNS,
    LESSON_TABS,
    AccountCreationScreen,
    AuthMenuScreen,
    DashboardScreen,
    IntroScreen,
    LessonScreen,
    ModuleExplorerScreen,
    SignInScreen,
)

INTRO_ART = (
    "        )  (        ",
    "     ( /(  )\\ )     ",
    "     )\\())(()/(     ",
    "    ((_)\\  /(_))    ",
    "     _((_)(_))      ",
    "    | || |/ __|     ",
    "    | __ |\\__ \\     ",
    "    |_||_||___/     ",
)

HELP_LINES: dict[AppState, tuple[str, ...]] = {
    AppState.INTRO: ("enter  continue", "h      toggle help", "q      quit"),
    AppState.AUTH_MENU: ("up/k down/j  move", "1-9          jump to option", "enter        select", "q            quit"),
    AppState.ACCOUNT_CREATION: ("tab/up/down  switch field", "enter        next / create", "ctrl+c       quit"),
    AppState.SIGN_IN: ("enter  sign in", "esc    back", "q      quit"),
    AppState.DASHBOARD: ("arrows/j/k/l  move", "enter         open module", "m             menu", "q             quit"),
    AppState.LESSON: (
        "tab/shift+tab  switch tab",
        "n/p            next/previous lesson",
        "?              hints",
        "r              run",
        "c              mark complete",
        "q              back to dashboard",
    ),
    AppState.MODULE_EXPLORER: ("up/k down/j  move", "enter        select", "esc          dashboard", "q            quit"),
}


@dataclass(frozen=True)
class Theme:
    """Colors shared by every render call; built once, never mutated."""

    primary: str = "#ff4e00"
    secondary: str = "#fb923c"
    accent: str = "#fcd34d"
    text: str = "#f5f5f4"
    dim: str = "#78716c"
    success: str = "#22c55e"
    error: str = "#ef4444"
    flames: tuple[str, ...] = ("#ff4e00", "#fb923c", "#fcd34d")


DEFAULT_THEME = Theme()


def render_frame(frame: Frame, theme: Theme = DEFAULT_THEME) -> RenderableType:
    """Build the renderable for the current screen, with the help overlay if shown."""
    body = _render_screen(frame, theme)
    if not frame.show_help:
        return body
    help_text = Text("\n".join(HELP_LINES.get(frame.state, ())), style=theme.text)
    return Group(body, Panel(help_text, title="Help", border_style=theme.accent, box=box.ROUNDED))


def _render_screen(frame: Frame, theme: Theme) -> RenderableType:
    screen = frame.screen
    if isinstance(screen, IntroScreen):
        return _intro(screen, theme)
    if isinstance(screen, AuthMenuScreen):
        return _menu_panel(frame.menu, screen.cursor, theme)
    if isinstance(screen, AccountCreationScreen):
        return _account_creation(screen, theme)
    if isinstance(screen, SignInScreen):
        return _sign_in(screen, theme)
    if isinstance(screen, DashboardScreen):
        return _dashboard(screen, theme)
    if isinstance(screen, LessonScreen):
        return _lesson(screen, theme)
    if isinstance(screen, ModuleExplorerScreen):
        return _explorer(frame.menu, screen, theme)
    raise TypeError(f"No renderer for {type(screen).__name__}")


def _intro(screen: IntroScreen, theme: Theme) -> RenderableType:
    art = Text()
    for row, line in enumerate(INTRO_ART):
        for col, char in enumerate(line):
            color = theme.flames[(row + col + screen.frame) % len(theme.flames)]
            art.append(char, style=color if char != " " else None)
        art.append("\n")
    art.append("\nPowerShell Trainer\n", style=f"bold {theme.primary}")
    art.append("Press enter to begin", style=theme.dim)
    return Align.center(art)


def _menu_table(menu: MenuView | None, cursor: int, theme: Theme) -> Table:
    table = Table.grid(padding=(0, 2))
    table.add_column()
    table.add_column(style=theme.dim)
    if menu is None:
        return table
    for index, (label, description) in enumerate(zip(menu.labels, menu.descriptions, strict=True)):
        marker = ">" if index == cursor else " "
        style = f"bold {theme.primary}" if index == cursor else theme.text
        table.add_row(Text(f"{marker} {index + 1}. {label}", style=style), description)
    return table


def _menu_panel(menu: MenuView | None, cursor: int, theme: Theme) -> RenderableType:
    title = menu.title if menu is not None else ""
    subtitle = menu.description if menu is not None else ""
    return Panel(_menu_table(menu, cursor, theme), title=title, subtitle=subtitle, border_style=theme.primary)


def _field_line(label: str, value: str, focused: bool, theme: Theme) -> Text:
    line = Text(f"{label:<8}", style=theme.dim)
    line.append(value or " ", style=f"bold {theme.accent}" if focused else theme.text)
    if focused:
        line.append("_", style=theme.accent)
    return line


def _account_creation(screen: AccountCreationScreen, theme: Theme) -> RenderableType:
    parts: list[RenderableType] = [
        _field_line("Name", screen.name.value, screen.focus is FocusField.NAME, theme),
        _field_line("Email", screen.email.value, screen.focus is FocusField.EMAIL, theme),
    ]
    if screen.error:
        parts.append(Text(screen.error, style=theme.error))
    if screen.focus is FocusField.DISPLAY_INFO:
        parts.append(Text(f"\nYour account number: {screen.generated_account_number}", style=f"bold {theme.success}"))
        if screen.show_warning:
            color = theme.flames[screen.warning_frame % len(theme.flames)]
            parts.append(Text("Save this number! You need it to sign in.", style=f"bold {color}"))
        parts.append(Text("Press enter to continue", style=theme.dim))
    return Panel(Group(*parts), title="Create Account", border_style=theme.primary)


def _sign_in(screen: SignInScreen, theme: Theme) -> RenderableType:
    parts: list[RenderableType] = [
        Text("Enter your 16-digit account number", style=theme.text),
        _field_line("Number", screen.account_input.value, True, theme),
    ]
    if screen.error:
        parts.append(Text(screen.error, style=theme.error))
    return Panel(Group(*parts), title="Sign In", subtitle="esc to go back", border_style=theme.primary)


def _format_duration(seconds: int) -> str:
    hours, remainder = divmod(seconds, 3600)
    minutes = remainder // 60
    return f"{hours}h {minutes}m" if hours else f"{minutes}m"


def _stats_line(stats: AccountStats | None, theme: Theme) -> Text:
    if stats is None:
        return Text("Progress is not being tracked.", style=theme.dim)
    return Text(
        f"Lessons: {stats.lessons_completed}   Time: {_format_duration(stats.total_time_seconds)}   "
        f"Achievements: {stats.achievement_count}   Streak: {stats.current_streak}/7 days",
        style=theme.secondary,
    )


def _dashboard(screen: DashboardScreen, theme: Theme) -> RenderableType:
    grid = Table.grid(padding=(0, 1), expand=True)
    for _ in range(GRID_COLUMNS):
        grid.add_column(ratio=1)
    cards: list[RenderableType] = []
    for index, module in enumerate(screen.modules):
        percent = int(screen.module_progress(module) * 100)
        body = Text(f"{module.description}\n", style=theme.text)
        body.append(f"{module.difficulty} - {len(module.lessons)} lessons - {percent}%", style=theme.dim)
        border = theme.accent if index == screen.selected else theme.dim
        cards.append(Panel(body, title=f"{module.icon} {module.title}", border_style=border, box=box.ROUNDED))
    for start in range(0, len(cards), GRID_COLUMNS):
        row = cards[start : start + GRID_COLUMNS]
        row.extend([Text("")] * (GRID_COLUMNS - len(row)))
        grid.add_row(*row)
    greeting = f"Welcome back, {screen.user_name}!" if screen.user_name else "Welcome!"
    header = Group(Text(greeting, style=f"bold {theme.primary}"), _stats_line(screen.stats, theme))
    return Group(header, grid)


def _lesson(screen: LessonScreen, theme: Theme) -> RenderableType:
    lesson = screen.lesson
    tabs = Text()
    for index, name in enumerate(LESSON_TABS):
        style = f"bold reverse {theme.primary}" if index == screen.active_tab else theme.dim
        tabs.append(f" {name} ", style=style)
        tabs.append(" ")
    tab = LESSON_TABS[screen.active_tab]
    if tab == "Lesson":
        body = Text(f"{lesson.content}\n\nExample:\n", style=theme.text)
        body.append(lesson.code_example, style=theme.accent)
        if lesson.exercise is not None:
            body.append(f"\n\nExercise: {lesson.exercise.instructions}", style=theme.secondary)
    elif tab == "Code Editor":
        body = Text(screen.user_code, style=theme.accent)
    else:
        body = Text(screen.output or "Press r to run your code.", style=theme.text)
    parts: list[RenderableType] = [tabs, Panel(body, border_style=theme.dim)]
    hint = screen.current_hint_text()
    if hint:
        parts.append(Text(f"Hint: {hint}", style=theme.accent))
    if screen.message:
        parts.append(Text(screen.message, style=theme.success))
    done = "done" if lesson.id in screen.completed else "open"
    position = f"{screen.lesson_index + 1}/{len(screen.module.lessons)}"
    title = f"{screen.module.title} - {lesson.title} ({position}, {done})"
    return Panel(Group(*parts), title=title, border_style=theme.primary)


def _explorer(menu: MenuView | None, screen: ModuleExplorerScreen, theme: Theme) -> RenderableType:
    layout = Table.grid(padding=(0, 1), expand=True)
    layout.add_column(ratio=1)
    layout.add_column(ratio=2)
    title = menu.title if menu is not None else ""
    sidebar = Panel(_menu_table(menu, screen.cursor, theme), title=title, border_style=theme.primary)
    content = Panel(Text(screen.content, style=theme.text), border_style=theme.dim)
    layout.add_row(sidebar, content)
    return layout
