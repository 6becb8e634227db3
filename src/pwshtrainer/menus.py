"""Menu model, the concrete menu surfaces, and the menu manager."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

from .states import AppState

logger = logging.getLogger(__name__)


class MenuAction(Enum):
    """Outcome kinds a menu selection can request."""

    NONE = "none"
    NAVIGATE = "navigate"
    EXECUTE = "execute"
    BACK = "back"
    EXIT = "exit"


class MenuError(Exception):
    """Base class for menu lifecycle failures."""


class MenuInitError(MenuError):
    """A menu could not complete its setup."""


class MenuCleanupError(MenuError):
    """A menu could not release its resources."""


class UnknownMenuError(MenuError, KeyError):
    """No menu is registered for the requested state."""


@dataclass(frozen=True)
class MenuResult:
    """Result of handling one selection."""

    action: MenuAction
    next_state: AppState | None = None
    payload: object | None = None
    message: str = ""


NO_RESULT = MenuResult(action=MenuAction.NONE)

Handler = Callable[[], MenuResult]


@dataclass(frozen=True)
class MenuOption:
    """One selectable row: either a static action/target pair or a handler."""

    label: str
    description: str = ""
    action: MenuAction = MenuAction.NONE
    target: AppState | None = None
    handler: Handler | None = None


def dispatch_option(option: MenuOption) -> MenuResult:
    """Resolve one option into its result."""
    if option.handler is not None:
        try:
            return option.handler()
        except Exception:
            logger.exception("Handler for menu option %r failed", option.label)
            return NO_RESULT
    return MenuResult(action=option.action, next_state=option.target, message=f"Selected: {option.label}")


class Menu:
    """Named, ordered set of options with selection handling."""

    def __init__(self, title: str, description: str = "") -> None:
        self._title = title
        self._description = description
        self._options: list[MenuOption] = []
        self._back_index = -1

    @property
    def title(self) -> str:
        return self._title

    @property
    def description(self) -> str:
        return self._description

    @property
    def options(self) -> tuple[MenuOption, ...]:
        """Options in display order."""
        return tuple(self._options)

    @property
    def back_option_index(self) -> int:
        """Index of the back/exit option, or -1 when there is none."""
        return self._back_index

    def add_option(self, option: MenuOption) -> None:
        self._options.append(option)

    def add_navigate_option(self, label: str, target: AppState, description: str = "") -> None:
        """Add an option that navigates straight to `target`."""
        self.add_option(MenuOption(label=label, description=description, action=MenuAction.NAVIGATE, target=target))

    def add_execute_option(self, label: str, description: str, handler: Handler) -> None:
        """Add an option whose result comes from `handler`."""
        self.add_option(MenuOption(label=label, description=description, action=MenuAction.EXECUTE, handler=handler))

    def add_back_option(self, label: str, target: AppState) -> None:
        """Add the back/exit option and remember its index."""
        self._back_index = len(self._options)
        self.add_option(MenuOption(label=label, action=MenuAction.BACK, target=target))

    def handle_selection(self, index: int) -> MenuResult:
        """Handle selection of the option at `index`; out-of-range is a no-op."""
        if not 0 <= index < len(self._options):
            return NO_RESULT
        return dispatch_option(self._options[index])

    def initialize(self) -> None:
        """Prepare the menu before first use."""

    def cleanup(self) -> None:
        """Release anything acquired while the menu was active."""


def _navigate(target: AppState, message: str, payload: object | None = None) -> Handler:
    def handler() -> MenuResult:
        return MenuResult(action=MenuAction.NAVIGATE, next_state=target, payload=payload, message=message)

    return handler


def _execute(message: str, payload: str) -> Handler:
    def handler() -> MenuResult:
        return MenuResult(action=MenuAction.EXECUTE, payload=payload, message=message)

    return handler


def build_auth_menu() -> Menu:
    """Sign up / log in / exit."""
    menu = Menu("PowerShell Trainer Authentication", "Sign up for a new account or sign in to continue")
    menu.add_execute_option(
        "Sign Up",
        "Create a new learning account",
        _navigate(AppState.ACCOUNT_CREATION, "Starting account creation..."),
    )
    menu.add_execute_option(
        "Login",
        "Login to your existing learning account",
        _navigate(AppState.SIGN_IN_PLACEHOLDER, "Opening sign-in form..."),
    )
    menu.add_back_option("Exit", AppState.EXIT)
    return menu


def build_main_menu() -> Menu:
    menu = Menu("PowerShell Trainer Main Menu", "Choose your learning path or manage your session")
    menu.add_navigate_option("Learn", AppState.LEARN_MENU)
    menu.add_navigate_option("Studio", AppState.STUDIO)
    menu.add_navigate_option("Settings", AppState.SETTINGS)
    menu.add_navigate_option("Log Out", AppState.AUTH_MENU)
    menu.add_back_option("Exit", AppState.EXIT)
    return menu


LEARN_TRACKS: tuple[tuple[str, str, str], ...] = (
    ("basics", "PowerShell Basics", "Start here: the shell, variables, and everyday cmdlets"),
    ("active-directory", "On-Premise Learning", "Active Directory, file servers, and local management"),
    ("msgraph", "MSGraph Module", "Microsoft Graph PowerShell SDK for cloud management"),
    ("scripting", "Advanced Scripting", "Functions, modules, and error handling"),
    ("automation", "Automation & DevOps", "Scheduled tasks and CI/CD pipelines"),
)


def build_learn_menu(tracks: Iterable[tuple[str, str, str]] = LEARN_TRACKS) -> Menu:
    """One option per learning track; each carries its module id as payload."""
    menu = Menu("Learning Modules", "Select a learning module to explore")
    for module_id, label, description in tracks:
        menu.add_execute_option(
            label,
            description,
            _navigate(AppState.MODULE_EXPLORER, f"Loading {label}...", payload=module_id),
        )
    menu.add_back_option("Back to Main Menu", AppState.MAIN_MENU)
    return menu


def build_settings_menu() -> Menu:
    menu = Menu("Settings", "Configure your learning experience")
    entries = (
        ("Theme Settings", "Configure color themes and visual preferences", "theme_settings"),
        ("Learning Preferences", "Set your skill level and learning pace", "learning_preferences"),
        ("Notification Settings", "Configure learning reminders", "notification_settings"),
        ("Account Settings", "Manage your account information", "account_settings"),
        ("Export/Import Progress", "Backup or restore your learning progress", "progress_management"),
        ("Reset to Defaults", "Reset all settings to their default values", "reset_settings"),
    )
    for label, description, key in entries:
        menu.add_execute_option(label, description, _execute(f"{label} are not available yet.", key))
    menu.add_back_option("Back to Main Menu", AppState.MAIN_MENU)
    return menu


def build_studio_menu() -> Menu:
    menu = Menu("Studio", "Practice PowerShell in interactive environments")
    entries = (
        ("Interactive Console", "Launch a practice console", "interactive_console", "Launching interactive console..."),
        ("Script Editor", "Create and edit scripts", "script_editor", "Opening script editor..."),
        ("Sandbox Environment", "Practice in an isolated environment", "sandbox_environment", "Preparing sandbox..."),
        ("Code Challenges", "Solve coding challenges", "code_challenges", "Loading code challenges..."),
        ("Snippet Library", "Browse useful snippets", "snippet_library", "Opening snippet library..."),
        ("Project Templates", "Start from a template", "project_templates", "Loading project templates..."),
    )
    for label, description, key, message in entries:
        menu.add_execute_option(label, description, _execute(message, key))
    menu.add_back_option("Back to Main Menu", AppState.MAIN_MENU)
    return menu


def default_menus() -> dict[AppState, Menu]:
    """Build the standard state -> menu registry."""
    return {
        AppState.AUTH_MENU: build_auth_menu(),
        AppState.MAIN_MENU: build_main_menu(),
        AppState.LEARN_MENU: build_learn_menu(),
        AppState.SETTINGS: build_settings_menu(),
        AppState.STUDIO: build_studio_menu(),
    }


class MenuManager:
    """Owns registered menus and routes selections to the active one."""

    def __init__(self, menus: dict[AppState, Menu] | None = None) -> None:
        self._menus = dict(menus) if menus is not None else default_menus()
        self._current: Menu | None = None
        self._current_state: AppState | None = None
        for state, menu in self._menus.items():
            try:
                menu.initialize()
            except MenuError:
                logger.warning("Menu for %s failed to initialize", state.name, exc_info=True)

    @property
    def current_state(self) -> AppState | None:
        return self._current_state

    @property
    def current_menu(self) -> Menu | None:
        return self._current

    def has_menu(self, state: AppState) -> bool:
        return state in self._menus

    def set_current_menu(self, state: AppState) -> None:
        """Activate the menu registered for `state`, cleaning up the previous one."""
        menu = self._menus.get(state)
        if menu is None:
            raise UnknownMenuError(f"No menu registered for state {state.name}")
        if self._current is not None:
            try:
                self._current.cleanup()
            except MenuError:
                logger.warning("Cleanup of menu for %s failed", self._current_state, exc_info=True)
        self._current = menu
        self._current_state = state

    def handle_selection(self, index: int) -> MenuResult:
        if self._current is None:
            return NO_RESULT
        return self._current.handle_selection(index)

    @property
    def title(self) -> str:
        return self._current.title if self._current is not None else ""

    @property
    def description(self) -> str:
        return self._current.description if self._current is not None else ""

    @property
    def options(self) -> tuple[MenuOption, ...]:
        return self._current.options if self._current is not None else ()

    @property
    def option_labels(self) -> list[str]:
        return [option.label for option in self.options]

    @property
    def back_option_index(self) -> int:
        return self._current.back_option_index if self._current is not None else -1

    def cleanup(self) -> None:
        """Run cleanup on every registered menu."""
        for state, menu in self._menus.items():
            try:
                menu.cleanup()
            except MenuError:
                logger.warning("Cleanup of menu for %s failed", state.name, exc_info=True)
