"""Top-level state machine: key, resize, and tick events to the next screen."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass

from .accounts import (
    Account,
    AccountNotFound,
    AccountStats,
    AccountStore,
    GenerationExhausted,
    Progress,
    StoreError,
    generate_account_number,
)
from .menus import MenuAction, MenuError, MenuManager, MenuResult
from .models import Module
from .states import AppState, FocusField, resolve_state
from .views import (
    AccountCreationScreen,
    ActiveScreen,
    AuthMenuScreen,
    DashboardScreen,
    IntroScreen,
    LessonScreen,
    ModuleExplorerScreen,
    SignInScreen,
)

logger = logging.getLogger(__name__)

QUIT_KEYS = {"q", "ctrl+c"}
SIDEBAR_MENUS = {AppState.MAIN_MENU, AppState.LEARN_MENU, AppState.STUDIO, AppState.SETTINGS}
EXPLORER_WELCOME = "Welcome! Select an option from the sidebar."
FIRST_LESSON = "first-lesson"
FIVE_LESSONS = "five-lessons"
FIVE_LESSON_THRESHOLD = 5


@dataclass(frozen=True)
class MenuView:
    """Menu metadata for the renderer."""

    title: str
    description: str
    labels: tuple[str, ...]
    descriptions: tuple[str, ...]
    back_option_index: int


@dataclass(frozen=True)
class Frame:
    """Everything the renderer needs to draw the current screen."""

    state: AppState
    screen: ActiveScreen
    menu: MenuView | None
    show_help: bool
    width: int
    height: int
    account: Account | None


def earned_achievements(progress: list[Progress], modules: dict[str, Module]) -> set[str]:
    """Achievement ids implied by a list of completed lessons."""
    earned: set[str] = set()
    if progress:
        earned.add(FIRST_LESSON)
    if len(progress) >= FIVE_LESSON_THRESHOLD:
        earned.add(FIVE_LESSONS)
    done = {(item.module_id, item.lesson_id) for item in progress}
    for module in modules.values():
        if all((module.id, lesson_id) in done for lesson_id in module.lesson_ids()):
            earned.add(f"module-{module.id}")
    return earned


class TrainerApp:
    """Application controller.

    Holds exactly one active screen; the current state is always the state of
    that screen, so legacy states never become current. `store` may be None
    when persistence is unavailable, in which case account numbers are
    ephemeral and sign-in is skipped.
    """

    def __init__(
        self,
        modules: dict[str, Module],
        store: AccountStore | None = None,
        menus: MenuManager | None = None,
        *,
        width: int = 100,
        height: int = 30,
        number_generator: Callable[[], str] = generate_account_number,
    ) -> None:
        self.modules = modules
        self.store = store
        self.menus = menus if menus is not None else MenuManager()
        self.width = width
        self.height = height
        self._number_generator = number_generator
        self.screen: ActiveScreen = IntroScreen()
        self.previous_state: AppState | None = None
        self.show_help = False
        self.running = True
        self.current_account: Account | None = None
        self.session_id: int | None = None
        self.current_module: Module | None = None
        self._dashboard_cursor = 0
        self._user_name = ""

    @property
    def state(self) -> AppState:
        return self.screen.state

    @property
    def animating(self) -> bool:
        """Whether the animation timer should stay armed."""
        if isinstance(self.screen, IntroScreen):
            return True
        return isinstance(self.screen, AccountCreationScreen) and self.screen.show_warning

    # Event entry points

    def handle_key(self, key: str) -> None:
        """Apply one key event. Store and menu failures never escape this call."""
        if not self.running:
            return
        try:
            self._dispatch_key(key)
        except (StoreError, MenuError, sqlite3.Error):
            logger.exception("Unhandled failure in state %s for key %r", self.state.name, key)

    def handle_resize(self, width: int, height: int) -> None:
        """Record new terminal dimensions and rebuild size-sensitive screens."""
        self.width = width
        self.height = height
        if isinstance(self.screen, DashboardScreen | LessonScreen):
            self.screen = self.screen.resized(width, height)

    def handle_tick(self) -> bool:
        """Advance animations; return whether the timer should be re-armed."""
        if isinstance(self.screen, IntroScreen):
            self.screen.frame += 1
            return True
        if isinstance(self.screen, AccountCreationScreen) and self.screen.show_warning:
            self.screen.warning_frame += 1
            return True
        return False

    def frame(self) -> Frame:
        """View-model for the current screen."""
        menu = None
        if isinstance(self.screen, AuthMenuScreen | ModuleExplorerScreen):
            options = self.menus.options
            menu = MenuView(
                title=self.menus.title,
                description=self.menus.description,
                labels=tuple(self.menus.option_labels),
                descriptions=tuple(option.description for option in options),
                back_option_index=self.menus.back_option_index,
            )
        return Frame(
            state=self.state,
            screen=self.screen,
            menu=menu,
            show_help=self.show_help,
            width=self.width,
            height=self.height,
            account=self.current_account,
        )

    def shutdown(self) -> None:
        """End the open session, release menus, and close the store."""
        self.running = False
        self._end_session()
        self.menus.cleanup()
        if self.store is not None:
            self.store.close()

    # Dispatch

    def _dispatch_key(self, key: str) -> None:
        if key in QUIT_KEYS and self._quit_allowed(key):
            self._quit()
            return
        screen = self.screen
        if isinstance(screen, IntroScreen):
            self._on_intro(key)
        elif isinstance(screen, AuthMenuScreen):
            self._on_auth_menu(key, screen)
        elif isinstance(screen, AccountCreationScreen):
            self._on_account_creation(key, screen)
        elif isinstance(screen, SignInScreen):
            self._on_sign_in(key, screen)
        elif isinstance(screen, DashboardScreen):
            self._on_dashboard(key, screen)
        elif isinstance(screen, LessonScreen):
            self._on_lesson(key, screen)
        elif isinstance(screen, ModuleExplorerScreen):
            self._on_explorer(key, screen)

    def _quit_allowed(self, key: str) -> bool:
        if isinstance(self.screen, AccountCreationScreen) and self.screen.editing:
            return False
        return key == "ctrl+c" or not isinstance(self.screen, LessonScreen)

    def _quit(self) -> None:
        self.running = False
        self._end_session()

    def _show(self, screen: ActiveScreen) -> None:
        if screen.state is not self.state:
            self.previous_state = self.state
        self.screen = screen

    # Per-state handlers

    def _on_intro(self, key: str) -> None:
        if key == "enter":
            self._open_auth_menu()
        elif key == "h":
            self.show_help = not self.show_help

    def _on_auth_menu(self, key: str, screen: AuthMenuScreen) -> None:
        count = len(self.menus.options)
        if key == "h":
            self.show_help = not self.show_help
        elif key in ("up", "k"):
            screen.move(-1, count)
        elif key in ("down", "j"):
            screen.move(1, count)
        elif len(key) == 1 and key in "123456789":
            if int(key) <= count:
                screen.cursor = int(key) - 1
        elif key == "enter":
            self._follow(self.menus.handle_selection(screen.cursor))

    def _on_account_creation(self, key: str, screen: AccountCreationScreen) -> None:
        if key == "enter":
            if not screen.editing:
                screen.show_warning = False
                self._open_dashboard(user_name=screen.name.value.strip())
            elif screen.focus is FocusField.NAME:
                screen.focus = FocusField.EMAIL
            else:
                self._create_account(screen)
        elif key in ("tab", "down"):
            screen.cycle_focus(1)
        elif key in ("shift+tab", "up"):
            screen.cycle_focus(-1)
        else:
            field = screen.focused_field()
            if field is None:
                return
            if key == "backspace":
                field.backspace()
            else:
                field.insert(key)

    def _on_sign_in(self, key: str, screen: SignInScreen) -> None:
        if key == "esc":
            self._open_auth_menu()
        elif key == "enter":
            self._sign_in(screen)
        elif key == "backspace":
            screen.account_input.backspace()
        else:
            screen.account_input.insert(key)

    def _on_dashboard(self, key: str, screen: DashboardScreen) -> None:
        if key == "h":
            self.show_help = not self.show_help
        elif key == "enter":
            module = screen.selected_module()
            if module is not None:
                self._dashboard_cursor = screen.selected
                self._open_lesson(module)
        elif key == "m":
            self._dashboard_cursor = screen.selected
            self._open_explorer(AppState.MAIN_MENU)
        elif not self.show_help:
            screen.update(key)

    def _on_lesson(self, key: str, screen: LessonScreen) -> None:
        if key == "h":
            self.show_help = not self.show_help
        elif key == "q":
            self._open_dashboard()
        elif key == "c":
            self._complete_lesson(screen)
        elif not self.show_help:
            screen.update(key)

    def _on_explorer(self, key: str, screen: ModuleExplorerScreen) -> None:
        count = len(self.menus.options)
        if key == "h":
            self.show_help = not self.show_help
        elif key in ("up", "k"):
            screen.move(-1, count)
        elif key in ("down", "j"):
            screen.move(1, count)
        elif key == "esc":
            self._open_dashboard()
        elif key == "enter":
            self._follow(self.menus.handle_selection(screen.cursor))

    # Menu results

    def _follow(self, result: MenuResult) -> None:
        """Turn a menu result into a transition."""
        if result.action is MenuAction.NONE:
            return
        if result.action is MenuAction.EXIT or result.next_state is AppState.EXIT:
            self._quit()
            return
        if result.action is MenuAction.EXECUTE:
            if isinstance(self.screen, ModuleExplorerScreen):
                self.screen.content = result.message
            return
        if result.next_state is not None:
            self._navigate(result.next_state, result.payload)

    def _navigate(self, target: AppState, payload: object | None) -> None:
        if target in SIDEBAR_MENUS:
            self._open_explorer(target)
            return
        resolved = resolve_state(target)
        if target.is_legacy:
            logger.debug("Redirecting %s to %s", target.name, resolved.name)
        if resolved is AppState.ACCOUNT_CREATION:
            self._show(AccountCreationScreen())
        elif resolved is AppState.SIGN_IN:
            self._open_sign_in()
        elif resolved is AppState.AUTH_MENU:
            self._log_out()
        elif resolved is AppState.DASHBOARD:
            self._open_dashboard()
        elif resolved is AppState.MODULE_EXPLORER:
            self._open_module(payload)
        elif resolved is AppState.INTRO:
            self._show(IntroScreen())
        else:
            logger.debug("Ignoring navigation to %s", target.name)

    def _open_module(self, payload: object | None) -> None:
        if payload is None:
            self._open_explorer(AppState.MAIN_MENU)
            return
        module = self.modules.get(str(payload))
        if module is not None:
            self._open_lesson(module)
        elif isinstance(self.screen, ModuleExplorerScreen):
            self.screen.content = f"Module '{payload}' is not available yet."

    # Screen construction

    def _open_auth_menu(self) -> None:
        try:
            self.menus.set_current_menu(AppState.AUTH_MENU)
        except MenuError:
            logger.warning("Auth menu unavailable; staying in %s", self.state.name, exc_info=True)
            return
        self._show(AuthMenuScreen(cursor=0))

    def _open_explorer(self, menu_state: AppState) -> None:
        if not self.menus.has_menu(menu_state):
            logger.warning("No menu registered for %s; staying in %s", menu_state.name, self.state.name)
            return
        self.menus.set_current_menu(menu_state)
        content = self.menus.description or EXPLORER_WELCOME
        self._show(ModuleExplorerScreen(cursor=0, content=content))

    def _open_sign_in(self) -> None:
        if self.store is None:
            logger.info("No account store; skipping sign-in")
            self._open_dashboard()
            return
        self._show(SignInScreen())

    def _open_dashboard(self, user_name: str = "") -> None:
        if self.current_account is not None:
            self._user_name = self.current_account.name
        elif user_name:
            self._user_name = user_name
        stats, progress = self._load_progress()
        screen = DashboardScreen(
            modules=list(self.modules.values()),
            width=self.width,
            height=self.height,
            user_name=self._user_name,
            stats=stats,
            completed=frozenset((item.module_id, item.lesson_id) for item in progress),
        )
        if 0 <= self._dashboard_cursor < len(screen.modules):
            screen.selected = self._dashboard_cursor
        self._show(screen)

    def _open_lesson(self, module: Module) -> None:
        self.current_module = module
        _, progress = self._load_progress()
        completed = frozenset(item.lesson_id for item in progress if item.module_id == module.id)
        self._show(LessonScreen(module=module, width=self.width, height=self.height, completed=completed))

    # Store-backed operations

    def _create_account(self, screen: AccountCreationScreen) -> None:
        name = screen.name.value.strip()
        email = screen.email.value.strip()
        if not name or not email:
            screen.error = "Name and email are both required."
            return
        if self.store is None:
            number = self._number_generator()
        else:
            try:
                number = self.store.generate_unique_account_number(self._number_generator)
                account = self.store.create_account(name, email, number)
            except GenerationExhausted:
                logger.error("Account number generation exhausted")
                screen.error = "Could not generate a unique account number. Please try again."
                return
            except StoreError:
                logger.warning("Account creation failed", exc_info=True)
                screen.error = "Could not create your account. Please try again."
                return
            number = account.account_number
            self.current_account = account
            self._start_session(account)
        screen.generated_account_number = number
        screen.error = ""
        screen.focus = FocusField.DISPLAY_INFO
        screen.show_warning = True

    def _sign_in(self, screen: SignInScreen) -> None:
        if not screen.validate():
            return
        if self.store is None:
            self._open_dashboard()
            return
        try:
            account = self.store.sign_in(screen.account_number())
        except AccountNotFound:
            screen.error = "Account not found. Please check your account number."
            return
        except StoreError:
            logger.warning("Sign in failed", exc_info=True)
            screen.error = "Sign in failed. Please try again."
            return
        self.current_account = account
        self._start_session(account)
        self._open_dashboard()

    def _log_out(self) -> None:
        self._end_session()
        self.current_account = None
        self.current_module = None
        self._user_name = ""
        self._dashboard_cursor = 0
        self._open_auth_menu()

    def _start_session(self, account: Account) -> None:
        if self.store is None:
            return
        try:
            self.session_id = self.store.start_session(account.id)
        except StoreError:
            logger.warning("Could not start session for account %s", account.id, exc_info=True)
            self.session_id = None

    def _end_session(self) -> None:
        if self.store is None or self.session_id is None:
            return
        session_id, self.session_id = self.session_id, None
        try:
            self.store.end_session(session_id)
        except StoreError:
            logger.warning("Could not end session %s", session_id, exc_info=True)

    def _load_progress(self) -> tuple[AccountStats | None, list[Progress]]:
        if self.store is None or self.current_account is None:
            return None, []
        try:
            stats = self.store.get_stats(self.current_account.id)
            progress = self.store.get_progress(self.current_account.id)
        except StoreError:
            logger.warning("Could not load progress for account %s", self.current_account.id, exc_info=True)
            return None, []
        return stats, progress

    def _complete_lesson(self, screen: LessonScreen) -> None:
        lesson = screen.lesson
        screen.mark_completed(lesson.id)
        if self.store is None or self.current_account is None:
            screen.message = "Lesson complete! Progress is not saved without an account."
            return
        account_id = self.current_account.id
        try:
            self.store.save_progress(account_id, screen.module.id, lesson.id)
            earned = earned_achievements(self.store.get_progress(account_id), self.modules)
            new = [
                achievement
                for achievement in sorted(earned - self.store.achievement_ids(account_id))
                if self.store.award_achievement(account_id, achievement)
            ]
        except (StoreError, sqlite3.Error):
            logger.warning("Could not save progress for %s/%s", screen.module.id, lesson.id, exc_info=True)
            screen.message = "Lesson complete, but progress could not be saved."
            return
        screen.message = "Lesson complete!"
        if new:
            screen.message += " Achievements unlocked: " + ", ".join(new)
