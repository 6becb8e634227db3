import re
import sqlite3

import pytest

from pwshtrainer.accounts import AccountStore, Progress, StoreError, StoreUnavailable
from pwshtrainer.app import TrainerApp, earned_achievements
from pwshtrainer.content_loader import load_modules
from pwshtrainer.menus import Menu, MenuAction, MenuManager, MenuResult, build_auth_menu
from pwshtrainer.states import RENDERABLE_STATES, AppState, FocusField
from pwshtrainer.views import AccountCreationScreen, DashboardScreen, LessonScreen, ModuleExplorerScreen, SignInScreen

NUMBER_PATTERN = re.compile(r"^[1-9]\d{3} \d{4} \d{4} \d{4}$")
EXISTING = "1111 2222 3333 4444"


def _app(store: AccountStore | None = None, **kwargs) -> TrainerApp:
    return TrainerApp(load_modules(), store, **kwargs)


def _press(app: TrainerApp, *keys: str) -> None:
    for key in keys:
        app.handle_key(key)
        assert app.frame().state in RENDERABLE_STATES


def _type(app: TrainerApp, text: str) -> None:
    _press(app, *list(text))


def _signed_in(store: AccountStore) -> TrainerApp:
    store.create_account("Ann", "a@b.com", EXISTING)
    app = _app(store)
    _press(app, "enter", "down", "enter")
    _type(app, EXISTING)
    _press(app, "enter")
    assert app.state is AppState.DASHBOARD
    return app


def test_intro_enter_opens_auth_menu() -> None:
    app = _app()
    assert app.state is AppState.INTRO
    _press(app, "h")
    assert app.show_help is True
    _press(app, "h", "enter")
    assert app.show_help is False
    assert app.state is AppState.AUTH_MENU
    assert app.menus.current_state is AppState.AUTH_MENU
    assert app.screen.cursor == 0
    assert app.previous_state is AppState.INTRO
    assert app.frame().menu.labels == ("Sign Up", "Login", "Exit")


@pytest.mark.parametrize("key", ["q", "ctrl+c"])
def test_intro_quit_keys_terminate(key: str) -> None:
    app = _app()
    app.handle_key(key)
    assert app.running is False


def test_sign_up_scenario_creates_exactly_one_account(store: AccountStore) -> None:
    app = _app(store)
    _press(app, "enter", "enter")
    assert app.state is AppState.ACCOUNT_CREATION
    screen = app.screen
    assert isinstance(screen, AccountCreationScreen)
    assert screen.focus is FocusField.NAME
    assert screen.name.value == ""
    assert screen.generated_account_number == ""

    _type(app, "Ann")
    _press(app, "enter")
    assert screen.focus is FocusField.EMAIL
    _type(app, "a@b.com")
    _press(app, "enter")

    assert screen.focus is FocusField.DISPLAY_INFO
    assert NUMBER_PATTERN.match(screen.generated_account_number)
    assert screen.show_warning is True
    assert store.count_accounts() == 1
    assert store.find_account(screen.generated_account_number).name == "Ann"
    assert app.session_id is not None

    _press(app, "enter")
    assert app.state is AppState.DASHBOARD
    assert isinstance(app.screen, DashboardScreen)
    assert app.screen.user_name == "Ann"
    assert store.count_accounts() == 1


def test_q_is_typed_into_fields_until_display_info(store: AccountStore) -> None:
    app = _app(store)
    _press(app, "enter", "enter")
    _type(app, "Quinn")
    _press(app, "tab")
    _press(app, "q", "@", "q", ".", "q")
    screen = app.screen
    assert app.running is True
    assert screen.name.value == "Quinn"
    assert screen.email.value == "q@q.q"
    _press(app, "enter")
    assert screen.focus is FocusField.DISPLAY_INFO
    _press(app, "q")
    assert app.running is False
    assert app.session_id is None


def test_ctrl_c_is_ignored_mid_form() -> None:
    app = _app()
    _press(app, "enter", "enter", "A", "ctrl+c")
    screen = app.screen
    assert app.running is True
    assert screen.name.value == "A"
    _press(app, "tab", "ctrl+c")
    assert app.running is True
    assert screen.email.value == ""
    _press(app, "b", "enter")
    assert screen.focus is FocusField.DISPLAY_INFO
    app.handle_key("ctrl+c")
    assert app.running is False


def test_missing_auth_menu_keeps_intro() -> None:
    app = TrainerApp({}, menus=MenuManager({}))
    _press(app, "enter")
    assert app.running is True
    assert app.state is AppState.INTRO


def test_failing_menu_handler_keeps_current_state() -> None:
    def explode() -> MenuResult:
        raise RuntimeError("handler failed")

    menu = Menu("Broken auth")
    menu.add_execute_option("Sign Up", "", explode)
    app = _app(menus=MenuManager({AppState.AUTH_MENU: menu}))
    _press(app, "enter", "enter")
    assert app.running is True
    assert app.state is AppState.AUTH_MENU


def test_missing_sidebar_menu_keeps_dashboard() -> None:
    app = _app(menus=MenuManager({AppState.AUTH_MENU: build_auth_menu()}))
    _press(app, "enter", "down", "enter")
    assert app.state is AppState.DASHBOARD
    _press(app, "m")
    assert app.state is AppState.DASHBOARD
    assert app.running is True


def test_focus_cycles_between_name_and_email_only() -> None:
    app = _app()
    _press(app, "enter", "enter")
    screen = app.screen
    seen = []
    for key in ("tab", "tab", "down", "up", "shift+tab", "shift+tab"):
        _press(app, key)
        seen.append(screen.focus)
    assert FocusField.DISPLAY_INFO not in seen
    assert seen[:2] == [FocusField.EMAIL, FocusField.NAME]


def test_enter_on_name_does_not_validate() -> None:
    app = _app()
    _press(app, "enter", "enter", "enter")
    assert app.screen.focus is FocusField.EMAIL
    assert app.screen.error == ""


def test_enter_on_email_with_missing_name_shows_error(store: AccountStore) -> None:
    app = _app(store)
    _press(app, "enter", "enter", "tab")
    _type(app, "a@b.com")
    _press(app, "enter")
    assert app.screen.focus is FocusField.EMAIL
    assert "required" in app.screen.error
    assert store.count_accounts() == 0


def test_backspace_edits_focused_field() -> None:
    app = _app()
    _press(app, "enter", "enter")
    _type(app, "Annx")
    _press(app, "backspace")
    assert app.screen.name.value == "Ann"


def test_exhausted_generation_aborts_without_mutation(store: AccountStore) -> None:
    store.create_account("First", "f@x.com", EXISTING)
    calls = {"count": 0}

    def colliding() -> str:
        calls["count"] += 1
        return EXISTING

    app = _app(store, number_generator=colliding)
    _press(app, "enter", "enter")
    _type(app, "Ann")
    _press(app, "enter")
    _type(app, "a@b.com")
    _press(app, "enter")

    assert calls["count"] == 100
    assert app.state is AppState.ACCOUNT_CREATION
    assert app.screen.focus is FocusField.EMAIL
    assert app.screen.generated_account_number == ""
    assert "unique account number" in app.screen.error
    assert store.count_accounts() == 1
    assert app.current_account is None


def test_account_creation_without_store_is_ephemeral() -> None:
    app = _app(number_generator=lambda: "5555 6666 7777 8888")
    _press(app, "enter", "enter")
    _type(app, "Ann")
    _press(app, "enter")
    _type(app, "a@b.com")
    _press(app, "enter")
    assert app.screen.generated_account_number == "5555 6666 7777 8888"
    assert app.current_account is None
    _press(app, "enter")
    assert app.state is AppState.DASHBOARD
    assert app.screen.user_name == "Ann"


def test_login_without_store_skips_sign_in() -> None:
    app = _app()
    _press(app, "enter", "down", "enter")
    assert app.state is AppState.DASHBOARD


def test_digit_jumps_to_option() -> None:
    app = _app(AccountStore(":memory:"))
    _press(app, "enter", "2")
    assert app.screen.cursor == 1
    _press(app, "9")
    assert app.screen.cursor == 1
    _press(app, "enter")
    assert app.state is AppState.SIGN_IN
    assert isinstance(app.screen, SignInScreen)
    app.shutdown()


def test_auth_menu_exit_option_quits() -> None:
    app = _app()
    _press(app, "enter", "down", "down", "down", "enter")
    assert app.running is False


def test_sign_in_rejects_short_number_before_lookup(store: AccountStore, monkeypatch) -> None:
    def fail(number: str):
        raise AssertionError("store must not be consulted")

    monkeypatch.setattr(store, "sign_in", fail)
    app = _app(store)
    _press(app, "enter", "down", "enter")
    _type(app, "12345")
    _press(app, "enter")
    assert app.state is AppState.SIGN_IN
    assert app.screen.error == "Account number must be exactly 16 digits"


def test_sign_in_unknown_account_is_not_found(store: AccountStore) -> None:
    app = _app(store)
    _press(app, "enter", "down", "enter")
    _type(app, "1111222233334444")
    _press(app, "enter")
    assert app.state is AppState.SIGN_IN
    assert app.screen.error == "Account not found. Please check your account number."


def test_sign_in_other_failure_has_generic_message(store: AccountStore, monkeypatch) -> None:
    def broken(number: str):
        raise StoreError("disk on fire")

    monkeypatch.setattr(store, "sign_in", broken)
    app = _app(store)
    _press(app, "enter", "down", "enter")
    _type(app, EXISTING)
    _press(app, "enter")
    assert app.state is AppState.SIGN_IN
    assert app.screen.error == "Sign in failed. Please try again."


def test_sign_in_field_ignores_letters(store: AccountStore) -> None:
    app = _app(store)
    _press(app, "enter", "down", "enter")
    _type(app, "12ab")
    _press(app, "backspace")
    assert app.screen.account_input.value == "1"


def test_sign_in_success_starts_session(store: AccountStore) -> None:
    app = _signed_in(store)
    assert app.current_account is not None
    assert app.current_account.last_login is not None
    assert app.screen.user_name == "Ann"
    assert store.open_session_ids(app.current_account.id) == [app.session_id]


def test_sign_in_esc_returns_to_auth_menu(store: AccountStore) -> None:
    app = _app(store)
    _press(app, "enter", "down", "enter", "1", "esc")
    assert app.state is AppState.AUTH_MENU
    assert app.menus.current_state is AppState.AUTH_MENU


def test_dashboard_enter_opens_selected_module(store: AccountStore) -> None:
    app = _signed_in(store)
    _press(app, "right", "enter")
    assert app.state is AppState.LESSON
    assert isinstance(app.screen, LessonScreen)
    assert app.screen.module.id == "active-directory"
    assert app.current_module is app.screen.module


def test_dashboard_without_modules_stays_put() -> None:
    app = TrainerApp({}, None)
    _press(app, "enter", "down", "enter")
    assert app.state is AppState.DASHBOARD
    _press(app, "enter")
    assert app.state is AppState.DASHBOARD


def test_lesson_q_returns_to_dashboard_and_keeps_session(store: AccountStore) -> None:
    app = _signed_in(store)
    session_id = app.session_id
    _press(app, "right", "enter", "q")
    assert app.state is AppState.DASHBOARD
    assert app.running is True
    assert app.session_id == session_id
    assert app.screen.selected == 1


def test_lesson_ctrl_c_quits_and_ends_session(store: AccountStore) -> None:
    app = _signed_in(store)
    session_id = app.session_id
    _press(app, "enter", "ctrl+c")
    assert app.running is False
    session = store.get_session(session_id)
    assert session is not None and session.end is not None


def test_completing_lesson_saves_progress_and_awards(store: AccountStore) -> None:
    app = _signed_in(store)
    _press(app, "enter", "c")
    account_id = app.current_account.id
    assert [(row.module_id, row.lesson_id) for row in store.get_progress(account_id)] == [("basics", "basics-1")]
    assert "first-lesson" in app.screen.message
    assert "basics-1" in app.screen.completed
    _press(app, "c")
    assert len(store.get_progress(account_id)) == 1
    assert store.achievement_ids(account_id) == {"first-lesson"}
    _press(app, "q")
    assert app.screen.stats.lessons_completed == 1
    assert ("basics", "basics-1") in app.screen.completed


def test_save_progress_failure_is_reported(store: AccountStore, monkeypatch) -> None:
    app = _signed_in(store)

    def broken(*args):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(store, "save_progress", broken)
    _press(app, "enter", "c")
    assert app.state is AppState.LESSON
    assert app.screen.message == "Lesson complete, but progress could not be saved."


def test_completing_lesson_without_account() -> None:
    app = _app()
    _press(app, "enter", "down", "enter", "enter", "c")
    assert "not saved" in app.screen.message


def test_help_blocks_dashboard_movement() -> None:
    app = _app()
    _press(app, "enter", "down", "enter", "h", "right")
    assert app.screen.selected == 0
    _press(app, "h", "right")
    assert app.screen.selected == 1


def test_explorer_navigation(store: AccountStore) -> None:
    app = _signed_in(store)
    _press(app, "m")
    assert app.state is AppState.MODULE_EXPLORER
    assert app.menus.current_state is AppState.MAIN_MENU

    _press(app, "enter")
    assert app.state is AppState.MODULE_EXPLORER
    assert app.menus.current_state is AppState.LEARN_MENU
    assert app.frame().menu.title == "Learning Modules"

    _press(app, "down", "enter")
    assert app.state is AppState.LESSON
    assert app.screen.module.id == "active-directory"


def test_explorer_execute_shows_message(store: AccountStore) -> None:
    app = _signed_in(store)
    _press(app, "m", "down", "down", "enter")
    assert app.menus.current_state is AppState.SETTINGS
    _press(app, "enter")
    assert isinstance(app.screen, ModuleExplorerScreen)
    assert app.screen.content == "Theme Settings are not available yet."


def test_explorer_back_option_returns_to_main_menu(store: AccountStore) -> None:
    app = _signed_in(store)
    _press(app, "m", "down", "enter")
    assert app.menus.current_state is AppState.STUDIO
    back = app.menus.back_option_index
    _press(app, *["down"] * back, "enter")
    assert app.menus.current_state is AppState.MAIN_MENU
    assert app.state is AppState.MODULE_EXPLORER


def test_explorer_esc_returns_to_dashboard(store: AccountStore) -> None:
    app = _signed_in(store)
    _press(app, "m", "esc")
    assert app.state is AppState.DASHBOARD


def test_log_out_ends_session(store: AccountStore) -> None:
    app = _signed_in(store)
    session_id = app.session_id
    _press(app, "m", "down", "down", "down", "enter")
    assert app.state is AppState.AUTH_MENU
    assert app.current_account is None
    assert app.session_id is None
    assert store.get_session(session_id).end is not None


def test_unknown_learn_module_shows_message() -> None:
    app = TrainerApp({}, None)
    _press(app, "enter", "down", "enter", "m", "enter", "enter")
    assert app.state is AppState.MODULE_EXPLORER
    assert app.screen.content == "Module 'basics' is not available yet."


def test_out_of_range_cursor_is_no_op() -> None:
    app = _app()
    _press(app, "enter")
    app.screen.cursor = 42
    _press(app, "enter")
    assert app.state is AppState.AUTH_MENU
    assert app.menus.handle_selection(42).action is MenuAction.NONE


def test_resize_rebuilds_dashboard_with_context(store: AccountStore) -> None:
    app = _signed_in(store)
    _press(app, "right")
    before = app.screen
    app.handle_resize(140, 50)
    assert app.screen is not before
    assert (app.screen.width, app.screen.height) == (140, 50)
    assert app.screen.user_name == "Ann"
    assert app.screen.selected == 1
    assert app.state is AppState.DASHBOARD


def test_resize_rebuilds_lesson_and_is_idempotent(store: AccountStore) -> None:
    app = _signed_in(store)
    _press(app, "enter", "n", "tab")
    app.handle_resize(80, 24)
    app.handle_resize(80, 24)
    assert app.screen.lesson_index == 1
    assert app.screen.active_tab == 1
    assert app.screen.width == 80


def test_resize_on_other_screens_only_records_size() -> None:
    app = _app()
    app.handle_resize(60, 20)
    assert app.state is AppState.INTRO
    assert (app.frame().width, app.frame().height) == (60, 20)


def test_tick_rearms_only_while_animating(store: AccountStore) -> None:
    app = _app(store)
    assert app.handle_tick() is True
    assert app.screen.frame == 1
    _press(app, "enter")
    assert app.handle_tick() is False
    _press(app, "enter")
    assert app.handle_tick() is False
    _type(app, "Ann")
    _press(app, "enter")
    _type(app, "a@b.com")
    _press(app, "enter")
    assert app.animating is True
    assert app.handle_tick() is True
    assert app.screen.warning_frame == 1
    _press(app, "enter")
    assert app.handle_tick() is False


def test_keys_after_quit_are_ignored() -> None:
    app = _app()
    _press(app, "q", "enter")
    assert app.state is AppState.INTRO


def test_shutdown_ends_session_and_closes_store(store: AccountStore) -> None:
    app = _signed_in(store)
    session_id = app.session_id
    probe = store.get_session(session_id)
    assert probe is not None and probe.end is None
    ended = []
    original = store.end_session

    def tracking(value: int) -> None:
        ended.append(value)
        original(value)

    store.end_session = tracking
    app.shutdown()
    assert ended == [session_id]
    assert app.session_id is None
    with pytest.raises(sqlite3.ProgrammingError):
        store.count_accounts()


def test_end_session_failure_is_swallowed(store: AccountStore, caplog) -> None:
    app = _signed_in(store)
    store.end_session(app.session_id)
    app.handle_key("q")
    assert app.running is False
    assert "Could not end session" in caplog.text


def test_store_unavailable_is_a_store_error() -> None:
    assert issubclass(StoreUnavailable, StoreError)


def test_earned_achievements() -> None:
    modules = load_modules()
    rows = [Progress(1, "automation", lesson_id, "t") for lesson_id in modules["automation"].lesson_ids()]
    assert earned_achievements([], modules) == set()
    assert earned_achievements(rows, modules) == {"first-lesson", "module-automation"}
    more = rows + [Progress(1, "basics", f"basics-{n}", "t") for n in (1, 2, 3)]
    assert {"five-lessons", "module-basics"} <= earned_achievements(more, modules)
