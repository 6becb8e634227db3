"""Application states and the legacy-state redirect table."""

from __future__ import annotations

from enum import Enum


class AppState(Enum):
    """Screen identifiers for the top-level state machine."""

    INTRO = "intro"
    ACCOUNT_CREATION = "account_creation"
    SIGN_IN = "sign_in"
    AUTH_MENU = "auth_menu"
    MODULE_EXPLORER = "module_explorer"
    DASHBOARD = "dashboard"
    LESSON = "lesson"

    # Legacy targets kept so old menu options still resolve; never rendered.
    MAIN_MENU = "main_menu"
    LEARN_MENU = "learn_menu"
    STUDIO = "studio"
    SETTINGS = "settings"
    SIGN_IN_PLACEHOLDER = "sign_in_placeholder"

    # Menu target meaning "leave the application".
    EXIT = "exit"

    @property
    def is_legacy(self) -> bool:
        """Whether this state only exists as a redirect source."""
        return self in LEGACY_REDIRECTS


LEGACY_REDIRECTS: dict[AppState, AppState] = {
    AppState.MAIN_MENU: AppState.MODULE_EXPLORER,
    AppState.LEARN_MENU: AppState.MODULE_EXPLORER,
    AppState.STUDIO: AppState.MODULE_EXPLORER,
    AppState.SETTINGS: AppState.MODULE_EXPLORER,
    AppState.SIGN_IN_PLACEHOLDER: AppState.SIGN_IN,
}

RENDERABLE_STATES = frozenset(
    state for state in AppState if state not in LEGACY_REDIRECTS and state is not AppState.EXIT
)


def resolve_state(state: AppState) -> AppState:
    """Return the state actually entered when `state` is requested."""
    return LEGACY_REDIRECTS.get(state, state)


class FocusField(Enum):
    """Focus targets on the account creation screen."""

    NAME = 0
    EMAIL = 1
    DISPLAY_INFO = 2
