from enum import Enum
from typing import Optional

from eng_portal.core.roles import satisfies


class GuardDecision(str, Enum):
    LOADING = "loading"                 # render a placeholder, decide later
    REDIRECT_LOGIN = "redirect_login"
    REDIRECT_HOME = "redirect_home"
    RENDER = "render"


LOGIN_PATH = "/login"
HOME_PATH = "/"


def evaluate_route(identity, role, required_role=None, loading: bool = False) -> GuardDecision:
    """Pure navigation decision. Re-run it whenever identity, role or loading changes."""
    if loading:
        return GuardDecision.LOADING
    if identity is None:
        return GuardDecision.REDIRECT_LOGIN
    if required_role is not None and not satisfies(role, required_role):
        return GuardDecision.REDIRECT_HOME
    return GuardDecision.RENDER


def evaluate_snapshot(snapshot, required_role=None) -> GuardDecision:
    return evaluate_route(snapshot.current_user, snapshot.user_role, required_role, snapshot.loading)


def redirect_target(decision: GuardDecision) -> Optional[str]:
    if decision == GuardDecision.REDIRECT_LOGIN:
        return LOGIN_PATH
    if decision == GuardDecision.REDIRECT_HOME:
        return HOME_PATH
    return None
