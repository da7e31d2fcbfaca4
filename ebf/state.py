"""
Application state of one signed-in session: who, where, and which filters.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from ebf.models import Period, Profile, Role, Site
from ebf.rbac import Route, can_write, get_route

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """Observable session state; observers get the name of the changed attribute."""
    role: str = Role.VISITOR.value
    current_path: str = "/"
    site: str = Site.GLOBAL.value
    period: Optional[Period] = Period.MONTH
    dark_mode: bool = False
    session: Any = None
    profile: Optional[Profile] = None
    _observers: List[Callable[[str], Any]] = field(default_factory=list, repr=False)

    def observe(self, callback: Callable[[str], Any]) -> Callable[[], None]:
        self._observers.append(callback)
        return lambda: self._observers.remove(callback) if callback in self._observers else None

    def _changed(self, what: str) -> None:
        for callback in list(self._observers):
            try:
                callback(what)
            except Exception:
                logger.exception("State observer failed for %s", what)

    # ── Navigation / filters ─────────────────────────────────────────

    def navigate(self, path: str) -> None:
        self.current_path = path or "/"
        self._changed("current_path")

    def set_site(self, site: str) -> None:
        self.site = Site(site).value
        self._changed("site")

    def set_period(self, period: Optional[str]) -> None:
        self.period = Period(period) if period else None
        self._changed("period")

    def toggle_theme(self) -> bool:
        self.dark_mode = not self.dark_mode
        self._changed("dark_mode")
        return self.dark_mode

    @property
    def route(self) -> Optional[Route]:
        return get_route(self.current_path)

    @property
    def can_write(self) -> bool:
        """Evaluated on each access: navigation changes what may be written."""
        route = self.route
        if route is not None and route.locked:
            return False
        return can_write(self.current_path, self.role)

    # ── Session lifecycle ────────────────────────────────────────────

    def sign_in(self, session: Any, profile: Profile) -> None:
        self.session = session
        self.profile = profile
        self.role = profile.role
        self._changed("session")

    def update_profile(self, profile: Profile) -> None:
        self.profile = profile
        self._changed("profile")

    def reset(self) -> None:
        """Tear down everything tied to the signed-out user."""
        self.session = None
        self.profile = None
        self.role = Role.VISITOR.value
        self.current_path = "/"
        self.site = Site.GLOBAL.value
        self.period = Period.MONTH
        logger.info("Session state cleared")
        self._changed("session")
