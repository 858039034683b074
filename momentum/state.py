"""
Application state for one signed-in user.

The engines are stateless; whatever the presentation layer caches between
calls (tasks, notes, nudges, the soft failures the engines reported)
lives here, in one object that is passed around explicitly.

Usage:
    state = AppState()
    identity = StaticIdentityProvider("alice")
    state.attach(identity)          # follows sign-in/out from now on
    state.require_user()            # "alice"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Protocol

from momentum.errors import NotAuthenticatedError
from momentum.logging_config import bind_user, get_logger
from momentum.models import MentalNote, Nudge, SoftFailure, Task


logger = get_logger(__name__)

AuthListener = Callable[[str | None], None]


class IdentityProvider(Protocol):
    """Yields the current user and reports sign-in/out."""

    def current_user_id(self) -> str | None: ...

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Call listener(user_id or None) on every change; returns an unsubscribe."""
        ...


class StaticIdentityProvider:
    """In-process identity: sign_in/sign_out are called directly."""

    def __init__(self, user_id: str | None = None):
        self._user_id = user_id
        self._listeners: list[AuthListener] = []

    def current_user_id(self) -> str | None:
        return self._user_id

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def sign_in(self, user_id: str) -> None:
        self._user_id = user_id
        for listener in list(self._listeners):
            listener(user_id)

    def sign_out(self) -> None:
        self._user_id = None
        for listener in list(self._listeners):
            listener(None)


@dataclass
class AppState:
    user_id: str | None = None
    tasks: dict[str, Task] = field(default_factory=dict)
    notes: dict[str, MentalNote] = field(default_factory=dict)
    nudges: list[Nudge] = field(default_factory=list)
    soft_failures: list[SoftFailure] = field(default_factory=list)

    def attach(self, identity: IdentityProvider) -> Callable[[], None]:
        """Sync with an identity provider now and on every change."""
        self._on_auth_change(identity.current_user_id())
        return identity.subscribe(self._on_auth_change)

    def _on_auth_change(self, user_id: str | None) -> None:
        if user_id is None:
            self.sign_out()
        elif user_id != self.user_id:
            self.sign_in(user_id)

    def sign_in(self, user_id: str) -> None:
        if self.user_id and self.user_id != user_id:
            self.clear()
        self.user_id = user_id
        bind_user(user_id)
        logger.info("signed_in", user_id=user_id)

    def sign_out(self) -> None:
        previous = self.user_id
        self.user_id = None
        self.clear()
        bind_user(None)
        if previous:
            logger.info("signed_out", user_id=previous)

    def clear(self) -> None:
        self.tasks.clear()
        self.notes.clear()
        self.nudges = []
        self.soft_failures = []

    def require_user(self) -> str:
        if not self.user_id:
            raise NotAuthenticatedError("No signed-in user")
        return self.user_id

    def cache_tasks(self, tasks: list[Task]) -> None:
        for task in tasks:
            self.tasks[task.id] = task

    def record(self, failures: list[SoftFailure]) -> None:
        for failure in failures:
            logger.warning(
                "soft_failure",
                operation=failure.operation,
                error=failure.error,
                context=failure.context,
            )
        self.soft_failures.extend(failures)


__all__ = ["AppState", "AuthListener", "IdentityProvider", "StaticIdentityProvider"]
