"""Signed-in session tracking for the workstation client.

A :class:`SessionManager` owns the single active session of a profile.  The
session lasts twelve hours from login regardless of activity; once that
passes any access check signs the user out.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from medscribe.client.profile import API_SETTINGS_SLOT, IDENTITY_SLOT, SESSION_SLOT, ProfileStore
from medscribe.errors import AuthenticationFailed, AuthFailure
from medscribe.roles import Action, Role, determine_user_role, has_permission, parse_role, resolve_display_name
from medscribe.time_utils import isoformat_z, parse_iso, utc_now

logger = logging.getLogger(__name__)

SESSION_LENGTH = timedelta(hours=12)
SWEEP_INTERVAL_SECONDS = 60.0


class IdentityProvider(Protocol):
    def login(self, username: str, password: str) -> Dict[str, Any]: ...


@dataclass
class Session:
    user_id: str
    username: str
    name: str
    email: Optional[str]
    role: str
    token: str
    session_expiry: datetime
    login_time: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["session_expiry"] = isoformat_z(self.session_expiry)
        data["login_time"] = isoformat_z(self.login_time)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Optional["Session"]:
        """Rebuild a persisted session; malformed data yields ``None``."""

        expiry = parse_iso(data.get("session_expiry"))
        login_time = parse_iso(data.get("login_time"))
        token = data.get("token")
        username = data.get("username")
        if expiry is None or login_time is None or not token or not username:
            return None
        return cls(
            user_id=str(data.get("user_id") or username),
            username=str(username),
            name=str(data.get("name") or username),
            email=data.get("email"),
            role=str(data.get("role") or ""),
            token=str(token),
            session_expiry=expiry,
            login_time=login_time,
        )

    def as_user(self) -> Dict[str, Any]:
        return {"id": self.user_id, "username": self.username, "email": self.email, "role": self.role}


class SessionManager:
    def __init__(
        self,
        profile: ProfileStore,
        identity: IdentityProvider,
        *,
        clock: Callable[[], datetime] = utc_now,
        org_domain: Optional[str] = None,
        super_admin_marker: Optional[str] = None,
        session_length: timedelta = SESSION_LENGTH,
    ) -> None:
        self.profile = profile
        self.identity = identity
        self.clock = clock
        self.org_domain = org_domain
        self.super_admin_marker = super_admin_marker
        self.session_length = session_length
        self._session: Optional[Session] = None
        self._lock = threading.RLock()
        self._timer: Optional[threading.Timer] = None
        self._sweeping = False

    def _role_for(self, user: Mapping[str, Any]) -> Role:
        existing = parse_role(user.get("role"))
        if existing is not None:
            return existing
        return determine_user_role(
            user, org_domain=self.org_domain, super_admin_marker=self.super_admin_marker
        )

    # -- login / logout --------------------------------------------------

    def login(self, username: str, password: str) -> Session:
        """Sign in through the identity provider and persist the session.

        Any failure raises :class:`AuthenticationFailed`; no partial session
        is left behind.  Stored API settings survive the switch of user;
        only :meth:`logout` removes them.
        """

        self._clear_session()
        try:
            payload = self.identity.login(username, password)
        except AuthenticationFailed as exc:
            logger.info("login failed for %s: %s", username, exc.kind.value)
            raise
        except Exception as exc:
            logger.exception("login failed for %s", username)
            raise AuthenticationFailed(AuthFailure.SERVER_ERROR) from exc

        token = payload.get("token") if isinstance(payload, dict) else None
        if not token:
            logger.error("login response for %s carried no token", username)
            raise AuthenticationFailed(AuthFailure.SERVER_ERROR)
        user = dict(payload.get("user") or {})
        user.setdefault("username", username)
        now = self.clock()
        session = Session(
            user_id=str(user.get("id") or user["username"]),
            username=str(user["username"]),
            name=resolve_display_name(user),
            email=user.get("email"),
            role=self._role_for(user).value,
            token=str(token),
            session_expiry=now + self.session_length,
            login_time=now,
        )
        with self._lock:
            self.profile.write(SESSION_SLOT, session.to_dict())
            self.profile.write(
                IDENTITY_SLOT,
                {"id": session.user_id, "username": session.username, "name": session.name, "role": session.role},
            )
            self._session = session
        logger.info("signed in as %s (%s)", session.username, session.role)
        return session

    def _clear_session(self, *extra_slots: str) -> bool:
        with self._lock:
            had_session = self._session is not None
            self._session = None
            self.profile.clear(SESSION_SLOT, IDENTITY_SLOT, *extra_slots)
        return had_session

    def logout(self) -> None:
        if self._clear_session(API_SETTINGS_SLOT):
            logger.info("signed out")

    def restore(self) -> Optional[Session]:
        """Load a persisted session, discarding it if malformed or expired."""

        data = self.profile.read(SESSION_SLOT)
        session = Session.from_dict(data) if isinstance(data, dict) else None
        if session is None:
            if data is not None:
                logger.warning("discarding malformed persisted session")
                self.logout()
            return None
        with self._lock:
            self._session = session
        return self.current_session()

    # -- state -----------------------------------------------------------

    def _expired(self, session: Session) -> bool:
        return self.clock() >= session.session_expiry

    def check_expiry(self) -> bool:
        """Sign out when the session has expired; return whether that happened."""

        with self._lock:
            session = self._session
            if session is None or not self._expired(session):
                return False
        logger.info("session expired for %s", session.username)
        self.logout()
        return True

    def is_authenticated(self) -> bool:
        self.check_expiry()
        return self._session is not None

    def current_session(self) -> Optional[Session]:
        self.check_expiry()
        return self._session

    def has_permission(self, action: Action | str) -> bool:
        session = self.current_session()
        if session is None:
            return False
        if parse_role(session.role) is None:
            with self._lock:
                session.role = self._role_for(session.as_user()).value
                self.profile.write(SESSION_SLOT, session.to_dict())
            logger.info("repaired role for %s -> %s", session.username, session.role)
        return has_permission(session.role, action)

    def auth_headers(self) -> Dict[str, str]:
        session = self.current_session()
        if session is None:
            return {}
        return {
            "Authorization": f"Bearer {session.token}",
            "X-User-Id": session.user_id,
            "X-User-Role": session.role,
            "X-User-Name": session.name,
        }

    # -- background expiry sweep ----------------------------------------

    def start_expiry_sweep(self, interval: float = SWEEP_INTERVAL_SECONDS) -> None:
        with self._lock:
            self._sweeping = True
            self._schedule(interval)

    def _schedule(self, interval: float) -> None:
        timer = threading.Timer(interval, self._sweep, args=(interval,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _sweep(self, interval: float) -> None:
        self.check_expiry()
        with self._lock:
            if self._sweeping:
                self._schedule(interval)

    def stop_expiry_sweep(self) -> None:
        with self._lock:
            self._sweeping = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


__all__ = ["Session", "SessionManager", "SESSION_LENGTH", "IdentityProvider"]
