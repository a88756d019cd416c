"""
Session/ticket stores.

A store maps the session cookie value handed to the browser to the Session it
identifies, and keeps a reverse index from the CAS ticket that produced each
Session so single logout notifications (which only know the ticket) can find
it. Both maps are always updated together.
"""
import logging
import threading
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Protocol

from ..models import AuthenticationResponse, Session, utcnow
from .errors import SessionExistsError

log = logging.getLogger(__name__)


def is_expired(session: Session, max_age: float, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return session.created_at + timedelta(seconds=max_age) <= now


class SessionStore(Protocol):
    def create(self, cookie: str, ticket: str, response: AuthenticationResponse) -> Session: ...

    def get(self, cookie: str) -> Optional[Session]: ...

    def get_by_ticket(self, ticket: str) -> Optional[Session]: ...

    def delete(self, cookie: str) -> bool: ...

    def delete_by_ticket(self, ticket: str) -> bool: ...

    def snapshot(self, owner: logging.Logger) -> "SessionStore": ...

    def evict_expired(self, max_age: float, now: Optional[datetime] = None) -> int: ...

    def __len__(self) -> int: ...


class _SessionTable:
    """Backing data shared by a MemorySessionStore and all its snapshots."""

    def __init__(self):
        self.lock = threading.Lock()
        self.sessions: Dict[str, Session] = {}
        self.tickets: Dict[str, str] = {}

    def remove(self, cookie: str) -> Optional[Session]:
        # Caller holds the lock
        session = self.sessions.pop(cookie, None)
        if session is not None:
            self.tickets.pop(session.ticket, None)
        return session


class MemorySessionStore:
    """
    Process-local store. Every operation takes the table lock, so callers
    never need their own locking and never see one map updated without the
    other.
    """

    def __init__(self, owner: Optional[logging.Logger] = None, table: Optional[_SessionTable] = None):
        self._table = table if table is not None else _SessionTable()
        self.log = owner or log

    def __repr__(self):
        return 'MemorySessionStore(sessions=%d)' % len(self)

    def __len__(self) -> int:
        with self._table.lock:
            return len(self._table.sessions)

    def snapshot(self, owner: logging.Logger) -> "MemorySessionStore":
        return MemorySessionStore(owner, table=self._table)

    def create(self, cookie: str, ticket: str, response: AuthenticationResponse) -> Session:
        session = Session(cookie=cookie, ticket=ticket, response=response,
                          created_at=utcnow())
        table = self._table
        with table.lock:
            if cookie in table.sessions:
                raise SessionExistsError(f"cas: session {cookie!r} already exists")
            if ticket in table.tickets:
                raise SessionExistsError(f"cas: ticket {ticket!r} already has a session")
            table.sessions[cookie] = session
            table.tickets[ticket] = cookie
        self.log.debug('created session for %s from ticket %s', response.user, ticket)
        return session

    def get(self, cookie: str) -> Optional[Session]:
        with self._table.lock:
            return self._table.sessions.get(cookie)

    def get_by_ticket(self, ticket: str) -> Optional[Session]:
        table = self._table
        with table.lock:
            cookie = table.tickets.get(ticket)
            if cookie is None:
                return None
            return table.sessions.get(cookie)

    def delete(self, cookie: str) -> bool:
        with self._table.lock:
            session = self._table.remove(cookie)
        if session is None:
            return False
        self.log.debug('deleted session of %s (ticket %s)', session.response.user, session.ticket)
        return True

    def delete_by_ticket(self, ticket: str) -> bool:
        table = self._table
        with table.lock:
            cookie = table.tickets.get(ticket)
            session = table.remove(cookie) if cookie is not None else None
        if session is None:
            return False
        self.log.debug('deleted session of %s by ticket %s', session.response.user, ticket)
        return True

    def evict_expired(self, max_age: float, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        table = self._table
        evicted: List[Session] = []
        with table.lock:
            for cookie, session in list(table.sessions.items()):
                if is_expired(session, max_age, now):
                    evicted.append(table.remove(cookie))
        if evicted:
            self.log.info('evicted %d expired sessions', len(evicted))
        return len(evicted)
