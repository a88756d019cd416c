import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, delete, func, select

from ..models import AuthenticationResponse, CasSessionRecord, utcnow
from ..models import Session as CasSession
from .errors import SessionExistsError

log = logging.getLogger(__name__)


class SqlSessionStore:
    """
    Session store backed by the ``cas_session`` table.

    Cookie and ticket live in the same row (the ticket column carries a
    unique index), so every create or delete changes both keys in one
    transaction. Snapshots share the engine, never the rows.
    """

    def __init__(self, engine: Engine, owner: Optional[logging.Logger] = None):
        self.engine = engine
        self.log = owner or log

    def __repr__(self):
        return 'SqlSessionStore(url=%s)' % self.engine.url.render_as_string(hide_password=True)

    def __len__(self) -> int:
        with Session(self.engine) as db:
            return db.exec(select(func.count(CasSessionRecord.cookie))).one()

    def snapshot(self, owner: logging.Logger) -> "SqlSessionStore":
        return SqlSessionStore(self.engine, owner)

    def create(self, cookie: str, ticket: str, response: AuthenticationResponse) -> CasSession:
        record = CasSessionRecord(
            cookie=cookie,
            ticket=ticket,
            response=response.model_dump(mode="json"),
            created_at=utcnow(),
        )
        session = record.to_session()
        with Session(self.engine) as db:
            db.add(record)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise SessionExistsError(
                    f"cas: session {cookie!r} or ticket {ticket!r} already exists") from e
        self.log.debug('created session for %s from ticket %s', response.user, ticket)
        return session

    def get(self, cookie: str) -> Optional[CasSession]:
        with Session(self.engine) as db:
            record = db.get(CasSessionRecord, cookie)
            return record.to_session() if record else None

    def get_by_ticket(self, ticket: str) -> Optional[CasSession]:
        with Session(self.engine) as db:
            record = db.exec(
                select(CasSessionRecord).where(CasSessionRecord.ticket == ticket)).first()
            return record.to_session() if record else None

    def _delete_where(self, clause) -> int:
        with Session(self.engine) as db:
            result = db.exec(delete(CasSessionRecord).where(clause))
            db.commit()
            return result.rowcount

    def delete(self, cookie: str) -> bool:
        deleted = self._delete_where(CasSessionRecord.cookie == cookie) > 0
        if deleted:
            self.log.debug('deleted session %s', cookie)
        return deleted

    def delete_by_ticket(self, ticket: str) -> bool:
        deleted = self._delete_where(CasSessionRecord.ticket == ticket) > 0
        if deleted:
            self.log.debug('deleted session by ticket %s', ticket)
        return deleted

    def evict_expired(self, max_age: float, now: Optional[datetime] = None) -> int:
        cutoff = (now or utcnow()) - timedelta(seconds=max_age)
        count = self._delete_where(CasSessionRecord.created_at <= cutoff)
        if count:
            self.log.info('evicted %d expired sessions', count)
        return count
