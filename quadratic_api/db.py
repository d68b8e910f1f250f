"""
Database abstraction for Postgres and an in-memory test implementation.
"""

from __future__ import annotations

import copy
import dataclasses
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    select,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

INITIAL_TIMES_UPDATED = 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DbClient(Protocol):
    """Interface for database access."""

    def get_or_create_user(self, auth0_user_id: str) -> "UserRecord":
        ...

    def get_file(self, user_id: int, uuid: str) -> Optional["FileRecord"]:
        ...

    def list_files(self, user_id: int) -> list["FileRecord"]:
        ...

    def create_file(
        self,
        user_id: int,
        name: str,
        *,
        contents: Any = None,
        version: Optional[str] = None,
    ) -> "FileRecord":
        """Create a file without a client uuid; backups go through backup_file."""
        ...

    def backup_file(
        self,
        user_id: int,
        uuid: str,
        contents: Any,
        *,
        version: Optional[str] = None,
    ) -> tuple["FileRecord", bool]:
        """
        Create the file for (user_id, uuid) or overwrite its contents.

        Returns the stored record and whether it was created.
        """
        ...


@dataclass
class UserRecord:
    id: int
    auth0_user_id: str
    created_date: datetime = field(default_factory=_utcnow)


@dataclass
class FileRecord:
    id: int
    user_id: int
    name: str
    uuid: Optional[str] = None
    contents: Any = None
    version: Optional[str] = None
    times_updated: int = INITIAL_TIMES_UPDATED
    created_date: datetime = field(default_factory=_utcnow)
    updated_date: datetime = field(default_factory=_utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "uuid": self.uuid,
            "contents": self.contents,
            "version": self.version,
            "times_updated": self.times_updated,
            "created_date": self.created_date,
            "updated_date": self.updated_date,
            "qUserId": self.user_id,
        }


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.users: Dict[str, UserRecord] = {}
        self.files: Dict[int, FileRecord] = {}
        self._next_user_id = 1
        self._next_file_id = 1
        # Handlers run in a threadpool; every read-modify-write goes through this.
        self._lock = threading.Lock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.users.clear()
            self.files.clear()
            self._next_user_id = 1
            self._next_file_id = 1

    def get_or_create_user(self, auth0_user_id: str) -> UserRecord:
        with self._lock:
            user = self.users.get(auth0_user_id)
            if user is None:
                user = UserRecord(id=self._next_user_id, auth0_user_id=auth0_user_id)
                self._next_user_id += 1
                self.users[auth0_user_id] = user
                logger.info("Created user %s for subject %s", user.id, auth0_user_id)
            return dataclasses.replace(user)

    def _find_file(self, user_id: int, uuid: str) -> Optional[FileRecord]:
        for record in self.files.values():
            if record.user_id == user_id and record.uuid == uuid:
                return record
        return None

    def get_file(self, user_id: int, uuid: str) -> Optional[FileRecord]:
        with self._lock:
            record = self._find_file(user_id, uuid)
            return _copy_file(record) if record else None

    def list_files(self, user_id: int) -> list[FileRecord]:
        with self._lock:
            return [
                _copy_file(record)
                for record in self.files.values()
                if record.user_id == user_id
            ]

    def _insert_file(self, record: FileRecord) -> FileRecord:
        record.id = self._next_file_id
        self._next_file_id += 1
        self.files[record.id] = record
        return record

    def create_file(
        self,
        user_id: int,
        name: str,
        *,
        contents: Any = None,
        version: Optional[str] = None,
    ) -> FileRecord:
        with self._lock:
            record = self._insert_file(
                FileRecord(
                    id=0,
                    user_id=user_id,
                    name=name,
                    contents=copy.deepcopy(contents),
                    version=version,
                )
            )
            return _copy_file(record)

    def backup_file(
        self,
        user_id: int,
        uuid: str,
        contents: Any,
        *,
        version: Optional[str] = None,
    ) -> tuple[FileRecord, bool]:
        with self._lock:
            record = self._find_file(user_id, uuid)
            if record is None:
                record = self._insert_file(
                    FileRecord(
                        id=0,
                        user_id=user_id,
                        name=uuid,
                        uuid=uuid,
                        contents=copy.deepcopy(contents),
                        version=version,
                    )
                )
                return _copy_file(record), True
            record.contents = copy.deepcopy(contents)
            if version is not None:
                record.version = version
            record.updated_date = _utcnow()
            record.times_updated += 1
            return _copy_file(record), False


def _copy_file(record: FileRecord) -> FileRecord:
    return dataclasses.replace(record, contents=copy.deepcopy(record.contents))


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _to_user_record(self, row: "UserRow") -> UserRecord:
        return UserRecord(
            id=row.id,
            auth0_user_id=row.auth0_user_id,
            created_date=row.created_date,
        )

    def _to_file_record(self, row: "FileRow") -> FileRecord:
        return FileRecord(
            id=row.id,
            user_id=row.user_id,
            name=row.name,
            uuid=row.uuid,
            contents=row.contents,
            version=row.version,
            times_updated=row.times_updated,
            created_date=row.created_date,
            updated_date=row.updated_date,
        )

    def _find_user_row(self, session: Session, auth0_user_id: str) -> Optional["UserRow"]:
        stmt = select(UserRow).where(UserRow.auth0_user_id == auth0_user_id)
        return session.execute(stmt).scalar_one_or_none()

    def _find_file_row(
        self, session: Session, user_id: int, uuid: str
    ) -> Optional["FileRow"]:
        stmt = select(FileRow).where(FileRow.user_id == user_id, FileRow.uuid == uuid)
        return session.execute(stmt).scalar_one_or_none()

    def get_or_create_user(self, auth0_user_id: str) -> UserRecord:
        with self.Session() as session:
            row = self._find_user_row(session, auth0_user_id)
            if row:
                return self._to_user_record(row)
            row = UserRow(auth0_user_id=auth0_user_id, created_date=_utcnow())
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                # Another request created the user between our read and insert.
                session.rollback()
                row = self._find_user_row(session, auth0_user_id)
                if row is None:
                    raise
                return self._to_user_record(row)
            session.refresh(row)
            logger.info("Created user %s for subject %s", row.id, auth0_user_id)
            return self._to_user_record(row)

    def get_file(self, user_id: int, uuid: str) -> Optional[FileRecord]:
        with self.Session() as session:
            row = self._find_file_row(session, user_id, uuid)
            return self._to_file_record(row) if row else None

    def list_files(self, user_id: int) -> list[FileRecord]:
        with self.Session() as session:
            rows = (
                session.query(FileRow)
                .filter(FileRow.user_id == user_id)
                .order_by(FileRow.id.asc())
                .all()
            )
            return [self._to_file_record(row) for row in rows]

    def create_file(
        self,
        user_id: int,
        name: str,
        *,
        contents: Any = None,
        version: Optional[str] = None,
    ) -> FileRecord:
        now = _utcnow()
        with self.Session() as session:
            row = FileRow(
                user_id=user_id,
                name=name,
                contents=contents,
                version=version,
                times_updated=INITIAL_TIMES_UPDATED,
                created_date=now,
                updated_date=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_file_record(row)

    def _apply_backup(
        self, row: "FileRow", contents: Any, version: Optional[str]
    ) -> None:
        row.contents = contents
        if version is not None:
            row.version = version
        row.updated_date = _utcnow()
        # Incremented in SQL so concurrent backups never lose a count.
        row.times_updated = FileRow.times_updated + 1

    def backup_file(
        self,
        user_id: int,
        uuid: str,
        contents: Any,
        *,
        version: Optional[str] = None,
    ) -> tuple[FileRecord, bool]:
        with self.Session() as session:
            row = self._find_file_row(session, user_id, uuid)
            created = row is None
            if created:
                now = _utcnow()
                row = FileRow(
                    user_id=user_id,
                    name=uuid,
                    uuid=uuid,
                    contents=contents,
                    version=version,
                    times_updated=INITIAL_TIMES_UPDATED,
                    created_date=now,
                    updated_date=now,
                )
                session.add(row)
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    logger.info(
                        "File %s for user %s was created concurrently; updating instead",
                        uuid,
                        user_id,
                    )
                    row = self._find_file_row(session, user_id, uuid)
                    if row is None:
                        raise
                    created = False
                    self._apply_backup(row, contents, version)
                    session.commit()
            else:
                self._apply_backup(row, contents, version)
                session.commit()
            session.refresh(row)
            return self._to_file_record(row), created


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "QUser"

    id = Column(Integer, primary_key=True, autoincrement=True)
    auth0_user_id = Column(String, nullable=False, unique=True, index=True)
    created_date = Column(DateTime(timezone=True), nullable=False)


class FileRow(Base):
    __tablename__ = "QFile"
    __table_args__ = (UniqueConstraint("qUserId", "uuid", name="QFile_qUserId_uuid_key"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column("qUserId", Integer, ForeignKey("QUser.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    uuid = Column(String, nullable=True)
    contents = Column(JSON, nullable=True)
    version = Column(String, nullable=True)
    times_updated = Column(Integer, nullable=False, default=INITIAL_TIMES_UPDATED)
    created_date = Column(DateTime(timezone=True), nullable=False)
    updated_date = Column(DateTime(timezone=True), nullable=False)
