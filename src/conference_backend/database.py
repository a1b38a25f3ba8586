"""
Relational persistence for submissions, the reviewing committee, reviewer
expressions of interest, the public sign-up forms and admin API keys.

This module provides a SQLAlchemy-based store. Every public operation runs in
its own session and returns pydantic models, so callers never hold ORM
objects across a commit. Operations are synchronous; async code calls them
through the thread pool.
"""

from __future__ import annotations

import logging
import math
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
    cast,
    create_engine,
    event,
    func,
    or_,
    select,
    update,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import ConflictError, DependencyUnavailable, DuplicateEmailError, DuplicatePaperIdError, NotFoundError
from .models import (
    REMINDER_ELIGIBLE_STATUSES,
    CommitteeMember,
    CommitteeMemberCreate,
    CommitteeSnapshot,
    CommitteeStats,
    ContactMessage,
    ExpressionStatus,
    ExpressionStatusResult,
    KeynoteSpeaker,
    KeynoteStats,
    KeynoteStatus,
    Registration,
    ReviewerExpression,
    ReviewStatus,
    Sponsor,
    Submission,
    SubmissionPage,
    SubmissionStats,
)
from .utils import join_expertise, utc_now

logger = logging.getLogger(__name__)

# Default database URL
DEFAULT_DB_URL = "sqlite:///data/conference.db"

PAPER_ID_CONSTRAINT = "uq_submissions_paper_id"


def _new_id() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    pass


class SubmissionRow(Base):
    __tablename__ = "submissions"
    __table_args__ = (
        UniqueConstraint("paper_id", name=PAPER_ID_CONSTRAINT),
        UniqueConstraint("email", name="uq_submissions_email"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    paper_id: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    conference_title: Mapped[str] = mapped_column(String(255))
    place_date: Mapped[str] = mapped_column(String(255))
    paper_title: Mapped[str] = mapped_column(String(500))
    paper_abstract: Mapped[str] = mapped_column(Text)
    keywords: Mapped[str] = mapped_column(Text)

    name: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255))
    phone: Mapped[str] = mapped_column(String(64))
    institution_name: Mapped[str] = mapped_column(String(255))
    country: Mapped[str] = mapped_column(String(128))
    primary_subject: Mapped[str] = mapped_column(String(255))
    orcid_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    corresponding_author: Mapped[bool] = mapped_column(Boolean, default=False)
    co_authors: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    additional_subjects: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    ethics_compliance: Mapped[bool] = mapped_column(Boolean, default=False)
    agree_terms: Mapped[bool] = mapped_column(Boolean, default=False)
    agree_presentation: Mapped[bool] = mapped_column(Boolean, default=False)
    agree_publication: Mapped[bool] = mapped_column(Boolean, default=False)
    agree_review: Mapped[bool] = mapped_column(Boolean, default=False)
    agree_data_sharing: Mapped[bool] = mapped_column(Boolean, default=False)

    paper_file_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    supplementary_file_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    source_code_file_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    review_status: Mapped[str] = mapped_column(String(32), default=ReviewStatus.PENDING.value, index=True)
    sent_to_committee: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    # Snapshot list of {id, name, email, sent_at}; not a relation.
    committee_members: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    review_reminder_count: Mapped[int] = mapped_column(Integer, default=0)
    review_reminder_last_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class CommitteeMemberRow(Base):
    __tablename__ = "committee_members"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255), unique=True)
    designation: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    institution: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    expertise: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class ReviewerExpressionRow(Base):
    __tablename__ = "reviewer_expressions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255))
    current_job_title: Mapped[str] = mapped_column(String(255))
    institution: Mapped[str] = mapped_column(String(255))
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    education: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    subject_area: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    methodological_expertise: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    research_interest: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    previous_peer_review_experience: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    conflict_of_interest: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default=ExpressionStatus.PENDING.value, index=True)
    cv_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class AdminKeyRow(Base):
    __tablename__ = "admin_keys"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    key_hash: Mapped[str] = mapped_column(String(64), unique=True)
    prefix: Mapped[str] = mapped_column(String(16))
    owner: Mapped[str] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(16))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class RegistrationRow(Base):
    __tablename__ = "registrations"
    __table_args__ = (
        UniqueConstraint("paper_id", name="uq_registrations_paper_id"),
        UniqueConstraint("transaction_id", name="uq_registrations_transaction_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255))
    registration_type: Mapped[str] = mapped_column(String(64))
    institution_name: Mapped[str] = mapped_column(String(255))
    country: Mapped[str] = mapped_column(String(128))
    phone: Mapped[str] = mapped_column(String(64))
    early_bird: Mapped[bool] = mapped_column(Boolean, default=False)
    reg_fee: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False)
    paper_id: Mapped[str] = mapped_column(String(16))
    transaction_id: Mapped[str] = mapped_column(String(128))
    payment_receipt_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class KeynoteSpeakerRow(Base):
    __tablename__ = "keynote_speakers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255), unique=True)
    phone: Mapped[str] = mapped_column(String(64))
    country: Mapped[str] = mapped_column(String(128))

    designation: Mapped[str] = mapped_column(String(255))
    institution_name: Mapped[str] = mapped_column(String(255))
    department: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    experience_years: Mapped[int] = mapped_column(Integer)
    expertise_area: Mapped[str] = mapped_column(String(64))
    specialization: Mapped[str] = mapped_column(String(255))

    highest_degree: Mapped[str] = mapped_column(String(255))
    university: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    publications_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notable_achievements: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    keynote_experience: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notable_conferences: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    keynote_title: Mapped[str] = mapped_column(String(500))
    keynote_abstract: Mapped[str] = mapped_column(Text)
    target_audience: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    linkedin_profile: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    website: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    orcid_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    google_scholar: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    cv_file_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    photo_file_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    presentation_file_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    preferred_session_time: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    accommodation_needed: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    dietary_restrictions: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    additional_comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    agree_to_terms: Mapped[bool] = mapped_column(Boolean, default=False)
    agree_to_marketing: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(String(16), default=KeynoteStatus.PENDING.value, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class SponsorRow(Base):
    __tablename__ = "sponsors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255), unique=True)
    level: Mapped[str] = mapped_column(String(16))
    amount: Mapped[float] = mapped_column(Float)
    company_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    website: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class ContactMessageRow(Base):
    __tablename__ = "contact_messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255))
    phone: Mapped[str] = mapped_column(String(64))
    subject: Mapped[str] = mapped_column(String(255))
    message: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)


def _unique_conflict(exc: IntegrityError, messages: Dict[str, str]) -> ConflictError:
    """Pick the conflict for the column named in a uniqueness violation."""
    detail = str(exc.orig).lower()
    for column, message in messages.items():
        if column in detail:
            return DuplicateEmailError(message) if column == "email" else ConflictError(message)
    return ConflictError("Record conflicts with an existing entry")


def _classify_integrity_error(exc: IntegrityError) -> ConflictError:
    """Map a uniqueness violation on ``submissions`` to the matching conflict."""
    detail = str(exc.orig).lower()
    if "paper_id" in detail:
        return DuplicatePaperIdError("Paper id already in use")
    if "email" in detail:
        return DuplicateEmailError("A submission with this email already exists")
    return ConflictError("Submission conflicts with an existing record")


def _normalize_email(email: str) -> str:
    return email.strip().lower()


KEYNOTE_CONFLICTS = {"email": "A keynote speaker application with this email already exists"}
SPONSOR_CONFLICTS = {"email": "A sponsor with this email already exists"}


def _registration_conflicts(values: Dict[str, Any]) -> Dict[str, str]:
    return {
        "paper_id": f'Paper ID "{values.get("paper_id")}" is already registered',
        "transaction_id": f'Transaction ID "{values.get("transaction_id")}" is already registered',
    }


def _plain_values(values: Dict[str, Any]) -> Dict[str, Any]:
    """Unwrap enum members so string columns receive their values."""
    return {key: value.value if isinstance(value, Enum) else value for key, value in values.items()}


def _dump_snapshots(members: Iterable[Any]) -> List[Dict[str, Any]]:
    dumped = []
    for member in members:
        if not isinstance(member, CommitteeSnapshot):
            member = CommitteeSnapshot.model_validate(member)
        dumped.append(member.model_dump(mode="json"))
    return dumped


class ConferenceStore:
    """
    SQLAlchemy store shared by intake, dispatch, the state machines and the
    reminder scheduler.

    SQLite is used in development and tests; the uniqueness constraints are
    what make concurrent paper id allocation safe.
    """

    def __init__(self, url: str = DEFAULT_DB_URL):
        self.url = make_url(url)
        self.engine = self._create_engine()
        self._sessionmaker = sessionmaker(self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)
        logger.info(f"Conference store ready at {self.url.render_as_string(hide_password=True)}")

    def _create_engine(self):
        if self.url.get_backend_name() != "sqlite":
            return create_engine(self.url, pool_pre_ping=True)

        database = self.url.database
        kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False, "timeout": 30.0}}
        if not database or database == ":memory:":
            kwargs["poolclass"] = StaticPool
        else:
            Path(database).parent.mkdir(parents=True, exist_ok=True)

        engine = create_engine(self.url, **kwargs)

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragmas(dbapi_connection, _record):
            cursor = dbapi_connection.cursor()
            if database and database != ":memory:":
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Open a session that commits on success and rolls back on error."""
        session = self._sessionmaker()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Paper ids
    # ------------------------------------------------------------------

    def find_max_paper_serial(self) -> int:
        """
        Return the highest numeric serial in use across all paper ids.

        The serial is everything after the four ``YYMM`` characters.

        Raises:
            DependencyUnavailable: If the scan query fails
        """
        serial = cast(func.substr(SubmissionRow.paper_id, 5), Integer)
        try:
            with self.session_scope() as session:
                value = session.execute(
                    select(func.max(serial)).where(SubmissionRow.paper_id.is_not(None))
                ).scalar()
        except SQLAlchemyError as exc:
            raise DependencyUnavailable(f"Paper id scan failed: {exc}") from exc
        return int(value or 0)

    def count_submissions_with_paper_id(self) -> int:
        """
        Number of submissions holding a paper id.

        Raises:
            DependencyUnavailable: If the count query fails
        """
        try:
            with self.session_scope() as session:
                return session.execute(
                    select(func.count()).select_from(SubmissionRow).where(SubmissionRow.paper_id.is_not(None))
                ).scalar_one()
        except SQLAlchemyError as exc:
            raise DependencyUnavailable(f"Paper id count failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------

    def create_submission(self, data: Dict[str, Any]) -> Submission:
        """
        Insert a submission.

        Raises:
            DuplicatePaperIdError: If ``paper_id`` is already taken
            DuplicateEmailError: If the email already has a submission
        """
        values = dict(data)
        if "committee_members" in values:
            values["committee_members"] = _dump_snapshots(values["committee_members"] or [])
        if "review_status" in values:
            values["review_status"] = ReviewStatus(values["review_status"]).value

        with self.session_scope() as session:
            row = SubmissionRow(**values)
            session.add(row)
            try:
                session.flush()
            except IntegrityError as exc:
                raise _classify_integrity_error(exc) from exc
            return Submission.model_validate(row)

    def get_submission(self, submission_id: str) -> Submission:
        with self.session_scope() as session:
            row = session.get(SubmissionRow, submission_id)
            if row is None:
                raise NotFoundError(f"Submission {submission_id} not found")
            return Submission.model_validate(row)

    def find_submission_by_paper_id(self, paper_id: str) -> Optional[Submission]:
        with self.session_scope() as session:
            row = session.scalars(select(SubmissionRow).where(SubmissionRow.paper_id == paper_id.strip())).first()
            return Submission.model_validate(row) if row is not None else None

    def update_submission(self, submission_id: str, patch: Dict[str, Any]) -> Submission:
        """
        Apply a partial update and bump ``updated_at``.

        ``committee_members`` may be given as snapshot models or dicts.
        """
        values = dict(patch)
        if "committee_members" in values:
            values["committee_members"] = _dump_snapshots(values["committee_members"] or [])
        if "review_status" in values:
            values["review_status"] = ReviewStatus(values["review_status"]).value
        values.setdefault("updated_at", utc_now())

        with self.session_scope() as session:
            row = session.get(SubmissionRow, submission_id)
            if row is None:
                raise NotFoundError(f"Submission {submission_id} not found")
            for key, value in values.items():
                setattr(row, key, value)
            try:
                session.flush()
            except IntegrityError as exc:
                raise _classify_integrity_error(exc) from exc
            return Submission.model_validate(row)

    def delete_submission(self, submission_id: str) -> bool:
        with self.session_scope() as session:
            row = session.get(SubmissionRow, submission_id)
            if row is None:
                return False
            session.delete(row)
            return True

    def find_submissions_by_filter(
        self,
        sent_to_committee: Optional[bool] = None,
        statuses: Optional[Iterable[ReviewStatus]] = None,
    ) -> List[Submission]:
        stmt = select(SubmissionRow).order_by(SubmissionRow.created_at)
        if sent_to_committee is not None:
            stmt = stmt.where(SubmissionRow.sent_to_committee.is_(sent_to_committee))
        if statuses is not None:
            stmt = stmt.where(SubmissionRow.review_status.in_([ReviewStatus(s).value for s in statuses]))
        with self.session_scope() as session:
            return [Submission.model_validate(row) for row in session.scalars(stmt)]

    def list_submissions(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[ReviewStatus] = None,
        search: Optional[str] = None,
    ) -> SubmissionPage:
        """List submissions newest first with optional status filter and text search."""
        conditions = []
        if status is not None:
            conditions.append(SubmissionRow.review_status == ReviewStatus(status).value)
        if search:
            pattern = f"%{search.strip()}%"
            conditions.append(
                or_(
                    SubmissionRow.paper_title.ilike(pattern),
                    SubmissionRow.name.ilike(pattern),
                    SubmissionRow.email.ilike(pattern),
                    SubmissionRow.paper_id.ilike(pattern),
                )
            )

        with self.session_scope() as session:
            total = session.execute(
                select(func.count()).select_from(SubmissionRow).where(*conditions)
            ).scalar_one()
            rows = session.scalars(
                select(SubmissionRow)
                .where(*conditions)
                .order_by(SubmissionRow.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).all()
            items = [Submission.model_validate(row) for row in rows]

        return SubmissionPage(
            items=items,
            total=total,
            page=page,
            total_pages=math.ceil(total / limit) if limit else 0,
        )

    def _status_counts(self, session: Session) -> Dict[ReviewStatus, int]:
        counts = {status: 0 for status in ReviewStatus}
        rows = session.execute(
            select(SubmissionRow.review_status, func.count()).group_by(SubmissionRow.review_status)
        ).all()
        for status, count in rows:
            counts[ReviewStatus(status)] = count
        return counts

    def submission_stats(self) -> SubmissionStats:
        with self.session_scope() as session:
            by_status = self._status_counts(session)
            sent = session.execute(
                select(func.count()).select_from(SubmissionRow).where(SubmissionRow.sent_to_committee.is_(True))
            ).scalar_one()
        return SubmissionStats(total=sum(by_status.values()), sent_to_committee=sent, by_status=by_status)

    def email_registered(self, email: str) -> bool:
        with self.session_scope() as session:
            found = session.execute(
                select(SubmissionRow.id).where(func.lower(SubmissionRow.email) == email.strip().lower())
            ).first()
        return found is not None

    def record_reminder(self, submission_id: str, now: datetime, max_reminders: int) -> bool:
        """
        Count one reminder against a submission.

        The increment is conditional: it only applies while the submission is
        still with the committee, in a reminder-eligible status and below the
        cap. Returns False when the row was left unchanged.
        """
        stmt = (
            update(SubmissionRow)
            .where(
                SubmissionRow.id == submission_id,
                SubmissionRow.sent_to_committee.is_(True),
                SubmissionRow.review_status.in_([s.value for s in REMINDER_ELIGIBLE_STATUSES]),
                SubmissionRow.review_reminder_count < max_reminders,
            )
            .values(
                review_reminder_count=SubmissionRow.review_reminder_count + 1,
                review_reminder_last_sent_at=now,
                updated_at=now,
            )
        )
        with self.session_scope() as session:
            result = session.execute(stmt)
            return result.rowcount == 1

    # ------------------------------------------------------------------
    # Reviewing committee
    # ------------------------------------------------------------------

    def find_active_committee_members(self, ids: Optional[Iterable[str]] = None) -> List[CommitteeMember]:
        """Active directory members, optionally restricted to the given ids."""
        stmt = select(CommitteeMemberRow).where(CommitteeMemberRow.is_active.is_(True))
        if ids is not None:
            stmt = stmt.where(CommitteeMemberRow.id.in_(list(ids)))
        stmt = stmt.order_by(CommitteeMemberRow.name)
        with self.session_scope() as session:
            return [CommitteeMember.model_validate(row) for row in session.scalars(stmt)]

    def list_committee_members(self) -> List[CommitteeMember]:
        with self.session_scope() as session:
            rows = session.scalars(select(CommitteeMemberRow).order_by(CommitteeMemberRow.created_at.desc()))
            return [CommitteeMember.model_validate(row) for row in rows]

    def get_committee_member(self, member_id: str) -> CommitteeMember:
        with self.session_scope() as session:
            row = session.get(CommitteeMemberRow, member_id)
            if row is None:
                raise NotFoundError(f"Committee member {member_id} not found")
            return CommitteeMember.model_validate(row)

    def create_committee_member(self, data: CommitteeMemberCreate, created_by: Optional[str] = None) -> CommitteeMember:
        with self.session_scope() as session:
            values = data.model_dump()
            values["email"] = _normalize_email(values["email"])
            row = CommitteeMemberRow(**values, created_by=created_by)
            session.add(row)
            try:
                session.flush()
            except IntegrityError as exc:
                raise DuplicateEmailError("Committee member with this email already exists") from exc
            return CommitteeMember.model_validate(row)

    def update_committee_member(self, member_id: str, patch: Dict[str, Any]) -> CommitteeMember:
        patch = dict(patch)
        if patch.get("email"):
            patch["email"] = _normalize_email(patch["email"])
        with self.session_scope() as session:
            row = session.get(CommitteeMemberRow, member_id)
            if row is None:
                raise NotFoundError(f"Committee member {member_id} not found")
            for key, value in patch.items():
                setattr(row, key, value)
            row.updated_at = utc_now()
            try:
                session.flush()
            except IntegrityError as exc:
                raise DuplicateEmailError("Committee member with this email already exists") from exc
            return CommitteeMember.model_validate(row)

    def delete_committee_member(self, member_id: str) -> bool:
        with self.session_scope() as session:
            row = session.get(CommitteeMemberRow, member_id)
            if row is None:
                return False
            session.delete(row)
            return True

    def committee_stats(self) -> CommitteeStats:
        with self.session_scope() as session:
            total = session.execute(select(func.count()).select_from(CommitteeMemberRow)).scalar_one()
            active = session.execute(
                select(func.count()).select_from(CommitteeMemberRow).where(CommitteeMemberRow.is_active.is_(True))
            ).scalar_one()
            by_status = self._status_counts(session)
        return CommitteeStats(total=total, active=active, inactive=total - active, submissions_by_status=by_status)

    def _upsert_committee_member(
        self, session: Session, data: Dict[str, Any], created_by: Optional[str] = None
    ) -> CommitteeMemberRow:
        """
        Insert or update the directory entry keyed by email inside ``session``.

        Directory emails are stored lowercase, so the match is case-insensitive.
        """
        email = _normalize_email(data["email"])
        row = session.scalars(
            select(CommitteeMemberRow)
            .where(func.lower(CommitteeMemberRow.email) == email)
            .order_by(CommitteeMemberRow.created_at)
        ).first()
        now = utc_now()
        if row is None:
            row = CommitteeMemberRow(**{**data, "email": email}, created_by=created_by, created_at=now)
            session.add(row)
        else:
            for key, value in data.items():
                if key != "email":
                    setattr(row, key, value)
        row.is_active = True
        row.updated_at = now
        session.flush()
        return row

    # ------------------------------------------------------------------
    # Reviewer expressions of interest
    # ------------------------------------------------------------------

    def create_expression(self, data: Dict[str, Any]) -> ReviewerExpression:
        with self.session_scope() as session:
            row = ReviewerExpressionRow(**data)
            session.add(row)
            session.flush()
            return ReviewerExpression.model_validate(row)

    def get_expression(self, expression_id: str) -> ReviewerExpression:
        with self.session_scope() as session:
            row = session.get(ReviewerExpressionRow, expression_id)
            if row is None:
                raise NotFoundError(f"Reviewer expression {expression_id} not found")
            return ReviewerExpression.model_validate(row)

    def list_expressions(self, status: Optional[ExpressionStatus] = None) -> List[ReviewerExpression]:
        stmt = select(ReviewerExpressionRow).order_by(ReviewerExpressionRow.created_at.desc())
        if status is not None:
            stmt = stmt.where(ReviewerExpressionRow.status == ExpressionStatus(status).value)
        with self.session_scope() as session:
            return [ReviewerExpression.model_validate(row) for row in session.scalars(stmt)]

    def delete_expression(self, expression_id: str) -> bool:
        with self.session_scope() as session:
            row = session.get(ReviewerExpressionRow, expression_id)
            if row is None:
                return False
            session.delete(row)
            return True

    def set_expression_status(
        self, expression_id: str, status: ExpressionStatus, actor: Optional[str] = None
    ) -> ExpressionStatusResult:
        """
        Update an expression's status, syncing the committee directory on accept.

        Accepting an expression that carries an email upserts the matching
        committee member. Both writes share one transaction: if either fails,
        neither is kept.
        """
        with self.session_scope() as session:
            row = session.get(ReviewerExpressionRow, expression_id)
            if row is None:
                raise NotFoundError(f"Reviewer expression {expression_id} not found")
            row.status = ExpressionStatus(status).value
            row.updated_at = utc_now()

            member_row = None
            if status == ExpressionStatus.ACCEPTED and row.email and row.email.strip():
                member_row = self._upsert_committee_member(
                    session,
                    {
                        "name": row.name,
                        "email": row.email,
                        "designation": row.current_job_title,
                        "institution": row.institution,
                        "expertise": join_expertise(row.subject_area),
                        "phone": row.phone,
                    },
                    created_by=actor,
                )
            session.flush()

            return ExpressionStatusResult(
                expression=ReviewerExpression.model_validate(row),
                synced_to_committee=member_row is not None,
                committee_member=CommitteeMember.model_validate(member_row) if member_row is not None else None,
            )

    # ------------------------------------------------------------------
    # Shared row helpers for the sign-up forms
    # ------------------------------------------------------------------

    def _insert(self, row_type, values: Dict[str, Any], model, conflicts: Dict[str, str]):
        with self.session_scope() as session:
            row = row_type(**_plain_values(values))
            session.add(row)
            try:
                session.flush()
            except IntegrityError as exc:
                raise _unique_conflict(exc, conflicts) from exc
            return model.model_validate(row)

    def _fetch(self, row_type, row_id: str, model, label: str):
        with self.session_scope() as session:
            row = session.get(row_type, row_id)
            if row is None:
                raise NotFoundError(f"{label} {row_id} not found")
            return model.model_validate(row)

    def _patch(self, row_type, row_id: str, patch: Dict[str, Any], model, label: str, conflicts: Dict[str, str]):
        with self.session_scope() as session:
            row = session.get(row_type, row_id)
            if row is None:
                raise NotFoundError(f"{label} {row_id} not found")
            for key, value in _plain_values(patch).items():
                setattr(row, key, value)
            if hasattr(row, "updated_at"):
                row.updated_at = utc_now()
            try:
                session.flush()
            except IntegrityError as exc:
                raise _unique_conflict(exc, conflicts) from exc
            return model.model_validate(row)

    def _remove(self, row_type, row_id: str) -> bool:
        with self.session_scope() as session:
            row = session.get(row_type, row_id)
            if row is None:
                return False
            session.delete(row)
            return True

    def _newest_first(self, row_type, model) -> List[Any]:
        with self.session_scope() as session:
            rows = session.scalars(select(row_type).order_by(row_type.created_at.desc()))
            return [model.model_validate(row) for row in rows]

    # ------------------------------------------------------------------
    # Attendee registrations
    # ------------------------------------------------------------------

    def create_registration(self, data: Dict[str, Any]) -> Registration:
        """
        Raises:
            ConflictError: If the paper id or transaction id is already registered
        """
        return self._insert(RegistrationRow, data, Registration, _registration_conflicts(data))

    def list_registrations(self) -> List[Registration]:
        return self._newest_first(RegistrationRow, Registration)

    def get_registration(self, registration_id: str) -> Registration:
        return self._fetch(RegistrationRow, registration_id, Registration, "Registration")

    def update_registration(self, registration_id: str, patch: Dict[str, Any]) -> Registration:
        return self._patch(
            RegistrationRow, registration_id, patch, Registration, "Registration", _registration_conflicts(patch)
        )

    def delete_registration(self, registration_id: str) -> bool:
        return self._remove(RegistrationRow, registration_id)

    # ------------------------------------------------------------------
    # Keynote speakers
    # ------------------------------------------------------------------

    def create_keynote_speaker(self, data: Dict[str, Any]) -> KeynoteSpeaker:
        values = {**data, "email": _normalize_email(data["email"])}
        return self._insert(KeynoteSpeakerRow, values, KeynoteSpeaker, KEYNOTE_CONFLICTS)

    def list_keynote_speakers(self) -> List[KeynoteSpeaker]:
        return self._newest_first(KeynoteSpeakerRow, KeynoteSpeaker)

    def get_keynote_speaker(self, speaker_id: str) -> KeynoteSpeaker:
        return self._fetch(KeynoteSpeakerRow, speaker_id, KeynoteSpeaker, "Keynote speaker")

    def update_keynote_speaker(self, speaker_id: str, patch: Dict[str, Any]) -> KeynoteSpeaker:
        patch = dict(patch)
        if patch.get("email"):
            patch["email"] = _normalize_email(patch["email"])
        return self._patch(KeynoteSpeakerRow, speaker_id, patch, KeynoteSpeaker, "Keynote speaker", KEYNOTE_CONFLICTS)

    def delete_keynote_speaker(self, speaker_id: str) -> bool:
        return self._remove(KeynoteSpeakerRow, speaker_id)

    def keynote_stats(self) -> KeynoteStats:
        by_status = {status: 0 for status in KeynoteStatus}
        with self.session_scope() as session:
            rows = session.execute(
                select(KeynoteSpeakerRow.status, func.count()).group_by(KeynoteSpeakerRow.status)
            ).all()
        for status, count in rows:
            by_status[KeynoteStatus(status)] = count
        return KeynoteStats(total=sum(by_status.values()), by_status=by_status)

    # ------------------------------------------------------------------
    # Sponsors
    # ------------------------------------------------------------------

    def create_sponsor(self, data: Dict[str, Any]) -> Sponsor:
        values = {**data, "email": _normalize_email(data["email"])}
        return self._insert(SponsorRow, values, Sponsor, SPONSOR_CONFLICTS)

    def list_sponsors(self) -> List[Sponsor]:
        return self._newest_first(SponsorRow, Sponsor)

    def get_sponsor(self, sponsor_id: str) -> Sponsor:
        return self._fetch(SponsorRow, sponsor_id, Sponsor, "Sponsor")

    def update_sponsor(self, sponsor_id: str, patch: Dict[str, Any]) -> Sponsor:
        patch = dict(patch)
        if patch.get("email"):
            patch["email"] = _normalize_email(patch["email"])
        return self._patch(SponsorRow, sponsor_id, patch, Sponsor, "Sponsor", SPONSOR_CONFLICTS)

    def delete_sponsor(self, sponsor_id: str) -> bool:
        return self._remove(SponsorRow, sponsor_id)

    # ------------------------------------------------------------------
    # Contact messages
    # ------------------------------------------------------------------

    def create_contact_message(self, data: Dict[str, Any]) -> ContactMessage:
        return self._insert(ContactMessageRow, data, ContactMessage, {})

    def list_contact_messages(self) -> List[ContactMessage]:
        return self._newest_first(ContactMessageRow, ContactMessage)

    def delete_contact_message(self, message_id: str) -> bool:
        return self._remove(ContactMessageRow, message_id)
