from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Annotated, Dict, FrozenSet, List, Optional

from pydantic import (
    AfterValidator,
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    field_validator,
    model_validator,
)

from .utils import ensure_utc, parse_smart_list

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+?[\d\s-]{8,}$")
ORCID_PATTERN = re.compile(r"^\d{4}-\d{4}-\d{4}-\d{3}[\dX]$")
# Keynote phones are checked after dropping spaces, dashes and parentheses.
COMPACT_PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{0,15}$")
PHONE_SEPARATORS = re.compile(r"[\s\-()]")

MIN_ABSTRACT_WORDS = 50
MAX_ABSTRACT_WORDS = 500
MIN_KEYNOTE_ABSTRACT_CHARS = 100

NonBlank = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class ReviewStatus(str, Enum):
    PENDING = "PENDING"
    SENT_TO_COMMITTEE = "SENT_TO_COMMITTEE"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    NEEDS_REVISION = "NEEDS_REVISION"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_REVIEW_STATUSES


TERMINAL_REVIEW_STATUSES: FrozenSet[ReviewStatus] = frozenset(
    {ReviewStatus.APPROVED, ReviewStatus.REJECTED, ReviewStatus.NEEDS_REVISION}
)
REMINDER_ELIGIBLE_STATUSES: FrozenSet[ReviewStatus] = frozenset(
    {ReviewStatus.PENDING, ReviewStatus.SENT_TO_COMMITTEE, ReviewStatus.UNDER_REVIEW}
)


class ExpressionStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class AdminRole(str, Enum):
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


def _check_email(value: str) -> str:
    value = value.strip()
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Invalid email format")
    return value


def _check_orcid(value: str) -> Optional[str]:
    if not value:
        return None
    if not ORCID_PATTERN.match(value):
        raise ValueError("Invalid ORCID format (should be 0000-0000-0000-0000)")
    return value


EmailAddress = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1), AfterValidator(_check_email)
]
Orcid = Annotated[str, StringConstraints(strip_whitespace=True), AfterValidator(_check_orcid)]
UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


# --------------------------------------------------------------------------
# Submissions
# --------------------------------------------------------------------------


class CommitteeSnapshot(BaseModel):
    """Point-in-time copy of a committee member recorded at dispatch."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    email: str
    sent_at: UtcDatetime = Field(validation_alias=AliasChoices("sent_at", "sentAt"))


class CoAuthor(BaseModel):
    name: NonBlank
    email: EmailAddress
    institution: NonBlank
    country: NonBlank
    orcid_id: Optional[Orcid] = None


class SubmissionCreate(BaseModel):
    conference_title: NonBlank
    place_date: NonBlank
    paper_title: NonBlank
    paper_abstract: NonBlank
    keywords: NonBlank
    name: NonBlank
    email: EmailAddress
    phone: NonBlank
    institution_name: NonBlank
    country: NonBlank
    primary_subject: NonBlank
    orcid_id: Optional[Orcid] = None
    corresponding_author: bool = False
    co_authors: List[CoAuthor] = Field(default_factory=list)
    additional_subjects: Optional[str] = None
    ethics_compliance: bool
    agree_terms: bool
    agree_presentation: bool
    agree_publication: bool
    agree_review: bool
    agree_data_sharing: bool
    message: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, value: str) -> str:
        if not PHONE_PATTERN.match(value):
            raise ValueError("Invalid phone number format")
        return value

    @field_validator("paper_abstract")
    @classmethod
    def _check_abstract_length(cls, value: str) -> str:
        words = len(value.split())
        if words < MIN_ABSTRACT_WORDS:
            raise ValueError(f"Abstract must be at least {MIN_ABSTRACT_WORDS} words long")
        if words > MAX_ABSTRACT_WORDS:
            raise ValueError(f"Abstract must not exceed {MAX_ABSTRACT_WORDS} words")
        return value

    @field_validator(
        "ethics_compliance",
        "agree_terms",
        "agree_presentation",
        "agree_publication",
        "agree_review",
        "agree_data_sharing",
    )
    @classmethod
    def _must_agree(cls, value: bool) -> bool:
        if not value:
            raise ValueError("must be accepted")
        return value


class Submission(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    paper_id: Optional[str] = None
    conference_title: str
    place_date: str
    paper_title: str
    paper_abstract: str
    keywords: str
    name: str
    email: str
    phone: str
    institution_name: str
    country: str
    primary_subject: str
    orcid_id: Optional[str] = None
    corresponding_author: bool = False
    co_authors: List[CoAuthor] = Field(default_factory=list)
    additional_subjects: Optional[str] = None
    message: Optional[str] = None
    ethics_compliance: bool = False
    agree_terms: bool = False
    agree_presentation: bool = False
    agree_publication: bool = False
    agree_review: bool = False
    agree_data_sharing: bool = False
    paper_file_url: Optional[str] = None
    supplementary_file_url: Optional[str] = None
    source_code_file_url: Optional[str] = None
    review_status: ReviewStatus = ReviewStatus.PENDING
    sent_to_committee: bool = False
    committee_members: List[CommitteeSnapshot] = Field(default_factory=list)
    review_reminder_count: int = 0
    review_reminder_last_sent_at: Optional[UtcDatetime] = None
    created_at: UtcDatetime
    updated_at: UtcDatetime

    @field_validator("co_authors", "committee_members", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return value or []


class SubmissionPage(BaseModel):
    items: List[Submission]
    total: int
    page: int
    total_pages: int


class SubmissionStats(BaseModel):
    total: int
    sent_to_committee: int
    by_status: Dict[ReviewStatus, int]


class DispatchRequest(BaseModel):
    committee_ids: List[str] = Field(default_factory=list)
    send_to_all: bool = False


class DispatchResult(BaseModel):
    sent_count: int
    delivered: int
    failed: int
    submission: Submission


class ReviewStatusUpdate(BaseModel):
    # Plain string so an unknown value is reported as a 400 by the state machine.
    review_status: str


# --------------------------------------------------------------------------
# Reviewing committee
# --------------------------------------------------------------------------


class CommitteeMember(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    designation: Optional[str] = None
    institution: Optional[str] = None
    expertise: Optional[str] = None
    phone: Optional[str] = None
    is_active: bool = True
    created_by: Optional[str] = None
    created_at: UtcDatetime
    updated_at: UtcDatetime

    def snapshot(self, sent_at: datetime) -> CommitteeSnapshot:
        return CommitteeSnapshot(id=self.id, name=self.name, email=self.email, sent_at=sent_at)


class CommitteeMemberCreate(BaseModel):
    name: NonBlank
    email: EmailAddress
    designation: Optional[str] = None
    institution: Optional[str] = None
    expertise: Optional[str] = None
    phone: Optional[str] = None


class CommitteeMemberUpdate(BaseModel):
    name: Optional[NonBlank] = None
    email: Optional[EmailAddress] = None
    designation: Optional[str] = None
    institution: Optional[str] = None
    expertise: Optional[str] = None
    phone: Optional[str] = None
    is_active: Optional[bool] = None


class CommitteeStats(BaseModel):
    total: int
    active: int
    inactive: int
    submissions_by_status: Dict[ReviewStatus, int]


# --------------------------------------------------------------------------
# Reviewer expressions of interest
# --------------------------------------------------------------------------


class ReviewerExpressionCreate(BaseModel):
    name: NonBlank
    current_job_title: NonBlank
    institution: NonBlank
    email: Optional[str] = None
    phone: Optional[str] = None
    education: List[str] = Field(default_factory=list)
    subject_area: List[str] = Field(default_factory=list)
    methodological_expertise: List[str] = Field(default_factory=list)
    research_interest: List[str] = Field(default_factory=list)
    previous_peer_review_experience: Optional[str] = None
    conflict_of_interest: Optional[str] = None

    @field_validator(
        "education", "subject_area", "methodological_expertise", "research_interest", mode="before"
    )
    @classmethod
    def _parse_lists(cls, value):
        return parse_smart_list(value)

    @field_validator("email")
    @classmethod
    def _check_optional_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return _check_email(value)


class ReviewerExpression(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    current_job_title: str
    institution: str
    email: Optional[str] = None
    phone: Optional[str] = None
    education: List[str] = Field(default_factory=list)
    subject_area: List[str] = Field(default_factory=list)
    methodological_expertise: List[str] = Field(default_factory=list)
    research_interest: List[str] = Field(default_factory=list)
    previous_peer_review_experience: Optional[str] = None
    conflict_of_interest: Optional[str] = None
    status: ExpressionStatus = ExpressionStatus.PENDING
    cv_url: Optional[str] = None
    created_at: UtcDatetime
    updated_at: UtcDatetime

    @field_validator(
        "education", "subject_area", "methodological_expertise", "research_interest", mode="before"
    )
    @classmethod
    def _none_as_empty(cls, value):
        return value or []


class ExpressionStatusUpdate(BaseModel):
    status: str


class ExpressionStatusResult(BaseModel):
    expression: ReviewerExpression
    synced_to_committee: bool
    committee_member: Optional[CommitteeMember] = None


# --------------------------------------------------------------------------
# Attendee registrations
# --------------------------------------------------------------------------


class RegistrationCreate(BaseModel):
    name: NonBlank
    email: EmailAddress
    registration_type: NonBlank
    institution_name: NonBlank
    country: NonBlank
    phone: NonBlank
    early_bird: bool = False
    reg_fee: Optional[float] = Field(default=None, ge=0)
    is_paid: bool = False
    # Paper id of the accepted submission this registration pays for.
    paper_id: NonBlank
    transaction_id: NonBlank


class RegistrationUpdate(BaseModel):
    name: Optional[NonBlank] = None
    email: Optional[EmailAddress] = None
    registration_type: Optional[NonBlank] = None
    institution_name: Optional[NonBlank] = None
    country: Optional[NonBlank] = None
    phone: Optional[NonBlank] = None
    early_bird: Optional[bool] = None
    reg_fee: Optional[float] = Field(default=None, ge=0)
    is_paid: Optional[bool] = None
    paper_id: Optional[NonBlank] = None
    transaction_id: Optional[NonBlank] = None


class Registration(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    registration_type: str
    institution_name: str
    country: str
    phone: str
    early_bird: bool = False
    reg_fee: Optional[float] = None
    is_paid: bool = False
    paper_id: str
    transaction_id: str
    payment_receipt_url: Optional[str] = None
    created_at: UtcDatetime
    updated_at: UtcDatetime


# --------------------------------------------------------------------------
# Keynote speakers
# --------------------------------------------------------------------------


class KeynoteStatus(str, Enum):
    PENDING = "PENDING"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CONFIRMED = "CONFIRMED"


class ExpertiseArea(str, Enum):
    MATHEMATICS = "Mathematics"
    MANAGEMENT = "Management"
    COMPUTER_SCIENCE = "Computer Science"
    DATA_SCIENCE = "Data Science"
    ARTIFICIAL_INTELLIGENCE = "Artificial Intelligence"
    OPERATIONS_RESEARCH = "Operations Research"
    STATISTICS = "Statistics"
    INFORMATION_SYSTEMS = "Information Systems"
    BUSINESS_ANALYTICS = "Business Analytics"
    OTHER = "Other"


def _check_compact_phone(value: str) -> str:
    if not COMPACT_PHONE_PATTERN.match(PHONE_SEPARATORS.sub("", value)):
        raise ValueError("Invalid phone number format")
    return value


def _check_keynote_abstract(value: str) -> str:
    if len(value) < MIN_KEYNOTE_ABSTRACT_CHARS:
        raise ValueError(f"Keynote abstract must be at least {MIN_KEYNOTE_ABSTRACT_CHARS} characters long")
    return value


CompactPhone = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1), AfterValidator(_check_compact_phone)
]
KeynoteAbstract = Annotated[
    str, StringConstraints(strip_whitespace=True), AfterValidator(_check_keynote_abstract)
]


class KeynoteSpeakerCreate(BaseModel):
    name: NonBlank
    email: EmailAddress
    phone: CompactPhone
    country: NonBlank

    designation: NonBlank
    institution_name: NonBlank
    department: Optional[str] = None
    experience_years: int = Field(ge=0)
    expertise_area: ExpertiseArea
    specialization: NonBlank

    highest_degree: NonBlank
    university: Optional[str] = None
    publications_count: Optional[int] = Field(default=None, ge=0)
    notable_achievements: Optional[str] = None
    keynote_experience: Optional[int] = Field(default=None, ge=0)
    notable_conferences: Optional[str] = None

    keynote_title: NonBlank
    keynote_abstract: KeynoteAbstract
    target_audience: Optional[str] = None

    linkedin_profile: Optional[str] = None
    website: Optional[str] = None
    orcid_id: Optional[Orcid] = None
    google_scholar: Optional[str] = None

    preferred_session_time: Optional[str] = None
    accommodation_needed: Optional[str] = None
    dietary_restrictions: Optional[str] = None
    additional_comments: Optional[str] = None

    agree_to_terms: bool
    agree_to_marketing: bool = False

    @field_validator("agree_to_terms")
    @classmethod
    def _must_agree(cls, value: bool) -> bool:
        if not value:
            raise ValueError("You must agree to the terms and conditions")
        return value


class KeynoteSpeakerUpdate(BaseModel):
    name: Optional[NonBlank] = None
    email: Optional[EmailAddress] = None
    phone: Optional[CompactPhone] = None
    country: Optional[NonBlank] = None
    designation: Optional[NonBlank] = None
    institution_name: Optional[NonBlank] = None
    department: Optional[str] = None
    experience_years: Optional[int] = Field(default=None, ge=0)
    expertise_area: Optional[ExpertiseArea] = None
    specialization: Optional[NonBlank] = None
    highest_degree: Optional[NonBlank] = None
    university: Optional[str] = None
    publications_count: Optional[int] = Field(default=None, ge=0)
    notable_achievements: Optional[str] = None
    keynote_experience: Optional[int] = Field(default=None, ge=0)
    notable_conferences: Optional[str] = None
    keynote_title: Optional[NonBlank] = None
    keynote_abstract: Optional[KeynoteAbstract] = None
    target_audience: Optional[str] = None
    linkedin_profile: Optional[str] = None
    website: Optional[str] = None
    orcid_id: Optional[Orcid] = None
    google_scholar: Optional[str] = None
    preferred_session_time: Optional[str] = None
    accommodation_needed: Optional[str] = None
    dietary_restrictions: Optional[str] = None
    additional_comments: Optional[str] = None
    agree_to_marketing: Optional[bool] = None
    # Plain string so an unknown value is reported as a 400.
    status: Optional[str] = None


class KeynoteSpeaker(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    phone: str
    country: str
    designation: str
    institution_name: str
    department: Optional[str] = None
    experience_years: int
    expertise_area: ExpertiseArea
    specialization: str
    highest_degree: str
    university: Optional[str] = None
    publications_count: Optional[int] = None
    notable_achievements: Optional[str] = None
    keynote_experience: Optional[int] = None
    notable_conferences: Optional[str] = None
    keynote_title: str
    keynote_abstract: str
    target_audience: Optional[str] = None
    linkedin_profile: Optional[str] = None
    website: Optional[str] = None
    orcid_id: Optional[str] = None
    google_scholar: Optional[str] = None
    cv_file_url: Optional[str] = None
    photo_file_url: Optional[str] = None
    presentation_file_url: Optional[str] = None
    preferred_session_time: Optional[str] = None
    accommodation_needed: Optional[str] = None
    dietary_restrictions: Optional[str] = None
    additional_comments: Optional[str] = None
    agree_to_terms: bool = True
    agree_to_marketing: bool = False
    status: KeynoteStatus = KeynoteStatus.PENDING
    created_at: UtcDatetime
    updated_at: UtcDatetime


class KeynoteSpeakerSummary(BaseModel):
    """Public listing entry; contact details are left out."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    designation: str
    institution_name: str
    expertise_area: ExpertiseArea
    keynote_title: str
    status: KeynoteStatus
    created_at: UtcDatetime


class KeynoteStatusUpdate(BaseModel):
    status: str


class KeynoteStats(BaseModel):
    total: int
    by_status: Dict[KeynoteStatus, int]


# --------------------------------------------------------------------------
# Sponsors
# --------------------------------------------------------------------------


class SponsorLevel(str, Enum):
    PLATINUM = "platinum"
    GOLD = "gold"
    SILVER = "silver"
    BRONZE = "bronze"

    @property
    def minimum_amount(self) -> int:
        return SPONSOR_MINIMUM_AMOUNTS[self]


SPONSOR_MINIMUM_AMOUNTS: Dict[SponsorLevel, int] = {
    SponsorLevel.PLATINUM: 10000,
    SponsorLevel.GOLD: 5000,
    SponsorLevel.SILVER: 2500,
    SponsorLevel.BRONZE: 1000,
}


def _lower_level(value):
    return value.strip().lower() if isinstance(value, str) else value


class SponsorCreate(BaseModel):
    name: NonBlank
    email: EmailAddress
    level: SponsorLevel
    amount: float = Field(gt=0)
    company_name: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    message: Optional[str] = None

    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, value):
        return _lower_level(value)

    @model_validator(mode="after")
    def _check_minimum_amount(self) -> SponsorCreate:
        minimum = self.level.minimum_amount
        if self.amount < minimum:
            raise ValueError(f"Minimum amount for {self.level.value} sponsorship is ${minimum}")
        return self


class SponsorUpdate(BaseModel):
    name: Optional[NonBlank] = None
    email: Optional[EmailAddress] = None
    level: Optional[SponsorLevel] = None
    amount: Optional[float] = Field(default=None, gt=0)
    company_name: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    message: Optional[str] = None

    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, value):
        return _lower_level(value)


class Sponsor(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    level: SponsorLevel
    amount: float
    company_name: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    message: Optional[str] = None
    created_at: UtcDatetime
    updated_at: UtcDatetime


# --------------------------------------------------------------------------
# Contact form
# --------------------------------------------------------------------------


class ContactMessageCreate(BaseModel):
    name: NonBlank
    email: EmailAddress
    phone: NonBlank
    subject: NonBlank
    message: NonBlank


class ContactMessage(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    phone: str
    subject: str
    message: str
    created_at: UtcDatetime


# --------------------------------------------------------------------------
# Operations
# --------------------------------------------------------------------------


class ReminderTickResult(BaseModel):
    scanned: int = 0
    reminders_sent: int = 0
    emails_delivered: int = 0
    emails_failed: int = 0
    skipped_reason: Optional[str] = None


class MailerStatus(BaseModel):
    blocked: bool
    blocked_until: Optional[UtcDatetime] = None


class AdminKeyCreate(BaseModel):
    owner: NonBlank
    role: AdminRole = AdminRole.ADMIN


class AdminKeyRecord(BaseModel):
    id: str
    owner: str
    prefix: str
    role: AdminRole
    is_active: bool
    created_at: UtcDatetime


class AdminKeyCreated(BaseModel):
    api_key: str
    record: AdminKeyRecord


class AdminIdentity(BaseModel):
    owner: str
    role: AdminRole
    key_id: Optional[str] = None

    @property
    def is_super_admin(self) -> bool:
        return self.role == AdminRole.SUPER_ADMIN
