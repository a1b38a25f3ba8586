from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .configuration import load_settings
from .database import ConferenceStore
from .dispatch import CommitteeDispatch
from .errors import NotFoundError, ValidationError
from .intake import SubmissionIntake
from .key_manager import AdminKeyManager
from .mailer import GuardedMailer, MailerGuard, build_mailer
from .middleware import RequestLoggingMiddleware, register_exception_handlers
from .models import (
    AdminIdentity,
    AdminKeyCreate,
    AdminKeyCreated,
    AdminKeyRecord,
    CommitteeMember,
    CommitteeMemberCreate,
    CommitteeMemberUpdate,
    CommitteeStats,
    ContactMessage,
    ContactMessageCreate,
    DispatchRequest,
    DispatchResult,
    ExpressionStatusResult,
    ExpressionStatusUpdate,
    KeynoteSpeaker,
    KeynoteSpeakerCreate,
    KeynoteSpeakerSummary,
    KeynoteSpeakerUpdate,
    KeynoteStats,
    KeynoteStatusUpdate,
    MailerStatus,
    Registration,
    RegistrationCreate,
    RegistrationUpdate,
    ReminderTickResult,
    ReviewerExpression,
    ReviewerExpressionCreate,
    ReviewStatusUpdate,
    Sponsor,
    SponsorCreate,
    SponsorUpdate,
    Submission,
    SubmissionCreate,
    SubmissionPage,
    SubmissionStats,
)
from .notifications import Notifier
from .paper_ids import PaperIdAllocator
from .registrations import RegistrationDesk
from .reminders import ReviewReminderJob
from .review_status import ExpressionStatusMachine, ReviewStatusMachine, parse_expression_status, parse_review_status
from .storage import ObjectStorage, check_extension
from .utils import (
    CV_EXTENSIONS,
    KEYNOTE_CV_EXTENSIONS,
    PAPER_EXTENSIONS,
    PHOTO_EXTENSIONS,
    PRESENTATION_EXTENSIONS,
    RECEIPT_EXTENSIONS,
    SOURCE_CODE_EXTENSIONS,
    SUPPLEMENTARY_EXTENSIONS,
)

settings = load_settings()

logging.basicConfig(
    level=settings.app.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

store = ConferenceStore(settings.database.url)
key_manager = AdminKeyManager(store, master_key=settings.app.master_key)
storage = ObjectStorage(settings.storage)
guard = MailerGuard(default_cooldown=timedelta(hours=settings.mail.cooldown_hours))
mailer = GuardedMailer(build_mailer(settings.mail), guard)
notifier = Notifier(mailer, admin_email=settings.app.admin_email, storage=storage)
intake = SubmissionIntake(
    store,
    PaperIdAllocator(store),
    notifier,
    max_attempts=settings.intake.max_paper_id_attempts,
)
dispatcher = CommitteeDispatch(store, notifier)
review_machine = ReviewStatusMachine(store)
expression_machine = ExpressionStatusMachine(store)
registration_desk = RegistrationDesk(store, notifier)
reminder_job = ReviewReminderJob(store, notifier, guard, settings.review_reminder)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    reminder_job.start()
    yield
    await reminder_job.stop()


app = FastAPI(title=settings.app.title, version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.app.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)
register_exception_handlers(app)


def get_store() -> ConferenceStore:
    return store


def get_key_manager() -> AdminKeyManager:
    return key_manager


def get_storage() -> ObjectStorage:
    return storage


def get_intake() -> SubmissionIntake:
    return intake


def get_dispatcher() -> CommitteeDispatch:
    return dispatcher


def get_review_machine() -> ReviewStatusMachine:
    return review_machine


def get_expression_machine() -> ExpressionStatusMachine:
    return expression_machine


def get_registration_desk() -> RegistrationDesk:
    return registration_desk


def get_reminder_job() -> ReviewReminderJob:
    return reminder_job


def get_guard() -> MailerGuard:
    return guard


def require_admin(
    x_api_key: str = Header(...),
    manager: AdminKeyManager = Depends(get_key_manager),
) -> AdminIdentity:
    identity = manager.authenticate(x_api_key)
    if identity is None:
        raise HTTPException(status_code=401, detail="Invalid or inactive API key")
    return identity


def require_super_admin(identity: AdminIdentity = Depends(require_admin)) -> AdminIdentity:
    if not identity.is_super_admin:
        raise HTTPException(status_code=403, detail="Super admin privileges required")
    return identity


def _parse_form_model(raw: str, model: type[BaseModel]) -> Any:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Invalid JSON in 'data' field: {exc}") from exc
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False)) from exc


async def _upload(
    storage: ObjectStorage, file: Optional[UploadFile], folder: str, allowed: tuple
) -> Optional[str]:
    if file is None or not file.filename:
        return None
    try:
        return await run_in_threadpool(storage.upload, file.file, file.filename, folder, allowed, file.content_type)
    finally:
        await file.close()


def _patch_from(request: BaseModel) -> Dict[str, Any]:
    return {key: value for key, value in request.model_dump(exclude_unset=True).items() if value is not None}


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


# --------------------------------------------------------------------------
# Public intake
# --------------------------------------------------------------------------


@app.post("/submissions", response_model=Submission, status_code=201)
async def create_submission(
    data: str = Form(...),
    paper_file: Optional[UploadFile] = File(None),
    supplementary_file: Optional[UploadFile] = File(None),
    source_code_file: Optional[UploadFile] = File(None),
    storage: ObjectStorage = Depends(get_storage),
    intake: SubmissionIntake = Depends(get_intake),
) -> Submission:
    payload: SubmissionCreate = _parse_form_model(data, SubmissionCreate)

    uploads = [
        ("paper_file_url", paper_file, "papers", PAPER_EXTENSIONS),
        ("supplementary_file_url", supplementary_file, "supplementary", SUPPLEMENTARY_EXTENSIONS),
        ("source_code_file_url", source_code_file, "source-code", SOURCE_CODE_EXTENSIONS),
    ]
    for _, file, _, allowed in uploads:
        if file is not None and file.filename:
            check_extension(file.filename, allowed)

    file_urls = {}
    for field, file, folder, allowed in uploads:
        file_urls[field] = await _upload(storage, file, folder, allowed)

    return await intake.submit(payload, file_urls)


@app.post("/reviewer-expressions", response_model=ReviewerExpression, status_code=201)
async def create_reviewer_expression(
    data: str = Form(...),
    cv_file: Optional[UploadFile] = File(None),
    storage: ObjectStorage = Depends(get_storage),
    store: ConferenceStore = Depends(get_store),
) -> ReviewerExpression:
    payload: ReviewerExpressionCreate = _parse_form_model(data, ReviewerExpressionCreate)
    cv_url = await _upload(storage, cv_file, "cvs", CV_EXTENSIONS)
    return await run_in_threadpool(store.create_expression, {**payload.model_dump(), "cv_url": cv_url})


# --------------------------------------------------------------------------
# Submissions (admin)
# --------------------------------------------------------------------------


@app.get("/submissions", response_model=SubmissionPage)
def list_submissions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    search: Optional[str] = None,
    _admin: AdminIdentity = Depends(require_admin),
    store: ConferenceStore = Depends(get_store),
) -> SubmissionPage:
    review_status = parse_review_status(status) if status else None
    return store.list_submissions(page=page, limit=limit, status=review_status, search=search)


@app.get("/submissions/stats", response_model=SubmissionStats)
def submission_stats(
    _admin: AdminIdentity = Depends(require_admin),
    store: ConferenceStore = Depends(get_store),
) -> SubmissionStats:
    return store.submission_stats()


@app.get("/submissions/{submission_id}", response_model=Submission)
def get_submission(
    submission_id: str,
    _admin: AdminIdentity = Depends(require_admin),
    store: ConferenceStore = Depends(get_store),
) -> Submission:
    return store.get_submission(submission_id)


@app.delete("/submissions/{submission_id}")
def delete_submission(
    submission_id: str,
    _admin: AdminIdentity = Depends(require_admin),
    store: ConferenceStore = Depends(get_store),
) -> Dict[str, str]:
    if not store.delete_submission(submission_id):
        raise NotFoundError(f"Submission {submission_id} not found")
    return {"status": "deleted"}


@app.post("/submissions/{submission_id}/dispatch", response_model=DispatchResult)
async def dispatch_submission(
    submission_id: str,
    request: DispatchRequest,
    _admin: AdminIdentity = Depends(require_admin),
    dispatcher: CommitteeDispatch = Depends(get_dispatcher),
) -> DispatchResult:
    return await dispatcher.dispatch(submission_id, request.committee_ids, request.send_to_all)


@app.put("/submissions/{submission_id}/review-status", response_model=Submission)
async def update_review_status(
    submission_id: str,
    request: ReviewStatusUpdate,
    _admin: AdminIdentity = Depends(require_admin),
    machine: ReviewStatusMachine = Depends(get_review_machine),
) -> Submission:
    return await machine.set_status(submission_id, request.review_status)


@app.get("/committee/active-members", response_model=List[CommitteeMember])
def active_committee_members(
    _admin: AdminIdentity = Depends(require_admin),
    store: ConferenceStore = Depends(get_store),
) -> List[CommitteeMember]:
    return store.find_active_committee_members()


@app.get("/mailer/status", response_model=MailerStatus)
def mailer_status(
    _admin: AdminIdentity = Depends(require_admin),
    guard: MailerGuard = Depends(get_guard),
) -> MailerStatus:
    return guard.status()


# --------------------------------------------------------------------------
# Reviewing committee (super admin)
# --------------------------------------------------------------------------


@app.get("/committee/members", response_model=List[CommitteeMember])
def list_committee_members(
    _admin: AdminIdentity = Depends(require_super_admin),
    store: ConferenceStore = Depends(get_store),
) -> List[CommitteeMember]:
    return store.list_committee_members()


@app.post("/committee/members", response_model=CommitteeMember, status_code=201)
def create_committee_member(
    request: CommitteeMemberCreate,
    admin: AdminIdentity = Depends(require_super_admin),
    store: ConferenceStore = Depends(get_store),
) -> CommitteeMember:
    return store.create_committee_member(request, created_by=admin.owner)


@app.get("/committee/members/{member_id}", response_model=CommitteeMember)
def get_committee_member(
    member_id: str,
    _admin: AdminIdentity = Depends(require_super_admin),
    store: ConferenceStore = Depends(get_store),
) -> CommitteeMember:
    return store.get_committee_member(member_id)


@app.put("/committee/members/{member_id}", response_model=CommitteeMember)
def update_committee_member(
    member_id: str,
    request: CommitteeMemberUpdate,
    _admin: AdminIdentity = Depends(require_super_admin),
    store: ConferenceStore = Depends(get_store),
) -> CommitteeMember:
    patch = request.model_dump(exclude_unset=True)
    for required in ("name", "email", "is_active"):
        if patch.get(required) is None:
            patch.pop(required, None)
    return store.update_committee_member(member_id, patch)


@app.delete("/committee/members/{member_id}")
def delete_committee_member(
    member_id: str,
    _admin: AdminIdentity = Depends(require_super_admin),
    store: ConferenceStore = Depends(get_store),
) -> Dict[str, str]:
    if not store.delete_committee_member(member_id):
        raise NotFoundError(f"Committee member {member_id} not found")
    return {"status": "deleted"}


@app.get("/committee/stats", response_model=CommitteeStats)
def committee_stats(
    _admin: AdminIdentity = Depends(require_super_admin),
    store: ConferenceStore = Depends(get_store),
) -> CommitteeStats:
    return store.committee_stats()


# --------------------------------------------------------------------------
# Reviewer expressions (super admin)
# --------------------------------------------------------------------------


@app.get("/reviewer-expressions", response_model=List[ReviewerExpression])
def list_reviewer_expressions(
    status: Optional[str] = None,
    _admin: AdminIdentity = Depends(require_super_admin),
    store: ConferenceStore = Depends(get_store),
) -> List[ReviewerExpression]:
    return store.list_expressions(parse_expression_status(status) if status else None)


@app.get("/reviewer-expressions/{expression_id}", response_model=ReviewerExpression)
def get_reviewer_expression(
    expression_id: str,
    _admin: AdminIdentity = Depends(require_super_admin),
    store: ConferenceStore = Depends(get_store),
) -> ReviewerExpression:
    return store.get_expression(expression_id)


@app.delete("/reviewer-expressions/{expression_id}")
def delete_reviewer_expression(
    expression_id: str,
    _admin: AdminIdentity = Depends(require_super_admin),
    store: ConferenceStore = Depends(get_store),
) -> Dict[str, str]:
    if not store.delete_expression(expression_id):
        raise NotFoundError(f"Reviewer expression {expression_id} not found")
    return {"status": "deleted"}


@app.patch("/reviewer-expressions/{expression_id}/status", response_model=ExpressionStatusResult)
async def update_reviewer_expression_status(
    expression_id: str,
    request: ExpressionStatusUpdate,
    admin: AdminIdentity = Depends(require_super_admin),
    machine: ExpressionStatusMachine = Depends(get_expression_machine),
) -> ExpressionStatusResult:
    return await machine.set_status(expression_id, request.status, actor=admin.owner)


# --------------------------------------------------------------------------
# Registrations, keynote speakers, sponsors and contact
# --------------------------------------------------------------------------


@app.post("/registrations", response_model=Registration, status_code=201)
async def create_registration(
    data: str = Form(...),
    payment_receipt: Optional[UploadFile] = File(None),
    storage: ObjectStorage = Depends(get_storage),
    desk: RegistrationDesk = Depends(get_registration_desk),
) -> Registration:
    payload: RegistrationCreate = _parse_form_model(data, RegistrationCreate)
    if payment_receipt is None or not payment_receipt.filename:
        raise ValidationError("Payment receipt file is required")
    check_extension(payment_receipt.filename, RECEIPT_EXTENSIONS)
    receipt_url = await _upload(storage, payment_receipt, "receipts", RECEIPT_EXTENSIONS)
    return await desk.register_attendee(payload, receipt_url)


@app.get("/registrations", response_model=List[Registration])
def list_registrations(
    _admin: AdminIdentity = Depends(require_admin),
    store: ConferenceStore = Depends(get_store),
) -> List[Registration]:
    return store.list_registrations()


@app.get("/registrations/{registration_id}", response_model=Registration)
def get_registration(
    registration_id: str,
    _admin: AdminIdentity = Depends(require_admin),
    store: ConferenceStore = Depends(get_store),
) -> Registration:
    return store.get_registration(registration_id)


@app.put("/registrations/{registration_id}", response_model=Registration)
async def update_registration(
    registration_id: str,
    request: RegistrationUpdate,
    _admin: AdminIdentity = Depends(require_admin),
    desk: RegistrationDesk = Depends(get_registration_desk),
) -> Registration:
    return await desk.update_registration(registration_id, _patch_from(request))


@app.delete("/registrations/{registration_id}")
def delete_registration(
    registration_id: str,
    _admin: AdminIdentity = Depends(require_admin),
    store: ConferenceStore = Depends(get_store),
) -> Dict[str, str]:
    if not store.delete_registration(registration_id):
        raise NotFoundError(f"Registration {registration_id} not found")
    return {"status": "deleted"}


@app.post("/keynote-speakers", response_model=KeynoteSpeaker, status_code=201)
async def create_keynote_speaker(
    data: str = Form(...),
    cv_file: Optional[UploadFile] = File(None),
    photo_file: Optional[UploadFile] = File(None),
    presentation_file: Optional[UploadFile] = File(None),
    storage: ObjectStorage = Depends(get_storage),
    desk: RegistrationDesk = Depends(get_registration_desk),
) -> KeynoteSpeaker:
    payload: KeynoteSpeakerCreate = _parse_form_model(data, KeynoteSpeakerCreate)

    uploads = [
        ("cv_file_url", cv_file, "keynote/cvs", KEYNOTE_CV_EXTENSIONS),
        ("photo_file_url", photo_file, "keynote/photos", PHOTO_EXTENSIONS),
        ("presentation_file_url", presentation_file, "keynote/presentations", PRESENTATION_EXTENSIONS),
    ]
    for _, file, _, allowed in uploads:
        if file is not None and file.filename:
            check_extension(file.filename, allowed)

    file_urls = {}
    for field, file, folder, allowed in uploads:
        file_urls[field] = await _upload(storage, file, folder, allowed)

    return await desk.register_keynote_speaker(payload, file_urls)


@app.get("/keynote-speakers", response_model=List[KeynoteSpeakerSummary])
def list_keynote_speaker_summaries(store: ConferenceStore = Depends(get_store)) -> List[KeynoteSpeakerSummary]:
    return [
        KeynoteSpeakerSummary.model_validate(speaker, from_attributes=True) for speaker in store.list_keynote_speakers()
    ]


@app.get("/keynote-speakers/all", response_model=List[KeynoteSpeaker])
def list_keynote_speakers(
    _admin: AdminIdentity = Depends(require_admin),
    store: ConferenceStore = Depends(get_store),
) -> List[KeynoteSpeaker]:
    return store.list_keynote_speakers()


@app.get("/keynote-speakers/stats", response_model=KeynoteStats)
def keynote_stats(
    _admin: AdminIdentity = Depends(require_admin),
    store: ConferenceStore = Depends(get_store),
) -> KeynoteStats:
    return store.keynote_stats()


@app.get("/keynote-speakers/{speaker_id}", response_model=KeynoteSpeaker)
def get_keynote_speaker(
    speaker_id: str,
    _admin: AdminIdentity = Depends(require_admin),
    store: ConferenceStore = Depends(get_store),
) -> KeynoteSpeaker:
    return store.get_keynote_speaker(speaker_id)


@app.put("/keynote-speakers/{speaker_id}", response_model=KeynoteSpeaker)
async def update_keynote_speaker(
    speaker_id: str,
    request: KeynoteSpeakerUpdate,
    _admin: AdminIdentity = Depends(require_admin),
    desk: RegistrationDesk = Depends(get_registration_desk),
) -> KeynoteSpeaker:
    return await desk.update_keynote_speaker(speaker_id, _patch_from(request))


@app.patch("/keynote-speakers/{speaker_id}/status", response_model=KeynoteSpeaker)
async def update_keynote_speaker_status(
    speaker_id: str,
    request: KeynoteStatusUpdate,
    _admin: AdminIdentity = Depends(require_admin),
    desk: RegistrationDesk = Depends(get_registration_desk),
) -> KeynoteSpeaker:
    return await desk.set_keynote_status(speaker_id, request.status)


@app.delete("/keynote-speakers/{speaker_id}")
def delete_keynote_speaker(
    speaker_id: str,
    _admin: AdminIdentity = Depends(require_admin),
    store: ConferenceStore = Depends(get_store),
) -> Dict[str, str]:
    if not store.delete_keynote_speaker(speaker_id):
        raise NotFoundError(f"Keynote speaker {speaker_id} not found")
    return {"status": "deleted"}


@app.post("/sponsors", response_model=Sponsor, status_code=201)
async def create_sponsor(
    request: SponsorCreate,
    desk: RegistrationDesk = Depends(get_registration_desk),
) -> Sponsor:
    return await desk.register_sponsor(request)


@app.get("/sponsors", response_model=List[Sponsor])
def list_sponsors(
    _admin: AdminIdentity = Depends(require_admin),
    store: ConferenceStore = Depends(get_store),
) -> List[Sponsor]:
    return store.list_sponsors()


@app.get("/sponsors/{sponsor_id}", response_model=Sponsor)
def get_sponsor(
    sponsor_id: str,
    _admin: AdminIdentity = Depends(require_admin),
    store: ConferenceStore = Depends(get_store),
) -> Sponsor:
    return store.get_sponsor(sponsor_id)


@app.put("/sponsors/{sponsor_id}", response_model=Sponsor)
def update_sponsor(
    sponsor_id: str,
    request: SponsorUpdate,
    _admin: AdminIdentity = Depends(require_admin),
    store: ConferenceStore = Depends(get_store),
) -> Sponsor:
    return store.update_sponsor(sponsor_id, _patch_from(request))


@app.delete("/sponsors/{sponsor_id}")
def delete_sponsor(
    sponsor_id: str,
    _admin: AdminIdentity = Depends(require_admin),
    store: ConferenceStore = Depends(get_store),
) -> Dict[str, str]:
    if not store.delete_sponsor(sponsor_id):
        raise NotFoundError(f"Sponsor {sponsor_id} not found")
    return {"status": "deleted"}


@app.post("/contact", response_model=ContactMessage, status_code=201)
async def create_contact_message(
    request: ContactMessageCreate,
    desk: RegistrationDesk = Depends(get_registration_desk),
) -> ContactMessage:
    return await desk.record_contact(request)


@app.get("/contact", response_model=List[ContactMessage])
def list_contact_messages(
    _admin: AdminIdentity = Depends(require_admin),
    store: ConferenceStore = Depends(get_store),
) -> List[ContactMessage]:
    return store.list_contact_messages()


@app.delete("/contact/{message_id}")
def delete_contact_message(
    message_id: str,
    _admin: AdminIdentity = Depends(require_admin),
    store: ConferenceStore = Depends(get_store),
) -> Dict[str, str]:
    if not store.delete_contact_message(message_id):
        raise NotFoundError(f"Contact message {message_id} not found")
    return {"status": "deleted"}


# --------------------------------------------------------------------------
# Admin keys and operations (super admin)
# --------------------------------------------------------------------------


@app.post("/admin/keys", response_model=AdminKeyCreated, status_code=201)
def create_admin_key(
    request: AdminKeyCreate,
    _admin: AdminIdentity = Depends(require_super_admin),
    manager: AdminKeyManager = Depends(get_key_manager),
) -> AdminKeyCreated:
    raw_key, record = manager.create_key(request.owner, request.role)
    return AdminKeyCreated(api_key=raw_key, record=record)


@app.get("/admin/keys", response_model=List[AdminKeyRecord])
def list_admin_keys(
    _admin: AdminIdentity = Depends(require_super_admin),
    manager: AdminKeyManager = Depends(get_key_manager),
) -> List[AdminKeyRecord]:
    return manager.list_keys()


@app.delete("/admin/keys/{key_id}")
def revoke_admin_key(
    key_id: str,
    _admin: AdminIdentity = Depends(require_super_admin),
    manager: AdminKeyManager = Depends(get_key_manager),
) -> Dict[str, str]:
    if not manager.revoke_key(key_id):
        raise HTTPException(status_code=404, detail="Key not found")
    return {"status": "revoked"}


@app.post("/internal/reminders/run", response_model=ReminderTickResult)
async def run_reminders(
    _admin: AdminIdentity = Depends(require_super_admin),
    job: ReviewReminderJob = Depends(get_reminder_job),
) -> ReminderTickResult:
    return await job.run_once()
