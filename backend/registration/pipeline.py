"""
Registration pipeline: validated draft → credential → profile → documents → sign-in.

Why:
    A credential without a profile is the inconsistency the identity manager
    treats as fatal, so account creation runs as a saga: creating the profile
    is paired with deleting the credential again when it fails. Everything
    after that point is best effort: an upload failure is reported and stays
    retryable (`retry_attachment`), and a failed automatic sign-in falls back
    to "please log in". Neither undoes the account.

Order:
    1. validate every section (abort with field errors)
    2. remote pre-checks (personal ID unused; referring volunteer ID exists)
    3. create credential             (failure: abort, nothing else runs)
    4. create profile                (failure: delete credential, abort)
    5. upload + link attachments     (failure: reported, not rolled back)
    6. automatic sign-in             (failure: manual sign-in message)
"""
from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from identity_access.directory import ConflictError, DirectoryError, RemoteDirectory
from identity_access.domain import ATTENDEE, TEAM_LEADER, Identity, Profile, is_volunteer_family
from identity_access.session import AuthResult
from storage.config import ATTACHMENT_KINDS, PATH_COLUMNS, get_bucket_for_kind
from storage.keys import make_attachment_key

from .drafts import Attachment, RegistrationDraft
from .saga import Saga, SagaFailed
from .validation import (
    ATTENDEE_FORM,
    SECTIONS,
    VOLUNTEER_FORM,
    FieldError,
    first_error_section,
    normalize_phone,
    resolved_university,
    validate_attachment,
    validate_draft,
)

logger = logging.getLogger("eventdesk.registration")

SignIn = Callable[[str, str], AuthResult]

INVALID = "invalid"
FAILED = "failed"
REGISTERED = "registered"


@dataclass(frozen=True)
class AttachmentReport:
    kind: str
    ok: bool
    path: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class RegistrationOutcome:
    status: str
    message: str
    errors: Tuple[FieldError, ...] = ()
    first_error_section: Optional[int] = None
    identity: Optional[Identity] = None
    profile: Optional[Profile] = None
    attachments: Tuple[AttachmentReport, ...] = ()
    auth: Optional[AuthResult] = None

    @property
    def ok(self) -> bool:
        return self.status == REGISTERED

    @property
    def signed_in(self) -> bool:
        return bool(self.auth and self.auth.ok)

    @property
    def attachment_failures(self) -> Tuple[AttachmentReport, ...]:
        return tuple(a for a in self.attachments if not a.ok)


def _invalid(errors: list[FieldError], message: str = "Please correct the highlighted fields.") -> RegistrationOutcome:
    return RegistrationOutcome(
        status=INVALID,
        message=message,
        errors=tuple(errors),
        first_error_section=first_error_section(errors),
    )


def _failed(message: str = "Registration failed. Please try again.") -> RegistrationOutcome:
    return RegistrationOutcome(status=FAILED, message=message)


class RegistrationPipeline:
    def __init__(
        self,
        directory: RemoteDirectory,
        *,
        sign_in: Optional[SignIn] = None,
        clock: Callable[[], float] = time.time,
        token_factory: Callable[[], str] = lambda: secrets.token_hex(6),
    ) -> None:
        self._directory = directory
        self._sign_in = sign_in
        self._clock = clock
        self._token = token_factory

    # --- public API ------------------------------------------------------
    def submit(self, draft: RegistrationDraft, form: str) -> RegistrationOutcome:
        errors = validate_draft(draft, form)
        if errors:
            return _invalid(errors)

        try:
            errors = self._precheck(draft, form)
        except DirectoryError as exc:
            logger.warning("Registration pre-check failed: %s", exc.code)
            return _failed("We could not verify your details right now. Please try again.")
        if errors:
            return _invalid(errors)

        saga = Saga()
        saga.add("credential", lambda ctx: self._directory.create_credential(draft.email, draft.password), self._delete_credential)
        saga.add("profile", lambda ctx: self._directory.create_profile(ctx["credential"].id, self._profile_fields(draft, form)))
        try:
            ctx = saga.run()
        except SagaFailed as failure:
            return self._account_failure(failure, form)

        identity: Identity = ctx["credential"]
        profile: Profile = ctx["profile"]
        logger.info("Registered %s profile %s", form, identity.id)

        reports = []
        for kind in ATTACHMENT_KINDS:
            attachment = draft.attachments.get(kind)
            if attachment is None or attachment.size == 0:
                continue
            report = self._store_attachment(identity.id, attachment)
            reports.append(report)
            if report.ok:
                profile = profile.with_changes({PATH_COLUMNS[kind]: report.path})

        auth = self._auto_sign_in(draft)
        if any(not r.ok for r in reports):
            message = "Your account was created, but some documents could not be uploaded. You can retry the upload from your dashboard."
        elif auth is not None and auth.ok:
            message = "Registration complete."
        else:
            message = "Registration complete. Please log in."
        return RegistrationOutcome(
            status=REGISTERED,
            message=message,
            identity=identity,
            profile=profile,
            attachments=tuple(reports),
            auth=auth,
        )

    def retry_attachment(self, identity_id: str, attachment: Attachment) -> AttachmentReport:
        """Upload a document for an existing account and link it to the profile."""
        if attachment.kind not in ATTACHMENT_KINDS:
            return AttachmentReport(kind=attachment.kind, ok=False, error="invalid_attachment_kind")
        problem = validate_attachment(attachment.kind, attachment, required=True)
        if problem:
            return AttachmentReport(kind=attachment.kind, ok=False, error=problem)
        return self._store_attachment(identity_id, attachment)

    # --- steps -----------------------------------------------------------
    def _precheck(self, draft: RegistrationDraft, form: str) -> list[FieldError]:
        sections = SECTIONS[form]
        errors: list[FieldError] = []
        if self._directory.find_profile_by_personal_id(draft.personal_id) is not None:
            errors.append(
                FieldError("personal_id", "This Personal ID is already registered. Please use a different ID.", sections["personal_id"])
            )
        if form == ATTENDEE_FORM and draft.volunteer_id:
            referrer = self._directory.find_profile_by_personal_id(draft.volunteer_id)
            if referrer is None or not is_volunteer_family(referrer.role):
                errors.append(FieldError("volunteer_id", "Volunteer ID not found", sections["volunteer_id"]))
        return errors

    def _delete_credential(self, ctx: Dict[str, Any]) -> None:
        identity: Identity = ctx["credential"]
        logger.warning("Profile creation failed; deleting credential %s", identity.id)
        self._directory.delete_credential(identity.id)

    @staticmethod
    def _profile_fields(draft: RegistrationDraft, form: str) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "first_name": draft.first_name,
            "last_name": draft.last_name,
            "email": draft.email.lower(),
            "gender": draft.gender.lower(),
            "phone": normalize_phone(draft.phone),
            "personal_id": draft.personal_id,
            "faculty": draft.faculty,
            "profile_complete": True,
            "event_entry": False,
            "building_entry": False,
        }
        if form == VOLUNTEER_FORM:
            fields["role"] = draft.role
            fields["tl_team"] = draft.tl_team if draft.role == TEAM_LEADER else None
            return fields
        fields.update(
            {
                "role": ATTENDEE,
                "nationality": draft.nationality,
                "university": resolved_university(draft),
                "degree_level": draft.degree_level,
                "program": draft.program,
                "class_year": draft.class_year if draft.degree_level == "student" else None,
                "how_did_hear": draft.how_did_hear,
                "volunteer_id": draft.volunteer_id or None,
            }
        )
        return fields

    def _account_failure(self, failure: SagaFailed, form: str) -> RegistrationOutcome:
        sections = SECTIONS[form]
        cause = failure.cause
        if failure.compensation_errors:
            logger.error("Orphaned credential after failed registration (step=%s)", failure.step)
        if failure.step == "credential" and isinstance(cause, ConflictError):
            return _invalid([FieldError("email", "An account with this email already exists", sections["email"])])
        if failure.step == "profile" and isinstance(cause, ConflictError):
            return _invalid(
                [FieldError("personal_id", "This Personal ID is already registered. Please use a different ID.", sections["personal_id"])]
            )
        logger.warning("Registration step %s failed: %s", failure.step, cause.__class__.__name__)
        return _failed()

    def _store_attachment(self, identity_id: str, attachment: Attachment) -> AttachmentReport:
        kind = attachment.kind
        key = make_attachment_key(
            user_id=identity_id,
            filename=attachment.filename,
            epoch_ms=int(self._clock() * 1000),
            token=self._token(),
        )
        try:
            path = self._directory.upload_file(get_bucket_for_kind(kind), key, attachment.body, attachment.content_type)
            self._directory.update_profile(identity_id, {PATH_COLUMNS[kind]: path})
        except DirectoryError as exc:
            logger.warning("Attachment %s not stored: %s", kind, exc.code)
            return AttachmentReport(kind=kind, ok=False, error="upload_failed")
        return AttachmentReport(kind=kind, ok=True, path=path)

    def _auto_sign_in(self, draft: RegistrationDraft) -> Optional[AuthResult]:
        if self._sign_in is None:
            return None
        try:
            return self._sign_in(draft.email, draft.password)
        except Exception as exc:
            logger.info("Automatic sign-in after registration failed: %s", exc.__class__.__name__)
            return None


__all__ = [
    "AttachmentReport",
    "RegistrationOutcome",
    "RegistrationPipeline",
    "INVALID",
    "FAILED",
    "REGISTERED",
]
