"""
Registration pipeline: ordered account creation with compensation, best-effort
documents and the automatic sign-in fallback.
"""
from __future__ import annotations

from identity_access.directory import ConflictError, DirectoryError
from identity_access.directory_memory import InMemoryDirectory
from identity_access.session import IdentityManager
from registration.drafts import Attachment
from registration.pipeline import FAILED, INVALID, REGISTERED, RegistrationPipeline
from registration.validation import ATTENDEE_FORM, OTHER_UNIVERSITY, VOLUNTEER_FORM

from utils.drafts import attendee_draft, id_scan, volunteer_draft
from utils.sessions import seed_participant


def _sign_in_with(directory):
    def sign_in(email, password):
        with IdentityManager(directory) as manager:
            return manager.sign_in(email, password)

    return sign_in


def _pipeline(directory, **kwargs):
    return RegistrationPipeline(directory, clock=lambda: 1700000000.0, token_factory=lambda: "abc123", **kwargs)


class _ProfileWritesFail(InMemoryDirectory):
    def create_profile(self, identity_id, fields):
        raise DirectoryError("unavailable")


class _StorageDown(InMemoryDirectory):
    def __init__(self):
        super().__init__()
        self.storage_down = True

    def upload_file(self, bucket, path, body, content_type):
        if self.storage_down:
            raise DirectoryError("storage_unavailable")
        return super().upload_file(bucket, path, body, content_type)


def test_attendee_registration_creates_account_profile_and_document():
    directory = InMemoryDirectory()
    outcome = _pipeline(directory, sign_in=_sign_in_with(directory)).submit(attendee_draft(), ATTENDEE_FORM)

    assert outcome.status == REGISTERED
    assert outcome.signed_in
    assert outcome.message == "Registration complete."
    profile = directory.get_profile(outcome.identity.id)
    assert profile.role == "attendee"
    assert profile.phone == "01012345678"
    assert profile.profile_complete and not profile.event_entry and not profile.building_entry
    expected_key = f"{outcome.identity.id}/1700000000000-abc123.png"
    assert profile.university_id_path == expected_key
    assert directory.files[("university-ids", expected_key)] == b"x" * 10
    assert outcome.profile.university_id_path == expected_key


def test_invalid_draft_touches_nothing():
    directory = InMemoryDirectory()
    outcome = _pipeline(directory).submit(attendee_draft(first_name="", program=""), ATTENDEE_FORM)
    assert outcome.status == INVALID
    assert outcome.first_error_section == 1
    assert {e.field for e in outcome.errors} == {"first_name", "program"}
    assert directory._credentials == {}


def test_duplicate_personal_id_is_a_field_error():
    directory = InMemoryDirectory()
    seed_participant(directory, "first@example.com", personal_id="29801011234567")
    outcome = _pipeline(directory).submit(attendee_draft(), ATTENDEE_FORM)
    assert outcome.status == INVALID
    assert [(e.field, e.section) for e in outcome.errors] == [("personal_id", 1)]
    assert "mona@example.com" not in directory._credentials


def test_duplicate_email_is_a_field_error():
    directory = InMemoryDirectory()
    seed_participant(directory, "mona@example.com")
    outcome = _pipeline(directory).submit(attendee_draft(), ATTENDEE_FORM)
    assert outcome.status == INVALID
    assert [e.field for e in outcome.errors] == ["email"]


def test_referrer_must_be_a_volunteer():
    directory = InMemoryDirectory()
    seed_participant(directory, "att@example.com", "attendee", personal_id="29701011111111")
    seed_participant(directory, "vol@example.com", "ushers", personal_id="29701012222222")

    bad = _pipeline(directory).submit(attendee_draft(volunteer_id="29701011111111"), ATTENDEE_FORM)
    assert bad.status == INVALID
    assert [e.field for e in bad.errors] == ["volunteer_id"]

    good = _pipeline(directory).submit(attendee_draft(volunteer_id="29701012222222"), ATTENDEE_FORM)
    assert good.status == REGISTERED
    assert directory.get_profile(good.identity.id).volunteer_id == "29701012222222"


def test_profile_failure_deletes_credential():
    directory = _ProfileWritesFail()
    outcome = _pipeline(directory).submit(attendee_draft(), ATTENDEE_FORM)
    assert outcome.status == FAILED
    # No credential without a profile is left behind.
    assert directory._credentials == {}
    assert directory._tokens == {}


def test_upload_failure_keeps_account_and_is_retryable():
    directory = _StorageDown()
    pipeline = _pipeline(directory)
    outcome = pipeline.submit(attendee_draft(), ATTENDEE_FORM)

    assert outcome.status == REGISTERED
    assert [(a.kind, a.error) for a in outcome.attachment_failures] == [("university_id", "upload_failed")]
    assert "could not be uploaded" in outcome.message
    assert directory.get_profile(outcome.identity.id).university_id_path is None

    directory.storage_down = False
    report = pipeline.retry_attachment(outcome.identity.id, id_scan())
    assert report.ok
    assert directory.get_profile(outcome.identity.id).university_id_path == report.path


def test_retry_rejects_unknown_kind_and_bad_file():
    pipeline = _pipeline(InMemoryDirectory())
    odd = Attachment(kind="avatar", filename="a.png", content_type="image/png", body=b"x")
    assert pipeline.retry_attachment("u1", odd).error == "invalid_attachment_kind"
    assert pipeline.retry_attachment("u1", id_scan(name="id.exe")).error.startswith("File type must be one of")


def test_failed_auto_sign_in_asks_to_log_in():
    def broken_sign_in(email, password):
        raise DirectoryError("unavailable")

    directory = InMemoryDirectory()
    outcome = _pipeline(directory, sign_in=broken_sign_in).submit(attendee_draft(), ATTENDEE_FORM)
    assert outcome.status == REGISTERED
    assert not outcome.signed_in
    assert outcome.message == "Registration complete. Please log in."


def test_volunteer_registration_stores_role_and_team():
    directory = InMemoryDirectory()
    outcome = _pipeline(directory).submit(volunteer_draft(role="team_leader", tl_team="media"), VOLUNTEER_FORM)
    assert outcome.status == REGISTERED
    profile = directory.get_profile(outcome.identity.id)
    assert profile.role == "team_leader"
    assert profile.tl_team == "media"
    assert profile.university is None


class _CountingDirectory(InMemoryDirectory):
    """Counts account writes; credential or profile creation can be made to fail."""

    def __init__(self, *, credential_error=None, profile_error=None):
        super().__init__()
        self.credential_error = credential_error
        self.profile_error = profile_error
        self.calls = {"create_credential": 0, "create_profile": 0, "delete_credential": 0}

    def create_credential(self, email, password):
        self.calls["create_credential"] += 1
        if self.credential_error is not None:
            raise self.credential_error
        return super().create_credential(email, password)

    def create_profile(self, identity_id, fields):
        self.calls["create_profile"] += 1
        if self.profile_error is not None:
            raise self.profile_error
        return super().create_profile(identity_id, fields)

    def delete_credential(self, identity_id):
        self.calls["delete_credential"] += 1
        return super().delete_credential(identity_id)


def test_credential_failure_never_creates_a_profile():
    for error in (DirectoryError("unavailable"), ConflictError("email_taken")):
        directory = _CountingDirectory(credential_error=error)
        outcome = _pipeline(directory).submit(attendee_draft(), ATTENDEE_FORM)
        assert outcome.status in (FAILED, INVALID)
        assert directory.calls == {"create_credential": 1, "create_profile": 0, "delete_credential": 0}
        assert directory._profiles == {}


def test_profile_failure_deletes_the_credential_exactly_once():
    directory = _CountingDirectory(profile_error=DirectoryError("unavailable"))
    outcome = _pipeline(directory).submit(attendee_draft(), ATTENDEE_FORM)
    assert outcome.status == FAILED
    assert directory.calls == {"create_credential": 1, "create_profile": 1, "delete_credential": 1}
    assert directory._credentials == {}


def test_other_university_stores_the_custom_name():
    directory = InMemoryDirectory()
    draft = attendee_draft(university=OTHER_UNIVERSITY, custom_university="Nile Valley Institute")
    outcome = _pipeline(directory).submit(draft, ATTENDEE_FORM)
    assert outcome.status == REGISTERED
    assert directory.get_profile(outcome.identity.id).university == "Nile Valley Institute"
    assert outcome.profile.university == "Nile Valley Institute"

    missing = _pipeline(InMemoryDirectory()).submit(attendee_draft(university=OTHER_UNIVERSITY), ATTENDEE_FORM)
    assert missing.status == INVALID
    assert [e.field for e in missing.errors] == ["custom_university"]
