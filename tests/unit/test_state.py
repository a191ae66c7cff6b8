import pytest

from py_trial_intake.exceptions import FieldError
from py_trial_intake.models import DocumentType, Notice, NoticeLevel, StoredFile
from py_trial_intake.reconciler import NOT_PROVIDED
from py_trial_intake.state import (
    EXTRACTION_FAILED_MESSAGE,
    AddRow,
    ClearNotices,
    ExtractionFailed,
    ExtractionStarted,
    ExtractionSucceeded,
    RaiseNotice,
    RemoveRow,
    SetFieldValue,
    SubmitRequested,
    TouchField,
    UploadFailed,
    UploadStarted,
    UploadSucceeded,
    initial_state,
    reduce,
)
from py_trial_intake.uploads import UploadStatus

pytestmark = pytest.mark.unit

LABEL = DocumentType.LABEL


@pytest.fixture
def state():
    return initial_state()


def test_initial_state_merges_initial_data():
    state = initial_state({"study_identification": {"sponsor_name": "Acme"}})

    assert state.values["study_identification"]["sponsor_name"] == "Acme"
    assert state.values["regulatory_requirements"]["irb_approvals_required"] is True
    assert "study_identification.sponsor_name" not in state.errors
    assert "study_identification.protocol_number" in state.errors
    assert state.touched == frozenset()


def test_set_field_returns_new_state(state):
    new_state = reduce(state, SetFieldValue(path="study_overview.blinding", value="Open"))

    assert new_state.values["study_overview"]["blinding"] == "Open"
    assert state.values["study_overview"]["blinding"] == ""
    assert "study_overview.blinding" not in new_state.errors


def test_set_field_rejects_unknown_path(state):
    with pytest.raises(FieldError):
        reduce(state, SetFieldValue(path="study_overview.nope", value="x"))


def test_set_field_rejects_wrong_type(state):
    with pytest.raises(FieldError):
        reduce(state, SetFieldValue(path="study_overview.randomization", value="yes"))


def test_set_field_rejects_uploaded_files(state):
    with pytest.raises(FieldError):
        reduce(
            state,
            SetFieldValue(path="document_uploads.uploaded_files.label", value=[]),
        )


def test_set_single_row_of_repeatable_field(state):
    path = "study_endpoints.primary_endpoints"
    state = reduce(state, AddRow(path=path))
    state = reduce(state, SetFieldValue(path=f"{path}.1", value="PFS"))

    assert state.values["study_endpoints"]["primary_endpoints"] == ["", "PFS"]

    with pytest.raises(FieldError):
        reduce(state, SetFieldValue(path=f"{path}.5", value="x"))


def test_add_and_remove_rows(state):
    path = "regulatory_requirements.countries_for_submission"
    state = reduce(state, SetFieldValue(path=path, value=["DE", "FR", "US"]))
    state = reduce(state, RemoveRow(path=path, index=1))

    assert state.values["regulatory_requirements"]["countries_for_submission"] == ["DE", "US"]

    with pytest.raises(FieldError):
        reduce(state, RemoveRow(path=path, index=7))
    with pytest.raises(FieldError):
        reduce(state, AddRow(path="study_overview.blinding"))


def test_touch_reveals_error(state):
    assert state.visible_errors == {}

    state = reduce(state, TouchField(path="study_identification.protocol_number"))

    assert state.visible_errors == {"study_identification.protocol_number": "Required"}


def test_upload_flow_updates_manifest_and_values(state):
    state = reduce(state, UploadStarted(document_type=LABEL, original_name="label.pdf"))
    assert state.uploads.status(LABEL) is UploadStatus.UPLOADING

    state = reduce(
        state,
        UploadSucceeded(
            document_type=LABEL,
            original_name="label.pdf",
            stored_file=StoredFile(filename="1700000000-label.pdf", size=1024),
        ),
    )

    assert state.uploads.status(LABEL) is UploadStatus.UPLOADED
    assert state.manifest[0].to_wire() == {
        "filename": "1700000000-label.pdf",
        "originalname": "label.pdf",
        "documentType": "label",
    }
    assert state.values["document_uploads"]["uploaded_files"]["label"] == [
        {"filename": "1700000000-label.pdf", "size": 1024}
    ]
    assert state.values["document_uploads"]["primary_documents"]["label"] is True
    assert state.can_finish_uploading is True


def test_upload_failure_adds_notice_only(state):
    state = reduce(state, UploadStarted(document_type=LABEL, original_name="a.pdf"))
    values_before = state.values

    state = reduce(
        state, UploadFailed(document_type=LABEL, original_name="a.pdf", detail="Disk full")
    )

    assert state.values == values_before
    assert state.manifest == ()
    assert state.notices == (
        Notice(level=NoticeLevel.ERROR, message="Error uploading file: Disk full"),
    )


def test_extraction_success_applies_result(state):
    state = reduce(state, SetFieldValue(path="study_overview.therapeutic_area", value="Oncology"))
    state = reduce(state, ExtractionStarted())
    assert state.is_parsing is True
    assert state.can_finish_uploading is False

    state = reduce(
        state,
        ExtractionSucceeded(result={"study_identification": {"sponsor_name": ""}}),
    )

    assert state.is_parsing is False
    assert state.values["study_identification"]["sponsor_name"] == NOT_PROVIDED
    assert state.values["study_overview"]["therapeutic_area"] == "Oncology"
    assert "study_identification.sponsor_name" not in state.errors


def test_extraction_failure_keeps_values(state):
    started = reduce(state, ExtractionStarted())
    failed = reduce(started, ExtractionFailed(detail="timeout"))

    assert failed.values == state.values
    assert failed.is_parsing is False
    assert failed.notices[-1].message == EXTRACTION_FAILED_MESSAGE


def test_submit_touches_every_field(state):
    state = reduce(state, SubmitRequested())

    assert state.submit_count == 1
    assert "study_identification.protocol_number" in state.visible_errors
    assert "study_treatments.regimen_arm_1" in state.touched
    assert state.notices[-1].level is NoticeLevel.ERROR


def test_notices_can_be_raised_and_cleared(state):
    notice = Notice(level=NoticeLevel.INFO, message="hello")
    state = reduce(state, RaiseNotice(notice=notice))
    assert state.notices == (notice,)

    state = reduce(state, ClearNotices())
    assert state.notices == ()


def test_unknown_action_raises(state):
    with pytest.raises(TypeError):
        reduce(state, object())
