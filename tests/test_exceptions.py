"""Tests for the exception hierarchy."""
import pytest
from sqlalchemy.exc import OperationalError

from notegraph.exceptions import (AlreadyExistsError, ErrorCode, InternalError,
                                  InvalidReferenceError, LinkAlreadyExistsError,
                                  LinkNotFoundError, LinkStateError, NotegraphError,
                                  NoteNotFoundError, NotFoundError,
                                  OperationCancelledError, ParseFailureError)
from notegraph.models.schema import NoteCreate


class TestSerialization:

    def test_to_dict(self):
        error = NoteNotFoundError(42)
        assert error.to_dict() == {
            "error": "NoteNotFoundError",
            "code": 1001,
            "code_name": "NOTE_NOT_FOUND",
            "message": "Note with ID '42' not found",
            "details": {"entity": "note", "id": 42},
        }

    def test_str_includes_code_and_details(self):
        error = AlreadyExistsError("Title taken", title="Inbox", collection_id=1)
        assert str(error) == "[NOTE_ALREADY_EXISTS] Title taken (title=Inbox, collection_id=1)"

    def test_str_without_details(self):
        assert str(NotegraphError("plain")) == "[VALIDATION_FAILED] plain"


class TestHierarchy:

    @pytest.mark.parametrize(
        "error, code",
        [
            (NoteNotFoundError(1), ErrorCode.NOTE_NOT_FOUND),
            (LinkNotFoundError(1), ErrorCode.LINK_NOT_FOUND),
            (AlreadyExistsError("x"), ErrorCode.NOTE_ALREADY_EXISTS),
            (LinkAlreadyExistsError("x"), ErrorCode.LINK_ALREADY_EXISTS),
            (InvalidReferenceError("x"), ErrorCode.INVALID_REFERENCE),
            (ParseFailureError("x"), ErrorCode.CONTENT_PARSE_FAILED),
            (InternalError("x"), ErrorCode.STORAGE_WRITE_FAILED),
            (LinkStateError("x"), ErrorCode.LINK_ILLEGAL_TRANSITION),
            (OperationCancelledError("create_note"), ErrorCode.OPERATION_CANCELLED),
        ],
    )
    def test_codes(self, error, code):
        assert isinstance(error, NotegraphError)
        assert error.code == code

    def test_not_found_errors_share_a_base(self):
        assert isinstance(NoteNotFoundError(1), NotFoundError)
        assert isinstance(LinkNotFoundError(1), NotFoundError)

    def test_internal_error_keeps_original(self):
        original = OperationalError("INSERT", {}, Exception("disk I/O error"))
        error = InternalError("Storage failure", operation="create_note", original_error=original)
        assert error.original_error is original
        assert error.details["operation"] == "create_note"
        assert "disk I/O error" in error.details["original_error"]

    def test_cancelled_message(self):
        error = OperationCancelledError("replace_note", note_id=7)
        assert error.message == "replace_note cancelled before commit"
        assert error.details == {"operation": "replace_note", "note_id": 7}

    def test_link_duplicate_details(self):
        error = LinkAlreadyExistsError("dup", source_id=4, target="Some title")
        assert isinstance(error, AlreadyExistsError)
        assert error.details == {"source_id": 4, "target": "Some title"}
        assert error.source_id == 4

    def test_link_state_details(self):
        error = LinkStateError("no", link_id=3, current_state="broken", requested_state="resolved")
        assert error.details == {
            "link_id": 3,
            "current_state": "broken",
            "requested_state": "resolved",
        }


def test_delete_failure_uses_delete_code(sync_service, monkeypatch):
    note_id = sync_service.create_note(NoteCreate(title="Locked"))

    def _fail(*args, **kwargs):
        raise OperationalError("DELETE", {}, Exception("database is locked"))

    monkeypatch.setattr(sync_service.notes, "delete", _fail)

    with pytest.raises(InternalError) as exc_info:
        sync_service.delete_note(note_id)
    assert exc_info.value.code == ErrorCode.STORAGE_DELETE_FAILED
    assert sync_service.get_note(note_id) is not None
