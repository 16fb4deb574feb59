"""Tests for change notifier delivery."""
from notegraph.models.schema import ChangeEvent, ChangeKind, NoteCreate
from notegraph.services.note_sync_service import NoteSyncService
from notegraph.services.notifier import (ChangeNotifier, CompositeNotifier,
                                         NullNotifier, dispatch)
from tests.fakes import FailingNotifier, RecordingNotifier


def _event(note_id=1, kind=ChangeKind.CREATED):
    return ChangeEvent(note_id=note_id, kind=kind)


def test_notifiers_satisfy_protocol():
    assert isinstance(NullNotifier(), ChangeNotifier)
    assert isinstance(RecordingNotifier(), ChangeNotifier)
    assert isinstance(CompositeNotifier([]), ChangeNotifier)


def test_dispatch_reports_delivery():
    recorder = RecordingNotifier()
    assert dispatch(recorder, _event()) is True
    assert recorder.note_ids() == [1]


def test_dispatch_swallows_failures(caplog):
    failing = FailingNotifier()
    assert dispatch(failing, _event(note_id=9, kind=ChangeKind.DELETED)) is False
    assert failing.calls == 1
    assert "note 9 (deleted)" in caplog.text


def test_composite_keeps_delivering_after_a_failure():
    first, last = RecordingNotifier(), RecordingNotifier()
    composite = CompositeNotifier([first, FailingNotifier(), last])

    composite.notify(_event(note_id=3))

    assert first.note_ids() == [3]
    assert last.note_ids() == [3]


def test_service_with_composite_notifier(session_factory):
    recorder = RecordingNotifier()
    service = NoteSyncService(
        session_factory=session_factory,
        notifier=CompositeNotifier([FailingNotifier(), recorder]),
    )

    note_id = service.create_note(NoteCreate(title="Fan out"))
    service.delete_note(note_id)

    assert recorder.kinds() == [ChangeKind.CREATED, ChangeKind.DELETED]


def test_service_defaults_to_null_notifier(session_factory):
    service = NoteSyncService(session_factory=session_factory)
    assert isinstance(service.notifier, NullNotifier)
    assert service.create_note(NoteCreate(title="Quiet")) > 0
