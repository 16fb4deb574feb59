"""Tests for LinkService: driving pending links to resolution."""
import pytest

from notegraph.exceptions import (InternalError, LinkNotFoundError, LinkStateError,
                                  NoteNotFoundError)
from notegraph.models.schema import LinkState, NoteCreate, NoteReplace


def _rename_onto_existing_link(sync_service, link_service):
    """Resolve [[Foo|x]], then rename Foo to Bar so the pending [[Bar|x]] duplicates it."""
    source = sync_service.create_note(NoteCreate(title="Src", body="[[Foo|x]] [[Bar|x]]"))
    foo = sync_service.create_note(NoteCreate(title="Foo"))
    assert link_service.sweep_pending().resolved == 1
    sync_service.replace_note(NoteReplace(id=foo, title="Bar"))
    return source, foo


class TestResolveBacklinks:

    def test_pending_link_resolves_once_target_exists(self, sync_service, link_service):
        source = sync_service.create_note(NoteCreate(title="Source", body="See [[Later|soon]]"))
        pending = sync_service.get_outgoing_links(source)
        assert [link.state for link in pending] == [LinkState.PENDING]

        target = sync_service.create_note(NoteCreate(title="Later"))
        resolved = link_service.resolve_backlinks(target)

        assert [link.id for link in resolved] == [pending[0].id]
        link = sync_service.get_outgoing_links(source)[0]
        assert link.state == LinkState.RESOLVED
        assert link.target_id == target
        assert link.target_title is None
        assert link.display_text == "soon"
        assert [b.source_id for b in sync_service.get_backlinks(target)] == [source]

    def test_only_matching_titles_resolve(self, sync_service, link_service):
        sync_service.create_note(NoteCreate(title="Source", body="[[One]] [[Two]]"))
        one = sync_service.create_note(NoteCreate(title="One"))

        resolved = link_service.resolve_backlinks(one)

        assert len(resolved) == 1
        assert link_service.links.count_pending() == 1

    def test_nothing_pending(self, sync_service, link_service):
        note_id = sync_service.create_note(NoteCreate(title="Lonely"))
        assert link_service.resolve_backlinks(note_id) == []

    def test_missing_note(self, link_service):
        with pytest.raises(NoteNotFoundError):
            link_service.resolve_backlinks(404)

    def test_duplicate_of_resolved_link_is_dropped(self, sync_service, link_service):
        source, foo = _rename_onto_existing_link(sync_service, link_service)

        assert link_service.resolve_backlinks(foo) == []

        links = sync_service.get_outgoing_links(source)
        assert [(link.target_id, link.display_text, link.state) for link in links] == [
            (foo, "x", LinkState.RESOLVED)
        ]
        assert link_service.links.count_pending() == 0

    def test_only_lowest_id_owner_takes_backlinks(
        self, sync_service, link_service, second_collection
    ):
        source = sync_service.create_note(NoteCreate(title="Source", body="[[Dup]]"))
        first = sync_service.create_note(NoteCreate(title="Dup"))
        second = sync_service.create_note(NoteCreate(title="Dup", collection_id=second_collection))

        assert link_service.resolve_backlinks(second) == []
        assert link_service.links.count_pending() == 1

        resolved = link_service.resolve_backlinks(first)
        assert [link.target_id for link in resolved] == [first]
        assert sync_service.get_outgoing_links(source)[0].target_id == first


class TestSweepPending:

    def test_sweep_resolves_matches(self, sync_service, link_service):
        source = sync_service.create_note(NoteCreate(title="Source", body="[[A]] [[B]] [[C]]"))
        a = sync_service.create_note(NoteCreate(title="A"))
        c = sync_service.create_note(NoteCreate(title="C"))

        result = link_service.sweep_pending()

        assert result.examined == 3
        assert result.resolved == 2
        targets = sorted(
            link.target_id for link in sync_service.get_outgoing_links(source) if link.target_id
        )
        assert targets == sorted([a, c])
        assert [link.target_title for link in link_service.links.list_pending()] == ["B"]

    def test_sweep_respects_limit(self, sync_service, link_service):
        sync_service.create_note(NoteCreate(title="Source", body="[[A]] [[B]] [[C]]"))
        for title in ("A", "B", "C"):
            sync_service.create_note(NoteCreate(title=title))

        first = link_service.sweep_pending(limit=2)
        assert (first.examined, first.resolved) == (2, 2)

        second = link_service.sweep_pending(limit=2)
        assert (second.examined, second.resolved) == (1, 1)
        assert link_service.links.count_pending() == 0

    def test_sweep_can_mark_unmatched_broken(self, sync_service, link_service):
        sync_service.create_note(NoteCreate(title="Source", body="[[Found]] [[Lost]]"))
        sync_service.create_note(NoteCreate(title="Found"))

        result = link_service.sweep_pending(mark_unmatched_broken=True)

        assert result.resolved == 1
        broken = link_service.links.list_broken()
        assert [(link.target_title, link.target_id) for link in broken] == [("Lost", None)]
        assert link_service.links.count_pending() == 0

    def test_sweep_leaves_unmatched_pending_by_default(self, sync_service, link_service):
        sync_service.create_note(NoteCreate(title="Source", body="[[Lost]]"))
        result = link_service.sweep_pending()
        assert (result.examined, result.resolved) == (1, 0)
        assert link_service.links.count_pending() == 1
        assert link_service.links.count_broken() == 0

    def test_sweep_merges_duplicate_and_continues(self, sync_service, link_service):
        source, foo = _rename_onto_existing_link(sync_service, link_service)
        other = sync_service.create_note(NoteCreate(title="Src2", body="[[Qux]]"))
        qux = sync_service.create_note(NoteCreate(title="Qux"))

        result = link_service.sweep_pending()

        assert (result.examined, result.resolved, result.merged) == (2, 1, 1)
        assert link_service.links.count_pending() == 0
        assert sync_service.get_outgoing_links(other)[0].target_id == qux
        assert [link.target_id for link in sync_service.get_outgoing_links(source)] == [foo]

        again = link_service.sweep_pending()
        assert (again.examined, again.resolved, again.merged) == (0, 0, 0)

    def test_sweep_failure_is_internal_error(self, sync_service, link_service, monkeypatch):
        from sqlalchemy.exc import OperationalError

        sync_service.create_note(NoteCreate(title="Source", body="[[A]]"))
        sync_service.create_note(NoteCreate(title="A"))

        def _fail(*args, **kwargs):
            raise OperationalError("UPDATE", {}, Exception("database is locked"))

        monkeypatch.setattr(link_service.links, "resolve", _fail)

        with pytest.raises(InternalError):
            link_service.sweep_pending()
        assert link_service.links.count_pending() == 1


class TestSingleTransitions:

    def test_resolve_link(self, sync_service, link_service):
        source = sync_service.create_note(NoteCreate(title="Source", body="[[Other name]]"))
        target = sync_service.create_note(NoteCreate(title="Actual"))
        link_id = sync_service.get_outgoing_links(source)[0].id

        link = link_service.resolve_link(link_id, target)

        assert link.state == LinkState.RESOLVED
        assert link.target_id == target

    def test_mark_broken_then_resolve_is_illegal(self, sync_service, link_service):
        source = sync_service.create_note(NoteCreate(title="Source", body="[[Gone]]"))
        link_id = sync_service.get_outgoing_links(source)[0].id

        link = link_service.mark_broken(link_id)
        assert link.state == LinkState.BROKEN
        assert link.target_title == "Gone"

        with pytest.raises(LinkStateError):
            link_service.resolve_link(link_id, source)

    def test_unknown_link(self, link_service):
        with pytest.raises(LinkNotFoundError):
            link_service.mark_broken(999)
