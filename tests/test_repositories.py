"""Tests for the note, tag and metadata repositories."""
import pytest

from notegraph.exceptions import AlreadyExistsError, InvalidReferenceError, NoteNotFoundError
from notegraph.models.schema import NoteCreate, NoteReplace


class TestNoteRepository:

    def test_create_and_get(self, note_repository):
        note = note_repository.create(NoteCreate(title="  Padded  ", body="text"))

        assert note.title == "Padded"
        assert note.version == 1
        assert note_repository.get(note.id).body == "text"
        assert note_repository.get_by_uuid(note.uuid).id == note.id
        assert note_repository.get_by_title("Padded").id == note.id

    def test_duplicate_title(self, note_repository):
        note_repository.create(NoteCreate(title="Same"))
        with pytest.raises(AlreadyExistsError) as exc_info:
            note_repository.create(NoteCreate(title="Same"))
        assert exc_info.value.details["title"] == "Same"

    def test_duplicate_uuid(self, note_repository):
        first = note_repository.create(NoteCreate(title="First"))
        with pytest.raises(AlreadyExistsError):
            note_repository.create(NoteCreate(title="Second", uuid=first.uuid))

    def test_unknown_collection(self, note_repository):
        with pytest.raises(InvalidReferenceError):
            note_repository.create(NoteCreate(title="Nowhere", collection_id=42))

    def test_update_bumps_version(self, note_repository):
        note = note_repository.create(NoteCreate(title="Draft"))
        updated = note_repository.update(
            NoteReplace(id=note.id, title="Final", body="done", description="desc")
        )
        assert updated.version == 2
        assert updated.title == "Final"
        assert updated.description == "desc"
        assert updated.uuid == note.uuid
        assert updated.created_at == note.created_at

    def test_update_missing(self, note_repository):
        with pytest.raises(NoteNotFoundError):
            note_repository.update(NoteReplace(id=5, title="Missing"))

    def test_delete(self, note_repository):
        note = note_repository.create(NoteCreate(title="Bye"))
        note_repository.delete(note.id)
        assert note_repository.get(note.id) is None
        assert not note_repository.exists(note.id)
        with pytest.raises(NoteNotFoundError):
            note_repository.delete(note.id)

    def test_title_lookup_by_collection(self, note_repository, second_collection):
        in_default = note_repository.create(NoteCreate(title="Twin"))
        in_second = note_repository.create(NoteCreate(title="Twin", collection_id=second_collection))

        assert note_repository.get_by_title("Twin").id == in_default.id
        assert note_repository.get_by_title("Twin", second_collection).id == in_second.id
        assert note_repository.get_by_title_global("Twin").id == in_default.id
        assert note_repository.find_id_by_title_global("Twin") == in_default.id
        assert note_repository.find_id_by_title_global("Nobody") is None

    def test_count_and_list_ids(self, note_repository, second_collection):
        a = note_repository.create(NoteCreate(title="A"))
        b = note_repository.create(NoteCreate(title="B"))
        c = note_repository.create(NoteCreate(title="C", collection_id=second_collection))

        assert note_repository.count() == 3
        assert note_repository.count(second_collection) == 1
        assert note_repository.list_ids() == [a.id, b.id, c.id]
        assert note_repository.list_ids(1) == [a.id, b.id]

    def test_next_untitled_title(self, note_repository, second_collection):
        assert note_repository.next_untitled_title(1) == "Untitled 1"

        for title in ("Untitled 1", "Untitled 3", "Untitled x", "Untitled 10 copy"):
            note_repository.create(NoteCreate(title=title))

        assert note_repository.next_untitled_title(1) == "Untitled 4"
        assert note_repository.next_untitled_title(second_collection) == "Untitled 1"

    def test_next_untitled_title_escapes_prefix(self, note_repository):
        note_repository.create(NoteCreate(title="100% 2"))
        note_repository.create(NoteCreate(title="100x 9"))
        assert note_repository.next_untitled_title(1, prefix="100%") == "100% 3"


class TestTagRepository:

    def test_get_or_create_is_idempotent(self, tag_repository):
        first = tag_repository.get_or_create("python")
        second = tag_repository.get_or_create("python")
        assert first == second
        assert [tag.name for tag in tag_repository.get_all()] == ["python"]

    def test_add_to_note_and_counts(self, note_repository, tag_repository):
        a = note_repository.create(NoteCreate(title="A"))
        b = note_repository.create(NoteCreate(title="B"))
        tag_repository.add_to_note(a.id, ["x", "y"])
        tag_repository.add_to_note(b.id, ["y"])
        tag_repository.get_or_create("unused")

        assert [tag.name for tag in tag_repository.get_for_note(a.id)] == ["x", "y"]
        assert tag_repository.get_with_counts() == {"x": 1, "y": 2, "unused": 0}

    def test_add_same_tag_twice(self, note_repository, tag_repository):
        note = note_repository.create(NoteCreate(title="A"))
        tag_repository.add_to_note(note.id, ["dup"])
        tag_repository.add_to_note(note.id, ["dup"])
        assert len(tag_repository.get_for_note(note.id)) == 1

    def test_find_note_ids(self, note_repository, tag_repository):
        a = note_repository.create(NoteCreate(title="A"))
        b = note_repository.create(NoteCreate(title="B"))
        c = note_repository.create(NoteCreate(title="C"))
        tag_repository.add_to_note(a.id, ["red", "blue"])
        tag_repository.add_to_note(b.id, ["red"])
        tag_repository.add_to_note(c.id, ["blue"])

        assert tag_repository.find_note_ids_by_tag("red") == [a.id, b.id]
        assert tag_repository.find_note_ids_by_tags(["red", "blue"]) == [a.id, b.id, c.id]
        assert tag_repository.find_note_ids_by_tags(["red", "blue"], match_all=True) == [a.id]
        assert tag_repository.find_note_ids_by_tags(["red", "red"], match_all=True) == [a.id, b.id]
        assert tag_repository.find_note_ids_by_tags([]) == []

    def test_delete_for_note_keeps_tag_rows(self, note_repository, tag_repository):
        note = note_repository.create(NoteCreate(title="A"))
        tag_repository.add_to_note(note.id, ["keep"])

        assert tag_repository.delete_for_note(note.id) == 1
        assert tag_repository.get_for_note(note.id) == []
        assert tag_repository.get("keep") is not None

    def test_delete_unused(self, note_repository, tag_repository):
        note = note_repository.create(NoteCreate(title="A"))
        tag_repository.add_to_note(note.id, ["used"])
        tag_repository.get_or_create("stale")

        assert tag_repository.delete_unused() == 1
        assert [tag.name for tag in tag_repository.get_all()] == ["used"]


class TestMetaRepository:

    def test_insert_and_read(self, note_repository, meta_repository):
        note = note_repository.create(NoteCreate(title="A"))
        inserted = meta_repository.insert_many(note.id, {"status": "draft", "empty": None})

        assert inserted == 2
        assert meta_repository.get_dict_for_note(note.id) == {"empty": None, "status": "draft"}
        assert [entry.key for entry in meta_repository.get_for_note(note.id)] == ["empty", "status"]

    def test_insert_nothing(self, note_repository, meta_repository):
        note = note_repository.create(NoteCreate(title="A"))
        assert meta_repository.insert_many(note.id, {}) == 0

    def test_find_by_key(self, note_repository, meta_repository):
        a = note_repository.create(NoteCreate(title="A"))
        b = note_repository.create(NoteCreate(title="B"))
        meta_repository.insert_many(a.id, {"status": "draft", "owner": "kim"})
        meta_repository.insert_many(b.id, {"status": "done"})

        assert [entry.note_id for entry in meta_repository.find_by_key("status")] == [a.id, b.id]
        assert [entry.note_id for entry in meta_repository.find_by_key("status", "done")] == [b.id]
        assert meta_repository.distinct_keys() == ["owner", "status"]

    def test_delete_for_note(self, note_repository, meta_repository):
        note = note_repository.create(NoteCreate(title="A"))
        meta_repository.insert_many(note.id, {"a": "1", "b": "2"})
        assert meta_repository.delete_for_note(note.id) == 2
        assert meta_repository.get_dict_for_note(note.id) == {}
