"""Notes service tests."""

import pytest

from notewise.notes import NoteCreate, NoteNotFoundError, NoteUpdate


def test_create_and_get(notes_service):
    note = notes_service.create("alice", NoteCreate(title="Plan", content="Body", tags=["a", " a ", "", "b"]))

    fetched = notes_service.get(note.id, "alice")

    assert fetched.title == "Plan"
    assert fetched.tags == ["a", "b"]
    assert fetched.created_at.tzinfo is not None


def test_notes_are_owner_scoped(notes_service, make_note):
    note = make_note("Private")

    with pytest.raises(NoteNotFoundError):
        notes_service.get(note.id, "bob")


def test_update_is_partial(notes_service, make_note):
    note = make_note("Plan", "Body", tags=["work"])

    updated = notes_service.update(note.id, "alice", NoteUpdate(content="New body"))

    assert updated.title == "Plan"
    assert updated.content == "New body"
    assert updated.tags == ["work"]
    assert updated.updated_at >= note.updated_at


def test_soft_deleted_notes_disappear(notes_service, make_note):
    note = make_note("Gone")

    notes_service.soft_delete(note.id, "alice")

    with pytest.raises(NoteNotFoundError):
        notes_service.get(note.id, "alice")
    assert notes_service.get(note.id, "alice", include_deleted=True).is_deleted
    assert notes_service.list_for_owner("alice") == []


def test_list_for_owner_excludes_and_orders(notes_service, make_note):
    first = make_note("First")
    second = make_note("Second")
    make_note("Other", owner_id="bob")

    assert [n.id for n in notes_service.list_for_owner("alice")] == [second.id, first.id]
    assert [n.id for n in notes_service.list_for_owner("alice", exclude_id=second.id)] == [first.id]
    with pytest.raises(ValueError):
        notes_service.list_for_owner("alice", order_by="title")


def test_find_candidates_matches_title_body_and_tags(notes_service, make_note):
    by_title = make_note("Roadmap")
    by_body = make_note("Plan", "the roadmap for May")
    by_tag = make_note("Sync", tags=["roadmap"])
    make_note("Groceries", "milk")
    make_note("Roadmap", owner_id="bob")

    found = notes_service.find_candidates("alice", "roadmap", ["roadmap"], limit=10)

    assert {n.id for n in found} == {by_title.id, by_body.id, by_tag.id}


def test_find_candidates_treats_wildcards_literally(notes_service, make_note):
    percent = make_note("100% done")
    make_note("Anything else")

    found = notes_service.find_candidates("alice", "100%", [], limit=10)

    assert [n.id for n in found] == [percent.id]
    assert notes_service.find_candidates("alice", "   ", [], limit=10) == []


def test_owner_ids_and_tags(notes_service, make_note):
    make_note("A", tags=["x", "y"])
    make_note("B", owner_id="bob")

    assert notes_service.owner_ids() == ["alice", "bob"]
    assert notes_service.all_tags("alice") == [["x", "y"]]
