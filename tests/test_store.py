"""
Tests for the store contract. Tests taking the ``store`` fixture run against
SQLiteStore and MemoryStore (see conftest.py).
"""
import sqlite3
from unittest import mock

import pytest

from tracker.errors import NotFoundError, StorageFailure, ValidationError
from tracker.schema import DEFAULT_COLUMNS, Priority, TaskMove
from tracker.store import SQLiteStore


def _column_order(store, project_id, column_id):
    project = store.get_project(project_id)
    column = next(c for c in project.columns if c.id == column_id)
    return [(t.title, t.position) for t in column.tasks]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Users & Projects
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_create_user_rejects_duplicate_email(store):
    store.create_user("a@example.com", "A")
    with pytest.raises(ValidationError, match="User already exists"):
        store.create_user("A@Example.com", "Again")


def test_find_user_by_email(store, owner):
    assert store.find_user_by_email("OWNER@example.com").id == owner.id
    assert store.find_user_by_email("nobody@example.com") is None
    with pytest.raises(NotFoundError):
        store.get_user("missing")


def test_new_project_has_default_columns(store, project):
    loaded = store.get_project(project.id)
    assert [c.name for c in loaded.columns] == DEFAULT_COLUMNS
    assert [c.position for c in loaded.columns] == [0, 1, 2, 3, 4]
    assert loaded.owner["email"] == "owner@example.com"


def test_list_projects_newest_first_without_archived(store, owner):
    first = store.create_project(owner.id, "First")
    second = store.create_project(owner.id, "Second")
    store.update_project(first.id, archived=True)

    listed = store.list_projects()
    assert [p.id for p in listed] == [second.id]
    assert {p.id for p in store.list_projects(include_archived=True)} == {first.id, second.id}
    assert [c.task_count for c in listed[0].columns] == [0] * len(DEFAULT_COLUMNS)


def test_update_project_fields(store, project):
    updated = store.update_project(project.id, name="Renamed", description="", type="client")
    assert updated.name == "Renamed"
    assert updated.description is None
    assert updated.type == "client"
    with pytest.raises(ValidationError):
        store.update_project(project.id, name="  ")


def test_create_project_requires_name_and_owner(store, owner):
    with pytest.raises(ValidationError):
        store.create_project(owner.id, "")
    with pytest.raises(NotFoundError):
        store.create_project("ghost", "Orphan")


def test_delete_project_cascades(store, project, todo):
    task = store.create_task(todo.id, "Doomed")
    store.create_attachment(task.id, "a.txt", "/uploads/a-1.txt", size=3)
    removed = store.delete_project(project.id)
    assert [a.filename for a in removed] == ["a.txt"]
    with pytest.raises(NotFoundError):
        store.get_project(project.id)
    with pytest.raises(NotFoundError):
        store.get_task(task.id)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Task append / delete
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_tasks_append_to_end_of_column(store, project, todo):
    for title in ("a", "b", "c"):
        store.create_task(todo.id, title)
    assert _column_order(store, project.id, todo.id) == [("a", 0), ("b", 1), ("c", 2)]


def test_first_task_in_empty_column_gets_zero(store, project):
    done = project.columns[-1]
    assert store.create_task(done.id, "only").position == 0


def test_delete_does_not_compact(store, project, todo):
    a = store.create_task(todo.id, "a")
    b = store.create_task(todo.id, "b")
    store.create_task(todo.id, "c")
    store.delete_task(b.id)
    assert _column_order(store, project.id, todo.id) == [("a", 0), ("c", 2)]

    d = store.create_task(todo.id, "d")
    assert d.position == 3
    assert a.position == 0


def test_create_task_validation(store, todo, owner):
    with pytest.raises(ValidationError, match="Title and column are required"):
        store.create_task(todo.id, "")
    with pytest.raises(ValidationError, match="Title and column are required"):
        store.create_task("", "Title")
    with pytest.raises(NotFoundError, match="Column not found"):
        store.create_task("missing-column", "Title")
    with pytest.raises(ValidationError, match="Invalid priority"):
        store.create_task(todo.id, "Title", priority="critical")
    with pytest.raises(NotFoundError, match="Assignee not found"):
        store.create_task(todo.id, "Title", assignee_id="ghost")


def test_create_task_with_details(store, todo, owner):
    task = store.create_task(
        todo.id, "Detailed", description="desc", priority="urgent",
        due_date="2026-03-01T12:00:00Z", assignee_id=owner.id, estimated_hours="2.5",
    )
    loaded = store.get_task(task.id)
    assert loaded.priority == Priority.URGENT
    assert loaded.due_date.year == 2026
    assert loaded.estimated_hours == 2.5
    assert loaded.assignee["id"] == owner.id


def test_update_task_fields(store, todo, owner):
    task = store.create_task(todo.id, "Old", assignee_id=owner.id)
    updated = store.update_task(task.id, title="New", priority="low",
                                assignee_id=None, due_date=None)
    assert updated.title == "New"
    assert updated.priority == Priority.LOW
    assert updated.assignee_id is None
    assert updated.position == task.position
    with pytest.raises(NotFoundError):
        store.update_task("missing", title="x")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Batch reorder
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_reorder_drag_to_top(store, project, todo):
    """t1@0, t2@1, t3@2; dragging t3 to the top stores t3, t1, t2"""
    t1, t2, t3 = (store.create_task(todo.id, t) for t in ("t1", "t2", "t3"))
    store.reorder_tasks([
        {"id": t3.id, "column_id": todo.id, "position": 0},
        {"id": t1.id, "column_id": todo.id, "position": 1},
        {"id": t2.id, "column_id": todo.id, "position": 2},
    ])
    assert _column_order(store, project.id, todo.id) == [("t3", 0), ("t1", 1), ("t2", 2)]


def test_reorder_across_columns(store, project):
    a, b = project.columns[0], project.columns[1]
    x, y = store.create_task(a.id, "x"), store.create_task(a.id, "y")
    p, q = store.create_task(b.id, "p"), store.create_task(b.id, "q")

    store.reorder_tasks([
        TaskMove(y.id, a.id, 0),
        TaskMove(p.id, b.id, 0),
        TaskMove(x.id, b.id, 1),
        TaskMove(q.id, b.id, 2),
    ])
    assert _column_order(store, project.id, a.id) == [("y", 0)]
    assert _column_order(store, project.id, b.id) == [("p", 0), ("x", 1), ("q", 2)]
    assert store.get_task(x.id).column_id == b.id


def test_reorder_is_atomic(store, project, todo):
    a, b = store.create_task(todo.id, "a"), store.create_task(todo.id, "b")
    with pytest.raises(NotFoundError, match="Task ghost not found"):
        store.reorder_tasks([
            {"id": b.id, "column_id": todo.id, "position": 0},
            {"id": "ghost", "column_id": todo.id, "position": 1},
        ])
    assert _column_order(store, project.id, todo.id) == [("a", 0), ("b", 1)]


def test_reorder_unknown_column_rolls_back(store, project, todo):
    a = store.create_task(todo.id, "a")
    with pytest.raises(NotFoundError, match="Column nowhere not found"):
        store.reorder_tasks([{"id": a.id, "column_id": "nowhere", "position": 0}])
    assert store.get_task(a.id).column_id == todo.id


def test_reorder_is_idempotent(store, project, todo):
    a, b = store.create_task(todo.id, "a"), store.create_task(todo.id, "b")
    batch = [{"id": b.id, "column_id": todo.id, "position": 0},
             {"id": a.id, "column_id": todo.id, "position": 1}]
    store.reorder_tasks(batch)
    once = _column_order(store, project.id, todo.id)
    store.reorder_tasks(batch)
    assert _column_order(store, project.id, todo.id) == once == [("b", 0), ("a", 1)]


def test_reorder_trusts_caller_by_default(store, project, todo):
    a, b = store.create_task(todo.id, "a"), store.create_task(todo.id, "b")
    store.reorder_tasks([{"id": a.id, "column_id": todo.id, "position": 5}])
    assert _column_order(store, project.id, todo.id) == [("b", 1), ("a", 5)]


def test_strict_positions_rejects_gaps(store, project, todo):
    store.strict_positions = True
    a, b = store.create_task(todo.id, "a"), store.create_task(todo.id, "b")
    with pytest.raises(ValidationError, match="contiguous"):
        store.reorder_tasks([{"id": a.id, "column_id": todo.id, "position": 5}])
    assert _column_order(store, project.id, todo.id) == [("a", 0), ("b", 1)]

    store.reorder_tasks([{"id": a.id, "column_id": todo.id, "position": 1},
                         {"id": b.id, "column_id": todo.id, "position": 0}])
    assert _column_order(store, project.id, todo.id) == [("b", 0), ("a", 1)]


def test_reorder_requires_tasks(store):
    with pytest.raises(ValidationError, match="Tasks array is required"):
        store.reorder_tasks([])


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Checklists, comments, time, attachments, labels
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_checklists_and_items_append(store, todo):
    task = store.create_task(todo.id, "With lists")
    first = store.create_checklist(task.id, "One")
    second = store.create_checklist(task.id, "Two")
    assert (first.position, second.position) == (0, 1)

    i1 = store.create_checklist_item(first.id, "step 1")
    i2 = store.create_checklist_item(first.id, "step 2")
    store.delete_checklist_item(i1.id)
    i3 = store.create_checklist_item(first.id, "step 3")
    assert (i2.position, i3.position) == (1, 2)

    store.update_checklist_item(i2.id, completed=True)
    loaded = store.get_task(task.id)
    assert [c.title for c in loaded.checklists] == ["One", "Two"]
    assert [(i.content, i.completed) for i in loaded.checklists[0].items] == [
        ("step 2", True), ("step 3", False),
    ]


def test_checklist_validation(store, todo):
    task = store.create_task(todo.id, "T")
    with pytest.raises(ValidationError, match="Title and task_id are required"):
        store.create_checklist(task.id, "")
    with pytest.raises(NotFoundError):
        store.create_checklist("missing", "Title")
    with pytest.raises(ValidationError, match="Content and checklist_id are required"):
        store.create_checklist_item("", "content")


def test_delete_checklist_removes_items(store, todo):
    task = store.create_task(todo.id, "T")
    checklist = store.create_checklist(task.id, "List")
    item = store.create_checklist_item(checklist.id, "x")
    store.delete_checklist(checklist.id)
    with pytest.raises(NotFoundError):
        store.update_checklist_item(item.id, completed=True)


def test_comments(store, todo, owner):
    task = store.create_task(todo.id, "T")
    comment = store.create_comment(task.id, owner.id, "  hello  ")
    assert comment.content == "hello"
    assert comment.author["id"] == owner.id

    store.update_comment(comment.id, "edited")
    loaded = store.get_task(task.id)
    assert [c.content for c in loaded.comments] == ["edited"]
    assert loaded.comment_count == 1

    store.delete_comment(comment.id)
    with pytest.raises(NotFoundError):
        store.get_comment(comment.id)


def test_time_entries(store, todo, owner):
    task = store.create_task(todo.id, "T")
    older = store.create_time_entry(task.id, owner.id, 1.5, date="2026-01-01T09:00:00Z")
    newer = store.create_time_entry(task.id, owner.id, "2", description="review",
                                    date="2026-01-02T09:00:00Z")
    assert [e.id for e in store.list_time_entries(task.id)] == [newer.id, older.id]

    updated = store.update_time_entry(older.id, hours=3)
    assert updated.hours == 3.0
    assert updated.user["id"] == owner.id

    with pytest.raises(ValidationError):
        store.create_time_entry(task.id, owner.id, 0)
    with pytest.raises(ValidationError):
        store.update_time_entry(older.id, hours="abc")

    store.delete_time_entry(newer.id)
    assert [e.id for e in store.get_task(task.id).time_entries] == [older.id]


def test_time_entries_order_across_offsets(store, todo, owner):
    task = store.create_task(todo.id, "T")
    earlier = store.create_time_entry(task.id, owner.id, 1, date="2024-05-01T10:00:00+05:00")
    later = store.create_time_entry(task.id, owner.id, 1, date="2024-05-01T06:00:00Z")

    assert [e.id for e in store.list_time_entries(task.id)] == [later.id, earlier.id]
    assert [e.id for e in store.get_task(task.id).time_entries] == [later.id, earlier.id]
    assert store.list_time_entries(task.id)[1].date.isoformat() == "2024-05-01T05:00:00+00:00"


def test_due_date_is_stored_in_utc(store, todo):
    task = store.create_task(todo.id, "T", due_date="2026-03-01T01:30:00+02:00")
    assert store.get_task(task.id).due_date.isoformat() == "2026-02-28T23:30:00+00:00"


@pytest.mark.parametrize("value", ["nan", "inf", "-inf", float("nan")])
def test_non_finite_hours_rejected(store, todo, owner, value):
    task = store.create_task(todo.id, "T")
    with pytest.raises(ValidationError):
        store.create_time_entry(task.id, owner.id, value)
    with pytest.raises(ValidationError):
        store.create_task(todo.id, "U", estimated_hours=value)
    with pytest.raises(ValidationError):
        store.update_task(task.id, estimated_hours=value)
    assert store.list_time_entries(task.id) == []


def test_attachments(store, todo):
    task = store.create_task(todo.id, "T")
    attachment = store.create_attachment(task.id, "mockup.pdf", "/uploads/mockup-1.pdf",
                                         mimetype="application/pdf", size=10)
    assert store.get_task(task.id).attachment_count == 1

    removed = store.delete_task(task.id)
    assert [a.id for a in removed] == [attachment.id]
    with pytest.raises(NotFoundError):
        store.get_attachment(attachment.id)


def test_labels(store, project, todo):
    task = store.create_task(todo.id, "T")
    bug = store.create_label(project.id, "Bug", "#ef4444")
    store.add_task_label(task.id, bug.id)
    assert [l.name for l in store.get_task(task.id).labels] == ["Bug"]
    assert [l.name for l in store.get_project(project.id).labels] == ["Bug"]

    store.remove_task_label(task.id, bug.id)
    assert store.get_task(task.id).labels == []
    with pytest.raises(NotFoundError):
        store.remove_task_label(task.id, bug.id)


def test_sqlite_errors_are_reported_generically(tmp_path):
    store = SQLiteStore(str(tmp_path / "t.db"))
    with mock.patch("tracker.store._connect",
                    side_effect=sqlite3.OperationalError("no such table: projects")):
        with pytest.raises(StorageFailure) as exc:
            store.list_projects()
    assert exc.value.message == "Storage failure"
    assert isinstance(exc.value.__cause__, sqlite3.OperationalError)
