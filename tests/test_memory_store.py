"""
Tests for the in-memory demo store: seed data, JSON mirror, rollback.
"""
import json
from unittest import mock

import pytest

from tracker.errors import NotFoundError, StorageFailure
from tracker.memory_store import DEMO_USER_ID, MemoryStore, seed_demo_data
from tracker.store import SQLiteStore


def test_seeded_demo_board():
    store = MemoryStore()
    user = store.get_user(DEMO_USER_ID)
    assert user.email == "demo@example.com"

    projects = store.list_projects()
    assert [p.name for p in projects] == ["AI Team Project Tracker"]
    board = store.get_project(projects[0].id)
    counts = {c.name: len(c.tasks) for c in board.columns}
    assert counts == {"Backlog": 0, "To Do": 1, "In Progress": 1, "Review": 0, "Done": 1}
    assert sorted(l.name for l in board.labels) == ["Bug", "Documentation", "Enhancement", "Feature"]

    design = board.columns[1].tasks[0]
    items = store.get_task(design.id).checklists[0].items
    assert [i.completed for i in items] == [True, False, False]


def test_unseeded_store_is_empty():
    store = MemoryStore(seed=False)
    assert store.list_projects() == []
    assert store.list_users() == []


def test_seed_works_for_sqlite(tmp_path):
    store = SQLiteStore(str(tmp_path / "seed.db"))
    project = seed_demo_data(store)
    assert store.get_user(DEMO_USER_ID).name == "Demo User"
    assert sum(len(c.tasks) for c in store.get_project(project.id).columns) == 3


def test_json_mirror_survives_restart(tmp_path):
    path = tmp_path / "demo.json"
    store = MemoryStore(str(path), seed=False)
    user = store.create_user("a@example.com", "A")
    project = store.create_project(user.id, "Persisted")
    store.create_task(project.columns[0].id, "Kept")

    assert "Persisted" in path.read_text()
    reopened = MemoryStore(str(path))
    board = reopened.get_project(project.id)
    assert [t.title for t in board.columns[0].tasks] == ["Kept"]
    # existing file wins over seeding
    assert [p.name for p in reopened.list_projects()] == ["Persisted"]


def test_failed_mutation_rolls_back_and_is_not_saved(tmp_path):
    path = tmp_path / "demo.json"
    store = MemoryStore(str(path), seed=False)
    user = store.create_user("a@example.com", "A")
    project = store.create_project(user.id, "Board")
    column = project.columns[0]
    task = store.create_task(column.id, "a")
    saved = path.read_text()

    with pytest.raises(NotFoundError):
        store.reorder_tasks([
            {"id": task.id, "column_id": project.columns[1].id, "position": 0},
            {"id": "ghost", "column_id": column.id, "position": 1},
        ])
    assert store.get_task(task.id).column_id == column.id
    assert path.read_text() == saved


def test_save_error_raises_and_rolls_back(tmp_path):
    path = tmp_path / "demo.json"
    store = MemoryStore(str(path), seed=False)
    user = store.create_user("a@example.com", "A")
    saved = path.read_text()

    with mock.patch("tracker.memory_store.json.dump", side_effect=OSError("disk full")):
        with pytest.raises(StorageFailure):
            store.create_project(user.id, "Lost")
    assert store.list_projects() == []

    with mock.patch("tracker.memory_store.os.replace", side_effect=OSError("disk full")):
        with pytest.raises(StorageFailure):
            store.create_user("b@example.com", "B")
    assert [u.email for u in store.list_users()] == ["a@example.com"]
    assert path.read_text() == saved


def test_corrupt_mirror_starts_empty(tmp_path):
    path = tmp_path / "demo.json"
    path.write_text("{not json")
    store = MemoryStore(str(path))
    assert store.list_projects() == []


def test_mirror_is_plain_json(tmp_path):
    path = tmp_path / "demo.json"
    MemoryStore(str(path))
    data = json.loads(path.read_text())
    assert DEMO_USER_ID in data["users"]
    assert len(data["columns"]) == 5
