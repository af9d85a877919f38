"""
Board session: client-side state of one project board.

Works against anything implementing the store methods it calls
(get_project, create_task, update_task, delete_task, reorder_tasks):
SQLiteStore, MemoryStore or TrackerClient.

Moves are optimistic. The local board is renumbered first and the batch is
then submitted; if the storage rejects it, the board is re-fetched so the
local view matches what was actually persisted.
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from . import positions
from .errors import NotFoundError, TrackerError
from .schema import Column, Project, Task, utc_now

logger = logging.getLogger(__name__)

DUE_FILTERS = ("overdue", "today", "this-week", "no-date")


class BoardSession:
    """Loaded board plus the operations a board UI performs on it."""

    def __init__(self, storage, project_id: str):
        self.storage = storage
        self.project_id = project_id
        self.project: Optional[Project] = None
        self.last_error: Optional[TrackerError] = None

    def load(self) -> Project:
        """Fetch the board from storage, replacing any local state."""
        self.project = self.storage.get_project(self.project_id)
        return self.project

    @property
    def columns(self) -> List[Column]:
        if self.project is None:
            self.load()
        return self.project.columns

    def column(self, column_id: str) -> Column:
        for column in self.columns:
            if column.id == column_id:
                return column
        raise NotFoundError(f"Column {column_id} not found")

    def find_task(self, task_id: str) -> Tuple[Column, Task]:
        for column in self.columns:
            for task in column.tasks:
                if task.id == task_id:
                    return column, task
        raise NotFoundError(f"Task {task_id} not found")

    # ── Edits ────────────────────────────────────────────────────────────────

    def add_task(self, column_id: str, title: str, **fields) -> Task:
        """Create a task at the end of a column and show it locally."""
        column = self.column(column_id)
        task = self.storage.create_task(column_id, title, **fields)
        column.tasks.append(task)
        column.task_count = len(column.tasks)
        return task

    def update_task(self, task_id: str, **fields) -> Task:
        column, task = self.find_task(task_id)
        updated = self.storage.update_task(task_id, **fields)
        column.tasks[column.tasks.index(task)] = updated
        return updated

    def delete_task(self, task_id: str) -> None:
        """Delete a task. The rest of the column keeps its positions."""
        column, _ = self.find_task(task_id)
        self.storage.delete_task(task_id)
        column.tasks = positions.remove(column.tasks, task_id)
        column.task_count = len(column.tasks)

    def move_task(self, task_id: str, dest_column_id: str, dest_index: int) -> bool:
        """Drag-and-drop a task to ``dest_index`` of ``dest_column_id``.

        Returns True when the move was persisted (or was a no-op) and False
        when storage rejected it, in which case the board has been reloaded
        and ``last_error`` holds the reason.
        """
        source, _ = self.find_task(task_id)
        dest = self.column(dest_column_id)
        moves = positions.plan_move(
            source.tasks, dest.tasks, task_id, dest_index, source.id, dest.id,
        )
        if not moves:
            return True

        self._apply_locally(moves)
        try:
            self.storage.reorder_tasks(moves)
        except TrackerError as e:
            logger.warning(f"Move of task {task_id} rejected, reloading board: {e.message}")
            self.last_error = e
            self.load()
            return False
        self.last_error = None
        return True

    def _apply_locally(self, moves) -> None:
        tasks = {t.id: t for column in self.columns for t in column.tasks}
        positions.apply_moves(tasks, moves, containers=[c.id for c in self.columns])
        for column in self.columns:
            column.tasks = positions.ordered(t for t in tasks.values() if t.column_id == column.id)
            column.task_count = len(column.tasks)

    # ── Filters ──────────────────────────────────────────────────────────────

    def filter_tasks(self, search: str = None, priority: str = None,
                     assignee_id: str = None, due: str = None,
                     now: datetime = None) -> Dict[str, List[Task]]:
        """Visible tasks per column id. Filters combine with AND; None means any.

        assignee_id "unassigned" matches tasks with no assignee. ``due`` is one
        of overdue, today, this-week (Sunday to Saturday) or no-date.
        """
        if due is not None and due not in DUE_FILTERS:
            raise ValueError(f"Unknown due filter: {due}")
        today = (now or utc_now()).date()
        needle = search.lower() if search else None

        def visible(task: Task) -> bool:
            if needle and needle not in task.title.lower() \
                    and needle not in (task.description or "").lower():
                return False
            if priority and task.priority.value != priority:
                return False
            if assignee_id == "unassigned":
                if task.assignee_id:
                    return False
            elif assignee_id and task.assignee_id != assignee_id:
                return False
            if due:
                return _matches_due(task.due_date, due, today)
            return True

        return {c.id: [t for t in c.tasks if visible(t)] for c in self.columns}


def _matches_due(due_date: Optional[datetime], due: str, today) -> bool:
    if due == "no-date":
        return due_date is None
    if due_date is None:
        return False
    day = due_date.date()
    if due == "overdue":
        return day < today
    if due == "today":
        return day == today
    week_start = today - timedelta(days=(today.weekday() + 1) % 7)
    return week_start <= day < week_start + timedelta(days=7)
