"""In-process stores for local development and tests.

Changes apply immediately; commit() is a no-op. Returned objects are copies,
so callers cannot mutate stored rows behind the store's back.
"""

from __future__ import annotations

import itertools
from datetime import datetime, timezone

from app.models import Priority, Status, Task, TaskCreate, TaskUpdate, User


def _sort_key(task: Task):
    # tasks without a due date first, then by due date, then by id
    if task.due_date is None:
        return (0, datetime.min.replace(tzinfo=timezone.utc), task.id)
    due = task.due_date if task.due_date.tzinfo else task.due_date.replace(tzinfo=timezone.utc)
    return (1, due, task.id)


def _copy_task(task: Task) -> Task:
    return Task(
        id=task.id,
        owner_id=task.owner_id,
        title=task.title,
        description=task.description,
        due_date=task.due_date,
        priority=task.priority,
        status=task.status,
    )


def _copy_user(user: User) -> User:
    return User(
        id=user.id,
        username=user.username,
        email=user.email,
        password_hash=user.password_hash,
        created_at=user.created_at,
    )


class MemoryTaskStore:
    def __init__(self):
        self._tasks: dict[int, Task] = {}
        self._ids = itertools.count(1)
        self.reads = 0

    def _owned(self, identity: str) -> list[Task]:
        self.reads += 1
        rows = [t for t in self._tasks.values() if t.owner_id == identity]
        return [_copy_task(t) for t in sorted(rows, key=_sort_key)]

    async def list(self, identity: str) -> list[Task]:
        return self._owned(identity)

    async def get(self, task_id: int, identity: str) -> Task | None:
        task = self._tasks.get(task_id)
        if task is None or task.owner_id != identity:
            return None
        return _copy_task(task)

    async def create(self, data: TaskCreate, identity: str) -> Task:
        task = Task(
            id=next(self._ids),
            owner_id=identity,
            title=data.title,
            description=data.description,
            due_date=data.due_date,
            priority=data.priority,
            status=data.status,
        )
        self._tasks[task.id] = task
        return _copy_task(task)

    async def update(self, data: TaskUpdate, identity: str) -> bool:
        task = self._tasks.get(data.id)
        if task is None or task.owner_id != identity:
            return False
        task.title = data.title
        task.description = data.description
        task.due_date = data.due_date
        task.priority = data.priority
        task.status = data.status
        return True

    async def delete(self, task_id: int, identity: str) -> bool:
        task = self._tasks.get(task_id)
        if task is None or task.owner_id != identity:
            return False
        del self._tasks[task_id]
        return True

    async def filter_by_status(self, status: Status, identity: str) -> list[Task]:
        return [t for t in self._owned(identity) if t.status == status]

    async def filter_by_priority(self, priority: Priority, identity: str) -> list[Task]:
        return [t for t in self._owned(identity) if t.priority == priority]

    async def search_by_title(self, text: str, identity: str) -> list[Task]:
        needle = text.lower()
        return [t for t in self._owned(identity) if needle in t.title.lower()]

    async def commit(self) -> None:
        return None


class MemoryUserStore:
    def __init__(self):
        self._users: dict[str, User] = {}

    async def get(self, user_id: str) -> User | None:
        user = self._users.get(user_id)
        return _copy_user(user) if user else None

    async def get_by_username(self, username: str) -> User | None:
        for user in self._users.values():
            if user.username == username:
                return _copy_user(user)
        return None

    async def add(self, user: User) -> User:
        self._users[user.id] = _copy_user(user)
        return _copy_user(user)

    async def update(self, user: User) -> None:
        self._users[user.id] = _copy_user(user)

    async def commit(self) -> None:
        return None
