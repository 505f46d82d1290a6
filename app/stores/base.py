"""Persistence contracts consumed by the services.

Every task operation takes the authenticated identity and only ever sees
rows owned by it. "Not found" is a None/False return; StoreFailure is raised
only when the backend itself fails.
"""

from __future__ import annotations

from typing import Protocol

from app.models import Priority, Status, Task, TaskCreate, TaskUpdate, User


class TaskStore(Protocol):
    async def list(self, identity: str) -> list[Task]: ...

    async def get(self, task_id: int, identity: str) -> Task | None: ...

    async def create(self, data: TaskCreate, identity: str) -> Task: ...

    async def update(self, data: TaskUpdate, identity: str) -> bool: ...

    async def delete(self, task_id: int, identity: str) -> bool: ...

    async def filter_by_status(self, status: Status, identity: str) -> list[Task]: ...

    async def filter_by_priority(self, priority: Priority, identity: str) -> list[Task]: ...

    async def search_by_title(self, text: str, identity: str) -> list[Task]: ...

    async def commit(self) -> None: ...


class UserStore(Protocol):
    async def get(self, user_id: str) -> User | None: ...

    async def get_by_username(self, username: str) -> User | None: ...

    async def add(self, user: User) -> User: ...

    async def update(self, user: User) -> None: ...

    async def commit(self) -> None: ...
