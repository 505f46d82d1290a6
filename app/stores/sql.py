from __future__ import annotations

import logging
from functools import wraps

from sqlalchemy import func, nulls_first
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.errors import StoreFailure
from app.models import Priority, Status, Task, TaskCreate, TaskUpdate, User

logger = logging.getLogger(__name__)


def _store_errors(fn):
    @wraps(fn)
    async def wrapper(self, *args, **kwargs):
        try:
            return await fn(self, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.error("%s failed: %s", fn.__qualname__, e)
            await self.session.rollback()
            raise StoreFailure() from e

    return wrapper


class SqlTaskStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    def _owned(self, identity: str):
        return (
            select(Task)
            .where(Task.owner_id == identity)
            .order_by(nulls_first(col(Task.due_date).asc()), col(Task.id))
        )

    async def _all(self, query) -> list[Task]:
        result = await self.session.exec(query)
        return list(result.all())

    @_store_errors
    async def list(self, identity: str) -> list[Task]:
        return await self._all(self._owned(identity))

    @_store_errors
    async def get(self, task_id: int, identity: str) -> Task | None:
        result = await self.session.exec(
            select(Task).where(Task.id == task_id, Task.owner_id == identity)
        )
        return result.first()

    @_store_errors
    async def create(self, data: TaskCreate, identity: str) -> Task:
        task = Task(
            owner_id=identity,
            title=data.title,
            description=data.description,
            due_date=data.due_date,
            priority=int(data.priority),
            status=int(data.status),
        )
        self.session.add(task)
        # flush assigns the id; commit() makes it durable
        await self.session.flush()
        return task

    @_store_errors
    async def update(self, data: TaskUpdate, identity: str) -> bool:
        task = await self.get(data.id, identity)
        if task is None:
            return False
        task.title = data.title
        task.description = data.description
        task.due_date = data.due_date
        task.priority = int(data.priority)
        task.status = int(data.status)
        self.session.add(task)
        return True

    @_store_errors
    async def delete(self, task_id: int, identity: str) -> bool:
        task = await self.get(task_id, identity)
        if task is None:
            return False
        await self.session.delete(task)
        return True

    @_store_errors
    async def filter_by_status(self, status: Status, identity: str) -> list[Task]:
        return await self._all(self._owned(identity).where(Task.status == int(status)))

    @_store_errors
    async def filter_by_priority(self, priority: Priority, identity: str) -> list[Task]:
        return await self._all(self._owned(identity).where(Task.priority == int(priority)))

    @_store_errors
    async def search_by_title(self, text: str, identity: str) -> list[Task]:
        query = self._owned(identity).where(
            func.lower(Task.title).contains(text.lower(), autoescape=True)
        )
        return await self._all(query)

    @_store_errors
    async def commit(self) -> None:
        await self.session.commit()


class SqlUserStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    @_store_errors
    async def get(self, user_id: str) -> User | None:
        return await self.session.get(User, user_id)

    @_store_errors
    async def get_by_username(self, username: str) -> User | None:
        result = await self.session.exec(select(User).where(User.username == username))
        return result.first()

    @_store_errors
    async def add(self, user: User) -> User:
        self.session.add(user)
        await self.session.flush()
        return user

    @_store_errors
    async def update(self, user: User) -> None:
        self.session.add(user)

    @_store_errors
    async def commit(self) -> None:
        await self.session.commit()
