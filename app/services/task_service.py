import logging
from dataclasses import dataclass

from app.cache.decorators import cached_query, invalidates_queries
from app.cache.keys import KeyMode, QueryKind
from app.cache.layer import CacheLayer
from app.models import Priority, Status, Task, TaskCreate, TaskResponse, TaskUpdate
from app.stores.base import TaskStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Page:
    number: int = 1
    size: int = 5


def paginate(rows: list[dict], page: Page) -> list[TaskResponse]:
    start = (page.number - 1) * page.size
    return [TaskResponse.model_validate(row) for row in rows[start : start + page.size]]


def _rows(tasks: list[Task]) -> list[dict]:
    return [TaskResponse.model_validate(t).model_dump(mode="json") for t in tasks]


class TaskService:
    """Task reads go through the query cache; writes go straight to the store."""

    def __init__(
        self,
        store: TaskStore,
        cache: CacheLayer,
        key_mode: KeyMode | str = KeyMode.STRICT,
        invalidate_on_write: bool = False,
    ):
        self.store = store
        self.cache = cache
        self.key_mode = KeyMode(key_mode)
        self.invalidate_on_write = invalidate_on_write

    # Cached result sets, before pagination

    @cached_query(QueryKind.LIST_ALL)
    async def all_rows(self, identity: str) -> list[dict]:
        return _rows(await self.store.list(identity))

    @cached_query(QueryKind.LIST_BY_STATUS, lambda status: {"status": int(status)})
    async def rows_by_status(self, identity: str, status: Status) -> list[dict]:
        return _rows(await self.store.filter_by_status(status, identity))

    @cached_query(QueryKind.LIST_BY_PRIORITY, lambda priority: {"priority": int(priority)})
    async def rows_by_priority(self, identity: str, priority: Priority) -> list[dict]:
        return _rows(await self.store.filter_by_priority(priority, identity))

    @cached_query(QueryKind.SEARCH_BY_TITLE, lambda title: {"title": title})
    async def rows_by_title(self, identity: str, title: str) -> list[dict]:
        return _rows(await self.store.search_by_title(title, identity))

    # Reads

    async def list_tasks(self, identity: str, page: Page) -> list[TaskResponse]:
        return paginate(await self.all_rows(identity), page)

    async def list_by_status(self, identity: str, status: Status, page: Page) -> list[TaskResponse]:
        return paginate(await self.rows_by_status(identity, Status(status)), page)

    async def list_by_priority(
        self, identity: str, priority: Priority, page: Page
    ) -> list[TaskResponse]:
        return paginate(await self.rows_by_priority(identity, Priority(priority)), page)

    async def search_by_title(self, identity: str, title: str, page: Page) -> list[TaskResponse]:
        return paginate(await self.rows_by_title(identity, title.lower()), page)

    async def get_task(self, identity: str, task_id: int) -> TaskResponse | None:
        task = await self.store.get(task_id, identity)
        if task is None:
            return None
        return TaskResponse.model_validate(task)

    # Writes

    @invalidates_queries
    async def create_task(self, identity: str, data: TaskCreate) -> TaskResponse:
        task = await self.store.create(data, identity)
        await self.store.commit()
        logger.info("Task %s created for %s", task.id, identity)
        return TaskResponse.model_validate(task)

    @invalidates_queries
    async def update_task(self, identity: str, data: TaskUpdate) -> bool:
        if not await self.store.update(data, identity):
            return False
        await self.store.commit()
        return True

    @invalidates_queries
    async def delete_task(self, identity: str, task_id: int) -> bool:
        if not await self.store.delete(task_id, identity):
            return False
        await self.store.commit()
        return True
