from fastapi import APIRouter, HTTPException, Query, Request, Response, status
from typing_extensions import Annotated

from app.dependencies import AdmittedIdentityDep, TaskServiceDep
from app.models import Priority, Status, TaskCreate, TaskResponse, TaskUpdate
from app.services.task_service import Page

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


def _page(page_number: int, page_size: int) -> Page:
    return Page(number=page_number, size=page_size)


PageNumber = Annotated[int, Query(ge=1)]
PageSize = Annotated[int, Query(ge=1, le=100)]


@router.get("", response_model=list[TaskResponse])
async def get_tasks(
    identity: AdmittedIdentityDep,
    service: TaskServiceDep,
    page_number: PageNumber = 1,
    page_size: PageSize = 5,
):
    """List the caller's tasks, ordered by due date"""
    return await service.list_tasks(identity, _page(page_number, page_size))


@router.get("/filter/status/{status_number}", response_model=list[TaskResponse])
async def get_tasks_by_status(
    status_number: int,
    identity: AdmittedIdentityDep,
    service: TaskServiceDep,
    page_number: PageNumber = 1,
    page_size: PageSize = 5,
):
    if status_number not in {s.value for s in Status}:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Status must be between 0 and {len(Status) - 1}",
        )
    return await service.list_by_status(
        identity, Status(status_number), _page(page_number, page_size)
    )


@router.get("/filter/priority/{priority_number}", response_model=list[TaskResponse])
async def get_tasks_by_priority(
    priority_number: int,
    identity: AdmittedIdentityDep,
    service: TaskServiceDep,
    page_number: PageNumber = 1,
    page_size: PageSize = 5,
):
    if priority_number not in {p.value for p in Priority}:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Priority must be between 0 and {len(Priority) - 1}",
        )
    return await service.list_by_priority(
        identity, Priority(priority_number), _page(page_number, page_size)
    )


@router.get("/search/{title}", response_model=list[TaskResponse])
async def search_tasks(
    title: str,
    identity: AdmittedIdentityDep,
    service: TaskServiceDep,
    page_number: PageNumber = 1,
    page_size: PageSize = 5,
):
    """Case-insensitive title search"""
    return await service.search_by_title(identity, title, _page(page_number, page_size))


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(task_id: int, identity: AdmittedIdentityDep, service: TaskServiceDep):
    """Get a specific task by ID"""
    task = await service.get_task(identity, task_id)
    if not task:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Task with id {task_id} not found",
        )
    return task


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    task_data: TaskCreate,
    request: Request,
    response: Response,
    identity: AdmittedIdentityDep,
    service: TaskServiceDep,
):
    """Create a new task"""
    task = await service.create_task(identity, task_data)
    response.headers["Location"] = str(request.url_for("get_task", task_id=task.id))
    return task


@router.put("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def update_task(
    task_id: int, task_data: TaskUpdate, identity: AdmittedIdentityDep, service: TaskServiceDep
):
    if task_data.id != task_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Task id in the body does not match the URL",
        )
    if not await service.update_task(identity, task_data):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Task with id {task_id} not found or access denied",
        )


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: int, identity: AdmittedIdentityDep, service: TaskServiceDep):
    """Delete a task"""
    if not await service.delete_task(identity, task_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Task with id {task_id} not found",
        )
