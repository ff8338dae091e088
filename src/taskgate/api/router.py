"""REST API router."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from taskgate import __version__
from taskgate.api.deps import get_engine
from taskgate.api.schemas import (
    BatchOperationResponse,
    HealthResponse,
    MaintenanceResponse,
    MetricsResponse,
    QueueTaskResponse,
    RetentionRequest,
    RetentionResponse,
)
from taskgate.config import settings
from taskgate.engine.core import TaskEngine
from taskgate.engine.errors import (
    ArchivedTaskNotFound,
    BatchTasksNotFound,
    DuplicateTaskType,
    InvalidArgument,
    InvalidTaskStatus,
    ServiceUnavailable,
    TaskExecutorNotFound,
    TaskGateError,
    TaskLockLost,
    TaskNotFound,
    TaskTypeNotFound,
)
from taskgate.models import (
    ArchivedTask,
    QueueTaskRequest,
    SortDirection,
    Task,
    TaskEvent,
    TaskSortBy,
    TaskStatus,
    TaskSummaries,
    TaskType,
)
from taskgate.observability.metrics import metrics

router = APIRouter(prefix="/v1")


def _http_error(e: TaskGateError) -> HTTPException:
    """Map an engine error to its HTTP status."""
    if isinstance(e, (InvalidArgument, TaskExecutorNotFound)):
        status_code = 400
    elif isinstance(e, (TaskNotFound, TaskTypeNotFound, ArchivedTaskNotFound, BatchTasksNotFound)):
        status_code = 404
    elif isinstance(e, (DuplicateTaskType, InvalidTaskStatus, TaskLockLost)):
        status_code = 409
    elif isinstance(e, ServiceUnavailable):
        status_code = 503
    else:
        status_code = 500
    return HTTPException(status_code=status_code, detail=e.message)


# ============================================================================
# Health & Metrics
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=__version__, instance_id=settings.instance_id)


@router.get("/metrics", response_model=MetricsResponse)
async def get_metrics():
    return metrics.snapshot()


# ============================================================================
# Tasks
# ============================================================================


@router.post("/tasks", response_model=QueueTaskResponse, status_code=201)
async def queue_task(request: QueueTaskRequest, engine: TaskEngine = Depends(get_engine)):
    """Queue a new task."""
    try:
        return QueueTaskResponse(task_id=await engine.queue_task(request))
    except TaskGateError as e:
        raise _http_error(e)


@router.get("/tasks", response_model=TaskSummaries)
async def get_task_summaries(
    type: Optional[str] = Query(None, description="Task type code"),
    status: Optional[TaskStatus] = Query(None),
    filter: Optional[str] = Query(None, description="Matches batch id or external reference"),
    sort_by: TaskSortBy = Query(TaskSortBy.QUEUED),
    sort_direction: SortDirection = Query(SortDirection.DESCENDING),
    page_index: int = Query(0, ge=0),
    page_size: Optional[int] = Query(None, ge=1),
    engine: TaskEngine = Depends(get_engine),
):
    """List task summaries."""
    try:
        return await engine.get_task_summaries(
            type=type,
            status=status,
            filter=filter,
            sort_by=sort_by,
            sort_direction=sort_direction,
            page_index=page_index,
            page_size=page_size,
        )
    except TaskGateError as e:
        raise _http_error(e)


@router.get("/tasks/by-external-reference/{external_reference}", response_model=Task)
async def get_task_by_external_reference(
    external_reference: str, engine: TaskEngine = Depends(get_engine)
):
    try:
        return await engine.get_task_by_external_reference(external_reference)
    except TaskGateError as e:
        raise _http_error(e)


@router.get("/tasks/{task_id}", response_model=Task)
async def get_task(task_id: UUID, engine: TaskEngine = Depends(get_engine)):
    """Get a task."""
    try:
        return await engine.get_task(task_id)
    except TaskGateError as e:
        raise _http_error(e)


@router.delete("/tasks/{task_id}", status_code=204)
async def delete_task(task_id: UUID, engine: TaskEngine = Depends(get_engine)):
    try:
        await engine.delete_task(task_id)
    except TaskGateError as e:
        raise _http_error(e)


@router.get("/tasks/{task_id}/events", response_model=list[TaskEvent])
async def get_task_events(task_id: UUID, engine: TaskEngine = Depends(get_engine)):
    """Events of an active or archived task."""
    try:
        return await engine.get_task_events_for_task(task_id)
    except TaskGateError as e:
        raise _http_error(e)


@router.post("/tasks/{task_id}/cancel", response_model=Task)
async def cancel_task(task_id: UUID, engine: TaskEngine = Depends(get_engine)):
    try:
        return await engine.cancel_task(task_id)
    except TaskGateError as e:
        raise _http_error(e)


@router.post("/tasks/{task_id}/suspend", response_model=Task)
async def suspend_task(task_id: UUID, engine: TaskEngine = Depends(get_engine)):
    try:
        return await engine.suspend_task(task_id)
    except TaskGateError as e:
        raise _http_error(e)


@router.post("/tasks/{task_id}/unsuspend", response_model=Task)
async def unsuspend_task(task_id: UUID, engine: TaskEngine = Depends(get_engine)):
    try:
        return await engine.unsuspend_task(task_id)
    except TaskGateError as e:
        raise _http_error(e)


# ============================================================================
# Batches
# ============================================================================


@router.post("/batches/{batch_id}/cancel", response_model=BatchOperationResponse)
async def cancel_batch(batch_id: str, engine: TaskEngine = Depends(get_engine)):
    try:
        return BatchOperationResponse(batch_id=batch_id, changed=await engine.cancel_batch(batch_id))
    except TaskGateError as e:
        raise _http_error(e)


@router.post("/batches/{batch_id}/suspend", response_model=BatchOperationResponse)
async def suspend_batch(batch_id: str, engine: TaskEngine = Depends(get_engine)):
    try:
        return BatchOperationResponse(batch_id=batch_id, changed=await engine.suspend_batch(batch_id))
    except TaskGateError as e:
        raise _http_error(e)


@router.post("/batches/{batch_id}/unsuspend", response_model=BatchOperationResponse)
async def unsuspend_batch(batch_id: str, engine: TaskEngine = Depends(get_engine)):
    try:
        return BatchOperationResponse(
            batch_id=batch_id, changed=await engine.unsuspend_batch(batch_id)
        )
    except TaskGateError as e:
        raise _http_error(e)


# ============================================================================
# Task types
# ============================================================================


@router.post("/task-types", response_model=TaskType, status_code=201)
async def create_task_type(task_type: TaskType, engine: TaskEngine = Depends(get_engine)):
    try:
        return await engine.create_task_type(task_type)
    except TaskGateError as e:
        raise _http_error(e)


@router.put("/task-types/{code}", response_model=TaskType)
async def update_task_type(code: str, task_type: TaskType, engine: TaskEngine = Depends(get_engine)):
    if task_type.code != code:
        raise HTTPException(status_code=400, detail="Task type code does not match the path")
    try:
        return await engine.update_task_type(task_type)
    except TaskGateError as e:
        raise _http_error(e)


@router.get("/task-types", response_model=list[TaskType])
async def get_task_types(engine: TaskEngine = Depends(get_engine)):
    try:
        return await engine.get_task_types()
    except TaskGateError as e:
        raise _http_error(e)


@router.get("/task-types/{code}", response_model=TaskType)
async def get_task_type(code: str, engine: TaskEngine = Depends(get_engine)):
    try:
        return await engine.get_task_type(code)
    except TaskGateError as e:
        raise _http_error(e)


@router.delete("/task-types/{code}", status_code=204)
async def delete_task_type(code: str, engine: TaskEngine = Depends(get_engine)):
    try:
        await engine.delete_task_type(code)
    except TaskGateError as e:
        raise _http_error(e)


# ============================================================================
# Archive & Maintenance
# ============================================================================


@router.get("/archived-tasks/{task_id}", response_model=ArchivedTask)
async def get_archived_task(task_id: UUID, engine: TaskEngine = Depends(get_engine)):
    try:
        return await engine.get_archived_task(task_id)
    except TaskGateError as e:
        raise _http_error(e)


@router.put("/maintenance/retention", response_model=RetentionResponse)
async def set_retention(request: RetentionRequest, engine: TaskEngine = Depends(get_engine)):
    engine.set_historical_task_retention_days(request.days)
    return RetentionResponse(days=request.days)


@router.post("/maintenance/reset-hung-tasks", response_model=MaintenanceResponse)
async def reset_hung_tasks(engine: TaskEngine = Depends(get_engine)):
    try:
        return MaintenanceResponse(processed=await engine.reset_hung_tasks())
    except TaskGateError as e:
        raise _http_error(e)


@router.post("/maintenance/archive", response_model=MaintenanceResponse)
async def archive_historical_tasks(engine: TaskEngine = Depends(get_engine)):
    try:
        return MaintenanceResponse(processed=await engine.archive_and_delete_historical_tasks())
    except TaskGateError as e:
        raise _http_error(e)
