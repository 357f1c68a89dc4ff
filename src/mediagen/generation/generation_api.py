"""Generation task routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from ..exceptions import InvalidTransitionError, NotFoundError
from ..tasks.task_models import TaskStatus
from .generation_errors import ModelInactiveError, ModelNotFoundError, ValidationError
from .generation_schemas import (
    AdapterListResponse,
    GenerationResultPayload,
    GenerationSubmitRequest,
    GenerationSubmitResponse,
    GenerationTaskListResponse,
    GenerationTaskResponse,
    TaskCancelResponse,
)
from .generation_service import GenerationService

router = APIRouter(prefix="/api/generation", tags=["generation"])

_SUBMIT_STATUS_CODES = {
    TaskStatus.SUCCESS: status.HTTP_200_OK,
    TaskStatus.PROCESSING: status.HTTP_202_ACCEPTED,
    TaskStatus.FAILED: status.HTTP_502_BAD_GATEWAY,
}


def get_generation_service(request: Request) -> GenerationService:
    """Fetch generation service from application state."""
    try:
        return request.app.state.generation_service  # type: ignore[attr-defined]
    except AttributeError as exc:  # pragma: no cover - defensive path
        raise RuntimeError("GenerationService is not configured") from exc


def _task_not_found(task_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"status": "error", "failure_reason": "task_not_found", "task_id": task_id},
    )


@router.post("")
async def submit_generation(
    payload: GenerationSubmitRequest,
    response: Response,
    service: GenerationService = Depends(get_generation_service),
) -> GenerationSubmitResponse:
    try:
        outcome = await service.submit_generation(
            model_id=payload.model_id,
            prompt=payload.prompt,
            parameters=payload.parameters,
            input_images=payload.input_images,
            number_of_outputs=payload.number_of_outputs,
        )
    except ModelNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"status": "error", "failure_reason": "model_not_found", "message": str(exc)},
        ) from None
    except ModelInactiveError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"status": "error", "failure_reason": "model_inactive", "message": str(exc)},
        ) from None
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "status": "error",
                "failure_reason": "invalid_request",
                "message": str(exc),
                "errors": exc.details,
            },
        ) from None

    response.status_code = _SUBMIT_STATUS_CODES.get(outcome.status, status.HTTP_200_OK)
    return GenerationSubmitResponse(
        task_id=outcome.task_id,
        status=outcome.status,
        results=(
            [GenerationResultPayload.from_domain(item) for item in outcome.results]
            if outcome.results is not None
            else None
        ),
        provider_task_id=outcome.provider_task_id,
        message=outcome.message,
    )


@router.get("/adapters")
def list_adapters(
    service: GenerationService = Depends(get_generation_service),
) -> AdapterListResponse:
    return AdapterListResponse(adapters=service.adapter_names())


@router.get("/tasks")
def list_tasks(
    status_filter: TaskStatus | None = Query(default=None, alias="status"),
    model_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    service: GenerationService = Depends(get_generation_service),
) -> GenerationTaskListResponse:
    page = service.list_tasks(status=status_filter, model_id=model_id, limit=limit, offset=offset)
    return GenerationTaskListResponse.from_page(page)


@router.get("/tasks/{task_id}")
def get_task(
    task_id: str,
    service: GenerationService = Depends(get_generation_service),
) -> GenerationTaskResponse:
    try:
        task = service.get_task(task_id)
    except NotFoundError:
        raise _task_not_found(task_id) from None
    return GenerationTaskResponse.from_domain(task)


@router.post("/tasks/{task_id}/cancel")
def cancel_task(
    task_id: str,
    service: GenerationService = Depends(get_generation_service),
) -> TaskCancelResponse:
    try:
        outcome = service.cancel_task(task_id)
    except NotFoundError:
        raise _task_not_found(task_id) from None
    except InvalidTransitionError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"status": "error", "failure_reason": "invalid_transition", "message": str(exc)},
        ) from None
    return TaskCancelResponse(
        cancelled=outcome.applied,
        task=GenerationTaskResponse.from_domain(outcome.task),
    )


@router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(
    task_id: str,
    service: GenerationService = Depends(get_generation_service),
) -> Response:
    try:
        service.delete_task(task_id)
    except NotFoundError:
        raise _task_not_found(task_id) from None
    return Response(status_code=status.HTTP_204_NO_CONTENT)
