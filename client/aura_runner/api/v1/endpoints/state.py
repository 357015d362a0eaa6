import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from aura_runner.api.deps import require_user
from aura_runner.core.errors import StateConflictError
from aura_runner.schemas.state import StateRecordResponse, StateWriteRequest
from aura_runner.storage.repository import AUTH_NAMESPACE, StateRepository


router = APIRouter(prefix="/state", tags=["state"], dependencies=[Depends(require_user)])
logger = logging.getLogger(__name__)


def _repository(request: Request, namespace: str, schema_version: int = 1) -> StateRepository:
    if namespace == AUTH_NAMESPACE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Reserved namespace")
    return StateRepository(request.app.state.db_sessions, namespace, schema_version)


@router.get("/{namespace}")
async def list_keys(namespace: str, request: Request) -> dict:
    repo = _repository(request, namespace)
    return {"namespace": namespace, "keys": await repo.keys()}


@router.get("/{namespace}/{key}", response_model=StateRecordResponse)
async def read_state(namespace: str, key: str, request: Request, schema_version: int = 1) -> StateRecordResponse:
    repo = _repository(request, namespace, schema_version)
    record = await repo.get_record(key)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="State not found")
    return StateRecordResponse(
        namespace=record.namespace,
        key=record.key,
        schema_version=record.schema_version,
        revision=record.revision,
        payload=record.payload,
    )


@router.put("/{namespace}/{key}", response_model=StateRecordResponse)
async def write_state(
    namespace: str,
    key: str,
    payload: StateWriteRequest,
    request: Request,
) -> StateRecordResponse:
    repo = _repository(request, namespace, payload.schema_version)
    try:
        record = await repo.put(key, payload.payload, expected_revision=payload.expected_revision)
    except StateConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(exc), "revision": exc.actual},
        ) from exc
    return StateRecordResponse(
        namespace=record.namespace,
        key=record.key,
        schema_version=record.schema_version,
        revision=record.revision,
        payload=record.payload,
    )


@router.delete("/{namespace}/{key}")
async def delete_state(namespace: str, key: str, request: Request) -> dict:
    repo = _repository(request, namespace)
    if not await repo.delete(key):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="State not found")
    return {"deleted": True}
