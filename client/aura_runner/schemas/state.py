from typing import Any

from pydantic import BaseModel


class StateWriteRequest(BaseModel):
    payload: Any = None
    expected_revision: int | None = None
    schema_version: int = 1


class StateRecordResponse(BaseModel):
    namespace: str
    key: str
    schema_version: int
    revision: int
    payload: Any = None
