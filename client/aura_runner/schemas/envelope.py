from typing import Any

from pydantic import BaseModel, Field


class ApiErrorDetail(BaseModel):
    message: str
    code: str | None = None
    details: Any = None


class ApiEnvelope(BaseModel):
    success: bool
    data: Any = None
    message: str | None = None
    error: ApiErrorDetail | None = None
    # HTTP status of the response the envelope came from; not part of the wire format
    status_code: int | None = Field(default=None, exclude=True)

    @property
    def error_message(self) -> str:
        if self.error and self.error.message:
            return self.error.message
        return self.message or "Unknown error"

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error else None

    @classmethod
    def failure(cls, message: str, code: str | None = None, details: Any = None) -> "ApiEnvelope":
        return cls(success=False, error=ApiErrorDetail(message=message, code=code, details=details))
