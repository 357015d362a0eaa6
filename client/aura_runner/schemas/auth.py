from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


Role = Literal["USER", "STUDENT", "JUNIOR_MANAGER", "SENIOR_MANAGER", "ADMIN"]


class AuthTokens(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(alias="accessToken")
    refresh_token: str = Field(alias="refreshToken")


class User(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    email: str
    first_name: str = Field(default="", alias="firstName")
    last_name: str = Field(default="", alias="lastName")
    role: Role = "USER"
    status: str = "ACTIVE"


class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    user_id: str
    email: str
    role: str
    expires_at: float | None = None
