from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class Credentials(BaseModel):
    # Presence and shape are checked in crud.users so the error codes stay ours.
    username: str = ""
    password: str = ""

    model_config = {
        "json_schema_extra": {
            "example": {"username": "ada", "password": "correct horse"}
        }
    }


class SessionOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")


class UserOut(BaseModel):
    id: int
    username: str


class CurrentUser(BaseModel):
    user: UserOut
