from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# Request bodies keep every field optional so that missing values reach the
# services and fail as ValidationError (400) rather than as a schema error.

class Credentials(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class ChangeEmailRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    new_email: Optional[str] = Field(default=None, alias="newEmail")


class DeleteAccountRequest(BaseModel):
    password: Optional[str] = None


class TaskCreate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[str] = None
    priority: Optional[int] = None


class TaskUpdate(TaskCreate):
    completed: Optional[bool] = None


class UserOut(BaseModel):
    id: int
    username: str
    email: Optional[str] = None


class UserMe(UserOut):
    created_at: Optional[datetime] = None


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: Optional[int]
    title: str
    description: Optional[str]
    due_date: Optional[str]
    priority: int
    completed: bool
    created_at: datetime


class ChangeEmailResult(BaseModel):
    success: bool = True
    email: str


class Ack(BaseModel):
    success: bool = True
