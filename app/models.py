import uuid
from datetime import datetime, timezone
from enum import IntEnum

from pydantic import EmailStr
from sqlalchemy import DateTime, Integer
from sqlmodel import Column, Field, SQLModel


def get_utc_now():
    """Helper function to get current UTC time with timezone"""
    return datetime.now(timezone.utc)


def new_user_id() -> str:
    return uuid.uuid4().hex


class Priority(IntEnum):
    LOW = 0
    MEDIUM = 1
    HIGH = 2
    URGENT = 3


class Status(IntEnum):
    TODO = 0
    IN_PROGRESS = 1
    DONE = 2
    CANCELLED = 3


class TaskBase(SQLModel):
    """Base model with shared fields"""

    title: str = Field(min_length=5, max_length=200)
    description: str = Field(default="", max_length=300)
    due_date: datetime | None = None
    priority: Priority = Priority.LOW
    status: Status = Status.TODO


class Task(TaskBase, table=True):
    """Database model"""

    __tablename__ = "tasks"

    id: int | None = Field(default=None, primary_key=True)
    owner_id: str = Field(foreign_key="users.id", index=True)
    due_date: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True, index=True)
    )
    priority: Priority = Field(
        default=Priority.LOW, sa_column=Column(Integer, nullable=False, index=True)
    )
    status: Status = Field(
        default=Status.TODO, sa_column=Column(Integer, nullable=False, index=True)
    )


class TaskCreate(TaskBase):
    """Schema for creating a task"""

    pass


class TaskUpdate(TaskBase):
    """Schema for replacing a task; id must match the path id"""

    id: int


class TaskResponse(TaskBase):
    """Schema for task responses"""

    id: int

    model_config = {"from_attributes": True}


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=new_user_id, primary_key=True)
    username: str = Field(max_length=100, unique=True, index=True)
    email: str = Field(max_length=254)
    password_hash: str
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class RegisterRequest(SQLModel):
    username: str = Field(min_length=5, max_length=100)
    email: EmailStr
    password: str = Field(min_length=1)


class LoginRequest(SQLModel):
    username: str = Field(min_length=5, max_length=100)
    password: str = Field(min_length=1)


class LoginResponse(SQLModel):
    token: str
    user_id: str
    user_name: str
    email: str


class NameChange(SQLModel):
    name: str = Field(min_length=5, max_length=100)


class PasswordChange(SQLModel):
    old_password: str = Field(min_length=1)
    new_password: str = Field(min_length=1)


class ProfileResponse(SQLModel):
    id: str
    name: str
    email: str
