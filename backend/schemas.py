import json
from pydantic import BaseModel, EmailStr, Field, field_validator
from datetime import datetime
from typing import Optional, List

from models import Role, TaskPriority, TaskStatus
from time_utils import parse_datetime

MAX_TAGS = 20


# User schemas
class UserSummary(BaseModel):
    id: int
    name: str
    email: str

    class Config:
        from_attributes = True


class AssignableUser(UserSummary):
    role: Role


class User(UserSummary):
    role: Role
    is_active: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


def _clean_name(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not v:
        raise ValueError("Name cannot be empty")
    return v


class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=100)
    role: Role = Role.user

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return _clean_name(v)


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    email: Optional[EmailStr] = None
    role: Optional[Role] = None
    is_active: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: Optional[str]) -> Optional[str]:
        return _clean_name(v)


class UserStats(BaseModel):
    total_users: int
    active_users: int
    inactive_users: int
    admin_users: int
    regular_users: int
    recent_users: int  # Registered in the last 30 days
    active_in_last_week: int


# Task statistics
class TaskStatusCounts(BaseModel):
    total: int = 0
    pending: int = 0
    in_progress: int = Field(0, serialization_alias="in-progress")
    completed: int = 0
    cancelled: int = 0
    overdue: int = 0


class PriorityCount(BaseModel):
    priority: TaskPriority
    count: int


class MonthlyCount(BaseModel):
    year: int
    month: int
    count: int


class TaskStats(BaseModel):
    task_stats: TaskStatusCounts
    priority_stats: List[PriorityCount] = []
    monthly_stats: List[MonthlyCount] = []


class UserDetail(BaseModel):
    user: User
    task_stats: TaskStatusCounts


# Comment schemas
class CommentCreate(BaseModel):
    text: str = Field(..., min_length=1, max_length=500)

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Comment text cannot be empty")
        return v


class Comment(BaseModel):
    id: int
    task_id: int
    user_id: Optional[int]
    user: Optional[UserSummary] = None
    text: str
    created_at: datetime

    class Config:
        from_attributes = True


# Task Attachment schemas
class Attachment(BaseModel):
    id: int
    task_id: int
    filename: str
    original_name: str
    mime_type: str
    size: int
    uploaded_at: datetime

    class Config:
        from_attributes = True


# Task schemas
def _parse_tags(v):
    """Accept a list, a JSON-encoded list, or a comma-separated string."""
    if v is None:
        return v
    if isinstance(v, str):
        try:
            decoded = json.loads(v)
        except ValueError:
            decoded = v.split(",")
        v = decoded if isinstance(decoded, list) else [decoded]
    tags = []
    for tag in v:
        tag = str(tag).strip()
        if tag:
            tags.append(tag)
    if len(tags) > MAX_TAGS:
        raise ValueError(f"A task can have at most {MAX_TAGS} tags")
    for tag in tags:
        if len(tag) > 50:
            raise ValueError("Tags cannot be more than 50 characters")
    return tags


class TaskBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=1000)
    status: TaskStatus = TaskStatus.pending
    priority: TaskPriority = TaskPriority.medium
    due_date: datetime
    estimated_hours: Optional[float] = Field(None, ge=0, description="Estimated hours (must be >= 0)")
    tags: List[str] = Field(default_factory=list)

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("due_date", mode="before")
    @classmethod
    def normalize_due_date(cls, v):
        return parse_datetime(v)

    @field_validator("tags", mode="before")
    @classmethod
    def parse_tags(cls, v):
        return _parse_tags(v) if v is not None else []


class TaskCreate(TaskBase):
    assigned_to: int


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=1000)
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = None
    assigned_to: Optional[int] = None
    estimated_hours: Optional[float] = Field(None, ge=0, description="Estimated hours (must be >= 0)")
    actual_hours: Optional[float] = Field(None, ge=0, description="Actual hours spent (must be >= 0)")
    tags: Optional[List[str]] = None

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("due_date", mode="before")
    @classmethod
    def normalize_due_date(cls, v):
        return parse_datetime(v)

    @field_validator("tags", mode="before")
    @classmethod
    def parse_tags(cls, v):
        return _parse_tags(v)


class Task(BaseModel):
    id: int
    title: str
    description: str
    status: TaskStatus
    priority: TaskPriority
    due_date: datetime
    assigned_to_id: int
    assigned_to: Optional[UserSummary] = None
    created_by_id: int
    created_by: Optional[UserSummary] = None
    tags: List[str] = Field(default_factory=list)
    attachments: List[Attachment] = Field(default_factory=list)
    comments: List[Comment] = Field(default_factory=list)
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    completed_at: Optional[datetime] = None
    is_overdue: bool = False
    days_until_due: Optional[int] = None
    duration_days: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# Paginated list schemas
class PaginationOut(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    has_next: bool
    has_prev: bool

    class Config:
        from_attributes = True


class TaskPage(BaseModel):
    count: int
    pagination: PaginationOut
    data: List[Task] = []


class UserPage(BaseModel):
    count: int
    pagination: PaginationOut
    data: List[User] = []


class Message(BaseModel):
    message: str
