from sqlalchemy import Boolean, Column, DateTime, Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship, validates
import enum

from database import Base
from time_utils import days_between, days_until, is_overdue, utc_now


def _enum_values(enum_cls):
    # Persist the enum values ("in-progress"), not the member names
    return [member.value for member in enum_cls]


class Role(str, enum.Enum):
    user = "user"
    admin = "admin"


class TaskStatus(str, enum.Enum):
    pending = "pending"
    in_progress = "in-progress"
    completed = "completed"
    cancelled = "cancelled"


class TaskPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


# Statuses that can never be overdue
CLOSED_STATUSES = (TaskStatus.completed, TaskStatus.cancelled)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(Enum(Role, name="user_role", values_callable=_enum_values), nullable=False, default=Role.user)
    is_active = Column(Boolean, nullable=False, default=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    # Relationships
    created_tasks = relationship("Task", foreign_keys="Task.created_by_id", back_populates="created_by")
    assigned_tasks = relationship("Task", foreign_keys="Task.assigned_to_id", back_populates="assigned_to")


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    status = Column(
        Enum(TaskStatus, name="task_status", values_callable=_enum_values),
        nullable=False,
        default=TaskStatus.pending,
        index=True,
    )
    priority = Column(
        Enum(TaskPriority, name="task_priority", values_callable=_enum_values),
        nullable=False,
        default=TaskPriority.medium,
        index=True,
    )
    due_date = Column(DateTime(timezone=True), nullable=False, index=True)
    assigned_to_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    estimated_hours = Column(Float, nullable=True)
    actual_hours = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    # Relationships
    assigned_to = relationship("User", foreign_keys=[assigned_to_id], back_populates="assigned_tasks")
    created_by = relationship("User", foreign_keys=[created_by_id], back_populates="created_tasks")
    tag_entries = relationship(
        "TaskTag", back_populates="task", cascade="all, delete-orphan", order_by="TaskTag.position"
    )
    attachments = relationship(
        "TaskAttachment", back_populates="task", cascade="all, delete-orphan", order_by="TaskAttachment.id"
    )
    comments = relationship(
        "Comment", back_populates="task", cascade="all, delete-orphan", order_by="Comment.id"
    )

    @validates("status")
    def _track_completion(self, key, value):
        """Keep completed_at in lockstep with the status."""
        if value == TaskStatus.completed:
            if self.completed_at is None:
                self.completed_at = utc_now()
        else:
            self.completed_at = None
        return value

    @property
    def tags(self):
        return [entry.name for entry in self.tag_entries]

    @tags.setter
    def tags(self, names):
        self.tag_entries = [TaskTag(name=name, position=i) for i, name in enumerate(names)]

    @property
    def is_overdue(self) -> bool:
        status = self.status.value if isinstance(self.status, TaskStatus) else self.status
        return is_overdue(self.due_date, status)

    @property
    def days_until_due(self):
        if self.status == TaskStatus.completed:
            return None
        return days_until(self.due_date)

    @property
    def duration_days(self):
        if self.completed_at is None:
            return None
        return days_between(self.created_at, self.completed_at)


class TaskTag(Base):
    __tablename__ = "task_tags"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    task = relationship("Task", back_populates="tag_entries")


class TaskAttachment(Base):
    __tablename__ = "task_attachments"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    original_name = Column(String(255), nullable=False)
    mime_type = Column(String(100), nullable=False)
    size = Column(Integer, nullable=False)
    path = Column(String(512), nullable=False)
    uploaded_at = Column(DateTime(timezone=True), default=utc_now)

    task = relationship("Task", back_populates="attachments")


class Comment(Base):
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    text = Column(String(500), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    task = relationship("Task", back_populates="comments")
    user = relationship("User")
