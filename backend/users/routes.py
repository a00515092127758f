"""
User administration API endpoints.

Listing, creating, deleting and (de)activating users is admin-only. A user
may read and update their own profile, but only admins change roles or the
active flag.
"""

import dataclasses
import logging
from datetime import timedelta
from typing import Optional, List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

import models
import schemas
from auth.dependencies import get_current_admin, get_current_user, get_principal
from auth.permissions import Principal, require_self_or_admin
from auth.security import hash_password
from database import get_db
from errors import Conflict, Forbidden, NotFound, ValidationError
from query.lowering import to_sqlalchemy
from query.pagination import parse_limit, parse_page
from query.predicates import Eq, Predicate, TextMatch, and_, or_
from query.task_filters import SortSpec, apply_sort, paginate
from tasks.stats import status_counts
from time_utils import utc_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

USER_SORT_FIELDS = {
    "createdAt": "created_at",
    "created_at": "created_at",
    "lastLoginAt": "last_login_at",
    "last_login_at": "last_login_at",
    "name": "name",
    "email": "email",
    "role": "role",
}

USER_COLUMNS = {
    "id": models.User.id,
    "name": models.User.name,
    "email": models.User.email,
    "role": models.User.role,
    "is_active": models.User.is_active,
    "created_at": models.User.created_at,
    "last_login_at": models.User.last_login_at,
}


def _get_user_or_404(db: Session, user_id: int) -> models.User:
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if user is None:
        raise NotFound("User not found")
    return user


def _ensure_email_available(db: Session, email: str, exclude_id: Optional[int] = None) -> None:
    query = db.query(models.User).filter(models.User.email == email)
    if exclude_id is not None:
        query = query.filter(models.User.id != exclude_id)
    if query.first() is not None:
        logger.info(f"Email already in use: {email}")
        raise Conflict("Email is already taken")


def user_filter(search: Optional[str], role: Optional[str], is_active: Optional[str]) -> Predicate:
    constraints = []
    if search and search.strip():
        text = search.strip()
        constraints.append(or_(TextMatch("name", text), TextMatch("email", text)))
    if role:
        try:
            constraints.append(Eq("role", models.Role(role)))
        except ValueError:
            raise ValidationError(f"Invalid role '{role}'. Allowed values: user, admin")
    if is_active is not None and is_active != "":
        constraints.append(Eq("is_active", is_active.strip().lower() == "true"))
    return and_(*constraints)


@router.get("", response_model=schemas.UserPage)
def list_users(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    search: Optional[str] = None,
    role: Optional[str] = None,
    is_active: Optional[str] = Query(None, alias="isActive"),
    sort: Optional[str] = None,
    admin: models.User = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    """List users (admin only) with search on name/email, role and active filters."""
    predicate = user_filter(search, role, is_active)
    query = db.query(models.User).filter(to_sqlalchemy(predicate, USER_COLUMNS))
    query = apply_sort(query, SortSpec.parse(sort, USER_SORT_FIELDS), USER_COLUMNS)
    users, pagination = paginate(query, parse_page(page), parse_limit(limit))
    return {"count": len(users), "pagination": dataclasses.asdict(pagination), "data": users}


@router.post("", response_model=schemas.User, status_code=status.HTTP_201_CREATED)
def create_user(
    user_in: schemas.UserCreate,
    admin: models.User = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    _ensure_email_available(db, user_in.email)

    user = models.User(
        name=user_in.name,
        email=user_in.email,
        password_hash=hash_password(user_in.password),
        role=user_in.role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info(f"Admin {admin.id} created user {user.email} (ID: {user.id})")
    return user


@router.get("/stats", response_model=schemas.UserStats)
def get_user_stats(
    admin: models.User = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    now = utc_now()
    users = db.query(models.User)
    total = users.count()
    active = users.filter(models.User.is_active.is_(True)).count()
    return {
        "total_users": total,
        "active_users": active,
        "inactive_users": total - active,
        "admin_users": users.filter(models.User.role == models.Role.admin).count(),
        "regular_users": users.filter(models.User.role == models.Role.user).count(),
        "recent_users": users.filter(models.User.created_at >= now - timedelta(days=30)).count(),
        "active_in_last_week": users.filter(models.User.last_login_at >= now - timedelta(days=7)).count(),
    }


@router.get("/assignable", response_model=List[schemas.AssignableUser])
def get_assignable_users(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Active users a task can be assigned to, sorted by name."""
    return (
        db.query(models.User)
        .filter(models.User.is_active.is_(True))
        .order_by(models.User.name, models.User.id)
        .all()
    )


@router.get("/{user_id}", response_model=schemas.UserDetail)
def get_user(
    user_id: int,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    """A user's profile plus statistics over the tasks assigned to them."""
    require_self_or_admin(principal, user_id)
    user = _get_user_or_404(db, user_id)
    return {"user": user, "task_stats": status_counts(db, Eq("assigned_to", user.id))}


@router.put("/{user_id}", response_model=schemas.User)
def update_user(
    user_id: int,
    changes: schemas.UserUpdate,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    require_self_or_admin(principal, user_id)
    update_data = changes.model_dump(exclude_unset=True, exclude_none=True)

    if not principal.is_admin and ("role" in update_data or "is_active" in update_data):
        logger.info(f"User {principal.id} attempted to change role or active status")
        raise Forbidden("Not authorized to update role or active status")

    user = _get_user_or_404(db, user_id)
    if "email" in update_data:
        _ensure_email_available(db, update_data["email"], exclude_id=user_id)

    for field, value in update_data.items():
        setattr(user, field, value)
    db.commit()
    db.refresh(user)

    logger.info(f"User {user_id} updated by user {principal.id}: {sorted(update_data)}")
    return user


@router.delete("/{user_id}", response_model=schemas.Message)
def delete_user(
    user_id: int,
    admin: models.User = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    if admin.id == user_id:
        raise ValidationError("Cannot delete your own account")

    user = _get_user_or_404(db, user_id)
    assigned = db.query(models.Task).filter(models.Task.assigned_to_id == user_id).count()
    created = db.query(models.Task).filter(models.Task.created_by_id == user_id).count()
    if assigned or created:
        raise ValidationError(
            f"Cannot delete user. User has {assigned} assigned tasks and {created} created tasks. "
            "Please reassign or delete these tasks first."
        )

    db.delete(user)
    db.commit()
    logger.info(f"Admin {admin.id} deleted user {user_id}")
    return {"message": "User deleted successfully"}


@router.put("/{user_id}/deactivate", response_model=schemas.User)
def deactivate_user(
    user_id: int,
    admin: models.User = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    if admin.id == user_id:
        raise ValidationError("Cannot deactivate your own account")

    user = _get_user_or_404(db, user_id)
    user.is_active = False
    db.commit()
    db.refresh(user)
    logger.info(f"Admin {admin.id} deactivated user {user_id}")
    return user


@router.put("/{user_id}/activate", response_model=schemas.User)
def activate_user(
    user_id: int,
    admin: models.User = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    user = _get_user_or_404(db, user_id)
    user.is_active = True
    db.commit()
    db.refresh(user)
    logger.info(f"Admin {admin.id} activated user {user_id}")
    return user
