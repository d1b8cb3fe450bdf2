"""
User Management API Routes

This module provides REST endpoints for managing users:
- GET /users: List users (search, limit, offset)
- POST /users: Create a user
- GET /users/{user_id}: Get user details with recent authentication logs
- PUT /users/{user_id}: Update name and/or email
- DELETE /users/{user_id}: Delete a user and their face data
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query

from api.schemas import (
    AuthLogEntry,
    CreateUserRequest,
    DeleteUserResponse,
    FaceDataInfo,
    UpdateUserRequest,
    UserAuthStats,
    UserDetailResponse,
    UserInfo,
    UserListResponse,
)
from core.errors import NotFoundError
from core.gallery_store import get_gallery_store

# Setup logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(tags=["users"])


@router.get("/users", response_model=UserListResponse)
async def list_users(
    search: Optional[str] = Query(None, description="Substring of name or email"),
    limit: int = Query(50, ge=1, le=100, description="Page size"),
    offset: int = Query(0, ge=0, description="Page offset"),
):
    """
    List users, newest first.

    Returns summary information for each user including whether
    they have enrolled a face and how many authentication records they have.
    """
    store = get_gallery_store()
    users, total = store.list_users(search=search, limit=limit, offset=offset)

    return UserListResponse(
        users=[UserInfo(**u) for u in users],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/users", response_model=UserInfo, status_code=201)
async def create_user(request: CreateUserRequest):
    """
    Create a new user.

    Raises:
        400: Invalid name or email.
        409: Email already registered.
    """
    user = get_gallery_store().create_user(request.name, request.email)
    return UserInfo(**user)


@router.get("/users/{user_id}", response_model=UserDetailResponse)
async def get_user(user_id: str):
    """
    Get detailed information about a specific user.

    Args:
        user_id: The user's unique identifier.

    Returns:
        User information, enrollment summary and the 10 most recent
        authentication records with statistics over them.

    Raises:
        404: If the user is not found.
    """
    store = get_gallery_store()
    user = store.get_user(user_id)

    if user is None:
        raise NotFoundError("User", user_id)

    face_data = store.get_face_data(user_id)
    logs = store.get_auth_logs(user_id=user_id, limit=10)

    return UserDetailResponse(
        **user,
        face_data=FaceDataInfo(**face_data) if face_data else None,
        recent_auth_logs=[AuthLogEntry(**log) for log in logs],
        stats=UserAuthStats(
            total_auth_attempts=len(logs),
            successful_auths=sum(1 for log in logs if log["success"]),
            last_auth_at=logs[0]["timestamp"] if logs else None,
        ),
    )


@router.put("/users/{user_id}", response_model=UserInfo)
async def update_user(user_id: str, request: UpdateUserRequest):
    """
    Update a user's name and/or email.

    Raises:
        400: Nothing to update, or an invalid value.
        404: If the user is not found.
        409: Email used by another user.
    """
    user = get_gallery_store().update_user(user_id, name=request.name, email=request.email)
    return UserInfo(**user)


@router.delete("/users/{user_id}", response_model=DeleteUserResponse)
async def delete_user(user_id: str):
    """
    Delete a user and their face data.

    Authentication records are kept without the user reference.

    Raises:
        404: If the user is not found.
    """
    deleted = get_gallery_store().delete_user(user_id)

    if deleted is None:
        raise NotFoundError("User", user_id)

    return DeleteUserResponse(
        success=True,
        user_id=user_id,
        message=f"User {deleted['name']} deleted successfully",
        face_data_deleted=deleted["face_data_count"],
        auth_logs_detached=deleted["auth_log_count"],
    )
