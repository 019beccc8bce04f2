"""
User API Routes
用户 API 路由

Provides HTTP endpoints for the in-memory user directory:
- GET    /api/users               - List users (filter + sort)
- GET    /api/users/{id}          - Get single user
- POST   /api/users               - Create user
- PUT    /api/users/{id}          - Partial update
- DELETE /api/users/{id}          - Delete user
- POST   /api/users/bulk-delete   - Delete several users
"""

import re
from typing import List, Optional
from urllib.parse import urlsplit

from fastapi import APIRouter, HTTPException, Query, Request, Response
from pydantic import BaseModel, Field, field_validator

from .memory_store import (
    DuplicateEmail,
    SORTABLE_FIELDS,
    UserNotFound,
    UserStore,
)

router = APIRouter(prefix="/api/users", tags=["users"])

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
LINKEDIN_HOSTS = ("www.linkedin.com", "linkedin.com")
MAX_LINKEDIN_URL_LENGTH = 256
MAX_NAME_LENGTH = 100


def is_valid_linkedin_url(url: str) -> bool:
    """Only https URLs on linkedin.com, at most 256 characters."""
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlsplit(url)
    except ValueError:
        return False
    if parsed.scheme != "https":
        return False
    if parsed.hostname not in LINKEDIN_HOSTS:
        return False
    return len(url) <= MAX_LINKEDIN_URL_LENGTH


# ============================================
# Request/Response Models
# ============================================

class UserFields(BaseModel):
    """Shared field rules for create and update"""
    name: Optional[str] = Field(None, description="Display name")
    email: Optional[str] = Field(None, description="Unique email address")
    age: Optional[int] = Field(None, ge=0, le=150)
    avatar: Optional[str] = Field(None, description="Avatar image URL")
    linkedin: Optional[str] = Field(None, description="LinkedIn profile URL")

    @field_validator("name")
    @classmethod
    def check_name(cls, value):
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("name must not be empty")
        if len(value) > MAX_NAME_LENGTH:
            raise ValueError(f"name must be at most {MAX_NAME_LENGTH} characters")
        return value

    @field_validator("email")
    @classmethod
    def check_email(cls, value):
        if value is None:
            return value
        value = value.strip()
        if not EMAIL_PATTERN.match(value):
            raise ValueError("email is not a valid address")
        return value

    @field_validator("avatar")
    @classmethod
    def check_avatar(cls, value):
        if value is None:
            return value
        parsed = urlsplit(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("avatar must be an absolute http(s) URL")
        return value

    @field_validator("linkedin")
    @classmethod
    def check_linkedin(cls, value):
        if value is not None and not is_valid_linkedin_url(value):
            raise ValueError("linkedin must be an https linkedin.com URL")
        return value


class CreateUserRequest(UserFields):
    name: str = Field(..., description="Display name")
    email: str = Field(..., description="Unique email address")


class UpdateUserRequest(UserFields):
    pass


class BulkDeleteRequest(BaseModel):
    ids: List[int] = Field(..., min_length=1, description="User ids to delete")


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    age: Optional[int]
    avatar: Optional[str]
    linkedin: Optional[str]
    created_at: str
    updated_at: str


class UserListResponse(BaseModel):
    success: bool
    count: int
    users: List[UserResponse]


class BulkDeleteResponse(BaseModel):
    success: bool
    deleted: List[int]
    not_found: List[int]


# ============================================
# Helpers
# ============================================

def get_store(request: Request) -> UserStore:
    return request.app.state.user_store


def _not_found(user_id: int) -> HTTPException:
    return HTTPException(status_code=404, detail=f"User {user_id} not found")


# ============================================
# API Endpoints
# ============================================

@router.get("", response_model=UserListResponse)
async def list_users(
    request: Request,
    name: Optional[str] = Query(None, description="Case-insensitive substring of name"),
    email: Optional[str] = Query(None),
    min_age: Optional[int] = Query(None, ge=0),
    max_age: Optional[int] = Query(None, ge=0),
    sort_by: str = Query("id", description=f"One of: {', '.join(SORTABLE_FIELDS)}"),
    order: str = Query("asc", description="asc or desc"),
):
    """List users, optionally filtered and sorted"""
    try:
        users = get_store(request).list(
            name=name,
            email=email,
            min_age=min_age,
            max_age=max_age,
            sort_by=sort_by,
            order=order,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return UserListResponse(
        success=True,
        count=len(users),
        users=[UserResponse(**u.to_dict()) for u in users],
    )


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: int, request: Request):
    try:
        user = get_store(request).get(user_id)
    except UserNotFound:
        raise _not_found(user_id)
    return UserResponse(**user.to_dict())


@router.post("", response_model=UserResponse, status_code=201)
async def create_user(body: CreateUserRequest, request: Request):
    """
    Create a user
    创建用户
    """
    try:
        user = get_store(request).create(body.model_dump())
    except DuplicateEmail as e:
        raise HTTPException(status_code=409, detail=str(e))
    return UserResponse(**user.to_dict())


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(user_id: int, body: UpdateUserRequest, request: Request):
    """Only fields present in the body are changed"""
    changes = body.model_dump(exclude_unset=True)
    for required in ("name", "email"):
        if required in changes and changes[required] is None:
            raise HTTPException(status_code=400, detail=f"{required} cannot be null")
    try:
        user = get_store(request).update(user_id, changes)
    except UserNotFound:
        raise _not_found(user_id)
    except DuplicateEmail as e:
        raise HTTPException(status_code=409, detail=str(e))
    return UserResponse(**user.to_dict())


@router.delete("/{user_id}", status_code=204)
async def delete_user(user_id: int, request: Request):
    try:
        get_store(request).delete(user_id)
    except UserNotFound:
        raise _not_found(user_id)
    return Response(status_code=204)


@router.post("/bulk-delete", response_model=BulkDeleteResponse)
async def bulk_delete_users(body: BulkDeleteRequest, request: Request):
    """
    Delete several users
    批量删除用户

    Missing ids are reported, not treated as an error.
    """
    deleted, missing = get_store(request).bulk_delete(body.ids)
    return BulkDeleteResponse(success=bool(deleted), deleted=deleted, not_found=missing)
