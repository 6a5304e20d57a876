"""
Pydantic schemas for the gallery API.
"""

from __future__ import annotations

import re
from typing import Any, Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    EmailStr,
    Field,
    StrictBool,
    field_validator,
    model_validator,
)

OverlayType = Literal[
    "browse", "categories", "wallpaper", "item-detail", "search", "auth"
]


# Navigation


class OpenOverlayRequest(BaseModel):
    type: OverlayType
    params: dict[str, Any] = Field(default_factory=dict)


class ShortcutRequest(BaseModel):
    key: str = Field(..., min_length=1, max_length=32)
    ctrl: bool = False
    meta: bool = False


class HistoryEntry(BaseModel):
    type: str
    params: dict[str, Any]


class NavigatorStateResponse(BaseModel):
    session_id: str
    active: str
    params: dict[str, Any]
    history: list[HistoryEntry]
    can_go_back: bool


# Catalog


class CategoryResponse(BaseModel):
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    order_index: int = 0
    wallpaper_count: int = 0
    image_url: Optional[str] = None
    created_at: float
    updated_at: float


class ListCategoriesResponse(BaseModel):
    categories: list[CategoryResponse]


class CategoryRef(BaseModel):
    id: str
    name: str
    slug: str


class WallpaperSummary(BaseModel):
    id: str
    title: str
    image_url: str
    thumbnail_url: Optional[str] = None
    is_premium: bool = False
    is_featured: bool = False
    like_count: int = 0
    view_count: int = 0
    download_count: int = 0
    category: Optional[CategoryRef] = None


class WallpaperDetailResponse(WallpaperSummary):
    description: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    width: Optional[int] = None
    height: Optional[int] = None
    file_size: Optional[int] = None
    category_id: Optional[str] = None
    created_at: float


class ListWallpapersResponse(BaseModel):
    wallpapers: list[WallpaperSummary]
    total: int


class DownloadResponse(BaseModel):
    wallpaper_id: str
    url: str


# Favorites


class FavoriteRequest(BaseModel):
    wallpaper_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("wallpaper_id", "wallpaperId"),
    )


class FavoriteWallpaper(BaseModel):
    id: str
    title: str
    image_url: str
    thumbnail_url: Optional[str] = None
    is_premium: bool = False


class FavoriteResponse(BaseModel):
    id: str
    wallpaper_id: str
    created_at: float
    wallpaper: Optional[FavoriteWallpaper] = None


class ListFavoritesResponse(BaseModel):
    favorites: list[FavoriteResponse]
    total: int


# Auth and users


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    confirm_password: str
    display_name: Optional[str] = Field(default=None, min_length=2)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        if not re.search(r"[A-Z]", value):
            raise ValueError("Password must contain at least one uppercase letter")
        if not re.search(r"[0-9]", value):
            raise ValueError("Password must contain at least one number")
        return value

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


class UserResponse(BaseModel):
    id: str
    email: str
    display_name: Optional[str] = None
    role: Literal["user", "admin"]
    is_banned: bool = False
    is_verified: bool = False
    created_at: float


class AuthResponse(BaseModel):
    access_token: Optional[str] = None
    user: UserResponse


class ListUsersResponse(BaseModel):
    users: list[UserResponse]


class AdminSetupResponse(BaseModel):
    action: Literal["updated", "unchanged"]
    role: Literal["admin"]


# Admin


class CategoryCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    order_index: int = 0


class CategoryUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    slug: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    order_index: Optional[int] = None


class FeaturedToggleRequest(BaseModel):
    is_featured: StrictBool


class StatusResponse(BaseModel):
    status: Literal["ok"]
