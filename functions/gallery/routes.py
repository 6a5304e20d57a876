"""
HTTP routes for the gallery API: catalog, favorites, auth and admin.
"""

from __future__ import annotations

import hashlib
import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile

from gallery.auth import AuthError, AuthProvider, AuthSession
from gallery.config import get_settings
from gallery.db import (
    AnalyticsEvent,
    CategoryInUseError,
    DbClient,
    SlugConflictError,
    UserRecord,
    WallpaperRecord,
)
from gallery.dependencies import (
    get_auth_provider,
    get_current_user,
    get_db_client,
    get_optional_user,
    get_queue_client,
    get_storage_client,
    require_admin,
)
from gallery.images import ImageValidationError, parse_tags, upload_image, validate_image
from gallery.navigator import BrowseSort
from gallery.queue import EventQueue
from gallery.schemas import (
    AdminSetupResponse,
    AuthResponse,
    CategoryCreateRequest,
    CategoryResponse,
    CategoryUpdateRequest,
    DownloadResponse,
    FavoriteRequest,
    FavoriteResponse,
    FeaturedToggleRequest,
    ListCategoriesResponse,
    ListFavoritesResponse,
    ListUsersResponse,
    ListWallpapersResponse,
    LoginRequest,
    RegisterRequest,
    StatusResponse,
    UserResponse,
    WallpaperDetailResponse,
    WallpaperSummary,
)
from gallery.storage import StorageClient

logger = logging.getLogger(__name__)

router = APIRouter()


def _wallpaper_list(wallpapers: list[WallpaperRecord]) -> ListWallpapersResponse:
    return ListWallpapersResponse(
        wallpapers=[WallpaperSummary(**w.as_dict()) for w in wallpapers],
        total=len(wallpapers),
    )


def _track(
    request: Request,
    queue: EventQueue,
    event_type: str,
    wallpaper_id: str,
    user: Optional[UserRecord] = None,
) -> None:
    client_host = request.client.host if request.client else None
    event = AnalyticsEvent(
        event_type=event_type,
        wallpaper_id=wallpaper_id,
        user_id=user.id if user else None,
        anon_fingerprint=request.headers.get("x-anon-fingerprint"),
        ip_hash=(
            hashlib.sha256(client_host.encode("utf-8")).hexdigest()
            if client_host
            else None
        ),
        user_agent=request.headers.get("user-agent"),
        referrer=request.headers.get("referer"),
    )
    queue.enqueue(event.to_json())


# Catalog


@router.get("/categories", response_model=ListCategoriesResponse)
def list_categories(
    with_images: bool = Query(False),
    db: DbClient = Depends(get_db_client),
):
    categories = (
        db.list_categories_with_images() if with_images else db.list_categories()
    )
    return ListCategoriesResponse(
        categories=[CategoryResponse(**c.as_dict()) for c in categories]
    )


@router.get("/categories/{slug}", response_model=CategoryResponse)
def get_category(slug: str, db: DbClient = Depends(get_db_client)):
    category = db.get_category_by_slug(slug)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return CategoryResponse(**category.as_dict())


@router.get("/categories/{slug}/wallpapers", response_model=ListWallpapersResponse)
def list_category_wallpapers(
    slug: str,
    limit: int = Query(12, ge=1, le=100),
    db: DbClient = Depends(get_db_client),
):
    if not db.get_category_by_slug(slug):
        raise HTTPException(status_code=404, detail="Category not found")
    return _wallpaper_list(db.list_by_category(slug, limit=limit))


@router.get("/wallpapers", response_model=ListWallpapersResponse)
def browse_wallpapers(
    sort: BrowseSort = Query(BrowseSort.NEWEST),
    category: Optional[str] = Query(None),
    limit: int = Query(24, ge=1, le=100),
    db: DbClient = Depends(get_db_client),
):
    if category:
        wallpapers = db.list_by_category(category, limit=limit)
    elif sort == BrowseSort.TRENDING:
        wallpapers = db.list_trending(limit=limit)
    elif sort == BrowseSort.DOWNLOADS:
        wallpapers = db.list_most_downloaded(limit=limit)
    else:
        wallpapers = db.list_latest(limit=limit)
    return _wallpaper_list(wallpapers)


@router.get("/wallpapers/featured", response_model=ListWallpapersResponse)
def featured_wallpapers(
    limit: int = Query(5, ge=1, le=50),
    db: DbClient = Depends(get_db_client),
):
    return _wallpaper_list(db.list_featured(limit=limit))


@router.get("/wallpapers/search", response_model=ListWallpapersResponse)
def search_wallpapers(
    q: str = Query(..., min_length=1, max_length=200),
    limit: int = Query(12, ge=1, le=100),
    db: DbClient = Depends(get_db_client),
):
    return _wallpaper_list(db.search_wallpapers(q, limit=limit))


@router.get("/wallpapers/{wallpaper_id}", response_model=WallpaperDetailResponse)
def get_wallpaper(wallpaper_id: str, db: DbClient = Depends(get_db_client)):
    wallpaper = db.get_wallpaper(wallpaper_id)
    if not wallpaper:
        raise HTTPException(status_code=404, detail="Wallpaper not found")
    return WallpaperDetailResponse(**wallpaper.as_dict())


@router.post(
    "/wallpapers/{wallpaper_id}/view", response_model=StatusResponse, status_code=202
)
def record_view(
    wallpaper_id: str,
    request: Request,
    db: DbClient = Depends(get_db_client),
    queue: EventQueue = Depends(get_queue_client),
    user: Optional[UserRecord] = Depends(get_optional_user),
):
    if not db.get_wallpaper(wallpaper_id):
        raise HTTPException(status_code=404, detail="Wallpaper not found")
    _track(request, queue, "view", wallpaper_id, user)
    return StatusResponse(status="ok")


@router.post("/wallpapers/{wallpaper_id}/download", response_model=DownloadResponse)
def download_wallpaper(
    wallpaper_id: str,
    request: Request,
    db: DbClient = Depends(get_db_client),
    queue: EventQueue = Depends(get_queue_client),
    user: Optional[UserRecord] = Depends(get_optional_user),
):
    wallpaper = db.get_wallpaper(wallpaper_id)
    if not wallpaper:
        raise HTTPException(status_code=404, detail="Wallpaper not found")
    _track(request, queue, "download", wallpaper_id, user)
    return DownloadResponse(wallpaper_id=wallpaper.id, url=wallpaper.image_url)


# Favorites


@router.get("/favorites", response_model=ListFavoritesResponse)
def list_favorites(
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    favorites = db.list_favorites(user.id)
    return ListFavoritesResponse(
        favorites=[FavoriteResponse(**f.as_dict()) for f in favorites],
        total=len(favorites),
    )


@router.post("/favorites", response_model=FavoriteResponse)
def add_favorite(
    payload: FavoriteRequest,
    request: Request,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    queue: EventQueue = Depends(get_queue_client),
):
    favorite = db.add_favorite(user.id, payload.wallpaper_id)
    if not favorite:
        raise HTTPException(status_code=404, detail="Wallpaper not found")
    _track(request, queue, "like", payload.wallpaper_id, user)
    return FavoriteResponse(**favorite.as_dict())


@router.delete("/favorites/{favorite_id}", response_model=FavoriteResponse)
def remove_favorite(
    favorite_id: str,
    request: Request,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    queue: EventQueue = Depends(get_queue_client),
):
    favorite = db.remove_favorite(user.id, favorite_id)
    if not favorite:
        raise HTTPException(status_code=404, detail="Favorite not found")
    _track(request, queue, "unlike", favorite.wallpaper_id, user)
    return FavoriteResponse(**favorite.as_dict())


# Auth


def _auth_response(session: AuthSession, db: DbClient) -> AuthResponse:
    auth_user = session.user
    user = db.get_user(auth_user.id)
    if user is None:
        user = UserRecord(
            id=auth_user.id,
            email=auth_user.email,
            display_name=auth_user.display_name or auth_user.email.split("@")[0],
        )
    user.last_login = time.time()
    user = db.upsert_user(user)
    return AuthResponse(
        access_token=session.access_token, user=UserResponse(**user.as_dict())
    )


@router.post("/auth/login", response_model=AuthResponse)
def login(
    payload: LoginRequest,
    auth: AuthProvider = Depends(get_auth_provider),
    db: DbClient = Depends(get_db_client),
):
    try:
        session = auth.sign_in(payload.email, payload.password)
    except AuthError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    return _auth_response(session, db)


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(
    payload: RegisterRequest,
    auth: AuthProvider = Depends(get_auth_provider),
    db: DbClient = Depends(get_db_client),
):
    try:
        session = auth.sign_up(
            payload.email, payload.password, display_name=payload.display_name
        )
    except AuthError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    logger.info("Registered user %s", session.user.id)
    return _auth_response(session, db)


@router.get("/auth/me", response_model=UserResponse)
def me(user: UserRecord = Depends(get_current_user)):
    return UserResponse(**user.as_dict())


# Admin


@router.post("/admin/setup", response_model=AdminSetupResponse)
def admin_setup(
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    """
    One-time promotion of the configured admin email to the admin role.
    """
    admin_email = get_settings().admin_email
    if not admin_email or user.email.lower() != admin_email.lower():
        raise HTTPException(status_code=403, detail="Not the admin email")

    action = "unchanged" if user.is_admin else "updated"
    user.role = "admin"
    user.is_verified = True
    db.upsert_user(user)
    logger.info("Admin role %s for %s", action, user.id)
    return AdminSetupResponse(action=action, role="admin")


@router.get("/admin/users", response_model=ListUsersResponse)
def list_users(
    limit: int = Query(100, ge=1, le=500),
    _: UserRecord = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    return ListUsersResponse(
        users=[UserResponse(**u.as_dict()) for u in db.list_users(limit=limit)]
    )


@router.post("/admin/upload", response_model=WallpaperDetailResponse, status_code=201)
async def upload_wallpaper(
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    category_id: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    is_premium: bool = Form(False),
    is_featured: bool = Form(False),
    admin: UserRecord = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    settings = get_settings()
    data = await file.read()
    try:
        validate_image(file.content_type, len(data), settings.max_upload_bytes)
    except ImageValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if not title or not title.strip():
        raise HTTPException(status_code=400, detail="Title is required")
    if category_id and not db.get_category(category_id):
        raise HTTPException(status_code=400, detail="Unknown category")

    try:
        result = upload_image(
            storage,
            data,
            filename=file.filename,
            content_type=file.content_type,
            folder="wallpapers",
            thumbnail_max_size=settings.thumbnail_max_size,
            thumbnail_quality=settings.thumbnail_quality,
        )
    except ImageValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        wallpaper = db.create_wallpaper(
            WallpaperRecord(
                title=title.strip(),
                description=(description or "").strip() or None,
                tags=parse_tags(tags),
                image_url=result.url,
                thumbnail_url=result.thumbnail_url,
                width=result.width,
                height=result.height,
                file_size=result.file_size,
                category_id=category_id or None,
                created_by=admin.id,
                is_premium=is_premium,
                is_featured=is_featured,
            )
        )
    except Exception:
        logger.exception("Could not save wallpaper for %s; removing uploads", result.key)
        storage.delete(result.key)
        storage.delete(result.thumbnail_key)
        raise
    logger.info("Admin %s uploaded wallpaper %s", admin.id, wallpaper.id)
    return WallpaperDetailResponse(**wallpaper.as_dict())


@router.post("/admin/categories", response_model=CategoryResponse, status_code=201)
def create_category(
    payload: CategoryCreateRequest,
    _: UserRecord = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    try:
        category = db.create_category(
            payload.name,
            payload.slug,
            description=payload.description,
            order_index=payload.order_index,
        )
    except SlugConflictError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return CategoryResponse(**category.as_dict())


@router.patch("/admin/categories/{category_id}", response_model=CategoryResponse)
def update_category(
    category_id: str,
    payload: CategoryUpdateRequest,
    _: UserRecord = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    try:
        category = db.update_category(
            category_id, payload.model_dump(exclude_unset=True)
        )
    except SlugConflictError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return CategoryResponse(**category.as_dict())


@router.delete("/admin/categories/{category_id}", response_model=StatusResponse)
def delete_category(
    category_id: str,
    _: UserRecord = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    try:
        deleted = db.delete_category(category_id)
    except CategoryInUseError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="Category not found")
    return StatusResponse(status="ok")


@router.delete("/admin/wallpapers/{wallpaper_id}", response_model=StatusResponse)
def delete_wallpaper(
    wallpaper_id: str,
    _: UserRecord = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    if not db.soft_delete_wallpaper(wallpaper_id):
        raise HTTPException(status_code=404, detail="Wallpaper not found")
    return StatusResponse(status="ok")


@router.patch(
    "/admin/wallpapers/{wallpaper_id}/featured", response_model=StatusResponse
)
def toggle_featured(
    wallpaper_id: str,
    payload: FeaturedToggleRequest,
    _: UserRecord = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    if not db.set_featured(wallpaper_id, payload.is_featured):
        raise HTTPException(status_code=404, detail="Wallpaper not found")
    return StatusResponse(status="ok")
