"""
Database abstraction for Postgres and an in-memory test implementation.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, Optional, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    func,
    or_,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

USER_ROLES = ("user", "admin")
EVENT_TYPES = ("view", "download", "like", "unlike")
CATEGORY_FIELDS = ("name", "slug", "description", "order_index")


class SlugConflictError(ValueError):
    """Another category already uses the requested slug."""


class CategoryInUseError(ValueError):
    """The category is still referenced by wallpapers."""


def _new_id() -> str:
    return uuid.uuid4().hex


class DbClient(Protocol):
    """Interface for database access."""

    # Categories
    def list_categories(self) -> list["CategoryRecord"]:
        ...

    def list_categories_with_images(self) -> list["CategoryRecord"]:
        ...

    def get_category(self, category_id: str) -> Optional["CategoryRecord"]:
        ...

    def get_category_by_slug(self, slug: str) -> Optional["CategoryRecord"]:
        ...

    def create_category(
        self,
        name: str,
        slug: str,
        description: Optional[str] = None,
        order_index: int = 0,
    ) -> "CategoryRecord":
        ...

    def update_category(
        self, category_id: str, updates: dict
    ) -> Optional["CategoryRecord"]:
        ...

    def delete_category(self, category_id: str) -> bool:
        ...

    # Wallpapers
    def create_wallpaper(self, wallpaper: "WallpaperRecord") -> "WallpaperRecord":
        ...

    def get_wallpaper(self, wallpaper_id: str) -> Optional["WallpaperRecord"]:
        ...

    def list_featured(self, limit: int = 5) -> list["WallpaperRecord"]:
        ...

    def list_trending(self, limit: int = 12) -> list["WallpaperRecord"]:
        ...

    def list_latest(self, limit: int = 12) -> list["WallpaperRecord"]:
        ...

    def list_most_downloaded(self, limit: int = 12) -> list["WallpaperRecord"]:
        ...

    def list_by_category(
        self, slug: str, limit: int = 12
    ) -> list["WallpaperRecord"]:
        ...

    def search_wallpapers(
        self, query: str, limit: int = 12
    ) -> list["WallpaperRecord"]:
        ...

    def soft_delete_wallpaper(self, wallpaper_id: str) -> bool:
        ...

    def set_featured(self, wallpaper_id: str, is_featured: bool) -> bool:
        ...

    def increment_view_count(self, wallpaper_id: str) -> bool:
        ...

    def increment_download_count(self, wallpaper_id: str) -> bool:
        ...

    # Favorites
    def list_favorites(self, user_id: str) -> list["FavoriteRecord"]:
        ...

    def add_favorite(
        self, user_id: str, wallpaper_id: str
    ) -> Optional["FavoriteRecord"]:
        ...

    def remove_favorite(
        self, user_id: str, favorite_id: str
    ) -> Optional["FavoriteRecord"]:
        ...

    # Users
    def get_user(self, user_id: str) -> Optional["UserRecord"]:
        ...

    def upsert_user(self, user: "UserRecord") -> "UserRecord":
        ...

    def set_user_role(self, user_id: str, role: str) -> bool:
        ...

    def list_users(self, limit: int = 100) -> list["UserRecord"]:
        ...

    # Analytics
    def record_event(self, event: "AnalyticsEvent") -> None:
        ...


@dataclass
class CategoryRecord:
    name: str
    slug: str
    description: Optional[str] = None
    order_index: int = 0
    id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())
    # Filled in on reads.
    wallpaper_count: int = 0
    image_url: Optional[str] = None

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class WallpaperRecord:
    title: str
    image_url: str
    description: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    thumbnail_url: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    file_size: Optional[int] = None
    category_id: Optional[str] = None
    created_by: Optional[str] = None
    is_premium: bool = False
    is_featured: bool = False
    view_count: int = 0
    like_count: int = 0
    download_count: int = 0
    id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())
    deleted_at: Optional[float] = None
    # {"id", "name", "slug"} of the owning category, filled in on reads.
    category: Optional[dict] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def summary(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "image_url": self.image_url,
            "thumbnail_url": self.thumbnail_url,
            "is_premium": self.is_premium,
        }

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class FavoriteRecord:
    user_id: str
    wallpaper_id: str
    id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=lambda: time.time())
    wallpaper: Optional[dict] = None

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class UserRecord:
    id: str
    email: str
    display_name: Optional[str] = None
    role: str = "user"
    is_banned: bool = False
    is_verified: bool = False
    created_at: float = field(default_factory=lambda: time.time())
    last_login: Optional[float] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class AnalyticsEvent:
    event_type: str
    wallpaper_id: str
    user_id: Optional[str] = None
    anon_fingerprint: Optional[str] = None
    ip_hash: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())

    def __post_init__(self):
        if self.event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown analytics event type: {self.event_type}")

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, payload: str | bytes) -> "AnalyticsEvent":
        return cls(**json.loads(payload))


def _newest_first(records: Iterable[Any]) -> list[Any]:
    # Insertion order breaks created_at ties.
    indexed = list(enumerate(records))
    indexed.sort(key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
    return [record for _, record in indexed]


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.categories: Dict[str, CategoryRecord] = {}
        self.wallpapers: Dict[str, WallpaperRecord] = {}
        self.favorites: Dict[str, FavoriteRecord] = {}
        self.users: Dict[str, UserRecord] = {}
        self.events: list[AnalyticsEvent] = []

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.categories.clear()
        self.wallpapers.clear()
        self.favorites.clear()
        self.users.clear()
        self.events.clear()

    def _active_wallpapers(self) -> list[WallpaperRecord]:
        return [w for w in self.wallpapers.values() if not w.is_deleted]

    def _with_category(self, wallpaper: WallpaperRecord) -> WallpaperRecord:
        category = self.categories.get(wallpaper.category_id or "")
        wallpaper.category = (
            {"id": category.id, "name": category.name, "slug": category.slug}
            if category
            else None
        )
        return wallpaper

    def _with_count(self, category: CategoryRecord) -> CategoryRecord:
        category.wallpaper_count = sum(
            1 for w in self._active_wallpapers() if w.category_id == category.id
        )
        return category

    def list_categories(self) -> list[CategoryRecord]:
        ordered = sorted(self.categories.values(), key=lambda c: c.order_index)
        return [self._with_count(c) for c in ordered]

    def list_categories_with_images(self) -> list[CategoryRecord]:
        categories = self.list_categories()
        for category in categories:
            members = [
                w for w in self._active_wallpapers() if w.category_id == category.id
            ]
            top = max(members, key=lambda w: w.like_count, default=None)
            category.image_url = top.image_url if top else None
        return categories

    def get_category(self, category_id: str) -> Optional[CategoryRecord]:
        category = self.categories.get(category_id)
        return self._with_count(category) if category else None

    def get_category_by_slug(self, slug: str) -> Optional[CategoryRecord]:
        for category in self.categories.values():
            if category.slug == slug:
                return self._with_count(category)
        return None

    def _slug_taken(self, slug: str, exclude_id: Optional[str] = None) -> bool:
        return any(
            c.slug == slug and c.id != exclude_id for c in self.categories.values()
        )

    def create_category(
        self,
        name: str,
        slug: str,
        description: Optional[str] = None,
        order_index: int = 0,
    ) -> CategoryRecord:
        if self._slug_taken(slug):
            raise SlugConflictError("Category with this slug already exists")
        record = CategoryRecord(
            name=name, slug=slug, description=description, order_index=order_index
        )
        self.categories[record.id] = record
        return record

    def update_category(
        self, category_id: str, updates: dict
    ) -> Optional[CategoryRecord]:
        category = self.categories.get(category_id)
        if not category:
            return None
        slug = updates.get("slug")
        if slug and self._slug_taken(slug, exclude_id=category_id):
            raise SlugConflictError("Another category with this slug already exists")
        for key in CATEGORY_FIELDS:
            if key in updates:
                setattr(category, key, updates[key])
        category.updated_at = time.time()
        return self._with_count(category)

    def delete_category(self, category_id: str) -> bool:
        if category_id not in self.categories:
            return False
        # Soft-deleted wallpapers still reference the category.
        if any(w.category_id == category_id for w in self.wallpapers.values()):
            raise CategoryInUseError("Cannot delete category with existing wallpapers.")
        del self.categories[category_id]
        return True

    def create_wallpaper(self, wallpaper: WallpaperRecord) -> WallpaperRecord:
        self.wallpapers[wallpaper.id] = wallpaper
        return self._with_category(wallpaper)

    def get_wallpaper(self, wallpaper_id: str) -> Optional[WallpaperRecord]:
        wallpaper = self.wallpapers.get(wallpaper_id)
        if not wallpaper or wallpaper.is_deleted:
            return None
        return self._with_category(wallpaper)

    def list_featured(self, limit: int = 5) -> list[WallpaperRecord]:
        featured = [w for w in self._active_wallpapers() if w.is_featured]
        return [self._with_category(w) for w in _newest_first(featured)[:limit]]

    def list_trending(self, limit: int = 12) -> list[WallpaperRecord]:
        ordered = sorted(
            _newest_first(self._active_wallpapers()),
            key=lambda w: w.like_count,
            reverse=True,
        )
        return [self._with_category(w) for w in ordered[:limit]]

    def list_latest(self, limit: int = 12) -> list[WallpaperRecord]:
        latest = _newest_first(self._active_wallpapers())[:limit]
        return [self._with_category(w) for w in latest]

    def list_most_downloaded(self, limit: int = 12) -> list[WallpaperRecord]:
        ordered = sorted(
            _newest_first(self._active_wallpapers()),
            key=lambda w: w.download_count,
            reverse=True,
        )
        return [self._with_category(w) for w in ordered[:limit]]

    def list_by_category(self, slug: str, limit: int = 12) -> list[WallpaperRecord]:
        category = self.get_category_by_slug(slug)
        if not category:
            return []
        members = [w for w in self._active_wallpapers() if w.category_id == category.id]
        return [self._with_category(w) for w in _newest_first(members)[:limit]]

    def search_wallpapers(self, query: str, limit: int = 12) -> list[WallpaperRecord]:
        needle = query.strip().lower()
        if not needle:
            return []
        matches = [
            w
            for w in self._active_wallpapers()
            if needle in w.title.lower() or needle in (w.description or "").lower()
        ]
        matches.sort(key=lambda w: w.like_count, reverse=True)
        return [self._with_category(w) for w in matches[:limit]]

    def soft_delete_wallpaper(self, wallpaper_id: str) -> bool:
        wallpaper = self.get_wallpaper(wallpaper_id)
        if not wallpaper:
            return False
        wallpaper.deleted_at = time.time()
        return True

    def set_featured(self, wallpaper_id: str, is_featured: bool) -> bool:
        wallpaper = self.get_wallpaper(wallpaper_id)
        if not wallpaper:
            return False
        wallpaper.is_featured = is_featured
        wallpaper.updated_at = time.time()
        return True

    def increment_view_count(self, wallpaper_id: str) -> bool:
        wallpaper = self.get_wallpaper(wallpaper_id)
        if not wallpaper:
            return False
        wallpaper.view_count += 1
        return True

    def increment_download_count(self, wallpaper_id: str) -> bool:
        wallpaper = self.get_wallpaper(wallpaper_id)
        if not wallpaper:
            return False
        wallpaper.download_count += 1
        return True

    def list_favorites(self, user_id: str) -> list[FavoriteRecord]:
        owned = [f for f in self.favorites.values() if f.user_id == user_id]
        results = []
        for favorite in _newest_first(owned):
            wallpaper = self.wallpapers.get(favorite.wallpaper_id)
            favorite.wallpaper = wallpaper.summary() if wallpaper else None
            results.append(favorite)
        return results

    def add_favorite(self, user_id: str, wallpaper_id: str) -> Optional[FavoriteRecord]:
        wallpaper = self.get_wallpaper(wallpaper_id)
        if not wallpaper:
            return None
        for favorite in self.favorites.values():
            if favorite.user_id == user_id and favorite.wallpaper_id == wallpaper_id:
                return favorite
        favorite = FavoriteRecord(user_id=user_id, wallpaper_id=wallpaper_id)
        self.favorites[favorite.id] = favorite
        wallpaper.like_count += 1
        return favorite

    def remove_favorite(
        self, user_id: str, favorite_id: str
    ) -> Optional[FavoriteRecord]:
        favorite = self.favorites.get(favorite_id)
        if not favorite or favorite.user_id != user_id:
            return None
        del self.favorites[favorite_id]
        wallpaper = self.wallpapers.get(favorite.wallpaper_id)
        if wallpaper:
            wallpaper.like_count = max(wallpaper.like_count - 1, 0)
        return favorite

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self.users.get(user_id)

    def upsert_user(self, user: UserRecord) -> UserRecord:
        self.users[user.id] = user
        return user

    def set_user_role(self, user_id: str, role: str) -> bool:
        if role not in USER_ROLES:
            raise ValueError(f"Unknown role: {role}")
        user = self.users.get(user_id)
        if not user:
            return False
        user.role = role
        return True

    def list_users(self, limit: int = 100) -> list[UserRecord]:
        return _newest_first(self.users.values())[:limit]

    def record_event(self, event: AnalyticsEvent) -> None:
        self.events.append(event)


def _like_pattern(query: str) -> str:
    escaped = (
        query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    )
    return f"%{escaped}%"


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    # Row conversion

    def _to_category(self, row: "CategoryRow", count: int = 0) -> CategoryRecord:
        return CategoryRecord(
            id=row.id,
            name=row.name,
            slug=row.slug,
            description=row.description,
            order_index=row.order_index,
            created_at=row.created_at,
            updated_at=row.updated_at,
            wallpaper_count=count,
        )

    def _to_wallpaper(
        self, row: "WallpaperRow", category: Optional["CategoryRow"] = None
    ) -> WallpaperRecord:
        return WallpaperRecord(
            id=row.id,
            title=row.title,
            description=row.description,
            tags=list(row.tags or []),
            image_url=row.image_url,
            thumbnail_url=row.thumbnail_url,
            width=row.width,
            height=row.height,
            file_size=row.file_size,
            category_id=row.category_id,
            created_by=row.created_by,
            is_premium=row.is_premium,
            is_featured=row.is_featured,
            view_count=row.view_count,
            like_count=row.like_count,
            download_count=row.download_count,
            created_at=row.created_at,
            updated_at=row.updated_at,
            deleted_at=row.deleted_at,
            category=(
                {"id": category.id, "name": category.name, "slug": category.slug}
                if category
                else None
            ),
        )

    def _to_favorite(
        self, row: "FavoriteRow", wallpaper: Optional["WallpaperRow"] = None
    ) -> FavoriteRecord:
        return FavoriteRecord(
            id=row.id,
            user_id=row.user_id,
            wallpaper_id=row.wallpaper_id,
            created_at=row.created_at,
            wallpaper=self._to_wallpaper(wallpaper).summary() if wallpaper else None,
        )

    def _to_user(self, row: "UserRow") -> UserRecord:
        return UserRecord(
            id=row.id,
            email=row.email,
            display_name=row.display_name,
            role=row.role,
            is_banned=row.is_banned,
            is_verified=row.is_verified,
            created_at=row.created_at,
            last_login=row.last_login,
        )

    # Categories

    def _wallpaper_counts(self, session: Session) -> dict[str, int]:
        stmt = (
            select(WallpaperRow.category_id, func.count(WallpaperRow.id))
            .where(WallpaperRow.deleted_at.is_(None))
            .group_by(WallpaperRow.category_id)
        )
        return {category_id: count for category_id, count in session.execute(stmt)}

    def list_categories(self) -> list[CategoryRecord]:
        with self.Session() as session:
            counts = self._wallpaper_counts(session)
            rows = session.scalars(
                select(CategoryRow).order_by(CategoryRow.order_index.asc())
            ).all()
            return [self._to_category(row, counts.get(row.id, 0)) for row in rows]

    def list_categories_with_images(self) -> list[CategoryRecord]:
        categories = self.list_categories()
        with self.Session() as session:
            for category in categories:
                stmt = (
                    select(WallpaperRow.image_url)
                    .where(
                        WallpaperRow.category_id == category.id,
                        WallpaperRow.deleted_at.is_(None),
                    )
                    .order_by(WallpaperRow.like_count.desc())
                    .limit(1)
                )
                category.image_url = session.execute(stmt).scalar_one_or_none()
        return categories

    def get_category(self, category_id: str) -> Optional[CategoryRecord]:
        with self.Session() as session:
            row = session.get(CategoryRow, category_id)
            if not row:
                return None
            return self._to_category(row, self._wallpaper_counts(session).get(row.id, 0))

    def get_category_by_slug(self, slug: str) -> Optional[CategoryRecord]:
        with self.Session() as session:
            row = session.execute(
                select(CategoryRow).where(CategoryRow.slug == slug)
            ).scalar_one_or_none()
            if not row:
                return None
            return self._to_category(row, self._wallpaper_counts(session).get(row.id, 0))

    def _slug_taken(
        self, session: Session, slug: str, exclude_id: Optional[str] = None
    ) -> bool:
        stmt = select(CategoryRow.id).where(CategoryRow.slug == slug)
        if exclude_id:
            stmt = stmt.where(CategoryRow.id != exclude_id)
        return session.execute(stmt.limit(1)).first() is not None

    def create_category(
        self,
        name: str,
        slug: str,
        description: Optional[str] = None,
        order_index: int = 0,
    ) -> CategoryRecord:
        now = time.time()
        with self.Session() as session:
            if self._slug_taken(session, slug):
                raise SlugConflictError("Category with this slug already exists")
            row = CategoryRow(
                id=_new_id(),
                name=name,
                slug=slug,
                description=description,
                order_index=order_index,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                # Lost a race with a concurrent insert of the same slug.
                session.rollback()
                raise SlugConflictError(
                    "Category with this slug already exists"
                ) from exc
            return self._to_category(row)

    def update_category(
        self, category_id: str, updates: dict
    ) -> Optional[CategoryRecord]:
        with self.Session() as session:
            row = session.get(CategoryRow, category_id)
            if not row:
                return None
            slug = updates.get("slug")
            if slug and self._slug_taken(session, slug, exclude_id=category_id):
                raise SlugConflictError(
                    "Another category with this slug already exists"
                )
            for key in CATEGORY_FIELDS:
                if key in updates:
                    setattr(row, key, updates[key])
            row.updated_at = time.time()
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise SlugConflictError(
                    "Another category with this slug already exists"
                ) from exc
            return self._to_category(row, self._wallpaper_counts(session).get(row.id, 0))

    def delete_category(self, category_id: str) -> bool:
        with self.Session() as session:
            row = session.get(CategoryRow, category_id)
            if not row:
                return False
            in_use = session.execute(
                select(func.count(WallpaperRow.id)).where(
                    WallpaperRow.category_id == category_id
                )
            ).scalar_one()
            if in_use:
                raise CategoryInUseError(
                    "Cannot delete category with existing wallpapers."
                )
            session.delete(row)
            session.commit()
            return True

    # Wallpapers

    def _active(self):
        return (
            select(WallpaperRow, CategoryRow)
            .outerjoin(CategoryRow, WallpaperRow.category_id == CategoryRow.id)
            .where(WallpaperRow.deleted_at.is_(None))
        )

    def _fetch(self, stmt) -> list[WallpaperRecord]:
        with self.Session() as session:
            return [
                self._to_wallpaper(wallpaper, category)
                for wallpaper, category in session.execute(stmt).all()
            ]

    def create_wallpaper(self, wallpaper: WallpaperRecord) -> WallpaperRecord:
        with self.Session() as session:
            row = WallpaperRow(
                id=wallpaper.id,
                title=wallpaper.title,
                description=wallpaper.description,
                tags=list(wallpaper.tags),
                image_url=wallpaper.image_url,
                thumbnail_url=wallpaper.thumbnail_url,
                width=wallpaper.width,
                height=wallpaper.height,
                file_size=wallpaper.file_size,
                category_id=wallpaper.category_id,
                created_by=wallpaper.created_by,
                is_premium=wallpaper.is_premium,
                is_featured=wallpaper.is_featured,
                view_count=wallpaper.view_count,
                like_count=wallpaper.like_count,
                download_count=wallpaper.download_count,
                created_at=wallpaper.created_at,
                updated_at=wallpaper.updated_at,
                deleted_at=wallpaper.deleted_at,
            )
            session.add(row)
            session.commit()
            category = (
                session.get(CategoryRow, row.category_id) if row.category_id else None
            )
            return self._to_wallpaper(row, category)

    def get_wallpaper(self, wallpaper_id: str) -> Optional[WallpaperRecord]:
        results = self._fetch(self._active().where(WallpaperRow.id == wallpaper_id))
        return results[0] if results else None

    def list_featured(self, limit: int = 5) -> list[WallpaperRecord]:
        return self._fetch(
            self._active()
            .where(WallpaperRow.is_featured.is_(True))
            .order_by(WallpaperRow.created_at.desc())
            .limit(limit)
        )

    def list_trending(self, limit: int = 12) -> list[WallpaperRecord]:
        return self._fetch(
            self._active()
            .order_by(WallpaperRow.like_count.desc(), WallpaperRow.created_at.desc())
            .limit(limit)
        )

    def list_latest(self, limit: int = 12) -> list[WallpaperRecord]:
        return self._fetch(
            self._active().order_by(WallpaperRow.created_at.desc()).limit(limit)
        )

    def list_most_downloaded(self, limit: int = 12) -> list[WallpaperRecord]:
        return self._fetch(
            self._active()
            .order_by(
                WallpaperRow.download_count.desc(), WallpaperRow.created_at.desc()
            )
            .limit(limit)
        )

    def list_by_category(self, slug: str, limit: int = 12) -> list[WallpaperRecord]:
        return self._fetch(
            self._active()
            .where(CategoryRow.slug == slug)
            .order_by(WallpaperRow.created_at.desc())
            .limit(limit)
        )

    def search_wallpapers(self, query: str, limit: int = 12) -> list[WallpaperRecord]:
        needle = query.strip()
        if not needle:
            return []
        pattern = _like_pattern(needle)
        return self._fetch(
            self._active()
            .where(
                or_(
                    WallpaperRow.title.ilike(pattern, escape="\\"),
                    WallpaperRow.description.ilike(pattern, escape="\\"),
                )
            )
            .order_by(WallpaperRow.like_count.desc())
            .limit(limit)
        )

    def _update_wallpaper(self, wallpaper_id: str, values: dict) -> bool:
        # Soft-deleted wallpapers are never modified.
        stmt = update(WallpaperRow).where(
            WallpaperRow.id == wallpaper_id, WallpaperRow.deleted_at.is_(None)
        )
        with self.Session() as session:
            result = session.execute(stmt.values(**values))
            session.commit()
            return bool(result.rowcount)

    def soft_delete_wallpaper(self, wallpaper_id: str) -> bool:
        return self._update_wallpaper(wallpaper_id, {"deleted_at": time.time()})

    def set_featured(self, wallpaper_id: str, is_featured: bool) -> bool:
        return self._update_wallpaper(
            wallpaper_id, {"is_featured": is_featured, "updated_at": time.time()}
        )

    def increment_view_count(self, wallpaper_id: str) -> bool:
        return self._update_wallpaper(
            wallpaper_id,
            {"view_count": WallpaperRow.view_count + 1},
        )

    def increment_download_count(self, wallpaper_id: str) -> bool:
        return self._update_wallpaper(
            wallpaper_id,
            {"download_count": WallpaperRow.download_count + 1},
        )

    # Favorites

    def list_favorites(self, user_id: str) -> list[FavoriteRecord]:
        with self.Session() as session:
            stmt = (
                select(FavoriteRow, WallpaperRow)
                .outerjoin(WallpaperRow, FavoriteRow.wallpaper_id == WallpaperRow.id)
                .where(FavoriteRow.user_id == user_id)
                .order_by(FavoriteRow.created_at.desc())
            )
            return [
                self._to_favorite(favorite, wallpaper)
                for favorite, wallpaper in session.execute(stmt).all()
            ]

    def _find_favorite(
        self, session: Session, user_id: str, wallpaper_id: str
    ) -> Optional["FavoriteRow"]:
        return session.execute(
            select(FavoriteRow).where(
                FavoriteRow.user_id == user_id,
                FavoriteRow.wallpaper_id == wallpaper_id,
            )
        ).scalar_one_or_none()

    def add_favorite(self, user_id: str, wallpaper_id: str) -> Optional[FavoriteRecord]:
        with self.Session() as session:
            wallpaper = session.get(WallpaperRow, wallpaper_id)
            if not wallpaper or wallpaper.deleted_at is not None:
                return None
            existing = self._find_favorite(session, user_id, wallpaper_id)
            if existing:
                return self._to_favorite(existing)
            row = FavoriteRow(
                id=_new_id(),
                user_id=user_id,
                wallpaper_id=wallpaper_id,
                created_at=time.time(),
            )
            session.add(row)
            wallpaper.like_count = WallpaperRow.like_count + 1
            try:
                session.commit()
            except IntegrityError:
                # A concurrent request created the favorite first; the like_count
                # bump rolls back with the insert.
                session.rollback()
                existing = self._find_favorite(session, user_id, wallpaper_id)
                if existing is None:
                    raise
                return self._to_favorite(existing)
            return self._to_favorite(row)

    def remove_favorite(
        self, user_id: str, favorite_id: str
    ) -> Optional[FavoriteRecord]:
        with self.Session() as session:
            row = session.execute(
                select(FavoriteRow).where(
                    FavoriteRow.id == favorite_id, FavoriteRow.user_id == user_id
                )
            ).scalar_one_or_none()
            if not row:
                return None
            record = self._to_favorite(row)
            session.delete(row)
            session.execute(
                update(WallpaperRow)
                .where(WallpaperRow.id == row.wallpaper_id, WallpaperRow.like_count > 0)
                .values(like_count=WallpaperRow.like_count - 1)
            )
            session.commit()
            return record

    # Users

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            return self._to_user(row) if row else None

    def upsert_user(self, user: UserRecord) -> UserRecord:
        with self.Session() as session:
            row = session.get(UserRow, user.id)
            if row is None:
                row = UserRow(id=user.id, created_at=user.created_at)
                session.add(row)
            row.email = user.email
            row.display_name = user.display_name
            row.role = user.role
            row.is_banned = user.is_banned
            row.is_verified = user.is_verified
            row.last_login = user.last_login
            session.commit()
            return self._to_user(row)

    def set_user_role(self, user_id: str, role: str) -> bool:
        if role not in USER_ROLES:
            raise ValueError(f"Unknown role: {role}")
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            if not row:
                return False
            row.role = role
            session.commit()
            return True

    def list_users(self, limit: int = 100) -> list[UserRecord]:
        with self.Session() as session:
            rows = session.scalars(
                select(UserRow).order_by(UserRow.created_at.desc()).limit(limit)
            ).all()
            return [self._to_user(row) for row in rows]

    # Analytics

    def record_event(self, event: AnalyticsEvent) -> None:
        with self.Session() as session:
            session.add(AnalyticsEventRow(id=_new_id(), **asdict(event)))
            session.commit()


Base = declarative_base()


class CategoryRow(Base):
    __tablename__ = "categories"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False, unique=True, index=True)
    description = Column(String, nullable=True)
    order_index = Column(Integer, nullable=False, default=0)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class WallpaperRow(Base):
    __tablename__ = "wallpapers"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    image_url = Column(String, nullable=False)
    thumbnail_url = Column(String, nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    file_size = Column(Integer, nullable=True)
    category_id = Column(String, nullable=True, index=True)
    created_by = Column(String, nullable=True)
    is_premium = Column(Boolean, nullable=False, default=False)
    is_featured = Column(Boolean, nullable=False, default=False, index=True)
    view_count = Column(Integer, nullable=False, default=0)
    like_count = Column(Integer, nullable=False, default=0)
    download_count = Column(Integer, nullable=False, default=0)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)
    deleted_at = Column(Float, nullable=True)


class FavoriteRow(Base):
    __tablename__ = "user_likes"
    __table_args__ = (UniqueConstraint("user_id", "wallpaper_id"),)

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    wallpaper_id = Column(String, nullable=False, index=True)
    created_at = Column(Float, nullable=False)


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False)
    display_name = Column(String, nullable=True)
    role = Column(String, nullable=False, default="user")
    is_banned = Column(Boolean, nullable=False, default=False)
    is_verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(Float, nullable=False)
    last_login = Column(Float, nullable=True)


class AnalyticsEventRow(Base):
    __tablename__ = "analytics_events"

    id = Column(String, primary_key=True)
    event_type = Column(String, nullable=False, index=True)
    wallpaper_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=True)
    anon_fingerprint = Column(String, nullable=True)
    ip_hash = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    referrer = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
