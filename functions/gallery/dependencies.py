"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from gallery.auth import AuthProvider, InMemoryAuthProvider, SupabaseAuthProvider
from gallery.config import get_settings
from gallery.db import DbClient, InMemoryDbClient, PostgresDbClient, UserRecord
from gallery.queue import EventQueue, InMemoryEventQueue, RedisEventQueue
from gallery.sessions import NavigatorRegistry
from gallery.storage import InMemoryStorageClient, R2StorageClient, StorageClient

logger = logging.getLogger(__name__)

_db_client: DbClient | None = None
_storage_client: StorageClient | None = None
_queue_client: EventQueue | None = None
_auth_provider: AuthProvider | None = None

security = HTTPBearer(auto_error=False)


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so catalog state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.r2_bucket_name:
        _storage_client = InMemoryStorageClient(base_url=settings.r2_public_url)
    else:
        _storage_client = R2StorageClient(
            account_id=settings.r2_account_id or "",
            bucket=settings.r2_bucket_name,
            access_key_id=settings.r2_access_key_id or "",
            secret_access_key=settings.r2_secret_access_key or "",
            public_base_url=settings.r2_public_url,
        )
    return _storage_client


def get_queue_client() -> EventQueue:
    """
    Return a singleton queue client for handing analytics events to workers.
    """
    global _queue_client
    if _queue_client:
        return _queue_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.redis_url:
        _queue_client = InMemoryEventQueue()
    else:
        _queue_client = RedisEventQueue(
            url=settings.redis_url,
            queue_key=settings.redis_queue_key,
        )
    return _queue_client


def get_auth_provider() -> AuthProvider:
    global _auth_provider
    if _auth_provider:
        return _auth_provider

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.supabase_url:
        _auth_provider = InMemoryAuthProvider()
    else:
        _auth_provider = SupabaseAuthProvider(
            settings.supabase_url, settings.supabase_anon_key or ""
        )
    return _auth_provider


def get_navigator_registry(request: Request) -> NavigatorRegistry:
    """Navigators live on the app that created them, not in this module."""
    return request.app.state.navigators


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    auth: AuthProvider = Depends(get_auth_provider),
    db: DbClient = Depends(get_db_client),
) -> Optional[UserRecord]:
    if not credentials:
        return None
    auth_user = auth.get_user(credentials.credentials)
    if not auth_user:
        return None
    user = db.get_user(auth_user.id)
    if user is None:
        user = db.upsert_user(
            UserRecord(
                id=auth_user.id,
                email=auth_user.email,
                display_name=auth_user.display_name or auth_user.email.split("@")[0],
                last_login=time.time(),
            )
        )
        logger.info("Created user profile for %s", auth_user.id)
    return user


def get_current_user(
    user: Optional[UserRecord] = Depends(get_optional_user),
) -> UserRecord:
    if user is None:
        raise HTTPException(status_code=401, detail="Please sign in")
    if user.is_banned:
        raise HTTPException(status_code=403, detail="Account is banned")
    return user


def require_admin(user: UserRecord = Depends(get_current_user)) -> UserRecord:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Forbidden: Admin access required")
    return user
