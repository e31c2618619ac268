"""Centralized authentication dependencies.

Provides the user-scoped Supabase client used to identify the caller and the
service-role async client the ingestion pipeline writes through.

We pass an empty refresh token to ``set_session`` because the API gateway is
stateless: each request carries a fresh token from the client.
"""

import os

from fastapi import Depends, Header, HTTPException
from supabase import AsyncClient, Client, acreate_client, create_client


def _get_supabase_url() -> str:
    url = os.environ.get("SUPABASE_URL") or os.environ.get("NEXT_PUBLIC_SUPABASE_URL")
    if not url:
        raise RuntimeError("SUPABASE_URL is not configured")
    return url


def _get_supabase_anon_key() -> str:
    key = os.environ.get("SUPABASE_ANON_KEY") or os.environ.get("NEXT_PUBLIC_SUPABASE_ANON_KEY")
    if not key:
        raise RuntimeError("SUPABASE_ANON_KEY is not configured")
    return key


def get_service_key() -> str:
    return os.environ.get("SUPABASE_SERVICE_KEY", "")


async def get_user_token(authorization: str = Header(default="")) -> str:
    """Extract Bearer token from Authorization header.

    Returns the raw JWT string.
    """
    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=401,
            detail="Missing or invalid Authorization header. Expected: Bearer <token>",
        )

    token = authorization[7:].strip()
    if not token:
        raise HTTPException(
            status_code=401,
            detail="Missing bearer token",
        )
    return token


async def get_user_client(token: str = Depends(get_user_token)) -> Client:
    """Provide a Supabase client authenticated with the user's JWT."""
    client = create_client(_get_supabase_url(), _get_supabase_anon_key())
    client.auth.set_session(token, "")
    return client


async def get_current_user_id(client: Client = Depends(get_user_client)) -> str:
    """Resolve the caller's user id; every SMS endpoint is scoped to it."""
    user_response = client.auth.get_user()
    if not user_response or not user_response.user:
        raise HTTPException(status_code=401, detail="Invalid bearer token")
    return str(user_response.user.id)


async def get_async_service_client() -> AsyncClient:
    """Provide a service-role async Supabase client (bypasses RLS).

    Used by the ingestion pipeline in the API process and the Celery worker.
    """
    service_key = get_service_key()
    if not service_key:
        raise RuntimeError("SUPABASE_SERVICE_KEY is not configured")
    return await acreate_client(_get_supabase_url(), service_key)
