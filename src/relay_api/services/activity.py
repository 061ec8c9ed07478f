"""
User activity logs.

Capabilities:
    activity-create   POST /api/users/{user_id}/activity/logs    201
    activity-list     GET  /api/users/{user_id}/activity/logs
    activity-admin    GET  /api/admin/activity/logs           admin only

Access rules:
    - A token caller may read and write their own log.
    - Any other user's log requires the admin role (profiles.user_role).
    - The static key (system caller) may write and read any user's log.
    - The admin listing requires a token whose user is an admin.

Roles are cached in the "profile" namespace.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from relay_api.api.schemas import ActivityLogQuery, ActivityLogRequest, AdminActivityLogQuery
from relay_api.core.config import ActivityConfig
from relay_api.core.errors import RelayError
from relay_api.core.logging import get_logger, verbose
from relay_api.pipeline.auth import AuthContext
from relay_api.pipeline.cache import ResponseCache
from relay_api.pipeline.handler import ANY_AUTH, Capability, PipelineRequest
from relay_api.providers.supabase import SupabaseClient
from relay_api.utils.timeit import iso_now

_LOG = get_logger("relay.activity")

ACTIVITY_TABLE = "user_action_logs"
EVENT_TABLE = "unified_logs"
ADMIN_ROLE = "admin"
PROFILE_NAMESPACE = "profile"


class RoleLookup:
    """User role from the profile store, cached per user."""

    def __init__(self, store: Optional[SupabaseClient], cache: ResponseCache):
        self._store = store
        self._cache = cache

    def role(self, user_id: str) -> Optional[str]:
        key = ResponseCache.key({"userId": user_id}, PROFILE_NAMESPACE)
        cached = self._cache.get(key)
        if cached is not None:
            return cached["role"]
        if self._store is None:
            return None
        role = self._store.get_user_role(user_id)
        self._cache.set(key, {"role": role}, PROFILE_NAMESPACE)
        verbose(_LOG, "role_loaded", role=role)
        return role

    def is_admin(self, user_id: str) -> bool:
        return self.role(user_id) == ADMIN_ROLE


def pagination(total: int, limit: int, offset: int) -> Dict[str, Any]:
    return {"total": total, "limit": limit, "offset": offset, "hasMore": offset + limit < total}


def activity_entry(row: Dict[str, Any]) -> Dict[str, Any]:
    """user_action_logs row -> wire shape."""
    return {
        "id": row.get("id"),
        "userId": row.get("user_id"),
        "actionType": row.get("action_type"),
        "actionData": row.get("action_data"),
        "createdAt": row.get("created_at"),
        "sessionId": row.get("session_id"),
        "userAgent": row.get("user_agent"),
        "ipAddress": row.get("ip_address"),
    }


def event_entry(row: Dict[str, Any]) -> Dict[str, Any]:
    """unified_logs user_action row -> wire shape."""
    metadata = row.get("metadata") or {}
    return {
        "id": row.get("id"),
        "userId": row.get("user_id"),
        "actionType": row.get("event_type"),
        "actionData": row.get("event_data"),
        "metadata": metadata,
        "createdAt": row.get("created_at"),
        "sessionId": metadata.get("sessionId") or row.get("session_id"),
        "userAgent": metadata.get("userAgent"),
        "ipAddress": metadata.get("ipAddress"),
    }


class ActivityService:
    """
    Args:
        store: Datastore client; None when Supabase is not configured
            (every call then fails as a provider error).
        roles: Role lookup for the self-or-admin rule.
        config: Pagination bounds.
    """

    def __init__(self, store: Optional[SupabaseClient], roles: RoleLookup, config: Optional[ActivityConfig] = None):
        self.store = store
        self.roles = roles
        self.config = config or ActivityConfig()

    def _require_store(self) -> SupabaseClient:
        if self.store is None:
            raise RelayError.provider_failure("supabase", "Datastore not configured", cause="SUPABASE_URL is not set")
        return self.store

    def _limit(self, limit: Optional[int]) -> int:
        return min(limit or self.config.default_limit, self.config.max_limit)

    # ── access ──────────────────────────────────────────────────────────────

    def authorize_user(self, auth: AuthContext, request: PipelineRequest) -> None:
        target = request.path_params.get("user_id")
        if not target:
            raise RelayError.validation("User ID is required", [{"field": "userId", "message": "Field required"}])
        if auth.is_system or auth.identity == target:
            return
        if not self.roles.is_admin(auth.identity):
            raise RelayError.authorization("Access denied: You can only access your own activity logs")

    def authorize_admin(self, auth: AuthContext, request: PipelineRequest) -> None:
        if not self.roles.is_admin(auth.identity):
            raise RelayError.authorization("Admin access required")

    # ── operations ──────────────────────────────────────────────────────────

    def create(self, payload: ActivityLogRequest, auth: AuthContext, request: PipelineRequest) -> Dict[str, Any]:
        store = self._require_store()
        metadata = payload.metadata
        headers = {k.lower(): v for k, v in request.headers.items()}
        row = store.insert(
            ACTIVITY_TABLE,
            {
                "user_id": request.path_params["user_id"],
                "action_type": payload.action_type.value,
                "action_data": payload.action_data,
                "ip_address": (metadata and metadata.ip_address) or headers.get("x-forwarded-for"),
                "user_agent": (metadata and metadata.user_agent) or headers.get("user-agent"),
                "session_id": metadata.session_id if metadata else None,
            },
        )
        if row is None:
            raise RelayError.provider_failure("supabase", "Failed to create activity log", cause="insert returned no row")
        entry = activity_entry(row)
        return {k: entry[k] for k in ("id", "userId", "actionType", "actionData", "createdAt")}

    def list_for_user(self, payload: ActivityLogQuery, auth: AuthContext, request: PipelineRequest) -> Dict[str, Any]:
        store = self._require_store()
        filters = {"user_id": request.path_params["user_id"]}
        if payload.action_type:
            filters["action_type"] = payload.action_type
        limit = self._limit(payload.limit)
        rows = store.select(
            ACTIVITY_TABLE, filters, order="created_at", descending=True, limit=limit, offset=payload.offset
        )
        total = store.count(ACTIVITY_TABLE, filters)
        return {"logs": [activity_entry(r) for r in rows], "pagination": pagination(total, limit, payload.offset)}

    def list_all(self, payload: AdminActivityLogQuery, auth: AuthContext, request: PipelineRequest) -> Dict[str, Any]:
        store = self._require_store()
        filters: Dict[str, Any] = {"event_category": "user_action"}
        if payload.action_type:
            filters["event_type"] = payload.action_type
        if payload.user_id:
            filters["user_id"] = payload.user_id
        limit = self._limit(payload.limit)
        rows = store.select(
            EVENT_TABLE, filters, order="created_at", descending=True, limit=limit, offset=payload.offset
        )
        total = store.count(EVENT_TABLE, filters)
        return {"logs": [event_entry(r) for r in rows], "pagination": pagination(total, limit, payload.offset)}

    # ── responses ───────────────────────────────────────────────────────────

    @staticmethod
    def created_response(result: Dict[str, Any], payload: Any) -> Dict[str, Any]:
        return {
            "success": True,
            "data": result,
            "message": "Activity log created successfully",
            "timestamp": iso_now(),
        }

    @staticmethod
    def list_response(result: Dict[str, Any], payload: Any) -> Dict[str, Any]:
        return {
            "success": True,
            "data": result["logs"],
            "pagination": result["pagination"],
            "message": "Activity logs retrieved successfully",
            "timestamp": iso_now(),
        }

    @staticmethod
    def _summary(payload: Any) -> Dict[str, Any]:
        return payload.model_dump(mode="json", by_alias=True, exclude_none=True)

    # ── capabilities ────────────────────────────────────────────────────────

    def create_capability(self) -> Capability:
        return Capability(
            name="activity-create",
            service_name="activity",
            schema=ActivityLogRequest,
            invoke=self.create,
            auth_methods=ANY_AUTH,
            authorize=self.authorize_user,
            summarize=self._summary,
            respond=self.created_response,
            success_status=201,
        )

    def list_capability(self) -> Capability:
        return Capability(
            name="activity-list",
            service_name="activity",
            schema=ActivityLogQuery,
            invoke=self.list_for_user,
            auth_methods=ANY_AUTH,
            authorize=self.authorize_user,
            source="query",
            summarize=self._summary,
            respond=self.list_response,
        )

    def admin_capability(self) -> Capability:
        return Capability(
            name="activity-admin",
            service_name="activity",
            schema=AdminActivityLogQuery,
            invoke=self.list_all,
            authorize=self.authorize_admin,
            source="query",
            summarize=self._summary,
            respond=self.list_response,
        )

