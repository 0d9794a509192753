"""
FlowStore - Supabase record store for focus flows and activity telemetry.

Handles:
- Auth token storage and email/password login for the terminal app
- Bearer token verification for the extension API
- Flow records (create, status updates, queries)
- Activity records from the browser extension
- Distraction alert rows (delivered to subscribers by Supabase Realtime)

Every failure from PostgREST is converted into a classified StoreError.
Queries and updates always filter on the owning user id in addition to
the row-level security policies on the tables.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from supabase import Client, create_client

import config
from sync.errors import StoreError, StoreErrorKind, classify_store_error

logger = logging.getLogger(__name__)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialise a datetime as an ISO-8601 UTC string (naive values are local time)."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


class FlowStore:
    """
    Supabase client wrapper for flows and activities.

    Works without credentials: is_available() is False and every write
    reports failure instead of raising at construction time.
    """

    def __init__(
        self,
        supabase_url: str = "",
        supabase_key: str = "",
        client: Optional[Client] = None,
        auth_file: Optional[Path] = None,
        load_session: bool = True,
    ) -> None:
        """
        Initialise the store.

        Args:
            supabase_url: Supabase project URL (falls back to config).
            supabase_key: Supabase anon or service role key (falls back to the anon key).
            client: Pre-built Supabase client (tests, API server).
            auth_file: Where login tokens are kept (falls back to config.AUTH_FILE).
            load_session: Sign in with the tokens saved by --login. Off for the
                service role store, which must not act as the CLI user.
        """
        self._url = supabase_url or config.SUPABASE_URL
        self._key = supabase_key or config.SUPABASE_ANON_KEY
        self.auth_file: Path = auth_file or config.AUTH_FILE
        self._load_session = load_session

        self._client = client
        if self._client is None:
            self._init_client()

    @classmethod
    def for_service(cls) -> "FlowStore":
        """Store using the service role key (extension API server)."""
        return cls(supabase_key=config.SUPABASE_SERVICE_ROLE_KEY, load_session=False)

    # ------------------------------------------------------------------
    # Client initialisation
    # ------------------------------------------------------------------

    def _init_client(self) -> None:
        """Create the Supabase client if credentials are available."""
        if not self._url or not self._key:
            logger.info("Supabase credentials not configured - record store disabled")
            return
        try:
            self._client = create_client(self._url, self._key)
            if self._load_session:
                self._load_stored_session()
            logger.info("Supabase client initialised")
        except Exception as e:
            logger.warning(f"Failed to initialise Supabase client: {e}")
            self._client = None

    def is_available(self) -> bool:
        """Check if the store is configured and ready."""
        return self._client is not None

    def _require_client(self) -> Client:
        if self._client is None:
            raise StoreError(StoreErrorKind.UNKNOWN, "Supabase is not configured")
        return self._client

    # ------------------------------------------------------------------
    # Auth token persistence
    # ------------------------------------------------------------------

    def _load_stored_session(self) -> None:
        """Load stored auth tokens from disk if they exist."""
        if not self._client or not self.auth_file.exists():
            return
        try:
            data = json.loads(self.auth_file.read_text())
            access_token = data.get("access_token", "")
            refresh_token = data.get("refresh_token", "")
            if access_token and refresh_token:
                self._client.auth.set_session(access_token, refresh_token)
                logger.info(f"Loaded stored session for {data.get('email', 'unknown')}")
        except Exception as e:
            logger.warning(f"Failed to load stored session: {e}")

    def _save_session(self, session) -> None:
        """Save auth tokens to local storage."""
        try:
            self.auth_file.parent.mkdir(parents=True, exist_ok=True)
            data = {
                "access_token": session.access_token,
                "refresh_token": session.refresh_token,
                "user_id": session.user.id,
                "email": session.user.email,
                "expires_at": session.expires_at,
            }
            self.auth_file.write_text(json.dumps(data, indent=2))
            logger.info(f"Auth session saved for {session.user.email}")
        except Exception as e:
            logger.warning(f"Failed to save auth session: {e}")

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def login_with_email(self, email: str, password: str) -> Dict:
        """
        Login with email and password.

        Returns:
            {"success": bool, "error": str | None}
        """
        if not self._client:
            return {"success": False, "error": "Supabase not configured"}
        try:
            result = self._client.auth.sign_in_with_password({
                "email": email,
                "password": password,
            })
            self._save_session(result.session)
            return {"success": True, "error": None}
        except Exception as e:
            logger.warning(f"Login failed for {email}: {e}")
            return {"success": False, "error": str(e)}

    def logout(self) -> None:
        """Sign out and clear stored tokens."""
        if self._client:
            try:
                self._client.auth.sign_out()
            except Exception as e:
                logger.debug(f"Sign out request failed: {e}")
        if self.auth_file.exists():
            try:
                self.auth_file.unlink()
            except OSError as e:
                logger.warning(f"Could not remove {self.auth_file}: {e}")
        logger.info("Logged out and cleared local tokens")

    @staticmethod
    def _user_dict(response) -> Optional[Dict[str, Any]]:
        user = getattr(response, "user", None) if response else None
        if not user:
            return None
        return {"id": user.id, "email": getattr(user, "email", "") or ""}

    def get_current_user(self) -> Optional[Dict[str, Any]]:
        """
        Get the signed-in user of this client.

        Returns:
            {"id": str, "email": str} or None if not authenticated.
        """
        if not self._client:
            return None
        try:
            return self._user_dict(self._client.auth.get_user())
        except Exception as e:
            logger.debug(f"No authenticated user: {e}")
            return None

    def verify_token(self, access_token: str) -> Optional[Dict[str, Any]]:
        """
        Validate a bearer token against Supabase Auth.

        Returns:
            {"id": str, "email": str} for a valid token, None otherwise.
        """
        if not self._client or not access_token:
            return None
        try:
            return self._user_dict(self._client.auth.get_user(access_token))
        except Exception as e:
            logger.warning(f"Supabase auth error: {e}")
            return None

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    def create_flow(
        self,
        user_id: str,
        task_description: str,
        allowed_urls: Sequence[str],
        start_time: datetime,
        end_time: datetime,
        status: str = config.FLOW_STATUS_ACTIVE,
    ) -> Dict[str, Any]:
        """
        Insert a new flow row.

        Returns:
            The inserted row (may lack "id" if the insert returned nothing).

        Raises:
            StoreError: classified insert failure
        """
        client = self._require_client()
        row = {
            "user_id": user_id,
            "task_description": task_description,
            "allowed_urls": list(allowed_urls),
            "start_time": to_iso(start_time),
            "end_time": to_iso(end_time),
            "status": status,
        }
        try:
            result = client.table(config.FLOWS_TABLE).insert(row).execute()
        except Exception as e:
            raise classify_store_error(e) from e

        data = result.data or []
        logger.info(f"Inserted flow for user {user_id}")
        return data[0] if data else {}

    def update_flow_status(
        self,
        flow_id: str,
        user_id: str,
        status: str,
        end_time: Optional[datetime] = None,
    ) -> Dict:
        """
        Update a flow's status (and end time when given), restricted to the owner's row.

        Returns:
            {"success": bool, "error": str | None, "error_type": str | None}
        """
        if not self._client:
            return {"success": False, "error": "Supabase not configured", "error_type": StoreErrorKind.UNKNOWN}
        if not user_id:
            return {"success": False, "error": "Authentication required", "error_type": StoreErrorKind.AUTH_REQUIRED}

        update_data = {"status": status}
        if end_time is not None:
            update_data["end_time"] = to_iso(end_time)
        try:
            (
                self._client.table(config.FLOWS_TABLE)
                .update(update_data)
                .eq("id", flow_id)
                .eq("user_id", user_id)
                .execute()
            )
        except Exception as e:
            error = classify_store_error(e)
            logger.error(f"Error updating flow {flow_id} status: {error.message}")
            return {"success": False, "error": error.message, "error_type": error.kind}

        logger.info(f"Flow {flow_id} marked {status}")
        return {"success": True, "error": None, "error_type": None}

    def get_flow(self, flow_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one flow owned by the user, or None if it doesn't exist."""
        client = self._require_client()
        try:
            result = (
                client.table(config.FLOWS_TABLE)
                .select("*")
                .eq("id", flow_id)
                .eq("user_id", user_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise classify_store_error(e) from e
        data = result.data or []
        return data[0] if data else None

    def list_flows(
        self,
        user_id: str,
        statuses: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        List the user's flows, newest first.

        Args:
            user_id: Owner id
            statuses: Optional status filter
            limit: Optional maximum number of rows
        """
        client = self._require_client()
        try:
            query = (
                client.table(config.FLOWS_TABLE)
                .select("id, task_description, allowed_urls, status, start_time, end_time, created_at")
                .eq("user_id", user_id)
            )
            if statuses:
                query = query.in_("status", list(statuses))
            query = query.order("created_at", desc=True)
            if limit:
                query = query.limit(limit)
            result = query.execute()
        except Exception as e:
            raise classify_store_error(e) from e
        return result.data or []

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------

    def record_activity(self, user_id: str, activity: Dict[str, Any]) -> None:
        """
        Insert one activity row reported by the browser extension.

        Args:
            user_id: Owner id
            activity: Dict with url, title, domain, activity_type, timestamp,
                      duration, task_id, is_distraction

        Raises:
            StoreError: classified insert failure
        """
        client = self._require_client()
        row = {
            "user_id": user_id,
            "url": activity.get("url"),
            "title": activity.get("title"),
            "domain": activity.get("domain"),
            "activity_type": activity.get("activity_type"),
            "timestamp": to_iso(activity.get("timestamp")),
            "duration": activity.get("duration") or 0,
            "task_id": activity.get("task_id"),
            "is_distraction": bool(activity.get("is_distraction")),
            "created_at": to_iso(datetime.now()),
        }
        try:
            client.table(config.ACTIVITIES_TABLE).insert(row).execute()
        except Exception as e:
            raise classify_store_error(e) from e

    def list_activities(
        self, user_id: str, limit: int = config.API_MONITOR_DEFAULT_LIMIT, task_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """List the user's most recent activities, optionally for one task."""
        client = self._require_client()
        try:
            query = (
                client.table(config.ACTIVITIES_TABLE)
                .select("*")
                .eq("user_id", user_id)
            )
            if task_id:
                query = query.eq("task_id", task_id)
            result = query.order("timestamp", desc=True).limit(limit).execute()
        except Exception as e:
            raise classify_store_error(e) from e
        return result.data or []

    def publish_distraction_alert(self, payload: Dict[str, Any]) -> bool:
        """
        Publish a distraction alert.

        Alerts are rows in the distraction_alerts table; Supabase Realtime
        pushes inserts to subscribed clients.

        Returns:
            True if the alert was stored.
        """
        if not self._client:
            return False
        try:
            self._client.table(config.DISTRACTION_ALERTS_TABLE).insert({
                "user_id": payload.get("user_id"),
                "task_id": payload.get("task_id"),
                "url": payload.get("url"),
                "title": payload.get("title"),
                "domain": payload.get("domain"),
                "timestamp": to_iso(payload.get("timestamp")),
            }).execute()
            return True
        except Exception as e:
            logger.error(f"Error broadcasting distraction alert: {e}")
            return False

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def check_connection(self) -> Dict:
        """
        Verify the flows table is reachable.

        Returns:
            {"success": bool, "error": str | None, "suggestion": str | None}
        """
        if not self._client:
            return {
                "success": False,
                "error": "Supabase not configured",
                "suggestion": "Set SUPABASE_URL and SUPABASE_ANON_KEY in your .env file.",
            }
        try:
            self._client.table(config.FLOWS_TABLE).select("id").limit(1).execute()
        except Exception as e:
            error = classify_store_error(e)
            logger.error(f"Database test failed: {error.message}")
            return {"success": False, "error": error.message, "suggestion": error.suggestion}
        return {"success": True, "error": None, "suggestion": None}
