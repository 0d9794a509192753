"""
Extension API - JSON endpoints used by the FocusFlow browser extension.

Routes (all under /api/extension):
    GET  /health     connectivity check, auth optional
    GET  /config     caller identity and auth mode
    POST /monitor    record one activity observation
    GET  /monitor    recent activities (?limit=, ?taskId=)
    GET  /tasks      caller's flows (?status=, ?includeCompleted=true)
    POST /tasks      update a flow's status

Every route except /health requires "Authorization: Bearer <token>";
the token is validated against Supabase Auth and all reads and writes are
scoped to the token's user.

ExtensionAPI.handle() is transport-free: it takes the method, path,
headers and raw body and returns (status_code, json_dict). The HTTP
server in sync/api_server.py is a thin adapter around it.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import parse_qs, urlparse

import config
from sync.errors import StoreError, StoreErrorKind, suggestion_for
from tracking.domains import normalise_domain

logger = logging.getLogger(__name__)

API_PREFIX = "/api/extension"

Response = Tuple[int, Dict[str, Any]]


class BadRequest(Exception):
    """Malformed request body or query (HTTP 400)."""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: Any) -> datetime:
    """
    Parse an extension timestamp.

    Accepts epoch milliseconds (what Date.now() sends) or an ISO-8601
    string (a trailing "Z" is allowed).

    Raises:
        BadRequest: if the value can't be interpreted
    """
    if isinstance(value, bool):
        raise BadRequest("Invalid timestamp")
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise BadRequest("Invalid timestamp")
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise BadRequest("Invalid timestamp")
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise BadRequest("Invalid timestamp")


class ExtensionAPI:
    """Request handler for the extension endpoints."""

    def __init__(
        self,
        store,
        supabase_url: str = "",
        supabase_anon_key: str = "",
    ):
        """
        Args:
            store: FlowStore built with the service role key
            supabase_url: Public project URL returned by /config?mode=supabase
            supabase_anon_key: Public anon key returned by /config?mode=supabase
        """
        self.store = store
        self.supabase_url = supabase_url or config.SUPABASE_URL
        self.supabase_anon_key = supabase_anon_key or config.SUPABASE_ANON_KEY

        self._routes = {
            ("GET", "/health"): self._health,
            ("GET", "/config"): self._config,
            ("POST", "/monitor"): self._record_activity,
            ("GET", "/monitor"): self._list_activities,
            ("GET", "/tasks"): self._list_tasks,
            ("POST", "/tasks"): self._update_task,
        }

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def handle(
        self,
        method: str,
        path: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[bytes] = None,
    ) -> Response:
        """
        Handle one request.

        Returns:
            (HTTP status code, JSON-serialisable response body)
        """
        parsed = urlparse(path)
        route = parsed.path.rstrip("/")
        if not route.startswith(API_PREFIX):
            return 404, {"error": "Not found"}
        route = route[len(API_PREFIX):] or "/"

        handler = self._routes.get((method.upper(), route))
        if handler is None:
            if any(r == route for _, r in self._routes):
                return 405, {"error": "Method not allowed"}
            return 404, {"error": "Not found"}

        query = {k: v[-1] for k, v in parse_qs(parsed.query).items()}
        header_map = {k.lower(): v for k, v in (headers or {}).items()}

        try:
            return handler(query=query, headers=header_map, body=body)
        except BadRequest as e:
            return 400, {"error": str(e)}
        except Exception as e:
            logger.error(f"Unhandled error in {method} {parsed.path}: {e}", exc_info=True)
            return 500, {"error": "Internal Server Error"}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _bearer_token(headers: Mapping[str, str]) -> Optional[str]:
        auth_header = headers.get("authorization") or ""
        if not auth_header.startswith("Bearer "):
            return None
        token = auth_header[len("Bearer "):].strip()
        return token or None

    def _authenticate(self, headers: Mapping[str, str]) -> Tuple[Optional[Dict[str, Any]], Optional[Response]]:
        """
        Resolve the caller from the bearer token.

        Returns:
            (user, None) on success, (None, error_response) otherwise.
        """
        token = self._bearer_token(headers)
        if not token:
            return None, (401, {"error": "Unauthorized"})
        if not self.store.is_available():
            return None, (500, {"error": "Supabase environment variables not configured."})
        user = self.store.verify_token(token)
        if not user:
            return None, (401, {"error": "Unauthorized"})
        return user, None

    @staticmethod
    def _json_body(body: Optional[bytes]) -> Dict[str, Any]:
        if not body:
            raise BadRequest("Request body must be a JSON object")
        try:
            data = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise BadRequest("Invalid JSON body")
        if not isinstance(data, dict):
            raise BadRequest("Request body must be a JSON object")
        return data

    @staticmethod
    def _store_failure(error: StoreError, fallback: str) -> Response:
        if error.kind == StoreErrorKind.MISSING_RELATION:
            return 500, {
                "error": "Database not properly configured. Please run migrations.",
                "hint": error.suggestion,
            }
        return 500, {"error": fallback, "hint": error.suggestion}

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    def _health(self, query, headers, body) -> Response:
        if not self.store.is_available():
            return 500, {
                "status": "error",
                "message": "Supabase environment variables not configured.",
                "timestamp": _now_iso(),
            }

        db = self.store.check_connection()
        response: Dict[str, Any] = {
            "status": "ok",
            "timestamp": _now_iso(),
            "services": {
                "database": "ok" if db.get("success") else "error",
                "auth": "ok",
            },
        }

        token = self._bearer_token(headers)
        if token:
            user = self.store.verify_token(token)
            response["services"]["auth"] = "ok" if user else "error"
            if user:
                response["user"] = {"id": user["id"], "email": user.get("email", "")}
        return 200, response

    def _config(self, query, headers, body) -> Response:
        user, error = self._authenticate(headers)
        if error:
            return error

        api_only = query.get("mode") != "supabase"
        response: Dict[str, Any] = {
            "userId": user["id"],
            "userEmail": user.get("email", ""),
            "accessToken": self._bearer_token(headers),
            "authMode": "api-only" if api_only else "supabase-direct",
        }
        if not api_only:
            response["supabaseUrl"] = self.supabase_url
            response["supabaseAnonKey"] = self.supabase_anon_key
        return 200, response

    def _record_activity(self, query, headers, body) -> Response:
        user, error = self._authenticate(headers)
        if error:
            return error

        data = self._json_body(body)
        url = data.get("url")
        activity_type = data.get("activityType")
        timestamp = data.get("timestamp")
        if not url or not activity_type or not timestamp:
            raise BadRequest("Missing required fields: url, activityType, timestamp")

        duration = data.get("duration") or 0
        if isinstance(duration, bool) or not isinstance(duration, (int, float)):
            raise BadRequest("duration must be a number")

        is_distraction = bool(data.get("isDistraction"))
        task_id = data.get("taskId")
        activity = {
            "url": url,
            "title": data.get("title"),
            "domain": data.get("domain") or normalise_domain(url),
            "activity_type": activity_type,
            "timestamp": parse_timestamp(timestamp),
            "duration": duration,
            "task_id": task_id,
            "is_distraction": is_distraction,
        }

        try:
            self.store.record_activity(user["id"], activity)
        except StoreError as e:
            logger.error(f"Error inserting activity: {e.message}")
            return self._store_failure(e, "Failed to record activity")

        if is_distraction and task_id:
            published = self.store.publish_distraction_alert({
                "user_id": user["id"],
                "task_id": task_id,
                "url": url,
                "title": activity["title"],
                "domain": activity["domain"],
                "timestamp": activity["timestamp"],
            })
            if not published:
                logger.warning(f"Distraction alert for task {task_id} was not delivered")

        return 200, {"message": "Activity recorded successfully", "isDistraction": is_distraction}

    def _list_activities(self, query, headers, body) -> Response:
        user, error = self._authenticate(headers)
        if error:
            return error

        try:
            limit = int(query.get("limit", config.API_MONITOR_DEFAULT_LIMIT))
        except ValueError:
            raise BadRequest("limit must be an integer")
        if limit < 1:
            raise BadRequest("limit must be positive")

        try:
            activities = self.store.list_activities(user["id"], limit=limit, task_id=query.get("taskId"))
        except StoreError as e:
            logger.error(f"Error fetching activities: {e.message}")
            return self._store_failure(e, "Failed to fetch activities")
        return 200, {"activities": activities}

    def _list_tasks(self, query, headers, body) -> Response:
        user, error = self._authenticate(headers)
        if error:
            return error

        status_filter = query.get("status")
        if status_filter:
            if status_filter not in config.FLOW_STATUSES:
                raise BadRequest(f"status must be one of: {', '.join(config.FLOW_STATUSES)}")
            statuses = [status_filter]
        elif query.get("includeCompleted") == "true":
            statuses = list(config.FLOW_STATUSES)
        else:
            statuses = [config.FLOW_STATUS_ACTIVE]

        try:
            tasks = self.store.list_flows(user["id"], statuses=statuses)
        except StoreError as e:
            logger.error(f"Error fetching tasks: {e.message}")
            return self._store_failure(e, "Failed to fetch tasks")
        return 200, {"tasks": tasks}

    def _update_task(self, query, headers, body) -> Response:
        user, error = self._authenticate(headers)
        if error:
            return error

        data = self._json_body(body)
        task_id = data.get("taskId")
        status = data.get("status")
        if not task_id or not status:
            raise BadRequest("Missing taskId or status")
        if status not in config.FLOW_STATUSES:
            raise BadRequest(f"status must be one of: {', '.join(config.FLOW_STATUSES)}")

        end_time = None if status == config.FLOW_STATUS_ACTIVE else datetime.now(timezone.utc)
        result = self.store.update_flow_status(str(task_id), user["id"], status, end_time)
        if not result.get("success"):
            logger.error(f"Error updating task {task_id}: {result.get('error')}")
            return 500, {"error": "Failed to update task", "hint": suggestion_for(result.get("error_type"))}

        return 200, {"message": "Task updated successfully", "taskId": task_id, "status": status}
