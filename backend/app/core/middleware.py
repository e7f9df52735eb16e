"""
Request pipeline middleware for the clinic API.
Attaches the authenticated actor to each request and turns requests into
audit entries without per-route boilerplate.
"""

import ipaddress
import json
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from fastapi import Request, Response
from pydantic import EmailStr, TypeAdapter, ValidationError
from starlette.background import BackgroundTask, BackgroundTasks
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from app.core.config import settings
from app.core.data_classification import sanitize_snapshot
from app.core.logging import get_logger
from app.core.security import Actor, actor_from_token

logger = get_logger(__name__)

MODIFICATION_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
MUTATING_ACTIONS = {"CREATE", "UPDATE", "DELETE"}

# Route parameter names checked, in order, for the id of the resource acted upon
RESOURCE_ID_PARAMS = (
    "id",
    "userId",
    "user_id",
    "appointmentId",
    "appointment_id",
    "doctorId",
    "doctor_id",
    "patientId",
    "patient_id",
)

_email_adapter = TypeAdapter(EmailStr)


@dataclass
class AuditAnnotation:
    """Explicit audit metadata a route attaches to its request."""

    resource: Optional[str] = None
    action: Optional[str] = None
    resource_id: Optional[str] = None
    skip_audit: bool = False
    old_values: Any = None
    new_values: Any = None


def audit_resource(
    resource: Optional[str] = None,
    action: Optional[str] = None,
    skip_audit: bool = False,
):
    """
    Dependency factory that annotates a route for the audit middleware.

    Applied at route registration, e.g.
    ``dependencies=[Depends(audit_resource("appointments"))]``. Explicit
    values win over what the middleware would infer, except that the general
    request entry is always tagged and filtered by the HTTP method.
    """
    async def annotate(request: Request) -> AuditAnnotation:
        annotation = get_audit_annotation(request)
        if resource is not None:
            annotation.resource = resource
        if action is not None:
            annotation.action = action
        if skip_audit:
            annotation.skip_audit = True
        return annotation
    return annotate


def get_audit_annotation(request: Request) -> AuditAnnotation:
    """Return the request's annotation, creating an empty one if needed."""
    annotation = getattr(request.state, "audit", None)
    if annotation is None:
        annotation = AuditAnnotation()
        request.state.audit = annotation
    return annotation


def map_http_method_to_action(method: str) -> str:
    """Map an HTTP method to an audit action."""
    method = method.upper()
    if method == "POST":
        return "CREATE"
    if method == "GET":
        return "READ"
    if method in ("PUT", "PATCH"):
        return "UPDATE"
    if method == "DELETE":
        return "DELETE"
    return method


def extract_resource_from_path(path: str) -> str:
    """
    Infer the resource name from a route path.

    /api/<version>/<resource>/... yields <resource>; otherwise the last path
    segment is used, and "unknown" when there are no segments at all.
    """
    clean_path = path.split("?")[0]
    parts = [part for part in clean_path.split("/") if part]

    if "api" in parts:
        api_index = parts.index("api")
        if len(parts) > api_index + 2:
            return parts[api_index + 2]

    return parts[-1] if parts else "unknown"


def extract_resource_id(path_params: Mapping[str, Any]) -> Optional[str]:
    """Return the first conventional id parameter bound by the route."""
    for name in RESOURCE_ID_PARAMS:
        value = path_params.get(name)
        if value not in (None, ""):
            return str(value)
    return None


def should_skip_audit(path: str, skip_paths: Iterable[str]) -> bool:
    """Paths matching the skip list are never audited."""
    return any(skip_path in path for skip_path in skip_paths)


def is_significant_action(action: str, resource: str, sensitive_resources: Iterable[str]) -> bool:
    """Mutations are always logged; reads only for sensitive resources."""
    if action in MUTATING_ACTIONS:
        return True
    return action == "READ" and resource in sensitive_resources


def extract_client_ip(request: Request) -> str:
    """Client IP, honouring proxy headers."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host

    return "unknown"


def audit_client_ip(request: Request) -> Optional[str]:
    """Client IP suitable for an audit entry, or None when it is not an IP literal."""
    client_ip = extract_client_ip(request)
    return client_ip if is_ip_address(client_ip) else None


def is_ip_address(value: Optional[str]) -> bool:
    if not value:
        return False
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def is_email(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        _email_adapter.validate_python(value)
    except ValidationError:
        return False
    return True


class ActorMiddleware(BaseHTTPMiddleware):
    """
    Attach the authenticated actor (if any) to request.state.actor.

    Never rejects a request; enforcing authentication is left to route
    dependencies.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request.state.actor = None

        authorization = request.headers.get("Authorization", "")
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token.strip():
            request.state.actor = actor_from_token(token.strip())

        return await call_next(request)


class AuditMiddleware(BaseHTTPMiddleware):
    """
    Turn each request/response pair into zero or more audit entries.

    Three hooks share the same actor and provenance extraction:

    - general request audit: an ``API_<METHOD ACTION>`` entry for requests
      significant by HTTP method, carrying method, path, query, params and
      elapsed time;
    - data modification audit: an annotated or inferred ``<ACTION>`` entry
      for successful (2xx) mutations by an authenticated actor, carrying
      before/after snapshots;
    - authentication audit: ``LOGIN``/``LOGIN_FAILED``/``LOGOUT`` entries
      for login and logout URLs.

    Entries are written by a background task that runs after the response
    has been sent, so audit writes never delay or fail the client request.
    """

    def __init__(
        self,
        app,
        audit_service,
        skip_paths: Optional[Iterable[str]] = None,
        sensitive_resources: Optional[Iterable[str]] = None,
        enabled: Optional[bool] = None,
    ):
        super().__init__(app)
        self.audit_service = audit_service
        self.skip_paths = list(skip_paths if skip_paths is not None else settings.AUDIT_SKIP_PATHS)
        self.sensitive_resources = set(
            sensitive_resources if sensitive_resources is not None else settings.AUDIT_SENSITIVE_RESOURCES
        )
        self.enabled = settings.AUDIT_ENABLED if enabled is None else enabled

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self.enabled:
            return await call_next(request)

        start_time = time.perf_counter()
        method = request.method.upper()
        path = request.url.path

        body = None
        if method in MODIFICATION_METHODS or "/login" in path:
            body = await self._read_json_body(request)

        response = await call_next(request)

        elapsed_ms = round((time.perf_counter() - start_time) * 1000, 2)

        try:
            entries = self._build_entries(request, response.status_code, body, elapsed_ms)
        except Exception as e:
            logger.error(f"Failed to classify request for audit: {method} {path} | {e}")
            entries = []

        if entries:
            self._schedule(response, entries)

        return response

    def _build_entries(
        self,
        request: Request,
        status_code: int,
        body: Any,
        elapsed_ms: float,
    ) -> list[dict[str, Any]]:
        method = request.method.upper()
        path = request.url.path
        annotation: Optional[AuditAnnotation] = getattr(request.state, "audit", None)
        actor: Optional[Actor] = getattr(request.state, "actor", None)

        provenance = {
            "ip_address": audit_client_ip(request),
            "user_agent": request.headers.get("user-agent"),
        }
        actor_fields = {
            "user_id": actor.id if actor else None,
            "user_email": actor.email if actor else None,
        }

        entries: list[dict[str, Any]] = []

        skipped = (annotation is not None and annotation.skip_audit) or should_skip_audit(
            path, self.skip_paths
        )
        if not skipped:
            method_action = map_http_method_to_action(method)
            action = (annotation.action if annotation else None) or method_action
            resource = (annotation.resource if annotation else None) or extract_resource_from_path(path)
            resource_id = (annotation.resource_id if annotation else None) or extract_resource_id(
                request.path_params
            )

            # General request audit; significance follows the HTTP method, not the annotation
            if is_significant_action(method_action, resource, self.sensitive_resources):
                entries.append({
                    **actor_fields,
                    **provenance,
                    "action": f"API_{method_action}",
                    "resource": resource,
                    "resource_id": resource_id,
                    "new_values": {
                        "method": method,
                        "path": path,
                        "query": dict(request.query_params),
                        "params": {key: str(value) for key, value in request.path_params.items()},
                        "timestamp": datetime.utcnow().isoformat(timespec="milliseconds") + "Z",
                        "responseTime": elapsed_ms,
                    },
                })

            # Data modification audit
            if method in MODIFICATION_METHODS and actor is not None and 200 <= status_code < 300:
                new_values = annotation.new_values if annotation and annotation.new_values is not None else None
                if new_values is None:
                    new_values = sanitize_snapshot(body)
                entries.append({
                    **actor_fields,
                    **provenance,
                    "action": action,
                    "resource": resource,
                    "resource_id": resource_id,
                    "old_values": annotation.old_values if annotation else None,
                    "new_values": new_values,
                })

        # Authentication audit
        auth_entry = self._build_auth_entry(path, status_code, body, actor, provenance)
        if auth_entry is not None:
            entries.append(auth_entry)

        return entries

    @staticmethod
    def _build_auth_entry(
        path: str,
        status_code: int,
        body: Any,
        actor: Optional[Actor],
        provenance: dict[str, Any],
    ) -> Optional[dict[str, Any]]:
        email = body.get("email") if isinstance(body, dict) else None

        if "/login" in path:
            success = status_code == 200
            details: dict[str, Any] = {"success": success, "statusCode": status_code}
            user_email = email if is_email(email) else None
            if email and user_email is None:
                details["attemptedEmail"] = str(email)
            return {
                **provenance,
                "user_id": actor.id if (success and actor) else None,
                "user_email": user_email,
                "action": "LOGIN" if success else "LOGIN_FAILED",
                "resource": "authentication",
                "new_values": details,
            }

        if "/logout" in path:
            user_email = (actor.email if actor else None) or (email if is_email(email) else None)
            return {
                **provenance,
                "user_id": actor.id if actor else None,
                "user_email": user_email,
                "action": "LOGOUT",
                "resource": "authentication",
            }

        return None

    def _schedule(self, response: Response, entries: list[dict[str, Any]]) -> None:
        """Run the writes once the response has been sent."""
        task = BackgroundTask(self._write_entries, entries)
        if response.background is None:
            response.background = task
        else:
            response.background = BackgroundTasks(tasks=[response.background, task])

    async def _write_entries(self, entries: list[dict[str, Any]]) -> None:
        for entry in entries:
            await run_in_threadpool(self.audit_service.create_audit_log, entry)

    @staticmethod
    async def _read_json_body(request: Request) -> Any:
        content_type = request.headers.get("content-type", "")
        if "application/json" not in content_type:
            return None
        raw = await request.body()
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None
