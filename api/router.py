"""
Request dispatch for the membership API. Transport-neutral: the Vercel handler
and the Flask dev server both build a Request and send back the Response.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

from api.errors import ApiError, AuthError, InternalError, MethodNotAllowed, NotFoundError, ValidationError
from api.security import bearer_token

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
}


@dataclass
class Request:
    method: str
    path: str
    headers: dict = field(default_factory=dict)
    query: dict = field(default_factory=dict)
    body: str = ""

    def __post_init__(self):
        self.method = self.method.upper()
        self.headers = {str(k).lower(): v for k, v in (self.headers or {}).items()}
        self.query = dict(self.query or {})

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    def json(self) -> dict:
        if not self.body or not self.body.strip():
            return {}
        try:
            data = json.loads(self.body)
        except json.JSONDecodeError:
            raise ValidationError("Invalid JSON")
        if not isinstance(data, dict):
            raise ValidationError("Expected a JSON object")
        return data

    def client_ip(self) -> str:
        forwarded = self.header("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return self.header("Client-IP") or "unknown"


@dataclass
class Response:
    status: int
    headers: dict
    body: str


def json_response(status: int, body) -> Response:
    return Response(status, {**CORS_HEADERS, "Content-Type": "application/json"}, json.dumps(body))


def csv_response(body: str, filename: str = "members_export.csv") -> Response:
    headers = {
        **CORS_HEADERS,
        "Content-Type": "text/csv; charset=utf-8",
        "Content-Disposition": f"attachment; filename={filename}",
    }
    return Response(200, headers, body)


@dataclass
class Route:
    method: str
    pattern: str
    handler: str
    admin: bool = False

    def __post_init__(self):
        regex = re.sub(r"\{(\w+)\}", r"(?P<\1>[^/]+)", self.pattern.rstrip("/"))
        self.regex = re.compile(f"^{regex}/?$")


ROUTES = [
    Route("POST", "/submit", "submit"),
    Route("POST", "/login", "login"),
    Route("POST", "/verify", "verify"),
    Route("GET", "/test", "test"),
    Route("GET", "/members", "list_members", admin=True),
    Route("GET", "/member/{id}", "get_member", admin=True),
    Route("PUT", "/update/{id}", "update_status", admin=True),
    Route("GET", "/stats", "stats", admin=True),
    Route("GET", "/export", "export", admin=True),
]


class MembershipApp:
    def __init__(self, service, mount_prefixes=(), debug: bool = False, routes=None):
        self.service = service
        self.mount_prefixes = sorted(mount_prefixes, key=len, reverse=True)
        self.debug = debug
        self.routes = routes or ROUTES

    def strip_prefix(self, path: str) -> str:
        path = path.split("?", 1)[0] or "/"
        for prefix in self.mount_prefixes:
            if path == prefix or path.startswith(prefix + "/"):
                path = path[len(prefix):]
                break
        return path or "/"

    def match(self, method: str, path: str):
        """Return (route, params); raise NotFoundError or MethodNotAllowed."""
        path_matched = False
        for route in self.routes:
            m = route.regex.match(path)
            if not m:
                continue
            if route.method == method:
                return route, m.groupdict()
            path_matched = True
        if path_matched:
            raise MethodNotAllowed("Method not allowed")
        raise NotFoundError("Route not found")

    def handle(self, request: Request) -> Response:
        if request.method == "OPTIONS":
            return Response(200, dict(CORS_HEADERS), "")

        try:
            route, params = self.match(request.method, self.strip_prefix(request.path))
            if route.admin and not self.service.sessions.is_valid(bearer_token(request.header("Authorization"))):
                raise AuthError("Authentication required")
            return getattr(self, "_" + route.handler)(request, params)
        except ApiError as e:
            return json_response(e.status, {"success": False, "error": e.message})
        except Exception as e:
            logger.exception("Unhandled error on %s %s", request.method, request.path)
            err = InternalError("Internal server error")
            body = {"success": False, "error": err.message}
            if self.debug:
                body["detail"] = str(e)
            return json_response(err.status, body)

    # ── Handlers ──

    def _submit(self, request, params):
        status, body = self.service.submit(
            request.json(),
            client_ip=request.client_ip(),
            user_agent=request.header("User-Agent") or "unknown",
        )
        return json_response(status, body)

    def _login(self, request, params):
        return json_response(*self.service.login(request.json()))

    def _verify(self, request, params):
        return json_response(*self.service.verify_email(request.json()))

    def _test(self, request, params):
        return json_response(200, {
            "success": True,
            "message": "Membership function is running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    def _list_members(self, request, params):
        return json_response(*self.service.list_members(request.query))

    def _get_member(self, request, params):
        return json_response(*self.service.get_member(params["id"]))

    def _update_status(self, request, params):
        return json_response(*self.service.update_status(params["id"], request.json()))

    def _stats(self, request, params):
        return json_response(*self.service.stats())

    def _export(self, request, params):
        _, body = self.service.export(request.query.get("format", "csv"))
        return csv_response(body)
