"""
Vercel serverless: /api/membership/* — membership applications and admin review.
Requires: ADMIN_PASSWORD, SESSION_SECRET, and SUPABASE_URL + SUPABASE_SERVICE_ROLE_KEY
(or STORE_BACKEND=file|tmp|memory).
"""
import logging
import secrets
from http.server import BaseHTTPRequestHandler
from urllib.parse import parse_qs, urlparse

from api.config import load_settings, setup_logging
from api.errors import StoreError
from api.members import MembershipService
from api.notify import Notifier
from api.router import CORS_HEADERS, MembershipApp, Request, Response, json_response
from api.security import MemorySessions, SignedSessions
from api.store import build_store

logger = logging.getLogger(__name__)

_app = None


def build_sessions(settings):
    if settings.session_mode == "memory":
        return MemorySessions(settings.session_ttl_seconds, settings.max_sessions)
    secret = settings.session_secret
    if not secret:
        # Tokens from this secret only verify on this instance.
        logger.warning("SESSION_SECRET not set, using a per-process secret")
        secret = secrets.token_hex(32)
    return SignedSessions(secret, settings.session_ttl_seconds)


def build_app(settings, store=None) -> MembershipApp:
    service = MembershipService(
        store=store if store is not None else build_store(settings),
        sessions=build_sessions(settings),
        notifier=Notifier(settings.resend_api_key, settings.email_from),
        admin_password=settings.admin_password,
    )
    return MembershipApp(service, settings.mount_prefixes, debug=settings.debug)


def get_app() -> MembershipApp:
    global _app
    if _app is None:
        settings = load_settings()
        setup_logging(settings.log_level)
        _app = build_app(settings)
    return _app


class handler(BaseHTTPRequestHandler):
    def do_OPTIONS(self):
        self._dispatch()

    def do_GET(self):
        self._dispatch()

    def do_POST(self):
        self._dispatch()

    def do_PUT(self):
        self._dispatch()

    def do_DELETE(self):
        self._dispatch()

    def _dispatch(self):
        url = urlparse(self.path)
        query = {k: v[-1] for k, v in parse_qs(url.query).items()}
        try:
            content_len = max(0, int(self.headers.get("Content-Length", 0) or 0))
        except ValueError:
            content_len = 0
        raw = self.rfile.read(content_len).decode("utf-8", errors="replace") if content_len else ""

        if self.command == "OPTIONS":
            self._send(Response(200, dict(CORS_HEADERS), ""))
            return

        try:
            app = get_app()
        except StoreError as e:
            logger.error("Server not configured: %s", e)
            self._send(json_response(503, {"success": False, "error": "Server not configured"}))
            return

        self._send(app.handle(Request(
            method=self.command,
            path=url.path,
            headers=dict(self.headers.items()),
            query=query,
            body=raw,
        )))

    def _send(self, response):
        self.send_response(response.status)
        for name, value in response.headers.items():
            self.send_header(name, value)
        self.end_headers()
        self.wfile.write(response.body.encode("utf-8"))
