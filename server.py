"""
Membership local dev server: forwards API routes to the same dispatcher the
Vercel function uses.
Set env: ADMIN_PASSWORD, SESSION_SECRET, and SUPABASE_URL + SUPABASE_SERVICE_ROLE_KEY
or STORE_BACKEND=file.
Run: python server.py  →  http://127.0.0.1:5001/api/membership/test
"""
import os
import pathlib

from dotenv import load_dotenv

load_dotenv(dotenv_path=pathlib.Path(__file__).resolve().parent / ".env")

from flask import Flask, Response, request

from api.config import load_settings, setup_logging
from api.membership import build_app
from api.router import Request

MOUNTS = ("/api/membership", "/.netlify/functions/membership")


# ── Security headers ──

def add_security_headers(response):
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


def create_app(membership=None) -> Flask:
    """Flask wrapper around a MembershipApp (built from the environment if omitted)."""
    if membership is None:
        settings = load_settings()
        setup_logging(settings.log_level)
        membership = build_app(settings)

    app = Flask(__name__)
    app.after_request(add_security_headers)

    def forward(path=""):
        result = membership.handle(Request(
            method=request.method,
            path=request.path,
            headers=dict(request.headers.items()),
            query=request.args.to_dict(),
            body=request.get_data(as_text=True),
        ))
        return Response(result.body, status=result.status, headers=result.headers)

    methods = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
    for i, mount in enumerate(MOUNTS):
        app.add_url_rule(mount, f"membership_root_{i}", forward, methods=methods)
        app.add_url_rule(f"{mount}/<path:path>", f"membership_{i}", forward, methods=methods)
    return app


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5001))
    print(f"Membership API running at http://127.0.0.1:{port}{MOUNTS[0]}/")
    if not os.environ.get("ADMIN_PASSWORD"):
        print("WARNING: ADMIN_PASSWORD not set in .env — admin login will always fail.")
    create_app().run(host="0.0.0.0", port=port, debug=os.environ.get("FLASK_DEBUG", "false").lower() == "true")
