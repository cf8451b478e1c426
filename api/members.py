"""
Membership operations: submit, list, get, update status, stats, export, login, verify.
Each method returns a (status, body) pair or raises an ApiError.
"""
import csv
import io
import logging
import math
import re
import secrets
import time
from datetime import datetime, timezone

from api.errors import AuthError, DuplicateError, NotFoundError, ValidationError
from api.security import check_password, clamp_int, sanitize_text

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ["firstName", "lastName", "email", "phone", "title", "field", "motivation"]
OPTIONAL_FIELDS = {
    "dateOfBirth": "date_of_birth",
    "nationality": "nationality",
    "address": "address",
    "city": "city",
    "country": "country",
    "institution": "institution",
    "presentation": "presentation",
    "interests": "interests",
    "links": "links",
}
STATUSES = ("pending", "accepted", "rejected")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

DEFAULT_LIMIT = 50
MAX_LIMIT = 500

EXPORT_HEADER = ["ID", "First name", "Last name", "Email", "Phone", "Title", "Field", "Status", "Date"]
EXPORT_COLUMNS = ["id", "first_name", "last_name", "email", "phone", "title", "field", "status"]


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def generate_id() -> str:
    """Time prefix plus random suffix; the store still enforces uniqueness."""
    return f"MEM_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def is_valid_email(email) -> bool:
    return isinstance(email, str) and bool(EMAIL_RE.match(email.strip()))


def is_opt_in(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "on", "yes", "1"}
    return value is True or value == 1


def validate_submission(data: dict) -> None:
    """Raise ValidationError naming the first missing or blank required field."""
    for field in REQUIRED_FIELDS:
        value = data.get(field)
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"The field {field} is required")
    if not is_valid_email(data["email"]):
        raise ValidationError("Invalid email format")


def build_record(data: dict, client_ip: str = "unknown", user_agent: str = "unknown") -> dict:
    record = {
        "id": generate_id(),
        "first_name": data["firstName"].strip(),
        "last_name": data["lastName"].strip().upper(),
        "email": data["email"].strip().lower(),
        "phone": data["phone"].strip(),
        "title": data["title"].strip(),
        "field": data["field"].strip(),
        "motivation": data["motivation"].strip(),
    }
    for key, column in OPTIONAL_FIELDS.items():
        record[column] = sanitize_text(data.get(key))
    record.update({
        "newsletter": is_opt_in(data.get("newsletter")),
        "submitted_at": now_iso(),
        "status": "pending",
        "updated_at": None,
        "admin_comment": "",
        "ip": client_ip or "unknown",
        "user_agent": user_agent or "unknown",
    })
    return record


def filter_members(members: list, status=None, field=None, search=None) -> list:
    """Apply status, then field, then case-insensitive search on names and email."""
    if status:
        members = [m for m in members if m.get("status") == status]
    if field:
        members = [m for m in members if m.get("field") == field]
    if search:
        needle = search.lower()
        members = [
            m for m in members
            if needle in (m.get("first_name") or "").lower()
            or needle in (m.get("last_name") or "").lower()
            or needle in (m.get("email") or "").lower()
        ]
    return members


def paginate(items: list, page: int, limit: int) -> tuple[list, int]:
    start = (page - 1) * limit
    return items[start:start + limit], math.ceil(len(items) / limit)


def compute_stats(members: list) -> dict:
    stats = {
        "total": len(members),
        "by_field": {},
        "by_month": {},
        "newsletter": sum(1 for m in members if m.get("newsletter")),
    }
    for status in STATUSES:
        stats[status] = sum(1 for m in members if m.get("status") == status)
    for m in members:
        field = m.get("field") or "unspecified"
        stats["by_field"][field] = stats["by_field"].get(field, 0) + 1
        submitted = m.get("submitted_at")
        if submitted:
            month = submitted[:7]
            stats["by_month"][month] = stats["by_month"].get(month, 0) + 1
    return stats


def render_csv(members: list) -> str:
    out = io.StringIO()
    out.write(",".join(EXPORT_HEADER) + "\n")
    writer = csv.writer(out, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for m in members:
        submitted = m.get("submitted_at") or ""
        writer.writerow([m.get(c) or "" for c in EXPORT_COLUMNS] + [submitted[:10]])
    return out.getvalue()


class MembershipService:
    def __init__(self, store, sessions, notifier, admin_password: str = ""):
        self.store = store
        self.sessions = sessions
        self.notifier = notifier
        self.admin_password = admin_password

    # ── Public ──

    def submit(self, data: dict, client_ip: str = "unknown", user_agent: str = "unknown"):
        validate_submission(data)
        email = data["email"].strip().lower()
        if self.store.find_by_email(email):
            raise DuplicateError("This email is already registered")

        record = build_record(data, client_ip, user_agent)
        self.store.insert(record)
        logger.info("New application %s: %s %s", record["id"], record["first_name"], record["last_name"])
        self.notifier.submission_received(record)

        return 200, {
            "success": True,
            "message": "Your membership application has been recorded",
            "id": record["id"],
            "data": {
                "id": record["id"],
                "first_name": record["first_name"],
                "last_name": record["last_name"],
                "email": record["email"],
                "status": record["status"],
            },
        }

    def verify_email(self, data: dict):
        email = data.get("email")
        if not is_valid_email(email):
            raise ValidationError("Valid email required")
        exists = self.store.find_by_email(email) is not None
        return 200, {
            "success": True,
            "exists": exists,
            "message": "This email is already registered" if exists else "Email available",
        }

    def login(self, data: dict):
        if not self.admin_password:
            logger.warning("Admin login attempted but ADMIN_PASSWORD is not set")
        if not check_password(data.get("password"), self.admin_password):
            logger.warning("Failed admin login")
            raise AuthError("Invalid credentials")
        token, expires = self.sessions.issue()
        logger.info("Admin session issued, expires %s", expires.isoformat())
        return 200, {
            "success": True,
            "message": "Login successful",
            "data": {"token": token, "expires": expires.isoformat()},
        }

    # ── Admin ──

    def list_members(self, query: dict):
        page = clamp_int(query.get("page"), 1, 10 ** 9, default=1)
        limit = clamp_int(query.get("limit"), 1, MAX_LIMIT, default=DEFAULT_LIMIT)
        members = filter_members(
            self.store.find_all(),
            status=query.get("status"),
            field=query.get("field") or query.get("domain"),
            search=query.get("search"),
        )
        page_items, pages = paginate(members, page, limit)
        return 200, {
            "success": True,
            "total": len(members),
            "page": page,
            "pages": pages,
            "data": page_items,
        }

    def get_member(self, member_id: str):
        member = self.store.find_by_id(member_id)
        if not member:
            raise NotFoundError("Member not found")
        return 200, {"success": True, "data": member}

    def update_status(self, member_id: str, data: dict):
        status = data.get("status")
        if status not in STATUSES:
            raise ValidationError("Invalid status")
        if not self.store.find_by_id(member_id):
            raise NotFoundError("Member not found")

        changes = {"status": status, "updated_at": now_iso()}
        comment = data.get("comment")
        if comment is not None:
            changes["admin_comment"] = sanitize_text(comment)
        updated = self.store.update(member_id, changes)
        if not updated:
            raise NotFoundError("Member not found")

        logger.info("Application %s set to %s", member_id, status)
        self.notifier.status_changed(updated, status, changes.get("admin_comment", ""))
        return 200, {
            "success": True,
            "message": f"Status updated: {status}",
            "data": {"id": member_id, "status": status},
        }

    def stats(self):
        return 200, {"success": True, "data": compute_stats(self.store.find_all())}

    def export(self, fmt: str = "csv"):
        if (fmt or "csv") != "csv":
            raise ValidationError("Unsupported format")
        return 200, render_csv(self.store.find_all())
