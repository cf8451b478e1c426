"""
Record stores for applicant records. Each adapter offers the same calls:
find_by_email, find_by_id, find_all, insert, update.
The adapter is the authoritative guard on id and email uniqueness.
"""
import json
import logging
import os
import tempfile
import threading

from api.errors import DuplicateError, StoreError

logger = logging.getLogger(__name__)


class MemoryStore:
    """Records kept in a list for the life of the process."""

    def __init__(self, records=None):
        self._records = [dict(r) for r in (records or [])]
        self._lock = threading.Lock()

    def _load(self) -> list:
        return self._records

    def _save(self, records: list) -> None:
        self._records = records

    def find_all(self) -> list:
        with self._lock:
            return [dict(r) for r in self._load()]

    def find_by_id(self, record_id: str) -> dict | None:
        with self._lock:
            for r in self._load():
                if r.get("id") == record_id:
                    return dict(r)
        return None

    def find_by_email(self, email: str) -> dict | None:
        email = (email or "").strip().lower()
        with self._lock:
            for r in self._load():
                if (r.get("email") or "").lower() == email:
                    return dict(r)
        return None

    def insert(self, record: dict) -> dict:
        with self._lock:
            records = self._load()
            email = record["email"].lower()
            for r in records:
                if r.get("id") == record["id"]:
                    raise DuplicateError("Identifier already exists")
                if (r.get("email") or "").lower() == email:
                    raise DuplicateError("This email is already registered")
            records = records + [dict(record)]
            self._save(records)
        return dict(record)

    def update(self, record_id: str, changes: dict) -> dict | None:
        with self._lock:
            records = self._load()
            for i, r in enumerate(records):
                if r.get("id") == record_id:
                    updated = {**r, **changes}
                    records = records[:i] + [updated] + records[i + 1:]
                    self._save(records)
                    return dict(updated)
        return None


class JsonFileStore(MemoryStore):
    """Records kept as one JSON list on disk, rewritten atomically on every change."""

    def __init__(self, path: str):
        super().__init__()
        self.path = os.path.abspath(path)

    def _load(self) -> list:
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Cannot read {self.path}: {e}") from e
        return data if isinstance(data, list) else []

    def _save(self, records: list) -> None:
        folder = os.path.dirname(self.path)
        try:
            os.makedirs(folder, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=folder, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(records, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StoreError(f"Cannot write {self.path}: {e}") from e


class SupabaseStore:
    """Records kept in a Supabase (Postgres) table with unique id and email columns."""

    def __init__(self, client, table: str = "members"):
        self.client = client
        self.table = table

    def _run(self, query):
        try:
            return query.execute()
        except Exception as e:
            raise StoreError(f"Supabase error: {e}") from e

    def _first(self, result) -> dict | None:
        rows = result.data or []
        return rows[0] if rows else None

    def find_all(self) -> list:
        result = self._run(self.client.table(self.table).select("*").order("submitted_at"))
        return result.data or []

    def find_by_id(self, record_id: str) -> dict | None:
        return self._first(self._run(self.client.table(self.table).select("*").eq("id", record_id).limit(1)))

    def find_by_email(self, email: str) -> dict | None:
        email = (email or "").strip().lower()
        return self._first(self._run(self.client.table(self.table).select("*").eq("email", email).limit(1)))

    def insert(self, record: dict) -> dict:
        try:
            result = self.client.table(self.table).insert(record).execute()
        except Exception as e:
            err = str(e).lower()
            if "duplicate" in err or "unique" in err or "already" in err:
                if "pkey" in err or "(id)" in err:
                    raise DuplicateError("Identifier already exists") from e
                raise DuplicateError("This email is already registered") from e
            raise StoreError(f"Supabase error: {e}") from e
        return self._first(result) or dict(record)

    def update(self, record_id: str, changes: dict) -> dict | None:
        return self._first(self._run(self.client.table(self.table).update(changes).eq("id", record_id)))


def get_supabase(url: str, key: str):
    if not url or not key:
        return None
    from supabase import create_client
    return create_client(url, key)


def build_store(settings):
    """Pick the adapter named by settings.store_backend."""
    backend = settings.store_backend
    if backend == "supabase":
        client = get_supabase(settings.supabase_url, settings.supabase_key)
        if client is None:
            raise StoreError("Supabase backend selected but SUPABASE_URL / key not set")
        return SupabaseStore(client, settings.supabase_table)
    if backend in ("file", "tmp"):
        logger.info("Using JSON file store at %s", settings.data_file)
        return JsonFileStore(settings.data_file)
    if backend != "memory":
        logger.warning("Unknown STORE_BACKEND %r, falling back to memory", backend)
    return MemoryStore()
