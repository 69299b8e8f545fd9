"""
gateway.py — Remote data gateway for authentication and record storage.

Two implementations share one async contract:
- SupabaseGateway: hosted Auth + REST API over httpx
- MemoryGateway:   in-process store for local demos and tests

Transport and store failures surface as the error types in core.errors;
nothing here retries.
"""

import asyncio
import copy
import itertools
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from time import time
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import httpx

from core.errors import AuthError, FetchError, SaveError, StudentImportError

logger = logging.getLogger(__name__)

STUDENTS = "students"
CLASSES = "classes"
DEFAULT_BATCH_SIZE = 500


@dataclass(frozen=True)
class Snapshot:
    """Read-only copy of both collections as of one fetch."""

    students: Tuple[Dict[str, Any], ...] = ()
    classes: Tuple[Dict[str, Any], ...] = ()
    fetched_at: float = field(default_factory=time)

    def find_student(self, student_id: Any) -> Optional[Dict[str, Any]]:
        for s in self.students:
            if str(s.get("id")) == str(student_id):
                return s
        return None

    def find_class(self, class_id: Any) -> Optional[Dict[str, Any]]:
        for c in self.classes:
            if str(c.get("id")) == str(class_id):
                return c
        return None


class Gateway:
    """Async contract every backend implements."""

    async def get_current_user(self) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        """Return ``{"access_token": ..., "user": {...}}`` or raise AuthError."""
        raise NotImplementedError

    async def sign_out(self) -> None:
        raise NotImplementedError

    def with_session(self, access_token: str) -> "Gateway":
        raise NotImplementedError

    async def list_students(self, order_by: str = "name") -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def list_classes(self, order_by: str = "name") -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def insert_student(self, record: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    async def update_student(self, student_id: Any, partial: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    async def delete_student(self, student_id: Any) -> None:
        raise NotImplementedError

    async def upsert_students(self, records: Sequence[Dict[str, Any]], conflict_key: str = "ic_number") -> int:
        raise NotImplementedError

    async def insert_class(self, record: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    async def update_class(self, class_id: Any, partial: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    async def delete_class(self, class_id: Any) -> None:
        raise NotImplementedError


# ── Snapshot & bulk helpers ─────────────────────────────────────────

async def fetch_snapshot(gateway: Gateway) -> Snapshot:
    """Load students and classes concurrently, both ordered by name."""
    students, classes = await asyncio.gather(
        gateway.list_students(order_by="name"),
        gateway.list_classes(order_by="name"),
    )
    return Snapshot(students=tuple(students or []), classes=tuple(classes or []))


async def import_students(
    gateway: Gateway,
    records: Sequence[Dict[str, Any]],
    batch_size: int = DEFAULT_BATCH_SIZE,
    conflict_key: str = "ic_number",
) -> int:
    """
    Upsert records batch by batch.

    Batches are independent: when one fails, the batches before it stay
    written and the raised StudentImportError reports how many rows that is.
    """
    batch_size = max(1, int(batch_size))
    done = 0
    for start in range(0, len(records), batch_size):
        batch = list(records[start:start + batch_size])
        try:
            await gateway.upsert_students(batch, conflict_key=conflict_key)
        except (SaveError, FetchError) as e:
            logger.warning("Import stopped at row %d after %d rows upserted: %s", start + 1, done, e.message)
            raise StudentImportError(
                f"Ralat Muat Naik: {e.message}",
                upserted_count=done,
                details={"failed_from_row": start + 1, "batch_size": len(batch)},
            ) from e
        done += len(batch)
    return done


# ── Supabase ────────────────────────────────────────────────────────

def _error_message(res: httpx.Response) -> str:
    try:
        body = res.json()
    except ValueError:
        return res.text or f"HTTP {res.status_code}"
    if isinstance(body, dict):
        for key in ("error_description", "msg", "message", "error"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {res.status_code}"


class SupabaseGateway(Gateway):
    """Gateway over the hosted Auth (``/auth/v1``) and REST (``/rest/v1``) APIs."""

    def __init__(
        self,
        url: str,
        anon_key: str,
        access_token: Optional[str] = None,
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not url or not anon_key:
            raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY must both be set.")
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self.access_token = access_token
        self.timeout = timeout
        self.transport = transport

    def with_session(self, access_token: str) -> "SupabaseGateway":
        return SupabaseGateway(
            self.url, self.anon_key, access_token=access_token,
            timeout=self.timeout, transport=self.transport,
        )

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.access_token or self.anon_key}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        error_cls=FetchError,
        *,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
        passthrough: Sequence[int] = (),
    ) -> httpx.Response:
        extra = {"Prefer": prefer} if prefer else None
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                res = await client.request(
                    method, f"{self.url}{path}",
                    params=params, json=json, headers=self._headers(extra),
                )
        except httpx.HTTPError as e:
            logger.error("%s %s failed: %s", method, path, e)
            raise error_cls(f"Ralat rangkaian: {e}") from e

        if res.is_error and res.status_code not in passthrough:
            message = _error_message(res)
            logger.error("%s %s returned %d: %s", method, path, res.status_code, message)
            raise error_cls(message)
        return res

    # auth

    async def get_current_user(self) -> Optional[Dict[str, Any]]:
        if not self.access_token:
            return None
        # Rejected tokens mean no user; outages surface as FetchError
        res = await self._request("GET", "/auth/v1/user", passthrough=(401, 403))
        if res.is_error:
            return None
        return res.json()

    async def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        res = await self._request(
            "POST", "/auth/v1/token", error_cls=AuthError,
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        body = res.json()
        return {
            "access_token": body.get("access_token"),
            "refresh_token": body.get("refresh_token"),
            "user": body.get("user") or {},
        }

    async def sign_out(self) -> None:
        if not self.access_token:
            return
        try:
            await self._request("POST", "/auth/v1/logout", error_cls=AuthError)
        except AuthError as e:
            logger.warning("Sign-out was not acknowledged: %s", e.message)

    # records

    async def _list(self, table: str, order_by: str) -> List[Dict[str, Any]]:
        res = await self._request(
            "GET", f"/rest/v1/{table}",
            params={"select": "*", "order": f"{order_by}.asc"},
        )
        return res.json() or []

    async def _insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        res = await self._request(
            "POST", f"/rest/v1/{table}", error_cls=SaveError,
            json=[record], prefer="return=representation",
        )
        rows = res.json() or []
        return rows[0] if rows else dict(record)

    async def _update(self, table: str, row_id: Any, partial: Dict[str, Any]) -> Dict[str, Any]:
        res = await self._request(
            "PATCH", f"/rest/v1/{table}", error_cls=SaveError,
            params={"id": f"eq.{row_id}"}, json=partial, prefer="return=representation",
        )
        rows = res.json() or []
        if not rows:
            raise SaveError(f"Rekod {row_id} tidak dijumpai.")
        return rows[0]

    async def _delete(self, table: str, row_id: Any) -> None:
        await self._request(
            "DELETE", f"/rest/v1/{table}", error_cls=SaveError,
            params={"id": f"eq.{row_id}"},
        )

    async def list_students(self, order_by: str = "name") -> List[Dict[str, Any]]:
        return await self._list(STUDENTS, order_by)

    async def list_classes(self, order_by: str = "name") -> List[Dict[str, Any]]:
        return await self._list(CLASSES, order_by)

    async def insert_student(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return await self._insert(STUDENTS, record)

    async def update_student(self, student_id: Any, partial: Dict[str, Any]) -> Dict[str, Any]:
        return await self._update(STUDENTS, student_id, partial)

    async def delete_student(self, student_id: Any) -> None:
        await self._delete(STUDENTS, student_id)

    async def upsert_students(self, records: Sequence[Dict[str, Any]], conflict_key: str = "ic_number") -> int:
        if not records:
            return 0
        await self._request(
            "POST", f"/rest/v1/{STUDENTS}", error_cls=SaveError,
            params={"on_conflict": conflict_key},
            json=list(records),
            prefer="resolution=merge-duplicates,return=minimal",
        )
        return len(records)

    async def insert_class(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return await self._insert(CLASSES, record)

    async def update_class(self, class_id: Any, partial: Dict[str, Any]) -> Dict[str, Any]:
        return await self._update(CLASSES, class_id, partial)

    async def delete_class(self, class_id: Any) -> None:
        await self._delete(CLASSES, class_id)


# ── In-memory ───────────────────────────────────────────────────────

def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sort_key(order_by: str):
    def key(row: Dict[str, Any]):
        value = row.get(order_by)
        return (value is None, str(value).lower() if value is not None else "")
    return key


class MemoryBackend:
    """Shared state behind every MemoryGateway bound to it."""

    UNIQUE_STUDENT_FIELDS = ("ic_number", "member_number")

    def __init__(
        self,
        users: Optional[Dict[str, str]] = None,
        students: Iterable[Dict[str, Any]] = (),
        classes: Iterable[Dict[str, Any]] = (),
    ):
        self.users = dict(users or {})
        self.tokens: Dict[str, Dict[str, Any]] = {}
        self.tables: Dict[str, List[Dict[str, Any]]] = {STUDENTS: [], CLASSES: []}
        self._ids = {STUDENTS: itertools.count(1), CLASSES: itertools.count(1)}
        for c in classes:
            self.insert(CLASSES, c)
        for s in students:
            self.insert(STUDENTS, s)

    def _check_unique(self, table: str, record: Dict[str, Any], ignore_id: Any = None) -> None:
        if table != STUDENTS:
            return
        for fld in self.UNIQUE_STUDENT_FIELDS:
            value = record.get(fld)
            if value in (None, ""):
                continue
            for row in self.tables[STUDENTS]:
                if row.get(fld) == value and row.get("id") != ignore_id:
                    raise SaveError(
                        f'duplicate key value violates unique constraint "{STUDENTS}_{fld}_key"'
                    )

    def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        row = dict(record)
        self._check_unique(table, row)
        row.setdefault("id", next(self._ids[table]))
        if table == STUDENTS:
            row.setdefault("created_at", _utc_now_iso())
        self.tables[table].append(row)
        return copy.deepcopy(row)

    def find(self, table: str, row_id: Any) -> Optional[Dict[str, Any]]:
        for row in self.tables[table]:
            if str(row.get("id")) == str(row_id):
                return row
        return None


class MemoryGateway(Gateway):
    """Gateway that keeps both collections in process memory."""

    def __init__(self, backend: Optional[MemoryBackend] = None, access_token: Optional[str] = None):
        self.backend = backend or MemoryBackend()
        self.access_token = access_token

    def with_session(self, access_token: str) -> "MemoryGateway":
        return MemoryGateway(self.backend, access_token=access_token)

    def _require_user(self, error_cls=AuthError) -> Dict[str, Any]:
        user = self.backend.tokens.get(self.access_token or "")
        if user is None:
            raise error_cls("Sesi tidak sah. Sila log masuk semula.")
        return user

    async def get_current_user(self) -> Optional[Dict[str, Any]]:
        user = self.backend.tokens.get(self.access_token or "")
        return dict(user) if user else None

    async def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        email = (email or "").strip().lower()
        expected = self.backend.users.get(email)
        if expected is None or expected != password:
            raise AuthError("Invalid login credentials")
        token = uuid.uuid4().hex
        user = {"id": str(uuid.uuid5(uuid.NAMESPACE_URL, email)), "email": email}
        self.backend.tokens[token] = user
        return {"access_token": token, "refresh_token": None, "user": dict(user)}

    async def sign_out(self) -> None:
        self.backend.tokens.pop(self.access_token or "", None)

    async def list_students(self, order_by: str = "name") -> List[Dict[str, Any]]:
        self._require_user(FetchError)
        rows = sorted(self.backend.tables[STUDENTS], key=_sort_key(order_by))
        return copy.deepcopy(rows)

    async def list_classes(self, order_by: str = "name") -> List[Dict[str, Any]]:
        self._require_user(FetchError)
        rows = sorted(self.backend.tables[CLASSES], key=_sort_key(order_by))
        return copy.deepcopy(rows)

    def _update(self, table: str, row_id: Any, partial: Dict[str, Any]) -> Dict[str, Any]:
        row = self.backend.find(table, row_id)
        if row is None:
            raise SaveError(f"Rekod {row_id} tidak dijumpai.")
        merged = {**row, **partial, "id": row["id"]}
        self.backend._check_unique(table, merged, ignore_id=row["id"])
        row.update(merged)
        return copy.deepcopy(row)

    def _delete(self, table: str, row_id: Any) -> None:
        row = self.backend.find(table, row_id)
        if row is not None:
            self.backend.tables[table].remove(row)

    async def insert_student(self, record: Dict[str, Any]) -> Dict[str, Any]:
        self._require_user(SaveError)
        return self.backend.insert(STUDENTS, record)

    async def update_student(self, student_id: Any, partial: Dict[str, Any]) -> Dict[str, Any]:
        self._require_user(SaveError)
        return self._update(STUDENTS, student_id, partial)

    async def delete_student(self, student_id: Any) -> None:
        self._require_user(SaveError)
        self._delete(STUDENTS, student_id)

    async def upsert_students(self, records: Sequence[Dict[str, Any]], conflict_key: str = "ic_number") -> int:
        self._require_user(SaveError)
        keys = [r.get(conflict_key) for r in records if r.get(conflict_key) not in (None, "")]
        if len(keys) != len(set(keys)):
            raise SaveError("ON CONFLICT DO UPDATE command cannot affect row a second time")

        # one call is one statement: all rows or none
        before = copy.deepcopy(self.backend.tables[STUDENTS])
        try:
            for record in records:
                key = record.get(conflict_key)
                existing = None
                if key not in (None, ""):
                    existing = next(
                        (row for row in self.backend.tables[STUDENTS] if row.get(conflict_key) == key),
                        None,
                    )
                if existing is None:
                    self.backend.insert(STUDENTS, record)
                else:
                    self._update(STUDENTS, existing["id"], record)
        except SaveError:
            self.backend.tables[STUDENTS] = before
            raise
        return len(records)

    async def insert_class(self, record: Dict[str, Any]) -> Dict[str, Any]:
        self._require_user(SaveError)
        return self.backend.insert(CLASSES, record)

    async def update_class(self, class_id: Any, partial: Dict[str, Any]) -> Dict[str, Any]:
        self._require_user(SaveError)
        return self._update(CLASSES, class_id, partial)

    async def delete_class(self, class_id: Any) -> None:
        """Members of a deleted class keep their record with no class."""
        self._require_user(SaveError)
        for row in self.backend.tables[STUDENTS]:
            if str(row.get("class_id")) == str(class_id):
                row["class_id"] = None
        self._delete(CLASSES, class_id)
