"""FastAPI stand-in for the work-order API, for demos and offline tests.

Serves every endpoint the dashboard consumes over generated work orders. State
lives in memory per app instance; ``create_app()`` gives a fresh copy.
"""

from __future__ import annotations

import hashlib
import hmac
import os
import random
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, FastAPI, Form, HTTPException, Request, status
from fastapi.responses import Response

from .models import ApprovalStatus, SUMMARY_FIELDS, SummaryCategory, status_matches

DEMO_USERNAME = "admin"
DEMO_EMAIL = "admin@example.com"
DEMO_PASSWORD = "password123"

WORK_ORDER_TYPES = ["Repair", "Inspection", "Preventive", "Calibration", "Replacement"]
WORKER_GROUPS = ["MECH-A", "MECH-B", "ELEC", "I&C", "CIVIL"]
LIFECYCLE_STATES = ["Created", "Scheduled", "InProgress", "OnHold"]
COST_TYPES = ["Capex", "Opex"]

FILTERABLE_COLUMNS = [
    {"field": "WorkOrderTypeId", "label": "Type", "type": "string"},
    {"field": "WorkerGroupId", "label": "Worker Group", "type": "string"},
    {"field": "WorkOrderLifecycleStateId", "label": "Lifecycle State", "type": "string"},
    {"field": "CostType", "label": "Cost Type", "type": "string"},
    {"field": "approval_status", "label": "Approval Status", "type": "string"},
]
SEARCH_FIELDS = ("WorkOrderId", "Description", "WorkOrderTypeId", "WorkerGroupId")
DOWNLOAD_TTL_SECONDS = 300


@dataclass
class SandboxData:
    work_orders: List[Dict[str, Any]]
    summaries: Dict[str, Dict[str, Any]]
    files: Dict[str, bytes]
    users: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    passwords: Dict[str, str] = field(default_factory=dict)
    tokens: Dict[str, str] = field(default_factory=dict)
    reset_tokens: Dict[str, str] = field(default_factory=dict)
    approvals: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    feedback: Dict[Tuple[str, str], Dict[str, Any]] = field(default_factory=dict)
    signing_key: bytes = field(default_factory=lambda: secrets.token_bytes(32))

    def find(self, work_order_id: str) -> Optional[Dict[str, Any]]:
        for record in self.work_orders:
            if record["WorkOrderId"] == work_order_id:
                return record
        return None


def _initial_status(index: int) -> str:
    # Mixed casing on purpose; the server is not consistent about it.
    if index % 10 == 3:
        return "APPROVED"
    if index % 10 == 5:
        return "Rejected"
    if index % 25 == 9:
        return "Cancelled"
    return "PENDING"


def generate_work_orders(count: int = 78, seed: int = 7) -> List[Dict[str, Any]]:
    """Deterministic demo work orders shaped like the real listing rows."""
    rng = random.Random(seed)
    base = datetime(2025, 1, 6, 7, 0, tzinfo=timezone.utc)
    records = []
    for index in range(1, count + 1):
        wo_type = rng.choice(WORK_ORDER_TYPES)
        start = base + timedelta(days=index, hours=rng.randint(0, 8))
        end = start + timedelta(hours=rng.randint(2, 12))
        records.append(
            {
                "WorkOrderId": f"WO-{index:04d}",
                "Description": f"{wo_type} of pump station unit {rng.randint(1, 40)}",
                "WorkerGroupId": rng.choice(WORKER_GROUPS),
                "WorkOrderLifecycleStateId": rng.choice(LIFECYCLE_STATES),
                "WorkOrderTypeId": wo_type,
                "ExpectedStart": start.isoformat(),
                "ExpectedEnd": end.isoformat(),
                "ScheduledStart": start.isoformat(),
                "ScheduledEnd": end.isoformat(),
                "ActualStart": "",
                "ActualEnd": "",
                "CostType": rng.choice(COST_TYPES),
                "ServiceLevel": rng.randint(1, 5),
                "Active": True,
                "WorkOrderMaintenanceAssetCriticalityValue": rng.randint(1, 5),
                "dataAreaId": "usmf",
                "approval_status": _initial_status(index),
                "is_summary_generated": index % 4 != 0,
            }
        )
    return records


def _summary_payload(record: Dict[str, Any]) -> Dict[str, Any]:
    wo_id = record["WorkOrderId"]
    wo_type = record["WorkOrderTypeId"]
    return {
        "safety_rules_summary": (
            f"### Safety rules for {wo_type}\n"
            "- Apply **lockout/tagout** before opening the casing\n"
            "- Confirm zero energy state with a calibrated tester\n"
        ),
        "operating_experience_summary": (
            f"Previous {wo_type.lower()} jobs on this asset ran *2 hours* over plan "
            "because spare seals were not staged."
        ),
        "hpt_rules_summary": "1. Pre-job briefing\n2. Three-way communication\n3. Self-check (STAR)",
        "similar_wo_summary": f"Work orders similar to {wo_id} were completed without findings.",
        "safety_rules_sources": [
            {"file_name": f"procedures/{wo_type.lower()}-sop.pdf", "title": f"{wo_type} SOP"}
        ],
        "operating_experience_sources": [f"oe/{wo_id.lower()}-report.pdf"],
        "hpt_rules_sources": [],
        "similar_wo_sources": [],
    }


def build_sandbox_data(count: int = 78, seed: int = 7) -> SandboxData:
    work_orders = generate_work_orders(count, seed)
    summaries = {
        r["WorkOrderId"]: _summary_payload(r) for r in work_orders if r["is_summary_generated"]
    }
    files: Dict[str, bytes] = {}
    for payload in summaries.values():
        for category in SummaryCategory:
            for item in payload.get(SUMMARY_FIELDS[category][1]) or []:
                name = item if isinstance(item, str) else item["file_name"]
                files[name] = f"Sandbox document {name}\n".encode("utf-8")
    data = SandboxData(work_orders=work_orders, summaries=summaries, files=files)
    data.users[DEMO_USERNAME] = {
        "id": "1",
        "username": DEMO_USERNAME,
        "email": DEMO_EMAIL,
        "full_name": "Demo Administrator",
    }
    data.passwords[DEMO_USERNAME] = DEMO_PASSWORD
    decided_at = datetime(2025, 2, 1, 9, 30, tzinfo=timezone.utc).isoformat()
    for record in work_orders:
        raw = record["approval_status"]
        if status_matches(raw, ApprovalStatus.APPROVED) or status_matches(raw, ApprovalStatus.REJECTED):
            data.approvals[record["WorkOrderId"]] = {
                "status": raw,
                "action_by": {"email": "planner@example.com", "username": "planner"},
                "action_date": decided_at,
            }
    return data


def _data(request: Request) -> SandboxData:
    return request.app.state.sandbox


def _current_user(request: Request) -> Dict[str, Any]:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    data = _data(request)
    username = data.tokens.get(token) if scheme.lower() == "bearer" else None
    if not username:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return data.users[username]


def _lookup_username(data: SandboxData, identifier: str) -> Optional[str]:
    if identifier in data.users:
        return identifier
    for username, user in data.users.items():
        if user.get("email", "").lower() == identifier.lower():
            return username
    return None


def _sign(data: SandboxData, file_name: str, expires: int) -> str:
    message = f"{file_name}:{expires}".encode("utf-8")
    return hmac.new(data.signing_key, message, hashlib.sha256).hexdigest()


def _matches_filter(record: Dict[str, Any], column: str, wanted: str) -> bool:
    value = record.get(column)
    if column == "approval_status":
        return bool(value) and wanted.upper() in str(value).upper()
    return value is not None and str(value).lower() == wanted.lower()


def _sort_key(column: str):
    def key(record: Dict[str, Any]) -> Tuple[bool, Any]:
        value = record.get(column)
        if isinstance(value, str):
            value = value.lower()
        return (value is None or value == "", value if value is not None else "")

    return key


router = APIRouter(prefix="/api")


@router.post("/auth/token")
def issue_token(
    request: Request,
    username: str = Form(""),
    password: str = Form(""),
) -> Dict[str, str]:
    data = _data(request)
    account = _lookup_username(data, username)
    if account is None or not secrets.compare_digest(data.passwords[account], password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    token = secrets.token_urlsafe(24)
    data.tokens[token] = account
    return {"access_token": token, "token_type": "bearer"}


@router.get("/auth/users/me")
def read_me(user: Dict[str, Any] = Depends(_current_user)) -> Dict[str, Any]:
    return user


@router.post("/auth/forgot-password")
def forgot_password(payload: Dict[str, Any], request: Request) -> Dict[str, str]:
    data = _data(request)
    username = _lookup_username(data, str(payload.get("email") or ""))
    if username is not None:
        data.reset_tokens[secrets.token_urlsafe(16)] = username
    # Same answer either way so the endpoint cannot be used to discover accounts.
    return {"message": "If the account exists, a reset link has been sent."}


@router.post("/auth/reset-password")
def reset_password(payload: Dict[str, Any], request: Request) -> Dict[str, str]:
    data = _data(request)
    username = data.reset_tokens.pop(str(payload.get("token") or ""), None)
    if username is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired token")
    data.passwords[username] = str(payload.get("newPassword") or "")
    return {"message": "Password has been reset"}


@router.post("/auth/change-password")
def change_password(
    payload: Dict[str, Any],
    request: Request,
    user: Dict[str, Any] = Depends(_current_user),
) -> Dict[str, str]:
    data = _data(request)
    username = user["username"]
    if not secrets.compare_digest(data.passwords[username], str(payload.get("oldPassword") or "")):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Incorrect password")
    data.passwords[username] = str(payload.get("newPassword") or "")
    return {"message": "Password changed"}


@router.get("/work_orders", dependencies=[Depends(_current_user)])
def list_work_orders(request: Request) -> Dict[str, Any]:
    params = request.query_params
    try:
        skip = max(int(params.get("skip", 0)), 0)
        limit = max(int(params.get("limit", 100)), 0)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    rows = list(_data(request).work_orders)
    search = (params.get("search") or "").strip().lower()
    if search:
        rows = [
            r for r in rows if any(search in str(r.get(f) or "").lower() for f in SEARCH_FIELDS)
        ]
    for key, value in params.items():
        if key.startswith("filter_") and value:
            column = key[len("filter_"):]
            rows = [r for r in rows if _matches_filter(r, column, value)]
    sort_by = params.get("sort_by")
    if sort_by:
        rows.sort(key=_sort_key(sort_by), reverse=params.get("sort_direction") == "desc")
    return {
        "data": rows[skip : skip + limit],
        "count": len(rows),
        "meta": {"skip": skip, "limit": limit},
    }


@router.get("/work_orders/columns/filterable", dependencies=[Depends(_current_user)])
def filterable_columns() -> List[Dict[str, str]]:
    return FILTERABLE_COLUMNS


@router.get("/work_orders/filter_values/{column}", dependencies=[Depends(_current_user)])
def filter_values(column: str, request: Request) -> List[Dict[str, Any]]:
    if column not in {c["field"] for c in FILTERABLE_COLUMNS}:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown column")
    counts: Dict[str, int] = {}
    for record in _data(request).work_orders:
        value = record.get(column)
        if value in (None, ""):
            continue
        counts[str(value)] = counts.get(str(value), 0) + 1
    return [{"value": v, "label": v, "count": n} for v, n in sorted(counts.items())]


@router.post("/approval/")
def submit_approval(
    payload: Dict[str, Any],
    request: Request,
    user: Dict[str, Any] = Depends(_current_user),
) -> Dict[str, str]:
    data = _data(request)
    work_order_id = str(payload.get("workorder_id") or "")
    decision = str(payload.get("approval_status") or "").upper()
    if decision not in (ApprovalStatus.APPROVED.value, ApprovalStatus.REJECTED.value):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid approval status")
    record = data.find(work_order_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Work order not found")
    record["approval_status"] = decision
    data.approvals[work_order_id] = {
        "status": decision,
        "action_by": {"email": user["email"], "username": user["username"]},
        "action_date": datetime.now(timezone.utc).isoformat(),
    }
    return {
        "message": f"Work order {work_order_id} {decision.lower()}",
        "work_order_id": work_order_id,
        "status": decision,
    }


@router.get("/approval/{work_order_id}", dependencies=[Depends(_current_user)])
def approval_details(work_order_id: str, request: Request) -> Dict[str, Any]:
    details = _data(request).approvals.get(work_order_id)
    if details is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No decision recorded")
    return details


@router.get("/summaries/{work_order_id}", dependencies=[Depends(_current_user)])
def summaries(work_order_id: str, request: Request) -> Dict[str, Any]:
    payload = _data(request).summaries.get(work_order_id)
    if payload is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Summary not generated")
    return payload


@router.get("/feedback/{work_order_id}")
def read_feedback(
    work_order_id: str,
    request: Request,
    user: Dict[str, Any] = Depends(_current_user),
) -> Dict[str, Any]:
    record = _data(request).feedback.get((work_order_id, user["id"]))
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No feedback yet")
    return record


@router.post("/feedback")
def upsert_feedback(
    payload: Dict[str, Any],
    request: Request,
    user: Dict[str, Any] = Depends(_current_user),
) -> Dict[str, Any]:
    data = _data(request)
    work_order_id = str(payload.get("work_order_id") or "")
    category = str(payload.get("category") or "")
    if category not in {c.value for c in SummaryCategory}:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown category")
    if payload.get("feedback") not in ("positive", "negative", None):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid feedback value")
    if data.find(work_order_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Work order not found")
    key = (work_order_id, user["id"])
    record = data.feedback.setdefault(
        key, {"work_order_id": work_order_id, "user_id": user["id"]}
    )
    record[category] = {"feedback": payload.get("feedback"), "comment": payload.get("comment")}
    return record


@router.post("/blob/download", dependencies=[Depends(_current_user)])
def download_link(payload: Dict[str, Any], request: Request) -> Dict[str, str]:
    data = _data(request)
    file_name = str(payload.get("file_name") or "")
    if file_name not in data.files:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    expires = int(time.time()) + DOWNLOAD_TTL_SECONDS
    url = request.url_for("blob_file", file_name=file_name)
    signature = _sign(data, file_name, expires)
    return {"download_url": f"{url}?expires={expires}&sig={signature}"}


@router.get("/blob/files/{file_name:path}", name="blob_file")
def blob_file(file_name: str, expires: int, sig: str, request: Request) -> Response:
    data = _data(request)
    if expires < int(time.time()) or not hmac.compare_digest(sig, _sign(data, file_name, expires)):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Link expired or invalid")
    content = data.files.get(file_name)
    if content is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return Response(content=content, media_type="application/octet-stream")


def create_app(data: Optional[SandboxData] = None) -> FastAPI:
    app = FastAPI(title="Work Order API Sandbox")
    app.state.sandbox = data or build_sandbox_data()
    app.include_router(router)

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()


def serve(host: str = "127.0.0.1", port: int = 8000, reload: bool = False) -> None:
    import uvicorn

    uvicorn.run("approval_dashboard.sandbox:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    serve(
        host=os.getenv("SANDBOX_HOST", "127.0.0.1"),
        port=int(os.getenv("SANDBOX_PORT", "8000")),
        reload=os.getenv("SANDBOX_RELOAD", "false").lower() == "true",
    )
