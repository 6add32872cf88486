from __future__ import annotations

from dataclasses import asdict
from datetime import date
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from screentime_ledger.config import load_settings
from screentime_ledger.db_constants import APP_CONFIG_DEFAULTS
from screentime_ledger.db_models import UsageSource
from screentime_ledger.errors import (
    AccountabilityFeeAlreadyPaid,
    DuplicateApp,
    InsufficientCredits,
    LedgerError,
    LimitNotIncreasing,
    NotBlocked,
    UnknownApp,
)
from screentime_ledger.logging_setup import setup_logging
from screentime_ledger.messages import history_message, status_message
from screentime_ledger.service import ScreenTimeService, build_service

# InvariantViolation is deliberately absent: it must surface as a server error.
ERROR_STATUS: dict[type[LedgerError], int] = {
    UnknownApp: 404,
    DuplicateApp: 409,
    NotBlocked: 409,
    AccountabilityFeeAlreadyPaid: 409,
    InsufficientCredits: 402,
    LimitNotIncreasing: 400,
}


def _require_auth(request: Request, token: str | None) -> None:
    if not token:
        return
    header = request.headers.get("x-admin-token")
    query = request.query_params.get("token")
    if header == token or query == token:
        return
    raise HTTPException(status_code=401, detail="Unauthorized")


def _jsonable(value: Any) -> Any:
    return jsonable_encoder(asdict(value))


class ConfigUpdateRequest(BaseModel):
    updates: dict[str, Any] = Field(default_factory=dict)
    actor: str = "admin"
    note: str | None = None


class AddGoalRequest(BaseModel):
    app_id: str = Field(min_length=1)
    display_name: str = ""
    daily_limit_minutes: int = Field(ge=1)


class ExtendRequest(BaseModel):
    new_limit_minutes: int = Field(ge=1)


class BaseLimitRequest(BaseModel):
    daily_limit_minutes: int = Field(ge=1)
    effective_day: date | None = None


class UsageRequest(BaseModel):
    app_id: str
    minutes: int = Field(ge=0)
    source: UsageSource = UsageSource.LOCAL_ESTIMATE


class GrantRequest(BaseModel):
    amount: int = Field(ge=1, le=7)
    note: str | None = None
    actor: str = "admin"


def build_admin_app(service: ScreenTimeService, admin_token: str | None) -> FastAPI:
    app = FastAPI(title="Screen Time Ledger Admin", version="1.0.0")
    db = service.db

    async def _ledger_error(request: Request, exc: Exception) -> JSONResponse:
        status = ERROR_STATUS.get(type(exc), 400)
        return JSONResponse(status_code=status, content={"error": type(exc).__name__, "detail": str(exc)})

    for exc_cls in ERROR_STATUS:
        app.add_exception_handler(exc_cls, _ledger_error)

    def _audit(action: str, target: str, payload: dict[str, Any] | None = None) -> None:
        db.add_admin_audit(actor="admin", action=action, target=target, payload=payload, created_at=service.clock.now())

    @app.get("/", response_class=HTMLResponse)
    async def index(request: Request) -> str:
        _require_auth(request, admin_token)
        return """
<!doctype html>
<html>
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>Screen Time Ledger</title>
  <style>
    body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", sans-serif; margin: 24px; background: #f5f7fb; }
    h1, h2 { margin: 0 0 12px; }
    .card { background: #fff; border-radius: 12px; padding: 16px; margin-bottom: 16px; box-shadow: 0 2px 12px rgba(0,0,0,0.08); }
    .grid { display: grid; gap: 10px; grid-template-columns: repeat(auto-fit, minmax(260px, 1fr)); }
    label { display: block; font-size: 14px; margin-bottom: 6px; color: #374151; }
    input, button { width: 100%; box-sizing: border-box; padding: 10px; border: 1px solid #cbd5e1; border-radius: 8px; }
    button { background: #111827; color: #fff; cursor: pointer; }
    pre { white-space: pre-wrap; background: #0f172a; color: #e2e8f0; padding: 12px; border-radius: 8px; max-height: 320px; overflow: auto; }
  </style>
</head>
<body>
  <h1>Screen Time Ledger</h1>

  <div class="card">
    <h2>Status</h2>
    <pre id="status"></pre>
    <button id="reconcileBtn">Reconcile now</button>
  </div>

  <div class="card">
    <h2>Credit history</h2>
    <pre id="history"></pre>
  </div>

  <div class="card">
    <h2>Switches and tuning</h2>
    <div class="grid" id="config"></div>
    <button id="saveBtn">Save Config</button>
  </div>

  <script>
    const token = new URLSearchParams(window.location.search).get("token");
    function withToken(url) {
      if (!token) return url;
      const sep = url.includes("?") ? "&" : "?";
      return `${url}${sep}token=${encodeURIComponent(token)}`;
    }

    function input(key, value) {
      if (typeof value === "boolean") {
        return `<label><input type="checkbox" id="${key}" ${value ? "checked" : ""}/> ${key}</label>`;
      }
      return `<label>${key}<input type="number" id="${key}" value="${value}" /></label>`;
    }

    async function loadAll() {
      document.getElementById("status").textContent = await (await fetch(withToken("/api/status/text"))).text();
      document.getElementById("history").textContent = await (await fetch(withToken("/api/transactions/text"))).text();
      const cfg = await (await fetch(withToken("/api/config"))).json();
      document.getElementById("config").innerHTML = Object.entries(cfg.config).map(([k, v]) => input(k, v)).join("");
    }

    document.getElementById("reconcileBtn").addEventListener("click", async () => {
      await fetch(withToken("/api/reconcile"), {method: "POST"});
      await loadAll();
    });

    document.getElementById("saveBtn").addEventListener("click", async () => {
      const updates = {};
      for (const el of document.querySelectorAll("#config input")) {
        updates[el.id] = el.type === "checkbox" ? el.checked : Number(el.value);
      }
      const res = await fetch(withToken("/api/config"), {
        method: "POST",
        headers: {"content-type": "application/json"},
        body: JSON.stringify({updates, actor: "panel"})
      });
      if (!res.ok) { alert("Save failed"); return; }
      await loadAll();
    });

    loadAll();
  </script>
</body>
</html>
        """

    @app.get("/api/status")
    async def api_status(request: Request) -> dict[str, Any]:
        _require_auth(request, admin_token)
        return _jsonable(service.status())

    @app.get("/api/status/text", response_class=PlainTextResponse)
    async def api_status_text(request: Request) -> str:
        _require_auth(request, admin_token)
        return status_message(service.status())

    @app.get("/api/balance")
    async def api_balance(request: Request) -> dict[str, Any]:
        _require_auth(request, admin_token)
        return {"credits_remaining": service.current_balance()}

    @app.get("/api/transactions")
    async def api_transactions(request: Request, week_start: date | None = None) -> dict[str, Any]:
        _require_auth(request, admin_token)
        return {"rows": [_jsonable(tx) for tx in service.transaction_history(week_start)]}

    @app.get("/api/transactions/text", response_class=PlainTextResponse)
    async def api_transactions_text(request: Request) -> str:
        _require_auth(request, admin_token)
        return history_message(service.transaction_history())

    @app.get("/api/streak")
    async def api_streak(request: Request) -> dict[str, Any]:
        _require_auth(request, admin_token)
        return _jsonable(service.streak())

    @app.get("/api/goals")
    async def api_goals(request: Request) -> dict[str, Any]:
        _require_auth(request, admin_token)
        return {"goals": [_jsonable(g) for g in service.goals.list_goals()]}

    @app.post("/api/goals")
    async def api_add_goal(request: Request, payload: AddGoalRequest) -> dict[str, Any]:
        _require_auth(request, admin_token)
        try:
            goal = service.add_monitored_app(payload.app_id, payload.display_name, payload.daily_limit_minutes)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        _audit("goal.add", goal.app_id, {"limit": goal.daily_limit_minutes})
        return {"ok": True, "goal": _jsonable(goal)}

    @app.get("/api/goals/{app_id}/state")
    async def api_blocking_state(app_id: str, request: Request) -> dict[str, Any]:
        _require_auth(request, admin_token)
        return {"app_id": app_id, "state": service.blocking_state(app_id).value}

    @app.post("/api/goals/{app_id}/extend")
    async def api_extend(app_id: str, request: Request, payload: ExtendRequest) -> dict[str, Any]:
        _require_auth(request, admin_token)
        tx = service.extend_limit(app_id, payload.new_limit_minutes)
        return {"ok": True, "transaction": _jsonable(tx), "credits_remaining": service.current_balance()}

    @app.post("/api/goals/{app_id}/unblock")
    async def api_unblock(app_id: str, request: Request) -> dict[str, Any]:
        _require_auth(request, admin_token)
        tx = service.unblock_with_credit(app_id)
        return {"ok": True, "transaction": _jsonable(tx), "credits_remaining": service.current_balance()}

    @app.post("/api/goals/{app_id}/disable")
    async def api_disable(app_id: str, request: Request) -> dict[str, Any]:
        _require_auth(request, admin_token)
        goal = service.disable_app(app_id)
        _audit("goal.disable", app_id)
        return {"ok": True, "goal": _jsonable(goal)}

    @app.post("/api/goals/{app_id}/enable")
    async def api_enable(app_id: str, request: Request) -> dict[str, Any]:
        _require_auth(request, admin_token)
        goal = service.enable_app(app_id)
        _audit("goal.enable", app_id)
        return {"ok": True, "goal": _jsonable(goal)}

    @app.post("/api/goals/{app_id}/base_limit")
    async def api_base_limit(app_id: str, request: Request, payload: BaseLimitRequest) -> dict[str, Any]:
        _require_auth(request, admin_token)
        try:
            goal = service.schedule_base_limit(app_id, payload.daily_limit_minutes, payload.effective_day)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        _audit("goal.base_limit", app_id, jsonable_encoder(payload.model_dump()))
        return {"ok": True, "goal": _jsonable(goal)}

    @app.post("/api/usage")
    async def api_usage(request: Request, payload: UsageRequest) -> dict[str, Any]:
        _require_auth(request, admin_token)
        snapshot = service.record_usage_snapshot(payload.app_id, payload.minutes, payload.source)
        return {
            "ok": True,
            "snapshot": _jsonable(snapshot) if snapshot else None,
            "state": service.blocking_state(payload.app_id).value,
        }

    @app.post("/api/fee")
    async def api_pay_fee(request: Request) -> dict[str, Any]:
        _require_auth(request, admin_token)
        tx = service.pay_accountability_fee()
        return {"ok": True, "transaction": _jsonable(tx), "credits_remaining": service.current_balance()}

    @app.post("/api/grant")
    async def api_grant(request: Request, payload: GrantRequest) -> dict[str, Any]:
        _require_auth(request, admin_token)
        tx = service.manual_grant(payload.amount, payload.note)
        db.add_admin_audit(
            actor=payload.actor,
            action="ledger.grant",
            target="credits",
            payload={"amount": payload.amount, "note": payload.note},
            created_at=service.clock.now(),
        )
        return {"ok": True, "transaction": _jsonable(tx), "credits_remaining": service.current_balance()}

    @app.post("/api/reconcile")
    async def api_reconcile(request: Request) -> dict[str, Any]:
        _require_auth(request, admin_token)
        return _jsonable(service.poll_usage(force=True))

    @app.get("/api/config")
    async def api_config(request: Request) -> dict[str, Any]:
        _require_auth(request, admin_token)
        return {"config": db.get_app_config(), "defaults": APP_CONFIG_DEFAULTS}

    @app.post("/api/config")
    async def api_update_config(request: Request, payload: ConfigUpdateRequest) -> dict[str, Any]:
        _require_auth(request, admin_token)
        known = {key: value for key, value in payload.updates.items() if key in APP_CONFIG_DEFAULTS}
        try:
            cfg = db.set_app_config(known, actor=payload.actor, note=payload.note)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"ok": True, "updated_count": len(known), "config": cfg}

    @app.get("/api/audit")
    async def api_audit(request: Request, limit: int = 100) -> dict[str, Any]:
        _require_auth(request, admin_token)
        return {"rows": db.list_admin_audit(limit=limit)}

    return app


def run_admin() -> None:
    setup_logging()
    settings = load_settings()
    service = build_service(settings)
    app = build_admin_app(service, settings.admin_panel_token)
    uvicorn.run(app, host=settings.admin_host, port=settings.admin_port)
