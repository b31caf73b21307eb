"""FastAPI application exposing the ledger_dash backend."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from typing import Annotated, Any, Optional

import requests
from fastapi import Body, Depends, FastAPI, File, Form, Header, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .config import AppConfig, load_config
from .errors import (
    AuthenticationError,
    BackendError,
    InvalidRuleError,
    InvalidScopeError,
    MappingIncompleteError,
    NormalizationError,
)
from .models import ColumnMap, Scope
from .rules import RuleStoreRegistry, export_changes_csv
from .schemas import (
    CategoryUpdatesResponse,
    ColumnMapPayload,
    ImportPreviewResponse,
    ImportResponse,
    RuleChangeResponse,
    RuleCommitRequest,
    RuleCommitResponse,
    RuleCreateRequest,
    RulePreviewResponse,
    RuleResponse,
    RuleToggleRequest,
    SummaryResponse,
)
from .services import Backend, LedgerService
from .supabase import SupabaseClient, parse_bearer_token

logger = logging.getLogger(__name__)

MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Load configuration once and share the HTTP session and rule caches."""

    config = load_config()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app.state.config = config
    app.state.http_session = requests.Session()
    app.state.rule_stores = RuleStoreRegistry(config.rule_cache_size)
    logger.info("ledger_dash started against %s", config.supabase_url)

    yield

    app.state.rule_stores.clear()
    app.state.http_session.close()


app = FastAPI(lifespan=lifespan, title="ledger_dash backend", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(load_config().cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handling ------------------------------------------------------------


@app.exception_handler(NormalizationError)
@app.exception_handler(MappingIncompleteError)
@app.exception_handler(InvalidRuleError)
@app.exception_handler(InvalidScopeError)
async def unprocessable_handler(_, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(BackendError)
async def backend_error_handler(_, exc: BackendError) -> JSONResponse:
    if isinstance(exc, AuthenticationError):
        status_code = 401
    elif exc.status_code == 503:
        status_code = 503
    else:
        status_code = 400
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


# Dependency injection ------------------------------------------------------


@dataclass(slots=True)
class SessionContext:
    """Backend client and identity of the user behind the current request."""

    backend: Backend
    user_id: str


def get_config() -> AppConfig:
    config: AppConfig = app.state.config
    return config


def get_session_context(
    config: Annotated[AppConfig, Depends(get_config)],
    authorization: Annotated[Optional[str], Header()] = None,
) -> SessionContext:
    token = parse_bearer_token(authorization)
    if not token:
        raise AuthenticationError()
    client = SupabaseClient(config, token, session=app.state.http_session)
    user = client.get_user()
    return SessionContext(backend=client, user_id=str(user["id"]))


def get_ledger_service(
    config: Annotated[AppConfig, Depends(get_config)],
    context: Annotated[SessionContext, Depends(get_session_context)],
) -> LedgerService:
    stores: RuleStoreRegistry = app.state.rule_stores
    store = stores.get(context.user_id)
    return LedgerService(config, context.backend, context.user_id, store)


Service = Annotated[LedgerService, Depends(get_ledger_service)]


def _scope(month: Optional[str], all_: bool) -> Scope:
    return Scope(all=True) if all_ else Scope.for_month(month)


def _scope_label(scope: Scope) -> str:
    return "all" if scope.all else str(scope.month)


# Routes --------------------------------------------------------------------


@app.get("/health")
def health_check() -> dict[str, str]:
    """Return a basic heartbeat payload for monitoring purposes."""

    return {"status": "ok"}


@app.post("/api/ingest", status_code=204)
def ingest(
    service: Service,
    payload: Annotated[Optional[dict[str, Any]], Body()] = None,
) -> Response:
    """Store a batch of canonical rows for the current user."""

    rows = (payload or {}).get("rows")
    if not isinstance(rows, list):
        raise HTTPException(status_code=400, detail="Bad Request")
    service.ingest(rows)
    return Response(status_code=204)


@app.post("/api/transactions/update-categories")
def update_categories(
    service: Service,
    payload: Annotated[Optional[dict[str, Any]], Body()] = None,
) -> CategoryUpdatesResponse:
    updates = (payload or {}).get("updates")
    if not isinstance(updates, list) or not updates:
        raise HTTPException(status_code=400, detail="Bad Request")
    payloads = [update for update in updates if isinstance(update, dict)]
    return CategoryUpdatesResponse(updated=service.apply_raw_updates(payloads))


@app.post("/api/import/preview")
def preview_import(
    service: Service,
    config: Annotated[AppConfig, Depends(get_config)],
    file: Annotated[UploadFile, File(description="Bank statement export")],
) -> ImportPreviewResponse:
    table, mapping = service.preview_import(file.file.read())
    return ImportPreviewResponse(
        fields=table.fields,
        delimiter=table.delimiter,
        row_count=len(table.rows),
        mapping=ColumnMapPayload(**mapping.as_dict()),
        preview=table.rows[: config.preview_rows],
    )


@app.post("/api/import")
def import_file(
    service: Service,
    file: Annotated[UploadFile, File(description="Bank statement export")],
    date: Annotated[str, Form()] = "",
    amount: Annotated[str, Form()] = "",
    description: Annotated[str, Form()] = "",
    counterparty: Annotated[str, Form()] = "",
    type_: Annotated[str, Form(alias="type")] = "",
    category: Annotated[str, Form()] = "",
    budget_category: Annotated[str, Form()] = "",
    apply_rules: Annotated[bool, Form()] = True,
    collect_errors: Annotated[bool, Form()] = False,
) -> ImportResponse:
    """Normalize and store an upload using the mapping chosen by the user."""

    mapping = ColumnMap(
        date=date,
        amount=amount,
        description=description,
        counterparty=counterparty,
        type=type_,
        category=category,
        budget_category=budget_category,
    )
    imported, categorized = service.import_file(
        file.file.read(),
        mapping,
        apply_rules=apply_rules,
        collect_errors=collect_errors,
    )
    return ImportResponse(imported=imported, categorized=categorized)


@app.get("/api/rules")
def list_rules(
    service: Service,
    refresh: Annotated[bool, Query()] = False,
) -> list[RuleResponse]:
    return [RuleResponse(**asdict(rule)) for rule in service.list_rules(force=refresh)]


@app.post("/api/rules", status_code=201)
def create_rule(service: Service, body: RuleCreateRequest) -> RuleResponse:
    rule = service.create_rule(body.pattern, body.category, body.budget_category, body.enabled)
    return RuleResponse(**asdict(rule))


@app.patch("/api/rules/{rule_id}", status_code=204)
def toggle_rule(service: Service, rule_id: str, body: RuleToggleRequest) -> Response:
    service.toggle_rule(rule_id, body.enabled)
    return Response(status_code=204)


@app.delete("/api/rules/{rule_id}", status_code=204)
def delete_rule(service: Service, rule_id: str) -> Response:
    service.delete_rule(rule_id)
    return Response(status_code=204)


@app.get("/api/rules/preview")
def preview_rules(
    service: Service,
    month: Annotated[Optional[str], Query(pattern=MONTH_PATTERN)] = None,
    all_: Annotated[bool, Query(alias="all")] = False,
) -> RulePreviewResponse:
    scope = _scope(month, all_)
    scanned, changes = service.preview_rule_changes(scope)
    return RulePreviewResponse(
        scope=_scope_label(scope),
        scanned=scanned,
        changes=[RuleChangeResponse(**asdict(change)) for change in changes],
    )


@app.get("/api/rules/preview.csv")
def export_rule_preview(
    service: Service,
    month: Annotated[Optional[str], Query(pattern=MONTH_PATTERN)] = None,
    all_: Annotated[bool, Query(alias="all")] = False,
) -> Response:
    _, changes = service.preview_rule_changes(_scope(month, all_))
    return Response(
        content=export_changes_csv(changes),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="category-updates.csv"'},
    )


@app.post("/api/rules/commit")
def commit_rules(
    service: Service,
    month: Annotated[Optional[str], Query(pattern=MONTH_PATTERN)] = None,
    all_: Annotated[bool, Query(alias="all")] = False,
    body: Optional[RuleCommitRequest] = None,
) -> RuleCommitResponse:
    """Write the rule preview of a scope.

    The preview is recomputed at commit time. Send the previewed ``ids`` to
    restrict the write to the rows that were reviewed.
    """

    ids = body.ids if body is not None else None
    requested, updated = service.commit_rule_changes(_scope(month, all_), ids)
    return RuleCommitResponse(requested=requested, updated=updated)


@app.get("/api/summary")
def summary(
    service: Service,
    month: Annotated[Optional[str], Query(pattern=MONTH_PATTERN)] = None,
    all_: Annotated[bool, Query(alias="all")] = False,
    top: Annotated[int, Query(ge=1, le=50)] = 5,
) -> SummaryResponse:
    scope = _scope(month, all_)
    return SummaryResponse(scope=_scope_label(scope), **service.summary(scope, top))
