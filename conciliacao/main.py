"""
FastAPI application for the reconciliation engine.
Exposes imports, day buckets and the match session to the dashboard.
"""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import date
from typing import List, Optional

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import APP_BASE_PATH, Settings, get_settings
from .errors import (
    AlreadyConsumedError,
    AlreadyReconciledError,
    ImbalancedSelectionError,
    InvalidRuleError,
    NoRuleError,
    ParseError,
    PersistenceError,
    ReconciliationError,
    SelectionError,
    SessionStateError,
)
from .ingestion import PercentageRow, RawStatementLine, SettlementRow
from .reconciliation import ReconciliationService
from .storage import JsonFileLedgerStore, LedgerStore

logger = structlog.get_logger()

ERROR_STATUS = {
    ParseError: 422,
    InvalidRuleError: 422,
    NoRuleError: 422,
    SelectionError: 422,
    ImbalancedSelectionError: 409,
    AlreadyConsumedError: 409,
    AlreadyReconciledError: 409,
    SessionStateError: 409,
    PersistenceError: 503,
}


def setup_logging(settings: Optional[Settings] = None):
    """Configure logging to file and console."""
    settings = settings or get_settings()

    log_dir = APP_BASE_PATH / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "app.log"

    # Configure standard logging
    logging.basicConfig(
        level=getattr(logging, settings.app_log_level.upper(), logging.INFO),
        format="%(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )

    # Configure structlog to use standard logging
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


# Request/Response models
class StatementLineModel(BaseModel):
    date: str
    description: str
    amount: str
    account: Optional[str] = None


class StatementImportRequest(BaseModel):
    source: str
    account: Optional[str] = None
    locale: Optional[str] = None
    lines: List[StatementLineModel]


class SettlementRowModel(BaseModel):
    date: str
    value: str
    entry_type: str = ""
    id: Optional[str] = None
    contract_id: Optional[str] = None
    description: str = ""
    installment: Optional[str] = None
    status: Optional[str] = None


class SettlementImportRequest(BaseModel):
    channel: str
    locale: Optional[str] = None
    rows: List[SettlementRowModel]


class PercentageRowModel(BaseModel):
    contract_id: str
    catalog_percent: str
    plans_percent: str
    settlement_entry_id: Optional[str] = None


class RulesImportRequest(BaseModel):
    locale: Optional[str] = None
    rows: List[PercentageRowModel]


class LedgerPasteRequest(BaseModel):
    text: str
    locale: Optional[str] = None


class OpenSessionRequest(BaseModel):
    flow: str
    day: date
    preselect_all: bool = False


class CommitRequest(BaseModel):
    override_balance: bool = False


class FlowResponse(BaseModel):
    name: str
    label: str
    reconciliation_type: str
    window_days: int
    split_mode: str


def create_app(store: Optional[LedgerStore] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the API around a ledger store (defaults to the JSON ledger file)."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        setup_logging(settings)
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        settings.reports_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Starting reconciliation API", env=settings.app_env)
        yield
        logger.info("Shutting down reconciliation API")

    app = FastAPI(
        title="Conciliação",
        description="Conciliação de extratos bancários com agendas de recebíveis",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.service = ReconciliationService(
        store or JsonFileLedgerStore(settings.ledger_path),
        settings,
    )

    def service(request: Request) -> ReconciliationService:
        return request.app.state.service

    def require_flow(request: Request, flow: str) -> None:
        if flow not in service(request).flows:
            raise HTTPException(404, f"Flow not found: {flow}")

    @app.exception_handler(ReconciliationError)
    async def reconciliation_error_handler(request: Request, exc: ReconciliationError):
        status = next(
            (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
            400,
        )
        logger.warning("Request rejected", error=type(exc).__name__, message=exc.message, status=status)
        return JSONResponse(
            status_code=status,
            content={"detail": exc.message, "error": type(exc).__name__, "details": exc.details},
        )

    # API Endpoints
    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "conciliacao"}

    @app.get("/api/flows", response_model=List[FlowResponse])
    async def list_flows(request: Request):
        return [
            FlowResponse(
                name=flow.name,
                label=flow.label,
                reconciliation_type=flow.reconciliation_type.value,
                window_days=flow.window_days,
                split_mode=flow.split_mode.value,
            )
            for flow in service(request).flows.values()
        ]

    @app.get("/api/flows/{flow}/buckets")
    async def list_buckets(
        request: Request,
        flow: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ):
        require_flow(request, flow)
        buckets = await service(request).list_buckets(flow, date_from, date_to)
        return [b.to_dict() for b in buckets]

    @app.post("/api/statements/import")
    async def import_statement(request: Request, body: StatementImportRequest):
        lines = [
            RawStatementLine(
                source=body.source,
                date=line.date,
                description=line.description,
                amount=line.amount,
                account=line.account or body.account,
                row_number=index,
            )
            for index, line in enumerate(body.lines, start=1)
        ]
        summary = await service(request).import_statement(lines, body.locale)
        return summary.to_dict()

    @app.post("/api/settlements/import")
    async def import_settlements(request: Request, body: SettlementImportRequest):
        rows = [
            SettlementRow(
                date=row.date,
                value=row.value,
                entry_type=row.entry_type,
                channel=body.channel,
                id=row.id,
                contract_id=row.contract_id,
                description=row.description,
                installment=row.installment,
                status=row.status,
                row_number=index,
            )
            for index, row in enumerate(body.rows, start=1)
        ]
        summary = await service(request).import_settlements(rows, body.locale)
        return summary.to_dict()

    @app.post("/api/rules/import")
    async def import_rules(request: Request, body: RulesImportRequest):
        rows = [
            PercentageRow(
                contract_id=row.contract_id,
                catalog_percent=row.catalog_percent,
                plans_percent=row.plans_percent,
                settlement_entry_id=row.settlement_entry_id,
                row_number=index,
            )
            for index, row in enumerate(body.rows, start=1)
        ]
        summary = await service(request).import_percentage_rules(rows, body.locale)
        return summary.to_dict()

    @app.post("/api/ledger/paste")
    async def paste_ledger(request: Request, body: LedgerPasteRequest):
        summary = await service(request).import_pasted_ledger(body.text, body.locale)
        return summary.to_dict()

    @app.get("/api/ledger/balance")
    async def ledger_balance(request: Request):
        return {"balance_cents": await service(request).ledger_balance_cents()}

    @app.post("/api/session/open")
    async def open_session(request: Request, body: OpenSessionRequest):
        require_flow(request, body.flow)
        snapshot = await service(request).open_session(body.flow, body.day, body.preselect_all)
        return snapshot.to_dict()

    @app.get("/api/session")
    async def get_session(request: Request):
        return service(request).snapshot().to_dict()

    @app.post("/api/session/transactions/{transaction_id}/toggle")
    async def toggle_transaction(request: Request, transaction_id: str):
        return service(request).toggle_transaction(transaction_id).to_dict()

    @app.post("/api/session/entries/{entry_id}/toggle")
    async def toggle_entry(request: Request, entry_id: str):
        snapshot = await service(request).toggle_entry(entry_id)
        return snapshot.to_dict()

    @app.post("/api/session/select-all")
    async def select_all(request: Request):
        snapshot = await service(request).select_all()
        return snapshot.to_dict()

    @app.get("/api/session/preview")
    async def preview_split(request: Request):
        return service(request).preview_split().to_dict()

    @app.post("/api/session/commit")
    async def commit(request: Request, body: CommitRequest):
        result = await service(request).commit(body.override_balance)
        return result.to_dict()

    @app.post("/api/session/cancel")
    async def cancel(request: Request):
        return service(request).cancel().to_dict()

    return app


app = create_app()
