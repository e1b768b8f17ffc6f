import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from budget_session import (
    BudgetSession,
    ExpenseNotFound,
    MonthNotFound,
)
from money import format_currency
from scheduler import Debouncer
from schemas import ExpenseCreateIn, ExpenseIn, MonthCreateIn, MonthData, SalariesIn
from services import MonthSync, SyncStrategy, build_sync_service
from store import StoreError

logger = logging.getLogger(__name__)

app = FastAPI(title="Household Budget")


class SessionRegistry:
    """One ``BudgetSession`` per authenticated user, sharing a debouncer."""

    def __init__(
        self, sync: Optional[MonthSync] = None, debouncer: Optional[Debouncer] = None
    ) -> None:
        self._sync = sync
        self.debouncer = debouncer or Debouncer()
        self.sessions: dict[str, BudgetSession] = {}

    @property
    def sync(self) -> MonthSync:
        if self._sync is None:
            self._sync = build_sync_service()
        return self._sync

    def get(self, user_id: str) -> Optional[BudgetSession]:
        return self.sessions.get(user_id)

    async def open(self, user_id: str) -> BudgetSession:
        session = self.sessions.get(user_id)
        if session is not None:
            return session
        session = BudgetSession(user_id, self.sync, self.debouncer)
        await session.open()
        self.sessions[user_id] = session
        return session

    async def close(self, user_id: str) -> bool:
        session = self.sessions.pop(user_id, None)
        if session is None:
            return False
        await session.logout()
        return True

    async def shutdown(self) -> None:
        for user_id in list(self.sessions):
            await self.close(user_id)
        self.debouncer.shutdown()


registry = SessionRegistry()


def get_registry() -> SessionRegistry:
    return registry


def current_session(
    x_user_id: str = Header(...),
    sessions: SessionRegistry = Depends(get_registry),
) -> BudgetSession:
    session = sessions.get(x_user_id)
    if session is None:
        raise HTTPException(status_code=401, detail="Session not opened")
    return session


@app.on_event("shutdown")
async def shutdown_event():
    await get_registry().shutdown()


@app.exception_handler(MonthNotFound)
@app.exception_handler(ExpenseNotFound)
async def not_found_handler(_request: Request, exc: ValueError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(_request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(StoreError)
async def store_error_handler(_request: Request, exc: StoreError):
    logger.error(f"store_error: path={_request.url.path} error={exc}", exc_info=exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


def month_payload(session: BudgetSession, month: MonthData) -> dict:
    totals = session.totals(month.id)
    payload = month.model_dump(mode="json")
    payload["totals"] = totals.as_dict()
    payload["display"] = {
        key: format_currency(value) for key, value in totals.as_dict().items()
    }
    payload["sync_state"] = session.sync_states.get(month.id)
    return payload


def session_payload(session: BudgetSession) -> dict:
    return {
        "user_id": session.user_id,
        "current_month_id": session.current_month_id,
        "months": [month_payload(session, m) for m in session.sorted_months()],
        "accumulated_savings_cents": session.accumulated_savings(),
    }


@app.post("/api/session")
async def open_session(
    x_user_id: str = Header(...),
    sessions: SessionRegistry = Depends(get_registry),
):
    session = await sessions.open(x_user_id)
    return session_payload(session)


@app.delete("/api/session")
async def close_session(
    x_user_id: str = Header(...),
    sessions: SessionRegistry = Depends(get_registry),
):
    closed = await sessions.close(x_user_id)
    return {"closed": closed}


@app.get("/api/months")
async def list_months(session: BudgetSession = Depends(current_session)):
    return session_payload(session)


@app.post("/api/months")
async def create_month(
    data: MonthCreateIn, session: BudgetSession = Depends(current_session)
):
    month = session.create_month(data.year, data.month, import_fixed=data.import_fixed)
    return month_payload(session, month)


@app.get("/api/months/{month_id}")
async def get_month(month_id: str, session: BudgetSession = Depends(current_session)):
    return month_payload(session, session.get_month(month_id))


@app.post("/api/months/{month_id}/select")
async def select_month(
    month_id: str, session: BudgetSession = Depends(current_session)
):
    return month_payload(session, session.select_month(month_id))


@app.delete("/api/months/{month_id}")
async def delete_month(
    month_id: str, session: BudgetSession = Depends(current_session)
):
    deleted = await session.delete_month(month_id)
    return {"deleted": deleted, "current_month_id": session.current_month_id}


@app.put("/api/months/{month_id}/salaries")
async def set_salaries(
    month_id: str, data: SalariesIn, session: BudgetSession = Depends(current_session)
):
    session.select_month(month_id)
    return month_payload(session, session.set_salaries(data))


@app.post("/api/months/{month_id}/expenses")
async def add_expense(
    month_id: str,
    data: ExpenseCreateIn,
    session: BudgetSession = Depends(current_session),
):
    session.select_month(month_id)
    expense = session.add_expense(data, data.type)
    return expense.model_dump(mode="json")


@app.put("/api/months/{month_id}/expenses/{expense_id}")
async def update_expense(
    month_id: str,
    expense_id: str,
    data: ExpenseIn,
    session: BudgetSession = Depends(current_session),
):
    session.select_month(month_id)
    expense = session.update_expense(expense_id, data)
    return expense.model_dump(mode="json")


@app.delete("/api/months/{month_id}/expenses/{expense_id}")
async def delete_expense(
    month_id: str, expense_id: str, session: BudgetSession = Depends(current_session)
):
    session.select_month(month_id)
    session.delete_expense(expense_id)
    return {"deleted": True}


@app.post("/api/months/{month_id}/import-fixed")
async def import_fixed(
    month_id: str, session: BudgetSession = Depends(current_session)
):
    session.select_month(month_id)
    imported = session.import_fixed_expenses()
    return {
        "imported": imported,
        "month": month_payload(session, session.get_month(month_id)),
    }


@app.post("/api/months/{month_id}/close")
async def close_month(
    month_id: str, session: BudgetSession = Depends(current_session)
):
    session.select_month(month_id)
    month = session.close_month()
    logging.info(f"month_closed: user={session.user_id} month={month.id}")
    return month_payload(session, month)


@app.post("/api/months/{month_id}/reset")
async def reset_month(
    month_id: str, session: BudgetSession = Depends(current_session)
):
    session.select_month(month_id)
    return month_payload(session, session.reset_month())


@app.get("/api/months/{month_id}/totals")
async def month_totals(
    month_id: str, session: BudgetSession = Depends(current_session)
):
    return session.totals(session.get_month(month_id).id).as_dict()


@app.get("/api/savings")
async def savings(session: BudgetSession = Depends(current_session)):
    total = session.accumulated_savings()
    return {"accumulated_savings_cents": total, "display": format_currency(total)}


@app.get("/api/save-status")
async def save_status(session: BudgetSession = Depends(current_session)):
    return {
        "status": session.save_status,
        "last_error": session.last_error,
        "sync_states": dict(session.sync_states),
    }


@app.post("/api/save")
async def save_all(
    strategy: SyncStrategy = SyncStrategy.diff_upsert,
    session: BudgetSession = Depends(current_session),
):
    result = await session.save_all(strategy)
    return {"saved": result.saved, "failed": result.failed}
