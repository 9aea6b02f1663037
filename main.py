import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from sqlalchemy.orm import Session, sessionmaker

from alerts import AlertEngine, run_notification_job
from auth import current_owner_id, require_job_secret
from database import engine, get_db, init_schema
from models import utcnow
from scheduler import SchedulerManager
from schemas import ManualBalanceIn, NotificationPreferencesPatch, TransactionIn
from services import (
    AccountService,
    BudgetService,
    DashboardService,
    NotificationService,
    PreferencesService,
    SummaryService,
    TransactionService,
    notification_to_dict,
    transaction_to_dict,
)


logger = logging.getLogger(__name__)

app = FastAPI(title="FinTrack")

scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    init_schema(engine)
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.get("/api/accounts")
def list_accounts(
    db: Session = Depends(get_db), owner_id: int = Depends(current_owner_id)
):
    return AccountService(db, owner_id).list_with_balances()


@app.get("/api/accounts/{account_id}/balance")
def account_balance(
    account_id: int,
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    service = AccountService(db, owner_id)
    try:
        service.get(account_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"account_id": account_id, **service.resolve_balance(account_id)}


@app.put("/api/accounts/{account_id}/manual-balance")
def set_manual_balance(
    account_id: int,
    payload: ManualBalanceIn,
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    service = AccountService(db, owner_id)
    try:
        service.set_manual_balance(account_id, payload)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"account_id": account_id, **service.resolve_balance(account_id)}


@app.delete("/api/accounts/{account_id}/manual-balance")
def clear_manual_balance(
    account_id: int,
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    service = AccountService(db, owner_id)
    try:
        service.clear_manual_override(account_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"account_id": account_id, **service.resolve_balance(account_id)}


@app.get("/api/net-worth")
def net_worth(db: Session = Depends(get_db), owner_id: int = Depends(current_owner_id)):
    return AccountService(db, owner_id).net_worth()


@app.get("/api/budgets/progress")
def budgets_progress(
    today: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    service = BudgetService(db, owner_id)
    return {
        "budgets": service.progress_for_all(today),
        "warnings": service.warnings(today),
    }


@app.get("/api/budgets/{budget_id}/progress")
def budget_progress(
    budget_id: int,
    today: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    service = BudgetService(db, owner_id)
    try:
        budget = service.get(budget_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return service.compute_progress(budget, today)


@app.get("/api/summary")
def summary(
    granularity: str = Query(default="monthly"),
    window: Optional[int] = Query(default=None, ge=1, le=366),
    today: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    try:
        data = SummaryService(db, owner_id).summarize(granularity, window, today)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"granularity": granularity, "data": data}


@app.get("/api/dashboard")
def dashboard(
    today: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    return DashboardService(db, owner_id).dashboard(today)


@app.get("/api/dashboard/metrics")
def dashboard_metrics(
    today: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    return DashboardService(db, owner_id).metrics(today)


@app.get("/api/insights")
def insights(
    months: int = Query(default=3, ge=1, le=24),
    today: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    return SummaryService(db, owner_id).insights(months, today)


@app.post("/api/transactions", status_code=201)
def create_transaction(
    payload: TransactionIn,
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    try:
        txn = TransactionService(db, owner_id).create(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    AlertEngine(db, owner_id).check_transaction_alerts(txn.id)
    return transaction_to_dict(txn)


@app.get("/api/notifications")
def list_notifications(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    service = NotificationService(db, owner_id)
    items = service.recent(unread_only=unread_only, limit=limit)
    return [notification_to_dict(n) for n in items]


@app.post("/api/notifications/mark-all-read")
def mark_all_notifications_read(
    db: Session = Depends(get_db), owner_id: int = Depends(current_owner_id)
):
    return {"updated": NotificationService(db, owner_id).mark_all_read()}


@app.post("/api/notifications/clear-all")
def clear_all_notifications(
    db: Session = Depends(get_db), owner_id: int = Depends(current_owner_id)
):
    return {"deleted": NotificationService(db, owner_id).clear_all()}


@app.get("/api/notifications/preferences")
def notification_preferences(
    db: Session = Depends(get_db), owner_id: int = Depends(current_owner_id)
):
    return PreferencesService(db, owner_id).notification_preferences().model_dump()


@app.patch("/api/notifications/preferences")
def update_notification_preferences(
    payload: NotificationPreferencesPatch,
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    prefs = PreferencesService(db, owner_id).update_notification_preferences(payload)
    return prefs.model_dump()


@app.post("/api/notifications/trigger")
def trigger_notifications(
    db: Session = Depends(get_db), _: None = Depends(require_job_secret)
):
    factory = sessionmaker(bind=db.get_bind(), autoflush=False, expire_on_commit=False)
    users = run_notification_job(factory)
    logger.info(f"notification_trigger: users_processed={users}")
    return {
        "message": "Notification checks completed",
        "users_processed": users,
        "timestamp": utcnow(),
    }


@app.post("/api/notifications/{notification_id}/read")
def mark_notification_read(
    notification_id: int,
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    try:
        notification = NotificationService(db, owner_id).mark_read(notification_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return notification_to_dict(notification)


@app.delete("/api/notifications/{notification_id}", status_code=204)
def delete_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    owner_id: int = Depends(current_owner_id),
):
    try:
        NotificationService(db, owner_id).delete(notification_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
