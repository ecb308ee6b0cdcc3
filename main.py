import logging
from datetime import datetime
from typing import Optional, Union
from zoneinfo import ZoneInfo

from fastapi import Depends, FastAPI, HTTPException, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal, session_scope
from errors import FormatError, PolicyViolation, StorageFailure
from models import (
    Account,
    Budget,
    Category,
    Expense,
    Income,
    RecurringTemplate,
    TransactionType,
)
from money import to_decimal_string
from recurrence import ProcessingReport
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    BudgetIn,
    CategoryIn,
    CategoryRename,
    EntryForm,
    RecurringTemplateIn,
    TagIn,
)
from seed import seed_reference_data
from services import (
    AccountService,
    BudgetService,
    CategoryService,
    LedgerService,
    RecurringTemplateService,
    TagService,
)
from stores import EntryFilters

logger = logging.getLogger(__name__)

app = FastAPI(title="Pocket Ledger")

ENTRY_PATHS = {"expenses": TransactionType.expense, "incomes": TransactionType.income}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    with session_scope() as session:
        if seed_reference_data(session):
            logger.info("Seeded predefined categories and default account")
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def http_error(exc: Exception, *, missing_status: int = 400) -> HTTPException:
    if isinstance(exc, PolicyViolation):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, FormatError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, StorageFailure):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=missing_status, detail=str(exc))


def entry_type_from_path(kind: str) -> TransactionType:
    try:
        return ENTRY_PATHS[kind]
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Unknown entry kind") from exc


def entry_json(entry: Union[Expense, Income]) -> dict[str, object]:
    return {
        "id": entry.id,
        "type": entry.entry_type.value,
        "amount_minor": entry.amount_minor,
        "amount": to_decimal_string(entry.amount_minor),
        "category_id": entry.category_id,
        "account_id": entry.account_id,
        "date": entry.date.isoformat(),
        "description": entry.description,
        "created_at": entry.created_at.isoformat(),
        "modified_at": entry.modified_at.isoformat(),
    }


def entry_payload(db: Session, entry: Union[Expense, Income]) -> dict[str, object]:
    payload = entry_json(entry)
    payload["tags"] = [
        tag.name for tag in TagService(db).tags_for_entry(entry.id, entry.entry_type)
    ]
    return payload


def template_json(template: RecurringTemplate) -> dict[str, object]:
    return {
        "id": template.id,
        "transaction_type": template.transaction_type.value,
        "amount_minor": template.amount_minor,
        "category_id": template.category_id,
        "account_id": template.account_id,
        "description": template.description,
        "frequency": template.frequency.value,
        "next_date": template.next_date.isoformat(),
        "last_processed": (
            template.last_processed.isoformat() if template.last_processed else None
        ),
    }


def budget_json(budget: Budget) -> dict[str, object]:
    return {
        "id": budget.id,
        "category_id": budget.category_id,
        "overall": budget.is_overall,
        "amount_minor": budget.amount_minor,
        "year": budget.year,
        "month": budget.month,
        "notified_75": budget.notified_75,
        "notified_100": budget.notified_100,
    }


def category_json(category: Category) -> dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "icon": category.icon,
        "color": category.color,
        "is_custom": category.is_custom,
        "sort_order": category.sort_order,
    }


def account_json(account: Account) -> dict[str, object]:
    return {
        "id": account.id,
        "name": account.name,
        "type": account.type.value,
        "icon": account.icon,
        "color": account.color,
        "is_custom": account.is_custom,
        "sort_order": account.sort_order,
    }


def report_json(report: ProcessingReport) -> dict[str, object]:
    return {
        "now": report.now.isoformat(),
        "processed_template_ids": report.processed_template_ids,
        "created": [entry_json(entry) for entry in report.created],
        "failures": [
            {
                "template_id": failure.template_id,
                "occurrence": failure.occurrence.isoformat(),
                "reason": failure.reason,
            }
            for failure in report.failures
        ],
    }


@app.get("/api/categories")
def api_list_categories(
    type: Optional[TransactionType] = None, db: Session = Depends(get_db)
):
    return {"items": [category_json(c) for c in CategoryService(db).list_all(type)]}


@app.get("/api/categories/{category_id}")
def api_get_category(category_id: int, db: Session = Depends(get_db)):
    try:
        category = CategoryService(db).get(category_id)
    except ValueError as exc:
        raise http_error(exc, missing_status=404) from exc
    return category_json(category)


@app.post("/api/categories", status_code=201)
def api_create_category(data: CategoryIn, db: Session = Depends(get_db)):
    try:
        category = CategoryService(db).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return category_json(category)


@app.put("/api/categories/{category_id}")
def api_rename_category(
    category_id: int, data: CategoryRename, db: Session = Depends(get_db)
):
    service = CategoryService(db)
    try:
        service.get(category_id)
    except ValueError as exc:
        raise http_error(exc, missing_status=404) from exc
    try:
        category = service.rename(category_id, data.name)
    except ValueError as exc:
        raise http_error(exc) from exc
    return category_json(category)


@app.delete("/api/categories/{category_id}", status_code=204)
def api_delete_category(category_id: int, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete(category_id)
    except (ValueError, StorageFailure) as exc:
        raise http_error(exc, missing_status=404) from exc
    return Response(status_code=204)


@app.get("/api/accounts")
def api_list_accounts(db: Session = Depends(get_db)):
    return {"items": [account_json(a) for a in AccountService(db).list_all()]}


@app.get("/api/accounts/{account_id}")
def api_get_account(account_id: int, db: Session = Depends(get_db)):
    service = AccountService(db)
    try:
        account = service.get(account_id)
    except ValueError as exc:
        raise http_error(exc, missing_status=404) from exc
    payload = account_json(account)
    payload["transaction_count"] = service.transaction_count(account_id)
    return payload


@app.post("/api/accounts", status_code=201)
def api_create_account(data: AccountIn, db: Session = Depends(get_db)):
    try:
        account = AccountService(db).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return account_json(account)


@app.delete("/api/accounts/{account_id}")
def api_delete_account(
    account_id: int,
    replacement_account_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    try:
        moved = AccountService(db).delete(account_id, replacement_account_id)
    except (ValueError, StorageFailure) as exc:
        raise http_error(exc, missing_status=404) from exc
    return {"deleted": account_id, "entries_reassigned": moved}


@app.get("/api/tags")
def api_list_tags(db: Session = Depends(get_db)):
    return {
        "items": [
            {"id": tag.id, "name": tag.name, "color": tag.color}
            for tag in TagService(db).list_all()
        ]
    }


@app.post("/api/tags", status_code=201)
def api_create_tag(data: TagIn, db: Session = Depends(get_db)):
    try:
        tag = TagService(db).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"id": tag.id, "name": tag.name}


@app.delete("/api/tags/{tag_id}", status_code=204)
def api_delete_tag(tag_id: int, db: Session = Depends(get_db)):
    try:
        TagService(db).delete(tag_id)
    except (ValueError, StorageFailure) as exc:
        raise http_error(exc, missing_status=404) from exc
    return Response(status_code=204)


@app.get("/api/recurring")
def api_list_recurring(db: Session = Depends(get_db)):
    return {"items": [template_json(t) for t in RecurringTemplateService(db).list()]}


@app.post("/api/recurring", status_code=201)
def api_create_recurring(data: RecurringTemplateIn, db: Session = Depends(get_db)):
    try:
        template = RecurringTemplateService(db).create(data)
    except (ValueError, StorageFailure) as exc:
        raise http_error(exc) from exc
    return template_json(template)


@app.get("/api/recurring/{template_id}")
def api_get_recurring(template_id: int, db: Session = Depends(get_db)):
    try:
        template = RecurringTemplateService(db).get(template_id)
    except ValueError as exc:
        raise http_error(exc, missing_status=404) from exc
    return template_json(template)


@app.put("/api/recurring/{template_id}")
def api_update_recurring(
    template_id: int, data: RecurringTemplateIn, db: Session = Depends(get_db)
):
    service = RecurringTemplateService(db)
    try:
        service.get(template_id)
    except ValueError as exc:
        raise http_error(exc, missing_status=404) from exc
    try:
        template = service.update(template_id, data)
    except (ValueError, StorageFailure) as exc:
        raise http_error(exc) from exc
    return template_json(template)


@app.delete("/api/recurring/{template_id}", status_code=204)
def api_delete_recurring(template_id: int, db: Session = Depends(get_db)):
    try:
        RecurringTemplateService(db).delete(template_id)
    except (ValueError, StorageFailure) as exc:
        raise http_error(exc, missing_status=404) from exc
    return Response(status_code=204)


class ProcessRequest(BaseModel):
    now: Optional[datetime] = None


@app.post("/api/recurring/process")
def api_process_recurring(
    data: Optional[ProcessRequest] = None, db: Session = Depends(get_db)
):
    now = data.now if data else None
    if now is not None and now.tzinfo is not None:
        # Stored timestamps are naive local wall-clock times.
        now = now.astimezone(ZoneInfo(get_settings().timezone)).replace(tzinfo=None)
    try:
        report = RecurringTemplateService(db).process_due(now)
    except StorageFailure as exc:
        raise http_error(exc) from exc
    return report_json(report)


@app.put("/api/budgets")
def api_upsert_budget(data: BudgetIn, db: Session = Depends(get_db)):
    try:
        budget = BudgetService(db).upsert(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return budget_json(budget)


@app.delete("/api/budgets/{budget_id}", status_code=204)
def api_delete_budget(budget_id: int, db: Session = Depends(get_db)):
    try:
        BudgetService(db).delete(budget_id)
    except ValueError as exc:
        raise http_error(exc, missing_status=404) from exc
    return Response(status_code=204)


@app.get("/api/budgets/{year}/{month}")
def api_budgets_for_month(year: int, month: int, db: Session = Depends(get_db)):
    if not 1 <= month <= 12:
        raise HTTPException(status_code=400, detail="Month must be between 1 and 12")
    service = BudgetService(db)
    progress = service.progress_for_month(year, month)
    return {
        "items": [
            {**budget_json(budget), **progress.get(budget.category_id, {})}
            for budget in service.list_for_month(year, month)
        ]
    }


@app.get("/api/{kind}/summary/{year}/{month}")
def api_entry_summary(
    kind: str, year: int, month: int, db: Session = Depends(get_db)
):
    entry_type = entry_type_from_path(kind)
    if not 1 <= month <= 12:
        raise HTTPException(status_code=400, detail="Month must be between 1 and 12")
    try:
        summary = LedgerService(db).month_summary(entry_type, year, month)
    except StorageFailure as exc:
        raise http_error(exc) from exc
    return {"year": year, "month": month, **summary}


@app.get("/api/{kind}")
def api_list_entries(
    kind: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    category_id: Optional[int] = None,
    account_id: Optional[int] = None,
    tag_id: Optional[int] = None,
    q: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
):
    entry_type = entry_type_from_path(kind)
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    filters = EntryFilters(
        start=start,
        end=end,
        category_id=category_id,
        account_id=account_id,
        tag_id=tag_id,
        query=q,
    )
    try:
        items = LedgerService(db).list(
            entry_type, filters, limit=limit + 1, offset=(page - 1) * limit
        )
    except StorageFailure as exc:
        raise http_error(exc) from exc
    has_more = len(items) > limit
    return {
        "items": [entry_payload(db, entry) for entry in items[:limit]],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.get("/api/{kind}/{entry_id}")
def api_get_entry(kind: str, entry_id: int, db: Session = Depends(get_db)):
    entry_type = entry_type_from_path(kind)
    try:
        entry = LedgerService(db).get(entry_id, entry_type)
    except ValueError as exc:
        raise http_error(exc, missing_status=404) from exc
    return entry_payload(db, entry)


@app.post("/api/{kind}", status_code=201)
def api_create_entry(kind: str, form: EntryForm, db: Session = Depends(get_db)):
    entry_type = entry_type_from_path(kind)
    try:
        entry = LedgerService(db).create(form.to_entry(entry_type))
    except (ValueError, StorageFailure) as exc:
        raise http_error(exc) from exc
    return entry_payload(db, entry)


@app.put("/api/{kind}/{entry_id}")
def api_update_entry(
    kind: str, entry_id: int, form: EntryForm, db: Session = Depends(get_db)
):
    entry_type = entry_type_from_path(kind)
    service = LedgerService(db)
    try:
        service.get(entry_id, entry_type)
    except ValueError as exc:
        raise http_error(exc, missing_status=404) from exc
    try:
        entry = service.update(entry_id, form.to_entry(entry_type))
    except (ValueError, StorageFailure) as exc:
        raise http_error(exc) from exc
    return entry_payload(db, entry)


@app.delete("/api/{kind}/{entry_id}", status_code=204)
def api_delete_entry(kind: str, entry_id: int, db: Session = Depends(get_db)):
    entry_type = entry_type_from_path(kind)
    try:
        LedgerService(db).delete(entry_id, entry_type)
    except (ValueError, StorageFailure) as exc:
        raise http_error(exc, missing_status=404) from exc
    return Response(status_code=204)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
