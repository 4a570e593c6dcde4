from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal, init_db
from periods import Period, resolve_period
from recurrence import local_today
from reports import ReportService
from scheduler import SchedulerManager
from schemas import (
    CategoryIn,
    CategoryOut,
    CSVImportResult,
    ExpenseIn,
    ExpenseOut,
    ImportSummary,
    RecurringTemplateIn,
    SubCategoryIn,
)
from services import (
    CategoryService,
    CSVService,
    ExpenseService,
    RecurringTemplateService,
)

app = FastAPI(title="Expense Tracker")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    init_db()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def period_from_request(request: Request) -> Period:
    period_slug = request.query_params.get("period")
    start = request.query_params.get("start")
    end = request.query_params.get("end")
    try:
        return resolve_period(period_slug, start, end, today=local_today())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _check_month(month: int) -> None:
    if not 1 <= month <= 12:
        raise HTTPException(status_code=400, detail="Month must be between 1 and 12")


def _expense_out(expense) -> Optional[ExpenseOut]:
    if expense is None:
        return None
    return ExpenseOut.from_model(expense)


def _category_out(category) -> CategoryOut:
    return CategoryOut(
        id=category.id, name=category.name, sub_categories=category.sub_categories
    )


@app.post("/api/expenses", response_model=Optional[ExpenseOut])
def add_expense(payload: ExpenseIn, db: Session = Depends(get_db)):
    return _expense_out(ExpenseService(db).add(payload))


@app.get("/api/expenses", response_model=list[ExpenseOut])
def expenses_by_month(year: int, month: int, db: Session = Depends(get_db)):
    _check_month(month)
    return [ExpenseOut.from_model(e) for e in ExpenseService(db).list_month(year, month)]


@app.get("/api/expenses/all", response_model=list[ExpenseOut])
def all_expenses(db: Session = Depends(get_db)):
    return [ExpenseOut.from_model(e) for e in ExpenseService(db).list_all()]


@app.get("/api/expenses/range", response_model=list[ExpenseOut])
def expenses_in_period(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    return [ExpenseOut.from_model(e) for e in ExpenseService(db).list_period(period)]


@app.get("/api/expenses/by-category", response_model=list[ExpenseOut])
def expenses_by_category(
    request: Request, category: str, db: Session = Depends(get_db)
):
    period = None
    if request.query_params.get("period"):
        period = period_from_request(request)
    items = ExpenseService(db).list_category(category, period)
    return [ExpenseOut.from_model(e) for e in items]


@app.get("/api/expenses/by-sub-category", response_model=list[ExpenseOut])
def expenses_by_sub_category(sub_category: str, db: Session = Depends(get_db)):
    items = ExpenseService(db).list_sub_category(sub_category)
    return [ExpenseOut.from_model(e) for e in items]


@app.get("/api/expenses/category-summary")
def category_summary(year: int, month: int, db: Session = Depends(get_db)):
    _check_month(month)
    return ReportService(db).category_summary_for_month(year, month)


@app.get("/api/expenses/year-to-date")
def year_to_date(year: int, db: Session = Depends(get_db)):
    return ReportService(db).year_to_date_summary(year)


@app.get("/api/expenses/monthly-total")
def monthly_total(year: int, month: int, db: Session = Depends(get_db)):
    _check_month(month)
    return {"total": ReportService(db).monthly_total(year, month)}


@app.get("/api/expenses/monthly-trend")
def monthly_trend(year: int, db: Session = Depends(get_db)):
    return ReportService(db).monthly_trend(year)


@app.get("/api/expenses/recurring", response_model=list[ExpenseOut])
def recurring_templates(db: Session = Depends(get_db)):
    return [ExpenseOut.from_model(e) for e in RecurringTemplateService(db).list()]


@app.post("/api/expenses/recurring", response_model=Optional[ExpenseOut])
def add_recurring_template(payload: RecurringTemplateIn, db: Session = Depends(get_db)):
    return _expense_out(RecurringTemplateService(db).create(payload))


@app.post("/api/expenses/recurring/run")
def run_recurring(as_of: Optional[date] = None, db: Session = Depends(get_db)):
    stats = RecurringTemplateService(db).run_generation_cycle(as_of)
    return {
        "asOf": stats.as_of.isoformat(),
        "templates": stats.templates,
        "created": stats.created,
        "duplicates": stats.duplicates,
        "expired": stats.expired,
        "failed": stats.failed,
    }


@app.get("/api/expenses/recurring/{template_id}/instances", response_model=list[ExpenseOut])
def recurring_instances(template_id: int, db: Session = Depends(get_db)):
    try:
        items = RecurringTemplateService(db).instances(template_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return [ExpenseOut.from_model(e) for e in items]


@app.put("/api/expenses/recurring/{template_id}", response_model=Optional[ExpenseOut])
def update_recurring_template(
    template_id: int, payload: RecurringTemplateIn, db: Session = Depends(get_db)
):
    try:
        template = RecurringTemplateService(db).update(template_id, payload)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _expense_out(template)


@app.delete("/api/expenses/recurring/{template_id}", status_code=204)
def delete_recurring_template(template_id: int, db: Session = Depends(get_db)):
    try:
        RecurringTemplateService(db).delete(template_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.post("/api/expenses/import", response_model=ImportSummary)
def import_expenses(payload: list[ExpenseIn], db: Session = Depends(get_db)):
    return ExpenseService(db).import_batch(payload)


@app.post("/api/expenses/import.csv", response_model=CSVImportResult)
async def import_expenses_csv(
    file: UploadFile = File(...), db: Session = Depends(get_db)
):
    raw = await file.read()
    try:
        content = raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="CSV must be UTF-8") from exc
    return CSVService(db).import_csv(content)


@app.get("/api/expenses/export.csv")
def export_expenses_csv(request: Request, db: Session = Depends(get_db)):
    expenses = None
    if request.query_params.get("period"):
        expenses = ExpenseService(db).list_period(period_from_request(request))
    content = CSVService(db).export(expenses)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="expenses.csv"'},
    )


@app.put("/api/expenses/{expense_id}", response_model=Optional[ExpenseOut])
def update_expense(expense_id: int, payload: ExpenseIn, db: Session = Depends(get_db)):
    try:
        expense = ExpenseService(db).update(expense_id, payload)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _expense_out(expense)


@app.delete("/api/expenses/{expense_id}", status_code=204)
def delete_expense(expense_id: int, db: Session = Depends(get_db)):
    try:
        ExpenseService(db).delete(expense_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return [_category_out(c) for c in CategoryService(db).list_all()]


@app.post("/api/categories", response_model=CategoryOut)
def add_category(payload: CategoryIn, db: Session = Depends(get_db)):
    try:
        category = CategoryService(db).add(payload.name)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _category_out(category)


@app.post("/api/categories/add-subcategory", response_model=CategoryOut)
def add_sub_category(payload: SubCategoryIn, db: Session = Depends(get_db)):
    try:
        category = CategoryService(db).add_sub_category(
            payload.category_name, payload.sub_category
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _category_out(category)


@app.delete("/api/categories/{name}", status_code=204)
def delete_category(name: str, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete_by_name(name)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
