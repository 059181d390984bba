import logging

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend import (
    auth_service,
    budgets_service,
    categories_service,
    profiles_service,
    savings_service,
    transactions_service,
    users_service,
)
from backend.access_control import ForcedFilter, resolve_owner
from backend.auth import Identity
from backend.config import configure_logging, get_settings
from backend.db import get_engine
from backend.dependencies import (
    OwnedRow,
    admin_only,
    authenticate,
    authenticate_optional,
    forced_filter,
    owned_resource,
    self_or_admin,
    unwrap,
)
from backend.schemas import (
    BalanceResponse,
    BudgetAlertResponse,
    BudgetPayload,
    BudgetResponse,
    CategoryTotalResponse,
    CredentialsPayload,
    DashboardResponse,
    DeletedResponse,
    ForecastResponse,
    MonthlyTotalResponse,
    NamedResponse,
    NamePayload,
    PeriodBalanceResponse,
    RemainingBudgetResponse,
    SavingPayload,
    SavingProgressResponse,
    SavingResponse,
    TokenResponse,
    TransactionPayload,
    TransactionResponse,
    UserCreatePayload,
    UserResponse,
    UserUpdatePayload,
)
from backend.validation import validate_id

logger = logging.getLogger(__name__)

app = FastAPI(title="MoneyShield API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_settings().frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

owned_transaction = owned_resource(
    transactions_service.get_transaction, "transaction", "transaction_id"
)
owned_budget = owned_resource(budgets_service.get_budget, "budget", "budget_id")
owned_saving = owned_resource(savings_service.get_saving, "saving", "saving_id")
self_or_admin_user = self_or_admin(users_service.get_user)


@app.on_event("startup")
def startup() -> None:
    configure_logging()
    get_engine()
    logger.info("Database ready")


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0]
    field = ".".join(
        str(part) for part in first["loc"] if part not in ("body", "query", "path", "header")
    )
    message = f"{field}: {first['msg']}" if field else first["msg"]
    return JSONResponse(status_code=400, content={"error": message})


def deleted(record_id: int) -> dict:
    return {"success": True, "id": record_id}


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/auth/login", response_model=TokenResponse)
def login(payload: CredentialsPayload) -> dict:
    return {"token": unwrap(auth_service.login(payload.email, payload.password))}


# Users


@app.get("/users", response_model=list[UserResponse])
def list_users(identity: Identity = Depends(admin_only)) -> list[dict]:
    return unwrap(users_service.list_users())


@app.get("/users/me", response_model=UserResponse)
def get_current_user(identity: Identity = Depends(authenticate)) -> dict:
    return unwrap(users_service.get_user(identity.id))


@app.get("/users/{user_id}", response_model=UserResponse)
def get_user(owned: OwnedRow = Depends(self_or_admin_user)) -> dict:
    return owned.row


@app.post("/users", status_code=201, response_model=UserResponse)
def create_user(
    payload: UserCreatePayload, caller: Identity | None = Depends(authenticate_optional)
) -> dict:
    return unwrap(users_service.create_user(payload.model_dump(exclude_none=True), caller))


@app.put("/users/{user_id}", response_model=UserResponse)
def edit_user(payload: UserUpdatePayload, owned: OwnedRow = Depends(self_or_admin_user)) -> dict:
    return unwrap(
        users_service.edit_user(owned.id, payload.model_dump(exclude_unset=True), owned.identity)
    )


@app.patch("/users/{user_id}", response_model=UserResponse)
def patch_user(payload: UserUpdatePayload, owned: OwnedRow = Depends(self_or_admin_user)) -> dict:
    return unwrap(
        users_service.patch_user(owned.id, payload.model_dump(exclude_unset=True), owned.identity)
    )


@app.delete("/users/{user_id}", response_model=DeletedResponse)
def delete_user(owned: OwnedRow = Depends(self_or_admin_user)) -> dict:
    unwrap(users_service.delete_user(owned.id))
    return deleted(owned.id)


# Profiles


@app.get("/profiles", response_model=list[NamedResponse])
def list_profiles(identity: Identity = Depends(authenticate)) -> list[dict]:
    return unwrap(profiles_service.list_profiles())


@app.get("/profiles/{profile_id}", response_model=NamedResponse)
def get_profile(profile_id: str, identity: Identity = Depends(authenticate)) -> dict:
    return unwrap(profiles_service.get_profile(unwrap(validate_id(profile_id, "profile ID"))))


@app.post("/profiles", status_code=201, response_model=NamedResponse)
def create_profile(payload: NamePayload, identity: Identity = Depends(admin_only)) -> dict:
    return unwrap(profiles_service.create_profile(payload.name))


@app.put("/profiles/{profile_id}", response_model=NamedResponse)
def rename_profile(
    profile_id: str, payload: NamePayload, identity: Identity = Depends(admin_only)
) -> dict:
    record_id = unwrap(validate_id(profile_id, "profile ID"))
    return unwrap(profiles_service.rename_profile(record_id, payload.name))


@app.delete("/profiles/{profile_id}", response_model=DeletedResponse)
def delete_profile(profile_id: str, identity: Identity = Depends(admin_only)) -> dict:
    record_id = unwrap(validate_id(profile_id, "profile ID"))
    unwrap(profiles_service.delete_profile(record_id))
    return deleted(record_id)


# Categories


@app.get("/categories", response_model=list[NamedResponse])
def list_categories() -> list[dict]:
    return unwrap(categories_service.list_categories())


@app.get("/categories/{category_id}", response_model=NamedResponse)
def get_category(category_id: str) -> dict:
    return unwrap(
        categories_service.get_category(unwrap(validate_id(category_id, "category ID")))
    )


@app.post("/categories", status_code=201, response_model=NamedResponse)
def create_category(payload: NamePayload, identity: Identity = Depends(admin_only)) -> dict:
    return unwrap(categories_service.create_category(payload.name))


@app.put("/categories/{category_id}", response_model=NamedResponse)
def update_category(
    category_id: str, payload: NamePayload, identity: Identity = Depends(admin_only)
) -> dict:
    record_id = unwrap(validate_id(category_id, "category ID"))
    return unwrap(categories_service.update_category(record_id, payload.name))


@app.delete("/categories/{category_id}", response_model=DeletedResponse)
def delete_category(category_id: str, identity: Identity = Depends(admin_only)) -> dict:
    record_id = unwrap(validate_id(category_id, "category ID"))
    unwrap(categories_service.delete_category(record_id))
    return deleted(record_id)


# Transactions


@app.get("/transactions", response_model=list[TransactionResponse])
def list_transactions(
    forced: ForcedFilter = Depends(forced_filter),
    type_id: str | None = None,
    date_from: str | None = Query(None, alias="from"),
    date_to: str | None = Query(None, alias="to"),
) -> list[dict]:
    return unwrap(transactions_service.list_transactions(forced, type_id, date_from, date_to))


@app.get("/transactions/report/balance", response_model=BalanceResponse)
def transactions_balance(forced: ForcedFilter = Depends(forced_filter)) -> dict:
    return unwrap(transactions_service.get_balance(forced.user_id))


@app.get(
    "/transactions/report/expenses-by-category", response_model=list[CategoryTotalResponse]
)
def transactions_expenses_by_category(forced: ForcedFilter = Depends(forced_filter)) -> list[dict]:
    return unwrap(transactions_service.get_expenses_by_category(forced.user_id))


@app.get("/transactions/report/monthly-expenses", response_model=list[MonthlyTotalResponse])
def transactions_monthly_expenses(forced: ForcedFilter = Depends(forced_filter)) -> list[dict]:
    return unwrap(transactions_service.get_monthly_expenses(forced.user_id))


@app.get("/transactions/report/periodic-balance", response_model=list[PeriodBalanceResponse])
def transactions_periodic_balance(
    forced: ForcedFilter = Depends(forced_filter), period: str = "week"
) -> list[dict]:
    return unwrap(transactions_service.get_periodic_balance(forced.user_id, period))


@app.get("/transactions/report/top-categories", response_model=list[CategoryTotalResponse])
def transactions_top_categories(
    forced: ForcedFilter = Depends(forced_filter),
    year: str | None = None,
    month: str | None = None,
    limit: str | None = None,
) -> list[dict]:
    return unwrap(transactions_service.get_top_categories(forced.user_id, year, month, limit))


@app.get("/transactions/report/forecast", response_model=ForecastResponse)
def transactions_forecast(forced: ForcedFilter = Depends(forced_filter)) -> dict:
    return unwrap(transactions_service.get_monthly_forecast(forced.user_id))


@app.get("/transactions/report/dashboard", response_model=DashboardResponse)
def transactions_dashboard(
    forced: ForcedFilter = Depends(forced_filter),
    year: str | None = None,
    month: str | None = None,
) -> dict:
    return unwrap(transactions_service.get_dashboard_summary(forced.user_id, year, month))


@app.get("/transactions/{transaction_id}", response_model=TransactionResponse)
def get_transaction(owned: OwnedRow = Depends(owned_transaction)) -> dict:
    return owned.row


@app.post("/transactions", status_code=201, response_model=TransactionResponse)
def create_transaction(
    payload: TransactionPayload, identity: Identity = Depends(authenticate)
) -> dict:
    data = payload.model_dump(exclude_none=True)
    data["user_id"] = resolve_owner(identity, payload.user_id)
    return unwrap(transactions_service.create_transaction(data))


@app.put("/transactions/{transaction_id}", response_model=TransactionResponse)
def replace_transaction(
    payload: TransactionPayload, owned: OwnedRow = Depends(owned_transaction)
) -> dict:
    fields = payload.model_dump(exclude_unset=True)
    return unwrap(transactions_service.update_transaction(owned.id, fields, owned.identity))


@app.patch("/transactions/{transaction_id}", response_model=TransactionResponse)
def patch_transaction(
    payload: TransactionPayload, owned: OwnedRow = Depends(owned_transaction)
) -> dict:
    fields = payload.model_dump(exclude_unset=True)
    return unwrap(transactions_service.update_transaction(owned.id, fields, owned.identity))


@app.delete("/transactions/{transaction_id}", response_model=DeletedResponse)
def delete_transaction(owned: OwnedRow = Depends(owned_transaction)) -> dict:
    unwrap(transactions_service.delete_transaction(owned.id))
    return deleted(owned.id)


# Budgets


@app.get("/budgets", response_model=list[BudgetResponse])
def list_budgets(
    forced: ForcedFilter = Depends(forced_filter),
    year: str | None = None,
    month: str | None = None,
    category_id: str | None = None,
) -> list[dict]:
    return unwrap(budgets_service.list_budgets(forced, year, month, category_id))


@app.get("/budgets/report/remaining", response_model=list[RemainingBudgetResponse])
def budgets_remaining(forced: ForcedFilter = Depends(forced_filter)) -> list[dict]:
    return unwrap(budgets_service.get_remaining_budget(forced.user_id))


@app.get("/budgets/report/alerts", response_model=list[BudgetAlertResponse])
def budgets_alerts(
    forced: ForcedFilter = Depends(forced_filter), threshold: str | None = None
) -> list[dict]:
    return unwrap(budgets_service.get_budget_alerts(forced.user_id, threshold))


@app.get("/budgets/{budget_id}", response_model=BudgetResponse)
def get_budget(owned: OwnedRow = Depends(owned_budget)) -> dict:
    return owned.row


@app.post("/budgets", status_code=201, response_model=BudgetResponse)
def create_budget(payload: BudgetPayload, identity: Identity = Depends(authenticate)) -> dict:
    data = payload.model_dump()
    data["user_id"] = resolve_owner(identity, payload.user_id)
    return unwrap(budgets_service.create_budget(data))


@app.put("/budgets/{budget_id}", response_model=BudgetResponse)
def replace_budget(payload: BudgetPayload, owned: OwnedRow = Depends(owned_budget)) -> dict:
    fields = payload.model_dump(exclude_unset=True)
    return unwrap(budgets_service.update_budget(owned.id, fields, owned.identity))


@app.patch("/budgets/{budget_id}", response_model=BudgetResponse)
def patch_budget(payload: BudgetPayload, owned: OwnedRow = Depends(owned_budget)) -> dict:
    fields = payload.model_dump(exclude_unset=True)
    return unwrap(budgets_service.update_budget(owned.id, fields, owned.identity))


@app.delete("/budgets/{budget_id}", response_model=DeletedResponse)
def delete_budget(owned: OwnedRow = Depends(owned_budget)) -> dict:
    unwrap(budgets_service.delete_budget(owned.id))
    return deleted(owned.id)


# Savings


@app.get("/savings", response_model=list[SavingResponse])
def list_savings(forced: ForcedFilter = Depends(forced_filter)) -> list[dict]:
    return unwrap(savings_service.list_savings(forced))


@app.get("/savings/report/progress", response_model=list[SavingProgressResponse])
def savings_progress(forced: ForcedFilter = Depends(forced_filter)) -> list[dict]:
    return unwrap(savings_service.get_savings_progress(forced.user_id))


@app.get("/savings/{saving_id}", response_model=SavingResponse)
def get_saving(owned: OwnedRow = Depends(owned_saving)) -> dict:
    return owned.row


@app.post("/savings", status_code=201, response_model=SavingResponse)
def create_saving(payload: SavingPayload, identity: Identity = Depends(authenticate)) -> dict:
    data = payload.model_dump(exclude_none=True)
    data["user_id"] = resolve_owner(identity, payload.user_id)
    return unwrap(savings_service.create_saving(data))


@app.put("/savings/{saving_id}", response_model=SavingResponse)
def replace_saving(payload: SavingPayload, owned: OwnedRow = Depends(owned_saving)) -> dict:
    fields = payload.model_dump(exclude_unset=True)
    return unwrap(savings_service.update_saving(owned.id, fields, owned.identity))


@app.patch("/savings/{saving_id}", response_model=SavingResponse)
def patch_saving(payload: SavingPayload, owned: OwnedRow = Depends(owned_saving)) -> dict:
    fields = payload.model_dump(exclude_unset=True)
    return unwrap(savings_service.patch_saving(owned.id, fields, owned.identity))


@app.delete("/savings/{saving_id}", response_model=DeletedResponse)
def delete_saving(owned: OwnedRow = Depends(owned_saving)) -> dict:
    unwrap(savings_service.delete_saving(owned.id))
    return deleted(owned.id)
