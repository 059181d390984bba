import os
import unittest
from datetime import datetime

from fastapi.testclient import TestClient
from sqlalchemy import insert

from backend.auth import Identity, hash_password, issue_token
from backend.config import get_settings
from backend.db import (
    ADMIN_PROFILE_ID,
    EXPENSE_TYPE_ID,
    MEMBER_PROFILE_ID,
    budgets,
    categories,
    configure_engine,
    get_engine,
    savings,
    transactions,
    users,
)
from backend.main import app

TEST_SECRET = "test-signing-secret"
PASSWORD = "Secret123"
PASSWORD_HASH = hash_password(PASSWORD)


class DatabaseTestCase(unittest.TestCase):
    """Fresh in-memory database with one administrator and two members."""

    def setUp(self) -> None:
        self._previous_secret = os.environ.get("JWT_SECRET")
        os.environ["JWT_SECRET"] = TEST_SECRET
        get_settings.cache_clear()
        configure_engine("sqlite://")

        self.admin = self.add_user("admin@example.com", ADMIN_PROFILE_ID)
        self.member = self.add_user("member@example.com", MEMBER_PROFILE_ID)
        self.other = self.add_user("other@example.com", MEMBER_PROFILE_ID)

    def tearDown(self) -> None:
        if self._previous_secret is None:
            os.environ.pop("JWT_SECRET", None)
        else:
            os.environ["JWT_SECRET"] = self._previous_secret
        get_settings.cache_clear()

    def add_user(self, email: str, profile_id: int, is_active: bool = True) -> Identity:
        with get_engine().begin() as conn:
            user_id = conn.execute(
                insert(users)
                .values(
                    first_name="Test",
                    last_name="User",
                    email=email,
                    password_hash=PASSWORD_HASH,
                    profile_id=profile_id,
                    is_active=is_active,
                )
                .returning(users.c.id)
            ).scalar_one()
        return Identity(id=user_id, email=email, profile_id=profile_id)

    def add_category(self, name: str) -> int:
        with get_engine().begin() as conn:
            return conn.execute(
                insert(categories).values(name=name).returning(categories.c.id)
            ).scalar_one()

    def add_transaction(
        self,
        user_id: int,
        amount: str,
        type_id: int = EXPENSE_TYPE_ID,
        category_id: int | None = None,
        created_at: datetime | None = None,
    ) -> int:
        values = {
            "user_id": user_id,
            "type_id": type_id,
            "category_id": category_id,
            "amount": amount,
        }
        if created_at is not None:
            values["created_at"] = created_at
        with get_engine().begin() as conn:
            return conn.execute(
                insert(transactions).values(**values).returning(transactions.c.id)
            ).scalar_one()

    def add_expense(
        self, user_id: int, amount: str, category_id: int, created_at: datetime
    ) -> int:
        return self.add_transaction(
            user_id, amount, category_id=category_id, created_at=created_at
        )

    def add_budget(
        self, user_id: int, category_id: int, amount: str, year: int, month: int | None = None
    ) -> int:
        with get_engine().begin() as conn:
            return conn.execute(
                insert(budgets)
                .values(
                    user_id=user_id,
                    category_id=category_id,
                    budget_type="monthly" if month else "yearly",
                    year=year,
                    month=month,
                    amount=amount,
                )
                .returning(budgets.c.id)
            ).scalar_one()

    def add_saving(self, user_id: int, amount: str, **extra) -> int:
        with get_engine().begin() as conn:
            return conn.execute(
                insert(savings)
                .values(user_id=user_id, type_id=1, name="Holidays", amount=amount, **extra)
                .returning(savings.c.id)
            ).scalar_one()


class ApiTestCase(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.client = TestClient(app)

    def auth(self, identity: Identity) -> dict:
        return {"Authorization": f"Bearer {issue_token(identity)}"}
