import unittest
from datetime import datetime
from decimal import Decimal

from backend import budgets_service
from backend.db import INCOME_TYPE_ID
from backend.tests.support import ApiTestCase


class BudgetReportTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.food = self.add_category("Food")
        self.travel = self.add_category("Travel")

    def test_remaining_budget_subtracts_month_expenses(self) -> None:
        budget_id = self.add_budget(self.member.id, self.food, "1000.00", 2025, 3)
        self.add_expense(self.member.id, "300.00", self.food, datetime(2025, 3, 4))
        # ignored: other month, income, other user, other category
        self.add_expense(self.member.id, "50.00", self.food, datetime(2025, 4, 4))
        self.add_transaction(
            self.member.id, "80.00", INCOME_TYPE_ID, self.food, created_at=datetime(2025, 3, 5)
        )
        self.add_expense(self.other.id, "70.00", self.food, datetime(2025, 3, 6))
        self.add_expense(self.member.id, "20.00", self.travel, datetime(2025, 3, 7))

        response = self.client.get("/budgets/report/remaining", headers=self.auth(self.member))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            [
                {
                    "budget_id": budget_id,
                    "category_id": self.food,
                    "category_name": "Food",
                    "budget_type": "monthly",
                    "year": 2025,
                    "month": 3,
                    "budget": 1000.0,
                    "spent": 300.0,
                    "remaining": 700.0,
                }
            ],
        )

    def test_budget_without_month_covers_the_year(self) -> None:
        self.add_budget(self.member.id, self.travel, "2000.00", 2025)
        self.add_expense(self.member.id, "400.00", self.travel, datetime(2025, 2, 1))
        self.add_expense(self.member.id, "600.00", self.travel, datetime(2025, 9, 1))
        self.add_expense(self.member.id, "999.00", self.travel, datetime(2024, 9, 1))

        result = budgets_service.get_remaining_budget(self.member.id)

        self.assertEqual(result.data[0]["spent"], Decimal("1000.00"))
        self.assertEqual(result.data[0]["remaining"], Decimal("1000.00"))

    def test_budget_without_expenses_is_untouched(self) -> None:
        self.add_budget(self.member.id, self.food, "150.00", 2025, 6)

        report = budgets_service.get_remaining_budget(self.member.id).data

        self.assertEqual(report[0]["spent"], Decimal("0"))
        self.assertEqual(report[0]["remaining"], Decimal("150.00"))

    def test_alerts_respect_threshold(self) -> None:
        hot = self.add_budget(self.member.id, self.food, "400.00", 2025, 3)
        self.add_budget(self.member.id, self.travel, "1000.00", 2025, 3)
        self.add_expense(self.member.id, "200.00", self.food, datetime(2025, 3, 4))
        self.add_expense(self.member.id, "100.00", self.travel, datetime(2025, 3, 4))

        response = self.client.get(
            "/budgets/report/alerts", params={"threshold": 25}, headers=self.auth(self.member)
        )

        body = response.json()
        self.assertEqual([row["budget_id"] for row in body], [hot])
        self.assertEqual(body[0]["percentage_spent"], 50.0)
        self.assertGreaterEqual(body[0]["percentage_spent"], 25)

    def test_alerts_default_threshold_is_eighty(self) -> None:
        self.add_budget(self.member.id, self.food, "100.00", 2025, 3)
        self.add_expense(self.member.id, "79.00", self.food, datetime(2025, 3, 4))

        self.assertEqual(budgets_service.get_budget_alerts(self.member.id).data, [])

        self.add_expense(self.member.id, "1.00", self.food, datetime(2025, 3, 5))
        alerts = budgets_service.get_budget_alerts(self.member.id).data
        self.assertEqual(alerts[0]["percentage_spent"], Decimal("80.00"))

    def test_invalid_threshold(self) -> None:
        response = self.client.get(
            "/budgets/report/alerts", params={"threshold": 150}, headers=self.auth(self.member)
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Threshold must be between 0 and 100"})

    def test_member_report_ignores_requested_user(self) -> None:
        self.add_budget(self.other.id, self.food, "100.00", 2025, 3)

        response = self.client.get(
            "/budgets/report/remaining",
            params={"user_id": self.other.id},
            headers=self.auth(self.member),
        )

        self.assertEqual(response.json(), [])


class BudgetCrudTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.food = self.add_category("Food")
        self.payload = {
            "category_id": self.food,
            "budget_type": "monthly",
            "year": 2025,
            "month": 3,
            "amount": 250,
        }

    def test_create_and_read(self) -> None:
        created = self.client.post("/budgets", json=self.payload, headers=self.auth(self.member))

        self.assertEqual(created.status_code, 201)
        budget = created.json()
        self.assertEqual(budget["user_id"], self.member.id)
        self.assertEqual(budget["category_name"], "Food")
        fetched = self.client.get(f"/budgets/{budget['id']}", headers=self.auth(self.member))
        self.assertEqual(fetched.json()["amount"], 250.0)

    def test_duplicate_budget_conflicts(self) -> None:
        self.client.post("/budgets", json=self.payload, headers=self.auth(self.member))

        response = self.client.post("/budgets", json=self.payload, headers=self.auth(self.member))

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json(), {"error": "Budget already exists"})

    def test_yearly_duplicates_conflict_too(self) -> None:
        yearly = {**self.payload, "budget_type": "yearly", "month": None}
        self.client.post("/budgets", json=yearly, headers=self.auth(self.member))

        response = self.client.post("/budgets", json=yearly, headers=self.auth(self.member))

        self.assertEqual(response.status_code, 409)

    def test_update_onto_an_existing_budget_conflicts(self) -> None:
        travel = self.add_category("Travel")
        self.add_budget(self.member.id, self.food, "500.00", 2025)
        moved = self.add_budget(self.member.id, travel, "300.00", 2025)

        response = self.client.patch(
            f"/budgets/{moved}", json={"category_id": self.food}, headers=self.auth(self.member)
        )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json(), {"error": "Budget already exists"})
        fetched = self.client.get(f"/budgets/{moved}", headers=self.auth(self.member))
        self.assertEqual(fetched.json()["category_id"], travel)

    def test_negative_amount(self) -> None:
        response = self.client.post(
            "/budgets", json={**self.payload, "amount": -5}, headers=self.auth(self.member)
        )
        self.assertEqual(response.json(), {"error": "Amount must be a positive number"})

    def test_missing_field(self) -> None:
        payload = {key: value for key, value in self.payload.items() if key != "budget_type"}

        response = self.client.post("/budgets", json=payload, headers=self.auth(self.member))

        self.assertEqual(response.json(), {"error": "Missing required field: budget_type"})

    def test_unknown_category(self) -> None:
        response = self.client.post(
            "/budgets", json={**self.payload, "category_id": 999}, headers=self.auth(self.member)
        )
        self.assertEqual(response.json(), {"error": "Category not found"})

    def test_ownership_on_single_budget(self) -> None:
        theirs = self.add_budget(self.other.id, self.food, "100.00", 2025, 3)

        self.assertEqual(
            self.client.get(f"/budgets/{theirs}", headers=self.auth(self.member)).status_code, 403
        )
        self.assertEqual(
            self.client.get(f"/budgets/{theirs}", headers=self.auth(self.admin)).status_code, 200
        )
        self.assertEqual(
            self.client.get("/budgets/4242", headers=self.auth(self.member)).json(),
            {"error": "Budget not found"},
        )

    def test_patch_and_delete(self) -> None:
        budget_id = self.add_budget(self.member.id, self.food, "100.00", 2025, 3)

        patched = self.client.patch(
            f"/budgets/{budget_id}",
            json={"amount": 175, "notes": "raised"},
            headers=self.auth(self.member),
        )
        self.assertEqual(patched.json()["amount"], 175.0)
        self.assertEqual(patched.json()["notes"], "raised")

        deleted = self.client.delete(f"/budgets/{budget_id}", headers=self.auth(self.member))
        self.assertEqual(deleted.json(), {"success": True, "id": budget_id})

    def test_list_filters(self) -> None:
        march = self.add_budget(self.member.id, self.food, "100.00", 2025, 3)
        self.add_budget(self.member.id, self.food, "100.00", 2025, 4)

        response = self.client.get(
            "/budgets", params={"year": 2025, "month": 3}, headers=self.auth(self.member)
        )

        self.assertEqual([row["id"] for row in response.json()], [march])

    def test_list_rejects_bad_month(self) -> None:
        response = self.client.get("/budgets", params={"month": 13}, headers=self.auth(self.member))
        self.assertEqual(response.json(), {"error": "Invalid month"})


if __name__ == "__main__":
    unittest.main()
