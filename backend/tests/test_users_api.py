import unittest

from sqlalchemy import func, select

from backend.db import ADMIN_PROFILE_ID, MEMBER_PROFILE_ID, get_engine, transactions
from backend.tests.support import ApiTestCase

NEW_USER = {
    "first_name": "Ana",
    "last_name": "Perez",
    "email": "Ana@Example.com",
    "password": "Abcdefg1",
}


class RegistrationTests(ApiTestCase):
    def test_anonymous_registration_gets_member_profile(self) -> None:
        response = self.client.post("/users", json={**NEW_USER, "profile_id": ADMIN_PROFILE_ID})

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["profile_id"], MEMBER_PROFILE_ID)
        self.assertEqual(body["email"], "ana@example.com")
        self.assertNotIn("password_hash", body)
        self.assertNotIn("password", body)

    def test_admin_chooses_profile(self) -> None:
        response = self.client.post(
            "/users",
            json={**NEW_USER, "profile_id": ADMIN_PROFILE_ID},
            headers=self.auth(self.admin),
        )
        self.assertEqual(response.json()["profile_id"], ADMIN_PROFILE_ID)

    def test_member_cannot_grant_admin(self) -> None:
        response = self.client.post(
            "/users",
            json={**NEW_USER, "profile_id": ADMIN_PROFILE_ID},
            headers=self.auth(self.member),
        )
        self.assertEqual(response.json()["profile_id"], MEMBER_PROFILE_ID)

    def test_weak_password(self) -> None:
        response = self.client.post("/users", json={**NEW_USER, "password": "abcdefg1"})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json(),
            {
                "error": "Password must be at least 8 characters, "
                "contain uppercase, lowercase and a number"
            },
        )

    def test_invalid_email(self) -> None:
        response = self.client.post("/users", json={**NEW_USER, "email": "ana-at-example"})
        self.assertEqual(response.json(), {"error": "Invalid email address"})

    def test_duplicate_email(self) -> None:
        response = self.client.post("/users", json={**NEW_USER, "email": "MEMBER@example.com"})

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json(), {"error": "Email already exists"})

    def test_missing_field(self) -> None:
        payload = {key: value for key, value in NEW_USER.items() if key != "last_name"}

        response = self.client.post("/users", json=payload)

        self.assertEqual(response.json(), {"error": "Missing required field: last_name"})


class UserAccessTests(ApiTestCase):
    def test_listing_is_admin_only(self) -> None:
        forbidden = self.client.get("/users", headers=self.auth(self.member))
        allowed = self.client.get("/users", headers=self.auth(self.admin))

        self.assertEqual(forbidden.status_code, 403)
        self.assertEqual(forbidden.json(), {"error": "Forbidden"})
        self.assertEqual(
            [user["email"] for user in allowed.json()],
            ["admin@example.com", "member@example.com", "other@example.com"],
        )

    def test_me(self) -> None:
        response = self.client.get("/users/me", headers=self.auth(self.other))
        self.assertEqual(response.json()["id"], self.other.id)

    def test_self_or_admin(self) -> None:
        own = self.client.get(f"/users/{self.member.id}", headers=self.auth(self.member))
        other = self.client.get(f"/users/{self.other.id}", headers=self.auth(self.member))
        as_admin = self.client.get(f"/users/{self.other.id}", headers=self.auth(self.admin))

        self.assertEqual(own.status_code, 200)
        self.assertEqual(other.status_code, 403)
        self.assertEqual(as_admin.status_code, 200)

    def test_unknown_user_is_not_found_for_everyone(self) -> None:
        for identity in (self.member, self.admin):
            response = self.client.get("/users/999", headers=self.auth(identity))
            self.assertEqual(response.status_code, 404)
            self.assertEqual(response.json(), {"error": "User not found"})

    def test_invalid_user_id(self) -> None:
        response = self.client.get("/users/0", headers=self.auth(self.admin))
        self.assertEqual(response.json(), {"error": "Invalid user ID"})


class UserUpdateTests(ApiTestCase):
    def test_patch_own_name(self) -> None:
        response = self.client.patch(
            f"/users/{self.member.id}", json={"first_name": "Mia"}, headers=self.auth(self.member)
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["first_name"], "Mia")

    def test_member_cannot_change_profile(self) -> None:
        response = self.client.patch(
            f"/users/{self.member.id}",
            json={"profile_id": ADMIN_PROFILE_ID},
            headers=self.auth(self.member),
        )

        self.assertEqual(response.status_code, 403)

    def test_admin_changes_profile(self) -> None:
        response = self.client.patch(
            f"/users/{self.member.id}",
            json={"profile_id": ADMIN_PROFILE_ID},
            headers=self.auth(self.admin),
        )
        self.assertEqual(response.json()["profile_id"], ADMIN_PROFILE_ID)

    def test_unknown_fields_rejected(self) -> None:
        response = self.client.patch(
            f"/users/{self.member.id}", json={"nickname": "mi"}, headers=self.auth(self.member)
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Invalid fields: nickname"})

    def test_put_rejects_unknown_fields(self) -> None:
        body = {
            "first_name": "Mia",
            "last_name": "Ruiz",
            "email": "member@example.com",
            "password": "NewSecret9",
            "nickname": "mi",
        }

        response = self.client.put(
            f"/users/{self.member.id}", json=body, headers=self.auth(self.member)
        )

        self.assertEqual(response.json(), {"error": "Invalid fields: nickname"})

    def test_null_email_rejected(self) -> None:
        response = self.client.patch(
            f"/users/{self.member.id}", json={"email": None}, headers=self.auth(self.member)
        )
        self.assertEqual(response.json(), {"error": "Missing required field: email"})

    def test_email_taken_by_someone_else(self) -> None:
        response = self.client.patch(
            f"/users/{self.member.id}",
            json={"email": "other@example.com"},
            headers=self.auth(self.member),
        )
        self.assertEqual(response.status_code, 409)

    def test_put_requires_password(self) -> None:
        body = {"first_name": "Mia", "last_name": "Ruiz", "email": "member@example.com"}

        missing = self.client.put(
            f"/users/{self.member.id}", json=body, headers=self.auth(self.member)
        )
        replaced = self.client.put(
            f"/users/{self.member.id}",
            json={**body, "password": "NewSecret9"},
            headers=self.auth(self.member),
        )

        self.assertEqual(missing.json(), {"error": "Missing required field: password"})
        self.assertEqual(replaced.status_code, 200)
        login = self.client.post(
            "/auth/login", json={"email": "member@example.com", "password": "NewSecret9"}
        )
        self.assertEqual(login.status_code, 200)

    def test_delete_removes_owned_rows(self) -> None:
        self.add_transaction(self.member.id, "10.00")

        response = self.client.delete(f"/users/{self.member.id}", headers=self.auth(self.admin))

        self.assertEqual(response.json(), {"success": True, "id": self.member.id})
        with get_engine().begin() as conn:
            remaining = conn.execute(
                select(func.count()).select_from(transactions).where(
                    transactions.c.user_id == self.member.id
                )
            ).scalar_one()
        self.assertEqual(remaining, 0)


if __name__ == "__main__":
    unittest.main()
