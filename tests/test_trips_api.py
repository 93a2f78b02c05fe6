import importlib
import os
import sys
import unittest
from decimal import Decimal


class TripsApiTestCase(unittest.TestCase):
    def setUp(self):
        os.environ["DATABASE_URL"] = "sqlite:///:memory:"
        if "app" in sys.modules:
            self.app_module = importlib.reload(sys.modules["app"])
        else:
            self.app_module = importlib.import_module("app")

        self.app = self.app_module.create_app()
        self.app.testing = True
        self.ctx = self.app.app_context()
        self.ctx.push()
        self.app_module.db.create_all()

        from models import CrewMember, FishType, RoleEnum, User, Vessel

        db = self.app_module.db
        owner = User(name="Owner", email="owner@example.com", role=RoleEnum.owner)
        owner.set_password("secret")
        manager = User(name="Manager", email="manager@example.com", role=RoleEnum.manager)
        manager.set_password("secret")
        vessel = Vessel(name="Dhoni One", registration_no="V-001")
        ahmed = CrewMember(name="Ahmed")
        hassan = CrewMember(name="Hassan")
        proper_fish = FishType(name="Proper Fish", default_rate_per_kilo=Decimal("16.00"))
        db.session.add_all([owner, manager, vessel, ahmed, hassan, proper_fish])
        db.session.commit()

        self.vessel_id = vessel.id
        self.ahmed_id = ahmed.id
        self.hassan_id = hassan.id
        self.fish_type_id = proper_fish.id

        self.client = self.app.test_client()
        self.owner_headers = self._login("owner@example.com")
        self.manager_headers = self._login("manager@example.com")

    def tearDown(self):
        self.app_module.db.session.remove()
        self.app_module.db.drop_all()
        self.ctx.pop()
        os.environ.pop("DATABASE_URL", None)
        if "app" in sys.modules:
            del sys.modules["app"]

    def _login(self, email):
        response = self.client.post("/api/auth/login", json={"email": email, "password": "secret"})
        self.assertEqual(response.status_code, 200)
        return {"Authorization": f"Bearer {response.get_json()['access_token']}"}

    def _post(self, url, payload=None, headers=None):
        return self.client.post(url, json=payload or {}, headers=headers or self.owner_headers)

    def _create_trip(self):
        response = self._post(
            "/api/trips",
            {"vessel_id": self.vessel_id, "date": "2025-01-04", "day_of_week": "SAT"},
        )
        self.assertEqual(response.status_code, 201, response.get_json())
        return response.get_json()["trip"]["id"]

    def _assign_default_crew(self, trip_id):
        response = self._post(
            f"/api/trips/{trip_id}/assign-crew",
            {
                "assignments": [
                    {"crew_member_id": self.ahmed_id, "role": "BAITING"},
                    {"crew_member_id": self.hassan_id, "role": "DIVING"},
                ]
            },
        )
        self.assertEqual(response.status_code, 200, response.get_json())
        return response

    def _add_sale(self, trip_id, amount="500.00"):
        response = self._post(
            f"/api/trips/{trip_id}/add-bills",
            {
                "bills": [
                    {
                        "bill_type": "TODAY_SALES",
                        "bill_no": "B-1",
                        "amount": amount,
                        "bill_date": "2025-01-04",
                        "line_items": [
                            {
                                "fish_type_id": self.fish_type_id,
                                "quantity": "25",
                                "price_per_kilo": "20",
                            }
                        ],
                    }
                ]
            },
        )
        self.assertEqual(response.status_code, 201, response.get_json())
        return response

    def test_requires_authentication(self):
        response = self.client.get("/api/trips")
        self.assertEqual(response.status_code, 401)

    def test_full_trip_lifecycle(self):
        trip_id = self._create_trip()
        self._assign_default_crew(trip_id)
        bill_response = self._add_sale(trip_id)
        line = bill_response.get_json()["trip"]["bills"][0]["line_items"][0]
        self.assertEqual(line["line_total"], "500.00")

        expense_response = self._post(
            f"/api/trips/{trip_id}/add-expenses",
            {"expenses": [{"amount": "50.00", "description": "Fuel", "type": "fuel"}]},
        )
        self.assertEqual(expense_response.status_code, 201)
        expense = expense_response.get_json()["trip"]["expenses"][0]
        self.assertEqual(expense["status"], "PENDING")

        approve = self._post(
            f"/api/trips/{trip_id}/expenses/{expense['id']}/status", {"status": "APPROVED"}
        )
        self.assertEqual(approve.status_code, 200, approve.get_json())
        self.assertEqual(approve.get_json()["status"], "APPROVED")
        self.assertIsNotNone(approve.get_json()["approved_by_id"])

        finalize = self._post(f"/api/trips/{trip_id}/finalize")
        self.assertEqual(finalize.status_code, 200, finalize.get_json())
        self.assertEqual(finalize.get_json()["trip"]["status"], "ONGOING")

        close = self._post(f"/api/trips/{trip_id}/close")
        self.assertEqual(close.status_code, 200, close.get_json())
        data = close.get_json()
        self.assertEqual(data["trip"]["status"], "CLOSED")
        self.assertIsNotNone(data["trip"]["closed_at"])
        # 500 in sales plus 4 kg baseline for the baiting crew at 16.00/kg
        self.assertEqual(data["trip"]["total_sales"], "564.00")
        self.assertEqual(data["trip"]["balance"], "514.00")
        self.assertEqual(data["trip"]["net_total"], "462.60")
        self.assertEqual(data["trip"]["owner_share"], "154.20")
        self.assertEqual(data["trip"]["crew_share"], "308.40")

        payouts = {
            member["crew_member_name"]: member["total_amount"]
            for member in data["calculations"]["crew"]["member_payouts"]
        }
        self.assertEqual(payouts, {"Ahmed": "102.80", "Hassan": "205.60"})

        closed_again = self._post(f"/api/trips/{trip_id}/close")
        self.assertEqual(closed_again.status_code, 422)

        reopen = self._post(f"/api/trips/{trip_id}/reopen")
        self.assertEqual(reopen.status_code, 200)
        self.assertEqual(reopen.get_json()["trip"]["status"], "ONGOING")
        self.assertIsNone(reopen.get_json()["trip"]["closed_at"])

    def test_finalize_requires_crew(self):
        trip_id = self._create_trip()

        response = self._post(f"/api/trips/{trip_id}/finalize")

        self.assertEqual(response.status_code, 422)
        self.assertIn("crew", response.get_json()["msg"])

    def test_assign_crew_replaces_previous_assignments(self):
        trip_id = self._create_trip()
        self._assign_default_crew(trip_id)

        response = self._post(
            f"/api/trips/{trip_id}/assign-crew",
            {
                "assignments": [
                    {"crew_member_id": self.ahmed_id, "role": "SPECIAL", "helper_ratio": "1.5"},
                ]
            },
        )

        self.assertEqual(response.status_code, 200)
        assignments = response.get_json()["trip"]["assignments"]
        self.assertEqual(len(assignments), 1)
        self.assertEqual(assignments[0]["role"], "SPECIAL")
        self.assertEqual(assignments[0]["crew_member_name"], "Ahmed")
        self.assertEqual(
            Decimal(response.get_json()["calculations"]["crew"]["total_weight_units"]),
            Decimal("0.75"),
        )

    def test_assign_crew_rejects_duplicate_role(self):
        trip_id = self._create_trip()

        response = self._post(
            f"/api/trips/{trip_id}/assign-crew",
            {
                "assignments": [
                    {"crew_member_id": self.ahmed_id, "role": "BAITING"},
                    {"crew_member_id": self.ahmed_id, "role": "BAITING"},
                ]
            },
        )

        self.assertEqual(response.status_code, 400)

    def test_assign_crew_validates_payload(self):
        trip_id = self._create_trip()

        bad_role = self._post(
            f"/api/trips/{trip_id}/assign-crew",
            {"assignments": [{"crew_member_id": self.ahmed_id, "role": "CAPTAIN"}]},
        )
        self.assertEqual(bad_role.status_code, 422)
        self.assertIn("assignments", bad_role.get_json()["errors"])

        bad_ratio = self._post(
            f"/api/trips/{trip_id}/assign-crew",
            {
                "assignments": [
                    {"crew_member_id": self.ahmed_id, "role": "SPECIAL", "helper_ratio": "3.0"}
                ]
            },
        )
        self.assertEqual(bad_ratio.status_code, 422)

        unknown = self._post(
            f"/api/trips/{trip_id}/assign-crew",
            {"assignments": [{"crew_member_id": 9999, "role": "HELPER"}]},
        )
        self.assertEqual(unknown.status_code, 404)

    def test_purchase_amount_defaults_to_kilos_times_rate(self):
        trip_id = self._create_trip()

        response = self._post(
            f"/api/trips/{trip_id}/add-purchases",
            {
                "purchases": [
                    {"fish_type_id": self.fish_type_id, "kilos": "10", "rate_per_kilo": "12.50"}
                ]
            },
        )

        self.assertEqual(response.status_code, 201, response.get_json())
        purchase = response.get_json()["trip"]["fish_purchases"][0]
        self.assertEqual(purchase["amount"], "125.00")
        self.assertEqual(response.get_json()["calculations"]["revenue"]["purchase_total"], "125.00")

    def test_closed_trip_is_locked(self):
        trip_id = self._create_trip()
        self._assign_default_crew(trip_id)
        self.assertEqual(self._post(f"/api/trips/{trip_id}/close").status_code, 200)

        add_bill = self._post(
            f"/api/trips/{trip_id}/add-bills",
            {
                "bills": [
                    {
                        "bill_type": "OTHER",
                        "bill_no": "B-2",
                        "amount": "10",
                        "bill_date": "2025-01-04",
                    }
                ]
            },
        )
        self.assertEqual(add_bill.status_code, 422)

        delete = self.client.delete(f"/api/trips/{trip_id}", headers=self.owner_headers)
        self.assertEqual(delete.status_code, 422)

        manager_edit = self.client.put(
            f"/api/trips/{trip_id}", json={"notes": "late"}, headers=self.manager_headers
        )
        self.assertEqual(manager_edit.status_code, 403)

        owner_edit = self.client.put(
            f"/api/trips/{trip_id}", json={"notes": "late"}, headers=self.owner_headers
        )
        self.assertEqual(owner_edit.status_code, 200)
        self.assertEqual(owner_edit.get_json()["trip"]["notes"], "late")

    def test_owner_only_transitions(self):
        trip_id = self._create_trip()
        self._assign_default_crew(trip_id)

        for action in ("finalize", "close", "reopen"):
            response = self._post(f"/api/trips/{trip_id}/{action}", headers=self.manager_headers)
            self.assertEqual(response.status_code, 403, action)

        delete = self.client.delete(f"/api/trips/{trip_id}", headers=self.manager_headers)
        self.assertEqual(delete.status_code, 403)

    def test_reopen_requires_closed_trip(self):
        trip_id = self._create_trip()

        response = self._post(f"/api/trips/{trip_id}/reopen")

        self.assertEqual(response.status_code, 422)

    def test_approving_expense_recalculates_ongoing_trip(self):
        trip_id = self._create_trip()
        self._assign_default_crew(trip_id)
        self._add_sale(trip_id)
        self.assertEqual(self._post(f"/api/trips/{trip_id}/finalize").status_code, 200)

        added = self._post(
            f"/api/trips/{trip_id}/add-expenses",
            {"expenses": [{"amount": "64.00", "description": "Bait"}]},
        )
        expense_id = added.get_json()["trip"]["expenses"][0]["id"]
        self._post(f"/api/trips/{trip_id}/expenses/{expense_id}/status", {"status": "APPROVED"})

        detail = self.client.get(f"/api/trips/{trip_id}", headers=self.owner_headers).get_json()
        self.assertEqual(detail["trip"]["balance"], "500.00")
        self.assertEqual(detail["calculations"]["expenses"]["approved"], "64.00")

    def test_manager_cannot_review_expenses(self):
        trip_id = self._create_trip()
        added = self._post(
            f"/api/trips/{trip_id}/add-expenses",
            {"expenses": [{"amount": "5", "description": "Ice"}]},
        )
        expense_id = added.get_json()["trip"]["expenses"][0]["id"]

        response = self._post(
            f"/api/trips/{trip_id}/expenses/{expense_id}/status",
            {"status": "APPROVED"},
            headers=self.manager_headers,
        )

        self.assertEqual(response.status_code, 403)

    def test_list_filters_by_status(self):
        draft_id = self._create_trip()
        closed_id = self._create_trip()
        self._assign_default_crew(closed_id)
        self._post(f"/api/trips/{closed_id}/close")

        response = self.client.get(
            "/api/trips", query_string={"status": "CLOSED"}, headers=self.owner_headers
        )

        self.assertEqual(response.status_code, 200)
        ids = [trip["id"] for trip in response.get_json()]
        self.assertEqual(ids, [closed_id])
        self.assertNotIn(draft_id, ids)

    def test_delete_draft_trip(self):
        trip_id = self._create_trip()

        response = self.client.delete(f"/api/trips/{trip_id}", headers=self.owner_headers)

        self.assertEqual(response.status_code, 200)
        missing = self.client.get(f"/api/trips/{trip_id}", headers=self.owner_headers)
        self.assertEqual(missing.status_code, 404)


if __name__ == "__main__":
    unittest.main()
