import importlib
import os
import sys
import unittest
from datetime import date, datetime
from decimal import Decimal


class ReferenceDataApiTestCase(unittest.TestCase):
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

        from models import RoleEnum, User

        db = self.app_module.db
        owner = User(name="Owner", email="owner@example.com", role=RoleEnum.owner)
        owner.set_password("secret")
        manager = User(name="Manager", email="manager@example.com", role=RoleEnum.manager)
        manager.set_password("secret")
        db.session.add_all([owner, manager])
        db.session.commit()

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

    def _make_fish_type(self, name="Proper Fish", rate="16.00"):
        from models import FishType

        fish_type = FishType(name=name, default_rate_per_kilo=Decimal(rate))
        self.app_module.db.session.add(fish_type)
        self.app_module.db.session.commit()
        return fish_type

    def test_current_rate_prefers_latest_effective_rate(self):
        from models import FishTypeRate

        fish_type = self._make_fish_type()
        fish_type.rates.extend(
            [
                FishTypeRate(rate_per_kilo=Decimal("18.00"), rate_effective_from=date(2025, 1, 1)),
                FishTypeRate(rate_per_kilo=Decimal("19.50"), rate_effective_from=date(2025, 3, 1)),
                FishTypeRate(rate_per_kilo=Decimal("30.00"), rate_effective_from=date(2025, 2, 1), is_active=False),
                FishTypeRate(
                    rate_per_kilo=Decimal("12.00"),
                    rate_effective_from=date(2024, 6, 1),
                    rate_effective_to=date(2024, 6, 30),
                ),
            ]
        )
        self.app_module.db.session.commit()

        self.assertEqual(fish_type.current_rate(date(2025, 2, 15)), Decimal("18.00"))
        self.assertEqual(fish_type.current_rate(date(2025, 3, 2)), Decimal("19.50"))
        self.assertEqual(fish_type.current_rate(date(2024, 6, 15)), Decimal("12.00"))
        self.assertEqual(fish_type.current_rate(date(2024, 8, 1)), Decimal("16.00"))

    def test_resolve_proper_fish_rate_falls_back_when_missing(self):
        from settlement import resolve_proper_fish_rate

        self.assertEqual(resolve_proper_fish_rate(date(2025, 1, 4)), Decimal("16.00"))

        self.app.config["PROPER_FISH_FALLBACK_RATE"] = Decimal("14.00")
        with self.assertLogs(self.app.logger, level="WARNING"):
            self.assertEqual(resolve_proper_fish_rate(date(2025, 1, 4)), Decimal("14.00"))

        self._make_fish_type(rate="17.25")
        self.assertEqual(resolve_proper_fish_rate(date(2025, 1, 4)), Decimal("17.25"))

    def test_fish_type_endpoints(self):
        created = self.client.post(
            "/api/fish-types",
            json={"name": "Quality Fish", "default_rate_per_kilo": "17.00"},
            headers=self.owner_headers,
        )
        self.assertEqual(created.status_code, 201, created.get_json())
        fish_type_id = created.get_json()["id"]

        duplicate = self.client.post(
            "/api/fish-types",
            json={"name": "Quality Fish", "default_rate_per_kilo": "17.00"},
            headers=self.owner_headers,
        )
        self.assertEqual(duplicate.status_code, 422)

        rate = self.client.post(
            f"/api/fish-types/{fish_type_id}/rates",
            json={"rate_per_kilo": "21.00", "rate_effective_from": "2020-01-01"},
            headers=self.owner_headers,
        )
        self.assertEqual(rate.status_code, 201, rate.get_json())
        self.assertEqual(rate.get_json()["current_rate"], "21.00")

        backwards = self.client.post(
            f"/api/fish-types/{fish_type_id}/rates",
            json={
                "rate_per_kilo": "22.00",
                "rate_effective_from": "2025-02-01",
                "rate_effective_to": "2025-01-01",
            },
            headers=self.owner_headers,
        )
        self.assertEqual(backwards.status_code, 422)

        forbidden = self.client.post(
            "/api/fish-types",
            json={"name": "Other", "default_rate_per_kilo": "10.00"},
            headers=self.manager_headers,
        )
        self.assertEqual(forbidden.status_code, 403)

        listing = self.client.get("/api/fish-types", headers=self.manager_headers)
        self.assertEqual([row["name"] for row in listing.get_json()], ["Quality Fish"])

    def test_crew_member_endpoints(self):
        created = self.client.post(
            "/api/crew-members",
            json={"name": "Ahmed", "id_card_no": "A123456", "phone": "7771234"},
            headers=self.manager_headers,
        )
        self.assertEqual(created.status_code, 201, created.get_json())
        member_id = created.get_json()["id"]

        duplicate = self.client.post(
            "/api/crew-members",
            json={"name": "Other Ahmed", "id_card_no": "A123456"},
            headers=self.manager_headers,
        )
        self.assertEqual(duplicate.status_code, 422)

        missing_name = self.client.post(
            "/api/crew-members", json={"phone": "1"}, headers=self.manager_headers
        )
        self.assertEqual(missing_name.status_code, 422)
        self.assertIn("name", missing_name.get_json()["errors"])

        updated = self.client.put(
            f"/api/crew-members/{member_id}",
            json={"bank_name": "BML", "active": False},
            headers=self.manager_headers,
        )
        self.assertEqual(updated.status_code, 200, updated.get_json())
        self.assertEqual(updated.get_json()["bank_name"], "BML")
        self.assertFalse(updated.get_json()["active"])

        active_only = self.client.get(
            "/api/crew-members", query_string={"active": "true"}, headers=self.manager_headers
        )
        self.assertEqual(active_only.get_json(), [])

        missing = self.client.get("/api/crew-members/999", headers=self.manager_headers)
        self.assertEqual(missing.status_code, 404)

    def test_vessel_endpoints(self):
        forbidden = self.client.post(
            "/api/vessels", json={"name": "Dhoni"}, headers=self.manager_headers
        )
        self.assertEqual(forbidden.status_code, 403)

        created = self.client.post(
            "/api/vessels",
            json={"name": "Dhoni", "registration_no": "V-9", "capacity": 12},
            headers=self.owner_headers,
        )
        self.assertEqual(created.status_code, 201, created.get_json())

        duplicate = self.client.post(
            "/api/vessels",
            json={"name": "Dhoni Two", "registration_no": "V-9"},
            headers=self.owner_headers,
        )
        self.assertEqual(duplicate.status_code, 422)

        listing = self.client.get("/api/vessels", headers=self.manager_headers)
        self.assertEqual([row["name"] for row in listing.get_json()], ["Dhoni"])

    def test_vessel_detail_update_and_delete(self):
        created = self.client.post(
            "/api/vessels",
            json={"name": "Dhoni", "registration_no": "V-9"},
            headers=self.owner_headers,
        )
        vessel_id = created.get_json()["id"]
        self.client.post(
            "/api/vessels",
            json={"name": "Other", "registration_no": "V-10"},
            headers=self.owner_headers,
        )

        detail = self.client.get(f"/api/vessels/{vessel_id}", headers=self.manager_headers)
        self.assertEqual(detail.status_code, 200)
        self.assertEqual(detail.get_json()["registration_no"], "V-9")

        forbidden = self.client.put(
            f"/api/vessels/{vessel_id}", json={"is_active": False}, headers=self.manager_headers
        )
        self.assertEqual(forbidden.status_code, 403)

        clash = self.client.put(
            f"/api/vessels/{vessel_id}", json={"registration_no": "V-10"}, headers=self.owner_headers
        )
        self.assertEqual(clash.status_code, 422)

        updated = self.client.put(
            f"/api/vessels/{vessel_id}",
            json={"home_island": "Male", "is_active": False},
            headers=self.owner_headers,
        )
        self.assertEqual(updated.status_code, 200, updated.get_json())
        self.assertEqual(updated.get_json()["home_island"], "Male")
        self.assertFalse(updated.get_json()["is_active"])

        deleted = self.client.delete(f"/api/vessels/{vessel_id}", headers=self.owner_headers)
        self.assertEqual(deleted.status_code, 200, deleted.get_json())
        missing = self.client.get(f"/api/vessels/{vessel_id}", headers=self.owner_headers)
        self.assertEqual(missing.status_code, 404)

    def test_vessel_with_trips_cannot_be_deleted(self):
        from models import Trip, Vessel

        db = self.app_module.db
        vessel = Vessel(name="Dhoni")
        db.session.add(vessel)
        db.session.flush()
        db.session.add(Trip(vessel_id=vessel.id, date=date(2025, 1, 4)))
        db.session.commit()

        response = self.client.delete(f"/api/vessels/{vessel.id}", headers=self.owner_headers)

        self.assertEqual(response.status_code, 422)
        self.assertIn("trip history", response.get_json()["msg"])
        self.assertIsNotNone(db.session.get(Vessel, vessel.id))

    def test_next_week_start_without_sheets_suggests_saturday(self):
        from models import Vessel
        from settlement import next_week_start

        db = self.app_module.db
        vessel = Vessel(name="Dhoni")
        db.session.add(vessel)
        db.session.commit()

        # 2025-01-01 is a Wednesday, 2025-01-04 a Saturday.
        self.assertEqual(next_week_start(vessel, datetime(2025, 1, 1, 9)), date(2025, 1, 4))
        self.assertEqual(next_week_start(vessel, datetime(2025, 1, 4, 9)), date(2025, 1, 4))
        self.assertEqual(next_week_start(vessel, datetime(2025, 1, 4, 15)), date(2025, 1, 11))

        response = self.client.get(
            f"/api/vessels/{vessel.id}/next-week-start", headers=self.manager_headers
        )
        self.assertEqual(response.status_code, 200)
        suggested = date.fromisoformat(response.get_json()["suggested_date"])
        self.assertEqual(suggested.weekday(), 5)

    def test_fish_type_update_opens_new_rate_and_delete(self):
        created = self.client.post(
            "/api/fish-types",
            json={"name": "Quality Fish", "default_rate_per_kilo": "17.00"},
            headers=self.owner_headers,
        )
        fish_type_id = created.get_json()["id"]

        renamed = self.client.put(
            f"/api/fish-types/{fish_type_id}",
            json={"name": "Grade A"},
            headers=self.owner_headers,
        )
        self.assertEqual(renamed.status_code, 200, renamed.get_json())
        self.assertEqual(renamed.get_json()["rates"], [])

        repriced = self.client.put(
            f"/api/fish-types/{fish_type_id}",
            json={"default_rate_per_kilo": "19.50"},
            headers=self.owner_headers,
        )
        self.assertEqual(repriced.status_code, 200, repriced.get_json())
        body = repriced.get_json()
        self.assertEqual(body["default_rate_per_kilo"], "19.50")
        self.assertEqual([rate["rate_per_kilo"] for rate in body["rates"]], ["19.50"])
        self.assertEqual(body["current_rate"], "19.50")

        detail = self.client.get(f"/api/fish-types/{fish_type_id}", headers=self.manager_headers)
        self.assertEqual(detail.get_json()["name"], "Grade A")

        forbidden = self.client.delete(
            f"/api/fish-types/{fish_type_id}", headers=self.manager_headers
        )
        self.assertEqual(forbidden.status_code, 403)

        deleted = self.client.delete(f"/api/fish-types/{fish_type_id}", headers=self.owner_headers)
        self.assertEqual(deleted.status_code, 200, deleted.get_json())
        missing = self.client.get(f"/api/fish-types/{fish_type_id}", headers=self.owner_headers)
        self.assertEqual(missing.status_code, 404)

    def test_fish_type_in_use_cannot_be_deleted(self):
        from models import FishPurchase, Trip, Vessel

        db = self.app_module.db
        fish_type = self._make_fish_type()
        vessel = Vessel(name="Dhoni")
        db.session.add(vessel)
        db.session.flush()
        trip = Trip(vessel_id=vessel.id, date=date(2025, 1, 4))
        trip.fish_purchases.append(
            FishPurchase(
                fish_type_id=fish_type.id,
                kilos=Decimal("10"),
                rate_per_kilo=Decimal("16"),
                amount=Decimal("160"),
            )
        )
        db.session.add(trip)
        db.session.commit()

        response = self.client.delete(f"/api/fish-types/{fish_type.id}", headers=self.owner_headers)

        self.assertEqual(response.status_code, 422)
        self.assertIn("transaction history", response.get_json()["msg"])

    def test_owner_registers_manager(self):
        response = self.client.post(
            "/api/auth/register",
            json={
                "name": "New Manager",
                "email": "New.Manager@example.com",
                "role": "MANAGER",
                "password": "pw",
            },
            headers=self.owner_headers,
        )
        self.assertEqual(response.status_code, 201)

        denied = self.client.post(
            "/api/auth/register",
            json={"name": "X", "email": "x@example.com", "role": "OWNER", "password": "pw"},
            headers=self.manager_headers,
        )
        self.assertEqual(denied.status_code, 403)

        login = self.client.post(
            "/api/auth/login", json={"email": "new.manager@example.com", "password": "pw"}
        )
        self.assertEqual(login.status_code, 200)

    def test_health(self):
        response = self.client.get("/api/health")
        self.assertEqual(response.get_json(), {"ok": True, "currency": "MVR"})


if __name__ == "__main__":
    unittest.main()
