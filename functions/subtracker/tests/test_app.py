import json
import unittest
from datetime import date
from decimal import Decimal

from fastapi.testclient import TestClient

from subtracker.app import create_app
from subtracker.config import Settings
from subtracker.db import InMemoryDbClient, SubscriptionStatus
from subtracker.dependencies import get_today
from subtracker.push import RecordingPushSender


def _registration(endpoint: str) -> dict:
    return {
        "endpoint": endpoint,
        "keys": {
            "p256dh": "BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA",
            "auth": "tBHItJI5svbpez7KI4CCXg",
        },
        "expirationTime": None,
    }


class BackendApiTests(unittest.TestCase):
    def setUp(self):
        settings = Settings(
            _env_file=None,
            use_in_memory_backends=True,
            vapid_public_key="BPublicKeyForTests",
        )
        self.db = InMemoryDbClient()
        self.sender = RecordingPushSender()
        self.app = create_app(settings, db=self.db, push_sender=self.sender)
        self.app.dependency_overrides[get_today] = lambda: date(2024, 1, 1)
        self.client = TestClient(self.app)

    def _create(self, **body):
        payload = {"name": "Netflix", "cost": 199}
        payload.update(body)
        response = self.client.post("/api/subscriptions", json=payload)
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def _register(self, *endpoints):
        for endpoint in endpoints:
            response = self.client.post("/api/subscribe", json=_registration(endpoint))
            self.assertEqual(response.status_code, 201)

    def test_create_stamps_created_at_and_defaults_status(self):
        created = self._create(createdAt="1999-01-01T00:00:00Z", id="client-id")
        self.assertEqual(created["name"], "Netflix")
        self.assertEqual(created["cost"], 199)
        self.assertEqual(created["status"], "Due")
        self.assertNotEqual(created["id"], "client-id")
        self.assertFalse(created["createdAt"].startswith("1999"))

        stored = self.db.get_subscription(created["id"])
        self.assertEqual(stored.cost, Decimal("199"))

    def test_create_requires_name_and_cost(self):
        response = self.client.post("/api/subscriptions", json={"name": "Netflix"})
        self.assertEqual(response.status_code, 400)
        self.assertIn("cost", response.json()["error"])

        response = self.client.post("/api/subscriptions", json={"cost": 10})
        self.assertEqual(response.status_code, 400)

        response = self.client.post("/api/subscriptions", json={"name": "  ", "cost": 10})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.db.subscriptions, {})

    def test_create_notifies_every_registration(self):
        self._register("https://push.example/a", "https://push.example/b")
        self._create()
        endpoints = sorted(endpoint for endpoint, _ in self.sender.sent)
        self.assertEqual(endpoints, ["https://push.example/a", "https://push.example/b"])
        payload = json.loads(self.sender.sent[0][1])
        self.assertEqual(payload["title"], "Subscription Added 🆕")
        self.assertIn("R199.00", payload["body"])

    def test_list_is_sorted_by_due_date(self):
        self._create(name="Later", dueDate="2024-03-01")
        self._create(name="Undated")
        self._create(name="Sooner", dueDate="2024-01-15")
        response = self.client.get("/api/subscriptions")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            [item["name"] for item in response.json()], ["Sooner", "Later", "Undated"]
        )

    def test_get_unknown_subscription(self):
        response = self.client.get("/api/subscriptions/missing")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "Subscription not found"})

    def test_partial_update_merges_fields(self):
        created = self._create(dueDate="2024-02-01")
        response = self.client.put(
            f"/api/subscriptions/{created['id']}", json={"name": "Netflix Premium"}
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["name"], "Netflix Premium")
        self.assertEqual(body["cost"], 199)
        self.assertEqual(body["dueDate"], "2024-02-01")
        self.assertEqual(body["createdAt"], created["createdAt"])

    def test_cost_increase_sends_cost_updated_message(self):
        created = self._create()
        self._register("https://push.example/a")
        self.client.put(f"/api/subscriptions/{created['id']}", json={"cost": 249.5})
        self.assertEqual(len(self.sender.sent), 1)
        payload = json.loads(self.sender.sent[0][1])
        self.assertEqual(payload["title"], "Subscription Cost Updated 📈")
        self.assertIn("R249.50", payload["body"])

    def test_update_without_changes_does_not_notify(self):
        created = self._create()
        self._register("https://push.example/a")
        response = self.client.put(
            f"/api/subscriptions/{created['id']}", json={"cost": 199}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.sender.sent, [])

    def test_update_rejects_null_name(self):
        created = self._create()
        response = self.client.put(
            f"/api/subscriptions/{created['id']}", json={"name": None}
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.db.get_subscription(created["id"]).name, "Netflix")

    def test_update_unknown_subscription(self):
        response = self.client.put("/api/subscriptions/missing", json={"cost": 5})
        self.assertEqual(response.status_code, 404)

    def test_toggle_twice_restores_status(self):
        created = self._create()
        self._register("https://push.example/a", "https://push.example/b")

        first = self.client.put(f"/api/subscriptions/{created['id']}/toggle")
        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json()["status"], "Paid")
        self.assertEqual(len(self.sender.sent), 2)
        titles = {json.loads(payload)["title"] for _, payload in self.sender.sent}
        self.assertEqual(titles, {"Subscription Paid ✅"})

        second = self.client.put(f"/api/subscriptions/{created['id']}/toggle")
        self.assertEqual(second.json()["status"], "Due")
        self.assertEqual(len(self.sender.sent), 4)
        self.assertEqual(
            json.loads(self.sender.sent[-1][1])["title"], "Subscription Marked Due 🔁"
        )
        self.assertEqual(
            self.db.get_subscription(created["id"]).status, SubscriptionStatus.DUE
        )

    def test_toggle_unknown_subscription(self):
        response = self.client.put("/api/subscriptions/missing/toggle")
        self.assertEqual(response.status_code, 404)

    def test_delete_notifies_with_deleted_record(self):
        created = self._create(name="Spotify", cost=59.99)
        self._register("https://push.example/a")
        response = self.client.delete(f"/api/subscriptions/{created['id']}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"message": "Deleted"})
        self.assertIsNone(self.db.get_subscription(created["id"]))
        payload = json.loads(self.sender.sent[0][1])
        self.assertEqual(payload["title"], "Subscription Deleted 🗑️")
        self.assertIn("Spotify", payload["body"])
        self.assertIn("R59.99", payload["body"])

    def test_delete_unknown_subscription_is_404_without_mutation(self):
        created = self._create()
        self._register("https://push.example/a")
        response = self.client.delete("/api/subscriptions/missing")
        self.assertEqual(response.status_code, 404)
        self.assertIn("error", response.json())
        self.assertEqual(list(self.db.subscriptions), [created["id"]])
        self.assertEqual(self.sender.sent, [])

    def test_subscribe_is_an_upsert(self):
        self._register("https://push.example/a")
        body = _registration("https://push.example/a")
        body["keys"]["auth"] = "rotated"
        response = self.client.post("/api/subscribe", json=body)
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json(), {"message": "Subscribed"})

        registrations = self.db.list_push_registrations()
        self.assertEqual(len(registrations), 1)
        self.assertEqual(registrations[0].keys["auth"], "rotated")

    def test_subscribe_requires_keys(self):
        response = self.client.post(
            "/api/subscribe", json={"endpoint": "https://push.example/a"}
        )
        self.assertEqual(response.status_code, 400)

    def test_unsubscribe(self):
        self._register("https://push.example/a")
        response = self.client.request(
            "DELETE", "/api/subscribe", json={"endpoint": "https://push.example/a"}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.db.list_push_registrations(), [])

        response = self.client.request(
            "DELETE", "/api/subscribe", json={"endpoint": "https://push.example/a"}
        )
        self.assertEqual(response.status_code, 404)

    def test_gone_endpoint_is_pruned_but_request_succeeds(self):
        self._register("https://push.example/a", "https://push.example/gone")
        self.sender.gone_endpoints.add("https://push.example/gone")
        created = self._create()
        self.assertIsNotNone(self.db.get_subscription(created["id"]))
        self.assertEqual(
            [r.endpoint for r in self.db.list_push_registrations()],
            ["https://push.example/a"],
        )

    def test_check_due_lists_and_notifies_qualifying(self):
        overdue = self._create(name="Gym", cost=450, dueDate="2023-12-25")
        soon = self._create(name="Netflix", dueDate="2024-01-05")
        self._create(name="Later", dueDate="2024-01-10")
        paid = self._create(name="Paid", dueDate="2023-12-30")
        self.client.put(f"/api/subscriptions/{paid['id']}/toggle")
        self._register("https://push.example/a")

        response = self.client.get("/api/check-due")
        self.assertEqual(response.status_code, 200)
        items = {item["id"]: item for item in response.json()}
        self.assertEqual(set(items), {overdue["id"], soon["id"]})
        self.assertEqual(items[overdue["id"]]["dueState"], "Overdue")
        self.assertEqual(items[overdue["id"]]["diffDays"], -7)
        self.assertEqual(items[soon["id"]]["dueState"], "DueSoon")
        self.assertEqual(items[soon["id"]]["diffDays"], 4)

        bodies = sorted(json.loads(payload)["body"] for _, payload in self.sender.sent)
        self.assertEqual(len(bodies), 2)
        self.assertIn("is 7 days overdue", bodies[0])
        self.assertIn("is due in 4 days", bodies[1])

    def test_check_due_twice_on_same_day_notifies_once(self):
        self._create(dueDate="2024-01-03")
        self._register("https://push.example/a")

        self.client.get("/api/check-due")
        second = self.client.get("/api/check-due")
        self.assertEqual(len(second.json()), 1)
        self.assertEqual(len(self.sender.sent), 1)

        self.app.dependency_overrides[get_today] = lambda: date(2024, 1, 2)
        self.client.get("/api/check-due")
        self.assertEqual(len(self.sender.sent), 2)

    def test_vapid_public_key(self):
        response = self.client.get("/api/vapid-public-key")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"publicKey": "BPublicKeyForTests"})

    def test_vapid_public_key_not_configured(self):
        app = create_app(
            Settings(_env_file=None, use_in_memory_backends=True),
            db=InMemoryDbClient(),
        )
        response = TestClient(app).get("/api/vapid-public-key")
        self.assertEqual(response.status_code, 404)

    def test_unmatched_route(self):
        response = self.client.get("/api/nothing-here")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "Not found"})

        response = self.client.patch("/api/subscriptions")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "Not found"})

        response = self.client.delete("/api/subscriptions")
        self.assertEqual(response.status_code, 404)

    def test_cost_outside_stored_precision_is_rejected(self):
        response = self.client.post(
            "/api/subscriptions", json={"name": "Netflix", "cost": 1.999}
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("cost", response.json()["error"])

        response = self.client.post(
            "/api/subscriptions",
            json={"name": "Netflix", "cost": "1234567890123"},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.db.subscriptions, {})

        created = self._create()
        response = self.client.put(
            f"/api/subscriptions/{created['id']}", json={"cost": 10.005}
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.db.get_subscription(created["id"]).cost, Decimal("199"))

    def test_storage_failure_is_generic_500(self):
        from subtracker.errors import StorageError

        class BrokenDb(InMemoryDbClient):
            def list_subscriptions(self):
                raise StorageError("connection refused to db.internal:5432")

        app = create_app(
            Settings(_env_file=None, use_in_memory_backends=True), db=BrokenDb()
        )
        response = TestClient(app, raise_server_exceptions=False).get(
            "/api/subscriptions"
        )
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "Server error"})

    def test_unexpected_failure_is_generic_500(self):
        class BrokenDb(InMemoryDbClient):
            def list_subscriptions(self):
                raise RuntimeError("boom")

        app = create_app(
            Settings(_env_file=None, use_in_memory_backends=True), db=BrokenDb()
        )
        response = TestClient(app, raise_server_exceptions=False).get(
            "/api/subscriptions"
        )
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "Server error"})

    def test_health(self):
        self.assertEqual(self.client.get("/api/health").json(), {"status": "ok"})


if __name__ == "__main__":
    unittest.main()
