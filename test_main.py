import os
import unittest
from datetime import date, datetime, timedelta
from unittest import mock

from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from main import app
from auth import SESSION_COOKIE, issue_session
from config import get_settings
from database import Base, build_engine, get_db
from models import Budget, Expense

engine = build_engine("sqlite://")
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        Base.metadata.create_all(bind=engine)
        self.db = TestingSessionLocal()
        self.client = TestClient(app)

    def tearDown(self):
        self.db.close()
        Base.metadata.drop_all(bind=engine)

    def sign_up(self, email="test@example.com", password="testpassword"):
        response = self.client.post("/auth/signup", json={"email": email, "password": password})
        self.assertEqual(response.status_code, 201)
        return response.json()["data"]


class TestAuth(ApiTestCase):
    def test_signup_sets_session_cookie(self):
        response = self.client.post("/auth/signup", json={"email": "new@example.com", "password": "pw"})
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["data"]["email"], "new@example.com")

        cookie = response.headers["set-cookie"]
        self.assertIn(f"{SESSION_COOKIE}=", cookie)
        self.assertIn("HttpOnly", cookie)
        self.assertIn("Max-Age=604800", cookie)
        self.assertIn("Path=/", cookie)
        self.assertIn("samesite=lax", cookie.lower())

    def cookie_attributes(self, response):
        return [part.strip().lower() for part in response.headers["set-cookie"].split(";")[1:]]

    def test_session_cookie_is_not_secure_in_development(self):
        response = self.client.post("/auth/signup", json={"email": "dev@example.com", "password": "pw"})
        self.assertNotIn("secure", self.cookie_attributes(response))

    def test_session_cookie_is_secure_in_production(self):
        with mock.patch.dict(os.environ, {"APP_ENV": "production"}):
            get_settings.cache_clear()
            self.addCleanup(get_settings.cache_clear)
            response = self.client.post("/auth/signup", json={"email": "prod@example.com", "password": "pw"})
        self.assertEqual(response.status_code, 201)
        attributes = self.cookie_attributes(response)
        self.assertIn("secure", attributes)
        self.assertIn("httponly", attributes)

    def test_signup_duplicate_email(self):
        self.sign_up()
        response = self.client.post("/auth/signup", json={"email": "TEST@example.com", "password": "x"})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json(), {"success": False, "error": "Email already in use"})

    def test_signup_requires_fields(self):
        response = self.client.post("/auth/signup", json={"email": "a@b.co"})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()["success"])
        self.assertIn("password", response.json()["error"])

    def test_signin_is_case_insensitive(self):
        self.sign_up(email="User@Example.com")
        client = TestClient(app)
        response = client.post("/auth/signin", json={"email": "user@example.com", "password": "testpassword"})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["success"])
        self.assertIsNotNone(client.cookies.get(SESSION_COOKIE))

    def test_signin_wrong_password(self):
        self.sign_up()
        response = TestClient(app).post("/auth/signin", json={"email": "test@example.com", "password": "nope"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"], "Invalid credentials")

    def test_profile_and_signout(self):
        user = self.sign_up()
        response = self.client.get("/profile")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["id"], user["id"])
        self.assertIn("createdAt", response.json()["data"])

        token = self.client.cookies.get(SESSION_COOKIE)
        response = self.client.post("/auth/signout")
        self.assertEqual(response.status_code, 200)
        self.assertIn("Max-Age=0", response.headers["set-cookie"])
        self.assertEqual(TestClient(app).get("/profile").status_code, 401)

        # signing out only drops the cookie; the token itself is not revoked
        replay = TestClient(app, cookies={SESSION_COOKIE: token})
        self.assertEqual(replay.get("/profile").status_code, 200)

    def test_profile_rejects_expired_token(self):
        user = self.sign_up()
        stale = issue_session(user["id"], user["email"], issued_at=datetime.now() - timedelta(days=8))
        client = TestClient(app, cookies={SESSION_COOKIE: stale})
        response = client.get("/profile")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {"success": False, "error": "Unauthorized"})


class TestLedger(ApiTestCase):
    def test_add_and_list_expenses(self):
        for title, day in [("older", "2024-05-01"), ("newer", "2024-05-09")]:
            response = self.client.post("/expenses", json={
                "title": title, "amount": 25, "category": "Transport", "date": day,
            })
            self.assertEqual(response.status_code, 201)
            self.assertEqual(response.json()["message"], "Expense added successfully!")

        response = self.client.get("/expenses")
        self.assertEqual(response.status_code, 200)
        titles = [e["title"] for e in response.json()["data"]]
        self.assertEqual(titles, ["newer", "older"])
        self.assertIn("createdAt", response.json()["data"][0])

    def test_expense_defaults_to_other_category(self):
        response = self.client.post("/expenses", json={"title": "Misc", "amount": 3, "date": "2024-05-01"})
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["data"]["category"], "Other")

    def test_invalid_category_is_rejected(self):
        response = self.client.post("/expenses", json={
            "title": "Lunch", "amount": 10, "category": "Invalid", "date": "2024-05-01",
        })
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()["success"])
        self.assertIn("Invalid category", response.json()["error"])
        self.assertEqual(self.db.query(Expense).count(), 0)

    def test_negative_amount_and_long_title_are_rejected(self):
        response = self.client.post("/expenses", json={"title": "Lunch", "amount": -1, "date": "2024-05-01"})
        self.assertEqual(response.status_code, 400)
        response = self.client.post("/expenses", json={"title": "x" * 101, "amount": 1, "date": "2024-05-01"})
        self.assertEqual(response.status_code, 400)
        response = self.client.post("/expenses", json={"title": "   ", "amount": 1, "date": "2024-05-01"})
        self.assertEqual(response.status_code, 400)

    def test_add_and_list_income(self):
        response = self.client.post("/income", json={
            "title": "Paycheck", "amount": 3000, "category": "Salary", "date": "2024-05-01",
        })
        self.assertEqual(response.status_code, 201)
        response = self.client.post("/income", json={
            "title": "Groceries", "amount": 30, "category": "Food", "date": "2024-05-01",
        })
        self.assertEqual(response.status_code, 400)

        data = self.client.get("/income").json()["data"]
        self.assertEqual([i["title"] for i in data], ["Paycheck"])


class TestBudgets(ApiTestCase):
    def test_upsert_requires_session(self):
        response = self.client.post("/budgets", json={"month": "2024-05", "amount": 500})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"], "Unauthorized")

    def test_upsert_and_list(self):
        user = self.sign_up()
        self.client.post("/budgets", json={"month": "2024-04", "amount": 400})
        self.client.post("/budgets", json={"month": "2024-05", "amount": 500})
        response = self.client.post("/budgets", json={"month": "2024-05", "amount": 650})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["amount"], 650)

        data = self.client.get("/budgets").json()["data"]
        self.assertEqual([(b["month"], b["amount"]) for b in data], [("2024-05", 650), ("2024-04", 400)])
        self.assertEqual(self.db.query(Budget).filter(Budget.user_id == user["id"]).count(), 2)

    def test_invalid_month(self):
        self.sign_up()
        response = self.client.post("/budgets", json={"month": "05-2024", "amount": 500})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Invalid month or amount")

    def test_out_of_range_amount_is_a_validation_error(self):
        self.sign_up()
        response = self.client.post(
            "/budgets",
            content='{"month": "2024-05", "amount": ' + "9" * 400 + "}",
            headers={"content-type": "application/json"},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"success": False, "error": "Invalid month or amount"})

    def test_impossible_month_is_rejected(self):
        self.sign_up()
        response = self.client.post("/budgets", json={"month": "2024-13", "amount": 500})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.db.query(Budget).count(), 0)

    def test_list_without_session_is_empty(self):
        self.sign_up()
        self.client.post("/budgets", json={"month": "2024-05", "amount": 500})
        response = TestClient(app).get("/budgets")
        self.assertEqual(response.json(), {"success": True, "data": []})


class TestAggregates(ApiTestCase):
    def add_expense(self, amount, day):
        response = self.client.post("/expenses", json={"title": "e", "amount": amount, "date": day})
        self.assertEqual(response.status_code, 201)

    def test_monthly_summary(self):
        self.sign_up()
        self.add_expense(10, "2024-05-01")
        self.add_expense(99.999, "2024-05-20")
        self.add_expense(50, "2024-06-01")
        self.client.post("/budgets", json={"month": "2024-05", "amount": 300})

        response = self.client.get("/monthly-summary", params={"month": "2024-05"})
        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["month"], "2024-05")
        self.assertAlmostEqual(data["totalExpenses"], 109.999)
        self.assertEqual(data["budgetAmount"], 300)

    def test_monthly_summary_anonymous_is_zeroed(self):
        self.add_expense(10, "2024-05-01")
        response = self.client.get("/monthly-summary", params={"month": "2024-05"})
        self.assertEqual(response.json()["data"], {"month": "2024-05", "totalExpenses": 0, "budgetAmount": 0})

    def test_monthly_summary_bad_month(self):
        for params in ({"month": "2024-5"}, {}):
            response = self.client.get("/monthly-summary", params=params)
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.json()["error"], "Invalid month parameter")

    def test_predictions_without_data(self):
        data = self.client.get("/predictions").json()["data"]
        self.assertEqual(data["averageExpense"], 0)
        self.assertEqual(data["predictedNextExpense"], 0)
        self.assertEqual(data["trend"], "stable")
        self.assertEqual(data["recentExpenses"], 0)
        self.assertEqual(data["message"], "Not enough data for predictions")

    def test_predictions(self):
        # newest first this reads [100, 100, 200, 200]
        for amount, day in [(200, "2024-05-01"), (200, "2024-05-02"), (100, "2024-05-03"), (100, "2024-05-04")]:
            self.add_expense(amount, day)
        data = self.client.get("/predictions").json()["data"]
        self.assertEqual(data["trend"], "increasing")
        self.assertEqual(data["averageExpense"], 150)
        self.assertEqual(data["predictedNextExpense"], 165)
        self.assertEqual(data["recentExpenses"], 4)

    def test_dashboard(self):
        today = date.today().isoformat()
        self.add_expense(40, today)
        self.client.post("/income", json={"title": "Gift", "amount": 100, "category": "Gift", "date": today})

        data = self.client.get("/dashboard").json()["data"]
        self.assertEqual(data["totalIncome"], 100)
        self.assertEqual(data["totalExpenses"], 40)
        self.assertEqual(data["balance"], 60)
        self.assertEqual(data["categories"], [{"category": "Other", "amount": 40}])
        self.assertEqual(data["lastSevenDays"][-1], {"date": today, "expenses": 40, "income": 100})


class TestFormPrefill(ApiTestCase):
    def test_ocr_parse(self):
        response = self.client.post("/ocr/parse", json={"text": "Corner Shop\nMilk 2.50\nTOTAL $12.75"})
        data = response.json()["data"]
        self.assertEqual(data["amount"], 12.75)
        self.assertTrue(data["title"].startswith("Corner Shop"))

    def test_voice_parse(self):
        response = self.client.post("/voice/parse", json={"transcript": "Grocery 350 food"})
        self.assertEqual(response.json()["data"], {"title": "Grocery", "amount": 350, "category": "Food"})

    def test_health(self):
        self.assertEqual(self.client.get("/health").json(), {"ok": True})


if __name__ == "__main__":
    unittest.main()
