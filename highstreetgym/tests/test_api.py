import tempfile
import unittest
import xml.etree.ElementTree as ET
from pathlib import Path

from highstreetgym.gym.clock import FixedClock
from highstreetgym.webapp import create_app


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.app = create_app(
            {
                "TESTING": True,
                "GYM_DATABASE_PATH": ":memory:",
                "GYM_BACKUP_DIRECTORY": self.tmp.name,
            }
        )
        self.system = self.app.extensions["highstreetgym"]
        self.system.clock = FixedClock("2025-02-01T09:00:00")
        self.client = self.app.test_client()

        self.member = self.system.register_user(
            email="jo@example.com", password="Password!23", first_name="Jo Anne", last_name="O'Brien"
        )
        self.trainer = self.system.register_user(
            email="ada@example.com",
            password="Password!23",
            role="trainer",
            first_name="Ada",
            last_name="L",
        )
        self.admin = self.system.register_user(
            email="admin@example.com",
            password="Password!23",
            role="admin",
            first_name="Casey",
            last_name="Admin",
        )
        activity = self.system.create_activity(name="Yoga", description="Gentle")
        location = self.system.create_location(name="Downtown", address="1 Main")
        self.session = self.system.create_session(
            activity_id=activity["id"],
            location_id=location["id"],
            trainer_id=self.trainer["id"],
            session_date="2025-02-05",
            session_time="10:00",
        )

    def tearDown(self) -> None:
        self.system.close()
        self.tmp.cleanup()

    def login(self, email):
        response = self.client.post("/api/login", json={"email": email, "password": "Password!23"})
        self.assertEqual(response.status_code, 200)
        return {"x-auth-key": response.get_json()["key"]}

    def test_login_rejects_bad_credentials(self) -> None:
        response = self.client.post("/api/login", json={"email": "jo@example.com", "password": "nope"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "Invalid credentials")
        response = self.client.post("/api/login", json={})
        self.assertEqual(response.status_code, 400)

    def test_export_requires_authentication(self) -> None:
        response = self.client.get("/api/bookings/export/xml/history")
        self.assertEqual(response.status_code, 401)
        body = response.get_json()
        self.assertEqual(body["message"], "Not authenticated")
        self.assertTrue(body["errors"])

    def test_unknown_key(self) -> None:
        response = self.client.get(
            "/api/bookings/export/xml/history", headers={"x-auth-key": "not-a-key"}
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json(), {"message": "Failed to authenticate - key not found"})

    def test_wrong_role(self) -> None:
        response = self.client.get(
            "/api/bookings/export/xml/history", headers=self.login("ada@example.com")
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.get_json()["message"], "Access forbidden")

    def test_member_booking_history_export(self) -> None:
        headers = self.login("jo@example.com")
        response = self.client.post("/api/bookings", json={"sessionId": self.session["id"]}, headers=headers)
        self.assertEqual(response.status_code, 201)

        response = self.client.get("/api/bookings/export/xml/history", headers=headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["Content-Type"], "application/xml")
        self.assertEqual(
            response.headers["Content-Disposition"],
            "attachment; filename=\"booking-history-Jo-Anne-O'Brien.xml\"",
        )
        self.assertEqual(response.headers["Access-Control-Allow-Origin"], "*")
        root = ET.fromstring(response.data)
        self.assertEqual(root.findtext("header/total_bookings"), "1")
        self.assertTrue((Path(self.tmp.name) / "booking-history-Jo-Anne-O'Brien.xml").exists())

        response = self.client.get("/api/bookings/export/xml/history?onlyPast=true", headers=headers)
        self.assertEqual(ET.fromstring(response.data).findtext("header/total_bookings"), "0")

    def test_malformed_only_past(self) -> None:
        response = self.client.get(
            "/api/bookings/export/xml/history?onlyPast=maybe", headers=self.login("jo@example.com")
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("onlyPast must be true or false", response.get_json()["errors"])

    def test_admin_exports_for_member(self) -> None:
        headers = self.login("admin@example.com")
        response = self.client.get(
            f"/api/bookings/export/xml/history?memberId={self.member['id']}", headers=headers
        )
        self.assertEqual(response.status_code, 200)
        root = ET.fromstring(response.data)
        self.assertEqual(root.findtext("header/member/email"), "jo@example.com")

        response = self.client.get("/api/bookings/export/xml/history?memberId=999", headers=headers)
        self.assertEqual(response.status_code, 404)

    def test_trainer_weekly_export(self) -> None:
        headers = self.login("ada@example.com")
        response = self.client.get(
            "/api/sessions/export/xml/weekly?startDate=2025-02-05&endDate=2025-02-05", headers=headers
        )
        self.assertEqual(response.status_code, 200)
        self.assertIn("sessions-Ada-L-2025-02-05-to-2025-02-05.xml", response.headers["Content-Disposition"])
        root = ET.fromstring(response.data)
        self.assertEqual(root.findtext("header/total_sessions"), "1")
        self.assertEqual(root.findtext("week/session/end"), "2025-02-05T11:00:00")

        response = self.client.get(
            "/api/sessions/export/xml/weekly?startDate=2025-02-10&endDate=2025-02-01", headers=headers
        )
        self.assertEqual(response.status_code, 200)
        root = ET.fromstring(response.data)
        self.assertEqual(root.findtext("header/total_sessions"), "0")
        self.assertEqual(root.findtext("header/period/start"), "No sessions available")

    def test_malformed_start_date(self) -> None:
        response = self.client.get(
            "/api/sessions/export/xml/weekly?startDate=05-02-2025", headers=self.login("ada@example.com")
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("startDate must be YYYY-MM-DD", response.get_json()["errors"])

    def test_sessions_and_logout(self) -> None:
        response = self.client.get("/api/sessions")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["sessions"][0]["activityName"], "Yoga")

        headers = self.login("ada@example.com")
        response = self.client.get("/api/users/self", headers=headers)
        self.assertEqual(response.get_json()["user"]["role"], "trainer")
        response = self.client.delete("/api/logout", headers=headers)
        self.assertEqual(response.status_code, 200)
        response = self.client.get("/api/users/self", headers=headers)
        self.assertEqual(response.status_code, 404)

    def test_member_cannot_view_other_booking(self) -> None:
        booking = self.system.create_booking(member_id=self.member["id"], session_id=self.session["id"])
        self.system.register_user(
            email="sam@example.com", password="Password!23", first_name="Sam", last_name="Smith"
        )
        response = self.client.get(f"/api/bookings/{booking['id']}", headers=self.login("sam@example.com"))
        self.assertEqual(response.status_code, 403)
        response = self.client.get(f"/api/bookings/{booking['id']}", headers=self.login("jo@example.com"))
        self.assertEqual(response.get_json()["booking"]["sessionId"], self.session["id"])

    def test_blogs(self) -> None:
        headers = self.login("jo@example.com")
        response = self.client.post("/api/blogs", json={"title": "Hi", "content": "Hello"}, headers=headers)
        self.assertEqual(response.status_code, 201)
        blog_id = response.get_json()["blog"]["id"]
        self.assertEqual(self.client.get("/api/blogs").get_json()["blogs"][0]["authorName"], "Jo Anne O'Brien")
        response = self.client.delete(f"/api/blogs/{blog_id}", headers=self.login("ada@example.com"))
        self.assertEqual(response.status_code, 403)

    def test_malformed_json_fields_are_rejected(self) -> None:
        headers = self.login("jo@example.com")
        response = self.client.post("/api/bookings", json={"sessionId": "abc"}, headers=headers)
        self.assertEqual(response.status_code, 400)
        self.assertIn("sessionId must be a positive integer", response.get_json()["errors"])
        response = self.client.post("/api/bookings", json={"sessionId": True}, headers=headers)
        self.assertEqual(response.status_code, 400)
        response = self.client.post("/api/bookings", json={}, headers=headers)
        self.assertEqual(response.status_code, 400)
        self.assertIn("sessionId is required", response.get_json()["errors"])
        response = self.client.post("/api/bookings", json=[self.session["id"]], headers=headers)
        self.assertEqual(response.status_code, 400)

        response = self.client.post("/api/login", json={"email": 5, "password": "x"})
        self.assertEqual(response.status_code, 400)
        self.assertIn("email must be a string", response.get_json()["errors"])

        response = self.client.post(
            "/api/sessions",
            json={
                "activityId": 1,
                "locationId": 1,
                "sessionDate": "2025-02-07",
                "sessionTime": "09:00",
                "trainerId": "ada",
            },
            headers=self.login("admin@example.com"),
        )
        self.assertEqual(response.status_code, 400)

        response = self.client.post("/api/blogs", json={"title": ["Hi"], "content": "Hello"}, headers=headers)
        self.assertEqual(response.status_code, 400)

    def test_booking_accepts_numeric_string_ids(self) -> None:
        response = self.client.post(
            "/api/bookings", json={"sessionId": str(self.session["id"])}, headers=self.login("jo@example.com")
        )
        self.assertEqual(response.status_code, 201)

    def test_update_own_profile(self) -> None:
        headers = self.login("jo@example.com")
        response = self.client.patch(
            "/api/users/self", json={"firstName": "Joanne", "role": "admin"}, headers=headers
        )
        self.assertEqual(response.status_code, 200)
        user = response.get_json()["user"]
        self.assertEqual((user["firstName"], user["lastName"], user["role"]), ("Joanne", "O'Brien", "member"))

        response = self.client.put("/api/users/self", json={"password": "NewPassword!45"}, headers=headers)
        self.assertEqual(response.status_code, 200)
        response = self.client.post("/api/login", json={"email": "jo@example.com", "password": "NewPassword!45"})
        self.assertEqual(response.status_code, 200)
        headers = {"x-auth-key": response.get_json()["key"]}

        response = self.client.patch("/api/users/self", json={"password": "short"}, headers=headers)
        self.assertEqual(response.status_code, 400)
        response = self.client.patch("/api/users/self", json={"firstName": "Jo"})
        self.assertEqual(response.status_code, 401)

    def test_update_blog(self) -> None:
        headers = self.login("jo@example.com")
        response = self.client.post("/api/blogs", json={"title": "Hi", "content": "Hello"}, headers=headers)
        blog_id = response.get_json()["blog"]["id"]

        response = self.client.patch(f"/api/blogs/{blog_id}", json={"title": "Hello again"}, headers=headers)
        self.assertEqual(response.status_code, 200)
        blog = response.get_json()["blog"]
        self.assertEqual((blog["title"], blog["content"]), ("Hello again", "Hello"))

        response = self.client.patch(
            f"/api/blogs/{blog_id}", json={"title": "Hijacked"}, headers=self.login("ada@example.com")
        )
        self.assertEqual(response.status_code, 403)


class HtmlTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.app = create_app(
            {
                "TESTING": True,
                "GYM_DATABASE_PATH": ":memory:",
                "GYM_BACKUP_DIRECTORY": self.tmp.name,
            }
        )
        self.system = self.app.extensions["highstreetgym"]
        self.system.clock = FixedClock("2025-02-01T09:00:00")
        self.client = self.app.test_client()
        self.system.register_user(
            email="mia@example.com", password="Password!23", first_name="Mia", last_name="Member"
        )
        self.admin = self.system.register_user(
            email="root@example.com",
            password="Password!23",
            role="admin",
            first_name="Rory",
            last_name="Root",
        )
        self.trainer = self.system.register_user(
            email="tess@example.com",
            password="Password!23",
            role="trainer",
            first_name="Tess",
            last_name="Trainer",
        )

    def tearDown(self) -> None:
        self.system.close()
        self.tmp.cleanup()

    def sign_in(self, email):
        response = self.client.post("/login", data={"email": email, "password": "Password!23"})
        self.assertEqual(response.status_code, 302)

    def test_admin_manages_activities_and_locations(self) -> None:
        self.sign_in("root@example.com")
        response = self.client.post("/activities", data={"name": "Pilates", "description": "Core"})
        self.assertEqual(response.status_code, 302)
        activity = self.system.list_activities()[0]
        self.assertIn(b"Pilates", self.client.get("/activities").data)

        response = self.client.post(
            f"/activities/{activity['id']}", data={"name": "Reformer Pilates", "description": "Core"}
        )
        self.assertEqual(response.status_code, 302)
        self.assertIn(b"Reformer Pilates", self.client.get(f"/activities/{activity['id']}").data)
        response = self.client.post(f"/activities/{activity['id']}", data={"name": ""}, follow_redirects=True)
        self.assertIn(b"Activity name is required", response.data)
        self.client.post(f"/activities/{activity['id']}/delete")
        self.assertEqual(self.system.list_activities(), [])
        self.assertEqual(self.client.get(f"/activities/{activity['id']}").status_code, 404)

        self.client.post("/locations", data={"name": "Uptown", "address": "9 High St"})
        location = self.system.list_locations()[0]
        self.client.post(f"/locations/{location['id']}", data={"name": "Uptown", "address": "10 High St"})
        self.assertEqual(self.system.get_location(location["id"])["address"], "10 High St")
        self.client.post(f"/locations/{location['id']}/delete")
        self.assertEqual(self.system.list_locations(), [])

    def test_admin_manages_users(self) -> None:
        self.sign_in("root@example.com")
        response = self.client.post(
            "/users",
            data={
                "email": "new@example.com",
                "password": "Password!23",
                "role": "trainer",
                "first_name": "Nia",
                "last_name": "New",
            },
        )
        self.assertEqual(response.status_code, 302)
        user = self.system.get_user_by_email("new@example.com")
        self.assertEqual(user["role"], "trainer")
        self.assertIn(b"new@example.com", self.client.get("/users?role=trainer").data)
        self.assertNotIn(b"mia@example.com", self.client.get("/users?role=trainer").data)

        self.client.post(f"/users/{user['id']}", data={"first_name": "Nina", "role": "member"})
        updated = self.system.get_user(user["id"])
        self.assertEqual((updated["first_name"], updated["last_name"], updated["role"]), ("Nina", "New", "member"))

        self.client.post(f"/users/{user['id']}/delete")
        self.assertEqual(self.client.get(f"/users/{user['id']}").status_code, 404)

        response = self.client.post(f"/users/{self.admin['id']}/delete", follow_redirects=True)
        self.assertIn(b"You cannot delete your own account", response.data)
        self.assertEqual(self.system.get_user(self.admin["id"])["email"], "root@example.com")

    def test_admin_pages_are_admin_only(self) -> None:
        self.sign_in("mia@example.com")
        self.assertEqual(self.client.get("/users").status_code, 403)
        self.assertEqual(self.client.get("/activities").status_code, 403)
        self.assertEqual(self.client.post("/locations", data={"name": "Nope"}).status_code, 403)
        self.assertEqual(self.system.list_locations(), [])

    def test_trainer_edits_own_session(self) -> None:
        activity = self.system.create_activity(name="Spin")
        location = self.system.create_location(name="Downtown")
        session = self.system.create_session(
            activity_id=activity["id"],
            location_id=location["id"],
            trainer_id=self.trainer["id"],
            session_date="2025-02-05",
            session_time="10:00",
        )
        response = self.client.get(f"/sessions/{session['id']}")
        self.assertEqual(response.status_code, 200)
        self.assertIn(b"Tess Trainer", response.data)

        self.sign_in("mia@example.com")
        response = self.client.post(f"/sessions/{session['id']}", data={"session_time": "11:00"})
        self.assertEqual(response.status_code, 403)

        self.sign_in("tess@example.com")
        response = self.client.post(
            f"/sessions/{session['id']}", data={"session_date": "2025-02-06", "session_time": "11:00"}
        )
        self.assertEqual(response.status_code, 302)
        updated = self.system.get_session(session["id"])
        self.assertEqual((updated["session_date"], updated["session_time"]), ("2025-02-06", "11:00:00"))

        self.client.post(f"/sessions/{session['id']}/delete")
        self.assertEqual(self.client.get(f"/sessions/{session['id']}").status_code, 404)

    def test_booking_detail_is_private(self) -> None:
        activity = self.system.create_activity(name="Spin")
        location = self.system.create_location(name="Downtown")
        session = self.system.create_session(
            activity_id=activity["id"],
            location_id=location["id"],
            trainer_id=self.trainer["id"],
            session_date="2025-02-05",
            session_time="10:00",
        )
        mia = self.system.get_user_by_email("mia@example.com")
        booking = self.system.create_booking(member_id=mia["id"], session_id=session["id"])
        self.system.register_user(
            email="sam@example.com", password="Password!23", first_name="Sam", last_name="Smith"
        )

        self.sign_in("sam@example.com")
        self.assertEqual(self.client.get(f"/bookings/{booking['id']}").status_code, 403)
        self.sign_in("mia@example.com")
        response = self.client.get(f"/bookings/{booking['id']}")
        self.assertEqual(response.status_code, 200)
        self.assertIn(b"Booking for Spin", response.data)
        self.sign_in("root@example.com")
        self.assertEqual(self.client.get(f"/bookings/{booking['id']}").status_code, 200)

    def test_pages_require_login(self) -> None:
        response = self.client.get("/bookings")
        self.assertEqual(response.status_code, 401)
        self.assertIn(b"Please log in to continue", response.data)

    def test_login_and_export(self) -> None:
        response = self.client.post(
            "/login", data={"email": "mia@example.com", "password": "Password!23"}
        )
        self.assertEqual(response.status_code, 302)
        self.assertEqual(self.client.get("/bookings").status_code, 200)

        response = self.client.get("/bookings/export/xml/history")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["Content-Type"], "application/xml")
        root = ET.fromstring(response.data)
        self.assertEqual(root.findtext("header/period/start"), "No bookings available")

        self.assertEqual(self.client.get("/sessions/export/xml/weekly").status_code, 403)


if __name__ == "__main__":
    unittest.main()
