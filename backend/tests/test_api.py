"""
HTTP-level tests: request validation, error envelope, auth dependencies and
the login/booking endpoints wired together.
"""
from datetime import date, timedelta

from telemed.models import DoctorSpecialty

from conftest import PASSWORD


def days_from_today(n: int) -> str:
    return (date.today() + timedelta(days=n)).isoformat()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["ok"] is True


class TestRegisterAndLogin:
    def test_register_patient_then_login(self, client):
        response = client.post(
            "/auth/register",
            json={
                "role": "patient",
                "full_name": "Nok Kaew",
                "email": "Nok@Example.com",
                "phone": "0812345678",
                "password": "pass1234",
            },
        )
        assert response.status_code == 201
        user = response.json()["user"]
        assert user["email"] == "nok@example.com"
        assert user["role"] == "patient"
        assert "password_hash" not in user

        response = client.post("/auth/login", json={"email": "nok@example.com", "password": "pass1234"})
        assert response.status_code == 200
        body = response.json()
        assert body["user"]["full_name"] == "Nok Kaew"

        me = client.get("/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
        assert me.status_code == 200
        assert me.json()["id"] == user["id"]

    def test_register_doctor_requires_specialty(self, client):
        response = client.post(
            "/auth/register",
            json={"role": "doctor", "full_name": "Dr. No", "email": "dr@example.com", "password": "pass1234"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_register_doctor_with_specialty(self, client, session, specialty):
        response = client.post(
            "/auth/register",
            json={
                "role": "doctor",
                "full_name": "Dr. Heart",
                "email": "heart@example.com",
                "password": "pass1234",
                "specialties": [specialty.id],
            },
        )
        assert response.status_code == 201
        doctor_id = response.json()["user"]["id"]
        assert session.get(DoctorSpecialty, (doctor_id, specialty.id)) is not None

    def test_register_unknown_specialty(self, client):
        response = client.post(
            "/auth/register",
            json={
                "role": "doctor",
                "full_name": "Dr. Who",
                "email": "who@example.com",
                "password": "pass1234",
                "specialties": [777],
            },
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_register_duplicate_email(self, client, patient):
        response = client.post(
            "/auth/register",
            json={"role": "patient", "full_name": "Copy", "email": patient.email, "password": "pass1234"},
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "DUPLICATE"

    def test_login_validation_error_envelope(self, client):
        response = client.post("/auth/login", json={"email": "nope", "password": ""})
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert {d["field"] for d in error["details"]} == {"email", "password"}

    def test_login_unknown_email(self, client):
        response = client.post("/auth/login", json={"email": "ghost@example.com", "password": "x"})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_CREDENTIALS"

    def test_lockout_over_http(self, client, patient, ip_blocks):
        headers = {"X-Forwarded-For": "198.51.100.20, 10.0.0.1"}
        codes = []
        for _ in range(5):
            response = client.post("/auth/login", json={"email": patient.email, "password": "bad"}, headers=headers)
            codes.append((response.status_code, response.json()["error"]["code"]))

        assert codes[:4] == [(401, "INVALID_CREDENTIALS")] * 4
        assert codes[4] == (429, "TOO_MANY_ATTEMPTS")
        assert ip_blocks.is_blocked("198.51.100.20")

        locked = client.post("/auth/login", json={"email": patient.email, "password": PASSWORD}, headers=headers)
        assert locked.status_code == 423
        assert locked.json()["error"]["code"] == "ACCOUNT_LOCKED"

    def test_blocked_ip_wrong_password(self, client, patient, ip_blocks):
        ip_blocks.block("198.51.100.30", 600)
        response = client.post(
            "/auth/login",
            json={"email": patient.email, "password": "bad"},
            headers={"X-Forwarded-For": "198.51.100.30"},
        )
        assert response.status_code == 429
        assert response.json()["error"]["code"] == "IP_BLOCKED"


class TestAuthDependencies:
    def test_missing_token(self, client):
        response = client.get("/auth/me")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    def test_garbage_token(self, client):
        response = client.get("/auth/me", headers={"Authorization": "Bearer not.a.token"})
        assert response.status_code == 401

    def test_non_bearer_scheme(self, client, patient, auth_headers):
        token = auth_headers(patient)["Authorization"].split(" ", 1)[1]
        response = client.get("/auth/me", headers={"Authorization": f"Token {token}"})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    def test_openapi_advertises_bearer_tokens(self, client):
        schemes = client.get("/openapi.json").json()["components"]["securitySchemes"]
        assert list(schemes.values()) == [{"type": "http", "scheme": "bearer"}]

    def test_wrong_role(self, client, patient, auth_headers):
        response = client.post(
            f"/doctors/{patient.id}/slots",
            json={"start_time": days_from_today(3), "end_time": days_from_today(4)},
            headers=auth_headers(patient),
        )
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"


class TestSlotsAndAppointments:
    def open_slot(self, client, doctor, auth_headers, start=3, end=5):
        response = client.post(
            f"/doctors/{doctor.id}/slots",
            json={"start_time": days_from_today(start), "end_time": days_from_today(end)},
            headers=auth_headers(doctor),
        )
        assert response.status_code == 201
        return response.json()["slot"]

    def test_doctor_cannot_open_slots_for_someone_else(self, client, doctor, make_user, auth_headers):
        other = make_user("doctor")
        response = client.post(
            f"/doctors/{other.id}/slots",
            json={"start_time": days_from_today(3), "end_time": days_from_today(4)},
            headers=auth_headers(doctor),
        )
        assert response.status_code == 403

    def test_invalid_range(self, client, doctor, auth_headers):
        response = client.post(
            f"/doctors/{doctor.id}/slots",
            json={"start_time": days_from_today(5), "end_time": days_from_today(3)},
            headers=auth_headers(doctor),
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_TIME_RANGE"

    def test_booking_flow(self, client, doctor, patient, auth_headers):
        slot = self.open_slot(client, doctor, auth_headers)

        listing = client.get(f"/doctors/{doctor.id}/slots", params={"from": days_from_today(3), "to": days_from_today(5)})
        assert listing.status_code == 200
        assert [d["status"] for d in listing.json()["data"]] == ["available"] * 3

        booked = client.post(
            "/appointments",
            json={"slot_id": slot["id"], "chosen_date": days_from_today(4)},
            headers=auth_headers(patient),
        )
        assert booked.status_code == 201
        appointment = booked.json()["appointment"]
        assert appointment["status"] == "pending"
        assert appointment["chosen_date"] == days_from_today(4)

        listing = client.get(f"/doctors/{doctor.id}/slots")
        assert [d["status"] for d in listing.json()["data"]] == ["booked"] * 3

        again = client.post(
            "/appointments",
            json={"slot_id": slot["id"], "chosen_date": days_from_today(3)},
            headers=auth_headers(patient),
        )
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "SLOT_NOT_AVAILABLE"

        confirmed = client.patch(
            f"/appointments/{appointment['id']}/status",
            json={"status": "confirmed"},
            headers=auth_headers(doctor),
        )
        assert confirmed.json() == {"ok": True}

        mine = client.get("/appointments/me", headers=auth_headers(patient)).json()["data"]
        assert [(a["id"], a["status"], a["doctor_name"]) for a in mine] == [
            (appointment["id"], "confirmed", "Dr. Dana House")
        ]
        theirs = client.get("/appointments/doctor/me", headers=auth_headers(doctor)).json()["data"]
        assert theirs[0]["patient_name"] == "Pat Patient"

    def test_booking_today_is_too_soon(self, client, doctor, patient, auth_headers):
        slot = self.open_slot(client, doctor, auth_headers, start=0, end=2)
        response = client.post(
            "/appointments",
            json={"slot_id": slot["id"], "chosen_date": days_from_today(0)},
            headers=auth_headers(patient),
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "BOOKING_TOO_SOON"

    def test_status_update_by_stranger(self, client, doctor, patient, make_user, auth_headers):
        slot = self.open_slot(client, doctor, auth_headers)
        appointment = client.post(
            "/appointments",
            json={"slot_id": slot["id"], "chosen_date": days_from_today(3)},
            headers=auth_headers(patient),
        ).json()["appointment"]

        stranger = make_user("doctor")
        response = client.patch(
            f"/appointments/{appointment['id']}/status",
            json={"status": "rejected"},
            headers=auth_headers(stranger),
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_status_must_be_known(self, client, doctor, auth_headers):
        response = client.patch("/appointments/1/status", json={"status": "done"}, headers=auth_headers(doctor))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_patient_only_listing(self, client, doctor, auth_headers):
        response = client.get("/appointments/patient/me", headers=auth_headers(doctor))
        assert response.status_code == 403


class TestProfilesAndDirectory:
    def test_profile_update(self, client, doctor, specialty, auth_headers):
        response = client.put(
            "/users/me",
            json={"full_name": "Dr. Dana Wilson", "phone": "0899999999", "specialty_ids": [specialty.id]},
            headers=auth_headers(doctor),
        )
        assert response.status_code == 200
        user = response.json()["user"]
        assert user["full_name"] == "Dr. Dana Wilson"
        assert user["phone"] == "0899999999"
        assert user["specialties"] == [{"id": specialty.id, "name": "Cardiology"}]

        assert client.get("/users/me", headers=auth_headers(doctor)).json()["user"]["specialties"][0]["id"] == specialty.id

    def test_patient_cannot_set_specialties(self, client, patient, specialty, auth_headers):
        response = client.put("/users/me", json={"specialty_ids": [specialty.id]}, headers=auth_headers(patient))
        assert response.status_code == 403

    def test_duplicate_phone(self, client, make_user, patient, auth_headers):
        make_user(phone="0811111111")
        response = client.put("/users/me", json={"phone": "0811111111"}, headers=auth_headers(patient))
        assert response.status_code == 409

    def test_search_doctors(self, client, session, doctor, make_user, specialty):
        make_user("doctor", full_name="Dr. Other")
        session.add(DoctorSpecialty(doctor_id=doctor.id, specialty_id=specialty.id))
        session.commit()

        by_name = client.get("/doctors", params={"q": "Dana"}).json()["data"]
        assert [d["id"] for d in by_name] == [doctor.id]

        by_specialty = client.get("/doctors", params={"specialty": "cardio"}).json()["data"]
        assert [d["id"] for d in by_specialty] == [doctor.id]

        by_id = client.get("/doctors", params={"specialty": str(specialty.id)}).json()["data"]
        assert [d["id"] for d in by_id] == [doctor.id]

        everyone = client.get("/doctors").json()["data"]
        assert {d["full_name"] for d in everyone} == {"Dr. Dana House", "Dr. Other"}

    def test_specialties(self, client, specialty):
        assert client.get("/specialties").json() == {"data": [{"id": specialty.id, "name": "Cardiology"}]}


class TestRateLimits:
    def test_seventh_login_from_one_ip_is_throttled(self, client, patient, rate_limits):
        credentials = {"email": patient.email, "password": PASSWORD}
        for _ in range(6):
            assert client.post("/auth/login", json=credentials).status_code == 200

        response = client.post("/auth/login", json=credentials)
        assert response.status_code == 429
        assert response.json()["error"]["code"] == "RATE_LIMITED"

    def test_login_limit_is_per_ip(self, client, patient, rate_limits):
        credentials = {"email": patient.email, "password": PASSWORD}
        for _ in range(6):
            client.post("/auth/login", json=credentials, headers={"X-Forwarded-For": "198.51.100.1"})

        response = client.post("/auth/login", json=credentials, headers={"X-Forwarded-For": "198.51.100.2"})
        assert response.status_code == 200

    def test_global_limit_per_ip(self, client, rate_limits):
        for _ in range(120):
            assert client.get("/health").status_code == 200

        response = client.get("/health")
        assert response.status_code == 429
        assert response.json()["error"]["code"] == "RATE_LIMITED"
        assert client.get("/health", headers={"X-Forwarded-For": "198.51.100.3"}).status_code == 200
