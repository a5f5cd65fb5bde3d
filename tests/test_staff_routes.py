import pytest

from flask_app.models import Staff, StaffRole, db
from flask_app.services.staff_service import StaffService, StaffValidationError


class TestStaffApi:
    def test_list_hides_inactive_by_default(self, logged_in_staff, admin_staff):
        client, _ = logged_in_staff
        admin_staff.is_active = False
        db.session.commit()

        active = client.get("/api/staff").get_json()["staff"]
        everyone = client.get("/api/staff?includeInactive=true").get_json()["staff"]

        assert [member["email"] for member in active] == ["staff@example.org"]
        assert len(everyone) == 2

    def test_admin_creates_staff(self, logged_in_admin):
        client, _ = logged_in_admin

        response = client.post(
            "/api/staff",
            json={"email": "New@Example.org", "firstName": "New", "lastName": "Hire", "role": "staff"},
        )

        assert response.status_code == 201
        data = response.get_json()
        assert data["email"] == "new@example.org"
        assert data["role"] == "staff"
        assert Staff.find_by_email("new@example.org") is not None

    def test_non_admin_cannot_create(self, logged_in_staff):
        client, _ = logged_in_staff

        response = client.post("/api/staff", json={"email": "x@example.org", "firstName": "X", "lastName": "Y"})

        assert response.status_code == 403
        assert response.get_json() == {"error": "Admin access required"}

    def test_anonymous_cannot_create(self, client):
        response = client.post("/api/staff", json={})
        assert response.status_code == 401

    def test_duplicate_email_conflicts(self, logged_in_admin, staff_member):
        client, _ = logged_in_admin

        response = client.post(
            "/api/staff", json={"email": "STAFF@example.org", "firstName": "Dup", "lastName": "Licate"}
        )

        assert response.status_code == 409
        assert response.get_json()["field"] == "email"

    @pytest.mark.parametrize(
        "payload, field",
        [
            ({"firstName": "A", "lastName": "B"}, "email"),
            ({"email": "bad", "firstName": "A", "lastName": "B"}, "email"),
            ({"email": "a@example.org", "lastName": "B"}, "firstName"),
            ({"email": "a@example.org", "firstName": "A", "lastName": "B", "role": "owner"}, "role"),
        ],
    )
    def test_create_validation(self, logged_in_admin, payload, field):
        client, _ = logged_in_admin

        response = client.post("/api/staff", json=payload)

        assert response.status_code == 400
        assert response.get_json()["field"] == field

    def test_get_staff(self, logged_in_staff, admin_staff):
        client, _ = logged_in_staff

        assert client.get(f"/api/staff/{admin_staff.id}").get_json()["email"] == "admin@example.org"
        assert client.get("/api/staff/9999").status_code == 404

    def test_admin_updates_staff(self, logged_in_admin, staff_member):
        client, _ = logged_in_admin

        response = client.put(f"/api/staff/{staff_member.id}", json={"role": "admin", "firstName": "Samantha"})

        assert response.status_code == 200
        assert response.get_json()["role"] == "admin"
        assert db.session.get(Staff, staff_member.id).first_name == "Samantha"

    def test_update_rejects_non_boolean_active_flag(self, logged_in_admin, staff_member):
        client, _ = logged_in_admin

        response = client.put(f"/api/staff/{staff_member.id}", json={"isActive": "no"})

        assert response.status_code == 400
        assert response.get_json()["field"] == "isActive"

    def test_admin_cannot_deactivate_self(self, logged_in_admin):
        client, admin = logged_in_admin

        put_response = client.put(f"/api/staff/{admin.id}", json={"isActive": False})
        delete_response = client.delete(f"/api/staff/{admin.id}")

        assert put_response.status_code == 400
        assert delete_response.status_code == 400
        assert db.session.get(Staff, admin.id).is_active is True

    def test_admin_deactivates_staff(self, logged_in_admin, staff_member):
        client, _ = logged_in_admin

        response = client.delete(f"/api/staff/{staff_member.id}")

        assert response.status_code == 200
        assert response.get_json()["staff"]["isActive"] is False
        assert client.delete("/api/staff/9999").status_code == 404


class TestStaffService:
    def test_create_staff_defaults_to_staff_role(self, app):
        staff = StaffService.create_staff(email="svc@example.org", first_name=" Svc ", last_name="User")
        assert staff.role == StaffRole.STAFF
        assert staff.first_name == "Svc"

    def test_duplicate_is_rejected(self, staff_member):
        with pytest.raises(StaffValidationError, match="already exists"):
            StaffService.create_staff(email="staff@example.org", first_name="A", last_name="B")


class TestStaffCli:
    def test_create_admin(self, runner):
        result = runner.invoke(
            args=["staff", "create", "--email", "boss@example.org", "--first-name", "Bo", "--last-name", "Ss", "--admin"]
        )

        assert result.exit_code == 0, result.output
        assert "Created admin account for boss@example.org" in result.output
        db.session.expire_all()
        assert Staff.find_by_email("boss@example.org").role == StaffRole.ADMIN

    def test_create_rejects_invalid_email(self, runner):
        result = runner.invoke(
            args=["staff", "create", "--email", "nope", "--first-name", "A", "--last-name", "B"]
        )

        assert result.exit_code == 1
        assert "Invalid email format" in result.output

    def test_list(self, runner, staff_member):
        result = runner.invoke(args=["staff", "list"])

        assert result.exit_code == 0
        assert "staff@example.org\tstaff\tactive" in result.output

    def test_list_empty(self, runner):
        assert "No staff accounts." in runner.invoke(args=["staff", "list"]).output
