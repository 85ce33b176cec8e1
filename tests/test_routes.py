import csv
import io
import json

import pytest

from voter_portal.db.models import FormSource
from voter_portal.schemas.submission_schemas import TeamMemberInfo

from tests.conftest import auth_headers, submission_data, submission_payload

PDF = ("aadhaar.pdf", b"%PDF-1.4 test document", "application/pdf")
PNG = ("sign.png", b"\x89PNG\r\n\x1a\nimage", "image/png")


async def _submit(client, payload=None, files=None, headers=None, path="/api/submit-form"):
    return await client.post(
        path,
        data={"data": json.dumps(payload or submission_payload())},
        files=files,
        headers=headers,
    )


class TestEnvelope:
    """Shared response envelope and middleware headers."""

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/api/health")
        body = response.json()

        assert response.status_code == 200
        assert body["success"] is True
        assert body["status"] == "success"
        assert body["data"]["status"] == "healthy"
        assert body["requestId"] == response.headers["X-Request-ID"]
        assert response.headers["X-Content-Type-Options"] == "nosniff"

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client):
        request_id = "3f2b8a4e-6c1d-4e57-9a0b-1c2d3e4f5a6b"
        response = await client.get("/api/health", headers={"X-Request-ID": request_id})
        assert response.headers["X-Request-ID"] == request_id

    @pytest.mark.asyncio
    async def test_database_health(self, client):
        response = await client.get("/api/health/database")
        assert response.status_code == 200
        assert response.json()["data"]["healthy"] is True


class TestSubmitForm:
    """Public registration form."""

    @pytest.mark.asyncio
    async def test_submit_without_files(self, client, dispatcher):
        payload = submission_payload(surname="Gaikwad")
        response = await _submit(client, payload)
        body = response.json()

        assert response.status_code == 201
        assert body["data"]["id"].startswith("SUB_")
        assert body["data"]["surname"] == "Gaikwad"
        assert body["data"]["status"] == "pending"
        assert body["data"]["formSource"] == "public"
        assert body["meta"]["notifications_queued"] == 1
        assert [event.kind for event in dispatcher.events] == ["submission_confirmation"]
        assert dispatcher.events[0].phone == payload["mobileNumber"]

    @pytest.mark.asyncio
    async def test_submit_with_files(self, client, storage):
        response = await _submit(
            client, files={"aadhaarCard": PDF, "signaturePhoto": PNG}
        )
        files = response.json()["data"]["files"]

        assert response.status_code == 201
        assert set(files) == {"aadhaarCard", "signaturePhoto"}
        assert files["aadhaarCard"]["originalName"] == "aadhaar.pdf"
        assert files["aadhaarCard"]["mimeType"] == "application/pdf"
        assert files["aadhaarCard"]["filename"] in storage.objects

    @pytest.mark.asyncio
    async def test_blank_strings_are_treated_as_missing(self, client):
        response = await _submit(client, submission_payload(email="", occupation=""))
        assert response.status_code == 201
        assert response.json()["data"]["email"] is None

    @pytest.mark.asyncio
    async def test_validation_errors_name_fields(self, client, storage):
        response = await _submit(
            client,
            submission_payload(pinCode="12", firstName=""),
            files={"aadhaarCard": PDF},
        )
        body = response.json()

        assert response.status_code == 422
        assert {e["field"] for e in body["errors"]} == {"pinCode", "firstName"}
        assert storage.objects == {}

    @pytest.mark.asyncio
    async def test_malformed_json_is_422(self, client):
        response = await client.post("/api/submit-form", data={"data": "{not json"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_disallowed_file_type(self, client, storage):
        response = await _submit(
            client, files={"aadhaarCard": ("card.gif", b"GIF89a", "image/gif")}
        )
        body = response.json()

        assert response.status_code == 422
        assert body["message"] == "File validation failed"
        assert body["errors"][0]["field"] == "aadhaarCard"
        assert storage.objects == {}

    @pytest.mark.asyncio
    async def test_dangerous_extension(self, client):
        response = await _submit(
            client, files={"aadhaarCard": ("run.exe", b"MZ", "application/pdf")}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_duplicate_is_409_and_uploaded_files_are_removed(
        self, client, storage
    ):
        payload = submission_payload()
        assert (await _submit(client, payload)).status_code == 201

        response = await _submit(
            client,
            submission_payload(mobileNumber=payload["mobileNumber"]),
            files={"aadhaarCard": PDF},
        )
        body = response.json()

        assert response.status_code == 409
        assert body["meta"]["field"] == "mobileNumber"
        assert storage.objects == {}
        assert len(storage.deleted) == 1

    @pytest.mark.asyncio
    async def test_list_requires_supervisor(self, client, dal, volunteer_user, supervisor_user):
        await dal.create(submission_data())

        assert (await client.get("/api/submit-form")).status_code == 401
        assert (
            await client.get("/api/submit-form", headers=auth_headers(volunteer_user))
        ).status_code == 403

        response = await client.get(
            "/api/submit-form", headers=auth_headers(supervisor_user)
        )
        body = response.json()
        assert response.status_code == 200
        assert body["pagination"]["total"] == 1
        assert body["pagination"]["hasMore"] is False
        assert len(body["data"]) == 1


class TestSubmissions:
    """Submission review routes."""

    @pytest.mark.asyncio
    async def test_check_duplicates_is_public(self, client, dal):
        record = (await dal.create(submission_data())).submission

        response = await client.get(
            "/api/submissions/check-duplicates",
            params={"mobileNumber": record.mobile_number, "aadhaarNumber": "111122223333"},
        )
        data = response.json()["data"]

        assert response.status_code == 200
        assert data == {"mobileExists": True, "aadhaarExists": False}

    @pytest.mark.asyncio
    async def test_check_duplicates_rejects_malformed_numbers(self, client):
        response = await client.get(
            "/api/submissions/check-duplicates", params={"mobileNumber": "12"}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_search(self, client, dal, volunteer_user):
        record = (await dal.create(submission_data(surname="Bhosale"))).submission

        response = await client.get(
            "/api/submissions/search",
            params={"q": "bhos"},
            headers=auth_headers(volunteer_user),
        )

        assert response.status_code == 200
        assert [item["id"] for item in response.json()["data"]] == [record.id]

    @pytest.mark.asyncio
    async def test_get_and_status(self, client, dal, volunteer_user):
        record = (await dal.create(submission_data())).submission
        headers = auth_headers(volunteer_user)

        response = await client.get(f"/api/submissions/{record.id}", headers=headers)
        assert response.status_code == 200
        assert response.json()["data"]["mobileNumber"] == record.mobile_number

        status_response = await client.get(
            f"/api/submissions/{record.id}/status", headers=headers
        )
        assert status_response.json()["data"]["status"] == "pending"

        missing = await client.get("/api/submissions/SUB_missing", headers=headers)
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_patch_status(self, client, dal, supervisor_user):
        record = (await dal.create(submission_data())).submission

        response = await client.patch(
            f"/api/submissions/{record.id}/status",
            json={"status": "rejected", "rejectionReason": "Unreadable document"},
            headers=auth_headers(supervisor_user),
        )
        data = response.json()["data"]

        assert response.status_code == 200
        assert data["status"] == "rejected"
        assert data["rejectionReason"] == "Unreadable document"

        invalid = await client.patch(
            f"/api/submissions/{record.id}/status",
            json={"status": "deleted"},
            headers=auth_headers(supervisor_user),
        )
        assert invalid.status_code == 422

    @pytest.mark.asyncio
    async def test_bulk_status_reports_failures(self, client, dal, supervisor_user):
        record = (await dal.create(submission_data())).submission

        response = await client.post(
            "/api/submissions/bulk-status",
            json={"ids": [record.id, "SUB_invalid"], "status": "approved"},
            headers=auth_headers(supervisor_user),
        )
        body = response.json()

        assert response.status_code == 200
        assert body["status"] == "warning"
        assert body["data"] == {"updated": 1, "failed": ["SUB_invalid"]}
        assert body["warnings"]

    @pytest.mark.asyncio
    async def test_stats(self, client, dal, supervisor_user):
        await dal.create(submission_data())
        response = await client.get(
            "/api/submissions/stats", headers=auth_headers(supervisor_user)
        )
        data = response.json()["data"]
        assert data["total"] == 1
        assert data["pending"] == 1
        assert data["byDistrict"] == [{"value": "Pune", "count": 1}]

    @pytest.mark.asyncio
    async def test_delete_requires_admin(self, client, dal, supervisor_user, admin_user):
        record = (await dal.create(submission_data())).submission

        forbidden = await client.delete(
            f"/api/submissions/{record.id}", headers=auth_headers(supervisor_user)
        )
        assert forbidden.status_code == 403

        response = await client.delete(
            f"/api/submissions/{record.id}", headers=auth_headers(admin_user)
        )
        assert response.status_code == 200
        assert await dal.get_by_id(record.id) is None
        assert await dal.get_by_id(record.id, include_deleted=True) is not None

    @pytest.mark.asyncio
    async def test_hard_delete_removes_stored_files(self, client, storage, admin_user, dal):
        created = await _submit(client, files={"aadhaarCard": PDF})
        submission_id = created.json()["data"]["id"]
        assert len(storage.objects) == 1

        response = await client.delete(
            f"/api/submissions/{submission_id}",
            params={"hard": "true"},
            headers=auth_headers(admin_user),
        )

        assert response.status_code == 200
        assert response.json()["data"]["filesRemoved"] == 1
        assert storage.objects == {}
        assert await dal.get_by_id(submission_id, include_deleted=True) is None


class TestUsers:
    """Admin user management routes."""

    @pytest.mark.asyncio
    async def test_non_admin_is_forbidden(self, client, supervisor_user):
        response = await client.get("/api/users", headers=auth_headers(supervisor_user))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_create_list_update_deactivate(self, client, admin_user, dispatcher):
        headers = auth_headers(admin_user)

        created = await client.post(
            "/api/users",
            json={
                "email": "field@example.com",
                "password": "fieldpass",
                "role": "supervisor",
                "firstName": "Field",
                "phone": "9012345678",
                "district": "Nagpur",
            },
            headers=headers,
        )
        assert created.status_code == 201
        user = created.json()["data"]
        assert user["role"] == "supervisor"
        assert "password" not in user
        assert [event.kind for event in dispatcher.events] == ["welcome"]

        listing = await client.get(
            "/api/users", params={"role": "supervisor"}, headers=headers
        )
        assert listing.json()["pagination"]["total"] == 1

        patched = await client.patch(
            f"/api/users/{user['id']}", json={"taluka": "Hingna"}, headers=headers
        )
        assert patched.status_code == 200
        assert patched.json()["data"]["taluka"] == "Hingna"
        assert patched.json()["data"]["district"] == "Nagpur"

        deactivated = await client.delete(f"/api/users/{user['id']}", headers=headers)
        assert deactivated.status_code == 200
        assert deactivated.json()["data"]["isActive"] is False

    @pytest.mark.asyncio
    async def test_duplicate_email_is_409(self, client, admin_user):
        response = await client.post(
            "/api/users",
            json={"email": "admin@example.com", "password": "whatever"},
            headers=auth_headers(admin_user),
        )
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_empty_patch_is_400(self, client, admin_user, volunteer_user):
        response = await client.patch(
            f"/api/users/{volunteer_user.id}", json={}, headers=auth_headers(admin_user)
        )
        assert response.status_code == 400
        assert response.json()["meta"]["error_code"] == "NO_FIELDS_TO_UPDATE"

    @pytest.mark.asyncio
    async def test_missing_user_is_404(self, client, admin_user):
        response = await client.get("/api/users/9999", headers=auth_headers(admin_user))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_stats(self, client, admin_user, volunteer_user):
        response = await client.get("/api/users/stats", headers=auth_headers(admin_user))
        data = response.json()["data"]
        assert data["total"] == 2
        assert data["byRole"]["admin"] == 1
        assert data["byRole"]["volunteer"] == 1


class TestAuthRoutes:
    """Login, registration and current user."""

    @pytest.mark.asyncio
    async def test_login_and_me(self, client, volunteer_user):
        response = await client.post(
            "/api/auth/login",
            json={"loginField": "volunteer@example.com", "password": "secret123"},
        )
        assert response.status_code == 200
        token = response.json()["data"]["token"]

        me = await client.get(
            "/api/auth/me", headers={"Authorization": f"Bearer {token}"}
        )
        assert me.status_code == 200
        assert me.json()["data"]["email"] == "volunteer@example.com"

    @pytest.mark.asyncio
    async def test_bad_credentials(self, client, volunteer_user):
        response = await client.post(
            "/api/auth/login",
            json={"loginField": "volunteer@example.com", "password": "wrong"},
        )
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid credentials"

    @pytest.mark.asyncio
    async def test_register_action(self, client, dispatcher):
        response = await client.post(
            "/api/auth/login",
            json={
                "loginField": "fresh@example.com",
                "password": "freshpass",
                "action": "register",
                "email": "fresh@example.com",
                "phone": "9090909090",
            },
        )
        assert response.status_code == 201
        assert response.json()["data"]["user"]["role"] == "volunteer"
        assert [event.kind for event in dispatcher.events] == ["welcome"]


class TestTeam:
    """Team signup and team form entry."""

    @pytest.mark.asyncio
    async def test_signup_returns_working_token(self, client, dispatcher):
        response = await client.post(
            "/api/team-signup",
            json={
                "name": "Mahesh Shirke",
                "phone": "9876543210",
                "password": "team1234",
                "padvidhar": "Pune Graduates",
                "address": "Shivaji Nagar",
                "district": "Pune",
                "pin": "411005",
            },
        )
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["user"]["taluka"] == "Pune Graduates"
        assert [event.kind for event in dispatcher.events] == ["team_welcome"]

        me = await client.get(
            "/api/auth/me", headers={"Authorization": f"Bearer {data['token']}"}
        )
        assert me.json()["data"]["phone"] == "9876543210"

        again = await client.post(
            "/api/team-signup",
            json={
                "name": "Other",
                "phone": "9876543210",
                "password": "team1234",
                "padvidhar": "x",
                "address": "y",
                "district": "Pune",
                "pin": "411005",
            },
        )
        assert again.status_code == 409

    @pytest.mark.asyncio
    async def test_team_submit_records_attribution(self, client, volunteer_user):
        response = await _submit(
            client,
            submission_payload(filledForSelf=True),
            files={"aadhaarCard": ("card.gif", b"GIF89a", "image/gif")},
            headers=auth_headers(volunteer_user),
            path="/api/team/submit-form",
        )
        data = response.json()["data"]

        assert response.status_code == 201
        assert data["formSource"] == "team"
        assert data["filledByUserId"] == volunteer_user.id
        assert data["filledByName"] == "Vina Kale"
        assert data["filledByPhone"] == volunteer_user.phone
        assert data["filledForSelf"] is True
        assert data["userId"] == volunteer_user.id

    @pytest.mark.asyncio
    async def test_team_submit_file_limits(self, client, volunteer_user):
        files = {
            "degreeCertificate": PDF,
            "aadhaarCard": PDF,
            "residentialProof": PDF,
            "signaturePhoto": PNG,
        }
        response = await _submit(
            client,
            files=files,
            headers=auth_headers(volunteer_user),
            path="/api/team/submit-form",
        )
        assert response.status_code == 422
        assert response.json()["errors"][0]["field"] == "files"

    @pytest.mark.asyncio
    async def test_team_submit_requires_login(self, client):
        response = await _submit(client, path="/api/team/submit-form")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_team_listing_is_scoped_by_role(
        self, client, dal, volunteer_user, supervisor_user, admin_user
    ):
        team = TeamMemberInfo(
            filled_by_user_id=volunteer_user.id, form_source=FormSource.TEAM
        )
        mine = (
            await dal.create(submission_data(district="Pune", taluka="Haveli"), team=team)
        ).submission
        same_area = (
            await dal.create(submission_data(district="Pune", taluka="Haveli"))
        ).submission
        await dal.create(submission_data(district="Nashik", taluka="Niphad"))

        async def _ids(user):
            response = await client.get(
                "/api/team/submit-form", headers=auth_headers(user)
            )
            assert response.status_code == 200
            return {item["id"] for item in response.json()["data"]}

        assert await _ids(volunteer_user) == {mine.id}
        assert await _ids(supervisor_user) == {mine.id, same_area.id}
        assert len(await _ids(admin_user)) == 3


class TestAdmin:
    """Admin dashboards and export."""

    @pytest.mark.asyncio
    async def test_export_csv(self, client, dal, admin_user):
        await dal.create(submission_data(surname="Kamble"))

        response = await client.get(
            "/api/admin/submissions/export", headers=auth_headers(admin_user)
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment" in response.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(response.text)))
        assert rows[0][0] == "Registration ID"
        assert len(rows) == 2
        assert "Kamble" in rows[1]

    @pytest.mark.asyncio
    async def test_export_requires_admin(self, client, supervisor_user):
        response = await client.get(
            "/api/admin/submissions/export", headers=auth_headers(supervisor_user)
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_deleted_submissions_listed_only_on_request(self, client, dal, admin_user):
        record = (await dal.create(submission_data())).submission
        await dal.delete(record.id)
        headers = auth_headers(admin_user)

        default = await client.get("/api/admin/submissions", headers=headers)
        assert default.json()["pagination"]["total"] == 0

        deleted = await client.get(
            "/api/admin/submissions", params={"status": "deleted"}, headers=headers
        )
        assert [item["id"] for item in deleted.json()["data"]] == [record.id]

    @pytest.mark.asyncio
    async def test_statistics_and_user_views(self, client, dal, admin_user):
        await dal.create(submission_data())
        headers = auth_headers(admin_user)

        stats = await client.get("/api/admin/statistics", headers=headers)
        assert stats.json()["data"]["total"] == 1

        users = await client.get("/api/admin/users", headers=headers)
        assert users.json()["pagination"]["total"] == 1

        user_stats = await client.get("/api/admin/users/stats", headers=headers)
        assert user_stats.json()["data"]["active"] == 1


class TestFiles:
    """Presigned downloads."""

    @pytest.mark.asyncio
    async def test_redirect_and_json(self, client, storage, volunteer_user):
        created = await _submit(client, files={"aadhaarCard": PDF})
        object_name = created.json()["data"]["files"]["aadhaarCard"]["filename"]
        headers = auth_headers(volunteer_user)

        redirect = await client.get(f"/api/files/{object_name}", headers=headers)
        assert redirect.status_code == 307
        assert redirect.headers["location"].startswith(f"http://files.test/{object_name}")

        as_json = await client.get(
            f"/api/files/{object_name}", params={"redirect": "false"}, headers=headers
        )
        assert as_json.json()["data"]["presignedUrl"].startswith("http://files.test/")

    @pytest.mark.asyncio
    async def test_missing_file_is_404(self, client, volunteer_user):
        response = await client.get(
            "/api/files/submissions/nothing.pdf", headers=auth_headers(volunteer_user)
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_requires_login(self, client):
        response = await client.get("/api/files/submissions/nothing.pdf")
        assert response.status_code == 401
