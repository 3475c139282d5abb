import asyncio
from datetime import datetime
from uuid import UUID, uuid4

import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel import func, select

from models.relational_models import Ticket, TicketUpdate
from schemas.ticket import TicketCreate
from services import ticket_lifecycle
from settings import settings
from utilities.enumerables import EquipmentType, UserRole
from utilities.permissions import Permissions


PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def number(sequence: int) -> str:
    return f"TKT{datetime.now().year}{sequence:04d}"


class TestCreateTicket:
    async def test_new_ticket_is_pending_with_first_number_of_the_year(self, client, alice, file_ticket):
        ticket = await file_ticket(alice)

        assert ticket["ticket_number"] == number(1)
        assert ticket["status"] == "Pending"
        assert ticket["priority"] == "Medium"
        assert ticket["created_by"] == str(alice.id)
        assert ticket["creator"]["username"] == "alice"
        assert ticket["assigned_to"] is None

        response = await client.get(f"/tickets/{ticket['id']}/history", headers=alice.headers)
        assert response.status_code == 200
        updates = response.json()["updates"]
        assert len(updates) == 1
        assert updates[0]["update_type"] == "status_change"
        assert updates[0]["old_value"] is None
        assert updates[0]["new_value"] == "Pending"
        assert updates[0]["notes"] == "Ticket created"

    async def test_numbers_increment_by_one(self, alice, bob, file_ticket):
        first = await file_ticket(alice)
        second = await file_ticket(bob)
        third = await file_ticket(alice)

        assert [t["ticket_number"] for t in (first, second, third)] == [number(1), number(2), number(3)]

    async def test_user_department_is_forced_to_profile(self, alice, file_ticket):
        ticket = await file_ticket(alice, data={"department": "Engineering", "priority": "Critical"})

        assert ticket["department"] == "Sales"
        assert ticket["priority"] == "Medium"

    async def test_admin_must_supply_department(self, client, admin):
        response = await client.post(
            "/tickets/",
            data={
                "equipment_type": "Laptop",
                "problem_description": "Battery swollen",
                "issue_date": "2025-03-10T09:30:00",
            },
            headers=admin.headers,
        )

        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "validation_error"
        assert body["errors"] == [{"field": "department", "message": "Department is required for admin"}]

    async def test_admin_files_for_any_department_with_priority(self, admin, file_ticket):
        ticket = await file_ticket(admin, data={"department": "HR", "priority": "High"})

        assert ticket["department"] == "HR"
        assert ticket["priority"] == "High"

    async def test_blank_problem_description_is_rejected(self, client, alice):
        response = await client.post(
            "/tickets/",
            data={"equipment_type": "PC", "problem_description": "   ", "issue_date": "2025-03-10T09:30:00"},
            headers=alice.headers,
        )

        assert response.status_code == 422
        assert response.json()["errors"][0]["field"] == "problem_description"

    async def test_missing_fields_are_reported_per_field(self, client, alice):
        response = await client.post("/tickets/", data={"equipment_type": "PC"}, headers=alice.headers)

        assert response.status_code == 422
        fields = {error["field"] for error in response.json()["errors"]}
        assert {"problem_description", "issue_date"} <= fields

    async def test_issue_date_without_offset_is_taken_as_utc(self, alice, file_ticket):
        naive = await file_ticket(alice, data={"issue_date": "2025-03-10T09:30:00"})
        offset = await file_ticket(alice, data={"issue_date": "2025-03-10T09:30:00+02:00"})

        assert naive["issue_date"].startswith("2025-03-10T09:30:00")
        assert offset["issue_date"].startswith("2025-03-10T07:30:00")

    async def test_duplicate_number_is_a_retryable_conflict(self, client, session, alice, file_ticket, monkeypatch):
        existing = await file_ticket(alice)

        async def reuse_existing_number(session, year):
            return existing["ticket_number"]

        monkeypatch.setattr(ticket_lifecycle, "allocate_ticket_number", reuse_existing_number)
        response = await client.post(
            "/tickets/",
            data={"equipment_type": "PC", "problem_description": "Fan noise", "issue_date": "2025-03-10T09:30:00"},
            headers=alice.headers,
        )

        assert response.status_code == 409
        assert response.json()["code"] == "conflict"
        assert (await session.exec(select(func.count()).select_from(Ticket))).one() == 1
        assert (await session.exec(select(func.count()).select_from(TicketUpdate))).one() == 1

        # resubmitting gets a fresh number
        monkeypatch.undo()
        retried = await file_ticket(alice)
        assert retried["ticket_number"] == number(2)

    async def test_other_integrity_errors_are_not_reported_as_duplicates(self, session):
        ghost = Permissions(
            user_id=uuid4(), username="ghost", role=UserRole.USER, department="Sales", is_privileged=False
        )
        data = TicketCreate(
            equipment_type=EquipmentType.PC,
            problem_description="Creator vanished mid-request",
            issue_date=datetime(2025, 3, 10, 9, 30),
        )

        with pytest.raises(IntegrityError):
            await ticket_lifecycle.create_ticket(session, ghost, data)

        assert (await session.exec(select(func.count()).select_from(Ticket))).one() == 0
        assert (await session.exec(select(func.count()).select_from(TicketUpdate))).one() == 0

    async def test_requires_authentication(self, client):
        response = await client.get("/tickets/")
        assert response.status_code == 401

    async def test_concurrent_creation_yields_distinct_sequential_numbers(self, client, alice, bob):
        async def create(user):
            return await client.post(
                "/tickets/",
                data={
                    "equipment_type": "PC",
                    "problem_description": "Keyboard not working",
                    "issue_date": "2025-03-10T09:30:00",
                },
                headers=user.headers,
            )

        responses = await asyncio.gather(*(create(alice if i % 2 else bob) for i in range(8)))

        assert all(r.status_code == 201 for r in responses), [r.text for r in responses]
        numbers = sorted(r.json()["ticket_number"] for r in responses)
        assert numbers == [number(i) for i in range(1, 9)]


class TestEquipmentTypePolicy:
    async def test_reject_is_default(self, client, alice):
        response = await client.post(
            "/tickets/",
            data={"equipment_type": "Printer", "problem_description": "Paper jam", "issue_date": "2025-03-10T09:30:00"},
            headers=alice.headers,
        )

        assert response.status_code == 422
        assert response.json()["errors"][0]["field"] == "equipment_type"

    async def test_coerce_stores_other(self, alice, file_ticket, monkeypatch):
        monkeypatch.setattr(settings, "equipment_type_policy", "coerce")

        ticket = await file_ticket(alice, data={"equipment_type": "Internet"})

        assert ticket["equipment_type"] == "Other"

    async def test_widen_stores_value_as_given(self, alice, file_ticket, monkeypatch):
        monkeypatch.setattr(settings, "equipment_type_policy", "widen")

        ticket = await file_ticket(alice, data={"equipment_type": "Printer"})

        assert ticket["equipment_type"] == "Printer"

    async def test_unknown_value_is_always_rejected(self, client, alice, monkeypatch):
        monkeypatch.setattr(settings, "equipment_type_policy", "widen")

        response = await client.post(
            "/tickets/",
            data={"equipment_type": "Toaster", "problem_description": "Smoke", "issue_date": "2025-03-10T09:30:00"},
            headers=alice.headers,
        )

        assert response.status_code == 422


class TestLifecycle:
    async def test_full_scenario(self, client, alice, admin, file_ticket):
        ticket = await file_ticket(alice)
        assert ticket["ticket_number"] == number(1)
        assert ticket["status"] == "Pending"

        response = await client.put(
            f"/tickets/{ticket['id']}/status",
            json={"status": "In Progress", "notes": "starting work"},
            headers=admin.headers,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "In Progress"

        response = await client.get(f"/tickets/{ticket['id']}/history", headers=alice.headers)
        updates = response.json()["updates"]
        assert len(updates) == 2
        assert updates[1]["update_type"] == "status_change"
        assert updates[1]["old_value"] == "Pending"
        assert updates[1]["new_value"] == "In Progress"
        assert updates[1]["notes"] == "starting work"
        assert updates[1]["user"]["username"] == "admin"

        response = await client.put(
            f"/tickets/{ticket['id']}/status", json={"status": "Closed"}, headers=admin.headers
        )
        assert response.status_code == 200

        response = await client.post(
            f"/tickets/{ticket['id']}/notes", json={"notes": "still broken"}, headers=alice.headers
        )
        assert response.status_code == 400
        assert response.json()["code"] == "forbidden_state"

    async def test_closed_ticket_rejects_every_mutation(self, client, alice, admin, file_ticket):
        ticket = await file_ticket(alice)
        url = f"/tickets/{ticket['id']}"
        await client.put(f"{url}/status", json={"status": "Closed"}, headers=admin.headers)

        attempts = [
            client.put(f"{url}/status", json={"status": "In Progress"}, headers=admin.headers),
            client.post(f"{url}/notes", json={"notes": "reopen please"}, headers=admin.headers),
            client.put(f"{url}/assignment", json={"assigned_to": str(admin.id)}, headers=admin.headers),
            client.delete(url, headers=admin.headers),
            client.delete(url, headers=alice.headers),
        ]
        for attempt in attempts:
            response = await attempt
            assert response.status_code == 400, response.text
            assert response.json()["code"] == "forbidden_state"

        response = await client.get(url, headers=admin.headers)
        assert response.json()["ticket"]["status"] == "Closed"
        assert len(response.json()["updates"]) == 2

    async def test_backward_transitions_are_allowed(self, client, alice, admin, file_ticket):
        ticket = await file_ticket(alice)
        url = f"/tickets/{ticket['id']}/status"

        for status in ("Done", "In Progress", "On Hold", "Pending"):
            response = await client.put(url, json={"status": status}, headers=admin.headers)
            assert response.status_code == 200
            assert response.json()["status"] == status

    async def test_invalid_status_is_rejected(self, client, alice, admin, file_ticket):
        ticket = await file_ticket(alice)

        response = await client.put(
            f"/tickets/{ticket['id']}/status", json={"status": "Resolved"}, headers=admin.headers
        )

        assert response.status_code == 422
        assert response.json()["errors"][0]["field"] == "status"

    async def test_regular_user_cannot_change_status(self, client, alice, file_ticket):
        ticket = await file_ticket(alice)

        response = await client.put(
            f"/tickets/{ticket['id']}/status", json={"status": "Done"}, headers=alice.headers
        )

        assert response.status_code == 403
        assert response.json()["code"] == "permission_denied"

    async def test_it_role_follows_configuration(self, client, alice, it_staff, file_ticket, monkeypatch):
        ticket = await file_ticket(alice)
        url = f"/tickets/{ticket['id']}/status"

        response = await client.put(url, json={"status": "In Progress"}, headers=it_staff.headers)
        assert response.status_code == 200

        monkeypatch.setattr(settings, "it_role_privileged", False)
        response = await client.put(url, json={"status": "Done"}, headers=it_staff.headers)
        assert response.status_code == 403

    async def test_creator_adds_note(self, client, alice, file_ticket):
        ticket = await file_ticket(alice)

        response = await client.post(
            f"/tickets/{ticket['id']}/notes", json={"notes": "Happens every morning"}, headers=alice.headers
        )

        assert response.status_code == 201
        note = response.json()
        assert note["update_type"] == "note"
        assert note["old_value"] is None
        assert note["new_value"] is None
        assert note["user"]["username"] == "alice"

        response = await client.get(f"/tickets/{ticket['id']}", headers=alice.headers)
        body = response.json()
        assert body["ticket"]["status"] == "Pending"
        # newest first
        assert [u["update_type"] for u in body["updates"]] == ["note", "status_change"]

    async def test_empty_note_is_rejected(self, client, alice, file_ticket):
        ticket = await file_ticket(alice)

        response = await client.post(
            f"/tickets/{ticket['id']}/notes", json={"notes": "   "}, headers=alice.headers
        )

        assert response.status_code == 422


class TestAssignment:
    async def test_assign_and_unassign(self, client, alice, admin, it_staff, file_ticket):
        ticket = await file_ticket(alice)
        url = f"/tickets/{ticket['id']}/assignment"

        response = await client.put(
            url, json={"assigned_to": str(it_staff.id), "notes": "yours"}, headers=admin.headers
        )
        assert response.status_code == 200
        assert response.json()["assigned_to"] == str(it_staff.id)
        assert response.json()["assignee"]["username"] == "ivan"

        response = await client.put(url, json={"assigned_to": None}, headers=admin.headers)
        assert response.status_code == 200
        assert response.json()["assigned_to"] is None

        response = await client.get(f"/tickets/{ticket['id']}/history", headers=admin.headers)
        assignments = [u for u in response.json()["updates"] if u["update_type"] == "assignment"]
        assert [(u["old_value"], u["new_value"]) for u in assignments] == [(None, "ivan"), ("ivan", None)]

    async def test_cannot_assign_to_regular_user(self, client, alice, bob, admin, file_ticket):
        ticket = await file_ticket(alice)

        response = await client.put(
            f"/tickets/{ticket['id']}/assignment", json={"assigned_to": str(bob.id)}, headers=admin.headers
        )

        assert response.status_code == 422
        assert response.json()["errors"][0]["field"] == "assigned_to"

    async def test_regular_user_cannot_assign(self, client, alice, admin, file_ticket):
        ticket = await file_ticket(alice)

        response = await client.put(
            f"/tickets/{ticket['id']}/assignment", json={"assigned_to": str(admin.id)}, headers=alice.headers
        )

        assert response.status_code == 403


class TestScoping:
    async def test_user_lists_only_own_tickets(self, client, alice, bob, file_ticket):
        await file_ticket(alice)
        await file_ticket(bob)
        await file_ticket(bob)

        response = await client.get(
            "/tickets/", params={"created_by": str(bob.id)}, headers=alice.headers
        )

        assert response.status_code == 200
        body = response.json()
        assert {t["created_by"] for t in body["tickets"]} == {str(alice.id)}
        assert body["pagination"] == {"current": 1, "total": 1, "total_items": 1}

    async def test_admin_lists_and_filters(self, client, alice, bob, admin, file_ticket):
        await file_ticket(alice, data={"problem_description": "Printer offline"})
        await file_ticket(bob)
        await file_ticket(bob)

        response = await client.get("/tickets/", headers=admin.headers)
        assert response.json()["pagination"]["total_items"] == 3

        response = await client.get("/tickets/", params={"created_by": str(bob.id)}, headers=admin.headers)
        assert response.json()["pagination"]["total_items"] == 2

        response = await client.get("/tickets/", params={"department": "Sales"}, headers=admin.headers)
        assert [t["created_by"] for t in response.json()["tickets"]] == [str(alice.id)]

        response = await client.get("/tickets/", params={"search": "printer"}, headers=admin.headers)
        assert response.json()["pagination"]["total_items"] == 1

        response = await client.get("/tickets/", params={"status": "Done"}, headers=admin.headers)
        assert response.json()["tickets"] == []

    async def test_pagination(self, client, alice, file_ticket):
        for _ in range(3):
            await file_ticket(alice)

        response = await client.get("/tickets/", params={"page": 2, "limit": 2}, headers=alice.headers)

        body = response.json()
        assert len(body["tickets"]) == 1
        assert body["pagination"] == {"current": 2, "total": 2, "total_items": 3}
        # newest first: the last page holds the first ticket
        assert body["tickets"][0]["ticket_number"] == number(1)

    async def test_other_users_ticket_is_not_found(self, client, alice, bob, file_ticket):
        ticket = await file_ticket(bob)
        url = f"/tickets/{ticket['id']}"

        for response in (
            await client.get(url, headers=alice.headers),
            await client.get(f"{url}/history", headers=alice.headers),
            await client.post(f"{url}/notes", json={"notes": "hi"}, headers=alice.headers),
            await client.delete(url, headers=alice.headers),
        ):
            assert response.status_code == 404
            assert response.json()["code"] == "not_found"


class TestDeleteTicket:
    async def test_delete_removes_history_and_photo(self, client, session, alice, admin, file_ticket, upload_dir):
        ticket = await file_ticket(alice, files={"photo": ("screen.png", PNG_BYTES, "image/png")})
        assert ticket["photo_url"].startswith("/uploads/ticket-")
        photo_file = upload_dir / ticket["photo_url"].rsplit("/", 1)[1]
        assert photo_file.exists()
        response = await client.get(ticket["photo_url"])
        assert response.status_code == 200
        assert response.content == PNG_BYTES

        await client.put(f"/tickets/{ticket['id']}/status", json={"status": "Done"}, headers=admin.headers)

        response = await client.delete(f"/tickets/{ticket['id']}", headers=alice.headers)
        assert response.status_code == 200

        response = await client.get(f"/tickets/{ticket['id']}", headers=admin.headers)
        assert response.status_code == 404
        assert not photo_file.exists()
        response = await client.get(ticket["photo_url"])
        assert response.status_code == 404

        result = await session.exec(
            select(func.count()).select_from(TicketUpdate).where(TicketUpdate.ticket_id == UUID(ticket["id"]))
        )
        assert result.one() == 0

    async def test_missing_photo_file_does_not_block_deletion(self, client, alice, file_ticket, upload_dir):
        ticket = await file_ticket(alice, files={"photo": ("screen.png", PNG_BYTES, "image/png")})
        (upload_dir / ticket["photo_url"].rsplit("/", 1)[1]).unlink()

        response = await client.delete(f"/tickets/{ticket['id']}", headers=alice.headers)

        assert response.status_code == 200

    async def test_non_image_upload_is_rejected(self, client, alice, upload_dir):
        response = await client.post(
            "/tickets/",
            data={"equipment_type": "PC", "problem_description": "x", "issue_date": "2025-03-10T09:30:00"},
            files={"photo": ("notes.png", b"not really a png", "image/png")},
            headers=alice.headers,
        )

        assert response.status_code == 422
        assert response.json()["errors"][0]["field"] == "photo"
        assert list(upload_dir.iterdir()) == []
