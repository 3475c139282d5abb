from datetime import datetime, timezone


class TestDashboard:
    async def test_totals_and_breakdowns(self, client, admin, alice, bob, file_ticket):
        first = await file_ticket(alice)
        await file_ticket(alice)
        await file_ticket(bob)
        await client.put(f"/tickets/{first['id']}/status", json={"status": "Done"}, headers=admin.headers)

        response = await client.get("/stats/dashboard", headers=admin.headers)

        assert response.status_code == 200
        stats = response.json()
        assert stats["total_tickets"] == 3
        assert stats["recent_tickets"] == 3
        assert stats["status_stats"] == [{"key": "Pending", "count": 2}, {"key": "Done", "count": 1}]
        assert stats["department_stats"] == [{"key": "Sales", "count": 2}, {"key": "Finance", "count": 1}]
        assert stats["avg_resolution_hours"] is not None
        assert stats["avg_resolution_hours"] >= 0

    async def test_empty_database(self, client, admin):
        response = await client.get("/stats/dashboard", headers=admin.headers)

        assert response.json()["total_tickets"] == 0
        assert response.json()["avg_resolution_hours"] is None

    async def test_reports_are_privileged(self, client, alice):
        for path in (
            "/stats/dashboard",
            "/stats/team",
            "/stats/departments",
            "/stats/report/monthly",
            "/stats/my-tickets",
            "/stats/unassigned",
            "/stats/recurring-problems",
        ):
            response = await client.get(path, headers=alice.headers)
            assert response.status_code == 403, path


class TestTeamAndDepartments:
    async def test_team_lists_assignable_users(self, client, admin, alice, it_staff):
        response = await client.get("/stats/team", headers=admin.headers)
        assert [u["username"] for u in response.json()] == ["admin", "ivan"]

    async def test_departments(self, client, admin, alice, bob):
        response = await client.get("/stats/departments", headers=admin.headers)
        assert response.json() == ["Finance", "IT Department", "Sales"]


class TestTicketQueues:
    async def test_my_tickets_and_unassigned(self, client, admin, it_staff, alice, file_ticket):
        mine = await file_ticket(alice)
        await file_ticket(alice)
        closed = await file_ticket(alice)
        await client.put(
            f"/tickets/{mine['id']}/assignment", json={"assigned_to": str(it_staff.id)}, headers=admin.headers
        )
        await client.put(f"/tickets/{closed['id']}/status", json={"status": "Closed"}, headers=admin.headers)

        response = await client.get("/stats/my-tickets", headers=it_staff.headers)
        body = response.json()
        assert [t["id"] for t in body["tickets"]] == [mine["id"]]
        assert body["pagination"]["total_items"] == 1

        response = await client.get("/stats/my-tickets", params={"status": "Done"}, headers=it_staff.headers)
        assert response.json()["tickets"] == []

        response = await client.get("/stats/unassigned", headers=admin.headers)
        assert response.json()["pagination"]["total_items"] == 1


class TestReports:
    async def test_monthly_report(self, client, admin, alice, bob, file_ticket):
        await file_ticket(alice)
        await file_ticket(bob, data={"equipment_type": "Laptop"})
        now = datetime.now(timezone.utc)

        response = await client.get("/stats/report/monthly", headers=admin.headers)

        report = response.json()
        assert report["period"] == {"month": now.month, "year": now.year}
        assert report["total_tickets"] == 2
        assert len(report["tickets"]) == 2
        assert {item["key"] for item in report["equipment_breakdown"]} == {"PC", "Laptop"}

    async def test_monthly_report_for_empty_month(self, client, admin, alice, file_ticket):
        await file_ticket(alice)

        response = await client.get(
            "/stats/report/monthly", params={"month": 1, "year": 2001}, headers=admin.headers
        )

        assert response.json()["total_tickets"] == 0
        assert response.json()["status_breakdown"] == []

    async def test_recurring_problems(self, client, admin, alice, bob, file_ticket):
        await file_ticket(alice, data={"problem_description": "VPN drops"})
        await file_ticket(bob, data={"problem_description": "VPN drops"})
        await file_ticket(bob, data={"problem_description": "VPN drops"})
        await file_ticket(alice, data={"problem_description": "Mouse squeaks"})

        response = await client.get("/stats/recurring-problems", headers=admin.headers)

        problems = response.json()["recurring_problems"]
        assert len(problems) == 1
        assert problems[0]["problem_description"] == "VPN drops"
        assert problems[0]["occurrence_count"] == 3
