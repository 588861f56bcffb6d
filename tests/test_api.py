"""HTTP API tests — routing, actor header, RFC 7807 errors, JSON shapes.

Data is seeded through its own committed session before any request is made.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

from leave_ledger.common.constants import LeaveStatus
from tests.conftest import (
    ACTOR_HEADERS,
    TestSessionFactory,
    seed_entitlement,
    seed_leave_type,
    seed_request,
)

API = "/api/v1/leave-ledger"


async def _seed_balance(**kwargs):
    async with TestSessionFactory() as session:
        annual = await seed_leave_type(session)
        ent = await seed_entitlement(session, annual, **kwargs)
        await session.commit()
    return annual, ent


async def _seed_pending_request(days: str = "3"):
    async with TestSessionFactory() as session:
        annual = await seed_leave_type(session)
        ent = await seed_entitlement(session, annual, pending=Decimal(days))
        request = await seed_request(
            session, annual, employee_id=ent.employee_id,
            start=date(2026, 5, 4), days=Decimal(days),
        )
        await session.commit()
    return ent, request


# ═════════════════════════════════════════════════════════════════════
# SYSTEM
# ═════════════════════════════════════════════════════════════════════


class TestSystem:

    async def test_health(self, client):
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    async def test_mutation_requires_actor_header(self, client):
        annual, _ = await _seed_balance()
        resp = await client.put(f"{API}/entitlements", json={
            "employee_id": str(uuid.uuid4()),
            "leave_type_id": str(annual.id),
            "yearly_entitlement": "21",
        })
        assert resp.status_code == 422
        assert resp.headers["content-type"].startswith("application/problem+json")
        assert "X-Actor-Id" in resp.json()["errors"]

    async def test_malformed_actor_header(self, client):
        resp = await client.post(
            f"{API}/employees/{uuid.uuid4()}/recalc",
            headers={"X-Actor-Id": "not-a-uuid"},
        )
        assert resp.status_code == 422

    async def test_request_validation_is_problem_json(self, client):
        resp = await client.post(
            f"{API}/adjustments", json={"amount": "1"}, headers=ACTOR_HEADERS,
        )
        assert resp.status_code == 422
        body = resp.json()
        assert body["type"].endswith("/validation-error")
        assert "employee_id" in body["errors"]


# ═════════════════════════════════════════════════════════════════════
# ENTITLEMENTS & ADJUSTMENTS
# ═════════════════════════════════════════════════════════════════════


class TestEntitlementRoutes:

    async def test_assign_entitlement(self, client):
        annual, _ = await _seed_balance()
        employee_id = str(uuid.uuid4())

        resp = await client.put(f"{API}/entitlements", headers=ACTOR_HEADERS, json={
            "employee_id": employee_id,
            "leave_type_id": str(annual.id),
            "yearly_entitlement": "18",
            "reason": "Contract terms",
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["employee_id"] == employee_id
        assert Decimal(body["yearly_entitlement"]) == Decimal("18")
        assert Decimal(body["remaining"]) == Decimal("18")
        assert body["leave_type"]["code"] == "annual"

    async def test_assign_rejects_zero(self, client):
        annual, _ = await _seed_balance()
        resp = await client.put(f"{API}/entitlements", headers=ACTOR_HEADERS, json={
            "employee_id": str(uuid.uuid4()),
            "leave_type_id": str(annual.id),
            "yearly_entitlement": "0",
        })
        assert resp.status_code == 422
        assert "yearly_entitlement" in resp.json()["errors"]

    async def test_assign_below_consumed_needs_override(self, client):
        annual, ent = await _seed_balance(taken=Decimal("15"))
        payload = {
            "employee_id": str(ent.employee_id),
            "leave_type_id": str(annual.id),
            "yearly_entitlement": "5",
        }

        resp = await client.put(f"{API}/entitlements", headers=ACTOR_HEADERS, json=payload)
        assert resp.status_code == 422
        assert resp.json()["type"].endswith("/insufficient-balance")

        resp = await client.put(
            f"{API}/entitlements", headers=ACTOR_HEADERS,
            json={**payload, "allow_negative": True},
        )
        assert resp.status_code == 200
        assert Decimal(resp.json()["remaining"]) == Decimal("-10")

    async def test_balances(self, client):
        _, ent = await _seed_balance(taken=Decimal("4"))

        resp = await client.get(
            f"{API}/entitlements/{ent.employee_id}", params={"as_of": "2026-05-01"},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["as_of"] == "2026-05-01"
        [balance] = body["balances"]
        assert Decimal(balance["remaining"]) == Decimal("17")


class TestAdjustmentRoutes:

    async def test_deduct_then_overdraw(self, client):
        annual, ent = await _seed_balance()
        payload = {
            "employee_id": str(ent.employee_id),
            "leave_type_id": str(annual.id),
            "adjustment_type": "deduct",
            "amount": "5",
            "reason": "Backdated leave",
        }

        resp = await client.post(f"{API}/adjustments", json=payload, headers=ACTOR_HEADERS)
        assert resp.status_code == 201
        body = resp.json()
        assert Decimal(body["entitlement"]["remaining"]) == Decimal("16")
        assert body["adjustment"]["source"] == "manual"
        assert body["adjustment"]["actor_id"] == ACTOR_HEADERS["X-Actor-Id"]

        resp = await client.post(
            f"{API}/adjustments", json={**payload, "amount": "20"}, headers=ACTOR_HEADERS,
        )
        assert resp.status_code == 422
        body = resp.json()
        assert body["type"].endswith("/insufficient-balance")
        assert "balance" in body["errors"]

        resp = await client.post(
            f"{API}/adjustments",
            json={**payload, "amount": "20", "allow_negative": True},
            headers=ACTOR_HEADERS,
        )
        assert resp.status_code == 201
        assert Decimal(resp.json()["entitlement"]["remaining"]) == Decimal("-4")

    async def test_adjustment_history_is_paginated(self, client):
        annual, ent = await _seed_balance()
        for _ in range(3):
            resp = await client.post(f"{API}/adjustments", headers=ACTOR_HEADERS, json={
                "employee_id": str(ent.employee_id),
                "leave_type_id": str(annual.id),
                "adjustment_type": "add",
                "amount": "1",
                "reason": "Comp-off",
            })
            assert resp.status_code == 201

        resp = await client.get(
            f"{API}/entitlements/{ent.employee_id}/adjustments",
            params={"page": 1, "page_size": 2},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert len(body["data"]) == 2
        assert body["meta"]["total"] == 3
        assert body["meta"]["has_next"] is True

    async def test_recalc(self, client):
        async with TestSessionFactory() as session:
            annual = await seed_leave_type(session)
            ent = await seed_entitlement(session, annual, taken=Decimal("7"))
            await seed_request(
                session, annual, employee_id=ent.employee_id,
                start=date(2026, 3, 2), days=Decimal("2"), status=LeaveStatus.approved,
            )
            await session.commit()

        resp = await client.post(
            f"{API}/employees/{ent.employee_id}/recalc", headers=ACTOR_HEADERS,
        )
        assert resp.status_code == 200
        [line] = resp.json()["entitlements"]
        assert Decimal(line["previous_taken"]) == Decimal("7")
        assert Decimal(line["taken"]) == Decimal("2")
        assert line["changed"] is True


# ═════════════════════════════════════════════════════════════════════
# BULK RUNS
# ═════════════════════════════════════════════════════════════════════


class TestBulkRoutes:

    async def test_accrual_run(self, client):
        await _seed_balance()
        resp = await client.post(
            f"{API}/accrual/run",
            json={"reference_date": "2026-06-15", "method": "monthly"},
            headers=ACTOR_HEADERS,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["processed"] == 1
        assert body["failures"] == []
        assert Decimal(body["total_accrued"]) == Decimal("1.75")

    async def test_accrual_rejects_unknown_method(self, client):
        resp = await client.post(
            f"{API}/accrual/run",
            json={"reference_date": "2026-06-15", "method": "fortnightly"},
            headers=ACTOR_HEADERS,
        )
        assert resp.status_code == 422

    async def test_carry_forward_preview_then_commit(self, client):
        _, ent = await _seed_balance(taken=Decimal("6"))

        resp = await client.post(
            f"{API}/carry-forward/preview", json={"reference_date": "2026-12-31"},
        )
        assert resp.status_code == 200
        body = resp.json()
        [detail] = body["details"]
        assert Decimal(detail["carried_forward"]) == Decimal("10")
        assert Decimal(detail["expired"]) == Decimal("5")
        assert detail["expiry_date"] == "2027-06-30"

        resp = await client.post(
            f"{API}/carry-forward",
            json={
                "reference_date": "2026-12-31",
                "leave_type_rules": {"annual": {"cap": "12", "expiryMonths": 3}},
            },
            headers=ACTOR_HEADERS,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["processed"] == 1
        assert Decimal(body["total_carried_forward"]) == Decimal("12")
        assert Decimal(body["total_expired"]) == Decimal("3")

        resp = await client.get(
            f"{API}/carry-forward/report",
            params={"employee_id": str(ent.employee_id), "as_of": "2027-01-10"},
        )
        assert resp.status_code == 200
        [row] = resp.json()["report"]
        assert Decimal(row["carry_forward"]) == Decimal("12")
        assert row["carry_forward_expiry"] == "2027-03-31"

    async def test_carry_forward_override(self, client):
        annual, ent = await _seed_balance(carry_forward=Decimal("3"))
        resp = await client.put(
            f"{API}/carry-forward/override",
            json={
                "employee_id": str(ent.employee_id),
                "leave_type_id": str(annual.id),
                "carry_forward_days": "5",
                "expiry_date": "2027-03-31",
                "reason": "Approved exception",
            },
            headers=ACTOR_HEADERS,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert Decimal(body["previous_carry_forward"]) == Decimal("3")
        assert Decimal(body["new_carry_forward"]) == Decimal("5")


# ═════════════════════════════════════════════════════════════════════
# REQUESTS & SUSPENSIONS
# ═════════════════════════════════════════════════════════════════════


class TestRequestRoutes:

    async def test_finalize_approve(self, client):
        ent, request = await _seed_pending_request()
        resp = await client.post(
            f"{API}/requests/{request.id}/finalize",
            json={"decision": "approve"},
            headers=ACTOR_HEADERS,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["request"]["status"] == "approved"
        assert body["request"]["finalized_by"] == ACTOR_HEADERS["X-Actor-Id"]
        assert Decimal(body["entitlement"]["taken"]) == Decimal("3")
        assert Decimal(body["entitlement"]["pending"]) == Decimal("0")

    async def test_override_needs_reason(self, client):
        _, request = await _seed_pending_request()
        resp = await client.post(
            f"{API}/requests/{request.id}/finalize",
            json={"decision": "reject", "is_override": True},
            headers=ACTOR_HEADERS,
        )
        assert resp.status_code == 422
        assert "reason" in resp.json()["errors"]

    async def test_finalize_unknown_request(self, client):
        resp = await client.post(
            f"{API}/requests/{uuid.uuid4()}/finalize",
            json={"decision": "approve"},
            headers=ACTOR_HEADERS,
        )
        assert resp.status_code == 404
        assert resp.json()["type"].endswith("/not-found")

    async def test_flag_irregular(self, client):
        _, request = await _seed_pending_request()
        resp = await client.put(
            f"{API}/requests/{request.id}/flag",
            json={"flagged": True, "reason": "Adjacent to public holiday"},
            headers=ACTOR_HEADERS,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["flagged_irregular"] is True
        assert body["irregular_reason"] == "Adjacent to public holiday"


class TestSuspensionRoutes:

    async def test_preview_needs_no_actor(self, client):
        resp = await client.post(
            f"{API}/suspensions/preview",
            json={"from_date": "2026-06-01", "to_date": "2026-06-12"},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["working_days"] == 10
        assert body["month_working_days"] == 22
        assert Decimal(body["adjustment_days"]) == Decimal("0.7955")

    async def test_preview_rejects_reversed_range(self, client):
        resp = await client.post(
            f"{API}/suspensions/preview",
            json={"from_date": "2026-06-12", "to_date": "2026-06-01"},
        )
        assert resp.status_code == 422

    async def test_apply(self, client):
        annual, ent = await _seed_balance()
        resp = await client.post(
            f"{API}/suspensions",
            json={
                "employee_id": str(ent.employee_id),
                "leave_type_id": str(annual.id),
                "suspension_type": "unpaid",
                "from_date": "2026-06-01",
                "to_date": "2026-06-12",
                "reason": "Extended unpaid leave",
            },
            headers=ACTOR_HEADERS,
        )
        assert resp.status_code == 201
        body = resp.json()
        assert Decimal(body["suspension"]["adjustment_days"]) == Decimal("0.7955")
        assert Decimal(body["entitlement"]["taken"]) == Decimal("0.7955")


# ═════════════════════════════════════════════════════════════════════
# PATTERN ANALYSIS
# ═════════════════════════════════════════════════════════════════════


FRIDAYS = [date(2026, 1, 9), date(2026, 1, 23), date(2026, 2, 6), date(2026, 2, 20)]


class TestPatternRoutes:

    async def test_analyze_supplied_history(self, client):
        leaves = [
            {"from": d.isoformat(), "to": d.isoformat(), "durationDays": 1, "status": "approved"}
            for d in FRIDAYS + [date(2026, 3, 4)]
        ]
        leaves.append({"from": "garbage"})
        resp = await client.post(f"{API}/patterns/analyze", json={
            "leaves_by_employee": {
                "emp-1": {"employee_name": "Asha", "leaves": leaves},
                "emp-2": {"leaves": []},
            },
            "as_of": "2026-03-31",
        })
        assert resp.status_code == 200
        [result] = resp.json()
        assert result["employee_id"] == "emp-1"
        assert result["employee_name"] == "Asha"
        assert result["overall_risk_score"] == 70
        assert result["risk_level"] == "high"
        assert "monday_friday" in {p["type"] for p in result["patterns"]}

    async def test_team_patterns_from_stored_requests(self, client):
        employee_id = uuid.uuid4()
        async with TestSessionFactory() as session:
            annual = await seed_leave_type(session)
            for d in FRIDAYS + [date(2026, 3, 4)]:
                await seed_request(
                    session, annual, employee_id=employee_id, start=d,
                    status=LeaveStatus.approved, employee_name="Asha",
                )
            await seed_request(
                session, annual, employee_id=uuid.uuid4(), start=date(2026, 3, 17),
                status=LeaveStatus.approved,
            )
            await session.commit()

        resp = await client.get(f"{API}/patterns/team", params={"as_of": "2026-03-31"})
        assert resp.status_code == 200
        [result] = resp.json()
        assert result["employee_id"] == str(employee_id)
        assert result["employee_name"] == "Asha"
        assert result["overall_risk_score"] == 70

        resp = await client.get(
            f"{API}/patterns/team",
            params={"as_of": "2026-03-31", "employee_ids": [str(uuid.uuid4())]},
        )
        assert resp.json() == []
