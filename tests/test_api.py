"""
Tests for the HTTP endpoints.

The ledger and receipt store are injected through dependency overrides,
so no file under the working directory is touched.
"""

from __future__ import annotations

import io
import os

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from main import app, get_ledger, get_receipt_store
from utils.receiptStore import ReceiptStore


@pytest.fixture
def client(ledger, tmp_path):
    app.dependency_overrides[get_ledger] = lambda: ledger
    app.dependency_overrides[get_receipt_store] = lambda: ReceiptStore(directory=str(tmp_path))
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def group_id(client) -> str:
    response = client.post("/groups", json={"name": "Flat", "color": "green", "icon": "home"})
    groupId = response.json()["group"]["id"]
    for userId in ("u2", "u3"):
        client.post(f"/groups/{groupId}/members", json={"userId": userId})
    return groupId


def _post_expense(client, groupId, **fields):
    body = {
        "groupId": groupId,
        "title": "Groceries",
        "amount": 300,
        "category": "food",
        "paidBy": "u1",
        "splitBetween": ["u1", "u2", "u3"],
    }
    body.update(fields)
    return client.post("/expenses", json=body)


class TestServiceEndpoints:
    def test_root(self, client):
        assert client.get("/").json()["status"] == "operational"

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"

    def test_options(self, client):
        data = client.get("/options").json()
        assert len(data["categories"]) == 9
        assert data["categories"][0] == {"value": "food", "label": "Food & Dining", "icon": "utensils"}
        assert "indigo" in data["colors"]


class TestGroupEndpoints:
    def test_create_and_list(self, client, group_id):
        data = client.get("/groups").json()

        assert [g["id"] for g in data["groups"]] == [group_id]
        assert data["groups"][0]["memberIds"] == ["u1", "u2", "u3"]

    def test_get_group_resolves_members(self, client, group_id):
        data = client.get(f"/groups/{group_id}").json()
        assert [m["name"] for m in data["members"]] == ["Ana Lima", "Bruno Costa", "Carla Dias"]

    def test_empty_name_is_bad_request(self, client):
        response = client.post("/groups", json={"name": ""})

        assert response.status_code == 400
        assert response.json()["status"] == "error"

    def test_unknown_group_is_not_found(self, client):
        response = client.get("/groups/group-missing")

        assert response.status_code == 404
        assert "group-missing" in response.json()["message"]

    def test_patch_group(self, client, group_id):
        response = client.patch(f"/groups/{group_id}", json={"description": "2B"})

        assert response.status_code == 200
        assert response.json()["group"]["description"] == "2B"
        assert response.json()["group"]["name"] == "Flat"

    def test_leader_outside_group_conflicts(self, client, group_id):
        response = client.patch(f"/groups/{group_id}", json={"leaderId": "u4"})
        assert response.status_code == 409

    def test_delete_group_cascades(self, client, group_id):
        expenseId = _post_expense(client, group_id).json()["expense_id"]

        response = client.delete(f"/groups/{group_id}")

        assert response.status_code == 200
        assert response.json()["activeGroupId"] is None
        assert client.get(f"/expenses/{expenseId}").status_code == 404

    def test_active_group(self, client, group_id):
        assert client.put("/active-group", json={"groupId": group_id}).status_code == 200
        assert client.get("/active-group").json()["activeGroupId"] == group_id
        assert client.put("/active-group", json={"groupId": "nope"}).status_code == 404


class TestExpenseEndpoints:
    def test_create_expense(self, client, group_id):
        response = _post_expense(client, group_id)

        assert response.status_code == 200
        expense = response.json()["expense"]
        assert expense["id"] == response.json()["expense_id"]
        assert expense["category"] == "food"

    def test_non_positive_amount(self, client, group_id):
        assert _post_expense(client, group_id, amount=0).status_code == 400

    def test_payer_outside_group(self, client, group_id):
        assert _post_expense(client, group_id, paidBy="u4").status_code == 409

    def test_patch_and_delete(self, client, group_id):
        expenseId = _post_expense(client, group_id).json()["expense_id"]

        patched = client.patch(f"/expenses/{expenseId}", json={"amount": 150})
        assert patched.json()["expense"]["amount"] == 150

        assert client.patch(f"/expenses/{expenseId}", json={"splitBetween": []}).status_code == 400
        assert client.delete(f"/expenses/{expenseId}").status_code == 200
        assert client.delete(f"/expenses/{expenseId}").status_code == 404

    def test_group_expenses_listed(self, client, group_id):
        _post_expense(client, group_id)
        _post_expense(client, group_id, title="Rent", amount=900, category="rent")

        expenses = client.get(f"/groups/{group_id}/expenses").json()["expenses"]
        assert sorted(e["title"] for e in expenses) == ["Groceries", "Rent"]


class TestBalanceEndpoints:
    def test_summary_and_balances(self, client, group_id):
        _post_expense(client, group_id)
        _post_expense(client, group_id, amount=90, paidBy="u2", splitBetween=["u2", "u3"])

        summary = client.get(f"/groups/{group_id}/summary").json()["summary"]

        assert summary["total"] == pytest.approx(390)
        assert summary["averagePerPerson"] == pytest.approx(130)
        assert summary["leader"]["id"] == "u1"
        balances = {b["userId"]: b["balance"] for b in summary["balances"]}
        assert balances == pytest.approx({"u1": 200, "u2": -55, "u3": -145})

        single = client.get(f"/groups/{group_id}/balances/u3").json()
        assert single["balance"] == pytest.approx(-145)

    def test_settlements(self, client, group_id):
        _post_expense(client, group_id)

        settlements = client.get(f"/groups/{group_id}/settlements").json()["settlements"]

        assert settlements == [
            {"fromUserId": "u2", "toUserId": "u1", "amount": 100.0},
            {"fromUserId": "u3", "toUserId": "u1", "amount": 100.0},
        ]


class TestReceiptUpload:
    def test_upload_image(self, client, tmp_path):
        buffer = io.BytesIO()
        Image.new("RGB", (50, 50), color=(10, 20, 30)).save(buffer, format="JPEG")

        response = client.post(
            "/receipts", files={"file": ("receipt.jpg", buffer.getvalue(), "image/jpeg")}
        )

        assert response.status_code == 200
        assert response.json()["receipt"].startswith(str(tmp_path))

    def test_upload_rejects_non_image(self, client):
        response = client.post("/receipts", files={"file": ("notes.txt", b"hello", "text/plain")})
        assert response.status_code == 400


class TestReceiptCleanup:
    """Stored receipts are removed once no expense references them."""

    @staticmethod
    def _upload(client) -> str:
        buffer = io.BytesIO()
        Image.new("RGB", (20, 20), color=(90, 60, 30)).save(buffer, format="JPEG")
        response = client.post(
            "/receipts", files={"file": ("receipt.jpg", buffer.getvalue(), "image/jpeg")}
        )
        return response.json()["receipt"]

    def test_shared_receipt_kept_while_referenced(self, client, group_id):
        reference = self._upload(client)
        first = _post_expense(client, group_id, receipt=reference).json()["expense_id"]
        second = _post_expense(client, group_id, receipt=reference).json()["expense_id"]

        assert client.delete(f"/expenses/{first}").status_code == 200
        assert os.path.exists(reference)
        assert client.get(f"/expenses/{second}").json()["expense"]["receipt"] == reference

        client.delete(f"/expenses/{second}")
        assert not os.path.exists(reference)

    def test_shared_receipt_survives_group_deletion(self, client, group_id):
        reference = self._upload(client)
        other = client.post("/groups", json={"name": "Solo"}).json()["group"]["id"]
        _post_expense(client, group_id, receipt=reference)
        kept = _post_expense(client, other, splitBetween=["u1"], receipt=reference).json()["expense_id"]

        client.delete(f"/groups/{group_id}")

        assert os.path.exists(reference)
        assert client.get(f"/expenses/{kept}").json()["expense"]["receipt"] == reference

    def test_replaced_receipt_removed(self, client, group_id):
        old, new = self._upload(client), self._upload(client)
        expenseId = _post_expense(client, group_id, receipt=old).json()["expense_id"]

        response = client.patch(f"/expenses/{expenseId}", json={"receipt": new})

        assert response.json()["expense"]["receipt"] == new
        assert not os.path.exists(old)
        assert os.path.exists(new)

    def test_replaced_receipt_kept_if_shared(self, client, group_id):
        old, new = self._upload(client), self._upload(client)
        expenseId = _post_expense(client, group_id, receipt=old).json()["expense_id"]
        _post_expense(client, group_id, receipt=old)

        client.patch(f"/expenses/{expenseId}", json={"receipt": new})

        assert os.path.exists(old)

    def test_unchanged_receipt_kept(self, client, group_id):
        reference = self._upload(client)
        expenseId = _post_expense(client, group_id, receipt=reference).json()["expense_id"]

        client.patch(f"/expenses/{expenseId}", json={"title": "Market"})

        assert os.path.exists(reference)
