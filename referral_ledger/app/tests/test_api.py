import uuid

from fastapi.testclient import TestClient


def _key() -> dict[str, str]:
    return {"Idempotency-Key": str(uuid.uuid4())}


def _register(client: TestClient, username: str, referrer: str | None = None) -> str:
    response = client.post(
        "/accounts",
        json={
            "username": username,
            "password": "s3cret-pass",
            "referrer_account_number": referrer,
        },
    )
    assert response.status_code == 201
    return response.json()["account_number"]


def _fund(client: TestClient, account_number: str, amount: str) -> None:
    deposit = client.post(
        f"/accounts/{account_number}/deposits",
        json={"tx_hash": f"0x{uuid.uuid4().hex}", "amount": amount},
        headers=_key(),
    )
    assert deposit.status_code == 201
    approved = client.post(f"/deposits/{deposit.json()['id']}/approve", json={})
    assert approved.status_code == 200


def test_register_starts_at_zero_and_login(client: TestClient) -> None:
    response = client.post(
        "/accounts", json={"username": "alice", "password": "s3cret-pass", "mobile": "5550100"}
    )
    assert response.status_code == 201
    account = response.json()
    assert len(account["account_number"]) == 10
    assert account["balance"] == "0.00"
    assert account["withdrawal_amount"] == "0.00"
    assert account["direct_business"] == "0.00"
    assert "password" not in account and "password_hash" not in account

    login = client.post("/accounts/login", json={"username": "alice", "password": "s3cret-pass"})
    assert login.status_code == 200
    assert login.json()["account_number"] == account["account_number"]

    wrong = client.post("/accounts/login", json={"username": "alice", "password": "nope-nope"})
    assert wrong.status_code == 401
    unknown = client.post("/accounts/login", json={"username": "ghost", "password": "nope-nope"})
    assert unknown.status_code == 401
    assert wrong.json()["detail"] == unknown.json()["detail"]


def test_register_rejects_duplicate_contact_and_unknown_referrer(client: TestClient) -> None:
    _register(client, "bob")

    duplicate = client.post("/accounts", json={"username": "bob", "password": "s3cret-pass"})
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "duplicate_contact"

    bad_referrer = client.post(
        "/accounts",
        json={"username": "carol", "password": "s3cret-pass", "referrer_account_number": "999"},
    )
    assert bad_referrer.status_code == 404
    assert bad_referrer.json()["code"] == "referrer_not_found"


def test_transfer_end_to_end(client: TestClient) -> None:
    sender = _register(client, "sender")
    receiver = _register(client, "receiver")
    _fund(client, sender, "1000")
    assert client.get(f"/accounts/{sender}").json()["balance"] == "500.00"

    transfer = client.post(
        "/transfers",
        json={"sender_acc": sender, "receiver_acc": receiver, "amount": "200"},
        headers=_key(),
    )
    assert transfer.status_code == 201
    assert transfer.json()["amount"] == "200.00"

    assert client.get(f"/accounts/{sender}").json()["balance"] == "300.00"
    assert client.get(f"/accounts/{receiver}").json()["balance"] == "200.00"

    too_much = client.post(
        "/transfers",
        json={"sender_acc": sender, "receiver_acc": receiver, "amount": "600"},
        headers=_key(),
    )
    assert too_much.status_code == 409
    assert too_much.json()["code"] == "insufficient_funds"
    assert client.get(f"/accounts/{sender}").json()["balance"] == "300.00"
    assert client.get(f"/accounts/{receiver}").json()["balance"] == "200.00"

    history = client.get(f"/accounts/{receiver}/transactions").json()["items"]
    assert len(history) == 1
    assert history[0]["sender_acc"] == sender


def test_transfer_requires_idempotency_key(client: TestClient) -> None:
    sender = _register(client, "dave")
    receiver = _register(client, "erin")

    response = client.post(
        "/transfers", json={"sender_acc": sender, "receiver_acc": receiver, "amount": "1"}
    )
    assert response.status_code == 422


def test_transfer_idempotency_replay(client: TestClient) -> None:
    sender = _register(client, "frank")
    receiver = _register(client, "grace")
    _fund(client, sender, "100")
    headers = _key()
    body = {"sender_acc": sender, "receiver_acc": receiver, "amount": "10"}

    first = client.post("/transfers", json=body, headers=headers)
    second = client.post("/transfers", json=body, headers=headers)
    assert first.status_code == 201
    assert second.status_code == 201
    assert first.json() == second.json()
    assert client.get(f"/accounts/{sender}").json()["balance"] == "40.00"

    conflict = client.post("/transfers", json={**body, "amount": "11"}, headers=headers)
    assert conflict.status_code == 409
    assert conflict.json()["code"] == "duplicate_idempotency_key"


def test_transfer_rejects_self_transfer(client: TestClient) -> None:
    account = _register(client, "heidi")
    _fund(client, account, "100")

    response = client.post(
        "/transfers",
        json={"sender_acc": account, "receiver_acc": account, "amount": "10"},
        headers=_key(),
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot transfer to the same account"


def test_transfer_unknown_account_returns_404(client: TestClient) -> None:
    sender = _register(client, "ivan")

    response = client.post(
        "/transfers",
        json={"sender_acc": sender, "receiver_acc": "0000000000", "amount": "10"},
        headers=_key(),
    )
    assert response.status_code == 404
    assert response.json()["code"] == "account_not_found"


def test_rpc_transfer_amount_reports_errors_in_body(client: TestClient) -> None:
    sender = _register(client, "judy")
    receiver = _register(client, "mallory")
    _fund(client, sender, "50")

    ok = client.post(
        "/rpc/transfer_amount",
        json={"sender_acc": sender, "receiver_acc": receiver, "transfer_amount": "5"},
        headers=_key(),
    )
    assert ok.status_code == 200
    assert ok.json()["error"] is None
    assert ok.json()["data"]["amount"] == "5.00"

    failed = client.post(
        "/rpc/transfer_amount",
        json={"sender_acc": sender, "receiver_acc": receiver, "transfer_amount": "500"},
        headers=_key(),
    )
    assert failed.status_code == 200
    assert failed.json()["data"] is None
    assert failed.json()["error"]["code"] == "insufficient_funds"


def test_deposit_flow_and_double_approval(client: TestClient) -> None:
    account = _register(client, "niaj")
    deposit = client.post(
        f"/accounts/{account}/deposits",
        json={"tx_hash": "0xabc", "amount": "80"},
        headers=_key(),
    )
    assert deposit.status_code == 201
    assert deposit.json()["status"] == "pending"
    deposit_id = deposit.json()["id"]

    duplicate = client.post(
        f"/accounts/{account}/deposits",
        json={"tx_hash": "0xabc", "amount": "80"},
        headers=_key(),
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "duplicate_tx_hash"

    approved = client.post(f"/deposits/{deposit_id}/approve", json={"amount": "75"})
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"
    assert approved.json()["approved_amount"] == "75.00"

    again = client.post(f"/deposits/{deposit_id}/approve", json={"amount": "75"})
    assert again.status_code == 409
    assert again.json()["code"] == "already_processed"

    snapshot = client.get(f"/accounts/{account}").json()
    assert snapshot["balance"] == "37.50"
    assert snapshot["withdrawal_amount"] == "37.50"

    listed = client.get(f"/accounts/{account}/deposits").json()
    assert [d["status"] for d in listed] == ["approved"]


def test_withdrawal_reserve_and_reject_refund(client: TestClient) -> None:
    account = _register(client, "olivia")
    _fund(client, account, "200")

    request = client.post(
        f"/accounts/{account}/withdrawals",
        json={"receiving_wallet": "TXYZ", "amount": "60"},
        headers=_key(),
    )
    assert request.status_code == 201
    assert client.get(f"/accounts/{account}").json()["withdrawal_amount"] == "40.00"

    over = client.post(
        f"/accounts/{account}/withdrawals",
        json={"receiving_wallet": "TXYZ", "amount": "41"},
        headers=_key(),
    )
    assert over.status_code == 409

    rejected = client.post(
        f"/withdrawals/{request.json()['id']}/resolve", json={"outcome": "rejected"}
    )
    assert rejected.status_code == 200
    assert rejected.json()["status"] == "rejected"
    assert client.get(f"/accounts/{account}").json()["withdrawal_amount"] == "100.00"


def test_store_purchase_flow(client: TestClient) -> None:
    account = _register(client, "peggy")
    _fund(client, account, "100")
    product = client.post("/products", json={"name": "Headphones", "price": "30"}).json()
    assert [p["name"] for p in client.get("/products").json()] == ["Headphones"]

    purchase = client.post(
        f"/accounts/{account}/purchases",
        json={"product_id": product["id"], "mobile": "5550199", "location": "Main St 1"},
        headers=_key(),
    )
    assert purchase.status_code == 201
    assert purchase.json()["status"] == "pending"
    assert client.get(f"/accounts/{account}").json()["withdrawal_amount"] == "20.00"

    purchase_id = purchase.json()["id"]
    skipped = client.post(f"/purchases/{purchase_id}/status", json={"status": "delivered"})
    assert skipped.status_code == 409

    for status in ("packed", "out_for_delivery", "delivered"):
        step = client.post(f"/purchases/{purchase_id}/status", json={"status": status})
        assert step.status_code == 200
        assert step.json()["status"] == status

    second = client.post(
        f"/accounts/{account}/purchases",
        json={"product_id": product["id"], "mobile": "5550199", "location": "Main St 1"},
        headers=_key(),
    )
    assert second.status_code == 409
    assert second.json()["code"] == "insufficient_funds"


def test_referral_endpoints(client: TestClient) -> None:
    root = _register(client, "root")
    child = _register(client, "child", referrer=root)
    _register(client, "grandchild", referrer=child)
    _fund(client, child, "100")

    direct = client.get(f"/accounts/{root}/referrals").json()
    assert [node["account_number"] for node in direct] == [child]
    assert direct[0]["direct_business"] == "0.00"
    assert direct[0]["referrals"] == []

    tree = client.get(f"/accounts/{root}/referrals/tree", params={"depth": 2}).json()
    assert tree[0]["referrals"][0]["username"] == "grandchild"
    assert tree[0]["referrals"][0]["level"] == 2

    assert client.get(f"/accounts/{root}").json()["direct_business"] == "100.00"


def test_transaction_pagination(client: TestClient) -> None:
    sender = _register(client, "rupert")
    receiver = _register(client, "sybil")
    _fund(client, sender, "100")

    for amount in ("1", "2", "3"):
        client.post(
            "/transfers",
            json={"sender_acc": sender, "receiver_acc": receiver, "amount": amount},
            headers=_key(),
        )

    first_page = client.get(f"/accounts/{sender}/transactions", params={"limit": 2})
    assert first_page.status_code == 200
    items = first_page.json()["items"]
    assert [entry["amount"] for entry in items] == ["3.00", "2.00"]

    cursor = first_page.json()["next_cursor"]
    second_page = client.get(f"/accounts/{sender}/transactions", params={"cursor": cursor})
    remain = second_page.json()["items"]
    assert [entry["amount"] for entry in remain] == ["1.00"]
    assert second_page.json()["next_cursor"] is None


def test_transactions_invalid_cursor_returns_400(client: TestClient) -> None:
    account = _register(client, "trent")

    response = client.get(
        f"/accounts/{account}/transactions",
        params={"cursor": "not-a-valid-timestamp"},
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid cursor"


def test_audit_log_lists_request_transitions(client: TestClient) -> None:
    account = _register(client, "victor")
    _fund(client, account, "10")

    events = client.get("/audit", params={"entity_type": "deposit"}).json()
    assert [e["action"] for e in events] == ["created", "approved"]
    assert events[1]["from_status"] == "pending"
    assert events[1]["to_status"] == "approved"
    assert events[1]["amount"] == "10.00"


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_transactions_limit_must_be_positive(client: TestClient) -> None:
    sender = _register(client, "uma")
    receiver = _register(client, "vera")
    _fund(client, sender, "10")
    client.post(
        "/transfers",
        json={"sender_acc": sender, "receiver_acc": receiver, "amount": "1"},
        headers=_key(),
    )

    for limit in (0, -1):
        response = client.get(f"/accounts/{sender}/transactions", params={"limit": limit})
        assert response.status_code == 422


def test_oversized_transfer_amount_is_rejected(client: TestClient) -> None:
    sender = _register(client, "wade")
    receiver = _register(client, "xena")
    _fund(client, sender, "10")

    response = client.post(
        "/transfers",
        json={"sender_acc": sender, "receiver_acc": receiver, "amount": "1e20"},
        headers=_key(),
    )

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_amount"
    assert client.get(f"/accounts/{sender}").json()["balance"] == "5.00"


def test_rpc_transfer_amount_reports_invalid_amounts_in_body(client: TestClient) -> None:
    sender = _register(client, "yuri")
    receiver = _register(client, "zara")
    _fund(client, sender, "10")

    for amount in ("1e20", "1e30", "0", "-5"):
        response = client.post(
            "/rpc/transfer_amount",
            json={"sender_acc": sender, "receiver_acc": receiver, "transfer_amount": amount},
            headers=_key(),
        )
        assert response.status_code == 200
        assert response.json()["data"] is None
        assert response.json()["error"]["code"] == "invalid_amount"

    assert client.get(f"/accounts/{sender}").json()["balance"] == "5.00"


def test_whitespace_only_fields_are_rejected(client: TestClient) -> None:
    blank_user = client.post("/accounts", json={"username": "   ", "password": "s3cret-pass"})
    assert blank_user.status_code == 422

    account = _register(client, "  padded  ")
    assert client.get(f"/accounts/{account}").json()["username"] == "padded"
    _fund(client, account, "20")

    blank_wallet = client.post(
        f"/accounts/{account}/withdrawals",
        json={"receiving_wallet": "   ", "amount": "1"},
        headers=_key(),
    )
    assert blank_wallet.status_code == 422

    blank_hash = client.post(
        f"/accounts/{account}/deposits",
        json={"tx_hash": "  ", "amount": "1"},
        headers=_key(),
    )
    assert blank_hash.status_code == 422
    assert client.get(f"/accounts/{account}").json()["withdrawal_amount"] == "10.00"
