def _lock(client, payment_type, enrollment_id="E1"):
    return client.post("/payment-lock", json={
        "register_number": "REG-1",
        "payment_type": payment_type,
        "enrollment_id": enrollment_id,
    })


def _order(client, amount, payment_type="emi", current_emi=1, **extra):
    body = {
        "amount": amount,
        "registration_number": "REG-1",
        "enrollment_id": "E1",
        "payment_type": payment_type,
        "course_name": "ON-GR-B1",
        "course_duration": 6,
        "original_fees": 19000,
        "discount_percentage": 7,
        "emi_duration": 6 if payment_type == "emi" else None,
        "current_emi": current_emi if payment_type == "emi" else None,
    }
    body.update(extra)
    return client.post("/razorpay/create-order", json=body)


def _pay(client, gateway, amount, current_emi=1, payment_type="emi", **extra):
    resp = _order(client, amount, payment_type, current_emi, **extra)
    assert resp.status_code == 201, resp.json()
    order_id = resp.json()["order"]["id"]
    payment_id, signature = gateway.complete(order_id)
    return client.post("/razorpay/verify", json={
        "razorpay_order_id": order_id,
        "razorpay_payment_id": payment_id,
        "razorpay_signature": signature,
    })


def test_root_and_health(client):
    assert client.get("/").json()["status"] == "running"
    assert client.get("/health").json() == {"status": "ok"}


def test_course_fees_endpoints(client, seed_fee):
    seed_fee()

    resp = client.get("/student-course-fees/REG-1")
    assert resp.status_code == 200
    assert resp.json()["final_fees"] == 17670

    resp = client.get("/student-course-fees/REG-1/E9")
    assert resp.status_code == 404
    assert resp.json()["code"] == "fee_unavailable"


def test_store_course_fee(client):
    resp = client.post("/student-course-fees", json={
        "registration_number": "REG-2",
        "enrollment_id": "E5",
        "course_name": "ON-FR-B1",
        "total_fees": 10000,
        "discount_percentage": 0,
        "duration": 3,
    })
    assert resp.status_code == 201
    assert resp.json()["final_fees"] == 10000


def test_lock_endpoints(client):
    assert client.get("/payment-lock/REG-1", params={"enrollment_id": "E1"}).json() == {"success": False, "data": None}

    resp = _lock(client, "full")
    assert resp.status_code == 200
    assert resp.json()["data"]["payment_type"] == "full"

    status = client.get("/payment-lock/REG-1", params={"enrollment_id": "E1"}).json()
    assert status["success"] is True
    assert status["data"]["payment_type"] == "full"

    again = _lock(client, "full")
    assert again.status_code == 200
    assert again.json()["data"]["locked_at"] == resp.json()["data"]["locked_at"]

    conflict = _lock(client, "emi")
    assert conflict.status_code == 409
    assert conflict.json()["code"] == "already_locked"


def test_lock_requires_enrollment(client):
    resp = _lock(client, "full", enrollment_id=None)
    assert resp.status_code == 400
    assert resp.json()["code"] == "no_active_enrollment"


def test_create_order_requires_lock(client, seed_fee):
    seed_fee()
    resp = _order(client, 2945)
    assert resp.status_code == 409
    assert resp.json()["code"] == "not_locked"

    _lock(client, "full")
    resp = _order(client, 2945)
    assert resp.json()["code"] == "not_locked"


def test_create_order_rejects_bad_amounts(client, seed_fee):
    seed_fee()
    _lock(client, "emi")

    assert _order(client, 0).json()["code"] == "invalid_amount"
    assert _order(client, 3000).json()["code"] == "invalid_amount"


def test_full_payment_must_match_total(client, seed_fee, gateway):
    seed_fee()
    _lock(client, "full")

    assert _order(client, 2945, payment_type="full").json()["code"] == "invalid_amount"
    assert _pay(client, gateway, 17670, payment_type="full").status_code == 200
    assert _order(client, 17670, payment_type="full").json()["code"] == "not_next_period"


def test_installments_must_be_paid_in_order(client, seed_fee, gateway):
    seed_fee()
    _lock(client, "emi")

    assert _pay(client, gateway, 2945, current_emi=1).status_code == 200

    resp = _order(client, 2945, current_emi=3)
    assert resp.status_code == 409
    assert resp.json()["code"] == "not_next_period"

    assert _pay(client, gateway, 2945, current_emi=2).status_code == 200


def test_remainder_period_amount_is_enforced(client, seed_fee, gateway):
    seed_fee(total_fees=10000, discount_percentage=0, duration=3)
    _lock(client, "emi")

    for period in (1, 2):
        assert _pay(client, gateway, 3333, current_emi=period, emi_duration=3).status_code == 200
    assert _order(client, 3333, current_emi=3, emi_duration=3).json()["code"] == "invalid_amount"
    assert _pay(client, gateway, 3334, current_emi=3, emi_duration=3).status_code == 200


def test_free_course_never_creates_orders(client, seed_fee):
    _lock(client, "full")
    resp = _order(client, 100, payment_type="full", course_name="ON-GR-FL-A1")
    assert resp.json()["code"] == "free_course"


def test_verify_is_idempotent_over_http(client, seed_fee, gateway):
    seed_fee()
    _lock(client, "emi")
    order = _order(client, 2945).json()["order"]
    assert order["amount"] == 294500
    payment_id, signature = gateway.complete(order["id"])
    payload = {
        "razorpay_order_id": order["id"],
        "razorpay_payment_id": payment_id,
        "razorpay_signature": signature,
    }

    first = client.post("/razorpay/verify", json=payload).json()
    second = client.post("/razorpay/verify", json=payload).json()

    assert first["transaction"] == second["transaction"]
    txns = client.get("/payments", params={"registration_number": "REG-1"}).json()["transactions"]
    assert len(txns) == 1
    assert txns[0]["period_index"] == 1

    status = client.get(f"/razorpay/status/{payment_id}").json()
    assert status["verified"] is True
    assert client.get(f"/payments/order/{order['id']}").status_code == 200
    assert client.get("/payments/order/order_unknown").status_code == 404


def test_signature_mismatch_over_http(client, seed_fee):
    seed_fee()
    _lock(client, "emi")
    order = _order(client, 2945).json()["order"]

    resp = client.post("/razorpay/verify", json={
        "razorpay_order_id": order["id"],
        "razorpay_payment_id": "pay_forged",
        "razorpay_signature": "deadbeef",
    })

    assert resp.status_code == 400
    assert resp.json()["code"] == "signature_mismatch"
    assert client.get("/payments").json()["transactions"] == []


def test_create_order_without_fee_terms_is_refused(client):
    _lock(client, "full", enrollment_id="E9")

    resp = _order(client, 1, payment_type="full", enrollment_id="E9", original_fees=1, discount_percentage=0)

    assert resp.status_code == 404
    assert resp.json()["code"] == "fee_unavailable"


def test_registration_wide_fee_is_not_used_for_a_second_enrollment(client, seed_fee):
    seed_fee(enrollment_id=None)
    _lock(client, "full", enrollment_id="E1")
    _lock(client, "full", enrollment_id="E2")

    resp = _order(client, 17670, payment_type="full", enrollment_id="E2", course_name="ON-FR-B1")

    assert resp.status_code == 404
    assert resp.json()["code"] == "fee_unavailable"


def test_registration_wide_fee_covers_the_only_enrollment(client, seed_fee):
    seed_fee(enrollment_id=None)
    _lock(client, "full")

    assert _order(client, 17670, payment_type="full").status_code == 201


def test_installment_count_is_fixed_by_first_payment(client, seed_fee, gateway):
    seed_fee(duration=None)
    _lock(client, "emi")

    assert _pay(client, gateway, 8835, current_emi=1, emi_duration=2).status_code == 200

    resp = _order(client, 1473, current_emi=2, emi_duration=12)
    assert resp.status_code == 422
    assert resp.json()["code"] == "invalid_amount"

    assert _pay(client, gateway, 8835, current_emi=2, emi_duration=2).status_code == 200
    txns = client.get("/payments", params={"enrollment_id": "E1"}).json()["transactions"]
    assert sum(t["amount"] for t in txns) == 17670
    assert {t["period_count"] for t in txns} == {2}
