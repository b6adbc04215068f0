import httpx
import pytest

from app.client.api import PaymentApiClient
from app.client.notices import SUCCESS, WARNING
from app.client.orchestrator import CHECKOUT_CANCELLED, CheckoutResult, LocalCheckout
from app.client.session import PaymentSession
from app.client.store import PendingPaymentRecord, PendingPaymentStore
from app.errors import (
    AlreadyLocked,
    FeeUnavailable,
    FreeCourse,
    NoActiveEnrollment,
    NotLocked,
    NotNextPeriod,
    PaymentNotCompleted,
    ServiceUnavailable,
)

from tests.conftest import FakeEnrollments


class ForgedCheckout:
    def await_result(self, order):
        return CheckoutResult("success", order.order_id, "pay_forged", "not-a-signature")


def _session(api, gateway, tmp_path, *enrollments, checkout=None):
    session = PaymentSession(
        "REG-1",
        checkout or LocalCheckout(gateway),
        api=api,
        enrollments=FakeEnrollments(*enrollments),
        store=PendingPaymentStore(str(tmp_path / "pending")),
    )
    session.start(background=False)
    return session


def test_installment_flow(api, gateway, tmp_path, seed_fee, make_enrollment):
    seed_fee()
    session = _session(api, gateway, tmp_path, make_enrollment())

    quote = session.get_fee_quote().value
    assert quote.final_amount == 17670
    assert session.pay_now(1).error.__class__ is NotLocked

    lock = session.confirm_lock("emi")
    assert lock.ok
    assert session.get_lock_state().value.locked

    slots = session.get_installment_schedule().value
    assert [s.amount for s in slots] == [2945] * 6
    assert slots[0].payable and not slots[1].payable

    outcome = session.pay_now(1).value
    assert outcome.verified
    assert outcome.transaction.period_index == 1
    assert session.store.list() == []

    assert isinstance(session.pay_now(3).error, NotNextPeriod)
    assert session.pay_now(2).value.verified

    assert {t.period_index for t in session.get_transactions().value} == {1, 2}
    assert session.get_installment_schedule().value[2].payable
    assert [n.level for n in session.notifier.notices].count(SUCCESS) == 2


def test_lock_is_immutable_from_the_session(api, gateway, tmp_path, seed_fee, make_enrollment):
    seed_fee()
    session = _session(api, gateway, tmp_path, make_enrollment())

    first = session.confirm_lock("full").value
    again = session.confirm_lock("full").value
    assert again.locked_at == first.locked_at

    assert isinstance(session.confirm_lock("emi").error, AlreadyLocked)
    assert isinstance(session.select_payment_type("emi").error, AlreadyLocked)
    assert isinstance(session.pay_now(1).error, NotLocked)


def test_cancelled_checkout_leaves_no_state(api, gateway, tmp_path, seed_fee, make_enrollment):
    seed_fee()
    session = _session(api, gateway, tmp_path, make_enrollment(), checkout=LocalCheckout(gateway, CHECKOUT_CANCELLED))
    session.confirm_lock("full")

    result = session.pay_now()

    assert isinstance(result.error, PaymentNotCompleted)
    assert session.store.list() == []
    assert session.get_transactions().value == []


def test_failed_verification_keeps_pending_record(api, gateway, tmp_path, seed_fee, make_enrollment):
    seed_fee()
    session = _session(api, gateway, tmp_path, make_enrollment(), checkout=ForgedCheckout())
    session.confirm_lock("full")

    outcome = session.pay_now().value

    assert outcome.verified is False
    assert [r.order_id for r in session.store.list()] == [outcome.order_id]
    assert session.notifier.notices[-1].level == WARNING
    assert not session.do_not_interrupt


def test_free_course_never_locks_or_pays(api, gateway, tmp_path, make_enrollment):
    session = _session(api, gateway, tmp_path, make_enrollment("E1", "ON-FR-FL-A1"))

    assert session.get_fee_quote().value.is_free
    assert isinstance(session.confirm_lock("full").error, FreeCourse)
    assert isinstance(session.pay_now().error, FreeCourse)
    assert session.get_installment_schedule().value == []


def test_switching_enrollment_reapplies_its_own_lock(api, gateway, tmp_path, seed_fee, make_enrollment):
    seed_fee(enrollment_id="E1")
    seed_fee(enrollment_id="E2", course_name="ON-FR-B1", total_fees=12000, discount_percentage=0, duration=3)
    session = _session(api, gateway, tmp_path, make_enrollment("E1"), make_enrollment("E2", "ON-FR-B1", 3))

    assert session.view.enrollment_id == "E1"
    session.confirm_lock("emi")

    assert session.select_enrollment("E2").ok
    state = session.get_lock_state().value
    assert state.locked is False
    assert state.payment_type.value == "full"
    assert session.get_fee_quote().value.final_amount == 12000

    session.select_enrollment("E1")
    assert session.get_lock_state().value.payment_type.value == "emi"

    assert isinstance(session.select_enrollment("E9").error, NoActiveEnrollment)


def test_unreachable_service_is_a_typed_error(gateway, tmp_path, make_enrollment):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    api = PaymentApiClient(http=httpx.Client(base_url="http://payments.test", transport=httpx.MockTransport(refuse)))
    session = PaymentSession(
        "REG-1",
        LocalCheckout(gateway),
        api=api,
        enrollments=FakeEnrollments(make_enrollment()),
        store=PendingPaymentStore(str(tmp_path / "pending")),
    )
    session.start(background=False)

    assert session.refresh().value is False
    assert isinstance(session.confirm_lock("full").error, FeeUnavailable)
    assert isinstance(session.recover_pending().value, list)


def test_pending_record_survives_a_new_store_instance(tmp_path):
    root = str(tmp_path / "pending")
    PendingPaymentStore(root).save(PendingPaymentRecord("order_1", "pay_1", "sig", 2945, "emi", 1, "E1"))

    records = PendingPaymentStore(root).list()

    assert len(records) == 1
    assert records[0].period_index == 1
    assert PendingPaymentStore(root).delete("order_1")
    assert PendingPaymentStore(root).list() == []


def test_switch_survives_lock_fetch_failure(api, gateway, tmp_path, seed_fee, make_enrollment, monkeypatch):
    seed_fee(enrollment_id="E1")
    seed_fee(enrollment_id="E2", course_name="ON-FR-B1", total_fees=12000, discount_percentage=0, duration=3)
    session = _session(api, gateway, tmp_path, make_enrollment("E1"), make_enrollment("E2", "ON-FR-B1", 3))
    api.lock_payment_type("REG-1", "emi", "E2")
    fetch_lock = api.fetch_lock
    offline = {"lock": True}

    def flaky_fetch_lock(registration_number, enrollment_id):
        if offline["lock"]:
            raise ServiceUnavailable()
        return fetch_lock(registration_number, enrollment_id)

    monkeypatch.setattr(api, "fetch_lock", flaky_fetch_lock)
    result = session.select_enrollment("E2")

    assert result.ok
    assert result.value.enrollment_id == "E2"
    assert session.view.enrollment_id == "E2"
    assert session.get_lock_state().value.locked is False

    offline["lock"] = False
    assert session.refresh().value is True
    assert session.get_lock_state().value.payment_type.value == "emi"


def test_malformed_verify_response_keeps_pending_record(api, gateway, tmp_path, seed_fee, make_enrollment, monkeypatch):
    seed_fee()
    session = _session(api, gateway, tmp_path, make_enrollment())
    session.confirm_lock("full")
    request = api._request

    def truncated_verify(method, path, **kwargs):
        if path == "/razorpay/verify":
            return httpx.Response(200, json={"success": True, "transaction": {"order_id": "truncated"}})
        return request(method, path, **kwargs)

    monkeypatch.setattr(api, "_request", truncated_verify)
    result = session.pay_now()

    assert result.ok
    assert result.value.verified is False
    assert len(session.store.list()) == 1
    assert session.notifier.notices[-1].level == WARNING

    retried = session.recover_pending()
    assert retried.ok
    assert retried.value[0].status == "retry"
    assert isinstance(retried.value[0].error, ServiceUnavailable)
    assert len(session.store.list()) == 1


def test_malformed_body_is_a_transient_error():
    transport = httpx.MockTransport(lambda r: httpx.Response(200, json={"transactions": [{"amount": "lots"}]}))
    api = PaymentApiClient(http=httpx.Client(base_url="http://payments.test", transport=transport))

    with pytest.raises(ServiceUnavailable):
        api.get_transactions("REG-1")
    with pytest.raises(ServiceUnavailable):
        api.create_order({"amount": 1})
