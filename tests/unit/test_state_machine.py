"""
Transaction status state machine: PENDING -> COMPLETED | FAILED, each
terminal state final, first writer wins.
"""
import pytest

from mobipay.errors import ValidationError
from mobipay.services import ledger
from mobipay.services.fees import compute_service_charge
from mobipay.services.mpesa import GatewayFailure, QueryResult
from mobipay.services.reconciliation import (
    apply_result, handle_gateway_callback, parse_callback, reconcile_by_query, reconcile_callback,
)
from mobipay.services.split import compute_split

CHECKOUT_ID = "ws_CO_181020261015300001"


async def pending_transaction(db, checkout_id=CHECKOUT_ID, fare=100):
    charge = compute_service_charge(fare)
    txn = await ledger.create_transaction(
        db,
        vehicle_code="3025",
        phone_number="254712345678",
        fare_amount=fare,
        service_charge=charge,
        split=compute_split(charge, 10),
    )
    await ledger.attach_gateway_ids(db, txn, "29115-3462002-1", checkout_id)
    return txn


def test_transaction_id_format():
    txn_id = ledger.generate_transaction_id()
    assert txn_id.startswith("MOBI")
    assert txn_id[4:-5].isdigit()
    assert txn_id[-5:].isalnum() and txn_id[-5:] == txn_id[-5:].upper()


@pytest.mark.asyncio
class TestLedger:
    async def test_new_transaction_is_pending(self, db, seeded):
        txn = await pending_transaction(db)
        assert txn.status == ledger.PENDING
        assert txn.total_amount == 102
        assert (txn.owner_share, txn.platform_share) == (2, 0)
        assert txn.checkout_request_id == CHECKOUT_ID
        assert txn.receipt_number is None

    async def test_gateway_ids_set_once(self, db, seeded):
        txn = await pending_transaction(db)
        applied = await ledger.attach_gateway_ids(db, txn, "other", "ws_CO_other")
        assert applied is False
        assert txn.checkout_request_id == CHECKOUT_ID

    async def test_finalize_rejects_non_terminal_status(self, db, seeded):
        txn = await pending_transaction(db)
        with pytest.raises(ValueError):
            await ledger.finalize(db, txn, ledger.PENDING)

    async def test_failed_never_gets_receipt(self, db, seeded):
        txn = await pending_transaction(db)
        await ledger.finalize(db, txn, ledger.FAILED, receipt_number="QJI1ABCDEF", result_code="1032")
        assert txn.status == ledger.FAILED
        assert txn.receipt_number is None

    async def test_history_newest_first_and_limited(self, db, seeded):
        first = await pending_transaction(db, checkout_id="ws_CO_1")
        second = await pending_transaction(db, checkout_id="ws_CO_2")
        third = await pending_transaction(db, checkout_id="ws_CO_3")

        rows = await ledger.list_for_vehicle(db, "3025", limit=2)
        assert [r.transaction_id for r in rows] == [third.transaction_id, second.transaction_id]
        assert first.transaction_id not in {r.transaction_id for r in rows}


@pytest.mark.asyncio
class TestApplyResult:
    async def test_success_completes_with_receipt(self, db, seeded):
        txn = await pending_transaction(db)
        outcome = await apply_result(db, txn, 0, "The service request is processed successfully.", "QJI1ABCDEF")
        assert outcome.applied
        assert outcome.status == ledger.COMPLETED
        assert txn.receipt_number == "QJI1ABCDEF"
        assert txn.result_code == "0"

    async def test_non_zero_code_fails(self, db, seeded):
        txn = await pending_transaction(db)
        outcome = await apply_result(db, txn, 1032)
        assert outcome.status == ledger.FAILED
        assert txn.result_desc == "Request cancelled by user"
        assert txn.receipt_number is None

    async def test_string_zero_is_success(self, db, seeded):
        txn = await pending_transaction(db)
        outcome = await apply_result(db, txn, "0", receipt_number="QJI1ABCDEF")
        assert outcome.status == ledger.COMPLETED

    async def test_completed_is_terminal(self, db, seeded):
        txn = await pending_transaction(db)
        await apply_result(db, txn, 0, receipt_number="QJI1ABCDEF")
        outcome = await apply_result(db, txn, 1032)
        assert not outcome.applied
        assert txn.status == ledger.COMPLETED
        assert txn.receipt_number == "QJI1ABCDEF"

    async def test_failed_is_terminal(self, db, seeded):
        txn = await pending_transaction(db)
        await apply_result(db, txn, 1)
        outcome = await apply_result(db, txn, 0, receipt_number="QJI1ABCDEF")
        assert not outcome.applied
        assert txn.status == ledger.FAILED
        assert txn.receipt_number is None


@pytest.mark.asyncio
class TestCallbackReconciliation:
    async def test_callback_completes(self, db, seeded, make_callback):
        txn = await pending_transaction(db)
        outcome = await reconcile_callback(db, parse_callback(make_callback(CHECKOUT_ID)))
        assert outcome.applied and outcome.status == ledger.COMPLETED
        await db.refresh(txn)
        assert txn.receipt_number == "QJI1ABCDEF"

    async def test_duplicate_callback_is_noop(self, db, seeded, make_callback):
        await pending_transaction(db)
        callback = parse_callback(make_callback(CHECKOUT_ID))
        await reconcile_callback(db, callback)
        again = await reconcile_callback(db, callback)
        assert not again.applied
        assert again.status == ledger.COMPLETED

    async def test_late_failure_does_not_override_success(self, db, seeded, make_callback):
        await pending_transaction(db)
        await reconcile_callback(db, parse_callback(make_callback(CHECKOUT_ID)))
        outcome = await reconcile_callback(db, parse_callback(make_callback(CHECKOUT_ID, result_code=1032)))
        assert outcome.status == ledger.COMPLETED

    async def test_amount_mismatch_still_completes(self, db, seeded, make_callback):
        await pending_transaction(db)
        outcome = await reconcile_callback(db, parse_callback(make_callback(CHECKOUT_ID, amount=1)))
        assert outcome.status == ledger.COMPLETED

    async def test_unknown_checkout_is_acknowledged(self, db, seeded, make_callback):
        ack = await handle_gateway_callback(db, make_callback("ws_CO_unknown"))
        assert ack.ResultCode == 0
        assert ack.ResultDesc == "Accepted"

    async def test_malformed_callback_rejected(self, db):
        with pytest.raises(ValidationError) as exc:
            await handle_gateway_callback(db, {"Body": {}})
        assert exc.value.message == "Invalid callback structure: Body.stkCallback"

    async def test_missing_checkout_id_rejected(self, make_callback):
        payload = make_callback(CHECKOUT_ID)
        del payload["Body"]["stkCallback"]["CheckoutRequestID"]
        with pytest.raises(ValidationError):
            parse_callback(payload)


@pytest.mark.asyncio
class TestPollReconciliation:
    async def test_poll_completes(self, db, seeded, gateway):
        txn = await pending_transaction(db)
        gateway.query_result = QueryResult(result_code="0", result_desc="ok")
        outcome = await reconcile_by_query(db, gateway, txn)
        assert outcome.applied
        assert txn.status == ledger.COMPLETED
        assert txn.result_desc == "Success"
        assert gateway.queried == [CHECKOUT_ID]

    async def test_poll_fails(self, db, seeded, gateway):
        txn = await pending_transaction(db)
        gateway.query_result = QueryResult(result_code="1037")
        await reconcile_by_query(db, gateway, txn)
        assert txn.status == ledger.FAILED
        assert txn.result_desc == "DS timeout user cannot be reached"

    async def test_still_processing_stays_pending(self, db, seeded, gateway):
        txn = await pending_transaction(db)
        outcome = await reconcile_by_query(db, gateway, txn)
        assert not outcome.applied
        assert txn.status == ledger.PENDING

    async def test_gateway_failure_stays_pending(self, db, seeded, gateway):
        txn = await pending_transaction(db)
        gateway.query_result = GatewayFailure("The transaction is being processed", "500.001.1001")
        outcome = await reconcile_by_query(db, gateway, txn)
        assert outcome.status == ledger.PENDING

    async def test_terminal_transaction_not_queried(self, db, seeded, gateway):
        txn = await pending_transaction(db)
        await apply_result(db, txn, 0, receipt_number="QJI1ABCDEF")
        await reconcile_by_query(db, gateway, txn)
        assert gateway.queried == []


@pytest.mark.asyncio
class TestConcurrentFinalization:
    async def test_poll_with_stale_row_loses_to_callback(self, session_factory, seeded, gateway, make_callback):
        async with session_factory() as setup:
            await pending_transaction(setup)

        async with session_factory() as poller, session_factory() as notifier:
            stale = await ledger.get_by_checkout_id(poller, CHECKOUT_ID)
            assert stale.status == ledger.PENDING

            await reconcile_callback(notifier, parse_callback(make_callback(CHECKOUT_ID)))

            gateway.query_result = QueryResult(result_code="1032")
            outcome = await reconcile_by_query(poller, gateway, stale)

        assert not outcome.applied
        assert outcome.status == ledger.COMPLETED
        assert stale.receipt_number == "QJI1ABCDEF"

    async def test_second_writer_with_loaded_row_does_not_apply(self, session_factory, seeded):
        async with session_factory() as setup:
            await pending_transaction(setup)

        async with session_factory() as a, session_factory() as b:
            txn_a = await ledger.get_by_checkout_id(a, CHECKOUT_ID)
            txn_b = await ledger.get_by_checkout_id(b, CHECKOUT_ID)
            assert txn_a.status == txn_b.status == ledger.PENDING

            first = await apply_result(a, txn_a, 0, receipt_number="QJI1ABCDEF")
            second = await apply_result(b, txn_b, 1032)

        assert first.applied and not second.applied
        assert second.status == ledger.COMPLETED

        async with session_factory() as check:
            final = await ledger.get_by_checkout_id(check, CHECKOUT_ID)
        assert final.status == ledger.COMPLETED
        assert final.receipt_number == "QJI1ABCDEF"
        assert final.result_code == "0"
