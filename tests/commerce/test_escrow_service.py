"""Tests for the escrow service and money helpers."""

import threading
from decimal import Decimal

import pytest

from agentmarket.commerce.escrow.models import Escrow
from agentmarket.commerce.escrow.service import (
    EscrowNotFoundError,
    EscrowService,
    InvalidEscrowStateError,
    PayoutDestinationMissingError,
)
from agentmarket.commerce.money import split_amount, to_money
from agentmarket.commerce.payments import (
    InMemoryPaymentBackend,
    InvalidDestinationError,
    PaymentError,
    PaymentTimeoutError,
)
from agentmarket.commerce.storage.base import DuplicateRecordError
from agentmarket.commerce.wallet.service import InsufficientFundsError
from agentmarket.commerce.workers import Worker
from agentmarket.config import CommerceConfig


@pytest.fixture
def escrow_service(store, payments, clock):
    service = EscrowService(store, payments, CommerceConfig(), now_fn=clock)
    service.wallets.deposit("alice", Decimal("50.00"))
    return service


@pytest.fixture
def payee():
    return Worker(id="worker-1", payout_destination="acct_worker_1")


class TestMoney:
    """Decimal rounding and fee split."""

    @pytest.mark.parametrize(
        "value,expected",
        [("1.005", "1.01"), ("1.004", "1.00"), (2, "2.00"), (0.1, "0.10"), ("-0.005", "-0.01")],
    )
    def test_to_money_rounds_half_up(self, value, expected):
        """Amounts are rounded half-up to cents."""
        assert to_money(value) == Decimal(expected)

    @pytest.mark.parametrize(
        "amount,fee,payout",
        [("12.00", "1.20", "10.80"), ("0.05", "0.01", "0.04"), ("0.01", "0.00", "0.01")],
    )
    def test_split_at_ten_percent(self, amount, fee, payout):
        """The fee rounds and the payout takes the remainder."""
        assert split_amount(Decimal(amount), Decimal("10")) == (Decimal(fee), Decimal(payout))

    def test_split_always_sums(self):
        """fee + payout == amount for awkward percentages."""
        for cents in range(1, 500, 7):
            amount = Decimal(cents) / 100
            fee, payout = split_amount(amount, Decimal("12.5"))
            assert fee + payout == to_money(amount)


class TestEscrowModel:
    """Escrow invariants."""

    def test_shares_must_sum(self):
        """Fee and payout must add up to the amount."""
        with pytest.raises(ValueError, match="platform fee plus worker payout"):
            Escrow("job-1", "alice", Decimal("10"), Decimal("1"), Decimal("8"))

    def test_negative_share(self):
        with pytest.raises(ValueError, match="negative"):
            Escrow("job-1", "alice", Decimal("10"), Decimal("-1"), Decimal("11"))

    def test_invalid_status(self):
        with pytest.raises(ValueError, match="Invalid status"):
            Escrow("job-1", "alice", Decimal("10"), Decimal("1"), Decimal("9"), status="held")

    def test_round_trip(self):
        """to_dict/from_dict keep amounts as exact decimals."""
        escrow = Escrow("job-1", "alice", Decimal("12"), Decimal("1.20"), Decimal("10.80"))

        data = escrow.to_dict()
        assert data["amount"] == "12.00"
        assert Escrow.from_dict(data) == escrow


class TestLock:
    """Locking funds."""

    def test_lock_debits_and_splits(self, escrow_service):
        """Lock moves the amount out of the wallet with the fee split frozen."""
        escrow = escrow_service.lock("alice", "job-1", "12.00")

        assert escrow.is_locked
        assert (escrow.amount, escrow.platform_fee, escrow.worker_payout) == (
            Decimal("12.00"),
            Decimal("1.20"),
            Decimal("10.80"),
        )
        assert escrow_service.wallets.get_balance("alice") == Decimal("38.00")

    def test_lock_insufficient_funds(self, escrow_service, store):
        """Locking more than the balance fails and leaves no escrow."""
        with pytest.raises(InsufficientFundsError) as exc_info:
            escrow_service.lock("alice", "job-1", "60")

        assert exc_info.value.balance == Decimal("50.00")
        assert exc_info.value.required == Decimal("60.00")
        assert store.get_escrow("job-1") is None
        assert escrow_service.wallets.get_balance("alice") == Decimal("50.00")

    def test_lock_twice_for_same_job(self, escrow_service):
        """A job has at most one escrow; the second debit is rolled back."""
        escrow_service.lock("alice", "job-1", "5")

        with pytest.raises(DuplicateRecordError):
            escrow_service.lock("alice", "job-1", "5")

        assert escrow_service.wallets.get_balance("alice") == Decimal("45.00")

    def test_lock_non_positive(self, escrow_service):
        with pytest.raises(ValueError):
            escrow_service.lock("alice", "job-1", "0")


class TestRelease:
    """Paying the worker."""

    def test_release_transfers_payout(self, escrow_service, payee, payments, store):
        """The worker's share is transferred and recorded as a payout."""
        escrow_service.lock("alice", "job-1", "12")

        escrow = escrow_service.release("job-1", payee)

        assert escrow.status == "released"
        assert escrow.released_at is not None
        assert payments.total_to("acct_worker_1") == Decimal("10.80")
        [payout] = store.list_transactions("worker-1")
        assert payout.type == "payout"
        assert payout.amount == Decimal("10.80")
        assert payout.metadata["transfer_reference"] == escrow.transfer_reference

    def test_no_double_release(self, escrow_service, payee, payments):
        """The second release fails naming the current status."""
        escrow_service.lock("alice", "job-1", "12")
        escrow_service.release("job-1", payee)

        with pytest.raises(InvalidEscrowStateError, match="escrow is released"):
            escrow_service.release("job-1", payee)

        assert len(payments.transfers) == 1

    def test_release_after_refund(self, escrow_service, payee, payments):
        """Refunded escrow cannot be released."""
        escrow_service.lock("alice", "job-1", "12")
        escrow_service.refund("job-1")

        with pytest.raises(InvalidEscrowStateError, match="refunded"):
            escrow_service.release("job-1", payee)

        assert payments.transfers == []

    def test_release_without_destination(self, escrow_service):
        """Workers must have a payout destination."""
        escrow_service.lock("alice", "job-1", "12")

        with pytest.raises(PayoutDestinationMissingError):
            escrow_service.release("job-1", Worker(id="worker-2"))

        assert escrow_service.get_escrow("job-1").is_locked

    def test_blocked_destination_leaves_escrow_locked(self, store, clock):
        """A refused transfer changes nothing."""
        payments = InMemoryPaymentBackend(blocked_destinations={"acct_closed"})
        service = EscrowService(store, payments, now_fn=clock)
        service.wallets.deposit("bob", "10")
        service.lock("bob", "job-9", "10")

        with pytest.raises(InvalidDestinationError):
            service.release("job-9", Worker(id="w", payout_destination="acct_closed"))

        assert service.get_escrow("job-9").is_locked
        assert store.list_transactions("w") == []

    def test_processor_outage(self, escrow_service, payee, payments):
        """Processor errors propagate and the escrow stays locked."""
        escrow_service.lock("alice", "job-1", "12")
        payments.fail_all = True

        with pytest.raises(PaymentError):
            escrow_service.release("job-1", payee)

        assert escrow_service.get_escrow("job-1").is_locked

    def test_slow_processor_times_out(self, store, clock):
        """A processor slower than the payment timeout fails the release cleanly."""
        payments = InMemoryPaymentBackend(latency=0.2)
        service = EscrowService(
            store, payments, CommerceConfig(payment_timeout_seconds=0.01), now_fn=clock
        )
        service.wallets.deposit("bob", "10")
        service.lock("bob", "job-9", "10")

        with pytest.raises(PaymentTimeoutError, match="timed out"):
            service.release("job-9", Worker(id="w", payout_destination="acct_w"))

        assert service.get_escrow("job-9").is_locked
        assert payments.transfers == []

    def test_timeout_passed_to_processor(self, store, clock):
        seen = {}

        class RecordingBackend:
            def transfer(self, destination, amount, metadata=None, *, timeout):
                seen["timeout"] = timeout
                return "tr_1"

        service = EscrowService(
            store, RecordingBackend(), CommerceConfig(payment_timeout_seconds=2.5), now_fn=clock
        )
        service.wallets.deposit("bob", "10")
        service.lock("bob", "job-9", "10")

        service.release("job-9", Worker(id="w", payout_destination="acct_w"))

        assert seen == {"timeout": 2.5}

    def test_unknown_escrow(self, escrow_service, payee):
        with pytest.raises(EscrowNotFoundError):
            escrow_service.release("missing", payee)

    def test_settle_to_platform(self, escrow_service, payments):
        """Skill escrows close without any transfer."""
        escrow_service.lock("alice", "job-1", "4")

        escrow = escrow_service.settle_to_platform("job-1")

        assert escrow.status == "released"
        assert payments.transfers == []
        with pytest.raises(InvalidEscrowStateError):
            escrow_service.settle_to_platform("job-1")


class TestRefund:
    """Returning funds to the requester."""

    def test_refund_returns_full_amount(self, escrow_service):
        """The fee is refunded too."""
        escrow_service.lock("alice", "job-1", "12")

        escrow = escrow_service.refund("job-1")

        assert escrow.status == "refunded"
        assert escrow_service.wallets.get_balance("alice") == Decimal("50.00")

    def test_no_double_refund(self, escrow_service, store):
        """The second refund fails and the balance changes once."""
        escrow_service.lock("alice", "job-1", "12")
        escrow_service.refund("job-1")

        with pytest.raises(InvalidEscrowStateError, match="escrow is refunded"):
            escrow_service.refund("job-1")

        assert escrow_service.wallets.get_balance("alice") == Decimal("50.00")
        refunds = [t for t in store.list_transactions("alice") if t.type == "refund"]
        assert len(refunds) == 1

    def test_concurrent_release_and_refund(self, escrow_service, payee, payments):
        """Of a racing release and refund exactly one succeeds."""
        escrow_service.lock("alice", "job-1", "12")
        outcomes = []
        barrier = threading.Barrier(2)

        def attempt(action):
            barrier.wait()
            try:
                action()
                outcomes.append("ok")
            except InvalidEscrowStateError:
                outcomes.append("refused")

        threads = [
            threading.Thread(target=attempt, args=(lambda: escrow_service.release("job-1", payee),)),
            threading.Thread(target=attempt, args=(lambda: escrow_service.refund("job-1"),)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["ok", "refused"]
        status = escrow_service.get_escrow("job-1").status
        if status == "released":
            assert escrow_service.wallets.get_balance("alice") == Decimal("38.00")
            assert len(payments.transfers) == 1
        else:
            assert escrow_service.wallets.get_balance("alice") == Decimal("50.00")
            assert payments.transfers == []
