import random
import threading

import pytest
from solders.keypair import Keypair

import transfers
from conftest import FakeClient, RecordingEvent
from transfers import (
    LAMPORTS_PER_SOL,
    MAX_SOL_AMOUNT,
    MIN_SOL_AMOUNT,
    RetryPolicy,
    TransferCancelled,
    TransferError,
    check_balance,
    clamp_amount,
    distribute,
    generate_destinations,
    keypair_from_base58,
    pick_lamports,
    send_with_retry,
)

NO_WAIT = RetryPolicy(attempts=10, delay=0, backoff=1, max_delay=0)


def test_clamp_amount_raises_low_values_to_minimum():
    assert clamp_amount(0) == MIN_SOL_AMOUNT
    assert clamp_amount(0.0009) == MIN_SOL_AMOUNT
    assert clamp_amount(-5) == MIN_SOL_AMOUNT
    assert clamp_amount(0.5) == 0.5


def test_keypair_from_base58_matches_original():
    original = Keypair()
    restored = keypair_from_base58(f"  {original}\n")
    assert restored.pubkey() == original.pubkey()


@pytest.mark.parametrize("secret", ["not-base58-0OIl", "3yZe7d"])
def test_keypair_from_base58_rejects_bad_input(secret):
    with pytest.raises(ValueError):
        keypair_from_base58(secret)


def test_generate_destinations_are_distinct():
    addresses = generate_destinations(25)
    assert len(addresses) == 25
    assert len(set(addresses)) == 25


def test_generate_destinations_zero():
    assert generate_destinations(0) == []


def test_pick_lamports_fixed_amount():
    assert pick_lamports(0.002) == 2_000_000


def test_pick_lamports_random_within_range():
    rng = random.Random(7)
    for _ in range(200):
        lamports = pick_lamports(None, rng=rng)
        assert MIN_SOL_AMOUNT * LAMPORTS_PER_SOL <= lamports <= MAX_SOL_AMOUNT * LAMPORTS_PER_SOL


def test_check_balance():
    assert check_balance(0) == "No balance available"
    assert check_balance(5, lamports_needed=10).startswith("Insufficient balance")
    assert check_balance(10, lamports_needed=10) is None
    assert check_balance(1) is None


def test_retry_policy_delays_grow_and_cap():
    policy = RetryPolicy(attempts=5, delay=1, backoff=2, max_delay=3)
    assert list(policy.delays()) == [1, 2, 3, 3]
    assert list(RetryPolicy(attempts=1).delays()) == []


def test_send_with_retry_survives_transient_failures(keypair):
    client = FakeClient(blockhash_failures=3, send_failures=2)
    destination = Keypair().pubkey()

    result = send_with_retry(client, keypair, destination, 1_500_000, NO_WAIT)

    assert len(client.sent) == 1
    assert result.attempts == 6
    assert result.destination == destination
    assert result.lamports == 1_500_000
    assert result.signature == str(client.sent[0].signatures[0])


def test_send_with_retry_refetches_blockhash_each_attempt(keypair):
    client = FakeClient(send_failures=3)
    send_with_retry(client, keypair, Keypair().pubkey(), 1_000_000, NO_WAIT)
    assert client.blockhash_calls == 4


def test_send_with_retry_builds_signed_transfer(keypair):
    client = FakeClient()
    send_with_retry(client, keypair, Keypair().pubkey(), 1_000_000, NO_WAIT)
    tx = client.sent[0]
    assert tx.message.account_keys[0] == keypair.pubkey()
    assert len(tx.signatures) == 1
    tx.verify()


def test_send_with_retry_gives_up(keypair):
    client = FakeClient(send_failures=100)
    policy = RetryPolicy(attempts=3, delay=0)
    with pytest.raises(TransferError) as excinfo:
        send_with_retry(client, keypair, Keypair().pubkey(), 1_000_000, policy)
    assert excinfo.value.attempts == 3
    assert client.sent == []


def test_send_with_retry_honours_stop_event(keypair):
    stop = threading.Event()
    stop.set()
    with pytest.raises(TransferCancelled):
        send_with_retry(FakeClient(), keypair, Keypair().pubkey(), 1_000_000, NO_WAIT, stop)


def test_distribute_sends_to_every_destination(keypair):
    client = FakeClient(send_failures=2)
    destinations = generate_destinations(6)

    report = distribute(client, keypair, destinations, lambda: 1_000_000, NO_WAIT, concurrency=3)

    assert sorted(str(r.destination) for r in report.sent) == sorted(str(d) for d in destinations)
    assert report.failed == []
    assert len(client.sent) == 6


def test_distribute_counts_failures_without_raising(keypair):
    client = FakeClient(send_failures=100)
    destinations = generate_destinations(2)

    report = distribute(client, keypair, destinations, lambda: 1_000_000, RetryPolicy(attempts=2, delay=0))

    assert report.sent == []
    assert sorted(map(str, report.failed)) == sorted(map(str, destinations))


def test_distribute_waits_after_each_success(keypair):
    stop = RecordingEvent()
    distribute(FakeClient(), keypair, generate_destinations(3), lambda: 1_000_000, NO_WAIT, delay=0.5, stop_event=stop)
    assert stop.waits == [0.5, 0.5, 0.5]


def test_distribute_interrupt_sets_stop_and_cancels_queue(keypair, monkeypatch):
    def interrupted(futures):
        raise KeyboardInterrupt

    stop = threading.Event()

    class BlockingClient(FakeClient):
        def get_latest_blockhash(self):
            stop.wait(5)
            return super().get_latest_blockhash()

    monkeypatch.setattr(transfers, "as_completed", interrupted)
    client = BlockingClient()

    with pytest.raises(KeyboardInterrupt):
        distribute(client, keypair, generate_destinations(5), lambda: 1_000_000, NO_WAIT, concurrency=1, stop_event=stop)

    assert stop.is_set()
    assert len(client.sent) <= 1


class RejectingClient(FakeClient):
    def send_transaction(self, tx):
        raise RuntimeError("rejected [/x] by node [bold")


def test_send_with_retry_prints_error_text_verbatim(keypair):
    with pytest.raises(TransferError) as excinfo:
        send_with_retry(RejectingClient(), keypair, Keypair().pubkey(), 1_000_000, RetryPolicy(attempts=2, delay=0))
    assert "[/x]" in str(excinfo.value.last_error)


def test_distribute_reports_error_text_verbatim(keypair):
    report = distribute(
        RejectingClient(), keypair, generate_destinations(1), lambda: 1_000_000, RetryPolicy(attempts=1)
    )
    assert len(report.failed) == 1
