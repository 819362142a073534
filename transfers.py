import random
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Iterator, List

import base58
from rich.console import Console
from rich.markup import escape
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

LAMPORTS_PER_SOL = 1_000_000_000
MIN_SOL_AMOUNT = 0.001
MAX_SOL_AMOUNT = 0.01

console = Console()


class TransferError(RuntimeError):
    def __init__(self, destination: Pubkey, attempts: int, last_error: Exception | None):
        super().__init__(f"Transfer to {destination} failed after {attempts} attempts: {last_error}")
        self.destination = destination
        self.attempts = attempts
        self.last_error = last_error


class TransferCancelled(RuntimeError):
    pass


@dataclass(frozen=True)
class TransferIntent:
    sender: Pubkey
    destination: Pubkey
    lamports: int


@dataclass
class TransferResult:
    destination: Pubkey
    signature: str
    lamports: int
    attempts: int

    @property
    def amount_sol(self) -> float:
        return self.lamports / LAMPORTS_PER_SOL


@dataclass
class RetryPolicy:
    """Bounded retry with exponential backoff.

    ``attempts`` counts every try, the first one included. The wait before
    attempt ``n + 1`` is ``delay * backoff ** (n - 1)``, capped at ``max_delay``.
    """

    attempts: int = 5
    delay: float = 2.0
    backoff: float = 2.0
    max_delay: float = 30.0

    def delays(self) -> Iterator[float]:
        wait = self.delay
        for _ in range(max(self.attempts - 1, 0)):
            yield min(wait, self.max_delay)
            wait *= self.backoff


@dataclass
class DistributionReport:
    sent: List[TransferResult] = field(default_factory=list)
    failed: List[Pubkey] = field(default_factory=list)


def keypair_from_base58(secret: str) -> Keypair:
    try:
        raw = base58.b58decode(secret.strip())
    except ValueError as exc:
        raise ValueError(f"Invalid base58 private key: {exc}") from exc
    if len(raw) != 64:
        raise ValueError(f"Invalid private key length: expected 64 bytes, got {len(raw)}")
    return Keypair.from_bytes(raw)


def clamp_amount(amount: float, minimum: float = MIN_SOL_AMOUNT) -> float:
    return minimum if amount < minimum else amount


def to_lamports(amount_sol: float) -> int:
    return int(amount_sol * LAMPORTS_PER_SOL)


def pick_lamports(
    amount: float | None,
    min_amount: float = MIN_SOL_AMOUNT,
    max_amount: float = MAX_SOL_AMOUNT,
    rng: random.Random | None = None,
) -> int:
    if amount is not None:
        return to_lamports(amount)
    rng = rng or random
    return to_lamports(min_amount + rng.random() * (max_amount - min_amount))


def generate_destinations(count: int) -> List[Pubkey]:
    # Only the public half is kept; the new keypair goes out of scope here.
    addresses: List[Pubkey] = []
    for idx in range(1, count + 1):
        pubkey = Keypair().pubkey()
        addresses.append(pubkey)
        console.print(f"  Generated address {idx}: [yellow]{pubkey}[/yellow]")
    return addresses


def check_balance(balance: int, lamports_needed: int | None = None) -> str | None:
    """Return a skip reason for the wallet, or None when it may proceed."""
    if balance <= 0:
        return "No balance available"
    if lamports_needed is not None and balance < lamports_needed:
        return (
            f"Insufficient balance: {balance / LAMPORTS_PER_SOL:.6f} SOL "
            f"< {lamports_needed / LAMPORTS_PER_SOL:.6f} SOL required"
        )
    return None


def build_transfer(sender: Keypair, intent: TransferIntent, blockhash: Hash) -> Transaction:
    ix = transfer(
        TransferParams(
            from_pubkey=intent.sender,
            to_pubkey=intent.destination,
            lamports=intent.lamports,
        )
    )
    return Transaction.new_signed_with_payer([ix], sender.pubkey(), [sender], blockhash)


def send_with_retry(
    client,
    sender: Keypair,
    destination: Pubkey,
    lamports: int,
    policy: RetryPolicy,
    stop_event: threading.Event | None = None,
) -> TransferResult:
    stop_event = stop_event or threading.Event()
    intent = TransferIntent(sender=sender.pubkey(), destination=destination, lamports=lamports)
    waits = policy.delays()
    last_error: Exception | None = None
    for attempt in range(1, policy.attempts + 1):
        if stop_event.is_set():
            raise TransferCancelled(f"Transfer to {destination} cancelled")
        try:
            # A fresh blockhash every attempt, so an expired one is never resubmitted.
            blockhash = client.get_latest_blockhash().value.blockhash
            tx = build_transfer(sender, intent, blockhash)
            resp = client.send_transaction(tx)
            return TransferResult(
                destination=destination,
                signature=str(resp.value),
                lamports=lamports,
                attempts=attempt,
            )
        except Exception as exc:  # noqa: BLE001
            last_error = exc
            console.print(f"  [red]Attempt {attempt} to {destination} failed[/red]: {escape(str(exc))}")
        wait = next(waits, None)
        if wait is None:
            break
        if stop_event.wait(wait):
            raise TransferCancelled(f"Transfer to {destination} cancelled")
    raise TransferError(destination, policy.attempts, last_error)


def distribute(
    client,
    sender: Keypair,
    destinations: List[Pubkey],
    amount_fn: Callable[[], int],
    policy: RetryPolicy,
    concurrency: int = 8,
    delay: float = 0,
    stop_event: threading.Event | None = None,
) -> DistributionReport:
    stop_event = stop_event or threading.Event()
    report = DistributionReport()
    if not destinations:
        return report

    def worker(destination: Pubkey) -> TransferResult:
        result = send_with_retry(client, sender, destination, amount_fn(), policy, stop_event)
        console.print(
            f"  [green]Sent[/green] {result.amount_sol:.6f} SOL to [yellow]{destination}[/yellow] "
            f"tx {result.signature}"
        )
        if delay > 0:
            stop_event.wait(delay)
        return result

    executor = ThreadPoolExecutor(max_workers=max(1, min(concurrency, len(destinations))))
    try:
        futures = {executor.submit(worker, dest): dest for dest in destinations}
        for future in as_completed(futures):
            try:
                report.sent.append(future.result())
            except Exception as exc:  # noqa: BLE001
                report.failed.append(futures[future])
                console.print(f"  [red]Failed[/red]: {escape(str(exc))}")
    except KeyboardInterrupt:
        stop_event.set()
        executor.shutdown(wait=True, cancel_futures=True)
        raise
    executor.shutdown(wait=True)
    return report
