import argparse
import math
import os
import threading
import time
from dataclasses import dataclass, field
from typing import List

import requests
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from solana.rpc.api import Client

from sonic_api import ApiConfig, create_session, login_with_retry, run_rewards
from transfers import (
    LAMPORTS_PER_SOL,
    MAX_SOL_AMOUNT,
    MIN_SOL_AMOUNT,
    RetryPolicy,
    TransferResult,
    check_balance,
    clamp_amount,
    distribute,
    generate_destinations,
    keypair_from_base58,
    pick_lamports,
    to_lamports,
)

RPC_URL = "https://devnet.sonic.game"
DEFAULT_CONCURRENCY = 8

load_dotenv()
console = Console()


@dataclass
class WalletInput:
    private_key: str
    auth_token: str | None = None


@dataclass
class WalletReport:
    address: str | None = None
    balance: int | None = None
    sent: List[TransferResult] = field(default_factory=list)
    failed: int = 0
    skipped: str | None = None
    claimed: dict = field(default_factory=dict)


@dataclass
class RunReport:
    wallets: List[WalletReport] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def total_sent(self) -> int:
        return sum(len(w.sent) for w in self.wallets)

    @property
    def total_failed(self) -> int:
        return sum(w.failed for w in self.wallets)


def load_lines(path: str) -> List[str]:
    with open(path, "r", encoding="utf-8") as f:
        lines = [line.strip() for line in f.readlines()]
    return [line for line in lines if line]


def load_private_keys(path: str = "pk.txt") -> List[str]:
    keys = load_lines(path)
    if not keys:
        raise ValueError(f"No wallets found in {os.path.basename(path)} file")
    return keys


def load_auth_tokens(path: str, expected: int) -> List[str]:
    tokens = load_lines(path)
    if len(tokens) != expected:
        raise ValueError(
            f"{os.path.basename(path)} has {len(tokens)} tokens but {expected} wallets were loaded; "
            "tokens are paired with keys line by line"
        )
    return tokens


def build_wallet_inputs(keys: List[str], tokens: List[str] | None = None) -> List[WalletInput]:
    if tokens is None:
        return [WalletInput(private_key=key) for key in keys]
    return [WalletInput(private_key=key, auth_token=token) for key, token in zip(keys, tokens)]


def prepare_inputs(args: argparse.Namespace) -> List[WalletInput]:
    if args.count < 0:
        raise ValueError("Invalid number of addresses")
    if args.delay < 0:
        raise ValueError("Invalid delay input")
    for name in ("min_amount", "max_amount"):
        value = getattr(args, name)
        if not math.isfinite(value) or value <= 0:
            raise ValueError(f"--{name.replace('_', '-')} must be a positive number, got {value}")
    if args.min_amount > args.max_amount:
        raise ValueError("--min-amount must not exceed --max-amount")

    keys = load_private_keys(args.input)
    tokens = None
    if args.headers:
        tokens = load_auth_tokens(args.headers, len(keys))
    elif args.auth_token:
        if len(keys) != 1:
            raise ValueError("--auth-token pairs with a single wallet; use --headers for several")
        tokens = [args.auth_token]
    return build_wallet_inputs(keys, tokens)


def amount_arg(value: str) -> float:
    amount = float(value)
    if not math.isfinite(amount):
        raise argparse.ArgumentTypeError(f"invalid amount: {value!r}")
    return clamp_amount(amount)


def run_wallet(
    args: argparse.Namespace,
    wallet: WalletInput,
    client,
    session: requests.Session,
    config: ApiConfig,
    stop_event: threading.Event,
    report: WalletReport | None = None,
) -> WalletReport:
    report = report if report is not None else WalletReport()
    keypair = keypair_from_base58(wallet.private_key)
    address = str(keypair.pubkey())
    report.address = address

    report.balance = client.get_balance(keypair.pubkey()).value
    console.print(f"  Wallet balance: [bold]{report.balance / LAMPORTS_PER_SOL:.6f}[/bold] SOL")

    lamports_needed = None
    if args.amount is not None and args.require_full_balance:
        lamports_needed = to_lamports(args.amount) * args.count
    report.skipped = check_balance(report.balance, lamports_needed)
    if report.skipped:
        console.print(f"  [yellow]Skipped[/yellow]: {escape(report.skipped)}")
        return report

    destinations = generate_destinations(args.count)
    policy = RetryPolicy(attempts=args.retries, delay=args.retry_delay)
    distribution = distribute(
        client,
        keypair,
        destinations,
        lambda: pick_lamports(args.amount, args.min_amount, args.max_amount),
        policy,
        concurrency=args.concurrency,
        delay=args.delay,
        stop_event=stop_event,
    )
    report.sent = distribution.sent
    report.failed = len(distribution.failed)

    if not args.claim or stop_event.is_set():
        return report

    token = wallet.auth_token
    if not token:
        try:
            token = login_with_retry(session, config, keypair, retries=args.login_retries)
        except RuntimeError as exc:
            console.print(f"  [red]Failed to get authorization token[/red]: {escape(str(exc.__cause__ or exc))}")
            return report
        console.print("  [green]Success[/green]. Token received.")

    report.claimed = run_rewards(
        session,
        config,
        token,
        address,
        settle_delay=args.claim_delay,
        stage_delay=args.stage_delay,
        stop_event=stop_event,
    )
    return report


def run(
    args: argparse.Namespace,
    wallets: List[WalletInput],
    client,
    session: requests.Session,
    config: ApiConfig,
    stop_event: threading.Event | None = None,
) -> RunReport:
    stop_event = stop_event or threading.Event()
    report = RunReport()
    start = time.monotonic()
    for round_no in range(1, args.rounds + 1):
        if args.rounds > 1:
            console.rule(f"Round {round_no}/{args.rounds}")
        for idx, wallet in enumerate(wallets, start=1):
            if stop_event.is_set():
                break
            console.print(f"[bold cyan][{idx}/{len(wallets)}][/bold cyan] Processing wallet...")
            wallet_report = WalletReport()
            report.wallets.append(wallet_report)
            try:
                run_wallet(args, wallet, client, session, config, stop_event, wallet_report)
            except Exception as exc:  # noqa: BLE001
                console.print(f"  [red]Failed[/red]: {escape(str(exc))}")
                wallet_report.skipped = str(exc)
        if round_no < args.rounds and args.delay > 0 and stop_event.wait(args.delay):
            break
    report.elapsed = time.monotonic() - start
    return report


def format_summary(report: RunReport) -> str:
    summary = (
        f"Successfully sent to {report.total_sent} addresses, "
        f"and it took {report.elapsed:.2f} seconds"
    )
    if report.total_failed:
        summary += f" ({report.total_failed} transfers failed)"
    return summary


def print_report(report: RunReport) -> None:
    table = Table(title="Run Summary", show_lines=True)
    table.add_column("Wallet", style="yellow", no_wrap=True)
    table.add_column("Balance (SOL)", style="green")
    table.add_column("Sent", style="cyan")
    table.add_column("Failed", style="red")
    table.add_column("Claimed", style="magenta")
    table.add_column("Note", style="white")
    for wallet in report.wallets:
        balance = "-" if wallet.balance is None else f"{wallet.balance / LAMPORTS_PER_SOL:.6f}"
        claimed = ", ".join(str(stage) for stage, ok in wallet.claimed.items() if ok) or "-"
        table.add_row(
            wallet.address or "-",
            balance,
            str(len(wallet.sent)),
            str(wallet.failed),
            claimed,
            escape(wallet.skipped or ""),
        )
    console.print(table)
    console.print(Panel(format_summary(report), border_style="bright_blue"))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sonic Odyssey transfer and reward farm tool")
    parser.add_argument("--input", default="pk.txt", help="Path to base58 private keys, one per line")
    parser.add_argument("--count", type=int, required=True, help="Destination addresses per wallet")
    parser.add_argument("--delay", type=int, default=0, help="Seconds to wait after each transfer")
    parser.add_argument(
        "--amount",
        type=amount_arg,
        default=None,
        help=f"Fixed SOL per transfer (raised to {MIN_SOL_AMOUNT} if lower); random when omitted",
    )
    parser.add_argument("--min-amount", type=float, default=MIN_SOL_AMOUNT)
    parser.add_argument("--max-amount", type=float, default=MAX_SOL_AMOUNT)
    parser.add_argument(
        "--require-full-balance",
        action="store_true",
        help="Skip wallets holding less than amount x count",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=int(os.getenv("FARM_CONCURRENCY", DEFAULT_CONCURRENCY)),
    )
    parser.add_argument("--retries", type=int, default=5, help="Attempts per transfer")
    parser.add_argument("--retry-delay", type=float, default=2.0)
    parser.add_argument("--rounds", type=int, default=1)
    parser.add_argument("--claim", action="store_true", help="Fetch daily stats and claim reward stages")
    parser.add_argument("--auth-token", type=str, default=None)
    parser.add_argument("--headers", type=str, default=None, help="Bearer tokens paired with keys by line")
    parser.add_argument("--login-retries", type=int, default=1)
    parser.add_argument("--claim-delay", type=float, default=10)
    parser.add_argument("--stage-delay", type=float, default=3)
    parser.add_argument("--rpc-url", type=str, default=os.getenv("SONIC_RPC_URL", RPC_URL))
    parser.add_argument("--rpc-timeout", type=float, default=30)
    parser.add_argument("--api-url", type=str, default=None)
    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    try:
        wallets = prepare_inputs(args)
    except (OSError, ValueError) as exc:
        console.print(f"[red]Failed to read input[/red]: {escape(str(exc))}")
        return

    config = ApiConfig.from_env()
    if args.api_url:
        config.base_url = args.api_url
    client = Client(args.rpc_url, timeout=args.rpc_timeout)
    session = create_session(config)
    stop_event = threading.Event()

    console.print(f"Loaded [bold]{len(wallets)}[/bold] wallets | RPC: {args.rpc_url}")
    try:
        report = run(args, wallets, client, session, config, stop_event)
    except KeyboardInterrupt:
        stop_event.set()
        console.print("\n[yellow]Stopped by user[/yellow]")
        return
    print_report(report)


if __name__ == "__main__":
    main()
