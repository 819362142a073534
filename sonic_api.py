import base64
import os
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable

import requests
from rich.console import Console
from rich.markup import escape
from solders.keypair import Keypair

BASE_URL = "https://odyssey-api-beta.sonic.game"
ORIGIN = "https://odyssey.sonic.game"
REFERER = "https://odyssey.sonic.game/"
USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"
)
ALREADY_CLAIMED_CODE = 100015

console = Console()


@dataclass
class ApiConfig:
    base_url: str = BASE_URL
    origin: str = ORIGIN
    referer: str = REFERER
    user_agent: str = USER_AGENT
    timeout: float = 30

    @classmethod
    def from_env(cls) -> "ApiConfig":
        return cls(
            base_url=os.getenv("SONIC_API_URL", BASE_URL),
            origin=os.getenv("SONIC_ORIGIN", ORIGIN),
            referer=os.getenv("SONIC_REFERER", REFERER),
            user_agent=os.getenv("SONIC_USER_AGENT", USER_AGENT),
        )

    @property
    def challenge_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/auth/sonic/challenge"

    @property
    def authorize_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/auth/sonic/authorize"

    @property
    def daily_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/user/transactions/state/daily"

    @property
    def claim_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/user/transactions/rewards/claim"


def create_session(config: ApiConfig) -> requests.Session:
    session = requests.Session()
    session.headers.update(
        {
            "accept": "*/*",
            "accept-language": "en-US,en;q=0.9",
            "cache-control": "no-cache",
            "origin": config.origin,
            "pragma": "no-cache",
            "priority": "u=1, i",
            "referer": config.referer,
            "sec-ch-ua": '"Not/A)Brand";v="8", "Chromium";v="126", "Microsoft Edge";v="126"',
            "sec-ch-ua-mobile": "?0",
            "sec-ch-ua-platform": '"macOS"',
            "sec-fetch-dest": "empty",
            "sec-fetch-mode": "cors",
            "sec-fetch-site": "same-site",
            "sec-gpc": "1",
            "user-agent": config.user_agent,
        }
    )
    return session


def fetch_challenge(session: requests.Session, config: ApiConfig, address: str) -> str:
    resp = session.get(config.challenge_url, params={"wallet": address}, timeout=config.timeout)
    if not resp.ok:
        raise RuntimeError(f"Challenge request failed ({resp.status_code}): {resp.text.strip()}")
    challenge = resp.json().get("data")
    if not isinstance(challenge, str) or not challenge:
        raise RuntimeError(f"Challenge missing in response: {resp.text.strip()}")
    return challenge


def sign_challenge(keypair: Keypair, challenge: str) -> Dict[str, str]:
    signature = keypair.sign_message(challenge.encode("utf-8"))
    return {
        "address": str(keypair.pubkey()),
        "address_encoded": base64.b64encode(bytes(keypair.pubkey())).decode(),
        "signature": base64.b64encode(bytes(signature)).decode(),
    }


def authorize(session: requests.Session, config: ApiConfig, keypair: Keypair, challenge: str) -> str:
    payload = sign_challenge(keypair, challenge)
    resp = session.post(config.authorize_url, json=payload, timeout=config.timeout)
    if not resp.ok:
        raise RuntimeError(f"Authorize request failed ({resp.status_code}): {resp.text.strip()}")
    data = resp.json().get("data")
    token = data.get("token") if isinstance(data, dict) else None
    if not token:
        raise RuntimeError(f"Authorize rejected: {resp.text.strip()}")
    return token


def login(session: requests.Session, config: ApiConfig, keypair: Keypair) -> str:
    challenge = fetch_challenge(session, config, str(keypair.pubkey()))
    return authorize(session, config, keypair, challenge)


def login_with_retry(
    session: requests.Session,
    config: ApiConfig,
    keypair: Keypair,
    retries: int = 1,
    delay: float = 5,
) -> str:
    address = str(keypair.pubkey())
    last_error: Exception | None = None
    for attempt in range(1, retries + 1):
        try:
            return login(session, config, keypair)
        except Exception as exc:  # noqa: BLE001
            last_error = exc
            console.print(f"  Attempt {attempt} failed: {escape(str(exc))}")
            if attempt < retries:
                time.sleep(delay)
    raise RuntimeError(f"Login failed for {address}") from last_error


def get_daily_transactions(session: requests.Session, config: ApiConfig, token: str) -> int | None:
    try:
        resp = session.get(config.daily_url, headers={"Authorization": token}, timeout=config.timeout)
        data: Dict[str, Any] = resp.json()
    except (requests.RequestException, ValueError) as exc:
        console.print(f"  [red]Failed to fetch daily transactions[/red]: {escape(str(exc))}")
        return None

    payload = data.get("data") if isinstance(data, dict) else None
    total = payload.get("total_transactions") if isinstance(payload, dict) else None
    if not isinstance(total, (int, float)) or isinstance(total, bool):
        console.print(f"  [yellow]total_transactions not found[/yellow]: {escape(str(data))}")
        return None
    console.print(f"  Total transactions: [bold]{int(total)}[/bold]")
    return int(total)


def claim_reward(session: requests.Session, config: ApiConfig, token: str, stage: int) -> bool:
    """Claim one reward stage.

    An "already claimed" answer counts as success, same as a fresh claim.
    Nothing here raises; every failure is printed and reported as False.
    """
    headers = {
        "Authorization": token,
        "Content-Type": "application/json",
        "Accept": "application/json",
    }
    try:
        resp = session.post(config.claim_url, json={"stage": stage}, headers=headers, timeout=config.timeout)
    except requests.RequestException as exc:
        console.print(f"  [red]Failed to send claim request[/red]: {escape(str(exc))}")
        return False

    console.print(f"  Raw response: {resp.text.strip()}", markup=False)
    if resp.status_code != 200:
        console.print(f"  [red]Unexpected status code[/red]: {resp.status_code}")
        return False
    try:
        result = resp.json()
    except ValueError as exc:
        console.print(f"  [red]Failed to parse claim response[/red]: {escape(str(exc))}")
        return False
    if not isinstance(result, dict):
        console.print(f"  [red]Failed to claim reward stage {stage}[/red]")
        return False

    if result.get("code") == ALREADY_CLAIMED_CODE:
        console.print(f"  [green]Already claimed stage {stage}[/green]")
        return True
    if result.get("status") == "success":
        console.print(f"  [green]Claimed reward stage {stage}[/green]")
        return True
    console.print(f"  [red]Failed to claim reward stage {stage}[/red]")
    return False


def run_rewards(
    session: requests.Session,
    config: ApiConfig,
    token: str,
    address: str,
    stages: Iterable[int] = (1, 2, 3),
    settle_delay: float = 10,
    stage_delay: float = 3,
    stop_event: threading.Event | None = None,
) -> Dict[int, bool]:
    stop_event = stop_event or threading.Event()
    console.print(f"  Fetching transactions for wallet: [yellow]{address}[/yellow]")
    get_daily_transactions(session, config, token)

    claimed: Dict[int, bool] = {}
    if settle_delay > 0:
        console.print(f"  Sleeping {settle_delay:g} seconds before claiming...")
        if stop_event.wait(settle_delay):
            return claimed
    for stage in stages:
        console.print(f"  Claiming reward stage {stage} for wallet: [yellow]{address}[/yellow]")
        claimed[stage] = claim_reward(session, config, token, stage)
        if stage_delay > 0 and stop_event.wait(stage_delay):
            break
    return claimed
