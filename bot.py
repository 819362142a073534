import math
import sys
from typing import List

import farm_tool
from transfers import MAX_SOL_AMOUNT, MIN_SOL_AMOUNT, clamp_amount


def _build_base_args(accounts_path: str, count: int, delay: int) -> List[str]:
    return ["farm_tool.py", "--input", accounts_path, "--count", str(count), "--delay", str(delay)]


def _run_with_args(args: List[str]) -> None:
    sys.argv = args
    farm_tool.main()


def _ask_int(prompt: str, error: str) -> int | None:
    raw = input(prompt).strip()
    try:
        return int(raw)
    except ValueError:
        print(f"{error}: {raw!r}")
        return None


def main() -> None:
    accounts_path = input("Accounts file path [pk.txt]: ").strip() or "pk.txt"

    amount_raw = input(
        f"Transfer amount in SOL (Enter for random {MIN_SOL_AMOUNT}-{MAX_SOL_AMOUNT}): "
    ).strip()
    amount = None
    if amount_raw:
        try:
            amount = float(amount_raw)
            if not math.isfinite(amount):
                raise ValueError(amount_raw)
            amount = clamp_amount(amount)
        except ValueError:
            print(f"Invalid amount: {amount_raw!r}")
            return

    count = _ask_int("How many addresses do you want to generate: ", "Invalid number of addresses")
    if count is None:
        return
    delay = _ask_int("Input delay (in seconds): ", "Invalid delay input")
    if delay is None:
        return

    args = _build_base_args(accounts_path, count, delay)
    if amount is not None:
        args += ["--amount", str(amount)]

    claim = input("Do you want to claim rewards after transfers? (y/n): ").strip().lower()
    if claim == "y":
        args.append("--claim")
        token = input("Authorization token (Enter = sign in with wallet key, f = read header.txt): ").strip()
        if token.lower() == "f":
            args += ["--headers", "header.txt"]
        elif token:
            args += ["--auth-token", token]

    _run_with_args(args)


if __name__ == "__main__":
    main()
