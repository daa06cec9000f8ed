from typing import Mapping, Sequence

from .denominations import DENOMINATIONS, DenominationCount
from .errors import InsufficientFundsError


def compute_change(
    available: Mapping[int, int],
    amount_due: int,
    denominations: Sequence[int] = DENOMINATIONS,
) -> DenominationCount:
    """Pick notes and coins summing exactly to ``amount_due``, largest first.

    Greedy, so it can miss an exact combination that skips a larger
    denomination. Raises ``InsufficientFundsError`` when the greedy pass
    leaves a remainder. Gross sufficiency is the caller's check; this only
    answers whether the greedy pass can hit the amount exactly.
    """
    if amount_due < 0:
        raise ValueError("amount_due must not be negative")

    remaining = amount_due
    working = dict(available)
    result: DenominationCount = {}
    for denom in sorted(denominations, reverse=True):
        if remaining == 0:
            break
        want = remaining // denom
        use = min(want, max(working.get(denom, 0), 0))
        if use > 0:
            result[denom] = use
            working[denom] = working.get(denom, 0) - use
            remaining -= use * denom

    if remaining > 0:
        raise InsufficientFundsError(
            f"Cannot make exactly {amount_due} from the drawer, {remaining} short"
        )
    return result
