"""
Denomination Set and per-denomination count arithmetic.

A drawer never holds "an amount", it holds a count of each note and coin.
Everything in this package that moves cash does so as a mapping of
denomination value to count.
"""

from typing import Iterable, Mapping

DenominationCount = dict[int, int]

DENOMINATIONS: tuple[int, ...] = (10000, 5000, 2000, 1000, 500, 100, 50, 10, 5, 1)


def total_value(counts: Mapping[int, int]) -> int:
    return sum(denom * count for denom, count in counts.items())


def empty_counts(denominations: Iterable[int] = DENOMINATIONS) -> DenominationCount:
    return {denom: 0 for denom in denominations}


def validate_counts(
    counts: Mapping[int, int], denominations: Iterable[int] = DENOMINATIONS
) -> DenominationCount:
    allowed = set(denominations)
    validated: DenominationCount = {}
    for denom, count in counts.items():
        if denom not in allowed:
            raise ValueError(f"{denom} is not a supported denomination")
        if isinstance(count, bool) or not isinstance(count, int):
            raise ValueError(f"count for {denom} must be an integer")
        if count < 0:
            raise ValueError(f"count for {denom} must not be negative")
        validated[denom] = count
    return validated


def add_counts(left: Mapping[int, int], right: Mapping[int, int]) -> DenominationCount:
    result = dict(left)
    for denom, count in right.items():
        result[denom] = result.get(denom, 0) + count
    return result


def subtract_counts(left: Mapping[int, int], right: Mapping[int, int]) -> DenominationCount:
    result = dict(left)
    for denom, count in right.items():
        result[denom] = result.get(denom, 0) - count
    return result


def normalize(counts: Mapping[int, int]) -> DenominationCount:
    """Drop zero counts and order by denomination, largest first."""
    return {denom: counts[denom] for denom in sorted(counts, reverse=True) if counts[denom]}
