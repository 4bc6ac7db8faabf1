"""Randomized perturbation of time intervals."""

import random
from datetime import timedelta


def jitter(
    duration: timedelta,
    fraction: float,
    rng: random.Random | None = None,
) -> timedelta:
    """
    Scale a duration by ``1 + U`` with ``U`` uniform in ``[-fraction, +fraction]``.

    Spreads periodic work across hosts so they don't act in lockstep.
    """
    if fraction < 0:
        raise ValueError("jitter fraction must be non-negative")
    rng = rng or random.Random()
    return duration * (1 + rng.uniform(-fraction, fraction))
