BASE_DELAY = 1.0
MAX_DELAY = 30.0
MAX_EXPONENT = 6


def backoff_delay(attempt: int, base: float = BASE_DELAY, cap: float = MAX_DELAY,
                  max_exponent: int = MAX_EXPONENT) -> float:
    """Seconds to wait before reconnect ``attempt``: base * 2**min(attempt, 6), capped."""
    attempt = max(0, int(attempt))
    return min(base * (2 ** min(attempt, max_exponent)), cap)
