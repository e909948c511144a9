"""Pure pacing function used by the rate limiter."""


def compute_delay(
    remaining: int,
    window_reset_in: float,
    safety_buffer: int,
    *,
    base_delay: float,
    low_water_mark: int,
) -> float:
    """Seconds to wait before the next call in one quota window.

    Above the low-water mark calls are only spaced by ``base_delay``. At or
    below it the time left in the window is spread over the usable calls
    (``remaining - safety_buffer``). With nothing usable left the caller waits
    for the whole reset. The result never decreases as ``remaining`` drops.
    """
    reset_in = max(window_reset_in, 0.0)
    usable = remaining - safety_buffer
    if usable <= 0:
        return max(reset_in, base_delay)
    if remaining > low_water_mark:
        return base_delay
    return max(reset_in / (usable + 1), base_delay)
