"""Two-threshold signal classifier. Pure, total, no state."""

from sentinel_boundary.models import Action, Policy

BPS_SCALE = 10_000


def classify(value: int, policy: Policy) -> Action:
    """
    Map a signal value to an action.

    value >= pause_threshold -> PAUSE
    value >= risk_threshold  -> SET_RISK_MODE
    otherwise                -> NO_ACTION
    """
    if value >= policy.pause_threshold:
        return Action.PAUSE
    if value >= policy.risk_threshold:
        return Action.SET_RISK_MODE
    return Action.NO_ACTION


def bps_deviation(current: float, baseline: float) -> int:
    """
    Absolute deviation of ``current`` from ``baseline`` in basis points,
    floored. A zero baseline is a degenerate input and yields 0.
    """
    if baseline == 0:
        return 0
    diff = abs(current - baseline)
    return int((diff * BPS_SCALE) // abs(baseline))
