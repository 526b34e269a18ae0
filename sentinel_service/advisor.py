"""
Advisory classifier.

Produces a severity / confidence annotation for a signal. The annotation is
journaled as metadata only:
- Never consulted by the cooldown gate
- Never blocks the decision path (timeout, errors -> no annotation)
- Swappable: any object with ``advise(signal, policy) -> Advice``

The rules-based advisor mirrors the two-threshold comparison but computes
its own severity label and confidence score.
"""

import asyncio
import logging
from typing import Optional

from sentinel_boundary.models import Action, Advice, Policy, Signal

from . import metrics

logger = logging.getLogger(__name__)


class Advisor:
    """Interface for advisory classifiers. Implementations must be side-effect free."""

    name = "advisor"

    def advise(self, signal: Signal, policy: Policy) -> Advice:
        raise NotImplementedError


class RulesAdvisor(Advisor):
    name = "rules"

    def advise(self, signal: Signal, policy: Policy) -> Advice:
        if signal.value >= policy.pause_threshold:
            return Advice(
                severity="CRITICAL",
                recommended_action=Action.PAUSE,
                confidence=0.9,
                rationale=f"{signal.signal_type} deviation extremely high (>= pause threshold).",
            )
        if signal.value >= policy.risk_threshold:
            return Advice(
                severity="HIGH",
                recommended_action=Action.SET_RISK_MODE,
                confidence=0.8,
                rationale=(
                    f"{signal.signal_type} deviation above risk threshold; "
                    "recommend tightening controls."
                ),
            )
        return Advice(
            severity="LOW",
            recommended_action=Action.NO_ACTION,
            confidence=0.7,
            rationale=f"{signal.signal_type} deviation within acceptable band.",
        )


async def advise_safely(
    advisor: Optional[Advisor],
    signal: Signal,
    policy: Policy,
    timeout: float = 2.0,
) -> Optional[Advice]:
    """
    Run the advisor off the event loop with a timeout.

    Returns:
        The advice, or None if disabled, failed or timed out
    """
    if advisor is None:
        return None
    try:
        advice = await asyncio.wait_for(
            asyncio.to_thread(advisor.advise, signal, policy), timeout=timeout
        )
    except asyncio.TimeoutError:
        metrics.advisor_failures_total.inc()
        logger.warning("advisor %s timed out after %.2fs", advisor.name, timeout)
        return None
    except Exception as e:
        metrics.advisor_failures_total.inc()
        logger.warning("advisor %s failed: %s", advisor.name, e)
        return None
    if not isinstance(advice, Advice):
        metrics.advisor_failures_total.inc()
        logger.warning("advisor %s returned %r, ignoring", advisor.name, type(advice))
        return None
    return advice
