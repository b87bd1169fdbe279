"""
amm/quote.py - Minimum-input quotes against the pool curve.

Answers "how much fy-token must be sold to receive at least D base",
for a curve observable only through fallible preview calls.

SEARCH
======
  fail-fast     desired <= 0, stale cache, pending settlement,
                desired >= live base reserve
  guess         desired * fy_live // base_live  (desired if degenerate)
  expansion     low=0, high=guess|1, <= 32 samples
                  None        -> high = midpoint(low, high)
                  out < D     -> low = high, high = 2*high (cap U128_MAX)
                  out >= D    -> bracket found
  bisection     <= 40 samples, None counts as sufficient (right = mid)
  verification  one more sample at the converged input

The curve is assumed non-decreasing in input. This is not checked at
runtime; a non-monotone region can make bisection converge to a
non-minimal input, which verification still keeps sound.
"""

from typing import Optional

from amm.revert import RevertClassifier, SELECTOR_NEGATIVE_INTEREST_RATES
from amm.sampler import CurveSampler, SamplingSession
from core.constants import (
    MAX_BISECTION_SAMPLES,
    MAX_EXPANSION_SAMPLES,
    QuoteFailureReason,
    U128_MAX,
)
from core.logging import get_logger
from core.math import clamp_u128
from core.models import Bracket, PoolState, Quote

logger = get_logger(__name__)


class _SearchFailed(Exception):
    """Internal: ends a search with a failure reason."""

    def __init__(self, reason: QuoteFailureReason):
        super().__init__(reason.value)
        self.reason = reason


def initial_guess(desired_output: int, pool_state: PoolState) -> int:
    """First-order price estimate from current reserves."""
    if pool_state.base_reserve_live == 0 or pool_state.fy_reserve_live == 0:
        return clamp_u128(desired_output)
    return clamp_u128(desired_output * pool_state.fy_reserve_live // pool_state.base_reserve_live)


def precheck(desired_output: int, pool_state: PoolState) -> Optional[QuoteFailureReason]:
    """Checks that fail a quote before any sampling, in priority order."""
    if desired_output <= 0:
        return QuoteFailureReason.INVALID_REQUEST
    if pool_state.cached_exceeds_live:
        return QuoteFailureReason.STALE_CACHE
    if pool_state.has_pending:
        return QuoteFailureReason.PENDING_SETTLEMENT
    if desired_output >= pool_state.base_reserve_live:
        return QuoteFailureReason.INSUFFICIENT_LIQUIDITY
    return None


class QuoteEngine:
    """
    Invert the pool curve by bracketing and bisection.

    Usage:
        engine = QuoteEngine(CurveSampler(ledger, pool), RevertClassifier(ctx))
        quote = await engine.quote_minimum_input_for_desired_output(10**18, pool_state)
        if quote.ok:
            mint(quote.input_amount)
    """

    def __init__(
        self,
        sampler: CurveSampler,
        classifier: Optional[RevertClassifier] = None,
        max_expansion_samples: int = MAX_EXPANSION_SAMPLES,
        max_bisection_samples: int = MAX_BISECTION_SAMPLES,
    ):
        self.sampler = sampler
        self.classifier = classifier or RevertClassifier()
        self.max_expansion_samples = max_expansion_samples
        self.max_bisection_samples = max_bisection_samples

    async def quote_minimum_input_for_desired_output(
        self,
        desired_output: int,
        pool_state: PoolState,
    ) -> Quote:
        """
        Minimal input whose sampled output reaches desired_output.

        Never raises for curve or transport failures: every outcome is a
        Quote, successful or tagged with a QuoteFailureReason.
        """
        reason = precheck(desired_output, pool_state)
        if reason is not None:
            logger.info(
                "Quote rejected before sampling",
                extra={"context": {"desired": str(desired_output), "reason": reason.value}},
            )
            return Quote.failed(desired_output, reason)

        session = self.sampler.session()

        try:
            bracket = await self._expand(session, desired_output, initial_guess(desired_output, pool_state))
        except _SearchFailed as e:
            return self._fail(session, desired_output, e.reason)

        converged = await self._bisect(session, desired_output, bracket)

        output = await session.sample(converged)
        if output is None:
            revert = self.classifier.classify(session.probe())
            reason = (
                QuoteFailureReason.NEGATIVE_RATE_REJECTED
                if revert.selector == SELECTOR_NEGATIVE_INTEREST_RATES
                else QuoteFailureReason.PREVIEW_REVERTED
            )
            return self._fail(session, desired_output, reason, revert=revert)

        if output < desired_output:
            return self._fail(session, desired_output, QuoteFailureReason.QUOTE_BELOW_DESIRED)

        quote = Quote.success(
            desired_output=desired_output,
            input_amount=converged,
            output_amount=output,
            samples_used=session.calls,
        )
        logger.info("Quote found", extra={"context": quote.to_dict()})
        return quote

    async def _expand(self, session: SamplingSession, desired_output: int, guess: int) -> Bracket:
        """
        Find low (insufficient) and high (sufficient) around the answer.

        Raises:
            _SearchFailed: bracket collapsed, cap reached or budget spent
        """
        low = 0
        high = guess if guess > 0 else 1
        last_failed = False

        for _ in range(self.max_expansion_samples):
            output = await session.sample(high)

            if output is None:
                last_failed = True
                high = low + (high - low) // 2
                if high <= low + 1:
                    raise _SearchFailed(QuoteFailureReason.PREVIEW_UNAVAILABLE)
                continue

            last_failed = False
            if output >= desired_output:
                return Bracket(low=low, high=high)

            if high >= U128_MAX:
                raise _SearchFailed(QuoteFailureReason.INSUFFICIENT_LIQUIDITY)
            low = high
            high = min(high * 2, U128_MAX)

        raise _SearchFailed(
            QuoteFailureReason.PREVIEW_UNAVAILABLE
            if last_failed
            else QuoteFailureReason.INSUFFICIENT_LIQUIDITY
        )

    async def _bisect(self, session: SamplingSession, desired_output: int, bracket: Bracket) -> int:
        left, right = bracket.low, bracket.high

        for _ in range(self.max_bisection_samples):
            mid = (left + right) // 2
            if mid == left:
                break
            output = await session.sample(mid)
            if output is None or output >= desired_output:
                right = mid
            else:
                left = mid

        return right

    def _fail(self, session: SamplingSession, desired_output: int, reason: QuoteFailureReason, revert=None) -> Quote:
        quote = Quote.failed(
            desired_output,
            reason,
            revert=revert,
            samples_used=session.calls,
        )
        logger.info("Quote failed", extra={"context": quote.to_dict()})
        return quote
