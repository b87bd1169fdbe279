"""
amm/sampler.py - Fallible single-point evaluation of the pool curve.

The pool prices sells through a preview call the client cannot evaluate
locally. The sampler wraps that call:
- input clamped to [0, U128_MAX] before the call
- a failed call returns None ("unevaluable at this size", not zero)
- no retries; the failure object is kept for classification

Failures come from the ledger in whatever shape it raises; they are
kept as-is and only interpreted by the revert classifier.
"""

from typing import Any, Optional, Tuple

from chains.ledger import ContractCall, LedgerClient
from core.logging import get_logger
from core.math import clamp_u128

logger = get_logger(__name__)

DEFAULT_PREVIEW_SIGNATURE = "sellFYTokenPreview(uint128)"


class CurveSampler:
    """
    Evaluate the pool's preview function at one input size.

    Usage:
        sampler = CurveSampler(ledger, pool_address)
        out = await sampler.sample(10**18)
        if out is None:
            failure = sampler.probe()

    `calls` and `probe()` are shared by every caller of this sampler.
    A quote search uses session() to get its own count and failure.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        pool_address: str,
        signature: str = DEFAULT_PREVIEW_SIGNATURE,
    ):
        self.ledger = ledger
        self.pool_address = pool_address
        self.signature = signature
        self.calls = 0
        self._last_failure: Any = None

    async def evaluate(self, input_amount: int) -> Tuple[Optional[int], Any]:
        """(output, None) on success, (None, failure) when the preview fails."""
        amount = clamp_u128(input_amount)
        call = ContractCall(
            to=self.pool_address,
            signature=self.signature,
            args=(amount,),
            returns=("uint128",),
        )
        try:
            output = int(await self.ledger.preview(call))
        except Exception as e:
            logger.debug(
                "Preview failed",
                extra={"context": {"input": str(amount), "error": str(e), "error_type": type(e).__name__}},
            )
            return None, e

        logger.debug(
            "Preview sampled",
            extra={"context": {"input": str(amount), "output": str(output)}},
        )
        return output, None

    async def sample(self, input_amount: int) -> Optional[int]:
        self.calls += 1
        output, failure = await self.evaluate(input_amount)
        self._last_failure = failure
        return output

    def probe(self) -> Any:
        """Failure object of the most recent sample, None if it succeeded."""
        return self._last_failure

    def session(self) -> "SamplingSession":
        return SamplingSession(self)

    def reset(self) -> None:
        self.calls = 0
        self._last_failure = None


class SamplingSession:
    """
    Sample counter and last failure for one quote search.

    Samples still count towards the sampler's total `calls`.
    """

    def __init__(self, sampler: CurveSampler):
        self.sampler = sampler
        self.calls = 0
        self._last_failure: Any = None

    async def sample(self, input_amount: int) -> Optional[int]:
        self.calls += 1
        self.sampler.calls += 1
        output, failure = await self.sampler.evaluate(input_amount)
        self._last_failure = failure
        return output

    def probe(self) -> Any:
        return self._last_failure
