"""
tests/unit/test_revert.py - Revert classification tests.
"""

import unittest

import pytest

from amm.revert import (
    NotEnoughInputAvailable,
    RevertClassifier,
    RevertContext,
    SELECTOR_NEGATIVE_INTEREST_RATES,
    SELECTOR_NOT_ENOUGH_BASE_IN,
    SELECTOR_SLIPPAGE_DURING_MINT,
    SlippageExceeded,
    describe_revert,
    extract_revert_data,
    selector_from_message,
)
from core.constants import RevertSource
from core.exceptions import ContractRevertError

from conftest import HELPER, POOL


def word(value: int) -> str:
    return format(value, "x").zfill(64)


NOT_ENOUGH_BASE_IN_500_1000 = SELECTOR_NOT_ENOUGH_BASE_IN + word(500) + word(1000)
SLIPPAGE_1_2_3 = SELECTOR_SLIPPAGE_DURING_MINT + word(1) + word(2) + word(3)


@pytest.fixture
def classifier():
    return RevertClassifier(RevertContext(pool_address=POOL, helper_address=HELPER))


class TestPayloadExtraction:
    """Failure shapes the ledger may produce."""

    def test_direct_data_attribute(self):
        err = ContractRevertError("execution reverted", data=NOT_ENOUGH_BASE_IN_500_1000)
        assert extract_revert_data(err) == NOT_ENOUGH_BASE_IN_500_1000

    def test_nested_error_mapping(self):
        err = ContractRevertError(
            "execution reverted",
            error={"code": 3, "message": "execution reverted", "data": SLIPPAGE_1_2_3},
        )
        assert extract_revert_data(err) == SLIPPAGE_1_2_3

    def test_exception_cause_chain(self):
        inner = ContractRevertError("inner", data=NOT_ENOUGH_BASE_IN_500_1000)
        try:
            try:
                raise inner
            except ContractRevertError as e:
                raise RuntimeError("wrapped") from e
        except RuntimeError as outer:
            assert extract_revert_data(outer) == NOT_ENOUGH_BASE_IN_500_1000

    def test_mapping_cause_cause(self):
        failure = {"message": "x", "cause": {"cause": {"data": SLIPPAGE_1_2_3}}}
        assert extract_revert_data(failure) == SLIPPAGE_1_2_3

    def test_bytes_payload(self):
        failure = {"data": bytes.fromhex(NOT_ENOUGH_BASE_IN_500_1000[2:])}
        assert extract_revert_data(failure) == NOT_ENOUGH_BASE_IN_500_1000

    def test_non_hex_data_ignored(self):
        assert extract_revert_data({"data": "not a payload"}) is None
        assert extract_revert_data(None) is None


class TestClassify:
    """Structural decoding and source attribution."""

    def test_not_enough_base_in_against_pool(self, classifier):
        """Payload for (500, 1000) decodes against the pool schema."""
        err = ContractRevertError("execution reverted", data=NOT_ENOUGH_BASE_IN_500_1000, contract_address=POOL)

        info = classifier.classify(err)

        assert info.matched_against == RevertSource.POOL
        assert info.selector == SELECTOR_NOT_ENOUGH_BASE_IN
        assert info.error_name == "NotEnoughBaseIn"
        assert info.args == (500, 1000)

        hint = classifier.hint(err)
        assert hint == NotEnoughInputAvailable(available=500, needed=1000)
        assert hint.shortfall == 500

    def test_slippage_hint(self, classifier):
        hint = classifier.hint({"data": SLIPPAGE_1_2_3})
        assert isinstance(hint, SlippageExceeded)
        assert (hint.observed_ratio, hint.min_ratio, hint.max_ratio) == (1, 2, 3)

    def test_helper_schema_second(self, classifier):
        info = classifier.classify({"data": "0x1f2a2005"})
        assert info.matched_against == RevertSource.HELPER
        assert info.error_name == "ZeroAmount"
        assert info.args == ()

    def test_wrong_length_falls_back_to_address(self, classifier):
        """A known selector with extra words is not a structural match."""
        data = NOT_ENOUGH_BASE_IN_500_1000 + word(7)
        info = classifier.classify(ContractRevertError("reverted", data=data, contract_address=HELPER))

        assert info.error_name is None
        assert info.selector == SELECTOR_NOT_ENOUGH_BASE_IN
        assert info.matched_against == RevertSource.HELPER
        assert classifier.hint_from_info(info) is None

    def test_unknown_selector_keeps_selector(self, classifier):
        info = classifier.classify({"data": "0xdeadbeef" + word(1)})
        assert info.selector == "0xdeadbeef"
        assert info.matched_against == RevertSource.UNKNOWN
        assert not info.decoded

    def test_message_only_selector_and_address(self, classifier):
        failure = {
            "message": f"reverted with 0x68744619 (address: {POOL.lower()})",
        }
        info = classifier.classify(failure)

        assert info.selector == SELECTOR_NOT_ENOUGH_BASE_IN
        assert info.matched_against == RevertSource.POOL
        assert classifier.hint(failure) == NotEnoughInputAvailable(available=0, needed=0)

    def test_message_only_helper_has_no_hint(self, classifier):
        failure = {"shortMessage": f"custom error 0xd48b6b81 address: {HELPER}"}
        assert classifier.classify(failure).matched_against == RevertSource.HELPER
        assert classifier.hint(failure) is None

    def test_nothing_usable(self, classifier):
        info = classifier.classify(object())
        assert info.selector is None
        assert info.matched_against == RevertSource.UNKNOWN

    def test_message_ignores_addresses_as_selectors(self):
        assert selector_from_message(f"call to {POOL} failed") is None
        assert selector_from_message("error=0xb24d9e1b.") == SELECTOR_NEGATIVE_INTEREST_RATES


class TestDescribe(unittest.TestCase):
    """Human-readable messages never carry the raw payload."""

    def setUp(self):
        self.classifier = RevertClassifier(RevertContext(pool_address=POOL, helper_address=HELPER))

    def test_not_enough_base_in_message(self):
        message = self.classifier.describe({"data": NOT_ENOUGH_BASE_IN_500_1000})
        self.assertIn("NotEnoughBaseIn", message)
        self.assertIn("shortfall 500", message)
        self.assertNotIn(NOT_ENOUGH_BASE_IN_500_1000, message)

    def test_negative_rate_message(self):
        data = SELECTOR_NEGATIVE_INTEREST_RATES + word(1) + word(2)
        message = self.classifier.describe({"data": data})
        self.assertIn("negative interest rates", message)

    def test_fallback_only(self):
        self.assertEqual(self.classifier.describe({}, fallback="Swap failed"), "Swap failed")

    def test_unknown_selector_message(self):
        info = self.classifier.classify({"data": "0xdeadbeef"})
        self.assertEqual(describe_revert(info, "Approval failed"), "Approval failed (revert 0xdeadbeef)")
