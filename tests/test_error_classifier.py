import unittest

import httpx

from application.error_classifier import FailureKind, classified_errors, classify, tag_failure
from domain.errors import (
    AlphAmountOverflowError,
    AlphApiIOError,
    NetworkError,
    NotEnoughALPHForALPHAndTokenChangeOutputError,
    NotEnoughALPHForTokenChangeOutputError,
    NotEnoughALPHForTransactionOutputError,
    NotEnoughApprovedBalanceError,
    NotEnoughBalanceForFeeError,
    NotEnoughFundsError,
)
from infrastructure.alephium.node_gateway import NodeApiError


def api_error(detail: str) -> NodeApiError:
    return NodeApiError(400, detail)


class ClassifyTests(unittest.TestCase):
    def test_documented_shapes(self):
        cases = [
            (httpx.ConnectError("connection refused"), NetworkError),
            (Exception("fetch failed"), NetworkError),
            (NodeApiError(500, "Failed in IO: disk unavailable"), AlphApiIOError),
            (api_error("Invalid value for: body (Amount overflow)"), AlphAmountOverflowError),
            (api_error("Not enough balance: got 10, expected 20"), NotEnoughFundsError),
            (api_error("Not enough balance for fee, maybe transfer a smaller amount"), NotEnoughBalanceForFeeError),
            (
                api_error("Not enough approved balance for address 1DrDyTr, tokenId: abcd, expected: 30, got: 5"),
                NotEnoughApprovedBalanceError,
            ),
            (api_error("Not enough ALPH for transaction output"), NotEnoughALPHForTransactionOutputError),
            (
                api_error("Not enough ALPH for ALPH and token change output, expected 2, got 1"),
                NotEnoughALPHForALPHAndTokenChangeOutputError,
            ),
            (api_error("Not enough ALPH for token change output"), NotEnoughALPHForTokenChangeOutputError),
        ]
        for raw, expected in cases:
            with self.subTest(raw=str(raw)):
                error = classify(raw)
                self.assertIsInstance(error, expected)
                self.assertIs(error.__cause__, raw)

    def test_not_enough_funds_carries_amounts(self):
        error = classify(api_error("Not enough balance: got 1000, expected 250000"))
        self.assertEqual(error.actual_funds, 1000)
        self.assertEqual(error.required_funds, 250000)

    def test_not_enough_approved_balance_carries_fields(self):
        error = classify(
            api_error("Not enough approved balance for address 1DrDyTr, tokenId: abcd, expected: 30, got: 5")
        )
        self.assertEqual((error.address, error.token_id, error.expected, error.got), ("1DrDyTr", "abcd", 30, 5))

    def test_funds_pattern_takes_precedence_over_fee_pattern(self):
        tagged = tag_failure(api_error("Not enough balance: got 1, expected 2"))
        self.assertEqual(tagged.kind, FailureKind.NOT_ENOUGH_FUNDS)
        self.assertEqual(tagged.fields, ("1", "2"))

    def test_unrecognised_errors_pass_through_unchanged(self):
        for raw in (api_error("Unknown group 7"), ValueError("boom"), NotEnoughBalanceForFeeError()):
            with self.subTest(raw=str(raw)):
                self.assertIsNone(tag_failure(raw))
                self.assertIs(classify(raw), raw)


class ClassifiedErrorsTests(unittest.TestCase):
    def test_translates_recognised_failures(self):
        raw = httpx.ReadTimeout("timed out")
        with self.assertRaises(NetworkError) as ctx:
            with classified_errors():
                raise raw
        self.assertIs(ctx.exception.__cause__, raw)

    def test_reraises_unrecognised_failures(self):
        raw = api_error("Unknown group 7")
        with self.assertRaises(NodeApiError) as ctx:
            with classified_errors():
                raise raw
        self.assertIs(ctx.exception, raw)


if __name__ == "__main__":
    unittest.main()
