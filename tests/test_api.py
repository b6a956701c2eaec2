import json
import unittest

from invoice_editor.server import is_client_disconnect, validate_invoice_payload


class ApiValidationTests(unittest.TestCase):
    def _json_bytes(self, payload: object) -> bytes:
        return json.dumps(payload).encode("utf-8")

    def test_accepts_valid_payload(self) -> None:
        payload, error = validate_invoice_payload(
            self._json_bytes(
                {"invoiceNo": "A1", "items": [{"date": "Jan", "description": "Work", "amount": "20"}]}
            ),
            max_items=10,
        )

        self.assertIsNone(error)
        assert payload is not None
        self.assertIn("items", payload)

    def test_accepts_snake_case_invoice_number(self) -> None:
        _, error = validate_invoice_payload(self._json_bytes({"invoice_no": "A1"}), max_items=10)

        self.assertIsNone(error)

    def test_accepts_every_invoice_number_key(self) -> None:
        for body in ({"number": "X"}, {"invoiceNo": "", "invoice_no": "X"}):
            with self.subTest(body=body):
                _, error = validate_invoice_payload(self._json_bytes(body), max_items=10)

                self.assertIsNone(error)

    def test_rejects_invalid_utf8(self) -> None:
        _, error = validate_invoice_payload(b"\xff", max_items=10)

        assert error is not None
        self.assertEqual(error[0], 400)
        self.assertEqual(error[1]["error"], "invalid_encoding")

    def test_rejects_invalid_json(self) -> None:
        _, error = validate_invoice_payload(b'{"items":', max_items=10)

        assert error is not None
        self.assertEqual(error[0], 400)
        self.assertEqual(error[1]["error"], "invalid_json")

    def test_rejects_non_object_root(self) -> None:
        _, error = validate_invoice_payload(self._json_bytes(["bad-root"]), max_items=10)

        assert error is not None
        self.assertEqual(error[0], 400)
        self.assertEqual(error[1]["error"], "invalid_payload")

    def test_rejects_missing_invoice_number(self) -> None:
        _, error = validate_invoice_payload(self._json_bytes({"invoiceNo": " ", "items": []}), max_items=10)

        assert error is not None
        self.assertEqual(error[0], 400)
        self.assertIn("invoiceNo", error[1]["detail"])

    def test_rejects_non_array_items(self) -> None:
        _, error = validate_invoice_payload(self._json_bytes({"invoiceNo": "A1", "items": "bad"}), max_items=10)

        assert error is not None
        self.assertEqual(error[0], 400)
        self.assertEqual(error[1]["error"], "invalid_payload")

    def test_rejects_non_object_items(self) -> None:
        _, error = validate_invoice_payload(self._json_bytes({"invoiceNo": "A1", "items": [1]}), max_items=10)

        assert error is not None
        self.assertEqual(error[1]["error"], "invalid_payload")

    def test_rejects_more_items_than_one_page_holds(self) -> None:
        items = [{"amount": "1"}] * 3
        _, error = validate_invoice_payload(self._json_bytes({"invoiceNo": "A1", "items": items}), max_items=2)

        assert error is not None
        self.assertEqual(error[0], 413)
        self.assertEqual(error[1]["error"], "invoice_too_large")
        self.assertEqual(error[1]["max_items"], 2)


class ClientDisconnectTests(unittest.TestCase):
    def test_recognizes_disconnect_errors(self) -> None:
        self.assertTrue(is_client_disconnect(BrokenPipeError()))
        self.assertTrue(is_client_disconnect(ConnectionResetError()))
        self.assertFalse(is_client_disconnect(ValueError("boom")))


if __name__ == "__main__":
    unittest.main()
