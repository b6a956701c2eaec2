import unittest

from invoice_editor.editor import InvoiceEditor, default_record
from invoice_editor.models import InvoiceRecord, LineItem


class InvoiceRecordTests(unittest.TestCase):
    def test_with_items_recomputes_total(self) -> None:
        record = InvoiceRecord(invoice_no="A1").with_items([LineItem(amount="2"), LineItem(amount="3.5")])

        self.assertEqual(record.total, "5.50")
        self.assertIsInstance(record.items, tuple)

    def test_from_payload_accepts_camel_and_snake_case(self) -> None:
        camel = InvoiceRecord.from_payload(
            {"invoiceNo": "A1", "billingPeriod": "2026/01", "items": [{"amount": "1,000"}]}
        )
        snake = InvoiceRecord.from_payload(
            {"invoice_no": "A1", "billing_period": "2026/01", "items": [{"amount": "1,000"}]}
        )

        self.assertEqual(camel, snake)
        self.assertEqual(camel.total, "1,000.00")
        self.assertEqual(camel.currency, "USD")

    def test_from_payload_uses_first_non_empty_number_key(self) -> None:
        self.assertEqual(InvoiceRecord.from_payload({"number": "X"}).invoice_no, "X")
        self.assertEqual(
            InvoiceRecord.from_payload({"invoiceNo": "", "invoice_no": " Y "}).invoice_no,
            "Y",
        )

    def test_payload_round_trip(self) -> None:
        record = default_record()

        self.assertEqual(InvoiceRecord.from_payload(record.to_payload()), record)

    def test_empty_invoice_number_is_invalid(self) -> None:
        self.assertFalse(InvoiceRecord(invoice_no="  ").is_valid)


class InvoiceEditorTests(unittest.TestCase):
    def test_default_form_matches_total(self) -> None:
        editor = InvoiceEditor()

        self.assertEqual(editor.record.total, "104,893.06")
        self.assertEqual(len(editor.item_ids), 1)

    def test_add_update_remove_items(self) -> None:
        editor = InvoiceEditor()
        first_id = editor.item_ids[0]

        new_id = editor.add_item()
        record = editor.update_item(new_id, "amount", "6.94")
        self.assertEqual(record.total, "104,900.00")

        record = editor.remove_item(first_id)
        self.assertEqual(record.total, "6.94")
        self.assertEqual(editor.item_ids, [new_id])

    def test_set_field_keeps_items(self) -> None:
        editor = InvoiceEditor()

        record = editor.set_field("currency", "CNY")

        self.assertEqual(record.currency, "CNY")
        self.assertEqual(len(record.items), 1)

    def test_unknown_fields_are_rejected(self) -> None:
        editor = InvoiceEditor()

        with self.assertRaises(KeyError):
            editor.set_field("total", "1.00")
        with self.assertRaises(KeyError):
            editor.update_item(editor.item_ids[0], "id", "x")


if __name__ == "__main__":
    unittest.main()
