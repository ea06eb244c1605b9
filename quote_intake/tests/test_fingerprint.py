import hashlib
import unittest

from quote_intake.utils.fingerprint import extract_plain_body, from_raw, parse_headers

EMAIL = (
    "From: Badr Algothami <badr@example.com>\r\n"
    "To: quotes@freight.example\r\n"
    "Subject: Quote BMW to Jeddah\r\n"
    "Date: Mon, 06 Oct 2025 10:00:00 +0200\r\n"
    "Message-ID:  <abc123@mail.example.com> \r\n"
    "Content-Type: text/plain; charset=utf-8\r\n"
    "\r\n"
    "Hello,\r\n"
    "please quote a BMW Serie 7 from Brussels to Jeddah.\r\n"
)

HTML_EMAIL = (
    "From: info@carhanco.example\n"
    "Subject: RoRo request\n"
    "Content-Type: text/html; charset=utf-8\n"
    "\n"
    "<html><body><p>Toyota Land Cruiser</p><p>from Antwerp to Lagos</p></body></html>\n"
)

FORWARDED = (
    "From: Sales Desk <sales@freight.example>\n"
    "Subject: Fwd: transport request\n"
    "Message-ID: <fwd-1@freight.example>\n"
    "Content-Type: text/plain; charset=utf-8\n"
    "\n"
    "---------- Forwarded message ---------\n"
    "From: Jan Peeters <jan.peeters@peeters-cars.example>\n"
    "Subject: transport request\n"
    "\n"
    "Audi Q7 from Antwerp to Dakar please.\n"
)


FORM = "From: Antwerp\nTo: Lagos\nVehicle: BMW X5\nContact: john@acme.com\nPhone: +32 470 12 34 56"


def _fp(raw):
    headers = parse_headers(raw)
    return from_raw(raw, headers, extract_plain_body(raw))


class TestParseHeaders(unittest.TestCase):
    def test_email_headers(self):
        headers = parse_headers(EMAIL.encode("utf-8"))
        self.assertEqual("Badr Algothami <badr@example.com>", headers["from"])
        self.assertEqual("Quote BMW to Jeddah", headers["subject"])
        self.assertEqual("<abc123@mail.example.com>", headers["message-id"])
        self.assertIn("date", headers)
        self.assertIn("to", headers)

    def test_non_email_input_gives_empty_map(self):
        self.assertEqual({}, parse_headers("Vehicle: BMW Serie 7, from Bruxelles to Djeddah"))
        self.assertEqual({}, parse_headers(b"\x89PNG\r\n\x1a\n\x00\x00"))

    def test_forwarded_mail_uses_original_sender(self):
        headers = parse_headers(FORWARDED)
        self.assertEqual("Jan Peeters <jan.peeters@peeters-cars.example>", headers["from"])
        self.assertEqual("Sales Desk <sales@freight.example>", headers["forwarded-by"])
        self.assertEqual("<fwd-1@freight.example>", headers["message-id"])

    def test_header_shaped_form_is_not_a_message(self):
        self.assertEqual({}, parse_headers(FORM))
        self.assertEqual({}, parse_headers(FORM, "text/plain"))

    def test_declared_plain_text_is_never_parsed(self):
        self.assertEqual({}, parse_headers(EMAIL, "text/plain; charset=utf-8"))
        self.assertEqual("Badr Algothami <badr@example.com>", parse_headers(EMAIL, "message/rfc822")["from"])


class TestPlainBody(unittest.TestCase):
    def test_plain_body_has_unix_line_endings(self):
        body = extract_plain_body(EMAIL)
        self.assertNotIn("\r", body)
        self.assertIn("BMW Serie 7 from Brussels to Jeddah", body)

    def test_html_only_body_is_stripped(self):
        body = extract_plain_body(HTML_EMAIL)
        self.assertIn("Toyota Land Cruiser", body)
        self.assertIn("from Antwerp to Lagos", body)
        self.assertNotIn("<p>", body)

    def test_raw_text_passes_through(self):
        self.assertEqual("line one\nline two", extract_plain_body("line one\r\nline two"))

    def test_header_shaped_form_keeps_all_lines(self):
        for mime in (None, "text/plain"):
            with self.subTest(mime=mime):
                self.assertEqual(FORM, extract_plain_body(FORM, mime))

    def test_declared_html_is_stripped(self):
        body = extract_plain_body("<div>Audi Q7<br>from Antwerp to Dakar</div>", "text/html")
        self.assertIn("Audi Q7", body)
        self.assertNotIn("<div>", body)


class TestFromRaw(unittest.TestCase):
    def test_deterministic(self):
        first, second = _fp(EMAIL), _fp(EMAIL)
        self.assertEqual(first, second)
        self.assertEqual(64, len(first.content_sha256))

    def test_message_id_is_trimmed(self):
        self.assertEqual("<abc123@mail.example.com>", _fp(EMAIL).message_id)

    def test_message_id_absent(self):
        self.assertIsNone(_fp(HTML_EMAIL).message_id)

    def test_line_endings_and_trailing_blanks_do_not_change_hash(self):
        variant = EMAIL.replace("\r\n", "\n").replace("Hello,", "Hello,   ") + "\n\n"
        self.assertEqual(_fp(EMAIL).content_sha256, _fp(variant).content_sha256)

    def test_transport_headers_do_not_change_hash(self):
        variant = EMAIL.replace("Message-ID:  <abc123@mail.example.com> \r\n",
                                "Message-ID: <other@mail.example.com>\r\nReceived: by relay\r\n")
        self.assertEqual(_fp(EMAIL).content_sha256, _fp(variant).content_sha256)

    def test_subject_is_part_of_hash(self):
        variant = EMAIL.replace("Subject: Quote BMW to Jeddah", "Subject: Quote BMW to Dammam")
        self.assertNotEqual(_fp(EMAIL).content_sha256, _fp(variant).content_sha256)

    def test_binary_input_hashes_raw_bytes(self):
        data = b"\x89PNG\r\n\x1a\n" + bytes(range(64))
        fp = from_raw(data, {}, "")
        self.assertEqual(hashlib.sha256(data).hexdigest(), fp.content_sha256)
        self.assertIsNone(fp.message_id)


if __name__ == "__main__":
    unittest.main()
