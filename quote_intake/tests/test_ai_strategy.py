import json
import unittest
from unittest import mock

import requests

from quote_intake.errors import ExtractionStrategyError
from quote_intake.models import Channel, Document
from quote_intake.pipeline.ai_backends import OllamaCapability, OpenAIVisionCapability, _robust_json_parse
from quote_intake.pipeline.ai_strategy import AIExtractionStrategy, normalize_confidence
from quote_intake.pipeline.pattern_strategy import PatternExtractionStrategy

from quote_intake.tests.fakes import FakeCapability

IMAGE = Document(Channel.IMAGE, "image/png", b"\x89PNG\r\n\x1a\nfake", "")
OCR_TEXT = "Quote request: Toyota Hilux from Antwerp to Tema. Contact: kwame@tema-motors.example"


def strategy(capability, timeout=12.0):
    return AIExtractionStrategy(capability, PatternExtractionStrategy(use_ner=False), timeout=timeout)


class TestAIExtractionStrategy(unittest.TestCase):
    def test_valid_response(self):
        capability = FakeCapability({
            "fields": {
                "vehicle": {"brand": "Toyota", "model": "Hilux", "year": "2018"},
                "shipment": {"origin": "Antwerp", "destination": "Tema"},
            },
            "confidence": 0.82,
        })
        result = strategy(capability).extract(IMAGE)
        self.assertTrue(result.success)
        self.assertEqual(0.82, result.confidence)
        self.assertEqual(2018, result.data["vehicle"]["year"])
        self.assertEqual("model", result.metadata["field_sources"]["vehicle.brand"])

    def test_one_call_with_caller_timeout(self):
        capability = FakeCapability({"fields": {"vehicle": {"brand": "Toyota"}}, "confidence": 0.5})
        strategy(capability, timeout=7.5).extract(IMAGE)
        self.assertEqual(1, len(capability.calls))
        call = capability.calls[0]
        self.assertEqual(7.5, call["timeout"])
        self.assertEqual(IMAGE.content, call["payload"])
        self.assertEqual("image/png", call["hint"]["mime_type"])

    def test_text_documents_send_text(self):
        capability = FakeCapability({"fields": {"vehicle": {"brand": "BMW"}}, "confidence": 0.5})
        doc = Document(Channel.EMAIL, "text/plain", b"BMW X5", "BMW X5")
        strategy(capability).extract(doc)
        self.assertEqual("BMW X5", capability.calls[0]["payload"])

    def test_call_failure_is_contained(self):
        for error in (TimeoutError("read timed out"), ExtractionStrategyError("ai", "http 500"),
                      requests.ConnectionError("refused")):
            with self.subTest(error=type(error).__name__):
                capability = FakeCapability(error=error)
                result = strategy(capability).extract(IMAGE)
                self.assertFalse(result.success)
                self.assertTrue(result.error.startswith(type(error).__name__))
                self.assertEqual({}, result.data)
                self.assertEqual(1, len(capability.calls))

    def test_garbled_output_falls_back_to_ocr_text(self):
        capability = FakeCapability({"fields": "<<garbage>>", "confidence": 0.9, "raw_text": OCR_TEXT})
        result = strategy(capability).extract(IMAGE)
        self.assertTrue(result.success)
        self.assertEqual("pattern_on_ocr_text", result.metadata["fallback"])
        self.assertEqual("Toyota", result.data["vehicle"]["brand"])
        self.assertEqual("Tema", result.data["shipment"]["destination"])
        self.assertEqual(1, len(capability.calls))

    def test_plain_string_response_is_treated_as_ocr_text(self):
        result = strategy(FakeCapability(OCR_TEXT)).extract(IMAGE)
        self.assertTrue(result.success)
        self.assertEqual("kwame@tema-motors.example", result.data["contact"]["email"])

    def test_garbled_output_without_text_fails(self):
        result = strategy(FakeCapability({"confidence": 0.4})).extract(IMAGE)
        self.assertFalse(result.success)
        self.assertEqual("empty or garbled response", result.error)

    def test_partial_output_is_backfilled(self):
        capability = FakeCapability({
            "fields": {
                "vehicle": {"brand": "Toyota", "year": "last year"},
                "shipment": {"origin": "Antwerp"},
            },
            "confidence": 70,
            "raw_text": OCR_TEXT,
        })
        result = strategy(capability).extract(IMAGE)
        self.assertTrue(result.success)
        self.assertEqual(0.7, result.confidence)
        self.assertIn("vehicle.year", result.metadata["dropped_fields"])
        self.assertEqual("Tema", result.data["shipment"]["destination"])
        self.assertEqual("Antwerp", result.data["shipment"]["origin"])
        self.assertEqual("model", result.metadata["field_sources"]["vehicle.brand"])
        self.assertIn("shipment.destination", result.metadata["backfilled_fields"])

    def test_top_level_sections_are_accepted(self):
        capability = FakeCapability({"contact": {"email": "a@b.example"}, "confidence": 0.6})
        result = strategy(capability).extract(IMAGE)
        self.assertEqual("a@b.example", result.data["contact"]["email"])

    def test_supports(self):
        self.assertFalse(strategy(None).supports(IMAGE))
        self.assertTrue(strategy(FakeCapability()).supports(IMAGE))
        self.assertFalse(strategy(FakeCapability()).supports(Document(Channel.EMAIL, "text/plain", b" ", " ")))

    def test_normalize_confidence(self):
        cases = [(0.8, 0.8), (80, 0.8), (150, 1.0), (-1, 0.0), ("0.3", 0.3), (None, 0.5), ("high", 0.5)]
        for raw, expected in cases:
            with self.subTest(raw=raw):
                self.assertEqual(expected, normalize_confidence(raw))


class TestBackends(unittest.TestCase):
    def test_robust_json_parse(self):
        self.assertEqual({"a": 1}, _robust_json_parse('{"a": 1}'))
        self.assertEqual({"a": 2}, _robust_json_parse('Sure!\n```json\n{"a": 2}\n```'))
        self.assertEqual({"a": 3}, _robust_json_parse('noise {"a": 3} trailing'))
        with self.assertRaises(json.JSONDecodeError):
            _robust_json_parse("no json here")

    def test_openai_image_payload(self):
        client = mock.MagicMock()
        client.chat.completions.create.return_value.choices = [
            mock.MagicMock(message=mock.MagicMock(content='{"fields": {}, "confidence": 0.1}'))]
        out = OpenAIVisionCapability(model="gpt-test", client=client).analyze(
            b"img", {"mime_type": "image/jpeg"}, timeout=5)
        self.assertEqual({"fields": {}, "confidence": 0.1}, out)
        kwargs = client.chat.completions.create.call_args.kwargs
        self.assertEqual("gpt-test", kwargs["model"])
        self.assertEqual(5, kwargs["timeout"])
        parts = kwargs["messages"][1]["content"]
        self.assertEqual("data:image/jpeg;base64,aW1n", parts[1]["image_url"]["url"])

    def test_openai_pdf_payload(self):
        client = mock.MagicMock()
        client.chat.completions.create.return_value.choices = [
            mock.MagicMock(message=mock.MagicMock(content="{}"))]
        OpenAIVisionCapability(client=client).analyze(b"%PDF", {"mime_type": "application/pdf"}, timeout=5)
        parts = client.chat.completions.create.call_args.kwargs["messages"][1]["content"]
        self.assertEqual("file", parts[1]["type"])
        self.assertTrue(parts[1]["file"]["file_data"].startswith("data:application/pdf;base64,"))

    def test_ollama(self):
        session = mock.MagicMock()
        session.post.return_value.status_code = 200
        session.post.return_value.json.return_value = {"response": '{"fields": {"vehicle": {"brand": "Kia"}}}'}
        out = OllamaCapability(api_url="http://ollama.local/api/generate", model="llava", session=session).analyze(
            b"img", {"mime_type": "image/png"}, timeout=9)
        self.assertEqual("Kia", out["fields"]["vehicle"]["brand"])
        body = session.post.call_args.kwargs["json"]
        self.assertEqual(["aW1n"], body["images"])
        self.assertFalse(body["stream"])
        self.assertEqual(9, session.post.call_args.kwargs["timeout"])

    def test_ollama_http_error(self):
        session = mock.MagicMock()
        session.post.return_value.status_code = 500
        session.post.return_value.text = "model not loaded"
        with self.assertRaises(ExtractionStrategyError):
            OllamaCapability(session=session).analyze("text", {}, timeout=1)


if __name__ == "__main__":
    unittest.main()
