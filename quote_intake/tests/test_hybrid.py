import unittest

from quote_intake.config import PipelineConfig
from quote_intake.models import Channel, Document, ExtractionResult
from quote_intake.pipeline.ai_strategy import AIExtractionStrategy
from quote_intake.pipeline.hybrid import (
    HybridExtractionPipeline,
    assess_quality,
    backfill_route,
    merge_results,
    normalize_blank_sentinels,
    strip_formatting_artifacts,
)
from quote_intake.pipeline.pattern_strategy import PatternExtractionStrategy

from quote_intake.tests.fakes import FakeCapability

E2E_TEXT = "Vehicle: BMW Série 7, from Bruxelles to Djeddah, contact Badr Algothami <badr@example.com>"


def text_doc(text):
    return Document(Channel.EMAIL, "text/plain", text.encode("utf-8"), text)


def result(name, data, confidence, sources=None, success=True):
    return ExtractionResult(name, success, data, confidence, {"field_sources": sources or {}})


def pipeline(capability=None, enrich_below=0.5):
    pattern = PatternExtractionStrategy(use_ner=False)
    ai = AIExtractionStrategy(capability, pattern, timeout=5) if capability is not None else None
    return HybridExtractionPipeline(pattern, ai, PipelineConfig(enrich_below=enrich_below))


class TestMerge(unittest.TestCase):
    def test_single_producer_wins(self):
        leaves, provenance, warnings = merge_results([
            result("pattern", {"vehicle": {"brand": "BMW"}}, 0.5),
            result("ai", {"shipment": {"destination": "Jeddah"}}, 0.9),
        ])
        self.assertEqual("BMW", leaves["vehicle.brand"])
        self.assertEqual("Jeddah", leaves["shipment.destination"])
        self.assertEqual("pattern", provenance["vehicle.brand"].source_strategy)
        self.assertEqual([], warnings)

    def test_null_never_overrides_present_value(self):
        leaves, _, _ = merge_results([
            result("pattern", {"contact": {"phone": "+32470123456"}}, 0.3),
            result("ai", {"contact": {"phone": None, "email": ""}}, 0.9),
        ])
        self.assertEqual("+32470123456", leaves["contact.phone"])
        self.assertNotIn("contact.email", leaves)

    def test_blank_sentinel_never_overrides_present_value(self):
        leaves, _, _ = merge_results([
            result("pattern", {"shipment": {"origin": "Antwerp"}}, 0.3),
            result("ai", {"shipment": {"origin": "N/A"}}, 0.9),
        ])
        self.assertEqual("Antwerp", leaves["shipment.origin"])

    def test_higher_confidence_wins_conflict(self):
        leaves, provenance, _ = merge_results([
            result("pattern", {"vehicle": {"model": "Serie 5"}}, 0.4),
            result("ai", {"vehicle": {"model": "Série 7"}}, 0.8),
        ])
        self.assertEqual("Série 7", leaves["vehicle.model"])
        self.assertEqual(0.8, provenance["vehicle.model"].confidence)

    def test_reference_outranks_ai_guess(self):
        leaves, provenance, _ = merge_results([
            result("pattern", {"vehicle": {"dimensions": {"length_m": 5.098}, "weight_kg": 1830}}, 0.5,
                   {"vehicle.dimensions.length_m": "reference", "vehicle.weight_kg": "reference"}),
            result("ai", {"vehicle": {"dimensions": {"length_m": 4.2}, "weight_kg": 2500}}, 0.95),
        ])
        self.assertEqual(5.098, leaves["vehicle.dimensions.length_m"])
        self.assertEqual(1830, leaves["vehicle.weight_kg"])
        self.assertEqual("pattern", provenance["vehicle.weight_kg"].source_strategy)

    def test_reference_has_no_weight_outside_its_field_class(self):
        leaves, _, _ = merge_results([
            result("pattern", {"shipment": {"cargo_description": "Used BMW"}}, 0.5,
                   {"shipment.cargo_description": "reference"}),
            result("ai", {"shipment": {"cargo_description": "Used BMW 740i"}}, 0.95),
        ])
        self.assertEqual("Used BMW 740i", leaves["shipment.cargo_description"])

    def test_tie_is_deterministic_and_warned(self):
        leaves, provenance, warnings = merge_results([
            result("pattern", {"shipment": {"destination": "Dammam"}}, 0.6),
            result("ai", {"shipment": {"destination": "Jeddah"}}, 0.6),
        ])
        self.assertEqual("Jeddah", leaves["shipment.destination"])
        self.assertEqual("ai", provenance["shipment.destination"].source_strategy)
        self.assertEqual(1, len(warnings))
        self.assertIn("shipment.destination", warnings[0])

    def test_equal_values_do_not_warn(self):
        _, _, warnings = merge_results([
            result("pattern", {"shipment": {"destination": "Djeddah"}}, 0.6),
            result("ai", {"shipment": {"destination": "djeddah"}}, 0.6),
        ])
        self.assertEqual([], warnings)

    def test_plausibility_gates(self):
        leaves, _, _ = merge_results([
            result("ai", {
                "contact": {"name": "Badr Algothami", "email": "not-an-email", "phone": "call me"},
                "vehicle": {"vin": "WBA123"},
                "shipment": {"origin": "Badr", "destination": "12345", "destination_options": ["x@y.z", "Dammam"]},
            }, 0.9),
        ], frozenset({"badr", "algothami", "badr algothami"}))
        for path in ("contact.email", "contact.phone", "vehicle.vin", "shipment.origin", "shipment.destination"):
            with self.subTest(path=path):
                self.assertNotIn(path, leaves)
        self.assertEqual(["Dammam"], leaves["shipment.destination_options"])

    def test_phone_is_normalized(self):
        leaves, _, _ = merge_results([result("ai", {"contact": {"phone": "+32 (0)470 12.34.56"}}, 0.9)])
        self.assertEqual("+32470123456", leaves["contact.phone"])


class TestPostMergePasses(unittest.TestCase):
    def test_normalize_blank_sentinels(self):
        tree = {"contact": {"name": "N/A", "phone": "-", "email": "a@b.example"},
                "shipment": {"destination_options": ["unknown", "Jeddah"], "origin": "  "}}
        self.assertEqual({"contact": {"email": "a@b.example"}, "shipment": {"destination_options": ["Jeddah"]}},
                         normalize_blank_sentinels(tree))

    def test_backfill_route_fills_only_missing(self):
        tree = {"shipment": {"origin": "Rotterdam"}}
        filled, added = backfill_route(tree, "Car transport from Antwerp to Lagos, please.")
        self.assertEqual("Rotterdam", filled["shipment"]["origin"])
        self.assertEqual("Lagos", filled["shipment"]["destination"])
        self.assertEqual(["shipment.destination"], added)

    def test_backfill_route_noop_when_complete(self):
        tree = {"shipment": {"origin": "Antwerp", "destination": "Lagos"}}
        self.assertEqual((tree, []), backfill_route(tree, "from Hamburg to Dakar"))

    def test_strip_formatting_artifacts(self):
        tree = {"shipment": {"cargo_description": "Used Caterpillar Grader ()"}, "vehicle": {"year": 2015}}
        self.assertEqual({"shipment": {"cargo_description": "Used Caterpillar Grader"}, "vehicle": {"year": 2015}},
                         strip_formatting_artifacts(tree))

    def test_quality(self):
        config = PipelineConfig(expected_fields=("contact.email", "vehicle.brand", "shipment.origin", "shipment.destination"))
        tree = {"contact": {"email": "a@b.example"}, "vehicle": {"brand": "BMW"}}
        quality = assess_quality(tree, [result("pattern", {}, 0.5), result("ai", {}, 1.0)], config)
        self.assertEqual(0.5, quality.completeness_score)
        self.assertEqual(0.7, quality.quality_score)
        self.assertIn("missing field: shipment.origin", quality.warnings)
        self.assertIn("missing field: shipment.destination", quality.warnings)

    def test_low_completeness_penalty(self):
        config = PipelineConfig(expected_fields=("contact.email", "vehicle.brand", "shipment.origin", "shipment.destination"))
        quality = assess_quality({"vehicle": {"brand": "BMW"}}, [result("pattern", {}, 1.0)], config)
        self.assertEqual(0.25, quality.completeness_score)
        self.assertEqual(0.9, quality.quality_score)
        self.assertIn("low completeness: 0.25", quality.warnings)


class TestHybridPipeline(unittest.TestCase):
    def test_e2e_text(self):
        record = pipeline().run(text_doc(E2E_TEXT))
        self.assertEqual("BMW", record.vehicle.brand)
        self.assertEqual("Série 7", record.vehicle.model)
        self.assertEqual("Bruxelles", record.shipment.origin)
        self.assertEqual("Djeddah", record.shipment.destination)
        self.assertEqual("badr@example.com", record.contact.email)
        self.assertGreater(record.quality.quality_score, 0)
        self.assertEqual(["pattern"], record.strategies)
        self.assertEqual("pattern", record.field("vehicle.brand").source_strategy)
        self.assertIn("missing field: contact.phone", record.quality.warnings)

    def test_confident_pattern_skips_ai(self):
        capability = FakeCapability({"fields": {"vehicle": {"brand": "Audi"}}, "confidence": 0.9})
        record = pipeline(capability).run(text_doc(E2E_TEXT))
        self.assertEqual([], capability.calls)
        self.assertEqual("BMW", record.vehicle.brand)

    def test_low_pattern_confidence_enriches_with_ai(self):
        capability = FakeCapability({
            "fields": {"contact": {"phone": "+32 470 12 34 56"}, "vehicle": {"brand": "BMW", "model": "X5"}},
            "confidence": 0.7,
        })
        record = pipeline(capability).run(text_doc("Please quote from Antwerp to Lagos."))
        self.assertEqual(1, len(capability.calls))
        self.assertEqual("Antwerp", record.shipment.origin)
        self.assertEqual("+32470123456", record.contact.phone)
        self.assertEqual("ai", record.field("vehicle.model").source_strategy)
        self.assertEqual(["pattern", "ai"], record.strategies)

    def test_image_runs_ai_then_pattern_on_ocr_text(self):
        capability = FakeCapability({
            "fields": {"vehicle": {"brand": "Toyota", "dimensions": {"length_m": 4.1}}},
            "confidence": 0.6,
            "raw_text": "Toyota Hilux from Antwerp to Tema",
        })
        doc = Document(Channel.IMAGE, "image/jpeg", b"\xff\xd8\xff fake jpeg", "")
        record = pipeline(capability).run(doc)
        self.assertEqual(["ai", "pattern"], record.strategies)
        self.assertEqual("Tema", record.shipment.destination)
        self.assertEqual("Hilux", record.vehicle.model)
        # factory length outranks the model's guess
        self.assertEqual(5.325, record.vehicle.dimensions.length_m)

    def test_ai_failure_on_image_gives_empty_record(self):
        capability = FakeCapability(error=TimeoutError("timed out"))
        doc = Document(Channel.IMAGE, "image/png", b"\x89PNG fake", "")
        record = pipeline(capability).run(doc)
        self.assertEqual(0.0, record.quality.quality_score)
        self.assertIn("all extraction strategies failed", record.quality.warnings)
        self.assertIsNone(record.vehicle.brand)

    def test_every_strategy_failing_still_returns_a_record(self):
        record = pipeline().run(text_doc("Hello, how are you?"))
        self.assertEqual(0.0, record.quality.quality_score)
        self.assertEqual(0.0, record.quality.completeness_score)
        self.assertIn("all extraction strategies failed", record.quality.warnings)

    def test_contact_name_never_becomes_route(self):
        capability = FakeCapability({
            "fields": {"contact": {"name": "Jan Peeters"}, "shipment": {"origin": "Peeters"}},
            "confidence": 0.9,
        })
        record = pipeline(capability, enrich_below=1.1).run(text_doc("Ship my car Antwerp -> Lagos"))
        self.assertEqual("Antwerp", record.shipment.origin)
        self.assertEqual("Lagos", record.shipment.destination)


if __name__ == "__main__":
    unittest.main()
