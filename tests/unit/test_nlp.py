"""
NLP Tests
==========

Normalizer, lexicon containment, intent classifier and jurisdiction
detection.
"""

from __future__ import annotations

import pytest

from taxrag.nlp.intent import Intent, detect_intent, detect_jurisdictions
from taxrag.nlp.lexicon import (
    LEXICON,
    contains_term,
    content_words,
    mentions,
    normalize,
    strip_accents,
    tokenize,
)


class TestNormalize:
    def test_strips_accents_and_lowercases(self):
        assert normalize("Exención ALÍCUOTA Córdoba") == "exencion alicuota cordoba"

    def test_keeps_enye_base_letter(self):
        assert strip_accents("pequeña") == "pequena"

    def test_none_safe(self):
        assert normalize("") == ""

    def test_tokenize_min_length(self):
        assert tokenize("¿Qué es el IVA?", min_length=3) == ["que", "iva"]


class TestContainment:
    def test_long_term_is_substring(self):
        assert contains_term("quedan no alcanzados por el tributo", "no alcanzad")

    def test_accented_term_matches_plain_text(self):
        assert contains_term(normalize("Exencion del impuesto"), "exención")

    def test_short_term_requires_word_boundary(self):
        assert contains_term("regimen rs de iibb", "rs")
        assert not contains_term("cursos de capacitacion", "rs")

    def test_short_term_iva(self):
        assert not contains_term("actividad privada", "iva")
        assert contains_term("el iva se liquida", "iva")

    def test_mentions_group(self):
        assert mentions("Inscripción en Ingresos Brutos", "iibb")
        assert not mentions("Impuesto automotor", "iibb")

    def test_lexicon_is_read_only(self):
        with pytest.raises(TypeError):
            LEXICON["nuevo"] = ("x",)

    def test_content_words_drop_stopwords(self):
        assert content_words("¿Cuál es la alícuota para las pymes?") == ["alicuota", "pymes"]


class TestIntent:
    def test_registration_needs_both_groups(self):
        assert detect_intent("¿Cómo me inscribo? Inscripción en ingresos brutos") == Intent.REGISTRATION
        assert detect_intent("Inscripción de un vehículo") != Intent.REGISTRATION

    def test_exemption(self):
        assert detect_intent("¿Hay exención de patente para jubilados?") == Intent.EXEMPTION

    def test_rate_or_base(self):
        assert detect_intent("¿Cuál es la alícuota del impuesto?") == Intent.RATE_OR_BASE

    def test_bill(self):
        assert detect_intent("No entiendo el detalle de mi boleta") == Intent.BILL

    def test_generic(self):
        assert detect_intent("Hola, ¿qué tal?") == Intent.GENERIC

    def test_priority_order_breaks_ties(self):
        # Exemption and rate terms both present: exemption wins regardless of counts.
        q = "alícuota tasa porcentaje y exención"
        assert detect_intent(q) == Intent.EXEMPTION

    def test_registration_beats_exemption(self):
        q = "Adhesión a ingresos brutos con exención"
        assert detect_intent(q) == Intent.REGISTRATION


class TestJurisdictions:
    def test_province(self):
        assert detect_jurisdictions("IIBB en Buenos Aires") == ["AR-BA"]

    def test_city_does_not_imply_province(self):
        assert detect_jurisdictions("IIBB en la Ciudad de Buenos Aires") == ["AR-CABA"]

    def test_city_and_province(self):
        found = detect_jurisdictions("Ciudad de Buenos Aires y provincia de Buenos Aires")
        assert found == ["AR-BA", "AR-CABA"]

    def test_cordoba(self):
        assert detect_jurisdictions("Rentas Córdoba") == ["AR-CBA"]

    def test_none(self):
        assert detect_jurisdictions("¿Qué es el monotributo?") == []
