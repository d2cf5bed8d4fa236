from __future__ import annotations

from docgen_service.documents import flatten_text, normalize_result

from fakes import sample_document


def test_flatten_normalized_document():
    text = flatten_text(normalize_result(sample_document()))
    assert text == (
        "Scope\n\n"
        "Cleaning twice a week.\n\n"
        "Closing and signatures\n\n"
        "Signed in good faith.\nBerlin, 1 May 2025\n\n"
        "Name: ____________________"
    )


def test_flatten_skips_blank_text_and_joins_items():
    payload = {
        "sections": [
            {
                "heading": "Duties",
                "blocks": [
                    {"type": "list", "text": "  ", "items": ["Mop floors", "Dust shelves"]},
                ],
            }
        ]
    }
    assert flatten_text(payload) == "Duties\n\nMop floors\nDust shelves"


def test_flatten_without_sections_falls_back_to_raw():
    assert flatten_text({"echo": "hi"}) == '{"echo":"hi"}'
    assert flatten_text("plain") == "plain"
