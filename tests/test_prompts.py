import logging
import random

import pytest

from api.services.prompts import DEFAULT_CATEGORY, PROMPT_TEMPLATES, PromptCatalog

@pytest.mark.parametrize("categories", [["unknown"], ["nope", "also-nope"], [], None])
def test_unknown_categories_fall_back_to_reflection(categories, caplog):
    catalog = PromptCatalog(rng=random.Random(7))

    with caplog.at_level(logging.WARNING, logger='api.services.prompts'):
        for _ in range(20):
            assert catalog.generate_prompt(categories) in PROMPT_TEMPLATES[DEFAULT_CATEGORY]

    assert "defaulting to reflection" in caplog.text

def test_prompt_comes_from_requested_categories():
    catalog = PromptCatalog(rng=random.Random(1))
    allowed = set(PROMPT_TEMPLATES['gratitude']) | set(PROMPT_TEMPLATES['future'])

    for _ in range(50):
        assert catalog.generate_prompt(['gratitude', 'future', 'bogus']) in allowed

def test_resolve_categories_drops_unknown_and_duplicates():
    catalog = PromptCatalog()
    assert catalog.resolve_categories(['learning', 'bogus', 'learning', 'emotions']) == ['learning', 'emotions']

def test_every_category_is_reachable():
    catalog = PromptCatalog(rng=random.Random(3))
    seen = set()
    for _ in range(500):
        seen.add(catalog.generate_prompt(list(PROMPT_TEMPLATES)))

    for prompts in PROMPT_TEMPLATES.values():
        assert seen & set(prompts)

def test_categories_have_descriptions():
    categories = PromptCatalog().categories()
    assert set(categories) == {'gratitude', 'reflection', 'learning', 'emotions', 'future'}
    assert all(categories.values())
