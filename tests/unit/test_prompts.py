from __future__ import annotations

from app.ai.prompts import build_extraction_prompt, build_invent_prompt


def test_invent_prompt_lists_only_provided_fields() -> None:
  prompt = build_invent_prompt({"title": "Smoky chickpea stew", "cuisine": "mediterranean", "prepTime": 15, "dietaryRestrictions": ["vegan", "gluten-free"], "description": ""})

  assert "Title: Smoky chickpea stew" in prompt
  assert "Cuisine: mediterranean" in prompt
  assert "Prep Time: 15 minutes" in prompt
  assert "Dietary Restrictions: vegan, gluten-free" in prompt
  assert "Description:" not in prompt
  assert "Cook Time" not in prompt
  assert "chunks" in prompt


def test_extraction_prompt_embeds_url_and_html() -> None:
  prompt = build_extraction_prompt("<p>Pasta</p>", "https://example.com/pasta")
  assert "Source URL: https://example.com/pasta" in prompt
  assert prompt.endswith("<p>Pasta</p>")
