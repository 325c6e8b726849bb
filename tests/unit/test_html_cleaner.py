from __future__ import annotations

from app.ai.html_cleaner import UrlCodec, clean_html, estimate_token_count, limit_payload_size, prepare_html_for_ai, preserve_recipe_images, remove_comment_sections, replace_urls_with_codes, restore_urls_from_codes


def test_content_within_budget_is_unchanged() -> None:
  content = "a" * 35
  assert estimate_token_count(content) == 10
  assert limit_payload_size(content, 10) == content


def test_truncation_prefers_the_last_closing_tag() -> None:
  content = "<p>Short intro.</p><p>Second paragraph that keeps going on and on</p>"
  assert limit_payload_size(content, 10) == "<p>Short intro.</p>..."


def test_truncation_falls_back_to_sentence_end() -> None:
  content = "First sentence. Second sentence goes on without end"
  assert limit_payload_size(content, 10) == "First sentence...."


def test_truncation_ignores_dots_inside_urls() -> None:
  content = "Pasta tastes good on example.com/pasta and elsewhere" + "x" * 40
  assert limit_payload_size(content, 10) == "Pasta tastes good on example.com/pa..."


def test_truncation_ignores_decimal_points() -> None:
  content = "Add 1.5 cups flour. Stir in 2.5 cups of warm milk slowly"
  assert limit_payload_size(content, 10) == "Add 1.5 cups flour...."


def test_truncation_hard_cuts_without_boundaries() -> None:
  assert limit_payload_size("a" * 100, 10) == "a" * 35 + "..."


def test_truncated_output_respects_the_budget() -> None:
  content = "<div>" + "<p>Stir the sauce gently.</p>" * 500 + "</div>"
  limited = limit_payload_size(content, 200)
  assert limited.endswith("</p>...")
  assert len(limited) <= 700 + len("...")


def test_clean_html_drops_scripts_styles_and_comments() -> None:
  html = """
    <html><head><style>p { color: red }</style><script>track()</script></head>
    <body>
      <!-- tracking pixel -->
      <h1>Pasta al limone</h1>
      <p>Comment faire une pasta al limone en 20 minutes.</p>
      <div class="comments-area"><p>Great recipe!</p></div>
    </body></html>
  """
  cleaned = clean_html(html)
  assert "track()" not in cleaned
  assert "color: red" not in cleaned
  assert "tracking pixel" not in cleaned
  assert "Great recipe!" not in cleaned
  assert "Pasta al limone" in cleaned
  assert "Comment faire une pasta" in cleaned
  assert "\n" not in cleaned


def test_comment_heading_owns_following_siblings() -> None:
  html = "<div><h2>Ingredients</h2><ul><li>Lemon</li></ul><h2>Comments</h2><p>Yum</p><p>Loved it</p><h2>Notes</h2><p>Keep cold</p></div>"
  cleaned = remove_comment_sections(html)
  assert "Lemon" in cleaned
  assert "Yum" not in cleaned and "Loved it" not in cleaned
  assert "Keep cold" in cleaned


def test_images_expose_their_source() -> None:
  html = preserve_recipe_images('<img src="https://cdn.example.com/pasta.jpg" alt="Pasta">')
  assert 'data-image-url="https://cdn.example.com/pasta.jpg"' in html
  assert preserve_recipe_images(html).count("data-image-url") == 1


def test_urls_are_swapped_for_codes_and_restored() -> None:
  html = '<a href="https://example.com/a">A</a><img src="https://cdn.example.com/p.jpg"><a href="https://example.com/a">again</a>'
  encoded, mappings = replace_urls_with_codes(html)
  assert "https://" not in encoded
  assert mappings == {"URL_1": "https://example.com/a", "URL_2": "https://cdn.example.com/p.jpg"}
  assert restore_urls_from_codes("see URL_2 and URL_9", mappings) == "see https://cdn.example.com/p.jpg and URL_9"


def test_codec_restores_nested_model_output() -> None:
  codec = UrlCodec()
  prepared = prepare_html_for_ai('<p>Pasta</p><img src="https://cdn.example.com/pasta.jpg">', token_budget=1000, codec=codec)
  assert "URL_1" in prepared.content
  restored = codec.restore({"imageUrl": "URL_1", "recipeSteps": [{"type": "image", "content": "Plate", "imageUrl": "URL_1"}], "servings": 2})
  assert restored["imageUrl"] == "https://cdn.example.com/pasta.jpg"
  assert restored["recipeSteps"][0]["imageUrl"] == "https://cdn.example.com/pasta.jpg"
  assert restored["servings"] == 2
