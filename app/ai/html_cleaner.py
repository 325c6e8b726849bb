"""Shrink scraped HTML into something a completion model can read within a token budget."""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from bs4 import BeautifulSoup, Comment, Tag

CHARS_PER_TOKEN = 3.5
DEFAULT_TOKEN_BUDGET = 128_000
TRUNCATION_MARKER = "..."

_NOISE_TAGS = ("script", "style", "noscript", "iframe", "svg", "nav", "footer", "aside", "form", "button")
_HEADINGS = ("h1", "h2", "h3", "h4", "h5", "h6")
_DISCUSSION_MARKERS = ("comment", "commentaire", "review", "avis", "disqus", "reply")
_DISCUSSION_HEADINGS = {"comments", "comment", "commentaires", "reviews", "avis", "vos avis", "leave a comment", "leave a reply"}
_URL_ATTRIBUTES = ("src", "href", "data-image-url", "data-src")
_CLOSE_TAG = re.compile(r"</[A-Za-z][A-Za-z0-9-]*\s*>")
_SENTENCE_END = re.compile(r"[.!?](?=\s|$)")
_WHITESPACE = re.compile(r"\s+")
_URL_CODE = re.compile(r"\bURL_(\d+)\b")


def _soup(html: str) -> BeautifulSoup:
  """Parse with the stdlib-backed parser so no extra parser package is needed."""
  return BeautifulSoup(html, "html.parser")


def _is_discussion_container(tag: Tag) -> bool:
  """Match class/id tokens against the comment-section patterns."""
  tokens = [*(tag.get("class") or []), str(tag.get("id") or "")]
  return any(marker in token.lower() for token in tokens for marker in _DISCUSSION_MARKERS)


def _strip_discussion(soup: BeautifulSoup) -> None:
  """Remove discussion containers in place."""
  for tag in [tag for tag in soup.find_all(True) if _is_discussion_container(tag)]:
    if not tag.decomposed:
      tag.decompose()

  # A bare "Comments" heading owns every sibling up to the next heading.
  for heading in soup.find_all(_HEADINGS):
    if heading.decomposed or heading.get_text(" ", strip=True).lower() not in _DISCUSSION_HEADINGS:
      continue
    doomed = [heading]
    for sibling in heading.find_next_siblings():
      if sibling.name in _HEADINGS:
        break
      doomed.append(sibling)
    for tag in doomed:
      tag.decompose()


def _tag_images(soup: BeautifulSoup) -> None:
  """Copy each usable img src into data-image-url and drop srcset noise."""
  for img in soup.find_all("img"):
    src = img.get("src")
    if src and not img.has_attr("data-image-url"):
      img["data-image-url"] = src


def remove_comment_sections(html: str) -> str:
  """Drop reader discussion blocks while keeping recipe text that merely says "comment"."""
  soup = _soup(html)
  _strip_discussion(soup)
  return str(soup)


def preserve_recipe_images(html: str) -> str:
  """Normalize img tags and expose each src as data-image-url so the model sees it."""
  soup = _soup(html)
  _tag_images(soup)
  return str(soup)


def clean_html(html: str) -> str:
  """Remove scripts, styles, comments and discussion sections; collapse whitespace."""
  soup = _soup(html)
  for tag in soup.find_all(_NOISE_TAGS):
    if not tag.decomposed:
      tag.decompose()
  for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
    comment.extract()
  _strip_discussion(soup)
  _tag_images(soup)
  return _WHITESPACE.sub(" ", str(soup)).strip()


def _looks_like_url(value: str) -> bool:
  """Only absolute http(s) and protocol-relative values are worth encoding."""
  lowered = value.strip().lower()
  if not lowered or lowered.startswith(("javascript:", "data:", "mailto:", "#")):
    return False
  if lowered.startswith(("http://", "https://", "//", "/")):
    return True
  return "." in lowered and " " not in lowered


@dataclass
class UrlCodec:
  """Swap long URLs for URL_n codes before the AI call and put them back afterwards."""

  mappings: dict[str, str] = field(default_factory=dict)
  _codes_by_url: dict[str, str] = field(default_factory=dict, repr=False)

  def code_for(self, url: str) -> str:
    """Return the code for a URL, assigning the next URL_n on first sight."""
    code = self._codes_by_url.get(url)
    if code is None:
      code = f"URL_{len(self.mappings) + 1}"
      self._codes_by_url[url] = code
      self.mappings[code] = url
    return code

  def encode(self, html: str) -> str:
    """Replace href/src/data-image-url values with their codes."""
    soup = _soup(html)
    for tag in soup.find_all(True):
      for attribute in _URL_ATTRIBUTES:
        value = tag.get(attribute)
        if isinstance(value, str) and _looks_like_url(value):
          tag[attribute] = self.code_for(value)
    return str(soup)

  def restore(self, value: Any) -> Any:
    """Restore codes inside a parsed JSON structure."""
    if isinstance(value, str):
      return restore_urls_from_codes(value, self.mappings)
    if isinstance(value, list):
      return [self.restore(item) for item in value]
    if isinstance(value, dict):
      return {key: self.restore(item) for key, item in value.items()}
    return value


def replace_urls_with_codes(html: str, codec: UrlCodec | None = None) -> tuple[str, dict[str, str]]:
  """Return the rewritten HTML and the code -> URL mapping."""
  codec = codec or UrlCodec()
  return codec.encode(html), dict(codec.mappings)


def restore_urls_from_codes(content: str, mappings: Mapping[str, str]) -> str:
  """Put URLs back into raw model text; longer codes first so URL_1 never eats URL_10."""
  if not mappings:
    return content
  return _URL_CODE.sub(lambda match: mappings.get(match.group(0), match.group(0)), content)


def estimate_token_count(text: str) -> int:
  """Approximate tokens at a fixed 3.5 characters per token."""
  if not text:
    return 0
  return math.ceil(len(text) / CHARS_PER_TOKEN)


def limit_payload_size(content: str, max_tokens: int = DEFAULT_TOKEN_BUDGET, *, marker: str = TRUNCATION_MARKER) -> str:
  """Cut content to the budget at the last close tag, else sentence end, else hard; append the marker."""
  if estimate_token_count(content) <= max_tokens:
    return content

  max_chars = math.floor(max_tokens * CHARS_PER_TOKEN)
  window = content[:max_chars]

  cut = 0
  for match in _CLOSE_TAG.finditer(window):
    cut = match.end()
  if cut == 0:
    # Only a terminator followed by whitespace ends a sentence; dots in URLs and decimals do not.
    for match in _SENTENCE_END.finditer(window):
      cut = match.end()
  if cut == 0:
    cut = max_chars
  return window[:cut] + marker


@dataclass(frozen=True)
class PreparedHtml:
  """Model-ready HTML and the URL codes needed to restore the response."""

  content: str
  url_mappings: dict[str, str]
  estimated_tokens: int


def prepare_html_for_ai(html: str, *, token_budget: int = DEFAULT_TOKEN_BUDGET, codec: UrlCodec | None = None) -> PreparedHtml:
  """Run the full cleaning chain used by the extraction pipeline."""
  codec = codec or UrlCodec()
  cleaned = clean_html(html)
  encoded = codec.encode(cleaned)
  limited = limit_payload_size(encoded, token_budget)
  return PreparedHtml(content=limited, url_mappings=dict(codec.mappings), estimated_tokens=estimate_token_count(limited))
