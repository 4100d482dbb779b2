"""
Rendering pipeline: revision content -> category memberships.

Rendering is deterministic for a given (revision, ParserOptions): the
options carry the page identity and an explicit timestamp, and
time-dependent magic words read that timestamp instead of the clock.
"""

import hashlib
import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional
from urllib.parse import unquote

from bs4 import BeautifulSoup
from sqlalchemy.orm import Session

from .database import ParserCacheEntry
from .logger import StructuredLogger, get_logger
from .revisions import PageRecord, RevisionRecord

TemplateSource = Callable[[str], Optional[str]]

NAMESPACE_NAMES = {0: "", 10: "Template", 14: "Category"}
MAX_EXPANSION_DEPTH = 5

CATEGORY_LINK = re.compile(
    r"\[\[\s*category\s*:\s*([^|\]]+?)\s*(?:\|([^\]]*))?\]\]", re.IGNORECASE
)
TRANSCLUSION = re.compile(r"\{\{\s*([^{}|#]+?)\s*(?:\|[^{}]*)?\}\}")
COMMENT = re.compile(r"<!--.*?-->", re.DOTALL)
NOWIKI = re.compile(r"<nowiki>.*?</nowiki>", re.DOTALL | re.IGNORECASE)
INCLUDEONLY = re.compile(r"<includeonly>.*?</includeonly>", re.DOTALL | re.IGNORECASE)
NOINCLUDE = re.compile(r"<noinclude>.*?</noinclude>", re.DOTALL | re.IGNORECASE)
INCLUSION_TAGS = re.compile(r"</?(?:includeonly|noinclude|onlyinclude)>", re.IGNORECASE)


def normalize_category_name(name) -> Optional[str]:
    """
    Db-key form of a category name, always a string.

    Purely numeric names (which may arrive as ints from a keyed
    collection) are converted back to strings.
    """
    text = re.sub(r"[\s_]+", "_", str(name)).strip("_")
    if not text:
        return None
    return text[0].upper() + text[1:]


@dataclass(frozen=True)
class ParserOptions:
    page_id: int
    namespace: int
    title: str
    timestamp: Optional[datetime] = None
    user_lang: str = "en"
    variant: str = "canonical"

    @classmethod
    def for_page(cls, page: PageRecord, timestamp: Optional[datetime] = None) -> "ParserOptions":
        return cls(page.page_id, page.namespace, page.title, timestamp)

    def cache_key(self) -> str:
        """Fingerprint of the options that vary rendered output; excludes the timestamp."""
        payload = json.dumps({"lang": self.user_lang, "variant": self.variant}, sort_keys=True)
        return hashlib.sha1(payload.encode("utf-8")).hexdigest()


@dataclass
class ParserOutput:
    categories: Dict[str, str] = field(default_factory=dict)  # name -> sort key
    cache_revision_id: Optional[int] = None

    def category_names(self) -> List[str]:
        return [str(name) for name in self.categories]


class WikitextRenderer:
    """Extracts categories from wikitext after template and magic word expansion."""

    def render(
        self, text: str, options: ParserOptions, templates: Optional[TemplateSource] = None
    ) -> Dict[str, str]:
        text = INCLUDEONLY.sub("", text)
        text = INCLUSION_TAGS.sub("", text)
        text = self._expand(text, options, templates)
        text = COMMENT.sub("", NOWIKI.sub("", text))

        categories: Dict[str, str] = {}
        for match in CATEGORY_LINK.finditer(text):
            name = normalize_category_name(match.group(1))
            if name is None:
                continue
            sort_key = (match.group(2) or "").strip()
            categories.setdefault(name, sort_key)
        return categories

    def _expand(self, text: str, options: ParserOptions, templates: Optional[TemplateSource]) -> str:
        for _ in range(MAX_EXPANSION_DEPTH):
            expanded = TRANSCLUSION.sub(
                lambda m: self._substitute(m.group(1), options, templates), text
            )
            if expanded == text:
                break
            text = expanded
        return text

    def _substitute(self, name: str, options: ParserOptions, templates: Optional[TemplateSource]) -> str:
        magic = _magic_word(name, options)
        if magic is not None:
            return magic
        if templates is None:
            return ""
        if name.lower().startswith("template:"):
            name = name.split(":", 1)[1]
        body = templates(name)
        if body is None:
            return ""
        body = NOINCLUDE.sub("", body)
        return INCLUSION_TAGS.sub("", body)


def _magic_word(name: str, options: ParserOptions) -> Optional[str]:
    ts = options.timestamp
    if ts is not None:
        if name == "CURRENTYEAR":
            return ts.strftime("%Y")
        if name == "CURRENTMONTH":
            return ts.strftime("%m")
        if name == "CURRENTDAY":
            return str(ts.day)
        if name == "CURRENTDAYNAME":
            return ts.strftime("%A")
        if name == "CURRENTTIMESTAMP":
            return ts.strftime("%Y%m%d%H%M%S")
    if name == "PAGENAME":
        return options.title.replace("_", " ")
    if name == "NAMESPACE":
        return NAMESPACE_NAMES.get(options.namespace, "")
    return None


class HtmlRenderer:
    """Reads category page properties out of stored HTML."""

    CATEGORY_REL = "mw:PageProp/Category"

    def render(
        self, text: str, options: ParserOptions, templates: Optional[TemplateSource] = None
    ) -> Dict[str, str]:
        soup = BeautifulSoup(text, "html.parser")
        categories: Dict[str, str] = {}
        for link in soup.find_all("link"):
            if self.CATEGORY_REL not in (link.get("rel") or []):
                continue
            href = unquote(link.get("href") or "")
            target, _, sort_key = href.partition("#")
            target = target[2:] if target.startswith("./") else target
            prefix, sep, name = target.partition(":")
            if not sep or prefix.lower() != "category":
                continue
            name = normalize_category_name(name)
            if name is not None:
                categories.setdefault(name, sort_key)
        return categories


class RevisionRenderer:
    """Dispatches a revision to the renderer for its content model."""

    def __init__(self, renderers: Optional[dict] = None, logger: Optional[StructuredLogger] = None):
        self.renderers = renderers or {"wikitext": WikitextRenderer(), "html": HtmlRenderer()}
        self.logger = logger or get_logger()

    def render(
        self,
        revision: RevisionRecord,
        options: ParserOptions,
        templates: Optional[TemplateSource] = None,
    ) -> ParserOutput:
        renderer = self.renderers.get(revision.content_model)
        if renderer is None:
            self.logger.debug(
                "No renderer for content model; no categories",
                rev_id=revision.rev_id,
                content_model=revision.content_model,
            )
            return ParserOutput({}, revision.rev_id)
        categories = renderer.render(revision.text, options, templates)
        return ParserOutput(categories, revision.rev_id)


class ParserCache:
    """
    Rendered output of current revisions, keyed by (page id, options key).

    A hit is only as good as its recorded revision id; callers must compare
    ``cache_revision_id`` with the revision they need.
    """

    def get(self, session: Session, page: PageRecord, options: ParserOptions) -> Optional[ParserOutput]:
        entry = session.get(ParserCacheEntry, (page.page_id, options.cache_key()))
        if entry is None:
            return None
        return ParserOutput(dict(entry.categories or {}), entry.rev_id)

    def save(self, session: Session, page: PageRecord, options: ParserOptions, output: ParserOutput) -> None:
        """
        Store the output rendered for the page's current revision.

        Jobs only read the cache; the editing path writes it after a save.
        """
        session.merge(
            ParserCacheEntry(
                page_id=page.page_id,
                options_key=options.cache_key(),
                rev_id=output.cache_revision_id,
                categories={str(k): v for k, v in output.categories.items()},
            )
        )

