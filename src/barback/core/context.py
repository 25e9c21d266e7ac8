"""Keyword narrowing of cached catalog segments and prompt assembly."""

import asyncio
import re
from dataclasses import dataclass, field
from typing import Sequence

from barback.core.catalog import CatalogEntry
from barback.core.catalog_cache import CatalogCache
from barback.models.enums import CatalogSegmentKey

SPIRITS = CatalogSegmentKey.SPIRITS.value
COCKTAILS = CatalogSegmentKey.COCKTAILS.value
WINES = CatalogSegmentKey.WINES.value
BEERS = CatalogSegmentKey.BEERS.value
MOCKTAILS = CatalogSegmentKey.MOCKTAILS.value
NON_ALCOHOLIC = CatalogSegmentKey.NON_ALCOHOLIC.value

CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    SPIRITS: (
        "bourbon", "whiskey", "whisky", "vodka", "gin", "rum", "tequila", "mezcal",
        "cognac", "brandy", "scotch", "rye", "spirit", "spirits", "liquor",
    ),
    COCKTAILS: (
        "cocktail", "cocktails", "mixed drink", "martini", "manhattan", "old fashioned",
        "negroni", "margarita", "mojito", "daiquiri", "cosmopolitan",
    ),
    WINES: (
        "wine", "wines", "red wine", "white wine", "rosé", "rose", "champagne", "prosecco",
        "sparkling", "chardonnay", "cabernet", "merlot", "pinot",
    ),
    BEERS: ("beer", "beers", "ale", "lager", "ipa", "stout", "porter", "pilsner"),
    NON_ALCOHOLIC: (
        "mocktail", "mocktails", "non-alcoholic", "alcohol free", "virgin", "soda",
        "juice", "water", "coffee", "tea",
    ),
}

# Spirit subcategories, checked only when the spirits category matched
SPIRIT_SUBCATEGORIES: dict[str, tuple[str, ...]] = {
    "bourbon": ("bourbon", "rye"),
    "scotch": ("scotch",),
    "whiskey": ("whiskey", "whisky"),
    "vodka": ("vodka",),
    "gin": ("gin",),
    "rum": ("rum",),
    "tequila": ("tequila", "mezcal"),
    "cognac": ("cognac", "brandy"),
}

BOURBON_BRANDS = ("pappy", "blanton", "weller", "buffalo", "maker")

DEFAULT_TOP_N = 5
HISTORY_TURNS = 5
HISTORY_CHARS = 200

SYSTEM_PROMPT = """You are the venue's bartender and concierge, speaking to guests through a \
streamed video avatar with synthesized voice.

Expertise:
- Spirits, cocktails, wines and beer, proper service and flavor profiles.
- Protect rare and expensive bottles: spirits priced over $500 and long-aged \
ultra shelf bottles are served neat, on the rocks or with a little water, never in cocktails.
- Ultra shelf bottles need the owner's approval before they can be poured.

Voice:
- Short, natural sentences that sound good when spoken.
- Warm and knowledgeable; reference what the guest said earlier when it helps.
- Only recommend items listed in the inventory below. Never invent items."""


def _contains(text: str, keyword: str) -> bool:
    return re.search(rf"(?<!\w){re.escape(keyword)}(?!\w)", text) is not None


@dataclass
class KeywordMatch:
    categories: list[str] = field(default_factory=list)
    subcategories: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.categories and not self.subcategories


def extract_keywords(message: str) -> KeywordMatch:
    """Find catalog categories (and spirit subcategories) mentioned in a message."""
    text = message.lower()
    match = KeywordMatch()
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(_contains(text, keyword) for keyword in keywords):
            match.categories.append(category)

    if SPIRITS in match.categories:
        for subcategory, keywords in SPIRIT_SUBCATEGORIES.items():
            if any(_contains(text, keyword) for keyword in keywords):
                match.subcategories.append(subcategory)
    return match


def filter_spirits(spirits: Sequence[CatalogEntry], subcategory: str) -> list[CatalogEntry]:
    """Narrow a spirits segment to one subcategory."""

    def fields(entry: CatalogEntry) -> tuple[str, str, str, str, str]:
        return (
            (entry.type or "").lower(),
            (entry.sub_type or "").lower(),
            (entry.brand or "").lower(),
            entry.name.lower(),
            (entry.origin or "").lower(),
        )

    def matches(entry: CatalogEntry) -> bool:
        type_, sub_type, brand, name, origin = fields(entry)
        if subcategory == "bourbon":
            return (
                "bourbon" in sub_type
                or "rye" in sub_type
                or "bourbon" in name
                or any(b in brand for b in BOURBON_BRANDS)
            )
        if subcategory == "scotch":
            return "scotch" in sub_type or ("whisk" in type_ and "scotland" in origin)
        if subcategory == "whiskey":
            return "whisk" in type_
        if subcategory == "tequila":
            return "tequila" in type_ or "mezcal" in type_
        if subcategory == "cognac":
            return "cognac" in type_ or "brandy" in type_
        return subcategory in type_

    return [entry for entry in spirits if matches(entry)]


@dataclass
class CatalogContext:
    """Catalog slices relevant to one guest message."""

    keywords: KeywordMatch
    primary: dict[str, list[CatalogEntry]] = field(default_factory=dict)
    secondary: dict[str, list[CatalogEntry]] = field(default_factory=dict)
    general: dict[str, list[CatalogEntry]] = field(default_factory=dict)

    @property
    def has_specific_matches(self) -> bool:
        return bool(self.primary)

    def items(self) -> list[CatalogEntry]:
        seen: dict[str, CatalogEntry] = {}
        for group in (self.primary, self.secondary, self.general):
            for entries in group.values():
                for entry in entries:
                    seen.setdefault(entry.id, entry)
        return list(seen.values())


class ContextBuilder:
    """Pulls only the segments a message needs from the cache and narrows them."""

    def __init__(self, cache: CatalogCache, top_n: int = DEFAULT_TOP_N):
        self.cache = cache
        self.top_n = top_n

    @staticmethod
    def segments_for(keywords: KeywordMatch) -> list[str]:
        if keywords.is_empty:
            return [COCKTAILS, SPIRITS, WINES]
        segments: list[str] = []
        for category in keywords.categories:
            if category == NON_ALCOHOLIC:
                segments.extend([MOCKTAILS, NON_ALCOHOLIC])
            else:
                segments.append(category)
        return segments

    async def build(self, message: str) -> CatalogContext:
        keywords = extract_keywords(message)
        keys = self.segments_for(keywords)
        loaded = await asyncio.gather(*(self.cache.get(key) for key in keys))
        segments = dict(zip(keys, loaded))
        top_n = self.top_n

        context = CatalogContext(keywords=keywords)
        if keywords.is_empty:
            context.general = {key: segments[key][:top_n] for key in keys}
            return context

        for subcategory in keywords.subcategories:
            narrowed = filter_spirits(segments[SPIRITS], subcategory)
            if narrowed:
                context.primary[subcategory] = narrowed[:top_n]

        for key in keys:
            if key == SPIRITS and context.primary:
                continue
            context.secondary[key] = segments[key][:top_n]
        return context


def _describe(entry: CatalogEntry, detailed: bool) -> str:
    line = f"• {entry.display_name} (${entry.price})"
    if not detailed:
        return line
    details = []
    if entry.age:
        details.append(f"{entry.age} year aged")
    if entry.type:
        details.append(entry.type)
    if entry.origin:
        details.append(f"from {entry.origin}")
    if entry.is_restricted:
        details.append("ultra shelf, owner approval required")
    return f"{line} - {', '.join(details)}" if details else line


def format_context(context: CatalogContext) -> str:
    """Render a CatalogContext as inventory text for the prompt."""
    sections: list[str] = ["*** REAL INVENTORY - ONLY RECOMMEND THESE ITEMS ***"]
    if context.primary:
        sections.append("PRIMARY RECOMMENDATIONS (most relevant):")
        for name, entries in context.primary.items():
            lines = "\n".join(_describe(entry, detailed=True) for entry in entries)
            sections.append(f"{name.upper()} SELECTION:\n{lines}")
    if context.secondary:
        sections.append("ADDITIONAL OPTIONS:")
        for name, entries in context.secondary.items():
            lines = "\n".join(_describe(entry, detailed=False) for entry in entries)
            sections.append(f"{name.upper()}:\n{lines or '(none available)'}")
    if context.general:
        sections.append("FEATURED SELECTIONS:")
        for name, entries in context.general.items():
            lines = "\n".join(_describe(entry, detailed=False) for entry in entries)
            sections.append(f"TOP {name.upper()}:\n{lines or '(none available)'}")
    return "\n\n".join(sections)


def build_prompt(
    message: str,
    inventory_text: str,
    session_id: str,
    message_count: int = 0,
    guest_name: str = "Valued Guest",
) -> str:
    """Assemble the generation prompt for one turn. Recent history travels separately."""
    return f"""{SYSTEM_PROMPT}

GUEST CONTEXT:
Session: {session_id}
Guest: {guest_name}
Previous messages: {message_count}

{inventory_text}

GUEST MESSAGE: "{message}"
"""


def recent_history(
    turns: Sequence[tuple[str, str]], limit: int = HISTORY_TURNS
) -> list[tuple[str, str]]:
    """Last few (role, content) turns, each clipped for the prompt budget."""
    return [(role, content[:HISTORY_CHARS]) for role, content in turns[-limit:]] if limit else []


def estimate_complexity(message: str) -> str:
    """Pick a model tier: long or recommendation-seeking messages get the larger model."""
    lowered = message.lower()
    if len(message) > 200 or "recommend" in lowered or "suggest" in lowered:
        return "medium"
    return "low"
