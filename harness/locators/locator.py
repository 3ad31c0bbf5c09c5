"""Platform-polymorphic element locators and query builders.

A Locator holds, per platform, either one query or an ordered list of
alternatives. The active platform is supplied when the locator is resolved,
so the same Locator can be declared once in a page object and reused on both
platforms.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from harness.models import Platform, Query, Strategy

# Element attributes searched by the text-matching builders. Android exposes
# text/resource-id/content-desc, iOS exposes name/label/value.
_TEXT_ATTRIBUTES = ("text", "id", "resource-id", "content-desc", "name", "label", "value")


@dataclass(frozen=True)
class Locator:
    """Element descriptor resolving to one or more queries for a platform."""

    android: Query | None = None
    ios: Query | None = None
    android_list: tuple[Query, ...] | None = None
    ios_list: tuple[Query, ...] | None = None

    def __post_init__(self) -> None:
        # Accept any iterable for the alternatives, store tuples
        if self.android_list is not None:
            object.__setattr__(self, "android_list", tuple(self.android_list))
        if self.ios_list is not None:
            object.__setattr__(self, "ios_list", tuple(self.ios_list))

    def _single(self, platform: Platform) -> Query | None:
        return self.android if platform == Platform.ANDROID else self.ios

    def _alternatives(self, platform: Platform) -> tuple[Query, ...] | None:
        return self.android_list if platform == Platform.ANDROID else self.ios_list

    def get(self, platform: Platform) -> Query | None:
        """Return the query for *platform*, falling back to the first alternative.

        None means the locator has nothing configured for that platform.
        """
        single = self._single(platform)
        if single is not None:
            return single
        alternatives = self._alternatives(platform)
        if alternatives:
            return alternatives[0]
        return None

    def get_all(self, platform: Platform) -> list[Query] | None:
        """Return every alternative for *platform* in declaration order."""
        alternatives = self._alternatives(platform)
        if alternatives is not None:
            return list(alternatives)
        single = self._single(platform)
        if single is not None:
            return [single]
        return None

    def describe(self, platform: Platform) -> str:
        queries = self.get_all(platform)
        if not queries:
            return f"<no {platform.value} query>"
        return " | ".join(str(q) for q in queries)

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @classmethod
    def by_accessibility_id(cls, accessibility_id: str) -> Locator:
        query = accessibility_id_query(accessibility_id)
        return cls(android=query, ios=query)

    @classmethod
    def by_android_accessibility_id(cls, accessibility_id: str) -> Locator:
        return cls(android=accessibility_id_query(accessibility_id))

    @classmethod
    def by_ios_accessibility_id(cls, accessibility_id: str) -> Locator:
        return cls(ios=accessibility_id_query(accessibility_id))

    @classmethod
    def by_android_uiautomator(cls, expression: str) -> Locator:
        return cls(android=android_uiautomator(expression))

    @classmethod
    def by_ios_class_chain(cls, expression: str) -> Locator:
        return cls(ios=ios_class_chain(expression))

    @classmethod
    def by_ios_predicate(cls, expression: str) -> Locator:
        return cls(ios=ios_predicate(expression))

    @classmethod
    def by_android_locators(cls, queries: Iterable[Query]) -> Locator:
        return cls(android_list=tuple(queries))

    @classmethod
    def by_ios_locators(cls, queries: Iterable[Query]) -> Locator:
        return cls(ios_list=tuple(queries))

    @classmethod
    def by_locators(
        cls,
        android: Iterable[Query] | None = None,
        ios: Iterable[Query] | None = None,
    ) -> Locator:
        return cls(
            android_list=tuple(android) if android is not None else None,
            ios_list=tuple(ios) if ios is not None else None,
        )

    @classmethod
    def by_text(cls, text_value: str) -> Locator:
        """Exact match against any text-like attribute, on both platforms."""
        query = exact_match(text_value)
        return cls(android=query, ios=query)

    @classmethod
    def by_contains(cls, fragment: str) -> Locator:
        """Substring match against any text-like attribute, on both platforms."""
        query = contains(fragment)
        return cls(android=query, ios=query)


# ---------------------------------------------------------------------------
# Query builders
# ---------------------------------------------------------------------------


def escape_xpath(s: str) -> str:
    """Quote *s* as an XPath 1.0 string literal.

    XPath has no escape sequences, so a string holding both quote kinds is
    assembled with concat() from single-quoted fragments and "'" separators.
    """
    if "'" not in s:
        return f"'{s}'"
    if '"' not in s:
        return f'"{s}"'
    parts = [f"'{part}'" for part in s.split("'")]
    return "concat(" + ", \"'\", ".join(parts) + ")"


def _xpath(expression: str) -> Query:
    return Query(using=Strategy.XPATH.value, value=expression)


def _full_package_id(value: str, package: str) -> str:
    return f"{package}:id/{value}"


def id_query(element_id: str, package: str) -> Query:
    """Match ``@id`` containing the short id or the package-qualified id."""
    v = escape_xpath(element_id)
    full = escape_xpath(_full_package_id(element_id, package))
    return _xpath(f".//*[contains(@id,{v}) or contains(@id,{full})]")


def resource_id(element_id: str, package: str) -> Query:
    """Android ``@resource-id``, short or package-qualified."""
    v = escape_xpath(element_id)
    full = escape_xpath(_full_package_id(element_id, package))
    return _xpath(f".//*[contains(@resource-id,{v}) or contains(@resource-id,{full})]")


def text(value: str) -> Query:
    return _xpath(f".//*[@text = {escape_xpath(value)}]")


def contains(value: str) -> Query:
    v = escape_xpath(value)
    clauses = " or ".join(f"contains(@{attr},{v})" for attr in _TEXT_ATTRIBUTES)
    return _xpath(f".//*[{clauses}]")


def exact_match(value: str) -> Query:
    v = escape_xpath(value)
    clauses = " or ".join(f"@{attr}={v}" for attr in _TEXT_ATTRIBUTES)
    return _xpath(f".//*[({clauses})]")


def content_desc(value: str) -> Query:
    return _xpath(f".//*[contains(@content-desc,{escape_xpath(value)})]")


def xpath(expression: str) -> Query:
    """Raw XPath passthrough."""
    return _xpath(expression)


def value(value_: str) -> Query:
    return _xpath(f".//*[contains(@value,{escape_xpath(value_)})]")


def name(value_: str) -> Query:
    return _xpath(f".//*[contains(@name,{escape_xpath(value_)})]")


def label(value_: str) -> Query:
    return _xpath(f".//*[contains(@label,{escape_xpath(value_)})]")


def accessibility_id_query(accessibility_id: str) -> Query:
    return Query(using=Strategy.ACCESSIBILITY_ID.value, value=accessibility_id)


def android_uiautomator(expression: str) -> Query:
    return Query(using=Strategy.ANDROID_UIAUTOMATOR.value, value=expression)


def ios_class_chain(expression: str) -> Query:
    return Query(using=Strategy.IOS_CLASS_CHAIN.value, value=expression)


def ios_predicate(expression: str) -> Query:
    return Query(using=Strategy.IOS_PREDICATE.value, value=expression)
