"""
Domain filter module for Lodestar-DNS.

A DomainFilter decides whether a DNS name lies inside the set of names this
installation may manage. A filter works either on domain suffixes or on
regular expressions, never on both. A filter without rules matches every name.
"""

import json
import logging
import re
import unicodedata
from typing import Any, Dict, Iterable, List, Optional, Pattern, Union

import idna
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from lodestar_dns.provider.errors import ConfigurationError

logger = logging.getLogger("lodestar-dns.domain-filter")

RegexLike = Union[str, Pattern, None]


# Full stop and the ideographic, fullwidth and halfwidth stops UTS #46 maps to it
LABEL_SEPARATORS = re.compile("[.。．｡]")


def _label_to_unicode(label: str) -> str:
    try:
        label = idna.uts46_remap(label, std3_rules=False, transitional=False)
    except idna.IDNAError as e:
        # Symbols outside the IDNA tables are kept, as a lenient resolver does
        logger.debug(f"No UTS #46 mapping for label '{label}': {e}")

    if label[:4].lower() == "xn--":
        try:
            label = label[4:].encode("ascii").decode("punycode")
        except UnicodeError as e:
            logger.warning(f"Failed to decode IDN label '{label}': {e}")
    return unicodedata.normalize("NFC", label).lower()


def normalize_domain(domain: str) -> str:
    """
    Normalize a domain name for comparison.

    Trims whitespace, strips one trailing dot, maps every label through
    UTS #46 (case folding, NFC) and converts punycode labels to their
    Unicode form. "XN--R28H.org." and "😍.org" normalize to the same string,
    as do "xn--caf-dma.org", "café.org" and its decomposed spelling.
    Ideographic and fullwidth full stops separate labels like ".".

    Args:
        domain: Domain name in any supported spelling

    Returns:
        str: Normalized domain name
    """
    labels = LABEL_SEPARATORS.split(domain.strip())
    if len(labels) > 1 and not labels[-1]:
        labels.pop()
    return ".".join(_label_to_unicode(label) for label in labels)


def prepare_filters(filters: Iterable[str]) -> List[str]:
    """
    Normalize filter rules, dropping the ones that end up empty.

    Args:
        filters: Raw rules

    Returns:
        List[str]: Normalized, non-empty rules
    """
    prepared = []
    for rule in filters:
        domain = normalize_domain(rule)
        if domain:
            prepared.append(domain)
    return prepared


def match_filter(filters: List[str], domain: str, empty_value: bool) -> bool:
    """
    Check whether a domain equals, or is a subdomain of, one of the rules.

    A rule starting with "." only matches strict subdomains.

    Args:
        filters: Normalized rules
        domain: Domain to check
        empty_value: Result when there are no rules

    Returns:
        bool: True if any rule matches
    """
    if not filters:
        return empty_value

    stripped = normalize_domain(domain)
    for rule in filters:
        if not rule:
            continue
        if rule.startswith("."):
            if stripped.endswith(rule):
                return True
        elif stripped.count(".") == rule.count("."):
            if stripped == rule:
                return True
        elif stripped.endswith("." + rule):
            return True
    return False


def _compile(pattern: RegexLike, key: str) -> Pattern:
    if isinstance(pattern, re.Pattern):
        return pattern
    try:
        return re.compile(pattern or "")
    except re.error as e:
        raise ConfigurationError(f"invalid {key}: {e}") from e


class DomainFilterSerde(BaseModel):
    """External representation of a DomainFilter."""

    model_config = ConfigDict(populate_by_name=True)

    include: Optional[List[str]] = None
    exclude: Optional[List[str]] = None
    regex_include: Optional[str] = Field(default=None, alias="regexInclude")
    regex_exclude: Optional[str] = Field(default=None, alias="regexExclude")


class DomainFilter:
    """
    Holds the rules that scope the DNS names Lodestar-DNS manages.

    Build suffix filters with DomainFilter(include, exclude) and regex filters
    with DomainFilter.from_regex(...). The two kinds cannot be combined.
    """

    def __init__(
        self,
        include: Optional[Iterable[str]] = None,
        exclude: Optional[Iterable[str]] = None,
    ):
        """
        Initialize a suffix-mode DomainFilter.

        Args:
            include: Domains to include, with their subdomains
            exclude: Domains to exclude, with their subdomains
        """
        self.filters = prepare_filters(include or [])
        self.exclude = prepare_filters(exclude or [])
        self.regex: Optional[Pattern] = None
        self.regex_exclusion: Optional[Pattern] = None

    @classmethod
    def from_regex(
        cls, regex: RegexLike = "", regex_exclusion: RegexLike = ""
    ) -> "DomainFilter":
        """
        Create a regex-mode DomainFilter.

        Patterns are searched in the normalized (Unicode, lower-case) name.

        Args:
            regex: Names matching this pattern are included; empty includes all
            regex_exclusion: Names matching this pattern are excluded

        Returns:
            DomainFilter: Regex-mode filter

        Raises:
            ConfigurationError: If a pattern does not compile
        """
        domain_filter = cls()
        domain_filter.regex = _compile(regex, "regexInclude")
        domain_filter.regex_exclusion = _compile(regex_exclusion, "regexExclude")
        return domain_filter

    @property
    def is_regex(self) -> bool:
        return self.regex is not None

    def match(self, domain: str) -> bool:
        """
        Check whether a domain is inside the managed set.

        Args:
            domain: Domain name

        Returns:
            bool: True if the domain is included and not excluded
        """
        if self.is_regex:
            stripped = normalize_domain(domain)
            if self.regex_exclusion.pattern and self.regex_exclusion.search(stripped):
                return False
            return bool(self.regex.search(stripped))

        return match_filter(self.filters, domain, True) and not match_filter(
            self.exclude, domain, False
        )

    def match_parent(self, domain: str) -> bool:
        """
        Check whether a domain is a viable parent zone of an included domain.

        The domain matches when it equals, or is an ancestor of, one of the
        include rules. Rules starting with "." are ignored here.

        Args:
            domain: Candidate parent domain

        Returns:
            bool: True if the domain can hold managed names
        """
        if self.is_regex:
            if not self.regex_exclusion.pattern:
                return True
            return not self.regex_exclusion.search(normalize_domain(domain))

        if match_filter(self.exclude, domain, False):
            return False
        if not self.filters:
            return True

        stripped = normalize_domain(domain)
        for rule in self.filters:
            if rule.startswith("."):
                continue
            if rule == stripped or rule.endswith("." + stripped):
                return True
        return False

    def is_configured(self) -> bool:
        """
        Check whether any rule is set.

        Returns:
            bool: False if the filter matches every name
        """
        if self.is_regex:
            return bool(self.regex.pattern or self.regex_exclusion.pattern)
        return bool(self.filters or self.exclude)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize the filter.

        Returns:
            Dict[str, Any]: include/exclude lists or regexInclude/regexExclude
        """
        serialized: Dict[str, Any] = {}
        if self.is_regex:
            if self.regex.pattern:
                serialized["regexInclude"] = self.regex.pattern
            if self.regex_exclusion.pattern:
                serialized["regexExclude"] = self.regex_exclusion.pattern
            return serialized

        if self.filters:
            serialized["include"] = sorted(self.filters)
        if self.exclude:
            serialized["exclude"] = sorted(self.exclude)
        return serialized

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, sort_keys=True)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "DomainFilter":
        """
        Deserialize a filter.

        Args:
            payload: Serialized filter

        Returns:
            DomainFilter: Deserialized filter

        Raises:
            ConfigurationError: If the payload is malformed, mixes list and
                regex keys, or holds an invalid pattern
        """
        try:
            serde = DomainFilterSerde.model_validate(payload)
        except ValidationError as e:
            raise ConfigurationError(f"invalid domain filter: {e}") from e
        return cls._from_serde(serde)

    @classmethod
    def from_json(cls, text: Union[str, bytes]) -> "DomainFilter":
        try:
            serde = DomainFilterSerde.model_validate_json(text)
        except ValidationError as e:
            raise ConfigurationError(f"invalid domain filter: {e}") from e
        return cls._from_serde(serde)

    @classmethod
    def _from_serde(cls, serde: DomainFilterSerde) -> "DomainFilter":
        if not serde.regex_include and not serde.regex_exclude:
            return cls(serde.include, serde.exclude)
        if serde.include is not None or serde.exclude is not None:
            raise ConfigurationError("cannot have both domain list and regex")
        return cls.from_regex(serde.regex_include, serde.regex_exclude)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DomainFilter):
            return NotImplemented
        return self.is_regex == other.is_regex and self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"DomainFilter({self.to_dict()!r})"
