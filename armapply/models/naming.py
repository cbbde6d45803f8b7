"""
Naming catalog entries: abbreviations and naming rules per resource type/kind.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class CustomKind:
    property_path: str = ""
    value: str = ""


@dataclass(frozen=True)
class RestrictedChars:
    global_: str = ""
    prefix: str = ""
    suffix: str = ""
    consecutive: str = ""


@dataclass(frozen=True)
class Messages:
    on_success: str = ""
    on_failure: str = ""


@dataclass(frozen=True)
class NamingRules:
    min_length: int = 0
    max_length: int = 0
    uniqueness_scope: str = ""
    regex: str = ""
    word_separator: str = ""
    restricted_chars: RestrictedChars = field(default_factory=RestrictedChars)
    messages: Messages = field(default_factory=Messages)


@dataclass(frozen=True)
class ResourceKind:
    """
    One naming entry for a resource type. A type may carry several kinds;
    the entry with neither kind nor customKind is the type's default.
    """
    name: str = ""
    kind: str = ""
    custom_kind: CustomKind = field(default_factory=CustomKind)
    abbreviation: str = ""
    naming_rules: NamingRules = field(default_factory=NamingRules)

    @property
    def is_default(self) -> bool:
        return not self.kind and not self.custom_kind.property_path

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceKind":
        custom = data.get("customKind") or {}
        rules = data.get("namingRules") or {}
        chars = rules.get("restrictedChars") or {}
        messages = rules.get("messages") or {}
        return cls(
            name=str(data.get("name") or ""),
            kind=str(data.get("kind") or ""),
            custom_kind=CustomKind(
                property_path=str(custom.get("propertyPath") or ""),
                value=str(custom.get("value") or ""),
            ),
            abbreviation=str(data.get("abbreviation") or ""),
            naming_rules=NamingRules(
                min_length=int(rules.get("minLength") or 0),
                max_length=int(rules.get("maxLength") or 0),
                uniqueness_scope=str(rules.get("uniquenessScope") or ""),
                regex=str(rules.get("regex") or ""),
                word_separator=str(rules.get("wordSeparator") or ""),
                restricted_chars=RestrictedChars(
                    global_=str(chars.get("global") or ""),
                    prefix=str(chars.get("prefix") or ""),
                    suffix=str(chars.get("suffix") or ""),
                    consecutive=str(chars.get("consecutive") or ""),
                ),
                messages=Messages(
                    on_success=str(messages.get("onSuccess") or ""),
                    on_failure=str(messages.get("onFailure") or ""),
                ),
            ),
        )

    def label(self) -> Optional[str]:
        return self.kind or self.custom_kind.value or None
