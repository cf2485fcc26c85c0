"""
Validation rules for article and tag fields.

A single immutable ruleset is built at import time (``RULES``) and shared by
the ORM column definitions, the migration and the entity methods, so column
sizes and construction-time checks never drift apart.
"""
import re
from dataclasses import dataclass, field
from typing import Optional, Sequence


@dataclass(frozen=True)
class ValidationRule:
    """Length/pattern constraint for a single string value."""
    error_message: str
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None

    @property
    def required(self) -> bool:
        return (self.min_length or 0) > 0

    def check(self, value: Optional[str], field_name: str) -> Optional[str]:
        """Return ``None`` when ``value`` passes, otherwise an error message."""
        if value is None or not value.strip():
            return f"{field_name} cannot be empty" if self.required else None

        if self.min_length is not None and len(value) < self.min_length:
            return f"{field_name} length must be at least {self.min_length} characters"

        if self.max_length is not None and len(value) > self.max_length:
            return f"{field_name} length must not exceed {self.max_length} characters"

        if self.pattern is not None and not re.fullmatch(self.pattern, value):
            return self.error_message

        return None

    def is_valid(self, value: Optional[str]) -> bool:
        return self.check(value, "Value") is None


@dataclass(frozen=True)
class ArrayValidationRule:
    """Count constraint for a list of strings, plus a per-element rule."""
    error_message: str
    min_count: Optional[int] = None
    max_count: Optional[int] = None
    element_rule: Optional[ValidationRule] = None

    @property
    def required(self) -> bool:
        return (self.min_count or 0) > 0

    def check(self, values: Optional[Sequence[str]], field_name: str) -> Optional[str]:
        if not values:
            return f"{field_name} cannot be empty" if self.required else None

        if self.min_count is not None and len(values) < self.min_count:
            return f"{field_name} must contain at least {self.min_count} items"

        if self.max_count is not None and len(values) > self.max_count:
            return f"{field_name} must not contain more than {self.max_count} items"

        if self.element_rule is not None:
            for value in values:
                error = self.element_rule.check(value, f"Elements in {field_name}")
                if error:
                    return error

        return None

    def is_valid(self, values: Optional[Sequence[str]]) -> bool:
        return self.check(values, "Values") is None


TAG_RULE = ValidationRule(
    error_message="Tag length must be between 1 and 20 characters.",
    min_length=1,
    max_length=20,
)


@dataclass(frozen=True)
class ArticleRules:
    title: ValidationRule = ValidationRule(
        error_message="Title length must be between 1 and 100 characters.",
        min_length=1,
        max_length=100,
    )
    slug: ValidationRule = ValidationRule(
        error_message="Slug can only contain lowercase letters, numbers, and hyphens.",
        min_length=1,
        max_length=50,
        pattern=r"[a-z0-9-]+",
    )
    category: ValidationRule = ValidationRule(
        error_message="Category length must be between 1 and 15 characters.",
        min_length=1,
        max_length=15,
    )
    excerpt: ValidationRule = ValidationRule(
        error_message="Excerpt length must not exceed 500 characters.",
        min_length=0,
        max_length=500,
    )
    markdown: ValidationRule = ValidationRule(
        error_message="Markdown length must be between 1 and 500000 characters.",
        min_length=1,
        max_length=500_000,
    )
    file_name: ValidationRule = ValidationRule(
        error_message="File name length must be between 1 and 255 characters.",
        min_length=1,
        max_length=255,
    )
    file_path: ValidationRule = ValidationRule(
        error_message="File path length must not exceed 500 characters.",
        min_length=0,
        max_length=500,
    )
    author: ValidationRule = ValidationRule(
        error_message="Author name length must not exceed 20 characters.",
        min_length=0,
        max_length=20,
    )
    tags: ArrayValidationRule = ArrayValidationRule(
        error_message="The number of tags must not exceed 10.",
        min_count=0,
        max_count=10,
        element_rule=TAG_RULE,
    )


@dataclass(frozen=True)
class ValidationRuleset:
    article: ArticleRules = field(default_factory=ArticleRules)
    tag: ValidationRule = TAG_RULE
    version_name_max_length: int = 30


RULES = ValidationRuleset()
