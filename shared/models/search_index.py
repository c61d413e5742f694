"""Search index definitions and their per-index filter rules.

Filter rules form a closed set of tagged variants, discriminated by
``operator``, each evaluated against the flattened projection of a document.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


class _FilterRuleBase(BaseModel):
    field: str = Field(min_length=1)

    def matches(self, projection: dict[str, Any]) -> bool:
        raise NotImplementedError


class EqualsFilter(_FilterRuleBase):
    operator: Literal["equals"] = "equals"
    value: str | int | float | bool

    def matches(self, projection: dict[str, Any]) -> bool:
        return self.field in projection and projection[self.field] == self.value


class ContainsFilter(_FilterRuleBase):
    """Substring match on strings, membership on lists."""

    operator: Literal["contains"] = "contains"
    value: str = Field(min_length=1)

    def matches(self, projection: dict[str, Any]) -> bool:
        actual = projection.get(self.field)
        if isinstance(actual, str):
            return self.value in actual
        if isinstance(actual, list):
            return any(str(item) == self.value for item in actual)
        return False


class StartsWithFilter(_FilterRuleBase):
    operator: Literal["startsWith"] = "startsWith"
    value: str = Field(min_length=1)

    def matches(self, projection: dict[str, Any]) -> bool:
        actual = projection.get(self.field)
        return isinstance(actual, str) and actual.startswith(self.value)


class EndsWithFilter(_FilterRuleBase):
    operator: Literal["endsWith"] = "endsWith"
    value: str = Field(min_length=1)

    def matches(self, projection: dict[str, Any]) -> bool:
        actual = projection.get(self.field)
        return isinstance(actual, str) and actual.endswith(self.value)


FilterRule = Annotated[
    Union[EqualsFilter, ContainsFilter, StartsWithFilter, EndsWithFilter],
    Field(discriminator="operator"),
]


class SearchIndexDefinition(BaseModel):
    """Configuration of one named projection target.

    Attributes:
        name:          Physical index uid in the search engine.
        enabled:       Disabled indexes are neither written nor searched.
        weight:        Multiplier applied to this index's scores when merging results.
        filters:       Ordered rules; a document failing any of them is left out of this index.
        last_indexed:  Last successful bulk write into this index.
    """

    name: str = Field(min_length=1, max_length=400, pattern=r"^[A-Za-z0-9_-]+$")
    enabled: bool = True
    weight: float = Field(default=1.0, gt=0)
    filters: list[FilterRule] = []
    last_indexed: datetime | None = None

    def accepts(self, projection: dict[str, Any]) -> bool:
        return all(rule.matches(projection) for rule in self.filters)
