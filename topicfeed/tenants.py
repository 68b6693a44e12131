"""Tenant (topic) configuration loader."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from .errors import UnknownTenantError
from .records import TopicType


class Tenant(BaseModel):
    """Per-topic relevance rules. Read-only to the pipeline."""
    id: str
    name: str = ""
    topic_type: TopicType = TopicType.KEYWORD
    keywords: list[str] = Field(default_factory=list)
    negative_keywords: list[str] = Field(default_factory=list)
    region: str | None = None
    landmarks: list[str] = Field(default_factory=list)
    postcodes: list[str] = Field(default_factory=list)
    organizations: list[str] = Field(default_factory=list)
    competing_regions: list[str] = Field(default_factory=list)
    freshness_sensitive: bool = True
    is_active: bool = True

    @field_validator("keywords", "negative_keywords", "landmarks", "postcodes",
                     "organizations", "competing_regions")
    @classmethod
    def strip_terms(cls, v: list[str]) -> list[str]:
        """Drop blank terms, keep configured order."""
        return [term.strip() for term in v if term and term.strip()]

    @property
    def is_regional(self) -> bool:
        return self.topic_type == TopicType.REGIONAL

    @property
    def region_name(self) -> str:
        return (self.region or self.name or "").strip()


class TenantRegistry:
    """Tenant configuration loader."""

    def __init__(self, tenants: list[Tenant] | None = None):
        self._tenants: dict[str, Tenant] = {}
        for tenant in tenants or []:
            self._tenants[tenant.id] = tenant

    @classmethod
    def from_file(cls, config_path: str | Path) -> "TenantRegistry":
        """Load tenants from a YAML file with a top-level ``tenants`` list."""
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Tenant config file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data: dict[str, Any] = yaml.safe_load(f) or {}

        return cls([Tenant(**item) for item in data.get("tenants", [])])

    def __len__(self) -> int:
        return len(self._tenants)

    def get(self, tenant_id: str) -> Tenant:
        """Get tenant configuration."""
        if tenant_id not in self._tenants:
            raise UnknownTenantError(f"Tenant '{tenant_id}' not found in config")
        return self._tenants[tenant_id]

    def active(self) -> list[Tenant]:
        return [t for t in self._tenants.values() if t.is_active]

    def competitors_of(self, tenant_id: str) -> list[Tenant]:
        """All other active regional tenants.

        Keyword tenants have no geographic competitors.
        """
        tenant = self.get(tenant_id)
        if not tenant.is_regional:
            return []
        return [
            other for other in self.active()
            if other.is_regional and other.id != tenant.id
        ]
