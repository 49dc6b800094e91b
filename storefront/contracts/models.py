# storefront/contracts/models.py
from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Request bodies: snake_case attributes, camelCase on the wire (both accepted)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")
