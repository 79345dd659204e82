"""
Wire Model Base
===============
All API-facing models serialise with camelCase keys (repoUrl, currentIteration)
while Python code uses snake_case attributes.
"""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        """Dump with camelCase keys, JSON-compatible values."""
        return self.model_dump(by_alias=True, mode="json")
