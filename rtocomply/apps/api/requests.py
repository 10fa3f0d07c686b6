from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class RequestModel(BaseModel):
    # Accept snake_case and the camelCase keys browser and n8n clients send.
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)
