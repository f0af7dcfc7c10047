"""Base schema classes with camelCase alias generation.

Resumable upload schemas inherit from CamelModel so the wire format matches
the browser client (fileName, uploadId, chunkNumber...). Python code stays
snake_case.
"""
from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts and outputs camelCase."""
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
    }
