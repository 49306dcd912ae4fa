from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake-case fields in Python, camelCase on the wire (the web client's format)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
