from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

class CamelModel(BaseModel):
    """Snake-case attributes, camelCase on the wire (storefront documents use camelCase)"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
