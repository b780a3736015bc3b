"""
Shared pydantic base for the API: snake_case in Python, camelCase on the wire.
"""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
     model_config = ConfigDict(
          alias_generator=to_camel,
          populate_by_name=True,
          from_attributes=True,
     )


class Pagination(ApiModel):
     page: int
     limit: int
     total: int
     pages: int


class MessageResponse(ApiModel):
     success: bool = True
     message: str
