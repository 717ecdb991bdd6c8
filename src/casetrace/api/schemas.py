"""Shared API schema base."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for API schemas serialized with camelCase keys.

    Fields are declared in snake_case; FastAPI serializes by alias, so
    clients see ``caseId``, ``stepsCompleted`` and so on.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
