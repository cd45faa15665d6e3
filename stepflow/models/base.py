"""Shared base model for camelCase wire payloads."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase keys.

    Attributes stay snake_case in Python; payloads coming from the editor
    (``maxAttempts``, ``onFailure``, ``currentStepIndex``...) are accepted as-is
    and either spelling can be used when constructing models in code.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )
