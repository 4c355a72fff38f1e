from typing import Self
from uuid import uuid4

from pydantic import GetCoreSchemaHandler
from pydantic_core import core_schema


class Id(str):
    def __new__(cls, value: str | None = None) -> Self:
        return super().__new__(cls, value or str(uuid4()))

    @classmethod
    def __get_pydantic_core_schema__(
        cls, _source: type, handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        return core_schema.no_info_after_validator_function(
            cls, core_schema.str_schema()
        )


class EventId(Id):
    """
    Newtype around `Id`
    """
