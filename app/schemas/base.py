"""
Base schemas with common functionality.
"""

from typing import Any, Type, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar('T', bound='BaseSchema')


class BaseSchema(BaseModel):
    """Read schemas built straight from ORM rows"""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True
    )

    @classmethod
    def from_orm_model(cls: Type[T], orm_model: Any) -> T:
        return cls.model_validate(orm_model)
