import enum
from typing import Any


class BaseEnum(str, enum.Enum):
    """String valued enum that serializes as its value"""

    @classmethod
    def has(cls, item: Any) -> bool:
        return isinstance(item, str) and item in cls._value2member_map_

    def __str__(self) -> str:
        return str(self.value)
