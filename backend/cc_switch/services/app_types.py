from enum import Enum
from typing import Any, List, Union

from cc_switch.errors import InvalidAppType


class AppType(str, Enum):
    CLAUDE = "claude"
    CODEX = "codex"
    GEMINI = "gemini"


def parse_app_type(raw: Any) -> AppType:
    """Parse a case-insensitive application identifier."""
    if isinstance(raw, AppType):
        return raw
    if not isinstance(raw, str):
        raise InvalidAppType(raw)
    try:
        return AppType(raw.strip().lower())
    except ValueError:
        raise InvalidAppType(raw) from None


def canonical(app: Union[AppType, str]) -> str:
    """Canonical string form, used for persistence keys and paths."""
    return parse_app_type(app).value


def list_app_types() -> List[AppType]:
    return list(AppType)
