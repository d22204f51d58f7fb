"""
Request/response payloads for the board and invitation endpoints.

Payloads are validated here, before any business logic runs. Field names
follow the camelCase wire format the web client sends.
"""
from typing import Annotated, Any, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

import errors
from models import BOARD_ICONS, DEFAULT_BOARD_ICON

P = TypeVar("P", bound=BaseModel)

# a single path segment; a slash would address a different document
DocumentId = Annotated[str, Field(min_length=1, pattern=r"^[^/]+$")]


class Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class ShareBoardRequest(Payload):
    boardId: DocumentId
    recipientEmail: str = Field(min_length=1)
    role: str = Field(min_length=1)


class InvitationActionRequest(Payload):
    invitationId: DocumentId


class BoardRequest(Payload):
    boardId: DocumentId


class BoardDetails(Payload):
    name: str = Field(min_length=1)
    icon: Optional[str] = None

    @field_validator("icon")
    @classmethod
    def known_icon(cls, icon):
        if icon is not None and icon not in BOARD_ICONS:
            raise ValueError(f"icon must be one of: {', '.join(BOARD_ICONS)}")
        return icon


class CreateBoardRequest(BoardDetails):
    icon: Optional[str] = DEFAULT_BOARD_ICON


class UpdateBoardRequest(BoardDetails):
    pass


class MemberRoleRequest(Payload):
    role: str = Field(min_length=1)


class ActionResponse(BaseModel):
    success: bool = True
    message: str


def _is_missing(err: dict) -> bool:
    return err["type"] in ("missing", "string_too_short") or err.get("input") is None


def parse(model: Type[P], data: Any) -> P:
    """Validate a raw payload, mapping every failure to INVALID_ARGUMENT."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise errors.invalid_argument("Request data must be an object.")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        problems = e.errors()
        if any(_is_missing(err) for err in problems):
            raise errors.invalid_argument("Missing required arguments.") from e
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in problems})
        raise errors.invalid_argument(f"Invalid arguments: {', '.join(fields)}.") from e
