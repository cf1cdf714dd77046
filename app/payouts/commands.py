
# app/payouts/commands.py
from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from app.payouts.errors import ValidationError
from app.payouts.model import PayoutStatus


class Approve(BaseModel):
    model_config = ConfigDict(extra="forbid")
    action: Literal["approve"]


class Trigger(BaseModel):
    model_config = ConfigDict(extra="forbid")
    action: Literal["trigger"]


class ManualOverride(BaseModel):
    model_config = ConfigDict(extra="forbid")
    action: Literal["manual"]
    status: PayoutStatus
    reason: str = Field(min_length=3, max_length=500)
    provider_reference: Optional[str] = Field(default=None, min_length=1, max_length=200)


PayoutCommand = Annotated[Union[Approve, Trigger, ManualOverride], Field(discriminator="action")]


class BulkCommand(BaseModel):
    model_config = ConfigDict(extra="forbid")
    action: Literal["approve", "trigger"]
    ids: list[str] = Field(min_length=1, max_length=500)


_command_adapter = TypeAdapter(PayoutCommand)


def _first_error(exc: PydanticValidationError) -> str:
    errs = exc.errors()
    if not errs:
        return "invalid payload"
    e = errs[0]
    loc = ".".join(str(p) for p in e.get("loc", ()))
    return f"{loc}: {e.get('msg')}" if loc else str(e.get("msg"))


def parse_command(payload: Any) -> Union[Approve, Trigger, ManualOverride]:
    try:
        return _command_adapter.validate_python(payload)
    except PydanticValidationError as exc:
        raise ValidationError(_first_error(exc), reason="INVALID_COMMAND")


def parse_bulk_command(payload: Any) -> BulkCommand:
    try:
        return BulkCommand.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(_first_error(exc), reason="INVALID_COMMAND")
