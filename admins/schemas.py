"""
admins/schemas.py -- Pydantic v2 input models for admin and daily-limit writes.

These models define the input contract of the directory and limit stores.
They are intentionally separate from the dataclasses in admins/models.py,
which own the internal domain representation.

Strict mode is on everywhere: booleans must be real booleans, levels real
integers (True is not a level), strings real strings. Unknown keys are
rejected. parse_input() converts pydantic's ValidationError into the
package's own ValidationError so callers only ever match on core.errors.
"""

from __future__ import annotations

from typing import Annotated, Any, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from core.constants import MAX_ADMIN_LEVEL, MIN_ADMIN_LEVEL
from core.errors import ValidationError

_Level = Annotated[int, Field(ge=MIN_ADMIN_LEVEL, le=MAX_ADMIN_LEVEL)]
_Threshold = Annotated[int, Field(ge=0)]

_ModelT = TypeVar("_ModelT", bound=BaseModel)


class DailyLimitConfigInput(BaseModel):
    """Both thresholds, as required when creating a limit or an admin override."""

    model_config = ConfigDict(strict=True, extra="forbid")

    alert: _Threshold
    block: _Threshold


class DailyLimitPatch(BaseModel):
    """Partial thresholds for set_level_daily_limit. Missing keys keep their stored value."""

    model_config = ConfigDict(strict=True, extra="forbid")

    alert: Optional[_Threshold] = None
    block: Optional[_Threshold] = None


class AdminCreate(BaseModel):
    """Input for AdminDirectory.add_admin()."""

    model_config = ConfigDict(strict=True, extra="forbid")

    email: str = Field(min_length=3, max_length=255)
    level: _Level
    password: Optional[str] = Field(default=None, max_length=255)
    active: bool = True
    read_only: bool = False
    block_privilege: bool = False
    analytics_privilege: bool = False
    manage_admins_privilege: bool = False
    fetch_motivations_privilege: bool = False
    company: Optional[str] = None
    forms: Optional[list[str]] = None
    daily_limit_config: Optional[dict[str, DailyLimitConfigInput]] = None


class AdminUpdate(BaseModel):
    """Partial input for AdminDirectory.update_admin().

    email and password are not fields here: the directory rejects them with a
    UserError before this model runs, pointing callers at the dedicated flows.
    Unset fields are left untouched; use model_dump(exclude_unset=True).
    """

    model_config = ConfigDict(strict=True, extra="forbid")

    level: Optional[_Level] = None
    active: Optional[bool] = None
    read_only: Optional[bool] = None
    block_privilege: Optional[bool] = None
    analytics_privilege: Optional[bool] = None
    manage_admins_privilege: Optional[bool] = None
    fetch_motivations_privilege: Optional[bool] = None
    company: Optional[str] = None
    forms: Optional[list[str]] = None
    daily_limit_config: Optional[dict[str, DailyLimitConfigInput]] = None

    @field_validator(
        "level",
        "active",
        "read_only",
        "block_privilege",
        "analytics_privilege",
        "manage_admins_privilege",
        "fetch_motivations_privilege",
        mode="before",
    )
    @classmethod
    def not_null(cls, value: Any) -> Any:
        """These columns are NOT NULL; an explicit None is a caller bug, not "unset"."""
        if value is None:
            raise ValueError("must not be null")
        return value


def parse_input(model: type[_ModelT], data: Any) -> _ModelT:
    """Validate data against model, raising core.errors.ValidationError on failure.

    details["fields"] lists the offending field paths so callers can point at
    the exact input without parsing the message.
    """
    if not isinstance(data, dict):
        raise ValidationError(f"{model.__name__} input must be an object", details={"fields": []})
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        fields = [".".join(str(p) for p in err["loc"]) for err in exc.errors()]
        first = exc.errors()[0]
        message = f"{fields[0] or model.__name__}: {first['msg']}"
        raise ValidationError(message, details={"fields": fields}) from None
