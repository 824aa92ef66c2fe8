import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, computed_field, field_validator

from shlink_ui.clock import parse_datetime, utcnow

SLUG_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
MAX_TAGS = 10
MAX_TAG_LENGTH = 20


def split_tags(value: Union[str, List[str], None]) -> Optional[List[str]]:
    """'a, b, a' -> ['a', 'b']; None stays None, '' becomes []."""
    if value is None:
        return None
    items = value.split(",") if isinstance(value, str) else value
    tags: List[str] = []
    for item in items:
        item = str(item).strip()
        if item and item not in tags:
            tags.append(item)
    return tags


def _check_slug(value: Optional[str]) -> Optional[str]:
    if value in (None, ""):
        return None
    if not SLUG_PATTERN.match(value):
        raise ValueError("Custom slug may only contain letters, digits, hyphens and underscores")
    if not 3 <= len(value) <= 50:
        raise ValueError("Custom slug must be between 3 and 50 characters")
    return value


def _check_tags(tags: Optional[List[str]]) -> Optional[List[str]]:
    if tags is None:
        return None
    if len(tags) > MAX_TAGS:
        raise ValueError(f"At most {MAX_TAGS} tags are allowed")
    if any(len(tag) > MAX_TAG_LENGTH for tag in tags):
        raise ValueError(f"Each tag must be at most {MAX_TAG_LENGTH} characters")
    return tags


class ShortenRequest(BaseModel):
    long_url: HttpUrl = Field(..., description="The original URL to be shortened")
    slug: Optional[str] = Field(None, description="Custom short code")
    valid_until: Optional[datetime] = None
    max_visits: Optional[int] = Field(None, gt=0)
    tags: Optional[List[str]] = None
    title: Optional[str] = Field(None, max_length=512)
    include_qr_code: bool = False
    captcha_token: Optional[str] = None

    @field_validator("slug")
    @classmethod
    def validate_slug(cls, value):
        return _check_slug(value)

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, value):
        return _check_tags(split_tags(value))


class EditShortUrlRequest(BaseModel):
    """
    Partial update.

    Fields left out are not touched. An empty string for valid_until or
    max_visits removes the limit; an empty tags string clears the tags.
    """

    title: Optional[str] = Field(None, max_length=512)
    long_url: Optional[HttpUrl] = None
    valid_until: Union[datetime, str, None] = None
    max_visits: Union[int, str, None] = None
    tags: Union[List[str], str, None] = None
    custom_slug: Optional[str] = None

    @field_validator("long_url", mode="before")
    @classmethod
    def blank_long_url(cls, value):
        return value or None

    @field_validator("valid_until")
    @classmethod
    def validate_valid_until(cls, value):
        if value is None or value == "":
            return value
        if isinstance(value, str):
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parse_datetime(value) <= utcnow():
            raise ValueError("Expiry must be in the future")
        return value

    @field_validator("max_visits")
    @classmethod
    def validate_max_visits(cls, value):
        if value is None or value == "":
            return value
        if isinstance(value, str):
            if not value.strip().isdigit():
                raise ValueError("Visit limit must be a positive integer")
            value = int(value)
        if value <= 0:
            raise ValueError("Visit limit must be at least 1")
        return value

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, value):
        return _check_tags(split_tags(value))

    @field_validator("custom_slug")
    @classmethod
    def validate_custom_slug(cls, value):
        return _check_slug(value)


class RedirectRulesRequest(BaseModel):
    redirect_rules: List[Dict[str, Any]] = Field(default_factory=list)


class ShortUrlResponse(BaseModel):
    """Serializes the ShortUrl model (from_attributes reads model attributes)."""

    id: int
    short_code: str
    short_url: str
    long_url: str
    title: Optional[str] = None
    visit_count: int
    max_visits: Optional[int] = None
    valid_until: Optional[datetime] = None
    date_created: datetime
    deleted_at: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list, validation_alias="tags_list")
    is_active: bool
    is_expired: bool
    visit_limit_reached: bool
    remaining_visits: Optional[int] = None

    @computed_field
    @property
    def visit_display(self) -> str:
        if self.max_visits is not None:
            return f"{self.visit_count}/{self.max_visits}"
        return str(self.visit_count)

    model_config = ConfigDict(from_attributes=True)
