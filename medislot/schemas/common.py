from datetime import time
from typing import Annotated

from pydantic import AfterValidator, HttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

MEETING_LINK_MAX_LENGTH = 500

_http_url = TypeAdapter(HttpUrl)

def _without_offset(value: time) -> time:
    # Clock times are local to the practice; an offset would make them incomparable
    if value.tzinfo is not None:
        raise ValueError("Time must not include a UTC offset")
    return value

def _meeting_link(value: str) -> str:
    try:
        link = str(_http_url.validate_python(value))
    except PydanticValidationError:
        raise ValueError("Meeting link must be a valid URL") from None
    if len(link) > MEETING_LINK_MAX_LENGTH:
        raise ValueError(f"Meeting link must be at most {MEETING_LINK_MAX_LENGTH} characters")
    return link

LocalTime = Annotated[time, AfterValidator(_without_offset)]
MeetingLink = Annotated[str, AfterValidator(_meeting_link)]
