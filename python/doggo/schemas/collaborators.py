"""Request/response schemas for the scrape and web-search collaborators."""

from pydantic import BaseModel, ConfigDict, Field

from doggo.schemas.attachment import AttachmentOut


class ScrapeRequest(BaseModel):
    """Up to 5 http(s) URLs; validated by the scrape service."""

    urls: list[str] = Field(min_length=1)


class ScrapeErrorOut(BaseModel):
    url: str
    error: str


class ScrapeResponse(BaseModel):
    attachments: list[AttachmentOut]
    errors: list[ScrapeErrorOut] = []


class WebSearchRequest(BaseModel):
    query: str
    num_results: int | None = None  # clamped to [1, 10], default 5

    model_config = ConfigDict(str_strip_whitespace=True)
