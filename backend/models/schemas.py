import re
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

ReviewSourceName = Literal["amazon", "trustpilot"]

_LEADING_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


def _coerce_rating(value: Any) -> Any:
    """Accept '4.0 out of 5 stars' style strings the way the scrapers emit them."""
    if isinstance(value, str):
        match = _LEADING_NUMBER.search(value)
        return float(match.group()) if match else None
    return value


def _coerce_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1", "verified purchase")
    return bool(value)


class Review(BaseModel):
    """Canonical review, independent of where it was scraped."""

    id: str
    product_id: str
    text: str
    title: Optional[str] = None
    rating: float
    source: ReviewSourceName
    date: str
    reviewer_name: Optional[str] = None
    verified: Optional[bool] = None
    product_title: Optional[str] = None
    product_source: str
    source_data: dict = Field(default_factory=dict, exclude=True)


class AmazonReviewItem(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, coerce_numbers_to_str=True)

    kind: Literal["amazon"] = "amazon"
    review_id: Optional[str] = Field(None, validation_alias=AliasChoices("ParentId", "ReviewId", "review_id"))
    content: str = Field("", validation_alias=AliasChoices("ReviewContent", "content"))
    title: Optional[str] = Field(None, validation_alias=AliasChoices("ReviewTitle", "title"))
    rating: Optional[float] = Field(None, validation_alias=AliasChoices("ReviewScore", "rating"))
    date: Optional[str] = Field(None, validation_alias=AliasChoices("ReviewDate", "date"))
    reviewer: Optional[str] = Field(None, validation_alias=AliasChoices("Reviewer", "reviewer"))
    verified: bool = Field(False, validation_alias=AliasChoices("Verified", "verified"))
    product_title: Optional[str] = Field(None, validation_alias=AliasChoices("ProductTitle", "product_title"))
    asin: Optional[str] = Field(None, validation_alias=AliasChoices("ASIN", "asin"))

    @field_validator("rating", mode="before")
    @classmethod
    def parse_rating(cls, value):
        return _coerce_rating(value)

    @field_validator("verified", mode="before")
    @classmethod
    def parse_verified(cls, value):
        return _coerce_flag(value)


class TrustpilotReviewItem(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, coerce_numbers_to_str=True)

    kind: Literal["trustpilot"] = "trustpilot"
    review_id: Optional[str] = Field(None, validation_alias=AliasChoices("reviewId", "id", "review_id"))
    content: str = Field("", validation_alias=AliasChoices("reviewBody", "reviewText", "content"))
    title: Optional[str] = Field(None, validation_alias=AliasChoices("reviewTitle", "title"))
    rating: Optional[float] = Field(
        None, validation_alias=AliasChoices("reviewRatingScore", "ratingValue", "rating")
    )
    date: Optional[str] = Field(
        None, validation_alias=AliasChoices("reviewDate", "datePublished", "reviewDatePublished", "date")
    )
    reviewer: Optional[str] = Field(None, validation_alias=AliasChoices("reviewer", "reviewerName"))
    verified: bool = Field(False, validation_alias=AliasChoices("isReviewVerified", "verified"))
    company_name: Optional[str] = Field(None, validation_alias=AliasChoices("companyName", "company_name"))

    @field_validator("rating", mode="before")
    @classmethod
    def parse_rating(cls, value):
        return _coerce_rating(value)

    @field_validator("verified", mode="before")
    @classmethod
    def parse_verified(cls, value):
        return _coerce_flag(value)


RawReviewItem = Annotated[Union[AmazonReviewItem, TrustpilotReviewItem], Field(discriminator="kind")]


class SourceInfo(BaseModel):
    source: ReviewSourceName
    source_identifier: str


class DocumentResource(BaseModel):
    """Uploaded marketing resource; indexed by resource_id, not a Review."""

    resource_id: str
    product_id: str
    product_name: str
    resource_type: str = "document"
    title: str
    description: Optional[str] = None
    is_competitor: bool = False
    competitor_name: Optional[str] = None
    file_name: str


# --- API payloads ---

class ChatMessageIn(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class ChatMetadata(BaseModel):
    hidden_prompt: Optional[str] = Field(None, validation_alias=AliasChoices("hiddenPrompt", "hidden_prompt"))


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: list[ChatMessageIn]
    product_id: str = Field(validation_alias=AliasChoices("productId", "product_id"))
    session_id: Optional[str] = Field(None, validation_alias=AliasChoices("sessionId", "session_id"))
    stream: bool = True
    metadata: Optional[ChatMetadata] = None


class ChatResponse(BaseModel):
    text: str
    source_nodes: list[dict]


class RefreshRequest(BaseModel):
    force_refresh: bool = False
    include_competitors: bool = True
    sources: Optional[list[ReviewSourceName]] = None


class CreateSessionRequest(BaseModel):
    product_id: str
    session_type: str = "general"
    title: Optional[str] = None


class ScrapingJobOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    product_id: str
    source: str
    status: str
    source_identifier: str
    actor_run_id: Optional[str] = None
    error_message: Optional[str] = None


# --- insights ---

class Benefit(BaseModel):
    benefit: str
    frequency: int
    examples: list[str]


class PainPoint(BaseModel):
    pain_point: str
    examples: list[str]


class ValuedFeature(BaseModel):
    feature: str
    examples: list[str]


class Objection(BaseModel):
    objection: str
    examples: list[str]


class FailedSolution(BaseModel):
    solution: str
    examples: list[str]


class EmotionalTrigger(BaseModel):
    trigger: str
    examples: list[str]


class CustomerPersona(BaseModel):
    name: str
    description: str
    needs: list[str]
    pain_points: list[str]


class PositioningAngle(BaseModel):
    angle: str
    explanation: str


class ObjectionResponse(BaseModel):
    objection: str
    response: str


class ProductInsights(BaseModel):
    """Structured marketing insights extracted from indexed reviews"""

    benefits: list[Benefit] = []
    pain_points: list[PainPoint] = []
    valued_features: list[ValuedFeature] = []
    prior_objections: list[Objection] = []
    failed_solutions: list[FailedSolution] = []
    emotional_triggers: list[EmotionalTrigger] = []
    customer_personas: list[CustomerPersona] = []
    headlines: list[str] = []
    competitive_positioning: list[PositioningAngle] = []
    trigger_events: list[str] = []
    objection_responses: list[ObjectionResponse] = []
    hooks: list[str] = []
