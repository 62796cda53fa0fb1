from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _strip_comment(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not v:
        raise ValueError("Comment cannot be empty")
    return v


class ReviewCreate(BaseModel):
    order_id: int
    rating: int = Field(ge=1, le=5)
    comment: str = Field(max_length=500)

    @field_validator("comment")
    @classmethod
    def comment_not_blank(cls, v):
        return _strip_comment(v)


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=500)

    @field_validator("comment")
    @classmethod
    def comment_not_blank(cls, v):
        return _strip_comment(v)


class ReviewReport(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=200)


class ReviewRespond(BaseModel):
    response: str = Field(max_length=500)

    @field_validator("response")
    @classmethod
    def response_not_blank(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Response cannot be empty")
        return v


class ReviewModerate(BaseModel):
    status: Literal["approved", "rejected"]


class ReviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    user_id: int
    restaurant_id: int
    rating: int
    comment: str
    status: str
    helpful_votes: int = 0
    report_count: int = 0
    owner_response: Optional[str] = None
    response_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    user_name: Optional[str] = None
    restaurant_name: Optional[str] = None


class RatingStats(BaseModel):
    average: float
    total: int
    distribution: Dict[str, int]


class RestaurantReviewsPage(BaseModel):
    reviews: List[ReviewOut]
    total: int
    page: int
    limit: int
    stats: RatingStats


class ReviewCheck(BaseModel):
    has_review: bool
    review_id: Optional[int] = None
