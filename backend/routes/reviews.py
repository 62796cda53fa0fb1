# backend/routes/reviews.py
import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import update
from sqlalchemy.orm import Session, joinedload

from database import get_db
from models.users import User
from models.order import Order, OrderStatus
from models.restaurant import Restaurant
from models.review import Review, ReviewStatus
from schemas.review import (
    ReviewCreate, ReviewUpdate, ReviewModerate, ReviewOut, RatingStats,
    RestaurantReviewsPage, ReviewCheck, ReviewReport, ReviewRespond,
)
from utils.audit import write_log, client_ip
from utils.errors import NotFound, Forbidden, Conflict, InvalidState
from utils.tokenJWT import get_current_user, restaurant_admin

router = APIRouter(prefix="/reviews", tags=["Reviews"])
logger = logging.getLogger(__name__)

# Reviews counted toward the aggregate rating
COUNTED_STATUSES = (ReviewStatus.APPROVED.value, ReviewStatus.PENDING.value)
FEATURED_LIMIT = 5
REPORT_REJECT_THRESHOLD = 5


def _rating_stats(ratings: List[int]) -> dict:
    distribution = {str(star): 0 for star in range(1, 6)}
    for r in ratings:
        distribution[str(r)] += 1
    total = len(ratings)
    average = sum(ratings) / total if total else 0.0
    return {"average": round(average, 2), "total": total, "distribution": distribution}


def recompute_restaurant_rating(db: Session, restaurant_id: int) -> dict:
    """
    Full rescan of the restaurant's counted reviews; writes the mean and the
    per-star histogram back onto the restaurant. Caller commits.
    """
    ratings = [
        r for (r,) in db.query(Review.rating).filter(
            Review.restaurant_id == restaurant_id, Review.status.in_(COUNTED_STATUSES)
        ).all()
    ]
    stats = _rating_stats(ratings)
    restaurant = db.query(Restaurant).filter(Restaurant.id == restaurant_id).first()
    if restaurant:
        restaurant.rating = stats
    return stats


def _review_to_out(review: Review) -> ReviewOut:
    out = ReviewOut.model_validate(review)
    out.user_name = review.user.name if review.user else None
    out.restaurant_name = review.restaurant.name if review.restaurant else None
    return out


def _load_review(db: Session, review_id: int) -> Review:
    review = db.query(Review).options(joinedload(Review.user)).filter(Review.id == review_id).first()
    if not review:
        raise NotFound("Review not found")
    return review


# Top approved reviews across all restaurants for the home page
@router.get("/featured", response_model=List[ReviewOut])
def list_featured_reviews(db: Session = Depends(get_db)):
    rows = db.query(Review).options(joinedload(Review.user), joinedload(Review.restaurant)).filter(
        Review.status == ReviewStatus.APPROVED.value
    ).order_by(Review.rating.desc(), Review.created_at.desc(), Review.id.desc()).limit(FEATURED_LIMIT).all()
    return [_review_to_out(r) for r in rows]


# Create a review for a delivered order
@router.post("", response_model=ReviewOut, status_code=status.HTTP_201_CREATED)
def submit_review(
    payload: ReviewCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    order = db.query(Order).filter(Order.id == payload.order_id, Order.user_id == current_user.id).first()
    if not order:
        raise NotFound("Order not found")
    if order.status != OrderStatus.DELIVERED.value:
        raise InvalidState("Only delivered orders can be reviewed")
    if db.query(Review).filter(Review.order_id == order.id).first():
        raise Conflict("You have already submitted a review for this order")

    review = Review(
        order_id=order.id,
        user_id=current_user.id,
        restaurant_id=order.restaurant_id,
        rating=payload.rating,
        comment=payload.comment,
        status=ReviewStatus.APPROVED.value,
    )
    db.add(review)
    db.flush()
    recompute_restaurant_rating(db, order.restaurant_id)
    db.commit()
    db.refresh(review)

    write_log(
        db, user_id=current_user.id, action="REVIEW_CREATE", resource="reviews", status="SUCCESS",
        ip=client_ip(request), meta={"review_id": review.id, "order_id": order.id, "rating": review.rating},
    )
    return _review_to_out(review)


# Approved reviews of a restaurant, newest first, with live stats
@router.get("/restaurant/{restaurant_id}", response_model=RestaurantReviewsPage)
def list_restaurant_reviews(
    restaurant_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    q = db.query(Review).options(joinedload(Review.user)).filter(
        Review.restaurant_id == restaurant_id, Review.status == ReviewStatus.APPROVED.value
    )
    total = q.count()
    rows = q.order_by(Review.created_at.desc(), Review.id.desc()).offset((page - 1) * limit).limit(limit).all()
    ratings = [
        r for (r,) in db.query(Review.rating).filter(
            Review.restaurant_id == restaurant_id, Review.status == ReviewStatus.APPROVED.value
        ).all()
    ]
    return RestaurantReviewsPage(
        reviews=[_review_to_out(r) for r in rows],
        total=total,
        page=page,
        limit=limit,
        stats=RatingStats(**_rating_stats(ratings)),
    )


# The caller's own reviews
@router.get("/user", response_model=List[ReviewOut])
def list_my_reviews(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    rows = db.query(Review).options(joinedload(Review.user)).filter(
        Review.user_id == current_user.id
    ).order_by(Review.created_at.desc(), Review.id.desc()).all()
    return [_review_to_out(r) for r in rows]


# Review attached to an order; visible to the customer and the restaurant's admin
@router.get("/order/{order_id}", response_model=ReviewOut)
def get_order_review(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    review = db.query(Review).options(joinedload(Review.user)).filter(Review.order_id == order_id).first()
    if not review:
        raise NotFound("Review not found")
    is_owner = review.user_id == current_user.id
    is_restaurant_admin = current_user.is_admin and current_user.restaurant_id == review.restaurant_id
    if not (is_owner or is_restaurant_admin):
        raise NotFound("Review not found")
    return _review_to_out(review)


@router.get("/check/{order_id}", response_model=ReviewCheck)
def check_order_review(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    order = db.query(Order).filter(Order.id == order_id, Order.user_id == current_user.id).first()
    if not order:
        raise NotFound("Order not found or not authorized")
    review = db.query(Review).filter(Review.order_id == order_id).first()
    return ReviewCheck(has_review=review is not None, review_id=review.id if review else None)


# Edit own review; it goes back to moderation
@router.put("/{review_id}", response_model=ReviewOut)
def update_review(
    review_id: int,
    payload: ReviewUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    review = _load_review(db, review_id)
    if review.user_id != current_user.id:
        raise NotFound("Review not found")

    if payload.rating is not None:
        review.rating = payload.rating
    if payload.comment is not None:
        review.comment = payload.comment
    review.status = ReviewStatus.PENDING.value
    db.flush()
    recompute_restaurant_rating(db, review.restaurant_id)
    db.commit()
    db.refresh(review)

    write_log(
        db, user_id=current_user.id, action="REVIEW_UPDATE", resource="reviews", status="SUCCESS",
        ip=client_ip(request), meta={"review_id": review.id, "rating": review.rating},
    )
    return _review_to_out(review)


@router.delete("/{review_id}")
def delete_review(
    review_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    review = _load_review(db, review_id)
    if review.user_id != current_user.id:
        raise NotFound("Review not found")

    restaurant_id = review.restaurant_id
    db.delete(review)
    db.flush()
    recompute_restaurant_rating(db, restaurant_id)
    db.commit()

    write_log(
        db, user_id=current_user.id, action="REVIEW_DELETE", resource="reviews", status="SUCCESS",
        ip=client_ip(request), meta={"review_id": review_id},
    )
    return {"message": "Review deleted successfully"}


# Restaurant admin approves or rejects a review
@router.patch("/{review_id}/moderate", response_model=ReviewOut)
def moderate_review(
    review_id: int,
    payload: ReviewModerate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(restaurant_admin),
):
    review = _load_review(db, review_id)
    if review.restaurant_id != current_user.restaurant_id:
        raise Forbidden("Not authorized to moderate this review")

    review.status = payload.status
    db.flush()
    stats = recompute_restaurant_rating(db, review.restaurant_id)
    db.commit()
    db.refresh(review)
    logger.info("Review %s moderated to %s; restaurant rating %s", review.id, review.status, stats["average"])

    write_log(
        db, user_id=current_user.id, action="REVIEW_MODERATE", resource="reviews", status="SUCCESS",
        ip=client_ip(request), meta={"review_id": review.id, "status": review.status},
    )
    return _review_to_out(review)


@router.post("/{review_id}/vote", response_model=ReviewOut)
def vote_review_helpful(
    review_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    result = db.execute(
        update(Review)
        .where(Review.id == review_id)
        .values(helpful_votes=Review.helpful_votes + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise NotFound("Review not found")
    db.commit()
    return _review_to_out(_load_review(db, review_id))


# Reports accumulate; enough of them take the review out of circulation
@router.post("/{review_id}/report")
def report_review(
    review_id: int,
    request: Request,
    payload: Optional[ReviewReport] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    review = _load_review(db, review_id)
    review.report_count = (review.report_count or 0) + 1
    auto_rejected = review.report_count >= REPORT_REJECT_THRESHOLD and review.status != ReviewStatus.REJECTED.value
    if auto_rejected:
        review.status = ReviewStatus.REJECTED.value
        db.flush()
        recompute_restaurant_rating(db, review.restaurant_id)
        logger.info("Review %s rejected after %s reports", review.id, review.report_count)
    db.commit()

    write_log(
        db, user_id=current_user.id, action="REVIEW_REPORT", resource="reviews", status="SUCCESS",
        ip=client_ip(request),
        meta={
            "review_id": review_id,
            "reason": payload.reason if payload else None,
            "auto_rejected": auto_rejected,
        },
    )
    return {"message": "Review reported successfully"}


# Restaurant owner's public reply
@router.post("/{review_id}/respond", response_model=ReviewOut)
def respond_to_review(
    review_id: int,
    payload: ReviewRespond,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(restaurant_admin),
):
    review = _load_review(db, review_id)
    if review.restaurant_id != current_user.restaurant_id:
        raise Forbidden("Not authorized to respond to this review")

    review.owner_response = payload.response
    review.response_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(review)

    write_log(
        db, user_id=current_user.id, action="REVIEW_RESPOND", resource="reviews", status="SUCCESS",
        ip=client_ip(request), meta={"review_id": review.id},
    )
    return _review_to_out(review)
