"""Client ratings of apprentices."""

from .service import EMPTY_RATING_DETAILS, RatingService, validate_rating

__all__ = ["RatingService", "validate_rating", "EMPTY_RATING_DETAILS"]
