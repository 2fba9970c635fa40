import logging
from typing import List, Optional

from marketplace.cache.invalidation import Affected, Mutation
from marketplace.core.errors import ConflictError, ForbiddenError, InvalidStateError, ValidationError
from marketplace.db import storage as collections
from marketplace.db.storage import Transaction, unique_key
from marketplace.models.schemas import (
    Actor,
    Client,
    Freelancer,
    ProjectStatus,
    Rating,
    RatingCreate,
    RatingType,
    RatingUpdate,
    utc_now,
)
from marketplace.workflows.common import (
    Workflow,
    client_for_user,
    freelancer_for_user,
    load_client,
    load_freelancer,
    load_project,
    load_rating,
)

logger = logging.getLogger(__name__)

RATING_CONSTRAINT = "ratings.project_rater_rated"

MIN_SCORE = 1
MAX_SCORE = 5


def validate_score(score: int) -> None:
    if not MIN_SCORE <= score <= MAX_SCORE:
        raise ValidationError(f"Rating must be between {MIN_SCORE} and {MAX_SCORE}")


def average(ratings: List[Rating]) -> float:
    if not ratings:
        return 0.0
    return round(sum(r.rating for r in ratings) / len(ratings), 2)


def _ratings_for(tx: Transaction, rated_id: str, rating_type: str) -> List[Rating]:
    found = tx.query(collections.RATINGS, [
        ("rated_id", "==", rated_id),
        ("rating_type", "==", rating_type),
    ])
    return [Rating.model_validate(doc) for doc in found]


def _with(rows: List[Rating], rating: Rating) -> List[Rating]:
    # Firestore forbids reads after writes, so the row being written is
    # substituted into the re-read set instead of read back.
    return [r for r in rows if r.id != rating.id] + [rating]


def _write_aggregate(tx: Transaction, rated, rating_type: str, mean: float) -> None:
    collection = collections.FREELANCERS if rating_type == RatingType.CLIENT_TO_FREELANCER else collections.CLIENTS
    tx.update(collection, rated.id, {"ratings": mean})


def _affected(rating: Rating, rated) -> Affected:
    affected = Affected(project_id=rating.project_id, user_ids={rating.rater_id, rating.rated_id})
    if isinstance(rated, Freelancer):
        affected.freelancer_ids = {rated.id}
    elif isinstance(rated, Client):
        affected.client_id = rated.id
    return affected


class RatingAggregator(Workflow):
    """
    Ratings between the two parties of a completed project. The rated party's
    `ratings` field is the mean of every rating of the same direction it has
    received, recomputed from all rows on each write.
    """

    def submit_rating(self, actor: Actor, project_id: str, rating_in: RatingCreate) -> Rating:
        validate_score(rating_in.rating)
        rated_profile: List = []

        def _submit(tx: Transaction) -> Rating:
            project = load_project(tx, project_id)
            client = load_client(tx, project.client_id)
            freelancer = load_freelancer(tx, project.assigned_to) if project.assigned_to else None

            if actor.user_id == client.user_id:
                rating_type, rated = RatingType.CLIENT_TO_FREELANCER, freelancer
            elif freelancer is not None and actor.user_id == freelancer.user_id:
                rating_type, rated = RatingType.FREELANCER_TO_CLIENT, client
            else:
                raise ForbiddenError("Only the parties of this project can rate each other")
            if project.status != ProjectStatus.COMPLETED:
                raise InvalidStateError("Ratings can only be given on completed projects")
            if rated is None or rating_in.rated_id != rated.user_id:
                raise InvalidStateError("You can only rate the other party of this project")

            guard_id = unique_key(RATING_CONSTRAINT, project.id, actor.user_id, rating_in.rated_id)
            if tx.get(collections.UNIQUE_KEYS, guard_id):
                raise ConflictError("You have already rated this user for this project")
            existing = _ratings_for(tx, rating_in.rated_id, rating_type.value)

            rating = Rating(
                project_id=project.id,
                rater_id=actor.user_id,
                rated_id=rating_in.rated_id,
                rating=rating_in.rating,
                review=rating_in.review,
                rating_type=rating_type,
            )
            tx.create(collections.UNIQUE_KEYS, guard_id, {"target": rating.id})
            tx.create(collections.RATINGS, rating.id, rating.to_document())
            _write_aggregate(tx, rated, rating.rating_type, average(_with(existing, rating)))
            rated_profile[:] = [rated]
            return rating

        rating = self._commit(_submit, Mutation.RATING_SUBMITTED, lambda r: _affected(r, rated_profile[0]))
        logger.info("Rating %s submitted for user %s (%s)", rating.id, rating.rated_id, rating.rating_type)
        return rating

    def update_rating(self, actor: Actor, rating_id: str, rating_in: RatingUpdate) -> Rating:
        validate_score(rating_in.rating)
        rated_profile: List = []

        def _update(tx: Transaction) -> Rating:
            rating = load_rating(tx, rating_id)
            if rating.rater_id != actor.user_id:
                raise ForbiddenError("Only the original rater can edit this rating")
            if rating.rating_type == RatingType.CLIENT_TO_FREELANCER:
                rated = freelancer_for_user(tx, rating.rated_id)
            else:
                rated = client_for_user(tx, rating.rated_id)
            existing = _ratings_for(tx, rating.rated_id, rating.rating_type)

            changes = {"rating": rating_in.rating, "review": rating_in.review, "updated_at": utc_now()}
            updated = rating.model_copy(update=changes)
            tx.update(collections.RATINGS, rating.id, changes)
            _write_aggregate(tx, rated, rating.rating_type, average(_with(existing, updated)))
            rated_profile[:] = [rated]
            return updated

        rating = self._commit(_update, Mutation.RATING_UPDATED, lambda r: _affected(r, rated_profile[0]))
        logger.info("Rating %s updated", rating.id)
        return rating

    def list_for_user(self, rated_id: str, rating_type: Optional[RatingType] = None) -> List[Rating]:
        filters = [("rated_id", "==", rated_id)]
        if rating_type is not None:
            filters.append(("rating_type", "==", RatingType(rating_type).value))
        found = self.storage.query(collections.RATINGS, filters, order_by="created_at", descending=True)
        return [Rating.model_validate(doc) for doc in found]
