from typing import List, Optional

from fastapi import APIRouter, status

from marketplace.core.security import CurrentActor
from marketplace.dependencies import RatingAggregatorDep
from marketplace.models.schemas import Rating, RatingCreate, RatingType, RatingUpdate

router = APIRouter(tags=["Ratings"])


@router.post("/projects/{project_id}/ratings", response_model=Rating, status_code=status.HTTP_201_CREATED)
def submit_rating(project_id: str, rating_in: RatingCreate, actor: CurrentActor, aggregator: RatingAggregatorDep):
    return aggregator.submit_rating(actor, project_id, rating_in)


@router.put("/ratings/{rating_id}", response_model=Rating)
def update_rating(rating_id: str, rating_in: RatingUpdate, actor: CurrentActor, aggregator: RatingAggregatorDep):
    return aggregator.update_rating(actor, rating_id, rating_in)


@router.get("/users/{user_id}/ratings", response_model=List[Rating])
def list_user_ratings(user_id: str, aggregator: RatingAggregatorDep, rating_type: Optional[RatingType] = None):
    return aggregator.list_for_user(user_id, rating_type)
