import logging

from marketplace.cache.invalidation import Affected, Mutation
from marketplace.db import storage as collections
from marketplace.db.storage import Transaction
from marketplace.models.schemas import Actor, Freelancer, Role
from marketplace.workflows.common import Workflow, freelancer_for_user, require_role

logger = logging.getLogger(__name__)


class FreelancerProfiles(Workflow):

    def set_availability(self, actor: Actor, availability: bool) -> Freelancer:
        """Toggle whether the freelancer can apply for or be assigned new projects."""
        require_role(actor, Role.FREELANCER)

        def _set(tx: Transaction) -> Freelancer:
            freelancer = freelancer_for_user(tx, actor.user_id)
            tx.update(collections.FREELANCERS, freelancer.id, {"availability": availability})
            return freelancer.model_copy(update={"availability": availability})

        freelancer = self._commit(
            _set,
            Mutation.AVAILABILITY_CHANGED,
            lambda f: Affected(freelancer_ids={f.id}, user_ids={f.user_id}),
        )
        logger.info("Freelancer %s availability set to %s", freelancer.id, availability)
        return freelancer
