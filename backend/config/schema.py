"""Root GraphQL schema."""
import strawberry

from apps.billing.schema import BillingMutation, BillingQuery
from apps.core.schema import AuthMutation, CoreQuery


@strawberry.type
class Query(CoreQuery, BillingQuery):
    @strawberry.field
    def health(self) -> str:
        return "ok"


@strawberry.type
class Mutation(AuthMutation, BillingMutation):
    pass


schema = strawberry.Schema(
    query=Query,
    mutation=Mutation,
)
