from typing import Dict, Iterable, List
from app.core.exceptions import InvalidPlan
from app.schemas.plan import Plan

DEFAULT_PLANS = (
    Plan(planId="premium_monthly", amount=99900, currency="INR",
         description="Premium Monthly Subscription", duration=30),
    Plan(planId="premium_yearly", amount=999900, currency="INR",
         description="Premium Yearly Subscription", duration=365),
)


class PlanCatalog:
    """Read-only plan lookup. Order of the input is the listing order."""

    def __init__(self, plans: Iterable[Plan] = DEFAULT_PLANS):
        self._plans: Dict[str, Plan] = {plan.planId: plan for plan in plans}

    def lookup(self, plan_id: str) -> Plan:
        plan = self._plans.get(plan_id)
        if plan is None:
            raise InvalidPlan()
        return plan

    def list_all(self) -> List[Plan]:
        return list(self._plans.values())

    def __contains__(self, plan_id: str) -> bool:
        return plan_id in self._plans
