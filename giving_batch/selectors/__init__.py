from giving_batch.selectors.plan_selector import PlanSelector

__all__ = ["PlanSelector"]
