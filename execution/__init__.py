"""Plan execution."""
from .plan_executor import PlanExecutor, PlanRun

__all__ = ["PlanExecutor", "PlanRun"]
