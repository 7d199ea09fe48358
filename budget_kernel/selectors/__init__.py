"""Read-only selectors returning domain DTOs."""

from budget_kernel.selectors.base import BaseSelector
from budget_kernel.selectors.project_selector import ProjectSelector

__all__ = ["BaseSelector", "ProjectSelector"]
