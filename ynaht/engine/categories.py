"""Fixed activity categories."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Category:
    """An activity category."""
    id: str
    name: str
    color: str


DEFAULT_CATEGORIES = [
    Category("work", "Work", "blue"),
    Category("personal", "Personal", "purple"),
    Category("health", "Health", "green"),
    Category("meals", "Meals", "orange"),
    Category("commute", "Commute", "gray"),
    Category("projects", "Projects", "teal"),
    Category("learning", "Learning", "indigo"),
    Category("rest", "Rest", "pink"),
]

# Used when a goal has no category of its own
FALLBACK_CATEGORY_ID = "personal"


def get_category(category_id: str) -> Optional[Category]:
    """Look up a category by id."""
    for category in DEFAULT_CATEGORIES:
        if category.id == category_id:
            return category
    return None


def category_name(category_id: str) -> str:
    """Display name for a category id, or the id itself if unknown."""
    category = get_category(category_id)
    return category.name if category else category_id
