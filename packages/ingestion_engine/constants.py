"""Category vocabulary for statement transactions.

Labels are the ones users see in the dashboard, so they are spelled exactly
as displayed (including ``"Wifi / Utilities"`` and ``"Drinks/Dessert"``).
"""

from enum import Enum


class Category(str, Enum):
    """The closed set of labels the classifier may assign."""

    GROCERY = "Grocery"
    HEALTH = "Health"
    UTILITIES = "Wifi / Utilities"
    HOUSEHOLD = "Household"
    LAUNDRY = "Laundry"
    RIDESHARE = "Rideshare"
    TRAVEL = "Travel"
    DINING = "Dining"
    DRINKS_DESSERT = "Drinks/Dessert"
    ALCOHOL = "Alcohol"
    FASHION = "Fashion"
    BEAUTY = "Beauty"
    GYM = "Gym"
    ENTERTAINMENT = "Entertainment"
    SUBSCRIPTION = "Subscription"
    CREDIT = "Credit"
    INCOME = "Income"
    MERCHANDISE = "Merchandise"
    GIFTS = "Gifts"
    OTHER = "Other"


CATEGORY_VOCABULARY: tuple[str, ...] = tuple(c.value for c in Category)

# Source-category values that mean "the bank did not categorize this".
UNCATEGORIZED_SENTINELS = frozenset(
    {"uncategorized", "unknown", "none", "n/a", "na", "-", "--"}
)
