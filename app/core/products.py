from typing import Dict, List, Optional

# Stripe subscription plans offered on the paywall
STRIPE_PRODUCTS: List[Dict[str, str]] = [
    {
        "id": "prod_SWmIqVQm9L3krl",
        "price_id": "price_1RbijS4JrlJotBXLm4zsLCC8",
        "name": "Weekly Plan",
        "description": "Perfect for trying out premium features",
        "mode": "subscription",
        "interval": "week",
    },
    {
        "id": "prod_SWmLDQsYM0uDFM",
        "price_id": "price_1RbinE4JrlJotBXLZ1G7UIQg",
        "name": "Monthly Plan",
        "description": "Great for regular users",
        "mode": "subscription",
        "interval": "month",
    },
    {
        "id": "prod_SWmKFLTJWR35i1",
        "price_id": "price_1Rbilr4JrlJotBXLRbsUk0PG",
        "name": "Yearly Plan",
        "description": "Best value",
        "mode": "subscription",
        "interval": "year",
    },
]


def get_product_by_price_id(price_id: str) -> Optional[Dict[str, str]]:
    """Look up a plan by its Stripe price ID."""
    return next((p for p in STRIPE_PRODUCTS if p["price_id"] == price_id), None)
