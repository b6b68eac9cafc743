"""Product tier catalog.

Maps the provider's product ids to internal tier ids. Pure data plus two
lookups; nothing here touches the database.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ProviderProductIds:
    one_time: str
    monthly: str
    yearly: str

    def all(self) -> tuple[str, str, str]:
        return (self.one_time, self.monthly, self.yearly)


@dataclass(frozen=True)
class ProductTier:
    id: str
    name: str
    description: str
    creem: ProviderProductIds
    price_one_time_cents: int
    price_monthly_cents: int
    price_yearly_cents: int
    currency: str = "usd"
    is_popular: bool = False


PRODUCT_TIERS: tuple[ProductTier, ...] = (
    ProductTier(
        id="credits_starter",
        name="Starter",
        description="Perfect for trying out our Pet AI magic",
        creem=ProviderProductIds(
            one_time="prod_popular_30_credits",
            monthly="prod_popular_30_credits",
            yearly="prod_popular_30_credits",
        ),
        price_one_time_cents=1999,
        price_monthly_cents=1999,
        price_yearly_cents=1999,
    ),
    ProductTier(
        id="premium",
        name="Premium",
        description="Unlimited creativity for pet lovers",
        creem=ProviderProductIds(
            one_time="prod_premium_monthly_sub",
            monthly="prod_premium_monthly_sub",
            yearly="prod_premium_yearly_sub",
        ),
        price_one_time_cents=999,
        price_monthly_cents=999,
        price_yearly_cents=9999,
        is_popular=True,
    ),
    ProductTier(
        id="credits_bulk",
        name="Bulk",
        description="Best value for frequent users",
        creem=ProviderProductIds(
            one_time="prod_bulk_100_credits",
            monthly="prod_bulk_100_credits",
            yearly="prod_bulk_100_credits",
        ),
        price_one_time_cents=5999,
        price_monthly_cents=5999,
        price_yearly_cents=5999,
    ),
)


def get_tier_by_id(tier_id: str) -> ProductTier | None:
    """Return the tier with this internal id, or None."""
    for tier in PRODUCT_TIERS:
        if tier.id == tier_id:
            return tier
    return None


def get_tier_by_product_id(product_id: str) -> ProductTier | None:
    """Return the tier that sells this provider product id, or None."""
    for tier in PRODUCT_TIERS:
        if product_id in tier.creem.all():
            return tier
    return None


def resolve_product_id(product_id: str) -> str:
    """Internal tier id when the product is in the catalog, else the raw id."""
    tier = get_tier_by_product_id(product_id)
    return tier.id if tier else product_id
