import logging
from typing import Optional

from app.core.cache import reference_cache
from app.core.config import settings
from app.schemas.cart import Cart
from app.services.commerce import CommerceClient
from app.split_shipping.flow import CheckoutFlow, ReferenceData

logger = logging.getLogger(__name__)


async def load_reference(client: CommerceClient, user_id: Optional[str] = None) -> ReferenceData:
    """Countries, shipping methods and (for signed-in shoppers) saved addresses.

    Project settings and shipping methods are shared by every flow against the same
    backend, so they are cached; saved addresses are per user and always fetched.
    """
    ttl = settings.REFERENCE_CACHE_TTL_SEC
    project = await reference_cache.get_or_load(
        f"project-settings:{client.base_url}", client.get_project_settings, ttl
    )
    methods = await reference_cache.get_or_load(
        f"shipping-methods:{client.base_url}", client.get_shipping_methods, ttl
    )
    addresses = await client.get_user_addresses(user_id) if user_id else []
    return ReferenceData(countries=list(project.countries), shipping_methods=list(methods), user_addresses=addresses)


async def start_flow(
    client: CommerceClient,
    cart_id: str,
    user_id: Optional[str] = None,
    line_item_id: Optional[str] = None,
    locale: Optional[str] = None,
) -> CheckoutFlow:
    reference = await load_reference(client, user_id)
    cart: Cart = await client.get_cart(cart_id)
    flow = CheckoutFlow(
        cart,
        reference=reference,
        csv_enabled=settings.CSV_IMPORT_ENABLED,
        line_item_id=line_item_id,
        base_url=client.base_url,
        locale=locale or settings.DEFAULT_LOCALE,
    )
    logger.info(f"Started flow for cart {cart.id} ({len(cart.line_items)} line items)")
    return flow


async def reload_flow(client: CommerceClient, flow: CheckoutFlow) -> CheckoutFlow:
    """Re-fetch the cart and re-derive the flow state from it."""
    cart = await client.get_cart(flow.cart_id)
    flow.load_cart(cart, flow.line_item_id)
    flow.error = None
    return flow
