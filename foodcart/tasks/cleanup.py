# foodcart/tasks/cleanup.py
import asyncio

from foodcart.celery_worker import celery_app
from foodcart.domain.errors import NotFound, RemoteUnavailable
from foodcart.services.cart_client import HttpCartGateway
from foodcart.utils.logging import get_logger

logger = get_logger(__name__)


async def purge_remote_cart(cart_key: str, gateway=None) -> bool:
    """Delete every remote row of the cart. False if it was already gone."""
    gateway = gateway or HttpCartGateway()
    try:
        await gateway.delete_all(cart_key)
        return True
    except NotFound:
        return False
    finally:
        await gateway.close()


@celery_app.task(
    name="foodcart.tasks.cleanup.purge_stale_cart_task",
    autoretry_for=(RemoteUnavailable,),
    retry_backoff=True,
    retry_backoff_max=600,
    max_retries=8,
)
def purge_stale_cart_task(cart_key: str):
    """
    Rows left in the remote cart after an order was already placed
    (the saga's remote clear failed). The order exists, so this only
    has to eventually succeed.
    """
    logger.info(f"Purging stale remote cart {cart_key}")
    deleted = asyncio.run(purge_remote_cart(cart_key))
    if not deleted:
        logger.info(f"Remote cart {cart_key} was already empty")
    return {"cart_key": cart_key, "deleted": deleted}


def schedule_cart_cleanup(cart_key: str) -> None:
    purge_stale_cart_task.delay(cart_key)
    logger.info(f"Scheduled cleanup of remote cart {cart_key}")
