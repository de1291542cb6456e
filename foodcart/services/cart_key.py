# foodcart/services/cart_key.py
import os
import uuid

from foodcart.utils.settings import CART_DEVICE_KEY_PATH
from foodcart.utils.logging import get_logger

logger = get_logger(__name__)


def device_cart_key(path: str | None = None) -> str:
    """Per-device key for anonymous carts, created once and kept on disk."""
    path = path or CART_DEVICE_KEY_PATH

    if os.path.exists(path):
        with open(path, encoding="utf-8") as f:
            key = f.read().strip()
        if key:
            return key

    key = str(uuid.uuid4())
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(key)

    logger.info(f"Created device cart key at {path}")
    return key


def cart_key_for(user_id: str | int | None = None, device_key_path: str | None = None) -> str:
    # signed-in user: the cart follows the account across devices
    if user_id:
        return f"user:{user_id}"
    return f"device:{device_cart_key(device_key_path)}"
