# foodcart/utils/settings.py
import os
from dotenv import load_dotenv

load_dotenv()

CART_API_URL = os.getenv("CART_API_URL", "http://cart-api:8000")
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://redis:6379/1")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://redis:6379/2")

HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", 5))
RECONCILE_ATTEMPTS = int(os.getenv("RECONCILE_ATTEMPTS", 3))
CHECKOUT_LOCK_TTL_SECONDS = int(os.getenv("CHECKOUT_LOCK_TTL_SECONDS", 60))
# 0 disables the per-step saga timeout
SAGA_STEP_TIMEOUT_SECONDS = float(os.getenv("SAGA_STEP_TIMEOUT_SECONDS", 0))

CART_DEVICE_KEY_PATH = os.getenv(
    "CART_DEVICE_KEY_PATH",
    os.path.join(os.path.expanduser("~"), ".foodcart", "device_key"),
)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
