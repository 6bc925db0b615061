import os

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))

SITE_BASE_URL = os.getenv("SITE_BASE_URL", "https://examplesite.com/")
SITE_BASE_PATH = os.getenv("SITE_BASE_PATH", "/")
SITE_TRAILING_SLASH = os.getenv("SITE_TRAILING_SLASH", "false").lower() in ("1", "true", "yes")

STORE_EMAIL = os.getenv("STORE_EMAIL", "orders@examplesite.com")
CHECKOUT_SUCCESS_URL = os.getenv("CHECKOUT_SUCCESS_URL", "/checkout/success")
