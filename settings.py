import os

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
TOKEN_TTL_DAYS = int(os.getenv("TOKEN_TTL_DAYS", 7))

# Fixed offset between checkout and the promised delivery date
DELIVERY_DAYS = int(os.getenv("DELIVERY_DAYS", 7))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()
# overrides the level derived from ENVIRONMENT
LOG_LEVEL = os.getenv("LOG_LEVEL")
PORT = int(os.getenv("PORT", 8000))
