import os

# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "jewelry_store")

# JWT Config
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change")
REFRESH_TOKEN_SECRET = os.getenv("REFRESH_TOKEN_SECRET", "dev-refresh-secret-change")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 2  # 2 hours
ADMIN_ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7  # 7 days
REFRESH_TOKEN_EXPIRE_DAYS = 15

# Sessions
SESSION_TIMEOUT_SECONDS = 2 * 60 * 60
SESSION_SWEEP_SECONDS = int(os.getenv("SESSION_SWEEP_SECONDS", 15 * 60))

# Account lockout
MAX_LOGIN_ATTEMPTS = 5
LOCK_MINUTES = 15

# Password reset
PASSWORD_RESET_MINUTES = 10
# no mailer is wired up, so development builds can return the token directly
EXPOSE_RESET_TOKEN = os.getenv("EXPOSE_RESET_TOKEN", "false").lower() in ("1", "true", "yes")

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))

COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() in ("1", "true", "yes")

# Stripe
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
