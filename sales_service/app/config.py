import json
import os

# --- Database ---
# Get DB connection string from environment variables.
# Defaults to a local SQLite file; deployments point this at PostgreSQL.
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./sales.db")

# Upper bound (seconds) for a single database round trip: lock waits,
# statement execution and pool checkout.
DB_TIMEOUT_SECONDS = float(os.getenv("DB_TIMEOUT_SECONDS", "5"))

# --- Messaging ---
# Event publishing is disabled when no broker host is configured.
RABBITMQ_HOST = os.getenv("RABBITMQ_HOST")
RABBITMQ_USER = os.getenv("RABBITMQ_USER", "guest")
RABBITMQ_PASSWORD = os.getenv("RABBITMQ_PASSWORD", "guest")
EVENTS_EXCHANGE = os.getenv("EVENTS_EXCHANGE", "events")
RABBITMQ_CONNECT_ATTEMPTS = int(os.getenv("RABBITMQ_CONNECT_ATTEMPTS", "3"))
RABBITMQ_RETRY_SECONDS = float(os.getenv("RABBITMQ_RETRY_SECONDS", "2"))
# After a failed publish, events are dropped without reconnecting for this long.
RABBITMQ_COOLDOWN_SECONDS = float(os.getenv("RABBITMQ_COOLDOWN_SECONDS", "30"))

# --- Inventory ---
LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", "5"))

# --- Roles ---
# (name, permission_ring, description). Lower ring = more privileged.
DEFAULT_ROLES = [
    ("admin", 0, "Full back-office access"),
    ("manager", 1, "Catalog reports and shipping management"),
    ("cashier", 2, "Point of sale and returns"),
    ("customer", 3, "Storefront customer"),
]

# Highest ring allowed to perform each action.
PERMISSION_RINGS = {
    "catalog.write": 0,
    "inventory.restock": 0,
    "roles.manage": 0,
    "users.manage": 0,
    "inventory.report": 1,
    "orders.place": 2,
    "orders.read": 2,
    "orders.return": 2,
}
PERMISSION_RINGS.update(json.loads(os.getenv("PERMISSION_RINGS", "{}")))

BOOTSTRAP_ADMIN = os.getenv("BOOTSTRAP_ADMIN", "admin")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
