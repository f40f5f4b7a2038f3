import os
from dotenv import load_dotenv

load_dotenv()

db_backend = os.getenv("DB_BACKEND", "sqlite")
user = os.getenv("DB_USER")
password = os.getenv("DB_PASSWORD")
host = os.getenv("DB_HOST")
port = os.getenv("DB_PORT")
db_name = os.getenv("DB_NAME")
db_pool_size = int(os.getenv("DB_POOL_SIZE", "20"))
db_max_overflow = int(os.getenv("DB_MAX_OVERFLOW", "20"))
sqlite_path = os.getenv("SQLITE_PATH", "dartscore.sqlite3")
pepper_data = os.getenv("PEPPER_DATA", "")

redis_host = os.getenv("REDIS_HOST", "redis")
redis_port = int(os.getenv("REDIS_PORT", "6379"))

# Realtime channel
max_reconnect_attempts = int(os.getenv("REALTIME_MAX_RECONNECT_ATTEMPTS", "5"))
base_reconnect_delay = float(os.getenv("REALTIME_BASE_RECONNECT_DELAY", "1.0"))
fallback_poll_interval = float(os.getenv("FALLBACK_POLL_INTERVAL", "5"))

snapshot_turn_window = int(os.getenv("SNAPSHOT_TURN_WINDOW", "10"))
room_ttl_hours = int(os.getenv("ROOM_TTL_HOURS", "24"))

if __name__ == "__main__":
    print(db_backend, user, host, port, db_name, redis_host, redis_port)
