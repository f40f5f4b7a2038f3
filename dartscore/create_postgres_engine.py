from sqlalchemy import URL
from sqlalchemy.ext.asyncio import create_async_engine

from dartscore.load_secrets import db_max_overflow, db_name, db_pool_size, host, password, port, user

# URL.create quotes special characters in the credentials
postgres_url = URL.create(
    "postgresql+asyncpg",
    username=user,
    password=password,
    host=host,
    port=int(port) if port else None,
    database=db_name,
)

engine = create_async_engine(
    postgres_url,
    pool_size=db_pool_size,
    max_overflow=db_max_overflow,
    pool_pre_ping=True,
)
