import urllib.parse

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.config import DATABASE_URL as _RAW_DATABASE_URL


def normalize_database_url(url: str) -> str:
    # Only Postgres DSNs are re-encoded; urlunparse drops the "//" of sqlite URLs.
    if not url.startswith("postgres"):
        return url
    try:
        return urllib.parse.urlunparse(urllib.parse.urlparse(url))
    except ValueError:
        return url.encode("utf-8", errors="replace").decode("utf-8")


def engine_connect_args(url: str) -> dict:
    if url.startswith("postgres"):
        return {"options": "-c timezone=utc"}
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


DATABASE_URL = normalize_database_url(_RAW_DATABASE_URL)

engine = create_engine(DATABASE_URL, connect_args=engine_connect_args(DATABASE_URL))
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
