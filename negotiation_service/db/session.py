from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from negotiation_service.core.config import settings

# Connections are opened lazily; pool_pre_ping drops dead ones before use.
engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        # Always close, even when the endpoint raised.
        db.close()
