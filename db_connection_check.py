from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError

from backoffice.config import settings
from backoffice.db import Base
import backoffice.models  # noqa: F401  registers the tables on Base.metadata


def main() -> None:
    database_url = settings.database_url
    print(f"DATABASE_URL={database_url}")
    print(f"TIMEZONE={settings.timezone}")
    engine = create_engine(database_url, pool_pre_ping=True)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            existing = set(inspect(conn).get_table_names())
        print("DB connection OK")
    except SQLAlchemyError as exc:
        print("DB connection FAILED")
        print(exc)
        return

    missing = sorted(set(Base.metadata.tables) - existing)
    if missing:
        print(f"Missing tables: {', '.join(missing)}")
    else:
        print(f"All {len(Base.metadata.tables)} back-office tables present")


if __name__ == "__main__":
    main()
