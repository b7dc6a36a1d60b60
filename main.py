import os
import uvicorn
from database_setup import get_engine, DatabaseManager


def initialize_database():
    """Create the settlement tables and singleton rows if they are missing."""
    print("Checking database schema...")
    engine = get_engine()
    with engine.connect() as conn:
        with conn.begin():
            db_manager = DatabaseManager(engine)
            db_manager.init_all_tables(conn)
    print("Database schema ready.")


def create_test_data():
    """Seed a demo admin, seller, store and pending order (development only)."""
    print("Creating demo data...")
    engine = get_engine()
    with engine.connect() as conn:
        with conn.begin():
            db_manager = DatabaseManager(engine)
            ids = db_manager.create_test_data(conn)
    print(f"Demo data created: {ids}")


if __name__ == "__main__":
    initialize_database()

    if os.getenv("SEED_DEMO_DATA") == "1":
        create_test_data()

    print("Starting marketplace settlement API...")
    uvicorn.run(
        "api_interface:app",
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", 8000)),
        reload=os.getenv("API_RELOAD") == "1",
        log_level="info",
        access_log=True
    )
