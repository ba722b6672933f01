# run.py
from mercadoboom.config import Config
from mercadoboom.db_wait import wait_for_database

if __name__ == "__main__":
    # Postgres containers may still be starting when the app boots
    wait_for_database(Config.DATABASE_URL)

    from mercadoboom.main import app

    app.run(
        debug=Config.DEBUG,
        host=Config.FLASK_RUN_HOST,
        port=Config.FLASK_RUN_PORT,
    )
