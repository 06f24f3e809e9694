"""Entry point for the issue triage GitHub App server."""

import pathlib

from dotenv import load_dotenv

from triage_app.app import create_app
from triage_app.config import AppConfig
from triage_app.database import db_connection, init_db


def main() -> None:
    env_path = pathlib.Path(__file__).parent / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    config = AppConfig.from_env()
    with db_connection(pathlib.Path(config.db_path)) as conn:
        init_db(conn)

    app = create_app(config)
    app.run(
        host=config.server_host,
        port=config.server_port,
        debug=config.debug,
    )


if __name__ == "__main__":
    main()
