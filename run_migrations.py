import asyncio
import sys

from alembic import command
from alembic.config import Config


def _fix_windows_event_loop():
    if sys.platform.startswith("win"):
        asyncio.set_event_loop_policy(
            asyncio.WindowsSelectorEventLoopPolicy()
        )


def main(revision: str = "head"):
    _fix_windows_event_loop()

    cfg = Config("alembic.ini")
    print(f"INFO Running alembic upgrade {revision} (remedy_case_records) ...")
    command.upgrade(cfg, revision)


if __name__ == "__main__":
    main(*sys.argv[1:2])
