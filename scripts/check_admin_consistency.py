"""
Report (and optionally repair) admin memberships that disagree with user rows.

Usage:
    uv run python -m scripts.check_admin_consistency
    uv run python -m scripts.check_admin_consistency --repair
"""
import argparse
import asyncio

from app.core.database.engine import get_db, init_db
from app.core.database.store import RecordStore
from app.features.admins.consistency import check_admin_consistency
from app.utils import get_logger


log = get_logger(__name__)


async def main(repair: bool) -> int:
    await init_db()

    async for db in get_db():
        report = await check_admin_consistency(RecordStore(db), repair=repair)
        if report.clean:
            log.info("No inconsistencies found")
            return 0
        unrepaired = [issue for issue in report.issues if not issue.repaired]
        return 1 if unrepaired else 0
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--repair", action="store_true", help="fix orphaned memberships and demote stray admins")
    args = parser.parse_args()
    raise SystemExit(asyncio.run(main(args.repair)))
