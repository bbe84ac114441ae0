"""Management CLI.

Usage:
    python -m abacatrack.cli create-tables   # metadata.create_all (local / SQLite)
    python -m abacatrack.cli migrate         # Alembic upgrade head
    python -m abacatrack.cli audit           # Run the conservation audit, exit 1 on findings
"""

import asyncio
import subprocess
import sys

from abacatrack import models  # noqa: F401  (register tables on Base.metadata)
from abacatrack.database import Base, async_session, engine
from abacatrack.services.audit import run_conservation_audit


async def _create_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()


def create_tables():
    asyncio.run(_create_tables())
    print(f"  Created {len(Base.metadata.tables)} tables")


def migrate():
    """Run Alembic upgrade head."""
    result = subprocess.run(
        [sys.executable, "-m", "alembic", "upgrade", "head"],
        capture_output=True, text=True,
    )
    if result.returncode != 0:
        print(f"  FAILED: {result.stderr}")
        sys.exit(result.returncode)
    print("  OK")


async def _audit() -> int:
    async with async_session() as db:
        findings = await run_conservation_audit(db)
    await engine.dispose()

    for f in findings:
        print(f"  [{f.kind}] {f.record_id}: {f.message}")
    print(f"\n{len(findings)} finding(s)")
    return len(findings)


def audit():
    if asyncio.run(_audit()):
        sys.exit(1)


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "create-tables":
        create_tables()
    elif cmd == "migrate":
        migrate()
    elif cmd == "audit":
        audit()
    else:
        print("Usage: python -m abacatrack.cli [create-tables|migrate|audit]")
