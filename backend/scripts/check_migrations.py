"""CI gate: exactly one Alembic head, and no drift between the models and the migrations."""

import subprocess
import sys
from pathlib import Path

from alembic.config import Config
from alembic.script import ScriptDirectory

BACKEND_DIR = Path(__file__).resolve().parents[1]


def alembic_heads(backend_dir: Path = BACKEND_DIR) -> list[str]:
    cfg = Config(str(backend_dir / "alembic.ini"))
    cfg.set_main_option("script_location", str(backend_dir / "alembic"))
    return list(ScriptDirectory.from_config(cfg).get_heads())


def check_single_head(backend_dir: Path = BACKEND_DIR) -> bool:
    heads = alembic_heads(backend_dir)
    if len(heads) != 1:
        print(f"[FAIL] Alembic heads={len(heads)} -> {heads}")
        return False
    print(f"[OK] Alembic single head: {heads[0]}")
    return True


def check_drift(backend_dir: Path = BACKEND_DIR) -> bool:
    proc = subprocess.run(
        [sys.executable, "-m", "alembic", "check"],
        cwd=str(backend_dir),
        capture_output=True,
        text=True,
    )
    if proc.stdout:
        print(proc.stdout.strip())
    if proc.stderr:
        print(proc.stderr.strip(), file=sys.stderr)

    if proc.returncode != 0:
        print("[FAIL] Conversation schema drifted from the migrations; add a revision.", file=sys.stderr)
        return False
    print("[OK] No schema drift")
    return True


def main(argv: list[str]) -> int:
    ok = check_single_head()
    if "--heads-only" not in argv:
        ok = check_drift() and ok
    return 0 if ok else 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
