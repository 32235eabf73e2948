#!/usr/bin/env python3
"""Helper to run the API dev server with reload.

Usage:
    python scripts/start_dev.py
"""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
VENV_DIR = ROOT / ".venv"

if sys.platform == "win32":
    VENV_BIN = VENV_DIR / "Scripts"
else:
    VENV_BIN = VENV_DIR / "bin"

DEFAULT_PORT = os.environ.get("RUKUN_PORT", "8000")


def _find_executable(name: str) -> Path | None:
    """Look inside the venv first, fall back to PATH."""
    if VENV_BIN.exists():
        for candidate in (VENV_BIN / name, VENV_BIN / f"{name}.exe"):
            if candidate.exists():
                return candidate
    resolved = shutil.which(name)
    return Path(resolved) if resolved else None


def main() -> int:
    uvicorn_exe = _find_executable("uvicorn")
    if uvicorn_exe is None:
        raise SystemExit("Missing required executable: uvicorn. Install dependencies and try again.")

    env = os.environ.copy()
    env.setdefault("PYTHONPATH", str(ROOT))
    env.setdefault("WATCHFILES_IGNORE_DIRECTORIES", ".venv")

    cmd = [
        str(uvicorn_exe),
        "rukun.main:app",
        "--reload",
        "--port",
        DEFAULT_PORT,
        "--log-level",
        "info",
    ]
    print(f"[launcher] starting api: {' '.join(cmd)}")
    print(f"[launcher] api on http://127.0.0.1:{DEFAULT_PORT}")
    try:
        return subprocess.call(cmd, cwd=str(ROOT), env=env)
    except KeyboardInterrupt:
        print("\n[launcher] interrupted by user.")
        return 0


if __name__ == "__main__":
    sys.exit(main())
