#!/usr/bin/env python
"""
Run the Streamlit tier matrix editor.

Usage:
    python scripts/run_app.py [--data-dir DIR] [--port 8501]
"""
import argparse
import os
import subprocess
import sys
from pathlib import Path


def main():
    parser = argparse.ArgumentParser(description="Run the Tier Matrix editor")
    parser.add_argument("--data-dir", help="Directory holding variants.csv / tiers.csv")
    parser.add_argument("--port", type=int, default=8501)
    args = parser.parse_args()

    project_root = Path(__file__).parent.parent
    ui_path = project_root / 'src' / 'tier_matrix' / 'ui' / 'app_streamlit.py'

    if not ui_path.exists():
        print(f"ERROR: UI module not found at {ui_path}")
        sys.exit(1)

    env = os.environ.copy()
    if args.data_dir:
        env['TIER_MATRIX_DATA_DIR'] = str(Path(args.data_dir).resolve())

    cmd = [sys.executable, '-m', 'streamlit', 'run', str(ui_path), '--server.port', str(args.port)]
    print(f"Starting Streamlit: {' '.join(cmd)}")

    try:
        subprocess.run(cmd, cwd=str(project_root), env=env)
    except KeyboardInterrupt:
        print("\nEditor stopped.")


if __name__ == "__main__":
    main()
