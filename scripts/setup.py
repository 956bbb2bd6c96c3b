#!/usr/bin/env python3
"""
Setup script for the batch visual comparison driver.
Installs the package with the Eyes SDK, the Chromium browser, and seeds
a sample urls.csv and .env when they are missing.
"""

import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent

SAMPLE_CSV = "url,name\nhttps://example.com,Example\nhttps://playwright.dev,Playwright\n"

SAMPLE_ENV = """# Applitools settings read by visual-batch
APPLITOOLS_API_KEY=
# APPLITOOLS_SERVER_URL=https://eyesapi.applitools.com
# APPLITOOLS_BATCH_NAME=Local Visual Batch
# APPLITOOLS_BRANCH_NAME=local-development
# APPLITOOLS_BASELINE_ENV_NAME=Production
# APPLITOOLS_MATCH_LEVEL=Strict
"""


def run_command(cmd, description):
    """Run a command and report status."""
    print(f"\n📦 {description}...")
    try:
        result = subprocess.run(cmd, check=True, capture_output=True, text=True, cwd=ROOT)
        print(f"✅ {description} completed")
        if result.stdout:
            print(result.stdout)
        return True
    except subprocess.CalledProcessError as e:
        print(f"❌ {description} failed")
        if e.stderr:
            print(e.stderr)
        return False


def seed_file(path: Path, content: str) -> None:
    if path.exists():
        print(f"✅ {path.name} already present")
        return
    path.write_text(content, encoding="utf-8")
    print(f"⚠️  Created sample {path.name}")


def main():
    print("🚀 Setting up batch visual comparison...")

    if sys.version_info < (3, 8):
        print("❌ Python 3.8+ required")
        sys.exit(1)

    if not run_command(
        [sys.executable, "-m", "pip", "install", "-e", ".[applitools,test]"],
        "Installing visual-batch-compare",
    ):
        sys.exit(1)

    if not run_command(
        [sys.executable, "-m", "playwright", "install", "chromium"],
        "Installing Chromium browser",
    ):
        sys.exit(1)

    seed_file(ROOT / "urls.csv", SAMPLE_CSV)
    seed_file(ROOT / ".env", SAMPLE_ENV)

    print("\n✅ Setup complete! Add your APPLITOOLS_API_KEY to .env, then run:")
    print("   visual-batch urls.csv --baseline urls.csv --output ./Results")


if __name__ == "__main__":
    main()
