import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import argparse

from dotenv import load_dotenv

from sync_ical.network.client import fetch_feed
from sync_ical.parsers.ical import parse_feed

load_dotenv()

FIXTURES_DIR = Path("tests/fixtures")


def save_fixture(raw: str, filename: str) -> Path:
    FIXTURES_DIR.mkdir(parents=True, exist_ok=True)
    path = FIXTURES_DIR / filename
    path.write_text(raw, encoding="utf-8")
    return path


def main() -> None:
    parser = argparse.ArgumentParser(description="Download an iCal feed as a test fixture")
    parser.add_argument("url", help="Feed URL")
    parser.add_argument("filename", help="File name under tests/fixtures, e.g. airbnb_live.ics")
    parser.add_argument("--platform", default=None, help="Platform hint for the parse summary")
    args = parser.parse_args()

    raw = fetch_feed(args.url)
    path = save_fixture(raw, args.filename)
    parsed = parse_feed(raw, platform_hint=args.platform)
    print(f"Saved {path} ({len(parsed)} events, {parsed.skipped} skipped)")


if __name__ == "__main__":
    main()
