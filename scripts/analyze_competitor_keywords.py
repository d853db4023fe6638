import argparse
import asyncio
import functools
import json
import logging
from datetime import datetime

import httpx

from keyword_engine.config import load_config
from keyword_engine.discovery import COMPETITOR_RANK_CUTOFF, discover_ranking_keywords, extract_competitor_keywords
from keyword_engine.itunes_api import lookup_app, search_apps


def parse_args():
    parser = argparse.ArgumentParser(description="Find the keywords an App Store app ranks for.")
    parser.add_argument("app_id", help="App Store track id, e.g. 6740720452")
    parser.add_argument("--country", default="US")
    parser.add_argument(
        "--competitor",
        action="store_true",
        help="competitor mode: wider cutoff (top 50), competitor keyword budget",
    )
    return parser.parse_args()


async def analyze_keywords(app_id: str, country: str, competitor: bool):
    config = load_config()

    async with httpx.AsyncClient(timeout=20.0) as client:
        app = await lookup_app(client, app_id, country)
        if app is None:
            print(f"App {app_id} not found in {country}")
            return
        print(f"Target App: {app.name} (ID: {app.id})")

        if competitor:
            search = functools.partial(search_apps, client, limit=COMPETITOR_RANK_CUTOFF)
            results = await extract_competitor_keywords(search, app, country, config=config)
        else:
            search = functools.partial(search_apps, client)
            results = await discover_ranking_keywords(search, app, country, config=config)

    rows = [r.model_dump() for r in results]

    ts = datetime.now().strftime("%Y%m%d_%H%M%S")
    mode = "competitor" if competitor else "ranking"
    json_filename = f"{mode}_keywords_{app.id}_{ts}.json"
    md_filename = f"{mode}_keywords_{app.id}_{ts}.md"

    with open(json_filename, "w") as f:
        json.dump(rows, f, indent=2)
    print(f"Saved JSON report to {json_filename}")

    with open(md_filename, "w") as f:
        f.write(f"# {app.name} {mode.title()} Keywords\n\n")
        f.write(f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")
        f.write(f"**App:** {app.name} (ID: {app.id}, {country.upper()})\n\n")

        f.write("| Keyword | Rank | Results | Popularity | Difficulty |\n")
        f.write("|---|---|---|---|---|\n")
        for r in rows:
            f.write(
                f"| {r['keyword']} | **#{r['position']}** | {r['total_apps_in_ranking']} "
                f"| {r['popularity']} | {r['difficulty']} |\n"
            )
    print(f"Saved Markdown report to {md_filename}")

    # easiest wins: ranked but low difficulty
    print("\nLowest difficulty keywords:")
    for r in sorted(rows, key=lambda x: x["difficulty"])[:5]:
        print(f"#{r['position']}: {r['keyword']} (difficulty {r['difficulty']}, popularity {r['popularity']})")

    print("\nCurrent Rankings:")
    for r in rows:
        print(f"#{r['position']}: {r['keyword']}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    args = parse_args()
    asyncio.run(analyze_keywords(args.app_id, args.country, args.competitor))
