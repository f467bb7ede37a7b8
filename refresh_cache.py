#!/usr/bin/env python3
"""
Cache-aware access to the slow osekai datasets, plus a CLI to refresh them.

The bot reads through the `cached_*` functions; running this script (e.g. from
cron) keeps the cache warm so commands rarely hit osekai directly.
"""

import argparse
import sys
from dataclasses import asdict
from typing import Dict, List, Optional

import db_helper
from bot_config import load_settings, read_osu_client_file
from osu_api import OsekaiMedal, OsekaiUserEntry, OsuApiError, OsuClient


MEDALS_KEY = "osekai:medals"
RARITY_KEY = "osekai:rarity"
RANKING_KEY = "osekai:ranking"


def cached_rarity(client: OsuClient, max_age: Optional[float] = None, force: bool = False) -> Dict[int, float]:
    if not force:
        stored = db_helper.get_cached_json(RARITY_KEY, max_age)
        if stored is not None:
            return {int(medal_id): rarity for medal_id, rarity in stored.items()}

    rarity = client.get_osekai_rarity()
    db_helper.set_cached_json(RARITY_KEY, {str(medal_id): value for medal_id, value in rarity.items()})
    print(f"[CACHE] Stored rarity of {len(rarity)} medals")
    return rarity


def cached_medals(client: OsuClient, max_age: Optional[float] = None, force: bool = False) -> List[OsekaiMedal]:
    """All medals with their rarity filled in."""
    if not force:
        stored = db_helper.get_cached_json(MEDALS_KEY, max_age)
        if stored is not None:
            return [OsekaiMedal(**medal) for medal in stored]

    medals = client.get_osekai_medals()
    try:
        # a forced medal refresh reuses rarity that is still fresh
        rarity = cached_rarity(client, max_age)
    except OsuApiError as e:
        print(f"[WARNING] Medal rarity unavailable: {e}")
        rarity = {}
    for medal in medals:
        if medal.medal_id in rarity:
            medal.rarity = rarity[medal.medal_id]

    db_helper.set_cached_json(MEDALS_KEY, [asdict(medal) for medal in medals])
    print(f"[CACHE] Stored {len(medals)} medals")
    return medals


def cached_ranking(client: OsuClient, max_age: Optional[float] = None, force: bool = False) -> List[OsekaiUserEntry]:
    if not force:
        stored = db_helper.get_cached_json(RANKING_KEY, max_age)
        if stored is not None:
            return [OsekaiUserEntry(**entry) for entry in stored]

    ranking = client.get_osekai_ranking()
    db_helper.set_cached_json(RANKING_KEY, [asdict(entry) for entry in ranking])
    print(f"[CACHE] Stored medal ranking with {len(ranking)} users")
    return ranking


def refresh(client: OsuClient, targets: List[str]) -> Dict[str, bool]:
    """Force refresh the given datasets. Returns success per dataset."""
    jobs = {
        "rarity": cached_rarity,
        "medals": cached_medals,
        "ranking": cached_ranking,
    }
    results = {}
    for idx, target in enumerate(targets, 1):
        print(f"[RUN] [{idx}/{len(targets)}] Refreshing {target}", flush=True)
        try:
            jobs[target](client, force=True)
            results[target] = True
            print(f"[OK] {target}", flush=True)
        except OsuApiError as e:
            results[target] = False
            print(f"[ERROR] {target}: {e}", flush=True)
    return results


def main(argv=None):
    parser = argparse.ArgumentParser(description="Refresh cached osekai datasets in stats.db")
    parser.add_argument("-medals", action="store_true", help="Refresh the medal list")
    parser.add_argument("-rarity", action="store_true", help="Refresh medal rarities")
    parser.add_argument("-ranking", action="store_true", help="Refresh the medal count ranking")
    parser.add_argument("-all", action="store_true", help="Refresh everything")
    args = parser.parse_args(argv)

    targets = [name for name in ("rarity", "medals", "ranking") if args.all or getattr(args, name)]
    if not targets:
        parser.error("nothing to refresh, pass -medals, -rarity, -ranking or -all")

    credentials = read_osu_client_file()
    if credentials is None:
        print("[ERROR] OSU_CLIENT.txt is missing, cannot reach the osu! API")
        return 1

    settings = load_settings()
    db_helper.init_database()
    client = OsuClient(*credentials, timeout=settings["osu_request_timeout"])

    results = refresh(client, targets)
    successful = sum(1 for ok in results.values() if ok)
    print(f"\n[SUMMARY] {successful}/{len(results)} datasets refreshed")
    return 0 if successful == len(results) else 1


if __name__ == "__main__":
    sys.exit(main())
