from __future__ import annotations

import argparse
import json
import logging

from bson.objectid import ObjectId

from soes.connections.mongo import Database
from soes.models.attempt import Attempt
from soes.models.result import Result
from soes.simulation import simulate_concurrent_start
from soes.simulation.seed import seed


def main() -> None:
    parser = argparse.ArgumentParser(description="Race concurrent exam starts against a live database.")
    parser.add_argument("--workers", type=int, default=10)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    database = Database.connect()
    try:
        database.ensure_indexes()
        ids = seed(database)
        # Only the seeded pair is reset so the race is observable on every run
        pair = {"student": ObjectId(ids["student_id"]), "exam": ObjectId(ids["exam_id"])}
        Attempt.objects(**pair).delete()
        Result.objects(**pair).delete()
        outcome = simulate_concurrent_start(database, ids["student_id"], ids["exam_id"], workers=args.workers)
        print(json.dumps(outcome, indent=2))
    finally:
        database.close()


if __name__ == "__main__":
    main()
