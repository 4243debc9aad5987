# main.py
from dotenv import load_dotenv
import os

env = os.getenv("APP_ENV", "local")
if env == "local":
    load_dotenv(".env.local")
else:
    load_dotenv(".env")

import argparse
import logging
import sys
from datetime import datetime

from services.progress_tracker import PipelineProgress
from services.research_scope import ResearchScope
from services.task_runner import TaskRunner
from tasks.base_task import YearRange
from workflow import build_pipeline, prepare_scope

logger = logging.getLogger(__name__)

POLL_SECONDS = 0.5


def _default_years() -> YearRange:
    last = int(os.getenv("WESTSEER_LAST_YEAR", datetime.now().year - 1))
    first = int(os.getenv("WESTSEER_FIRST_YEAR", last - 9))
    return YearRange(first, last)


def parse_args(argv=None) -> argparse.Namespace:
    years = _default_years()
    parser = argparse.ArgumentParser(
        description="Build a longitudinal research-trend dataset for a research scope."
    )
    parser.add_argument("keywords", nargs="?", help='Research scope, e.g. "ai;health,law"')
    parser.add_argument("--db", default=os.getenv("WESTSEER_DB_PATH", "westseer.db"), help="SQLite store path")
    parser.add_argument("--first-year", type=int, default=years.first)
    parser.add_argument("--last-year", type=int, default=years.last)
    parser.add_argument("--model", default=os.getenv("WESTSEER_MODEL_PATH", os.path.join("models", "lstm.joblib")))
    parser.add_argument("--list-scopes", action="store_true", help="Print registered scopes and exit")
    return parser.parse_args(argv)


def run(args: argparse.Namespace) -> int:
    if args.list_scopes:
        for keywords in ResearchScope.list_scopes(args.db):
            print(keywords)
        return 0

    if not args.keywords:
        logger.error("No research scope given")
        return 2

    try:
        years = YearRange(args.first_year, args.last_year)
    except ValueError as e:
        logger.error(str(e))
        return 2

    scope = prepare_scope(args.db, args.keywords)
    if scope is None:
        return 1

    progress = PipelineProgress(scope.keywords)
    runner = TaskRunner(build_pipeline(args.db, scope.keywords, years, args.model), reporter=progress)

    try:
        runner.start()
        while not runner.wait(POLL_SECONDS):
            pass
    except KeyboardInterrupt:
        logger.info("🛑 Interrupted, cancelling after the current step...")
        runner.cancel()
    finally:
        runner.finalize()

    for failure in runner.failures:
        logger.warning(f"'{failure.task_name}' failed at step {failure.step_id}: {failure.error}")

    final = progress.to_dict()
    logger.info(f"Finished: {final['label']} ({final['percent']}%)")
    return 0 if not runner.failures else 1


def main(argv=None) -> int:
    logging.basicConfig(
        level=os.getenv("WESTSEER_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return run(parse_args(argv))


if __name__ == "__main__":
    sys.exit(main())
