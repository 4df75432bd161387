"""Command line entry point for evaluating insight rules against a context file."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Iterable, Optional, Sequence

from insight_engine.catalog import RuleCatalog, load_catalog
from insight_engine.config import EngineConfig
from insight_engine.exceptions import CatalogError, ContextFetchError
from insight_engine.feedback import FeedbackIndex
from insight_engine.collector import snapshot_from_dict
from insight_engine.models import ContextSnapshot
from insight_engine.pipeline import InsightEngine
from insight_engine.scope import pick_for_screen
from insight_engine.store import InsightStore
from insight_engine.ui import InsightCard, build_cards
from insight_engine.utils import parse_timestamp


def load_context(path: str) -> ContextSnapshot:
    try:
        if path == "-":
            payload = json.load(sys.stdin)
        else:
            payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ContextFetchError(f"cannot load context from {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ContextFetchError("context payload must be a JSON object")
    return snapshot_from_dict(payload)


def load_feedback(db_path: Optional[str]) -> Optional[FeedbackIndex]:
    if not db_path:
        return None
    store = InsightStore(db_path)
    try:
        return store.feedback_index()
    finally:
        store.close()


def render_cards(cards: Iterable[InsightCard]) -> list[str]:
    return [card.render_text() for card in cards]


def build_engine(args: argparse.Namespace) -> InsightEngine:
    config = EngineConfig.from_env()
    catalog = load_catalog(args.catalog or config.catalog_path)
    return InsightEngine(catalog, config=config)


def cmd_evaluate(args: argparse.Namespace) -> int:
    engine = build_engine(args)
    context = load_context(args.context)
    matches = engine.evaluate(context, feedback=load_feedback(args.feedback_db), now=parse_timestamp(args.now))
    rendered = render_cards(build_cards(matches))
    if not rendered:
        print("insights: (none)")
    for text in rendered:
        print(text)
        print()
    return 0


def cmd_pick(args: argparse.Namespace) -> int:
    engine = build_engine(args)
    context = load_context(args.context)
    matches = engine.evaluate(context, feedback=load_feedback(args.feedback_db), now=parse_timestamp(args.now))
    chosen = pick_for_screen(matches, args.screen)
    print(InsightCard(match=chosen, screen=args.screen).render_text())
    return 0


def cmd_feedback(args: argparse.Namespace) -> int:
    store = InsightStore(args.db)
    try:
        record = store.record_feedback(
            args.rule_id,
            helpful=not args.not_helpful,
            reason=args.reason,
            created_at=parse_timestamp(args.at),
        )
    finally:
        store.close()
    verdict = "helpful" if record.helpful else "not helpful"
    print(f"recorded {verdict} feedback for {record.rule_id} at {record.created_at.isoformat()}")
    return 0


def cmd_rules(args: argparse.Namespace) -> int:
    catalog: RuleCatalog = load_catalog(args.catalog or EngineConfig.from_env().catalog_path)
    for rule in catalog:
        scopes = ", ".join(rule.scopes) or "(inferred)"
        print(f"{rule.rule_id:<24} priority={rule.priority:<4} scopes={scopes}")
    for label, error in catalog.rejected.items():
        print(f"rejected {label}: {error}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Insight Engine rule evaluator")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)
    catalog_opt = argparse.ArgumentParser(add_help=False)
    catalog_opt.add_argument("--catalog", help="Path to a rule catalog JSON document")

    evaluate = sub.add_parser("evaluate", parents=[catalog_opt], help="List ranked matches for a context file")
    evaluate.add_argument("context", help="Context snapshot JSON file, or - for stdin")
    evaluate.add_argument("--feedback-db", help="SQLite file holding recorded feedback")
    evaluate.add_argument("--now", help="Evaluation time (ISO-8601)")
    evaluate.set_defaults(func=cmd_evaluate)

    pick = sub.add_parser("pick", parents=[catalog_opt], help="Select the single insight for a screen")
    pick.add_argument("context", help="Context snapshot JSON file, or - for stdin")
    pick.add_argument("--screen", default="dashboard", help="Screen name, e.g. sleep, mood, meds, dashboard")
    pick.add_argument("--feedback-db", help="SQLite file holding recorded feedback")
    pick.add_argument("--now", help="Evaluation time (ISO-8601)")
    pick.set_defaults(func=cmd_pick)

    feedback = sub.add_parser("feedback", help="Record feedback for a rule")
    feedback.add_argument("rule_id")
    feedback.add_argument("--db", required=True, help="SQLite file to write to")
    feedback.add_argument("--not-helpful", action="store_true", help="Mark the insight as not helpful")
    feedback.add_argument("--reason", help="Reason code, e.g. not_relevant_now")
    feedback.add_argument("--at", help="Feedback time (ISO-8601), defaults to now")
    feedback.set_defaults(func=cmd_feedback)

    rules = sub.add_parser("rules", parents=[catalog_opt], help="List loaded rules and rejected entries")
    rules.set_defaults(func=cmd_rules)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except (CatalogError, ContextFetchError) as exc:
        sys.stderr.write(f"error: {exc}\n")
        return 1


if __name__ == "__main__":
    sys.exit(main())
