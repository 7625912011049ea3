"""
ADSDESK COMMAND LINE
Terminal access to the campaign dashboard operations:
- list ad accounts and campaigns with performance metrics
- pause / activate campaigns
- edit daily budgets
- fetch ad creative previews
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from typing import Any, List, Optional, Sequence, Tuple

from dotenv import load_dotenv

from .config import load_settings
from .infrastructure.error_handling import NormalizedError
from .integrations.meta_client import AdFormat, Campaign, CampaignStatus, DatePreset, DateRange, MetaClient
from .utils import fmt_currency, fmt_int, fmt_pct, parse_ymd

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INVALID = 1
EXIT_API_ERROR = 2

PRESET_CHOICES = [p.value for p in DatePreset if p is not DatePreset.CUSTOM]


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    for name in ("urllib3", "requests"):
        logging.getLogger(name).setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="adsdesk", description="Meta campaign dashboard from the terminal")
    parser.add_argument("--settings", default=None, help="YAML settings file (see config/settings.example.yaml)")
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--json", action="store_true", help="print raw JSON instead of table rows")
    # SUPPRESS keeps a subcommand from resetting a --json given before it
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--json", action="store_true", default=argparse.SUPPRESS,
                        help="print raw JSON instead of table rows")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("accounts", parents=[common], help="list ad accounts")

    p = sub.add_parser("campaigns", parents=[common], help="list campaigns with metrics")
    p.add_argument("account_id")
    p.add_argument("--preset", choices=PRESET_CHOICES, default=DatePreset.TODAY.value)
    p.add_argument("--since", default=None, help="YYYY-MM-DD (with --until)")
    p.add_argument("--until", default=None, help="YYYY-MM-DD (with --since)")
    p.add_argument("--no-insights", action="store_true")

    p = sub.add_parser("status", parents=[common], help="pause or activate a campaign")
    p.add_argument("campaign_id")
    p.add_argument("state", choices=[CampaignStatus.ACTIVE.value, CampaignStatus.PAUSED.value])

    p = sub.add_parser("budget", parents=[common], help="set a campaign daily budget")
    p.add_argument("campaign_id")
    p.add_argument("amount", help="daily budget in account currency, e.g. 25.50")

    p = sub.add_parser("preview", parents=[common], help="fetch ad preview HTML for a creative")
    p.add_argument("creative_id")
    p.add_argument("--format", dest="ad_format", choices=[f.value for f in AdFormat],
                   default=AdFormat.DESKTOP_FEED_STANDARD.value)
    return parser


def _date_window(args: argparse.Namespace) -> Tuple[DatePreset, Optional[DateRange]]:
    if bool(args.since) != bool(args.until):
        raise ValueError("--since and --until must be given together")
    if args.since:
        return DatePreset.CUSTOM, DateRange(parse_ymd(args.since), parse_ymd(args.until))
    return DatePreset.parse(args.preset), None


def _campaign_row(c: Campaign) -> str:
    ins = c.insights
    metrics = (
        f"impr={fmt_int(ins.impressions)} clicks={fmt_int(ins.clicks)} "
        f"ctr={fmt_pct(ins.ctr)} cpc={fmt_currency(ins.cpc)} spend={fmt_currency(ins.spend)}"
        if ins else "no insights"
    )
    return (
        f"{c.id:<20} {c.status:<8} {fmt_currency(c.daily_budget):>12}  "
        f"{(c.creative_id or '-'):<18} {c.name}  [{metrics}]"
    )


def _emit(obj: Any, as_json: bool, rows: Optional[List[str]] = None) -> None:
    if as_json:
        print(json.dumps(obj, indent=2, default=str))
    else:
        for line in rows or []:
            print(line)


def run(args: argparse.Namespace, client: MetaClient) -> int:
    if args.command == "accounts":
        accounts = client.list_ad_accounts()
        _emit([asdict(a) for a in accounts], args.json, [f"{a.id:<24} {a.name}" for a in accounts])
    elif args.command == "campaigns":
        preset, date_range = _date_window(args)
        campaigns = client.list_campaigns(
            args.account_id, preset, date_range, with_insights=not args.no_insights
        )
        if date_range is not None:
            window = {"since": client.calendar.ymd(date_range.start), "until": client.calendar.ymd(date_range.end)}
        else:
            window = client.calendar.window_for(preset.value)
        header = f"# {preset.value} {window['since']}..{window['until']} ({client.calendar.tz_name})"
        _emit([c.to_dict() for c in campaigns], args.json, [header] + [_campaign_row(c) for c in campaigns])
    elif args.command == "status":
        client.update_campaign_status(args.campaign_id, args.state)
        _emit({"id": args.campaign_id, "status": args.state}, args.json,
              [f"{args.campaign_id} -> {args.state}"])
    elif args.command == "budget":
        client.update_campaign_budget(args.campaign_id, args.amount)
        _emit({"id": args.campaign_id, "daily_budget": args.amount}, args.json,
              [f"{args.campaign_id} daily budget -> {args.amount}"])
    elif args.command == "preview":
        html = client.get_ad_preview(args.creative_id, args.ad_format)
        _emit({"creative_id": args.creative_id, "html": html}, args.json, [html])
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None, client: Optional[MetaClient] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    load_dotenv()
    configure_logging(args.verbose)

    try:
        if client is None:
            client = MetaClient.from_settings(load_settings(args.settings))
        with client:
            return run(args, client)
    except NormalizedError as e:
        print(f"Error [{e.kind.value}]: {e.message}", file=sys.stderr)
        return EXIT_API_ERROR
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_INVALID


if __name__ == "__main__":
    sys.exit(main())
