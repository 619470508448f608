# main.py
"""
Entry point: price a bill from the command line or run the metering processor
"""

import argparse
import json
import logging
import sys

from config import DEFAULT_PROVIDER, HISTORY_BACKEND, HISTORY_LIMIT, init_influx
from errors import TariffError
from history import InfluxBillHistory, InMemoryBillHistory
from pricing import calculate_bill
from processor import BillingProcessor
from reports import compare_providers, format_bill, format_currency, what_if
from tariffs import TARIFF_TABLES, get_tariff

logger = logging.getLogger(__name__)


def setup_logging():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler('electrocalc.log'),
            logging.StreamHandler(sys.stdout)
        ]
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="ElectroCalc - RADEEF / ONEE electricity bills")
    sub = parser.add_subparsers(dest="command", required=True)

    bill = sub.add_parser("bill", help="Itemized bill for a monthly consumption")
    bill.add_argument("consumption", type=float, help="Monthly consumption (kWh)")
    bill.add_argument("--provider", default=DEFAULT_PROVIDER, choices=sorted(TARIFF_TABLES))
    bill.add_argument("--json", action="store_true", help="Print the breakdown as JSON")
    bill.add_argument("--lang", default="fr", choices=["fr", "ar"])

    compare = sub.add_parser("compare", help="Same consumption billed by every provider")
    compare.add_argument("consumption", type=float)
    compare.add_argument("--lang", default="fr", choices=["fr", "ar"])

    whatif = sub.add_parser("whatif", help="Savings for a lower consumption")
    whatif.add_argument("consumption", type=float)
    whatif.add_argument("reduction", type=float, help="Reduction in percent")
    whatif.add_argument("--provider", default=DEFAULT_PROVIDER, choices=sorted(TARIFF_TABLES))
    whatif.add_argument("--lang", default="fr", choices=["fr", "ar"])

    run = sub.add_parser("run", help="Run the MQTT metering processor")
    run.add_argument("--provider", default=DEFAULT_PROVIDER, choices=sorted(TARIFF_TABLES))

    return parser


def make_history(influx_client=None):
    if HISTORY_BACKEND == "influx":
        return InfluxBillHistory(influx_client or init_influx())
    return InMemoryBillHistory(HISTORY_LIMIT)


def run_command(args) -> int:
    if args.command == "bill":
        bill = calculate_bill(args.consumption, get_tariff(args.provider))
        if args.json:
            print(json.dumps(bill.to_dict(), ensure_ascii=False, indent=2))
        else:
            print("\n".join(format_bill(bill, args.lang)))

    elif args.command == "compare":
        for bill in compare_providers(args.consumption):
            print(f"{bill.provider:<8} {format_currency(bill.totals.incl_tax, args.lang)}")

    elif args.command == "whatif":
        table = get_tariff(args.provider)
        result = what_if(calculate_bill(args.consumption, table), args.reduction, table)
        print(f"New consumption: {result.new_consumption:.1f} kWh")
        print(f"Monthly savings: {format_currency(result.monthly_savings, args.lang)}")
        print(f"Yearly savings:  {format_currency(result.yearly_savings, args.lang)}")

    elif args.command == "run":
        influx_client = init_influx()
        processor = BillingProcessor(get_tariff(args.provider), make_history(influx_client), influx_client)
        processor.run()

    return 0


def main(argv=None):
    """Parse arguments and dispatch"""
    setup_logging()
    args = build_parser().parse_args(argv)
    try:
        return run_command(args)
    except TariffError as e:
        logger.error(f"Calculation failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("Stopped by user")
        return 0
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
