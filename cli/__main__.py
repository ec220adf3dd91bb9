"""Entry point for typesight CLI client."""

import argparse
import sys

from cli.api_client import TypesightAPIClient
from cli.console import ConsoleUI


def main():
    parser = argparse.ArgumentParser(description='Typesight - adaptive typing assessment')
    parser.add_argument(
        '--server',
        default='http://localhost:8000',
        help='Server URL (default: http://localhost:8000)'
    )
    parser.add_argument(
        '--user',
        help='Child username (required to run a session, filters --list)'
    )
    parser.add_argument(
        '--therapist',
        required=True,
        help='Therapist code'
    )
    view = parser.add_mutually_exclusive_group()
    view.add_argument(
        '--list',
        action='store_true',
        help='List saved sessions instead of running one'
    )
    view.add_argument(
        '--record',
        metavar='SESSION_ID',
        help='Show one saved session with its set-by-set progress'
    )
    args = parser.parse_args()

    if not (args.list or args.record or args.user):
        parser.error('--user is required to run a session')

    client = TypesightAPIClient(base_url=args.server)
    ui = ConsoleUI(client, args.user, args.therapist)

    if args.list:
        ui.show_sessions()
        return
    if args.record:
        ui.show_record(args.record)
        return

    try:
        ui.run()
    except KeyboardInterrupt:
        print()
        ui.quit()
        sys.exit(0)


if __name__ == '__main__':
    main()
