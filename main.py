import argparse
import sys

from helpers import build_config, configure_logging, migrate, verify, verify_signatures


def _common_options(default=None):
    """Options accepted both before and after the subcommand."""
    common = argparse.ArgumentParser(add_help=False, argument_default=default)
    common.add_argument("-w", "--work-dir", type=str,
                        help="Use the <directory> as the location of the database")
    common.add_argument("-v", "--verbose", action="store_true", help="Show debug log messages")
    common.add_argument("--no-progress", action="store_true", help="Disable progress bars")
    return common


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Convert a mint's key-value database to SQLite",
                                     parents=[_common_options()])
    # Suppressed defaults keep subcommand parsing from resetting options given before it
    common = _common_options(argparse.SUPPRESS)
    subparsers = parser.add_subparsers(dest="command")
    migrate_parser = subparsers.add_parser("migrate", parents=[common],
                                           help="Migrate the key-value database (default)")
    migrate_parser.add_argument("--verify", action="store_true",
                                help="Run both verification passes after migrating")
    subparsers.add_parser("verify", parents=[common], help="Verify a completed migration")
    subparsers.add_parser("verify-signatures", parents=[common],
                          help="Verify blind signature counts and amounts")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)

    try:
        config = build_config(args.work_dir, show_progress=not args.no_progress)
        command = args.command or "migrate"
        if command == "migrate":
            migrate(config)
            if getattr(args, "verify", False):
                verify(config)
                verify_signatures(config)
        elif command == "verify":
            verify(config)
        elif command == "verify-signatures":
            verify_signatures(config)
    except Exception:
        # helpers has already logged the failure
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
