#!/usr/bin/env python3
"""ralph CLI entrypoint."""

import argparse
import logging
import sys

from ralph.commands import create as cmd_create_module
from ralph.commands import draft as cmd_draft_module
from ralph.db.session import StorageError
from ralph.lib.config import ConfigError, RalphConfig, load_config

logger = logging.getLogger(__name__)


def setup_logging(config: RalphConfig, verbose: bool = False) -> None:
    """Log to a file; the terminal belongs to the TUI."""
    config.log_file.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        filename=str(config.log_file),
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def cmd_create(args, config):
    return cmd_create_module.cmd_create(args, config)


def cmd_draft_show(args, config):
    return cmd_draft_module.cmd_draft_show(args, config)


def cmd_draft_clear(args, config):
    return cmd_draft_module.cmd_draft_clear(args, config)


def cmd_epics_show(args, config):
    return cmd_draft_module.cmd_epics_show(args, config)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='ralph', description='Turn a description into an epic specification')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    parser.set_defaults(func=cmd_create)
    subparsers = parser.add_subparsers(dest='command')

    # ralph create
    p_create = subparsers.add_parser('create', help='Create an epic with the interactive wizard')
    p_create.set_defaults(func=cmd_create)

    # ralph draft
    p_draft = subparsers.add_parser('draft', help='Inspect the autosaved draft')
    p_draft.set_defaults(func=cmd_draft_show)
    draft_sub = p_draft.add_subparsers(dest='draft_cmd')

    p_draft_show = draft_sub.add_parser('show', help='Show the saved draft')
    p_draft_show.set_defaults(func=cmd_draft_show)

    p_draft_clear = draft_sub.add_parser('clear', help='Delete the saved draft')
    p_draft_clear.set_defaults(func=cmd_draft_clear)

    # ralph epics
    p_epics = subparsers.add_parser('epics', help='Saved epics')
    epics_sub = p_epics.add_subparsers(dest='epics_cmd', required=True)

    p_epics_show = epics_sub.add_parser('show', help='Print a saved epic')
    p_epics_show.add_argument('id', type=int, help='Epic ID')
    p_epics_show.set_defaults(func=cmd_epics_show)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config()
    except ConfigError as e:
        print(f"ERROR: Invalid configuration: {e}", file=sys.stderr)
        return 2

    setup_logging(config, verbose=args.verbose)

    try:
        return args.func(args, config)
    except StorageError as e:
        logger.error(f"[DB] {e}")
        print(f"ERROR: Database error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
