#!/usr/bin/env python3
"""
OneNote to Markdown Migration Tool - Main CLI Entry Point

Signs in to Microsoft Graph, lists the OneNote notebook hierarchy and imports
the selected sections into a markdown vault, one page at a time, with resume
support across runs.
"""

import argparse
import logging
import signal
import sys
import webbrowser
from typing import List, Optional
from urllib.parse import parse_qs, urlparse

from config_loader import ConfigLoader, get_nested
from logger import setup_logging, log_section, log_config
from models import NodeKind, TreeNode
from fetchers import (
    AuthSession,
    GraphClient,
    HierarchyIndexer,
    MigrationError,
    RetryPolicy,
    SessionHealth,
    UnauthenticatedError,
)
from exporters import FileVault
from orchestrator import ImportStateStore, MigrationOrchestrator, ProgressReporter, SettingsStore

__version__ = "1.0.0"


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for CLI."""
    parser = argparse.ArgumentParser(
        description="Import OneNote notebooks from Microsoft Graph into a markdown vault",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Sign in once (the refresh token is remembered)
  python migrate.py --sign-in

  # Show notebooks, section groups and sections with their IDs
  python migrate.py --list

  # Import two sections
  python migrate.py --sections "0-ABC!123,0-ABC!456"

  # Import everything, re-importing pages imported before
  python migrate.py --all-sections --no-skip

  # Verbose logging and a JSON report
  python migrate.py --all-sections -vv --report report.json
        """
    )

    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    parser.add_argument(
        '--config',
        type=str,
        default='config.yaml',
        help='Path to configuration YAML file (default: config.yaml)'
    )

    parser.add_argument(
        '--sign-in',
        action='store_true',
        help='Sign in through the browser before doing anything else'
    )

    parser.add_argument(
        '--sign-out',
        action='store_true',
        help='Forget the remembered sign-in and exit'
    )

    parser.add_argument(
        '--list',
        action='store_true',
        help='List notebooks and sections with their IDs and exit'
    )

    selection = parser.add_mutually_exclusive_group()
    selection.add_argument(
        '--sections',
        type=str,
        help='Comma-separated section IDs to import'
    )
    selection.add_argument(
        '--all-sections',
        action='store_true',
        help='Import every section of every notebook'
    )

    parser.add_argument(
        '--no-skip',
        action='store_true',
        help='Import pages again even if a previous run imported them'
    )

    parser.add_argument('--vault', type=str, help='Vault directory to write into')
    parser.add_argument('--output-folder', type=str, help='Vault folder for imported notebooks')
    parser.add_argument('--report', type=str, help='Write a JSON run report to this file')
    parser.add_argument('--log-file', type=str, help='Also log to this (rotating) file')

    parser.add_argument(
        '-v', '--verbose',
        action='count',
        default=0,
        help='Increase verbosity (-v for INFO, -vv for DEBUG)'
    )

    return parser


def build_auth(config: dict, store: SettingsStore) -> AuthSession:
    return AuthSession(
        client_id=get_nested(config, 'graph.client_id'),
        tenant=get_nested(config, 'graph.tenant', 'common'),
        redirect_uri=get_nested(config, 'graph.redirect_uri', 'http://localhost:8400/'),
        scopes=get_nested(config, 'graph.scopes'),
        store=store,
        remember_sign_in=get_nested(config, 'graph.remember_sign_in', True),
        timeout=get_nested(config, 'advanced.request_timeout', 30),
    )


def build_client(config: dict, auth: AuthSession, reporter: ProgressReporter) -> GraphClient:
    advanced = config.get('advanced', {})
    health = SessionHealth(
        stall_timeout=float(advanced.get('stall_timeout', 600)),
        failure_threshold=int(advanced.get('consecutive_failure_threshold', 5)),
    )
    return GraphClient(
        auth,
        health=health,
        policy=RetryPolicy.from_config(advanced),
        timeout=advanced.get('request_timeout', 30),
        verify_ssl=advanced.get('verify_ssl', True),
        is_cancelled=reporter.is_cancelled,
    )


def sign_in(auth: AuthSession) -> None:
    """Interactive authorization-code sign-in."""
    url = auth.authorization_url()
    print("\nOpen this URL and sign in with your Microsoft account:\n")
    print(f"  {url}\n")
    webbrowser.open(url)

    answer = input("Paste the URL you were redirected to (or just the code): ").strip()
    code, state = answer, None
    if '://' in answer or answer.startswith('?'):
        query = parse_qs(urlparse(answer).query)
        if 'error' in query:
            description = query.get('error_description', query['error'])[0]
            raise UnauthenticatedError(f"Sign-in failed: {description}")
        if 'code' not in query:
            raise UnauthenticatedError("The redirected URL does not contain an authorization code")
        code = query['code'][0]
        state = query.get('state', [None])[0]

    auth.authorize(code, state)


def print_signed_in_user(client: GraphClient) -> None:
    me = client.fetch(client.url('/me'))
    name = me.get('displayName') or 'unknown user'
    mail = me.get('mail') or me.get('userPrincipalName') or ''
    print(f"Signed in as {name}" + (f" ({mail})" if mail else ""))


def print_forest(notebooks: List[TreeNode]) -> None:
    """Print the discovered hierarchy with section IDs."""

    def walk(node: TreeNode, depth: int) -> None:
        indent = "  " * depth
        if node.kind == NodeKind.SECTION:
            print(f"{indent}- {node.display_name}  [{node.id}]")
        else:
            label = 'Notebook' if node.kind == NodeKind.NOTEBOOK else 'Group'
            print(f"{indent}{label}: {node.display_name}")
        for child in node.children:
            walk(child, depth + 1)

    print("\n" + "=" * 60)
    print("ONENOTE NOTEBOOKS")
    print("=" * 60)
    if not notebooks:
        print("No notebooks found")
    for notebook in notebooks:
        walk(notebook, 0)
    print("=" * 60)


def select_sections(config: dict, args: argparse.Namespace, notebooks: List[TreeNode]) -> List[str]:
    if args.all_sections:
        return [section.id for notebook in notebooks for section in notebook.iter_sections()]
    return list(get_nested(config, 'import.sections') or [])


def install_cancel_handler(reporter: ProgressReporter, logger: logging.Logger) -> None:
    """First Ctrl-C cancels gracefully after the current page, the second one interrupts."""

    def handle_sigint(signum, frame):
        if reporter.is_cancelled():
            raise KeyboardInterrupt
        logger.warning("Cancelling import; press Ctrl-C again to stop immediately")
        reporter.cancel()

    signal.signal(signal.SIGINT, handle_sigint)


def run_import(config: dict, args: argparse.Namespace, logger: logging.Logger) -> int:
    """Sign in, discover, and import the selected sections."""
    store = SettingsStore(get_nested(config, 'state.path', '.onenote-importer.json'))
    auth = build_auth(config, store)

    if args.sign_out:
        auth.sign_out()
        print("Signed out")
        return 0

    reporter = ProgressReporter()
    client = build_client(config, auth, reporter)

    if args.sign_in:
        sign_in(auth)
    print_signed_in_user(client)

    indexer = HierarchyIndexer(client, output_folder=get_nested(config, 'import.output_folder', 'OneNote'))
    notebooks = indexer.discover()

    if args.list:
        print_forest(notebooks)
        return 0

    section_ids = select_sections(config, args, notebooks)
    if not section_ids:
        logger.error("No sections selected; use --sections, --all-sections or import.sections")
        print_forest(notebooks)
        return 2

    vault = FileVault(get_nested(config, 'import.vault_path', './vault'))
    orchestrator = MigrationOrchestrator(
        config,
        client,
        indexer,
        vault,
        ImportStateStore(store),
        reporter,
    )

    install_cancel_handler(reporter, logger)
    summary = orchestrator.import_sections(section_ids)

    print("\n" + reporter.format_console_report(summary))
    if args.report:
        reporter.export_json_report(summary, args.report)

    if summary['aborted']:
        return 130 if summary['cancelled'] else 1
    return 1 if summary['pages']['failed'] or summary['sections_failed'] else 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    try:
        setup_logging(verbosity=args.verbose)
        logger = logging.getLogger('onenote_markdown_migrator.cli')

        log_section("OneNote to Markdown Migration Tool")
        logger.info(f"Version: {__version__}")

        logger.info(f"Loading configuration from {args.config}")
        config = ConfigLoader.load(args.config)
        config = ConfigLoader.merge_with_args(config, args)
        ConfigLoader.validate(config)

        setup_logging(
            verbosity=args.verbose,
            log_file=get_nested(config, 'logging.file'),
            level=get_nested(config, 'logging.level')
        )
        log_config(config)

        return run_import(config, args, logger)

    except FileNotFoundError as e:
        print(f"ERROR: File not found: {e}", file=sys.stderr)
        return 2
    except ValueError as e:
        print(f"ERROR: Configuration error: {e}", file=sys.stderr)
        return 2
    except UnauthenticatedError as e:
        print(f"ERROR: {e}. Run with --sign-in to sign in again.", file=sys.stderr)
        return 1
    except MigrationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nImport interrupted by user", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
