#!/usr/bin/env python3
"""
ABM Email Local - Command-line interface for browsing campaign data and generating sequences
"""

import argparse
import json
import sys
from typing import Any, Dict, Optional

from .api import (
    build_config,
    configure_logging,
    create_data_manager,
    create_orchestrator,
    create_store,
    export_batch_results,
    generation_config_from,
    prepare_data_directory,
    preview_prompts,
    save_batch_results,
    validate_config,
    validate_emails,
)
from .schemas import SchemaValidationError
from .utils.contact_ranking import get_auto_selected_ids, rank_contacts
from .utils.export import write_email_document
from .utils.llm_client import LLMClient
from .utils.validators import InputValidator


class ABMEmailCLI:
    """
    Command-line interface for ABM Email Local.
    Handles argument parsing, configuration and dispatch to the library API.
    """

    # Commands that call the model and therefore need an API key
    MODEL_COMMANDS = ('generate',)

    def __init__(self, llm_client: Optional[LLMClient] = None):
        """
        Initialize CLI with argument parser.

        Args:
            llm_client: Optional injected model client used by ``generate``
        """
        self.parser = self._setup_argument_parser()
        self.llm_client = llm_client
        self.validator = InputValidator()
        self.logger = None  # Set once configuration is known

    def _setup_argument_parser(self) -> argparse.ArgumentParser:
        """
        Set up command-line argument parser with subcommands.

        Returns:
            Configured ArgumentParser instance
        """
        parser = argparse.ArgumentParser(
            description='ABM Email Local - personalised three-email outreach sequences',
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  # BROWSE CAMPAIGN DATA
  abm-email accounts list
  abm-email contacts list 7 --ranked

  # GENERATE
  abm-email --openai-api-key sk-xxx generate 7
  abm-email --openai-api-key sk-xxx generate 7 --contact-id c-001 --contact-id c-004 --save --export
  abm-email generate 7 --all-eligible --dry-run

  # SAVED SEQUENCES
  abm-email emails list --account-index 7
  abm-email export 3f2a...

  # HTTP SERVER
  abm-email --openai-api-key sk-xxx serve --port 8000
            """
        )

        self._add_global_arguments(parser)

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        accounts_parser = subparsers.add_parser('accounts', help='Browse target accounts')
        self._add_accounts_arguments(accounts_parser)

        contacts_parser = subparsers.add_parser('contacts', help='Browse contacts of an account')
        self._add_contacts_arguments(contacts_parser)

        generate_parser = subparsers.add_parser('generate', help='Generate sequences for an account')
        self._add_generate_arguments(generate_parser)

        validate_parser = subparsers.add_parser('validate', help='Check a sequence against the rulebook')
        validate_parser.add_argument('file', help='JSON file holding an email array or {"emails": [...]}')

        emails_parser = subparsers.add_parser('emails', help='Manage saved sequences')
        self._add_emails_arguments(emails_parser)

        export_parser = subparsers.add_parser('export', help='Export a saved sequence to Word')
        export_parser.add_argument('email_id', help='Saved sequence ID')
        export_parser.add_argument('--output-dir', help='Directory for the .docx (default: exports dir)')

        serve_parser = subparsers.add_parser('serve', help='Run the HTTP server')
        serve_parser.add_argument('--host', default='127.0.0.1', help='Bind address (default: 127.0.0.1)')
        serve_parser.add_argument('--port', type=int, default=8000, help='Port (default: 8000)')

        return parser

    def _add_global_arguments(self, parser: argparse.ArgumentParser) -> None:
        """Add options shared by every command."""

        llm_group = parser.add_argument_group('model settings')
        llm_group.add_argument(
            '--openai-api-key',
            help='OpenAI API key (required for generate unless --dry-run)'
        )
        llm_group.add_argument(
            '--llm-model',
            help='Chat model name (default: gpt-4.1-mini or generation.json)'
        )
        llm_group.add_argument(
            '--llm-base-url',
            help='OpenAI-compatible base URL, e.g. https://proxy.example.com/v1'
        )
        llm_group.add_argument(
            '--temperature',
            type=float,
            help='Sampling temperature between 0.0 and 1.0 (default: 0.7)'
        )

        data_group = parser.add_argument_group('data and storage')
        data_group.add_argument(
            '--data-dir',
            default='./abm_email_data',
            help='Working directory for config, logs and exports (default: ./abm_email_data)'
        )
        data_group.add_argument(
            '--campaign-data-dir',
            help='Campaign data root (default: <data-dir>/campaign-data)'
        )
        data_group.add_argument(
            '--storage-backend',
            choices=['memory', 'file', 'sqlite'],
            help='Saved-sequence storage backend (default: file)'
        )

        output_group = parser.add_argument_group('output and logging')
        output_group.add_argument(
            '--output-format',
            choices=['json', 'text'],
            default='json',
            help='Output format for results (default: json)'
        )
        output_group.add_argument(
            '--log-level',
            choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
            default='INFO',
            help='Logging level (default: INFO)'
        )
        output_group.add_argument(
            '--log-file',
            help='Log file path (default: <data-dir>/logs/)'
        )
        output_group.add_argument(
            '--verbose',
            action='store_true',
            help='Enable verbose logging'
        )

    def _add_accounts_arguments(self, parser: argparse.ArgumentParser) -> None:
        subparsers = parser.add_subparsers(dest='accounts_action', help='Account actions')
        subparsers.add_parser('list', help='List accounts')
        show_parser = subparsers.add_parser('show', help='Show one account')
        show_parser.add_argument('index', help='Account index')

    def _add_contacts_arguments(self, parser: argparse.ArgumentParser) -> None:
        subparsers = parser.add_subparsers(dest='contacts_action', help='Contact actions')
        list_parser = subparsers.add_parser('list', help='List contacts of an account')
        list_parser.add_argument('index', help='Account index')
        list_parser.add_argument(
            '--ranked',
            action='store_true',
            help='Order by priority tier and mark auto-selected contacts'
        )

    def _add_generate_arguments(self, parser: argparse.ArgumentParser) -> None:
        parser.add_argument('index', help='Account index')
        parser.add_argument(
            '--contact-id',
            action='append',
            dest='contact_ids',
            help='Contact to generate for (repeatable, default: auto-selected contacts)'
        )
        parser.add_argument(
            '--all-eligible',
            action='store_true',
            help='Generate for every non-excluded contact instead of the auto-selected set'
        )
        parser.add_argument(
            '--save',
            action='store_true',
            help='Save generated sequences to the configured store'
        )
        parser.add_argument(
            '--export',
            action='store_true',
            help='Write one .docx per generated sequence to the exports dir'
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Print the prompts that would be sent without calling the model'
        )

    def _add_emails_arguments(self, parser: argparse.ArgumentParser) -> None:
        subparsers = parser.add_subparsers(dest='emails_action', help='Saved sequence actions')
        list_parser = subparsers.add_parser('list', help='List saved sequences')
        list_parser.add_argument('--account-index', help='Only sequences for this account')
        show_parser = subparsers.add_parser('show', help='Show a saved sequence')
        show_parser.add_argument('email_id', help='Saved sequence ID')
        delete_parser = subparsers.add_parser('delete', help='Delete a saved sequence')
        delete_parser.add_argument('email_id', help='Saved sequence ID')

    def parse_args(self, args: Optional[list] = None) -> argparse.Namespace:
        """
        Parse command-line arguments.

        Args:
            args: Optional list of arguments (uses sys.argv if None)

        Returns:
            Parsed arguments namespace
        """
        return self.parser.parse_args(args)

    def create_config(self, args: argparse.Namespace) -> Dict[str, Any]:
        return build_config(args)

    def prepare(self, args: argparse.Namespace) -> Optional[Dict[str, Any]]:
        """
        Build, prepare and validate the configuration for a command.

        Returns:
            Configuration dictionary, or None when validation failed (errors
            are printed to stderr)
        """
        config = self.create_config(args)
        prepare_data_directory(config)
        self.logger = configure_logging(config)

        checked = dict(config)
        if args.command not in self.MODEL_COMMANDS:
            # API key only matters when the model is called
            checked['dry_run'] = True

        config_valid, config_errors = validate_config(checked)
        if not config_valid:
            print("Configuration validation failed:", file=sys.stderr)
            for error in config_errors:
                print(f"  - {error}", file=sys.stderr)
            return None

        return config

    def format_output(self, results: Any, format_type: str) -> str:
        """
        Format command results for output.

        Args:
            results: Result dictionary or list
            format_type: Output format (json, text)

        Returns:
            Formatted output string
        """
        if format_type == 'text':
            return self._format_text_output(results)
        return json.dumps(results, indent=2, default=str)

    def _format_text_output(self, results: Any) -> str:
        """
        Format results as human-readable text.

        Batch results and validation reports get dedicated layouts; anything
        else is printed one record per line.
        """
        output = []

        if isinstance(results, dict) and 'statuses' in results:
            output.append("ABM Email Batch Results")
            output.append("=" * 50)
            output.append(f"Batch ID: {results.get('batch_id', 'N/A')}")
            output.append(f"Account: {results.get('account_index', 'N/A')}")
            output.append(f"Summary: {results.get('summary', 'N/A')}")
            output.append("")
            for status in results['statuses']:
                line = f"{status['contact_id']} ({status['name']}): {status['status'].upper()}"
                if status.get('error'):
                    line += f" - {status['error']}"
                output.append(line)

                validation = results.get('validations', {}).get(status['contact_id'])
                if validation and not validation['passed']:
                    for failure in validation['failures']:
                        output.append(f"  ! {failure}")
            return "\n".join(output)

        if isinstance(results, dict) and 'validation' in results:
            validation = results['validation']
            schema = results.get('schema', {})
            output.append(f"Rulebook: {'PASSED' if validation['passed'] else 'FAILED'}")
            for failure in validation['failures']:
                output.append(f"  - {failure}")
            for suggestion in validation['suggestions']:
                output.append(f"  > {suggestion}")
            output.append(f"Schema: {'VALID' if schema.get('valid') else 'INVALID'}")
            if schema.get('errors'):
                output.append(f"  {json.dumps(schema['errors'], default=str)}")
            return "\n".join(output)

        records = results if isinstance(results, list) else [results]
        for record in records:
            if isinstance(record, dict):
                output.append(", ".join(f"{key}: {value}" for key, value in record.items()
                                        if not isinstance(value, (dict, list))))
            else:
                output.append(str(record))
        return "\n".join(output)

    def _print(self, results: Any, config: Dict[str, Any]) -> None:
        print(self.format_output(results, config.get('output_format', 'json')))

    def _account_index(self, value: Any) -> Optional[int]:
        index = self.validator.validate_account_index(value)
        if index is None:
            print(f"Error: Invalid account index: {value}", file=sys.stderr)
        return index

    def run(self, args: Optional[list] = None) -> int:
        """
        Main execution method.

        Args:
            args: Optional command-line arguments

        Returns:
            Exit code (0 for success, 1 for error)
        """
        try:
            parsed_args = self.parse_args(args)
            command = getattr(parsed_args, 'command', None)

            if command is None:
                self.parser.print_help()
                return 1

            handlers = {
                'accounts': self._run_accounts_command,
                'contacts': self._run_contacts_command,
                'generate': self._run_generate,
                'validate': self._run_validate,
                'emails': self._run_emails_command,
                'export': self._run_export,
                'serve': self._run_serve,
            }

            config = self.prepare(parsed_args)
            if config is None:
                return 1

            return handlers[command](parsed_args, config)

        except KeyboardInterrupt:
            print("\nExecution interrupted by user", file=sys.stderr)
            return 1
        except Exception as e:
            print(f"Error: {str(e)}", file=sys.stderr)
            return 1

    def _run_accounts_command(self, args: argparse.Namespace, config: Dict[str, Any]) -> int:
        """Handle account browsing commands."""
        data_manager = create_data_manager(config)
        action = getattr(args, 'accounts_action', None)

        if action == 'list':
            accounts = data_manager.get_account_list_items()
            if not accounts:
                print(f"No accounts found in {config['campaign_data_dir']}", file=sys.stderr)
            self._print(accounts, config)
            return 0

        elif action == 'show':
            index = self._account_index(args.index)
            if index is None:
                return 1
            account = data_manager.load_account(index)
            if account is None:
                print(f"Account not found: {index}", file=sys.stderr)
                return 1
            self._print(account, config)
            return 0

        else:
            print(f"Unknown accounts action: {action}", file=sys.stderr)
            return 1

    def _run_contacts_command(self, args: argparse.Namespace, config: Dict[str, Any]) -> int:
        """Handle contact browsing commands."""
        action = getattr(args, 'contacts_action', None)
        if action != 'list':
            print(f"Unknown contacts action: {action}", file=sys.stderr)
            return 1

        index = self._account_index(args.index)
        if index is None:
            return 1

        contacts = create_data_manager(config).get_contact_list_items(index)
        if not contacts:
            print(f"No contacts found for account {index}", file=sys.stderr)

        if args.ranked:
            ranked = rank_contacts(contacts)
            if config["output_format"] == "text":
                self._print(ranked, config)
            else:
                self._print({"contacts": ranked, "autoSelected": get_auto_selected_ids(contacts)}, config)
        else:
            self._print(contacts, config)
        return 0

    def _print_status(self, event: Dict[str, Any]) -> None:
        line = f"[{event['status']}] {event['name']} ({event['contact_id']})"
        if event.get('error'):
            line += f": {event['error']}"
        print(line, flush=True)

    def _run_generate(self, args: argparse.Namespace, config: Dict[str, Any]) -> int:
        """Run a batch for one account."""
        index = self._account_index(args.index)
        if index is None:
            return 1

        for contact_id in args.contact_ids or []:
            if not self.validator.validate_contact_id(contact_id):
                print(f"Error: Invalid contact id: {contact_id}", file=sys.stderr)
                return 1

        if config['dry_run']:
            previews = preview_prompts(config, index, args.contact_ids, all_eligible=args.all_eligible)
            self._print({'status': 'dry_run', 'batch_id': config['batch_id'], 'prompts': previews}, config)
            return 0

        data_manager = create_data_manager(config)
        account = data_manager.load_account(index)
        if account is None:
            print(f"Account not found: {index}", file=sys.stderr)
            return 1

        orchestrator = create_orchestrator(config, llm_client=self.llm_client, data_manager=data_manager)
        contacts = orchestrator.select_contacts(index, args.contact_ids, args.all_eligible)
        if not contacts:
            print(f"No contacts selected for account {index}", file=sys.stderr)
            return 1

        self.logger.info(f"Starting batch {config['batch_id']} for account {index}")
        batch = orchestrator.generate(
            account,
            contacts,
            generation_config_from(config),
            on_status=self._print_status,
        )
        print(batch.summary)

        results = batch.to_dict()
        if args.save and batch.sequences:
            saved, rejected = save_batch_results(create_store(config), account, contacts, batch)
            results['saved'] = [record['id'] for record in saved]
            results['rejected'] = rejected
        if args.export and batch.sequences:
            paths, skipped = export_batch_results(config, account, contacts, batch)
            results['exports'] = [str(path) for path in paths]
            results['export_skipped'] = skipped

        self._print(results, config)

        if batch.succeeded == 0:
            self.logger.error(f"Batch {config['batch_id']} produced no sequences")
            return 1
        return 0

    def _load_emails_file(self, path: str) -> Any:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if isinstance(data, dict) and 'emails' in data:
            return data['emails']
        return data

    def _run_validate(self, args: argparse.Namespace, config: Dict[str, Any]) -> int:
        """Check a sequence file; exit 1 if the rulebook or schema rejects it."""
        try:
            emails = self._load_emails_file(args.file)
        except (OSError, json.JSONDecodeError) as e:
            print(f"Error: Cannot read {args.file}: {e}", file=sys.stderr)
            return 1

        try:
            report = validate_emails(emails, config)
        except SchemaValidationError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

        self._print(report, config)
        return 0 if report['validation']['passed'] and report['schema']['valid'] else 1

    def _run_emails_command(self, args: argparse.Namespace, config: Dict[str, Any]) -> int:
        """Handle saved-sequence commands."""
        store = create_store(config)
        action = getattr(args, 'emails_action', None)

        if action == 'list':
            account_index = None
            if args.account_index is not None:
                account_index = self._account_index(args.account_index)
                if account_index is None:
                    return 1
            self._print(store.list(account_index), config)
            return 0

        elif action == 'show':
            record = store.get(args.email_id)
            if record is None:
                print(f"Email not found: {args.email_id}", file=sys.stderr)
                return 1
            self._print(record, config)
            return 0

        elif action == 'delete':
            if not store.delete(args.email_id):
                print(f"Email not found: {args.email_id}", file=sys.stderr)
                return 1
            print(f"Deleted saved sequence: {args.email_id}")
            return 0

        else:
            print(f"Unknown emails action: {action}", file=sys.stderr)
            return 1

    def _run_export(self, args: argparse.Namespace, config: Dict[str, Any]) -> int:
        """Write a saved sequence to a Word document."""
        record = create_store(config).get(args.email_id)
        if record is None:
            print(f"Email not found: {args.email_id}", file=sys.stderr)
            return 1

        output_dir = args.output_dir or config['exports_dir']
        path = write_email_document(
            output_dir,
            record['contactName'],
            record['contactTitle'],
            record['accountName'],
            record['emails'],
        )
        print(f"Exported to: {path}")
        return 0

    def _run_serve(self, args: argparse.Namespace, config: Dict[str, Any]) -> int:
        """Run the HTTP server until interrupted."""
        from .server import run_server

        if not config.get('openai_api_key'):
            self.logger.warning("No OpenAI API key configured; generation endpoints will return errors")
        run_server(config, host=args.host, port=args.port)
        return 0


def main():
    """Main entry point for command-line execution."""
    cli = ABMEmailCLI()
    exit_code = cli.run()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
