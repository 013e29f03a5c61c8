#!/usr/bin/env python3

"""
Command-line interface for S3 lock fsck
"""

import sys
import logging
import argparse
import os
import time
from tqdm import tqdm
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich import box

from .config import Config
from .core import Fsck, FsckReport, OutcomeStatus
from .errors import FsckError
from .filesystem import S3FileSystem, create_s3_client
from .lock import S3LockStore
from .utils import parse_bucket_uri

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

console = Console()

STATUS_MARKS = {
    OutcomeStatus.UNLOCKED: '○ unlocked',
    OutcomeStatus.SKIPPED: '- skipped',
    OutcomeStatus.REPAIRED: '✓ repaired',
    OutcomeStatus.FAILED: '× failed',
}


class FsckStats:
    def __init__(self, bucket):
        self.bucket = bucket
        self.start_time = time.time()
        self.pbar = tqdm(
            desc="checking locks",
            unit="ops",
            bar_format="{desc:<40} | {n_fmt} operations [{elapsed}]",
            colour="green",
            ncols=120,
            position=0,
            leave=True
        )

    def update_progress(self, status, operation_id):
        """update progress bar"""
        self.pbar.set_description(f"{STATUS_MARKS[status]}: {operation_id[:24]:<24}")
        self.pbar.update(1)

    def close(self):
        self.pbar.close()

    def print_summary(self, report: FsckReport):
        """print summary"""
        self.close()
        elapsed_time = time.time() - self.start_time

        table = Table(box=box.ROUNDED, show_header=False, border_style="bright_blue")
        table.add_column("Item", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("bucket", f"s3://{self.bucket}")
        table.add_row("locked operations", f"{len(report.outcomes):,}")
        table.add_row("unlocked (no lock file)", f"[green]○ {report.count(OutcomeStatus.UNLOCKED):,}[/green]")
        table.add_row("skipped (not expired)", f"[yellow]- {report.count(OutcomeStatus.SKIPPED):,}[/yellow]")
        table.add_row("repaired", f"[green]✓ {report.count(OutcomeStatus.REPAIRED):,}[/green]")
        table.add_row("failed", f"[red]× {report.count(OutcomeStatus.FAILED):,}[/red]")
        for outcome in report.failed:
            table.add_row(f"[red]{outcome.operation_id}[/red]", f"[red]{outcome.error}[/red]")
        table.add_row("total time", f"{elapsed_time:.1f} seconds")

        panel = Panel(
            table,
            title="[bold cyan]fsck complete statistics[/bold cyan]",
            border_style="bright_blue",
            padding=(1, 2)
        )

        console.print("\n")
        console.print(panel)


def build_parser():
    parser = argparse.ArgumentParser(
        description='Recover operations left locked by crashed cooperative-locking clients'
    )
    parser.add_argument('bucket', help='Bucket to repair, e.g. s3://my-bucket')
    parser.add_argument('--endpoint-url', help='S3-compatible service endpoint URL')
    parser.add_argument('--access-key', help='Access key ID')
    parser.add_argument('--secret-key', help='Secret access key')
    parser.add_argument('--region', help='Region name (e.g., oss-cn-beijing)')
    parser.add_argument('--lease-seconds', type=int,
                       help='Age after which a lock is considered abandoned (default: 120)')
    parser.add_argument('--config', help=f'Config file (default: ./{Config.DEFAULT_CONFIG_FILE})')
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging')
    return parser


def main(argv=None):
    """main"""
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        bucket = parse_bucket_uri(args.bucket)
        file_config = Config.load_config(args.config)
        config = Config.merge_config(file_config, vars(args))
    except FsckError as e:
        logger.error(str(e))
        sys.exit(1)

    # Get credentials from environment variables if not provided in arguments
    access_key = args.access_key or os.environ.get('OSS_ACCESS_KEY_ID') or os.environ.get('AWS_ACCESS_KEY_ID')
    secret_key = args.secret_key or os.environ.get('OSS_SECRET_ACCESS_KEY') or os.environ.get('AWS_SECRET_ACCESS_KEY')
    region = config.get('region') or os.environ.get('OSS_REGION') or os.environ.get('AWS_DEFAULT_REGION')

    if bool(access_key) != bool(secret_key):
        logger.error("Access key and secret key must be provided together")
        sys.exit(1)
    if not access_key:
        logger.debug("No explicit credentials, using the default credential chain")

    s3_client = create_s3_client(
        endpoint_url=config.get('endpoint_url'),
        access_key=access_key,
        secret_key=secret_key,
        region=region
    )

    # fsck must not take cooperative locks or repair directories while it repairs them
    fs = S3FileSystem(s3_client, bucket, repair_implicit_directories=False)
    lock_store = S3LockStore(s3_client, bucket, lock_directory=config['lock_directory'])

    stats = FsckStats(bucket)
    fsck = Fsck(
        fs,
        lock_store,
        lease_seconds=config['lease_seconds'],
        lock_directory=config['lock_directory'],
        progress_callback=stats.update_progress
    )

    try:
        report = fsck.run()
    except Exception as e:
        stats.close()
        console.print(f"[bold red]fsck failed: {str(e)}[/bold red]")
        sys.exit(1)

    stats.print_summary(report)
    for outcome in report.failed:
        logger.error(f"Operation {outcome.operation_id} was not repaired: {outcome.error}")


if __name__ == '__main__':
    main()
