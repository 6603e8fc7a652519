"""Click-based command line interface for backrotate."""

import sys
from datetime import timedelta
from typing import Dict, Any

import click

from backrotate import configure_logging
from backrotate.config import Config, load_job_file
from backrotate.models import BackupJob, ChangeGate, PipelineState, COMPRESSION_FORMATS, ENCRYPTION_BACKENDS
from backrotate.backup.errors import BackupError
from backrotate.backup.encryption import FernetEncryptor, create_encryptor, read_passphrase
from backrotate.backup.executor import execute_backup_job
from backrotate.backup.notifications import EmailNotifier
from backrotate.backup.retention import prune_destination


CONTEXT_SETTINGS = {'help_option_names': ['-h', '--help']}


def _pick(cli_value, settings: Dict[str, Any], key: str, default=None):
    """CLI value wins over the job file, which wins over the default."""
    if cli_value not in (None, ()):
        return cli_value
    return settings.get(key, default)


def build_job(options: Dict[str, Any], settings: Dict[str, Any] = None) -> BackupJob:
    """
    Merge command line options with a job file into a BackupJob.

    Args:
        options: Values from the ``run`` command (None/empty when not given)
        settings: Parsed job file, if any

    Raises:
        click.UsageError: If required settings are missing or invalid
    """
    settings = settings or {}

    ssh_config = settings.get('ssh')
    sources = _pick(options.get('source'), settings, 'sources', ())
    if ssh_config:
        sources = ssh_config.get('paths', sources)

    passphrase_source = _pick(options.get('passphrase_file'), settings, 'passphrase_file')
    destination = _pick(options.get('destination'), settings, 'destination')

    missing = [
        name for name, value in (
            ('--source', sources),
            ('--passphrase-file', passphrase_source),
            ('--destination', destination),
        ) if not value
    ]
    if missing:
        raise click.UsageError(f"Missing required setting(s): {', '.join(missing)}")

    change_gate = None
    gate_file = _pick(options.get('gate_file'), settings, 'gate_file')
    gate_hours = _pick(options.get('gate_hours'), settings, 'gate_hours')
    if gate_hours is not None and not gate_file:
        raise click.UsageError("--gate-hours requires --gate-file")
    if gate_file:
        if gate_hours is None:
            gate_hours = Config.GATE_LOOKBACK_HOURS
        change_gate = ChangeGate(reference_path=gate_file, lookback=timedelta(hours=float(gate_hours)))

    try:
        return BackupJob(
            name=_pick(options.get('name'), settings, 'name', 'backup'),
            source_paths=tuple(sources),
            passphrase_source=passphrase_source,
            destination_dir=destination,
            retention_days=int(_pick(options.get('retention_days'), settings, 'retention_days',
                                     Config.RETENTION_DAYS)),
            source_type='ssh' if ssh_config else 'local',
            source_config=dict(ssh_config or {}),
            exclude_patterns=tuple(_pick(options.get('exclude'), settings, 'exclude_patterns', ())),
            compression_format=_pick(options.get('compression_format'), settings, 'compression_format',
                                     Config.COMPRESSION_FORMAT),
            encryption=_pick(options.get('encryption'), settings, 'encryption', Config.ENCRYPTION),
            work_dir=_pick(options.get('work_dir'), settings, 'work_dir', Config.WORK_DIR),
            recipients=tuple(_pick(options.get('recipient'), settings, 'recipients', ())),
            change_gate=change_gate,
        )
    except (TypeError, ValueError) as e:
        raise click.UsageError(str(e)) from e


def build_notifier() -> EmailNotifier:
    return EmailNotifier(
        smtp_host=Config.SMTP_HOST,
        smtp_port=Config.SMTP_PORT,
        sender=Config.SMTP_SENDER,
        username=Config.SMTP_USERNAME,
        password=Config.SMTP_PASSWORD,
        start_tls=Config.SMTP_STARTTLS,
    )


@click.group(context_settings=CONTEXT_SETTINGS, help="Archive, encrypt and rotate backups.")
@click.option('--log-file', type=click.Path(dir_okay=False), default=None,
              help="Append logs to this file (rotated at 10 MB).")
@click.option('--debug', is_flag=True, help="Enable debug logging.")
def cli(log_file, debug):
    """CLI root group."""
    configure_logging(log_file or Config.LOG_FILE, debug)


@cli.command('run')
@click.option('--config', 'config_file', type=click.Path(exists=True, dir_okay=False),
              help="JSON job file; command line options override its values.")
@click.option('--name', help="Job name used in artifact names.")
@click.option('--source', '-s', multiple=True, help="Path to back up; repeat for more.")
@click.option('--exclude', multiple=True, help="Glob pattern to exclude; repeat for more.")
@click.option('--passphrase-file', help="File holding the passphrase, or env:NAME.")
@click.option('--destination', '-d', help="Existing directory receiving encrypted backups.")
@click.option('--retention-days', type=click.IntRange(0), help="Delete backups older than this.")
@click.option('--recipient', multiple=True, help="Notification e-mail address; repeat for more.")
@click.option('--gate-file', help="Skip the run unless this file changed recently.")
@click.option('--gate-hours', type=click.FloatRange(0), help="Lookback window for --gate-file.")
@click.option('--format', 'compression_format', type=click.Choice(COMPRESSION_FORMATS))
@click.option('--encryption', type=click.Choice(ENCRYPTION_BACKENDS))
@click.option('--work-dir', type=click.Path(file_okay=False), help="Where archives are staged.")
def run_command(config_file, **options):
    """Run the backup pipeline once."""
    try:
        settings = load_job_file(config_file) if config_file else {}
    except ValueError as e:
        raise click.UsageError(str(e)) from e
    job = build_job(options, settings)

    run = execute_backup_job(job, notifier=build_notifier(), gpg_path=Config.GPG_PATH)

    if run.state == PipelineState.SKIPPED:
        click.echo("No recent changes; backup skipped.")
    elif run.succeeded:
        click.echo(run.published_path)
        if run.pruned:
            click.echo(f"Pruned {len(run.pruned)} expired backup(s).")
    else:
        click.echo(f"Backup failed during {run.failed_stage}: {run.error}", err=True)

    sys.exit(run.exit_code)


@cli.command('prune')
@click.option('--destination', '-d', required=True, help="Directory holding encrypted backups.")
@click.option('--retention-days', type=click.IntRange(0), default=Config.RETENTION_DAYS, show_default=True)
@click.option('--encryption', type=click.Choice(ENCRYPTION_BACKENDS), default=Config.ENCRYPTION,
              show_default=True, help="Selects the artifact suffix to prune.")
@click.option('--dry-run', is_flag=True, help="List expired backups without deleting them.")
def prune_command(destination, retention_days, encryption, dry_run):
    """Delete encrypted backups older than the retention window."""
    suffix = create_encryptor(encryption).suffix
    try:
        paths = prune_destination(destination, retention_days, suffix, dry_run=dry_run)
    except BackupError as e:
        raise click.ClickException(str(e)) from e

    verb = "Would delete" if dry_run else "Deleted"
    for path in paths:
        click.echo(f"{verb}: {path}")


@cli.command('decrypt')
@click.argument('artifact', type=click.Path(exists=True, dir_okay=False))
@click.option('--passphrase-file', required=True, help="File holding the passphrase, or env:NAME.")
@click.option('--output', '-o', type=click.Path(dir_okay=False), help="Defaults to the artifact minus .enc.")
def decrypt_command(artifact, passphrase_file, output):
    """Restore the archive from a Fernet-encrypted backup."""
    encryptor = FernetEncryptor()
    suffix = f".{encryptor.suffix}"
    if output is None:
        if not artifact.endswith(suffix):
            raise click.UsageError(f"Cannot derive output name from {artifact}; pass --output")
        output = artifact[:-len(suffix)]

    try:
        passphrase = read_passphrase(passphrase_file)
        encryptor.decrypt_file(artifact, output, passphrase)
    except (BackupError, ValueError, OSError) as e:
        raise click.ClickException(str(e)) from e

    click.echo(output)


def main():
    cli()


if __name__ == '__main__':
    main()
