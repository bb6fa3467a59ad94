"""
CLI interface for dvschema.

Two-phase workflow:

    dvschema assess schema.xlsx --template create_template.csv
    # fill in display names and types in create_template.csv
    dvschema create create_template.csv --solution MySolution

Nothing is created without an explicit confirmation (prompt or --yes).
"""

from pathlib import Path
from typing import Optional

import click
from rich.table import Table

from dvschema import __version__, constants
from dvschema.errors import ConfigError, DvSchemaError
from dvschema.models import ProbeResult, ProbeStatus, SchemaRecord
from dvschema.pipeline import CreateResult, assess, create, load_records, summarize
from dvschema.templates import export_records, write_sample
from dvschema.utils import (
    console,
    format_duration_ms,
    print_banner,
    print_error,
    print_info,
    print_success,
    print_warning,
    records_table,
    setup_logging,
)


def open_client(config, solution: Optional[str] = None):
    """Open a Dataverse client from config; the caller closes it."""
    from dvschema.dataverse import DataverseClient

    if not config.environment_url:
        raise ConfigError("environment_url is not set in config.yaml")
    token = config.access_token()
    if not token:
        raise ConfigError(f"No access token: set the {config.token_env} environment variable")
    return DataverseClient(
        config.environment_url,
        token,
        solution=solution,
        timeout=config.timeout_seconds,
    )


def _require_config(ctx):
    if "config" not in ctx.obj:
        print_error(f"Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}")
        click.echo("Run 'dvschema init' to create a configuration file.")
        raise SystemExit(1)
    return ctx.obj["config"]


def _report_probe(results: dict[str, ProbeResult]) -> None:
    for table, outcome in results.items():
        if outcome.status == ProbeStatus.TRANSIENT_FAILURE:
            print_warning(f"Table '{table}' was rate limited after retries ({outcome.detail}); run again to retry")
        elif outcome.status == ProbeStatus.PERMANENT_FAILURE:
            print_error(f"Table '{table}' could not be checked: {outcome.detail}")
        elif outcome.registry_table and outcome.registry_table != table:
            print_info(f"Table '{table}' found as '{outcome.registry_table}'")


def _print_counts(records: list[SchemaRecord]) -> None:
    counts = summarize(records)
    print_info(
        f"{counts['total']} field(s): {counts['existing']} existing, "
        f"{counts['new']} new, {counts['errored']} errored"
    )


@click.group()
@click.version_option(version=__version__, prog_name="dvschema")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx, verbose: bool):
    """
    dvschema - Dataverse schema provisioning.

    Assess which tables and columns of a spreadsheet already exist in
    Dataverse, then create the missing ones.
    """
    from dvschema.config import load_config

    ctx.ensure_object(dict)
    log_level, log_format, log_file = "INFO", "pretty", None
    try:
        config = load_config()
        ctx.obj["config"] = config
        log_level, log_format, log_file = config.log_level, config.log_format, config.log_file
    except (FileNotFoundError, ConfigError) as e:
        # init runs without a config; other commands check ctx.obj
        ctx.obj["config_error"] = str(e)

    setup_logging(
        log_file=Path(log_file) if log_file else None,
        log_level="DEBUG" if verbose else log_level,
        log_format=log_format,
    )


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize dvschema configuration."""
    from dvschema.config import default_config_dict, get_dvschema_home
    import yaml

    home = get_dvschema_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / constants.DEFAULT_CONFIG_FILE
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    cfg_path.write_text(yaml.safe_dump(default_config_dict(home), sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# DVSCHEMA_ACCESS_TOKEN=...\n")

    click.echo(f"Initialized dvschema config at {cfg_path}")
    click.echo("Set environment_url in config.yaml and the access token in .env.")


@main.command("assess")
@click.argument("input_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--sheet", help="Worksheet name (.xlsx only, default: first sheet)")
@click.option(
    "--template",
    "template_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Where to write the CREATE template for new fields (default: output_csv from config)",
)
@click.option(
    "--export",
    "export_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write a report CSV of every field",
)
@click.pass_context
def assess_cmd(ctx, input_file: Path, sheet: Optional[str], template_path: Optional[Path], export_path: Optional[Path]):
    """
    Report which fields of INPUT_FILE exist and which are new.

    Examples:

        dvschema assess schema.xlsx

        dvschema assess schema.xlsx --template create_template.csv
    """
    config = _require_config(ctx)
    print_banner("Assess")
    template_path = template_path or Path(config.output_csv)

    try:
        records, duplicates = load_records(input_file, sheet=sheet, columns=config.column_mapping())
        if duplicates:
            print_warning(f"Removed {len(duplicates)} duplicate row(s), keeping the first occurrence")
        client = open_client(config)
        try:
            result = assess(
                records,
                client,
                policy=config.retry_policy(),
                template_path=template_path,
                duplicates=duplicates,
                name_prefix=config.publisher_prefix,
            )
        finally:
            client.close()
    except DvSchemaError as e:
        print_error(str(e))
        raise SystemExit(1)

    console.print(records_table("Schema assessment", result.records))
    _report_probe(result.probe_results)
    _print_counts(result.records)

    if result.template_path:
        print_success(f"CREATE template written to {result.template_path} ({len(result.new)} field(s))")
    else:
        print_info("No new fields - CREATE template not written")

    if export_path is not None:
        count = export_records(result.records, export_path)
        print_success(f"Exported {count} record(s) to {export_path}")

    if result.errored:
        raise SystemExit(1)


@main.command("create")
@click.argument("input_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--sheet", help="Worksheet name (.xlsx only, default: first sheet)")
@click.option("--solution", help="Solution unique name (default: from config)")
@click.option("--prefix", help="Publisher prefix (default: from config, else the solution's publisher)")
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Do not prompt for confirmation")
@click.option("--skip-invalid", is_flag=True, help="Create the valid fields even if others fail validation")
@click.option(
    "--report",
    "report_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write a report CSV of the outcome",
)
@click.pass_context
def create_cmd(
    ctx,
    input_file: Path,
    sheet: Optional[str],
    solution: Optional[str],
    prefix: Optional[str],
    assume_yes: bool,
    skip_invalid: bool,
    report_path: Optional[Path],
):
    """
    Create the tables and fields of INPUT_FILE that do not exist yet.

    Examples:

        dvschema create create_template.csv --solution MySolution

        dvschema create create_template.csv --solution MySolution --prefix new --yes
    """
    config = _require_config(ctx)
    solution = solution or config.solution
    if not solution:
        raise click.UsageError("No solution given: pass --solution or set 'solution' in config.yaml")

    print_banner("Create")

    def _confirm(pending: list[SchemaRecord]) -> bool:
        console.print(records_table("To create", pending))
        tables = len({r.table_key for r in pending})
        if assume_yes:
            return True
        return click.confirm(
            f"Create {len(pending)} field(s) in {tables} table(s) in solution '{solution}'?",
            default=False,
        )

    def _progress(event: str, **kwargs):
        if event == "table_ok":
            print_success(f"Created table {kwargs['table']}")
        elif event == "table_fail":
            print_error(f"Table {kwargs['table']}: {kwargs['error']}")
        elif event == "field_ok":
            print_success(f"Created {kwargs['field']} on {kwargs['table']}")
        elif event == "field_fail":
            print_error(f"{kwargs['field']} on {kwargs['table']}: {kwargs['error']}")
        elif event == "publish_fail":
            print_warning(f"Publish failed: {kwargs['error']}")

    try:
        records, duplicates = load_records(input_file, sheet=sheet, columns=config.column_mapping())
        if duplicates:
            print_warning(f"Removed {len(duplicates)} duplicate row(s), keeping the first occurrence")
        client = open_client(config, solution=solution)
        try:
            name_prefix = prefix or config.publisher_prefix or client.get_publisher_prefix(solution)
            print_info(f"Solution: {solution}, publisher prefix: {name_prefix}")
            result = create(
                records,
                client,
                name_prefix,
                solution,
                _confirm,
                policy=config.retry_policy(),
                skip_invalid=skip_invalid,
                progress_callback=_progress,
            )
        finally:
            client.close()
    except DvSchemaError as e:
        print_error(str(e))
        raise SystemExit(1)

    _report_create(result)

    if report_path is not None:
        count = export_records(result.records, report_path)
        print_success(f"Exported {count} record(s) to {report_path}")

    if not result.success and not (result.provision and result.provision.skipped):
        raise SystemExit(1)


def _report_create(result: CreateResult) -> None:
    _report_probe(result.probe_results)
    if result.validation_errors:
        print_error(f"{len(result.validation_errors)} validation error(s):")
        for error in result.validation_errors:
            click.echo(f"  {error}")
        if result.halted:
            print_info("Nothing was created. Fix the input and run create again.")
            return

    if not result.to_create:
        print_success("All fields already exist - nothing to create")
        return

    provision = result.provision
    if provision is None:
        return
    if provision.skipped:
        print_warning("Cancelled - nothing was created")
        return

    _print_counts(result.records)
    print_info(f"Finished in {format_duration_ms(provision.duration_ms)}")
    if provision.publish_error:
        print_warning(f"Created items were not published: {provision.publish_error}")
    if provision.failures:
        print_error(f"{len(provision.failures)} field(s) failed:")
        for failure in provision.failures:
            click.echo(f"  {failure['key']}: {failure['error']}")
    elif provision.published:
        print_success(
            f"Created {len(provision.tables_created)} table(s) and "
            f"{len(provision.fields_created)} field(s), published"
        )


@main.command("solutions")
@click.pass_context
def solutions_cmd(ctx):
    """List unmanaged solutions and their publisher prefixes."""
    config = _require_config(ctx)

    try:
        client = open_client(config)
        try:
            solutions = client.list_solutions()
        finally:
            client.close()
    except DvSchemaError as e:
        print_error(str(e))
        raise SystemExit(1)

    if not solutions:
        click.echo("No unmanaged solutions found.")
        return

    table = Table(title="Solutions")
    table.add_column("Unique name")
    table.add_column("Display name")
    table.add_column("Prefix")
    table.add_column("Version")
    for solution in solutions:
        table.add_row(solution.unique_name, solution.friendly_name, solution.publisher_prefix, solution.version)
    console.print(table)


@main.command("sample")
@click.argument(
    "path",
    required=False,
    default=constants.SAMPLE_FILE_NAME,
    type=click.Path(dir_okay=False, path_type=Path),
)
def sample_cmd(path: Path):
    """
    Write a CREATE-ready sample file (.xlsx or .csv).

    Example:

        dvschema sample sample_schema.csv
    """
    try:
        write_sample(path)
    except DvSchemaError as e:
        print_error(str(e))
        raise SystemExit(1)
    print_success(f"Sample file created: {path}")


if __name__ == "__main__":
    main()
