"""Command-line interface for indexjoin."""
import json
import sys
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from pydantic import ValidationError

from indexjoin.config import PreviewRequest, load_config_from_file
from indexjoin.exceptions import ConfigurationError, FetchError, SearchBackendError
from indexjoin.export import save_rows, save_summary
from indexjoin.join.engine import JoinEngine
from indexjoin.join.validator import validate_join_configuration
from indexjoin.settings import EngineSettings, get_settings
from indexjoin.sources.resolver import SearchIndexStoredQueryRepository

app = typer.Typer(help="indexjoin CLI - Multi-index joins over a search engine")


def _setup_logging(log_level: str) -> None:
    logger.remove()  # Remove default handler
    logger.add(
        sys.stderr,
        level=log_level.upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
    )


def _settings(key_mode: Optional[str] = None) -> EngineSettings:
    settings = get_settings()
    if key_mode:
        if key_mode not in ('typed', 'string'):
            typer.echo(f"❌ Invalid key mode: {key_mode}. Use 'typed' or 'string'", err=True)
            raise typer.Exit(code=1)
        settings = settings.model_copy(update={'key_mode': key_mode})
    return settings


def _build_backend(settings: EngineSettings, data_dir: Optional[Path]):
    """Local JSON/CSV files when a data directory is given, Elasticsearch otherwise."""
    if data_dir is not None:
        from indexjoin.search.backend import InMemorySearchBackend
        if not data_dir.exists():
            typer.echo(f"❌ Data directory not found: {data_dir}", err=True)
            raise typer.Exit(code=2)
        return InMemorySearchBackend.from_directory(str(data_dir), settings.es_allowed_indices)
    from indexjoin.search.elasticsearch import ElasticsearchBackend
    return ElasticsearchBackend(settings)


def _build_engine(settings: EngineSettings, data_dir: Optional[Path]) -> JoinEngine:
    backend = _build_backend(settings, data_dir)
    return JoinEngine(backend, settings, SearchIndexStoredQueryRepository(backend, settings.stored_query_index))


def _print_summary(summary) -> None:
    typer.echo(f"   Left total: {summary.left_total}, right total: {summary.right_total}")
    typer.echo(f"   Matched: {summary.matched_count}, left only: {summary.left_only_count}, "
               f"right only: {summary.right_only_count}")


@app.command()
def execute(
    config_path: Path = typer.Option("join.yaml", "--config", "-c", help="Path to YAML join configuration"),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", "-d", help="Directory of .json/.jsonl/.csv indices instead of Elasticsearch"),
    from_: Optional[int] = typer.Option(None, "--from", help="Offset of the first returned row"),
    size: Optional[int] = typer.Option(None, "--size", "-s", help="Number of rows to return"),
    output_path: Optional[Path] = typer.Option(None, "--output", "-o", help="Write rows to .csv, .json or .jsonl"),
    summary_path: Optional[Path] = typer.Option(None, "--summary-output", help="Write the join summary as JSON"),
    key_mode: Optional[str] = typer.Option(None, "--key-mode", help="Join key comparison: 'typed' or 'string'"),
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Logging level (DEBUG, INFO, WARNING, ERROR)")
) -> None:
    """Execute a multi-index join described by a YAML configuration."""
    _setup_logging(log_level)

    if not config_path.exists():
        typer.echo(f"❌ Configuration file not found: {config_path}", err=True)
        raise typer.Exit(code=2)

    try:
        cfg = load_config_from_file(str(config_path))
        overrides = {}
        if from_ is not None:
            overrides['from'] = from_
        if size is not None:
            overrides['size'] = size
        if overrides:
            cfg = cfg.model_validate({**cfg.model_dump(by_alias=True), **overrides})
    except (ValidationError, ValueError) as e:
        typer.echo(f"❌ Failed to load configuration: {e}", err=True)
        raise typer.Exit(code=1)

    settings = _settings(key_mode)
    engine = _build_engine(settings, data_dir)

    try:
        result = engine.execute(cfg)
    except ConfigurationError as e:
        typer.echo("❌ Invalid join configuration:", err=True)
        for error in e.errors:
            typer.echo(f"   {error}", err=True)
        raise typer.Exit(code=1)
    except FetchError as e:
        typer.echo(f"❌ Join aborted: {e.message}", err=True)
        raise typer.Exit(code=3)

    typer.echo(f"✅ Join completed in {result.took}ms")
    _print_summary(result.summary)
    if len(result.stages) > 1:
        for stage in result.stages:
            typer.echo(f"   Stage {stage.stage} ({stage.condition_id}): {stage.left_source_id} "
                       f"{stage.join_type.upper()} {stage.right_source_id} -> {stage.total} tuples")
    typer.echo(f"📊 Rows {result.from_}-{result.from_ + len(result.rows)} of {result.total_rows}")

    columns = [f.alias for f in cfg.included_fields]
    if output_path is not None:
        try:
            save_rows(str(output_path), result.rows, columns)
        except ValueError as e:
            typer.echo(f"❌ {e}", err=True)
            raise typer.Exit(code=1)
        typer.echo(f"💾 Rows saved to: {output_path}")
    else:
        typer.echo(json.dumps(result.rows, indent=2, default=str))

    if summary_path is not None:
        save_summary(str(summary_path), result.model_dump(by_alias=True, exclude={'rows'}))
        typer.echo(f"💾 Summary saved to: {summary_path}")


@app.command()
def preview(
    left_index: str = typer.Option(..., "--left-index", help="Left index name"),
    right_index: str = typer.Option(..., "--right-index", help="Right index name"),
    left_field: str = typer.Option(..., "--left-field", help="Join field on the left index"),
    right_field: str = typer.Option(..., "--right-field", help="Join field on the right index"),
    join_type: str = typer.Option("full", "--join-type", "-t", help="inner, left, right or full"),
    sample_size: Optional[int] = typer.Option(None, "--sample-size", help="Number of sample tuples to show"),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", "-d", help="Directory of .json/.jsonl/.csv indices instead of Elasticsearch"),
    key_mode: Optional[str] = typer.Option(None, "--key-mode", help="Join key comparison: 'typed' or 'string'"),
    log_level: str = typer.Option("WARNING", "--log-level", "-l", help="Logging level")
) -> None:
    """Preview a join between two indices before writing a full configuration."""
    _setup_logging(log_level)

    try:
        request = PreviewRequest.for_indices(left_index, right_index, left_field, right_field,
                                             join_type=join_type, sample_size=sample_size)
    except ValidationError as e:
        typer.echo(f"❌ Invalid preview request: {e}", err=True)
        raise typer.Exit(code=1)

    engine = _build_engine(_settings(key_mode), data_dir)
    try:
        result = engine.preview(request)
    except FetchError as e:
        typer.echo(f"❌ Preview failed: {e.message}", err=True)
        raise typer.Exit(code=3)

    typer.echo(f"🔍 Preview {left_index}.{left_field} {request.join_type.upper()} "
               f"{right_index}.{right_field} ({result.took}ms)")
    _print_summary(result.summary)
    if result.sample_key_distribution:
        typer.echo("🔑 Top join keys:")
        for key, count in result.sample_key_distribution.items():
            typer.echo(f"   {key}: {count}")
    typer.echo(f"📋 Showing {len(result.sample_tuples)} of {result.total_tuples} tuples")
    for joined in result.sample_tuples:
        typer.echo(json.dumps(joined, default=str))


@app.command()
def validate(
    config_path: Path = typer.Option("join.yaml", "--config", "-c", help="Path to YAML join configuration"),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", "-d", help="Check fields against local indices"),
    check_fields: bool = typer.Option(False, "--check-fields", help="Check join and output fields against index mappings")
) -> None:
    """Validate a join configuration without fetching any records."""
    if not config_path.exists():
        typer.echo(f"❌ Configuration file not found: {config_path}", err=True)
        raise typer.Exit(code=2)

    try:
        cfg = load_config_from_file(str(config_path))
    except (ValidationError, ValueError) as e:
        typer.echo(f"❌ Failed to load configuration: {e}", err=True)
        raise typer.Exit(code=1)

    try:
        if check_fields:
            settings = get_settings().model_copy(update={'strict_fields': True})
            stages = _build_engine(settings, data_dir).validate(cfg)
        else:
            stages = validate_join_configuration(cfg)
    except ConfigurationError as e:
        typer.echo("❌ Invalid join configuration:", err=True)
        for error in e.errors:
            typer.echo(f"   {error}", err=True)
        raise typer.Exit(code=1)
    except FetchError as e:
        typer.echo(f"❌ Field check failed: {e.message}", err=True)
        raise typer.Exit(code=3)

    typer.echo("✅ Configuration is valid")
    typer.echo(f"   Sources: {', '.join(s.id for s in cfg.sources)}")
    for stage in stages:
        typer.echo(f"   Stage {stage.index}: {stage.left_source_id}.{stage.left_field} "
                   f"{stage.join_type.upper()} {stage.right_source_id}.{stage.right_field}")
    typer.echo(f"   Output columns: {', '.join(f.alias for f in cfg.included_fields)}")


@app.command()
def fields(
    index: str = typer.Argument(..., help="Index name"),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", "-d", help="Directory of .json/.jsonl/.csv indices instead of Elasticsearch")
) -> None:
    """List the field paths available on an index."""
    from indexjoin.config import JoinSource

    engine = _build_engine(get_settings(), data_dir)
    try:
        paths = engine.get_fields(JoinSource(id=index, kind='index', reference=index))
    except SearchBackendError as e:
        typer.echo(f"❌ Failed to read fields of {index}: {e.message}", err=True)
        raise typer.Exit(code=3)

    typer.echo(f"📋 {index}: {len(paths)} fields")
    for path in paths:
        typer.echo(f"   {path}")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Bind port"),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", "-d", help="Serve local indices instead of Elasticsearch")
) -> None:
    """Run the HTTP join service."""
    import uvicorn
    from indexjoin.api.app import create_app

    settings = get_settings()
    _setup_logging(settings.log_level)
    backend = _build_backend(settings, data_dir)
    typer.echo(f"🚀 Serving {settings.project_name} on http://{host}:{port}")
    uvicorn.run(create_app(settings, backend), host=host, port=port, log_level=settings.log_level.lower())


@app.command()
def info():
    """Show information about indexjoin."""
    settings = get_settings()
    typer.echo("🔗 indexjoin - Multi-index joins over a search engine")
    typer.echo("")
    typer.echo("Joins records that live in separate indices on a shared field,")
    typer.echo("after each index has been narrowed by its own query.")
    typer.echo("")
    typer.echo("Key Features:")
    typer.echo("• Inner, left, right and full joins")
    typer.echo("• N-way chaining across more than two sources")
    typer.echo("• Stored queries as join sources")
    typer.echo("• Previews with sample tuples and key distributions")
    typer.echo("")
    typer.echo(f"Search backend: {settings.es_host}")
    typer.echo(f"Key mode: {settings.key_mode}")


if __name__ == '__main__':
    app()
