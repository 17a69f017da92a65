import os
from pathlib import Path
from typing import List, Optional
import typer
from rich.console import Console
from rich.table import Table
from casefile.core.analyzer import AIAnalyzer, OpenAIChatClient
from casefile.core.artifacts import ArtifactStore
from casefile.core.budget import BudgetLedger
from casefile.core.config import PipelineConfig, get_pipeline_config
from casefile.core.cost import format_cents
from casefile.core.dedup import PersonDeduplicator
from casefile.core.jobs import JobQueue
from casefile.core.loader import GraphLoader
from casefile.core.logging_config import configure_logging
from casefile.core.models import Tier
from casefile.core.pg_store import PostgresStore
from casefile.core.scheduler import BatchConfig, BatchProgress, Scheduler, StatusSnapshot
from casefile.core.stores import ExtractedTextSource, TextSource
from casefile.cli.config_manager import get_config_manager

app = typer.Typer(help="Casefile CLI: tiered document analysis and person deduplication")
console = Console()

# Initialize structured logging
configure_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    json_logs=os.getenv("JSON_LOGS", "false").lower() == "true"
)


@app.callback()
def main():
    """Apply persisted CLI settings before any command runs."""
    get_config_manager().apply_to_environment()


def _open_store(config: PipelineConfig):
    return PostgresStore(config.database_url)


def _open_text_source(config: PipelineConfig) -> TextSource:
    return ExtractedTextSource(config.extracted_dir, config.min_text_length)


def _build_analyzer(config: PipelineConfig) -> Optional[AIAnalyzer]:
    if not config.llm_api_key:
        return None
    client = OpenAIChatClient(model=config.model, api_key=config.llm_api_key, base_url=config.llm_base_url)
    return AIAnalyzer(
        client,
        pricing=config.pricing,
        max_chunk_chars=config.max_chunk_chars,
        chunk_delay_seconds=config.chunk_delay_seconds,
        rate_limit_backoff_seconds=config.chunk_rate_limit_backoff_seconds,
        max_chunk_attempts=config.max_chunk_attempts,
    )


def _build_scheduler(config: PipelineConfig, store, texts: TextSource, analyzer: Optional[AIAnalyzer]) -> Scheduler:
    queue = JobQueue(store, store, texts)
    ledger = BudgetLedger(store, store, model=config.model)
    return Scheduler(
        queue,
        ledger,
        store,
        texts,
        ArtifactStore(config.output_dir),
        analyzer=analyzer,
        pricing=config.pricing,
        document_delay_seconds=config.document_delay_seconds,
        rate_limit_backoff_seconds=config.document_rate_limit_backoff_seconds,
    )


def _parse_data_sets(data_sets: Optional[str]) -> Optional[List[str]]:
    if not data_sets:
        return None
    return [ds.strip() for ds in data_sets.split(",") if ds.strip()] or None


def _print_status(snapshot: StatusSnapshot):
    console.print("[bold]📋 Casefile Pipeline Status[/]")

    jobs_table = Table(title="AI analysis jobs")
    jobs_table.add_column("Status")
    jobs_table.add_column("Count", justify="right")
    for status, count in snapshot.job_counts.items():
        jobs_table.add_row(status, str(count))
    console.print(jobs_table)

    docs_table = Table(title="Document analysis status")
    docs_table.add_column("Status")
    docs_table.add_column("Count", justify="right")
    for status, count in sorted(snapshot.document_counts.items()):
        docs_table.add_row(status or "(none)", str(count))
    console.print(docs_table)

    console.print(
        f"[bold]💰 Monthly spend:[/] {format_cents(snapshot.monthly_spend.total_cents)} "
        f"on {snapshot.monthly_spend.record_count} docs "
        f"(cap {format_cents(snapshot.monthly_cap_cents)}, remaining {format_cents(snapshot.remaining_cents)})"
    )

    if snapshot.pending_by_priority:
        priority_table = Table(title="Pending by priority")
        priority_table.add_column("Priority", justify="right")
        priority_table.add_column("Data set")
        priority_table.add_column("Jobs", justify="right")
        for row in snapshot.pending_by_priority:
            priority_table.add_row(str(row["priority"]), row["data_set"], str(row["count"]))
        console.print(priority_table)


def _print_plan(progress: BatchProgress):
    table = Table(title=f"Dry run: {len(progress.planned)} job(s)")
    table.add_column("Job", justify="right")
    table.add_column("Document")
    table.add_column("Data set")
    table.add_column("Priority", justify="right")
    table.add_column("Chars", justify="right")
    table.add_column("Tier", justify="center")
    table.add_column("Note")
    for planned in progress.planned:
        table.add_row(
            str(planned.job_id),
            planned.file_name,
            f"DS{planned.data_set}" if planned.data_set else "-",
            str(planned.priority),
            str(planned.text_length),
            "-" if planned.tier is None else str(int(planned.tier)),
            planned.note,
        )
    console.print(table)


def _print_summary(progress: BatchProgress):
    console.print()
    console.print("[green]✅ Batch run complete[/]")
    console.print(f"[bold]Completed:[/] {progress.completed} (Tier 0: {progress.tier0_count}, Tier 1: {progress.tier1_count})")
    if progress.failed:
        console.print(f"[bold red]Failed:[/] {progress.failed}")
    if progress.skipped:
        console.print(f"[bold]Skipped:[/] {progress.skipped}")
    console.print(f"[bold]Cost:[/] {format_cents(progress.total_cost_cents)}")
    if progress.stopped_reason:
        console.print(f"[dim]Stopped: {progress.stopped_reason.replace('_', ' ')}[/]")


@app.command()
def analyze(
    batch_size: Optional[int] = typer.Option(None, "--batch-size", help="Jobs pulled per batch"),
    monthly_cap: Optional[int] = typer.Option(None, "--monthly-cap", help="Monthly Tier 1 budget in cents"),
    tier: Optional[int] = typer.Option(None, "--tier", help="Force a tier: 0 (rule-based) or 1 (LLM)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the tier each job would get; change nothing"),
    data_sets: Optional[str] = typer.Option(None, "--data-sets", help="Comma-separated data set ids, e.g. 1,5,9"),
    limit: Optional[int] = typer.Option(None, "--limit", help="Maximum documents to process this run"),
    show_status: bool = typer.Option(False, "--status", help="Show queue status and exit"),
    skip_existing: bool = typer.Option(False, "--skip-existing", help="Reuse artifacts already on disk"),
):
    """Run the tiered, budget-capped analysis over pending documents."""
    config = get_pipeline_config()
    monthly_cap_cents = monthly_cap if monthly_cap is not None else config.monthly_cap_cents

    if tier is not None and tier not in (0, 1):
        console.print(f"[red]Error:[/] --tier must be 0 or 1, got {tier}")
        raise typer.Exit(1)
    if limit is not None and limit < 1:
        console.print("[red]Error:[/] --limit must be a positive integer")
        raise typer.Exit(1)

    analyzer = _build_analyzer(config)
    if tier == 1 and analyzer is None and not dry_run:
        console.print("[red]Error:[/] LLM_API_KEY is not set; Tier 1 is unavailable")
        raise typer.Exit(1)

    try:
        store = _open_store(config)
        try:
            scheduler = _build_scheduler(config, store, _open_text_source(config), analyzer)

            if show_status:
                _print_status(scheduler.status_snapshot(monthly_cap_cents))
                return

            batch_config = BatchConfig(
                batch_size=batch_size or config.batch_size,
                monthly_cap_cents=monthly_cap_cents,
                forced_tier=Tier(tier) if tier is not None else None,
                dry_run=dry_run,
                data_sets=_parse_data_sets(data_sets),
                limit=limit,
                skip_existing=skip_existing,
            )

            console.print(f"[bold]🔎 Analyzing documents[/] (budget {format_cents(monthly_cap_cents)}/month)")
            if analyzer is None and tier is None:
                console.print("[yellow]Note:[/] LLM_API_KEY not set; all documents get Tier 0")

            progress = scheduler.run(batch_config)
        finally:
            store.close()

        if dry_run:
            _print_plan(progress)
        else:
            _print_summary(progress)

    except Exception as e:
        console.print(f"[red]Error during analysis:[/] {e}")
        raise typer.Exit(1)


@app.command()
def status(
    monthly_cap: Optional[int] = typer.Option(None, "--monthly-cap", help="Monthly Tier 1 budget in cents"),
):
    """Show queue, document and budget status."""
    config = get_pipeline_config()
    try:
        store = _open_store(config)
        try:
            scheduler = _build_scheduler(config, store, _open_text_source(config), None)
            _print_status(scheduler.status_snapshot(monthly_cap if monthly_cap is not None else config.monthly_cap_cents))
        finally:
            store.close()
    except Exception as e:
        console.print(f"[red]Error getting status:[/] {e}")
        raise typer.Exit(1)


@app.command()
def dedup(
    dry_run: bool = typer.Option(False, "--dry-run", help="Report merge groups without changing anything"),
    single_word: bool = typer.Option(False, "--single-word", help="Also merge single-word names into a dominant person"),
    show: int = typer.Option(20, help="Merge groups to display"),
):
    """Merge duplicate person records."""
    config = get_pipeline_config()
    try:
        store = _open_store(config)
        try:
            with console.status("[bold green]Deduplicating persons..."):
                report = PersonDeduplicator(store).run(dry_run=dry_run, single_word=single_word)
        finally:
            store.close()
    except Exception as e:
        console.print(f"[red]Error during deduplication:[/] {e}")
        raise typer.Exit(1)

    merges = report.groups + report.single_word_merges
    if merges:
        table = Table(title="Merge groups" + (" (dry run)" if dry_run else ""))
        table.add_column("Canonical")
        table.add_column("Merged")
        for merge in merges[:show]:
            table.add_row(f"{merge.canonical_name} (#{merge.canonical_id})", ", ".join(merge.merged_names))
        console.print(table)
        if len(merges) > show:
            console.print(f"   ... and {len(merges) - show} more")

    verb = "Would merge" if dry_run else "Merged"
    console.print(f"[green]✅ {verb} {report.merged_count} group(s), removing {report.deleted_count} person(s)[/]")
    console.print(f"[bold]Persons scanned:[/] {report.persons_scanned}  [bold]Candidate pairs:[/] {report.candidate_pairs}")
    if report.strategy_hits:
        hits = ", ".join(f"{name}={count}" for name, count in sorted(report.strategy_hits.items()))
        console.print(f"[dim]Strategy hits: {hits}[/]")


@app.command()
def load(
    output_dir: Optional[str] = typer.Option(None, help="Directory of analysis artifacts"),
):
    """Load analysis artifacts into the person graph."""
    config = get_pipeline_config()
    source = Path(output_dir) if output_dir else config.output_dir
    if not source.is_dir():
        console.print(f"[red]Error:[/] Path {source} is not a directory")
        raise typer.Exit(1)

    try:
        store = _open_store(config)
        try:
            with console.status("[bold green]Loading artifacts..."):
                stats = GraphLoader(store, store).load_directory(source)
        finally:
            store.close()
    except Exception as e:
        console.print(f"[red]Error during load:[/] {e}")
        raise typer.Exit(1)

    console.print(f"[green]✅ Loaded {stats.files} artifact(s)[/]")
    console.print(f"[bold]Persons:[/] {stats.persons}  [bold]Connections:[/] {stats.connections}  "
                  f"[bold]Events:[/] {stats.events}  [bold]Document links:[/] {stats.doc_links}")


@app.command()
def config(
    action: str = typer.Argument(..., help="Action: show, set, reset, validate"),
    key: Optional[str] = typer.Argument(None, help="Configuration key"),
    value: Optional[str] = typer.Argument(None, help="Configuration value")
):
    """Manage Casefile configuration settings."""
    console.print(f"[bold]🔧 Configuration Management[/]")
    manager = get_config_manager()

    if action == "show":
        console.print("\n[bold]Current Configuration:[/]")
        for item_key, item_value in manager.get_all(mask_secrets=True).items():
            console.print(f"  [blue]{item_key}:[/] {item_value}")
    elif action == "set":
        if not key or value is None:
            console.print("[red]Error:[/] Both key and value required for 'set' action")
            raise typer.Exit(1)
        try:
            manager.set(key, value)
        except (KeyError, ValueError) as e:
            console.print(f"[red]Error:[/] {e}")
            raise typer.Exit(1)
        console.print(f"[green]✅ Set {key}[/]")
    elif action == "reset":
        if not key:
            console.print("[red]Error:[/] Key required for 'reset' action")
            raise typer.Exit(1)
        manager.reset(key)
        console.print(f"[green]✅ Reset {key} to default[/]")
    elif action == "validate":
        _validate_configuration(manager)
    else:
        console.print(f"[red]Error:[/] Unknown action: {action}")
        console.print("Available actions: show, set, reset, validate")
        raise typer.Exit(1)


def _validate_configuration(manager):
    """Validate current configuration."""
    console.print("[bold]Validating configuration...[/]")
    validation = manager.validate()

    for warning in validation["warnings"]:
        console.print(f"[yellow]⚠️  {warning}[/]")

    if not validation["valid"]:
        console.print(f"\n[red]❌ Configuration issues found:[/]")
        for issue in validation["issues"]:
            console.print(f"  • {issue}")
        raise typer.Exit(1)

    console.print(f"\n[green]✅ Configuration validation passed![/]")


if __name__ == "__main__":
    app()
