from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

import typer

from .cache import CacheStore
from .config import Settings, load_settings
from .errors import InvalidQuery
from .markup import parse_board
from .models import Region, StopQuery
from .service import DeparturesService, board_payload, cache_headers

app = typer.Typer(help="MPVnet departures: fetch, merge and cache real-time departure boards.")


def _configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def parse_stop_ids(stops: str) -> List[int]:
    """Comma separated stop ids; blanks, zeros and non-numbers are dropped."""
    out: List[int] = []
    for part in stops.split(","):
        part = part.strip()
        if part.isdigit() and int(part) > 0:
            out.append(int(part))
    return out


def parse_region(value: Optional[str], default: Region) -> Region:
    if not value:
        return default
    try:
        return Region(value.strip().lower())
    except ValueError:
        allowed = ", ".join(r.value for r in Region)
        raise typer.BadParameter(f"Invalid region. Allowed: {allowed}")


@app.command()
def departures(
    stops: str = typer.Option(..., help="Comma-separated stop ids (max 3), e.g. 37445"),
    region: str = typer.Option(None, help="Region: zlin, odis, idol, jikord, pid"),
    exclude_headsigns: str = typer.Option(None, help="Comma-separated headsign substrings to skip"),
    limit: int = typer.Option(15, help="Max departures (1-50)"),
    min_minutes: int = typer.Option(0, help="Only departures leaving in at least this many minutes"),
    config_file: Path = typer.Option(None, help="Path to YAML config file"),
    json_out: bool = typer.Option(True, help="Print board JSON instead of a text summary"),
):
    """Fetch merged departures for up to three stops."""
    settings = load_settings(config_file)
    _configure_logging(settings)

    stop_ids = parse_stop_ids(stops)
    if not stop_ids:
        raise typer.BadParameter("Invalid stops parameter")
    query_region = parse_region(region, settings.region)

    service = DeparturesService(settings)
    try:
        query = StopQuery.parse(
            stops=stop_ids,
            exclude_headsigns=exclude_headsigns or (),
            limit=limit,
            min_minutes=min_minutes,
            region=query_region,
        )
        result = service.get(query)
    except InvalidQuery as e:
        raise typer.BadParameter(str(e))

    if json_out:
        for name, value in cache_headers(result).items():
            typer.echo(f"{name}: {value}", err=True)
        typer.echo(json.dumps(board_payload(result), ensure_ascii=False, indent=2))
    else:
        for d in result.departures:
            delay = d.departure.delay_seconds // 60 if d.departure.delay_seconds is not None else "?"
            typer.echo(
                f"{d.route.short_name} to {d.trip.headsign or '?'} | "
                f"{d.departure.timestamp_scheduled:%H:%M} in {d.departure.minutes} min "
                f"delay={delay} platform={d.stop.platform_code or '-'}"
            )


@app.command()
def clean_cache(
    all: bool = typer.Option(False, "--all", help="Delete every entry, not just aged-out ones"),
    config_file: Path = typer.Option(None, help="Path to YAML config file"),
):
    """Delete cache files older than the retention window (or all of them)."""
    settings = load_settings(config_file)
    if settings.cache_dir is None:
        typer.echo("Caching disabled; nothing to clean")
        return
    deleted = CacheStore(settings.cache_dir).clean_cache(all=all)
    typer.echo(f"Deleted {deleted} cache entries from {settings.cache_dir}")


@app.command()
def show_config(config_file: Path = typer.Option(None, help="Path to YAML config file")):
    """Print the effective configuration (YAML + env overrides)."""
    settings = load_settings(config_file)
    typer.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@app.command()
def parse_board_file(
    markup_file: Path = typer.Argument(..., help="Saved board HTML fragment"),
    stop_id: int = typer.Option(0, help="Stop id for log context"),
):
    """Parse a saved board fragment and print the raw rows as JSON."""
    board = parse_board(markup_file.read_text(encoding="utf-8"), stop_id)
    typer.echo(json.dumps(board.model_dump(mode="json"), ensure_ascii=False, indent=2))


if __name__ == "__main__":
    app()
