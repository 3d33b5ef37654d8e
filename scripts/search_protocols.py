"""Command-line access to protocol search, chat context selection and the dosing calculator."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import List, Optional

import typer

from ems_protocols.protocols.context import rank_protocols
from ems_protocols.protocols.matcher import FuzzyMatcher
from ems_protocols.protocols.store import CategoryMatch, ProtocolStore, ProtocolStoreError
from ems_protocols.services import calculator
from ems_protocols.utils.config import get_settings
from ems_protocols.utils.logger import get_logger

app = typer.Typer(help="Search the EMS protocol corpus and run dosing calculations.")


def _refresh_settings() -> None:
    """Reload cached settings so newly-set env vars are respected."""

    get_settings.cache_clear()  # type: ignore[attr-defined]
    get_settings()


def _load_store(corpus: Optional[Path]) -> ProtocolStore:
    _refresh_settings()
    path = corpus or get_settings().PROTOCOLS_PATH
    try:
        return ProtocolStore.from_json(path)
    except ProtocolStoreError as exc:
        typer.secho(f"Failed to load protocols: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc


@app.command("search")
def search(
    query: str = typer.Argument(..., help="Free-text query; typos are tolerated."),
    category: Optional[List[str]] = typer.Option(
        None,
        "--category",
        "-c",
        help="Restrict to protocols tagged with this category (repeatable).",
    ),
    match: CategoryMatch = typer.Option(
        CategoryMatch.ALL,
        "--match",
        case_sensitive=False,
        help="Whether protocols need all or any of the selected categories.",
    ),
    limit: int = typer.Option(10, "--limit", "-n", min=1, help="Maximum results to print."),
    corpus: Optional[Path] = typer.Option(None, "--corpus", help="Protocol JSON file to search."),
) -> None:
    """Fuzzy search over protocol names, ids and content."""

    store = _load_store(corpus)
    matcher = FuzzyMatcher(store.load(), threshold=get_settings().SEARCH_THRESHOLD)
    pool = store.filter_by_categories(category or [], match)
    hits = matcher.search_with_scores(query, pool)

    if not hits:
        typer.secho("No matching protocols.", fg=typer.colors.YELLOW)
        raise typer.Exit(code=1)

    for hit in hits[:limit]:
        tags = ", ".join(sorted(hit.protocol.categories)) or "-"
        typer.echo(f"{hit.score:.3f}  {hit.protocol.id:<32} {hit.protocol.name}  [{tags}]")


@app.command("context")
def context(
    query: str = typer.Argument(..., help="Chat message to pick grounding protocols for."),
    corpus: Optional[Path] = typer.Option(None, "--corpus", help="Protocol JSON file to search."),
) -> None:
    """Show the protocols a chat message would be grounded on."""

    store = _load_store(corpus)
    ranked = rank_protocols(query, store.load())[: get_settings().CONTEXT_LIMIT]
    if not ranked:
        typer.secho("No context protocols selected.", fg=typer.colors.YELLOW)
        raise typer.Exit(code=1)

    for item in ranked:
        typer.echo(f"{item.score:>3}  {item.protocol.name} (Source: {item.protocol.source_file})")


@app.command("calc-dose")
def calc_dose(
    weight: float = typer.Option(..., "--weight", "-w", help="Patient weight."),
    concentration_mg: float = typer.Option(..., "--conc-mg", help="Drug amount (mg) in the concentration."),
    dose: float = typer.Option(..., "--dose", "-d", help="Dose per unit of weight."),
    concentration_ml: float = typer.Option(1.0, "--conc-ml", help="Volume (mL) holding --conc-mg."),
    lbs: bool = typer.Option(False, "--lbs", help="Weight is given in pounds."),
    mcg: bool = typer.Option(False, "--mcg", help="Dose is mcg/kg instead of mg/kg."),
) -> None:
    """Weight-based dose and volume to administer."""

    try:
        result = calculator.weight_based_dose(
            weight,
            concentration_mg,
            dose,
            concentration_ml=concentration_ml,
            weight_unit="lbs" if lbs else "kg",
            dose_unit="mcg_kg" if mcg else "mg_kg",
        )
    except calculator.CalculationError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc

    colour = typer.colors.GREEN if result.calculable else typer.colors.YELLOW
    typer.secho(result.summary, fg=colour)


@app.command("calc-drip")
def calc_drip(
    volume_ml: float = typer.Option(..., "--volume", "-v", help="Total volume (mL)."),
    time_min: float = typer.Option(..., "--time", "-t", help="Infusion time (minutes)."),
    drip_set: int = typer.Option(calculator.DEFAULT_DRIP_SET, "--set", help="Drip set (gtts/mL)."),
) -> None:
    """IV drip rate in drops per minute."""

    if drip_set not in calculator.DRIP_SETS:
        typer.secho(f"Drip set must be one of {sorted(calculator.DRIP_SETS)}.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)

    try:
        result = calculator.drip_rate(volume_ml, time_min, drip_set)
    except calculator.CalculationError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc
    typer.secho(result.summary, fg=typer.colors.GREEN)


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
    reload: bool = typer.Option(False, "--reload"),
) -> None:
    """Run the HTTP API with uvicorn."""

    import uvicorn  # noqa: WPS433

    get_logger("scripts.search_protocols").info(
        "Starting API server.", extra={"context": {"host": host, "port": port}}
    )
    uvicorn.run("ems_protocols.api.app:create_app", factory=True, host=host, port=port, reload=reload)


def main(argv: Optional[list[str]] = None) -> None:
    """Entrypoint compatible with python -m execution."""

    app(standalone_mode=True, prog_name="ems-protocols", args=argv or sys.argv[1:])


if __name__ == "__main__":
    main()
