"""CLI for inspecting saved models."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from nativeboost.booster import Booster
from nativeboost.errors import NativeBoostError

app = typer.Typer(
    name="nativeboost",
    help="Inspect gradient boosted tree models saved by the native library.",
    no_args_is_help=True,
)
console = Console()

ModelArg = Annotated[Path, typer.Argument(help="Model file written by Booster.save_model.", exists=True, dir_okay=False)]
FmapOption = Annotated[
    Optional[Path],
    typer.Option("--fmap", help="Feature map file used to name features.", exists=True, dir_okay=False),
]


def _load(model: Path) -> Booster:
    try:
        return Booster.from_model_file(model)
    except NativeBoostError as e:
        console.print(f"[red]Cannot load {model}: {e}[/red]")
        raise typer.Exit(code=1) from e


@app.command()
def dump(
    model: ModelArg,
    output: Annotated[Path, typer.Argument(help="Text file to write the dump to.")],
    fmap: FmapOption = None,
    with_stats: Annotated[bool, typer.Option("--with-stats", help="Include split gain and cover.")] = False,
) -> None:
    """Write the text dump of every tree in a model."""
    with _load(model) as booster:
        try:
            booster.dump_model(output, fmap=fmap or "", with_stats=with_stats)
        except NativeBoostError as e:
            console.print(f"[red]Cannot dump {model}: {e}[/red]")
            raise typer.Exit(code=1) from e
    console.print(f"[green]Dump written to {output}[/green]")


@app.command()
def importance(
    model: ModelArg,
    fmap: FmapOption = None,
    top: Annotated[Optional[int], typer.Option("--top", "-n", min=1, help="Show only the N most used features.")] = None,
) -> None:
    """Show how many splits use each feature."""
    with _load(model) as booster:
        try:
            scores = booster.get_feature_score(fmap or "")
        except NativeBoostError as e:
            console.print(f"[red]Cannot score {model}: {e}[/red]")
            raise typer.Exit(code=1) from e

    ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
    if top is not None:
        ranked = ranked[:top]

    table = Table(title=f"Feature splits: {model.name}", show_header=True, header_style="bold")
    table.add_column("Feature", style="cyan", no_wrap=True)
    table.add_column("Splits", justify="right")
    for feature, count in ranked:
        table.add_row(feature, str(count))
    console.print(table)


def main() -> None:
    """Entry point for the ``nativeboost`` console script."""
    app()


if __name__ == "__main__":
    main()
