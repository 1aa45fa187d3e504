"""
Synthetic BGG ranks dump generator for BGG Rank Sync.

Writes a deterministic `boardgames_ranks.csv` with the same header as the
real BoardGameGeek export, including the quirks the decoder has to cope
with: unranked games, blank years, accented names and a few malformed rows.
"""

from __future__ import annotations

import csv
import random
import sys
import time
from pathlib import Path

import typer

app = typer.Typer(help="Generate a synthetic BoardGameGeek ranks CSV.")

HEADER = [
    "id",
    "name",
    "yearpublished",
    "rank",
    "bayesaverage",
    "average",
    "usersrated",
    "is_expansion",
    "abstracts_rank",
    "cgs_rank",
    "childrensgames_rank",
    "familygames_rank",
    "partygames_rank",
    "strategygames_rank",
    "thematic_rank",
    "wargames_rank",
]

_WORDS = [
    "Agricola", "Azul", "Brass", "Castles", "Dune", "Éclipse", "Everdell",
    "Gloomhaven", "Hanabi", "Istanbul", "Kanban", "Lisboa", "Mombasa",
    "Orléans", "Patchwork", "Root", "Scythe", "Terra", "Ticket", "Wingspan",
]
_SUFFIXES = ["", "", "", ": Expansion", " Deluxe", " Big Box", " Second Edition"]


def _name(rng: random.Random) -> str:
    return f"{rng.choice(_WORDS)} {rng.choice(_WORDS)}{rng.choice(_SUFFIXES)}".strip()


def _generate_rows_csv(csv_path: Path, rows: int, seed: int, malformed: int = 0) -> None:
    rng = random.Random(seed)
    bad_lines = set(rng.sample(range(rows), min(malformed, rows)))
    ranked = 0

    with csv_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(HEADER)

        for i in range(rows):
            game_id = 1000 + i
            if i in bad_lines:
                writer.writerow(["", _name(rng)] + [""] * (len(HEADER) - 2))
                continue

            users = rng.randint(0, 120_000)
            is_ranked = users >= 30
            rank = ""
            if is_ranked:
                ranked += 1
                rank = str(ranked)
            average = round(rng.uniform(3.0, 9.0), 5) if users else 0.0
            bayes = round(5.5 + (average - 5.5) * min(users, 5000) / 5000, 5) if is_ranked else 0.0
            year = "" if rng.random() < 0.02 else str(rng.randint(1950, 2025))
            is_expansion = "1" if rng.random() < 0.2 else "0"
            abstracts = str(rng.randint(1, 2000)) if rng.random() < 0.05 else ""

            writer.writerow(
                [
                    game_id,
                    _name(rng),
                    year,
                    rank,
                    f"{bayes:.5f}",
                    f"{average:.5f}",
                    users,
                    is_expansion,
                    abstracts,
                ]
                + [""] * (len(HEADER) - 9)
            )


@app.command()
def main(
    rows: int = typer.Option(
        10_000,
        "--rows",
        "-r",
        help="Number of data rows to generate.",
    ),
    seed: int = typer.Option(
        42,
        "--seed",
        help="Deterministic RNG seed.",
    ),
    malformed: int = typer.Option(
        0,
        "--malformed",
        help="Number of rows emitted without an id.",
    ),
    output: Path = typer.Option(
        Path("data/boardgames_ranks.csv"),
        "--output",
        "-o",
        help="CSV output path.",
    ),
) -> None:
    """
    Generate a synthetic ranks dump.
    """
    start = time.perf_counter()
    output.parent.mkdir(parents=True, exist_ok=True)

    typer.echo(f"Generating {rows:,} rows -> {output} (seed={seed}, malformed={malformed})")
    _generate_rows_csv(output, rows=rows, seed=seed, malformed=malformed)
    duration = time.perf_counter() - start
    typer.echo(f"CSV generation completed in {duration:.2f}s")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
