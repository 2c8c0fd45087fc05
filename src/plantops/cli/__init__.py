"""PlantOps command-line interface (typer)."""
