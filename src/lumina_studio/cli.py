"""Typer-based CLI for generating, editing, analyzing, and browsing image history."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from collections.abc import Awaitable
from pathlib import Path
from typing import TypeVar

import typer
from pydantic import ValidationError

from lumina_studio.catalog import STYLE_PRESETS
from lumina_studio.config import StudioSettings, load_settings, resolve_gemini_api_key
from lumina_studio.dispatcher import ModelDispatcher
from lumina_studio.errors import LuminaError
from lumina_studio.exporter import export_artifact
from lumina_studio.models import Artifact, ImagePayload, InputImage, TextPayload
from lumina_studio.orchestrator import GenerationOrchestrator
from lumina_studio.prompting import PROMPT_TEMPLATES
from lumina_studio.store import ArtifactStore

app = typer.Typer(add_completion=False, help="lumina-studio: generate, edit, and analyze images with Gemini and Imagen")

T = TypeVar("T")

DEFAULT_OUTPUT_ROOT = Path("exports")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _settings(db_path: Path | None) -> StudioSettings:
    try:
        return load_settings(db_path=db_path)
    except ValidationError as exc:
        raise typer.BadParameter(f"Invalid settings: {exc}") from exc


def _orchestrator(settings: StudioSettings) -> GenerationOrchestrator:
    store = ArtifactStore(settings.db_path)
    store.subscribe(lambda: typer.echo("    history updated"))
    return GenerationOrchestrator(ModelDispatcher(), store, settings)


def _run(coro: Awaitable[T]) -> T:
    """Drive a coroutine to completion, turning domain errors into a clean exit."""
    try:
        return asyncio.run(coro)
    except (LuminaError, ValueError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _load_image(path: Path) -> InputImage:
    if not path.is_file():
        raise typer.BadParameter(f"Image not found: {path}")
    mime_type = mimetypes.guess_type(path.name)[0] or "image/png"
    if not mime_type.startswith("image/"):
        raise typer.BadParameter(f"Not an image file: {path}")
    return InputImage(data=path.read_bytes(), mime_type=mime_type)


def _describe(artifact: Artifact) -> str:
    payload = artifact.payload
    size = f"{len(payload.data)}B {payload.mime_type}" if isinstance(payload, ImagePayload) else "text"
    ratio = artifact.aspect_ratio or "-"
    return (
        f"{artifact.artifact_id}  {artifact.created_at:%Y-%m-%d %H:%M:%S}  {artifact.kind:<9}  "
        f"{artifact.model_name}  {ratio}  {size}  {artifact.prompt}"
    )


def _export_all(artifacts: list[Artifact], output_root: Path | None) -> None:
    if output_root is None:
        return
    for artifact in artifacts:
        typer.echo(f"    exported to {export_artifact(artifact, output_root)}")


@app.command("generate")
def generate(
    prompt: str = typer.Argument(..., help="What to generate"),
    style: str = typer.Option("none", help=f"Style preset: {', '.join(STYLE_PRESETS)}"),
    negative: str = typer.Option("", "--negative", help="Things to avoid in the image"),
    aspect_ratio: str = typer.Option("1:1", "--aspect-ratio", help="1:1, 3:4, 4:3, 9:16 or 16:9"),
    model_name: str | None = typer.Option(None, "--model", help="Generation model name"),
    count: int = typer.Option(1, min=1, max=4, help="Number of images"),
    enhance: bool = typer.Option(False, help="Rewrite the prompt with the text model first"),
    db_path: Path | None = typer.Option(None, "--db", help="SQLite database path"),
    output_root: Path | None = typer.Option(None, "--export-dir", help="Also export results here"),
) -> None:
    """Generate one or more images and store them in history."""
    orchestrator = _orchestrator(_settings(db_path))

    async def _flow() -> list[Artifact]:
        final_prompt = prompt
        if enhance:
            final_prompt = await orchestrator.enhance_prompt(prompt)
            typer.echo(f"Enhanced prompt: {final_prompt}")
        return await orchestrator.generate(
            final_prompt,
            style=style,
            negative_prompt=negative,
            aspect_ratio=aspect_ratio,
            model_name=model_name,
            count=count,
        )

    artifacts = _run(_flow())
    for artifact in artifacts:
        typer.echo(_describe(artifact))
    _export_all(artifacts, output_root)


@app.command("edit")
def edit(
    images: list[Path] = typer.Argument(..., help="Primary image followed by up to two reference images"),
    prompt: str = typer.Option(..., "--prompt", "-p", help="Edit instruction"),
    aspect_ratio: str = typer.Option("1:1", "--aspect-ratio"),
    model_name: str | None = typer.Option(None, "--model", help="Editing model name"),
    db_path: Path | None = typer.Option(None, "--db", help="SQLite database path"),
    output_root: Path | None = typer.Option(None, "--export-dir", help="Also export the result here"),
) -> None:
    """Edit an image with an instruction and store the result."""
    orchestrator = _orchestrator(_settings(db_path))
    inputs = [_load_image(path) for path in images]
    artifact = _run(orchestrator.edit(inputs, prompt, aspect_ratio=aspect_ratio, model_name=model_name))
    typer.echo(_describe(artifact))
    _export_all([artifact], output_root)


@app.command("upscale")
def upscale(
    images: list[Path] = typer.Argument(..., help="Image to upscale (plus optional references)"),
    aspect_ratio: str = typer.Option("1:1", "--aspect-ratio"),
    model_name: str | None = typer.Option(None, "--model", help="Editing model name"),
    db_path: Path | None = typer.Option(None, "--db", help="SQLite database path"),
    output_root: Path | None = typer.Option(None, "--export-dir", help="Also export the result here"),
) -> None:
    """Upscale and enhance an image, preserving its composition."""
    orchestrator = _orchestrator(_settings(db_path))
    inputs = [_load_image(path) for path in images]
    artifact = _run(orchestrator.upscale(inputs, aspect_ratio=aspect_ratio, model_name=model_name))
    typer.echo(_describe(artifact))
    _export_all([artifact], output_root)


@app.command("analyze")
def analyze(
    image: Path = typer.Argument(..., help="Image to analyze"),
    question: str = typer.Option("", "--question", "-q", help="What to ask about the image"),
    model_name: str | None = typer.Option(None, "--model", help="Analysis model name"),
) -> None:
    """Ask a question about an image. Results are not stored."""
    orchestrator = _orchestrator(_settings(None))
    typer.echo(_run(orchestrator.analyze(_load_image(image), question, model_name=model_name)))


@app.command("enhance")
def enhance(prompt: str = typer.Argument(..., help="Prompt to rewrite")) -> None:
    """Rewrite a short prompt into a more descriptive one."""
    orchestrator = _orchestrator(_settings(None))
    typer.echo(_run(orchestrator.enhance_prompt(prompt)))


@app.command("templates")
def templates(fresh: bool = typer.Option(False, help="Ask the model for new template ideas")) -> None:
    """Print prompt templates, optionally freshly generated."""
    sections = PROMPT_TEMPLATES
    if fresh:
        generated = _run(_orchestrator(_settings(None)).suggest_templates())
        if generated:
            sections = generated
        else:
            typer.echo("Could not generate new templates; showing built-in set.", err=True)

    for section in sections:
        typer.echo(f"## {section.category}")
        for template in section.prompts:
            typer.echo(f"- {template}")
        typer.echo("")


@app.command("history")
def history(
    limit: int = typer.Option(20, min=1, help="Max entries to show"),
    db_path: Path | None = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """List stored artifacts, newest first."""
    store = ArtifactStore(_settings(db_path).db_path)
    artifacts = _run(store.list_all())
    if not artifacts:
        typer.echo("History is empty.")
        return
    for artifact in artifacts[:limit]:
        typer.echo(_describe(artifact))
    typer.echo(f"{len(artifacts)} artifact(s) in history")


@app.command("show")
def show(
    artifact_id: str = typer.Argument(..., help="Artifact ID from history"),
    db_path: Path | None = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Print one stored artifact."""
    store = ArtifactStore(_settings(db_path).db_path)
    artifact = _run(store.get(artifact_id))
    if not artifact:
        raise typer.BadParameter(f"Artifact not found: {artifact_id}")
    typer.echo(_describe(artifact))
    if isinstance(artifact.payload, TextPayload):
        typer.echo(artifact.payload.text)


@app.command("export")
def export(
    artifact_id: str = typer.Argument(..., help="Artifact ID from history"),
    db_path: Path | None = typer.Option(None, "--db", help="SQLite database path"),
    output_root: Path = typer.Option(DEFAULT_OUTPUT_ROOT, "--output-root", help="Export directory"),
) -> None:
    """Write a stored artifact's image and metadata to disk."""
    store = ArtifactStore(_settings(db_path).db_path)
    artifact = _run(store.get(artifact_id))
    if not artifact:
        raise typer.BadParameter(f"Artifact not found: {artifact_id}")
    typer.echo(f"Exported artifact to: {export_artifact(artifact, output_root)}")


@app.command("delete")
def delete(
    artifact_id: str = typer.Argument(..., help="Artifact ID from history"),
    db_path: Path | None = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Delete one artifact from history."""
    store = ArtifactStore(_settings(db_path).db_path)
    _run(store.delete(artifact_id))
    typer.echo(f"Deleted: {artifact_id}")


@app.command("clear")
def clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    db_path: Path | None = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Delete every artifact from history."""
    if not yes:
        typer.confirm("Delete all history?", abort=True)
    store = ArtifactStore(_settings(db_path).db_path)
    _run(store.clear())
    typer.echo("History cleared.")


@app.command("doctor")
def doctor(
    db_path: Path | None = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Print local environment diagnostics used by the CLI."""
    settings = _settings(db_path)
    typer.echo(f"DB exists: {settings.db_path.exists()} ({settings.db_path})")
    typer.echo(f"GEMINI_API_KEY set: {bool(resolve_gemini_api_key())}")
    typer.echo(f"Batch policy: {settings.batch_policy} (timeout={settings.batch_timeout})")


if __name__ == "__main__":
    app()
