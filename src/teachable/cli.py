"""Teachable command-line interface."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Iterable
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Annotated, Any, NoReturn

import typer
import yaml

from . import __version__
from .config import Config, ConfigError, TrainingConfig, load_config, resolved_config_path
from .extractors import AsyncCallAdapter, HashingTextExtractor
from .logging import configure_logging
from .session import TransferLearningSession

app = typer.Typer(help="Teach a small classifier from a handful of examples.")
LOGGER = logging.getLogger(__name__)


@dataclass
class CLIState:
    """Stores shared CLI options."""

    config_path: Path | None


@dataclass(frozen=True)
class TextRunResult:
    """Class names and per-query probabilities from a text session."""

    class_names: tuple[str, ...]
    predictions: list[tuple[str, tuple[float, ...] | None]]
    examples: int
    final_loss: float | None


class TextSessionError(RuntimeError):
    """Raised when a text session cannot be trained."""


@app.callback()
def _teachable(
    ctx: typer.Context,
    config: Annotated[
        Path | None,
        typer.Option(
            "-c",
            "--config",
            help="Path to config (env TEACHABLE_CONFIG or ~/.config/teachable/config.yaml).",
        ),
    ] = None,
) -> None:
    """Capture global CLI options."""

    resolved = config.expanduser() if config else None
    ctx.obj = CLIState(config_path=resolved)


@app.command()
def status(ctx: typer.Context) -> None:
    """Display version and effective configuration."""

    state = _state(ctx)
    config = _load_config(state.config_path)

    typer.echo("→ Teachable Status")
    typer.echo(f"Version: {__version__}")
    typer.echo(f"Config path: {resolved_config_path(state.config_path)}")
    typer.echo(f"Root dir: {config.root_dir}")
    typer.echo("")
    typer.echo("Session:")
    session = config.session
    typer.echo(f"  capture interval: {session.capture_interval_ms} ms")
    typer.echo(f"  prediction throttle: {session.prediction_throttle_ms} ms")
    typer.echo(f"  frame rate: {session.frame_rate:g} Hz")
    typer.echo(f"  default class name: {session.default_class_name}")
    typer.echo("")
    typer.echo("Training:")
    training = config.training
    typer.echo(f"  epochs: {training.epochs}")
    typer.echo(f"  batch size: {training.batch_size}")
    typer.echo(f"  learning rate: {training.learning_rate:g}")
    typer.echo(f"  hidden units: {training.hidden_units}")
    seed = training.random_state if training.random_state is not None else "random"
    typer.echo(f"  seed: {seed}")


@app.command()
def text(
    ctx: typer.Context,
    examples: Annotated[
        Path,
        typer.Argument(..., help="YAML mapping of class name to a list of example texts."),
    ],
    query: Annotated[
        list[str] | None,
        typer.Option(
            "-q",
            "--query",
            help="Text to classify (repeatable; reads stdin lines when omitted).",
        ),
    ] = None,
    epochs: Annotated[int | None, typer.Option("--epochs", min=1)] = None,
    batch_size: Annotated[int | None, typer.Option("--batch-size", min=1)] = None,
    learning_rate: Annotated[float | None, typer.Option("--learning-rate")] = None,
    seed: Annotated[int | None, typer.Option("--seed", help="Random seed for training.")] = None,
) -> None:
    """Train on example texts and classify queries."""

    state = _state(ctx)
    config = _load_config(state.config_path)
    configure_logging(config.logging, config.root_dir)

    try:
        training = config.training.with_overrides(
            epochs=epochs,
            batch_size=batch_size,
            learning_rate=learning_rate,
            random_state=seed,
        )
    except ConfigError as exc:
        _config_failure(exc)

    dataset = _load_examples(examples.expanduser())
    queries = list(query) if query else _stdin_queries(sys.stdin)
    if not queries:
        typer.secho("No queries given.", fg=typer.colors.YELLOW, err=True)

    try:
        outcome = asyncio.run(run_text_session(dataset, queries, config=config, training=training))
    except TextSessionError as exc:
        typer.secho(f"Training failed: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from exc

    loss = f"{outcome.final_loss:.4f}" if outcome.final_loss is not None else "n/a"
    typer.echo(
        f"Trained on {outcome.examples} example(s) across "
        f"{len(outcome.class_names)} classes (final loss {loss})."
    )
    for text_query, probabilities in outcome.predictions:
        typer.echo("")
        typer.echo(f"Query: {text_query}")
        if probabilities is None:
            typer.echo("  (no prediction)")
            continue
        ranked = sorted(
            zip(outcome.class_names, probabilities), key=lambda item: item[1], reverse=True
        )
        for name, probability in ranked:
            typer.echo(f"  {name}: {probability:.3f}")


async def run_text_session(
    dataset: dict[str, list[str]],
    queries: Iterable[str],
    *,
    config: Config | None = None,
    training: TrainingConfig | None = None,
) -> TextRunResult:
    """Collect every example text, train once, then classify each query."""

    config = config or Config()
    extractor = HashingTextExtractor()
    adapter = AsyncCallAdapter(extractor, output_dim=extractor.output_dim)
    settings = replace(config.session, initial_classes=0)
    session = TransferLearningSession(
        adapter, settings=settings, training=training or config.training
    )
    async with session:
        for name, texts in dataset.items():
            session.add_class()
            index = len(session.classes) - 1
            session.rename_class(index, name)
            session.commit_class_name(index)
            for sample in texts:
                result = await session.collect_example(index, sample)
                if not result.accepted:
                    LOGGER.warning(
                        "Example for '%s' not collected (%s): %s",
                        name,
                        result.status,
                        result.reason,
                    )

        examples = len(session.buffer)
        if not await session.train():
            reasons = "; ".join(session.train_blockers) or "see log for details"
            raise TextSessionError(reasons)
        loss_history = session.loss_history
        class_names = tuple(label.name for label in session.classes)
        session.stop_prediction()

        predictions: list[tuple[str, tuple[float, ...] | None]] = []
        for text_query in queries:
            if await session.predict(text_query):
                predictions.append((text_query, session.probabilities))
            else:
                predictions.append((text_query, None))

    return TextRunResult(
        class_names=class_names,
        predictions=predictions,
        examples=examples,
        final_loss=loss_history[-1] if loss_history else None,
    )


def _load_examples(path: Path) -> dict[str, list[str]]:
    if not path.is_file():
        typer.secho(f"Examples file not found: {path}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from None
    try:
        raw: Any = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        typer.secho(f"Invalid YAML in {path}: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from exc

    if not isinstance(raw, dict) or not raw:
        typer.secho(
            "Examples file must map class names to lists of texts.",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(1)

    dataset: dict[str, list[str]] = {}
    for name, texts in raw.items():
        if isinstance(texts, str):
            texts = [texts]
        if not isinstance(texts, list):
            typer.secho(
                f"Examples for '{name}' must be a list of texts.", fg=typer.colors.RED, err=True
            )
            raise typer.Exit(1)
        dataset[str(name)] = [str(item) for item in texts if str(item).strip()]
    return dataset


def _stdin_queries(stream: Any) -> list[str]:
    if stream is None or stream.isatty():
        return []
    return [line.strip() for line in stream if line.strip()]


def _state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise RuntimeError("CLI state missing from context.")
    return state


def _load_config(path: Path | None) -> Config:
    try:
        return load_config(path)
    except ConfigError as exc:
        _config_failure(exc)


def _config_failure(exc: ConfigError) -> NoReturn:
    typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(2) from exc


def main() -> None:  # pragma: no cover - delegated to Typer
    app()


__all__ = ["TextRunResult", "TextSessionError", "app", "main", "run_text_session"]
