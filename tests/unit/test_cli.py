from __future__ import annotations

import textwrap
from pathlib import Path

from typer.testing import CliRunner

from teachable.cli import app

runner = CliRunner()


def _write_config(tmp_path: Path) -> Path:
    config = tmp_path / "config.yaml"
    config.write_text(
        "\n".join(
            [
                f"root_dir: {tmp_path / 'state'}",
                "session:",
                "  prediction_throttle_ms: 50",
                "training:",
                "  epochs: 20",
                "  batch_size: 4",
                "  learning_rate: 0.05",
                "  random_state: 0",
                "",
            ]
        ),
        encoding="utf-8",
    )
    return config


def _write_examples(tmp_path: Path, content: str | None = None) -> Path:
    examples = tmp_path / "examples.yaml"
    examples.write_text(
        textwrap.dedent(
            content
            or """
            greeting:
              - hello there
              - hi friend
              - good morning friend
              - hello good friend
            weather:
              - it is raining
              - sunny weather today
              - cold and windy weather
              - rain again today
            """
        ),
        encoding="utf-8",
    )
    return examples


def test_status_reports_settings(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)

    result = runner.invoke(app, ["-c", str(config_path), "status"])

    assert result.exit_code == 0
    assert "Version:" in result.stdout
    assert str(config_path) in result.stdout
    assert "prediction throttle: 50 ms" in result.stdout
    assert "epochs: 20" in result.stdout
    assert "seed: 0" in result.stdout


def test_text_command_classifies_queries(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)
    examples = _write_examples(tmp_path)

    result = runner.invoke(
        app,
        [
            "-c",
            str(config_path),
            "text",
            str(examples),
            "--query",
            "hello my friend",
            "--query",
            "windy rain",
        ],
    )

    assert result.exit_code == 0
    assert "Trained on 8 example(s) across 2 classes" in result.stdout
    assert "Query: hello my friend" in result.stdout
    assert "Query: windy rain" in result.stdout
    assert result.stdout.count("greeting:") == 2
    assert (tmp_path / "state" / "logs" / "teachable.log").exists()


def test_text_command_reads_queries_from_stdin(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)
    examples = _write_examples(tmp_path)

    result = runner.invoke(
        app,
        ["-c", str(config_path), "text", str(examples), "--epochs", "5", "--seed", "3"],
        input="good morning\n\nrain today\n",
    )

    assert result.exit_code == 0
    assert "Query: good morning" in result.stdout
    assert "Query: rain today" in result.stdout
    assert result.stdout.count("Query:") == 2


def test_text_command_reports_training_blockers(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)
    examples = _write_examples(
        tmp_path,
        """
        lonely:
          - only one class here
        """,
    )

    result = runner.invoke(
        app, ["-c", str(config_path), "text", str(examples), "--query", "anything"]
    )

    assert result.exit_code == 1
    assert "at least two classes required" in result.output


def test_text_command_rejects_missing_examples(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)

    result = runner.invoke(app, ["-c", str(config_path), "text", str(tmp_path / "none.yaml")])

    assert result.exit_code == 1


def test_invalid_config_exits_with_code_two(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("training:\n  epochs: 0\n", encoding="utf-8")

    result = runner.invoke(app, ["-c", str(config_path), "status"])

    assert result.exit_code == 2
    assert "Configuration error" in result.output
