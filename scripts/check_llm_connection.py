"""Validate connectivity to the chat and quiz language model endpoints."""

from __future__ import annotations

import sys
import time
from typing import Optional

import typer

from ems_protocols.services.llm_client import ChatModelClient, LLMServiceError
from ems_protocols.utils.config import get_settings
from ems_protocols.utils.logger import get_logger

app = typer.Typer(help="Smoke-test the chat (Mistral) and quiz (OpenAI) model endpoints.")

PROMPT = "Respond with a one-sentence acknowledgement that includes the phrase 'connection confirmed'."


def _refresh_settings() -> None:
    get_settings.cache_clear()  # type: ignore[attr-defined]
    get_settings()


def _check(label: str, client: Optional[ChatModelClient], exit_code: int) -> None:
    logger = get_logger("scripts.check_llm_connection")
    if client is None:
        typer.secho(f"{label}: no API key configured, skipping.", fg=typer.colors.YELLOW)
        return

    typer.echo(f"Testing {label} endpoint ({client.model})...")
    start = time.perf_counter()
    try:
        response = client.complete([{"role": "user", "content": PROMPT}], temperature=0.0, max_tokens=40)
    except LLMServiceError as exc:
        logger.error(
            "LLM request failed.",
            extra={"context": {"endpoint": label, "error": str(exc)}},
        )
        typer.secho(f"{label} request failed: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=exit_code) from exc

    latency_ms = (time.perf_counter() - start) * 1000.0
    typer.secho(f"{label} OK ({latency_ms:.1f} ms): {response.strip()}", fg=typer.colors.GREEN)


@app.command("run")
def run(
    include_chat: bool = typer.Option(True, "--chat/--no-chat", help="Check the chat endpoint."),
    include_quiz: bool = typer.Option(True, "--quiz/--no-quiz", help="Check the quiz endpoint."),
) -> None:
    """Send one short completion request to each configured endpoint."""

    _refresh_settings()
    settings = get_settings()

    if not include_chat and not include_quiz:
        typer.secho("Nothing to test. Enable at least one check.", fg=typer.colors.YELLOW)
        raise typer.Exit(code=0)

    if include_chat:
        _check("Chat", ChatModelClient.for_chat(settings), exit_code=3)
    if include_quiz:
        _check("Quiz", ChatModelClient.for_quiz(settings), exit_code=5)

    typer.secho("LLM connectivity checks complete.", fg=typer.colors.GREEN)


def main(argv: Optional[list[str]] = None) -> None:
    app(standalone_mode=True, prog_name="check-llm-connection", args=argv or sys.argv[1:])


if __name__ == "__main__":
    main()
