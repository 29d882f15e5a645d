#!/usr/bin/env python3
"""
Kokoro CLI - 行動状態コアの開発用 CLI
Typer + Rich で解析結果やセッション状態を確認する
"""

import asyncio
import json
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from kokoro import __version__
from kokoro.adapters.storage import FileStateStore, InMemoryStateStore
from kokoro.core.config import get_settings
from kokoro.core.exceptions import ConfigurationError, InvalidTransitionError
from kokoro.core.logging import KokoroLogger
from kokoro.domain.models import Interaction, SessionState
from kokoro.domain.services import (
    ContextDetector,
    EmotionalContextAnalyzer,
    PersonaCatalog,
    SessionFlowCoordinator,
)

app = typer.Typer(
    name="kokoro",
    help="Kokoro - 会話コンパニオンの行動状態コア 開発用CLI",
    add_completion=False,
    rich_markup_mode="rich"
)

console = Console()


def _load_catalog() -> PersonaCatalog:
    try:
        return PersonaCatalog.from_settings(get_settings().persona)
    except ConfigurationError as e:
        console.print(f"[red]エラー: {e.message}[/red]")
        raise typer.Exit(1)


@app.command()
def analyze(
    text: str = typer.Argument(..., help="解析するテキスト"),
    as_json: bool = typer.Option(False, "--json", help="JSON で出力")
):
    """
    テキストの感情コンテキストを解析します
    """
    emotional = EmotionalContextAnalyzer().analyze(text)
    analysis = ContextDetector().analyze(emotional)

    if as_json:
        console.print_json(json.dumps({
            "emotion": emotional.to_dict(),
            "context": analysis.to_dict(),
        }, ensure_ascii=False, default=str))
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("項目", style="cyan")
    table.add_column("値", style="white")
    table.add_row("感情", emotional.primary_emotion)
    table.add_row("sentiment", f"{emotional.sentiment:+.2f}")
    table.add_row("intensity", f"{emotional.intensity:.2f}")
    table.add_row("トーン", emotional.emotional_tone)
    table.add_row("コンテキスト", f"{analysis.primary_context} / {analysis.secondary_context or '-'}")
    table.add_row("フラグ", ", ".join(sorted(emotional.context_flags())) or "-")
    table.add_row("キーワード", ", ".join(emotional.keywords) or "-")
    console.print(table)


@app.command()
def personas():
    """
    ペルソナカタログを一覧表示します
    """
    catalog = _load_catalog()
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan")
    table.add_column("名前", style="white")
    table.add_column("特性", style="yellow")
    table.add_column("規則数", justify="right", style="green")

    for persona in catalog:
        traits = ", ".join(f"{k}={v:.1f}" for k, v in persona.traits.items())
        table.add_row(persona.id, persona.name, traits, str(len(persona.style_rules)))

    console.print(table)


@app.command()
def chat(
    user: str = typer.Option("local", help="ユーザーID"),
    persist: bool = typer.Option(False, help="状態をデータディレクトリに保存"),
    data_dir: Optional[str] = typer.Option(None, help="データ保存ディレクトリ")
):
    """
    対話ループでセッション状態の変化を確認します

    /persona <id> でペルソナ切り替え、/quit で終了
    """
    settings = get_settings()
    KokoroLogger.configure("DEBUG" if settings.debug else settings.log_level)
    asyncio.run(_chat_loop(user, persist, data_dir or settings.data_dir))


async def _chat_loop(user_id: str, persist: bool, data_dir: str) -> None:
    store = FileStateStore(data_dir=data_dir) if persist else InMemoryStateStore()
    coordinator = SessionFlowCoordinator(store=store, catalog=_load_catalog())
    session = await coordinator.start_session(user_id)

    console.print(Panel(
        f"[bold blue]Kokoro Chat[/bold blue]\n"
        f"セッション: {session.id}\n"
        f"ペルソナ: {session.state.active_persona}",
        title="セッション開始"
    ))

    try:
        while True:
            text = console.input("[bold green]>[/bold green] ").strip()
            if text in ("/quit", "/exit"):
                break
            if text.startswith("/persona "):
                target = text.split(maxsplit=1)[1]
                try:
                    persona = coordinator.switch_persona(target, reason="manual")
                    console.print(f"[cyan]ペルソナ切り替え: {persona.name}[/cyan]")
                except InvalidTransitionError as e:
                    console.print(f"[red]切り替え不可: {e.details.get('reason')}[/red]")
                continue

            state = await coordinator.process_interaction(
                Interaction(content=text, session_id=session.id)
            )
            _print_state(state)
    finally:
        await coordinator.end_session(session.id)
        if isinstance(store, FileStateStore):
            await store.flush()


def _print_state(state: SessionState) -> None:
    style = state.response_style
    console.print(Panel(
        f"[bold]気分:[/bold] {state.mood.primary} ({state.mood.intensity:.2f})\n"
        f"[bold]ペルソナ:[/bold] {state.active_persona}"
        + (f" → 提案: {state.suggested_persona}" if state.suggested_persona else "") + "\n"
        f"[bold]話題:[/bold] {', '.join(state.current_topics)}\n"
        f"[bold]スタイル:[/bold] {style.response or '-'} / {style.tone or '-'}\n"
        f"[bold]信頼・親密:[/bold] {state.trust:.2f} / {state.intimacy:.2f}",
        title=f"ターン {state.turn_count}",
        border_style="blue"
    ))


@app.command()
def version():
    """
    バージョン情報を表示
    """
    console.print(Panel(
        f"[bold blue]Kokoro CLI[/bold blue] v{__version__}\n"
        f"🔧 Built with [bold]Typer[/bold] + [bold]Rich[/bold]",
        title="バージョン情報"
    ))


if __name__ == "__main__":
    app()
