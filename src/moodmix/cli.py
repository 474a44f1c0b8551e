"""
CLI entrypoint for moodmix.

Commands:
- serve: run the FastAPI web app.
- config: print the effective configuration (secrets masked).
"""

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table
import uvicorn

from .config import get_default_config_dir, load_config


app = typer.Typer(help="moodmix – generate Spotify playlists from an artist and a mood.")


def _mask(value: str) -> str:
    if not value:
        return "[red]not set[/red]"
    if len(value) <= 4:
        return "****"
    return f"{value[:4]}{'*' * 8}"


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", help="Host to bind the moodmix server to."),
    port: Optional[int] = typer.Option(None, help="Port to bind to (default: MOODMIX_PORT or 3000)."),
    reload: bool = typer.Option(False, help="Enable auto-reload (development only)."),
) -> None:
    """
    Run the moodmix web app.

    Example:
        moodmix serve --port 3000
    """
    cfg = load_config()
    uvicorn.run(
        "moodmix.api:app",
        host=host,
        port=port or cfg.port,
        reload=reload,
    )


@app.command("config")
def show_config() -> None:
    """
    Show the configuration moodmix would start with.
    """
    cfg = load_config()
    console = Console()

    table = Table(title="moodmix configuration", show_lines=False)
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="bold")

    table.add_row("Spotify client ID", _mask(cfg.spotify.client_id))
    table.add_row("Spotify client secret", _mask(cfg.spotify.client_secret))
    table.add_row("Redirect URI", cfg.spotify.redirect_uri)
    table.add_row("Session backend", cfg.session.backend)
    table.add_row("Session cookie", cfg.session.cookie_name)
    table.add_row("Admission mode", cfg.admission.mode)
    table.add_row("Rate limit", f"{cfg.admission.rate_limit} on {cfg.admission.rate_limit_path}")
    table.add_row("Allowed agents", ", ".join(cfg.admission.allowed_agents) or "-")
    table.add_row("Port", str(cfg.port))
    table.add_row("Config dir", str(get_default_config_dir()))

    console.print(table)


if __name__ == "__main__":
    app()
