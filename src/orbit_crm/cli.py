"""Typer CLI for OrbitCRM."""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(name="orbit", help="OrbitCRM: CRM API with metered AI chat and client portal")
console = Console()


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind host (default: ORBIT_HOST)"),
    port: Optional[int] = typer.Option(None, help="Bind port (default: ORBIT_PORT)"),
):
    """Start the OrbitCRM API server."""
    import uvicorn
    from orbit_crm.app import create_app
    from orbit_crm.common.config import get_settings
    from orbit_crm.common.logging import setup_logging

    settings = get_settings()
    setup_logging(settings.log_level)
    host = host or settings.host
    port = port or settings.port
    console.print(f"[bold green]Starting OrbitCRM on {host}:{port}[/bold green]")
    uvicorn.run(create_app(), host=host, port=port)


@app.command()
def health(
    url: str = typer.Option("http://localhost:8080", help="Server URL"),
):
    """Check OrbitCRM server health."""
    import httpx

    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        data = resp.json()
        console.print(f"[bold green]{data['status']}[/bold green] v{data['version']}")
    except (httpx.HTTPError, ValueError, KeyError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command("check-triggers")
def check_triggers():
    """Run the notification trigger sweep once against the configured database."""
    from orbit_crm.deps import get_db, get_notification_service

    async def _run():
        db = get_db()
        await db.init()
        try:
            async with db.get_session() as session:
                return await get_notification_service().check_triggers(session)
        finally:
            await db.close()

    results = asyncio.run(_run())
    table = Table(title="Notification sweep")
    table.add_column("Counter")
    table.add_column("Value", justify="right")
    for name, value in results.to_dict().items():
        table.add_row(name, str(value))
    console.print(table)


if __name__ == "__main__":
    app()
