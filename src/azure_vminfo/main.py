"""azure-vminfo CLI — entry point.

Look up Azure virtual machines by name or pattern through Resource Graph.
"""

from __future__ import annotations

import logging
import webbrowser
from typing import Annotated

import typer
from rich.console import Console

from azure_vminfo.auth import AuthManager
from azure_vminfo.client import ResourceGraphClient
from azure_vminfo.config import get_config
from azure_vminfo.models.auth import DeviceCodeResponse
from azure_vminfo.models.query import QueryDescriptor
from azure_vminfo.services.vminfo import VMInfoService
from azure_vminfo.utils.cache import ResultCache
from azure_vminfo.utils.errors import handle_error
from azure_vminfo.utils.output import OutputFormat, print_status, print_vms

console = Console(stderr=True)
app = typer.Typer(
    name="vminfo",
    help="Query Azure Resource Graph for virtual machine details.",
)


def _show_device_code(details: DeviceCodeResponse) -> None:
    console.print(
        f"To sign in, open [bold]{details.verification_uri}[/bold] "
        f"and enter the code [bold cyan]{details.user_code}[/bold cyan]",
        style="yellow",
    )


def _browser_challenge(url: str) -> str | None:
    console.print(f"Opening [bold]{url}[/bold] in your browser...", style="yellow")
    webbrowser.open(url)
    redirect = typer.prompt("Paste the URL you were redirected to", default="", show_default=False)
    return redirect.strip() or None


def _parse_tags(values: list[str] | None) -> dict[str, str]:
    tags: dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected KEY=VALUE, got {item!r}", param_hint="--tag")
        tags[key.strip()] = value.strip()
    return tags


@app.command()
def main(
    terms: Annotated[list[str] | None, typer.Argument(help="VM names, or patterns with --match-regexp")] = None,
    login: Annotated[bool, typer.Option("--login", help="Sign in and show token status")] = False,
    logout: Annotated[bool, typer.Option("--logout", help="Forget the stored token")] = False,
    service_principal: Annotated[bool, typer.Option("--service-principal", help="Authenticate with the configured client secret")] = False,
    interactive: Annotated[bool, typer.Option("--interactive", help="Authenticate in a browser instead of with a device code")] = False,
    no_cache: Annotated[bool, typer.Option("--no-cache", "-c", help="Bypass the local result cache")] = False,
    match_regexp: Annotated[bool, typer.Option("--match-regexp", "-r", help="Treat terms as regular expressions")] = False,
    extensions: Annotated[bool, typer.Option("--extensions", "-e", help="Include VM extensions")] = False,
    tag: Annotated[list[str] | None, typer.Option("--tag", "-t", help="Tag filter KEY=VALUE (repeatable)")] = None,
    clear_cache: Annotated[bool, typer.Option("--clear-cache", help="Delete all cached results")] = False,
    skip: Annotated[int | None, typer.Option("--skip", min=0, help="Skip this many records")] = None,
    top: Annotated[int | None, typer.Option("--top", min=1, max=1000, help="Page size (max 1000)")] = None,
    output: Annotated[OutputFormat, typer.Option("--output", "-o", help="Output format")] = OutputFormat.TABLE,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable verbose logging")] = False,
) -> None:
    """Look up virtual machines by name."""
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    if service_principal and interactive:
        console.print("[red]--service-principal and --interactive are mutually exclusive[/red]")
        raise typer.Exit(2)
    kind = "service_principal" if service_principal else "interactive" if interactive else "device_code"
    tags = _parse_tags(tag)

    config = get_config()
    cache = ResultCache(config.paths.cache_file, enabled=config.settings.cache_enabled)

    if clear_cache:
        removed = cache.clear()
        console.print(f"[green]Cleared {removed} cached result sets.[/green]")
        if not (terms or login or logout):
            return

    auth = AuthManager(
        config,
        on_device_code=_show_device_code,
        on_challenge=_browser_challenge,
    )
    client = None
    try:
        if logout:
            removed = auth.logout()
            console.print("[green]Signed out.[/green]" if removed else "[dim]No stored token.[/dim]")
            return

        credential = config.credential(kind)

        if login:
            auth.acquire_token(credential)
            print_status(auth.get_status(credential), output)
            if not terms:
                return

        client = ResourceGraphClient(config, auth, credential, verbose=verbose)
        service = VMInfoService(client, cache, page_size=config.settings.page_size)
        descriptor = QueryDescriptor(
            terms=terms or [],
            regexp_mode=match_regexp,
            include_extensions=extensions,
            skip=skip,
            top=top,
            tags=tags,
            subscriptions=config.settings.subscriptions,
        )
        vms = service.query(descriptor, use_cache=not no_cache)
        console.print(f"[dim]Found {len(vms)} virtual machines[/dim]")

        print_vms(vms, output, include_extensions=extensions)
    except (RuntimeError, ValueError) as e:
        handle_error(e)
        raise typer.Exit(1)
    finally:
        if client is not None:
            client.close()
        else:
            auth.close()


if __name__ == "__main__":
    app()
