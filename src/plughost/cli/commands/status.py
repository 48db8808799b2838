"""Status command for plughost CLI.

This module provides the `plughost status` command. It runs a manager
against the settings file, reports what each configured artifact
registered as, and unloads everything again.
"""

import json
from pathlib import Path
from typing import Annotated, Any

import typer
import yaml
from pydantic import ValidationError

from plughost.plugins.config import PluginHostSettings, load_settings
from plughost.plugins.manager import PluginManager


def status_command(
    config: Annotated[
        Path,
        typer.Option(
            "--config",
            "-c",
            help="Path to settings.yml",
        ),
    ] = Path("./settings.yml"),
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output as JSON",
        ),
    ] = False,
) -> None:
    """Load every configured plugin and show its status."""
    if not config.exists():
        typer.echo(f"Error: Settings file not found: {config}", err=True)
        raise typer.Exit(1)

    try:
        settings = load_settings(config)
    except yaml.YAMLError as e:
        typer.echo(f"Error: Invalid YAML in {config}: {e}", err=True)
        raise typer.Exit(2) from e
    except (ValidationError, ValueError) as e:
        typer.echo(f"Error: Failed to load settings: {e}", err=True)
        raise typer.Exit(2) from e

    status_data = _build_status_data(settings, config)

    if json_output:
        typer.echo(json.dumps(status_data, indent=2))
        return

    _display_status(status_data)


def _build_status_data(settings: PluginHostSettings, config_path: Path) -> dict[str, Any]:
    """Run a manager and collect per-plugin status.

    Args:
        settings: The loaded settings.
        config_path: Path to the settings file.

    Returns:
        Dictionary containing status information.
    """
    manager = PluginManager(settings=settings)
    manager.run()

    try:
        loaded = {plugin.path: plugin for plugin in manager.plugins()}
        plugins_status: list[dict[str, Any]] = []

        for plugin_config in settings.plugins:
            info: dict[str, Any] = {
                "path": plugin_config.path,
                "enabled": plugin_config.enabled,
            }
            plugin = loaded.get(plugin_config.path)
            if plugin is not None:
                info["name"] = plugin.name
                info["version"] = f"0x{plugin.version:x}"
                info["status"] = plugin.status.value
            else:
                info["status"] = "disabled" if not plugin_config.enabled else "failed"
            plugins_status.append(info)
    finally:
        manager.stop()

    return {
        "settings_path": str(config_path),
        "loaded_count": sum(1 for p in plugins_status if p["status"] == "loaded"),
        "plugins": plugins_status,
    }


def _display_status(status_data: dict[str, Any]) -> None:
    typer.echo("plughost Status")
    typer.echo("=" * 15)
    typer.echo()
    typer.echo(f"Settings: {status_data['settings_path']}")
    typer.echo(f"Plugins: {status_data['loaded_count']} loaded")
    typer.echo()

    for plugin in status_data["plugins"]:
        if "name" in plugin:
            typer.echo(f"{plugin['name']} {plugin['version']} ({plugin['status']})")
        else:
            typer.echo(f"<unregistered> ({plugin['status']})")
        typer.echo(f"  Path: {plugin['path']}")
