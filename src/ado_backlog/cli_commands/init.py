"""CLI command: init (write a starter configuration file)."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from ado_backlog.config import DEFAULT_CONFIG_FILENAME

CONFIG_TEMPLATE = """\
[api]
organization_url = {organization_url}
token = {token}
ignore_ssl = false

[cache]
mode = "memory"

[toc]
mode = "list"

[[backlogs]]
name = {backlog_name}
project = {project}
query = "[System.TeamProject] = @project AND [System.State] <> 'Removed'"

[backlogs.content_defaults]
fetch_parents = false
sort = [{{ field = "Microsoft.VSTS.Common.BacklogPriority", direction = "asc" }}]

[[backlogs.content]]
work_item_types = ["Epic"]

[[backlogs.content.content]]
work_item_types = ["Feature"]

[[backlogs.content.content.content]]
work_item_types = ["User Story", "Bug"]

[[backlogs.outputs]]
path = "out/{{backlog.name}} {{now:%Y-%m-%d}}.html"
mkdir = true
overwrite = true
{templates}"""

TEMPLATE_TEMPLATE = """
[[templates]]
work_item_type = {work_item_type}

[[templates.blocks]]
kind = "metadata"
columns = 3

[[templates.blocks.cells]]
kind = "column"
blocks = [{{ kind = "section", field = "System.State", header = "State" }}]

[[templates.blocks.cells]]
kind = "column"
blocks = [{{ kind = "section", field = "System.ChangedDate", header = "Last Update" }}]

[[templates.blocks.cells]]
kind = "column"
blocks = [{{ kind = "links", label = "Parent", relations = ["Parent"], single = true }}]

[[templates.blocks.cells]]
kind = "row"
blocks = [{{ kind = "tags" }}]

[[templates.blocks]]
kind = "section"
field = "System.Description"
rich_text = true
"""

STARTER_TYPES = ("Epic", "Feature", "User Story", "Bug")


def _toml_str(value: str) -> str:
    return json.dumps(value)


def render_config(organization_url: str, token: str, project: str) -> str:
    templates = "".join(TEMPLATE_TEMPLATE.format(work_item_type=_toml_str(t)) for t in STARTER_TYPES)
    return CONFIG_TEMPLATE.format(
        organization_url=_toml_str(organization_url),
        token=_toml_str(token),
        backlog_name=_toml_str(project),
        project=_toml_str(project),
        templates=templates,
    )


@click.command()
@click.argument("config_file", required=False, type=click.Path(path_type=Path, dir_okay=False))
@click.option("--overwrite", is_flag=True, help="Replace an existing configuration file")
def init(config_file: Path | None, overwrite: bool) -> None:
    """Write a starter configuration file."""
    if config_file is None:
        config_file = Path(click.prompt("Name of the configuration file", default=DEFAULT_CONFIG_FILENAME))

    if config_file.exists() and not overwrite:
        if not click.confirm(f"{config_file} already exists. Overwrite it?", default=False):
            click.echo("Config initialization aborted.", err=True)
            sys.exit(1)

    organization_url = click.prompt("Azure DevOps organization URL (e.g. https://dev.azure.com/<organization>)")
    click.echo(f"To create a Personal Access Token, go to {organization_url.rstrip('/')}/_usersSettings/tokens")
    token = click.prompt("Personal Access Token", default="", hide_input=True, show_default=False)
    if not token:
        click.echo("Warning: the token was left empty; set it in the file or in ADO_BACKLOG_TOKEN.", err=True)
    project = click.prompt("Project to export the backlog from")

    config_file.write_text(render_config(organization_url.rstrip("/"), token, project), encoding="utf-8")
    click.echo(f"Wrote {config_file}")
    click.echo("\nNext: ado-backlog download")


def register(cli: click.Group) -> None:
    """Register init command with the CLI."""
    cli.add_command(init)
