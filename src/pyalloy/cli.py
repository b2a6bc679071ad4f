"""Command line interface for pyalloy"""

import json
import sys
from typing import Dict, Optional, TextIO, Tuple

import click
from rich import print as rprint

from pyalloy.analyzer import analyze, enumerate_instances
from pyalloy.config import DEFAULT_CONFIG, AnalyzerConfig, load_config
from pyalloy.enums import LoggingLevelEnum, Status
from pyalloy.examples import example_names, get_example
from pyalloy.exceptions import AlloyError, ParseError, SolverError
from pyalloy.formatter import format_result, model_tree
from pyalloy.grammar_parser import parse as parse_model
from pyalloy.logger import set_logging_level
from pyalloy.resolver import resolve


def _read_source(model_file: Optional[TextIO], example: Optional[str]) -> str:
    if example is not None:
        try:
            return get_example(example)
        except KeyError as error:
            raise click.BadParameter(str(error.args[0]), param_hint="--example")
    if model_file is None:
        raise click.UsageError("Give a MODEL_FILE or --example NAME")
    return model_file.read()


def _parse_type_scopes(values: Tuple[str, ...]) -> Dict[str, int]:
    scopes: Dict[str, int] = {}
    for value in values:
        name, sep, count = value.partition("=")
        if not sep or not count.isdigit():
            raise click.BadParameter(
                f"expected NAME=COUNT, got '{value}'", param_hint="--type-scope"
            )
        scopes[name.strip()] = int(count)
    return scopes


@click.group()
@click.option(
    "--log-level",
    type=click.Choice([level.value for level in LoggingLevelEnum], case_sensitive=False),
    default=None,
    help="Logging level of the pyalloy logger.",
)
@click.pass_context
def main(ctx: click.Context, log_level: Optional[str]):
    """Entrypoint for the PyAlloy CLI"""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level
    if log_level is not None:
        set_logging_level(log_level)


@main.command()
@click.argument("model_file", type=click.File("r"), required=False)
@click.option("--example", default=None, help="Use a built-in example model.")
def parse(model_file: Optional[TextIO], example: Optional[str]):
    """
    Parse a model and print its paragraphs
    """
    source = _read_source(model_file, example)
    try:
        model = parse_model(source)
    except ParseError as error:
        click.echo(str(error), err=True)
        sys.exit(1)
    rprint(model_tree(model))


@main.command()
@click.argument("model_file", type=click.File("r"), required=False)
@click.option("--example", default=None, help="Use a built-in example model.")
def validate(model_file: Optional[TextIO], example: Optional[str]):
    """
    Check that a model parses and type-checks
    """
    source = _read_source(model_file, example)
    try:
        resolve(parse_model(source))
    except AlloyError as error:
        click.echo(f"Invalid model: {error}")
        sys.exit(1)
    click.echo("Valid model")


@main.command()
@click.argument("model_file", type=click.File("r"), required=False)
@click.option("--example", default=None, help="Use a built-in example model.")
@click.option("--command", "command", default=None, help="Command name, label or index.")
@click.option("--scope", type=click.IntRange(min=1), default=None, help="Default scope.")
@click.option(
    "--type-scope",
    "type_scopes",
    multiple=True,
    help="Per-signature scope as NAME=COUNT; may be repeated.",
)
@click.option("--timeout", type=click.FloatRange(min=0), default=None, help="Seconds.")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON.")
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=None,
    help="Enumerate up to this many instances.",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="TOML file with an [analyzer] table.",
)
@click.pass_context
def run(
    ctx: click.Context,
    model_file: Optional[TextIO],
    example: Optional[str],
    command: Optional[str],
    scope: Optional[int],
    type_scopes: Tuple[str, ...],
    timeout: Optional[float],
    as_json: bool,
    limit: Optional[int],
    config_path: Optional[str],
):
    """
    Run a command of a model and print the result
    """
    source = _read_source(model_file, example)
    config: AnalyzerConfig = load_config(config_path) if config_path else DEFAULT_CONFIG
    if not (ctx.obj or {}).get("log_level"):
        set_logging_level(config.logging_level.value)
    selector = int(command) if command is not None and command.isdigit() else command
    overrides = _parse_type_scopes(type_scopes)

    try:
        if limit is not None:
            _enumerate(source, selector, scope, overrides, timeout, config, limit, as_json)
            return
        result = analyze(
            source,
            command=selector,
            scope=scope,
            type_scopes=overrides,
            timeout=timeout or None,
            config=config,
        )
    except SolverError as error:
        raise click.ClickException(str(error))

    if as_json:
        click.echo(result.to_json())
    else:
        result.print_tree()
    if result.status in (Status.PARSE_ERROR, Status.TYPE_ERROR):
        sys.exit(1)


def _enumerate(source, selector, scope, overrides, timeout, config, limit, as_json):
    try:
        instances = list(
            enumerate_instances(
                source,
                limit=limit,
                command=selector,
                scope=scope,
                type_scopes=overrides,
                timeout=timeout or None,
                config=config,
            )
        )
    except AlloyError as error:
        if isinstance(error, SolverError):
            raise
        click.echo(str(error), err=True)
        sys.exit(1)
    results = [format_result(instance) for instance in instances]
    if as_json:
        click.echo(json.dumps([r.to_dict() for r in results], indent=2))
        return
    if not results:
        click.echo("No instance found")
        return
    for number, result in enumerate(results, start=1):
        click.echo(f"Instance {number}")
        result.print_tree()


@main.command()
@click.argument("name", required=False)
def examples(name: Optional[str]):
    """
    List the built-in examples, or print one of them
    """
    if name is None:
        for example_name in example_names():
            click.echo(example_name)
        return
    try:
        click.echo(get_example(name))
    except KeyError as error:
        click.echo(str(error.args[0]), err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
