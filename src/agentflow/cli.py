"""
agentflow command line interface
"""
import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import click
import yaml

from .agents.catalog import AgentCatalog
from .agents.llm import LanguageModel, OpenAIChatModel, ScriptedLanguageModel
from .config import EngineSettings, configure_logging
from .core.executor import WorkflowExecutor
from .core.parser import WorkflowParser
from .errors import AgentflowError
from .sinks import CompositeRecordSink, LoggingRecordSink, SQLiteRecordSink
from .tools.builtin import register_builtin_tools
from .tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


def load_script(path: Path) -> ScriptedLanguageModel:
    """Build a scripted model from a YAML/JSON file.

    The file holds either a list of responses, or a mapping of agent id to
    a list of responses with an optional ``default`` list shared by all.
    """
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if isinstance(data, list):
        return ScriptedLanguageModel([str(item) for item in data])
    if isinstance(data, dict):
        shared = data.pop("default", [])
        return ScriptedLanguageModel(
            [str(item) for item in shared],
            by_agent={agent_id: [str(item) for item in items] for agent_id, items in data.items()},
        )
    raise click.BadParameter(f"{path}: script must be a list or a mapping of lists")


def build_executor(
    settings: EngineSettings,
    model: Optional[LanguageModel] = None,
    catalog: Optional[AgentCatalog] = None,
) -> WorkflowExecutor:
    """Wire registry, catalog, sinks and model from settings."""
    registry = ToolRegistry()
    register_builtin_tools(registry, file_root=settings.file_tool_root)
    registry.freeze()

    if catalog is None:
        catalog = AgentCatalog()
        if settings.agents_dir is not None:
            catalog.load_directory(settings.agents_dir)

    sinks = [LoggingRecordSink()]
    if settings.sqlite_path:
        sinks.append(SQLiteRecordSink(settings.sqlite_path))

    if model is None:
        model = OpenAIChatModel(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            default_model=settings.openai_model,
        )
    return WorkflowExecutor(
        registry,
        model,
        catalog=catalog,
        sink=CompositeRecordSink(sinks),
        settings=settings,
    )


def _load_input(raw: Optional[str], input_file: Optional[str]) -> Dict[str, Any]:
    if input_file:
        text = Path(input_file).read_text(encoding="utf-8")
        data = yaml.safe_load(text)
    elif raw:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"--input is not valid JSON: {e}")
    else:
        data = {}
    if not isinstance(data, dict):
        raise click.BadParameter("workflow input must be a JSON object")
    return data


@click.group()
@click.option("--log-level", default=None, help="Logging level (default from AGENTFLOW_LOG_LEVEL)")
@click.pass_context
def cli(ctx, log_level):
    """agentflow: run DAG workflows of agent and tool steps"""
    settings = EngineSettings.from_env()
    if log_level:
        settings.log_level = log_level.upper()
    configure_logging(settings.log_level)
    ctx.obj = settings


@cli.command()
@click.argument("workflow_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def validate(settings, workflow_file):
    """Validate a workflow file and print its batches"""
    executor = build_executor(settings, model=ScriptedLanguageModel())
    try:
        definition = WorkflowParser().parse_file(workflow_file)
        plan = executor.validate(definition)
    except AgentflowError as e:
        click.echo(f"Invalid workflow: {e.message}", err=True)
        raise SystemExit(1)

    click.echo(f"Workflow {definition.id} is valid ({len(definition.steps)} steps)")
    for index, level in enumerate(plan.levels, start=1):
        click.echo(f"  batch {index}: {', '.join(sorted(level))}")


@cli.command()
@click.argument("workflow_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--input", "input_json", default=None, help="Workflow input as a JSON object")
@click.option("--input-file", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Workflow input from a YAML/JSON file")
@click.option("--script", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Replay model responses from a YAML/JSON file instead of calling OpenAI")
@click.option("--agents", "agents_dir", type=click.Path(exists=True, file_okay=False), default=None,
              help="Directory of agent definition files")
@click.pass_obj
def run(settings, workflow_file, input_json, input_file, script, agents_dir):
    """Run a workflow and print the final status"""
    input_data = _load_input(input_json, input_file)
    if agents_dir:
        settings.agents_dir = Path(agents_dir)
    model = load_script(Path(script)) if script else None

    try:
        definition = WorkflowParser().parse_file(workflow_file)
        executor = build_executor(settings, model=model)
        execution = asyncio.run(executor.run(definition, input_data))
    except AgentflowError as e:
        click.echo(json.dumps({"error": e.to_dict()}, indent=2), err=True)
        raise SystemExit(1)

    status = executor.get_status(execution.id)
    click.echo(json.dumps(status, indent=2, ensure_ascii=False, default=str))
    if execution.error:
        raise SystemExit(1)


@cli.command()
@click.pass_obj
def tools(settings):
    """List the built-in tools"""
    executor = build_executor(settings, model=ScriptedLanguageModel())
    for tool in executor.registry.list_tools():
        click.echo(f"{tool.name}: {tool.description}")


@cli.command()
@click.option("--host", default=None, help="Host to bind to")
@click.option("--port", default=None, type=int, help="Port to bind to")
@click.pass_obj
def serve(settings, host, port):
    """Start the API server"""
    import uvicorn

    from .api import create_app

    app = create_app(build_executor(settings))
    host = host or settings.api_host
    port = port or settings.api_port
    click.echo(f"Starting API server on {host}:{port}")
    uvicorn.run(app, host=host, port=port)


def main():
    cli()


if __name__ == "__main__":
    main()
