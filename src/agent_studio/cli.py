"""
Agent Studio CLI
"""
import click
import asyncio
import logging
import yaml
import json
from pathlib import Path

from .config import Settings, configure_logging
from .core import WorkflowEngine, WorkflowParser
from .exceptions import WorkflowEngineError
from .models.workflow import NodeStatus
from .integrations import (
    IntegrationError, AIClient, MockModelClient, LocalToolRegistry, BuiltinTools
)
from .integrations.providers import provider_for_model
from .knowledge import InMemoryKnowledgeStore, ModelClientEmbedder, SimulatedEmbedder
from .storage import JSONFileWorkflowRepository, JSONFileExecutionRepository
from .templates import TEMPLATES, create_workflow, list_templates


logger = logging.getLogger(__name__)


EXAMPLE_WORKFLOW = {
    "workflow": {
        "name": "Example Workflow",
        "version": "1.0.0",
        "nodes": [
            {"id": "start", "type": "start", "label": "Start"},
            {
                "id": "assistant",
                "type": "ai_agent",
                "data": {
                    "label": "Assistant",
                    "model": "gpt-4o-mini",
                    "systemPrompt": "You are a concise assistant.",
                    "temperature": 0.7,
                    "maxTokens": 512,
                },
            },
            {"id": "end", "type": "end", "label": "End"},
        ],
        "edges": [
            {"source": "start", "target": "assistant"},
            {"source": "assistant", "target": "end"},
        ],
    }
}


def _parse_input(value):
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def _load_workflow(workflow_file):
    try:
        return WorkflowParser().parse_file(Path(workflow_file))
    except WorkflowEngineError as e:
        raise click.ClickException(str(e))


def _build_embedder(settings, model_client):
    """知识库写入和检索共用的 embedder；没有可用的向量接口时使用离线向量"""
    if isinstance(model_client, MockModelClient):
        return ModelClientEmbedder(model_client)

    api_keys = {"openai": settings.openai_api_key, "nvidia": settings.nvidia_api_key}
    if api_keys.get(provider_for_model(settings.embedding_model)):
        return ModelClientEmbedder(model_client, settings.embedding_model)

    logger.info(f"No API key for embedding model {settings.embedding_model}, "
                   f"using simulated embeddings")
    return SimulatedEmbedder()


@click.group()
def cli():
    """Agent Studio workflow runtime CLI"""
    pass


@cli.command()
@click.argument('workflow_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--input', 'input_text', default=None, help='Run input (JSON or plain text)')
@click.option('--mock-response', default=None, help='Answer every AI agent node with this text')
@click.option('--save', is_flag=True, help='Persist the workflow and run checkpoints')
@click.option('--knowledge', multiple=True, type=click.Path(exists=True, dir_okay=False),
              help='Document to load into the knowledge base (repeatable)')
def run(workflow_file, input_text, mock_response, save, knowledge):
    """Run a workflow from file"""
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    workflow = _load_workflow(workflow_file)

    async def _run():
        tool_registry = LocalToolRegistry()
        await BuiltinTools.register_all(tool_registry)

        if mock_response is not None:
            model_client = MockModelClient(fragments=[mock_response])
        else:
            model_client = AIClient(settings)

        embedder = _build_embedder(settings, model_client)
        knowledge_store = InMemoryKnowledgeStore(embedder=embedder)
        for path in knowledge:
            await knowledge_store.add_file(path)

        repositories = {}
        if save:
            storage = Path(settings.storage_path)
            repositories = {
                "workflow_repository": JSONFileWorkflowRepository(storage / "workflows"),
                "execution_repository": JSONFileExecutionRepository(storage / "executions"),
            }

        engine = WorkflowEngine(
            workflow,
            model_client=model_client,
            tool_registry=tool_registry,
            knowledge_store=knowledge_store,
            embedder=embedder,
            settings=settings,
            **repositories
        )

        run_task = asyncio.create_task(engine.start(_parse_input(input_text)))
        while True:
            paused = asyncio.create_task(engine.wait_until_paused())
            done, _ = await asyncio.wait({run_task, paused}, return_when=asyncio.FIRST_COMPLETED)
            if run_task in done:
                paused.cancel()
                return run_task.result()

            value = await asyncio.to_thread(_prompt_for_input, engine)
            await engine.resume(value, wait=False)

    try:
        output = asyncio.run(_run())
    except (WorkflowEngineError, IntegrationError) as e:
        raise click.ClickException(str(e))

    click.echo(json.dumps(output, indent=2, ensure_ascii=False, default=str))


def _prompt_for_input(engine):
    """提示用户为暂停中的人工输入节点提供输入"""
    state = engine.get_state()
    paused = [
        engine.workflow.get_node(node_id)
        for node_id, status in state.node_statuses.items()
        if status == NodeStatus.PAUSED
    ]
    node = paused[0] if paused else None
    text = node.data.prompt if node is not None and node.data.prompt else "Input"

    if node is not None and node.data.options:
        return click.prompt(text, type=click.Choice(node.data.options))
    return _parse_input(click.prompt(text))


@cli.command()
@click.argument('workflow_file', type=click.Path(exists=True, dir_okay=False))
def validate(workflow_file):
    """Validate a workflow file"""
    workflow = _load_workflow(workflow_file)

    errors = workflow.validate()
    for error in errors:
        click.echo(f"ERROR: {error}", err=True)
    for node_id in workflow.find_unreachable_nodes():
        click.echo(f"WARNING: Node '{node_id}' is not reachable from the start node", err=True)

    if errors:
        raise click.ClickException(f"{len(errors)} validation error(s)")
    click.echo(f"Workflow '{workflow.name or workflow.id}' is valid "
               f"({len(workflow.nodes)} nodes, {len(workflow.edges)} edges)")


@cli.command()
def tools():
    """List built-in tools"""
    for tool in BuiltinTools.all_tools():
        click.echo(f"{tool.tool_id} [{tool.category}] - {tool.description}")
        for param in tool.parameters:
            required = "required" if param.required else "optional"
            click.echo(f"    {param.name} ({param.type.value}, {required}): {param.description}")


@cli.command()
def templates():
    """List built-in workflow templates"""
    for template in list_templates():
        click.echo(f"{template.id} [{template.category}] - {template.description}")


@cli.command()
@click.option('--template', 'template_id', default=None,
              type=click.Choice([template.id for template in TEMPLATES]),
              help='Create the workflow from a built-in template')
def init(template_id):
    """Initialize a new workflow project"""
    click.echo("Initializing new workflow project...")

    Path('workflows').mkdir(exist_ok=True)
    target = Path(f'workflows/{template_id or "example"}.yaml')
    if target.exists():
        click.echo(f"{target} already exists, leaving it unchanged")
        return

    with open(target, 'w', encoding='utf-8') as f:
        if template_id:
            f.write(WorkflowParser().to_yaml(create_workflow(template_id)))
        else:
            yaml.safe_dump(EXAMPLE_WORKFLOW, f, sort_keys=False)

    click.echo(f"Created {target}")
    click.echo("Project initialized successfully!")


def main():
    """Main entry point"""
    cli()


if __name__ == '__main__':
    main()
