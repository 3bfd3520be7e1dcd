from agentflow.agents.prompts import PromptBuilder, render_template
from agentflow.models import AgentDefinition, AgentIteration, ToolCallRequest, ToolCallResult


def test_render_template():
    rendered = render_template(
        "Summarize {page} for {audience} ({missing})",
        {"page": "text", "audience": {"role": "dev"}},
    )
    assert rendered == 'Summarize text for {"role": "dev"} ({missing})'


def test_prompt_lists_permitted_tools(registry):
    agent = AgentDefinition(id="math", tools=["calculator"], system_prompt="You do math.")
    prompt = PromptBuilder().build(agent, {"question": "2+2"}, [registry.get("calculator")])

    assert prompt.system.startswith("You do math.")
    assert "- calculator:" in prompt.system
    assert "<tool_call>" in prompt.system
    assert prompt.user == 'Input:\n{"question": "2+2"}'


def test_prompt_without_tools_has_no_instructions():
    prompt = PromptBuilder().build(AgentDefinition(id="writer"), {}, task="Write {input}")
    assert "<tool_call>" not in prompt.system
    assert prompt.user == "Write {}"


def test_history_is_rendered_as_observations():
    call = ToolCallRequest("calculator", {"operation": "add", "a": 2, "b": 2})
    iteration = AgentIteration(
        index=1,
        prompt="...",
        response="<tool_call>...</tool_call>",
        tool_call=call,
        tool_result=ToolCallResult(tool="calculator", arguments=call.arguments, output={"result": 4}),
    )
    agent = AgentDefinition(id="math", prompt_template="Question: {question}")
    prompt = PromptBuilder().build(agent, {"question": "2+2"}, history=[iteration])

    assert prompt.user.startswith("Question: 2+2\n\nPrevious steps:")
    assert 'Tool calculator returned: {"result": 4}' in prompt.user
