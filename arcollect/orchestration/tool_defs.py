"""
Tool definitions for the orchestration loop.

Converts the provider's tool catalog into OpenAI function-calling tool
definitions, and builds the collections assistant's system prompt.
"""

from ..rpc.messages import ToolDescriptor


def descriptor_to_openai(descriptor: ToolDescriptor) -> dict:
    """Convert one provider ToolDescriptor to an OpenAI ``tools`` entry."""
    parameters = dict(descriptor.input_schema) or {"type": "object", "properties": {}}
    parameters.setdefault("type", "object")
    parameters.setdefault("properties", {})
    return {
        "type": "function",
        "function": {
            "name": descriptor.name,
            "description": descriptor.description,
            "parameters": parameters,
        },
    }


def build_tool_definitions(descriptors: list[ToolDescriptor]) -> list[dict]:
    """Convert the whole catalog, keeping the provider's order."""
    return [descriptor_to_openai(d) for d in descriptors]


def build_system_prompt(user_email: str) -> str:
    return f"""You are an intelligent AR Collections & Dunning Assistant for a finance team.
You help collections specialists prioritize accounts, understand risk, and take action.

The current user's email address is: {user_email}

You have access to tools that read live data from the ERP system, record
collections notes and payment promises, send dunning emails, and notify
colleagues in Teams.
Always use tools to fetch live data. Do not make up customer names, balances, or payment history.

When presenting results:
- Use clear formatting with customer name, ID, aging profile, and outstanding balance
- Flag accounts with large 90+ day balances or broken payment promises as urgent
- Include next-step recommendations
- Confirm when notes have been recorded and on which customer
- Confirm when an email or Teams message has been sent and to whom
- Be concise: summary first, details on request

When the user says "send it to me" or "send me a draft", use their email address
as the recipient.
Never send anything to a customer unless the user asked for it.

Avoid redundant tool calls: fetch each customer's data once per request and reuse it.
If a tool reports an error, explain it to the user instead of retrying the same call."""
