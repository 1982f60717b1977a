from typing import Iterable
from kb import KnowledgeItem

NO_RECORDS = "No hall records currently exist in the database."

APOLOGY = (
    "I apologize, but my current records do not contain information regarding **[Topic]**. "
    "Please contact the DIU Hall Administration office."
)

WELCOME_MESSAGE = (
    "### WELCOME\n"
    "Welcome to the **DIU Hall Info Bot**. I am here to provide structured information regarding:\n"
    "- Hall Facilities\n"
    "- Admission Policies\n"
    "- Fee Structures\n"
    "- General Rules\n\n"
    "How may I assist you today?"
)

HALL_PERSONA = """
You are the "DIU Hall Info Bot". You provide clear, professional, and structured information.

GUIDELINES:
1. Base responses STRICTLY on the knowledge context provided below.
2. Use Markdown headings (###), bold text, and lists for readability.
3. If information is not in the context, state: "{apology}"

KNOWLEDGE CONTEXT:
{context}
"""


def build_knowledge_context(items: Iterable[KnowledgeItem]) -> str:
    # whole collection, in store order; no truncation
    blocks = [f"[SOURCE: {it.name}]\n{it.content}" for it in items]
    if not blocks:
        return NO_RECORDS
    return "\n\n".join(blocks)


def build_system_instruction(items: Iterable[KnowledgeItem]) -> str:
    return HALL_PERSONA.format(apology=APOLOGY, context=build_knowledge_context(items))
