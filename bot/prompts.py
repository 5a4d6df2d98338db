"""Prompt templates for model-backed answers"""

CANT_TELL_MESSAGES = "I can't tell from the messages."
CANT_TELL_DATA = "I can't tell from the provided data."

MESSAGES_SYSTEM_PROMPT = (
    "You are an internal assistant. Base your answer STRICTLY on the provided messages. "
    "If the user asks for a judgment (e.g., is the order approved), answer only if it is "
    "explicitly stated; otherwise say you cannot tell from the messages. Be concise."
)

CONTEXT_SYSTEM_PROMPT = (
    "You are an internal assistant for a sales team. Answer ONLY from the customer context "
    "provided (profile, recent orders and recent messages). Never invent order numbers, "
    "amounts, dates or addresses. If the context does not contain the answer, respond: "
    f"\"{CANT_TELL_DATA}\" Be concise."
)

SUMMARY_PROMPT = """Summarize these {count} recent messages into up to 3 short bullets with dates and any explicit next steps:

{conversation}"""

RECENT_QA_PROMPT = """Based ONLY on these {count} recent messages, answer the user question:
"{question}"

If the messages do not say, respond: "{cant_tell}"

Messages:
{conversation}"""

LAST_MESSAGE_QA_PROMPT = """Answer the user question using ONLY the LAST message below. The earlier messages are included only to resolve references such as "it", "that" or "the order"; do not answer from them.
Question: "{question}"

If the last message does not say, respond: "{cant_tell}"

Earlier messages (oldest first):
{earlier}

Last message:
{last}"""

CONTEXT_QA_PROMPT = """{context}

Question: {question}"""


def summary_prompt(conversation: str, count: int) -> str:
    return SUMMARY_PROMPT.format(count=count, conversation=conversation)


def recent_qa_prompt(question: str, conversation: str, count: int) -> str:
    return RECENT_QA_PROMPT.format(
        count=count, question=question, cant_tell=CANT_TELL_MESSAGES, conversation=conversation
    )


def last_message_prompt(question: str, earlier: str, last: str) -> str:
    return LAST_MESSAGE_QA_PROMPT.format(
        question=question, cant_tell=CANT_TELL_MESSAGES, earlier=earlier or "(none)", last=last
    )


def context_prompt(question: str, context: str) -> str:
    return CONTEXT_QA_PROMPT.format(context=context, question=question)

