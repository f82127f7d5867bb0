from types import SimpleNamespace

import pytest
from openai import OpenAIError

from tracking_api.agents import SYSTEM_PROMPT, AzureTutorAgent
from tracking_api.config import Settings
from tracking_api.errors import UpstreamFailure
from tracking_api.session_store import ConversationTurn


class FakeCompletions:
    def __init__(self, content="Use sorted().", usage=SimpleNamespace(total_tokens=31), error=None):
        self.content = content
        self.usage = usage
        self.error = error
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)], usage=self.usage)


def _agent(completions):
    agent = AzureTutorAgent(Settings(azure_openai_model="gpt-4.1", model_max_tokens=123))
    agent._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return agent


@pytest.mark.asyncio
async def test_generate_prepends_system_prompt():
    completions = FakeCompletions()
    agent = _agent(completions)

    reply = await agent.generate([ConversationTurn("user", "How do I sort a list?")])

    assert reply.text == "Use sorted()."
    assert reply.token_count == 31
    assert reply.model == "gpt-4.1"
    request = completions.requests[0]
    assert request["messages"][0] == {"role": "system", "content": SYSTEM_PROMPT}
    assert request["messages"][1] == {"role": "user", "content": "How do I sort a list?"}
    assert request["max_tokens"] == 123


@pytest.mark.asyncio
async def test_missing_usage_gives_no_token_count():
    reply = await _agent(FakeCompletions(usage=None)).generate([ConversationTurn("user", "hi")])
    assert reply.token_count is None


@pytest.mark.asyncio
@pytest.mark.parametrize("content", [None, "", "   "])
async def test_empty_reply_is_upstream_failure(content):
    with pytest.raises(UpstreamFailure):
        await _agent(FakeCompletions(content=content)).generate([ConversationTurn("user", "hi")])


@pytest.mark.asyncio
async def test_client_error_is_upstream_failure():
    agent = _agent(FakeCompletions(error=OpenAIError("rate limited")))
    with pytest.raises(UpstreamFailure):
        await agent.generate([ConversationTurn("user", "hi")])


@pytest.mark.asyncio
async def test_missing_credentials_is_upstream_failure():
    agent = AzureTutorAgent(Settings(azure_openai_endpoint=None, azure_openai_key=None))
    with pytest.raises(UpstreamFailure):
        await agent.generate([ConversationTurn("user", "hi")])
